"""
Audit Trail Module

Hash-chained immutable audit log with SHA-256 for tamper detection.
Every ledger mutation (loan registration, edits, materialized entries,
scheduler runs) is recorded here.
"""

import hashlib
import json
import threading
import uuid
from datetime import datetime, date, timezone
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Any
from enum import Enum
from decimal import Decimal

from .storage import StorageInterface, StorageRecord


class AuditEventType(Enum):
    """Types of audit events"""
    # Loan events
    LOAN_REGISTERED = "loan_registered"
    LOAN_TERMS_CHANGED = "loan_terms_changed"
    LOAN_DELETED = "loan_deleted"

    # Ledger events
    INTEREST_MATERIALIZED = "interest_materialized"
    BACKFILL_FAILED = "backfill_failed"

    # Scheduler events
    ACCRUAL_RUN_STARTED = "accrual_run_started"
    ACCRUAL_RUN_COMPLETED = "accrual_run_completed"


def _json_safe(value):
    if isinstance(value, (Decimal,)):
        return str(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, dict):
        return {k: _json_safe(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_json_safe(v) for v in value]
    return value


@dataclass
class AuditEvent(StorageRecord):
    """Immutable audit event chained to its predecessor by hash"""
    event_type: AuditEventType
    entity_type: str  # loan, interest_entry, accrual_run
    entity_id: str
    previous_hash: str
    current_hash: str
    metadata: Dict[str, Any] = field(default_factory=dict)
    tenant_id: Optional[str] = None

    def __post_init__(self):
        self.metadata = _json_safe(self.metadata or {})

    def calculate_hash(self) -> str:
        """SHA-256 over every field except current_hash"""
        hash_data = {
            'id': self.id,
            'created_at': self.created_at.isoformat(),
            'event_type': self.event_type.value,
            'entity_type': self.entity_type,
            'entity_id': self.entity_id,
            'previous_hash': self.previous_hash,
            'tenant_id': self.tenant_id,
            'metadata': self.metadata
        }
        json_data = json.dumps(hash_data, sort_keys=True, separators=(',', ':'))
        return hashlib.sha256(json_data.encode('utf-8')).hexdigest()

    def verify_hash(self) -> bool:
        return self.current_hash == self.calculate_hash()

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'AuditEvent':
        data = dict(data)
        data.pop('_tenant_id', None)
        data['created_at'] = datetime.fromisoformat(data['created_at'])
        data['updated_at'] = datetime.fromisoformat(data['updated_at'])
        data['event_type'] = AuditEventType(data['event_type'])
        return cls(**data)


class AuditTrail:
    """Hash-chained audit trail for tamper detection"""

    def __init__(self, storage: StorageInterface, table_name: str = "audit_events",
                 enabled: bool = True):
        self.storage = storage
        self.table_name = table_name
        self.enabled = enabled
        self._lock = threading.Lock()
        self._chain_head: Optional[Dict[str, Any]] = None

    def _load_chain_head(self) -> Dict[str, Any]:
        """Hash and sequence number of the most recent event"""
        if self._chain_head is None:
            events = self.storage.load_all(self.table_name)
            if events:
                latest = max(events, key=lambda e: e.get('sequence', 0))
                self._chain_head = {
                    'hash': latest.get('current_hash', ""),
                    'sequence': latest.get('sequence', 0)
                }
            else:
                self._chain_head = {'hash': "", 'sequence': -1}
        return self._chain_head

    def log_event(
        self,
        event_type: AuditEventType,
        entity_type: str,
        entity_id: str,
        metadata: Optional[Dict[str, Any]] = None,
        tenant_id: Optional[str] = None
    ) -> Optional[AuditEvent]:
        """
        Log an audit event with hash chaining

        Args:
            event_type: Type of audit event
            entity_type: Type of entity being audited
            entity_id: ID of the entity
            metadata: Additional event-specific data
            tenant_id: Tenant owning the entity

        Returns:
            Created AuditEvent, or None when auditing is disabled
        """
        if not self.enabled:
            return None

        with self._lock:
            head = self._load_chain_head()
            now = datetime.now(timezone.utc)
            event = AuditEvent(
                id=str(uuid.uuid4()),
                created_at=now,
                updated_at=now,
                event_type=event_type,
                entity_type=entity_type,
                entity_id=entity_id,
                previous_hash=head['hash'],
                current_hash="",
                metadata=metadata or {},
                tenant_id=tenant_id
            )
            event.current_hash = event.calculate_hash()

            record = event.to_dict()
            record['sequence'] = head['sequence'] + 1
            self.storage.save(self.table_name, event.id, record)
            self._chain_head = {'hash': event.current_hash, 'sequence': record['sequence']}
            return event

    def _load_events(self) -> List[AuditEvent]:
        rows = self.storage.load_all(self.table_name)
        rows.sort(key=lambda e: e.get('sequence', 0))
        for row in rows:
            row.pop('sequence', None)
        return [AuditEvent.from_dict(row) for row in rows]

    def get_events_for_entity(self, entity_type: str, entity_id: str) -> List[AuditEvent]:
        """All audit events for one entity, oldest first"""
        return [
            e for e in self._load_events()
            if e.entity_type == entity_type and e.entity_id == entity_id
        ]

    def get_events_by_type(self, event_type: AuditEventType) -> List[AuditEvent]:
        return [e for e in self._load_events() if e.event_type == event_type]

    def verify_integrity(self) -> Dict[str, Any]:
        """
        Verify the integrity of the entire audit chain

        Returns:
            Dictionary with ``valid``, ``total_events``, ``hash_errors`` and
            ``chain_breaks`` keys
        """
        result = {
            'valid': True,
            'total_events': 0,
            'hash_errors': [],
            'chain_breaks': []
        }

        events = self._load_events()
        result['total_events'] = len(events)

        previous_hash = ""
        for position, event in enumerate(events):
            if not event.verify_hash():
                result['valid'] = False
                result['hash_errors'].append({'event_id': event.id, 'position': position})
            if event.previous_hash != previous_hash:
                result['valid'] = False
                result['chain_breaks'].append({'event_id': event.id, 'position': position})
            previous_hash = event.current_hash

        return result
