"""
Multi-Tenancy Support Module

Each lender (tenant) sees only its own borrowers, loans, payments and interest
entries. Isolation is by a ``_tenant_id`` column in shared tables, driven by a
context variable set per request or per scheduler iteration.
"""

import contextvars
import uuid
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, List, Optional, Any

from .errors import InvalidArgument
from .storage import StorageInterface


TENANT_FIELD = "_tenant_id"


@dataclass
class Tenant:
    """A lender whose ledger data is isolated from every other lender"""
    id: str
    name: str
    code: str  # Unique short code, e.g. "ACME_LENDING"
    display_name: str
    contact_email: Optional[str] = None
    is_active: bool = True
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'name': self.name,
            'code': self.code,
            'display_name': self.display_name,
            'contact_email': self.contact_email,
            'is_active': self.is_active,
            'created_at': self.created_at.isoformat(),
            'updated_at': self.updated_at.isoformat()
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Tenant':
        data = dict(data)
        data.pop(TENANT_FIELD, None)
        for key in ('created_at', 'updated_at'):
            if isinstance(data.get(key), str):
                data[key] = datetime.fromisoformat(data[key])
        return cls(**data)


_current_tenant = contextvars.ContextVar('current_tenant', default=None)


def get_current_tenant() -> Optional[str]:
    """Get the current tenant ID for this context"""
    return _current_tenant.get()


def set_current_tenant(tenant_id: Optional[str]) -> None:
    """Set the current tenant ID for this context"""
    _current_tenant.set(tenant_id)


@contextmanager
def tenant_context(tenant_id: str):
    """Context manager for temporary tenant switching"""
    token = _current_tenant.set(tenant_id)
    try:
        yield
    finally:
        _current_tenant.reset(token)


class TenantAwareStorage(StorageInterface):
    """
    Storage wrapper that adds tenant isolation to any StorageInterface.

    With no tenant in context the caller is a super-admin (the scheduler, for
    instance) and sees every record.
    """

    def __init__(self, inner_storage: StorageInterface):
        self.inner = inner_storage

    def _stamp(self, data: Dict[str, Any]) -> Dict[str, Any]:
        tenant_id = get_current_tenant()
        if tenant_id:
            data = dict(data)
            data[TENANT_FIELD] = tenant_id
        return data

    def _can_access(self, data: Dict[str, Any]) -> bool:
        tenant_id = get_current_tenant()
        if not tenant_id:
            return True
        return data.get(TENANT_FIELD) == tenant_id

    def save(self, table: str, record_id: str, data: Dict[str, Any]) -> None:
        existing = self.inner.load(table, record_id)
        if existing is not None and not self._can_access(existing):
            raise PermissionError(f"Record {record_id} in {table} belongs to another tenant")
        if existing is not None and not get_current_tenant() and TENANT_FIELD in existing:
            # Super-admin updates keep the owning tenant
            data = dict(data)
            data.setdefault(TENANT_FIELD, existing[TENANT_FIELD])
        self.inner.save(table, record_id, self._stamp(data))

    def insert(self, table: str, record_id: str, data: Dict[str, Any]) -> bool:
        return self.inner.insert(table, record_id, self._stamp(data))

    def load(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        result = self.inner.load(table, record_id)
        if result is not None and not self._can_access(result):
            return None
        return result

    def load_all(self, table: str) -> List[Dict[str, Any]]:
        return [r for r in self.inner.load_all(table) if self._can_access(r)]

    def delete(self, table: str, record_id: str) -> bool:
        record = self.inner.load(table, record_id)
        if record is None or not self._can_access(record):
            return False
        return self.inner.delete(table, record_id)

    def exists(self, table: str, record_id: str) -> bool:
        return self.load(table, record_id) is not None

    def find(self, table: str, filters: Dict[str, Any]) -> List[Dict[str, Any]]:
        return self.inner.find(table, self._stamp(filters))

    def count(self, table: str) -> int:
        return len(self.load_all(table))

    def close(self) -> None:
        self.inner.close()

    def begin_transaction(self) -> None:
        self.inner.begin_transaction()

    def commit(self) -> None:
        self.inner.commit()

    def rollback(self) -> None:
        self.inner.rollback()


class TenantManager:
    """Registry of tenants; reads and writes the raw (not tenant-aware) storage"""

    TENANT_TABLE = "tenants"

    def __init__(self, storage: StorageInterface):
        self.storage = storage

    def create_tenant(self, name: str, code: str, display_name: Optional[str] = None,
                      contact_email: Optional[str] = None,
                      tenant_id: Optional[str] = None) -> Tenant:
        """Create a new tenant"""
        if not code:
            raise InvalidArgument("Tenant code is required")
        if self.get_tenant_by_code(code):
            raise InvalidArgument(f"Tenant code '{code}' already exists")

        tenant = Tenant(
            id=tenant_id or str(uuid.uuid4()),
            name=name,
            code=code,
            display_name=display_name or name,
            contact_email=contact_email
        )
        self.storage.save(self.TENANT_TABLE, tenant.id, tenant.to_dict())
        return tenant

    def get_tenant(self, tenant_id: str) -> Optional[Tenant]:
        data = self.storage.load(self.TENANT_TABLE, tenant_id)
        if data:
            return Tenant.from_dict(data)
        return None

    def get_tenant_by_code(self, code: str) -> Optional[Tenant]:
        tenants = self.storage.find(self.TENANT_TABLE, {'code': code})
        if tenants:
            return Tenant.from_dict(tenants[0])
        return None

    def list_tenants(self, is_active: Optional[bool] = None) -> List[Tenant]:
        """List all tenants, optionally filtered by active status"""
        filters = {}
        if is_active is not None:
            filters['is_active'] = is_active
        return [Tenant.from_dict(data) for data in self.storage.find(self.TENANT_TABLE, filters)]

    def set_active(self, tenant_id: str, is_active: bool) -> Optional[Tenant]:
        tenant = self.get_tenant(tenant_id)
        if not tenant:
            return None
        tenant.is_active = is_active
        tenant.updated_at = datetime.now(timezone.utc)
        self.storage.save(self.TENANT_TABLE, tenant.id, tenant.to_dict())
        return tenant
