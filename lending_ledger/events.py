"""
Event System Module

Publish/subscribe dispatcher for ledger domain events. Reminder and summary
fan-out subscribe here instead of reaching into process-wide client lists.
"""

from enum import Enum
from typing import Callable, Dict, List, Any, Optional
from dataclasses import dataclass, field
from datetime import datetime, timezone
import uuid
import logging
from threading import RLock


class LedgerEvent(Enum):
    """Domain events emitted by the interest ledger"""

    # Loan events
    LOAN_REGISTERED = "loan.registered"
    LOAN_TERMS_CHANGED = "loan.terms_changed"
    LOAN_DELETED = "loan.deleted"

    # Ledger events
    INTEREST_MATERIALIZED = "interest.materialized"

    # Scheduler events
    ACCRUAL_RUN_STARTED = "accrual.run_started"
    ACCRUAL_RUN_COMPLETED = "accrual.run_completed"
    MONTHLY_SUMMARY_READY = "accrual.monthly_summary_ready"


@dataclass
class EventPayload:
    """Payload for domain events"""
    event_type: LedgerEvent
    entity_type: str
    entity_id: str
    data: Dict[str, Any]
    tenant_id: Optional[str] = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    event_id: str = field(default_factory=lambda: str(uuid.uuid4()))

    def to_dict(self) -> Dict[str, Any]:
        return {
            'event_type': self.event_type.value,
            'entity_type': self.entity_type,
            'entity_id': self.entity_id,
            'data': self.data,
            'tenant_id': self.tenant_id,
            'timestamp': self.timestamp.isoformat(),
            'event_id': self.event_id
        }


Handler = Callable[[EventPayload], None]


def _handler_name(handler: Handler) -> str:
    return getattr(handler, '__name__', repr(handler))


class EventDispatcher:
    """Central event dispatcher, publish/subscribe pattern"""

    def __init__(self):
        self._handlers: Dict[LedgerEvent, List[Handler]] = {}
        self._lock = RLock()
        self.logger = logging.getLogger("lending_ledger.events")

    def subscribe(self, event_type: LedgerEvent, handler: Handler) -> None:
        """Subscribe to a specific event type"""
        with self._lock:
            self._handlers.setdefault(event_type, []).append(handler)
            self.logger.debug(f"Subscribed handler {_handler_name(handler)} to {event_type.value}")

    def publish(self, event: EventPayload) -> None:
        """
        Deliver an event to its subscribers.

        A failing handler is logged and skipped; it never breaks the
        operation that published the event.
        """
        with self._lock:
            handlers = list(self._handlers.get(event.event_type, []))

        self.logger.debug(f"Publishing {event.event_type.value} for {event.entity_type}:{event.entity_id}")
        for handler in handlers:
            try:
                handler(event)
            except Exception as e:
                self.logger.error(
                    f"Error in event handler {_handler_name(handler)} for {event.event_type.value}: {e}",
                    exc_info=True
                )
