"""
Monthly Summary Notifications Module

After an accrual run the scheduler publishes, per tenant, the interest entries
it materialized. This module shapes them into the summary payload handed to
delivery channels. Rendering and e-mail delivery belong to the receiving side.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import date
from typing import Dict, List, Optional, Any, Iterable

import requests

from .events import EventDispatcher, EventPayload, LedgerEvent
from .ledger import InterestEntry
from .loans import LoanBook
from .logging_config import get_logger, log_action


@dataclass
class MonthlySummaryItem:
    """One newly materialized entry, as the borrower-facing summary lists it"""
    borrower_name: str
    principal_amount: str
    rate_percent: str
    interest_amount: str
    period_start: str
    period_end: str
    currency: str = "INR"

    def to_dict(self) -> Dict[str, Any]:
        return {
            'borrower_name': self.borrower_name,
            'principal_amount': self.principal_amount,
            'rate_percent': self.rate_percent,
            'interest_amount': self.interest_amount,
            'period_start': self.period_start,
            'period_end': self.period_end,
            'currency': self.currency
        }


@dataclass
class MonthlySummary:
    tenant_id: Optional[str]
    as_of: str
    items: List[MonthlySummaryItem] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'tenant_id': self.tenant_id,
            'as_of': self.as_of,
            'items': [item.to_dict() for item in self.items]
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'MonthlySummary':
        return cls(
            tenant_id=data.get('tenant_id'),
            as_of=data['as_of'],
            items=[MonthlySummaryItem(**item) for item in data.get('items', [])]
        )


def build_monthly_summary(tenant_id: Optional[str], as_of: date,
                          entries: Iterable[InterestEntry], loan_book: LoanBook) -> MonthlySummary:
    """
    Assemble the summary for one tenant.

    Must run inside the tenant's context so borrower lookups resolve.
    """
    names: Dict[str, str] = {}
    summary = MonthlySummary(tenant_id=tenant_id, as_of=as_of.isoformat())
    for entry in entries:
        if entry.borrower_id not in names:
            borrower = loan_book.get_borrower(entry.borrower_id)
            names[entry.borrower_id] = borrower.name if borrower else "Unknown borrower"
        summary.items.append(MonthlySummaryItem(
            borrower_name=names[entry.borrower_id],
            principal_amount=str(entry.principal.amount),
            rate_percent=str(entry.rate_percent),
            interest_amount=str(entry.amount.amount),
            period_start=entry.period_start.isoformat(),
            period_end=entry.period_end.isoformat(),
            currency=entry.amount.currency.code
        ))
    return summary


class SummaryChannel(ABC):
    """Destination for monthly summaries"""

    @abstractmethod
    def deliver(self, summary: MonthlySummary) -> bool:
        """Deliver a summary. Returns True if successful."""
        pass


class LogSummaryChannel(SummaryChannel):
    """Writes summaries to the ledger log"""

    def __init__(self, logger=None):
        self.logger = logger or get_logger("lending_ledger.notifications")

    def deliver(self, summary: MonthlySummary) -> bool:
        log_action(
            self.logger, "INFO",
            f"Monthly summary with {len(summary.items)} entries as of {summary.as_of}",
            tenant_id=summary.tenant_id,
            action="monthly_summary",
            resource="notification",
            extra=summary.to_dict()
        )
        return True


class WebhookSummaryChannel(SummaryChannel):
    """POSTs summaries as JSON to a collaborator endpoint"""

    def __init__(self, url: str, timeout: float = 10.0):
        self.url = url
        self.timeout = timeout
        self.logger = get_logger("lending_ledger.notifications")

    def deliver(self, summary: MonthlySummary) -> bool:
        try:
            response = requests.post(
                self.url,
                json=summary.to_dict(),
                timeout=self.timeout,
                headers={"Content-Type": "application/json"}
            )
        except requests.RequestException as e:
            self.logger.error(f"Summary webhook to {self.url} failed: {e}")
            return False

        if response.status_code >= 300:
            self.logger.warning(
                f"Summary webhook to {self.url} returned HTTP {response.status_code}"
            )
            return False
        return True


class MonthlySummaryNotifier:
    """Fans MONTHLY_SUMMARY_READY events out to the configured channels"""

    def __init__(self, channels: Optional[List[SummaryChannel]] = None):
        self.channels: List[SummaryChannel] = list(channels or [])
        self.logger = get_logger("lending_ledger.notifications")

    def add_channel(self, channel: SummaryChannel) -> None:
        self.channels.append(channel)

    def subscribe(self, dispatcher: EventDispatcher) -> None:
        dispatcher.subscribe(LedgerEvent.MONTHLY_SUMMARY_READY, self.handle)

    def handle(self, event: EventPayload) -> Dict[str, bool]:
        summary = MonthlySummary.from_dict(event.data)
        results = {}
        for channel in self.channels:
            results[type(channel).__name__] = channel.deliver(summary)
        failed = [name for name, ok in results.items() if not ok]
        if failed:
            self.logger.warning(
                f"Monthly summary for tenant {summary.tenant_id} not delivered via {', '.join(failed)}"
            )
        return results
