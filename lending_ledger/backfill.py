"""
Backfill Engine Module

Materializes every elapsed billing period of a loan that the ledger does not
hold yet. Safe to re-run: periods already present count as skipped.
"""

from dataclasses import dataclass, field
from datetime import datetime, date, timezone
from typing import Dict, List, Optional, Any

from .accrual import interest_for
from .audit import AuditTrail, AuditEventType
from .errors import ConflictError, InvalidRange, LedgerError
from .events import EventDispatcher, EventPayload, LedgerEvent
from .ledger import InterestLedger, InterestEntry
from .loans import Loan
from .logging_config import get_logger, log_action
from .periods import periods_between
from .tenancy import get_current_tenant


@dataclass
class BackfillResult:
    """Outcome of one backfill call for one loan"""
    loan_id: str
    created: int = 0
    skipped: int = 0
    errors: List[Dict[str, Any]] = field(default_factory=list)
    entries: List[InterestEntry] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors

    def to_dict(self) -> Dict[str, Any]:
        return {
            'loan_id': self.loan_id,
            'created': self.created,
            'skipped': self.skipped,
            'errors': list(self.errors)
        }


class BackfillEngine:
    """Brings a loan's materialized interest entries up to a date"""

    def __init__(
        self,
        ledger: InterestLedger,
        audit_trail: Optional[AuditTrail] = None,
        events: Optional[EventDispatcher] = None
    ):
        self.ledger = ledger
        self.audit_trail = audit_trail
        self.events = events
        self.logger = get_logger("lending_ledger.backfill")

    def backfill(self, loan: Loan, as_of_date: date) -> BackfillResult:
        """
        Materialize the full periods of ``loan`` that ended by ``as_of_date``

        Periods are priced with the loan's current principal and rate.
        Entries already present are counted as skipped. A period whose
        amount cannot be computed is reported in ``errors`` and stops the
        loan's backfill there, so materialized periods stay contiguous.

        Raises:
            InvalidRange: If as_of_date is before the loan's start date
        """
        if as_of_date < loan.start_date:
            raise InvalidRange(
                f"as_of_date {as_of_date} is before loan {loan.id} start date {loan.start_date}"
            )

        result = BackfillResult(loan_id=loan.id)
        effective_start = self.ledger.latest_period_end(loan.id) or loan.start_date
        if as_of_date < effective_start:
            # Already materialized past the requested date
            return result

        tenant_id = get_current_tenant()
        for period in periods_between(effective_start, as_of_date, loan.rate_type):
            try:
                amount = interest_for(
                    loan.principal, loan.interest_rate, loan.rate_type, period.start, period.end
                )
            except LedgerError as e:
                self._record_failure(loan, period.start, e, result, tenant_id)
                break

            entry = InterestEntry(
                loan_id=loan.id,
                borrower_id=loan.borrower_id,
                period_start=period.start,
                period_end=period.end,
                principal=loan.principal,
                rate_percent=loan.interest_rate,
                rate_type=loan.rate_type,
                amount=amount,
                created_at=datetime.now(timezone.utc)
            )
            try:
                self.ledger.append(entry)
            except ConflictError:
                result.skipped += 1
                continue

            result.created += 1
            result.entries.append(entry)
            self._announce(entry, tenant_id)

        if result.created or result.errors:
            log_action(
                self.logger, "INFO",
                f"Backfilled loan {loan.id} to {as_of_date}: "
                f"{result.created} created, {result.skipped} skipped, {len(result.errors)} errors",
                tenant_id=tenant_id,
                loan_id=loan.id,
                action="backfill",
                resource="interest_entry",
                extra=result.to_dict()
            )
        return result

    def _record_failure(self, loan: Loan, period_start: date, error: Exception,
                        result: BackfillResult, tenant_id: Optional[str]) -> None:
        result.errors.append({
            'loan_id': loan.id,
            'period_start': period_start.isoformat(),
            'error': str(error),
            'error_type': type(error).__name__
        })
        log_action(
            self.logger, "ERROR",
            f"Cannot compute interest for loan {loan.id} period starting {period_start}: {error}",
            tenant_id=tenant_id,
            loan_id=loan.id,
            action="backfill_failed",
            resource="interest_entry"
        )
        if self.audit_trail:
            self.audit_trail.log_event(
                AuditEventType.BACKFILL_FAILED,
                "loan",
                loan.id,
                {'period_start': period_start, 'error': str(error)},
                tenant_id=tenant_id
            )

    def _announce(self, entry: InterestEntry, tenant_id: Optional[str]) -> None:
        if self.audit_trail:
            self.audit_trail.log_event(
                AuditEventType.INTEREST_MATERIALIZED,
                "interest_entry",
                entry.id,
                {
                    'loan_id': entry.loan_id,
                    'period_start': entry.period_start,
                    'period_end': entry.period_end,
                    'amount': entry.amount.amount,
                    'rate_percent': entry.rate_percent
                },
                tenant_id=tenant_id
            )
        if self.events:
            self.events.publish(EventPayload(
                event_type=LedgerEvent.INTEREST_MATERIALIZED,
                entity_type="interest_entry",
                entity_id=entry.id,
                data=entry.to_dict(),
                tenant_id=tenant_id
            ))
