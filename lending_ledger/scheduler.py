"""
Accrual Scheduler Module

A single background thread wakes once per interval (daily by default) and, on
the configured day of the month, backfills every active loan of every active
tenant. Runs are sequential and idempotent; an interrupted run is picked up
again by the next one.
"""

import threading
import uuid
from dataclasses import dataclass, field
from datetime import datetime, date, timezone
from enum import Enum
from typing import Callable, Dict, List, Optional, Any

from .audit import AuditTrail, AuditEventType
from .backfill import BackfillEngine
from .events import EventDispatcher, EventPayload, LedgerEvent
from .ledger import InterestEntry
from .loans import Loan, LoanBook, LoanStatus
from .logging_config import get_logger, log_action
from .notifications import build_monthly_summary
from .tenancy import TENANT_FIELD, TenantManager, tenant_context


class SchedulerState(Enum):
    IDLE = "idle"
    RUNNING = "running"


class RunTrigger(Enum):
    SCHEDULED = "scheduled"
    MANUAL = "manual"


@dataclass
class AccrualRunResult:
    """Outcome of one accrual run across all tenants"""
    run_id: str
    trigger: RunTrigger
    as_of: date
    started_at: datetime
    finished_at: Optional[datetime] = None
    tenants_processed: int = 0
    loans_processed: int = 0
    loans_failed: int = 0
    entries_created: int = 0
    entries_skipped: int = 0
    errors: List[Dict[str, Any]] = field(default_factory=list)
    new_entries: Dict[Optional[str], List[InterestEntry]] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'run_id': self.run_id,
            'trigger': self.trigger.value,
            'as_of': self.as_of.isoformat(),
            'started_at': self.started_at.isoformat(),
            'finished_at': self.finished_at.isoformat() if self.finished_at else None,
            'tenants_processed': self.tenants_processed,
            'loans_processed': self.loans_processed,
            'loans_failed': self.loans_failed,
            'entries_created': self.entries_created,
            'entries_skipped': self.entries_skipped,
            'errors': list(self.errors)
        }


@dataclass
class SchedulerStatus:
    is_running: bool  # an accrual run is in progress
    is_scheduled: bool  # the background thread is alive
    state: SchedulerState
    next_check: str
    last_check: Optional[datetime] = None
    last_result: Optional[AccrualRunResult] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'is_running': self.is_running,
            'is_scheduled': self.is_scheduled,
            'state': self.state.value,
            'next_check': self.next_check,
            'last_check': self.last_check.isoformat() if self.last_check else None,
            'last_result': self.last_result.to_dict() if self.last_result else None
        }


class AccrualScheduler:
    """Daily tick, monthly accrual run"""

    def __init__(
        self,
        tenant_manager: TenantManager,
        loan_book: LoanBook,
        engine: BackfillEngine,
        audit_trail: Optional[AuditTrail] = None,
        events: Optional[EventDispatcher] = None,
        accrual_day_of_month: int = 1,
        interval_seconds: float = 24 * 60 * 60,
        run_on_start: bool = True,
        publish_summaries: bool = True,
        clock: Callable[[], date] = date.today
    ):
        if not 1 <= accrual_day_of_month <= 28:
            raise ValueError("accrual_day_of_month must be between 1 and 28")
        self.tenant_manager = tenant_manager
        self.loan_book = loan_book
        self.engine = engine
        self.audit_trail = audit_trail
        self.events = events
        self.accrual_day_of_month = accrual_day_of_month
        self.interval_seconds = interval_seconds
        self.run_on_start = run_on_start
        self.publish_summaries = publish_summaries
        self.clock = clock

        self.state = SchedulerState.IDLE
        self.last_check: Optional[datetime] = None
        self.last_result: Optional[AccrualRunResult] = None
        self._run_lock = threading.Lock()
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self.logger = get_logger("lending_ledger.scheduler")

    # Lifecycle

    def start(self) -> None:
        """Start the background thread; ticks immediately when run_on_start is set"""
        if self.is_scheduled:
            self.logger.warning("Accrual scheduler already started")
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._loop, name="accrual-scheduler")
        self._thread.daemon = True
        self._thread.start()
        self.logger.info(f"Accrual scheduler started, checking every {self.interval_seconds}s")

    def stop(self, timeout: float = 5.0) -> None:
        self._stop_event.set()
        if self._thread:
            self._thread.join(timeout=timeout)
            self._thread = None
        self.logger.info("Accrual scheduler stopped")

    @property
    def is_scheduled(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    @property
    def is_running(self) -> bool:
        return self.state == SchedulerState.RUNNING

    def _loop(self) -> None:
        if self.run_on_start:
            self._safe_tick()
        while not self._stop_event.wait(self.interval_seconds):
            self._safe_tick()

    def _safe_tick(self) -> None:
        try:
            self.tick()
        except Exception as e:
            # Keep the thread alive; the next tick retries
            self.logger.error(f"Accrual scheduler tick failed: {e}", exc_info=True)

    # Runs

    def tick(self, today: Optional[date] = None) -> Optional[AccrualRunResult]:
        """Run the accrual if ``today`` is the accrual day of the month"""
        today = today or self.clock()
        self.last_check = datetime.now(timezone.utc)
        if today.day != self.accrual_day_of_month:
            self.logger.debug(f"No accrual due on {today}")
            return None
        return self.run_accrual(today, RunTrigger.SCHEDULED)

    def run_accrual(self, as_of: Optional[date] = None,
                    trigger: RunTrigger = RunTrigger.MANUAL) -> Optional[AccrualRunResult]:
        """
        Backfill every active loan of every active tenant up to ``as_of``.
        Loans saved without a tenant get a final pass of their own once
        tenants are registered.

        Per-loan failures are logged and counted; they never abort the run.

        Returns:
            The run result, or None if another run is already in progress
        """
        if not self._run_lock.acquire(blocking=False):
            self.logger.warning("Accrual run requested while another run is in progress")
            return None

        as_of = as_of or self.clock()
        result = AccrualRunResult(
            run_id=str(uuid.uuid4()),
            trigger=RunTrigger(trigger),
            as_of=as_of,
            started_at=datetime.now(timezone.utc)
        )
        try:
            self.state = SchedulerState.RUNNING
            self._record_run(AuditEventType.ACCRUAL_RUN_STARTED, LedgerEvent.ACCRUAL_RUN_STARTED, result)
            log_action(
                self.logger, "INFO",
                f"Accrual run {result.run_id} started ({result.trigger.value}) as of {as_of}",
                action="accrual_run_started",
                resource="accrual_run"
            )

            tenants = self.tenant_manager.list_tenants(is_active=True)
            if tenants:
                for tenant in tenants:
                    with tenant_context(tenant.id):
                        result.tenants_processed += 1
                        self._run_loans(tenant.id, self.loan_book.list_loans(status=LoanStatus.ACTIVE), result)
                self._run_untenanted(result)
            else:
                # Single-lender deployment without registered tenants
                result.tenants_processed += 1
                self._run_loans(None, self.loan_book.list_loans(status=LoanStatus.ACTIVE), result)

            result.finished_at = datetime.now(timezone.utc)
        finally:
            self.state = SchedulerState.IDLE
            self._run_lock.release()

        self.last_result = result
        self._record_run(AuditEventType.ACCRUAL_RUN_COMPLETED, LedgerEvent.ACCRUAL_RUN_COMPLETED, result)
        log_action(
            self.logger, "INFO",
            f"Accrual run {result.run_id} finished: {result.loans_processed} loans processed, "
            f"{result.loans_failed} failed, {result.entries_created} entries created",
            action="accrual_run_completed",
            resource="accrual_run",
            extra=result.to_dict()
        )
        self._publish_summaries(result)
        return result

    def _run_untenanted(self, result: AccrualRunResult) -> None:
        """Accrue active loans created before any tenant was registered"""
        loans = [
            self.loan_book.get_loan(record['id'])
            for record in self.loan_book.storage.load_all(self.loan_book.loans_table)
            if not record.get(TENANT_FIELD) and record.get('status') == LoanStatus.ACTIVE.value
        ]
        if not loans:
            return
        log_action(
            self.logger, "WARNING",
            f"{len(loans)} active loans have no tenant; accruing them without tenant context",
            action="untenanted_loans",
            resource="accrual_run",
            extra={'loan_ids': [loan.id for loan in loans]}
        )
        loans.sort(key=lambda loan: (loan.start_date, loan.id))
        self._run_loans(None, loans, result)

    def _run_loans(self, tenant_id: Optional[str], loans: List[Loan], result: AccrualRunResult) -> None:
        for loan in loans:
            if loan.start_date > result.as_of:
                continue
            try:
                outcome = self.engine.backfill(loan, result.as_of)
            except Exception as e:
                result.loans_failed += 1
                result.errors.append({
                    'tenant_id': tenant_id,
                    'loan_id': loan.id,
                    'error': str(e),
                    'error_type': type(e).__name__
                })
                log_action(
                    self.logger, "ERROR",
                    f"Accrual failed for loan {loan.id}: {e}",
                    tenant_id=tenant_id,
                    loan_id=loan.id,
                    action="accrual_failed",
                    resource="loan"
                )
                continue

            result.loans_processed += 1
            result.entries_created += outcome.created
            result.entries_skipped += outcome.skipped
            if outcome.errors:
                result.loans_failed += 1
                result.errors.extend(dict(error, tenant_id=tenant_id) for error in outcome.errors)
            if outcome.entries:
                result.new_entries.setdefault(tenant_id, []).extend(outcome.entries)

    def _record_run(self, audit_type: AuditEventType, event_type: LedgerEvent,
                    result: AccrualRunResult) -> None:
        if self.audit_trail:
            self.audit_trail.log_event(audit_type, "accrual_run", result.run_id, result.to_dict())
        if self.events:
            self.events.publish(EventPayload(
                event_type=event_type,
                entity_type="accrual_run",
                entity_id=result.run_id,
                data=result.to_dict()
            ))

    def _publish_summaries(self, result: AccrualRunResult) -> None:
        if not (self.events and self.publish_summaries):
            return
        for tenant_id, entries in result.new_entries.items():
            if tenant_id:
                with tenant_context(tenant_id):
                    summary = build_monthly_summary(tenant_id, result.as_of, entries, self.loan_book)
            else:
                summary = build_monthly_summary(None, result.as_of, entries, self.loan_book)
            self.events.publish(EventPayload(
                event_type=LedgerEvent.MONTHLY_SUMMARY_READY,
                entity_type="accrual_run",
                entity_id=result.run_id,
                data=summary.to_dict(),
                tenant_id=tenant_id
            ))

    # Status

    def next_check_hint(self) -> str:
        if not self.is_scheduled:
            return "Not scheduled"
        hours, seconds = divmod(int(self.interval_seconds), 3600)
        if seconds == 0:
            return f"Within {hours} hours"
        return f"Within {int(self.interval_seconds)} seconds"

    def status(self) -> SchedulerStatus:
        return SchedulerStatus(
            is_running=self.is_running,
            is_scheduled=self.is_scheduled,
            state=self.state,
            next_check=self.next_check_hint(),
            last_check=self.last_check,
            last_result=self.last_result
        )
