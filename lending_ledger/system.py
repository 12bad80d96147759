"""
Ledger System Module

Wires storage, tenancy, audit, events, the loan book and the ledger
components together and exposes the operations collaborators call: loan
registration and edits, pending-interest queries, the tenant dashboard and
scheduler control.
"""

from datetime import date
from typing import Any, Callable, Dict, Optional, Tuple

from .audit import AuditTrail, AuditEventType
from .backfill import BackfillEngine, BackfillResult
from .config import LedgerConfig, get_config
from .currency import Currency
from .errors import InvalidArgument, NotFound
from .events import EventDispatcher, EventPayload, LedgerEvent
from .ledger import InterestLedger
from .loans import LoanBook, Loan, Borrower, Payment, RateType, PaymentType, parse_date
from .logging_config import get_logger, log_action
from .notifications import MonthlySummaryNotifier, LogSummaryChannel, WebhookSummaryChannel
from .projection import InterestProjector
from .reconciliation import Reconciler, PendingInterestResult, DashboardSummary
from .scheduler import AccrualScheduler, AccrualRunResult, SchedulerStatus, RunTrigger
from .storage import StorageInterface, create_storage
from .tenancy import TenantAwareStorage, TenantManager, Tenant, get_current_tenant, tenant_context


class LedgerSystem:
    """Interest accrual ledger with all components initialized"""

    def __init__(
        self,
        config: Optional[LedgerConfig] = None,
        storage: Optional[StorageInterface] = None,
        clock: Callable[[], date] = date.today
    ):
        self.config = config or get_config()
        self.clock = clock
        self.logger = get_logger("lending_ledger.system")

        # Tenant registry and audit chain span tenants, so they use the raw storage
        self.raw_storage = storage or create_storage(self.config.database_url)
        self.storage = TenantAwareStorage(self.raw_storage)

        self.currency = Currency[self.config.default_currency]
        self.tenant_manager = TenantManager(self.raw_storage)
        self.audit_trail = AuditTrail(self.raw_storage, enabled=self.config.enable_audit_logging)
        self.events = EventDispatcher()

        self.loan_book = LoanBook(self.storage, self.currency)
        self.ledger = InterestLedger(self.storage)
        self.backfill_engine = BackfillEngine(self.ledger, self.audit_trail, self.events)
        self.projector = InterestProjector(self.ledger)
        self.reconciler = Reconciler(self.projector, self.currency)
        self.scheduler = AccrualScheduler(
            self.tenant_manager,
            self.loan_book,
            self.backfill_engine,
            audit_trail=self.audit_trail,
            events=self.events,
            accrual_day_of_month=self.config.accrual_day_of_month,
            interval_seconds=self.config.scheduler_interval_seconds,
            run_on_start=self.config.scheduler_run_on_start,
            publish_summaries=self.config.enable_monthly_summaries,
            clock=clock
        )

        self.notifier = MonthlySummaryNotifier()
        if self.config.enable_monthly_summaries:
            self.notifier.add_channel(LogSummaryChannel())
            if self.config.summary_webhook_url:
                self.notifier.add_channel(WebhookSummaryChannel(
                    self.config.summary_webhook_url,
                    timeout=self.config.summary_webhook_timeout
                ))
            self.notifier.subscribe(self.events)

    # Tenants and borrowers

    def create_tenant(self, name: str, code: str, **kwargs) -> Tenant:
        return self.tenant_manager.create_tenant(name, code, **kwargs)

    def add_borrower(self, name: str, email: str = "", phone: str = "") -> Borrower:
        return self.loan_book.add_borrower(name, email=email, phone=phone)

    # Loans

    def create_loan(
        self,
        borrower_id: str,
        principal: Any,
        interest_rate: Any,
        rate_type: RateType,
        start_date: date,
        as_of: Optional[date] = None,
        notes: str = ""
    ) -> Tuple[Loan, BackfillResult]:
        """
        Create a loan and materialize its history up to ``as_of`` (today by default)

        Raises:
            NotFound: If the borrower does not exist
            InvalidArgument: For negative principal or rate
        """
        loan = self.loan_book.create_loan(
            borrower_id, principal, interest_rate, rate_type, start_date, notes=notes
        )
        self._announce(AuditEventType.LOAN_REGISTERED, LedgerEvent.LOAN_REGISTERED, loan, {
            'borrower_id': loan.borrower_id,
            'principal': loan.principal.amount,
            'interest_rate': loan.interest_rate,
            'rate_type': loan.rate_type,
            'start_date': loan.start_date
        })
        return loan, self.register_loan(loan.id, as_of)

    def register_loan(self, loan_id: str, as_of: Optional[date] = None) -> BackfillResult:
        """
        Synchronously backfill a loan's interest entries to ``as_of``.

        A loan that starts after ``as_of`` has nothing to materialize yet.
        """
        loan = self.loan_book.require_loan(loan_id)
        as_of = as_of or self.clock()
        if loan.start_date > as_of:
            return BackfillResult(loan_id=loan.id)
        return self.backfill_engine.backfill(loan, as_of)

    def update_loan(self, loan_id: str, as_of: Optional[date] = None, **changes) -> BackfillResult:
        """
        Edit a loan's terms or status, then backfill with the new terms.

        Entries already materialized are left untouched; only periods after
        the latest entry use the edited principal and rate.

        Raises:
            InvalidArgument: If the start date is moved once interest has
                been materialized
        """
        before = self.loan_book.require_loan(loan_id)
        if 'start_date' in changes and self.ledger.latest_period_end(loan_id):
            new_start = parse_date(changes['start_date'])
            if new_start != before.start_date:
                log_action(
                    self.logger, "WARNING",
                    f"Rejected start date change of loan {loan_id} after interest was materialized",
                    tenant_id=get_current_tenant(),
                    loan_id=loan_id,
                    action="loan_start_date_rejected",
                    resource="loan",
                    extra={'start_date': before.start_date.isoformat(), 'requested': new_start.isoformat()}
                )
                raise InvalidArgument(
                    f"Cannot move start date of loan {loan_id} from {before.start_date} "
                    f"to {new_start}: interest entries already exist"
                )

        loan = self.loan_book.update_loan(loan_id, **changes)
        self._announce(AuditEventType.LOAN_TERMS_CHANGED, LedgerEvent.LOAN_TERMS_CHANGED, loan, {
            'before': self._terms(before),
            'after': self._terms(loan)
        })

        if not loan.is_active:
            return BackfillResult(loan_id=loan.id)
        return self.register_loan(loan.id, as_of)

    def delete_loan(self, loan_id: str) -> int:
        """Delete a loan with its payments and interest entries; returns entries removed"""
        loan = self.loan_book.require_loan(loan_id)
        with self.storage.atomic():
            removed = self.ledger.delete_for_loan(loan.id)
            self.loan_book.delete_loan(loan.id)
        self._announce(AuditEventType.LOAN_DELETED, LedgerEvent.LOAN_DELETED, loan, {
            'entries_removed': removed
        })
        return removed

    def record_payment(self, loan_id: str, amount: Any, payment_date: date,
                       payment_type: PaymentType, **kwargs) -> Payment:
        return self.loan_book.record_payment(loan_id, amount, payment_date, payment_type, **kwargs)

    # Queries

    def pending_interest_for_loan(self, loan_id: str,
                                  till_date: Optional[date] = None) -> PendingInterestResult:
        """
        Raises:
            NotFound: If the loan does not exist
            InvalidRange: If till_date precedes the loan's start date
        """
        loan = self.loan_book.require_loan(loan_id)
        till_date = till_date or self.clock()
        return self.reconciler.pending_interest(loan, self.loan_book.list_payments(loan.id), till_date)

    def pending_interest_for_borrower(self, borrower_id: str,
                                      till_date: Optional[date] = None) -> PendingInterestResult:
        if not self.loan_book.get_borrower(borrower_id):
            raise NotFound(f"Borrower {borrower_id} not found")
        till_date = till_date or self.clock()
        loans = self.loan_book.list_loans(borrower_id=borrower_id)
        payments = self.loan_book.payments_for_loans(loans)
        return self.reconciler.pending_interest_for_borrower(
            loans, payments, till_date, borrower_id=borrower_id
        )

    def dashboard(self, tenant_id: Optional[str] = None,
                  as_of: Optional[date] = None) -> DashboardSummary:
        """
        Lending totals for a tenant, or for the current context when no
        tenant is given.

        Raises:
            NotFound: If the tenant does not exist
        """
        as_of = as_of or self.clock()
        if tenant_id is None:
            return self._dashboard(get_current_tenant(), as_of)
        if not self.tenant_manager.get_tenant(tenant_id):
            raise NotFound(f"Tenant {tenant_id} not found")
        with tenant_context(tenant_id):
            return self._dashboard(tenant_id, as_of)

    def _dashboard(self, tenant_id: Optional[str], as_of: date) -> DashboardSummary:
        loans = self.loan_book.list_loans()
        return self.reconciler.dashboard(tenant_id, loans, self.loan_book.list_payments(), as_of)

    # Scheduler

    def trigger_accrual_run(self, as_of: Optional[date] = None) -> Optional[AccrualRunResult]:
        return self.scheduler.run_accrual(as_of, RunTrigger.MANUAL)

    def scheduler_status(self) -> SchedulerStatus:
        return self.scheduler.status()

    def start(self) -> None:
        self.scheduler.start()

    def stop(self) -> None:
        self.scheduler.stop()

    def close(self) -> None:
        self.scheduler.stop()
        self.raw_storage.close()

    def verify_audit_integrity(self) -> Dict[str, Any]:
        return self.audit_trail.verify_integrity()

    # Helpers

    @staticmethod
    def _terms(loan: Loan) -> Dict[str, Any]:
        return {
            'principal': loan.principal.amount,
            'interest_rate': loan.interest_rate,
            'rate_type': loan.rate_type,
            'start_date': loan.start_date,
            'status': loan.status
        }

    def _announce(self, audit_type: AuditEventType, event_type: LedgerEvent,
                  loan: Loan, metadata: Dict[str, Any]) -> None:
        tenant_id = get_current_tenant()
        self.audit_trail.log_event(audit_type, "loan", loan.id, metadata, tenant_id=tenant_id)
        self.events.publish(EventPayload(
            event_type=event_type,
            entity_type="loan",
            entity_id=loan.id,
            data={'loan_id': loan.id, 'borrower_id': loan.borrower_id},
            tenant_id=tenant_id
        ))
        log_action(
            self.logger, "INFO",
            f"{event_type.value} for loan {loan.id}",
            tenant_id=tenant_id,
            loan_id=loan.id,
            action=audit_type.value,
            resource="loan"
        )
