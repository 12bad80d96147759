"""
Test suite for the accrual scheduler

Tests the day-of-month gate, multi-tenant runs, partial-failure handling,
the single-run guard, summary publication and the background thread.
"""

import threading
import pytest
from decimal import Decimal
from datetime import datetime, timezone, date

from lending_ledger.audit import AuditTrail, AuditEventType
from lending_ledger.backfill import BackfillEngine
from lending_ledger.currency import Money, Currency
from lending_ledger.events import EventDispatcher, LedgerEvent
from lending_ledger.ledger import InterestLedger
from lending_ledger.loans import LoanBook, Loan, LoanStatus, RateType
from lending_ledger.scheduler import AccrualScheduler, RunTrigger, SchedulerState
from lending_ledger.storage import InMemoryStorage
from lending_ledger.tenancy import TenantAwareStorage, TenantManager, tenant_context


class SchedulerTestBase:

    def setup_method(self):
        self.raw_storage = InMemoryStorage()
        self.storage = TenantAwareStorage(self.raw_storage)
        self.tenant_manager = TenantManager(self.raw_storage)
        self.audit_trail = AuditTrail(self.raw_storage)
        self.events = EventDispatcher()
        self.loan_book = LoanBook(self.storage)
        self.ledger = InterestLedger(self.storage)
        self.engine = BackfillEngine(self.ledger, self.audit_trail, self.events)
        self.today = date(2024, 4, 1)

        self.summaries = []
        self.events.subscribe(LedgerEvent.MONTHLY_SUMMARY_READY, self.summaries.append)

        self.scheduler = AccrualScheduler(
            self.tenant_manager,
            self.loan_book,
            self.engine,
            audit_trail=self.audit_trail,
            events=self.events,
            clock=lambda: self.today
        )

    def add_loan(self, name="Ravi Kumar", principal="100000", start=date(2024, 1, 1), **kwargs):
        borrower = self.loan_book.add_borrower(name)
        return self.loan_book.create_loan(borrower.id, principal, "2", RateType.MONTHLY, start, **kwargs)


class TestSchedulerRuns(SchedulerTestBase):
    """Test accrual runs without registered tenants"""

    def test_tick_off_day_does_nothing(self):
        self.add_loan()

        assert self.scheduler.tick(date(2024, 4, 2)) is None
        assert self.scheduler.last_check is not None
        assert self.scheduler.last_result is None

    def test_tick_on_first_runs_accrual(self):
        loan = self.add_loan()

        result = self.scheduler.tick(date(2024, 4, 1))

        assert result.trigger == RunTrigger.SCHEDULED
        assert result.loans_processed == 1
        assert result.entries_created == 3
        assert len(self.ledger.entries_for(loan.id)) == 3
        assert self.scheduler.state == SchedulerState.IDLE

    def test_tick_uses_clock(self):
        self.add_loan()

        result = self.scheduler.tick()

        assert result.as_of == date(2024, 4, 1)

    def test_manual_run_any_day(self):
        """Test a manual trigger runs regardless of the day of month"""
        self.add_loan()

        result = self.scheduler.run_accrual(date(2024, 3, 17))

        assert result.trigger == RunTrigger.MANUAL
        assert result.entries_created == 2

    def test_repeat_run_is_idempotent(self):
        self.add_loan()
        self.scheduler.run_accrual(date(2024, 4, 1))

        second = self.scheduler.run_accrual(date(2024, 4, 1))

        assert second.loans_processed == 1
        assert second.entries_created == 0

    def test_inactive_and_future_loans_skipped(self):
        self.add_loan(name="Settled", status=LoanStatus.SETTLED)
        self.add_loan(name="Future", start=date(2024, 6, 1))
        active = self.add_loan(name="Active")

        result = self.scheduler.run_accrual(date(2024, 4, 1))

        assert result.loans_processed == 1
        assert result.loans_failed == 0
        assert len(self.ledger.entries_for(active.id)) == 3

    def test_corrupt_loan_does_not_abort_run(self):
        """Test one bad loan is counted and the others still accrue"""
        good = self.add_loan()
        now = datetime.now(timezone.utc)
        bad = Loan(
            id="BAD001",
            created_at=now,
            updated_at=now,
            borrower_id=good.borrower_id,
            principal=Money(Decimal('-1'), Currency.INR),
            interest_rate=Decimal('2'),
            rate_type=RateType.MONTHLY,
            start_date=date(2024, 1, 1)
        )
        self.storage.save(self.loan_book.loans_table, bad.id, LoanBook._loan_to_dict(bad))

        result = self.scheduler.run_accrual(date(2024, 4, 1))

        assert result.loans_failed == 1
        assert result.errors[0]['loan_id'] == "BAD001"
        assert len(self.ledger.entries_for(good.id)) == 3

    def test_concurrent_run_refused(self):
        """Test a trigger while a run is in progress returns None"""
        self.scheduler._run_lock.acquire()
        try:
            assert self.scheduler.run_accrual(date(2024, 4, 1)) is None
        finally:
            self.scheduler._run_lock.release()

    def test_run_audited(self):
        self.add_loan()
        result = self.scheduler.run_accrual(date(2024, 4, 1))

        started = self.audit_trail.get_events_by_type(AuditEventType.ACCRUAL_RUN_STARTED)
        completed = self.audit_trail.get_events_by_type(AuditEventType.ACCRUAL_RUN_COMPLETED)
        assert [e.entity_id for e in started] == [result.run_id]
        assert completed[0].metadata['entries_created'] == 3

    def test_summary_published(self):
        self.add_loan(name="Ravi Kumar")

        self.scheduler.run_accrual(date(2024, 2, 1))

        assert len(self.summaries) == 1
        items = self.summaries[0].data['items']
        assert items == [{
            'borrower_name': "Ravi Kumar",
            'principal_amount': "100000.00",
            'rate_percent': "2",
            'interest_amount': "2000.00",
            'period_start': "2024-01-01",
            'period_end': "2024-02-01",
            'currency': "INR"
        }]

    def test_no_summary_without_new_entries(self):
        self.add_loan()
        self.scheduler.run_accrual(date(2024, 2, 1))
        self.scheduler.run_accrual(date(2024, 2, 1))

        assert len(self.summaries) == 1

    def test_invalid_accrual_day(self):
        with pytest.raises(ValueError):
            AccrualScheduler(self.tenant_manager, self.loan_book, self.engine, accrual_day_of_month=31)


class TestSchedulerTenants(SchedulerTestBase):
    """Test runs across tenants"""

    def setup_method(self):
        super().setup_method()
        self.acme = self.tenant_manager.create_tenant("Acme Lending", "ACME")
        self.beta = self.tenant_manager.create_tenant("Beta Finance", "BETA")

    def test_every_active_tenant_processed(self):
        with tenant_context(self.acme.id):
            acme_loan = self.add_loan(name="Acme Borrower")
        with tenant_context(self.beta.id):
            beta_loan = self.add_loan(name="Beta Borrower", start=date(2024, 2, 1))

        result = self.scheduler.run_accrual(date(2024, 4, 1))

        assert result.tenants_processed == 2
        assert result.loans_processed == 2
        assert result.entries_created == 5
        with tenant_context(self.acme.id):
            assert len(self.ledger.entries_for(acme_loan.id)) == 3
            assert self.ledger.entries_for(beta_loan.id) == []

    def test_summary_per_tenant(self):
        with tenant_context(self.acme.id):
            self.add_loan(name="Acme Borrower")
        with tenant_context(self.beta.id):
            self.add_loan(name="Beta Borrower")

        self.scheduler.run_accrual(date(2024, 2, 1))

        by_tenant = {event.tenant_id: event.data for event in self.summaries}
        assert set(by_tenant) == {self.acme.id, self.beta.id}
        assert by_tenant[self.acme.id]['items'][0]['borrower_name'] == "Acme Borrower"
        assert by_tenant[self.beta.id]['items'][0]['borrower_name'] == "Beta Borrower"

    def test_inactive_tenant_skipped(self):
        with tenant_context(self.beta.id):
            loan = self.add_loan()
        self.tenant_manager.set_active(self.beta.id, False)

        result = self.scheduler.run_accrual(date(2024, 4, 1))

        assert result.tenants_processed == 1
        assert self.ledger.entries_for(loan.id) == []

    def test_untenanted_loans_still_accrue(self):
        """Test loans saved without a tenant are not dropped once tenants exist"""
        legacy = self.add_loan(name="Legacy Borrower")
        with tenant_context(self.acme.id):
            self.add_loan(name="Acme Borrower")

        result = self.scheduler.run_accrual(date(2024, 4, 1))

        assert result.tenants_processed == 2
        assert result.loans_processed == 2
        assert len(self.ledger.entries_for(legacy.id)) == 3
        by_tenant = {event.tenant_id: event.data for event in self.summaries}
        assert by_tenant[None]['items'][0]['borrower_name'] == "Legacy Borrower"

    def test_untenanted_settled_loan_skipped(self):
        legacy = self.add_loan(name="Legacy Borrower", status=LoanStatus.SETTLED)

        result = self.scheduler.run_accrual(date(2024, 4, 1))

        assert result.loans_processed == 0
        assert self.ledger.entries_for(legacy.id) == []


class TestSchedulerLifecycle(SchedulerTestBase):
    """Test the background thread and status reporting"""

    def test_status_when_not_started(self):
        status = self.scheduler.status()

        assert status.is_running is False
        assert status.is_scheduled is False
        assert status.next_check == "Not scheduled"
        assert status.to_dict()['state'] == "idle"

    def test_start_runs_immediately_and_stops(self):
        """Test the thread ticks on start and reports its next check"""
        self.add_loan()
        finished = threading.Event()
        self.events.subscribe(LedgerEvent.ACCRUAL_RUN_COMPLETED, lambda event: finished.set())

        self.scheduler.start()
        try:
            assert finished.wait(timeout=5.0)
            status = self.scheduler.status()
            assert status.is_scheduled is True
            assert status.next_check == "Within 24 hours"
            assert status.last_result.entries_created == 3
        finally:
            self.scheduler.stop()

        assert self.scheduler.status().next_check == "Not scheduled"

    def test_start_without_initial_tick(self):
        scheduler = AccrualScheduler(
            self.tenant_manager, self.loan_book, self.engine,
            run_on_start=False, clock=lambda: self.today
        )
        self.add_loan()

        scheduler.start()
        try:
            assert scheduler.is_scheduled
        finally:
            scheduler.stop()

        assert scheduler.last_result is None
