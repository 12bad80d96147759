"""
Test suite for real-time interest projection
"""

import pytest
from decimal import Decimal
from datetime import date

from lending_ledger.backfill import BackfillEngine
from lending_ledger.errors import InvalidRange
from lending_ledger.ledger import InterestLedger
from lending_ledger.loans import LoanBook, LoanStatus, RateType
from lending_ledger.projection import InterestProjector
from lending_ledger.storage import InMemoryStorage


class TestInterestProjector:
    """Test accrued interest as of arbitrary dates"""

    def setup_method(self):
        self.storage = InMemoryStorage()
        self.loan_book = LoanBook(self.storage)
        self.ledger = InterestLedger(self.storage)
        self.engine = BackfillEngine(self.ledger)
        self.projector = InterestProjector(self.ledger)

        borrower = self.loan_book.add_borrower("Vikram Shah")
        self.loan = self.loan_book.create_loan(
            borrower.id, "100000", "2", RateType.MONTHLY, date(2024, 1, 1)
        )

    def test_materialized_plus_open_stretch(self):
        """Test 3 materialized months plus 14/30 of April"""
        self.engine.backfill(self.loan, date(2024, 4, 1))

        accrued = self.projector.accrued_interest(self.loan, date(2024, 4, 15))

        assert accrued.amount == Decimal('6933.33')

    def test_projection_without_entries(self):
        """Test the open stretch alone gives the same figure"""
        accrued = self.projector.accrued_interest(self.loan, date(2024, 4, 15))

        assert accrued.amount == Decimal('6933.33')

    def test_zero_at_start_date(self):
        assert self.projector.accrued_interest(self.loan, date(2024, 1, 1)).is_zero()

    def test_before_start_date(self):
        with pytest.raises(InvalidRange):
            self.projector.accrued_interest(self.loan, date(2023, 12, 31))

    def test_exactly_at_period_boundary(self):
        self.engine.backfill(self.loan, date(2024, 4, 1))

        assert self.projector.accrued_interest(self.loan, date(2024, 4, 1)).amount == Decimal('6000.00')

    def test_date_inside_materialized_period(self):
        """Test a materialized period is counted pro rata when the date falls inside it"""
        self.engine.backfill(self.loan, date(2024, 4, 1))

        accrued = self.projector.accrued_interest(self.loan, date(2024, 2, 15))

        # January in full plus 14 of February's 29 days: 2000 + 965.52
        assert accrued.amount == Decimal('2965.52')

    def test_open_stretch_uses_current_rate(self):
        """Test a rate edit shows up immediately in the unmaterialized stretch"""
        self.engine.backfill(self.loan, date(2024, 3, 1))
        loan = self.loan_book.update_loan(self.loan.id, interest_rate="3")

        accrued = self.projector.accrued_interest(loan, date(2024, 4, 1))

        assert accrued.amount == Decimal('7000.00')

    def test_settled_loan_keeps_open_stretch(self):
        """Test settling a loan does not discard interest earned since its last entry"""
        self.engine.backfill(self.loan, date(2024, 3, 1))
        loan = self.loan_book.update_loan(self.loan.id, status=LoanStatus.SETTLED)

        accrued = self.projector.accrued_interest(loan, date(2024, 3, 16))

        # Two materialized months plus 15 of March's 31 days: 4000 + 967.74
        assert accrued.amount == Decimal('4967.74')

    def test_settled_before_first_period_ends(self):
        self.engine.backfill(self.loan, date(2024, 1, 20))
        loan = self.loan_book.update_loan(self.loan.id, status=LoanStatus.SETTLED)

        accrued = self.projector.accrued_interest(loan, date(2024, 1, 20))

        # 19 of January's 31 days at 2000 a month
        assert accrued.amount == Decimal('1225.81')

    def test_monotone_in_time(self):
        self.engine.backfill(self.loan, date(2024, 4, 1))

        previous = None
        for day in range(1, 30):
            accrued = self.projector.accrued_interest(self.loan, date(2024, 2, day))
            if previous is not None:
                assert accrued >= previous
            previous = accrued
