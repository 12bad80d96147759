"""
Real-Time Projection Module

Accrued interest as of any date: materialized entries plus an estimate for the
open stretch after the last materialized period. The estimate is computed on
demand and never stored.
"""

from datetime import date

from .accrual import interest_for, unrounded_interest
from .currency import Money
from .errors import InvalidRange
from .ledger import InterestLedger, InterestEntry
from .loans import Loan


class InterestProjector:
    """Projects total accrued interest of a loan as of an arbitrary date"""

    def __init__(self, ledger: InterestLedger):
        self.ledger = ledger

    def accrued_interest(self, loan: Loan, as_of_date: date) -> Money:
        """
        Total interest accrued by ``loan`` over ``[start_date, as_of_date)``.

        Materialized entries ending on or before ``as_of_date`` count in
        full. An entry straddling ``as_of_date`` counts pro rata from its own
        snapshot. The stretch after the last materialized period is estimated
        with the current principal and rate.

        Raises:
            InvalidRange: If as_of_date precedes the loan's start date
        """
        if as_of_date < loan.start_date:
            raise InvalidRange(
                f"as_of_date {as_of_date} is before loan {loan.id} start date {loan.start_date}"
            )

        total = Money.zero(loan.currency)
        latest_end = None
        for entry in self.ledger.entries_for(loan.id):
            if entry.period_start >= as_of_date:
                break
            total = total + self._entry_share(entry, as_of_date)
            latest_end = entry.period_end

        open_start = latest_end or loan.start_date
        if open_start < as_of_date:
            total = total + interest_for(
                loan.principal, loan.interest_rate, loan.rate_type, open_start, as_of_date
            )
        return total

    @staticmethod
    def _entry_share(entry: InterestEntry, as_of_date: date) -> Money:
        if entry.period_end <= as_of_date:
            return entry.amount
        # as_of_date falls inside this entry's period
        portion = unrounded_interest(
            entry.principal, entry.rate_percent, entry.rate_type, entry.period_start, as_of_date
        )
        return Money(min(portion, entry.amount.amount), entry.amount.currency)
