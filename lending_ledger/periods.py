"""
Billing Period Module

Pure calendar arithmetic for loan billing periods. Periods are half-open
``[start, end)`` intervals; a monthly period runs one calendar month from its
start and an annual period one calendar year. When the start day does not
exist in the target month the end clamps to that month's last day, and the
following period starts at the clamped date.
"""

import calendar
from dataclasses import dataclass
from datetime import date
from typing import List

from .errors import InvalidRange
from .loans import RateType


@dataclass(frozen=True)
class BillingPeriod:
    """A half-open billing period ``[start, end)``"""
    start: date
    end: date

    @property
    def days(self) -> int:
        return (self.end - self.start).days

    def contains(self, day: date) -> bool:
        return self.start <= day < self.end


def add_months(start: date, months: int) -> date:
    """Move ``months`` calendar months forward, clamping to the month end"""
    month_index = start.month - 1 + months
    year = start.year + month_index // 12
    month = month_index % 12 + 1
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, min(start.day, last_day))


def period_end_after(start: date, rate_type: RateType) -> date:
    """End of the full billing period beginning at ``start``"""
    if RateType(rate_type) == RateType.ANNUAL:
        return add_months(start, 12)
    return add_months(start, 1)


def periods_between(start_date: date, as_of_date: date, rate_type: RateType) -> List[BillingPeriod]:
    """
    Full billing periods from ``start_date`` that end on or before ``as_of_date``

    The trailing partial stretch between the last full period and
    ``as_of_date`` is not included.

    Raises:
        InvalidRange: If as_of_date is before start_date
    """
    if as_of_date < start_date:
        raise InvalidRange(f"as_of_date {as_of_date} is before start date {start_date}")

    periods: List[BillingPeriod] = []
    current = start_date
    while True:
        end = period_end_after(current, rate_type)
        if end > as_of_date:
            break
        periods.append(BillingPeriod(current, end))
        current = end
    return periods
