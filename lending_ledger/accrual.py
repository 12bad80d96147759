"""
Accrual Module

Simple interest for a stretch of time. A full billing period earns
``principal * rate / 100``; a partial period is prorated by elapsed days over
the days of the full period that begins at the same date. Arithmetic stays in
Decimal and the result is rounded once, half up, to the currency precision.
"""

from datetime import date
from decimal import Decimal

from .currency import Money, to_decimal
from .errors import InvalidArgument, InvalidRange
from .loans import RateType
from .periods import period_end_after

HUNDRED = Decimal('100')


def _validate_inputs(principal: Money, rate_percent: Decimal) -> None:
    if principal.is_negative():
        raise InvalidArgument(f"Principal cannot be negative: {principal.amount}")
    if not rate_percent.is_finite():
        raise InvalidArgument(f"Interest rate must be finite, got {rate_percent}")
    if rate_percent < Decimal('0'):
        raise InvalidArgument(f"Interest rate cannot be negative: {rate_percent}")


def unrounded_interest(
    principal: Money,
    rate_percent: Decimal,
    rate_type: RateType,
    period_start: date,
    period_end: date
) -> Decimal:
    """Interest for ``[period_start, period_end)`` before rounding"""
    rate_percent = to_decimal(rate_percent)
    _validate_inputs(principal, rate_percent)
    if period_end < period_start:
        raise InvalidRange(f"Period end {period_end} is before period start {period_start}")

    per_period = principal.amount * rate_percent / HUNDRED
    total = Decimal('0')
    cursor = period_start
    while cursor < period_end:
        full_end = period_end_after(cursor, rate_type)
        if full_end <= period_end:
            total += per_period
            cursor = full_end
            continue
        elapsed = Decimal((period_end - cursor).days)
        full_days = Decimal((full_end - cursor).days)
        total += per_period * elapsed / full_days
        break
    return total


def interest_for(
    principal: Money,
    rate_percent: Decimal,
    rate_type: RateType,
    period_start: date,
    period_end: date
) -> Money:
    """
    Interest earned by ``principal`` over ``[period_start, period_end)``

    Args:
        principal: Outstanding principal
        rate_percent: Percentage per rate period, e.g. Decimal('2') for 2%
        rate_type: Whether the rate is per month or per year
        period_start: First day of the stretch
        period_end: Exclusive end of the stretch

    Returns:
        Money in the principal's currency, rounded half up once

    Raises:
        InvalidArgument: For negative or NaN principal or rate
        InvalidRange: If period_end is before period_start
    """
    return Money(
        unrounded_interest(principal, rate_percent, rate_type, period_start, period_end),
        principal.currency
    )
