"""
Currency and Money Module

Fixed-point monetary amounts for the interest ledger. NEVER uses float for
monetary values; amounts are rounded half up to the currency precision.
"""

from decimal import Decimal, ROUND_HALF_UP, InvalidOperation, getcontext
from dataclasses import dataclass
from enum import Enum
from typing import Union
import re

from .errors import InvalidArgument

# Set global decimal context for financial precision
getcontext().prec = 28


class Currency(Enum):
    """ISO 4217 Currency Codes with precision info"""
    INR = ("INR", 2)  # Indian Rupee
    USD = ("USD", 2)  # US Dollar
    EUR = ("EUR", 2)  # Euro
    GBP = ("GBP", 2)  # British Pound
    JPY = ("JPY", 0)  # Japanese Yen, no minor unit

    def __init__(self, code: str, precision: int):
        self.code = code
        self.precision = precision

    @property
    def quantum(self) -> Decimal:
        return Decimal('0.1') ** self.precision


@dataclass(frozen=True)
class Money:
    """
    Immutable money representation with currency and proper precision.
    The amount is quantized on construction, so every Money is already rounded.
    """
    amount: Decimal
    currency: Currency

    def __post_init__(self):
        amount = self.amount
        if not isinstance(amount, Decimal):
            if isinstance(amount, float):
                raise InvalidArgument("Money amounts must not be created from float")
            amount = to_decimal(amount)
        if not amount.is_finite():
            raise InvalidArgument(f"Money amount must be finite, got {amount}")

        object.__setattr__(
            self, 'amount',
            amount.quantize(self.currency.quantum, rounding=ROUND_HALF_UP)
        )

    @classmethod
    def zero(cls, currency: Currency) -> 'Money':
        return cls(Decimal('0'), currency)

    def _check_currency(self, other: 'Money', verb: str) -> None:
        if self.currency != other.currency:
            raise InvalidArgument(f"Cannot {verb} {self.currency.code} and {other.currency.code}")

    def __add__(self, other: 'Money') -> 'Money':
        self._check_currency(other, "add")
        return Money(self.amount + other.amount, self.currency)

    def __sub__(self, other: 'Money') -> 'Money':
        self._check_currency(other, "subtract")
        return Money(self.amount - other.amount, self.currency)

    def __eq__(self, other) -> bool:
        if not isinstance(other, Money):
            return False
        return self.amount == other.amount and self.currency == other.currency

    def __hash__(self) -> int:
        return hash((self.amount, self.currency))

    def __lt__(self, other: 'Money') -> bool:
        self._check_currency(other, "compare")
        return self.amount < other.amount

    def __le__(self, other: 'Money') -> bool:
        self._check_currency(other, "compare")
        return self.amount <= other.amount

    def __gt__(self, other: 'Money') -> bool:
        self._check_currency(other, "compare")
        return self.amount > other.amount

    def __ge__(self, other: 'Money') -> bool:
        self._check_currency(other, "compare")
        return self.amount >= other.amount

    def is_zero(self) -> bool:
        return self.amount == Decimal('0')

    def is_negative(self) -> bool:
        return self.amount < Decimal('0')


def to_decimal(value: Union[Decimal, int, str]) -> Decimal:
    """
    Convert a Decimal, int or numeric string to Decimal.

    Floats are rejected rather than silently converted.

    Raises:
        InvalidArgument: If the value cannot be represented as a Decimal
    """
    if isinstance(value, Decimal):
        return value
    if isinstance(value, bool) or isinstance(value, float):
        raise InvalidArgument(f"Expected Decimal, int or str, got {type(value).__name__}")
    if isinstance(value, int):
        return Decimal(value)
    if isinstance(value, str):
        return decimal_from_string(value)
    raise InvalidArgument(f"Cannot convert {type(value).__name__} to Decimal")


def decimal_from_string(value: str) -> Decimal:
    """
    Safely convert string to Decimal, handling common formats

    Args:
        value: String representation of number, e.g. "1,00,000.50" or "₹ 2000"

    Returns:
        Decimal value

    Raises:
        InvalidArgument: If string cannot be converted to valid Decimal
    """
    if not value or not isinstance(value, str):
        raise InvalidArgument("Value must be a non-empty string")

    stripped = value.strip()
    if stripped.lower() in ("nan", "snan", "inf", "infinity", "-inf", "-infinity"):
        return Decimal(stripped)

    # Remove currency symbols and whitespace
    clean_value = re.sub(r'[^\d.,\-+]', '', stripped)

    if ',' in clean_value and '.' in clean_value:
        # Both comma and dot - comma is a grouping separator
        clean_value = clean_value.replace(',', '')
    elif ',' in clean_value:
        parts = clean_value.split(',')
        if len(parts) == 2 and len(parts[1]) <= 2:
            # Single comma with one or two trailing digits - decimal separator
            clean_value = clean_value.replace(',', '.')
        else:
            clean_value = clean_value.replace(',', '')

    try:
        return Decimal(clean_value)
    except InvalidOperation as e:
        raise InvalidArgument(f"Cannot convert '{value}' to Decimal") from e
