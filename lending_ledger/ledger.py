"""
Interest Ledger Module

Append-only store of materialized interest entries. There is at most one entry
per ``(loan_id, period_start)``; the record id is built from that pair, so the
storage backend's atomic insert enforces uniqueness.
"""

from dataclasses import dataclass
from datetime import datetime, date, timezone
from decimal import Decimal
from typing import Dict, List, Optional, Any

from .currency import Money, Currency
from .errors import ConflictError
from .loans import RateType
from .storage import StorageInterface


def entry_id(loan_id: str, period_start: date) -> str:
    return f"{loan_id}:{period_start.isoformat()}"


@dataclass(frozen=True)
class InterestEntry:
    """Interest materialized for one billing period of a loan"""
    loan_id: str
    borrower_id: str
    period_start: date
    period_end: date
    principal: Money  # snapshot used for the computation
    rate_percent: Decimal  # snapshot used for the computation
    rate_type: RateType
    amount: Money
    created_at: datetime

    @property
    def id(self) -> str:
        return entry_id(self.loan_id, self.period_start)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'loan_id': self.loan_id,
            'borrower_id': self.borrower_id,
            'period_start': self.period_start.isoformat(),
            'period_end': self.period_end.isoformat(),
            'principal': str(self.principal.amount),
            'rate_percent': str(self.rate_percent),
            'rate_type': self.rate_type.value,
            'amount': str(self.amount.amount),
            'currency': self.amount.currency.code,
            'created_at': self.created_at.isoformat()
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'InterestEntry':
        currency = Currency[data['currency']]
        return cls(
            loan_id=data['loan_id'],
            borrower_id=data['borrower_id'],
            period_start=date.fromisoformat(data['period_start']),
            period_end=date.fromisoformat(data['period_end']),
            principal=Money(Decimal(data['principal']), currency),
            rate_percent=Decimal(data['rate_percent']),
            rate_type=RateType(data['rate_type']),
            amount=Money(Decimal(data['amount']), currency),
            created_at=datetime.fromisoformat(data['created_at'])
        )


class InterestLedger:
    """System of record for materialized interest entries"""

    def __init__(self, storage: StorageInterface, table_name: str = "interest_entries"):
        self.storage = storage
        self.table_name = table_name

    def append(self, entry: InterestEntry) -> InterestEntry:
        """
        Store a new entry.

        Raises:
            ConflictError: If the loan already has an entry for this period start
        """
        if not self.storage.insert(self.table_name, entry.id, entry.to_dict()):
            raise ConflictError(
                f"Interest entry for loan {entry.loan_id} starting {entry.period_start} already exists"
            )
        return entry

    def entries_for(self, loan_id: str) -> List[InterestEntry]:
        """Entries of a loan ordered by period start"""
        entries = [
            InterestEntry.from_dict(data)
            for data in self.storage.find(self.table_name, {'loan_id': loan_id})
        ]
        entries.sort(key=lambda e: e.period_start)
        return entries

    def latest_period_end(self, loan_id: str) -> Optional[date]:
        entries = self.entries_for(loan_id)
        if entries:
            return entries[-1].period_end
        return None

    def delete_for_loan(self, loan_id: str) -> int:
        """Remove every entry of a loan, returning how many were removed"""
        removed = 0
        for data in self.storage.find(self.table_name, {'loan_id': loan_id}):
            if self.storage.delete(self.table_name, data['id']):
                removed += 1
        return removed
