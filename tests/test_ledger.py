"""
Test suite for the interest ledger store

Tests append-only semantics, the one-entry-per-period rule, ordering and
cascade delete on both storage backends.
"""

import os
import pytest
import tempfile
from decimal import Decimal
from datetime import datetime, timezone, date

from lending_ledger.currency import Money, Currency
from lending_ledger.errors import ConflictError
from lending_ledger.ledger import InterestLedger, InterestEntry, entry_id
from lending_ledger.loans import RateType
from lending_ledger.storage import InMemoryStorage, SQLiteStorage


def make_entry(loan_id="LOAN001", start=date(2024, 1, 1), end=date(2024, 2, 1),
               amount="2000.00", borrower_id="BORR001"):
    return InterestEntry(
        loan_id=loan_id,
        borrower_id=borrower_id,
        period_start=start,
        period_end=end,
        principal=Money(Decimal('100000'), Currency.INR),
        rate_percent=Decimal('2'),
        rate_type=RateType.MONTHLY,
        amount=Money(Decimal(amount), Currency.INR),
        created_at=datetime.now(timezone.utc)
    )


class TestInterestEntry:
    """Test entry identity and serialization"""

    def test_id_is_loan_and_period_start(self):
        entry = make_entry()

        assert entry.id == "LOAN001:2024-01-01"
        assert entry.id == entry_id("LOAN001", date(2024, 1, 1))

    def test_dict_round_trip_keeps_snapshots(self):
        """Test principal, rate and amount survive storage as exact decimals"""
        entry = make_entry(amount="933.33")
        restored = InterestEntry.from_dict(entry.to_dict())

        assert restored == entry
        assert restored.amount.amount == Decimal('933.33')
        assert restored.rate_percent == Decimal('2')


class TestInterestLedger:
    """Test the ledger store on in-memory storage"""

    def setup_method(self):
        self.storage = InMemoryStorage()
        self.ledger = InterestLedger(self.storage)

    def test_append_and_read(self):
        entry = make_entry()
        self.ledger.append(entry)

        assert self.ledger.entries_for("LOAN001") == [entry]
        assert entry.id == "LOAN001:2024-01-01"

    def test_duplicate_period_conflicts(self):
        """Test a second entry for the same period start is refused"""
        self.ledger.append(make_entry())

        with pytest.raises(ConflictError):
            self.ledger.append(make_entry(amount="3000.00"))

        # Original entry untouched
        assert [e.amount.amount for e in self.ledger.entries_for("LOAN001")] == [Decimal('2000.00')]

    def test_same_period_other_loan_allowed(self):
        self.ledger.append(make_entry(loan_id="LOAN001"))
        self.ledger.append(make_entry(loan_id="LOAN002"))

        assert len(self.ledger.entries_for("LOAN001")) == 1
        assert len(self.ledger.entries_for("LOAN002")) == 1

    def test_entries_ordered_by_period_start(self):
        """Test entries come back in period order regardless of insert order"""
        self.ledger.append(make_entry(start=date(2024, 3, 1), end=date(2024, 4, 1)))
        self.ledger.append(make_entry(start=date(2024, 1, 1), end=date(2024, 2, 1)))
        self.ledger.append(make_entry(start=date(2024, 2, 1), end=date(2024, 3, 1)))

        starts = [e.period_start for e in self.ledger.entries_for("LOAN001")]
        assert starts == [date(2024, 1, 1), date(2024, 2, 1), date(2024, 3, 1)]

    def test_latest_period_end(self):
        assert self.ledger.latest_period_end("LOAN001") is None

        self.ledger.append(make_entry(start=date(2024, 1, 1), end=date(2024, 2, 1)))
        self.ledger.append(make_entry(start=date(2024, 2, 1), end=date(2024, 3, 1)))

        assert self.ledger.latest_period_end("LOAN001") == date(2024, 3, 1)

    def test_delete_for_loan(self):
        """Test cascade delete removes only the loan's own entries"""
        self.ledger.append(make_entry(loan_id="LOAN001"))
        self.ledger.append(make_entry(loan_id="LOAN001", start=date(2024, 2, 1), end=date(2024, 3, 1)))
        self.ledger.append(make_entry(loan_id="LOAN002"))

        assert self.ledger.delete_for_loan("LOAN001") == 2
        assert self.ledger.entries_for("LOAN001") == []
        assert len(self.ledger.entries_for("LOAN002")) == 1
        assert self.ledger.delete_for_loan("LOAN001") == 0


class TestInterestLedgerSQLite:
    """Test the uniqueness rule against the SQLite backend"""

    def test_conflict_survives_reopen(self):
        """Test the idempotency key holds across connections"""
        with tempfile.TemporaryDirectory() as temp_dir:
            db_path = os.path.join(temp_dir, "ledger.db")

            storage = SQLiteStorage(db_path)
            InterestLedger(storage).append(make_entry())
            storage.close()

            storage = SQLiteStorage(db_path)
            ledger = InterestLedger(storage)
            with pytest.raises(ConflictError):
                ledger.append(make_entry())
            assert len(ledger.entries_for("LOAN001")) == 1
            storage.close()
