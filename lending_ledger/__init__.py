"""
Lending Ledger

Interest accrual ledger for a lending book: period arithmetic, idempotent
backfill of interest entries, real-time projection and pending-interest
reconciliation. All monetary math uses Decimal.
"""

__version__ = "1.0.0"
