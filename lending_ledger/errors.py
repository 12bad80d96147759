"""Error kinds raised by the interest ledger."""


class LedgerError(Exception):
    """Base exception for all ledger errors."""


class InvalidRange(LedgerError):
    """Raised when date ordering is violated (e.g. as-of date before start)."""


class InvalidArgument(LedgerError, ValueError):
    """Raised for negative or NaN monetary and rate inputs."""


class ConflictError(LedgerError):
    """Raised when an interest entry already exists for a loan and period."""


class NotFound(LedgerError, LookupError):
    """Raised when a referenced loan, borrower, tenant or entry does not exist."""
