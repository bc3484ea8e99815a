"""
Typed failures surfaced by the ledger services.

Domain errors (``LedgerError`` subclasses) mean the request was invalid or
denied. ``StorageUnavailableError`` means the store could not be reached;
it deliberately does not share the domain base class so callers can tell
the two apart.
"""
from typing import Any, Dict, Optional


class LedgerError(Exception):
    """Base exception for quota and analysis ledger errors."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        self.details = details or {}
        super().__init__(message)


class ValidationError(LedgerError):
    """Malformed or out-of-range input."""
    pass


class NotFoundError(LedgerError):
    """A referenced user, analysis or suggestion does not resolve."""
    pass


class QuotaExceededError(LedgerError):
    """Admission denied: the weekly analysis limit has been reached."""
    pass


class AlreadyCompletedError(LedgerError):
    """Completion attempted on an analysis that is already completed."""
    pass


class ConcurrentModificationError(LedgerError):
    """A concurrent writer changed the record between read and write."""
    pass


class StorageUnavailableError(Exception):
    """The durable store could not be reached or failed mid-operation."""
    pass
