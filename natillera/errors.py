"""
Error taxonomy for the ledger core.

- ValidationError: bad input (non-positive amount, payment exceeding the
  outstanding balance, ...). Returned to the caller, never retried.
- NotFoundError: a record, movement, loan or batch does not exist.
- ConsistencyError: the command would violate an invariant.
- StoreError: the underlying record store failed. Engines never swallow it;
  the enclosing transaction is rolled back before it propagates.
"""

from typing import Any, Optional


class NatilleraError(Exception):
    """Base exception for all ledger errors."""


class ValidationError(NatilleraError):
    """Command input failed validation."""

    def __init__(self, message: str, issues: Optional[list] = None):
        self.issues = issues or []
        super().__init__(message)


class NotFoundError(NatilleraError):
    """A referenced entity does not exist."""

    def __init__(self, entity: str, key: Any):
        self.entity = entity
        self.key = key
        super().__init__(f"{entity} not found: {key}")


class ConsistencyError(NatilleraError):
    """The command would break a ledger invariant."""


class StoreError(NatilleraError):
    """Base exception for record store failures."""


class StoreConnectionError(StoreError):
    """Could not connect to the storage backend."""


class DuplicateError(StoreError):
    """Attempted to insert a duplicate entity."""
