"""Command validation package."""

from natillera.validation.validator import LedgerValidator

__all__ = ["LedgerValidator"]
