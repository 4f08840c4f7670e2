"""
Cash Ledger ("caja central")

DESIGN DECISION: The balance is a materialized running total. Each movement
stores prior and resulting balance; the current balance is the resulting
balance of the movement with the highest sequence. Nothing ever re-sums the
ledger to get the balance.

History is never edited. Corrections append a compensating movement of the
opposite kind (a reversal) that points back at the original.

Two levels of API:
- append/reverse/record_expense: public commands. Each opens its own
  transaction and emits audit events once it has committed.
- record_movement/record_reversal: building blocks for the other engines.
  They join the caller's transaction and add their audit events to the
  caller's list, so the caller logs everything after its own commit.
"""

from datetime import date
from decimal import Decimal
from typing import Optional
from uuid import UUID

import structlog

from natillera.audit import AuditLogger
from natillera.errors import ConsistencyError, NotFoundError
from natillera.models.audit import AuditEvent, AuditEventBuilder
from natillera.models.common import ZERO, as_decimal
from natillera.models.ledger import (
    REVERSAL_PREFIX,
    CashStatement,
    Movement,
    MovementCategory,
    MovementKind,
)
from natillera.services.storage import RecordStore
from natillera.validation import LedgerValidator


logger = structlog.get_logger(__name__)

CONCEPT_MAX_LENGTH = 300

# Movements whose source record lives in another engine, with the command
# that reverses both together.
ENGINE_OWNED_CATEGORIES = {
    MovementCategory.LATE_FEE: "reverse_payment",
    MovementCategory.LOAN_PAYMENT: "amend_loan_movement",
    MovementCategory.LOAN_DISBURSEMENT: "accrue_and_apply with a full payment",
    MovementCategory.SETTLEMENT_PAYOUT: "revert",
}


class CashLedger:
    """Single running cash balance of the fund."""

    def __init__(
        self,
        store: RecordStore,
        validator: Optional[LedgerValidator] = None,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._store = store
        self._validator = validator or LedgerValidator()
        self._audit = audit_logger or AuditLogger()

    # =========================================================================
    # Queries
    # =========================================================================

    async def current_balance(self) -> Decimal:
        """Resulting balance of the latest movement, 0 for an empty ledger."""
        latest = await self._store.movements.get_latest_movement()
        return latest.resulting_balance if latest else ZERO

    async def get_movement(self, movement_id: UUID) -> Movement:
        movement = await self._store.movements.get_movement(movement_id)
        if movement is None:
            raise NotFoundError("Movement", movement_id)
        return movement

    async def list_movements(
        self,
        kind: Optional[MovementKind] = None,
        category: Optional[MovementCategory] = None,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
        limit: Optional[int] = None,
    ) -> list[Movement]:
        """Movements matching the filters, newest first."""
        movements = await self._store.movements.list_movements(
            kind=kind,
            category=category,
            date_from=date_from,
            date_to=date_to,
        )
        movements.reverse()
        return movements[:limit] if limit is not None else movements

    async def statement(
        self,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
    ) -> CashStatement:
        """
        Balance plus income/expense totals for a date range.

        The balance is always the stored current balance, whatever the range.
        """
        movements = await self._store.movements.list_movements(
            date_from=date_from,
            date_to=date_to,
        )
        income = [m for m in movements if m.kind is MovementKind.INCOME]
        expenses = [m for m in movements if m.kind is MovementKind.EXPENSE]
        return CashStatement(
            balance=await self.current_balance(),
            total_income=sum((m.amount for m in income), ZERO),
            total_expenses=sum((m.amount for m in expenses), ZERO),
            operating_expenses=sum(
                (-m.amount if m.is_reversal else m.amount for m in movements
                 if m.category is MovementCategory.OPERATING_EXPENSE),
                ZERO,
            ),
            movement_count=len(movements),
            date_from=date_from,
            date_to=date_to,
        )

    async def category_total(
        self,
        category: MovementCategory,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
    ) -> Decimal:
        """Net amount of a category: originals minus their reversals."""
        movements = await self._store.movements.list_movements(
            category=category,
            date_from=date_from,
            date_to=date_to,
        )
        return sum(
            (-m.amount if m.is_reversal else m.amount for m in movements),
            ZERO,
        )

    # =========================================================================
    # Building blocks (join the caller's transaction)
    # =========================================================================

    async def record_movement(
        self,
        kind: MovementKind,
        concept: str,
        amount: Decimal,
        movement_date: date,
        events: list[AuditEvent],
        reference_id: Optional[str] = None,
        category: MovementCategory = MovementCategory.OTHER,
        reverses_id: Optional[UUID] = None,
    ) -> Movement:
        """
        Append a movement computed from the current balance.

        Raises:
            ValidationError: If amount <= 0
        """
        amount = as_decimal(amount)
        async with self._store.transaction():
            prior_balance = await self.current_balance()
            result = self._validator.ensure_valid(
                self._validator.validate_movement(
                    kind, amount, movement_date, prior_balance, concept=concept
                )
            )
            if result.warnings:
                logger.warning("movement_warnings", concept=concept, warnings=result.warnings)

            resulting_balance = (
                prior_balance + amount if kind is MovementKind.INCOME else prior_balance - amount
            )
            movement = await self._store.movements.append_movement(Movement(
                kind=kind,
                category=category,
                concept=concept[:CONCEPT_MAX_LENGTH],
                amount=amount,
                prior_balance=prior_balance,
                resulting_balance=resulting_balance,
                movement_date=movement_date,
                reference_id=reference_id,
                reverses_id=reverses_id,
            ))

        logger.debug(
            "movement_recorded",
            movement_id=str(movement.id),
            sequence=movement.sequence,
            kind=kind.value,
            amount=str(amount),
            resulting_balance=str(resulting_balance),
        )
        events.append(AuditEventBuilder.movement_appended(
            movement_id=movement.id,
            kind=kind.value,
            category=category.value,
            amount=amount,
            resulting_balance=resulting_balance,
        ))
        return movement

    async def record_reversal(
        self,
        movement_id: UUID,
        events: list[AuditEvent],
        movement_date: Optional[date] = None,
        concept: Optional[str] = None,
    ) -> Movement:
        """
        Append the compensating movement of `movement_id`.

        Raises:
            NotFoundError: If the movement doesn't exist
            ConsistencyError: If it is a reversal itself or was already reversed
        """
        async with self._store.transaction():
            original = await self.get_movement(movement_id)
            if original.is_reversal:
                raise ConsistencyError(f"Movement {movement_id} is a reversal and cannot be reversed")
            existing = await self._store.movements.list_movements(reverses_id=original.id)
            if existing:
                raise ConsistencyError(f"Movement {movement_id} was already reversed")

            reversal = await self.record_movement(
                kind=original.kind.opposite,
                concept=REVERSAL_PREFIX + (concept or original.concept),
                amount=original.amount,
                movement_date=movement_date or date.today(),
                events=events,
                reference_id=original.reference_id,
                category=original.category,
                reverses_id=original.id,
            )

        events.append(AuditEventBuilder.movement_reversed(
            movement_id=original.id,
            reversal_id=reversal.id,
            amount=original.amount,
        ))
        return reversal

    # =========================================================================
    # Commands
    # =========================================================================

    async def append(
        self,
        kind: MovementKind,
        concept: str,
        amount: Decimal,
        movement_date: date,
        reference_id: Optional[str] = None,
        category: MovementCategory = MovementCategory.OTHER,
    ) -> Movement:
        """
        Append one movement to the ledger.

        Returns:
            The stored movement with its sequence and balances

        Raises:
            ValidationError: If amount <= 0
        """
        events: list[AuditEvent] = []
        async with self._store.transaction():
            movement = await self.record_movement(
                kind=kind,
                concept=concept,
                amount=amount,
                movement_date=movement_date,
                events=events,
                reference_id=reference_id,
                category=category,
            )
        await self._audit.log_all(events)
        return movement

    async def record_expense(
        self,
        concept: str,
        amount: Decimal,
        movement_date: date,
        category: MovementCategory = MovementCategory.OPERATING_EXPENSE,
    ) -> Movement:
        """Manual expense entry ("gasto")."""
        return await self.append(
            MovementKind.EXPENSE,
            concept,
            amount,
            movement_date,
            category=category,
        )

    async def reverse(
        self,
        movement_id: UUID,
        movement_date: Optional[date] = None,
        concept: Optional[str] = None,
    ) -> Movement:
        """
        Compensate a movement with one of the opposite kind and same amount.

        The original is never modified.

        Raises:
            ConsistencyError: If the movement belongs to a late fee, loan or
                settlement; those are reversed through their own command
        """
        events: list[AuditEvent] = []
        async with self._store.transaction():
            original = await self.get_movement(movement_id)
            owner_command = ENGINE_OWNED_CATEGORIES.get(original.category)
            if owner_command is not None:
                raise ConsistencyError(
                    f"Movement {movement_id} is a {original.category.value} movement; "
                    f"use {owner_command} instead"
                )
            reversal = await self.record_reversal(movement_id, events, movement_date, concept)
        await self._audit.log_all(events)
        return reversal
