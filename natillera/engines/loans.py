"""
Loan Accrual Engine ("préstamos")

Simple daily interest on the outstanding principal:

    interest_accrued = outstanding_principal_prev * monthly_rate / 100 / 30 * days

Interest owed (accrued now plus any carried unpaid interest) is always
settled before principal:

- INTEREST_PAYMENT: pays interest only, a short payment leaves the rest unpaid
- PRINCIPAL_PAYMENT: covers the interest owed, the remainder goes to principal
- NO_PAYMENT: the accrued interest is carried forward unpaid
- FULL_PAYMENT: interest owed plus all principal, closes the loan

Every payment appends an INCOME to the cash ledger in the same transaction
as the loan movement. Disbursing a loan appends an EXPENSE when the fund
configuration says so.
"""

from datetime import date
from decimal import Decimal
from typing import Optional
from uuid import UUID

import structlog

from natillera.audit import AuditLogger
from natillera.config import ConfigurationProvider
from natillera.engines.cash_ledger import CashLedger
from natillera.errors import ConsistencyError, NotFoundError, ValidationError
from natillera.models.audit import AuditEvent, AuditEventBuilder
from natillera.models.common import ZERO, MemberKey, ValidationIssue, as_decimal, to_money
from natillera.models.ledger import MovementCategory, MovementKind
from natillera.models.loans import (
    Loan,
    LoanExtract,
    LoanMovement,
    LoanMovementType,
    LoanStatus,
)
from natillera.services.storage import RecordStore
from natillera.validation import LedgerValidator


logger = structlog.get_logger(__name__)

# rate% / 100 / 30 days
_RATE_DIVISOR = Decimal("3000")

PAYMENT_LABELS = {
    LoanMovementType.INTEREST_PAYMENT: "Pago de Intereses",
    LoanMovementType.PRINCIPAL_PAYMENT: "Abono a Capital",
    LoanMovementType.FULL_PAYMENT: "Pago Total",
}


def accrue_interest(
    outstanding_principal: Decimal,
    monthly_rate_percent: Decimal,
    days: int,
) -> Decimal:
    """Simple interest for `days` days, rounded to cents."""
    return to_money(outstanding_principal * monthly_rate_percent * days / _RATE_DIVISOR)


def _reject(field: str, issue_type: str, message: str) -> ValidationError:
    return ValidationError(message, issues=[ValidationIssue(
        field=field,
        issue_type=issue_type,
        message=message,
        severity="error",
    )])


def apply_movement(
    loan: Loan,
    previous: LoanMovement,
    movement_type: LoanMovementType,
    amount_paid: Optional[Decimal],
    movement_date: date,
) -> LoanMovement:
    """
    Compute the next loan movement from the previous one.

    Pure: nothing is persisted. `amount_paid` may be None only for a
    FULL_PAYMENT, which then pays exactly what is owed.

    Raises:
        ValidationError: If the payment doesn't fit the movement type
    """
    days = (movement_date - previous.movement_date).days
    accrued = accrue_interest(previous.outstanding_principal, loan.monthly_rate_percent, days)
    interest_due = previous.unpaid_interest + accrued
    outstanding = previous.outstanding_principal

    if movement_type is LoanMovementType.INTEREST_PAYMENT:
        if amount_paid > interest_due:
            raise _reject(
                "amount_paid", "exceeds_interest",
                f"Payment of {amount_paid} exceeds the interest due ({interest_due}); "
                "use a principal payment"
            )
        interest_paid, principal_paid = amount_paid, ZERO
    elif movement_type is LoanMovementType.PRINCIPAL_PAYMENT:
        if amount_paid < interest_due:
            raise _reject(
                "amount_paid", "below_interest",
                f"A principal payment must first cover the interest due ({interest_due})"
            )
        interest_paid, principal_paid = interest_due, amount_paid - interest_due
        if principal_paid > outstanding:
            raise _reject(
                "amount_paid", "exceeds_principal",
                f"Principal paid ({principal_paid}) exceeds the outstanding principal ({outstanding})"
            )
    elif movement_type is LoanMovementType.NO_PAYMENT:
        amount_paid, interest_paid, principal_paid = ZERO, ZERO, ZERO
    elif movement_type is LoanMovementType.FULL_PAYMENT:
        payoff = interest_due + outstanding
        if amount_paid is None:
            amount_paid = payoff
        elif amount_paid != payoff:
            raise _reject(
                "amount_paid", "payoff_mismatch",
                f"A full payment must be exactly {payoff} (interest {interest_due} + principal {outstanding})"
            )
        interest_paid, principal_paid = interest_due, outstanding
    else:
        raise _reject("movement_type", "invalid_type", f"Cannot apply a {movement_type.value} movement")

    unpaid_interest = interest_due - interest_paid
    outstanding_principal = outstanding - principal_paid
    return LoanMovement(
        loan_id=loan.id,
        movement_date=movement_date,
        movement_type=movement_type,
        amount_paid=amount_paid,
        days_elapsed=days,
        interest_accrued=accrued,
        interest_paid=interest_paid,
        principal_paid=principal_paid,
        outstanding_principal=outstanding_principal,
        unpaid_interest=unpaid_interest,
        total_outstanding=outstanding_principal + unpaid_interest,
    )


def _settled(movement: LoanMovement) -> bool:
    return movement.total_outstanding == ZERO


class LoanEngine:
    """Opens loans, applies their movements and builds their extracts."""

    def __init__(
        self,
        store: RecordStore,
        ledger: CashLedger,
        config_provider: ConfigurationProvider,
        validator: Optional[LedgerValidator] = None,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._store = store
        self._ledger = ledger
        self._config = config_provider
        self._validator = validator or LedgerValidator()
        self._audit = audit_logger or AuditLogger()

    # =========================================================================
    # Queries
    # =========================================================================

    async def get_loan(self, loan_id: UUID) -> Loan:
        loan = await self._store.loans.get_loan(loan_id)
        if loan is None:
            raise NotFoundError("Loan", loan_id)
        return loan

    async def list_loans(self, status: Optional[LoanStatus] = None) -> list[Loan]:
        return await self._store.loans.list_loans(status=status)

    async def movements(self, loan_id: UUID) -> list[LoanMovement]:
        movements = await self._store.loans.list_loan_movements(loan_id)
        if not movements:
            raise ConsistencyError(f"Loan {loan_id} has no disbursement movement")
        return movements

    async def projection(
        self,
        loan_id: UUID,
        as_of: Optional[date] = None,
    ) -> LoanMovement:
        """
        Non-persisted row showing interest accrued since the last movement.

        Without `as_of` the projection runs to today, or to the last movement
        when that is dated in the future.

        Raises:
            ConsistencyError: If the loan is already paid
            ValidationError: If an explicit `as_of` precedes the last movement
        """
        loan = await self.get_loan(loan_id)
        if loan.status is LoanStatus.PAID:
            raise ConsistencyError(f"Loan {loan_id} is paid; there is nothing to project")
        last = (await self.movements(loan_id))[-1]
        if as_of is None:
            as_of = max(date.today(), last.movement_date)
        elif as_of < last.movement_date:
            raise _reject("as_of", "out_of_order", f"{as_of} is before the last movement ({last.movement_date})")

        projected = apply_movement(loan, last, LoanMovementType.NO_PAYMENT, None, as_of)
        return projected.model_copy(update={"is_projection": True, "sequence": last.sequence + 1})

    async def extract(
        self,
        loan_id: UUID,
        as_of: Optional[date] = None,
        include_projection: bool = True,
    ) -> LoanExtract:
        """Full amortization history, plus today's projection for active loans."""
        loan = await self.get_loan(loan_id)
        movements = await self.movements(loan_id)
        projection = None
        if include_projection and loan.status is LoanStatus.ACTIVE:
            projection = await self.projection(loan_id, as_of)
        return LoanExtract(loan=loan, movements=movements, projection=projection)

    async def outstanding_principal(self, borrower_key: MemberKey) -> Decimal:
        """Outstanding principal of the borrower's active loans."""
        loans = await self._store.loans.list_loans(
            status=LoanStatus.ACTIVE,
            borrower_key=MemberKey.of(borrower_key),
        )
        total = ZERO
        for loan in loans:
            total += (await self.movements(loan.id))[-1].outstanding_principal
        return total

    async def total_interest_collected(self) -> Decimal:
        movements = await self._store.loans.list_loan_movements()
        return sum((m.interest_paid for m in movements), ZERO)

    # =========================================================================
    # Commands
    # =========================================================================

    async def open_loan(
        self,
        borrower_name: str,
        principal: Decimal,
        monthly_rate_percent: Decimal,
        start_date: date,
        borrower_key: Optional[MemberKey] = None,
    ) -> Loan:
        """
        Create a loan with its DISBURSEMENT movement.

        Raises:
            ValidationError: If principal <= 0 or the rate is negative
        """
        principal = as_decimal(principal)
        monthly_rate_percent = as_decimal(monthly_rate_percent)
        result = self._validator.ensure_valid(
            self._validator.validate_loan_opening(principal, monthly_rate_percent, start_date)
        )
        if result.warnings:
            logger.warning("loan_opening_warnings", borrower=borrower_name, warnings=result.warnings)

        config = await self._config.resolve()
        loan = Loan(
            borrower_name=borrower_name,
            borrower_key=MemberKey.of(borrower_key) if borrower_key is not None else None,
            principal=principal,
            monthly_rate_percent=monthly_rate_percent,
            start_date=start_date,
        )

        events: list[AuditEvent] = []
        async with self._store.transaction():
            cash_movement_id = None
            if config.record_loan_disbursements:
                movement = await self._ledger.record_movement(
                    kind=MovementKind.EXPENSE,
                    concept=f"Desembolso Préstamo - {loan.borrower_name}",
                    amount=principal,
                    movement_date=start_date,
                    events=events,
                    reference_id=str(loan.id),
                    category=MovementCategory.LOAN_DISBURSEMENT,
                )
                cash_movement_id = movement.id

            await self._store.loans.insert_loan(loan)
            await self._store.loans.insert_loan_movement(LoanMovement(
                loan_id=loan.id,
                movement_date=start_date,
                movement_type=LoanMovementType.DISBURSEMENT,
                outstanding_principal=principal,
                total_outstanding=principal,
                cash_movement_id=cash_movement_id,
            ))

        events.append(AuditEventBuilder.loan_opened(
            loan.id, loan.borrower_name, principal, monthly_rate_percent
        ))
        await self._audit.log_all(events)
        logger.info("loan_opened", loan_id=str(loan.id), principal=str(principal))
        return loan

    async def accrue_and_apply(
        self,
        loan_id: UUID,
        movement_date: date,
        movement_type: LoanMovementType,
        amount_paid: Optional[Decimal] = None,
    ) -> LoanMovement:
        """
        Accrue interest up to `movement_date` and apply a payment.

        Returns:
            The stored loan movement

        Raises:
            NotFoundError: If the loan doesn't exist
            ConsistencyError: If the loan is already paid
            ValidationError: If the payment doesn't fit the movement type
        """
        amount_paid = as_decimal(amount_paid) if amount_paid is not None else None
        events: list[AuditEvent] = []
        async with self._store.transaction():
            loan = await self.get_loan(loan_id)
            if loan.status is LoanStatus.PAID:
                raise ConsistencyError(f"Loan {loan_id} is already paid")
            previous = (await self.movements(loan_id))[-1]

            self._validator.ensure_valid(
                self._validator.validate_loan_movement(previous, movement_type, amount_paid, movement_date)
            )
            computed = apply_movement(loan, previous, movement_type, amount_paid, movement_date)

            if computed.amount_paid > ZERO:
                cash = await self._ledger.record_movement(
                    kind=MovementKind.INCOME,
                    concept=f"{PAYMENT_LABELS[movement_type]} Préstamo - {loan.borrower_name}",
                    amount=computed.amount_paid,
                    movement_date=movement_date,
                    events=events,
                    reference_id=str(loan.id),
                    category=MovementCategory.LOAN_PAYMENT,
                )
                computed = computed.model_copy(update={"cash_movement_id": cash.id})

            stored = await self._store.loans.insert_loan_movement(computed)
            if _settled(stored):
                await self._store.loans.update_loan(
                    loan.model_copy(update={"status": LoanStatus.PAID, "updated_at": stored.created_at})
                )

        events.append(AuditEventBuilder.loan_movement_applied(
            stored.id,
            loan.id,
            movement_type.value,
            stored.amount_paid,
            stored.interest_accrued,
            stored.outstanding_principal,
        ))
        await self._audit.log_all(events)
        logger.info(
            "loan_movement_applied",
            loan_id=str(loan.id),
            movement_type=movement_type.value,
            amount_paid=str(stored.amount_paid),
            outstanding_principal=str(stored.outstanding_principal),
        )
        return stored

    async def amend_movement(
        self,
        movement_id: UUID,
        amount_paid: Optional[Decimal] = None,
        movement_date: Optional[date] = None,
    ) -> list[LoanMovement]:
        """
        Edit a past payment and replay every later movement.

        The cash ledger receives one compensating movement for the change in
        total amount paid (INCOME if it grew, EXPENSE if it shrank).

        Returns:
            The amended movement followed by the replayed ones

        Raises:
            ValidationError: If the amended history no longer validates
        """
        amount_paid = as_decimal(amount_paid) if amount_paid is not None else None
        events: list[AuditEvent] = []
        async with self._store.transaction():
            target = await self._store.loans.get_loan_movement(movement_id)
            if target is None:
                raise NotFoundError("Loan movement", movement_id)
            if target.movement_type is LoanMovementType.DISBURSEMENT:
                raise _reject("movement_type", "invalid_type", "A disbursement cannot be amended")

            loan = await self.get_loan(target.loan_id)
            history = await self.movements(loan.id)
            index = next(i for i, m in enumerate(history) if m.id == target.id)
            new_date = movement_date or target.movement_date
            if index + 1 < len(history) and new_date > history[index + 1].movement_date:
                raise _reject(
                    "movement_date", "out_of_order",
                    f"{new_date} is after the next movement ({history[index + 1].movement_date})"
                )

            new_amount = amount_paid if amount_paid is not None else target.amount_paid
            if target.movement_type is LoanMovementType.FULL_PAYMENT and amount_paid is None:
                new_amount = None
            self._validator.ensure_valid(self._validator.validate_loan_movement(
                history[index - 1], target.movement_type, new_amount, new_date
            ))

            previous = history[index - 1]
            replayed = []
            for position, original in enumerate(history[index:]):
                if position == 0:
                    requested, when = new_amount, new_date
                else:
                    requested = None if original.movement_type is LoanMovementType.FULL_PAYMENT else original.amount_paid
                    when = original.movement_date
                if _settled(previous):
                    raise _reject(
                        "movement_id", "after_payoff",
                        f"The loan would be paid off before the movement of {when}"
                    )
                computed = apply_movement(loan, previous, original.movement_type, requested, when)
                current = computed.model_copy(update={
                    "id": original.id,
                    "sequence": original.sequence,
                    "cash_movement_id": original.cash_movement_id,
                    "created_at": original.created_at,
                })
                await self._store.loans.update_loan_movement(current)
                replayed.append(current)
                previous = current

            difference = (
                sum((m.amount_paid for m in replayed), ZERO)
                - sum((m.amount_paid for m in history[index:]), ZERO)
            )
            if difference != ZERO:
                await self._ledger.record_movement(
                    kind=MovementKind.INCOME if difference > ZERO else MovementKind.EXPENSE,
                    concept=f"Ajuste Pago Préstamo - {loan.borrower_name}",
                    amount=abs(difference),
                    movement_date=new_date,
                    events=events,
                    reference_id=str(loan.id),
                    category=MovementCategory.LOAN_PAYMENT,
                )

            status = LoanStatus.PAID if _settled(previous) else LoanStatus.ACTIVE
            if status is not loan.status:
                await self._store.loans.update_loan(
                    loan.model_copy(update={"status": status, "updated_at": previous.updated_at})
                )

        events.append(AuditEventBuilder.loan_movement_amended(
            target.id, loan.id, difference, len(replayed) - 1
        ))
        await self._audit.log_all(events)
        logger.info(
            "loan_movement_amended",
            loan_id=str(loan.id),
            movement_id=str(target.id),
            difference=str(difference),
        )
        return replayed
