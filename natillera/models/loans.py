"""
Loan Models

A Loan is an internal credit accruing simple daily interest on the
outstanding principal:

    interest_accrued_i = outstanding_principal_{i-1} * monthly_rate / 100 / 30 * days_i

Its LoanMovements form an ordered sequence starting with the DISBURSEMENT.
"""

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field

from natillera.models.common import ZERO, MemberKey


class LoanStatus(str, Enum):
    ACTIVE = "active"
    PAID = "paid"


class LoanMovementType(str, Enum):
    """Kind of loan movement."""
    DISBURSEMENT = "disbursement"            # First movement, no interest
    INTEREST_PAYMENT = "interest_payment"    # Pays interest only
    PRINCIPAL_PAYMENT = "principal_payment"  # "Abono a capital": interest first, rest to principal
    NO_PAYMENT = "no_payment"                # Interest accrues unpaid
    FULL_PAYMENT = "full_payment"            # Pays everything, closes the loan


class Loan(BaseModel):
    """One internal credit."""
    model_config = ConfigDict(str_strip_whitespace=True)

    id: UUID = Field(default_factory=uuid4)
    borrower_name: str = Field(..., min_length=1, max_length=200)
    borrower_key: Optional[MemberKey] = Field(
        default=None,
        description="Member key when the borrower is a member (deducted at settlement)"
    )
    principal: Decimal = Field(..., gt=0, decimal_places=2)
    monthly_rate_percent: Decimal = Field(..., ge=0, le=100)
    start_date: date
    status: LoanStatus = Field(default=LoanStatus.ACTIVE)
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)


class LoanMovement(BaseModel):
    """
    One step of a loan's amortization history.

    total_outstanding = outstanding_principal + unpaid_interest, where
    unpaid_interest is accrued interest carried forward unpaid.
    """

    id: UUID = Field(default_factory=uuid4)
    loan_id: UUID
    sequence: int = Field(default=0, ge=0)
    movement_date: date
    movement_type: LoanMovementType
    amount_paid: Decimal = Field(default=ZERO, ge=0)
    days_elapsed: int = Field(default=0, ge=0)
    interest_accrued: Decimal = Field(default=ZERO, ge=0)
    interest_paid: Decimal = Field(default=ZERO, ge=0)
    principal_paid: Decimal = Field(default=ZERO, ge=0)
    outstanding_principal: Decimal = Field(..., ge=0)
    unpaid_interest: Decimal = Field(default=ZERO, ge=0)
    total_outstanding: Decimal = Field(..., ge=0)
    cash_movement_id: Optional[UUID] = None
    is_projection: bool = Field(
        default=False,
        description="True for the non-persisted 'as of today' row"
    )
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)


class LoanExtract(BaseModel):
    """Amortization history of a loan, optionally with today's projection."""

    loan: Loan
    movements: list[LoanMovement] = Field(default_factory=list)
    projection: Optional[LoanMovement] = None

    @property
    def rows(self) -> list[LoanMovement]:
        return self.movements + ([self.projection] if self.projection else [])

    @property
    def total_interest_accrued(self) -> Decimal:
        return sum((m.interest_accrued for m in self.movements), ZERO)

    @property
    def total_interest_paid(self) -> Decimal:
        return sum((m.interest_paid for m in self.movements), ZERO)

    @property
    def total_principal_paid(self) -> Decimal:
        return sum((m.principal_paid for m in self.movements), ZERO)

    @property
    def outstanding_principal(self) -> Decimal:
        return self.movements[-1].outstanding_principal if self.movements else self.loan.principal
