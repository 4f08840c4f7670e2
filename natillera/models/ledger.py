"""
Cash Ledger Models

A Movement is one entry of the fund's single cash ledger ("caja central").
Each movement stores the balance it started from and the balance it leaves,
so the current balance is always the resulting balance of the latest
movement. The ledger is never re-summed to obtain the balance.

Ordering is by the store-assigned `sequence`, never by the user-supplied
movement date: two movements on the same day still have a defined order.
"""

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field, model_validator

from natillera.models.common import ZERO


REVERSAL_PREFIX = "REVERSO - "


class MovementKind(str, Enum):
    """Direction of a cash movement."""
    INCOME = "income"
    EXPENSE = "expense"

    @property
    def opposite(self) -> "MovementKind":
        return MovementKind.EXPENSE if self is MovementKind.INCOME else MovementKind.INCOME


class MovementCategory(str, Enum):
    """
    What originated a movement.

    Category totals (e.g. operating expenses for the settlement) are
    computed per category, netting out reversals of that category.
    """
    DUES = "dues"
    MEMBERSHIP_FEE = "membership_fee"
    LATE_FEE = "late_fee"
    LOAN_DISBURSEMENT = "loan_disbursement"
    LOAN_PAYMENT = "loan_payment"
    ACTIVITY = "activity"
    INVESTMENT = "investment"
    OPERATING_EXPENSE = "operating_expense"
    SETTLEMENT_PAYOUT = "settlement_payout"
    OTHER = "other"


class Movement(BaseModel):
    """
    One entry in the cash ledger.

    INVARIANT: resulting_balance = prior_balance + amount (INCOME)
               resulting_balance = prior_balance - amount (EXPENSE)
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    id: UUID = Field(
        default_factory=uuid4,
        description="Unique movement ID"
    )
    sequence: int = Field(
        default=0,
        ge=0,
        description="Monotonic append order, assigned by the store"
    )
    kind: MovementKind
    category: MovementCategory = Field(default=MovementCategory.OTHER)
    concept: str = Field(
        ...,
        min_length=1,
        max_length=300,
        description="Human-readable description of the movement"
    )
    amount: Decimal = Field(
        ...,
        gt=0,
        decimal_places=2,
        description="Amount moved (always positive)"
    )
    prior_balance: Decimal = Field(
        ...,
        description="Ledger balance immediately before this movement"
    )
    resulting_balance: Decimal = Field(
        ...,
        description="Ledger balance immediately after this movement"
    )
    movement_date: date = Field(
        ...,
        description="Calendar date of the movement (user supplied)"
    )
    reference_id: Optional[str] = Field(
        default=None,
        max_length=100,
        description="Opaque id of the originating record"
    )
    reverses_id: Optional[UUID] = Field(
        default=None,
        description="Set on compensating movements: the movement being reversed"
    )
    created_at: datetime = Field(
        default_factory=datetime.utcnow
    )

    @model_validator(mode='after')
    def validate_balances(self) -> 'Movement':
        """Enforce the running-balance invariant."""
        if self.kind is MovementKind.INCOME:
            expected = self.prior_balance + self.amount
        else:
            expected = self.prior_balance - self.amount
        if self.resulting_balance != expected:
            raise ValueError(
                f"Resulting balance {self.resulting_balance} does not match "
                f"prior balance {self.prior_balance} {'+' if self.kind is MovementKind.INCOME else '-'} "
                f"amount {self.amount}"
            )
        return self

    @property
    def signed_amount(self) -> Decimal:
        return self.amount if self.kind is MovementKind.INCOME else -self.amount

    @property
    def is_reversal(self) -> bool:
        return self.reverses_id is not None


class CashStatement(BaseModel):
    """
    Aggregate view of the ledger.

    `balance` is the stored running balance of the latest movement; the
    income/expense totals are sums over the (optionally date filtered)
    movements and are informational only.
    """

    balance: Decimal = ZERO
    total_income: Decimal = ZERO
    total_expenses: Decimal = ZERO
    operating_expenses: Decimal = Field(
        default=ZERO,
        description="Operating-expense category net of its reversals"
    )
    movement_count: int = Field(default=0, ge=0)
    date_from: Optional[date] = None
    date_to: Optional[date] = None
