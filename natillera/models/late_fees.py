"""
Late-Fee Models

A LateFeeRecord ("mora") exists for a (member, installment) pair once the
installment was paid after its due date within the same due period. State:

    NONE -> PENDING -> PARTIALLY_PAID <-> PARTIALLY_PAID -> PAID

NONE is never stored: it is what a lookup returns when no record exists.
`remaining` and `status` are derived from the stored totals so they can
never disagree with them.
"""

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field, computed_field, model_validator

from natillera.models.common import ZERO, MemberKey


class LateFeeStatus(str, Enum):
    """Lifecycle of a late-fee penalty."""
    NONE = "none"                      # No record exists
    PENDING = "pending"                # Nothing paid yet
    PARTIALLY_PAID = "partially_paid"  # Something paid, something remains
    PAID = "paid"                      # Remaining is zero, kept for history


class LateFeePaymentType(str, Enum):
    PARTIAL = "partial"
    FULL = "full"


class DueInstallment(BaseModel):
    """
    A periodic due ("cuota") as reported by the dues source.

    Read-only input to the late-fee engine and the settlement.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    member_key: MemberKey
    member_name: Optional[str] = None
    installment_number: int = Field(..., ge=1, le=24)
    due_date: date
    payment_date: Optional[date] = None
    amount: Decimal = Field(default=ZERO, ge=0)

    @property
    def is_paid(self) -> bool:
        return self.payment_date is not None


class PenaltyAssessment(BaseModel):
    """Outcome of computing the penalty for one installment."""

    days_late: int = Field(..., ge=0)
    total_sanction: Decimal = Field(..., ge=0)

    @property
    def is_late(self) -> bool:
        return self.days_late > 0


class LateFeeRecord(BaseModel):
    """
    Outstanding (or settled) penalty of one installment.

    INVARIANT: total_sanction = min(days_late, max_days) * daily_rate
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    id: UUID = Field(default_factory=uuid4)
    member_key: MemberKey
    member_name: Optional[str] = Field(default=None, max_length=200)
    installment_number: int = Field(..., ge=1, le=24)
    due_date: date
    installment_payment_date: date = Field(
        ...,
        description="Date the installment itself was paid"
    )
    daily_rate: Decimal = Field(..., ge=0)
    max_days: int = Field(..., ge=0)
    days_late: int = Field(..., ge=0)
    total_sanction: Decimal = Field(..., ge=0)
    amount_paid: Decimal = Field(default=ZERO, ge=0)
    last_payment_date: Optional[date] = None
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    @model_validator(mode='after')
    def validate_sanction(self) -> 'LateFeeRecord':
        if self.days_late > self.max_days:
            raise ValueError("Days late cannot exceed the maximum penalty days")
        expected = min(self.days_late, self.max_days) * self.daily_rate
        if self.total_sanction != expected:
            raise ValueError(
                f"Total sanction {self.total_sanction} does not match "
                f"{self.days_late} days x {self.daily_rate}"
            )
        return self

    @computed_field
    @property
    def remaining(self) -> Decimal:
        return max(ZERO, self.total_sanction - self.amount_paid)

    @computed_field
    @property
    def status(self) -> LateFeeStatus:
        if self.remaining == ZERO:
            return LateFeeStatus.PAID
        if self.amount_paid > ZERO:
            return LateFeeStatus.PARTIALLY_PAID
        return LateFeeStatus.PENDING

    @property
    def concept_label(self) -> str:
        return f"{self.member_name or self.member_key} - Cuota {self.installment_number}"


class LateFeePaymentEntry(BaseModel):
    """Append-only history of allocations against a LateFeeRecord."""

    id: UUID = Field(default_factory=uuid4)
    late_fee_record_id: UUID
    payment_date: date
    amount: Decimal = Field(..., gt=0)
    payment_type: LateFeePaymentType
    movement_id: Optional[UUID] = Field(
        default=None,
        description="Cash ledger movement recording this payment"
    )
    created_at: datetime = Field(default_factory=datetime.utcnow)
