"""
Fund configuration models.

FundConfiguration is the single object the engines consume. A stored
FundConfigurationRecord may override any of its values for one fund year;
unset fields fall through to the environment settings and then to the
built-in defaults.
"""

from datetime import datetime
from decimal import Decimal
from typing import Literal, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field


PayoutPolicy = Literal["none", "expense"]


class FundConfiguration(BaseModel):
    """Fully resolved fund parameters."""
    model_config = ConfigDict(frozen=True)

    year: int
    daily_late_fee_rate: Decimal = Field(default=Decimal("3000"), ge=0)
    max_late_fee_days: int = Field(default=15, ge=0)
    installment_value: Decimal = Field(default=Decimal("30000"), gt=0)
    membership_fee: Decimal = Field(default=Decimal("10000"), ge=0)
    administration_percent: Decimal = Field(default=Decimal("8"), ge=0, le=100)
    disbursement_tax_rate: Decimal = Field(default=Decimal("0.004"), ge=0, lt=1)
    record_loan_disbursements: bool = True
    liquidation_payout_policy: PayoutPolicy = "none"


class FundConfigurationRecord(BaseModel):
    """
    Stored per-year overrides ("configuración").

    Only the fields that are set override the environment.
    """

    id: UUID = Field(default_factory=uuid4)
    year: int = Field(..., ge=2000, le=2100)
    is_active: bool = Field(
        default=False,
        description="Used when no record exists for the requested year"
    )
    daily_late_fee_rate: Optional[Decimal] = Field(default=None, ge=0)
    max_late_fee_days: Optional[int] = Field(default=None, ge=0)
    installment_value: Optional[Decimal] = Field(default=None, gt=0)
    membership_fee: Optional[Decimal] = Field(default=None, ge=0)
    administration_percent: Optional[Decimal] = Field(default=None, ge=0, le=100)
    disbursement_tax_rate: Optional[Decimal] = Field(default=None, ge=0, lt=1)
    record_loan_disbursements: Optional[bool] = None
    liquidation_payout_policy: Optional[PayoutPolicy] = None
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    def overrides(self) -> dict:
        """Fields explicitly set on this record."""
        return self.model_dump(
            exclude={"id", "year", "is_active", "updated_at"},
            exclude_none=True,
        )
