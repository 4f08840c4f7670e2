"""
Liquidation Models

The year-end settlement ("liquidación"):

    group_profit  = late_fees + loan_interest + activity_income
                    + investment_gains - operating_expenses - operational_bank_tax
    profit_share  = group_profit * member_slots / total_active_slots
    commission    = administration_percent% * (dues_total + profit_share)
    subtotal      = dues_total + profit_share - commission
    tax           = subtotal * disbursement_tax_rate
    net_payable   = subtotal - tax - deductions

A preview is read-only. A committed batch is immutable except through an
explicit edit that recomputes the derived totals.
"""

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field, model_validator

from natillera.models.common import ZERO, MemberKey, to_money


class SettlementStatus(str, Enum):
    PENDING = "pending"
    SETTLED = "settled"


class MemberRecord(BaseModel):
    """A member as reported by the external fund records."""
    model_config = ConfigDict(str_strip_whitespace=True)

    key: MemberKey
    name: str = Field(..., min_length=1, max_length=200)
    slots: int = Field(default=1, ge=1, description="Number of 'cupos' held")
    active: bool = True


class FundIncomeKind(str, Enum):
    """Streams kept outside the cash ledger by the activity/investment CRUD."""
    ACTIVITY = "activity"
    INVESTMENT = "investment"
    BANK_TAX = "bank_tax"


class FundIncomeEntry(BaseModel):
    """One activity result, investment gain or bank tax charge."""
    model_config = ConfigDict(str_strip_whitespace=True)

    id: UUID = Field(default_factory=uuid4)
    kind: FundIncomeKind
    concept: str = Field(default="", max_length=300)
    amount: Decimal
    entry_date: date


class FundTotals(BaseModel):
    """Group-wide income and expense streams feeding the settlement."""

    late_fees: Decimal = ZERO
    loan_interest: Decimal = ZERO
    activity_income: Decimal = ZERO
    investment_gains: Decimal = ZERO
    operating_expenses: Decimal = ZERO
    operational_bank_tax: Decimal = ZERO

    @property
    def group_profit(self) -> Decimal:
        return (
            self.late_fees
            + self.loan_interest
            + self.activity_income
            + self.investment_gains
            - self.operating_expenses
            - self.operational_bank_tax
        )


class DerivedTotals(BaseModel):
    """The four totals an edit recomputes."""

    administration_commission: Decimal
    subtotal: Decimal
    disbursement_tax: Decimal
    net_payable: Decimal


def derive_totals(
    dues_total: Decimal,
    profit_share: Decimal,
    deductions: Decimal,
    administration_percent: Decimal,
    disbursement_tax_rate: Decimal,
) -> DerivedTotals:
    """Apply commission, disbursement tax and deductions."""
    commission = to_money(administration_percent / Decimal("100") * (dues_total + profit_share))
    subtotal = dues_total + profit_share - commission
    tax = to_money(subtotal * disbursement_tax_rate)
    return DerivedTotals(
        administration_commission=commission,
        subtotal=subtotal,
        disbursement_tax=tax,
        net_payable=subtotal - tax - deductions,
    )


class MemberSettlementLine(BaseModel):
    """Settlement figures for one member."""

    member_key: MemberKey
    member_name: str
    slots: int = Field(..., ge=1)
    paid_installments: int = Field(default=0, ge=0)
    has_unpaid_dues: bool = False
    dues_total: Decimal = ZERO
    membership_fees: Decimal = ZERO
    profit_share: Decimal = ZERO
    administration_commission: Decimal = ZERO
    subtotal: Decimal = ZERO
    disbursement_tax: Decimal = ZERO
    deductions: Decimal = Field(
        default=ZERO,
        description="Outstanding principal of the member's active loans"
    )
    net_payable: Decimal = ZERO


class LiquidationPreview(BaseModel):
    """Read-only result of computing a settlement for some members."""

    liquidation_date: date
    lines: list[MemberSettlementLine] = Field(default_factory=list)
    fund_totals: FundTotals = Field(default_factory=FundTotals)
    total_active_slots: int = Field(default=0, ge=0)
    installment_value: Decimal
    administration_percent: Decimal
    disbursement_tax_rate: Decimal
    computed_at: datetime = Field(default_factory=datetime.utcnow)

    @property
    def member_keys(self) -> list[MemberKey]:
        return [line.member_key for line in self.lines]

    @property
    def member_names(self) -> list[str]:
        return [line.member_name for line in self.lines]

    @property
    def dues_total(self) -> Decimal:
        return sum((line.dues_total for line in self.lines), ZERO)

    @property
    def membership_fees_total(self) -> Decimal:
        return sum((line.membership_fees for line in self.lines), ZERO)

    @property
    def profit_share_total(self) -> Decimal:
        return sum((line.profit_share for line in self.lines), ZERO)

    @property
    def deductions(self) -> Decimal:
        return sum((line.deductions for line in self.lines), ZERO)

    def derived_totals(self) -> DerivedTotals:
        return derive_totals(
            self.dues_total,
            self.profit_share_total,
            self.deductions,
            self.administration_percent,
            self.disbursement_tax_rate,
        )


class LiquidationBatch(BaseModel):
    """
    One committed settlement event, possibly covering several members.

    INVARIANT: subtotal    = dues_total + profit_share_total - administration_commission
               net_payable = subtotal - disbursement_tax - deductions
    """

    id: UUID = Field(default_factory=uuid4)
    member_keys: list[MemberKey] = Field(..., min_length=1)
    member_names: list[str] = Field(default_factory=list)
    dues_total: Decimal = ZERO
    membership_fees_total: Decimal = Field(
        default=ZERO,
        description="Reported only; not part of the subtotal"
    )
    group_profit: Decimal = Field(
        default=ZERO,
        description="Group profit the profit shares were computed from"
    )
    operational_bank_tax: Decimal = Field(
        default=ZERO,
        description="Bank tax on operations deducted from the group profit"
    )
    profit_share_total: Decimal = ZERO
    administration_percent: Decimal = Field(..., ge=0, le=100)
    administration_commission: Decimal = ZERO
    subtotal: Decimal = ZERO
    disbursement_tax_rate: Decimal = Field(..., ge=0, lt=1)
    disbursement_tax: Decimal = ZERO
    deductions: Decimal = ZERO
    net_payable: Decimal = ZERO
    liquidation_date: date
    payout_movement_id: Optional[UUID] = Field(
        default=None,
        description="Cash ledger EXPENSE recording the payout, when that policy is on"
    )
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    @model_validator(mode='after')
    def validate_totals(self) -> 'LiquidationBatch':
        if self.subtotal != self.dues_total + self.profit_share_total - self.administration_commission:
            raise ValueError("Subtotal does not match dues + profit share - commission")
        if self.net_payable != self.subtotal - self.disbursement_tax - self.deductions:
            raise ValueError("Net payable does not match subtotal - tax - deductions")
        return self

    def covers(self, member_key: MemberKey) -> bool:
        return member_key in self.member_keys


class ControlSheetRow(BaseModel):
    """One line of the settlement control sheet."""

    member_key: MemberKey
    member_name: str
    slots: int
    status: SettlementStatus
    batch_id: Optional[UUID] = None
