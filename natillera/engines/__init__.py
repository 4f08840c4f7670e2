"""Ledger and accrual engines."""

from natillera.engines.cash_ledger import CashLedger
from natillera.engines.late_fees import (
    LateFeeEngine,
    compute_penalty,
    installment_due_dates,
    same_due_period,
)
from natillera.engines.loans import LoanEngine, accrue_interest, apply_movement
from natillera.engines.liquidation import LiquidationEngine

__all__ = [
    "CashLedger",
    "LateFeeEngine",
    "LiquidationEngine",
    "LoanEngine",
    "accrue_interest",
    "apply_movement",
    "compute_penalty",
    "installment_due_dates",
    "same_due_period",
]
