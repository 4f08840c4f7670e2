"""
Data Models Package

This package contains all Pydantic models used by the ledger core.
All data flowing through the engines must conform to these schemas.
"""

from natillera.models.common import (
    CENT,
    ZERO,
    MemberKey,
    ValidationIssue,
    ValidationResult,
    as_decimal,
    to_money,
)
from natillera.models.ledger import (
    REVERSAL_PREFIX,
    CashStatement,
    Movement,
    MovementCategory,
    MovementKind,
)
from natillera.models.late_fees import (
    DueInstallment,
    LateFeePaymentEntry,
    LateFeePaymentType,
    LateFeeRecord,
    LateFeeStatus,
    PenaltyAssessment,
)
from natillera.models.loans import (
    Loan,
    LoanExtract,
    LoanMovement,
    LoanMovementType,
    LoanStatus,
)
from natillera.models.liquidation import (
    ControlSheetRow,
    DerivedTotals,
    FundIncomeEntry,
    FundIncomeKind,
    FundTotals,
    LiquidationBatch,
    LiquidationPreview,
    MemberRecord,
    MemberSettlementLine,
    SettlementStatus,
    derive_totals,
)
from natillera.models.config import (
    FundConfiguration,
    FundConfigurationRecord,
)
from natillera.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)

__all__ = [
    # Common
    "CENT",
    "ZERO",
    "MemberKey",
    "ValidationIssue",
    "ValidationResult",
    "as_decimal",
    "to_money",
    # Cash ledger
    "REVERSAL_PREFIX",
    "CashStatement",
    "Movement",
    "MovementCategory",
    "MovementKind",
    # Late fees
    "DueInstallment",
    "LateFeePaymentEntry",
    "LateFeePaymentType",
    "LateFeeRecord",
    "LateFeeStatus",
    "PenaltyAssessment",
    # Loans
    "Loan",
    "LoanExtract",
    "LoanMovement",
    "LoanMovementType",
    "LoanStatus",
    # Liquidation
    "ControlSheetRow",
    "DerivedTotals",
    "FundIncomeEntry",
    "FundIncomeKind",
    "FundTotals",
    "LiquidationBatch",
    "LiquidationPreview",
    "MemberRecord",
    "MemberSettlementLine",
    "SettlementStatus",
    "derive_totals",
    # Configuration
    "FundConfiguration",
    "FundConfigurationRecord",
    # Audit models
    "AuditEvent",
    "AuditEventBuilder",
    "AuditEventType",
    "AuditSeverity",
]
