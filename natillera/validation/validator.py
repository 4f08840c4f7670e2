"""
Two-Stage Command Validation

DESIGN DECISION: Every money-affecting command is validated in two stages:

STAGE 1 - STRUCTURAL VALIDATION:
- Positive amounts, amounts in cents
- Values required by the command type
- This catches malformed input before anything is read

STAGE 2 - SEMANTIC VALIDATION:
- Payments against the state they apply to (remaining, paid records)
- Dates against the history they extend
- Future dates and absurd amounts (warnings only)

Stage 2 only runs when stage 1 passes.

IMPORTANT: Validation NEVER silently fixes issues. Errors become a
ValidationError carrying every issue; warnings are returned to the caller.
"""

from datetime import date, timedelta
from decimal import Decimal
from typing import Optional

from natillera.config import get_settings
from natillera.config.settings import AppSettings
from natillera.errors import ValidationError
from natillera.models.common import ZERO, ValidationIssue, ValidationResult
from natillera.models.late_fees import LateFeeRecord, LateFeeStatus
from natillera.models.ledger import MovementKind
from natillera.models.loans import LoanMovement, LoanMovementType


def _has_errors(issues: list[ValidationIssue]) -> bool:
    return any(issue.severity == "error" for issue in issues)


def _positive_amount(amount: Decimal, field: str = "amount") -> list[ValidationIssue]:
    issues = []
    if amount <= 0:
        issues.append(ValidationIssue(
            field=field,
            issue_type="non_positive",
            message="Amount must be greater than zero",
            severity="error",
        ))
    elif amount != amount.quantize(Decimal("0.01")):
        issues.append(ValidationIssue(
            field=field,
            issue_type="too_precise",
            message=f"Amount {amount} has more than two decimal places",
            severity="error",
            suggested_fix="Round the amount to cents",
        ))
    return issues


class LedgerValidator:
    """
    Validates ledger commands through a two-stage pipeline.

    Stage 1: Structural validation (input only)
    Stage 2: Semantic validation (input against current state)
    """

    def __init__(self, app_settings: Optional[AppSettings] = None):
        self._settings = app_settings or get_settings().app

    def _check_date(self, field: str, value: date) -> list[ValidationIssue]:
        """Warn on dates too far in the future."""
        max_future_date = date.today() + timedelta(days=self._settings.future_date_tolerance_days)
        if value > max_future_date:
            return [ValidationIssue(
                field=field,
                issue_type="future_date",
                message=f"Date ({value}) is in the future",
                severity="warning",
                suggested_fix="Please verify the date is correct",
            )]
        return []

    def _check_magnitude(self, amount: Decimal) -> list[ValidationIssue]:
        if amount > self._settings.max_movement_amount:
            return [ValidationIssue(
                field="amount",
                issue_type="suspicious_value",
                message=f"Amount ({amount:,.2f}) seems unusually high",
                severity="warning",
                suggested_fix="Please verify this amount is correct",
            )]
        return []

    def _result(
        self,
        command: str,
        structural: list[ValidationIssue],
        semantic: Optional[list[ValidationIssue]] = None,
    ) -> ValidationResult:
        structural_valid = not _has_errors(structural)
        semantic = semantic if structural_valid and semantic is not None else []
        return ValidationResult(
            command=command,
            structural_valid=structural_valid,
            semantic_valid=structural_valid and not _has_errors(semantic),
            issues=structural + semantic,
        )

    def validate_movement(
        self,
        kind: MovementKind,
        amount: Decimal,
        movement_date: date,
        current_balance: Decimal,
        concept: Optional[str] = None,
    ) -> ValidationResult:
        """Validate a cash ledger append."""
        structural = _positive_amount(amount)
        if concept is not None and not concept.strip():
            structural.append(ValidationIssue(
                field="concept",
                issue_type="missing",
                message="Concept must not be blank",
                severity="error",
                suggested_fix="Describe what the movement is for",
            ))
        semantic = self._check_date("movement_date", movement_date) + self._check_magnitude(amount)
        if kind is MovementKind.EXPENSE and amount > current_balance:
            semantic.append(ValidationIssue(
                field="amount",
                issue_type="exceeds_balance",
                message=f"Expense of {amount} exceeds the current balance of {current_balance}",
                severity="warning",
            ))
        return self._result("append_movement", structural, semantic)

    def validate_late_fee_payment(
        self,
        record: LateFeeRecord,
        amount: Decimal,
        payment_date: date,
    ) -> ValidationResult:
        """Validate a payment allocated against a late-fee record."""
        structural = _positive_amount(amount)
        semantic = self._check_date("payment_date", payment_date)

        if record.status is LateFeeStatus.PAID:
            semantic.append(ValidationIssue(
                field="late_fee_record",
                issue_type="already_paid",
                message=f"Late fee for {record.concept_label} is already paid",
                severity="error",
            ))
        elif amount > record.remaining:
            semantic.append(ValidationIssue(
                field="amount",
                issue_type="exceeds_remaining",
                message=f"Payment of {amount} exceeds the remaining {record.remaining}",
                severity="error",
                suggested_fix=f"Pay at most {record.remaining}",
            ))

        if payment_date < record.installment_payment_date:
            semantic.append(ValidationIssue(
                field="payment_date",
                issue_type="before_assessment",
                message="Payment date is before the installment was paid",
                severity="warning",
            ))
        return self._result("allocate_payment", structural, semantic)

    def validate_loan_opening(
        self,
        principal: Decimal,
        monthly_rate_percent: Decimal,
        start_date: date,
    ) -> ValidationResult:
        structural = _positive_amount(principal, "principal")
        if monthly_rate_percent < 0:
            structural.append(ValidationIssue(
                field="monthly_rate_percent",
                issue_type="negative",
                message="Monthly rate cannot be negative",
                severity="error",
            ))
        semantic = self._check_date("start_date", start_date) + self._check_magnitude(principal)
        return self._result("open_loan", structural, semantic)

    def validate_loan_movement(
        self,
        previous: LoanMovement,
        movement_type: LoanMovementType,
        amount_paid: Optional[Decimal],
        movement_date: date,
    ) -> ValidationResult:
        """
        Validate a loan movement before accrual.

        The interest/principal split checks need the accrued interest and
        run in the accrual engine itself.
        """
        structural = []
        if movement_type is LoanMovementType.DISBURSEMENT:
            structural.append(ValidationIssue(
                field="movement_type",
                issue_type="invalid_type",
                message="A disbursement is only created when the loan is opened",
                severity="error",
            ))
        elif movement_type is LoanMovementType.NO_PAYMENT:
            if amount_paid not in (None, ZERO):
                structural.append(ValidationIssue(
                    field="amount_paid",
                    issue_type="unexpected_amount",
                    message="A no-payment movement cannot carry an amount",
                    severity="error",
                ))
        elif movement_type is LoanMovementType.FULL_PAYMENT:
            if amount_paid is not None and amount_paid < 0:
                structural.append(ValidationIssue(
                    field="amount_paid",
                    issue_type="negative",
                    message="Amount paid cannot be negative",
                    severity="error",
                ))
        elif amount_paid is None:
            structural.append(ValidationIssue(
                field="amount_paid",
                issue_type="missing",
                message="Amount paid is required",
                severity="error",
            ))
        else:
            structural.extend(_positive_amount(amount_paid, "amount_paid"))

        semantic = self._check_date("movement_date", movement_date)
        if movement_date < previous.movement_date:
            semantic.append(ValidationIssue(
                field="movement_date",
                issue_type="out_of_order",
                message=(
                    f"Movement date {movement_date} is before the previous "
                    f"movement ({previous.movement_date})"
                ),
                severity="error",
            ))
        return self._result("accrue_and_apply", structural, semantic)

    @staticmethod
    def ensure_valid(result: ValidationResult) -> ValidationResult:
        """
        Raise ValidationError when the result carries errors.

        Returns the result unchanged otherwise, so warnings stay available.
        """
        if result.is_valid:
            return result
        errors = [issue for issue in result.issues if issue.severity == "error"]
        raise ValidationError(
            "; ".join(issue.message for issue in errors),
            issues=result.issues,
        )

    def get_summary(self, result: ValidationResult) -> str:
        """
        Plain-text summary of a validation result for the treasurer.
        """
        if result.is_valid and not result.warnings:
            return "All checks passed."

        lines = []
        for issue in result.issues:
            if issue.severity == "error":
                lines.append(f"ERROR {issue.field}: {issue.message}")
                if issue.suggested_fix:
                    lines.append(f"      {issue.suggested_fix}")
        for warning in result.warnings:
            lines.append(f"WARNING {warning}")
        return "\n".join(lines)
