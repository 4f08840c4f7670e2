"""
Tests for the Natillera ledger

Test strategy:
1. Unit tests for individual components (models, validators, pure math)
2. Flow tests for the engines against the in-memory store
3. No real Google Sheets calls in tests (use mocks)
"""

import pytest
from datetime import date
from decimal import Decimal
from uuid import uuid4

from natillera.models import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
    FundConfigurationRecord,
    FundTotals,
    LateFeeRecord,
    LateFeeStatus,
    LiquidationBatch,
    MemberKey,
    Movement,
    MovementKind,
    ValidationIssue,
    ValidationResult,
    derive_totals,
    to_money,
)


class TestMoneyHelpers:
    """Tests for money rounding and member keys."""

    def test_to_money_rounds_half_up(self):
        """Half a cent rounds away from zero."""
        assert to_money(Decimal("10.005")) == Decimal("10.01")
        assert to_money(Decimal("10.004")) == Decimal("10.00")

    def test_to_money_accepts_floats_via_str(self):
        """Floats are converted through their string form."""
        assert to_money(0.1 + 0.2) == Decimal("0.30")

    def test_member_key_strips_whitespace(self):
        """Keys are compared after stripping."""
        assert MemberKey("  1037  ") == MemberKey("1037")
        assert str(MemberKey("1037")) == "1037"

    def test_member_key_rejects_empty(self):
        """An empty key is not a member."""
        with pytest.raises(ValueError):
            MemberKey("   ")

    def test_member_key_of_is_idempotent(self):
        """MemberKey.of returns keys unchanged and wraps strings."""
        key = MemberKey("1037")
        assert MemberKey.of(key) is key
        assert MemberKey.of("1037") == key


class TestMovementModel:
    """Tests for the cash ledger movement."""

    def test_income_balance_invariant(self):
        """An income adds its amount to the prior balance."""
        movement = Movement(
            kind=MovementKind.INCOME,
            concept="Cuota",
            amount=Decimal("50000"),
            prior_balance=Decimal("0"),
            resulting_balance=Decimal("50000"),
            movement_date=date(2025, 1, 1),
        )
        assert movement.signed_amount == Decimal("50000")
        assert movement.is_reversal is False

    def test_rejects_inconsistent_balance(self):
        """An expense must subtract its amount."""
        with pytest.raises(ValueError, match="does not match"):
            Movement(
                kind=MovementKind.EXPENSE,
                concept="Gasto",
                amount=Decimal("20000"),
                prior_balance=Decimal("50000"),
                resulting_balance=Decimal("70000"),
                movement_date=date(2025, 1, 1),
            )

    def test_rejects_non_positive_amount(self):
        """Amounts are always positive; the kind carries the sign."""
        with pytest.raises(ValueError):
            Movement(
                kind=MovementKind.INCOME,
                concept="Nada",
                amount=Decimal("0"),
                prior_balance=Decimal("0"),
                resulting_balance=Decimal("0"),
                movement_date=date(2025, 1, 1),
            )

    def test_opposite_kind(self):
        assert MovementKind.INCOME.opposite is MovementKind.EXPENSE
        assert MovementKind.EXPENSE.opposite is MovementKind.INCOME


class TestLateFeeRecordModel:
    """Tests for the derived late-fee fields."""

    def _record(self, **overrides) -> LateFeeRecord:
        values = dict(
            member_key=MemberKey("1037"),
            member_name="Ana",
            installment_number=1,
            due_date=date(2025, 1, 15),
            installment_payment_date=date(2025, 1, 20),
            daily_rate=Decimal("3000"),
            max_days=15,
            days_late=5,
            total_sanction=Decimal("15000"),
        )
        values.update(overrides)
        return LateFeeRecord(**values)

    def test_status_follows_amount_paid(self):
        """PENDING, then PARTIALLY_PAID, then PAID."""
        assert self._record().status is LateFeeStatus.PENDING
        assert self._record(amount_paid=Decimal("10000")).status is LateFeeStatus.PARTIALLY_PAID
        assert self._record(amount_paid=Decimal("15000")).status is LateFeeStatus.PAID

    def test_remaining_never_negative(self):
        record = self._record(amount_paid=Decimal("20000"))
        assert record.remaining == Decimal("0")

    def test_sanction_must_match_days(self):
        """total_sanction is days_late times the daily rate."""
        with pytest.raises(ValueError, match="does not match"):
            self._record(total_sanction=Decimal("12000"))

    def test_days_late_cannot_exceed_max(self):
        with pytest.raises(ValueError):
            self._record(days_late=16, total_sanction=Decimal("48000"))

    def test_concept_label_prefers_name(self):
        assert self._record().concept_label == "Ana - Cuota 1"
        assert self._record(member_name=None).concept_label == "1037 - Cuota 1"


class TestLiquidationModels:
    """Tests for settlement arithmetic."""

    def test_group_profit(self):
        totals = FundTotals(
            late_fees=Decimal("15000"),
            loan_interest=Decimal("2000"),
            activity_income=Decimal("200000"),
            investment_gains=Decimal("100000"),
            operating_expenses=Decimal("30000"),
            operational_bank_tax=Decimal("4000"),
        )
        assert totals.group_profit == Decimal("283000")

    def test_derive_totals(self):
        """Commission, subtotal, tax and net follow the settlement formula."""
        derived = derive_totals(
            dues_total=Decimal("720000"),
            profit_share=Decimal("80000"),
            deductions=Decimal("50000"),
            administration_percent=Decimal("8"),
            disbursement_tax_rate=Decimal("0.004"),
        )
        assert derived.administration_commission == Decimal("64000.00")
        assert derived.subtotal == Decimal("736000.00")
        assert derived.disbursement_tax == Decimal("2944.00")
        assert derived.net_payable == Decimal("683056.00")

    def test_batch_rejects_inconsistent_totals(self):
        with pytest.raises(ValueError, match="Subtotal"):
            LiquidationBatch(
                member_keys=[MemberKey("1037")],
                dues_total=Decimal("100"),
                administration_percent=Decimal("8"),
                administration_commission=Decimal("8"),
                subtotal=Decimal("100"),
                disbursement_tax_rate=Decimal("0.004"),
                net_payable=Decimal("100"),
                liquidation_date=date(2025, 12, 1),
            )

    def test_batch_covers_member(self):
        derived = derive_totals(Decimal("100"), Decimal("0"), Decimal("0"), Decimal("0"), Decimal("0"))
        batch = LiquidationBatch(
            member_keys=[MemberKey("1037")],
            dues_total=Decimal("100"),
            administration_percent=Decimal("0"),
            disbursement_tax_rate=Decimal("0"),
            liquidation_date=date(2025, 12, 1),
            **derived.model_dump(),
        )
        assert batch.covers(MemberKey("1037"))
        assert not batch.covers(MemberKey("9999"))


class TestConfigurationRecord:

    def test_overrides_only_set_fields(self):
        """Unset fields fall through to the environment."""
        record = FundConfigurationRecord(year=2025, daily_late_fee_rate=Decimal("2000"))
        assert record.overrides() == {"daily_late_fee_rate": Decimal("2000")}


class TestAuditModels:
    """Tests for audit-related models."""

    def test_audit_event_creation(self):
        """Test AuditEvent model creation."""
        event = AuditEvent(
            event_type=AuditEventType.MOVEMENT_APPENDED,
            description="Movement appended",
        )
        assert event.event_type == AuditEventType.MOVEMENT_APPENDED
        assert event.severity == AuditSeverity.INFO

    def test_audit_event_to_log_dict(self):
        """Test conversion to log dictionary."""
        event = AuditEventBuilder.movement_appended(
            movement_id=uuid4(),
            kind="income",
            category="late_fee",
            amount=Decimal("10000"),
            resulting_balance=Decimal("10000"),
        )
        log_dict = event.to_log_dict()
        assert "event_id" in log_dict
        assert log_dict["event_type"] == "movement_appended"
        assert log_dict["details"]["amount"] == "10000"

    def test_audit_event_to_sheets_row(self):
        """Test conversion to sheets row."""
        event = AuditEventBuilder.command_rejected(
            "allocate_payment", "Payment exceeds remaining", "validation_error"
        )
        row = event.to_sheets_row()
        assert len(row) == 11
        assert row[2] == "command_rejected"
        assert row[9] == "validation_error"
        assert row[10] == "Payment exceeds remaining"

    def test_audit_event_builder_loan_opened(self):
        """Loan events correlate on the loan id."""
        loan_id = uuid4()
        event = AuditEventBuilder.loan_opened(loan_id, "Ana", Decimal("100000"), Decimal("2"))
        assert event.entity_id == loan_id
        assert event.correlation_id == loan_id
        assert event.details["principal"] == "100000"

    def test_reversal_events_are_warnings(self):
        event = AuditEventBuilder.late_fee_payment_reversed(uuid4(), uuid4(), Decimal("5000"), uuid4())
        assert event.severity == AuditSeverity.WARNING


class TestValidationResult:
    """Tests for ValidationResult model."""

    def test_validation_result_has_errors(self):
        """Test has_errors property."""
        result = ValidationResult(
            command="append_movement",
            structural_valid=False,
            semantic_valid=False,
            issues=[
                ValidationIssue(
                    field="amount",
                    issue_type="non_positive",
                    message="Amount must be greater than zero",
                    severity="error",
                ),
            ],
        )
        assert result.has_errors is True
        assert result.error_count == 1
        assert result.is_valid is False

    def test_validation_result_warnings_only(self):
        """Test that warnings don't count as errors."""
        result = ValidationResult(
            command="append_movement",
            structural_valid=True,
            semantic_valid=True,
            issues=[
                ValidationIssue(
                    field="movement_date",
                    issue_type="future_date",
                    message="Date in future",
                    severity="warning",
                ),
            ],
        )
        assert result.has_errors is False
        assert result.error_count == 0
        assert result.warnings == ["Date in future"]


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
