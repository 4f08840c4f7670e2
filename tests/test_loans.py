"""Tests for loan accrual and payments."""

from datetime import date, timedelta
from decimal import Decimal
from uuid import uuid4

import pytest

from natillera.engines import accrue_interest, apply_movement
from natillera.errors import ConsistencyError, NotFoundError, ValidationError
from natillera.models import (
    AuditEventType,
    FundConfigurationRecord,
    Loan,
    LoanMovement,
    LoanMovementType,
    LoanStatus,
    MovementCategory,
    MovementKind,
)

from tests.conftest import ANA


START = date(2025, 1, 1)


@pytest.fixture
async def loan(loans) -> Loan:
    """100000 at 2% a month, opened on January 1st."""
    return await loans.open_loan("Ana", Decimal("100000"), Decimal("2"), START, borrower_key=ANA)


class TestAccrualMath:

    def test_thirty_days_at_two_percent(self):
        """2% of 100000 over 30 days is 2000."""
        assert accrue_interest(Decimal("100000"), Decimal("2"), 30) == Decimal("2000")

    def test_interest_is_rounded_to_cents(self):
        assert accrue_interest(Decimal("100000"), Decimal("2.5"), 7) == Decimal("583.33")

    def test_zero_days_accrue_nothing(self):
        assert accrue_interest(Decimal("100000"), Decimal("2"), 0) == Decimal("0")

    def test_apply_movement_is_pure(self):
        """Principal payment splits interest first, remainder to principal."""
        loan = Loan(borrower_name="Ana", principal=Decimal("100000"),
                    monthly_rate_percent=Decimal("2"), start_date=START)
        disbursement = LoanMovement(
            loan_id=loan.id, movement_date=START,
            movement_type=LoanMovementType.DISBURSEMENT,
            outstanding_principal=Decimal("100000"), total_outstanding=Decimal("100000"),
        )
        computed = apply_movement(
            loan, disbursement, LoanMovementType.PRINCIPAL_PAYMENT, Decimal("5000"), date(2025, 1, 31)
        )
        assert computed.interest_paid == Decimal("2000")
        assert computed.principal_paid == Decimal("3000")
        assert computed.outstanding_principal == Decimal("97000")
        assert disbursement.outstanding_principal == Decimal("100000")


class TestOpenLoan:

    async def test_open_creates_disbursement(self, loans, loan):
        movements = await loans.movements(loan.id)
        assert len(movements) == 1
        assert movements[0].movement_type is LoanMovementType.DISBURSEMENT
        assert movements[0].sequence == 0
        assert movements[0].outstanding_principal == Decimal("100000")
        assert loan.status is LoanStatus.ACTIVE

    async def test_disbursement_leaves_the_ledger(self, loan, ledger):
        movement = (await ledger.list_movements())[0]
        assert movement.kind is MovementKind.EXPENSE
        assert movement.category is MovementCategory.LOAN_DISBURSEMENT
        assert movement.concept == "Desembolso Préstamo - Ana"
        assert await ledger.current_balance() == Decimal("-100000")

    async def test_disbursement_policy_off(self, loans, ledger, config_provider):
        await config_provider.save(FundConfigurationRecord(year=2025, record_loan_disbursements=False))
        loan = await loans.open_loan("Beto", Decimal("50000"), Decimal("2"), START)
        assert await ledger.current_balance() == Decimal("0")
        assert (await loans.movements(loan.id))[0].cash_movement_id is None

    @pytest.mark.parametrize("principal,rate", [
        (Decimal("0"), Decimal("2")),
        (Decimal("1000"), Decimal("-1")),
    ])
    async def test_rejects_invalid_terms(self, loans, principal, rate):
        with pytest.raises(ValidationError):
            await loans.open_loan("Ana", principal, rate, START)


class TestPayments:

    async def test_principal_payment(self, loans, loan, ledger):
        """Accrued interest is paid before principal."""
        movement = await loans.accrue_and_apply(
            loan.id, date(2025, 1, 31), LoanMovementType.PRINCIPAL_PAYMENT, Decimal("5000")
        )
        assert movement.days_elapsed == 30
        assert movement.interest_accrued == Decimal("2000")
        assert movement.interest_paid == Decimal("2000")
        assert movement.principal_paid == Decimal("3000")
        assert movement.outstanding_principal == Decimal("97000")
        assert movement.sequence == 1

        income = (await ledger.list_movements())[0]
        assert income.kind is MovementKind.INCOME
        assert income.category is MovementCategory.LOAN_PAYMENT
        assert income.amount == Decimal("5000")
        assert income.concept == "Abono a Capital Préstamo - Ana"
        assert movement.cash_movement_id == income.id

    async def test_no_payment_carries_interest(self, loans, loan, ledger):
        balance_before = await ledger.current_balance()
        carried = await loans.accrue_and_apply(loan.id, date(2025, 1, 31), LoanMovementType.NO_PAYMENT)
        assert carried.unpaid_interest == Decimal("2000")
        assert carried.total_outstanding == Decimal("102000")
        assert await ledger.current_balance() == balance_before

        paid = await loans.accrue_and_apply(
            loan.id, date(2025, 3, 2), LoanMovementType.INTEREST_PAYMENT, Decimal("4000")
        )
        assert paid.interest_accrued == Decimal("2000")
        assert paid.interest_paid == Decimal("4000")
        assert paid.unpaid_interest == Decimal("0")
        assert paid.outstanding_principal == Decimal("100000")

    async def test_short_interest_payment_leaves_unpaid(self, loans, loan):
        movement = await loans.accrue_and_apply(
            loan.id, date(2025, 1, 31), LoanMovementType.INTEREST_PAYMENT, Decimal("1500")
        )
        assert movement.unpaid_interest == Decimal("500")
        assert movement.total_outstanding == Decimal("100500")

    async def test_interest_payment_cannot_exceed_interest(self, loans, loan):
        with pytest.raises(ValidationError):
            await loans.accrue_and_apply(
                loan.id, date(2025, 1, 31), LoanMovementType.INTEREST_PAYMENT, Decimal("2500")
            )

    async def test_principal_payment_must_cover_interest(self, loans, loan):
        with pytest.raises(ValidationError):
            await loans.accrue_and_apply(
                loan.id, date(2025, 1, 31), LoanMovementType.PRINCIPAL_PAYMENT, Decimal("1000")
            )

    async def test_principal_payment_cannot_exceed_outstanding(self, loans, loan):
        with pytest.raises(ValidationError):
            await loans.accrue_and_apply(
                loan.id, date(2025, 1, 31), LoanMovementType.PRINCIPAL_PAYMENT, Decimal("102001")
            )

    async def test_no_payment_cannot_carry_amount(self, loans, loan):
        with pytest.raises(ValidationError):
            await loans.accrue_and_apply(
                loan.id, date(2025, 1, 31), LoanMovementType.NO_PAYMENT, Decimal("100")
            )

    async def test_movement_before_previous_is_rejected(self, loans, loan):
        with pytest.raises(ValidationError):
            await loans.accrue_and_apply(
                loan.id, date(2024, 12, 31), LoanMovementType.INTEREST_PAYMENT, Decimal("100")
            )

    async def test_disbursement_cannot_be_applied(self, loans, loan):
        with pytest.raises(ValidationError):
            await loans.accrue_and_apply(
                loan.id, date(2025, 1, 31), LoanMovementType.DISBURSEMENT, Decimal("100")
            )

    async def test_rejected_payment_writes_nothing(self, loans, loan, ledger):
        balance = await ledger.current_balance()
        with pytest.raises(ValidationError):
            await loans.accrue_and_apply(
                loan.id, date(2025, 1, 31), LoanMovementType.PRINCIPAL_PAYMENT, Decimal("1000")
            )
        assert await ledger.current_balance() == balance
        assert len(await loans.movements(loan.id)) == 1

    async def test_unknown_loan(self, loans):
        with pytest.raises(NotFoundError):
            await loans.accrue_and_apply(uuid4(), date(2025, 1, 31), LoanMovementType.NO_PAYMENT)


class TestPayoff:

    async def test_full_payment_closes_loan(self, loans, loan, ledger):
        movement = await loans.accrue_and_apply(loan.id, date(2025, 1, 31), LoanMovementType.FULL_PAYMENT)
        assert movement.amount_paid == Decimal("102000")
        assert movement.total_outstanding == Decimal("0")
        assert (await loans.get_loan(loan.id)).status is LoanStatus.PAID
        assert await ledger.current_balance() == Decimal("2000")

    async def test_full_payment_must_match_payoff(self, loans, loan):
        with pytest.raises(ValidationError, match="exactly 102000"):
            await loans.accrue_and_apply(
                loan.id, date(2025, 1, 31), LoanMovementType.FULL_PAYMENT, Decimal("100000")
            )

    async def test_principal_payment_can_close_loan(self, loans, loan):
        await loans.accrue_and_apply(
            loan.id, date(2025, 1, 31), LoanMovementType.PRINCIPAL_PAYMENT, Decimal("102000")
        )
        assert (await loans.get_loan(loan.id)).status is LoanStatus.PAID

    async def test_paid_loan_accepts_no_movements(self, loans, loan):
        await loans.accrue_and_apply(loan.id, date(2025, 1, 31), LoanMovementType.FULL_PAYMENT)
        with pytest.raises(ConsistencyError):
            await loans.accrue_and_apply(loan.id, date(2025, 2, 28), LoanMovementType.NO_PAYMENT)


class TestExtract:

    async def test_projection_accrues_to_date(self, loans, loan):
        projection = await loans.projection(loan.id, date(2025, 1, 16))
        assert projection.is_projection is True
        assert projection.days_elapsed == 15
        assert projection.interest_accrued == Decimal("1000")
        assert projection.sequence == 1
        assert len(await loans.movements(loan.id)) == 1

    async def test_extract_rows_and_totals(self, loans, loan):
        await loans.accrue_and_apply(
            loan.id, date(2025, 1, 31), LoanMovementType.PRINCIPAL_PAYMENT, Decimal("5000")
        )
        extract = await loans.extract(loan.id, as_of=date(2025, 2, 15))
        assert len(extract.movements) == 2
        assert len(extract.rows) == 3
        assert extract.projection.interest_accrued == Decimal("970")
        assert extract.total_interest_paid == Decimal("2000")
        assert extract.total_principal_paid == Decimal("3000")
        assert extract.outstanding_principal == Decimal("97000")

    async def test_paid_loan_has_no_projection(self, loans, loan):
        await loans.accrue_and_apply(loan.id, date(2025, 1, 31), LoanMovementType.FULL_PAYMENT)
        extract = await loans.extract(loan.id)
        assert extract.projection is None
        with pytest.raises(ConsistencyError):
            await loans.projection(loan.id)

    async def test_extract_of_future_dated_loan(self, loans):
        start = date.today() + timedelta(days=3)
        loan = await loans.open_loan("Ana", Decimal("100000"), Decimal("2"), start, borrower_key=ANA)

        extract = await loans.extract(loan.id)
        assert extract.projection.movement_date == start
        assert extract.projection.interest_accrued == Decimal("0")

    async def test_explicit_as_of_before_last_movement(self, loans, loan):
        with pytest.raises(ValidationError):
            await loans.extract(loan.id, as_of=START - timedelta(days=1))

    async def test_outstanding_principal_by_borrower(self, loans, loan):
        await loans.accrue_and_apply(
            loan.id, date(2025, 1, 31), LoanMovementType.PRINCIPAL_PAYMENT, Decimal("5000")
        )
        assert await loans.outstanding_principal(ANA) == Decimal("97000")
        assert await loans.total_interest_collected() == Decimal("2000")


class TestAmend:

    async def test_amend_replays_later_movements(self, loans, loan, ledger):
        first = await loans.accrue_and_apply(
            loan.id, date(2025, 1, 31), LoanMovementType.PRINCIPAL_PAYMENT, Decimal("5000")
        )
        await loans.accrue_and_apply(loan.id, date(2025, 3, 2), LoanMovementType.NO_PAYMENT)

        replayed = await loans.amend_movement(first.id, amount_paid=Decimal("12000"))
        assert [m.id for m in replayed][0] == first.id
        assert replayed[0].principal_paid == Decimal("10000")
        assert replayed[0].outstanding_principal == Decimal("90000")
        assert replayed[1].interest_accrued == Decimal("1800")
        assert replayed[1].total_outstanding == Decimal("91800")

        adjustment = (await ledger.list_movements())[0]
        assert adjustment.kind is MovementKind.INCOME
        assert adjustment.amount == Decimal("7000")
        assert adjustment.concept == "Ajuste Pago Préstamo - Ana"

    async def test_amend_can_reopen_a_paid_loan(self, loans, loan, ledger):
        payoff = await loans.accrue_and_apply(
            loan.id, date(2025, 1, 31), LoanMovementType.PRINCIPAL_PAYMENT, Decimal("102000")
        )
        await loans.amend_movement(payoff.id, amount_paid=Decimal("52000"))
        assert (await loans.get_loan(loan.id)).status is LoanStatus.ACTIVE

        adjustment = (await ledger.list_movements())[0]
        assert adjustment.kind is MovementKind.EXPENSE
        assert adjustment.amount == Decimal("50000")

    async def test_disbursement_cannot_be_amended(self, loans, loan):
        disbursement = (await loans.movements(loan.id))[0]
        with pytest.raises(ValidationError):
            await loans.amend_movement(disbursement.id, amount_paid=Decimal("1"))

    async def test_invalid_amend_changes_nothing(self, loans, loan, ledger):
        first = await loans.accrue_and_apply(
            loan.id, date(2025, 1, 31), LoanMovementType.PRINCIPAL_PAYMENT, Decimal("5000")
        )
        balance = await ledger.current_balance()
        with pytest.raises(ValidationError):
            await loans.amend_movement(first.id, amount_paid=Decimal("1000"))
        assert await ledger.current_balance() == balance
        assert (await loans.movements(loan.id))[1].amount_paid == Decimal("5000")

    async def test_amend_is_audited(self, loans, loan, audit_storage):
        first = await loans.accrue_and_apply(
            loan.id, date(2025, 1, 31), LoanMovementType.PRINCIPAL_PAYMENT, Decimal("5000")
        )
        await loans.amend_movement(first.id, amount_paid=Decimal("6000"))
        assert audit_storage.events[-1].event_type is AuditEventType.LOAN_MOVEMENT_AMENDED
