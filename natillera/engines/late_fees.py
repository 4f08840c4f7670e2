"""
Late-Fee Engine ("moras")

A penalty exists for a (member, installment) pair when the installment was
paid strictly after its due date and both dates fall in the same calendar
month. Paying in a later month never creates a fee.

    days_late      = min(payment_date - due_date, max_days)
    total_sanction = days_late * daily_rate

Payments are allocated against the record and mirrored in the cash ledger
as INCOME; reversing a payment appends the compensating EXPENSE. The record
update, the payment history entry and the ledger movement commit together.
"""

from datetime import date
from decimal import Decimal
from typing import Optional
from uuid import UUID

import structlog

from natillera.audit import AuditLogger
from natillera.config import ConfigurationProvider
from natillera.engines.cash_ledger import CashLedger
from natillera.errors import ConsistencyError, NotFoundError
from natillera.models.audit import AuditEvent, AuditEventBuilder
from natillera.models.common import ZERO, MemberKey, as_decimal
from natillera.models.late_fees import (
    DueInstallment,
    LateFeePaymentEntry,
    LateFeePaymentType,
    LateFeeRecord,
    LateFeeStatus,
    PenaltyAssessment,
)
from natillera.models.ledger import MovementCategory, MovementKind
from natillera.services.storage import RecordStore
from natillera.validation import LedgerValidator


logger = structlog.get_logger(__name__)

INSTALLMENTS_PER_YEAR = 24


def installment_due_dates(year: int) -> dict[int, date]:
    """
    Due date of each of the 24 installments of a fund year.

    January: both installments are due on the 16th.
    February to December: installment 1 on the 2nd, installment 2 on the 16th.
    Installment k (1 or 2) of month m is number 2 * (m - 1) + k.
    """
    due_dates = {}
    for month in range(1, 13):
        first_day = 16 if month == 1 else 2
        due_dates[2 * (month - 1) + 1] = date(year, month, first_day)
        due_dates[2 * (month - 1) + 2] = date(year, month, 16)
    return due_dates


def same_due_period(due_date: date, payment_date: date) -> bool:
    return (due_date.year, due_date.month) == (payment_date.year, payment_date.month)


def compute_penalty(
    due_date: date,
    payment_date: date,
    daily_rate: Decimal,
    max_days: int,
) -> PenaltyAssessment:
    """Days late (clamped to max_days) and the resulting sanction."""
    if payment_date <= due_date:
        return PenaltyAssessment(days_late=0, total_sanction=ZERO)
    days_late = min((payment_date - due_date).days, max_days)
    return PenaltyAssessment(days_late=days_late, total_sanction=days_late * daily_rate)


class LateFeeEngine:
    """Assesses penalties and allocates/reverses their payments."""

    def __init__(
        self,
        store: RecordStore,
        ledger: CashLedger,
        config_provider: ConfigurationProvider,
        validator: Optional[LedgerValidator] = None,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._store = store
        self._ledger = ledger
        self._config = config_provider
        self._validator = validator or LedgerValidator()
        self._audit = audit_logger or AuditLogger()

    # =========================================================================
    # Queries
    # =========================================================================

    async def due_dates(self, year: Optional[int] = None) -> dict[int, date]:
        config = await self._config.resolve(year)
        return installment_due_dates(config.year)

    async def get_record(self, record_id: UUID) -> LateFeeRecord:
        record = await self._store.late_fees.get_record(record_id)
        if record is None:
            raise NotFoundError("Late fee record", record_id)
        return record

    async def find_record(
        self,
        member_key: MemberKey,
        installment_number: int,
    ) -> Optional[LateFeeRecord]:
        """The record of an installment, or None (status NONE)."""
        return await self._store.late_fees.find_record(MemberKey.of(member_key), installment_number)

    async def status_of(
        self,
        member_key: MemberKey,
        installment_number: int,
    ) -> LateFeeStatus:
        record = await self.find_record(member_key, installment_number)
        return record.status if record else LateFeeStatus.NONE

    async def outstanding(
        self,
        member_key: Optional[MemberKey] = None,
    ) -> list[LateFeeRecord]:
        """Records with something left to pay."""
        key = MemberKey.of(member_key) if member_key is not None else None
        records = await self._store.late_fees.list_records(member_key=key)
        return [r for r in records if r.remaining > ZERO]

    async def payment_history(
        self,
        member_key: Optional[MemberKey] = None,
    ) -> list[LateFeePaymentEntry]:
        """Payment entries, newest first."""
        entries = await self._store.late_fees.list_payment_entries()
        if member_key is not None:
            key = MemberKey.of(member_key)
            record_ids = {
                r.id for r in await self._store.late_fees.list_records(member_key=key)
            }
            entries = [e for e in entries if e.late_fee_record_id in record_ids]
        entries.sort(key=lambda e: (e.payment_date, e.created_at), reverse=True)
        return entries

    async def total_collected(self) -> Decimal:
        """Sum of the live (non-reversed) payment entries."""
        entries = await self._store.late_fees.list_payment_entries()
        return sum((e.amount for e in entries), ZERO)

    # =========================================================================
    # Assessment
    # =========================================================================

    async def _assess(
        self,
        installment: DueInstallment,
        events: list[AuditEvent],
    ) -> Optional[LateFeeRecord]:
        existing = await self._store.late_fees.find_record(
            installment.member_key, installment.installment_number
        )
        has_payments = existing is not None and (
            existing.amount_paid > ZERO
            or bool(await self._store.late_fees.list_payment_entries(existing.id))
        )

        penalty = None
        if installment.payment_date is not None and same_due_period(
            installment.due_date, installment.payment_date
        ):
            config = await self._config.resolve(installment.due_date.year)
            penalty = compute_penalty(
                installment.due_date,
                installment.payment_date,
                config.daily_late_fee_rate,
                config.max_late_fee_days,
            )
            if not penalty.is_late or penalty.total_sanction == ZERO:
                penalty = None

        if existing is not None and penalty is not None and (
            existing.installment_payment_date == installment.payment_date
            and existing.days_late == penalty.days_late
        ):
            return existing

        if has_payments:
            raise ConsistencyError(
                f"Late fee for {existing.concept_label} already has payments; "
                "reverse them before re-assessing"
            )

        if existing is not None:
            await self._store.late_fees.delete_record(existing.id)
            if penalty is None:
                events.append(AuditEventBuilder.late_fee_cleared(
                    existing.id, str(existing.member_key), existing.installment_number
                ))

        if penalty is None:
            return None

        record = LateFeeRecord(
            member_key=installment.member_key,
            member_name=installment.member_name,
            installment_number=installment.installment_number,
            due_date=installment.due_date,
            installment_payment_date=installment.payment_date,
            daily_rate=config.daily_late_fee_rate,
            max_days=config.max_late_fee_days,
            days_late=penalty.days_late,
            total_sanction=penalty.total_sanction,
        )
        await self._store.late_fees.insert_record(record)
        events.append(AuditEventBuilder.late_fee_assessed(
            record.id,
            str(record.member_key),
            record.installment_number,
            record.days_late,
            record.total_sanction,
        ))
        return record

    async def assess_installment(
        self,
        member_key: MemberKey,
        installment_number: int,
    ) -> Optional[LateFeeRecord]:
        """
        Create, replace or clear the record of one paid installment.

        Returns:
            The current record, or None when the installment carries no fee

        Raises:
            NotFoundError: If the dues source has no such installment
            ConsistencyError: If the penalty changed but payments exist
        """
        key = MemberKey.of(member_key)
        installment = await self._store.dues.get_installment(key, installment_number)
        if installment is None:
            raise NotFoundError("Installment", f"{key}/{installment_number}")

        events: list[AuditEvent] = []
        async with self._store.transaction():
            record = await self._assess(installment, events)
        await self._audit.log_all(events)
        return record

    async def assess_member(self, member_key: Optional[MemberKey] = None) -> list[LateFeeRecord]:
        """Assess every installment of one member (or of everyone)."""
        key = MemberKey.of(member_key) if member_key is not None else None
        installments = await self._store.dues.list_installments(member_key=key)

        events: list[AuditEvent] = []
        records = []
        async with self._store.transaction():
            for installment in installments:
                record = await self._assess(installment, events)
                if record is not None:
                    records.append(record)
        await self._audit.log_all(events)
        logger.info("late_fees_assessed", member_key=str(key) if key else None, records=len(records))
        return records

    # =========================================================================
    # Payments
    # =========================================================================

    async def allocate_payment(
        self,
        record_id: UUID,
        amount: Decimal,
        payment_date: date,
    ) -> LateFeeRecord:
        """
        Apply a payment to a late-fee record.

        Appends the INCOME movement, updates the record and appends the
        history entry, all in one transaction.

        Raises:
            NotFoundError: If the record doesn't exist
            ValidationError: If amount <= 0, exceeds what remains, or the
                record is already paid
        """
        amount = as_decimal(amount)
        events: list[AuditEvent] = []
        async with self._store.transaction():
            record = await self.get_record(record_id)
            result = self._validator.ensure_valid(
                self._validator.validate_late_fee_payment(record, amount, payment_date)
            )
            if result.warnings:
                logger.warning("late_fee_payment_warnings", record_id=str(record_id), warnings=result.warnings)

            movement = await self._ledger.record_movement(
                kind=MovementKind.INCOME,
                concept=f"Pago de Mora - {record.concept_label}",
                amount=amount,
                movement_date=payment_date,
                events=events,
                reference_id=str(record.id),
                category=MovementCategory.LATE_FEE,
            )

            updated = record.model_copy(update={
                "amount_paid": record.amount_paid + amount,
                "last_payment_date": payment_date,
                "updated_at": movement.created_at,
            })
            await self._store.late_fees.update_record(updated)

            entry = LateFeePaymentEntry(
                late_fee_record_id=record.id,
                payment_date=payment_date,
                amount=amount,
                payment_type=(
                    LateFeePaymentType.FULL if updated.remaining == ZERO
                    else LateFeePaymentType.PARTIAL
                ),
                movement_id=movement.id,
            )
            await self._store.late_fees.insert_payment_entry(entry)

        events.append(AuditEventBuilder.late_fee_payment_allocated(
            entry.id, record.id, amount, updated.remaining, movement.id
        ))
        await self._audit.log_all(events)
        logger.info(
            "late_fee_payment_allocated",
            record_id=str(record.id),
            amount=str(amount),
            remaining=str(updated.remaining),
            status=updated.status.value,
        )
        return updated

    async def reverse_payment(
        self,
        entry_id: UUID,
        reversal_date: Optional[date] = None,
    ) -> LateFeeRecord:
        """
        Undo one payment entry.

        Decreases the amount paid (floored at 0), deletes the entry and
        appends the compensating EXPENSE to the cash ledger. The installment
        itself stays paid.

        Raises:
            NotFoundError: If the entry or its record doesn't exist
        """
        events: list[AuditEvent] = []
        async with self._store.transaction():
            entry = await self._store.late_fees.get_payment_entry(entry_id)
            if entry is None:
                raise NotFoundError("Late fee payment", entry_id)
            record = await self.get_record(entry.late_fee_record_id)

            concept = f"Eliminación Pago Mora - {record.concept_label}"
            if entry.movement_id is not None:
                reversal = await self._ledger.record_reversal(
                    entry.movement_id, events, reversal_date, concept
                )
            else:
                reversal = await self._ledger.record_movement(
                    kind=MovementKind.EXPENSE,
                    concept=f"REVERSO - {concept}",
                    amount=entry.amount,
                    movement_date=reversal_date or date.today(),
                    events=events,
                    reference_id=str(record.id),
                    category=MovementCategory.LATE_FEE,
                )

            remaining_entries = [
                e for e in await self._store.late_fees.list_payment_entries(record.id)
                if e.id != entry.id
            ]
            updated = record.model_copy(update={
                "amount_paid": max(ZERO, record.amount_paid - entry.amount),
                "last_payment_date": max(
                    (e.payment_date for e in remaining_entries), default=None
                ),
                "updated_at": reversal.created_at,
            })
            await self._store.late_fees.update_record(updated)
            await self._store.late_fees.delete_payment_entry(entry.id)

        events.append(AuditEventBuilder.late_fee_payment_reversed(
            entry.id, record.id, entry.amount, reversal.id
        ))
        await self._audit.log_all(events)
        logger.info(
            "late_fee_payment_reversed",
            record_id=str(record.id),
            amount=str(entry.amount),
            remaining=str(updated.remaining),
        )
        return updated
