"""
Liquidation Aggregator ("liquidación")

Reads the totals of the other engines and the external fund records and
derives each member's year-end payout. Computing a settlement is read-only;
committing it persists a LiquidationBatch and marks its members settled.

Whether the payout itself leaves the cash ledger is a fund policy
(`liquidation_payout_policy`): "none" writes nothing, "expense" appends an
EXPENSE of the net payable on commit and reverses it on revert.
"""

from datetime import date, datetime
from decimal import Decimal
from typing import Optional
from uuid import UUID

import structlog

from natillera.audit import AuditLogger
from natillera.config import ConfigurationProvider
from natillera.engines.cash_ledger import CashLedger
from natillera.engines.late_fees import LateFeeEngine
from natillera.engines.loans import LoanEngine
from natillera.errors import ConsistencyError, NotFoundError, ValidationError
from natillera.models.audit import AuditEvent, AuditEventBuilder
from natillera.models.common import ZERO, MemberKey, as_decimal, to_money
from natillera.models.config import FundConfiguration
from natillera.models.ledger import MovementCategory, MovementKind
from natillera.models.liquidation import (
    ControlSheetRow,
    FundIncomeKind,
    FundTotals,
    LiquidationBatch,
    LiquidationPreview,
    MemberSettlementLine,
    SettlementStatus,
    derive_totals,
)
from natillera.services.storage import RecordStore


logger = structlog.get_logger(__name__)


class LiquidationEngine:
    """Computes, commits, edits and reverts settlements."""

    def __init__(
        self,
        store: RecordStore,
        ledger: CashLedger,
        late_fees: LateFeeEngine,
        loans: LoanEngine,
        config_provider: ConfigurationProvider,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._store = store
        self._ledger = ledger
        self._late_fees = late_fees
        self._loans = loans
        self._config = config_provider
        self._audit = audit_logger or AuditLogger()

    # =========================================================================
    # Queries
    # =========================================================================

    async def fund_totals(self) -> FundTotals:
        """Group-wide streams feeding the group profit."""
        entries = await self._store.fund_records.list_income_entries()

        def total(kind: FundIncomeKind) -> Decimal:
            return sum((e.amount for e in entries if e.kind is kind), ZERO)

        return FundTotals(
            late_fees=await self._late_fees.total_collected(),
            loan_interest=await self._loans.total_interest_collected(),
            activity_income=total(FundIncomeKind.ACTIVITY),
            investment_gains=total(FundIncomeKind.INVESTMENT),
            operating_expenses=await self._ledger.category_total(MovementCategory.OPERATING_EXPENSE),
            operational_bank_tax=total(FundIncomeKind.BANK_TAX),
        )

    async def get_batch(self, batch_id: UUID) -> LiquidationBatch:
        batch = await self._store.liquidations.get_batch(batch_id)
        if batch is None:
            raise NotFoundError("Liquidation", batch_id)
        return batch

    async def list_batches(self) -> list[LiquidationBatch]:
        return await self._store.liquidations.list_batches()

    async def _settled_batches(self) -> dict[MemberKey, UUID]:
        settled = {}
        for batch in await self._store.liquidations.list_batches():
            for key in batch.member_keys:
                settled[key] = batch.id
        return settled

    async def status_of(self, member_key: MemberKey) -> SettlementStatus:
        settled = await self._settled_batches()
        return SettlementStatus.SETTLED if MemberKey.of(member_key) in settled else SettlementStatus.PENDING

    async def control_sheet(self) -> list[ControlSheetRow]:
        """Every member with its settlement status, by name."""
        settled = await self._settled_batches()
        members = await self._store.fund_records.list_members()
        return [
            ControlSheetRow(
                member_key=member.key,
                member_name=member.name,
                slots=member.slots,
                status=SettlementStatus.SETTLED if member.key in settled else SettlementStatus.PENDING,
                batch_id=settled.get(member.key),
            )
            for member in sorted(members, key=lambda m: m.name)
        ]

    async def compute_settlement(
        self,
        member_keys: list[MemberKey],
        administration_percent: Optional[Decimal] = None,
        liquidation_date: Optional[date] = None,
    ) -> LiquidationPreview:
        """
        Settlement figures for the given members. Writes nothing.

        Args:
            member_keys: Members to settle together
            administration_percent: Overrides the configured commission

        Raises:
            ValidationError: If no member is given
            NotFoundError: If a member doesn't exist
        """
        if not member_keys:
            raise ValidationError("At least one member is required")
        config = await self._config.resolve()
        percent = (
            as_decimal(administration_percent)
            if administration_percent is not None
            else config.administration_percent
        )
        if not ZERO <= percent <= Decimal("100"):
            raise ValidationError(f"Administration percent must be between 0 and 100, got {percent}")

        fund_totals = await self.fund_totals()
        active_members = await self._store.fund_records.list_members(active_only=True)
        total_active_slots = sum(m.slots for m in active_members)

        lines = []
        for key in dict.fromkeys(MemberKey.of(k) for k in member_keys):
            lines.append(await self._member_line(
                key, config, percent, fund_totals.group_profit, total_active_slots
            ))

        return LiquidationPreview(
            liquidation_date=liquidation_date or date.today(),
            lines=lines,
            fund_totals=fund_totals,
            total_active_slots=total_active_slots,
            installment_value=config.installment_value,
            administration_percent=percent,
            disbursement_tax_rate=config.disbursement_tax_rate,
        )

    async def _member_line(
        self,
        key: MemberKey,
        config: FundConfiguration,
        percent: Decimal,
        group_profit: Decimal,
        total_active_slots: int,
    ) -> MemberSettlementLine:
        member = await self._store.fund_records.get_member(key)
        if member is None:
            raise NotFoundError("Member", key)

        installments = await self._store.dues.list_installments(member_key=key)
        paid = sum(1 for i in installments if i.is_paid)
        dues_total = paid * config.installment_value
        profit_share = (
            to_money(group_profit * member.slots / total_active_slots)
            if total_active_slots else ZERO
        )
        deductions = await self._loans.outstanding_principal(key)
        derived = derive_totals(
            dues_total, profit_share, deductions, percent, config.disbursement_tax_rate
        )
        return MemberSettlementLine(
            member_key=key,
            member_name=member.name,
            slots=member.slots,
            paid_installments=paid,
            has_unpaid_dues=any(not i.is_paid for i in installments),
            dues_total=dues_total,
            membership_fees=config.membership_fee * member.slots,
            profit_share=profit_share,
            deductions=deductions,
            **derived.model_dump(),
        )

    # =========================================================================
    # Commands
    # =========================================================================

    async def _record_payout(
        self,
        batch: LiquidationBatch,
        events: list[AuditEvent],
    ) -> Optional[UUID]:
        if batch.net_payable <= ZERO:
            return None
        movement = await self._ledger.record_movement(
            kind=MovementKind.EXPENSE,
            concept=f"Liquidación - {', '.join(batch.member_names)}",
            amount=batch.net_payable,
            movement_date=batch.liquidation_date,
            events=events,
            reference_id=str(batch.id),
            category=MovementCategory.SETTLEMENT_PAYOUT,
        )
        return movement.id

    async def commit(self, preview: LiquidationPreview) -> LiquidationBatch:
        """
        Persist a settlement and mark its members settled.

        Raises:
            ConsistencyError: If any member is already settled
        """
        config = await self._config.resolve()
        events: list[AuditEvent] = []
        async with self._store.transaction():
            settled = await self._settled_batches()
            already = [str(k) for k in preview.member_keys if k in settled]
            if already:
                raise ConsistencyError(f"Already settled: {', '.join(already)}")

            batch = LiquidationBatch(
                member_keys=preview.member_keys,
                member_names=preview.member_names,
                dues_total=preview.dues_total,
                membership_fees_total=preview.membership_fees_total,
                group_profit=preview.fund_totals.group_profit,
                operational_bank_tax=preview.fund_totals.operational_bank_tax,
                profit_share_total=preview.profit_share_total,
                administration_percent=preview.administration_percent,
                disbursement_tax_rate=preview.disbursement_tax_rate,
                deductions=preview.deductions,
                liquidation_date=preview.liquidation_date,
                **preview.derived_totals().model_dump(),
            )
            if config.liquidation_payout_policy == "expense":
                batch = batch.model_copy(update={
                    "payout_movement_id": await self._record_payout(batch, events)
                })
            await self._store.liquidations.insert_batch(batch)

        events.append(AuditEventBuilder.liquidation_committed(
            batch.id, [str(k) for k in batch.member_keys], batch.net_payable
        ))
        await self._audit.log_all(events)
        logger.info("liquidation_committed", batch_id=str(batch.id), net_payable=str(batch.net_payable))
        return batch

    async def edit(
        self,
        batch_id: UUID,
        dues_total: Optional[Decimal] = None,
        membership_fees_total: Optional[Decimal] = None,
        profit_share_total: Optional[Decimal] = None,
        deductions: Optional[Decimal] = None,
        administration_percent: Optional[Decimal] = None,
        liquidation_date: Optional[date] = None,
    ) -> LiquidationBatch:
        """
        Change a batch's inputs and recompute commission, subtotal,
        disbursement tax and net payable.
        """
        changes = {
            name: as_decimal(value)
            for name, value in (
                ("dues_total", dues_total),
                ("membership_fees_total", membership_fees_total),
                ("profit_share_total", profit_share_total),
                ("deductions", deductions),
                ("administration_percent", administration_percent),
            )
            if value is not None
        }
        if liquidation_date is not None:
            changes["liquidation_date"] = liquidation_date
        if not changes:
            raise ValidationError("Nothing to edit")

        events: list[AuditEvent] = []
        async with self._store.transaction():
            batch = await self.get_batch(batch_id)
            values = {**batch.model_dump(), **changes}
            derived = derive_totals(
                values["dues_total"],
                values["profit_share_total"],
                values["deductions"],
                values["administration_percent"],
                values["disbursement_tax_rate"],
            )
            edited = LiquidationBatch.model_validate({
                **values,
                **derived.model_dump(),
                "updated_at": datetime.utcnow(),
            })

            if batch.payout_movement_id is not None and (
                edited.net_payable != batch.net_payable
                or edited.liquidation_date != batch.liquidation_date
            ):
                await self._ledger.record_reversal(
                    batch.payout_movement_id, events, edited.liquidation_date
                )
                edited = edited.model_copy(update={
                    "payout_movement_id": await self._record_payout(edited, events)
                })
            await self._store.liquidations.update_batch(edited)

        events.append(AuditEventBuilder.liquidation_edited(
            batch.id, sorted(changes), edited.net_payable
        ))
        await self._audit.log_all(events)
        return edited

    async def revert(self, batch_id: UUID, revert_date: Optional[date] = None) -> LiquidationBatch:
        """Delete a batch; its members return to pending."""
        events: list[AuditEvent] = []
        async with self._store.transaction():
            batch = await self.get_batch(batch_id)
            if batch.payout_movement_id is not None:
                await self._ledger.record_reversal(
                    batch.payout_movement_id, events, revert_date
                )
            await self._store.liquidations.delete_batch(batch.id)

        events.append(AuditEventBuilder.liquidation_reverted(
            batch.id, [str(k) for k in batch.member_keys]
        ))
        await self._audit.log_all(events)
        logger.info("liquidation_reverted", batch_id=str(batch.id))
        return batch
