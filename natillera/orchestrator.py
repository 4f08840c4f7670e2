"""
Main Orchestrator for the Natillera ledger

This module ties together all the components and exposes the operations
the screens (member CRUD, payments, loans, settlement) call:

Queries:  current_balance, extract, outstanding_late_fees, compute_settlement
Commands: append, allocate_payment, reverse_payment, accrue_and_apply,
          commit, revert (plus the supplementary ones below)

DESIGN DECISION: The orchestrator enforces the boundaries:
- Every command runs inside the engines' transactions
- Every rejected or failed command is audited before it propagates
- Nothing is retried here; the caller decides whether to try again
"""

from datetime import date
from decimal import Decimal
from typing import Awaitable, Optional, TypeVar
from uuid import UUID

import structlog

from natillera.audit import AuditLogger, configure_logging
from natillera.config import ConfigurationProvider, get_settings
from natillera.engines import CashLedger, LateFeeEngine, LiquidationEngine, LoanEngine
from natillera.errors import StoreConnectionError
from natillera.models.common import MemberKey
from natillera.models.config import FundConfiguration, FundConfigurationRecord
from natillera.models.late_fees import LateFeePaymentEntry, LateFeeRecord, LateFeeStatus
from natillera.models.ledger import CashStatement, Movement, MovementCategory, MovementKind
from natillera.models.liquidation import ControlSheetRow, LiquidationBatch, LiquidationPreview
from natillera.models.loans import Loan, LoanExtract, LoanMovement, LoanMovementType
from natillera.services.storage import (
    GoogleSheetsAuditStorage,
    GoogleSheetsClient,
    GoogleSheetsRecordStore,
    InMemoryRecordStore,
    RecordStore,
)
from natillera.validation import LedgerValidator


logger = structlog.get_logger(__name__)

T = TypeVar("T")


class LedgerService:
    """
    Facade over the four engines.

    Flow of a command:
    1. The engine validates (two stages) and opens a transaction
    2. Record update + cash movement commit together, or neither does
    3. Audit events are written after the commit
    4. On failure the error is audited here and re-raised unchanged
    """

    def __init__(
        self,
        store: RecordStore,
        config_provider: Optional[ConfigurationProvider] = None,
        validator: Optional[LedgerValidator] = None,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self.store = store
        self.config = config_provider or ConfigurationProvider(store.configuration)
        self._validator = validator or LedgerValidator()
        self._audit = audit_logger or AuditLogger(store.audit)

        self.ledger = CashLedger(store, self._validator, self._audit)
        self.late_fees = LateFeeEngine(store, self.ledger, self.config, self._validator, self._audit)
        self.loans = LoanEngine(store, self.ledger, self.config, self._validator, self._audit)
        self.liquidation = LiquidationEngine(
            store, self.ledger, self.late_fees, self.loans, self.config, self._audit
        )

    async def _guard(self, command: str, operation: Awaitable[T], **details) -> T:
        try:
            return await operation
        except Exception as e:
            logger.warning("command_failed", command=command, error_type=type(e).__name__, error=str(e))
            await self._audit.log_failure(command, e, {k: str(v) for k, v in details.items()})
            raise

    # =========================================================================
    # Queries
    # =========================================================================

    async def current_balance(self) -> Decimal:
        return await self.ledger.current_balance()

    async def statement(
        self,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
    ) -> CashStatement:
        return await self.ledger.statement(date_from, date_to)

    async def list_movements(self, **filters) -> list[Movement]:
        return await self.ledger.list_movements(**filters)

    async def extract(self, loan_id: UUID, as_of: Optional[date] = None) -> LoanExtract:
        return await self.loans.extract(loan_id, as_of)

    async def outstanding_late_fees(
        self,
        member_key: Optional[MemberKey] = None,
    ) -> list[LateFeeRecord]:
        return await self.late_fees.outstanding(member_key)

    async def late_fee_status(self, member_key: MemberKey, installment_number: int) -> LateFeeStatus:
        return await self.late_fees.status_of(member_key, installment_number)

    async def late_fee_history(
        self,
        member_key: Optional[MemberKey] = None,
    ) -> list[LateFeePaymentEntry]:
        return await self.late_fees.payment_history(member_key)

    async def compute_settlement(
        self,
        member_keys: list[MemberKey],
        administration_percent: Optional[Decimal] = None,
        liquidation_date: Optional[date] = None,
    ) -> LiquidationPreview:
        return await self._guard(
            "compute_settlement",
            self.liquidation.compute_settlement(member_keys, administration_percent, liquidation_date),
            member_keys=[str(k) for k in member_keys],
        )

    async def control_sheet(self) -> list[ControlSheetRow]:
        return await self.liquidation.control_sheet()

    async def fund_configuration(self, year: Optional[int] = None) -> FundConfiguration:
        return await self.config.resolve(year)

    # =========================================================================
    # Cash ledger commands
    # =========================================================================

    async def append(
        self,
        kind: MovementKind,
        concept: str,
        amount: Decimal,
        movement_date: date,
        reference_id: Optional[str] = None,
        category: MovementCategory = MovementCategory.OTHER,
    ) -> Movement:
        return await self._guard(
            "append",
            self.ledger.append(kind, concept, amount, movement_date, reference_id, category),
            kind=kind.value,
            amount=amount,
        )

    async def record_expense(
        self,
        concept: str,
        amount: Decimal,
        movement_date: date,
        category: MovementCategory = MovementCategory.OPERATING_EXPENSE,
    ) -> Movement:
        return await self._guard(
            "record_expense",
            self.ledger.record_expense(concept, amount, movement_date, category),
            amount=amount,
        )

    async def reverse(self, movement_id: UUID, movement_date: Optional[date] = None) -> Movement:
        return await self._guard(
            "reverse",
            self.ledger.reverse(movement_id, movement_date),
            movement_id=movement_id,
        )

    # =========================================================================
    # Late-fee commands
    # =========================================================================

    async def assess_installment(
        self,
        member_key: MemberKey,
        installment_number: int,
    ) -> Optional[LateFeeRecord]:
        return await self._guard(
            "assess_installment",
            self.late_fees.assess_installment(member_key, installment_number),
            member_key=member_key,
            installment_number=installment_number,
        )

    async def allocate_payment(
        self,
        record_id: UUID,
        amount: Decimal,
        payment_date: date,
    ) -> LateFeeRecord:
        return await self._guard(
            "allocate_payment",
            self.late_fees.allocate_payment(record_id, amount, payment_date),
            record_id=record_id,
            amount=amount,
        )

    async def reverse_payment(
        self,
        entry_id: UUID,
        reversal_date: Optional[date] = None,
    ) -> LateFeeRecord:
        return await self._guard(
            "reverse_payment",
            self.late_fees.reverse_payment(entry_id, reversal_date),
            entry_id=entry_id,
        )

    # =========================================================================
    # Loan commands
    # =========================================================================

    async def open_loan(
        self,
        borrower_name: str,
        principal: Decimal,
        monthly_rate_percent: Decimal,
        start_date: date,
        borrower_key: Optional[MemberKey] = None,
    ) -> Loan:
        return await self._guard(
            "open_loan",
            self.loans.open_loan(borrower_name, principal, monthly_rate_percent, start_date, borrower_key),
            borrower_name=borrower_name,
            principal=principal,
        )

    async def accrue_and_apply(
        self,
        loan_id: UUID,
        movement_date: date,
        movement_type: LoanMovementType,
        amount_paid: Optional[Decimal] = None,
    ) -> LoanMovement:
        return await self._guard(
            "accrue_and_apply",
            self.loans.accrue_and_apply(loan_id, movement_date, movement_type, amount_paid),
            loan_id=loan_id,
            movement_type=movement_type.value,
            amount_paid=amount_paid,
        )

    async def amend_loan_movement(
        self,
        movement_id: UUID,
        amount_paid: Optional[Decimal] = None,
        movement_date: Optional[date] = None,
    ) -> list[LoanMovement]:
        return await self._guard(
            "amend_loan_movement",
            self.loans.amend_movement(movement_id, amount_paid, movement_date),
            movement_id=movement_id,
        )

    # =========================================================================
    # Liquidation commands
    # =========================================================================

    async def commit(self, preview: LiquidationPreview) -> LiquidationBatch:
        return await self._guard(
            "commit",
            self.liquidation.commit(preview),
            member_keys=[str(k) for k in preview.member_keys],
        )

    async def edit_liquidation(self, batch_id: UUID, **changes) -> LiquidationBatch:
        return await self._guard(
            "edit_liquidation",
            self.liquidation.edit(batch_id, **changes),
            batch_id=batch_id,
        )

    async def revert(self, batch_id: UUID, revert_date: Optional[date] = None) -> LiquidationBatch:
        return await self._guard(
            "revert",
            self.liquidation.revert(batch_id, revert_date),
            batch_id=batch_id,
        )

    # =========================================================================
    # Configuration
    # =========================================================================

    async def save_configuration(self, record: FundConfigurationRecord) -> None:
        await self._guard("save_configuration", self.config.save(record), year=record.year)


def create_app_components(
    use_storage: bool = True,
) -> tuple[LedgerService, Optional[GoogleSheetsClient]]:
    """
    Factory function to create all application components.

    Args:
        use_storage: Whether to use the Google Sheets store.
                    Set to False to run on the in-memory store.

    Returns:
        (ledger_service, sheets_client)

    Raises:
        StoreConnectionError: If Google Sheets is requested but not configured
    """
    settings = get_settings()
    configure_logging("DEBUG" if settings.app.debug_mode else "INFO")

    sheets_client = None
    if use_storage:
        try:
            sheets_client = GoogleSheetsClient()
        except Exception as e:
            raise StoreConnectionError(f"Storage not configured: {e}") from e
        store = GoogleSheetsRecordStore(
            sheets_client,
            audit=GoogleSheetsAuditStorage(sheets_client),
        )
    else:
        store = InMemoryRecordStore()

    service = LedgerService(store)
    logger.info(
        "app_components_created",
        storage="google_sheets" if use_storage else "memory",
        environment=settings.app.app_environment,
    )
    return service, sheets_client
