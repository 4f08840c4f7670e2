"""
Abstract Storage Interface

DESIGN DECISION: We define an abstract interface for storage operations.
This allows us to:
1. Keep Google Sheets as the shared store the treasurer already uses
2. Use in-memory storage for testing
3. Keep the engines decoupled from the storage implementation

The interface is intentionally simple - we're not building a full ORM.
Per entity: get, list-by-predicate, insert, update, delete. Filtering
beyond that happens in the engines.

Every backend is bundled into a RecordStore whose transaction() serializes
writers and makes a block of writes all-or-nothing (see transactions.py).
"""

from abc import ABC, abstractmethod
from contextlib import AbstractAsyncContextManager
from datetime import date
from typing import Optional
from uuid import UUID

from natillera.errors import DuplicateError, NotFoundError, StoreConnectionError, StoreError
from natillera.models.audit import AuditEvent
from natillera.models.common import MemberKey
from natillera.models.config import FundConfigurationRecord
from natillera.models.late_fees import DueInstallment, LateFeePaymentEntry, LateFeeRecord
from natillera.models.ledger import Movement, MovementCategory, MovementKind
from natillera.models.liquidation import FundIncomeEntry, FundIncomeKind, LiquidationBatch, MemberRecord
from natillera.models.loans import Loan, LoanMovement, LoanStatus


class MovementStorageInterface(ABC):
    """
    Cash ledger table.

    Movements are append-only; the store assigns the monotonic sequence.
    """

    @abstractmethod
    async def append_movement(self, movement: Movement) -> Movement:
        """
        Persist a movement, assigning it the next sequence number.

        Returns:
            The stored movement (with its sequence)

        Raises:
            DuplicateError: If a movement with the same id exists
            StoreError: If the write fails
        """
        pass

    @abstractmethod
    async def get_latest_movement(self) -> Optional[Movement]:
        """The movement with the highest sequence, or None for an empty ledger."""
        pass

    @abstractmethod
    async def get_movement(self, movement_id: UUID) -> Optional[Movement]:
        pass

    @abstractmethod
    async def list_movements(
        self,
        kind: Optional[MovementKind] = None,
        category: Optional[MovementCategory] = None,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
        reference_id: Optional[str] = None,
        reverses_id: Optional[UUID] = None,
    ) -> list[Movement]:
        """
        List movements matching every given filter, in sequence order.
        """
        pass


class LateFeeStorageInterface(ABC):
    """Late-fee records and their payment history."""

    @abstractmethod
    async def get_record(self, record_id: UUID) -> Optional[LateFeeRecord]:
        pass

    @abstractmethod
    async def find_record(
        self,
        member_key: MemberKey,
        installment_number: int,
    ) -> Optional[LateFeeRecord]:
        """The record of a (member, installment) pair, if one exists."""
        pass

    @abstractmethod
    async def list_records(
        self,
        member_key: Optional[MemberKey] = None,
    ) -> list[LateFeeRecord]:
        pass

    @abstractmethod
    async def insert_record(self, record: LateFeeRecord) -> None:
        pass

    @abstractmethod
    async def update_record(self, record: LateFeeRecord) -> None:
        """
        Raises:
            NotFoundError: If the record doesn't exist
        """
        pass

    @abstractmethod
    async def delete_record(self, record_id: UUID) -> bool:
        pass

    @abstractmethod
    async def get_payment_entry(self, entry_id: UUID) -> Optional[LateFeePaymentEntry]:
        pass

    @abstractmethod
    async def list_payment_entries(
        self,
        record_id: Optional[UUID] = None,
    ) -> list[LateFeePaymentEntry]:
        pass

    @abstractmethod
    async def insert_payment_entry(self, entry: LateFeePaymentEntry) -> None:
        pass

    @abstractmethod
    async def delete_payment_entry(self, entry_id: UUID) -> bool:
        pass


class LoanStorageInterface(ABC):
    """Loans and their ordered movements."""

    @abstractmethod
    async def get_loan(self, loan_id: UUID) -> Optional[Loan]:
        pass

    @abstractmethod
    async def list_loans(
        self,
        status: Optional[LoanStatus] = None,
        borrower_key: Optional[MemberKey] = None,
    ) -> list[Loan]:
        pass

    @abstractmethod
    async def insert_loan(self, loan: Loan) -> None:
        pass

    @abstractmethod
    async def update_loan(self, loan: Loan) -> None:
        pass

    @abstractmethod
    async def get_loan_movement(self, movement_id: UUID) -> Optional[LoanMovement]:
        pass

    @abstractmethod
    async def list_loan_movements(
        self,
        loan_id: Optional[UUID] = None,
    ) -> list[LoanMovement]:
        """Movements of one loan (or all loans), in sequence order."""
        pass

    @abstractmethod
    async def insert_loan_movement(self, movement: LoanMovement) -> LoanMovement:
        """Persist a loan movement, assigning the next sequence of its loan."""
        pass

    @abstractmethod
    async def update_loan_movement(self, movement: LoanMovement) -> None:
        pass


class LiquidationStorageInterface(ABC):
    """Committed settlement batches."""

    @abstractmethod
    async def get_batch(self, batch_id: UUID) -> Optional[LiquidationBatch]:
        pass

    @abstractmethod
    async def list_batches(self) -> list[LiquidationBatch]:
        pass

    @abstractmethod
    async def insert_batch(self, batch: LiquidationBatch) -> None:
        pass

    @abstractmethod
    async def update_batch(self, batch: LiquidationBatch) -> None:
        pass

    @abstractmethod
    async def delete_batch(self, batch_id: UUID) -> bool:
        pass


class ConfigurationStorageInterface(ABC):
    """Per-year fund configuration records."""

    @abstractmethod
    async def get_record(self, year: int) -> Optional[FundConfigurationRecord]:
        pass

    @abstractmethod
    async def get_active_record(self) -> Optional[FundConfigurationRecord]:
        pass

    @abstractmethod
    async def save_record(self, record: FundConfigurationRecord) -> None:
        """Insert or replace the record of record.year."""
        pass


class DuesSourceInterface(ABC):
    """
    Read-only view of the dues ("cuotas") kept by the member CRUD.

    The engines never write dues.
    """

    @abstractmethod
    async def get_installment(
        self,
        member_key: MemberKey,
        installment_number: int,
    ) -> Optional[DueInstallment]:
        pass

    @abstractmethod
    async def list_installments(
        self,
        member_key: Optional[MemberKey] = None,
    ) -> list[DueInstallment]:
        pass


class FundRecordsInterface(ABC):
    """
    Read-only view of members, activities and investments.
    """

    @abstractmethod
    async def list_members(self, active_only: bool = False) -> list[MemberRecord]:
        pass

    @abstractmethod
    async def get_member(self, member_key: MemberKey) -> Optional[MemberRecord]:
        pass

    @abstractmethod
    async def list_income_entries(
        self,
        kind: Optional[FundIncomeKind] = None,
    ) -> list[FundIncomeEntry]:
        pass


class AuditStorageInterface(ABC):
    """
    Abstract interface for audit log storage.

    Audit logs are append-only - we never delete or modify them.
    """

    @abstractmethod
    async def append_event(self, event: AuditEvent) -> bool:
        """
        Append an audit event to the log.

        Returns:
            True if logged successfully
        """
        pass

    @abstractmethod
    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        """Related events in chronological order."""
        pass

    @abstractmethod
    async def get_events_by_entity(
        self,
        entity_type: str,
        entity_id: UUID,
    ) -> list[AuditEvent]:
        pass

    @abstractmethod
    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        """Most recent events, newest first."""
        pass


class RecordStore(ABC):
    """
    The transactional record store the engines work against.

    Bundles one storage object per entity. All money-affecting commands run
    inside `async with store.transaction():`.
    """

    movements: MovementStorageInterface
    late_fees: LateFeeStorageInterface
    loans: LoanStorageInterface
    liquidations: LiquidationStorageInterface
    configuration: ConfigurationStorageInterface
    dues: DuesSourceInterface
    fund_records: FundRecordsInterface
    audit: Optional[AuditStorageInterface] = None

    @abstractmethod
    def transaction(self) -> AbstractAsyncContextManager[None]:
        """
        Serialize writers and make the enclosed writes all-or-nothing.

        Nested use within the same task joins the outer transaction.
        """
        pass


__all__ = [
    "AuditStorageInterface",
    "ConfigurationStorageInterface",
    "DuesSourceInterface",
    "DuplicateError",
    "FundRecordsInterface",
    "LateFeeStorageInterface",
    "LiquidationStorageInterface",
    "LoanStorageInterface",
    "MovementStorageInterface",
    "NotFoundError",
    "RecordStore",
    "StoreConnectionError",
    "StoreError",
]
