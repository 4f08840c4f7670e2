"""
In-memory storage implementation.

Used by the test suite and for running the engines without a spreadsheet.
All tables live in one _Tables object; a transaction snapshots it on begin
and restores the snapshot on rollback.

Stored models are copied on the way in and out so callers can never mutate
stored state without going through an update.
"""

import copy
from datetime import date
from typing import Optional
from uuid import UUID

from natillera.errors import DuplicateError, NotFoundError
from natillera.models.audit import AuditEvent
from natillera.models.common import MemberKey
from natillera.models.config import FundConfigurationRecord
from natillera.models.late_fees import DueInstallment, LateFeePaymentEntry, LateFeeRecord
from natillera.models.ledger import Movement, MovementCategory, MovementKind
from natillera.models.liquidation import FundIncomeEntry, FundIncomeKind, LiquidationBatch, MemberRecord
from natillera.models.loans import Loan, LoanMovement, LoanStatus
from natillera.services.storage.interface import (
    AuditStorageInterface,
    ConfigurationStorageInterface,
    DuesSourceInterface,
    FundRecordsInterface,
    LateFeeStorageInterface,
    LiquidationStorageInterface,
    LoanStorageInterface,
    MovementStorageInterface,
)
from natillera.services.storage.transactions import BaseRecordStore


class _Tables:
    """Every table of the in-memory store, keyed by id."""

    def __init__(self):
        self.movements: dict[UUID, Movement] = {}
        self.late_fees: dict[UUID, LateFeeRecord] = {}
        self.late_fee_payments: dict[UUID, LateFeePaymentEntry] = {}
        self.loans: dict[UUID, Loan] = {}
        self.loan_movements: dict[UUID, LoanMovement] = {}
        self.liquidations: dict[UUID, LiquidationBatch] = {}
        self.configuration: dict[int, FundConfigurationRecord] = {}
        self.movement_sequence = 0


def _copy(model):
    return model.model_copy(deep=True) if model is not None else None


class InMemoryMovementStorage(MovementStorageInterface):

    def __init__(self, tables: _Tables):
        self._tables = tables

    async def append_movement(self, movement: Movement) -> Movement:
        if movement.id in self._tables.movements:
            raise DuplicateError(f"Movement already exists: {movement.id}")
        self._tables.movement_sequence += 1
        stored = movement.model_copy(update={"sequence": self._tables.movement_sequence})
        self._tables.movements[stored.id] = stored
        return _copy(stored)

    async def get_latest_movement(self) -> Optional[Movement]:
        if not self._tables.movements:
            return None
        return _copy(max(self._tables.movements.values(), key=lambda m: m.sequence))

    async def get_movement(self, movement_id: UUID) -> Optional[Movement]:
        return _copy(self._tables.movements.get(movement_id))

    async def list_movements(
        self,
        kind: Optional[MovementKind] = None,
        category: Optional[MovementCategory] = None,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
        reference_id: Optional[str] = None,
        reverses_id: Optional[UUID] = None,
    ) -> list[Movement]:
        result = []
        for movement in self._tables.movements.values():
            if kind and movement.kind != kind:
                continue
            if category and movement.category != category:
                continue
            if date_from and movement.movement_date < date_from:
                continue
            if date_to and movement.movement_date > date_to:
                continue
            if reference_id and movement.reference_id != reference_id:
                continue
            if reverses_id and movement.reverses_id != reverses_id:
                continue
            result.append(_copy(movement))
        result.sort(key=lambda m: m.sequence)
        return result


class InMemoryLateFeeStorage(LateFeeStorageInterface):

    def __init__(self, tables: _Tables):
        self._tables = tables

    async def get_record(self, record_id: UUID) -> Optional[LateFeeRecord]:
        return _copy(self._tables.late_fees.get(record_id))

    async def find_record(
        self,
        member_key: MemberKey,
        installment_number: int,
    ) -> Optional[LateFeeRecord]:
        for record in self._tables.late_fees.values():
            if record.member_key == member_key and record.installment_number == installment_number:
                return _copy(record)
        return None

    async def list_records(
        self,
        member_key: Optional[MemberKey] = None,
    ) -> list[LateFeeRecord]:
        records = [
            _copy(r) for r in self._tables.late_fees.values()
            if member_key is None or r.member_key == member_key
        ]
        records.sort(key=lambda r: (str(r.member_key), r.installment_number))
        return records

    async def insert_record(self, record: LateFeeRecord) -> None:
        if record.id in self._tables.late_fees:
            raise DuplicateError(f"Late fee record already exists: {record.id}")
        self._tables.late_fees[record.id] = _copy(record)

    async def update_record(self, record: LateFeeRecord) -> None:
        if record.id not in self._tables.late_fees:
            raise NotFoundError("Late fee record", record.id)
        self._tables.late_fees[record.id] = _copy(record)

    async def delete_record(self, record_id: UUID) -> bool:
        return self._tables.late_fees.pop(record_id, None) is not None

    async def get_payment_entry(self, entry_id: UUID) -> Optional[LateFeePaymentEntry]:
        return _copy(self._tables.late_fee_payments.get(entry_id))

    async def list_payment_entries(
        self,
        record_id: Optional[UUID] = None,
    ) -> list[LateFeePaymentEntry]:
        entries = [
            _copy(e) for e in self._tables.late_fee_payments.values()
            if record_id is None or e.late_fee_record_id == record_id
        ]
        entries.sort(key=lambda e: e.created_at)
        return entries

    async def insert_payment_entry(self, entry: LateFeePaymentEntry) -> None:
        if entry.id in self._tables.late_fee_payments:
            raise DuplicateError(f"Payment entry already exists: {entry.id}")
        self._tables.late_fee_payments[entry.id] = _copy(entry)

    async def delete_payment_entry(self, entry_id: UUID) -> bool:
        return self._tables.late_fee_payments.pop(entry_id, None) is not None


class InMemoryLoanStorage(LoanStorageInterface):

    def __init__(self, tables: _Tables):
        self._tables = tables

    async def get_loan(self, loan_id: UUID) -> Optional[Loan]:
        return _copy(self._tables.loans.get(loan_id))

    async def list_loans(
        self,
        status: Optional[LoanStatus] = None,
        borrower_key: Optional[MemberKey] = None,
    ) -> list[Loan]:
        loans = [
            _copy(loan) for loan in self._tables.loans.values()
            if (status is None or loan.status == status)
            and (borrower_key is None or loan.borrower_key == borrower_key)
        ]
        loans.sort(key=lambda loan: loan.created_at)
        return loans

    async def insert_loan(self, loan: Loan) -> None:
        if loan.id in self._tables.loans:
            raise DuplicateError(f"Loan already exists: {loan.id}")
        self._tables.loans[loan.id] = _copy(loan)

    async def update_loan(self, loan: Loan) -> None:
        if loan.id not in self._tables.loans:
            raise NotFoundError("Loan", loan.id)
        self._tables.loans[loan.id] = _copy(loan)

    async def get_loan_movement(self, movement_id: UUID) -> Optional[LoanMovement]:
        return _copy(self._tables.loan_movements.get(movement_id))

    async def list_loan_movements(
        self,
        loan_id: Optional[UUID] = None,
    ) -> list[LoanMovement]:
        movements = [
            _copy(m) for m in self._tables.loan_movements.values()
            if loan_id is None or m.loan_id == loan_id
        ]
        movements.sort(key=lambda m: (str(m.loan_id), m.sequence))
        return movements

    async def insert_loan_movement(self, movement: LoanMovement) -> LoanMovement:
        if movement.id in self._tables.loan_movements:
            raise DuplicateError(f"Loan movement already exists: {movement.id}")
        sequence = sum(
            1 for m in self._tables.loan_movements.values() if m.loan_id == movement.loan_id
        )
        stored = movement.model_copy(update={"sequence": sequence})
        self._tables.loan_movements[stored.id] = stored
        return _copy(stored)

    async def update_loan_movement(self, movement: LoanMovement) -> None:
        if movement.id not in self._tables.loan_movements:
            raise NotFoundError("Loan movement", movement.id)
        self._tables.loan_movements[movement.id] = _copy(movement)


class InMemoryLiquidationStorage(LiquidationStorageInterface):

    def __init__(self, tables: _Tables):
        self._tables = tables

    async def get_batch(self, batch_id: UUID) -> Optional[LiquidationBatch]:
        return _copy(self._tables.liquidations.get(batch_id))

    async def list_batches(self) -> list[LiquidationBatch]:
        batches = [_copy(b) for b in self._tables.liquidations.values()]
        batches.sort(key=lambda b: b.created_at)
        return batches

    async def insert_batch(self, batch: LiquidationBatch) -> None:
        if batch.id in self._tables.liquidations:
            raise DuplicateError(f"Liquidation already exists: {batch.id}")
        self._tables.liquidations[batch.id] = _copy(batch)

    async def update_batch(self, batch: LiquidationBatch) -> None:
        if batch.id not in self._tables.liquidations:
            raise NotFoundError("Liquidation", batch.id)
        self._tables.liquidations[batch.id] = _copy(batch)

    async def delete_batch(self, batch_id: UUID) -> bool:
        return self._tables.liquidations.pop(batch_id, None) is not None


class InMemoryConfigurationStorage(ConfigurationStorageInterface):

    def __init__(self, tables: _Tables):
        self._tables = tables

    async def get_record(self, year: int) -> Optional[FundConfigurationRecord]:
        return _copy(self._tables.configuration.get(year))

    async def get_active_record(self) -> Optional[FundConfigurationRecord]:
        for record in self._tables.configuration.values():
            if record.is_active:
                return _copy(record)
        return None

    async def save_record(self, record: FundConfigurationRecord) -> None:
        self._tables.configuration[record.year] = _copy(record)


class InMemoryDuesSource(DuesSourceInterface):
    """Dues source seeded directly by tests or scripts."""

    def __init__(self):
        self._installments: dict[tuple[str, int], DueInstallment] = {}

    def add_installment(self, installment: DueInstallment) -> None:
        self._installments[(str(installment.member_key), installment.installment_number)] = installment

    async def get_installment(
        self,
        member_key: MemberKey,
        installment_number: int,
    ) -> Optional[DueInstallment]:
        return _copy(self._installments.get((str(member_key), installment_number)))

    async def list_installments(
        self,
        member_key: Optional[MemberKey] = None,
    ) -> list[DueInstallment]:
        installments = [
            _copy(i) for i in self._installments.values()
            if member_key is None or i.member_key == member_key
        ]
        installments.sort(key=lambda i: (str(i.member_key), i.installment_number))
        return installments


class InMemoryFundRecords(FundRecordsInterface):
    """Members, activities and investments seeded directly."""

    def __init__(self):
        self._members: dict[str, MemberRecord] = {}
        self._income: list[FundIncomeEntry] = []

    def add_member(self, member: MemberRecord) -> None:
        self._members[str(member.key)] = member

    def add_income_entry(self, entry: FundIncomeEntry) -> None:
        self._income.append(entry)

    async def list_members(self, active_only: bool = False) -> list[MemberRecord]:
        return [
            _copy(m) for m in self._members.values()
            if m.active or not active_only
        ]

    async def get_member(self, member_key: MemberKey) -> Optional[MemberRecord]:
        return _copy(self._members.get(str(member_key)))

    async def list_income_entries(
        self,
        kind: Optional[FundIncomeKind] = None,
    ) -> list[FundIncomeEntry]:
        return [_copy(e) for e in self._income if kind is None or e.kind == kind]


class InMemoryAuditStorage(AuditStorageInterface):

    def __init__(self):
        self.events: list[AuditEvent] = []

    async def append_event(self, event: AuditEvent) -> bool:
        self.events.append(event)
        return True

    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        events = [e for e in self.events if e.correlation_id == correlation_id]
        return sorted(events, key=lambda e: e.timestamp)

    async def get_events_by_entity(
        self,
        entity_type: str,
        entity_id: UUID,
    ) -> list[AuditEvent]:
        events = [
            e for e in self.events
            if e.entity_type == entity_type and e.entity_id == entity_id
        ]
        return sorted(events, key=lambda e: e.timestamp)

    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        return sorted(self.events, key=lambda e: e.timestamp, reverse=True)[:limit]


class InMemoryRecordStore(BaseRecordStore):
    """
    In-memory RecordStore.

    The external collaborators (dues, fund records) are outside the
    transaction: the engines only read them.
    """

    def __init__(
        self,
        dues: Optional[InMemoryDuesSource] = None,
        fund_records: Optional[InMemoryFundRecords] = None,
        audit: Optional[AuditStorageInterface] = None,
    ):
        super().__init__()
        self._tables = _Tables()
        self._snapshot: Optional[_Tables] = None
        self.movements = InMemoryMovementStorage(self._tables)
        self.late_fees = InMemoryLateFeeStorage(self._tables)
        self.loans = InMemoryLoanStorage(self._tables)
        self.liquidations = InMemoryLiquidationStorage(self._tables)
        self.configuration = InMemoryConfigurationStorage(self._tables)
        self.dues = dues or InMemoryDuesSource()
        self.fund_records = fund_records or InMemoryFundRecords()
        self.audit = audit

    async def _begin(self) -> None:
        self._snapshot = copy.deepcopy(self._tables)

    async def _commit(self) -> None:
        self._snapshot = None

    async def _rollback(self) -> None:
        if self._snapshot is not None:
            # Restore in place: the per-entity storages share this object.
            self._tables.__dict__.update(self._snapshot.__dict__)
            self._snapshot = None
