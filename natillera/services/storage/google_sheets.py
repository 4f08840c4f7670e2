"""
Google Sheets Storage Implementation

DESIGN DECISION: Google Sheets is the storage backend because:
1. The treasurer and members can view the books directly in Sheets
2. No database setup required
3. Built-in backup (Google's infrastructure)

TRADEOFFS:
- Not suitable for high-volume data (a natillera has tens of members)
- No native transactions: every write inside a transaction registers a
  compensating action (delete the appended row, restore the previous row,
  re-insert the deleted row) and a failed transaction runs them in reverse
- Limited query capabilities (we filter in Python)

Connecting and reads are retried with exponential back-off. Writes are never
retried: a retried append that actually landed would duplicate a movement.
"""

import json
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Callable, Generic, Optional, TypeVar
from uuid import UUID

import gspread
import structlog
from google.oauth2.service_account import Credentials
from pydantic import BaseModel
from tenacity import retry, stop_after_attempt, wait_exponential

from natillera.config import get_settings
from natillera.models.audit import AuditEvent, AuditEventType, AuditSeverity
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
    DuplicateError,
    FundRecordsInterface,
    LateFeeStorageInterface,
    LiquidationStorageInterface,
    LoanStorageInterface,
    MovementStorageInterface,
    NotFoundError,
    StoreConnectionError,
    StoreError,
)
from natillera.services.storage.transactions import BaseRecordStore


logger = structlog.get_logger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)
UndoAction = Callable[[], None]


# Column layouts. Tables owned by the ledger follow their model; the read-only
# tables follow the layout the member/activity screens write.
MOVEMENT_COLUMNS = list(Movement.model_fields)
LATE_FEE_COLUMNS = list(LateFeeRecord.model_fields) + ["remaining", "status"]
LATE_FEE_PAYMENT_COLUMNS = list(LateFeePaymentEntry.model_fields)
LOAN_COLUMNS = list(Loan.model_fields)
LOAN_MOVEMENT_COLUMNS = list(LoanMovement.model_fields)
LIQUIDATION_COLUMNS = list(LiquidationBatch.model_fields)
CONFIGURATION_COLUMNS = list(FundConfigurationRecord.model_fields)

MEMBER_COLUMNS = ["key", "name", "slots", "active"]
INSTALLMENT_COLUMNS = [
    "member_key",
    "member_name",
    "installment_number",
    "due_date",
    "payment_date",
    "amount",
]
FUND_INCOME_COLUMNS = ["id", "kind", "concept", "amount", "entry_date"]

AUDIT_COLUMNS = [
    "event_id",
    "timestamp",
    "event_type",
    "severity",
    "entity_type",
    "entity_id",
    "correlation_id",
    "description",
    "details_json",
    "error_code",
    "error_message",
]


def _to_cell(value) -> str:
    """Render one model value as a sheet cell."""
    if value is None:
        return ""
    if isinstance(value, bool):
        return "TRUE" if value else "FALSE"
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    if isinstance(value, MemberKey):
        return value.root
    if isinstance(value, (Decimal, UUID, int)):
        return str(value)
    if isinstance(value, list):
        return json.dumps([_to_cell(item) for item in value])
    return str(value)


class GoogleSheetsClient:
    """
    Low-level Google Sheets client wrapper.

    Handles authentication and provides retry logic for connecting.
    """

    def __init__(self):
        self._client: Optional[gspread.Client] = None
        self._spreadsheet: Optional[gspread.Spreadsheet] = None
        self._settings = get_settings().google_sheets

    @property
    def settings(self):
        return self._settings

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    def connect(self) -> gspread.Client:
        """
        Establish connection to Google Sheets.

        Uses service account credentials for authentication.
        """
        if self._client is None:
            try:
                scopes = [
                    "https://www.googleapis.com/auth/spreadsheets",
                    "https://www.googleapis.com/auth/drive",
                ]
                credentials = Credentials.from_service_account_file(
                    self._settings.credentials_path,
                    scopes=scopes,
                )
                self._client = gspread.authorize(credentials)
            except FileNotFoundError as e:
                raise StoreConnectionError(
                    f"Google credentials file not found: {self._settings.credentials_path}"
                ) from e
            except Exception as e:
                raise StoreConnectionError(f"Failed to connect to Google Sheets: {e}") from e

        return self._client

    def get_spreadsheet(self) -> gspread.Spreadsheet:
        """Get the configured spreadsheet."""
        if self._spreadsheet is None:
            client = self.connect()
            try:
                self._spreadsheet = client.open_by_key(
                    self._settings.spreadsheet_id
                )
            except gspread.SpreadsheetNotFound as e:
                raise StoreConnectionError(
                    f"Spreadsheet not found: {self._settings.spreadsheet_id}"
                ) from e
        return self._spreadsheet

    def get_worksheet(self, title: str, columns: list[str]) -> gspread.Worksheet:
        """Get or create a worksheet with the given header row."""
        spreadsheet = self.get_spreadsheet()
        try:
            sheet = spreadsheet.worksheet(title)
        except gspread.WorksheetNotFound:
            sheet = spreadsheet.add_worksheet(
                title=title,
                rows=1000,
                cols=len(columns),
            )
            sheet.append_row(columns)
        return sheet


class SheetTable(Generic[ModelT]):
    """
    One worksheet holding one model per row, first row is the header.

    Writes call `register_undo` with their compensating action; the record
    store only keeps those while a transaction is open.
    """

    def __init__(
        self,
        client: GoogleSheetsClient,
        title: str,
        columns: list[str],
        model: type[ModelT],
        key_column: str = "id",
        json_columns: tuple[str, ...] = (),
        register_undo: Optional[Callable[[UndoAction], None]] = None,
    ):
        self._client = client
        self.title = title
        self.columns = columns
        self._model = model
        self._key_column = key_column
        self._key_index = columns.index(key_column)
        self._json_columns = json_columns
        self._register_undo = register_undo or (lambda action: None)

    def _sheet(self) -> gspread.Worksheet:
        return self._client.get_worksheet(self.title, self.columns)

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    def _fetch_values(self) -> list[list[str]]:
        return self._sheet().get_all_values()

    def to_row(self, item: ModelT) -> list[str]:
        return [_to_cell(getattr(item, column, None)) for column in self.columns]

    def from_row(self, row: list[str]) -> ModelT:
        data = {}
        for column, cell in zip(self.columns, row):
            if cell == "":
                continue
            data[column] = json.loads(cell) if column in self._json_columns else cell
        return self._model.model_validate(data)

    def rows(self) -> list[tuple[int, list[str]]]:
        """(sheet row number, cells) for every non-empty data row."""
        try:
            values = self._fetch_values()
        except StoreError:
            raise
        except Exception as e:
            raise StoreError(f"Failed to read sheet {self.title}: {e}") from e
        return [
            (index, row)
            for index, row in enumerate(values[1:], start=2)
            if row and len(row) > self._key_index and row[self._key_index]
        ]

    def all(self) -> list[ModelT]:
        items = []
        for index, row in self.rows():
            try:
                items.append(self.from_row(row))
            except ValueError as e:
                raise StoreError(f"Malformed row {index} in sheet {self.title}: {e}") from e
        return items

    def find(self, key) -> Optional[tuple[int, list[str]]]:
        key = _to_cell(key)
        for index, row in self.rows():
            if row[self._key_index] == key:
                return index, row
        return None

    def get(self, key) -> Optional[ModelT]:
        found = self.find(key)
        return self.from_row(found[1]) if found else None

    def append(self, item: ModelT) -> None:
        key = getattr(item, self._key_column)
        if self.find(key) is not None:
            raise DuplicateError(f"{self.title}: {key} already exists")
        row = self.to_row(item)
        try:
            self._sheet().append_row(row, value_input_option="RAW")
        except Exception as e:
            raise StoreError(f"Failed to append to sheet {self.title}: {e}") from e
        self._register_undo(lambda: self._delete_key(key))

    def update(self, item: ModelT, entity: str) -> None:
        key = getattr(item, self._key_column)
        found = self.find(key)
        if found is None:
            raise NotFoundError(entity, key)
        index, previous = found
        self._write_row(index, self.to_row(item))
        self._register_undo(lambda: self._restore_row(key, previous))

    def delete(self, key) -> bool:
        found = self.find(key)
        if found is None:
            return False
        index, previous = found
        try:
            self._sheet().delete_rows(index)
        except Exception as e:
            raise StoreError(f"Failed to delete from sheet {self.title}: {e}") from e
        self._register_undo(lambda: self._insert_row(index, previous))
        return True

    def _write_row(self, index: int, row: list[str]) -> None:
        try:
            self._sheet().update(
                range_name=f"A{index}",
                values=[row],
                value_input_option="RAW",
            )
        except Exception as e:
            raise StoreError(f"Failed to update sheet {self.title}: {e}") from e

    # Compensating actions

    def _delete_key(self, key) -> None:
        found = self.find(key)
        if found is not None:
            self._sheet().delete_rows(found[0])

    def _restore_row(self, key, previous: list[str]) -> None:
        found = self.find(key)
        if found is not None:
            self._write_row(found[0], previous)

    def _insert_row(self, index: int, previous: list[str]) -> None:
        self._sheet().insert_row(previous, index=index, value_input_option="RAW")


class GoogleSheetsMovementStorage(MovementStorageInterface):
    """Cash ledger ("CajaCentral") worksheet."""

    def __init__(self, table: SheetTable[Movement]):
        self._table = table

    async def append_movement(self, movement: Movement) -> Movement:
        latest = await self.get_latest_movement()
        stored = movement.model_copy(
            update={"sequence": (latest.sequence if latest else 0) + 1}
        )
        self._table.append(stored)
        return stored

    async def get_latest_movement(self) -> Optional[Movement]:
        movements = self._table.all()
        return max(movements, key=lambda m: m.sequence) if movements else None

    async def get_movement(self, movement_id: UUID) -> Optional[Movement]:
        return self._table.get(movement_id)

    async def list_movements(
        self,
        kind: Optional[MovementKind] = None,
        category: Optional[MovementCategory] = None,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
        reference_id: Optional[str] = None,
        reverses_id: Optional[UUID] = None,
    ) -> list[Movement]:
        movements = []
        for movement in self._table.all():
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
            movements.append(movement)
        movements.sort(key=lambda m: m.sequence)
        return movements


class GoogleSheetsLateFeeStorage(LateFeeStorageInterface):
    """Late fees ("Moras") and their history ("HistorialMoras")."""

    def __init__(
        self,
        records: SheetTable[LateFeeRecord],
        payments: SheetTable[LateFeePaymentEntry],
    ):
        self._records = records
        self._payments = payments

    async def get_record(self, record_id: UUID) -> Optional[LateFeeRecord]:
        return self._records.get(record_id)

    async def find_record(
        self,
        member_key: MemberKey,
        installment_number: int,
    ) -> Optional[LateFeeRecord]:
        for record in self._records.all():
            if record.member_key == member_key and record.installment_number == installment_number:
                return record
        return None

    async def list_records(
        self,
        member_key: Optional[MemberKey] = None,
    ) -> list[LateFeeRecord]:
        records = [
            r for r in self._records.all()
            if member_key is None or r.member_key == member_key
        ]
        records.sort(key=lambda r: (str(r.member_key), r.installment_number))
        return records

    async def insert_record(self, record: LateFeeRecord) -> None:
        self._records.append(record)

    async def update_record(self, record: LateFeeRecord) -> None:
        self._records.update(record, "Late fee record")

    async def delete_record(self, record_id: UUID) -> bool:
        return self._records.delete(record_id)

    async def get_payment_entry(self, entry_id: UUID) -> Optional[LateFeePaymentEntry]:
        return self._payments.get(entry_id)

    async def list_payment_entries(
        self,
        record_id: Optional[UUID] = None,
    ) -> list[LateFeePaymentEntry]:
        entries = [
            e for e in self._payments.all()
            if record_id is None or e.late_fee_record_id == record_id
        ]
        entries.sort(key=lambda e: e.created_at)
        return entries

    async def insert_payment_entry(self, entry: LateFeePaymentEntry) -> None:
        self._payments.append(entry)

    async def delete_payment_entry(self, entry_id: UUID) -> bool:
        return self._payments.delete(entry_id)


class GoogleSheetsLoanStorage(LoanStorageInterface):
    """Loans ("Prestamos") and their movements ("PagosPrestamos")."""

    def __init__(
        self,
        loans: SheetTable[Loan],
        movements: SheetTable[LoanMovement],
    ):
        self._loans = loans
        self._movements = movements

    async def get_loan(self, loan_id: UUID) -> Optional[Loan]:
        return self._loans.get(loan_id)

    async def list_loans(
        self,
        status: Optional[LoanStatus] = None,
        borrower_key: Optional[MemberKey] = None,
    ) -> list[Loan]:
        loans = [
            loan for loan in self._loans.all()
            if (status is None or loan.status == status)
            and (borrower_key is None or loan.borrower_key == borrower_key)
        ]
        loans.sort(key=lambda loan: loan.created_at)
        return loans

    async def insert_loan(self, loan: Loan) -> None:
        self._loans.append(loan)

    async def update_loan(self, loan: Loan) -> None:
        self._loans.update(loan, "Loan")

    async def get_loan_movement(self, movement_id: UUID) -> Optional[LoanMovement]:
        return self._movements.get(movement_id)

    async def list_loan_movements(
        self,
        loan_id: Optional[UUID] = None,
    ) -> list[LoanMovement]:
        movements = [
            m for m in self._movements.all()
            if loan_id is None or m.loan_id == loan_id
        ]
        movements.sort(key=lambda m: (str(m.loan_id), m.sequence))
        return movements

    async def insert_loan_movement(self, movement: LoanMovement) -> LoanMovement:
        existing = await self.list_loan_movements(movement.loan_id)
        stored = movement.model_copy(update={"sequence": len(existing)})
        self._movements.append(stored)
        return stored

    async def update_loan_movement(self, movement: LoanMovement) -> None:
        self._movements.update(movement, "Loan movement")


class GoogleSheetsLiquidationStorage(LiquidationStorageInterface):
    """Settlement batches ("Liquidaciones")."""

    def __init__(self, table: SheetTable[LiquidationBatch]):
        self._table = table

    async def get_batch(self, batch_id: UUID) -> Optional[LiquidationBatch]:
        return self._table.get(batch_id)

    async def list_batches(self) -> list[LiquidationBatch]:
        return sorted(self._table.all(), key=lambda b: b.created_at)

    async def insert_batch(self, batch: LiquidationBatch) -> None:
        self._table.append(batch)

    async def update_batch(self, batch: LiquidationBatch) -> None:
        self._table.update(batch, "Liquidation")

    async def delete_batch(self, batch_id: UUID) -> bool:
        return self._table.delete(batch_id)


class GoogleSheetsConfigurationStorage(ConfigurationStorageInterface):
    """Per-year configuration ("Configuracion"), one row per year."""

    def __init__(self, table: SheetTable[FundConfigurationRecord]):
        self._table = table

    async def get_record(self, year: int) -> Optional[FundConfigurationRecord]:
        return self._table.get(year)

    async def get_active_record(self) -> Optional[FundConfigurationRecord]:
        for record in self._table.all():
            if record.is_active:
                return record
        return None

    async def save_record(self, record: FundConfigurationRecord) -> None:
        if self._table.find(record.year) is None:
            self._table.append(record)
        else:
            self._table.update(record, "Configuration")


class GoogleSheetsDuesSource(DuesSourceInterface):
    """Read-only dues ("CuotasPagos")."""

    def __init__(self, table: SheetTable[DueInstallment]):
        self._table = table

    async def get_installment(
        self,
        member_key: MemberKey,
        installment_number: int,
    ) -> Optional[DueInstallment]:
        for installment in self._table.all():
            if installment.member_key == member_key and installment.installment_number == installment_number:
                return installment
        return None

    async def list_installments(
        self,
        member_key: Optional[MemberKey] = None,
    ) -> list[DueInstallment]:
        return [
            i for i in self._table.all()
            if member_key is None or i.member_key == member_key
        ]


class GoogleSheetsFundRecords(FundRecordsInterface):
    """Read-only members ("Asociados") and fund income ("IngresosFondo")."""

    def __init__(
        self,
        members: SheetTable[MemberRecord],
        income: SheetTable[FundIncomeEntry],
    ):
        self._members = members
        self._income = income

    async def list_members(self, active_only: bool = False) -> list[MemberRecord]:
        return [m for m in self._members.all() if m.active or not active_only]

    async def get_member(self, member_key: MemberKey) -> Optional[MemberRecord]:
        return self._members.get(member_key)

    async def list_income_entries(
        self,
        kind: Optional[FundIncomeKind] = None,
    ) -> list[FundIncomeEntry]:
        return [e for e in self._income.all() if kind is None or e.kind == kind]


class GoogleSheetsAuditStorage(AuditStorageInterface):
    """
    Google Sheets implementation of audit log storage.

    Audit events are append-only.
    """

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        self._client = client or GoogleSheetsClient()

    def _get_sheet(self) -> gspread.Worksheet:
        return self._client.get_worksheet(self._client.settings.audit_sheet_name, AUDIT_COLUMNS)

    def _row_to_event(self, row: list) -> AuditEvent:
        """Convert a spreadsheet row to an AuditEvent."""
        def safe_get(index: int, default: str = "") -> str:
            try:
                return row[index] if row[index] else default
            except IndexError:
                return default

        return AuditEvent(
            event_id=UUID(safe_get(0)),
            timestamp=datetime.fromisoformat(safe_get(1)),
            event_type=AuditEventType(safe_get(2)),
            severity=AuditSeverity(safe_get(3)),
            entity_type=safe_get(4) or None,
            entity_id=UUID(safe_get(5)) if safe_get(5) else None,
            correlation_id=UUID(safe_get(6)) if safe_get(6) else None,
            description=safe_get(7),
            details=json.loads(safe_get(8)) if safe_get(8) else {},
            error_code=safe_get(9) or None,
            error_message=safe_get(10) or None,
        )

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    def _fetch_events(self) -> list[AuditEvent]:
        events = []
        for row in self._get_sheet().get_all_values()[1:]:
            if row and row[0]:
                events.append(self._row_to_event(row))
        return events

    def _load(self) -> list[AuditEvent]:
        try:
            return self._fetch_events()
        except Exception as e:
            raise StoreError(f"Failed to get audit events: {e}") from e

    async def append_event(self, event: AuditEvent) -> bool:
        """Append an audit event."""
        try:
            self._get_sheet().append_row(event.to_sheets_row(), value_input_option="RAW")
            return True
        except Exception as e:
            # Audit logging must not break the main flow
            logger.warning("audit_event_write_failed", error=str(e), event_id=str(event.event_id))
            return False

    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        events = [e for e in self._load() if e.correlation_id == correlation_id]
        events.sort(key=lambda e: e.timestamp)
        return events

    async def get_events_by_entity(
        self,
        entity_type: str,
        entity_id: UUID,
    ) -> list[AuditEvent]:
        events = [
            e for e in self._load()
            if e.entity_type == entity_type and e.entity_id == entity_id
        ]
        events.sort(key=lambda e: e.timestamp)
        return events

    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        events = self._load()
        events.sort(key=lambda e: e.timestamp, reverse=True)
        return events[:limit]


class GoogleSheetsRecordStore(BaseRecordStore):
    """
    RecordStore over one spreadsheet.

    Transactions are sagas: the undo log collects the compensating action of
    every write and a rollback runs them newest first.
    """

    def __init__(
        self,
        client: Optional[GoogleSheetsClient] = None,
        audit: Optional[AuditStorageInterface] = None,
    ):
        super().__init__()
        self._client = client or GoogleSheetsClient()
        self._undo_log: Optional[list[UndoAction]] = None
        names = self._client.settings

        def table(title, columns, model, **kwargs):
            return SheetTable(
                self._client, title, columns, model,
                register_undo=self._register_undo, **kwargs
            )

        self.movements = GoogleSheetsMovementStorage(
            table(names.movements_sheet_name, MOVEMENT_COLUMNS, Movement)
        )
        self.late_fees = GoogleSheetsLateFeeStorage(
            table(names.late_fees_sheet_name, LATE_FEE_COLUMNS, LateFeeRecord),
            table(names.late_fee_payments_sheet_name, LATE_FEE_PAYMENT_COLUMNS, LateFeePaymentEntry),
        )
        self.loans = GoogleSheetsLoanStorage(
            table(names.loans_sheet_name, LOAN_COLUMNS, Loan),
            table(names.loan_movements_sheet_name, LOAN_MOVEMENT_COLUMNS, LoanMovement),
        )
        self.liquidations = GoogleSheetsLiquidationStorage(
            table(
                names.liquidations_sheet_name, LIQUIDATION_COLUMNS, LiquidationBatch,
                json_columns=("member_keys", "member_names"),
            )
        )
        self.configuration = GoogleSheetsConfigurationStorage(
            table(
                names.configuration_sheet_name, CONFIGURATION_COLUMNS, FundConfigurationRecord,
                key_column="year",
            )
        )
        self.dues = GoogleSheetsDuesSource(
            table(
                names.installments_sheet_name, INSTALLMENT_COLUMNS, DueInstallment,
                key_column="member_key",
            )
        )
        self.fund_records = GoogleSheetsFundRecords(
            table(names.members_sheet_name, MEMBER_COLUMNS, MemberRecord, key_column="key"),
            table(names.fund_income_sheet_name, FUND_INCOME_COLUMNS, FundIncomeEntry),
        )
        self.audit = audit

    def _register_undo(self, action: UndoAction) -> None:
        if self._undo_log is not None:
            self._undo_log.append(action)

    async def _begin(self) -> None:
        self._undo_log = []

    async def _commit(self) -> None:
        self._undo_log = None

    async def _rollback(self) -> None:
        undo_log, self._undo_log = self._undo_log or [], None
        failures = 0
        for action in reversed(undo_log):
            try:
                action()
            except Exception as e:
                failures += 1
                logger.error("compensating_action_failed", error=str(e))
        if failures:
            raise StoreError(f"{failures} compensating action(s) failed; sheet needs manual review")
