"""
Tests for the Google Sheets store.

The gspread worksheets are replaced by an in-process fake, so these tests
cover row mapping and the compensating-action rollback without network.
"""

from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest

from natillera.config.settings import GoogleSheetsSettings
from natillera.engines import CashLedger
from natillera.errors import DuplicateError, StoreError
from natillera.models import (
    AuditEventBuilder,
    FundConfigurationRecord,
    LateFeePaymentEntry,
    LateFeePaymentType,
    LateFeeRecord,
    LiquidationBatch,
    MemberKey,
    MovementKind,
    derive_totals,
)
from natillera.services.storage import GoogleSheetsAuditStorage, GoogleSheetsRecordStore


class FakeWorksheet:
    """Rows as lists of strings; row 1 is the header."""

    def __init__(self, columns):
        self.values = [list(columns)]
        self.fail_writes = False

    def get_all_values(self):
        return [list(row) for row in self.values]

    def append_row(self, row, value_input_option=None):
        if self.fail_writes:
            raise ConnectionError("quota exceeded")
        self.values.append(list(row))

    def update(self, range_name, values, value_input_option=None):
        self.values[int(range_name[1:]) - 1] = list(values[0])

    def delete_rows(self, index):
        del self.values[index - 1]

    def insert_row(self, values, index, value_input_option=None):
        self.values.insert(index - 1, list(values))


class FakeSheetsClient:

    def __init__(self):
        self.settings = GoogleSheetsSettings.model_construct(
            credentials_path="unused.json",
            spreadsheet_id="test",
        )
        self.worksheets = {}

    def get_worksheet(self, title, columns):
        if title not in self.worksheets:
            self.worksheets[title] = FakeWorksheet(columns)
        return self.worksheets[title]


@pytest.fixture
def client() -> FakeSheetsClient:
    return FakeSheetsClient()


@pytest.fixture
def sheets_store(client) -> GoogleSheetsRecordStore:
    return GoogleSheetsRecordStore(client)


@pytest.fixture
def sheets_ledger(sheets_store, validator) -> CashLedger:
    return CashLedger(sheets_store, validator)


def _late_fee_record() -> LateFeeRecord:
    return LateFeeRecord(
        member_key=MemberKey("1037000001"),
        member_name="Ana",
        installment_number=1,
        due_date=date(2025, 1, 15),
        installment_payment_date=date(2025, 1, 20),
        daily_rate=Decimal("3000"),
        max_days=15,
        days_late=5,
        total_sanction=Decimal("15000"),
    )


class TestRowMapping:

    async def test_movements_round_trip(self, sheets_ledger, client):
        appended = await sheets_ledger.append(
            MovementKind.INCOME, "Cuotas enero", Decimal("50000.50"), date(2025, 1, 20)
        )
        sheet = client.worksheets["CajaCentral"]
        assert len(sheet.values) == 2
        assert "income" in sheet.values[1]

        stored = await sheets_ledger.get_movement(appended.id)
        assert stored == appended
        assert await sheets_ledger.current_balance() == Decimal("50000.50")

    async def test_sequence_continues_from_sheet(self, sheets_ledger):
        await sheets_ledger.append(MovementKind.INCOME, "Uno", Decimal("100"), date(2025, 1, 1))
        second = await sheets_ledger.append(MovementKind.EXPENSE, "Dos", Decimal("40"), date(2025, 1, 1))
        assert second.sequence == 2
        assert second.prior_balance == Decimal("100")

    async def test_list_columns_are_json(self, sheets_store, client):
        derived = derive_totals(Decimal("60000"), Decimal("74000"), Decimal("0"), Decimal("8"), Decimal("0.004"))
        batch = LiquidationBatch(
            member_keys=[MemberKey("1037000001"), MemberKey("1037000002")],
            member_names=["Ana", "Beto"],
            dues_total=Decimal("60000"),
            profit_share_total=Decimal("74000"),
            administration_percent=Decimal("8"),
            disbursement_tax_rate=Decimal("0.004"),
            liquidation_date=date(2025, 12, 1),
            **derived.model_dump(),
        )
        await sheets_store.liquidations.insert_batch(batch)
        assert '["1037000001", "1037000002"]' in client.worksheets["Liquidaciones"].values[1]
        assert await sheets_store.liquidations.get_batch(batch.id) == batch

    async def test_late_fee_rows_carry_derived_columns(self, sheets_store, client):
        record = _late_fee_record()
        await sheets_store.late_fees.insert_record(record)
        header, row = client.worksheets["Moras"].values
        assert row[header.index("remaining")] == "15000"
        assert row[header.index("status")] == "pending"
        assert await sheets_store.late_fees.find_record(MemberKey("1037000001"), 1) == record

    async def test_configuration_is_keyed_by_year(self, sheets_store, client):
        await sheets_store.configuration.save_record(
            FundConfigurationRecord(year=2025, daily_late_fee_rate=Decimal("2000"))
        )
        await sheets_store.configuration.save_record(
            FundConfigurationRecord(year=2025, daily_late_fee_rate=Decimal("2500"))
        )
        assert len(client.worksheets["Configuracion"].values) == 2
        stored = await sheets_store.configuration.get_record(2025)
        assert stored.daily_late_fee_rate == Decimal("2500")

    async def test_duplicate_insert(self, sheets_store):
        record = _late_fee_record()
        await sheets_store.late_fees.insert_record(record)
        with pytest.raises(DuplicateError):
            await sheets_store.late_fees.insert_record(record)

    async def test_malformed_row_is_a_store_error(self, sheets_ledger, client):
        await sheets_ledger.append(MovementKind.INCOME, "Uno", Decimal("100"), date(2025, 1, 1))
        sheet = client.worksheets["CajaCentral"]
        sheet.values[1][sheet.values[0].index("kind")] = "refund"
        with pytest.raises(StoreError, match="Malformed row 2"):
            await sheets_ledger.current_balance()


class TestCompensation:

    async def test_rollback_deletes_appended_rows(self, sheets_store, sheets_ledger, client):
        await sheets_ledger.append(MovementKind.INCOME, "Uno", Decimal("100"), date(2025, 1, 1))
        with pytest.raises(RuntimeError):
            async with sheets_store.transaction():
                await sheets_ledger.append(MovementKind.INCOME, "Dos", Decimal("50"), date(2025, 1, 1))
                raise RuntimeError("boom")

        assert len(client.worksheets["CajaCentral"].values) == 2
        assert await sheets_ledger.current_balance() == Decimal("100")

    async def test_rollback_restores_updated_rows(self, sheets_store, client):
        record = _late_fee_record()
        await sheets_store.late_fees.insert_record(record)
        with pytest.raises(RuntimeError):
            async with sheets_store.transaction():
                await sheets_store.late_fees.update_record(
                    record.model_copy(update={"amount_paid": Decimal("10000")})
                )
                raise RuntimeError("boom")

        restored = await sheets_store.late_fees.get_record(record.id)
        assert restored.amount_paid == Decimal("0")

    async def test_rollback_reinserts_deleted_rows(self, sheets_store):
        record = _late_fee_record()
        await sheets_store.late_fees.insert_record(record)
        with pytest.raises(RuntimeError):
            async with sheets_store.transaction():
                assert await sheets_store.late_fees.delete_record(record.id)
                raise RuntimeError("boom")

        assert await sheets_store.late_fees.get_record(record.id) == record

    async def test_failed_write_undoes_earlier_writes(self, sheets_store, sheets_ledger, client):
        record = _late_fee_record()
        await sheets_store.late_fees.insert_record(record)
        client.get_worksheet("HistorialMoras", []).fail_writes = True

        with pytest.raises(StoreError):
            async with sheets_store.transaction():
                await sheets_ledger.append(MovementKind.INCOME, "Pago", Decimal("100"), date(2025, 1, 25))
                await sheets_store.late_fees.update_record(
                    record.model_copy(update={"amount_paid": Decimal("100")})
                )
                await sheets_store.late_fees.insert_payment_entry(LateFeePaymentEntry(
                    late_fee_record_id=record.id,
                    payment_date=date(2025, 1, 25),
                    amount=Decimal("100"),
                    payment_type=LateFeePaymentType.PARTIAL,
                ))

        assert await sheets_ledger.current_balance() == Decimal("0")
        assert (await sheets_store.late_fees.get_record(record.id)).amount_paid == Decimal("0")


class TestAuditStorage:

    async def test_events_round_trip(self, client):
        storage = GoogleSheetsAuditStorage(client)
        loan_id = uuid4()
        event = AuditEventBuilder.loan_opened(loan_id, "Ana", Decimal("100000"), Decimal("2"))
        assert await storage.append_event(event) is True

        events = await storage.get_events_by_correlation_id(loan_id)
        assert events == [event]

    async def test_write_failure_returns_false(self, client):
        storage = GoogleSheetsAuditStorage(client)
        client.get_worksheet("AuditLog", []).fail_writes = True
        event = AuditEventBuilder.store_error("append", "boom")
        assert await storage.append_event(event) is False
