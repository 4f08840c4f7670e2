"""
Shared fixtures.

Every test runs against a fresh in-memory store seeded with a small fund:
three members, a handful of paid and unpaid installments, and fund income
kept outside the cash ledger. Settings are built without reading .env.
"""

from datetime import date
from decimal import Decimal

import pytest

from natillera.audit import AuditLogger
from natillera.config import ConfigurationProvider
from natillera.config.settings import AppSettings, LedgerSettings
from natillera.engines import CashLedger, LateFeeEngine, LiquidationEngine, LoanEngine
from natillera.models import (
    DueInstallment,
    FundIncomeEntry,
    FundIncomeKind,
    MemberKey,
    MemberRecord,
)
from natillera.orchestrator import LedgerService
from natillera.services.storage import (
    InMemoryAuditStorage,
    InMemoryDuesSource,
    InMemoryFundRecords,
    InMemoryRecordStore,
)
from natillera.validation import LedgerValidator


ANA = MemberKey("1037000001")
BETO = MemberKey("1037000002")
CARLA = MemberKey("1037000003")


@pytest.fixture
def dues() -> InMemoryDuesSource:
    source = InMemoryDuesSource()
    # Ana: installment 1 paid 5 days late in January
    source.add_installment(DueInstallment(
        member_key=ANA, member_name="Ana", installment_number=1,
        due_date=date(2025, 1, 15), payment_date=date(2025, 1, 20),
    ))
    # Ana: installment 2 paid on time
    source.add_installment(DueInstallment(
        member_key=ANA, member_name="Ana", installment_number=2,
        due_date=date(2025, 1, 16), payment_date=date(2025, 1, 16),
    ))
    # Beto: installment 3 paid in the following month, no fee
    source.add_installment(DueInstallment(
        member_key=BETO, member_name="Beto", installment_number=3,
        due_date=date(2025, 2, 2), payment_date=date(2025, 3, 1),
    ))
    # Beto: installment 4 paid 20 days late in the same month, clamped
    source.add_installment(DueInstallment(
        member_key=BETO, member_name="Beto", installment_number=4,
        due_date=date(2025, 3, 2), payment_date=date(2025, 3, 22),
    ))
    # Carla: installment 1 not paid yet
    source.add_installment(DueInstallment(
        member_key=CARLA, member_name="Carla", installment_number=1,
        due_date=date(2025, 1, 16),
    ))
    return source


@pytest.fixture
def fund_records() -> InMemoryFundRecords:
    records = InMemoryFundRecords()
    records.add_member(MemberRecord(key=ANA, name="Ana", slots=1))
    records.add_member(MemberRecord(key=BETO, name="Beto", slots=2))
    records.add_member(MemberRecord(key=CARLA, name="Carla", slots=1))
    records.add_income_entry(FundIncomeEntry(
        kind=FundIncomeKind.ACTIVITY, concept="Bingo", amount=Decimal("200000"),
        entry_date=date(2025, 6, 1),
    ))
    records.add_income_entry(FundIncomeEntry(
        kind=FundIncomeKind.INVESTMENT, concept="CDT", amount=Decimal("100000"),
        entry_date=date(2025, 9, 1),
    ))
    records.add_income_entry(FundIncomeEntry(
        kind=FundIncomeKind.BANK_TAX, concept="4x1000", amount=Decimal("4000"),
        entry_date=date(2025, 9, 1),
    ))
    return records


@pytest.fixture
def audit_storage() -> InMemoryAuditStorage:
    return InMemoryAuditStorage()


@pytest.fixture
def store(dues, fund_records, audit_storage) -> InMemoryRecordStore:
    return InMemoryRecordStore(dues=dues, fund_records=fund_records, audit=audit_storage)


@pytest.fixture
def ledger_settings() -> LedgerSettings:
    return LedgerSettings(_env_file=None, fund_year=2025)


@pytest.fixture
def config_provider(store, ledger_settings) -> ConfigurationProvider:
    return ConfigurationProvider(store.configuration, ledger_settings)


@pytest.fixture
def validator() -> LedgerValidator:
    return LedgerValidator(AppSettings(_env_file=None))


@pytest.fixture
def audit_logger(audit_storage) -> AuditLogger:
    return AuditLogger(audit_storage)


@pytest.fixture
def ledger(store, validator, audit_logger) -> CashLedger:
    return CashLedger(store, validator, audit_logger)


@pytest.fixture
def late_fees(store, ledger, config_provider, validator, audit_logger) -> LateFeeEngine:
    return LateFeeEngine(store, ledger, config_provider, validator, audit_logger)


@pytest.fixture
def loans(store, ledger, config_provider, validator, audit_logger) -> LoanEngine:
    return LoanEngine(store, ledger, config_provider, validator, audit_logger)


@pytest.fixture
def liquidation(store, ledger, late_fees, loans, config_provider, audit_logger) -> LiquidationEngine:
    return LiquidationEngine(store, ledger, late_fees, loans, config_provider, audit_logger)


@pytest.fixture
def service(store, config_provider, validator, audit_logger) -> LedgerService:
    return LedgerService(store, config_provider, validator, audit_logger)
