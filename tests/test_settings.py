"""Tests for settings and fund configuration precedence."""

from decimal import Decimal

import pytest

from natillera.config import ConfigurationProvider
from natillera.config.settings import LedgerSettings, get_settings, validate_all_settings
from natillera.models import FundConfigurationRecord


class TestLedgerSettings:

    def test_defaults(self, monkeypatch):
        for name in ("NATILLERA_DAILY_LATE_FEE_RATE", "NATILLERA_MAX_LATE_FEE_DAYS"):
            monkeypatch.delenv(name, raising=False)
        settings = LedgerSettings(_env_file=None)
        assert settings.daily_late_fee_rate == Decimal("3000")
        assert settings.max_late_fee_days == 15
        assert settings.liquidation_payout_policy == "none"

    def test_environment_overrides_defaults(self, monkeypatch):
        monkeypatch.setenv("NATILLERA_DAILY_LATE_FEE_RATE", "2500")
        monkeypatch.setenv("NATILLERA_LIQUIDATION_PAYOUT_POLICY", "expense")
        settings = LedgerSettings(_env_file=None)
        assert settings.daily_late_fee_rate == Decimal("2500")
        assert settings.liquidation_payout_policy == "expense"

    def test_rejects_unknown_policy(self, monkeypatch):
        monkeypatch.setenv("NATILLERA_LIQUIDATION_PAYOUT_POLICY", "sometimes")
        with pytest.raises(ValueError):
            LedgerSettings(_env_file=None)

    def test_validate_all_settings_reports_missing_sheets(self, monkeypatch):
        monkeypatch.delenv("GOOGLE_SHEETS_CREDENTIALS_PATH", raising=False)
        monkeypatch.delenv("GOOGLE_SHEETS_SPREADSHEET_ID", raising=False)
        get_settings.cache_clear()
        results = validate_all_settings()
        assert results["ledger"] is True
        assert results["google_sheets"] is False
        assert "google_sheets_error" in results


class TestConfigurationProvider:
    """stored record > environment > defaults"""

    async def test_without_storage_uses_settings(self, ledger_settings):
        provider = ConfigurationProvider(None, ledger_settings)
        config = await provider.resolve()
        assert config.year == 2025
        assert config.installment_value == Decimal("30000")

    async def test_record_for_year_wins(self, config_provider):
        await config_provider.save(FundConfigurationRecord(year=2025, daily_late_fee_rate=Decimal("2000")))
        config = await config_provider.resolve(2025)
        assert config.daily_late_fee_rate == Decimal("2000")
        assert config.max_late_fee_days == 15

    async def test_active_record_is_the_fallback(self, config_provider):
        await config_provider.save(FundConfigurationRecord(
            year=2024, is_active=True, installment_value=Decimal("25000"),
        ))
        config = await config_provider.resolve(2025)
        assert config.year == 2025
        assert config.installment_value == Decimal("25000")

    async def test_exact_year_beats_active_record(self, config_provider):
        await config_provider.save(FundConfigurationRecord(
            year=2024, is_active=True, installment_value=Decimal("25000"),
        ))
        await config_provider.save(FundConfigurationRecord(year=2025, installment_value=Decimal("35000")))
        config = await config_provider.resolve(2025)
        assert config.installment_value == Decimal("35000")

    async def test_environment_under_record(self, store, monkeypatch):
        monkeypatch.setenv("NATILLERA_MAX_LATE_FEE_DAYS", "10")
        provider = ConfigurationProvider(store.configuration, LedgerSettings(_env_file=None, fund_year=2025))
        await provider.save(FundConfigurationRecord(year=2025, daily_late_fee_rate=Decimal("2000")))
        config = await provider.resolve()
        assert config.max_late_fee_days == 10
        assert config.daily_late_fee_rate == Decimal("2000")

    async def test_save_without_storage(self, ledger_settings):
        provider = ConfigurationProvider(None, ledger_settings)
        with pytest.raises(RuntimeError):
            await provider.save(FundConfigurationRecord(year=2025))
