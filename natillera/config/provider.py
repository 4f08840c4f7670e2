"""
Fund configuration resolution.

DESIGN DECISION: The engines never read environment variables or literals
for fund parameters. They receive one FundConfiguration, resolved with this
precedence:

    stored record for the year (or the active record) > environment > defaults

The defaults live on LedgerSettings, so "environment > defaults" is what
pydantic-settings already does.
"""

from datetime import date
from typing import TYPE_CHECKING, Optional

import structlog

from natillera.config.settings import LedgerSettings, get_settings
from natillera.models.config import FundConfiguration, FundConfigurationRecord

if TYPE_CHECKING:
    from natillera.services.storage.interface import ConfigurationStorageInterface


logger = structlog.get_logger(__name__)


class ConfigurationProvider:
    """Resolves and stores the per-year fund configuration."""

    def __init__(
        self,
        storage: Optional["ConfigurationStorageInterface"] = None,
        ledger_settings: Optional[LedgerSettings] = None,
    ):
        self._storage = storage
        self._settings = ledger_settings or get_settings().ledger

    def _default_year(self) -> int:
        return self._settings.fund_year or date.today().year

    def from_settings(self, year: Optional[int] = None) -> FundConfiguration:
        """Environment settings (and defaults) only."""
        return FundConfiguration(
            year=year or self._default_year(),
            daily_late_fee_rate=self._settings.daily_late_fee_rate,
            max_late_fee_days=self._settings.max_late_fee_days,
            installment_value=self._settings.installment_value,
            membership_fee=self._settings.membership_fee,
            administration_percent=self._settings.administration_percent,
            disbursement_tax_rate=self._settings.disbursement_tax_rate,
            record_loan_disbursements=self._settings.record_loan_disbursements,
            liquidation_payout_policy=self._settings.liquidation_payout_policy,
        )

    async def resolve(self, year: Optional[int] = None) -> FundConfiguration:
        """
        Fully populated configuration for a fund year.

        Args:
            year: Fund year; defaults to NATILLERA_FUND_YEAR or the current year

        Returns:
            FundConfiguration with stored overrides applied
        """
        year = year or self._default_year()
        base = self.from_settings(year)
        if self._storage is None:
            return base

        record = await self._storage.get_record(year)
        if record is None:
            record = await self._storage.get_active_record()
        if record is None:
            return base

        overrides = record.overrides()
        logger.debug(
            "configuration_resolved",
            year=year,
            record_year=record.year,
            overridden=sorted(overrides),
        )
        return base.model_copy(update=overrides)

    async def save(self, record: FundConfigurationRecord) -> None:
        """Insert or replace the stored record of record.year."""
        if self._storage is None:
            raise RuntimeError("No configuration storage configured")
        await self._storage.save_record(record)
        logger.info("configuration_saved", year=record.year, is_active=record.is_active)
