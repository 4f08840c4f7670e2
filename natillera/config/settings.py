"""
Configuration Management for the Natillera ledger

Uses pydantic-settings for type-safe configuration from environment variables.

All configuration is centralized here. The fund parameters the engines
consume (late-fee rate, installment value, ...) start from LedgerSettings and
may be overridden per year by a stored configuration record, see
natillera.config.provider.
"""

from decimal import Decimal
from functools import lru_cache
from pathlib import Path
from typing import Literal, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class LedgerSettings(BaseSettings):
    """Fund parameters and ledger policies."""

    model_config = SettingsConfigDict(
        env_prefix="NATILLERA_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    daily_late_fee_rate: Decimal = Field(
        default=Decimal("3000"),
        ge=0,
        description="Penalty charged per day an installment is late"
    )
    max_late_fee_days: int = Field(
        default=15,
        ge=0,
        description="Maximum number of days a penalty accrues"
    )
    installment_value: Decimal = Field(
        default=Decimal("30000"),
        gt=0,
        description="Value of one periodic due"
    )
    membership_fee: Decimal = Field(
        default=Decimal("10000"),
        ge=0,
        description="One-off registration fee per slot"
    )
    administration_percent: Decimal = Field(
        default=Decimal("8"),
        ge=0,
        le=100,
        description="Administration commission applied at settlement (percent)"
    )
    disbursement_tax_rate: Decimal = Field(
        default=Decimal("0.004"),
        ge=0,
        lt=1,
        description="Flat tax on settlement payouts as a fraction (0.004 = 4x1000)"
    )

    # Policies
    record_loan_disbursements: bool = Field(
        default=True,
        description="Append an EXPENSE movement when a loan is disbursed"
    )
    liquidation_payout_policy: Literal["none", "expense"] = Field(
        default="none",
        description="Whether committing a settlement appends the payout as an EXPENSE"
    )
    fund_year: Optional[int] = Field(
        default=None,
        ge=2000,
        le=2100,
        description="Fund year to resolve configuration for (defaults to current year)"
    )


class GoogleSheetsSettings(BaseSettings):
    """Google Sheets storage configuration."""

    model_config = SettingsConfigDict(
        env_prefix="GOOGLE_SHEETS_",
        extra="ignore"
    )

    credentials_path: str = Field(
        ...,
        description="Path to Google service account credentials JSON"
    )
    spreadsheet_id: str = Field(
        ...,
        description="ID of the Google Sheets spreadsheet to use"
    )

    # Sheet names within the spreadsheet
    movements_sheet_name: str = Field(default="CajaCentral")
    late_fees_sheet_name: str = Field(default="Moras")
    late_fee_payments_sheet_name: str = Field(default="HistorialMoras")
    loans_sheet_name: str = Field(default="Prestamos")
    loan_movements_sheet_name: str = Field(default="PagosPrestamos")
    liquidations_sheet_name: str = Field(default="Liquidaciones")
    configuration_sheet_name: str = Field(default="Configuracion")
    members_sheet_name: str = Field(default="Asociados")
    installments_sheet_name: str = Field(default="CuotasPagos")
    fund_income_sheet_name: str = Field(
        default="IngresosFondo",
        description="Activity income, investment gains and bank tax rows"
    )
    audit_sheet_name: str = Field(default="AuditLog")

    @field_validator('credentials_path')
    @classmethod
    def validate_credentials_path(cls, v: str) -> str:
        """Warn if credentials file doesn't exist (but don't fail - might be mounted later)."""
        if not Path(v).exists():
            import warnings
            warnings.warn(
                f"Google credentials file not found at {v}. "
                "Make sure it exists before running the application."
            )
        return v


class AppSettings(BaseSettings):
    """
    Main application settings.

    Loads configuration from environment variables and .env file.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    app_environment: str = Field(
        default="development",
        description="Application environment"
    )
    debug_mode: bool = Field(
        default=False,
        description="Enable debug mode"
    )

    # Validation thresholds (warnings only)
    future_date_tolerance_days: int = Field(
        default=7,
        ge=0,
        description="How many days in the future a movement date can be"
    )
    max_movement_amount: Decimal = Field(
        default=Decimal("100000000"),
        gt=0,
        description="Amount above which a movement is flagged as suspicious"
    )


class Settings(BaseSettings):
    """
    Root settings container.

    Aggregates all sub-settings for easy access.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    # Sub-settings are loaded lazily to allow partial configuration

    @property
    def ledger(self) -> LedgerSettings:
        return LedgerSettings()

    @property
    def google_sheets(self) -> GoogleSheetsSettings:
        return GoogleSheetsSettings()

    @property
    def app(self) -> AppSettings:
        return AppSettings()


@lru_cache()
def get_settings() -> Settings:
    """
    Get application settings (cached).

    Call get_settings.cache_clear() to reload if needed.
    """
    return Settings()


def validate_all_settings() -> dict[str, bool]:
    """
    Validate all settings are properly configured.

    Returns a dict of {setting_name: is_valid}, plus "<name>_error" entries
    for the groups that failed to load. Useful for startup checks.
    """
    results = {}
    settings = get_settings()

    for name in ("ledger", "google_sheets", "app"):
        try:
            getattr(settings, name)
            results[name] = True
        except Exception as e:
            results[name] = False
            results[f"{name}_error"] = str(e)

    return results
