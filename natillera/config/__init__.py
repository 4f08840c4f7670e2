"""Configuration package."""

from natillera.config.settings import (
    AppSettings,
    GoogleSheetsSettings,
    LedgerSettings,
    Settings,
    get_settings,
    validate_all_settings,
)
from natillera.config.provider import ConfigurationProvider

__all__ = [
    "AppSettings",
    "ConfigurationProvider",
    "GoogleSheetsSettings",
    "LedgerSettings",
    "Settings",
    "get_settings",
    "validate_all_settings",
]
