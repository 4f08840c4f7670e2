"""
Storage Services Package

Provides abstract interfaces and concrete implementations for data storage.
Google Sheets is the production backend; the in-memory backend serves tests
and local runs.
"""

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
    RecordStore,
    StoreConnectionError,
    StoreError,
)
from natillera.services.storage.transactions import BaseRecordStore
from natillera.services.storage.memory import (
    InMemoryAuditStorage,
    InMemoryDuesSource,
    InMemoryFundRecords,
    InMemoryRecordStore,
)
from natillera.services.storage.google_sheets import (
    GoogleSheetsAuditStorage,
    GoogleSheetsClient,
    GoogleSheetsRecordStore,
    SheetTable,
)

__all__ = [
    # Interfaces
    "AuditStorageInterface",
    "ConfigurationStorageInterface",
    "DuesSourceInterface",
    "FundRecordsInterface",
    "LateFeeStorageInterface",
    "LiquidationStorageInterface",
    "LoanStorageInterface",
    "MovementStorageInterface",
    "RecordStore",
    "BaseRecordStore",
    # Exceptions
    "DuplicateError",
    "NotFoundError",
    "StoreConnectionError",
    "StoreError",
    # In-memory implementation
    "InMemoryAuditStorage",
    "InMemoryDuesSource",
    "InMemoryFundRecords",
    "InMemoryRecordStore",
    # Google Sheets implementation
    "GoogleSheetsAuditStorage",
    "GoogleSheetsClient",
    "GoogleSheetsRecordStore",
    "SheetTable",
]
