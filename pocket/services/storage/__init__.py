"""
Storage Services Package

Provides abstract interfaces and concrete implementations for data storage.
Google Sheets is the persistent backend; the in-memory stores back the tests
and local runs without credentials.
"""

from pocket.services.storage.interface import (
    AuditStorageInterface,
    BankingStorageInterface,
    BudgetStorageInterface,
    ConnectionError,
    DuplicateError,
    ExpenseStorageInterface,
    InsightsStorageInterface,
    NotFoundError,
    ProfileStorageInterface,
    StorageError,
)
from pocket.services.storage.google_sheets import (
    GoogleSheetsAuditStorage,
    GoogleSheetsBankingStorage,
    GoogleSheetsBudgetStorage,
    GoogleSheetsClient,
    GoogleSheetsExpenseStorage,
    GoogleSheetsInsightsStorage,
    GoogleSheetsProfileStorage,
)
from pocket.services.storage.memory import (
    InMemoryAuditStorage,
    InMemoryBankingStorage,
    InMemoryBudgetStorage,
    InMemoryExpenseStorage,
    InMemoryInsightsStorage,
    InMemoryProfileStorage,
)

__all__ = [
    # Interfaces
    "AuditStorageInterface",
    "BankingStorageInterface",
    "BudgetStorageInterface",
    "ExpenseStorageInterface",
    "InsightsStorageInterface",
    "ProfileStorageInterface",
    # Exceptions
    "ConnectionError",
    "DuplicateError",
    "NotFoundError",
    "StorageError",
    # Google Sheets implementation
    "GoogleSheetsAuditStorage",
    "GoogleSheetsBankingStorage",
    "GoogleSheetsBudgetStorage",
    "GoogleSheetsClient",
    "GoogleSheetsExpenseStorage",
    "GoogleSheetsInsightsStorage",
    "GoogleSheetsProfileStorage",
    # In-memory implementation
    "InMemoryAuditStorage",
    "InMemoryBankingStorage",
    "InMemoryBudgetStorage",
    "InMemoryExpenseStorage",
    "InMemoryInsightsStorage",
    "InMemoryProfileStorage",
]
