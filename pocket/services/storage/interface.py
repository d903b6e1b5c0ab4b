"""
Abstract Storage Interface

DESIGN DECISION: We define an abstract interface for storage operations.
This allows us to:
1. Swap Google Sheets for a real database later
2. Use in-memory storage for tests and for running without credentials
3. Keep business logic decoupled from storage implementation

The interface is intentionally simple - we're not building a full ORM.
Just the operations the flows need.
"""

from abc import ABC, abstractmethod
from datetime import date, datetime
from decimal import Decimal
from typing import Optional
from uuid import UUID

from pocket.models import (
    AuditEvent,
    BankAccount,
    BankItem,
    BankTransaction,
    Budget,
    Conversation,
    Expense,
    ExpenseCategory,
    IncomeSource,
    MerchantAlias,
    PatternType,
    SpendingPattern,
)


class ExpenseStorageInterface(ABC):
    """
    Abstract interface for expense storage operations.

    Any storage implementation (Google Sheets, PostgreSQL, etc.)
    must implement these methods.
    """

    @abstractmethod
    async def save_expense(self, expense: Expense) -> bool:
        """
        Save a confirmed expense.

        Raises:
            StorageError: If save fails
        """
        pass

    @abstractmethod
    async def get_expense_by_id(self, expense_id: UUID) -> Optional[Expense]:
        """Retrieve an expense by its ID, or None."""
        pass

    @abstractmethod
    async def update_expense(self, expense: Expense) -> bool:
        """
        Update an existing expense.

        Raises:
            NotFoundError: If the expense doesn't exist
        """
        pass

    @abstractmethod
    async def delete_expense(self, expense_id: UUID) -> bool:
        """Delete an expense. Returns False if it did not exist."""
        pass

    @abstractmethod
    async def list_expenses(
        self,
        user_id: str,
        category: Optional[ExpenseCategory] = None,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
        limit: int = 1000,
        offset: int = 0,
    ) -> list[Expense]:
        """
        List a user's expenses, newest first.

        Args:
            user_id: Owner of the expenses
            category: Filter by category
            date_from: Expenses on or after this date
            date_to: Expenses on or before this date
            limit: Maximum number of results
            offset: Number of results to skip
        """
        pass

    @abstractmethod
    async def expense_exists(
        self,
        user_id: str,
        establishment_name: str,
        expense_date: date,
        amount: Decimal,
    ) -> bool:
        """
        Check if the same expense was already recorded (duplicate detection).

        Same establishment (case-insensitive), same date, same amount.
        """
        pass


class ProfileStorageInterface(ABC):
    """Income sources on the user's profile."""

    @abstractmethod
    async def list_income_sources(self, user_id: str) -> list[IncomeSource]:
        pass

    @abstractmethod
    async def save_income_source(self, source: IncomeSource) -> bool:
        """Insert or replace an income source by id."""
        pass

    @abstractmethod
    async def delete_income_source(self, source_id: UUID) -> bool:
        pass


class BudgetStorageInterface(ABC):
    """Budgets per category."""

    @abstractmethod
    async def list_budgets(self, user_id: str) -> list[Budget]:
        pass

    @abstractmethod
    async def save_budget(self, budget: Budget) -> bool:
        """Insert or replace a budget by id."""
        pass

    @abstractmethod
    async def delete_budget(self, budget_id: UUID) -> bool:
        pass


class BankingStorageInterface(ABC):
    """
    Bank connections, accounts and transactions synced from Open Finance.

    Rows are keyed by the provider's ids, so syncing the same item twice
    updates instead of duplicating.
    """

    @abstractmethod
    async def upsert_item(self, item: BankItem) -> bool:
        pass

    @abstractmethod
    async def get_item(self, item_id: str) -> Optional[BankItem]:
        pass

    @abstractmethod
    async def list_items(self, user_id: str) -> list[BankItem]:
        pass

    @abstractmethod
    async def delete_item(self, item_id: str) -> bool:
        """Delete an item together with its accounts."""
        pass

    @abstractmethod
    async def upsert_account(self, account: BankAccount) -> bool:
        pass

    @abstractmethod
    async def get_account(self, account_id: str) -> Optional[BankAccount]:
        pass

    @abstractmethod
    async def list_accounts(
        self,
        user_id: str,
        item_id: Optional[str] = None,
    ) -> list[BankAccount]:
        pass

    @abstractmethod
    async def transaction_exists(self, transaction_id: str) -> bool:
        pass

    @abstractmethod
    async def save_transaction(self, transaction: BankTransaction) -> bool:
        """
        Store a new transaction.

        Raises:
            DuplicateError: If the provider id is already stored
        """
        pass

    @abstractmethod
    async def update_transaction(self, transaction: BankTransaction) -> bool:
        pass

    @abstractmethod
    async def delete_transaction(self, transaction_id: str) -> bool:
        pass

    @abstractmethod
    async def list_transactions(
        self,
        user_id: str,
        account_id: Optional[str] = None,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
    ) -> list[BankTransaction]:
        """List transactions, newest first."""
        pass


class InsightsStorageInterface(ABC):
    """Learned knowledge: spending patterns, merchant aliases, conversations."""

    @abstractmethod
    async def upsert_pattern(self, pattern: SpendingPattern) -> SpendingPattern:
        """Insert or replace a pattern by (user_id, pattern_type, pattern_key)."""
        pass

    @abstractmethod
    async def list_patterns(
        self,
        user_id: str,
        pattern_type: Optional[PatternType] = None,
    ) -> list[SpendingPattern]:
        pass

    @abstractmethod
    async def get_alias(self, user_id: str, key: str) -> Optional[MerchantAlias]:
        pass

    @abstractmethod
    async def save_alias(self, alias: MerchantAlias) -> bool:
        """Insert or replace an alias by (user_id, key)."""
        pass

    @abstractmethod
    async def touch_alias(self, user_id: str, key: str, used_at: datetime) -> bool:
        """Record that an alias was just used."""
        pass

    @abstractmethod
    async def save_conversation(self, conversation: Conversation) -> bool:
        pass

    @abstractmethod
    async def get_conversation(self, conversation_id: UUID) -> Optional[Conversation]:
        pass

    @abstractmethod
    async def list_conversations(self, user_id: str) -> list[Conversation]:
        """List conversations, most recently updated first."""
        pass


class AuditStorageInterface(ABC):
    """
    Abstract interface for audit log storage.

    Audit logs are append-only - we never delete or modify them.
    """

    @abstractmethod
    async def append_event(self, event: AuditEvent) -> bool:
        """Append an audit event. Returns True if logged successfully."""
        pass

    @abstractmethod
    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        """All events of one user action, in chronological order."""
        pass

    @abstractmethod
    async def get_events_by_entity(
        self,
        entity_type: str,
        entity_id: str,
    ) -> list[AuditEvent]:
        """All events for a specific entity, in chronological order."""
        pass

    @abstractmethod
    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        """Most recent events, newest first."""
        pass


class StorageError(Exception):
    """Base exception for storage operations."""
    pass


class NotFoundError(StorageError):
    """Entity not found in storage."""
    pass


class DuplicateError(StorageError):
    """Attempted to insert a duplicate entity."""
    pass


class ConnectionError(StorageError):
    """Could not connect to storage backend."""
    pass
