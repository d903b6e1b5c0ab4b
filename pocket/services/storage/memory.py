"""
In-memory storage.

Used by the tests and when Google Sheets is not configured. Models are
copied on the way in and out so callers never share state with the store.
"""

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
    utc_now,
)
from pocket.services.storage.interface import (
    AuditStorageInterface,
    BankingStorageInterface,
    BudgetStorageInterface,
    DuplicateError,
    ExpenseStorageInterface,
    InsightsStorageInterface,
    NotFoundError,
    ProfileStorageInterface,
)


def _in_range(value: date, date_from: Optional[date], date_to: Optional[date]) -> bool:
    if date_from and value < date_from:
        return False
    if date_to and value > date_to:
        return False
    return True


class InMemoryExpenseStorage(ExpenseStorageInterface):

    def __init__(self):
        self._expenses: dict[UUID, Expense] = {}

    async def save_expense(self, expense: Expense) -> bool:
        if expense.id in self._expenses:
            raise DuplicateError(f"Expense already exists: {expense.id}")
        self._expenses[expense.id] = expense.model_copy(deep=True)
        return True

    async def get_expense_by_id(self, expense_id: UUID) -> Optional[Expense]:
        expense = self._expenses.get(expense_id)
        return expense.model_copy(deep=True) if expense else None

    async def update_expense(self, expense: Expense) -> bool:
        if expense.id not in self._expenses:
            raise NotFoundError(f"Expense not found: {expense.id}")
        expense.updated_at = utc_now()
        self._expenses[expense.id] = expense.model_copy(deep=True)
        return True

    async def delete_expense(self, expense_id: UUID) -> bool:
        return self._expenses.pop(expense_id, None) is not None

    async def list_expenses(
        self,
        user_id: str,
        category: Optional[ExpenseCategory] = None,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
        limit: int = 1000,
        offset: int = 0,
    ) -> list[Expense]:
        expenses = [
            e.model_copy(deep=True) for e in self._expenses.values()
            if e.user_id == user_id
            and (category is None or e.category == category)
            and _in_range(e.expense_date, date_from, date_to)
        ]
        expenses.sort(key=lambda e: (e.expense_date, e.created_at), reverse=True)
        return expenses[offset:offset + limit]

    async def expense_exists(
        self,
        user_id: str,
        establishment_name: str,
        expense_date: date,
        amount: Decimal,
    ) -> bool:
        name = establishment_name.strip().lower()
        return any(
            e.user_id == user_id
            and e.establishment_name.strip().lower() == name
            and e.expense_date == expense_date
            and e.amount == amount
            for e in self._expenses.values()
        )


class InMemoryProfileStorage(ProfileStorageInterface):

    def __init__(self):
        self._sources: dict[UUID, IncomeSource] = {}

    async def list_income_sources(self, user_id: str) -> list[IncomeSource]:
        return [s.model_copy() for s in self._sources.values() if s.user_id == user_id]

    async def save_income_source(self, source: IncomeSource) -> bool:
        self._sources[source.id] = source.model_copy()
        return True

    async def delete_income_source(self, source_id: UUID) -> bool:
        return self._sources.pop(source_id, None) is not None


class InMemoryBudgetStorage(BudgetStorageInterface):

    def __init__(self):
        self._budgets: dict[UUID, Budget] = {}

    async def list_budgets(self, user_id: str) -> list[Budget]:
        budgets = [b.model_copy() for b in self._budgets.values() if b.user_id == user_id]
        budgets.sort(key=lambda b: b.created_at, reverse=True)
        return budgets

    async def save_budget(self, budget: Budget) -> bool:
        self._budgets[budget.id] = budget.model_copy()
        return True

    async def delete_budget(self, budget_id: UUID) -> bool:
        return self._budgets.pop(budget_id, None) is not None


class InMemoryBankingStorage(BankingStorageInterface):

    def __init__(self):
        self._items: dict[str, BankItem] = {}
        self._accounts: dict[str, BankAccount] = {}
        self._transactions: dict[str, BankTransaction] = {}

    async def upsert_item(self, item: BankItem) -> bool:
        existing = self._items.get(item.item_id)
        stored = item.model_copy(deep=True)
        if existing:
            stored.created_at = existing.created_at
        stored.updated_at = utc_now()
        self._items[item.item_id] = stored
        return True

    async def get_item(self, item_id: str) -> Optional[BankItem]:
        item = self._items.get(item_id)
        return item.model_copy(deep=True) if item else None

    async def list_items(self, user_id: str) -> list[BankItem]:
        return [i.model_copy(deep=True) for i in self._items.values() if i.user_id == user_id]

    async def delete_item(self, item_id: str) -> bool:
        removed = self._items.pop(item_id, None) is not None
        for account_id in [a.account_id for a in self._accounts.values() if a.item_id == item_id]:
            del self._accounts[account_id]
        return removed

    async def upsert_account(self, account: BankAccount) -> bool:
        self._accounts[account.account_id] = account.model_copy()
        return True

    async def get_account(self, account_id: str) -> Optional[BankAccount]:
        account = self._accounts.get(account_id)
        return account.model_copy() if account else None

    async def list_accounts(
        self,
        user_id: str,
        item_id: Optional[str] = None,
    ) -> list[BankAccount]:
        return [
            a.model_copy() for a in self._accounts.values()
            if a.user_id == user_id and (item_id is None or a.item_id == item_id)
        ]

    async def transaction_exists(self, transaction_id: str) -> bool:
        return transaction_id in self._transactions

    async def save_transaction(self, transaction: BankTransaction) -> bool:
        if transaction.transaction_id in self._transactions:
            raise DuplicateError(f"Transaction already stored: {transaction.transaction_id}")
        self._transactions[transaction.transaction_id] = transaction.model_copy()
        return True

    async def update_transaction(self, transaction: BankTransaction) -> bool:
        if transaction.transaction_id not in self._transactions:
            raise NotFoundError(f"Transaction not found: {transaction.transaction_id}")
        self._transactions[transaction.transaction_id] = transaction.model_copy()
        return True

    async def delete_transaction(self, transaction_id: str) -> bool:
        return self._transactions.pop(transaction_id, None) is not None

    async def list_transactions(
        self,
        user_id: str,
        account_id: Optional[str] = None,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
    ) -> list[BankTransaction]:
        transactions = [
            t.model_copy() for t in self._transactions.values()
            if t.user_id == user_id
            and (account_id is None or t.account_id == account_id)
            and _in_range(t.transaction_date, date_from, date_to)
        ]
        transactions.sort(key=lambda t: t.transaction_date, reverse=True)
        return transactions


class InMemoryInsightsStorage(InsightsStorageInterface):

    def __init__(self):
        self._patterns: dict[tuple[str, str, str], SpendingPattern] = {}
        self._aliases: dict[tuple[str, str], MerchantAlias] = {}
        self._conversations: dict[UUID, Conversation] = {}

    async def upsert_pattern(self, pattern: SpendingPattern) -> SpendingPattern:
        stored = pattern.model_copy(deep=True)
        existing = self._patterns.get(pattern.identity)
        if existing:
            stored.id = existing.id
        stored.updated_at = utc_now()
        self._patterns[pattern.identity] = stored
        return stored.model_copy(deep=True)

    async def list_patterns(
        self,
        user_id: str,
        pattern_type: Optional[PatternType] = None,
    ) -> list[SpendingPattern]:
        return [
            p.model_copy(deep=True) for (owner, _, _), p in self._patterns.items()
            if owner == user_id and (pattern_type is None or p.pattern_type == pattern_type)
        ]

    async def get_alias(self, user_id: str, key: str) -> Optional[MerchantAlias]:
        alias = self._aliases.get((user_id, key))
        return alias.model_copy() if alias else None

    async def save_alias(self, alias: MerchantAlias) -> bool:
        self._aliases[(alias.user_id, alias.key)] = alias.model_copy()
        return True

    async def touch_alias(self, user_id: str, key: str, used_at: datetime) -> bool:
        alias = self._aliases.get((user_id, key))
        if alias is None:
            return False
        alias.last_used_at = used_at
        return True

    async def save_conversation(self, conversation: Conversation) -> bool:
        self._conversations[conversation.id] = conversation.model_copy(deep=True)
        return True

    async def get_conversation(self, conversation_id: UUID) -> Optional[Conversation]:
        conversation = self._conversations.get(conversation_id)
        return conversation.model_copy(deep=True) if conversation else None

    async def list_conversations(self, user_id: str) -> list[Conversation]:
        conversations = [
            c.model_copy(deep=True) for c in self._conversations.values()
            if c.user_id == user_id
        ]
        conversations.sort(key=lambda c: c.updated_at, reverse=True)
        return conversations


class InMemoryAuditStorage(AuditStorageInterface):
    """Append-only list of events."""

    def __init__(self):
        self.events: list[AuditEvent] = []

    async def append_event(self, event: AuditEvent) -> bool:
        self.events.append(event)
        return True

    async def get_events_by_correlation_id(self, correlation_id: UUID) -> list[AuditEvent]:
        return sorted(
            (e for e in self.events if e.correlation_id == correlation_id),
            key=lambda e: e.timestamp,
        )

    async def get_events_by_entity(self, entity_type: str, entity_id: str) -> list[AuditEvent]:
        return sorted(
            (e for e in self.events if e.entity_type == entity_type and e.entity_id == entity_id),
            key=lambda e: e.timestamp,
        )

    async def get_recent_events(self, limit: int = 100) -> list[AuditEvent]:
        return sorted(self.events, key=lambda e: e.timestamp, reverse=True)[:limit]
