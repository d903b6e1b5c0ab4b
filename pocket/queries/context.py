"""
Financial Context

DESIGN DECISION: The assistant never reads storage itself.
This builder collects the user's real numbers (current month spending,
balance, budgets, learned patterns) and hands them over as one
snapshot. The LLM can only talk about what is in here.
"""

from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import Optional
from zoneinfo import ZoneInfo

import structlog
from pydantic import BaseModel, Field

from pocket.finance.balance import (
    calculate_total_balance,
    current_month_range,
    latest_sync_at,
    recent_expenses_since,
)
from pocket.finance.budgets import BudgetTracker
from pocket.models import (
    AccountBalance,
    BalanceResult,
    BudgetStatus,
    Expense,
    ExpenseCategory,
    SpendingPattern,
    utc_now,
)
from pocket.services.storage import (
    BankingStorageInterface,
    BudgetStorageInterface,
    ExpenseStorageInterface,
    InsightsStorageInterface,
    ProfileStorageInterface,
    StorageError,
)

logger = structlog.get_logger()

RECENT_EXPENSES_LIMIT = 10


class FinancialContext(BaseModel):
    """Snapshot of the user's finances for the current month."""

    user_id: str
    period_start: date
    period_end: date
    total_spent: Decimal = Decimal("0.00")
    expense_count: int = 0
    category_breakdown: dict[ExpenseCategory, Decimal] = Field(default_factory=dict)
    recent_expenses: list[Expense] = Field(default_factory=list)
    balance: Optional[BalanceResult] = None
    budgets: list[BudgetStatus] = Field(default_factory=list)
    patterns: list[SpendingPattern] = Field(default_factory=list)

    @property
    def has_data(self) -> bool:
        return self.expense_count > 0 or self.balance is not None

    def top_categories(self, limit: int = 5) -> list[tuple[ExpenseCategory, Decimal]]:
        """Categories sorted by amount spent, largest first."""
        ranked = sorted(self.category_breakdown.items(), key=lambda kv: kv[1], reverse=True)
        return ranked[:limit]


class FinancialContextBuilder:
    """
    Builds a FinancialContext from storage.

    Banking, budget and insights storage are optional; the matching parts
    of the context stay empty without them.
    """

    def __init__(
        self,
        expense_storage: ExpenseStorageInterface,
        profile_storage: Optional[ProfileStorageInterface] = None,
        banking_storage: Optional[BankingStorageInterface] = None,
        budget_storage: Optional[BudgetStorageInterface] = None,
        insights_storage: Optional[InsightsStorageInterface] = None,
        timezone: str = "America/Sao_Paulo",
        budget_tracker: Optional[BudgetTracker] = None,
    ):
        self._expenses = expense_storage
        self._profile = profile_storage
        self._banking = banking_storage
        self._budgets = budget_storage
        self._insights = insights_storage
        self._timezone = timezone
        self._tracker = budget_tracker or BudgetTracker()

    async def build(self, user_id: str, now: Optional[datetime] = None) -> FinancialContext:
        now = now or utc_now()
        month_start, month_end = current_month_range(self._timezone, now)

        expenses = await self._expenses.list_expenses(
            user_id=user_id,
            date_from=month_start,
            date_to=month_end,
        )

        breakdown: dict[ExpenseCategory, Decimal] = {}
        for expense in expenses:
            breakdown[expense.category] = breakdown.get(expense.category, Decimal("0.00")) + expense.amount

        total_spent = sum((e.amount for e in expenses), Decimal("0.00"))

        context = FinancialContext(
            user_id=user_id,
            period_start=month_start,
            period_end=month_end,
            total_spent=total_spent,
            expense_count=len(expenses),
            category_breakdown=breakdown,
            recent_expenses=expenses[:RECENT_EXPENSES_LIMIT],
        )

        context.balance = await self._build_balance(user_id, expenses, total_spent, now)
        context.budgets = await self._build_budgets(user_id, now)

        if self._insights:
            try:
                context.patterns = await self._insights.list_patterns(user_id)
            except StorageError as e:
                logger.warning("context_patterns_unavailable", user_id=user_id, error=str(e))

        return context

    async def _build_balance(
        self,
        user_id: str,
        month_expenses: list[Expense],
        total_spent: Decimal,
        now: datetime,
    ) -> Optional[BalanceResult]:
        if not self._profile:
            return None

        income_sources = await self._profile.list_income_sources(user_id)
        if not income_sources:
            return None

        # Only accounts tied to an income source feed the balance
        linked_ids = {s.linked_account_id for s in income_sources if s.linked_account_id}
        accounts = await self._banking.list_accounts(user_id) if self._banking and linked_ids else []
        accounts = [account for account in accounts if account.account_id in linked_ids]
        account_balances = [
            AccountBalance(id=account.account_id, balance=account.balance)
            for account in accounts
            if account.balance is not None
        ]

        return calculate_total_balance(
            income_sources=income_sources,
            account_balances=account_balances,
            total_manual_expenses=total_spent,
            recent_expenses=recent_expenses_since(month_expenses, latest_sync_at(accounts), now),
        )

    async def _build_budgets(self, user_id: str, now: datetime) -> list[BudgetStatus]:
        if not self._budgets:
            return []

        budgets = await self._budgets.list_budgets(user_id)
        if not budgets:
            return []

        today = current_local_date(now, self._timezone)
        # Yearly budgets need the whole year, weekly ones may start last year
        year_start = min(today.replace(month=1, day=1), today - timedelta(days=6))
        expenses = await self._expenses.list_expenses(user_id=user_id, date_from=year_start, date_to=today)
        transactions = (
            await self._banking.list_transactions(user_id, date_from=year_start, date_to=today)
            if self._banking else []
        )
        return self._tracker.evaluate(budgets, expenses, transactions, today)


def current_local_date(now: datetime, timezone: str) -> date:
    return now.astimezone(ZoneInfo(timezone)).date()
