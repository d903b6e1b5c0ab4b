"""
Budget Tracking

Spending against a budget counts both sides of the user's money:
- expenses recorded in the app (receipts and manual entries)
- bank transactions that have been categorized

Both are filtered to the budget's category and current period window.
"""

import calendar
from datetime import date, timedelta
from decimal import Decimal
from typing import Iterable, Optional, Sequence

from pocket.models import (
    BankTransaction,
    Budget,
    BudgetPeriod,
    BudgetStatus,
    Expense,
    to_cents,
)

DEFAULT_ALERT_THRESHOLD = Decimal("80")


def period_range(period: BudgetPeriod, today: date) -> tuple[date, date]:
    """Inclusive window of the period containing `today`. Weeks run Monday to Sunday."""
    if period == BudgetPeriod.WEEKLY:
        start = today - timedelta(days=today.weekday())
        return start, start + timedelta(days=6)
    if period == BudgetPeriod.YEARLY:
        return date(today.year, 1, 1), date(today.year, 12, 31)
    last_day = calendar.monthrange(today.year, today.month)[1]
    return date(today.year, today.month, 1), date(today.year, today.month, last_day)


class BudgetTracker:
    """
    Evaluates budgets against recorded spending.

    Usage:
        tracker = BudgetTracker()
        statuses = tracker.evaluate(budgets, expenses, transactions, today)
        for status in tracker.alerts(statuses):
            ...
    """

    def __init__(self, alert_threshold: Decimal = DEFAULT_ALERT_THRESHOLD):
        self.alert_threshold = alert_threshold

    def evaluate(
        self,
        budgets: Sequence[Budget],
        expenses: Iterable[Expense],
        bank_transactions: Optional[Iterable[BankTransaction]] = None,
        today: Optional[date] = None,
    ) -> list[BudgetStatus]:
        today = today or date.today()
        expenses = list(expenses)
        bank_transactions = [t for t in (bank_transactions or []) if t.category is not None]

        return [
            self._evaluate_one(budget, expenses, bank_transactions, today)
            for budget in budgets
        ]

    def _evaluate_one(
        self,
        budget: Budget,
        expenses: list[Expense],
        bank_transactions: list[BankTransaction],
        today: date,
    ) -> BudgetStatus:
        start, end = period_range(budget.period, today)

        manual_spent = sum(
            (
                e.amount for e in expenses
                if e.category == budget.category and start <= e.expense_date <= end
            ),
            Decimal("0"),
        )
        bank_spent = sum(
            (
                abs(t.amount) for t in bank_transactions
                if t.category == budget.category and start <= t.transaction_date <= end
            ),
            Decimal("0"),
        )

        spent = to_cents(manual_spent + bank_spent)
        percentage = to_cents(spent / budget.amount * 100)

        return BudgetStatus(
            budget=budget,
            period_start=start,
            period_end=end,
            spent=spent,
            remaining=max(Decimal("0.00"), to_cents(budget.amount - spent)),
            percentage=percentage,
            over_budget=percentage > 100,
            near_limit=percentage >= self.alert_threshold,
        )

    def alerts(self, statuses: Iterable[BudgetStatus]) -> list[BudgetStatus]:
        """Budgets with notifications enabled that are near or over their limit."""
        return [
            s for s in statuses
            if s.budget.notifications_enabled and (s.near_limit or s.over_budget)
        ]
