"""Tests for the FinancialContext builder."""

from datetime import date
from decimal import Decimal

import pytest

from pocket.models import (
    BalanceSource,
    BankAccount,
    BankTransaction,
    Budget,
    BudgetPeriod,
    ExpenseCategory,
    IncomeSource,
    PatternType,
    SpendingPattern,
)
from pocket.queries import FinancialContextBuilder
from tests.helpers import USER, make_expense, utc

NOW = utc(2024, 5, 20, 15)


class TestFinancialContextBuilder:
    """The context only contains what storage holds for the current month."""

    @pytest.mark.asyncio
    async def test_empty_context(self, expense_storage):
        context = await FinancialContextBuilder(expense_storage).build(USER, now=NOW)

        assert context.has_data is False
        assert context.period_start == date(2024, 5, 1)
        assert context.period_end == date(2024, 5, 31)
        assert context.balance is None

    @pytest.mark.asyncio
    async def test_month_totals_and_breakdown(self, expense_storage):
        await expense_storage.save_expense(make_expense(100, date(2024, 5, 2)))
        await expense_storage.save_expense(make_expense(
            50, date(2024, 5, 3), category=ExpenseCategory.TRANSPORT, establishment_name="Uber",
        ))
        await expense_storage.save_expense(make_expense(80, date(2024, 5, 15)))
        await expense_storage.save_expense(make_expense(999, date(2024, 4, 30)))
        await expense_storage.save_expense(make_expense(10, date(2024, 5, 5), user_id="someone-else"))

        context = await FinancialContextBuilder(expense_storage).build(USER, now=NOW)

        assert context.total_spent == Decimal("230.00")
        assert context.expense_count == 3
        assert context.top_categories() == [
            (ExpenseCategory.GROCERIES, Decimal("180.00")),
            (ExpenseCategory.TRANSPORT, Decimal("50.00")),
        ]
        assert context.recent_expenses[0].expense_date == date(2024, 5, 15)

    @pytest.mark.asyncio
    async def test_balance_uses_linked_account(
        self, expense_storage, profile_storage, banking_storage,
    ):
        await expense_storage.save_expense(make_expense(
            200, date(2024, 5, 10), created_at=utc(2024, 5, 10, 12),
        ))
        await profile_storage.save_income_source(IncomeSource(
            user_id=USER, salary="5.000,00", linked_account_id="acc-1",
        ))
        await banking_storage.upsert_account(BankAccount(
            account_id="acc-1",
            item_id="item-1",
            user_id=USER,
            balance=Decimal("3000"),
            last_sync_at=utc(2024, 5, 19, 12),
        ))

        context = await FinancialContextBuilder(
            expense_storage, profile_storage, banking_storage,
        ).build(USER, now=NOW)

        assert context.balance.source == BalanceSource.BANK
        assert context.balance.remaining_balance == Decimal("3000")
        assert context.balance.manual_balance == Decimal("4800.00")

    @pytest.mark.asyncio
    async def test_unlinked_account_sync_ignored(
        self, expense_storage, profile_storage, banking_storage,
    ):
        """A card synced a minute ago does not hide expenses the salary account has not seen."""
        await expense_storage.save_expense(make_expense(
            200, date(2024, 5, 19), created_at=utc(2024, 5, 19, 10),
        ))
        await profile_storage.save_income_source(IncomeSource(
            user_id=USER, salary="5.000,00", linked_account_id="acc-1",
        ))
        await banking_storage.upsert_account(BankAccount(
            account_id="acc-1",
            item_id="item-1",
            user_id=USER,
            balance=Decimal("3000"),
            last_sync_at=utc(2024, 5, 18, 12),
        ))
        await banking_storage.upsert_account(BankAccount(
            account_id="card-1",
            item_id="item-1",
            user_id=USER,
            balance=Decimal("-1500"),
            last_sync_at=utc(2024, 5, 20, 14),
        ))

        context = await FinancialContextBuilder(
            expense_storage, profile_storage, banking_storage,
        ).build(USER, now=NOW)

        assert context.balance.source == BalanceSource.BANK
        assert context.balance.bank_balance == Decimal("3000")
        assert context.balance.remaining_balance == Decimal("2800")

    @pytest.mark.asyncio
    async def test_budgets_and_patterns(
        self, expense_storage, banking_storage, budget_storage, insights_storage,
    ):
        await expense_storage.save_expense(make_expense(100, date(2024, 5, 2)))
        await banking_storage.save_transaction(BankTransaction(
            transaction_id="t1",
            account_id="acc-1",
            user_id=USER,
            amount=Decimal("-60"),
            transaction_date=date(2024, 5, 20),
            category=ExpenseCategory.GROCERIES,
        ))
        await budget_storage.save_budget(Budget(
            user_id=USER, category=ExpenseCategory.GROCERIES, amount=Decimal("200"),
        ))
        await budget_storage.save_budget(Budget(
            user_id=USER,
            category=ExpenseCategory.GROCERIES,
            amount=Decimal("100"),
            period=BudgetPeriod.WEEKLY,
        ))
        await insights_storage.upsert_pattern(SpendingPattern(
            user_id=USER,
            pattern_type=PatternType.PAYMENT_CYCLE,
            pattern_key="first_week_spender",
            confidence=0.75,
        ))

        context = await FinancialContextBuilder(
            expense_storage,
            banking_storage=banking_storage,
            budget_storage=budget_storage,
            insights_storage=insights_storage,
        ).build(USER, now=NOW)

        spent = {status.budget.period: status.spent for status in context.budgets}
        assert spent[BudgetPeriod.MONTHLY] == Decimal("160.00")
        assert spent[BudgetPeriod.WEEKLY] == Decimal("60.00")
        assert [p.pattern_key for p in context.patterns] == ["first_week_spender"]
