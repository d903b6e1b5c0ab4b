"""Tests for currency, balance reconciliation, bill splitting and budgets."""

from datetime import date, datetime, timedelta, timezone
from decimal import Decimal

import pytest

from pocket.finance import (
    BillSplitError,
    BudgetTracker,
    calculate_single_income_balance,
    calculate_total_balance,
    current_month_range,
    format_brl,
    parse_brl,
    period_range,
    recent_expenses_since,
    split_bill,
)
from pocket.models import (
    AccountBalance,
    BalanceSource,
    BankTransaction,
    Budget,
    BudgetPeriod,
    ExpenseCategory,
    IncomeSource,
)
from tests.helpers import USER, make_expense, utc


class TestCurrency:
    """Tests for BRL parsing and formatting."""

    @pytest.mark.parametrize("text,expected", [
        ("5.000,00", Decimal("5000.00")),
        ("R$ 12,5", Decimal("12.50")),
        ("1.500", Decimal("1500.00")),
        ("99.90", Decimal("99.90")),
        ("", Decimal("0.00")),
        ("abc", Decimal("0.00")),
        (None, Decimal("0.00")),
        ("NaN", Decimal("0.00")),
        ("sNaN", Decimal("0.00")),
        ("Infinity", Decimal("0.00")),
        (float("nan"), Decimal("0.00")),
        (Decimal("-Infinity"), Decimal("0.00")),
    ])
    def test_parse_brl(self, text, expected):
        assert parse_brl(text) == expected

    def test_format_brl(self):
        assert format_brl(Decimal("1234.56")) == "R$ 1.234,56"
        assert format_brl(Decimal("0")) == "R$ 0,00"
        assert format_brl(Decimal("-10.5")) == "-R$ 10,50"


class TestBalance:
    """Tests for the remaining balance reconciliation."""

    def _income(self, salary="5.000,00", linked_account_id=None, last_known_balance=None):
        return IncomeSource(
            user_id=USER,
            salary=salary,
            linked_account_id=linked_account_id,
            last_known_balance=last_known_balance,
        )

    def test_no_income_returns_none_source(self):
        """Without a salary there is nothing to reconcile."""
        result = calculate_total_balance([], [], Decimal("100"))
        assert result.source == BalanceSource.NONE
        assert result.remaining_balance == Decimal("0.00")

    def test_manual_only(self):
        """Salary minus expenses when no bank is linked."""
        result = calculate_total_balance([self._income()], [], Decimal("1200"))
        assert result.source == BalanceSource.MANUAL
        assert result.remaining_balance == Decimal("3800.00")
        assert result.bank_balance is None

    def test_unreadable_salary_counts_as_zero(self):
        """A salary typed as "NaN" is treated like no salary at all."""
        result = calculate_total_balance([self._income("NaN")], [], Decimal("10"))
        assert result.source == BalanceSource.NONE
        assert result.remaining_balance == Decimal("0.00")

    def test_bank_lower_than_manual_wins(self):
        result = calculate_total_balance(
            [self._income(linked_account_id="acc-1")],
            [AccountBalance(id="acc-1", balance=Decimal("3000"))],
            Decimal("1200"),
        )
        assert result.source == BalanceSource.BANK
        assert result.remaining_balance == Decimal("3000")

    def test_manual_lower_than_bank_wins(self):
        """The user never sees more money than they have."""
        result = calculate_total_balance(
            [self._income(linked_account_id="acc-1")],
            [AccountBalance(id="acc-1", balance=Decimal("10000"))],
            Decimal("1200"),
        )
        assert result.source == BalanceSource.MANUAL
        assert result.remaining_balance == Decimal("3800.00")
        assert result.bank_balance == Decimal("10000")

    def test_recent_expenses_reduce_bank_balance(self):
        """Expenses recorded after the last sync are not in the bank figure yet."""
        result = calculate_total_balance(
            [self._income(linked_account_id="acc-1")],
            [AccountBalance(id="acc-1", balance=Decimal("3000"))],
            Decimal("1200"),
            recent_expenses=Decimal("200"),
        )
        assert result.source == BalanceSource.BANK
        assert result.remaining_balance == Decimal("2800")

    def test_negative_balance_clamped_to_zero(self):
        result = calculate_total_balance([self._income("1.000,00")], [], Decimal("1500"))
        assert result.remaining_balance == Decimal("0.00")
        assert result.manual_balance == Decimal("-500.00")

    def test_last_known_balance_for_unlinked_source(self):
        result = calculate_total_balance(
            [self._income(last_known_balance=Decimal("2500"))],
            [],
            Decimal("1200"),
        )
        assert result.source == BalanceSource.BANK
        assert result.bank_balance == Decimal("2500")

    def test_missing_account_balance_falls_back_to_manual(self):
        result = calculate_total_balance(
            [self._income(linked_account_id="acc-1")],
            [AccountBalance(id="acc-1", balance=None)],
            Decimal("1200"),
        )
        assert result.source == BalanceSource.MANUAL

    def test_single_income_tie_goes_to_bank(self):
        balance, source = calculate_single_income_balance(
            Decimal("5000"), Decimal("1000"), Decimal("4000"),
        )
        assert source == BalanceSource.BANK
        assert balance == Decimal("4000")

    def test_single_income_without_bank(self):
        balance, source = calculate_single_income_balance(
            Decimal("5000"), Decimal("1000"), None,
        )
        assert source == BalanceSource.MANUAL
        assert balance == Decimal("4000")

    def test_recent_expenses_since_sync(self):
        now = utc(2024, 5, 10, 12)
        expenses = [
            make_expense(50, date(2024, 5, 10), created_at=utc(2024, 5, 10, 11)),
            make_expense(30, date(2024, 5, 9), created_at=utc(2024, 5, 9, 8)),
        ]
        assert recent_expenses_since(expenses, utc(2024, 5, 10, 9), now) == Decimal("50.00")

    def test_recent_expenses_without_sync_uses_last_day(self):
        now = utc(2024, 5, 10, 12)
        expenses = [
            make_expense(50, date(2024, 5, 10), created_at=now - timedelta(hours=2)),
            make_expense(30, date(2024, 5, 8), created_at=now - timedelta(hours=30)),
        ]
        assert recent_expenses_since(expenses, None, now) == Decimal("50.00")

    def test_month_range_follows_local_timezone(self):
        """02:00 UTC on March 1st is still February in São Paulo."""
        start, end = current_month_range(
            "America/Sao_Paulo",
            datetime(2024, 3, 1, 2, 0, tzinfo=timezone.utc),
        )
        assert start == date(2024, 2, 1)
        assert end == date(2024, 2, 29)


class TestBillSplit:
    """Tests for bill splitting."""

    def test_even_split_with_leftover_cents(self):
        split = split_bill(Decimal("100"), 3)
        assert split.per_person == Decimal("33.33")
        assert split.shares == [Decimal("33.34"), Decimal("33.33"), Decimal("33.33")]
        assert sum(split.shares) == split.final_total

    def test_service_charge(self):
        split = split_bill("150", 2, include_service_charge=True)
        assert split.service_charge == Decimal("15.00")
        assert split.final_total == Decimal("165.00")
        assert split.per_person == Decimal("82.50")

    def test_custom_rate(self):
        split = split_bill(Decimal("200"), 4, include_service_charge=True, rate=Decimal("0.12"))
        assert split.service_charge == Decimal("24.00")
        assert split.per_person == Decimal("56.00")

    def test_zero_total_rejected(self):
        with pytest.raises(BillSplitError):
            split_bill(Decimal("0"), 2)

    @pytest.mark.parametrize("total", ["NaN", Decimal("Infinity"), float("nan")])
    def test_non_finite_total_rejected(self, total):
        with pytest.raises(BillSplitError):
            split_bill(total, 2)

    def test_zero_people_rejected(self):
        with pytest.raises(BillSplitError):
            split_bill(Decimal("50"), 0)


class TestBudgets:
    """Tests for budget windows and evaluation."""

    def test_weekly_range_monday_to_sunday(self):
        assert period_range(BudgetPeriod.WEEKLY, date(2024, 5, 15)) == (
            date(2024, 5, 13), date(2024, 5, 19),
        )

    def test_monthly_and_yearly_ranges(self):
        assert period_range(BudgetPeriod.MONTHLY, date(2024, 2, 10)) == (
            date(2024, 2, 1), date(2024, 2, 29),
        )
        assert period_range(BudgetPeriod.YEARLY, date(2024, 6, 1)) == (
            date(2024, 1, 1), date(2024, 12, 31),
        )

    def test_evaluate_counts_expenses_and_categorized_transactions(self):
        """Manual expenses and categorized bank debits add up."""
        budget = Budget(user_id=USER, category=ExpenseCategory.GROCERIES, amount=Decimal("500"))
        expenses = [
            make_expense(200, date(2024, 5, 3)),
            make_expense(100, date(2024, 5, 20)),
            make_expense(999, date(2024, 4, 30)),
            make_expense(70, date(2024, 5, 4), category=ExpenseCategory.TRANSPORT),
        ]
        transactions = [
            BankTransaction(
                transaction_id="t1", account_id="a1", user_id=USER,
                amount=Decimal("-150"), transaction_date=date(2024, 5, 10),
                category=ExpenseCategory.GROCERIES,
            ),
            BankTransaction(
                transaction_id="t2", account_id="a1", user_id=USER,
                amount=Decimal("-80"), transaction_date=date(2024, 5, 11),
            ),
        ]

        tracker = BudgetTracker()
        [status] = tracker.evaluate([budget], expenses, transactions, today=date(2024, 5, 25))

        assert status.spent == Decimal("450.00")
        assert status.remaining == Decimal("50.00")
        assert status.percentage == Decimal("90.00")
        assert status.near_limit is True
        assert status.over_budget is False
        assert tracker.alerts([status]) == [status]

    def test_over_budget(self):
        budget = Budget(user_id=USER, category=ExpenseCategory.GROCERIES, amount=Decimal("100"))
        [status] = BudgetTracker().evaluate(
            [budget], [make_expense(120, date(2024, 5, 3))], today=date(2024, 5, 5),
        )
        assert status.over_budget is True
        assert status.remaining == Decimal("0.00")

    def test_alerts_skip_disabled_notifications(self):
        budget = Budget(
            user_id=USER,
            category=ExpenseCategory.GROCERIES,
            amount=Decimal("100"),
            notifications_enabled=False,
        )
        tracker = BudgetTracker()
        statuses = tracker.evaluate(
            [budget], [make_expense(95, date(2024, 5, 3))], today=date(2024, 5, 5),
        )
        assert tracker.alerts(statuses) == []
