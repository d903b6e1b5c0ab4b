"""Money logic: currency, balance reconciliation, bill splitting, budgets and spending patterns."""

from pocket.finance.balance import (
    balance_source_label,
    calculate_single_income_balance,
    calculate_total_balance,
    current_month_range,
    latest_sync_at,
    parse_salary_string,
    recent_expenses_since,
)
from pocket.finance.budgets import BudgetTracker, period_range
from pocket.finance.currency import format_brl, parse_brl
from pocket.finance.patterns import PatternDetector, detect_patterns
from pocket.finance.split import BillSplitError, split_bill

__all__ = [
    "BillSplitError",
    "BudgetTracker",
    "PatternDetector",
    "balance_source_label",
    "calculate_single_income_balance",
    "calculate_total_balance",
    "current_month_range",
    "detect_patterns",
    "format_brl",
    "latest_sync_at",
    "parse_brl",
    "parse_salary_string",
    "period_range",
    "recent_expenses_since",
    "split_bill",
]
