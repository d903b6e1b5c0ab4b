"""
Balance Reconciliation

DESIGN DECISION: The remaining balance shown to the user is the SMALLER of
two figures:
1. Salary minus manually recorded expenses (receipts + typed in)
2. The real balance of the linked bank accounts

The user never sees more money than they actually have, even when the
Open Finance sync has not caught up with the latest purchases yet.
"""

import calendar
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import Iterable, Optional, Sequence
from zoneinfo import ZoneInfo

from pocket.finance.currency import parse_brl
from pocket.models import (
    AccountBalance,
    BalanceResult,
    BalanceSource,
    BankAccount,
    Expense,
    IncomeSource,
)

ZERO = Decimal("0.00")

RECENT_WINDOW_WITHOUT_SYNC = timedelta(hours=24)

BALANCE_SOURCE_LABELS = {
    BalanceSource.BANK: "Baseado no saldo do banco",
    BalanceSource.MANUAL: "Baseado nos gastos registrados",
    BalanceSource.NONE: "Sem dados de renda",
}


def parse_salary_string(salary: str) -> Decimal:
    """Convert a salary typed as "5.000,00" into 5000.00."""
    return parse_brl(salary)


def calculate_single_income_balance(
    salary: Decimal,
    manual_expenses: Decimal,
    bank_balance: Optional[Decimal],
) -> tuple[Decimal, BalanceSource]:
    """
    Remaining balance for a single income source.

    Returns (balance, source). Ties between the bank and the manual
    figure go to the bank.
    """
    manual_balance = salary - manual_expenses

    if bank_balance is None:
        return max(ZERO, manual_balance), BalanceSource.MANUAL

    if bank_balance <= manual_balance:
        return max(ZERO, bank_balance), BalanceSource.BANK
    return max(ZERO, manual_balance), BalanceSource.MANUAL


def calculate_total_balance(
    income_sources: Sequence[IncomeSource],
    account_balances: Sequence[AccountBalance],
    total_manual_expenses: Decimal,
    recent_expenses: Decimal = ZERO,
) -> BalanceResult:
    """
    Remaining balance across every income source.

    Args:
        income_sources: The user's income cards
        account_balances: Current balances of bank accounts, looked up by id
        total_manual_expenses: Expenses recorded this month
        recent_expenses: Expenses recorded after the latest bank sync,
            which the bank balance does not reflect yet
    """
    total_salary = sum(
        (parse_salary_string(source.salary) for source in income_sources),
        ZERO,
    )

    if not income_sources or total_salary == 0:
        return BalanceResult(
            remaining_balance=ZERO,
            source=BalanceSource.NONE,
            manual_balance=ZERO,
            bank_balance=None,
            total_income=ZERO,
            total_expenses=total_manual_expenses,
        )

    manual_balance = total_salary - total_manual_expenses

    balances_by_id = {account.id: account.balance for account in account_balances}
    bank_total = ZERO
    has_bank_figure = False

    for source in income_sources:
        if source.linked_account_id:
            balance = balances_by_id.get(source.linked_account_id)
            if balance is not None:
                bank_total += balance
                has_bank_figure = True
        elif source.last_known_balance is not None:
            # Balance kept from an account the user has since unlinked
            bank_total += source.last_known_balance
            has_bank_figure = True

    if not has_bank_figure:
        return BalanceResult(
            remaining_balance=max(ZERO, manual_balance),
            source=BalanceSource.MANUAL,
            manual_balance=manual_balance,
            bank_balance=None,
            total_income=total_salary,
            total_expenses=total_manual_expenses,
        )

    adjusted_bank = bank_total - recent_expenses
    use_bank = adjusted_bank <= manual_balance

    return BalanceResult(
        remaining_balance=max(ZERO, adjusted_bank if use_bank else manual_balance),
        source=BalanceSource.BANK if use_bank else BalanceSource.MANUAL,
        manual_balance=manual_balance,
        bank_balance=bank_total,
        total_income=total_salary,
        total_expenses=total_manual_expenses,
    )


def balance_source_label(source: BalanceSource) -> str:
    """Friendly description of where the balance came from."""
    return BALANCE_SOURCE_LABELS[source]


def latest_sync_at(accounts: Iterable[BankAccount]) -> Optional[datetime]:
    """Most recent sync time among the given accounts."""
    sync_times = [a.last_sync_at for a in accounts if a.last_sync_at is not None]
    return max(sync_times) if sync_times else None


def recent_expenses_since(
    expenses: Iterable[Expense],
    last_sync_at: Optional[datetime],
    now: datetime,
) -> Decimal:
    """
    Sum of expenses recorded after the latest bank sync.

    Without a sync time, everything recorded in the last 24 hours counts
    as recent.
    """
    cutoff = last_sync_at if last_sync_at is not None else now - RECENT_WINDOW_WITHOUT_SYNC
    return sum(
        (e.amount for e in expenses if e.created_at > cutoff),
        ZERO,
    )


def current_month_range(
    timezone: str = "America/Sao_Paulo",
    now: Optional[datetime] = None,
) -> tuple[date, date]:
    """
    First and last day of the current month in the given timezone.

    The month boundary follows the local timezone, not UTC.
    """
    local_now = (now or datetime.now(ZoneInfo("UTC"))).astimezone(ZoneInfo(timezone))
    last_day = calendar.monthrange(local_now.year, local_now.month)[1]
    return (
        date(local_now.year, local_now.month, 1),
        date(local_now.year, local_now.month, last_day),
    )
