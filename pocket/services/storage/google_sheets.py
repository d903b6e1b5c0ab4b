"""
Google Sheets Storage Implementation

DESIGN DECISION: Google Sheets is used as the storage backend because:
1. Users can view their own data directly in Sheets
2. No database setup required
3. Easy to export/migrate later

TRADEOFFS:
- Not suitable for high-volume data (fine for personal finance)
- No transactions (we handle this with careful ordering)
- Limited query capabilities (we filter in Python)

Every table is one worksheet with a header row. Nested fields (receipt
items, pattern values, chat messages) are JSON-serialized into a single
cell.
"""

import json
from datetime import date, datetime
from decimal import Decimal
from typing import Callable, Optional
from uuid import UUID

import gspread
import structlog
from google.oauth2.service_account import Credentials
from tenacity import retry, stop_after_attempt, wait_exponential

from pocket.config import get_settings
from pocket.models import (
    AuditEvent,
    AuditEventType,
    AuditSeverity,
    BankAccount,
    BankItem,
    BankTransaction,
    Budget,
    BudgetPeriod,
    CategorizationConfidence,
    ChatMessage,
    Conversation,
    Expense,
    ExpenseCategory,
    ExpenseSource,
    IncomeSource,
    MerchantAlias,
    PatternType,
    ReceiptItem,
    SpendingPattern,
    utc_now,
)
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

logger = structlog.get_logger()


EXPENSE_COLUMNS = [
    "id", "user_id", "created_at", "updated_at", "establishment_name",
    "amount", "expense_date", "category", "subcategory", "is_fixed_cost",
    "source", "extraction_id", "notes", "image_url", "items_json",
]
INCOME_COLUMNS = [
    "id", "user_id", "name", "salary", "payment_day", "linked_account_id",
    "last_known_balance",
]
BUDGET_COLUMNS = [
    "id", "user_id", "category", "amount", "period",
    "notifications_enabled", "created_at",
]
ITEM_COLUMNS = [
    "item_id", "user_id", "connector_id", "connector_name", "status",
    "error_message", "created_at", "updated_at",
]
ACCOUNT_COLUMNS = [
    "account_id", "item_id", "user_id", "type", "subtype", "name", "number",
    "balance", "currency_code", "credit_limit", "available_credit_limit",
    "last_sync_at",
]
TRANSACTION_COLUMNS = [
    "transaction_id", "account_id", "user_id", "description", "amount",
    "transaction_date", "provider_category", "type", "status",
    "receiver_name", "payer_name", "category", "subcategory",
    "is_fixed_cost", "categorization_confidence", "created_at",
]
PATTERN_COLUMNS = [
    "id", "user_id", "pattern_type", "pattern_key", "category",
    "pattern_value_json", "confidence", "occurrences",
    "analysis_period_start", "analysis_period_end", "is_active", "updated_at",
]
ALIAS_COLUMNS = [
    "user_id", "key", "raw_name", "establishment_name", "category",
    "subcategory", "confidence", "last_used_at",
]
CONVERSATION_COLUMNS = [
    "id", "user_id", "title", "created_at", "updated_at", "messages_json",
]
AUDIT_COLUMNS = [
    "event_id", "timestamp", "event_type", "severity", "user_id",
    "entity_type", "entity_id", "correlation_id", "description",
    "details_json", "error_message", "is_user_action",
]


# =============================================================================
# ROW HELPERS
# =============================================================================

def safe_get(row: list, index: int, default: str = "") -> str:
    """Cell value, tolerating short rows and empty cells."""
    try:
        return row[index] if row[index] else default
    except IndexError:
        return default


def _opt(value) -> str:
    return "" if value is None else str(value)


def _opt_date(value: str) -> Optional[date]:
    return date.fromisoformat(value) if value else None


def _opt_datetime(value: str) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


def _opt_decimal(value: str) -> Optional[Decimal]:
    return Decimal(value) if value else None


def _bool(value: str) -> bool:
    return value.lower() == "true"


class GoogleSheetsClient:
    """
    Low-level Google Sheets client wrapper.

    Handles authentication and creates worksheets on first use.
    """

    def __init__(self):
        self._client: Optional[gspread.Client] = None
        self._spreadsheet: Optional[gspread.Spreadsheet] = None
        self._worksheets: dict[str, gspread.Worksheet] = {}
        self._settings = get_settings().google_sheets

    @property
    def settings(self):
        return self._settings

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    def connect(self) -> gspread.Client:
        """
        Establish connection to Google Sheets.

        Uses service account credentials for authentication.
        """
        if self._client is None:
            try:
                scopes = [
                    "https://www.googleapis.com/auth/spreadsheets",
                    "https://www.googleapis.com/auth/drive",
                ]
                credentials = Credentials.from_service_account_file(
                    self._settings.credentials_path,
                    scopes=scopes,
                )
                self._client = gspread.authorize(credentials)
            except FileNotFoundError:
                raise ConnectionError(
                    f"Google credentials file not found: {self._settings.credentials_path}"
                )
            except Exception as e:
                raise ConnectionError(f"Failed to connect to Google Sheets: {e}")

        return self._client

    def get_spreadsheet(self) -> gspread.Spreadsheet:
        """Get the configured spreadsheet."""
        if self._spreadsheet is None:
            client = self.connect()
            try:
                self._spreadsheet = client.open_by_key(self._settings.spreadsheet_id)
            except gspread.SpreadsheetNotFound:
                raise ConnectionError(
                    f"Spreadsheet not found: {self._settings.spreadsheet_id}"
                )
        return self._spreadsheet

    def get_worksheet(self, title: str, columns: list[str], rows: int = 1000) -> gspread.Worksheet:
        """Get or create a worksheet with the given header row."""
        if title in self._worksheets:
            return self._worksheets[title]

        spreadsheet = self.get_spreadsheet()
        try:
            sheet = spreadsheet.worksheet(title)
        except gspread.WorksheetNotFound:
            sheet = spreadsheet.add_worksheet(title=title, rows=rows, cols=len(columns))
            sheet.append_row(columns)
            logger.info("worksheet_created", title=title)

        self._worksheets[title] = sheet
        return sheet


class _SheetTable:
    """
    One worksheet used as a table.

    Row indexes returned by `rows()` are the 1-based sheet row numbers
    (row 1 is the header).
    """

    def __init__(self, client: GoogleSheetsClient, title: str, columns: list[str], rows: int = 1000):
        self._client = client
        self._title = title
        self._columns = columns
        self._rows = rows

    def sheet(self) -> gspread.Worksheet:
        return self._client.get_worksheet(self._title, self._columns, self._rows)

    def rows(self) -> list[tuple[int, list]]:
        all_rows = self.sheet().get_all_values()
        return [
            (idx, row) for idx, row in enumerate(all_rows[1:], start=2)
            if row and row[0]
        ]

    def find(self, predicate: Callable[[list], bool]) -> Optional[tuple[int, list]]:
        for idx, row in self.rows():
            if predicate(row):
                return idx, row
        return None

    def parse_all(self, parse: Callable[[list], object], predicate: Callable[[list], bool]) -> list:
        parsed = []
        for _, row in self.rows():
            if not predicate(row):
                continue
            try:
                parsed.append(parse(row))
            except (ValueError, KeyError, json.JSONDecodeError) as e:
                logger.warning("malformed_row_skipped", sheet=self._title, error=str(e))
        return parsed

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    def append(self, row: list) -> None:
        self.sheet().append_row(row, value_input_option="RAW")

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    def replace(self, idx: int, row: list) -> None:
        self.sheet().update(range_name=f"A{idx}", values=[row], value_input_option="RAW")

    def upsert(self, predicate: Callable[[list], bool], row: list) -> None:
        found = self.find(predicate)
        if found:
            self.replace(found[0], row)
        else:
            self.append(row)

    def delete(self, idx: int) -> None:
        self.sheet().delete_rows(idx)


# =============================================================================
# EXPENSES
# =============================================================================

class GoogleSheetsExpenseStorage(ExpenseStorageInterface):
    """
    Expenses are stored one per row.
    Receipt items are JSON-serialized.
    """

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        self._client = client or GoogleSheetsClient()
        self._table = _SheetTable(
            self._client, self._client.settings.expenses_sheet_name, EXPENSE_COLUMNS
        )

    def _expense_to_row(self, expense: Expense) -> list:
        return [
            str(expense.id),
            expense.user_id,
            expense.created_at.isoformat(),
            expense.updated_at.isoformat(),
            expense.establishment_name,
            str(expense.amount),
            expense.expense_date.isoformat(),
            expense.category.value,
            expense.subcategory or "",
            str(expense.is_fixed_cost),
            expense.source.value,
            _opt(expense.extraction_id),
            expense.notes or "",
            expense.image_url or "",
            json.dumps([item.model_dump(mode="json") for item in expense.items]),
        ]

    def _row_to_expense(self, row: list) -> Expense:
        items_json = safe_get(row, 14)
        items = [ReceiptItem(**item) for item in json.loads(items_json)] if items_json else []
        extraction_id = safe_get(row, 11)

        return Expense(
            id=UUID(safe_get(row, 0)),
            user_id=safe_get(row, 1),
            created_at=datetime.fromisoformat(safe_get(row, 2)),
            updated_at=datetime.fromisoformat(safe_get(row, 3)),
            establishment_name=safe_get(row, 4),
            amount=Decimal(safe_get(row, 5)),
            expense_date=date.fromisoformat(safe_get(row, 6)),
            category=ExpenseCategory(safe_get(row, 7, "other")),
            subcategory=safe_get(row, 8) or None,
            is_fixed_cost=_bool(safe_get(row, 9)),
            source=ExpenseSource(safe_get(row, 10, "manual")),
            extraction_id=UUID(extraction_id) if extraction_id else None,
            notes=safe_get(row, 12) or None,
            image_url=safe_get(row, 13) or None,
            items=items,
        )

    async def save_expense(self, expense: Expense) -> bool:
        try:
            self._table.append(self._expense_to_row(expense))
            return True
        except Exception as e:
            raise StorageError(f"Failed to save expense: {e}")

    async def get_expense_by_id(self, expense_id: UUID) -> Optional[Expense]:
        try:
            found = self._table.find(lambda row: row[0] == str(expense_id))
            return self._row_to_expense(found[1]) if found else None
        except Exception as e:
            raise StorageError(f"Failed to get expense: {e}")

    async def update_expense(self, expense: Expense) -> bool:
        try:
            found = self._table.find(lambda row: row[0] == str(expense.id))
            if not found:
                raise NotFoundError(f"Expense not found: {expense.id}")
            expense.updated_at = utc_now()
            self._table.replace(found[0], self._expense_to_row(expense))
            return True
        except NotFoundError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to update expense: {e}")

    async def delete_expense(self, expense_id: UUID) -> bool:
        try:
            found = self._table.find(lambda row: row[0] == str(expense_id))
            if not found:
                return False
            self._table.delete(found[0])
            return True
        except Exception as e:
            raise StorageError(f"Failed to delete expense: {e}")

    async def list_expenses(
        self,
        user_id: str,
        category: Optional[ExpenseCategory] = None,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
        limit: int = 1000,
        offset: int = 0,
    ) -> list[Expense]:
        try:
            expenses = self._table.parse_all(
                self._row_to_expense,
                lambda row: safe_get(row, 1) == user_id,
            )
        except Exception as e:
            raise StorageError(f"Failed to list expenses: {e}")

        filtered = []
        for expense in expenses:
            if category and expense.category != category:
                continue
            if date_from and expense.expense_date < date_from:
                continue
            if date_to and expense.expense_date > date_to:
                continue
            filtered.append(expense)

        # Newest first
        filtered.sort(key=lambda e: (e.expense_date, e.created_at), reverse=True)
        return filtered[offset:offset + limit]

    async def expense_exists(
        self,
        user_id: str,
        establishment_name: str,
        expense_date: date,
        amount: Decimal,
    ) -> bool:
        expenses = await self.list_expenses(user_id, date_from=expense_date, date_to=expense_date)
        name = establishment_name.strip().lower()
        return any(
            e.establishment_name.strip().lower() == name and e.amount == amount
            for e in expenses
        )


# =============================================================================
# PROFILE AND BUDGETS
# =============================================================================

class GoogleSheetsProfileStorage(ProfileStorageInterface):

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        self._client = client or GoogleSheetsClient()
        self._table = _SheetTable(
            self._client, self._client.settings.income_sheet_name, INCOME_COLUMNS
        )

    def _source_to_row(self, source: IncomeSource) -> list:
        return [
            str(source.id),
            source.user_id,
            source.name,
            source.salary,
            _opt(source.payment_day),
            source.linked_account_id or "",
            _opt(source.last_known_balance),
        ]

    def _row_to_source(self, row: list) -> IncomeSource:
        payment_day = safe_get(row, 4)
        return IncomeSource(
            id=UUID(safe_get(row, 0)),
            user_id=safe_get(row, 1),
            name=safe_get(row, 2, "Salário"),
            salary=safe_get(row, 3, "0"),
            payment_day=int(payment_day) if payment_day else None,
            linked_account_id=safe_get(row, 5) or None,
            last_known_balance=_opt_decimal(safe_get(row, 6)),
        )

    async def list_income_sources(self, user_id: str) -> list[IncomeSource]:
        try:
            return self._table.parse_all(self._row_to_source, lambda row: safe_get(row, 1) == user_id)
        except Exception as e:
            raise StorageError(f"Failed to list income sources: {e}")

    async def save_income_source(self, source: IncomeSource) -> bool:
        try:
            self._table.upsert(lambda row: row[0] == str(source.id), self._source_to_row(source))
            return True
        except Exception as e:
            raise StorageError(f"Failed to save income source: {e}")

    async def delete_income_source(self, source_id: UUID) -> bool:
        try:
            found = self._table.find(lambda row: row[0] == str(source_id))
            if not found:
                return False
            self._table.delete(found[0])
            return True
        except Exception as e:
            raise StorageError(f"Failed to delete income source: {e}")


class GoogleSheetsBudgetStorage(BudgetStorageInterface):

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        self._client = client or GoogleSheetsClient()
        self._table = _SheetTable(
            self._client, self._client.settings.budgets_sheet_name, BUDGET_COLUMNS
        )

    def _budget_to_row(self, budget: Budget) -> list:
        return [
            str(budget.id),
            budget.user_id,
            budget.category.value,
            str(budget.amount),
            budget.period.value,
            str(budget.notifications_enabled),
            budget.created_at.isoformat(),
        ]

    def _row_to_budget(self, row: list) -> Budget:
        return Budget(
            id=UUID(safe_get(row, 0)),
            user_id=safe_get(row, 1),
            category=ExpenseCategory(safe_get(row, 2)),
            amount=Decimal(safe_get(row, 3)),
            period=BudgetPeriod(safe_get(row, 4, "monthly")),
            notifications_enabled=_bool(safe_get(row, 5, "True")),
            created_at=datetime.fromisoformat(safe_get(row, 6)),
        )

    async def list_budgets(self, user_id: str) -> list[Budget]:
        try:
            budgets = self._table.parse_all(self._row_to_budget, lambda row: safe_get(row, 1) == user_id)
        except Exception as e:
            raise StorageError(f"Failed to list budgets: {e}")
        budgets.sort(key=lambda b: b.created_at, reverse=True)
        return budgets

    async def save_budget(self, budget: Budget) -> bool:
        try:
            self._table.upsert(lambda row: row[0] == str(budget.id), self._budget_to_row(budget))
            return True
        except Exception as e:
            raise StorageError(f"Failed to save budget: {e}")

    async def delete_budget(self, budget_id: UUID) -> bool:
        try:
            found = self._table.find(lambda row: row[0] == str(budget_id))
            if not found:
                return False
            self._table.delete(found[0])
            return True
        except Exception as e:
            raise StorageError(f"Failed to delete budget: {e}")


# =============================================================================
# OPEN FINANCE
# =============================================================================

class GoogleSheetsBankingStorage(BankingStorageInterface):
    """Items, accounts and transactions live in three worksheets."""

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        self._client = client or GoogleSheetsClient()
        settings = self._client.settings
        self._items = _SheetTable(self._client, settings.items_sheet_name, ITEM_COLUMNS)
        self._accounts = _SheetTable(self._client, settings.accounts_sheet_name, ACCOUNT_COLUMNS)
        self._transactions = _SheetTable(
            self._client, settings.transactions_sheet_name, TRANSACTION_COLUMNS, rows=5000
        )

    # Items

    def _item_to_row(self, item: BankItem) -> list:
        return [
            item.item_id,
            item.user_id,
            _opt(item.connector_id),
            item.connector_name or "",
            item.status,
            item.error_message or "",
            item.created_at.isoformat(),
            item.updated_at.isoformat(),
        ]

    def _row_to_item(self, row: list) -> BankItem:
        connector_id = safe_get(row, 2)
        return BankItem(
            item_id=safe_get(row, 0),
            user_id=safe_get(row, 1),
            connector_id=int(connector_id) if connector_id else None,
            connector_name=safe_get(row, 3) or None,
            status=safe_get(row, 4, "UPDATING"),
            error_message=safe_get(row, 5) or None,
            created_at=datetime.fromisoformat(safe_get(row, 6)),
            updated_at=datetime.fromisoformat(safe_get(row, 7)),
        )

    async def upsert_item(self, item: BankItem) -> bool:
        try:
            found = self._items.find(lambda row: row[0] == item.item_id)
            item.updated_at = utc_now()
            if found:
                item.created_at = datetime.fromisoformat(safe_get(found[1], 6)) or item.created_at
                self._items.replace(found[0], self._item_to_row(item))
            else:
                self._items.append(self._item_to_row(item))
            return True
        except Exception as e:
            raise StorageError(f"Failed to save bank item: {e}")

    async def get_item(self, item_id: str) -> Optional[BankItem]:
        try:
            found = self._items.find(lambda row: row[0] == item_id)
            return self._row_to_item(found[1]) if found else None
        except Exception as e:
            raise StorageError(f"Failed to get bank item: {e}")

    async def list_items(self, user_id: str) -> list[BankItem]:
        try:
            return self._items.parse_all(self._row_to_item, lambda row: safe_get(row, 1) == user_id)
        except Exception as e:
            raise StorageError(f"Failed to list bank items: {e}")

    async def delete_item(self, item_id: str) -> bool:
        try:
            # Delete from the bottom up so row numbers stay valid
            account_rows = [idx for idx, row in self._accounts.rows() if safe_get(row, 1) == item_id]
            for idx in sorted(account_rows, reverse=True):
                self._accounts.delete(idx)

            found = self._items.find(lambda row: row[0] == item_id)
            if not found:
                return False
            self._items.delete(found[0])
            return True
        except Exception as e:
            raise StorageError(f"Failed to delete bank item: {e}")

    # Accounts

    def _account_to_row(self, account: BankAccount) -> list:
        return [
            account.account_id,
            account.item_id,
            account.user_id,
            account.type or "",
            account.subtype or "",
            account.name,
            account.number or "",
            _opt(account.balance),
            account.currency_code,
            _opt(account.credit_limit),
            _opt(account.available_credit_limit),
            account.last_sync_at.isoformat() if account.last_sync_at else "",
        ]

    def _row_to_account(self, row: list) -> BankAccount:
        return BankAccount(
            account_id=safe_get(row, 0),
            item_id=safe_get(row, 1),
            user_id=safe_get(row, 2),
            type=safe_get(row, 3) or None,
            subtype=safe_get(row, 4) or None,
            name=safe_get(row, 5),
            number=safe_get(row, 6) or None,
            balance=_opt_decimal(safe_get(row, 7)),
            currency_code=safe_get(row, 8, "BRL"),
            credit_limit=_opt_decimal(safe_get(row, 9)),
            available_credit_limit=_opt_decimal(safe_get(row, 10)),
            last_sync_at=_opt_datetime(safe_get(row, 11)),
        )

    async def upsert_account(self, account: BankAccount) -> bool:
        try:
            self._accounts.upsert(
                lambda row: row[0] == account.account_id,
                self._account_to_row(account),
            )
            return True
        except Exception as e:
            raise StorageError(f"Failed to save bank account: {e}")

    async def get_account(self, account_id: str) -> Optional[BankAccount]:
        try:
            found = self._accounts.find(lambda row: row[0] == account_id)
            return self._row_to_account(found[1]) if found else None
        except Exception as e:
            raise StorageError(f"Failed to get bank account: {e}")

    async def list_accounts(
        self,
        user_id: str,
        item_id: Optional[str] = None,
    ) -> list[BankAccount]:
        try:
            return self._accounts.parse_all(
                self._row_to_account,
                lambda row: safe_get(row, 2) == user_id
                and (item_id is None or safe_get(row, 1) == item_id),
            )
        except Exception as e:
            raise StorageError(f"Failed to list bank accounts: {e}")

    # Transactions

    def _transaction_to_row(self, tx: BankTransaction) -> list:
        return [
            tx.transaction_id,
            tx.account_id,
            tx.user_id,
            tx.description,
            str(tx.amount),
            tx.transaction_date.isoformat(),
            tx.provider_category or "",
            tx.type or "",
            tx.status or "",
            tx.receiver_name or "",
            tx.payer_name or "",
            tx.category.value if tx.category else "",
            tx.subcategory or "",
            str(tx.is_fixed_cost),
            tx.categorization_confidence.value if tx.categorization_confidence else "",
            tx.created_at.isoformat(),
        ]

    def _row_to_transaction(self, row: list) -> BankTransaction:
        category = safe_get(row, 11)
        confidence = safe_get(row, 14)
        return BankTransaction(
            transaction_id=safe_get(row, 0),
            account_id=safe_get(row, 1),
            user_id=safe_get(row, 2),
            description=safe_get(row, 3),
            amount=Decimal(safe_get(row, 4, "0")),
            transaction_date=date.fromisoformat(safe_get(row, 5)),
            provider_category=safe_get(row, 6) or None,
            type=safe_get(row, 7) or None,
            status=safe_get(row, 8) or None,
            receiver_name=safe_get(row, 9) or None,
            payer_name=safe_get(row, 10) or None,
            category=ExpenseCategory(category) if category else None,
            subcategory=safe_get(row, 12) or None,
            is_fixed_cost=_bool(safe_get(row, 13)),
            categorization_confidence=CategorizationConfidence(confidence) if confidence else None,
            created_at=datetime.fromisoformat(safe_get(row, 15)),
        )

    async def transaction_exists(self, transaction_id: str) -> bool:
        try:
            return self._transactions.find(lambda row: row[0] == transaction_id) is not None
        except Exception as e:
            raise StorageError(f"Failed to look up transaction: {e}")

    async def save_transaction(self, transaction: BankTransaction) -> bool:
        if await self.transaction_exists(transaction.transaction_id):
            raise DuplicateError(f"Transaction already stored: {transaction.transaction_id}")
        try:
            self._transactions.append(self._transaction_to_row(transaction))
            return True
        except Exception as e:
            raise StorageError(f"Failed to save transaction: {e}")

    async def update_transaction(self, transaction: BankTransaction) -> bool:
        try:
            found = self._transactions.find(lambda row: row[0] == transaction.transaction_id)
            if not found:
                raise NotFoundError(f"Transaction not found: {transaction.transaction_id}")
            self._transactions.replace(found[0], self._transaction_to_row(transaction))
            return True
        except NotFoundError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to update transaction: {e}")

    async def delete_transaction(self, transaction_id: str) -> bool:
        try:
            found = self._transactions.find(lambda row: row[0] == transaction_id)
            if not found:
                return False
            self._transactions.delete(found[0])
            return True
        except Exception as e:
            raise StorageError(f"Failed to delete transaction: {e}")

    async def list_transactions(
        self,
        user_id: str,
        account_id: Optional[str] = None,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
    ) -> list[BankTransaction]:
        try:
            transactions = self._transactions.parse_all(
                self._row_to_transaction,
                lambda row: safe_get(row, 2) == user_id
                and (account_id is None or safe_get(row, 1) == account_id),
            )
        except Exception as e:
            raise StorageError(f"Failed to list transactions: {e}")

        transactions = [
            t for t in transactions
            if (date_from is None or t.transaction_date >= date_from)
            and (date_to is None or t.transaction_date <= date_to)
        ]
        transactions.sort(key=lambda t: t.transaction_date, reverse=True)
        return transactions


# =============================================================================
# INSIGHTS
# =============================================================================

class GoogleSheetsInsightsStorage(InsightsStorageInterface):
    """Patterns, merchant aliases and assistant conversations."""

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        self._client = client or GoogleSheetsClient()
        settings = self._client.settings
        self._patterns = _SheetTable(self._client, settings.patterns_sheet_name, PATTERN_COLUMNS)
        self._aliases = _SheetTable(self._client, settings.aliases_sheet_name, ALIAS_COLUMNS)
        self._conversations = _SheetTable(
            self._client, settings.conversations_sheet_name, CONVERSATION_COLUMNS
        )

    # Patterns

    def _pattern_to_row(self, pattern: SpendingPattern) -> list:
        return [
            str(pattern.id),
            pattern.user_id,
            pattern.pattern_type.value,
            pattern.pattern_key,
            pattern.category.value if pattern.category else "",
            json.dumps(pattern.pattern_value, default=str),
            str(pattern.confidence),
            str(pattern.occurrences),
            pattern.analysis_period_start.isoformat() if pattern.analysis_period_start else "",
            pattern.analysis_period_end.isoformat() if pattern.analysis_period_end else "",
            str(pattern.is_active),
            pattern.updated_at.isoformat(),
        ]

    def _row_to_pattern(self, row: list) -> SpendingPattern:
        category = safe_get(row, 4)
        return SpendingPattern(
            id=UUID(safe_get(row, 0)),
            user_id=safe_get(row, 1),
            pattern_type=PatternType(safe_get(row, 2)),
            pattern_key=safe_get(row, 3),
            category=ExpenseCategory(category) if category else None,
            pattern_value=json.loads(safe_get(row, 5, "{}")),
            confidence=float(safe_get(row, 6, "0")),
            occurrences=int(safe_get(row, 7, "0")),
            analysis_period_start=_opt_date(safe_get(row, 8)),
            analysis_period_end=_opt_date(safe_get(row, 9)),
            is_active=_bool(safe_get(row, 10, "True")),
            updated_at=datetime.fromisoformat(safe_get(row, 11)),
        )

    async def upsert_pattern(self, pattern: SpendingPattern) -> SpendingPattern:
        def same_identity(row: list) -> bool:
            return (
                safe_get(row, 1) == pattern.user_id
                and safe_get(row, 2) == pattern.pattern_type.value
                and safe_get(row, 3) == pattern.pattern_key
            )

        try:
            stored = pattern.model_copy(deep=True)
            stored.updated_at = utc_now()
            found = self._patterns.find(same_identity)
            if found:
                stored.id = UUID(safe_get(found[1], 0))
                self._patterns.replace(found[0], self._pattern_to_row(stored))
            else:
                self._patterns.append(self._pattern_to_row(stored))
            return stored
        except Exception as e:
            raise StorageError(f"Failed to save pattern: {e}")

    async def list_patterns(
        self,
        user_id: str,
        pattern_type: Optional[PatternType] = None,
    ) -> list[SpendingPattern]:
        try:
            return self._patterns.parse_all(
                self._row_to_pattern,
                lambda row: safe_get(row, 1) == user_id
                and (pattern_type is None or safe_get(row, 2) == pattern_type.value),
            )
        except Exception as e:
            raise StorageError(f"Failed to list patterns: {e}")

    # Merchant aliases

    def _alias_to_row(self, alias: MerchantAlias) -> list:
        return [
            alias.user_id,
            alias.key,
            alias.raw_name,
            alias.establishment_name,
            alias.category.value,
            alias.subcategory or "",
            str(alias.confidence),
            alias.last_used_at.isoformat() if alias.last_used_at else "",
        ]

    def _row_to_alias(self, row: list) -> MerchantAlias:
        return MerchantAlias(
            user_id=safe_get(row, 0),
            key=safe_get(row, 1),
            raw_name=safe_get(row, 2),
            establishment_name=safe_get(row, 3),
            category=ExpenseCategory(safe_get(row, 4, "other")),
            subcategory=safe_get(row, 5) or None,
            confidence=float(safe_get(row, 6, "1.0")),
            last_used_at=_opt_datetime(safe_get(row, 7)),
        )

    def _alias_matcher(self, user_id: str, key: str) -> Callable[[list], bool]:
        return lambda row: safe_get(row, 0) == user_id and safe_get(row, 1) == key

    async def get_alias(self, user_id: str, key: str) -> Optional[MerchantAlias]:
        try:
            found = self._aliases.find(self._alias_matcher(user_id, key))
            return self._row_to_alias(found[1]) if found else None
        except Exception as e:
            raise StorageError(f"Failed to get merchant alias: {e}")

    async def save_alias(self, alias: MerchantAlias) -> bool:
        try:
            self._aliases.upsert(self._alias_matcher(alias.user_id, alias.key), self._alias_to_row(alias))
            return True
        except Exception as e:
            raise StorageError(f"Failed to save merchant alias: {e}")

    async def touch_alias(self, user_id: str, key: str, used_at: datetime) -> bool:
        try:
            found = self._aliases.find(self._alias_matcher(user_id, key))
            if not found:
                return False
            alias = self._row_to_alias(found[1])
            alias.last_used_at = used_at
            self._aliases.replace(found[0], self._alias_to_row(alias))
            return True
        except Exception as e:
            raise StorageError(f"Failed to update merchant alias: {e}")

    # Conversations

    def _conversation_to_row(self, conversation: Conversation) -> list:
        return [
            str(conversation.id),
            conversation.user_id,
            conversation.title,
            conversation.created_at.isoformat(),
            conversation.updated_at.isoformat(),
            json.dumps([m.model_dump(mode="json") for m in conversation.messages]),
        ]

    def _row_to_conversation(self, row: list) -> Conversation:
        messages_json = safe_get(row, 5)
        return Conversation(
            id=UUID(safe_get(row, 0)),
            user_id=safe_get(row, 1),
            title=safe_get(row, 2, "Nova conversa"),
            created_at=datetime.fromisoformat(safe_get(row, 3)),
            updated_at=datetime.fromisoformat(safe_get(row, 4)),
            messages=[ChatMessage(**m) for m in json.loads(messages_json)] if messages_json else [],
        )

    async def save_conversation(self, conversation: Conversation) -> bool:
        try:
            self._conversations.upsert(
                lambda row: row[0] == str(conversation.id),
                self._conversation_to_row(conversation),
            )
            return True
        except Exception as e:
            raise StorageError(f"Failed to save conversation: {e}")

    async def get_conversation(self, conversation_id: UUID) -> Optional[Conversation]:
        try:
            found = self._conversations.find(lambda row: row[0] == str(conversation_id))
            return self._row_to_conversation(found[1]) if found else None
        except Exception as e:
            raise StorageError(f"Failed to get conversation: {e}")

    async def list_conversations(self, user_id: str) -> list[Conversation]:
        try:
            conversations = self._conversations.parse_all(
                self._row_to_conversation,
                lambda row: safe_get(row, 1) == user_id,
            )
        except Exception as e:
            raise StorageError(f"Failed to list conversations: {e}")
        conversations.sort(key=lambda c: c.updated_at, reverse=True)
        return conversations


# =============================================================================
# AUDIT
# =============================================================================

class GoogleSheetsAuditStorage(AuditStorageInterface):
    """
    Google Sheets implementation of audit log storage.

    Audit events are append-only.
    """

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        self._client = client or GoogleSheetsClient()
        self._table = _SheetTable(
            self._client, self._client.settings.audit_sheet_name, AUDIT_COLUMNS, rows=5000
        )

    def _row_to_event(self, row: list) -> AuditEvent:
        correlation_id = safe_get(row, 7)
        details_json = safe_get(row, 9)
        return AuditEvent(
            event_id=UUID(safe_get(row, 0)),
            timestamp=datetime.fromisoformat(safe_get(row, 1)),
            event_type=AuditEventType(safe_get(row, 2)),
            severity=AuditSeverity(safe_get(row, 3)),
            user_id=safe_get(row, 4) or None,
            entity_type=safe_get(row, 5) or None,
            entity_id=safe_get(row, 6) or None,
            correlation_id=UUID(correlation_id) if correlation_id else None,
            description=safe_get(row, 8),
            details=json.loads(details_json) if details_json else {},
            error_message=safe_get(row, 10) or None,
            is_user_action=_bool(safe_get(row, 11)),
        )

    async def append_event(self, event: AuditEvent) -> bool:
        """Append an audit event. Failures are logged, never raised."""
        try:
            self._table.append(event.to_sheets_row())
            return True
        except Exception as e:
            logger.warning("audit_append_failed", event_id=str(event.event_id), error=str(e))
            return False

    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        try:
            events = self._table.parse_all(
                self._row_to_event,
                lambda row: safe_get(row, 7) == str(correlation_id),
            )
        except Exception as e:
            raise StorageError(f"Failed to get audit events: {e}")
        events.sort(key=lambda e: e.timestamp)
        return events

    async def get_events_by_entity(
        self,
        entity_type: str,
        entity_id: str,
    ) -> list[AuditEvent]:
        try:
            events = self._table.parse_all(
                self._row_to_event,
                lambda row: safe_get(row, 5) == entity_type and safe_get(row, 6) == entity_id,
            )
        except Exception as e:
            raise StorageError(f"Failed to get audit events: {e}")
        events.sort(key=lambda e: e.timestamp)
        return events

    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        try:
            events = self._table.parse_all(self._row_to_event, lambda row: True)
        except Exception as e:
            raise StorageError(f"Failed to get audit events: {e}")
        events.sort(key=lambda e: e.timestamp, reverse=True)
        return events[:limit]
