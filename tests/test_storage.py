"""
Tests for the storage backends

Google Sheets storage runs against an in-process fake worksheet, so the
row mapping is exercised without any network access.
"""

from datetime import date
from decimal import Decimal
from types import SimpleNamespace
from uuid import uuid4

import pytest

from pocket.models import (
    AuditEventBuilder,
    BankAccount,
    BankItem,
    BankTransaction,
    ChatRole,
    Conversation,
    ExpenseCategory,
    MerchantAlias,
    PatternType,
    ReceiptItem,
    SpendingPattern,
)
from pocket.services.storage import (
    DuplicateError,
    GoogleSheetsAuditStorage,
    GoogleSheetsBankingStorage,
    GoogleSheetsExpenseStorage,
    GoogleSheetsInsightsStorage,
    NotFoundError,
    StorageError,
)
from tests.helpers import USER, make_expense, utc


class FakeWorksheet:
    """The subset of gspread.Worksheet the storage uses."""

    def __init__(self, columns):
        self.values = [list(columns)]
        self.broken = False

    def get_all_values(self):
        if self.broken:
            raise RuntimeError("quota exceeded")
        return [list(row) for row in self.values]

    def append_row(self, row, value_input_option=None):
        self.values.append([str(cell) for cell in row])

    def update(self, range_name, values, value_input_option=None):
        idx = int(range_name[1:])
        self.values[idx - 1] = [str(cell) for cell in values[0]]

    def delete_rows(self, idx):
        del self.values[idx - 1]


class FakeSheetsClient:
    """Stands in for GoogleSheetsClient: one FakeWorksheet per title."""

    def __init__(self):
        self.settings = SimpleNamespace(
            expenses_sheet_name="Expenses",
            items_sheet_name="BankItems",
            accounts_sheet_name="BankAccounts",
            transactions_sheet_name="BankTransactions",
            patterns_sheet_name="Patterns",
            aliases_sheet_name="MerchantAliases",
            conversations_sheet_name="Conversations",
            audit_sheet_name="AuditLog",
        )
        self.worksheets = {}

    def get_worksheet(self, title, columns, rows=1000):
        if title not in self.worksheets:
            self.worksheets[title] = FakeWorksheet(columns)
        return self.worksheets[title]


@pytest.fixture
def sheets():
    return FakeSheetsClient()


class TestInMemoryStorage:

    @pytest.mark.asyncio
    async def test_duplicate_expense_rejected(self, expense_storage):
        expense = make_expense(10, date(2024, 5, 1))
        await expense_storage.save_expense(expense)
        with pytest.raises(DuplicateError):
            await expense_storage.save_expense(expense)

    @pytest.mark.asyncio
    async def test_update_missing_expense(self, expense_storage):
        with pytest.raises(NotFoundError):
            await expense_storage.update_expense(make_expense(10, date(2024, 5, 1)))

    @pytest.mark.asyncio
    async def test_list_filters_and_orders(self, expense_storage):
        await expense_storage.save_expense(make_expense(10, date(2024, 5, 1)))
        await expense_storage.save_expense(make_expense(20, date(2024, 5, 9)))
        await expense_storage.save_expense(make_expense(
            30, date(2024, 5, 5), category=ExpenseCategory.TRANSPORT,
        ))

        expenses = await expense_storage.list_expenses(USER, category=ExpenseCategory.GROCERIES)
        assert [e.amount for e in expenses] == [Decimal("20.00"), Decimal("10.00")]

        in_range = await expense_storage.list_expenses(
            USER, date_from=date(2024, 5, 2), date_to=date(2024, 5, 6),
        )
        assert [e.amount for e in in_range] == [Decimal("30.00")]

    @pytest.mark.asyncio
    async def test_expense_exists_ignores_case(self, expense_storage):
        await expense_storage.save_expense(make_expense(10, date(2024, 5, 1)))
        assert await expense_storage.expense_exists(
            USER, "SUPERMERCADO BOM PREÇO ", date(2024, 5, 1), Decimal("10.00"),
        )
        assert not await expense_storage.expense_exists(
            USER, "Supermercado Bom Preço", date(2024, 5, 2), Decimal("10.00"),
        )

    @pytest.mark.asyncio
    async def test_stored_copies_are_isolated(self, expense_storage):
        expense = make_expense(10, date(2024, 5, 1))
        await expense_storage.save_expense(expense)
        expense.notes = "changed after saving"

        stored = await expense_storage.get_expense_by_id(expense.id)
        assert stored.notes is None


class TestGoogleSheetsExpenseStorage:

    @pytest.mark.asyncio
    async def test_save_and_read_back(self, sheets):
        storage = GoogleSheetsExpenseStorage(sheets)
        expense = make_expense(42, date(2024, 5, 3))
        expense.items = [ReceiptItem(name="Arroz", price=Decimal("25.90"))]
        expense.extraction_id = uuid4()

        await storage.save_expense(expense)
        stored = await storage.get_expense_by_id(expense.id)

        assert stored.amount == Decimal("42.00")
        assert stored.items[0].name == "Arroz"
        assert stored.extraction_id == expense.extraction_id
        assert sheets.worksheets["Expenses"].values[1][5] == "42.00"

    @pytest.mark.asyncio
    async def test_update_and_delete(self, sheets):
        storage = GoogleSheetsExpenseStorage(sheets)
        expense = make_expense(42, date(2024, 5, 3))
        await storage.save_expense(expense)

        expense.category = ExpenseCategory.DINING_OUT
        await storage.update_expense(expense)
        assert (await storage.get_expense_by_id(expense.id)).category == ExpenseCategory.DINING_OUT

        assert await storage.delete_expense(expense.id) is True
        assert await storage.list_expenses(USER) == []

    @pytest.mark.asyncio
    async def test_expense_exists(self, sheets):
        storage = GoogleSheetsExpenseStorage(sheets)
        await storage.save_expense(make_expense(42, date(2024, 5, 3)))

        assert await storage.expense_exists(
            USER, "supermercado bom preço", date(2024, 5, 3), Decimal("42.00"),
        )

    @pytest.mark.asyncio
    async def test_malformed_rows_are_skipped(self, sheets):
        storage = GoogleSheetsExpenseStorage(sheets)
        await storage.save_expense(make_expense(42, date(2024, 5, 3)))
        sheets.worksheets["Expenses"].values.append([str(uuid4()), USER, "not-a-date"])

        assert len(await storage.list_expenses(USER)) == 1

    @pytest.mark.asyncio
    async def test_backend_failure_becomes_storage_error(self, sheets):
        storage = GoogleSheetsExpenseStorage(sheets)
        await storage.save_expense(make_expense(42, date(2024, 5, 3)))
        sheets.worksheets["Expenses"].broken = True

        with pytest.raises(StorageError):
            await storage.list_expenses(USER)


class TestGoogleSheetsBankingStorage:

    @pytest.mark.asyncio
    async def test_items_and_accounts(self, sheets):
        storage = GoogleSheetsBankingStorage(sheets)
        await storage.upsert_item(BankItem(item_id="item-1", user_id=USER, connector_id=201))
        await storage.upsert_item(BankItem(item_id="item-1", user_id=USER, status="UPDATED"))
        await storage.upsert_account(BankAccount(
            account_id="acc-1", item_id="item-1", user_id=USER,
            balance=Decimal("1234.56"), last_sync_at=utc(2024, 5, 20, 12),
        ))

        [item] = await storage.list_items(USER)
        assert item.status == "UPDATED"
        account = await storage.get_account("acc-1")
        assert account.balance == Decimal("1234.56")
        assert account.last_sync_at == utc(2024, 5, 20, 12)

        assert await storage.delete_item("item-1") is True
        assert await storage.list_accounts(USER) == []

    @pytest.mark.asyncio
    async def test_duplicate_transaction(self, sheets):
        storage = GoogleSheetsBankingStorage(sheets)
        tx = BankTransaction(
            transaction_id="t1", account_id="acc-1", user_id=USER,
            amount=Decimal("-25"), transaction_date=date(2024, 5, 10),
            category=ExpenseCategory.TRANSPORT,
        )
        await storage.save_transaction(tx)

        with pytest.raises(DuplicateError):
            await storage.save_transaction(tx)
        [stored] = await storage.list_transactions(USER, account_id="acc-1")
        assert stored.category == ExpenseCategory.TRANSPORT


class TestGoogleSheetsInsightsStorage:

    @pytest.mark.asyncio
    async def test_pattern_upsert_keeps_one_row(self, sheets):
        storage = GoogleSheetsInsightsStorage(sheets)
        pattern = SpendingPattern(
            user_id=USER,
            pattern_type=PatternType.PAYMENT_CYCLE,
            pattern_key="first_week_spender",
            pattern_value={"first_week_percent": 60},
            confidence=0.75,
        )
        first = await storage.upsert_pattern(pattern)
        second = await storage.upsert_pattern(pattern.model_copy(
            update={"id": uuid4(), "pattern_value": {"first_week_percent": 70}},
        ))

        [stored] = await storage.list_patterns(USER)
        assert second.id == first.id
        assert stored.pattern_value == {"first_week_percent": 70}

    @pytest.mark.asyncio
    async def test_alias_touch(self, sheets):
        storage = GoogleSheetsInsightsStorage(sheets)
        await storage.save_alias(MerchantAlias(
            user_id=USER,
            key="merchant_alias_padaria",
            raw_name="Padaria",
            establishment_name="Padaria do Bairro",
            category=ExpenseCategory.DINING_OUT,
        ))

        assert await storage.touch_alias(USER, "merchant_alias_padaria", utc(2024, 5, 20, 12))
        assert not await storage.touch_alias(USER, "merchant_alias_other", utc(2024, 5, 20, 12))
        alias = await storage.get_alias(USER, "merchant_alias_padaria")
        assert alias.last_used_at == utc(2024, 5, 20, 12)

    @pytest.mark.asyncio
    async def test_conversation_saved_in_place(self, sheets):
        storage = GoogleSheetsInsightsStorage(sheets)
        conversation = Conversation(user_id=USER)
        conversation.add_message(ChatRole.USER, "Oi")
        await storage.save_conversation(conversation)
        conversation.add_message(ChatRole.ASSISTANT, "Olá!")
        await storage.save_conversation(conversation)

        [stored] = await storage.list_conversations(USER)
        assert [m.content for m in stored.messages] == ["Oi", "Olá!"]


class TestGoogleSheetsAuditStorage:

    @pytest.mark.asyncio
    async def test_events_by_correlation_id(self, sheets):
        storage = GoogleSheetsAuditStorage(sheets)
        correlation_id = uuid4()
        await storage.append_event(AuditEventBuilder.receipt_uploaded(USER, "https://img", correlation_id))
        await storage.append_event(AuditEventBuilder.receipt_rejected("blurry", uuid4()))

        [event] = await storage.get_events_by_correlation_id(correlation_id)
        assert event.user_id == USER
        assert len(await storage.get_recent_events()) == 2

    @pytest.mark.asyncio
    async def test_append_failure_returns_false(self, sheets):
        storage = GoogleSheetsAuditStorage(sheets)

        def broken_append(row):
            raise RuntimeError("quota exceeded")

        storage._table.append = broken_append

        assert await storage.append_event(AuditEventBuilder.receipt_rejected("x", uuid4())) is False
