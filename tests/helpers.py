"""Test data builders and fakes shared by the test modules."""

from datetime import date, datetime, timezone
from decimal import Decimal
from types import SimpleNamespace

from pocket.models import Expense, ExpenseCategory

USER = "user-1"


class FakeModel:
    """Stands in for a Gemini GenerativeModel."""

    def __init__(self, text: str = "", error: Exception = None):
        self.text = text
        self.error = error
        self.prompts = []

    async def generate_content_async(self, prompt):
        self.prompts.append(prompt)
        if self.error is not None:
            raise self.error
        return SimpleNamespace(text=self.text)


def make_expense(
    amount,
    expense_date: date,
    category: ExpenseCategory = ExpenseCategory.GROCERIES,
    establishment_name: str = "Supermercado Bom Preço",
    user_id: str = USER,
    created_at: datetime = None,
) -> Expense:
    expense = Expense(
        user_id=user_id,
        establishment_name=establishment_name,
        amount=Decimal(str(amount)),
        expense_date=expense_date,
        category=category,
    )
    if created_at is not None:
        expense.created_at = created_at
    return expense


def utc(*args) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)
