"""
Core Data Models for Pocket

These models define the schemas for the money flowing through the system:
receipts, confirmed expenses, income sources, balances, budgets and bill
splits.

DESIGN DECISION: Money is always Decimal. Salaries are stored the way the
user typed them ("5.000,00") and parsed on demand, so a badly formatted
value never blocks saving a profile.
"""

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Optional
from uuid import UUID, uuid4

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
)

from pocket.models.common import to_cents, utc_now


# =============================================================================
# ENUMS
# =============================================================================

class ExpenseCategory(str, Enum):
    """
    Supported expense categories.

    DESIGN DECISION: Explicit categories rather than free text keep
    budgets, patterns and the assistant's breakdowns comparable.
    """
    HOUSING = "housing"
    GROCERIES = "groceries"
    DINING_OUT = "dining_out"
    TRANSPORT = "transport"
    HEALTH = "health"
    EDUCATION = "education"
    LEISURE = "leisure"
    CLOTHING = "clothing"
    BEAUTY = "beauty"
    ELECTRONICS = "electronics"
    PETS = "pets"
    SAVINGS = "savings"
    PENSION = "pension"
    INVESTMENTS = "investments"
    CREDIT_CARD = "credit_card"
    LOANS = "loans"
    FINANCING = "financing"
    TRANSFERS = "transfers"
    PERSONAL_DEBTS = "personal_debts"
    OTHER = "other"


CATEGORY_LABELS: dict[ExpenseCategory, str] = {
    ExpenseCategory.HOUSING: "Moradia e contas",
    ExpenseCategory.GROCERIES: "Mercado e casa",
    ExpenseCategory.DINING_OUT: "Alimentação e delivery",
    ExpenseCategory.TRANSPORT: "Transporte",
    ExpenseCategory.HEALTH: "Saúde e farmácia",
    ExpenseCategory.EDUCATION: "Educação",
    ExpenseCategory.LEISURE: "Lazer e streaming",
    ExpenseCategory.CLOTHING: "Roupas e calçados",
    ExpenseCategory.BEAUTY: "Beleza e cuidados",
    ExpenseCategory.ELECTRONICS: "Eletrônicos",
    ExpenseCategory.PETS: "Pets",
    ExpenseCategory.SAVINGS: "Poupança",
    ExpenseCategory.PENSION: "Previdência",
    ExpenseCategory.INVESTMENTS: "Investimentos",
    ExpenseCategory.CREDIT_CARD: "Cartão de crédito",
    ExpenseCategory.LOANS: "Empréstimos",
    ExpenseCategory.FINANCING: "Financiamentos",
    ExpenseCategory.TRANSFERS: "Transferências",
    ExpenseCategory.PERSONAL_DEBTS: "Dívidas pessoais",
    ExpenseCategory.OTHER: "Outros",
}


class CategorizationConfidence(str, Enum):
    """How sure the categorizer is about a suggestion."""
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class ExpenseSource(str, Enum):
    """Where an expense came from."""
    RECEIPT = "receipt"    # OCR + user confirmation
    MANUAL = "manual"      # typed in by the user


class BalanceSource(str, Enum):
    """Which figure the remaining balance was based on."""
    BANK = "bank"
    MANUAL = "manual"
    NONE = "none"


class BudgetPeriod(str, Enum):
    """Budget period window."""
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    YEARLY = "yearly"


# =============================================================================
# RECEIPTS
# =============================================================================

class ReceiptItem(BaseModel):
    """A single line on a receipt."""
    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(
        ...,
        min_length=1,
        max_length=200,
    )
    quantity: Decimal = Field(
        default=Decimal("1"),
        ge=0,
    )
    price: Decimal = Field(
        ...,
        ge=0,
        description="Total price of the line"
    )


class ExtractedReceipt(BaseModel):
    """
    Data extracted from a receipt photo.

    CRITICAL: This is PROPOSED data, NOT verified.
    It MUST go through user confirmation before becoming an Expense.
    All fields are optional because OCR might fail to extract some.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    extraction_id: UUID = Field(
        default_factory=uuid4,
        description="Unique ID for this extraction attempt"
    )
    extracted_at: datetime = Field(
        default_factory=utc_now,
    )
    confidence_score: float = Field(
        ...,
        ge=0.0,
        le=1.0,
        description="Overall confidence in extraction (0-1)"
    )

    establishment_name: Optional[str] = Field(default=None, max_length=200)
    amount: Optional[Decimal] = Field(default=None, ge=0)
    receipt_date: Optional[date] = None
    items: list[ReceiptItem] = Field(default_factory=list)

    suggested_category: Optional[ExpenseCategory] = None
    image_url: Optional[str] = None
    raw_text: Optional[str] = Field(
        default=None,
        description="Raw OCR payload for debugging"
    )

    @property
    def items_total(self) -> Decimal:
        return sum((item.price for item in self.items), Decimal("0"))


# =============================================================================
# EXPENSES
# =============================================================================

class Expense(BaseModel):
    """
    A confirmed expense.

    CRITICAL: Receipt expenses are only created after the user explicitly
    confirms the extracted data.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    id: UUID = Field(default_factory=uuid4)
    user_id: str = Field(..., min_length=1)

    establishment_name: str = Field(
        ...,
        min_length=1,
        max_length=200,
    )
    amount: Decimal = Field(
        ...,
        gt=0,
        description="Amount in BRL"
    )
    expense_date: date
    category: ExpenseCategory = ExpenseCategory.OTHER
    subcategory: Optional[str] = Field(default=None, max_length=100)
    is_fixed_cost: bool = False

    items: list[ReceiptItem] = Field(default_factory=list)
    notes: Optional[str] = Field(default=None, max_length=1000)
    image_url: Optional[str] = None

    source: ExpenseSource = ExpenseSource.MANUAL
    extraction_id: Optional[UUID] = Field(
        default=None,
        description="Extraction this expense was confirmed from"
    )

    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    @field_validator('amount')
    @classmethod
    def round_amount(cls, v: Decimal) -> Decimal:
        return to_cents(v)


# =============================================================================
# INCOME AND BALANCE
# =============================================================================

class IncomeSource(BaseModel):
    """
    An income card on the user's profile.

    `linked_account_id` points to a bank account whose balance is used
    instead of the manual figure. Unlinked cards may carry a
    `last_known_balance` typed in by the user.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    id: UUID = Field(default_factory=uuid4)
    user_id: str
    name: str = Field(default="Salário", max_length=100)
    salary: str = Field(
        default="0",
        description="Salary as typed by the user, e.g. '5.000,00'"
    )
    payment_day: Optional[int] = Field(default=None, ge=1, le=31)
    linked_account_id: Optional[str] = None
    last_known_balance: Optional[Decimal] = None


class AccountBalance(BaseModel):
    """Balance lookup row for a linked bank account."""

    id: str
    balance: Optional[Decimal] = None


class BalanceResult(BaseModel):
    """Outcome of the balance reconciliation."""

    remaining_balance: Decimal
    source: BalanceSource
    bank_balance: Optional[Decimal] = None
    manual_balance: Decimal = Decimal("0")
    total_income: Decimal = Decimal("0")
    total_expenses: Decimal = Decimal("0")


# =============================================================================
# BUDGETS
# =============================================================================

class Budget(BaseModel):
    """A spending limit for one category."""

    id: UUID = Field(default_factory=uuid4)
    user_id: str
    category: ExpenseCategory
    amount: Decimal = Field(..., gt=0)
    period: BudgetPeriod = BudgetPeriod.MONTHLY
    notifications_enabled: bool = True
    created_at: datetime = Field(default_factory=utc_now)


class BudgetStatus(BaseModel):
    """Spending against a budget for the current period."""

    budget: Budget
    period_start: date
    period_end: date
    spent: Decimal
    remaining: Decimal
    percentage: Decimal
    over_budget: bool
    near_limit: bool


# =============================================================================
# BILL SPLITTING
# =============================================================================

class BillSplit(BaseModel):
    """Result of dividing a bill between people."""

    total: Decimal
    people: int = Field(..., ge=1)
    service_charge: Decimal = Decimal("0")
    final_total: Decimal
    per_person: Decimal
    shares: list[Decimal] = Field(
        default_factory=list,
        description="One share per person; sums exactly to final_total"
    )


# =============================================================================
# CATEGORIZATION
# =============================================================================

class CategorizationResult(BaseModel):
    """A category suggestion for an expense or bank transaction."""

    category: ExpenseCategory
    subcategory: str = Field(default="Outros", max_length=100)
    is_fixed_cost: bool = False
    confidence: CategorizationConfidence = CategorizationConfidence.LOW
    reasoning: Optional[str] = None
    source: str = Field(
        default="default",
        pattern="^(alias|llm|rules|keywords|default)$",
    )
