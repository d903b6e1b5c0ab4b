"""
Data Models Package

This package contains all Pydantic models used in Pocket.
All data flowing through the system must conform to these schemas.
"""

from pocket.models.common import (
    ValidationIssue,
    ValidationResult,
    to_cents,
    utc_now,
)
from pocket.models.expense import (
    CATEGORY_LABELS,
    AccountBalance,
    BalanceResult,
    BalanceSource,
    BillSplit,
    Budget,
    BudgetPeriod,
    BudgetStatus,
    CategorizationConfidence,
    CategorizationResult,
    Expense,
    ExpenseCategory,
    ExpenseSource,
    ExtractedReceipt,
    IncomeSource,
    ReceiptItem,
)
from pocket.models.banking import (
    TERMINAL_ITEM_STATUSES,
    BankAccount,
    BankItem,
    BankTransaction,
    ConnectionOutcome,
    ConnectionOutcomeKind,
    ItemParameter,
    ItemStatus,
    SyncResult,
)
from pocket.models.insights import (
    ChatMessage,
    ChatRole,
    Conversation,
    MerchantAlias,
    PatternDetectionResult,
    PatternType,
    SpendingPattern,
)
from pocket.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)

__all__ = [
    # Helpers
    "ValidationIssue",
    "ValidationResult",
    "to_cents",
    "utc_now",
    # Expense models
    "CATEGORY_LABELS",
    "AccountBalance",
    "BalanceResult",
    "BalanceSource",
    "BillSplit",
    "Budget",
    "BudgetPeriod",
    "BudgetStatus",
    "CategorizationConfidence",
    "CategorizationResult",
    "Expense",
    "ExpenseCategory",
    "ExpenseSource",
    "ExtractedReceipt",
    "IncomeSource",
    "ReceiptItem",
    # Banking models
    "TERMINAL_ITEM_STATUSES",
    "BankAccount",
    "BankItem",
    "BankTransaction",
    "ConnectionOutcome",
    "ConnectionOutcomeKind",
    "ItemParameter",
    "ItemStatus",
    "SyncResult",
    # Insights
    "ChatMessage",
    "ChatRole",
    "Conversation",
    "MerchantAlias",
    "PatternDetectionResult",
    "PatternType",
    "SpendingPattern",
    # Audit models
    "AuditEvent",
    "AuditEventBuilder",
    "AuditEventType",
    "AuditSeverity",
]
