"""
Open Finance models.

Identifiers here are the provider's string ids (items, accounts,
transactions), not our own UUIDs.
"""

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field

from pocket.models.common import utc_now
from pocket.models.expense import CategorizationConfidence, ExpenseCategory


class ItemStatus(str, Enum):
    """Status of a bank connection ("item") at the provider."""
    UPDATING = "UPDATING"
    UPDATED = "UPDATED"
    LOGIN_ERROR = "LOGIN_ERROR"
    OUTDATED = "OUTDATED"
    WAITING_USER_INPUT = "WAITING_USER_INPUT"
    DELETED = "DELETED"


TERMINAL_ITEM_STATUSES = frozenset({
    ItemStatus.UPDATED,
    ItemStatus.LOGIN_ERROR,
    ItemStatus.OUTDATED,
})


class ItemParameter(BaseModel):
    """Extra input the bank asks for while connecting (OAuth or MFA)."""

    name: str = ""
    type: Optional[str] = None
    label: Optional[str] = None
    data: Any = None
    expires_at: Optional[str] = None


class BankItem(BaseModel):
    """A bank connection owned by a user."""

    item_id: str
    user_id: str
    connector_id: Optional[int] = None
    connector_name: Optional[str] = None
    status: str = ItemStatus.UPDATING.value
    error_message: Optional[str] = None
    parameter: Optional[ItemParameter] = None
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)


class BankAccount(BaseModel):
    """An account synced from a bank connection."""

    account_id: str
    item_id: str
    user_id: str
    type: Optional[str] = None
    subtype: Optional[str] = None
    name: str = ""
    number: Optional[str] = None
    balance: Optional[Decimal] = None
    currency_code: str = "BRL"
    credit_limit: Optional[Decimal] = None
    available_credit_limit: Optional[Decimal] = None
    last_sync_at: Optional[datetime] = None


class BankTransaction(BaseModel):
    """A transaction synced from a bank account. Debits are negative."""

    transaction_id: str
    account_id: str
    user_id: str
    description: str = ""
    amount: Decimal
    transaction_date: date
    provider_category: Optional[str] = None
    type: Optional[str] = None
    status: Optional[str] = None
    receiver_name: Optional[str] = None
    payer_name: Optional[str] = None

    # Filled by the categorizer
    category: Optional[ExpenseCategory] = None
    subcategory: Optional[str] = None
    is_fixed_cost: bool = False
    categorization_confidence: Optional[CategorizationConfidence] = None

    created_at: datetime = Field(default_factory=utc_now)

    @property
    def is_debit(self) -> bool:
        return self.amount < 0 or (self.type or "").upper() == "DEBIT"


class ConnectionOutcomeKind(str, Enum):
    """What happened when linking a bank."""
    OAUTH_REDIRECT = "oauth_redirect"
    MFA_REQUIRED = "mfa_required"
    CONNECTED = "connected"
    SYNCING = "syncing"
    LOGIN_ERROR = "login_error"
    NO_ACCOUNTS = "no_accounts"
    FAILED = "failed"


class ConnectionOutcome(BaseModel):
    """Result of a bank connection attempt, OAuth callback or MFA submit."""

    kind: ConnectionOutcomeKind
    item_id: Optional[str] = None
    oauth_url: Optional[str] = None
    parameter: Optional[ItemParameter] = None
    accounts: list[BankAccount] = Field(default_factory=list)
    message: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.kind in (
            ConnectionOutcomeKind.CONNECTED,
            ConnectionOutcomeKind.SYNCING,
        )


class SyncResult(BaseModel):
    """Counts from a transaction sync."""

    total: int = 0
    saved: int = 0
    skipped: int = 0
    categorized: int = 0
