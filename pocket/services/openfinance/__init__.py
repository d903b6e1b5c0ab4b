"""Open Finance (Pluggy) services package."""

from pocket.services.openfinance.connection import (
    BankConnectionFlow,
    account_from_payload,
    classify_parameter,
    item_from_payload,
    poll_item,
    transaction_from_payload,
)
from pocket.services.openfinance.pluggy_client import (
    PluggyAuthError,
    PluggyClient,
    PluggyError,
    PluggyNetworkError,
    PluggyRequestError,
)

__all__ = [
    "BankConnectionFlow",
    "PluggyAuthError",
    "PluggyClient",
    "PluggyError",
    "PluggyNetworkError",
    "PluggyRequestError",
    "account_from_payload",
    "classify_parameter",
    "item_from_payload",
    "poll_item",
    "transaction_from_payload",
]
