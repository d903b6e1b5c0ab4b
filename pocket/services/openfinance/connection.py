"""
Bank Connection Flow

Linking a bank through Pluggy is asynchronous:
1. We create an item with the user's credentials
2. The item starts UPDATING; the bank may then ask for more input,
   either an OAuth redirect or an MFA code (the item's `parameter`)
3. Eventually the item settles on UPDATED, LOGIN_ERROR or OUTDATED

We poll the item for a while after creating it, then report one
ConnectionOutcome the UI can act on. Anything still running after the
polling window is reported as `syncing`; webhooks finish the job.
"""

import asyncio
from datetime import date
from decimal import Decimal, InvalidOperation
from typing import Any, Awaitable, Callable, Optional, Union
from uuid import UUID

import structlog

from pocket.audit import AuditLogger, create_correlation_id
from pocket.models import (
    TERMINAL_ITEM_STATUSES,
    AuditEventBuilder,
    BankAccount,
    BankItem,
    BankTransaction,
    ConnectionOutcome,
    ConnectionOutcomeKind,
    ItemParameter,
    ItemStatus,
    SyncResult,
    utc_now,
)
from pocket.services.openfinance.pluggy_client import PluggyClient, PluggyError
from pocket.services.storage import BankingStorageInterface, DuplicateError

logger = structlog.get_logger()

OAUTH_PARAMETER_NAMES = ("oauth_code", "oauthCode")

_TERMINAL = {status.value for status in TERMINAL_ITEM_STATUSES}


# =============================================================================
# PAYLOAD MAPPING
# =============================================================================

def _decimal(value: Any) -> Optional[Decimal]:
    if value is None:
        return None
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError):
        return None


def parameter_from_payload(payload: Optional[dict]) -> Optional[ItemParameter]:
    if not payload:
        return None
    return ItemParameter(
        name=payload.get("name") or "",
        type=payload.get("type"),
        label=payload.get("label"),
        data=payload.get("data"),
        expires_at=payload.get("expiresAt"),
    )


def item_from_payload(user_id: str, payload: dict) -> BankItem:
    connector = payload.get("connector") or {}
    error = payload.get("error") or {}
    return BankItem(
        item_id=payload["id"],
        user_id=user_id,
        connector_id=connector.get("id"),
        connector_name=connector.get("name"),
        status=payload.get("status") or ItemStatus.UPDATING.value,
        error_message=error.get("message"),
        parameter=parameter_from_payload(payload.get("parameter")),
    )


def account_from_payload(user_id: str, item_id: str, payload: dict) -> BankAccount:
    credit = payload.get("creditData") or {}
    return BankAccount(
        account_id=payload["id"],
        item_id=item_id,
        user_id=user_id,
        type=payload.get("type"),
        subtype=payload.get("subtype"),
        name=payload.get("name") or "",
        number=payload.get("number"),
        balance=_decimal(payload.get("balance")),
        currency_code=payload.get("currencyCode") or "BRL",
        credit_limit=_decimal(credit.get("creditLimit")),
        available_credit_limit=_decimal(credit.get("availableCreditLimit")),
        last_sync_at=utc_now(),
    )


def transaction_from_payload(user_id: str, account_id: str, payload: dict) -> BankTransaction:
    payment = payload.get("paymentData") or {}
    receiver = payment.get("receiver") or {}
    payer = payment.get("payer") or {}
    return BankTransaction(
        transaction_id=payload["id"],
        account_id=account_id,
        user_id=user_id,
        description=payload.get("description") or payload.get("descriptionRaw") or "",
        amount=_decimal(payload.get("amount")) or Decimal("0"),
        # Dates come as ISO timestamps, only the day matters
        transaction_date=date.fromisoformat(str(payload["date"])[:10]),
        provider_category=payload.get("category"),
        type=payload.get("type"),
        status=payload.get("status"),
        receiver_name=receiver.get("name"),
        payer_name=payer.get("name"),
    )


def classify_parameter(
    parameter: Union[ItemParameter, dict, None],
) -> tuple[bool, Optional[str]]:
    """
    Is this parameter an OAuth redirect, and where to?

    Returns:
        (is_oauth, auth_url). auth_url is None for MFA parameters and
        for OAuth parameters that came without a URL.
    """
    if parameter is None:
        return False, None
    if isinstance(parameter, dict):
        parameter = parameter_from_payload(parameter)

    is_oauth = parameter.type == "oauth" or parameter.name in OAUTH_PARAMETER_NAMES
    if not is_oauth:
        return False, None

    data = parameter.data
    if isinstance(data, dict):
        url = data.get("url")
    elif isinstance(data, str):
        url = data
    else:
        url = None
    return True, url or None


def _parameter_key(parameter: Any) -> Optional[tuple]:
    if not isinstance(parameter, dict):
        return None
    return parameter.get("name"), parameter.get("expiresAt")


async def poll_item(
    client: PluggyClient,
    item_id: str,
    max_attempts: int = 15,
    interval_seconds: float = 2.0,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    answered: Optional[dict] = None,
) -> Optional[dict]:
    """
    Fetch the item until it asks for input or reaches a terminal status.

    `answered` is a parameter the user already replied to; while the item
    still carries it (same name and expiry) polling goes on.

    Returns the last item payload seen (None if every fetch failed).
    """
    answered_key = _parameter_key(answered)
    latest = None
    for attempt in range(1, max_attempts + 1):
        try:
            latest = await client.get_item(item_id)
        except PluggyError as e:
            logger.warning("pluggy_poll_failed", item_id=item_id, attempt=attempt, error=str(e))
        else:
            parameter = latest.get("parameter")
            asks_for_input = bool(parameter) and (
                answered_key is None or _parameter_key(parameter) != answered_key
            )
            if asks_for_input or latest.get("status") in _TERMINAL:
                logger.info(
                    "pluggy_poll_settled",
                    item_id=item_id,
                    attempt=attempt,
                    status=latest.get("status"),
                )
                return latest

        if attempt < max_attempts:
            await sleep(interval_seconds)

    logger.info("pluggy_poll_timed_out", item_id=item_id, attempts=max_attempts)
    return latest


# =============================================================================
# FLOW
# =============================================================================

class BankConnectionFlow:
    """
    Links banks, keeps items and accounts in sync, and imports transactions.

    Args:
        client: Pluggy API client
        storage: Banking storage
        categorizer: Categorizes new debit transactions when given
            (anything with the ExpenseCategorizer.categorize signature)
        audit_logger: Audit trail
        sleep: Injected so tests don't wait between polls
    """

    def __init__(
        self,
        client: PluggyClient,
        storage: BankingStorageInterface,
        categorizer=None,
        audit_logger: Optional[AuditLogger] = None,
        poll_max_attempts: int = 15,
        poll_interval_seconds: float = 2.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self._client = client
        self._storage = storage
        self._categorizer = categorizer
        self._audit = audit_logger or AuditLogger()
        self._poll_max_attempts = poll_max_attempts
        self._poll_interval = poll_interval_seconds
        self._sleep = sleep

    async def _poll(self, item_id: str, answered: Optional[dict] = None) -> Optional[dict]:
        return await poll_item(
            self._client,
            item_id,
            self._poll_max_attempts,
            self._poll_interval,
            self._sleep,
            answered=answered,
        )

    async def connect(
        self,
        user_id: str,
        connector_id: int,
        credentials: dict,
        correlation_id: Optional[UUID] = None,
    ) -> ConnectionOutcome:
        """Create an item with the user's credentials and report what happens next."""
        correlation_id = correlation_id or create_correlation_id()
        await self._audit.log(AuditEventBuilder.bank_connection_started(
            user_id, connector_id, correlation_id
        ))

        try:
            item = await self._client.create_item(connector_id, credentials, client_user_id=user_id)
            if item.get("status") in (ItemStatus.UPDATING.value, ItemStatus.WAITING_USER_INPUT.value):
                item = await self._poll(item["id"]) or item
            outcome = await self._resolve(user_id, item)
        except PluggyError as e:
            await self._audit.log_external_service_error("pluggy", str(e), correlation_id)
            outcome = ConnectionOutcome(
                kind=ConnectionOutcomeKind.FAILED,
                message=f"Falha ao conectar banco: {e}",
            )

        return await self._finish(user_id, outcome, correlation_id)

    async def handle_oauth_callback(
        self,
        user_id: str,
        params: dict,
        correlation_id: Optional[UUID] = None,
    ) -> ConnectionOutcome:
        """The bank redirected back to us after OAuth."""
        correlation_id = correlation_id or create_correlation_id()

        if params.get("error"):
            outcome = ConnectionOutcome(
                kind=ConnectionOutcomeKind.FAILED,
                message=str(params["error"]),
            )
            return await self._finish(user_id, outcome, correlation_id)

        item_id = params.get("itemId") or params.get("item_id")
        if not item_id:
            outcome = ConnectionOutcome(
                kind=ConnectionOutcomeKind.FAILED,
                message="Resposta do banco sem itemId",
            )
            return await self._finish(user_id, outcome, correlation_id)

        try:
            outcome = await self._sync_and_classify(user_id, item_id)
        except PluggyError as e:
            await self._audit.log_external_service_error("pluggy", str(e), correlation_id)
            outcome = ConnectionOutcome(
                kind=ConnectionOutcomeKind.FAILED,
                item_id=item_id,
                message=f"Erro ao salvar conexão: {e}",
            )
        return await self._finish(user_id, outcome, correlation_id)

    async def submit_mfa(
        self,
        user_id: str,
        item_id: str,
        parameter: dict,
        correlation_id: Optional[UUID] = None,
    ) -> ConnectionOutcome:
        """Send the MFA answer (e.g. {"token": "123456"}) and continue the connection."""
        correlation_id = correlation_id or create_correlation_id()
        try:
            item = await self._client.send_mfa(item_id, parameter)
            if item.get("status") not in _TERMINAL:
                # The answered parameter stays attached until the bank processes it
                answered = item.get("parameter")
                item = await self._poll(item_id, answered=answered) or item
                if (
                    answered
                    and item.get("status") not in _TERMINAL
                    and _parameter_key(item.get("parameter")) == _parameter_key(answered)
                ):
                    item = {**item, "parameter": None}
            outcome = await self._resolve(user_id, item)
        except PluggyError as e:
            await self._audit.log_external_service_error("pluggy", str(e), correlation_id)
            outcome = ConnectionOutcome(
                kind=ConnectionOutcomeKind.FAILED,
                item_id=item_id,
                message=f"Falha ao enviar código: {e}",
            )
        return await self._finish(user_id, outcome, correlation_id)

    async def _resolve(self, user_id: str, item: dict) -> ConnectionOutcome:
        """Turn an item payload into an outcome, saving what we learned."""
        item_id = item["id"]
        parameter = parameter_from_payload(item.get("parameter"))

        if parameter is not None and item.get("status") not in _TERMINAL:
            await self._storage.upsert_item(item_from_payload(user_id, item))
            is_oauth, url = classify_parameter(parameter)
            if is_oauth:
                if not url:
                    return ConnectionOutcome(
                        kind=ConnectionOutcomeKind.FAILED,
                        item_id=item_id,
                        message="Não foi possível obter o link de autenticação do banco",
                    )
                return ConnectionOutcome(
                    kind=ConnectionOutcomeKind.OAUTH_REDIRECT,
                    item_id=item_id,
                    oauth_url=url,
                    parameter=parameter,
                )
            return ConnectionOutcome(
                kind=ConnectionOutcomeKind.MFA_REQUIRED,
                item_id=item_id,
                parameter=parameter,
            )

        return await self._sync_and_classify(user_id, item_id)

    async def _sync_and_classify(self, user_id: str, item_id: str) -> ConnectionOutcome:
        item, accounts = await self.sync_item(user_id, item_id)

        if item.status == ItemStatus.UPDATING.value:
            return ConnectionOutcome(
                kind=ConnectionOutcomeKind.SYNCING,
                item_id=item_id,
                accounts=accounts,
                message="Banco conectado! Suas contas estão sendo sincronizadas.",
            )
        if item.status == ItemStatus.UPDATED.value and accounts:
            return ConnectionOutcome(
                kind=ConnectionOutcomeKind.CONNECTED,
                item_id=item_id,
                accounts=accounts,
                message=f"Banco conectado! {len(accounts)} conta(s) sincronizada(s).",
            )
        if item.status in (ItemStatus.LOGIN_ERROR.value, ItemStatus.OUTDATED.value):
            return ConnectionOutcome(
                kind=ConnectionOutcomeKind.LOGIN_ERROR,
                item_id=item_id,
                message=item.error_message or "Credenciais inválidas. Verifique e tente novamente.",
            )
        return ConnectionOutcome(
            kind=ConnectionOutcomeKind.NO_ACCOUNTS,
            item_id=item_id,
            accounts=accounts,
            message="Banco conectado, mas nenhuma conta foi encontrada ainda.",
        )

    async def _finish(
        self,
        user_id: str,
        outcome: ConnectionOutcome,
        correlation_id: UUID,
    ) -> ConnectionOutcome:
        await self._audit.log(AuditEventBuilder.bank_connection_result(
            user_id=user_id,
            item_id=outcome.item_id,
            outcome=outcome.kind.value,
            correlation_id=correlation_id,
            message=outcome.message,
        ))
        return outcome

    async def sync_item(self, user_id: str, item_id: str) -> tuple[BankItem, list[BankAccount]]:
        """Refresh an item and its accounts (balances, last sync time) from Pluggy."""
        payload = await self._client.get_item(item_id)
        item = item_from_payload(user_id, payload)
        await self._storage.upsert_item(item)

        accounts = [
            account_from_payload(user_id, item_id, account)
            for account in await self._client.list_accounts(item_id)
        ]
        for account in accounts:
            await self._storage.upsert_account(account)

        await self._audit.log(AuditEventBuilder.bank_item_synced(
            user_id, item_id, item.status, len(accounts)
        ))
        return item, accounts

    async def refresh_item(self, user_id: str, item_id: str) -> BankItem:
        """Ask Pluggy to pull fresh data from the bank."""
        payload = await self._client.update_item(item_id)
        item = item_from_payload(user_id, payload)
        await self._storage.upsert_item(item)
        return item

    async def sync_transactions(
        self,
        user_id: str,
        account_id: str,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
    ) -> SyncResult:
        """
        Import an account's transactions.

        Transactions already stored (same provider id) are skipped. New
        debits are categorized before being saved.
        """
        payloads = await self._client.list_transactions(
            account_id,
            date_from.isoformat() if date_from else None,
            date_to.isoformat() if date_to else None,
        )

        result = SyncResult(total=len(payloads))
        for payload in payloads:
            if await self._storage.transaction_exists(payload["id"]):
                result.skipped += 1
                continue

            tx = transaction_from_payload(user_id, account_id, payload)
            if tx.is_debit and self._categorizer is not None:
                categorization = await self._categorizer.categorize(
                    tx.description,
                    amount=abs(tx.amount),
                    provider_category=tx.provider_category,
                    receiver_name=tx.receiver_name,
                    payer_name=tx.payer_name,
                    user_id=user_id,
                )
                tx.category = categorization.category
                tx.subcategory = categorization.subcategory
                tx.is_fixed_cost = categorization.is_fixed_cost
                tx.categorization_confidence = categorization.confidence
                result.categorized += 1

            try:
                await self._storage.save_transaction(tx)
                result.saved += 1
            except DuplicateError:
                result.skipped += 1

        await self._audit.log(AuditEventBuilder.transactions_synced(
            user_id, account_id, result.total, result.saved, result.skipped
        ))
        return result

    async def disconnect_item(self, user_id: str, item_id: str) -> bool:
        """Remove the connection at Pluggy and locally."""
        await self._client.delete_item(item_id)
        removed = await self._storage.delete_item(item_id)
        await self._audit.log(AuditEventBuilder.bank_item_deleted(user_id, item_id))
        return removed

    async def handle_webhook(self, payload: dict) -> bool:
        """
        Process a Pluggy webhook.

        Returns False for events we don't handle or items/accounts we don't know.
        """
        event = payload.get("event")
        data = payload.get("data") or {
            "item": {"id": payload.get("itemId")},
            "account": {"id": payload.get("accountId")},
        }
        item_id = (data.get("item") or {}).get("id")
        account_id = (data.get("account") or {}).get("id")

        await self._audit.log(AuditEventBuilder.webhook_received(str(event), item_id))

        if event in ("item/created", "item/updated", "item/error", "item/waiting_user_input"):
            item = await self._storage.get_item(item_id) if item_id else None
            if item is None:
                logger.warning("webhook_unknown_item", webhook_event=event, item_id=item_id)
                return False

            status = (data.get("item") or {}).get("status")
            if event == "item/waiting_user_input":
                status = ItemStatus.WAITING_USER_INPUT.value
            if status:
                item.status = status
            error = (data.get("item") or {}).get("error") or {}
            if event == "item/error":
                item.error_message = error.get("message") or item.error_message
            await self._storage.upsert_item(item)

            if event == "item/updated" and status == ItemStatus.UPDATED.value:
                await self.sync_item(item.user_id, item_id)
            return True

        if event == "item/deleted":
            return await self._storage.delete_item(item_id) if item_id else False

        if event == "transactions/created":
            account = await self._storage.get_account(account_id) if account_id else None
            if account is None:
                logger.warning("webhook_unknown_account", account_id=account_id)
                return False
            await self.sync_transactions(account.user_id, account_id)
            return True

        if event == "transactions/deleted":
            # Nothing to reconcile automatically; the next manual sync catches up
            logger.info("webhook_transactions_deleted", account_id=account_id)
            return True

        logger.info("webhook_unhandled_event", webhook_event=event)
        return False
