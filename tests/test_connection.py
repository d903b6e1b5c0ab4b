"""Tests for the bank connection flow with a fake Pluggy client."""

from datetime import date
from decimal import Decimal

import httpx
import pytest
from tenacity import wait_none

from pocket.agents import ExpenseCategorizer
from pocket.models import (
    AuditEventType,
    BankItem,
    BankTransaction,
    ConnectionOutcomeKind,
    ExpenseCategory,
    ItemStatus,
)
from pocket.services.openfinance import (
    BankConnectionFlow,
    PluggyClient,
    PluggyRequestError,
    classify_parameter,
    poll_item,
    transaction_from_payload,
)
from tests.helpers import USER

ACCOUNT = {"id": "acc-1", "type": "BANK", "name": "Conta corrente", "balance": 1234.56}


class FakePluggyClient:
    """Serves item payloads in sequence; the last one repeats."""

    def __init__(self, created=None, items=None, accounts=None, transactions=None, mfa=None):
        self.created = created or {"id": "item-1", "status": "UPDATED"}
        self.items = list(items or [{"id": "item-1", "status": "UPDATED"}])
        self.accounts = accounts if accounts is not None else [ACCOUNT]
        self.transactions = transactions or []
        self.mfa = mfa
        self.calls = []

    async def create_item(self, connector_id, parameters, client_user_id=None):
        self.calls.append(("create_item", connector_id, client_user_id))
        if isinstance(self.created, Exception):
            raise self.created
        return self.created

    async def get_item(self, item_id):
        self.calls.append(("get_item", item_id))
        item = self.items.pop(0) if len(self.items) > 1 else self.items[0]
        if isinstance(item, Exception):
            raise item
        return item

    async def list_accounts(self, item_id):
        return self.accounts

    async def send_mfa(self, item_id, parameter):
        self.calls.append(("send_mfa", item_id, parameter))
        return self.mfa

    async def update_item(self, item_id, parameters=None):
        return {"id": item_id, "status": "UPDATING"}

    async def delete_item(self, item_id):
        self.calls.append(("delete_item", item_id))

    async def list_transactions(self, account_id, date_from=None, date_to=None):
        self.calls.append(("list_transactions", account_id, date_from, date_to))
        return self.transactions


class RecordingSleep:
    def __init__(self):
        self.delays = []

    async def __call__(self, seconds):
        self.delays.append(seconds)


@pytest.fixture
def sleep():
    return RecordingSleep()


def make_flow(client, banking_storage, audit_logger, sleep, categorizer=None):
    return BankConnectionFlow(
        client,
        banking_storage,
        categorizer=categorizer,
        audit_logger=audit_logger,
        poll_max_attempts=3,
        poll_interval_seconds=0.5,
        sleep=sleep,
    )


class TestParameters:

    def test_oauth_parameter_with_url(self):
        assert classify_parameter({"name": "oauth_code", "data": "https://bank/auth"}) == (
            True, "https://bank/auth",
        )

    def test_oauth_type_with_url_dict(self):
        assert classify_parameter({"type": "oauth", "data": {"url": "https://bank/auth"}}) == (
            True, "https://bank/auth",
        )

    def test_mfa_parameter(self):
        assert classify_parameter({"name": "token", "type": "number"}) == (False, None)
        assert classify_parameter(None) == (False, None)

    def test_transaction_mapping(self):
        tx = transaction_from_payload(USER, "acc-1", {
            "id": "t1",
            "description": "PIX ENVIADO",
            "amount": -80.5,
            "date": "2024-05-10T13:00:00.000Z",
            "category": "Transfer - PIX",
            "type": "DEBIT",
            "paymentData": {"receiver": {"name": "Maria Silva"}},
        })
        assert tx.amount == Decimal("-80.5")
        assert tx.transaction_date == date(2024, 5, 10)
        assert tx.receiver_name == "Maria Silva"
        assert tx.provider_category == "Transfer - PIX"


class TestPolling:

    @pytest.mark.asyncio
    async def test_stops_on_terminal_status(self, sleep):
        client = FakePluggyClient(items=[
            {"id": "item-1", "status": "UPDATING"},
            {"id": "item-1", "status": "UPDATED"},
        ])
        item = await poll_item(client, "item-1", max_attempts=5, interval_seconds=1, sleep=sleep)

        assert item["status"] == "UPDATED"
        assert sleep.delays == [1]

    @pytest.mark.asyncio
    async def test_gives_up_without_sleeping_after_last_attempt(self, sleep):
        client = FakePluggyClient(items=[{"id": "item-1", "status": "UPDATING"}])
        item = await poll_item(client, "item-1", max_attempts=3, interval_seconds=1, sleep=sleep)

        assert item["status"] == "UPDATING"
        assert sleep.delays == [1, 1]

    @pytest.mark.asyncio
    async def test_errors_are_tolerated(self, sleep):
        client = FakePluggyClient(items=[
            PluggyRequestError("boom", 500),
            {"id": "item-1", "status": "LOGIN_ERROR"},
        ])
        item = await poll_item(client, "item-1", max_attempts=3, interval_seconds=1, sleep=sleep)
        assert item["status"] == "LOGIN_ERROR"


class TestConnect:
    """Each way a connection attempt can end."""

    @pytest.mark.asyncio
    async def test_connected(self, banking_storage, audit_logger, audit_storage, sleep):
        client = FakePluggyClient(created={"id": "item-1", "status": "UPDATING"})
        flow = make_flow(client, banking_storage, audit_logger, sleep)

        outcome = await flow.connect(USER, 201, {"user": "123"})

        assert outcome.kind == ConnectionOutcomeKind.CONNECTED
        assert outcome.message == "Banco conectado! 1 conta(s) sincronizada(s)."
        assert ("create_item", 201, USER) in client.calls
        [account] = await banking_storage.list_accounts(USER)
        assert account.balance == Decimal("1234.56")
        assert account.last_sync_at is not None
        types = [e.event_type for e in audit_storage.events]
        assert types[0] == AuditEventType.BANK_CONNECTION_STARTED
        assert types[-1] == AuditEventType.BANK_CONNECTION_RESULT

    @pytest.mark.asyncio
    async def test_oauth_redirect(self, banking_storage, audit_logger, sleep):
        waiting = {
            "id": "item-1",
            "status": "WAITING_USER_INPUT",
            "parameter": {"name": "oauth_code", "type": "oauth", "data": "https://bank/auth"},
        }
        client = FakePluggyClient(created={"id": "item-1", "status": "UPDATING"}, items=[waiting])
        flow = make_flow(client, banking_storage, audit_logger, sleep)

        outcome = await flow.connect(USER, 601, {})

        assert outcome.kind == ConnectionOutcomeKind.OAUTH_REDIRECT
        assert outcome.oauth_url == "https://bank/auth"
        stored = await banking_storage.get_item("item-1")
        assert stored.status == "WAITING_USER_INPUT"

    @pytest.mark.asyncio
    async def test_oauth_without_url_fails(self, banking_storage, audit_logger, sleep):
        waiting = {"id": "item-1", "status": "WAITING_USER_INPUT", "parameter": {"type": "oauth"}}
        flow = make_flow(FakePluggyClient(created=waiting, items=[waiting]), banking_storage, audit_logger, sleep)

        outcome = await flow.connect(USER, 601, {})

        assert outcome.kind == ConnectionOutcomeKind.FAILED
        assert "link de autenticação" in outcome.message

    @pytest.mark.asyncio
    async def test_mfa_required(self, banking_storage, audit_logger, sleep):
        waiting = {
            "id": "item-1",
            "status": "WAITING_USER_INPUT",
            "parameter": {"name": "token", "type": "number", "label": "Token"},
        }
        flow = make_flow(FakePluggyClient(created=waiting, items=[waiting]), banking_storage, audit_logger, sleep)

        outcome = await flow.connect(USER, 201, {"user": "123"})

        assert outcome.kind == ConnectionOutcomeKind.MFA_REQUIRED
        assert outcome.parameter.label == "Token"

    @pytest.mark.asyncio
    async def test_still_syncing_after_polling(self, banking_storage, audit_logger, sleep):
        updating = {"id": "item-1", "status": "UPDATING"}
        flow = make_flow(FakePluggyClient(created=updating, items=[updating]), banking_storage, audit_logger, sleep)

        outcome = await flow.connect(USER, 201, {})

        assert outcome.kind == ConnectionOutcomeKind.SYNCING
        assert outcome.succeeded
        assert len(sleep.delays) == 2

    @pytest.mark.asyncio
    async def test_login_error(self, banking_storage, audit_logger, audit_storage, sleep):
        failed = {"id": "item-1", "status": "LOGIN_ERROR", "error": {"message": "Senha incorreta"}}
        flow = make_flow(FakePluggyClient(created=failed, items=[failed]), banking_storage, audit_logger, sleep)

        outcome = await flow.connect(USER, 201, {})

        assert outcome.kind == ConnectionOutcomeKind.LOGIN_ERROR
        assert outcome.message == "Senha incorreta"
        assert sleep.delays == []
        assert audit_storage.events[-1].error_message == "Senha incorreta"

    @pytest.mark.asyncio
    async def test_no_accounts(self, banking_storage, audit_logger, sleep):
        flow = make_flow(FakePluggyClient(accounts=[]), banking_storage, audit_logger, sleep)
        outcome = await flow.connect(USER, 201, {})
        assert outcome.kind == ConnectionOutcomeKind.NO_ACCOUNTS

    @pytest.mark.asyncio
    async def test_pluggy_error(self, banking_storage, audit_logger, audit_storage, sleep):
        client = FakePluggyClient(created=PluggyRequestError("Connector unavailable", 400))
        flow = make_flow(client, banking_storage, audit_logger, sleep)

        outcome = await flow.connect(USER, 201, {})

        assert outcome.kind == ConnectionOutcomeKind.FAILED
        assert outcome.message == "Falha ao conectar banco: Connector unavailable"
        types = [e.event_type for e in audit_storage.events]
        assert AuditEventType.EXTERNAL_SERVICE_ERROR in types


class TestCallbacksAndMfa:

    @pytest.mark.asyncio
    async def test_oauth_callback_error(self, banking_storage, audit_logger, sleep):
        flow = make_flow(FakePluggyClient(), banking_storage, audit_logger, sleep)
        outcome = await flow.handle_oauth_callback(USER, {"error": "access_denied"})

        assert outcome.kind == ConnectionOutcomeKind.FAILED
        assert outcome.message == "access_denied"

    @pytest.mark.asyncio
    async def test_oauth_callback_without_item(self, banking_storage, audit_logger, sleep):
        flow = make_flow(FakePluggyClient(), banking_storage, audit_logger, sleep)
        outcome = await flow.handle_oauth_callback(USER, {})
        assert outcome.message == "Resposta do banco sem itemId"

    @pytest.mark.asyncio
    async def test_oauth_callback_syncs(self, banking_storage, audit_logger, sleep):
        flow = make_flow(FakePluggyClient(), banking_storage, audit_logger, sleep)
        outcome = await flow.handle_oauth_callback(USER, {"itemId": "item-1"})

        assert outcome.kind == ConnectionOutcomeKind.CONNECTED
        assert await banking_storage.get_item("item-1") is not None

    @pytest.mark.asyncio
    async def test_submit_mfa(self, banking_storage, audit_logger, sleep):
        client = FakePluggyClient(
            mfa={"id": "item-1", "status": "UPDATING"},
            items=[{"id": "item-1", "status": "UPDATED"}],
        )
        flow = make_flow(client, banking_storage, audit_logger, sleep)

        outcome = await flow.submit_mfa(USER, "item-1", {"token": "123456"})

        assert ("send_mfa", "item-1", {"token": "123456"}) in client.calls
        assert outcome.kind == ConnectionOutcomeKind.CONNECTED


class TestSyncAndWebhooks:

    def _payloads(self):
        return [
            {"id": "t1", "description": "UBER *TRIP", "amount": -25.0, "date": "2024-05-10", "type": "DEBIT"},
            {"id": "t2", "description": "Salário", "amount": 5000.0, "date": "2024-05-05", "type": "CREDIT"},
            {"id": "t3", "description": "NETFLIX.COM", "amount": -39.9, "date": "2024-05-03", "type": "DEBIT"},
        ]

    @pytest.mark.asyncio
    async def test_sync_transactions(self, banking_storage, audit_logger, audit_storage, sleep):
        await banking_storage.save_transaction(BankTransaction(
            transaction_id="t3", account_id="acc-1", user_id=USER,
            amount=Decimal("-39.9"), transaction_date=date(2024, 5, 3),
        ))
        client = FakePluggyClient(transactions=self._payloads())
        flow = make_flow(
            client, banking_storage, audit_logger, sleep,
            categorizer=ExpenseCategorizer(use_llm=False),
        )

        result = await flow.sync_transactions(USER, "acc-1", date(2024, 5, 1), date(2024, 5, 31))

        assert (result.total, result.saved, result.skipped, result.categorized) == (3, 2, 1, 1)
        assert ("list_transactions", "acc-1", "2024-05-01", "2024-05-31") in client.calls
        stored = {t.transaction_id: t for t in await banking_storage.list_transactions(USER)}
        assert stored["t1"].category == ExpenseCategory.TRANSPORT
        assert stored["t2"].category is None
        assert audit_storage.events[-1].event_type == AuditEventType.TRANSACTIONS_SYNCED

    @pytest.mark.asyncio
    async def test_disconnect(self, banking_storage, audit_logger, sleep):
        client = FakePluggyClient()
        flow = make_flow(client, banking_storage, audit_logger, sleep)
        await flow.sync_item(USER, "item-1")

        assert await flow.disconnect_item(USER, "item-1") is True
        assert ("delete_item", "item-1") in client.calls
        assert await banking_storage.list_accounts(USER) == []

    @pytest.mark.asyncio
    async def test_webhook_item_error(self, banking_storage, audit_logger, sleep):
        await banking_storage.upsert_item(BankItem(item_id="item-1", user_id=USER, status="UPDATED"))
        flow = make_flow(FakePluggyClient(), banking_storage, audit_logger, sleep)

        handled = await flow.handle_webhook({
            "event": "item/error",
            "data": {"item": {"id": "item-1", "status": "LOGIN_ERROR", "error": {"message": "Senha expirada"}}},
        })

        item = await banking_storage.get_item("item-1")
        assert handled is True
        assert item.status == ItemStatus.LOGIN_ERROR.value
        assert item.error_message == "Senha expirada"

    @pytest.mark.asyncio
    async def test_webhook_item_updated_syncs(self, banking_storage, audit_logger, sleep):
        await banking_storage.upsert_item(BankItem(item_id="item-1", user_id=USER))
        flow = make_flow(FakePluggyClient(), banking_storage, audit_logger, sleep)

        assert await flow.handle_webhook({"event": "item/updated", "itemId": "item-1"}) is True
        # Flat payload has no status, so nothing is synced
        assert await banking_storage.list_accounts(USER) == []

        await flow.handle_webhook({
            "event": "item/updated",
            "data": {"item": {"id": "item-1", "status": "UPDATED"}},
        })
        assert len(await banking_storage.list_accounts(USER)) == 1

    @pytest.mark.asyncio
    async def test_webhook_unknown_item(self, banking_storage, audit_logger, audit_storage, sleep):
        flow = make_flow(FakePluggyClient(), banking_storage, audit_logger, sleep)

        assert await flow.handle_webhook({"event": "item/updated", "itemId": "nope"}) is False
        assert audit_storage.events[-1].event_type == AuditEventType.WEBHOOK_RECEIVED

    @pytest.mark.asyncio
    async def test_webhook_transactions_created(self, banking_storage, audit_logger, sleep):
        client = FakePluggyClient(transactions=self._payloads()[:1])
        flow = make_flow(client, banking_storage, audit_logger, sleep)
        await flow.sync_item(USER, "item-1")

        handled = await flow.handle_webhook({
            "event": "transactions/created",
            "data": {"account": {"id": "acc-1"}, "item": {"id": "item-1"}},
        })

        assert handled is True
        assert len(await banking_storage.list_transactions(USER)) == 1

    @pytest.mark.asyncio
    async def test_webhook_unhandled_event(self, banking_storage, audit_logger, sleep):
        flow = make_flow(FakePluggyClient(), banking_storage, audit_logger, sleep)
        assert await flow.handle_webhook({"event": "connector/status_updated"}) is False


class TestMfaFollowUp:

    @pytest.mark.asyncio
    async def test_answered_parameter_is_not_asked_again(self, banking_storage, audit_logger, sleep):
        """The item keeps the answered token for a moment before it moves on."""
        answered = {"name": "token", "type": "number", "expiresAt": "2024-05-20T12:05:00Z"}
        client = FakePluggyClient(
            mfa={"id": "item-1", "status": "UPDATING", "parameter": answered},
            items=[
                {"id": "item-1", "status": "UPDATING", "parameter": answered},
                {"id": "item-1", "status": "UPDATED"},
            ],
        )
        flow = make_flow(client, banking_storage, audit_logger, sleep)

        outcome = await flow.submit_mfa(USER, "item-1", {"token": "123456"})

        assert outcome.kind == ConnectionOutcomeKind.CONNECTED
        assert sleep.delays == [0.5]

    @pytest.mark.asyncio
    async def test_new_parameter_after_answer(self, banking_storage, audit_logger, sleep):
        """A second challenge (different expiry) is passed on to the user."""
        answered = {"name": "token", "expiresAt": "2024-05-20T12:05:00Z"}
        second = {"name": "token", "expiresAt": "2024-05-20T12:10:00Z"}
        client = FakePluggyClient(
            mfa={"id": "item-1", "status": "UPDATING", "parameter": answered},
            items=[{"id": "item-1", "status": "WAITING_USER_INPUT", "parameter": second}],
        )
        flow = make_flow(client, banking_storage, audit_logger, sleep)

        outcome = await flow.submit_mfa(USER, "item-1", {"token": "123456"})

        assert outcome.kind == ConnectionOutcomeKind.MFA_REQUIRED
        assert outcome.parameter.expires_at == "2024-05-20T12:10:00Z"

    @pytest.mark.asyncio
    async def test_answered_parameter_still_attached_after_polling(
        self, banking_storage, audit_logger, sleep,
    ):
        answered = {"name": "token", "expiresAt": "2024-05-20T12:05:00Z"}
        stuck = {"id": "item-1", "status": "UPDATING", "parameter": answered}
        client = FakePluggyClient(mfa=stuck, items=[stuck])
        flow = make_flow(client, banking_storage, audit_logger, sleep)

        outcome = await flow.submit_mfa(USER, "item-1", {"token": "123456"})

        assert outcome.kind == ConnectionOutcomeKind.SYNCING


class TestNetworkFailures:
    """Pluggy unreachable: the flow reports a failure instead of raising."""

    @pytest.fixture
    def offline_client(self, monkeypatch):
        monkeypatch.setattr(PluggyClient._request.retry, "wait", wait_none())

        def handler(request):
            raise httpx.ConnectError("network down", request=request)

        return PluggyClient(
            client_id="id",
            client_secret="secret",
            base_url="https://pluggy.test",
            http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
        )

    @pytest.mark.asyncio
    async def test_connect_fails_cleanly(self, offline_client, banking_storage, audit_logger, sleep):
        flow = make_flow(offline_client, banking_storage, audit_logger, sleep)

        outcome = await flow.connect(USER, 201, {"user": "123"})

        assert outcome.kind == ConnectionOutcomeKind.FAILED
        assert "network down" in outcome.message

    @pytest.mark.asyncio
    async def test_oauth_callback_fails_cleanly(self, offline_client, banking_storage, audit_logger, sleep):
        flow = make_flow(offline_client, banking_storage, audit_logger, sleep)

        outcome = await flow.handle_oauth_callback(USER, {"itemId": "item-1"})

        assert outcome.kind == ConnectionOutcomeKind.FAILED

    @pytest.mark.asyncio
    async def test_polling_keeps_going(self, offline_client, sleep):
        item = await poll_item(offline_client, "item-1", max_attempts=2, interval_seconds=1, sleep=sleep)

        assert item is None
        assert sleep.delays == [1]
