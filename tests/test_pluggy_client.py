"""Tests for the Pluggy REST client, against httpx.MockTransport."""

import json

import httpx
import pytest
from tenacity import wait_none

from pocket.services.openfinance import (
    PluggyAuthError,
    PluggyClient,
    PluggyNetworkError,
    PluggyRequestError,
)

BASE_URL = "https://pluggy.test"


class FakePluggyApi:
    """Records requests and answers from a route table."""

    def __init__(self, routes=None, auth_status=200):
        self.routes = routes or {}
        self.auth_status = auth_status
        self.requests: list[httpx.Request] = []
        self.auth_calls = 0

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.url.path == "/auth":
            self.auth_calls += 1
            if self.auth_status != 200:
                return httpx.Response(self.auth_status, json={"message": "invalid credentials"})
            return httpx.Response(200, json={"apiKey": f"key-{self.auth_calls}"})

        handler = self.routes[(request.method, request.url.path)]
        return handler(request) if callable(handler) else handler


def make_client(api: FakePluggyApi, **kwargs) -> PluggyClient:
    http = httpx.AsyncClient(transport=httpx.MockTransport(api))
    return PluggyClient(
        client_id="id",
        client_secret="secret",
        base_url=BASE_URL,
        http_client=http,
        **kwargs,
    )


class TestAuthentication:

    @pytest.mark.asyncio
    async def test_api_key_cached_and_sent(self):
        api = FakePluggyApi({
            ("GET", "/items/item-1"): httpx.Response(200, json={"id": "item-1", "status": "UPDATED"}),
        })
        client = make_client(api)

        await client.get_item("item-1")
        item = await client.get_item("item-1")

        assert item["status"] == "UPDATED"
        assert api.auth_calls == 1
        assert api.requests[-1].headers["X-API-KEY"] == "key-1"
        assert json.loads(api.requests[0].content) == {"clientId": "id", "clientSecret": "secret"}

    @pytest.mark.asyncio
    async def test_bad_credentials(self):
        client = make_client(FakePluggyApi(auth_status=403))
        with pytest.raises(PluggyAuthError):
            await client.authenticate()

    @pytest.mark.asyncio
    async def test_unauthorized_reauthenticates_on_retry(self):
        """A 401 drops the cached key; the retry asks for a new one."""
        responses = iter([
            httpx.Response(401, json={"message": "expired"}),
            httpx.Response(200, json={"id": "item-1"}),
        ])
        api = FakePluggyApi({("GET", "/items/item-1"): lambda request: next(responses)})
        client = make_client(api)

        request = PluggyClient._request.retry_with(wait=wait_none())
        item = await request(client, "GET", "/items/item-1")

        assert item == {"id": "item-1"}
        assert api.auth_calls == 2
        assert api.requests[-1].headers["X-API-KEY"] == "key-2"


class TestEndpoints:

    @pytest.mark.asyncio
    async def test_create_item_body(self):
        api = FakePluggyApi({
            ("POST", "/items"): httpx.Response(200, json={"id": "item-1", "status": "UPDATING"}),
        })
        client = make_client(
            api,
            webhook_url="https://app.test/webhook",
            oauth_redirect_uri="https://app.test/callback",
        )

        await client.create_item(201, {"user": "123", "password": "x"}, client_user_id="u1")

        body = json.loads(api.requests[-1].content)
        assert body["connectorId"] == 201
        assert body["clientUserId"] == "u1"
        assert body["webhookUrl"] == "https://app.test/webhook"
        assert body["oauthRedirectUri"] == body["oauthRedirectUrl"] == "https://app.test/callback"

    @pytest.mark.asyncio
    async def test_transactions_follow_pagination_without_duplicates(self):
        def transactions(request: httpx.Request) -> httpx.Response:
            page = int(request.url.params["page"])
            pages = {
                1: [{"id": "t1"}, {"id": "t2"}],
                2: [{"id": "t2"}, {"id": "t3"}],
            }
            return httpx.Response(200, json={"results": pages[page], "totalPages": 2})

        api = FakePluggyApi({("GET", "/transactions"): transactions})
        client = make_client(api, page_size=2)

        result = await client.list_transactions("acc-1", date_from="2024-05-01", date_to="2024-05-31")

        assert [tx["id"] for tx in result] == ["t1", "t2", "t3"]
        params = api.requests[-1].url.params
        assert params["accountId"] == "acc-1"
        assert params["from"] == "2024-05-01"
        assert params["pageSize"] == "2"

    @pytest.mark.asyncio
    async def test_list_accounts(self):
        api = FakePluggyApi({
            ("GET", "/accounts"): httpx.Response(200, json={"results": [{"id": "acc-1"}]}),
        })
        accounts = await make_client(api).list_accounts("item-1")

        assert accounts == [{"id": "acc-1"}]
        assert api.requests[-1].url.params["itemId"] == "item-1"

    @pytest.mark.asyncio
    async def test_delete_missing_item_is_ok(self):
        api = FakePluggyApi({
            ("DELETE", "/items/gone"): httpx.Response(404, json={"message": "Item not found"}),
        })
        await make_client(api).delete_item("gone")

    @pytest.mark.asyncio
    async def test_client_error_is_not_retried(self):
        api = FakePluggyApi({
            ("POST", "/items/item-1/mfa"): httpx.Response(400, json={"message": "Invalid token"}),
        })

        with pytest.raises(PluggyRequestError) as exc_info:
            await make_client(api).send_mfa("item-1", {"token": "000"})

        assert exc_info.value.status_code == 400
        assert str(exc_info.value) == "Invalid token"
        assert len([r for r in api.requests if r.url.path == "/items/item-1/mfa"]) == 1


class TestFailures:

    @pytest.mark.asyncio
    async def test_unreachable_is_retried_then_reported(self):
        attempts = []

        def handler(request):
            attempts.append(request.url.path)
            raise httpx.ConnectError("network down", request=request)

        client = PluggyClient(
            client_id="id",
            client_secret="secret",
            base_url=BASE_URL,
            http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
        )
        request = PluggyClient._request.retry_with(wait=wait_none())

        with pytest.raises(PluggyNetworkError):
            await request(client, "GET", "/items/item-1")

        assert attempts == ["/auth", "/auth", "/auth"]

    @pytest.mark.asyncio
    async def test_unreadable_body(self):
        api = FakePluggyApi({
            ("GET", "/items/item-1"): httpx.Response(200, text="<html>gateway</html>"),
        })

        with pytest.raises(PluggyRequestError) as exc_info:
            await make_client(api).get_item("item-1")

        assert not isinstance(exc_info.value, PluggyNetworkError)
        assert exc_info.value.status_code == 200
