"""
Pluggy API Client

DESIGN DECISION: We talk to Pluggy's REST API directly with httpx instead
of an SDK:
1. Only a handful of endpoints are needed
2. Async all the way, like the rest of the services
3. Easy to fake in tests with httpx.MockTransport

Authentication: POST /auth with the client credentials returns an API key,
valid for 2 hours. We cache it a little less than that and send it as
X-API-KEY on every call. A 401 drops the cached key so the retry
re-authenticates.

Every failure leaves this module as a PluggyError: transport problems
become PluggyNetworkError (retried), unreadable bodies PluggyRequestError.
"""

import time
from typing import Any, Optional

import httpx
import structlog
from tenacity import (
    retry,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from pocket.config import get_settings

logger = structlog.get_logger()


class PluggyError(Exception):
    """Base exception for Pluggy errors."""
    pass


class PluggyAuthError(PluggyError):
    """Client credentials were rejected."""
    pass


class PluggyRequestError(PluggyError):
    """A Pluggy call returned an error status or an unreadable body."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)

    @property
    def retryable(self) -> bool:
        return self.status_code in (401, 429) or (self.status_code or 0) >= 500


class PluggyNetworkError(PluggyRequestError):
    """Pluggy could not be reached (connection, timeout or protocol error)."""

    @property
    def retryable(self) -> bool:
        return True


def _is_transient(exc: BaseException) -> bool:
    return isinstance(exc, PluggyRequestError) and exc.retryable


def _json(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError as e:
        raise PluggyRequestError(
            f"Pluggy returned an invalid response ({response.status_code})",
            response.status_code,
        ) from e


class PluggyClient:
    """
    Thin async wrapper over the Pluggy endpoints Pocket uses.

    All methods return Pluggy's JSON payloads (dicts); mapping them to our
    models happens in the connection flow.
    """

    def __init__(
        self,
        client_id: Optional[str] = None,
        client_secret: Optional[str] = None,
        base_url: Optional[str] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        webhook_url: Optional[str] = None,
        oauth_redirect_uri: Optional[str] = None,
        api_key_ttl_seconds: Optional[int] = None,
        page_size: Optional[int] = None,
    ):
        if client_id is None or client_secret is None:
            settings = get_settings().pluggy
            client_id = client_id or settings.client_id
            client_secret = client_secret or settings.client_secret
            base_url = base_url or settings.base_url
            webhook_url = webhook_url or settings.webhook_url
            oauth_redirect_uri = oauth_redirect_uri or settings.oauth_redirect_uri
            api_key_ttl_seconds = api_key_ttl_seconds or settings.api_key_ttl_seconds
            page_size = page_size or settings.transactions_page_size
            timeout = settings.request_timeout_seconds
        else:
            timeout = 30

        self._client_id = client_id
        self._client_secret = client_secret
        self._base_url = (base_url or "https://api.pluggy.ai").rstrip("/")
        self._webhook_url = webhook_url
        self._oauth_redirect_uri = oauth_redirect_uri
        self._api_key_ttl = api_key_ttl_seconds or 6600
        self._page_size = page_size or 500
        self._http = http_client or httpx.AsyncClient(base_url=self._base_url, timeout=timeout)

        self._api_key: Optional[str] = None
        self._api_key_expires_at = 0.0

    async def aclose(self) -> None:
        await self._http.aclose()

    def _url(self, path: str) -> str:
        return f"{self._base_url}{path}"

    async def _send(self, method: str, path: str, **kwargs) -> httpx.Response:
        try:
            return await self._http.request(method, self._url(path), **kwargs)
        except httpx.HTTPError as e:
            logger.warning("pluggy_unreachable", method=method, path=path, error=str(e))
            raise PluggyNetworkError(f"Could not reach Pluggy: {e}") from e

    async def authenticate(self, force: bool = False) -> str:
        """Return a valid API key, requesting a new one when expired."""
        if not force and self._api_key and time.monotonic() < self._api_key_expires_at:
            return self._api_key

        response = await self._send(
            "POST",
            "/auth",
            json={"clientId": self._client_id, "clientSecret": self._client_secret},
        )
        if response.status_code >= 500:
            raise PluggyRequestError(
                f"Pluggy authentication unavailable ({response.status_code})",
                response.status_code,
            )
        if response.status_code >= 400:
            logger.error("pluggy_auth_failed", status=response.status_code)
            raise PluggyAuthError(f"Failed to authenticate with Pluggy ({response.status_code})")

        api_key = _json(response).get("apiKey")
        if not api_key:
            raise PluggyAuthError("Pluggy did not return an API key")

        self._api_key = api_key
        self._api_key_expires_at = time.monotonic() + self._api_key_ttl
        return api_key

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        retry=retry_if_exception(_is_transient),
        reraise=True,
    )
    async def _request(
        self,
        method: str,
        path: str,
        params: Optional[dict] = None,
        json: Optional[dict] = None,
    ) -> Any:
        api_key = await self.authenticate()
        response = await self._send(
            method,
            path,
            params=params,
            json=json,
            headers={"X-API-KEY": api_key},
        )

        if response.status_code == 401:
            self._api_key = None

        if response.status_code >= 400:
            try:
                message = response.json().get("message") or response.text
            except (ValueError, AttributeError):
                message = response.text
            logger.warning(
                "pluggy_request_failed",
                method=method,
                path=path,
                status=response.status_code,
                message=message,
            )
            raise PluggyRequestError(message or f"Pluggy error {response.status_code}", response.status_code)

        if not response.content:
            return {}
        return _json(response)

    # Connect

    async def create_connect_token(
        self,
        client_user_id: Optional[str] = None,
        item_id: Optional[str] = None,
    ) -> str:
        """Token for the Pluggy Connect widget (or to update an existing item)."""
        body: dict[str, Any] = {"avoidDuplicates": True}
        if client_user_id:
            body["clientUserId"] = client_user_id
        if item_id:
            body["itemId"] = item_id
        if self._webhook_url:
            body["webhookUrl"] = self._webhook_url
        if self._oauth_redirect_uri:
            body["oauthRedirectUri"] = self._oauth_redirect_uri

        data = await self._request("POST", "/connect_token", json=body)
        return data["accessToken"]

    # Items

    async def create_item(
        self,
        connector_id: int,
        parameters: dict,
        client_user_id: Optional[str] = None,
    ) -> dict:
        body: dict[str, Any] = {"connectorId": connector_id, "parameters": parameters}
        if client_user_id:
            body["clientUserId"] = client_user_id
        if self._webhook_url:
            body["webhookUrl"] = self._webhook_url
        if self._oauth_redirect_uri:
            # The docs disagree on the field name, both are accepted
            body["oauthRedirectUri"] = self._oauth_redirect_uri
            body["oauthRedirectUrl"] = self._oauth_redirect_uri
        return await self._request("POST", "/items", json=body)

    async def get_item(self, item_id: str) -> dict:
        return await self._request("GET", f"/items/{item_id}")

    async def update_item(self, item_id: str, parameters: Optional[dict] = None) -> dict:
        """Trigger a new sync of the item, optionally with new credentials."""
        body = {"parameters": parameters} if parameters else {}
        return await self._request("PATCH", f"/items/{item_id}", json=body)

    async def delete_item(self, item_id: str) -> None:
        """Delete an item at Pluggy. An item that is already gone is not an error."""
        try:
            await self._request("DELETE", f"/items/{item_id}")
        except PluggyRequestError as e:
            if e.status_code != 404:
                raise
            logger.info("pluggy_item_already_deleted", item_id=item_id)

    async def send_mfa(self, item_id: str, parameter: dict) -> dict:
        return await self._request("POST", f"/items/{item_id}/mfa", json=parameter)

    # Accounts and transactions

    async def list_accounts(self, item_id: str) -> list[dict]:
        data = await self._request("GET", "/accounts", params={"itemId": item_id})
        return data.get("results", [])

    async def list_transactions(
        self,
        account_id: str,
        date_from: Optional[str] = None,
        date_to: Optional[str] = None,
    ) -> list[dict]:
        """
        All transactions of an account, following pagination.

        Args:
            date_from: YYYY-MM-DD, inclusive
            date_to: YYYY-MM-DD, inclusive
        """
        params: dict[str, Any] = {"accountId": account_id, "pageSize": self._page_size}
        if date_from:
            params["from"] = date_from
        if date_to:
            params["to"] = date_to

        transactions: list[dict] = []
        seen: set[str] = set()
        page = 1
        while True:
            data = await self._request("GET", "/transactions", params={**params, "page": page})
            for tx in data.get("results", []):
                if tx.get("id") in seen:
                    continue
                seen.add(tx.get("id"))
                transactions.append(tx)

            total_pages = data.get("totalPages") or 1
            if page >= total_pages:
                break
            page += 1

        return transactions
