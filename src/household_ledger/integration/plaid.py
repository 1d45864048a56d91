import asyncio
import os
from dataclasses import dataclass, field
from typing import Any

import httpx

from household_ledger.core import settings
from household_ledger.errors import ConfigurationError, ProviderError
from household_ledger.logger import get_logger

logger = get_logger(__name__)

PLAID_ENVIRONMENTS = {
    "sandbox": "https://sandbox.plaid.com",
    "development": "https://development.plaid.com",
    "production": "https://production.plaid.com",
}

RETRYABLE_ERROR_CODES = frozenset({"RATE_LIMIT_EXCEEDED", "INTERNAL_SERVER_ERROR", "PLANNED_MAINTENANCE"})
DEFAULT_RETRY_DELAY_SECONDS = 1.0


@dataclass
class SyncPage:
    added: list[dict[str, Any]] = field(default_factory=list)
    modified: list[dict[str, Any]] = field(default_factory=list)
    removed: list[dict[str, Any]] = field(default_factory=list)
    next_cursor: str | None = None
    has_more: bool = False


def _base_url_for(environment: str | None) -> str:
    env = (environment or "sandbox").strip().lower()
    if env not in PLAID_ENVIRONMENTS:
        logger.warning("[PLAID] Unknown PLAID_ENV='%s', using sandbox.", environment)
        env = "sandbox"
    return PLAID_ENVIRONMENTS[env]


class PlaidClient:
    """Thin async client for the aggregation provider's JSON-over-POST API.

    Credentials travel in the request body. Every call is retried once on a
    transport error, a 5xx, or a retryable provider error code.
    """

    def __init__(
        self,
        client_id: str | None = None,
        secret: str | None = None,
        environment: str | None = None,
        client: httpx.AsyncClient | None = None,
        timeout: float | None = None,
        retry_delay: float = DEFAULT_RETRY_DELAY_SECONDS,
    ):
        self.client_id = client_id or os.getenv("PLAID_CLIENT_ID")
        self.secret = secret or os.getenv("PLAID_SECRET")
        self.environment = environment or os.getenv("PLAID_ENV", "sandbox")
        self.base_url = _base_url_for(self.environment)
        self.timeout = timeout if timeout is not None else settings.external_timeout()
        self.retry_delay = retry_delay
        self._client = client
        self._client_lock = asyncio.Lock()

    @property
    def configured(self) -> bool:
        return bool(self.client_id and self.secret)

    def refresh(
        self,
        client_id: str | None = None,
        secret: str | None = None,
        environment: str | None = None,
    ) -> None:
        self.client_id = client_id if client_id is not None else os.getenv("PLAID_CLIENT_ID")
        self.secret = secret if secret is not None else os.getenv("PLAID_SECRET")
        self.environment = environment if environment is not None else os.getenv("PLAID_ENV", "sandbox")
        self.base_url = _base_url_for(self.environment)
        self.timeout = settings.external_timeout()

    async def aclose(self) -> None:
        if self._client and not self._client.is_closed:
            await self._client.aclose()

    async def _get_client(self) -> httpx.AsyncClient:
        client = self._client
        if client is not None and not client.is_closed:
            return client

        async with self._client_lock:
            client = self._client
            if client is None or client.is_closed:
                client = httpx.AsyncClient(headers={"Content-Type": "application/json"})
                self._client = client
            return client

    async def _post_once(
        self, endpoint: str, payload: dict[str, Any]
    ) -> tuple[dict[str, Any] | None, ProviderError | None, bool]:
        """One attempt: (data, error, retryable)."""
        client = await self._get_client()
        try:
            response = await client.post(f"{self.base_url}/{endpoint}", json=payload, timeout=self.timeout)
        except httpx.TransportError as exc:
            return None, ProviderError(f"{endpoint}: {exc.__class__.__name__}: {exc}"), True

        if response.status_code < 400:
            try:
                data = response.json()
            except ValueError:
                return None, ProviderError(f"{endpoint}: response body is not JSON"), True
            if not isinstance(data, dict):
                return None, ProviderError(f"{endpoint}: expected a JSON object, got {type(data).__name__}"), False
            return data, None, False

        try:
            body = response.json()
        except ValueError:
            body = {}
        code = body.get("error_code") if isinstance(body, dict) else None
        message = (body.get("error_message") if isinstance(body, dict) else None) or response.text
        error = ProviderError(f"{endpoint} failed [{code or response.status_code}]: {message}", code=code)
        return None, error, response.status_code >= 500 or code in RETRYABLE_ERROR_CODES

    async def _api_post(self, endpoint: str, payload: dict[str, Any]) -> dict[str, Any]:
        if not self.configured:
            raise ConfigurationError("PLAID_CLIENT_ID and PLAID_SECRET must be set")

        body = {"client_id": self.client_id, "secret": self.secret, **payload}
        data, error, retryable = await self._post_once(endpoint, body)
        if error is not None and retryable:
            logger.warning("[PLAID] %s; retrying once.", error)
            if self.retry_delay > 0:
                await asyncio.sleep(self.retry_delay)
            data, error, _ = await self._post_once(endpoint, body)
        if error is not None:
            raise error
        return data or {}

    async def transactions_sync(self, access_token: str, cursor: str | None, count: int) -> SyncPage:
        payload: dict[str, Any] = {
            "access_token": access_token,
            "count": count,
            "options": {"include_personal_finance_category": True},
        }
        if cursor:
            payload["cursor"] = cursor
        data = await self._api_post("transactions/sync", payload)
        return SyncPage(
            added=list(data.get("added") or []),
            modified=list(data.get("modified") or []),
            removed=list(data.get("removed") or []),
            next_cursor=data.get("next_cursor"),
            has_more=bool(data.get("has_more", False)),
        )

    async def accounts_get(self, access_token: str) -> list[dict[str, Any]]:
        data = await self._api_post("accounts/get", {"access_token": access_token})
        return list(data.get("accounts") or [])

    async def link_token_create(self, user_id: str, *, client_name: str = "Household Ledger") -> str:
        data = await self._api_post(
            "link/token/create",
            {
                "user": {"client_user_id": user_id},
                "client_name": client_name,
                "products": ["transactions"],
                "country_codes": ["US"],
                "language": "en",
            },
        )
        return data["link_token"]

    async def item_public_token_exchange(self, public_token: str) -> tuple[str, str]:
        """Returns (access_token, item_id)."""
        data = await self._api_post("item/public_token/exchange", {"public_token": public_token})
        return data["access_token"], data["item_id"]
