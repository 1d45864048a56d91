from typing import Any
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

from household_ledger.errors import ConfigurationError, ProviderError
from household_ledger.integration.plaid import PlaidClient


def _response(status_code: int, body: dict[str, Any]) -> MagicMock:
    response = MagicMock()
    response.status_code = status_code
    response.json.return_value = body
    response.text = str(body)
    return response


def _client(*responses: Any) -> tuple[PlaidClient, AsyncMock]:
    http = AsyncMock()
    http.is_closed = False
    http.post = AsyncMock(side_effect=list(responses))
    plaid = PlaidClient(client_id="cid", secret="sec", environment="sandbox", client=http, retry_delay=0)
    return plaid, http


@pytest.mark.anyio
async def test_transactions_sync_sends_credentials_and_cursor() -> None:
    plaid, http = _client(
        _response(
            200,
            {
                "added": [{"transaction_id": "t1"}],
                "modified": [],
                "removed": [{"transaction_id": "t0"}],
                "next_cursor": "c1",
                "has_more": True,
            },
        )
    )
    page = await plaid.transactions_sync("access-1", "c0", 100)

    assert page.added == [{"transaction_id": "t1"}]
    assert page.removed == [{"transaction_id": "t0"}]
    assert page.next_cursor == "c1"
    assert page.has_more is True

    url = http.post.call_args.args[0]
    body = http.post.call_args.kwargs["json"]
    assert url == "https://sandbox.plaid.com/transactions/sync"
    assert body["client_id"] == "cid"
    assert body["secret"] == "sec"
    assert body["cursor"] == "c0"
    assert body["count"] == 100


@pytest.mark.anyio
async def test_first_sync_omits_cursor() -> None:
    plaid, http = _client(_response(200, {"next_cursor": "c1", "has_more": False}))
    await plaid.transactions_sync("access-1", None, 500)
    assert "cursor" not in http.post.call_args.kwargs["json"]


@pytest.mark.anyio
async def test_retryable_error_is_retried_once() -> None:
    plaid, http = _client(
        _response(429, {"error_code": "RATE_LIMIT_EXCEEDED", "error_message": "slow down"}),
        _response(200, {"accounts": [{"account_id": "a1"}]}),
    )
    accounts = await plaid.accounts_get("access-1")
    assert accounts == [{"account_id": "a1"}]
    assert http.post.await_count == 2


@pytest.mark.anyio
async def test_second_failure_raises_provider_error() -> None:
    plaid, http = _client(
        httpx.ConnectError("connection refused"),
        _response(500, {"error_code": "INTERNAL_SERVER_ERROR", "error_message": "oops"}),
    )
    with pytest.raises(ProviderError) as exc_info:
        await plaid.transactions_sync("access-1", None, 10)
    assert exc_info.value.code == "INTERNAL_SERVER_ERROR"
    assert http.post.await_count == 2


@pytest.mark.anyio
async def test_client_errors_are_not_retried() -> None:
    plaid, http = _client(_response(400, {"error_code": "INVALID_ACCESS_TOKEN", "error_message": "bad token"}))
    with pytest.raises(ProviderError) as exc_info:
        await plaid.accounts_get("access-1")
    assert exc_info.value.code == "INVALID_ACCESS_TOKEN"
    assert http.post.await_count == 1


def _garbled_response() -> MagicMock:
    response = MagicMock()
    response.status_code = 200
    response.json.side_effect = ValueError("Expecting value: line 1 column 1 (char 0)")
    response.text = "<html>gateway hiccup</html>"
    return response


@pytest.mark.anyio
async def test_non_json_success_body_raises_provider_error() -> None:
    plaid, http = _client(_garbled_response(), _garbled_response())
    with pytest.raises(ProviderError, match="not JSON"):
        await plaid.transactions_sync("access-1", None, 10)
    assert http.post.await_count == 2


@pytest.mark.anyio
async def test_non_object_success_body_raises_provider_error() -> None:
    response = _response(200, {})
    response.json.return_value = ["added"]
    plaid, http = _client(response)
    with pytest.raises(ProviderError, match="expected a JSON object"):
        await plaid.transactions_sync("access-1", None, 10)
    assert http.post.await_count == 1


@pytest.mark.anyio
async def test_exchange_returns_token_and_item() -> None:
    plaid, _ = _client(_response(200, {"access_token": "access-sandbox-x", "item_id": "item-x"}))
    assert await plaid.item_public_token_exchange("public-1") == ("access-sandbox-x", "item-x")


@pytest.mark.anyio
async def test_unconfigured_client_raises() -> None:
    plaid = PlaidClient(client_id="", secret="", client=AsyncMock())
    plaid.client_id = None
    plaid.secret = None
    with pytest.raises(ConfigurationError):
        await plaid.link_token_create("alice")


def test_unknown_environment_falls_back_to_sandbox() -> None:
    plaid = PlaidClient(client_id="cid", secret="sec", environment="moon")
    assert plaid.base_url == "https://sandbox.plaid.com"
