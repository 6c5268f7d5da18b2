"""Tests for async REST client request formation and error handling."""

from __future__ import annotations

import json
from decimal import Decimal
from typing import Any
from urllib.parse import parse_qs, urlparse

import pytest

from terminal_client.async_rest import (
    AsyncRateLimitError,
    AsyncRestClient,
    AsyncRestError,
    AsyncRestRequest,
    AsyncTransientApiError,
)
from terminal_client.auth import ApiCredentials
from terminal_client.constants import DEFAULT_ERROR_MESSAGE


class FakeResponse:
    def __init__(
        self,
        status: int,
        payload: Any = None,
        headers: dict[str, str] | None = None,
        body: str | None = None,
    ) -> None:
        self.status = status
        self._payload = payload
        self._body = body
        self.headers = headers or {}

    async def text(self) -> str:
        if self._body is not None:
            return self._body
        if self._payload is None:
            return ""
        return json.dumps(self._payload)

    async def __aenter__(self) -> "FakeResponse":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> bool:
        return False


class FakeSession:
    def __init__(self, responses: list[FakeResponse]) -> None:
        self.responses = responses
        self.requests: list[dict[str, Any]] = []

    def request(
        self,
        method: str,
        url: str,
        headers: dict[str, str] | None = None,
        timeout: Any | None = None,
    ) -> FakeResponse:
        self.requests.append(
            {"method": method, "url": url, "headers": headers or {}, "timeout": timeout}
        )
        return self.responses.pop(0)

    async def close(self) -> None:
        return None


def _query(request: dict[str, Any]) -> dict[str, str]:
    parsed = parse_qs(urlparse(request["url"]).query)
    return {key: values[0] for key, values in parsed.items()}


def _client(session: FakeSession, **kwargs: Any) -> AsyncRestClient:
    return AsyncRestClient(
        "https://terminal.example/",
        credentials=kwargs.pop(
            "credentials", ApiCredentials(api_token="tok", csrf_token="csrf")
        ),
        session=session,
        backoff_factor=0,
        **kwargs,
    )


@pytest.mark.asyncio
async def test_request_headers_include_token_and_csrf() -> None:
    session = FakeSession([FakeResponse(200, {"balances": []})])
    client = _client(session)

    await client.fetch_cached_account_balances(["main"])

    headers = session.requests[0]["headers"]
    assert headers["Accept"] == "application/json"
    assert headers["Accept-Encoding"] == "gzip"
    assert headers["Authorization"] == "Token tok"
    assert headers["X-CSRFToken"] == "csrf"
    assert client.is_authenticated


@pytest.mark.asyncio
async def test_anonymous_client_sends_no_auth_headers() -> None:
    session = FakeSession([FakeResponse(200, {"balances": []})])
    client = _client(session, credentials=None)

    await client.fetch_cached_account_balances()

    headers = session.requests[0]["headers"]
    assert "Authorization" not in headers
    assert "X-CSRFToken" not in headers
    assert not client.is_authenticated


@pytest.mark.asyncio
async def test_fetch_cached_balances_joins_account_names() -> None:
    payload = {
        "balances": [
            {
                "account_id": 7,
                "assets": [
                    {"symbol": "USDT", "amount": "100", "wallet_type": "spot"},
                    {"symbol": "BTC-PERP", "size": "-0.5", "asset_type": "position"},
                ],
            }
        ]
    }
    session = FakeSession([FakeResponse(200, payload)])
    client = _client(session)

    response = await client.fetch_cached_account_balances(["a", "b"])

    request = session.requests[0]
    assert request["method"] == "GET"
    assert urlparse(request["url"]).path == "/internal/sor/get_cached_account_balance"
    assert _query(request) == {"account_names": "a,b"}
    balance = response.balances[0]
    assert balance.account_id == "7"
    assert balance.assets[0].quantity == Decimal("100")
    assert balance.assets[1].quantity == Decimal("-0.5")
    assert balance.assets[1].is_position


@pytest.mark.asyncio
async def test_fetch_cached_balances_drops_entry_with_amount_and_size(caplog) -> None:
    payload = {
        "balances": [
            {
                "account_id": 7,
                "assets": [
                    {"symbol": "ETH", "amount": "1", "size": "2"},
                    {"symbol": "USDT", "amount": "100", "wallet_type": "spot"},
                ],
            }
        ]
    }
    client = _client(FakeSession([FakeResponse(200, payload)]))

    with caplog.at_level("WARNING", logger="orderentry.terminal_client.models"):
        response = await client.fetch_cached_account_balances(["a"])

    assets = response.balances[0].assets
    assert [entry.symbol for entry in assets] == ["USDT"]
    assert not assets[0].is_position
    assert "Dropping asset entry ETH" in caplog.text


@pytest.mark.asyncio
async def test_fetch_cached_balances_for_all_accounts_sends_empty_list() -> None:
    session = FakeSession([FakeResponse(200, {"balances": []})])
    client = _client(session)

    response = await client.fetch_cached_account_balances()

    assert session.requests[0]["url"].endswith("account_names=")
    assert response.balances == []


@pytest.mark.asyncio
async def test_get_pair_price_reads_value_keyed_by_pair() -> None:
    session = FakeSession([FakeResponse(200, {"BTC-USDT": "65000.5"})])
    client = _client(session)

    price = await client.get_pair_price("BTC-USDT", "Binance")

    assert price == Decimal("65000.5")
    assert _query(session.requests[0]) == {
        "pair": "BTC-USDT",
        "exchange_name": "Binance",
    }


@pytest.mark.asyncio
async def test_get_pair_price_missing_pair_returns_none() -> None:
    session = FakeSession([FakeResponse(200, {"ETH-USDT": "3000"})])
    client = _client(session)

    assert await client.get_pair_price("BTC-USDT") is None
    assert "exchange_name" not in _query(session.requests[0])


@pytest.mark.asyncio
async def test_convert_qty_request_formation() -> None:
    session = FakeSession(
        [FakeResponse(200, {"base_asset_qty": "0.001", "quote_asset_qty": "50"})]
    )
    client = _client(session)

    result = await client.convert_qty(
        ["a", "b"],
        "BTC-USDT",
        Decimal("50"),
        is_base_asset=False,
        pre_calculated_price=Decimal("50000"),
    )

    query = _query(session.requests[0])
    assert urlparse(session.requests[0]["url"]).path == "/internal/account/convert_qty"
    assert query == {
        "pair": "BTC-USDT",
        "accounts": "a,b",
        "pre_calculated_price": "50000",
        "quote_asset_qty": "50",
    }
    assert result.base_asset_qty == Decimal("0.001")
    assert result.quote_asset_qty == Decimal("50")


@pytest.mark.asyncio
async def test_convert_qty_to_contracts_sets_flag() -> None:
    session = FakeSession(
        [FakeResponse(200, {"base_asset_qty": "12", "quote_asset_qty": "0.1"})]
    )
    client = _client(session)

    await client.convert_qty(
        ["deribit"],
        "BTC-PERPETUAL",
        Decimal("0.1"),
        is_base_asset=True,
        convert_to_num_contracts=True,
    )

    query = _query(session.requests[0])
    assert query["convert_to_num_contracts"] == "true"
    assert query["base_asset_qty"] == "0.1"
    assert "pre_calculated_price" not in query


@pytest.mark.asyncio
async def test_get_order_form_data_builds_account_directory() -> None:
    payload = {
        "accounts": {
            "main": {"id": 1, "exchangeName": "Binance"},
            "hl": {"id": "2", "exchangeName": "Hyperliquid"},
        },
        "pairs": [],
    }
    session = FakeSession([FakeResponse(200, payload)])
    client = _client(session)

    data = await client.get_order_form_data()

    assert set(data.accounts) == {"main", "hl"}
    assert data.accounts["main"].id == "1"
    assert data.accounts["hl"].exchange_name == "Hyperliquid"
    assert data.accounts["hl"].name == "hl"


@pytest.mark.asyncio
async def test_no_content_returns_none() -> None:
    session = FakeSession([FakeResponse(204)])
    client = _client(session)

    assert await client.send(AsyncRestRequest("GET", "api/anything")) is None


@pytest.mark.asyncio
async def test_invalid_json_raises() -> None:
    session = FakeSession([FakeResponse(200, body="<html>")])
    client = _client(session)

    with pytest.raises(AsyncRestError, match="Invalid JSON"):
        await client.send(AsyncRestRequest("GET", "api/anything"))


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("payload", "expected"),
    [
        ("plain failure", "plain failure"),
        ({"error": "bad pair"}, "bad pair"),
        ({"message": "no access"}, "no access"),
        ({"errors": ["first", "second"]}, "first, second"),
        ({"errors": "single"}, "single"),
        ({}, DEFAULT_ERROR_MESSAGE),
    ],
)
async def test_error_message_extraction(payload: Any, expected: str) -> None:
    session = FakeSession([FakeResponse(400, payload)])
    client = _client(session)

    with pytest.raises(AsyncRestError) as excinfo:
        await client.send(AsyncRestRequest("GET", "api/anything"))

    assert str(excinfo.value) == expected
    assert not isinstance(excinfo.value, AsyncTransientApiError)


@pytest.mark.asyncio
async def test_rate_limit_retries_then_succeeds(monkeypatch) -> None:
    delays: list[float] = []

    async def fake_sleep(delay: float) -> None:
        delays.append(delay)

    monkeypatch.setattr("terminal_client.async_rest.asyncio.sleep", fake_sleep)
    session = FakeSession(
        [
            FakeResponse(429, {}, headers={"Retry-After": "2"}),
            FakeResponse(200, {"BTC-USDT": "1"}),
        ]
    )
    client = _client(session)

    assert await client.get_pair_price("BTC-USDT") == Decimal("1")
    assert delays == [2.0]
    assert len(session.requests) == 2


@pytest.mark.asyncio
async def test_rate_limit_gives_up_after_max_retries(monkeypatch) -> None:
    async def fake_sleep(delay: float) -> None:
        return None

    monkeypatch.setattr("terminal_client.async_rest.asyncio.sleep", fake_sleep)
    session = FakeSession([FakeResponse(429, {}) for _ in range(2)])
    client = _client(session, max_retries=1)

    with pytest.raises(AsyncRateLimitError):
        await client.send(AsyncRestRequest("GET", "api/anything"))


@pytest.mark.asyncio
async def test_server_errors_are_transient(monkeypatch) -> None:
    async def fake_sleep(delay: float) -> None:
        return None

    monkeypatch.setattr("terminal_client.async_rest.asyncio.sleep", fake_sleep)
    session = FakeSession([FakeResponse(503, {}), FakeResponse(503, {})])
    client = _client(session, max_retries=1)

    with pytest.raises(AsyncTransientApiError):
        await client.send(AsyncRestRequest("GET", "api/anything"))
    assert len(session.requests) == 2
