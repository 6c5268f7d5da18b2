"""Async REST client implementation for the trading-terminal backend."""

from __future__ import annotations

import asyncio
import json
import random
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Mapping, Sequence
from urllib.parse import urlencode

import aiohttp

from terminal_client.auth import ApiCredentials, TokenAuth
from terminal_client.constants import (
    CACHED_BALANCES_PATH,
    CONVERT_QTY_PATH,
    DEFAULT_ERROR_MESSAGE,
    ORDER_FORM_DATA_PATH,
    PAIR_PRICE_PATH,
)
from terminal_client.models import (
    Account,
    BalancesResponse,
    ConversionResult,
    OrderFormData,
)
from terminal_client.pricing import format_quantity, to_decimal


@dataclass
class AsyncRestRequest:
    method: str
    path: str
    params: Mapping[str, Any] | None = None


class AsyncRestError(Exception):
    """Base exception for async REST client errors."""


class AsyncRateLimitError(AsyncRestError):
    """Raised when the API indicates that the rate limit has been exceeded."""

    def __init__(self, message: str, retry_after: float | None = None) -> None:
        super().__init__(message)
        self.retry_after = retry_after


class AsyncTransientApiError(AsyncRestError):
    """Raised for transient REST errors that may succeed on retry."""


class AsyncRestClient:
    """Async REST client with retry and rate-limit handling."""

    def __init__(
        self,
        base_url: str,
        credentials: ApiCredentials | None = None,
        timeout: float = 10.0,
        max_retries: int = 3,
        backoff_factor: float = 0.5,
        session: aiohttp.ClientSession | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.auth = TokenAuth(credentials)
        self.timeout = timeout
        self.max_retries = max_retries
        self.backoff_factor = backoff_factor
        self._session = session
        self._owns_session = session is None

    @property
    def is_authenticated(self) -> bool:
        return self.auth.is_authenticated

    def build_url(self, path: str, params: Mapping[str, Any] | None = None) -> str:
        url = f"{self.base_url}/{path.lstrip('/')}"
        if params:
            url = f"{url}?{urlencode(params)}"
        return url

    async def send(self, request: AsyncRestRequest) -> Any:
        attempts = 0
        while True:
            try:
                return await self._send_once(request)
            except AsyncRateLimitError as exc:
                attempts += 1
                if attempts > self.max_retries:
                    raise
                delay = exc.retry_after or self._compute_backoff(attempts)
                await asyncio.sleep(delay)
            except AsyncTransientApiError:
                attempts += 1
                if attempts > self.max_retries:
                    raise
                await asyncio.sleep(self._compute_backoff(attempts))

    async def _send_once(self, request: AsyncRestRequest) -> Any:
        url = self.build_url(request.path, request.params)
        headers = self.auth.build_headers()
        session = await self._ensure_session()
        timeout = aiohttp.ClientTimeout(total=self.timeout)
        try:
            async with session.request(
                request.method.upper(),
                url,
                headers=headers,
                timeout=timeout,
            ) as response:
                status = response.status
                retry_after_header = response.headers.get("Retry-After")
                payload = await response.text()
        except aiohttp.ClientError as exc:
            raise AsyncTransientApiError("Network error while contacting API") from exc
        except asyncio.TimeoutError as exc:
            raise AsyncTransientApiError("Timed out while contacting API") from exc

        if status == 429:
            retry_after = self._parse_retry_after(retry_after_header)
            raise AsyncRateLimitError("Rate limit exceeded", retry_after=retry_after)
        if status in {500, 502, 503, 504}:
            raise AsyncTransientApiError(f"Transient HTTP error {status}")
        if status == 204:
            return None
        try:
            data = json.loads(payload) if payload else None
        except json.JSONDecodeError as exc:
            raise AsyncRestError(f"Invalid JSON response: {exc.msg}") from exc
        if status >= 400:
            raise AsyncRestError(self._extract_error_message(data))
        return data

    async def close(self) -> None:
        if self._session is not None and self._owns_session:
            await self._session.close()
            self._session = None
            self._owns_session = False

    async def __aenter__(self) -> "AsyncRestClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    async def _ensure_session(self) -> aiohttp.ClientSession:
        if self._session is None:
            timeout = aiohttp.ClientTimeout(total=self.timeout)
            self._session = aiohttp.ClientSession(timeout=timeout)
        return self._session

    def _compute_backoff(self, attempt: int) -> float:
        base = self.backoff_factor * (2 ** (attempt - 1))
        return base + random.uniform(0, base)

    def _parse_retry_after(self, header_value: str | None) -> float | None:
        if header_value is None:
            return None
        try:
            return float(header_value)
        except ValueError:
            return None

    def _extract_error_message(self, payload: Any) -> str:
        if isinstance(payload, str) and payload:
            return payload
        if isinstance(payload, dict):
            for key in ("error", "message"):
                if payload.get(key):
                    return str(payload[key])
            errors = payload.get("errors")
            if errors:
                if isinstance(errors, list):
                    return ", ".join(str(item) for item in errors)
                return str(errors)
        return DEFAULT_ERROR_MESSAGE

    async def fetch_cached_account_balances(
        self, account_names: Sequence[str] = ()
    ) -> BalancesResponse:
        """Return cached balances; an empty name list selects every account."""
        response = await self.send(
            AsyncRestRequest(
                method="GET",
                path=CACHED_BALANCES_PATH,
                params={"account_names": ",".join(account_names)},
            )
        )
        return BalancesResponse.model_validate(response or {})

    async def get_pair_price(
        self, pair: str, exchange_name: str | None = None
    ) -> Decimal | None:
        params: dict[str, Any] = {"pair": pair}
        if exchange_name:
            params["exchange_name"] = exchange_name
        response = await self.send(
            AsyncRestRequest(method="GET", path=PAIR_PRICE_PATH, params=params)
        )
        if not isinstance(response, dict):
            return None
        return to_decimal(response.get(pair))

    async def convert_qty(
        self,
        account_names: Sequence[str],
        pair: str,
        qty: Decimal,
        is_base_asset: bool,
        pre_calculated_price: Decimal | None = None,
        convert_to_num_contracts: bool = False,
    ) -> ConversionResult:
        params: dict[str, Any] = {"pair": pair}
        if account_names:
            params["accounts"] = ",".join(account_names)
        if pre_calculated_price:
            params["pre_calculated_price"] = format_quantity(pre_calculated_price)
        if convert_to_num_contracts:
            params["convert_to_num_contracts"] = "true"
        qty_key = "base_asset_qty" if is_base_asset else "quote_asset_qty"
        params[qty_key] = format_quantity(Decimal(str(qty)))
        response = await self.send(
            AsyncRestRequest(method="GET", path=CONVERT_QTY_PATH, params=params)
        )
        payload = response or {}
        return ConversionResult(
            base_asset_qty=to_decimal(payload.get("base_asset_qty")) or Decimal("0"),
            quote_asset_qty=to_decimal(payload.get("quote_asset_qty")) or Decimal("0"),
            raw_payload=payload,
        )

    async def get_order_form_data(self) -> OrderFormData:
        response = await self.send(
            AsyncRestRequest(method="GET", path=ORDER_FORM_DATA_PATH)
        )
        payload = response or {}
        accounts = {
            str(name): Account.model_validate({"name": name, **item})
            for name, item in (payload.get("accounts") or {}).items()
        }
        return OrderFormData(accounts=accounts, raw_payload=payload)
