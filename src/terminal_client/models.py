"""Shared data models for the trading-terminal client.

Pydantic-based models for the balance, price and conversion payloads.
"""

from __future__ import annotations

import logging
from decimal import Decimal
from enum import Enum
from typing import Any, Mapping

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from terminal_client.constants import POSITION_ASSET_TYPE

LOGGER = logging.getLogger("orderentry.terminal_client.models")


class MarketType(str, Enum):
    """Market type of a trading pair."""

    SPOT = "spot"
    PERP = "perp"
    FUTURE = "future"
    DEX = "dex"


class OrderSide(str, Enum):
    """Order side enum."""

    BUY = "buy"
    SELL = "sell"


class ActiveTab(str, Enum):
    """Bottom-panel tab shown next to the order form."""

    ORDERS = "orders"
    POSITIONS = "positions"
    BALANCES = "balances"


class Account(BaseModel):
    """Exchange account from the account directory."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: str
    name: str
    exchange_name: str = Field(..., alias="exchangeName")

    @field_validator("id", mode="before")
    @classmethod
    def coerce_id(cls, v: Any) -> str:
        return str(v)


class AssetEntry(BaseModel):
    """One line item of an account balance snapshot."""

    model_config = ConfigDict(frozen=True, extra="allow")

    symbol: str
    amount: Decimal | None = None
    size: Decimal | None = None
    borrowed: Decimal = Decimal("0")
    wallet_type: str = ""
    asset_type: str | None = None
    margin_balance: Decimal | None = None
    initial_margin: Decimal | None = None
    notional: Decimal | None = None

    @field_validator(
        "amount",
        "size",
        "margin_balance",
        "initial_margin",
        "notional",
        mode="before",
    )
    @classmethod
    def validate_optional_decimal(cls, v: Any) -> Any:
        if v is None or v == "":
            return None
        return v

    @field_validator("borrowed", mode="before")
    @classmethod
    def validate_borrowed(cls, v: Any) -> Any:
        if v is None or v == "":
            return Decimal("0")
        return v

    @field_validator("wallet_type", mode="before")
    @classmethod
    def validate_wallet_type(cls, v: Any) -> str:
        if v is None:
            return ""
        return str(v)

    @model_validator(mode="after")
    def check_amount_or_size(self) -> "AssetEntry":
        if self.amount is not None and self.size is not None:
            raise ValueError(
                f"Asset entry {self.symbol} carries both amount and size; "
                "exactly one quantity field is expected"
            )
        return self

    @property
    def quantity(self) -> Decimal:
        """Return the held amount (balances) or size (positions)."""
        if self.amount is not None:
            return self.amount
        if self.size is not None:
            return self.size
        return Decimal("0")

    @property
    def net_amount(self) -> Decimal:
        """Return held quantity minus borrowed margin debt."""
        return self.quantity - self.borrowed

    @property
    def is_position(self) -> bool:
        return self.asset_type == POSITION_ASSET_TYPE


def _has_amount_and_size(entry: Any) -> bool:
    if not isinstance(entry, Mapping):
        return False
    return entry.get("amount") not in (None, "") and entry.get("size") not in (None, "")


class AccountBalance(BaseModel):
    """Balance snapshot for a single account."""

    model_config = ConfigDict(frozen=True, extra="allow")

    account_id: str
    assets: list[AssetEntry] = Field(default_factory=list)

    @field_validator("account_id", mode="before")
    @classmethod
    def coerce_account_id(cls, v: Any) -> str:
        return str(v)

    @field_validator("assets", mode="before")
    @classmethod
    def validate_assets(cls, v: Any) -> Any:
        entries = []
        for entry in v or []:
            if _has_amount_and_size(entry):
                LOGGER.warning(
                    "Dropping asset entry %s with both amount and size",
                    entry.get("symbol"),
                )
                continue
            entries.append(entry)
        return entries


class BalancesResponse(BaseModel):
    """Response of the cached account balance endpoint."""

    model_config = ConfigDict(frozen=True, extra="allow")

    balances: list[AccountBalance] = Field(default_factory=list)

    @field_validator("balances", mode="before")
    @classmethod
    def validate_balances(cls, v: Any) -> Any:
        return v or []


class TradingPair(BaseModel):
    """Trading pair reference data."""

    model_config = ConfigDict(frozen=True)

    id: str
    base: str
    quote: str
    market_type: MarketType = MarketType.SPOT
    is_contract: bool = False
    is_inverse: bool = False
    name: str | None = None
    exchanges: tuple[str, ...] = ()

    @property
    def base_identifier(self) -> str:
        """Symbol of the balance entry that sizes this pair's base leg.

        Contracts are held under the pair id rather than the underlying.
        """
        return self.id if self.is_contract else self.base


class ConversionResult(BaseModel):
    """Result of a base/quote quantity conversion."""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    base_asset_qty: Decimal
    quote_asset_qty: Decimal
    raw_payload: Mapping[str, Any] = Field(default_factory=dict)


class OrderFormData(BaseModel):
    """Reference data needed to populate the order form."""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    accounts: dict[str, Account] = Field(default_factory=dict)
    raw_payload: Mapping[str, Any] = Field(default_factory=dict)
