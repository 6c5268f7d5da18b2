"""Collaborator interfaces consumed by the order-entry core."""

from __future__ import annotations

from decimal import Decimal
from typing import Protocol, Sequence

from terminal_client.models import BalancesResponse, ConversionResult


class BalanceSource(Protocol):
    async def fetch_cached_account_balances(
        self, account_names: Sequence[str] = ()
    ) -> BalancesResponse:
        """Return balance snapshots; an empty name list means every account."""


class PriceSource(Protocol):
    async def get_pair_price(
        self, pair: str, exchange_name: str | None = None
    ) -> Decimal | None:
        """Return the current price of a pair on an exchange."""

    async def convert_qty(
        self,
        account_names: Sequence[str],
        pair: str,
        qty: Decimal,
        is_base_asset: bool,
        pre_calculated_price: Decimal | None = None,
        convert_to_num_contracts: bool = False,
    ) -> ConversionResult:
        """Convert a base or quote quantity into the other unit."""
