"""Per-exchange balance accounting rules.

Exchanges model margin differently (cross vs. isolated, unified wallet vs.
per-market sub-wallets), so each exchange gets a rules object that decides
which balance entries count toward an asset or margin balance and how much
each one contributes. Exchanges without special handling use ExchangeRules.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Sequence

from terminal_client.constants import (
    HYPERLIQUID,
    PACIFICA,
    PARADEX,
    SPOT_WALLET,
    UNIFIED_WALLET,
    USDC,
    USDH,
)
from terminal_client.models import AssetEntry, MarketType, TradingPair

ZERO = Decimal("0")


def passes_wallet_filter(entry: AssetEntry, market_type: str | None) -> bool:
    """Unified wallets always count; otherwise the wallet must match the market."""
    if entry.wallet_type == UNIFIED_WALLET or not market_type:
        return True
    return entry.wallet_type == market_type


def preferred_margin(entry: AssetEntry) -> Decimal:
    """Use the reported margin balance when positive, else net amount.

    A zero or negative margin_balance is treated as missing.
    """
    margin_balance = entry.margin_balance or ZERO
    if margin_balance > 0:
        return margin_balance
    return entry.net_amount


def is_perp_wallet(entry: AssetEntry) -> bool:
    return "perp" in entry.wallet_type.lower()


class ExchangeRules:
    """Accounting shared by exchanges that tag wallets by market type."""

    def include_in_asset_balance(
        self, entry: AssetEntry, symbol: str, market_type: str | None
    ) -> bool:
        return passes_wallet_filter(entry, market_type)

    def account_margin_balance(
        self,
        assets: Sequence[AssetEntry],
        symbol: str,
        pair: TradingPair | None,
    ) -> Decimal | None:
        """Return a complete margin figure for the account, or None.

        None means the per-entry rules below apply.
        """
        return None

    def include_in_margin_balance(
        self, entry: AssetEntry, symbol: str, market_type: str | None
    ) -> bool:
        return passes_wallet_filter(entry, market_type)

    def margin_contribution(
        self, entry: AssetEntry, market_type: str | None
    ) -> Decimal:
        return preferred_margin(entry)


class UntaggedWalletRules(ExchangeRules):
    """Exchanges whose balances carry no market-type wallet tag."""

    def include_in_margin_balance(
        self, entry: AssetEntry, symbol: str, market_type: str | None
    ) -> bool:
        return True


class HyperliquidRules(ExchangeRules):
    """Hyperliquid keeps separate spot, perp and perp-dex wallets.

    USDH is usable from both the spot and perp wallets, spot margin includes
    the notional of the pair's base holdings, and isolated positions lock
    their initial margin outside the wallet balance.
    """

    def include_in_asset_balance(
        self, entry: AssetEntry, symbol: str, market_type: str | None
    ) -> bool:
        if super().include_in_asset_balance(entry, symbol, market_type):
            return True
        return (
            symbol == USDH
            and entry.symbol == USDH
            and (entry.wallet_type == SPOT_WALLET or is_perp_wallet(entry))
        )

    def account_margin_balance(
        self,
        assets: Sequence[AssetEntry],
        symbol: str,
        pair: TradingPair | None,
    ) -> Decimal | None:
        market_type = pair.market_type.value if pair else None
        if market_type == MarketType.SPOT.value and symbol == USDC:
            return self._spot_quote_margin(assets, pair)
        if symbol == USDH:
            return self._usdh_margin(assets)
        return None

    def include_in_margin_balance(
        self, entry: AssetEntry, symbol: str, market_type: str | None
    ) -> bool:
        if super().include_in_margin_balance(entry, symbol, market_type):
            return True
        return "perpdex-" in entry.wallet_type

    def margin_contribution(
        self, entry: AssetEntry, market_type: str | None
    ) -> Decimal:
        contribution = preferred_margin(entry)
        if entry.is_position and market_type == MarketType.PERP.value:
            contribution += entry.initial_margin or ZERO
        return contribution

    def _spot_quote_margin(
        self, assets: Sequence[AssetEntry], pair: TradingPair | None
    ) -> Decimal:
        quote_balance = ZERO
        base_notional = ZERO
        for entry in assets:
            if not passes_wallet_filter(entry, MarketType.SPOT.value):
                continue
            if entry.symbol == USDC:
                quote_balance += entry.net_amount
            if (
                pair is not None
                and entry.symbol == pair.base
                and entry.wallet_type == SPOT_WALLET
            ):
                base_notional += abs(entry.notional or ZERO)
        return quote_balance + base_notional

    def _usdh_margin(self, assets: Sequence[AssetEntry]) -> Decimal:
        total = ZERO
        for entry in assets:
            if entry.symbol != USDH:
                continue
            perp_wallet = is_perp_wallet(entry)
            if entry.wallet_type not in (UNIFIED_WALLET, SPOT_WALLET) and not perp_wallet:
                continue
            total += preferred_margin(entry)
            if perp_wallet and entry.is_position:
                initial_margin = entry.initial_margin or ZERO
                if initial_margin > 0:
                    total += initial_margin
        return total


DEFAULT_RULES = ExchangeRules()

EXCHANGE_RULES: dict[str, ExchangeRules] = {
    HYPERLIQUID: HyperliquidRules(),
    PACIFICA: UntaggedWalletRules(),
    PARADEX: UntaggedWalletRules(),
}


def rules_for(exchange_name: str) -> ExchangeRules:
    return EXCHANGE_RULES.get(exchange_name, DEFAULT_RULES)
