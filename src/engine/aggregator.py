"""Cross-account balance aggregation.

Pure functions over a balance lookup (normally the BalanceCache) and the
current selection. Missing accounts, snapshots or pairs contribute zero;
nothing here raises on absent data.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Iterator, Mapping, Protocol, Sequence

from engine.exchange_rules import ZERO, rules_for
from terminal_client.constants import USDT
from terminal_client.models import Account, AssetEntry, TradingPair


class BalanceLookup(Protocol):
    def get(self, account_id: str) -> Sequence[AssetEntry] | None: ...


@dataclass(frozen=True)
class AggregationContext:
    selected_accounts: Sequence[str] = ()
    selected_pair: TradingPair | None = None
    accounts: Mapping[str, Account] = field(default_factory=dict)

    @property
    def market_type(self) -> str | None:
        if self.selected_pair is None:
            return None
        return self.selected_pair.market_type.value


def _selected_snapshots(
    balances: BalanceLookup, context: AggregationContext
) -> Iterator[tuple[Account, Sequence[AssetEntry]]]:
    for account_name in context.selected_accounts or ():
        account = context.accounts.get(account_name)
        if account is None:
            continue
        assets = balances.get(account.id)
        if not assets:
            continue
        yield account, assets


def calculate_asset_balance(
    symbol: str, balances: BalanceLookup, context: AggregationContext
) -> Decimal:
    """Sum amount minus borrowed of ``symbol`` across the selected accounts.

    The result is signed: a negative value means the accounts are net short.
    """
    total = ZERO
    market_type = context.market_type
    for account, assets in _selected_snapshots(balances, context):
        rules = rules_for(account.exchange_name)
        for entry in assets:
            if not rules.include_in_asset_balance(entry, symbol, market_type):
                continue
            if entry.symbol == symbol:
                total += entry.net_amount
    return total


def calculate_margin_balance(
    symbol: str, balances: BalanceLookup, context: AggregationContext
) -> Decimal:
    """Sum the margin available in ``symbol`` across the selected accounts."""
    total = ZERO
    market_type = context.market_type
    for account, assets in _selected_snapshots(balances, context):
        rules = rules_for(account.exchange_name)
        account_total = rules.account_margin_balance(
            assets, symbol, context.selected_pair
        )
        if account_total is not None:
            total += account_total
            continue
        for entry in assets:
            if not rules.include_in_margin_balance(entry, symbol, market_type):
                continue
            if entry.symbol == symbol:
                total += rules.margin_contribution(entry, market_type)
    return total


def calculate_current_balance(
    balances: BalanceLookup, context: AggregationContext
) -> Decimal:
    """Balance of the selected pair's base leg (the contract itself for contracts)."""
    if context.selected_pair is None:
        return ZERO
    return calculate_asset_balance(
        context.selected_pair.base_identifier, balances, context
    )


def calculate_usdt_balance(
    balances: BalanceLookup, context: AggregationContext
) -> Decimal:
    return calculate_asset_balance(USDT, balances, context)
