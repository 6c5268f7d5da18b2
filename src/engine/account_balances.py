"""Balance read/derive API for order-entry surfaces."""

from __future__ import annotations

import logging
from decimal import Decimal
from typing import Mapping, Sequence

from engine.aggregator import (
    AggregationContext,
    calculate_asset_balance,
    calculate_current_balance,
    calculate_margin_balance,
    calculate_usdt_balance,
)
from engine.balance_poller import BalancePoller
from engine.balances import BalanceCache
from engine.state import SelectionState
from terminal_client.models import Account, ActiveTab, AssetEntry, OrderSide, TradingPair

LOGGER = logging.getLogger("orderentry.engine.account_balances")


class AccountBalanceService:
    """Owns the balance cache and poller for one order-entry session.

    Aggregation helpers default to the current selection; any of
    ``selected_accounts``, ``selected_pair`` or ``accounts`` can be overridden
    per call.
    """

    def __init__(
        self,
        poller: BalancePoller,
        accounts: Mapping[str, Account] | None = None,
        selection: SelectionState | None = None,
        *,
        active_tab: ActiveTab = ActiveTab.ORDERS,
        is_authenticated: bool = False,
    ) -> None:
        self.poller = poller
        self.accounts: dict[str, Account] = dict(accounts or {})
        self.selection = selection or SelectionState()
        self._active_tab = ActiveTab(active_tab)
        self._is_authenticated = is_authenticated

    @property
    def cache(self) -> BalanceCache:
        return self.poller.cache

    @property
    def balances(self) -> dict[str, tuple[AssetEntry, ...]]:
        return self.cache.snapshot()

    @property
    def is_balance_loading(self) -> bool:
        return self.cache.is_loading

    @property
    def active_tab(self) -> ActiveTab:
        return self._active_tab

    @property
    def is_authenticated(self) -> bool:
        return self._is_authenticated

    async def start(self) -> None:
        await self._restart_polling()

    async def close(self) -> None:
        await self.poller.close()

    async def refresh_balances(self, account_names: Sequence[str] = ()) -> bool:
        return await self.poller.refresh(account_names)

    async def select_accounts(self, account_names: Sequence[str]) -> None:
        names = list(account_names)
        if names == self.selection.selected_accounts:
            return
        self.selection.selected_accounts = names
        await self._restart_polling()

    async def set_active_tab(self, tab: ActiveTab) -> None:
        tab = ActiveTab(tab)
        if tab == self._active_tab:
            return
        self._active_tab = tab
        await self._restart_polling()

    async def set_authenticated(self, is_authenticated: bool) -> None:
        if is_authenticated == self._is_authenticated:
            return
        self._is_authenticated = is_authenticated
        await self._restart_polling()

    def select_pair(self, pair: TradingPair | None) -> None:
        self.selection.selected_pair = pair

    def select_side(self, side: OrderSide) -> None:
        self.selection.selected_side = OrderSide(side)

    async def _restart_polling(self) -> None:
        LOGGER.debug(
            "Balance context changed: accounts=%s tab=%s authenticated=%s",
            self.selection.selected_accounts,
            self._active_tab.value,
            self._is_authenticated,
        )
        await self.poller.restart(
            self.selection.selected_accounts,
            self._active_tab,
            self._is_authenticated,
        )

    def context(
        self,
        *,
        selected_accounts: Sequence[str] | None = None,
        selected_pair: TradingPair | None = None,
        accounts: Mapping[str, Account] | None = None,
    ) -> AggregationContext:
        return AggregationContext(
            selected_accounts=tuple(
                selected_accounts
                if selected_accounts is not None
                else self.selection.selected_accounts
            ),
            selected_pair=selected_pair or self.selection.selected_pair,
            accounts=accounts if accounts is not None else self.accounts,
        )

    def calculate_asset_balance(
        self,
        symbol: str,
        *,
        selected_accounts: Sequence[str] | None = None,
        selected_pair: TradingPair | None = None,
        accounts: Mapping[str, Account] | None = None,
    ) -> Decimal:
        context = self.context(
            selected_accounts=selected_accounts,
            selected_pair=selected_pair,
            accounts=accounts,
        )
        return calculate_asset_balance(symbol, self.cache, context)

    def calculate_margin_balance(
        self,
        symbol: str,
        *,
        selected_accounts: Sequence[str] | None = None,
        selected_pair: TradingPair | None = None,
        accounts: Mapping[str, Account] | None = None,
    ) -> Decimal:
        context = self.context(
            selected_accounts=selected_accounts,
            selected_pair=selected_pair,
            accounts=accounts,
        )
        return calculate_margin_balance(symbol, self.cache, context)

    def get_current_balance(
        self,
        *,
        selected_accounts: Sequence[str] | None = None,
        selected_pair: TradingPair | None = None,
        accounts: Mapping[str, Account] | None = None,
    ) -> Decimal:
        context = self.context(
            selected_accounts=selected_accounts,
            selected_pair=selected_pair,
            accounts=accounts,
        )
        return calculate_current_balance(self.cache, context)

    def get_usdt_balance(
        self,
        *,
        selected_accounts: Sequence[str] | None = None,
        selected_pair: TradingPair | None = None,
        accounts: Mapping[str, Account] | None = None,
    ) -> Decimal:
        context = self.context(
            selected_accounts=selected_accounts,
            selected_pair=selected_pair,
            accounts=accounts,
        )
        return calculate_usdt_balance(self.cache, context)
