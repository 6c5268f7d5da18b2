"""Base/quote quantity reconciliation for the order form.

The user types into one of two fields (base or quote quantity) or commits a
percentage slider. The reconciler converts the edited value into the other
unit through the backend's conversion endpoint and refreshes the percentage
sliders, without ever writing into the field the user is editing.

Phases:

    IDLE            nothing pending
    EDITING_BASE    base edited, conversion scheduled
    EDITING_QUOTE   quote edited, conversion scheduled
    RECONCILING     one conversion in flight; further edits are coalesced
                    into a single follow-up pass
"""

from __future__ import annotations

import asyncio
import logging
from decimal import Decimal
from enum import Enum
from typing import Any

from engine.account_balances import AccountBalanceService
from engine.price_tracker import PairPriceTracker
from engine.sources import PriceSource
from engine.state import (
    BASE_QTY_PLACEHOLDER,
    QUOTE_QTY_PLACEHOLDER,
    QuantityField,
    QuantityState,
    ReconcilePhase,
)
from terminal_client.constants import DERIBIT, resolve_exchange_name
from terminal_client.models import MarketType, TradingPair
from terminal_client.pricing import (
    format_quantity,
    fraction_of,
    parse_quantity_input,
    percentage_of,
    smart_round,
    to_decimal,
)

LOGGER = logging.getLogger("orderentry.engine.quantity")

NO_PRICE_MESSAGE = "No price to convert quote to base quantity"
DEFAULT_DEBOUNCE = 0.25

ZERO = Decimal("0")


class QuantityEvent(str, Enum):
    EDIT = "edit"
    SLIDER_COMMIT = "slider_commit"
    CONVERSION_STARTED = "conversion_started"
    CONVERSION_FINISHED = "conversion_finished"
    RESET = "reset"


class QuantityReconciler:
    """Keeps base quantity, quote quantity and both sliders consistent."""

    def __init__(
        self,
        balances: AccountBalanceService,
        prices: PairPriceTracker,
        converter: PriceSource,
        *,
        leverage: Decimal | int = 1,
        debounce: float = DEFAULT_DEBOUNCE,
        use_pair_name: bool = False,
    ) -> None:
        self.balances = balances
        self.prices = prices
        self.converter = converter
        self.leverage = Decimal(str(leverage))
        self.debounce = debounce
        # Option pairs are addressed by name rather than id.
        self.use_pair_name = use_pair_name
        self.state = QuantityState()
        self.slider_dragging = False
        self._task: asyncio.Task[None] | None = None
        self._rerun = False
        self._waiting = False
        self._prefetched_price: Decimal | None = None

    # -- selection helpers -------------------------------------------------

    @property
    def pair(self) -> TradingPair | None:
        return self.balances.selection.selected_pair

    def _pair_name(self, pair: TradingPair) -> str:
        if self.use_pair_name and pair.name:
            return pair.name
        return pair.id

    def _base_asset(self, pair: TradingPair) -> str:
        return self._pair_name(pair) if pair.is_contract else pair.base

    def _selected_accounts(self):
        accounts = self.balances.accounts
        for name in self.balances.selection.selected_accounts:
            account = accounts.get(name)
            if account is not None:
                yield account

    def _account_names(self) -> list[str]:
        return [account.name for account in self._selected_accounts()]

    def _exchange_names(self) -> list[str]:
        return [
            resolve_exchange_name(account.exchange_name)
            for account in self._selected_accounts()
        ]

    # -- balances and percentages -----------------------------------------

    def total_base_asset(self) -> Decimal:
        pair = self.pair
        if pair is None:
            return ZERO
        return abs(self.balances.calculate_asset_balance(self._base_asset(pair)))

    def total_quote_asset(self, price: Decimal | None) -> Decimal:
        """Quote-denominated buying power, including leverage on perps."""
        pair = self.pair
        if pair is None:
            return ZERO
        if not pair.is_inverse:
            balance = self.balances.calculate_asset_balance(pair.quote)
        else:
            balance = self.balances.calculate_asset_balance(pair.base) * (price or ZERO)

        if pair.market_type == MarketType.PERP and self.leverage > 1 and balance > 0:
            margin_balance = self.balances.calculate_margin_balance(pair.quote)
            if margin_balance > 0:
                balance = margin_balance * self.leverage
            else:
                balance *= self.leverage
        return balance

    def calculate_current_base_percentage(self) -> Decimal:
        if self.pair is None or not self.state.base_qty:
            return ZERO
        return percentage_of(self.state.base_qty, self.total_base_asset())

    def calculate_current_quote_percentage(self) -> Decimal:
        if self.pair is None or not self.state.quote_qty:
            return ZERO
        price = self.prices.last_price
        if not price:
            return ZERO
        total = self.total_quote_asset(price)
        if total <= 0:
            return ZERO
        return percentage_of(self.state.quote_qty, total)

    def _update_percentages(
        self, value: Decimal, converted: Decimal, is_base: bool, price: Decimal
    ) -> None:
        base_qty = value if is_base else converted
        quote_qty = converted if is_base else value
        total_base = self.total_base_asset()
        total_quote = self.total_quote_asset(price)
        self.state.base_percentage = (
            percentage_of(base_qty, total_base) if total_base > 0 else ZERO
        )
        self.state.quote_percentage = (
            percentage_of(quote_qty, total_quote) if total_quote > 0 else ZERO
        )

    # -- state machine -----------------------------------------------------

    def priority_field(self) -> tuple[QuantityField, Decimal] | None:
        """Pick the authoritative field for the next conversion."""
        state = self.state
        last = state.last_manually_entered_field
        if last is not None and state.value_of(last):
            return last, state.value_of(last)
        if state.base_qty and not state.quote_qty:
            return QuantityField.BASE, state.base_qty
        if state.quote_qty and not state.base_qty:
            return QuantityField.QUOTE, state.quote_qty
        # Both populated with unknown origin: converting either would clobber the other.
        return None

    def _transition(
        self, event: QuantityEvent, quantity_field: QuantityField | None = None
    ) -> None:
        state = self.state
        if event is QuantityEvent.RESET:
            state.phase = ReconcilePhase.IDLE
            state.last_manually_entered_field = None
            state.is_conversion_in_progress = False
            state.converted_qty_loading = False
            self._rerun = False
        elif event in (QuantityEvent.EDIT, QuantityEvent.SLIDER_COMMIT):
            state.last_manually_entered_field = quantity_field
            if state.phase is ReconcilePhase.RECONCILING:
                self._rerun = True
            else:
                state.phase = ReconcilePhase.editing(quantity_field)
        elif event is QuantityEvent.CONVERSION_STARTED:
            state.phase = ReconcilePhase.RECONCILING
            state.is_conversion_in_progress = True
            state.converted_qty_loading = True
            state.last_manually_entered_field = None
        elif event is QuantityEvent.CONVERSION_FINISHED:
            state.is_conversion_in_progress = False
            state.converted_qty_loading = False
            pending = state.last_manually_entered_field
            if pending is None:
                state.phase = ReconcilePhase.IDLE
            else:
                state.phase = ReconcilePhase.editing(pending)

    def _may_write(self, quantity_field: QuantityField) -> bool:
        """A field the user touched since the conversion started is off limits."""
        return self.state.last_manually_entered_field is not quantity_field

    # -- user input --------------------------------------------------------

    def handle_base_qty_on_change(self, value: Any) -> None:
        self._handle_qty_change(QuantityField.BASE, value)

    def handle_quote_qty_on_change(self, value: Any) -> None:
        self._handle_qty_change(QuantityField.QUOTE, value)

    def _handle_qty_change(self, quantity_field: QuantityField, value: Any) -> None:
        state = self.state
        numeric = parse_quantity_input(value)
        if numeric is None:
            if quantity_field is QuantityField.BASE:
                state.base_qty = None
                state.quote_qty_placeholder = QUOTE_QTY_PLACEHOLDER
            else:
                state.quote_qty = None
                state.base_qty_placeholder = BASE_QTY_PLACEHOLDER
            return

        if quantity_field is QuantityField.BASE:
            state.base_qty = numeric
            if not state.quote_qty:
                state.quote_qty = None
        else:
            state.quote_qty = numeric
            if not state.base_qty:
                state.base_qty = None
        state.conversion_error = None
        self._transition(QuantityEvent.EDIT, quantity_field)
        if not self.slider_dragging:
            self._schedule(self.debounce)

    async def on_base_percentage_change_commit(self, new_value: Any) -> None:
        pair = self.pair
        if pair is None:
            return
        quantity = fraction_of(self.total_base_asset(), new_value)
        self.state.base_qty = quantity
        self.state.quote_qty = None
        self.state.base_percentage = to_decimal(new_value) or ZERO
        self._transition(QuantityEvent.SLIDER_COMMIT, QuantityField.BASE)
        self._schedule(0.0)

    async def on_quote_percentage_change_commit(self, new_value: Any) -> None:
        pair = self.pair
        if pair is None:
            return
        price = await self.fetch_pair_price() if pair.is_inverse else None
        quantity = fraction_of(self.total_quote_asset(price), new_value)
        self.state.quote_qty = quantity
        self.state.base_qty = None
        self.state.quote_percentage = to_decimal(new_value) or ZERO
        self._prefetched_price = price
        self._transition(QuantityEvent.SLIDER_COMMIT, QuantityField.QUOTE)
        self._schedule(0.0)

    def begin_slider_drag(self) -> None:
        self.slider_dragging = True

    def end_slider_drag(self) -> None:
        self.slider_dragging = False

    # -- reconciliation ----------------------------------------------------

    def _schedule(self, delay: float) -> None:
        task = self._task
        if task is not None and not task.done():
            if not self._waiting:
                # Conversion in flight; the rerun flag picks the edit up.
                return
            task.cancel()
        self._waiting = True
        self._task = asyncio.create_task(self._reconcile(delay))

    async def _reconcile(self, delay: float) -> None:
        if delay:
            await asyncio.sleep(delay)
        self._waiting = False
        while True:
            self._rerun = False
            priority = self.priority_field() if self.pair is not None else None
            if priority is None:
                self.state.last_manually_entered_field = None
                self._transition(QuantityEvent.CONVERSION_FINISHED)
                return
            quantity_field, value = priority
            price, self._prefetched_price = self._prefetched_price, None
            await self.convert(value, quantity_field is QuantityField.BASE, price)
            if not self._rerun:
                return

    async def fetch_pair_price(self) -> Decimal | None:
        pair = self.pair
        exchange_names = self._exchange_names()
        return await self.prices.get_price(
            pair,
            exchange_names[0] if exchange_names else None,
            pair_name=self._pair_name(pair) if pair else None,
            is_authenticated=self.balances.is_authenticated,
        )

    async def convert(
        self,
        value: Decimal,
        is_base: bool,
        pre_fetched_price: Decimal | None = None,
    ) -> None:
        """Convert ``value`` into the other unit and update placeholders."""
        pair = self.pair
        if not value or pair is None:
            return
        authoritative = QuantityField.BASE if is_base else QuantityField.QUOTE
        dependent = authoritative.other
        state = self.state

        self._transition(QuantityEvent.CONVERSION_STARTED, authoritative)
        try:
            price = pre_fetched_price or await self.fetch_pair_price()
            if not price:
                state.conversion_error = NO_PRICE_MESSAGE
                return

            pair_name = self._pair_name(pair)
            account_names = self._account_names()
            try:
                result = await self.converter.convert_qty(
                    account_names, pair_name, value, is_base, price
                )
                converted = result.quote_asset_qty if is_base else result.base_asset_qty
                contract_qty = None
                if not is_base and self._counts_in_contracts(pair):
                    contract_result = await self.converter.convert_qty(
                        account_names,
                        pair_name,
                        value,
                        is_base,
                        price,
                        convert_to_num_contracts=True,
                    )
                    contract_qty = contract_result.base_asset_qty
            except Exception as exc:
                LOGGER.warning("Quantity conversion for %s failed: %s", pair_name, exc)
                state.conversion_error = NO_PRICE_MESSAGE
                return

            if self._may_write(dependent):
                if is_base:
                    state.quote_qty_placeholder = (
                        f"{format_quantity(converted)} {pair.quote}"
                    )
                else:
                    state.base_qty_placeholder = (
                        f"{format_quantity(smart_round(converted))} {pair.base}"
                    )
                    if contract_qty is not None:
                        state.base_contract_qty = contract_qty
            if not self.slider_dragging:
                self._update_percentages(value, converted, is_base, price)
            state.converted_qty = converted
            state.conversion_error = None
        finally:
            self._transition(QuantityEvent.CONVERSION_FINISHED)

    def _counts_in_contracts(self, pair: TradingPair) -> bool:
        return pair.is_contract and pair.is_inverse and DERIBIT in self._exchange_names()

    async def settle(self) -> None:
        """Wait until no reconciliation pass is pending."""
        while self._task is not None and not self._task.done():
            await asyncio.wait({self._task})

    async def select_pair(self, pair: TradingPair | None) -> None:
        """Switch the order form to another pair and start from a clean form."""
        await self.reset()
        self.balances.select_pair(pair)
        self.prices.invalidate()

    async def reset(self) -> None:
        task, self._task = self._task, None
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._waiting = False
        self._prefetched_price = None
        self.state = QuantityState()
        self._transition(QuantityEvent.RESET)
