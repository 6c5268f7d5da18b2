"""State containers for the order form."""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum

from terminal_client.models import OrderSide, TradingPair

BASE_QTY_PLACEHOLDER = "Base Asset Quantity"
QUOTE_QTY_PLACEHOLDER = "Quote Asset Quantity"


class QuantityField(str, Enum):
    BASE = "base"
    QUOTE = "quote"

    @property
    def other(self) -> "QuantityField":
        return QuantityField.QUOTE if self is QuantityField.BASE else QuantityField.BASE


class ReconcilePhase(str, Enum):
    IDLE = "idle"
    EDITING_BASE = "editing_base"
    EDITING_QUOTE = "editing_quote"
    RECONCILING = "reconciling"

    @classmethod
    def editing(cls, quantity_field: QuantityField) -> "ReconcilePhase":
        if quantity_field is QuantityField.BASE:
            return cls.EDITING_BASE
        return cls.EDITING_QUOTE


@dataclass
class SelectionState:
    """Accounts, pair and side picked in the order form.

    Owned by the UI layer; the core only reads it.
    """

    selected_accounts: list[str] = field(default_factory=list)
    selected_pair: TradingPair | None = None
    selected_side: OrderSide = OrderSide.BUY

    @property
    def is_buy_side(self) -> bool:
        return self.selected_side == OrderSide.BUY


@dataclass
class QuantityState:
    base_qty: Decimal | None = None
    quote_qty: Decimal | None = None
    base_percentage: Decimal = Decimal("0")
    quote_percentage: Decimal = Decimal("0")
    last_manually_entered_field: QuantityField | None = None
    is_conversion_in_progress: bool = False
    phase: ReconcilePhase = ReconcilePhase.IDLE
    base_qty_placeholder: str = BASE_QTY_PLACEHOLDER
    quote_qty_placeholder: str = QUOTE_QTY_PLACEHOLDER
    base_contract_qty: Decimal | None = None
    converted_qty: Decimal | None = None
    converted_qty_loading: bool = False
    conversion_error: str | None = None

    def value_of(self, quantity_field: QuantityField) -> Decimal | None:
        if quantity_field is QuantityField.BASE:
            return self.base_qty
        return self.quote_qty
