"""Short-lived pair price memo used for quantity conversion."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from decimal import Decimal
from typing import Callable

from engine.sources import PriceSource
from terminal_client.models import MarketType, TradingPair
from utils.notifications import LoggingNotifier, Notifier

LOGGER = logging.getLogger("orderentry.engine.price_tracker")

DEFAULT_MAX_AGE = 5.0
DEFAULT_MAX_ATTEMPTS = 3


@dataclass(frozen=True)
class PriceQuote:
    pair: str
    exchange_name: str | None
    price: Decimal
    fetched_at: float


class PairPriceTracker:
    """Fetches and memoizes the selected pair's price.

    A price is reused while it is younger than ``max_age`` and belongs to the
    same pair and exchange. After ``max_attempts`` consecutive failures the
    tracker stops asking for that pair until a different pair is requested
    or ``reset_attempts`` is called.
    """

    def __init__(
        self,
        source: PriceSource,
        notifier: Notifier | None = None,
        *,
        max_age: float = DEFAULT_MAX_AGE,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        time_provider: Callable[[], float] | None = None,
    ) -> None:
        self.source = source
        self.notifier = notifier or LoggingNotifier()
        self.max_age = max_age
        self.max_attempts = max_attempts
        self._time_provider = time_provider or time.monotonic
        self._quote: PriceQuote | None = None
        self._failed_key: tuple[str, str | None] | None = None
        self.failed_attempts = 0

    @property
    def last_quote(self) -> PriceQuote | None:
        return self._quote

    @property
    def last_price(self) -> Decimal | None:
        return self._quote.price if self._quote else None

    def reset_attempts(self) -> None:
        self.failed_attempts = 0
        self._failed_key = None

    def invalidate(self) -> None:
        self._quote = None
        self.reset_attempts()

    def _is_fresh(self, pair_name: str, exchange_name: str | None) -> bool:
        quote = self._quote
        if quote is None:
            return False
        if quote.pair != pair_name or quote.exchange_name != exchange_name:
            return False
        return self._time_provider() - quote.fetched_at <= self.max_age

    async def get_price(
        self,
        pair: TradingPair | None,
        exchange_name: str | None,
        *,
        pair_name: str | None = None,
        is_authenticated: bool = True,
    ) -> Decimal | None:
        """Return a current price for the pair, or None when unavailable."""
        if pair is None or pair.market_type == MarketType.DEX:
            return None
        name = pair_name or pair.id
        key = (name, exchange_name)
        if self._failed_key is not None and key != self._failed_key:
            # A different pair gets a fresh set of attempts.
            self.reset_attempts()
        if self.failed_attempts >= self.max_attempts:
            return None
        if not is_authenticated:
            return None

        if self._is_fresh(name, exchange_name):
            return self._quote.price if self._quote else None

        try:
            price = await self.source.get_pair_price(name, exchange_name)
        except Exception as exc:
            self._failed_key = key
            self.failed_attempts += 1
            LOGGER.warning(
                "Price fetch for %s failed (%d/%d): %s",
                name,
                self.failed_attempts,
                self.max_attempts,
                exc,
            )
            self.notifier.show_alert("error", f"Could not fetch price for pair {name}")
            return None

        self.failed_attempts = 0
        if price is None:
            return None
        self._quote = PriceQuote(
            pair=name,
            exchange_name=exchange_name,
            price=price,
            fetched_at=self._time_provider(),
        )
        return price
