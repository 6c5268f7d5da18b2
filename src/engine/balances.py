"""In-memory balance cache shared by the poller and the aggregator."""

from __future__ import annotations

import logging
from typing import Callable, Iterable, Mapping

from terminal_client.models import AssetEntry

LOGGER = logging.getLogger("orderentry.engine.balances")

Listener = Callable[["BalanceCache"], None]


class BalanceCache:
    """Latest asset snapshot per account id plus a loading flag.

    Writes replace snapshots wholesale; entries are never merged.
    """

    def __init__(self) -> None:
        self._snapshots: dict[str, tuple[AssetEntry, ...]] = {}
        self._is_loading = False
        self._listeners: list[Listener] = []

    def get(self, account_id: str) -> tuple[AssetEntry, ...] | None:
        return self._snapshots.get(str(account_id))

    def set(self, account_id: str, assets: Iterable[AssetEntry]) -> None:
        self._snapshots[str(account_id)] = tuple(assets)
        self._notify()

    def replace(self, snapshots: Mapping[str, Iterable[AssetEntry]]) -> None:
        """Swap in a full set of snapshots; accounts not listed are dropped."""
        self._snapshots = {}
        for account_id, assets in snapshots.items():
            self._snapshots[str(account_id)] = tuple(assets)
        self._notify()

    def clear(self) -> None:
        self._snapshots.clear()
        self._notify()

    @property
    def is_loading(self) -> bool:
        return self._is_loading

    @is_loading.setter
    def is_loading(self, value: bool) -> None:
        if self._is_loading == value:
            return
        self._is_loading = value
        self._notify()

    def snapshot(self) -> dict[str, tuple[AssetEntry, ...]]:
        return dict(self._snapshots)

    def account_ids(self) -> list[str]:
        return list(self._snapshots)

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register a change listener and return a callable that removes it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self) -> None:
        for listener in list(self._listeners):
            try:
                listener(self)
            except Exception:
                LOGGER.exception("Balance cache listener failed")
