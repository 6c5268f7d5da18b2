"""Periodic balance polling for the order form."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Sequence

from engine.balances import BalanceCache
from engine.sources import BalanceSource
from terminal_client.models import ActiveTab
from utils.notifications import LoggingNotifier, Notifier

LOGGER = logging.getLogger("orderentry.engine.balance_poller")

DEFAULT_POLL_INTERVAL = 13.0


@dataclass(frozen=True)
class PollingTarget:
    """Accounts to poll; an empty tuple means every account."""

    account_names: tuple[str, ...]
    active_tab: ActiveTab

    @property
    def polls_all_accounts(self) -> bool:
        return not self.account_names

    @property
    def key(self) -> str:
        return f"{self.active_tab.value}:{','.join(sorted(self.account_names))}"


def resolve_polling_target(
    selected_accounts: Sequence[str],
    active_tab: ActiveTab,
    is_authenticated: bool,
) -> PollingTarget | None:
    """Decide which accounts to poll, or None when polling should stop.

    The positions and balances tabs list every account, so they poll all of
    them. The orders tab only needs the selected accounts and does not poll
    when nothing is selected.
    """
    if not is_authenticated:
        return None
    active_tab = ActiveTab(active_tab)
    if active_tab in (ActiveTab.POSITIONS, ActiveTab.BALANCES):
        return PollingTarget(account_names=(), active_tab=active_tab)
    if not selected_accounts:
        return None
    return PollingTarget(account_names=tuple(selected_accounts), active_tab=active_tab)


class BalancePoller:
    """Refreshes a BalanceCache on a fixed interval for the current target."""

    def __init__(
        self,
        cache: BalanceCache,
        source: BalanceSource,
        notifier: Notifier | None = None,
        *,
        interval: float = DEFAULT_POLL_INTERVAL,
    ) -> None:
        self.cache = cache
        self.source = source
        self.notifier = notifier or LoggingNotifier()
        self.interval = interval
        self._target: PollingTarget | None = None
        self._task: asyncio.Task[None] | None = None
        self._inflight: set[asyncio.Task[bool]] = set()
        self._generation = 0

    @property
    def target(self) -> PollingTarget | None:
        return self._target

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def generation(self) -> int:
        return self._generation

    async def restart(
        self,
        selected_accounts: Sequence[str],
        active_tab: ActiveTab,
        is_authenticated: bool,
    ) -> PollingTarget | None:
        """Cancel the current schedule and start one for the new context."""
        await self.stop()
        target = resolve_polling_target(selected_accounts, active_tab, is_authenticated)
        self._target = target
        if target is None:
            LOGGER.debug("Balance polling idle (tab=%s)", active_tab)
            return None
        LOGGER.debug(
            "Starting balance polling every %.1fs for %s",
            self.interval,
            "all accounts" if target.polls_all_accounts else list(target.account_names),
        )
        self._task = asyncio.create_task(
            self._run(target, self._generation), name=f"balance-poller:{target.key}"
        )
        return target

    async def stop(self) -> None:
        """Cancel the schedule; requests already sent are left to finish."""
        self._generation += 1
        # Responses from older generations never clear the flag themselves.
        self.cache.is_loading = False
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def close(self) -> None:
        await self.stop()
        if self._inflight:
            await asyncio.gather(*self._inflight, return_exceptions=True)

    async def refresh(self, account_names: Sequence[str] = ()) -> bool:
        """Fetch balances once and write them to the cache.

        Returns False when the fetch failed; the failure is reported to the user.
        """
        return await self._refresh(tuple(account_names), self._generation)

    async def _run(self, target: PollingTarget, generation: int) -> None:
        while True:
            task = asyncio.create_task(self._refresh(target.account_names, generation))
            self._inflight.add(task)
            task.add_done_callback(self._inflight.discard)
            await asyncio.sleep(self.interval)

    async def _refresh(self, account_names: tuple[str, ...], generation: int) -> bool:
        self.cache.is_loading = True
        try:
            response = await self.source.fetch_cached_account_balances(account_names)
        except Exception as exc:
            LOGGER.warning("Balance refresh failed: %s", exc)
            self.notifier.show_alert("error", str(exc))
            if generation == self._generation:
                self.cache.is_loading = False
            return False

        if generation != self._generation:
            LOGGER.debug(
                "Discarding balances from superseded poll (generation %d, current %d)",
                generation,
                self._generation,
            )
            return True

        self.cache.replace(
            {balance.account_id: balance.assets for balance in response.balances}
        )
        self.cache.is_loading = False
        return True
