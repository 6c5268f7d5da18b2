"""Builds the backend client and the order-entry core from a config mapping.

Every entry point goes through these helpers so authentication and retry
settings are resolved in one place.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Any, Mapping

from engine.account_balances import AccountBalanceService
from engine.balance_poller import BalancePoller
from engine.balances import BalanceCache
from engine.price_tracker import PairPriceTracker
from engine.quantity import QuantityReconciler
from engine.state import SelectionState
from terminal_client.async_rest import AsyncRestClient
from terminal_client.constants import DEFAULT_BASE_URL
from terminal_client.models import Account, ActiveTab, OrderSide, TradingPair
from utils.config_validator import DEFAULTS
from utils.credentials import DEFAULT_SERVICE_NAME, load_api_credentials
from utils.notifications import LoggingNotifier, Notifier


def _setting(config: Mapping[str, Any], key: str) -> Any:
    return config.get(key, DEFAULTS.get(key))


def build_async_client(config: Mapping[str, Any]) -> AsyncRestClient:
    """Build the backend REST client.

    Args:
        config: Configuration mapping containing:
            - base_url: str (default: DEFAULT_BASE_URL)
            - api_token / csrf_token: optional credentials
            - rest_timeout_sec: float (default: 10.0)
            - rest_retries: int (default: 3)
            - rest_backoff_factor: float (default: 0.5)
    """
    credentials = load_api_credentials(
        config.get("credential_service", DEFAULT_SERVICE_NAME), config
    )
    return AsyncRestClient(
        base_url=config.get("base_url", DEFAULT_BASE_URL),
        credentials=credentials,
        timeout=float(_setting(config, "rest_timeout_sec")),
        max_retries=int(_setting(config, "rest_retries")),
        backoff_factor=float(_setting(config, "rest_backoff_factor")),
    )


def build_account_directory(config: Mapping[str, Any]) -> dict[str, Account]:
    """Parse the inline ``accounts`` mapping keyed by account name."""
    return {
        str(name): Account.model_validate({"name": name, **item})
        for name, item in (config.get("accounts") or {}).items()
    }


def build_selection(config: Mapping[str, Any]) -> SelectionState:
    pair = config.get("pair")
    return SelectionState(
        selected_accounts=list(config.get("selected_accounts") or []),
        selected_pair=TradingPair.model_validate(pair) if pair else None,
        selected_side=OrderSide(str(_setting(config, "side")).lower()),
    )


def build_balance_service(
    config: Mapping[str, Any],
    client: AsyncRestClient,
    accounts: Mapping[str, Account],
    notifier: Notifier | None = None,
) -> AccountBalanceService:
    poller = BalancePoller(
        BalanceCache(),
        client,
        notifier,
        interval=float(_setting(config, "poll_interval_sec")),
    )
    return AccountBalanceService(
        poller,
        accounts,
        build_selection(config),
        active_tab=ActiveTab(str(_setting(config, "active_tab")).lower()),
        is_authenticated=client.is_authenticated,
    )


def build_quantity_reconciler(
    config: Mapping[str, Any],
    client: AsyncRestClient,
    balances: AccountBalanceService,
    notifier: Notifier | None = None,
) -> QuantityReconciler:
    prices = PairPriceTracker(
        client,
        notifier or LoggingNotifier(),
        max_age=float(_setting(config, "price_max_age_sec")),
        max_attempts=int(_setting(config, "price_max_attempts")),
    )
    return QuantityReconciler(
        balances,
        prices,
        client,
        leverage=Decimal(str(_setting(config, "leverage"))),
        debounce=float(_setting(config, "conversion_debounce_sec")),
        use_pair_name=bool(config.get("use_pair_name", False)),
    )
