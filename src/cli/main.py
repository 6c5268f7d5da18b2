"""CLI entry point for the order-entry core."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any

import yaml

from engine.account_balances import AccountBalanceService
from engine.balances import BalanceCache
from engine.rest_client_factory import (
    build_account_directory,
    build_async_client,
    build_balance_service,
    build_quantity_reconciler,
)
from terminal_client.async_rest import AsyncRestClient, AsyncRestError
from terminal_client.models import Account
from terminal_client.pricing import format_quantity
from utils.config_validator import ConfigValidationError, validate_config, with_defaults
from utils.logging_config import setup_logging

LOGGER = logging.getLogger("orderentry.cli")

SUPPORTED_FORMATS = (".json", ".toml", ".yaml", ".yml")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="order-entry core CLI")
    parser.add_argument("--version", action="version", version="orderentry-core 0.1.0")
    subparsers = parser.add_subparsers(dest="command", required=True)

    watch_parser = subparsers.add_parser(
        "watch", help="Poll balances and log the aggregated figures."
    )
    watch_parser.add_argument(
        "--config", required=True, help="Path to JSON/TOML/YAML config file."
    )
    watch_parser.add_argument(
        "--cycles",
        type=int,
        help="Stop after this many balance refreshes (default: run until interrupted).",
    )
    watch_parser.add_argument(
        "--log-level",
        default="INFO",
        help="Logging level (DEBUG, INFO, WARNING, ERROR).",
    )
    watch_parser.set_defaults(handler=run_watch)

    convert_parser = subparsers.add_parser(
        "convert", help="Convert a quantity between base and quote units."
    )
    convert_parser.add_argument(
        "--config", required=True, help="Path to JSON/TOML/YAML config file."
    )
    convert_parser.add_argument("--qty", required=True, help="Quantity to convert.")
    convert_parser.add_argument(
        "--quote",
        action="store_true",
        help="Treat --qty as a quote-asset quantity (default: base asset).",
    )
    convert_parser.add_argument(
        "--log-level",
        default="INFO",
        help="Logging level (DEBUG, INFO, WARNING, ERROR).",
    )
    convert_parser.set_defaults(handler=run_convert)
    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if hasattr(args, "handler"):
        return args.handler(args)
    parser.print_help()
    return 1


def run_watch(args: argparse.Namespace) -> int:
    configure_logging(args.log_level)
    if args.cycles is not None and args.cycles < 1:
        LOGGER.error("--cycles must be >= 1, got: %s", args.cycles)
        return 2
    return _run_command(lambda config: watch(config, args.cycles), args.config)


def run_convert(args: argparse.Namespace) -> int:
    configure_logging(args.log_level)
    try:
        qty = Decimal(args.qty)
    except InvalidOperation:
        LOGGER.error("--qty must be a number, got: %s", args.qty)
        return 2
    if qty <= 0:
        LOGGER.error("--qty must be positive, got: %s", args.qty)
        return 2
    return _run_command(
        lambda config: convert(config, qty, is_base=not args.quote), args.config
    )


def _run_command(command, config_file: str) -> int:
    try:
        config_path = Path(config_file).expanduser()
        config = load_config(config_path)
        try:
            validate_config(config)
        except ConfigValidationError as exc:
            LOGGER.error("Configuration validation failed: %s", exc)
            return 2
        return asyncio.run(command(with_defaults(config)))
    except KeyboardInterrupt:
        LOGGER.info("Interrupted")
        return 0
    except (FileNotFoundError, RuntimeError, ValueError) as exc:
        LOGGER.error(str(exc))
        return 2
    except AsyncRestError as exc:
        LOGGER.error("Backend request failed: %s", exc)
        return 3
    except Exception as exc:  # pragma: no cover - safeguard for unexpected issues.
        LOGGER.exception("Unexpected error: %s", exc)
        return 3


async def load_accounts(
    config: dict[str, Any], client: AsyncRestClient
) -> dict[str, Account]:
    """Use the inline account directory, else ask the backend for it."""
    accounts = build_account_directory(config)
    if accounts:
        return accounts
    LOGGER.info("No accounts in config; loading the account directory from the backend")
    form_data = await client.get_order_form_data()
    return dict(form_data.accounts)


def log_balances(service: AccountBalanceService) -> None:
    pair = service.selection.selected_pair
    if pair is None:
        return
    LOGGER.info(
        "%s balances: base %s=%s quote %s=%s margin %s=%s current=%s USDT=%s",
        pair.id,
        pair.base_identifier,
        format_quantity(service.calculate_asset_balance(pair.base_identifier)),
        pair.quote,
        format_quantity(service.calculate_asset_balance(pair.quote)),
        pair.quote,
        format_quantity(service.calculate_margin_balance(pair.quote)),
        format_quantity(service.get_current_balance()),
        format_quantity(service.get_usdt_balance()),
    )


async def watch(config: dict[str, Any], cycles: int | None = None) -> int:
    async with build_async_client(config) as client:
        accounts = await load_accounts(config, client)
        service = build_balance_service(config, client, accounts)
        refreshed = asyncio.Event()

        def on_change(cache: BalanceCache) -> None:
            if not cache.is_loading:
                refreshed.set()

        unsubscribe = service.cache.subscribe(on_change)
        try:
            await service.start()
            if service.poller.target is None:
                LOGGER.error(
                    "Nothing to poll: select accounts or switch tabs, and provide credentials"
                )
                return 2
            completed = 0
            while cycles is None or completed < cycles:
                await refreshed.wait()
                refreshed.clear()
                completed += 1
                log_balances(service)
        finally:
            unsubscribe()
            await service.close()
    return 0


async def convert(config: dict[str, Any], qty: Decimal, *, is_base: bool = True) -> int:
    async with build_async_client(config) as client:
        accounts = await load_accounts(config, client)
        service = build_balance_service(config, client, accounts)
        reconciler = build_quantity_reconciler(config, client, service)
        reconciler.debounce = 0.0
        try:
            if not await service.refresh_balances(service.selection.selected_accounts):
                LOGGER.warning("Continuing without balances; percentages will be 0")
            if is_base:
                reconciler.handle_base_qty_on_change(format_quantity(qty))
            else:
                reconciler.handle_quote_qty_on_change(format_quantity(qty))
            await reconciler.settle()
        finally:
            await service.close()

    state = reconciler.state
    if state.conversion_error:
        LOGGER.error(state.conversion_error)
        return 3
    print(f"base: {state.base_qty if is_base else state.base_qty_placeholder}")
    print(f"quote: {state.quote_qty if not is_base else state.quote_qty_placeholder}")
    print(f"base %: {state.base_percentage}")
    print(f"quote %: {state.quote_percentage}")
    if state.base_contract_qty is not None:
        print(f"contracts: {format_quantity(state.base_contract_qty)}")
    return 0


def configure_logging(level: str) -> None:
    """Configure logging with sanitization and proper formatting."""
    setup_logging(level=level, sanitize=True, structured=False)


def load_config(config_path: Path) -> dict[str, Any]:
    if not config_path.exists():
        raise FileNotFoundError(
            f"Config file not found: {config_path}. Ensure the path is correct and readable."
        )
    suffix = config_path.suffix.lower()
    if suffix not in SUPPORTED_FORMATS:
        supported = ", ".join(SUPPORTED_FORMATS)
        raise ValueError(
            f"Unsupported config format '{suffix}'. Supported formats: {supported}."
        )
    try:
        if suffix == ".json":
            data = json.loads(config_path.read_text(encoding="utf-8"))
        elif suffix == ".toml":
            data = load_toml(config_path)
        else:
            data = load_yaml(config_path)
    except json.JSONDecodeError as exc:
        raise ValueError(
            f"Invalid JSON in config file {config_path}: {exc}. Validate the file format."
        ) from exc
    except (RuntimeError, ValueError):
        raise
    except Exception as exc:
        raise RuntimeError(f"Failed to parse config file {config_path}: {exc}.") from exc
    if not isinstance(data, dict):
        raise ValueError(
            f"Config file {config_path} must contain a JSON/TOML/YAML object mapping."
        )
    return data


def load_toml(config_path: Path) -> dict[str, Any]:
    if sys.version_info >= (3, 11):
        import tomllib
    else:
        import tomli as tomllib

    return tomllib.loads(config_path.read_text(encoding="utf-8"))


def load_yaml(config_path: Path) -> dict[str, Any]:
    data = yaml.safe_load(config_path.read_text(encoding="utf-8"))
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(
            f"YAML config file {config_path} must contain a mapping at the top level."
        )
    return data


if __name__ == "__main__":
    raise SystemExit(main())
