"""Configuration validation utilities for the order-entry core."""

from __future__ import annotations

from decimal import Decimal, InvalidOperation
from typing import Any

VALID_MARKET_TYPES = {"spot", "perp", "future", "dex"}
VALID_SIDES = {"buy", "sell"}
VALID_TABS = {"orders", "positions", "balances"}

DEFAULTS: dict[str, Any] = {
    "poll_interval_sec": 13.0,
    "price_max_age_sec": 5.0,
    "price_max_attempts": 3,
    "conversion_debounce_sec": 0.25,
    "leverage": 1,
    "side": "buy",
    "active_tab": "orders",
    "rest_timeout_sec": 10.0,
    "rest_retries": 3,
    "rest_backoff_factor": 0.5,
}


class ConfigValidationError(ValueError):
    """Raised when configuration validation fails."""


def _parse_decimal(config: dict[str, Any], field: str) -> Decimal:
    value = config[field]
    if isinstance(value, bool):
        raise ConfigValidationError(f"{field} must be a valid number, got: {value}")
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError, TypeError) as exc:
        raise ConfigValidationError(
            f"{field} must be a valid number, got: {value}"
        ) from exc


def validate_positive_decimal(
    config: dict[str, Any], field: str, *, required: bool = True
) -> None:
    """Validate that a field is a positive decimal value."""
    if field not in config:
        if required:
            raise ConfigValidationError(f"Missing required field: {field}")
        return
    decimal_value = _parse_decimal(config, field)
    if decimal_value <= 0:
        raise ConfigValidationError(f"{field} must be positive, got: {decimal_value}")


def validate_non_negative_decimal(
    config: dict[str, Any], field: str, *, required: bool = True
) -> None:
    """Validate that a field is a non-negative decimal value."""
    if field not in config:
        if required:
            raise ConfigValidationError(f"Missing required field: {field}")
        return
    decimal_value = _parse_decimal(config, field)
    if decimal_value < 0:
        raise ConfigValidationError(
            f"{field} must be non-negative, got: {decimal_value}"
        )


def validate_positive_integer(
    config: dict[str, Any], field: str, *, required: bool = True, minimum: int = 1
) -> None:
    """Validate that a field is a positive integer."""
    if field not in config:
        if required:
            raise ConfigValidationError(f"Missing required field: {field}")
        return
    value = config[field]
    if not isinstance(value, int) or isinstance(value, bool):
        raise ConfigValidationError(
            f"{field} must be an integer, got: {type(value).__name__}"
        )
    if value < minimum:
        raise ConfigValidationError(f"{field} must be >= {minimum}, got: {value}")


def validate_choice(
    config: dict[str, Any], field: str, choices: set[str], *, required: bool = True
) -> None:
    """Validate that a field is one of a fixed set of strings."""
    if field not in config:
        if required:
            raise ConfigValidationError(f"Missing required field: {field}")
        return
    value = config[field]
    if not isinstance(value, str) or value.lower() not in choices:
        options = ", ".join(sorted(choices))
        raise ConfigValidationError(f"{field} must be one of: {options}, got: {value}")


def validate_base_url(config: dict[str, Any]) -> None:
    if "base_url" not in config:
        raise ConfigValidationError("Missing required field: base_url")
    base_url = config["base_url"]
    if not isinstance(base_url, str) or not base_url.strip():
        raise ConfigValidationError("base_url must be a non-empty string")
    if not base_url.startswith(("http://", "https://")):
        raise ConfigValidationError(
            f"base_url must start with http:// or https://, got: {base_url}"
        )


def validate_selected_accounts(config: dict[str, Any]) -> None:
    accounts = config.get("selected_accounts", [])
    if not isinstance(accounts, list):
        raise ConfigValidationError("selected_accounts must be a list of account names")
    for name in accounts:
        if not isinstance(name, str) or not name.strip():
            raise ConfigValidationError(
                "selected_accounts entries must be non-empty strings"
            )


def validate_account_directory(config: dict[str, Any]) -> None:
    """Validate the optional inline account directory."""
    if "accounts" not in config:
        return
    accounts = config["accounts"]
    if not isinstance(accounts, dict):
        raise ConfigValidationError("accounts must be a mapping of name -> account")
    for name, account in accounts.items():
        if not isinstance(account, dict):
            raise ConfigValidationError(f"accounts.{name} must be a mapping")
        for key in ("id", "exchange_name"):
            if key not in account and not (
                key == "exchange_name" and "exchangeName" in account
            ):
                raise ConfigValidationError(f"accounts.{name} is missing {key}")


def validate_pair(config: dict[str, Any]) -> None:
    if "pair" not in config:
        raise ConfigValidationError("Missing required field: pair")
    pair = config["pair"]
    if not isinstance(pair, dict):
        raise ConfigValidationError("pair must be a mapping")
    for key in ("id", "base", "quote"):
        value = pair.get(key)
        if not isinstance(value, str) or not value.strip():
            raise ConfigValidationError(f"pair.{key} must be a non-empty string")
    market_type = pair.get("market_type", "spot")
    if market_type not in VALID_MARKET_TYPES:
        options = ", ".join(sorted(VALID_MARKET_TYPES))
        raise ConfigValidationError(
            f"pair.market_type must be one of: {options}, got: {market_type}"
        )


def validate_leverage(config: dict[str, Any]) -> None:
    if "leverage" not in config:
        return
    leverage = _parse_decimal(config, "leverage")
    if leverage < 1:
        raise ConfigValidationError(f"leverage must be >= 1, got: {leverage}")


def validate_config(config: dict[str, Any]) -> None:
    """Validate an order-entry configuration mapping."""
    validate_base_url(config)
    validate_selected_accounts(config)
    validate_account_directory(config)
    validate_pair(config)
    validate_choice(config, "side", VALID_SIDES, required=False)
    validate_choice(config, "active_tab", VALID_TABS, required=False)
    validate_positive_decimal(config, "poll_interval_sec", required=False)
    validate_positive_decimal(config, "price_max_age_sec", required=False)
    validate_positive_integer(config, "price_max_attempts", required=False)
    validate_non_negative_decimal(config, "conversion_debounce_sec", required=False)
    validate_leverage(config)
    validate_positive_decimal(config, "rest_timeout_sec", required=False)
    validate_positive_integer(config, "rest_retries", required=False, minimum=0)
    validate_non_negative_decimal(config, "rest_backoff_factor", required=False)


def with_defaults(config: dict[str, Any]) -> dict[str, Any]:
    """Return a copy of config with defaults filled in."""
    merged = dict(DEFAULTS)
    merged.update(config)
    return merged
