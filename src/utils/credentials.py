"""Credential loading helpers for the order-entry core."""

from __future__ import annotations

import os
import re
from typing import Mapping

import keyring
from keyring.errors import KeyringError

from terminal_client.auth import ApiCredentials

DEFAULT_SERVICE_NAME = "orderentry-core"
DEFAULT_API_TOKEN_ENV = "ORDERENTRY_API_TOKEN"
DEFAULT_CSRF_TOKEN_ENV = "ORDERENTRY_CSRF_TOKEN"
DEFAULT_API_TOKEN_USERNAME = "api_token"
_ENV_PATTERN = re.compile(r"^\$\{([A-Z0-9_]+)\}$")


def load_api_credentials(
    service_name: str,
    config: Mapping[str, object] | None = None,
    *,
    api_token_env: str = DEFAULT_API_TOKEN_ENV,
    csrf_token_env: str = DEFAULT_CSRF_TOKEN_ENV,
    api_token_username: str = DEFAULT_API_TOKEN_USERNAME,
    required: bool = False,
) -> ApiCredentials:
    """Load the API token from config, env vars, or keyring in order.

    The CSRF token only comes from config or the environment; it belongs to a
    browser session and is never stored in the keychain.
    """
    api_token = _resolve_value(config, "api_token")
    csrf_token = _resolve_value(config, "csrf_token")

    if not api_token:
        api_token = _clean_value(os.getenv(api_token_env))
    if not csrf_token:
        csrf_token = _clean_value(os.getenv(csrf_token_env))
    if not api_token:
        api_token = _get_keyring_value(service_name, api_token_username)

    if required and not api_token and not csrf_token:
        raise ValueError(
            "API credentials are missing. Provide api_token in the config, "
            f"set {api_token_env}, or store it in the keychain "
            f"for service '{service_name}'."
        )

    return ApiCredentials(api_token=api_token, csrf_token=csrf_token)


def store_api_token(
    service_name: str,
    api_token: str,
    *,
    api_token_username: str = DEFAULT_API_TOKEN_USERNAME,
) -> None:
    """Store the API token in the OS keychain via keyring."""
    token_value = _clean_value(api_token)
    if not token_value:
        raise ValueError("api_token must be a non-empty string.")
    try:
        keyring.set_password(service_name, api_token_username, token_value)
    except KeyringError as exc:
        raise RuntimeError(
            "Failed to store credentials in the OS keychain. "
            "Ensure a keyring backend is available."
        ) from exc


def _resolve_value(config: Mapping[str, object] | None, key: str) -> str | None:
    if not config or key not in config:
        return None
    raw = config.get(key)
    if not isinstance(raw, str):
        return _clean_value(str(raw)) if raw is not None else None
    raw = raw.strip()
    if not raw:
        return None
    match = _ENV_PATTERN.match(raw)
    if match:
        return _clean_value(os.getenv(match.group(1)))
    return _clean_value(raw)


def _clean_value(value: str | None) -> str | None:
    if value is None:
        return None
    candidate = value.strip()
    return candidate or None


def _get_keyring_value(service_name: str, username: str) -> str | None:
    try:
        return _clean_value(keyring.get_password(service_name, username))
    except KeyringError as exc:
        raise RuntimeError(
            "Failed to access the OS keychain. "
            "Ensure a keyring backend is available."
        ) from exc
