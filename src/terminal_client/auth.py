"""Authentication helpers for the trading-terminal backend."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class ApiCredentials:
    api_token: str | None = None
    csrf_token: str | None = None


class TokenAuth:
    """Builds request headers for session (CSRF) or API-token authentication."""

    def __init__(self, credentials: ApiCredentials | None = None) -> None:
        self.credentials = credentials or ApiCredentials()

    def build_headers(self) -> dict[str, str]:
        headers = {
            "Accept": "application/json",
            "Accept-Encoding": "gzip",
        }
        if self.credentials.csrf_token:
            headers["X-CSRFToken"] = self.credentials.csrf_token
        if self.credentials.api_token:
            headers["Authorization"] = f"Token {self.credentials.api_token}"
        return headers

    @property
    def is_authenticated(self) -> bool:
        return bool(self.credentials.api_token or self.credentials.csrf_token)
