"""User-facing alert delivery."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Protocol

LOGGER = logging.getLogger("orderentry.utils.notifications")

_SEVERITY_LEVELS = {
    "error": logging.ERROR,
    "warning": logging.WARNING,
    "info": logging.INFO,
    "success": logging.INFO,
}


@dataclass(frozen=True)
class Alert:
    severity: str
    message: str


class Notifier(Protocol):
    def show_alert(self, severity: str, message: str) -> None:
        """Surface a non-fatal message to the user."""


class LoggingNotifier:
    """Notifier that writes alerts to the log and keeps the most recent ones."""

    def __init__(self, logger: logging.Logger | None = None, history: int = 50) -> None:
        self._logger = logger or LOGGER
        self._history = history
        self.alerts: list[Alert] = []

    def show_alert(self, severity: str, message: str) -> None:
        level = _SEVERITY_LEVELS.get(severity.lower(), logging.WARNING)
        self._logger.log(level, message)
        self.alerts.append(Alert(severity=severity, message=message))
        if len(self.alerts) > self._history:
            del self.alerts[: len(self.alerts) - self._history]
