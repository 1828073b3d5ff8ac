"""Debug-gated diagnostics for the SDK."""

from __future__ import annotations

import logging
from typing import Any

logger = logging.getLogger("functionary")


class DebugLog:
    """Forward diagnostics to the ``functionary`` logger only when enabled.

    A telemetry sidecar must stay silent in the host application unless the
    host explicitly asked for debug output.
    """

    def __init__(self, enabled: bool = False) -> None:
        self.enabled = enabled

    def info(self, message: str, *args: Any) -> None:
        self._emit(logging.INFO, message, args)

    def warning(self, message: str, *args: Any) -> None:
        self._emit(logging.WARNING, message, args)

    def error(self, message: str, *args: Any) -> None:
        self._emit(logging.ERROR, message, args)

    def _emit(self, level: int, message: str, args: tuple[Any, ...]) -> None:
        if self.enabled:
            logger.log(level, "FUNCTIONARY: " + message, *args)
