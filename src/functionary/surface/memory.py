"""In-process persistence for server surfaces."""

from __future__ import annotations

import signal
from collections.abc import Iterable

from functionary.surface.base import DEFAULT_EXIT_SIGNALS, ExitHooks, FlushCallback


class MemorySurfaceDelegate:
    """Dictionary-backed delegate; values live as long as the process.

    Pass the same ``store`` to several delegates to share values between
    facades of one application.
    """

    surface = "server"

    def __init__(
        self,
        store: dict[str, str] | None = None,
        *,
        exit_hooks: ExitHooks | None = None,
        signals: Iterable[signal.Signals] = DEFAULT_EXIT_SIGNALS,
    ) -> None:
        self._memory: dict[str, str] = store if store is not None else {}
        self._exit_hooks = exit_hooks if exit_hooks is not None else ExitHooks(signals=signals)

    def get(self, key: str) -> str | None:
        return self._memory.get(key)

    def set(self, key: str, value: str) -> None:
        self._memory[key] = value

    def remove(self, key: str) -> None:
        self._memory.pop(key, None)

    def clear(self) -> None:
        self._memory.clear()

    def on_exit(self, flush: FlushCallback) -> None:
        self._exit_hooks.register(flush)
