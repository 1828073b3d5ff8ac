"""Persistence delegate contract and process-exit hooks."""

from __future__ import annotations

import atexit
import logging
import os
import signal
import threading
from collections.abc import Callable, Iterable
from types import FrameType
from typing import Protocol

logger = logging.getLogger(__name__)

FlushCallback = Callable[[], object]

DEFAULT_EXIT_SIGNALS: tuple[signal.Signals, ...] = (signal.SIGINT, signal.SIGTERM)


class SurfaceDelegate(Protocol):
    """Key/value persistence plus a hook that runs before the process ends."""

    surface: str

    def get(self, key: str) -> str | None: ...

    def set(self, key: str, value: str) -> None: ...

    def remove(self, key: str) -> None: ...

    def clear(self) -> None: ...

    def on_exit(self, flush: FlushCallback) -> None: ...


class ExitHooks:
    """Run registered flush callbacks on interpreter exit and termination signals.

    Registration is lazy: nothing is installed until the first callback
    arrives. A callback registered twice is kept once. Previous signal
    handlers are chained after the callbacks ran.
    """

    def __init__(
        self,
        *,
        install_atexit: bool = True,
        signals: Iterable[signal.Signals] = (),
    ) -> None:
        self._install_atexit = install_atexit
        self._signals = tuple(signals)
        self._callbacks: list[FlushCallback] = []
        self._previous: dict[int, object] = {}
        self._installed = False

    def register(self, callback: FlushCallback) -> None:
        if callback in self._callbacks:
            return
        self._callbacks.append(callback)
        if not self._installed:
            self._install()

    def run(self) -> None:
        """Invoke every callback; one failing callback does not stop the rest."""
        for callback in list(self._callbacks):
            try:
                callback()
            except Exception:
                logger.warning("exit_flush_failed callback=%r", callback, exc_info=True)

    def __len__(self) -> int:
        return len(self._callbacks)

    def _install(self) -> None:
        self._installed = True
        if self._install_atexit:
            atexit.register(self.run)
        if threading.current_thread() is not threading.main_thread():
            # signal.signal only works from the main thread
            return
        for signum in self._signals:
            self._previous[signum] = signal.getsignal(signum)
            signal.signal(signum, self._handle_signal)

    def _handle_signal(self, signum: int, frame: FrameType | None) -> None:
        self.run()
        previous = self._previous.get(signum)
        if callable(previous):
            previous(signum, frame)
        elif previous == signal.SIG_DFL:
            signal.signal(signum, signal.SIG_DFL)
            os.kill(os.getpid(), signum)
