"""Trailing flush scheduler with an explicit manual-flush escape hatch."""

from __future__ import annotations

import asyncio
import threading
from collections.abc import Callable


class TrailingScheduler:
    """Fire ``callback`` once ``delay_s`` has passed since the last ``schedule()``.

    Every ``schedule()`` replaces the pending timer, so a burst of calls
    produces a single firing after the burst goes quiet; there is no leading
    call. Inside a running asyncio loop the timer is ``loop.call_later``;
    synchronous hosts get a daemon ``threading.Timer`` instead.
    """

    def __init__(self, delay_s: float, callback: Callable[[], None]) -> None:
        self.delay_s = delay_s
        self._callback = callback
        self._lock = threading.RLock()
        self._handle: asyncio.TimerHandle | None = None
        self._timer: threading.Timer | None = None
        # bumped on every cancel; a firing from an older generation is stale
        self._generation = 0

    @property
    def pending(self) -> bool:
        with self._lock:
            return self._handle is not None or self._timer is not None

    def schedule(self) -> None:
        """Start, or push back, the trailing timer."""
        with self._lock:
            self._cancel_locked()
            try:
                loop = asyncio.get_running_loop()
            except RuntimeError:
                timer = threading.Timer(self.delay_s, self._fire, args=(self._generation,))
                timer.daemon = True
                self._timer = timer
                timer.start()
            else:
                self._handle = loop.call_later(self.delay_s, self._fire, self._generation)

    def flush(self) -> None:
        """Run the callback now and drop the pending timer."""
        self.cancel_pending()
        self._callback()

    def cancel_pending(self) -> None:
        with self._lock:
            self._cancel_locked()

    def _cancel_locked(self) -> None:
        self._generation += 1
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _fire(self, generation: int) -> None:
        with self._lock:
            if generation != self._generation:
                return
            self._handle = None
            self._timer = None
        self._callback()
