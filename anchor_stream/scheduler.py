"""Owner-thread dispatcher.

Background threads never touch marker or connection state; they hand their
results to ``Dispatcher.post`` and the owner thread runs them from
``run_pending``. Delayed work (reconnects, ray expiry) is scheduled with
``call_later`` and fires from the same ``run_pending`` call.
"""

from __future__ import annotations

import heapq
import itertools
import logging
import queue
import time
from typing import Any, Callable, Optional


class Timer:
    def __init__(self, due: float, fn: Callable[..., Any], args: tuple):
        self.due = due
        self.fn = fn
        self.args = args
        self.cancelled = False
        self.fired = False

    def cancel(self) -> None:
        self.cancelled = True

    @property
    def pending(self) -> bool:
        return not (self.cancelled or self.fired)


class Dispatcher:
    def __init__(self, clock: Callable[[], float] = time.monotonic, logger: Optional[logging.Logger] = None):
        self.clock = clock
        self.log = logger or logging.getLogger(__name__)
        self._calls: "queue.SimpleQueue[tuple[Callable[..., Any], tuple]]" = queue.SimpleQueue()
        self._timers: list[tuple[float, int, Timer]] = []
        self._seq = itertools.count()

    def post(self, fn: Callable[..., Any], *args: Any) -> None:
        """Queue ``fn(*args)`` for the owner thread. Safe from any thread."""
        self._calls.put((fn, args))

    def call_later(self, delay: float, fn: Callable[..., Any], *args: Any) -> Timer:
        """Owner thread only."""
        timer = Timer(self.clock() + max(0.0, float(delay)), fn, args)
        heapq.heappush(self._timers, (timer.due, next(self._seq), timer))
        return timer

    @property
    def pending_timers(self) -> list[Timer]:
        return [t for _, _, t in sorted(self._timers) if t.pending]

    def run_pending(self) -> int:
        ran = 0
        while True:
            try:
                fn, args = self._calls.get_nowait()
            except queue.Empty:
                break
            self._invoke(fn, args)
            ran += 1

        now = self.clock()
        while self._timers and self._timers[0][0] <= now:
            _, _, timer = heapq.heappop(self._timers)
            if timer.cancelled:
                continue
            timer.fired = True
            self._invoke(timer.fn, timer.args)
            ran += 1
        return ran

    def _invoke(self, fn: Callable[..., Any], args: tuple) -> None:
        try:
            fn(*args)
        except Exception:
            self.log.exception("dispatched call %r failed", fn)
