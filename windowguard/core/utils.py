"""Utility functions for the throttler."""

import threading
import time
from typing import Callable

Clock = Callable[[], int]


def now_ms() -> int:
    """Current wall-clock time in integer milliseconds."""
    return time.time_ns() // 1_000_000


class WallClock:
    """Non-decreasing wall-clock in milliseconds.

    Window entries are scored with this clock, so it must be comparable
    across instances (wall time, not ``time.monotonic``). A backwards step
    of the system clock is absorbed by repeating the last reading, so an
    entry is never stamped earlier than one this process already wrote.
    """

    def __init__(self, source: Clock = now_ms) -> None:
        self._source = source
        self._last = 0
        self._lock = threading.Lock()

    def __call__(self) -> int:
        current = self._source()
        with self._lock:
            if current < self._last:
                return self._last
            self._last = current
            return current


def elapsed_ms(start: float) -> float:
    """Milliseconds since ``start`` (a ``time.perf_counter()`` reading)."""
    return round((time.perf_counter() - start) * 1000, 3)
