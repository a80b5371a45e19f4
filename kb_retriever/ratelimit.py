"""Minimum-interval rate limiting for calls to external providers."""

from __future__ import annotations

import threading
import time
from typing import Callable, Optional


class RateLimiter:
    """
    Space successive calls at least ``min_interval`` seconds apart.

    A token bucket of capacity one: the first ``acquire`` is granted
    immediately, each later one blocks until the interval since the previous
    grant has elapsed. Thread-safe, so concurrent callers share one budget.

    Args:
        min_interval: Seconds between grants; ``0`` disables limiting
        clock: Monotonic time source
        sleep: Blocking sleep function
    """

    def __init__(
        self,
        min_interval: float,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if min_interval < 0:
            raise ValueError("min_interval must be >= 0")
        self.min_interval = min_interval
        self._clock = clock
        self._sleep = sleep
        self._lock = threading.Lock()
        self._last_grant: Optional[float] = None

    def acquire(self) -> float:
        """Block until a call may proceed. Returns the seconds slept."""
        if self.min_interval == 0:
            return 0.0
        with self._lock:
            now = self._clock()
            waited = 0.0
            if self._last_grant is not None:
                wait = self._last_grant + self.min_interval - now
                if wait > 0:
                    self._sleep(wait)
                    waited = wait
                    now += wait
            self._last_grant = now
            return waited

    def reset(self) -> None:
        with self._lock:
            self._last_grant = None
