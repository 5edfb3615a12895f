# services/rate_limit.py
"""
Per-key interval limiter with an injectable clock.

Used to keep repeated warnings (unconfigured provider, bad webhook
signatures) from flooding the log: ``allow(key)`` is True at most once
per ``interval_sec`` for the same key.
"""

from __future__ import annotations
import threading
import time
from typing import Callable, Dict


class RateLimiter:
    def __init__(self, interval_sec: float, clock: Callable[[], float] = time.monotonic):
        self.interval_sec = float(interval_sec)
        self._clock = clock
        self._last: Dict[str, float] = {}
        self._suppressed: Dict[str, int] = {}
        self._lock = threading.Lock()

    def allow(self, key: str) -> bool:
        now = self._clock()
        with self._lock:
            last = self._last.get(key)
            if last is not None and (now - last) < self.interval_sec:
                self._suppressed[key] = self._suppressed.get(key, 0) + 1
                return False
            self._last[key] = now
            return True

    def suppressed(self, key: str) -> int:
        """How many calls were refused since the last allowed one; resets the count."""
        with self._lock:
            return self._suppressed.pop(key, 0)

    def reset(self, key: str | None = None) -> None:
        with self._lock:
            if key is None:
                self._last.clear()
                self._suppressed.clear()
            else:
                self._last.pop(key, None)
                self._suppressed.pop(key, None)
