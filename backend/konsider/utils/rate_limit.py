"""In-memory rate limiter used to slow down credential guessing."""

from __future__ import annotations

import threading
import time
from collections import defaultdict, deque


class InMemoryRateLimiter:
    """Sliding-window limiter per key (e.g. `client_ip:/api/v1/auth/login`)."""

    def __init__(self, clock=time.monotonic):
        self._hits = defaultdict(deque)
        self._lock = threading.Lock()
        self._clock = clock
        self._last_sweep = clock()

    def allow(self, key: str, max_requests: int, window_seconds: int) -> tuple[bool, int]:
        """Record a hit for `key` and report whether it is allowed.

        Returns `(allowed, retry_after_seconds)`; `retry_after` is 0 when
        the hit is allowed. A non-positive `max_requests` disables limiting.
        """
        if max_requests <= 0:
            return True, 0
        now = self._clock()
        with self._lock:
            cutoff = now - window_seconds
            if now - self._last_sweep >= window_seconds:
                self._sweep(cutoff)
                self._last_sweep = now
            hits = self._hits[key]
            while hits and hits[0] <= cutoff:
                hits.popleft()
            if len(hits) >= max_requests:
                return False, max(1, int(window_seconds - (now - hits[0])))
            hits.append(now)
        return True, 0

    def _sweep(self, cutoff: float) -> None:
        # forget keys with no hit inside the window
        idle = [key for key, hits in self._hits.items() if not hits or hits[-1] <= cutoff]
        for key in idle:
            del self._hits[key]

    def __len__(self) -> int:
        with self._lock:
            return len(self._hits)

    def reset(self, key: str | None = None) -> None:
        with self._lock:
            if key is None:
                self._hits.clear()
            else:
                self._hits.pop(key, None)
