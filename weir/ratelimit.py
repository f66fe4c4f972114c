"""Per-key query rate limiting for a namespace."""

from __future__ import annotations

import threading
import time
from collections import deque

_WINDOW_SECONDS = 1.0


class RateLimitExceeded(Exception):
    """The key has used up its queries for the current window."""


class _SlidingWindowLimiter:
    """Allows at most ``threshold`` calls in any one-second window."""

    def __init__(self, threshold: int) -> None:
        self.threshold = threshold
        self._hits: deque[float] = deque()
        self._lock = threading.Lock()

    def limit(self) -> None:
        now = time.monotonic()
        with self._lock:
            while self._hits and self._hits[0] <= now - _WINDOW_SECONDS:
                self._hits.popleft()
            if len(self._hits) >= self.threshold:
                raise RateLimitExceeded("rate limit exceeded")
            self._hits.append(now)


class NamespaceRateLimiter:
    """One sliding-window limiter per key; a threshold of zero or less disables it."""

    def __init__(self, scope: str, qps_threshold: int) -> None:
        self.scope = scope
        self.qps_threshold = qps_threshold
        self._limiters: dict[str, _SlidingWindowLimiter] = {}
        self._lock = threading.Lock()

    def limit(self, key: str) -> None:
        """Count one query for ``key``; raise RateLimitExceeded over the threshold."""
        if self.qps_threshold <= 0:
            return
        with self._lock:
            limiter = self._limiters.setdefault(key, _SlidingWindowLimiter(self.qps_threshold))
        limiter.limit()