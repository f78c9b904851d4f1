from __future__ import annotations

import math
import time
from collections import deque
from threading import Lock
from typing import Callable, Deque, Dict


class RateLimiter:
    """In-memory sliding window limiter keyed by client address."""

    def __init__(
        self,
        limit: int,
        window_seconds: int,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.limit = max(1, limit)
        self.window = max(1, window_seconds)
        self._clock = clock
        self._hits: Dict[str, Deque[float]] = {}
        self._lock = Lock()

    def _prune(self, bucket: Deque[float], now: float) -> None:
        while bucket and now - bucket[0] >= self.window:
            bucket.popleft()

    def allow(self, key: str) -> bool:
        """Register a hit for ``key``. Returns False once the window is full."""
        now = self._clock()
        with self._lock:
            bucket = self._hits.setdefault(key, deque())
            self._prune(bucket, now)
            if len(bucket) >= self.limit:
                return False
            bucket.append(now)
            return True

    def retry_after(self, key: str) -> int:
        """Seconds until ``key`` may send another request (0 when allowed now)."""
        now = self._clock()
        with self._lock:
            bucket = self._hits.get(key)
            if not bucket:
                return 0
            self._prune(bucket, now)
            if len(bucket) < self.limit:
                return 0
            return max(1, math.ceil(self.window - (now - bucket[0])))
