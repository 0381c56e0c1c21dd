"""In-memory sliding window rate limiter implementation."""

from __future__ import annotations

import math
import time
from collections import deque
from threading import Lock
from typing import Callable, Deque, DefaultDict, Protocol


class RateLimiter(Protocol):
    """Request throttle consulted by the HTTP layer before any credential work."""

    def allow(self, key: str) -> bool: ...

    def retry_after(self, key: str) -> int: ...

    def reset(self, key: str) -> None: ...


class SlidingWindowRateLimiter:
    """Thread-safe sliding window rate limiter."""

    def __init__(
        self,
        max_requests: int,
        window_seconds: int,
        *,
        time_fn: Callable[[], float] = time.time,
    ) -> None:
        """Initialise limiter parameters and per-key storage."""
        self._max_requests = max_requests
        self._window = window_seconds
        self._time = time_fn
        self._events: DefaultDict[str, Deque[float]] = DefaultDict(deque)
        self._lock = Lock()

    def allow(self, key: str) -> bool:
        """Return ``True`` when the request is within the configured rate limit."""
        now = self._time()
        with self._lock:
            queue = self._events[key]
            self._evict(queue, now)
            if len(queue) >= self._max_requests:
                return False
            queue.append(now)
            return True

    def retry_after(self, key: str) -> int:
        """Seconds until ``key`` may be admitted again; ``0`` when it already may."""
        now = self._time()
        with self._lock:
            queue = self._events.get(key)
            if not queue:
                return 0
            self._evict(queue, now)
            if len(queue) < self._max_requests:
                return 0
            return max(1, math.ceil(queue[0] + self._window - now))

    def reset(self, key: str) -> None:
        with self._lock:
            self._events.pop(key, None)

    def _evict(self, queue: Deque[float], now: float) -> None:
        while queue and now - queue[0] >= self._window:
            queue.popleft()
