"""Sliding-window in-memory rate limiter keyed by client."""

from __future__ import annotations

import threading
import time
from collections import defaultdict, deque
from typing import Callable


class RateLimiter:
    def __init__(self, max_requests: int, window_seconds: int, clock: Callable[[], float] = time.monotonic) -> None:
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self.hits: defaultdict[str, deque[float]] = defaultdict(deque)
        self._clock = clock
        self._lock = threading.Lock()

    def allow(self, key: str) -> bool:
        if self.max_requests <= 0:
            return True
        with self._lock:
            current = self._clock()
            window_start = current - self.window_seconds
            queue = self.hits[key]
            while queue and queue[0] <= window_start:
                queue.popleft()
            if len(queue) >= self.max_requests:
                return False
            queue.append(current)
            return True

    def reset(self) -> None:
        with self._lock:
            self.hits.clear()
