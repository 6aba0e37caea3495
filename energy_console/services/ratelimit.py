# energy_console/services/ratelimit.py
"""Per-client sliding-window limits for lead submission and formula execution."""
from __future__ import annotations

import logging
import time
from collections import defaultdict, deque
from threading import Lock
from typing import Callable, Deque, Dict

from energy_console.services.errors import RateLimited

logger = logging.getLogger(__name__)


class RateLimiter:
    def __init__(self, max_requests: int, window_seconds: float = 60.0,
                 clock: Callable[[], float] = time.monotonic):
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self._clock = clock
        self._hits: Dict[str, Deque[float]] = defaultdict(deque)
        self._lock = Lock()

    def allow(self, key: str) -> bool:
        """Record a hit for ``key`` and report whether it is within the limit."""
        with self._lock:
            now = self._clock()
            hits = self._hits[key]
            cutoff = now - self.window_seconds
            while hits and hits[0] <= cutoff:
                hits.popleft()
            if len(hits) >= self.max_requests:
                logger.warning("Rate limit exceeded for %s (%d per %ss)", key, self.max_requests, self.window_seconds)
                return False
            hits.append(now)
            return True

    def check(self, key: str) -> None:
        if not self.allow(key):
            raise RateLimited("Too many requests. Please try again later.")

    def reset(self, key: str | None = None) -> None:
        with self._lock:
            if key is None:
                self._hits.clear()
            else:
                self._hits.pop(key, None)
