"""Per-key sliding window rate limiter.

Each key (typically ``"<scope>:<user_id>"``) keeps a deque of hit
timestamps; hits older than the window are discarded before counting.

Usage:
    limiter = SlidingWindowRateLimiter(max_requests=5, window_seconds=900)
    limiter.hit(f"analysis_creation:{user_id}")   # raises RateLimitError
"""

import logging
import math
import threading
import time
from collections import deque
from typing import Callable, Deque, Dict

from .exceptions import RateLimitError

logger = logging.getLogger(__name__)


class SlidingWindowRateLimiter:
    """Thread-safe in-process limiter."""

    def __init__(
        self,
        max_requests: int,
        window_seconds: int,
        message: str = "Too many requests. Please try again later.",
        clock: Callable[[], float] = time.monotonic,
    ):
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self.message = message
        self._clock = clock
        self._hits: Dict[str, Deque[float]] = {}
        self._last_sweep = clock()
        self._lock = threading.Lock()

    def hit(self, key: str) -> int:
        """Record one request for key. Returns remaining quota.

        Raises:
            RateLimitError: The key already used its quota in this window
        """
        now = self._clock()
        with self._lock:
            cutoff = now - self.window_seconds
            if now - self._last_sweep >= self.window_seconds:
                self._sweep(cutoff)
                self._last_sweep = now

            hits = self._hits.setdefault(key, deque())
            while hits and hits[0] <= cutoff:
                hits.popleft()

            if len(hits) >= self.max_requests:
                retry_after = max(1, math.ceil(hits[0] + self.window_seconds - now))
                logger.warning(f"Rate limit exceeded for {key} (retry in {retry_after}s)")
                raise RateLimitError(self.message, retry_after=retry_after)

            hits.append(now)
            return self.max_requests - len(hits)

    def _sweep(self, cutoff: float) -> None:
        """Forget keys whose newest hit has left the window. Caller holds the lock."""
        idle = [key for key, hits in self._hits.items() if not hits or hits[-1] <= cutoff]
        for key in idle:
            del self._hits[key]

    def reset(self, key: str = None) -> None:
        with self._lock:
            if key is None:
                self._hits.clear()
            else:
                self._hits.pop(key, None)
