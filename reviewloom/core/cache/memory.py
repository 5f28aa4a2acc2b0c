"""Thread-safe in-process cache with per-key TTL.

Default backend for single-process deployments and tests. Entries expire
lazily on read and are purged during prefix scans.

Usage:
    cache = InMemoryCache()
    cache.set_with_ttl("analysis:c123", payload, 3600)
    cache.get("analysis:c123")
    cache.delete("analysis:c123")
"""

import logging
import threading
import time
from typing import Callable, Dict, Optional, Set, Tuple

from .base import CacheBackend

logger = logging.getLogger(__name__)


class InMemoryCache(CacheBackend):
    """Dict-backed cache guarded by a lock.

    Attributes:
        clock: Time source in seconds (injectable for tests)
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._entries: Dict[str, Tuple[str, float]] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            value, expires_at = entry
            if self._clock() >= expires_at:
                del self._entries[key]
                logger.debug(f"Cache expired for {key}")
                return None
            return value

    def set_with_ttl(self, key: str, value: str, ttl_seconds: int) -> None:
        with self._lock:
            self._entries[key] = (value, self._clock() + ttl_seconds)

    def delete(self, *keys: str) -> int:
        removed = 0
        with self._lock:
            for key in keys:
                if self._entries.pop(key, None) is not None:
                    removed += 1
        return removed

    def find_keys_by_prefix(self, prefix: str) -> Set[str]:
        with self._lock:
            now = self._clock()
            expired = [k for k, (_, exp) in self._entries.items() if now >= exp]
            for key in expired:
                del self._entries[key]
            return {k for k in self._entries if k.startswith(prefix)}

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def get_stats(self) -> Dict:
        """Entry count and oldest remaining TTL, for health output."""
        with self._lock:
            now = self._clock()
            live = [exp - now for _, exp in self._entries.values() if exp > now]
            return {
                "entries": len(live),
                "min_remaining_ttl_sec": int(min(live)) if live else 0,
            }
