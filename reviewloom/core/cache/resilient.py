"""JSON cache facade that never fails a request.

Wraps a CacheBackend and converts every backend error into a logged miss
(reads) or a logged no-op (writes, deletes). The cache is never the source
of truth, so callers always fall through to the database or the adapters.
"""

import json
import logging
from typing import Any, Optional, Set

from .base import CacheBackend
from . import keys

logger = logging.getLogger(__name__)


class ResilientCache:
    """Read-through helper plus scoped invalidation."""

    def __init__(self, backend: CacheBackend):
        self._backend = backend

    @property
    def backend(self) -> CacheBackend:
        return self._backend

    # ── Primitive operations ────────────────────────────────────────────

    def get_json(self, key: str) -> Optional[Any]:
        try:
            raw = self._backend.get(key)
        except Exception as e:
            logger.warning(f"Cache read failed for {key}, treating as miss: {e}")
            return None
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except (TypeError, ValueError) as e:
            logger.warning(f"Discarding undecodable cache entry {key}: {e}")
            self.delete(key)
            return None

    def set_json(self, key: str, value: Any, ttl_seconds: int) -> None:
        try:
            payload = json.dumps(value, default=str)
            self._backend.set_with_ttl(key, payload, ttl_seconds)
        except Exception as e:
            logger.warning(f"Cache write failed for {key}: {e}")

    def delete(self, *cache_keys: str) -> None:
        if not cache_keys:
            return
        try:
            self._backend.delete(*cache_keys)
        except Exception as e:
            logger.warning(f"Cache delete failed for {list(cache_keys)}: {e}")

    def delete_prefix(self, prefix: str) -> None:
        try:
            matched = self._backend.find_keys_by_prefix(prefix)
            if matched:
                self._backend.delete(*matched)
                logger.debug(f"Invalidated {len(matched)} cache entries under {prefix}")
        except Exception as e:
            logger.warning(f"Cache prefix invalidation failed for {prefix}: {e}")

    def find_keys(self, prefix: str) -> Set[str]:
        try:
            return self._backend.find_keys_by_prefix(prefix)
        except Exception as e:
            logger.warning(f"Cache key scan failed for {prefix}: {e}")
            return set()

    def is_available(self) -> bool:
        try:
            return self._backend.ping()
        except Exception:
            return False

    # ── Scoped invalidation ─────────────────────────────────────────────

    def invalidate_user_views(self, user_id: str) -> None:
        """Drop every listing page and the statistics of one user."""
        self.delete_prefix(keys.user_listing_prefix(user_id))
        self.delete(keys.user_stats_key(user_id))

    def invalidate_analysis(self, analysis_id: str, user_id: str) -> None:
        """Drop every entry that could be derived from one analysis record."""
        self.delete(keys.analysis_key(analysis_id), keys.analysis_status_key(analysis_id))
        self.invalidate_user_views(user_id)

    def invalidate_repositories(self, user_id: str, repository_id: Optional[str] = None) -> None:
        """Repository listings and detail carry analysis counts and recent analyses."""
        self.delete_prefix(keys.repository_listing_prefix(user_id))
        if repository_id:
            self.delete(keys.repository_detail_key(repository_id, user_id))
