"""Cache layer: backends, key builders, and the resilient JSON facade."""

import logging

from .base import CacheBackend
from .memory import InMemoryCache
from .resilient import ResilientCache
from . import keys

logger = logging.getLogger(__name__)


def build_cache(backend: str = "memory", redis_url: str = None) -> ResilientCache:
    """Create the configured cache. Redis needs a URL; memory needs nothing."""
    if backend == "redis":
        if not redis_url:
            raise ValueError("REDIS_URL is required for the redis cache backend")
        from .redis_cache import RedisCache
        return ResilientCache(RedisCache.from_url(redis_url))
    logger.info("Using in-memory cache backend")
    return ResilientCache(InMemoryCache())


__all__ = [
    "CacheBackend",
    "InMemoryCache",
    "ResilientCache",
    "build_cache",
    "keys",
]
