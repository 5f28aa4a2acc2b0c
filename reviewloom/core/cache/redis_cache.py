"""Redis cache backend for multi-process deployments."""

import logging
from typing import Optional, Set

import redis

from .base import CacheBackend

logger = logging.getLogger(__name__)


class RedisCache(CacheBackend):
    """CacheBackend over a redis-py client.

    Prefix lookups use SCAN rather than KEYS so large keyspaces do not block
    the server.
    """

    def __init__(self, client: "redis.Redis"):
        self._client = client

    @classmethod
    def from_url(cls, url: str, socket_timeout: float = 2.0) -> "RedisCache":
        client = redis.Redis.from_url(
            url,
            decode_responses=True,
            socket_timeout=socket_timeout,
            socket_connect_timeout=socket_timeout,
            health_check_interval=30,
        )
        logger.info("Redis cache configured")
        return cls(client)

    def get(self, key: str) -> Optional[str]:
        return self._client.get(key)

    def set_with_ttl(self, key: str, value: str, ttl_seconds: int) -> None:
        self._client.setex(key, ttl_seconds, value)

    def delete(self, *keys: str) -> int:
        if not keys:
            return 0
        return int(self._client.delete(*keys))

    def find_keys_by_prefix(self, prefix: str) -> Set[str]:
        return set(self._client.scan_iter(match=f"{prefix}*", count=500))

    def ping(self) -> bool:
        return bool(self._client.ping())
