"""Cache backend contract.

Backends store opaque string values with a per-key TTL. They may raise on
connectivity problems; ResilientCache is the layer that turns those errors
into misses.
"""

from abc import ABC, abstractmethod
from typing import Optional, Set


class CacheBackend(ABC):
    """Key/value store with expiration."""

    @abstractmethod
    def get(self, key: str) -> Optional[str]:
        """Return the stored value, or None if absent or expired."""

    @abstractmethod
    def set_with_ttl(self, key: str, value: str, ttl_seconds: int) -> None:
        """Store value under key for ttl_seconds."""

    @abstractmethod
    def delete(self, *keys: str) -> int:
        """Delete keys, returning how many existed."""

    @abstractmethod
    def find_keys_by_prefix(self, prefix: str) -> Set[str]:
        """Return all live keys starting with prefix (bulk invalidation only)."""

    def ping(self) -> bool:
        return True
