"""
StoatBot - Shared Cache Utilities
=================================

TTL-based cache used by the dispatcher to front command resolution.
"""

import time
from typing import Callable, Dict, Generic, Optional, Tuple, TypeVar

K = TypeVar("K")
V = TypeVar("V")


class TTLCache(Generic[K, V]):
    """
    A simple TTL-based cache with automatic expiration.

    Safe for single-threaded async use. When full, the oldest entry is
    evicted to make room.
    """

    def __init__(
        self,
        ttl: float,
        max_size: int = 100,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Args:
            ttl: Time-to-live for cached items, in seconds.
            max_size: Maximum number of items to store.
            clock: Monotonic time source (injectable for tests).
        """
        self._ttl = ttl
        self._max_size = max_size
        self._clock = clock
        self._cache: Dict[K, Tuple[V, float]] = {}

    def get(self, key: K) -> Optional[V]:
        """Return the cached value, or None if missing or expired."""
        entry = self._cache.get(key)
        if entry is None:
            return None

        value, cached_at = entry
        if self._clock() - cached_at > self._ttl:
            self._cache.pop(key, None)
            return None

        return value

    def set(self, key: K, value: V) -> None:
        if len(self._cache) >= self._max_size and key not in self._cache:
            self._evict_oldest()

        self._cache[key] = (value, self._clock())

    def delete(self, key: K) -> bool:
        """Delete an item. Returns True if it was present."""
        return self._cache.pop(key, None) is not None

    def clear(self) -> None:
        self._cache.clear()

    def _evict_oldest(self) -> None:
        if not self._cache:
            return
        oldest_key = min(self._cache, key=lambda k: self._cache[k][1])
        del self._cache[oldest_key]

    def cleanup_expired(self) -> int:
        """
        Remove all expired items from the cache.

        Returns:
            Number of items removed.
        """
        now = self._clock()
        expired_keys = [
            k for k, (_, cached_at) in self._cache.items()
            if now - cached_at > self._ttl
        ]
        for key in expired_keys:
            del self._cache[key]
        return len(expired_keys)

    def __len__(self) -> int:
        return len(self._cache)

    def __contains__(self, key: K) -> bool:
        return self.get(key) is not None


__all__ = ["TTLCache"]
