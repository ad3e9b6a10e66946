"""
StoatBot - Write-Back Cache
===========================

In-memory entries for configs and economy accounts.

DESIGN:
    Every entry carries a version that increases on each put(). A batch
    snapshots (key, version) when it is enqueued and, after its commit,
    calls mark_clean(key, version). If the entry changed in between, the
    version no longer matches and the entry stays dirty, so the newer
    value is written by a later batch instead of being lost.

    Dirty entries are never dropped by the TTL alone; the sweep in the
    manager flushes them first.

    When a batch is dropped, mark_dropped(key, version) flags the entry so
    flushes stop re-queueing that value. The flag lives on the entry, so
    the next put() starts from a fresh, writable entry.
"""

import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterator, List, Optional, Tuple


@dataclass
class CacheEntry:
    value: Any
    written_at: float
    dirty: bool = False
    version: int = 0
    dropped: bool = False


class WriteBackCache:
    """Keyed entries with a TTL, a dirty flag and a version counter."""

    def __init__(self, ttl: float, clock: Callable[[], float] = time.monotonic):
        self.ttl = ttl
        self._clock = clock
        self._entries: Dict[str, CacheEntry] = {}

    def get(self, key: str) -> Optional[CacheEntry]:
        """
        Return the entry for ``key``.

        A clean entry past its TTL counts as a miss and is dropped.
        A dirty entry is always returned since it holds the newest value.
        """
        entry = self._entries.get(key)
        if entry is None:
            return None
        if not entry.dirty and self._clock() - entry.written_at > self.ttl:
            del self._entries[key]
            return None
        return entry

    def peek(self, key: str) -> Optional[CacheEntry]:
        """Return the entry without any TTL check."""
        return self._entries.get(key)

    def put(self, key: str, value: Any, dirty: bool = False) -> CacheEntry:
        previous = self._entries.get(key)
        version = previous.version + 1 if previous else 1
        entry = CacheEntry(value=value, written_at=self._clock(), dirty=dirty, version=version)
        self._entries[key] = entry
        return entry

    def mark_clean(self, key: str, version: int) -> bool:
        """Clear the dirty flag if the entry is still at ``version``."""
        entry = self._entries.get(key)
        if entry is None or entry.version != version:
            return False
        entry.dirty = False
        return True

    def mark_dropped(self, key: str, version: int) -> bool:
        """Flag a dirty entry whose write at ``version`` was discarded."""
        entry = self._entries.get(key)
        if entry is None or entry.version != version or not entry.dirty:
            return False
        entry.dropped = True
        return True

    def evict(self, key: str) -> bool:
        return self._entries.pop(key, None) is not None

    def expired(self) -> List[Tuple[str, CacheEntry]]:
        """Entries whose age exceeds the TTL, dirty or not."""
        now = self._clock()
        return [
            (key, entry) for key, entry in self._entries.items()
            if now - entry.written_at > self.ttl
        ]

    def is_expired(self, entry: CacheEntry) -> bool:
        return self._clock() - entry.written_at > self.ttl

    def dirty_items(self) -> List[Tuple[str, CacheEntry]]:
        return [(key, entry) for key, entry in self._entries.items() if entry.dirty]

    def unsaved_items(self) -> List[Tuple[str, CacheEntry]]:
        """Dirty entries that still need a write (dropped values excluded)."""
        return [
            (key, entry) for key, entry in self._entries.items()
            if entry.dirty and not entry.dropped
        ]

    def keys(self) -> Iterator[str]:
        return iter(list(self._entries))

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: str) -> bool:
        return key in self._entries


__all__ = ["CacheEntry", "WriteBackCache"]
