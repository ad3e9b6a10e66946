"""
StoatBot - Persistence Manager
==============================

Read-through / write-back persistence over the SQLite store.

DESIGN:
    One PersistenceManager is built by the bot at startup and handed to
    the services that need it (no global accessor). It combines:

    - DatabaseBase: the aiosqlite connection, lock and transactions
    - WriteBackCache: config and economy entries with dirty/version flags
    - BatchWriter: debounced single-transaction flushes
    - Domain mixins: configs, economy, violations

    A background sweep evicts entries older than the cache TTL. Dirty
    entries are flushed before eviction and kept if that flush fails.
    A value whose batch was dropped is never queued again; the next write
    to the same key replaces it.
"""

import asyncio
import sqlite3
import time
from typing import Any, Callable, Dict, Optional

from stoatbot.core import constants
from stoatbot.core.config import Config
from stoatbot.core.database.base import DatabaseBase
from stoatbot.core.database.batch import BatchOperation, BatchWriter
from stoatbot.core.database.cache import CacheEntry, WriteBackCache
from stoatbot.core.database.configs import ConfigsMixin
from stoatbot.core.database.economy import EconomyMixin
from stoatbot.core.database.schema import SchemaMixin
from stoatbot.core.database.violations import ViolationsMixin
from stoatbot.core.errors import FatalInitError, TransientInfraError
from stoatbot.core.logger import logger
from stoatbot.utils.async_utils import create_safe_task
from stoatbot.utils.circuit_breaker import CircuitBreaker


class PersistenceManager(
    SchemaMixin,
    ConfigsMixin,
    EconomyMixin,
    ViolationsMixin,
    DatabaseBase,
):
    """Config, economy and violation storage with a write-back cache."""

    def __init__(
        self,
        path: str,
        default_prefix: str = "!",
        cache_ttl: float = constants.CACHE_TTL,
        sweep_interval: float = constants.CACHE_SWEEP_INTERVAL,
        batch_debounce: float = constants.BATCH_DEBOUNCE_DELAY,
        batch_max_wait: float = constants.BATCH_MAX_WAIT,
        batch_max_pending: int = constants.BATCH_MAX_PENDING,
        breaker: Optional[CircuitBreaker] = None,
        retry_attempts: int = constants.RETRY_MAX_ATTEMPTS,
        retry_base_delay: float = constants.RETRY_BASE_DELAY,
        retry_max_delay: float = constants.RETRY_MAX_DELAY,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._init_base(
            path,
            breaker=breaker,
            retry_attempts=retry_attempts,
            retry_base_delay=retry_base_delay,
            retry_max_delay=retry_max_delay,
        )
        self.default_prefix = default_prefix
        self._cache = WriteBackCache(cache_ttl, clock=clock)
        self._writer = BatchWriter(
            self,
            debounce=batch_debounce,
            max_wait=batch_max_wait,
            max_pending=batch_max_pending,
        )
        self._economy_lock = asyncio.Lock()
        self._sweep_interval = sweep_interval
        self._sweep_task: Optional[asyncio.Task] = None
        self._closed = False

    @classmethod
    def from_config(cls, config: Config, breaker: Optional[CircuitBreaker] = None) -> "PersistenceManager":
        return cls(
            config.database_path,
            default_prefix=config.default_prefix,
            cache_ttl=config.cache_ttl,
            sweep_interval=config.cache_sweep_interval,
            batch_debounce=config.batch_debounce_delay,
            batch_max_wait=config.batch_max_wait,
            batch_max_pending=config.batch_max_pending,
            breaker=breaker or CircuitBreaker(
                "store",
                failure_threshold=config.breaker_failure_threshold,
                cooldown=config.breaker_cooldown,
                success_threshold=config.breaker_success_threshold,
            ),
            retry_attempts=config.retry_max_attempts,
            retry_base_delay=config.retry_base_delay,
            retry_max_delay=config.retry_max_delay,
        )

    @property
    def cache(self) -> WriteBackCache:
        return self._cache

    @property
    def writer(self) -> BatchWriter:
        return self._writer

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def initialize(self, start_sweeper: bool = True) -> None:
        """
        Connect, create tables and start the eviction sweep.

        Raises:
            FatalInitError: If the store is unreachable or the schema cannot be created.
        """
        await self.connect()
        try:
            await self._init_tables()
        except (sqlite3.Error, TransientInfraError) as e:
            await self.close()
            raise FatalInitError(f"Cannot initialise database schema: {e}") from e

        if start_sweeper:
            self._sweep_task = create_safe_task(self._sweep_loop(), "Cache Sweep")

        logger.tree("Persistence Initialized", [
            ("Path", self.path),
            ("Cache TTL", f"{self._cache.ttl:.0f}s"),
            ("Sweep Interval", f"{self._sweep_interval:.0f}s"),
            ("Batch Window", f"{self._writer.debounce}s (max {self._writer.max_wait}s)"),
            ("Max Pending", str(self._writer.max_pending)),
        ], emoji="🗄️")

    async def shutdown(self) -> None:
        """Flush dirty entries, drain batches and close the store. Idempotent."""
        if self._closed:
            return
        self._closed = True

        if self._sweep_task is not None:
            self._sweep_task.cancel()
            await asyncio.gather(self._sweep_task, return_exceptions=True)
            self._sweep_task = None

        try:
            if self.connected:
                await self.flush()
                await self._writer.close()
        finally:
            await self.close()

        stats = self._writer.stats()
        logger.tree("Persistence Shut Down", [
            ("Batches Committed", str(stats["batches_committed"])),
            ("Batches Dropped", str(stats["batches_dropped"])),
            ("Unsaved Entries", str(len(self._cache.dirty_items()))),
        ], emoji="🗄️")

    # =========================================================================
    # Flush & Sweep
    # =========================================================================

    def _op_for(self, key: str, entry: CacheEntry) -> Optional[BatchOperation]:
        kind, _, ident = key.partition(":")
        if kind == "config":
            return self._config_op(int(ident), entry)
        if kind == "economy":
            return self._account_op(entry)
        return None

    async def flush(self) -> int:
        """Queue every unsaved cache entry and write all pending batches now."""
        for key, entry in self._cache.unsaved_items():
            op = self._op_for(key, entry)
            if op is not None:
                await self._writer.enqueue(op)
        return await self._writer.flush()

    async def sweep(self) -> int:
        """
        Evict entries older than the cache TTL.

        Dirty entries among them are flushed first; any that are still dirty
        afterwards (flush failed, or rewritten meanwhile) are kept. An entry
        whose write was already dropped before this sweep is not written
        again: it is evicted and the store value becomes current.

        Returns:
            Number of entries evicted.
        """
        expired = self._cache.expired()
        if not expired:
            return 0

        dropped_before = {key: entry for key, entry in expired if entry.dirty and entry.dropped}
        unsaved = [(key, entry) for key, entry in expired if entry.dirty and not entry.dropped]
        for key, entry in unsaved:
            op = self._op_for(key, entry)
            if op is not None:
                await self._writer.enqueue(op)
        if unsaved:
            await self._writer.flush()

        evicted = 0
        kept = 0
        discarded = 0
        for key, _ in expired:
            entry = self._cache.peek(key)
            if entry is None:
                continue
            if entry.dirty:
                if dropped_before.get(key) is entry:
                    self._cache.evict(key)
                    discarded += 1
                else:
                    kept += 1
                continue
            if self._cache.is_expired(entry):
                self._cache.evict(key)
                evicted += 1

        if discarded:
            logger.warning("Cache Sweep Discarded Unsaved Entries", [
                ("Discarded", str(discarded)),
                ("Keys", ", ".join(list(dropped_before)[:5])),
            ])
        if kept:
            logger.warning("Cache Sweep Kept Dirty Entries", [
                ("Kept", str(kept)),
                ("Evicted", str(evicted)),
            ])
        elif evicted:
            logger.debug(f"Cache sweep evicted {evicted} entries")
        return evicted + discarded

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self._sweep_interval)
            try:
                await self.sweep()
            except Exception as e:
                logger.error("Cache Sweep Failed", [
                    ("Error Type", type(e).__name__),
                    ("Error", str(e)[:100]),
                ])

    def stats(self) -> Dict[str, Any]:
        return {
            "cache_size": len(self._cache),
            "dirty": len(self._cache.dirty_items()),
            "writer": self._writer.stats(),
            "breaker": self._breaker.stats(),
        }


__all__ = ["PersistenceManager"]
