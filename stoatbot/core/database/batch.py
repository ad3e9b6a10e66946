"""
StoatBot - Batch Writer
=======================

Debounced, batched write-behind for the persistence layer.

DESIGN:
    Operations are keyed by entity ("config:<id>", "economy:<id>",
    "violation:<uuid>"). A newer operation for the same key replaces the
    pending one, so upserts coalesce.

    Timing:
    - Each arrival re-arms a debounce timer (default 0.5s)
    - The timer never fires later than max_wait after the oldest pending
      operation arrived, so a steady trickle still gets written
    - Reaching max_pending flushes inline, which makes the caller wait

    A flush drains every pending key inside one transaction. If that
    transaction fails the batch is rolled back and dropped; the loss is
    logged with the affected keys and each operation's on_drop hook runs,
    so the owner of a dropped value does not queue it again. Flushes are
    serialised by a lock.
"""

import asyncio
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Callable, Dict, Optional, Tuple

from stoatbot.core import constants
from stoatbot.core.logger import logger
from stoatbot.utils.async_utils import create_safe_task

if TYPE_CHECKING:
    from stoatbot.core.database.base import DatabaseBase


@dataclass
class BatchOperation:
    key: str
    query: str
    params: Tuple
    on_commit: Optional[Callable[[], None]] = None
    on_drop: Optional[Callable[[], None]] = None


class BatchWriter:
    """Coalescing write-behind queue drained in single transactions."""

    def __init__(
        self,
        db: "DatabaseBase",
        debounce: float = constants.BATCH_DEBOUNCE_DELAY,
        max_wait: float = constants.BATCH_MAX_WAIT,
        max_pending: int = constants.BATCH_MAX_PENDING,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._db = db
        self.debounce = debounce
        self.max_wait = max_wait
        self.max_pending = max_pending
        self._clock = clock

        self._pending: Dict[str, BatchOperation] = {}
        self._oldest_at: Optional[float] = None
        self._timer: Optional[asyncio.TimerHandle] = None
        self._flush_task: Optional[asyncio.Task] = None
        self._flush_lock = asyncio.Lock()
        self._closed = False

        self.batches_committed = 0
        self.operations_committed = 0
        self.batches_dropped = 0
        self.operations_dropped = 0

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    def has_pending(self, key: str) -> bool:
        return key in self._pending

    # =========================================================================
    # Enqueue
    # =========================================================================

    async def enqueue(self, op: BatchOperation) -> None:
        """
        Queue an operation, replacing any pending one with the same key.

        Flushes inline when the queue is full.
        """
        self._pending.pop(op.key, None)
        self._pending[op.key] = op
        if self._oldest_at is None:
            self._oldest_at = self._clock()

        if len(self._pending) >= self.max_pending:
            logger.debug(f"Batch queue full ({len(self._pending)}), flushing inline")
            await self.flush()
            return

        if not self._closed:
            self._arm_timer()

    def discard(self, key: str) -> bool:
        """Drop a pending operation (the caller wrote the value itself)."""
        removed = self._pending.pop(key, None) is not None
        if not self._pending:
            self._oldest_at = None
            self._cancel_timer()
        return removed

    def _arm_timer(self) -> None:
        waited = self._clock() - (self._oldest_at or self._clock())
        delay = max(0.0, min(self.debounce, self.max_wait - waited))

        self._cancel_timer()
        loop = asyncio.get_running_loop()
        self._timer = loop.call_later(delay, self._on_timer)

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _on_timer(self) -> None:
        self._timer = None
        self._flush_task = create_safe_task(self.flush(), "Batch Flush")

    # =========================================================================
    # Flush
    # =========================================================================

    async def flush(self) -> int:
        """
        Write every pending operation in one transaction.

        Returns:
            Number of operations committed (0 when nothing was pending or
            the batch was dropped).
        """
        async with self._flush_lock:
            self._cancel_timer()
            if not self._pending:
                return 0

            batch = list(self._pending.values())
            self._pending.clear()
            self._oldest_at = None

            try:
                async with self._db.transaction() as tx:
                    for op in batch:
                        await tx.execute(op.query, op.params)
            except Exception as e:
                self.batches_dropped += 1
                self.operations_dropped += len(batch)
                keys = ", ".join(op.key for op in batch[:5])
                if len(batch) > 5:
                    keys += f" (+{len(batch) - 5} more)"
                logger.error("Batch Flush Failed - Writes Dropped", [
                    ("Operations", str(len(batch))),
                    ("Keys", keys),
                    ("Error Type", type(e).__name__),
                    ("Error", str(e)[:100]),
                ])
                for op in batch:
                    if op.on_drop is not None:
                        op.on_drop()
                return 0

            for op in batch:
                if op.on_commit is not None:
                    op.on_commit()

            self.batches_committed += 1
            self.operations_committed += len(batch)
            logger.debug(f"Batch committed: {len(batch)} operations")
            return len(batch)

    async def close(self) -> None:
        """Drain the queue and stop arming timers. Safe to call twice."""
        self._closed = True
        self._cancel_timer()
        await self.flush()
        if self._flush_task is not None and not self._flush_task.done():
            await self._flush_task

    def exclusive(self) -> asyncio.Lock:
        """Lock held by every flush; hold it to keep batches from committing."""
        return self._flush_lock

    def stats(self) -> Dict[str, int]:
        return {
            "pending": len(self._pending),
            "batches_committed": self.batches_committed,
            "operations_committed": self.operations_committed,
            "batches_dropped": self.batches_dropped,
            "operations_dropped": self.operations_dropped,
        }


__all__ = ["BatchOperation", "BatchWriter"]
