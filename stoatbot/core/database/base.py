"""
StoatBot - Database Base Module
===============================

Core connection, execution and transaction methods over aiosqlite.

DESIGN:
    The connection runs in autocommit mode (isolation_level=None) and every
    transaction is explicit: BEGIN IMMEDIATE, then COMMIT or ROLLBACK. One
    asyncio.Lock guards the connection. A transaction holds that lock from
    begin() until commit()/rollback(), so plain statements from other
    coroutines can never interleave with an open transaction.

    Reads go through retry + the store circuit breaker.
    Writes go through the breaker only; callers decide about retrying.
    sqlite3.OperationalError (locked, busy, I/O) is raised as
    TransientInfraError so it is retried and counted by the breaker.
"""

import asyncio
import json
import sqlite3
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, AsyncIterator, List, Optional, Tuple

import aiosqlite

from stoatbot.core import constants
from stoatbot.core.errors import FatalInitError, TransientInfraError, ValidationError
from stoatbot.core.logger import logger
from stoatbot.utils.circuit_breaker import CircuitBreaker
from stoatbot.utils.retry import backoff_delay, retry_async


# =============================================================================
# Helper Functions
# =============================================================================

def _safe_json_loads(value: Optional[str], default: Any = None) -> Any:
    """Safely parse JSON, returning default on error."""
    if not value:
        return default
    try:
        return json.loads(value)
    except (json.JSONDecodeError, ValueError, TypeError):
        logger.warning(f"Corrupted JSON in database: {str(value)[:50]}")
        return default


def _store_error(error: sqlite3.OperationalError) -> TransientInfraError:
    """Locked, busy or I/O failures from SQLite, as a retryable store error."""
    return TransientInfraError(f"Store operation failed: {error}")


# =============================================================================
# Transaction Handle
# =============================================================================

class Transaction:
    """
    Statements issued while the store lock is held by a transaction.

    Usage:
        async with db.transaction() as tx:
            await tx.execute("UPDATE economy SET ...", (...))
            row = await tx.fetchone("SELECT ...", (...))
        # Commits on success, rolls back on exception
    """

    def __init__(self, db: "DatabaseBase"):
        self._db = db

    async def execute(self, query: str, params: Tuple = ()) -> int:
        """Execute a statement inside the transaction. Returns lastrowid."""
        self._db._require_transaction()
        return await self._db._execute_unlocked(query, params)

    async def fetchone(self, query: str, params: Tuple = ()) -> Optional[aiosqlite.Row]:
        self._db._require_transaction()
        return await self._db._fetchone_unlocked(query, params)

    async def fetchall(self, query: str, params: Tuple = ()) -> List[aiosqlite.Row]:
        self._db._require_transaction()
        return await self._db._fetchall_unlocked(query, params)


# =============================================================================
# Base Database Class
# =============================================================================

class DatabaseBase:
    """Connection owner for the relational store."""

    def _init_base(
        self,
        path: str,
        breaker: Optional[CircuitBreaker] = None,
        retry_attempts: int = constants.RETRY_MAX_ATTEMPTS,
        retry_base_delay: float = constants.RETRY_BASE_DELAY,
        retry_max_delay: float = constants.RETRY_MAX_DELAY,
    ) -> None:
        self.path = path
        self._conn: Optional[aiosqlite.Connection] = None
        self._lock = asyncio.Lock()
        self._in_transaction = False
        self._breaker = breaker or CircuitBreaker("store")
        self._retry_attempts = retry_attempts
        self._retry_base_delay = retry_base_delay
        self._retry_max_delay = retry_max_delay

    @property
    def breaker(self) -> CircuitBreaker:
        return self._breaker

    @property
    def connected(self) -> bool:
        return self._conn is not None

    # =========================================================================
    # Connection Management
    # =========================================================================

    async def connect(self) -> None:
        """
        Open the connection, retrying a few times.

        Raises:
            FatalInitError: If the store cannot be opened.
        """
        if self.path != ":memory:":
            try:
                Path(self.path).parent.mkdir(parents=True, exist_ok=True)
            except OSError as e:
                raise FatalInitError(f"Cannot create database directory for {self.path}: {e}") from e

        last_error: Optional[Exception] = None
        for attempt in range(constants.DB_CONNECT_ATTEMPTS):
            try:
                conn = await aiosqlite.connect(self.path, isolation_level=None)
                conn.row_factory = aiosqlite.Row
                await conn.execute("PRAGMA journal_mode=WAL")
                await conn.execute("PRAGMA synchronous=NORMAL")
                await conn.execute("PRAGMA busy_timeout=5000")
                self._conn = conn
                return
            except (sqlite3.Error, OSError) as e:
                last_error = e
                logger.warning("Database Connect Failed", [
                    ("Path", self.path),
                    ("Attempt", f"{attempt + 1}/{constants.DB_CONNECT_ATTEMPTS}"),
                    ("Error", str(e)[:100]),
                ])
                if attempt < constants.DB_CONNECT_ATTEMPTS - 1:
                    await asyncio.sleep(backoff_delay(attempt, self._retry_base_delay, self._retry_max_delay))

        raise FatalInitError(f"Cannot open database at {self.path}: {last_error}") from last_error

    async def close(self) -> None:
        async with self._lock:
            if self._conn is not None:
                await self._conn.close()
                self._conn = None
                logger.info("Database Connection Closed")

    def _require_connection(self) -> aiosqlite.Connection:
        if self._conn is None:
            raise sqlite3.ProgrammingError("Database is not connected")
        return self._conn

    # =========================================================================
    # Unlocked Primitives (caller holds self._lock)
    # =========================================================================

    async def _execute_unlocked(self, query: str, params: Tuple = ()) -> int:
        conn = self._require_connection()
        try:
            cursor = await conn.execute(query, params)
        except sqlite3.OperationalError as e:
            raise _store_error(e) from e
        try:
            return cursor.lastrowid
        finally:
            await cursor.close()

    async def _fetchone_unlocked(self, query: str, params: Tuple = ()) -> Optional[aiosqlite.Row]:
        conn = self._require_connection()
        try:
            async with conn.execute(query, params) as cursor:
                return await cursor.fetchone()
        except sqlite3.OperationalError as e:
            raise _store_error(e) from e

    async def _fetchall_unlocked(self, query: str, params: Tuple = ()) -> List[aiosqlite.Row]:
        conn = self._require_connection()
        try:
            async with conn.execute(query, params) as cursor:
                return list(await cursor.fetchall())
        except sqlite3.OperationalError as e:
            raise _store_error(e) from e

    # =========================================================================
    # Locked Statements
    # =========================================================================

    async def _fetchone_locked(self, query: str, params: Tuple) -> Optional[aiosqlite.Row]:
        async with self._lock:
            return await self._fetchone_unlocked(query, params)

    async def _fetchall_locked(self, query: str, params: Tuple) -> List[aiosqlite.Row]:
        async with self._lock:
            return await self._fetchall_unlocked(query, params)

    async def _execute_locked(self, query: str, params: Tuple) -> int:
        async with self._lock:
            return await self._execute_unlocked(query, params)

    async def fetchone(self, query: str, params: Tuple = ()) -> Optional[aiosqlite.Row]:
        """Execute a read and fetch one row (retry + breaker)."""
        return await retry_async(
            self._fetchone_locked, query, params,
            max_attempts=self._retry_attempts,
            base_delay=self._retry_base_delay,
            max_delay=self._retry_max_delay,
            breaker=self._breaker,
        )

    async def fetchall(self, query: str, params: Tuple = ()) -> List[aiosqlite.Row]:
        """Execute a read and fetch all rows (retry + breaker)."""
        return await retry_async(
            self._fetchall_locked, query, params,
            max_attempts=self._retry_attempts,
            base_delay=self._retry_base_delay,
            max_delay=self._retry_max_delay,
            breaker=self._breaker,
        )

    async def execute(self, query: str, params: Tuple = ()) -> int:
        """Execute a single write in autocommit mode (breaker only). Returns lastrowid."""
        return await self._breaker.call(self._execute_locked, query, params)

    # =========================================================================
    # Transaction Support
    # =========================================================================

    def _require_transaction(self) -> None:
        if not self._in_transaction:
            raise sqlite3.ProgrammingError("No transaction is open")

    async def begin(self) -> Transaction:
        """
        Acquire the store lock and open a write transaction.

        The lock stays held until commit() or rollback().
        """
        await self._lock.acquire()
        try:
            await self._breaker.call(self._execute_unlocked, "BEGIN IMMEDIATE")
        except BaseException:
            self._lock.release()
            raise
        self._in_transaction = True
        return Transaction(self)

    async def commit(self) -> None:
        """Commit the open transaction and release the store lock."""
        self._require_transaction()
        try:
            await self._breaker.call(self._execute_unlocked, "COMMIT")
        except Exception:
            await self._rollback_quietly()
            raise
        finally:
            self._end_transaction()

    async def rollback(self) -> None:
        """Roll back the open transaction and release the store lock."""
        self._require_transaction()
        try:
            await self._rollback_quietly()
        finally:
            self._end_transaction()

    async def _rollback_quietly(self) -> None:
        try:
            await self._execute_unlocked("ROLLBACK")
        except (sqlite3.Error, TransientInfraError) as e:
            # Nothing left to undo when COMMIT already ended the transaction.
            logger.debug(f"Rollback skipped: {e}")

    def _end_transaction(self) -> None:
        self._in_transaction = False
        self._lock.release()

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[Transaction]:
        """Open a transaction that commits on success and rolls back on error."""
        tx = await self.begin()
        try:
            yield tx
        except BaseException as e:
            if self._in_transaction:
                await self.rollback()
            if not isinstance(e, ValidationError):
                logger.warning("Database Transaction Rolled Back", [
                    ("Error Type", type(e).__name__),
                    ("Error", str(e)[:100]),
                ])
            raise
        else:
            await self.commit()


__all__ = [
    "DatabaseBase",
    "Transaction",
    "_safe_json_loads",
]
