"""
StoatBot - Database Schema Module
=================================

Table definitions.
"""

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from stoatbot.core.database.manager import PersistenceManager


class SchemaMixin:
    """Mixin for database schema initialization."""

    async def _init_tables(self: "PersistenceManager") -> None:
        """
        Create all tables and indexes.

        DESIGN: Tables are created if not exist, allowing safe restarts.
        Everything runs in one transaction so a half-built schema never persists.
        """
        async with self.transaction() as tx:
            # -----------------------------------------------------------------
            # Economy
            # DESIGN: One row per user; total is kept equal to balance + bank
            # -----------------------------------------------------------------
            await tx.execute("""
                CREATE TABLE IF NOT EXISTS economy (
                    user_id INTEGER PRIMARY KEY,
                    balance INTEGER NOT NULL DEFAULT 0,
                    bank INTEGER NOT NULL DEFAULT 0,
                    last_daily REAL,
                    last_work REAL,
                    work_streak INTEGER NOT NULL DEFAULT 0,
                    inventory TEXT NOT NULL DEFAULT '[]',
                    total INTEGER NOT NULL DEFAULT 0
                )
            """)
            await tx.execute(
                "CREATE INDEX IF NOT EXISTS idx_economy_total ON economy(total DESC)"
            )

            # -----------------------------------------------------------------
            # Server Configs
            # DESIGN: Whole configuration tree stored as one JSON document
            # -----------------------------------------------------------------
            await tx.execute("""
                CREATE TABLE IF NOT EXISTS server_configs (
                    server_id INTEGER PRIMARY KEY,
                    config TEXT NOT NULL,
                    updated_at REAL NOT NULL
                )
            """)

            # -----------------------------------------------------------------
            # Automod Violations
            # DESIGN: Append only audit trail
            # -----------------------------------------------------------------
            await tx.execute("""
                CREATE TABLE IF NOT EXISTS automod_violations (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    type TEXT NOT NULL,
                    user_id INTEGER NOT NULL,
                    channel_id INTEGER NOT NULL,
                    message_id INTEGER NOT NULL,
                    timestamp REAL NOT NULL,
                    details TEXT
                )
            """)
            await tx.execute(
                "CREATE INDEX IF NOT EXISTS idx_violations_user "
                "ON automod_violations(user_id, timestamp DESC)"
            )
