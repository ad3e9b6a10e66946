"""
StoatBot - Automod Violation Operations
=======================================

Append-only audit trail of automod hits.
"""

import uuid
from typing import TYPE_CHECKING, List

from stoatbot.core.database.batch import BatchOperation
from stoatbot.core.database.models import ViolationRecord

if TYPE_CHECKING:
    from stoatbot.core.database.manager import PersistenceManager


INSERT_VIOLATION = """
    INSERT INTO automod_violations
        (type, user_id, channel_id, message_id, timestamp, details)
    VALUES (?, ?, ?, ?, ?, ?)
"""


class ViolationsMixin:
    """Mixin for automod violation records."""

    async def record_violation(self: "PersistenceManager", record: ViolationRecord) -> None:
        """Queue an insert on the batched path. Each record gets its own key."""
        await self._writer.enqueue(BatchOperation(
            key=f"violation:{uuid.uuid4().hex}",
            query=INSERT_VIOLATION,
            params=record.to_row(),
        ))

    async def get_user_violations(self: "PersistenceManager", user_id: int, limit: int = 10) -> List[ViolationRecord]:
        """Most recent violations for a user, newest first."""
        rows = await self.fetchall(
            """SELECT type, user_id, channel_id, message_id, timestamp, details
               FROM automod_violations
               WHERE user_id = ?
               ORDER BY timestamp DESC, id DESC
               LIMIT ?""",
            (user_id, max(1, limit)),
        )
        return [ViolationRecord.from_row(row) for row in rows]
