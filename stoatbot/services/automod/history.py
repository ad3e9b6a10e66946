"""
StoatBot - Automod Message History
==================================

Per-user sliding windows of message timestamps plus a violation score.

DESIGN:
    The window is a rate proxy: any RAPID_REPEAT_COUNT messages inside
    the window count as repeats once the latest one has text. Message
    content is never compared.

    Score lifecycle:
        Normal     score 0
        Flagged    0 < score < ESCALATION_SCORE
        Escalated  score >= ESCALATION_SCORE, the service times the user
                   out and calls reset_score()

    Quiet evaluations (count <= burst / 2) decay the score by SCORE_DECAY.
"""

import time
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional

from stoatbot.core import constants


# =============================================================================
# Data Classes
# =============================================================================

@dataclass
class MessageHistoryWindow:
    """Recent message timestamps for one user."""
    timestamps: List[float] = field(default_factory=list)
    score: float = 0.0
    last_message: float = 0.0


@dataclass
class SpamCheck:
    """Outcome of observing one message."""
    burst: bool = False
    rapid_repeat: bool = False
    count: int = 0

    @property
    def is_spam(self) -> bool:
        return self.burst or self.rapid_repeat


# =============================================================================
# History
# =============================================================================

class MessageHistory:
    """Sliding windows keyed by user ID."""

    def __init__(
        self,
        window: float = constants.SPAM_WINDOW,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.window = window
        self._clock = clock
        self._windows: Dict[int, MessageHistoryWindow] = {}

    def observe(self, user_id: int, message_burst: int, has_content: bool = True) -> SpamCheck:
        """
        Record a message and classify the user's current rate.

        The first message seen for a user only opens the window. Messages
        without text (attachments, stickers) still count towards a burst
        but never make a rapid repeat.
        """
        now = self._clock()
        history = self._windows.get(user_id)
        if history is None:
            self._windows[user_id] = MessageHistoryWindow(
                timestamps=[now],
                last_message=now,
            )
            return SpamCheck(count=1)

        history.timestamps = [t for t in history.timestamps if now - t < self.window]
        history.timestamps.append(now)
        history.last_message = now

        count = len(history.timestamps)
        check = SpamCheck(
            burst=count > message_burst,
            rapid_repeat=has_content and count >= constants.RAPID_REPEAT_COUNT,
            count=count,
        )

        if not check.is_spam and history.score > 0 and count <= message_burst / 2:
            history.score = max(0.0, history.score - constants.SCORE_DECAY)

        return check

    def add_score(self, user_id: int, amount: float = 1.0) -> float:
        history = self._windows.get(user_id)
        if history is None:
            now = self._clock()
            history = MessageHistoryWindow(last_message=now)
            self._windows[user_id] = history
        history.score += amount
        return history.score

    def get_score(self, user_id: int) -> float:
        history = self._windows.get(user_id)
        return history.score if history else 0.0

    def reset_score(self, user_id: int) -> None:
        history = self._windows.get(user_id)
        if history is not None:
            history.score = 0.0

    def get(self, user_id: int) -> Optional[MessageHistoryWindow]:
        return self._windows.get(user_id)

    def forget(self, user_id: int) -> bool:
        return self._windows.pop(user_id, None) is not None

    def prune(self, idle_expiry: float = constants.HISTORY_IDLE_EXPIRY) -> int:
        """Drop windows idle for longer than idle_expiry. Returns count dropped."""
        now = self._clock()
        stale = [
            user_id for user_id, history in self._windows.items()
            if now - history.last_message > idle_expiry
        ]
        for user_id in stale:
            del self._windows[user_id]
        return len(stale)

    def clear(self) -> None:
        self._windows.clear()

    def __len__(self) -> int:
        return len(self._windows)

    def __contains__(self, user_id: int) -> bool:
        return user_id in self._windows


__all__ = ["MessageHistory", "MessageHistoryWindow", "SpamCheck"]
