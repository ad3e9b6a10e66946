"""
StoatBot - Command Rate Limiter
===============================

Fixed-window usage limits per (user, command).

DESIGN:
    The first use opens a window [now, now + duration) with one usage.
    Calls inside the window add a usage until the limit is reached, after
    which they are rejected with the time left. The first call at or after
    reset_at opens a fresh window.

    check() never awaits, so state changes happen in dispatch order.
    Bursts of up to 2x the limit across a window boundary are accepted.
"""

import asyncio
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Callable, Dict, Optional, Tuple

from stoatbot.core import constants
from stoatbot.core.logger import logger
from stoatbot.utils.async_utils import create_safe_task

if TYPE_CHECKING:
    from stoatbot.commands.base import RateLimitPolicy


@dataclass
class RateLimitState:
    usages: int
    reset_at: float
    last_used: float


@dataclass
class RateLimitResult:
    allowed: bool
    usages: int
    retry_after: float = 0.0


class RateLimiter:
    """Per-user, per-command fixed windows."""

    def __init__(
        self,
        cleanup_interval: float = constants.RATE_LIMIT_CLEANUP_INTERVAL,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._states: Dict[Tuple[int, str], RateLimitState] = {}
        self._cleanup_interval = cleanup_interval
        self._clock = clock
        self._cleanup_task: Optional[asyncio.Task] = None

    def check(self, user_id: int, command: str, policy: "RateLimitPolicy") -> RateLimitResult:
        """Count one use and report whether it is allowed."""
        now = self._clock()
        key = (user_id, command)
        state = self._states.get(key)

        if state is None or now >= state.reset_at:
            self._states[key] = RateLimitState(
                usages=1,
                reset_at=now + policy.duration,
                last_used=now,
            )
            return RateLimitResult(allowed=True, usages=1)

        if state.usages >= policy.usages:
            remaining = state.reset_at - now
            logger.debug(f"Rate limit hit: user {user_id} on {command}, {remaining:.1f}s left")
            return RateLimitResult(allowed=False, usages=state.usages, retry_after=remaining)

        state.usages += 1
        state.last_used = now
        return RateLimitResult(allowed=True, usages=state.usages)

    def get_state(self, user_id: int, command: str) -> Optional[RateLimitState]:
        return self._states.get((user_id, command))

    def remaining_time(self, user_id: int, command: str) -> float:
        state = self._states.get((user_id, command))
        if state is None:
            return 0.0
        return max(0.0, state.reset_at - self._clock())

    def reset(self, user_id: int, command: Optional[str] = None) -> int:
        """Drop a user's windows, for one command or all of them."""
        keys = [
            key for key in self._states
            if key[0] == user_id and (command is None or key[1] == command)
        ]
        for key in keys:
            del self._states[key]
        return len(keys)

    def forget_command(self, command: str) -> None:
        for key in [key for key in self._states if key[1] == command]:
            del self._states[key]

    def cleanup(self) -> int:
        """Drop expired windows. Returns count removed."""
        now = self._clock()
        expired = [key for key, state in self._states.items() if now >= state.reset_at]
        for key in expired:
            del self._states[key]
        return len(expired)

    # =========================================================================
    # Cleanup Loop
    # =========================================================================

    def start(self) -> None:
        if self._cleanup_task is None or self._cleanup_task.done():
            self._cleanup_task = create_safe_task(self._cleanup_loop(), "Rate Limit Cleanup")

    async def stop(self) -> None:
        if self._cleanup_task is not None:
            self._cleanup_task.cancel()
            await asyncio.gather(self._cleanup_task, return_exceptions=True)
            self._cleanup_task = None

    async def _cleanup_loop(self) -> None:
        while True:
            await asyncio.sleep(self._cleanup_interval)
            removed = self.cleanup()
            if removed:
                logger.debug(f"Rate limit cleanup removed {removed} windows")

    def __len__(self) -> int:
        return len(self._states)


__all__ = ["RateLimiter", "RateLimitResult", "RateLimitState"]
