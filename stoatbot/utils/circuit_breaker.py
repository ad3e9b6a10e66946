"""
StoatBot - Circuit Breaker
==========================

Stops hammering a dependency that keeps failing.

DESIGN:
    CLOSED     calls pass through; consecutive failures are counted
    OPEN       calls are rejected with CircuitOpenError without running
    HALF_OPEN  after the cooldown one trial call at a time is let through;
               success_threshold trial successes close the circuit, any
               trial failure reopens it and restarts the cooldown

    Permission, not-found and validation errors mean the dependency is
    healthy and the request was wrong, so they never count as failures.

    State changes happen synchronously between awaits, so no lock is
    needed under asyncio.
"""

import asyncio
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, Optional

from stoatbot.core import constants
from stoatbot.core.errors import CircuitOpenError
from stoatbot.core.logger import logger
from stoatbot.utils.retry import NON_RETRYABLE, ErrorKind, classify_error


class CircuitState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


@dataclass
class CircuitBreakerStats:
    total_calls: int = 0
    successes: int = 0
    failures: int = 0
    rejected: int = 0
    state_changes: int = 0
    consecutive_failures: int = 0
    consecutive_successes: int = 0


class CircuitBreaker:
    """
    Circuit breaker for async calls.

    Example:
        breaker = CircuitBreaker("chat_api")
        await breaker.call(channel.send, "hello")
    """

    def __init__(
        self,
        name: str,
        failure_threshold: int = constants.BREAKER_FAILURE_THRESHOLD,
        cooldown: float = constants.BREAKER_COOLDOWN,
        success_threshold: int = constants.BREAKER_SUCCESS_THRESHOLD,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.name = name
        self.failure_threshold = failure_threshold
        self.cooldown = cooldown
        self.success_threshold = success_threshold
        self._clock = clock

        self._state = CircuitState.CLOSED
        self._opened_at: Optional[float] = None
        self._trial_in_flight = False
        self._stats = CircuitBreakerStats()

    @property
    def state(self) -> CircuitState:
        return self._state

    # =========================================================================
    # Call Path
    # =========================================================================

    async def call(self, func: Callable[..., Any], *args, **kwargs) -> Any:
        """
        Run ``func`` through the breaker.

        Raises:
            CircuitOpenError: If the circuit is open or a trial call is already running.
            Exception: Whatever ``func`` raised.
        """
        self._before_call()

        try:
            result = await func(*args, **kwargs)
        except asyncio.CancelledError:
            self._trial_in_flight = False
            raise
        except Exception as e:
            self._record_failure(e)
            raise

        self._record_success()
        return result

    def _before_call(self) -> None:
        self._stats.total_calls += 1

        if self._state == CircuitState.CLOSED:
            return

        if self._state == CircuitState.OPEN:
            remaining = self.cooldown - (self._clock() - (self._opened_at or 0.0))
            if remaining > 0:
                self._reject(remaining)
            self._transition(CircuitState.HALF_OPEN)

        # HALF_OPEN: exactly one trial call at a time
        if self._trial_in_flight:
            self._reject(0.0)
        self._trial_in_flight = True

    def _reject(self, retry_after: float) -> None:
        self._stats.rejected += 1
        raise CircuitOpenError(self.name, retry_after=max(0.0, retry_after))

    def _record_success(self) -> None:
        self._stats.successes += 1
        self._stats.consecutive_failures = 0
        self._stats.consecutive_successes += 1

        if self._state == CircuitState.HALF_OPEN:
            self._trial_in_flight = False
            if self._stats.consecutive_successes >= self.success_threshold:
                self._transition(CircuitState.CLOSED)

    def _record_failure(self, error: Exception) -> None:
        kind = classify_error(error)
        if kind in NON_RETRYABLE and kind != ErrorKind.CIRCUIT_OPEN:
            # The dependency answered; the request itself was bad.
            self._trial_in_flight = False
            return

        self._stats.failures += 1
        self._stats.consecutive_successes = 0
        self._stats.consecutive_failures += 1

        if self._state == CircuitState.HALF_OPEN:
            self._trial_in_flight = False
            self._transition(CircuitState.OPEN)
        elif self._stats.consecutive_failures >= self.failure_threshold:
            self._transition(CircuitState.OPEN)

    def _transition(self, new_state: CircuitState) -> None:
        if self._state == new_state:
            return

        old_state = self._state
        self._state = new_state
        self._stats.state_changes += 1

        if new_state == CircuitState.OPEN:
            self._opened_at = self._clock()
        elif new_state == CircuitState.HALF_OPEN:
            self._stats.consecutive_successes = 0
        elif new_state == CircuitState.CLOSED:
            self._opened_at = None
            self._stats.consecutive_failures = 0

        details = [
            ("Circuit", self.name),
            ("From", old_state.value),
            ("To", new_state.value),
            ("Consecutive Failures", str(self._stats.consecutive_failures)),
        ]
        if new_state == CircuitState.OPEN:
            logger.warning("Circuit Opened", details)
        else:
            logger.info("Circuit State Changed", details)

    # =========================================================================
    # Introspection
    # =========================================================================

    def reset(self) -> None:
        """Force the circuit closed and clear counters."""
        self._state = CircuitState.CLOSED
        self._opened_at = None
        self._trial_in_flight = False
        self._stats = CircuitBreakerStats()

    def stats(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "state": self._state.value,
            "total_calls": self._stats.total_calls,
            "successes": self._stats.successes,
            "failures": self._stats.failures,
            "rejected": self._stats.rejected,
            "state_changes": self._stats.state_changes,
            "consecutive_failures": self._stats.consecutive_failures,
            "consecutive_successes": self._stats.consecutive_successes,
        }


__all__ = [
    "CircuitBreaker",
    "CircuitBreakerStats",
    "CircuitState",
]
