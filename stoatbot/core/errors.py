"""
StoatBot - Error Taxonomy
=========================

Exception types shared by the dispatcher, persistence, automod and
resilience layers.

    ValidationError       bad command arguments or a broken business rule;
                          answered to the user, never retried
    PermissionDeniedError the chat API refused the action; never retried
    RateLimitError        the chat API throttled us; retried after the hint
    TransientInfraError   network or store blip; retried with backoff
    FatalInitError        startup cannot continue; propagated to main.py
    CircuitOpenError      a circuit breaker rejected the call
"""

from typing import Optional


class StoatBotError(Exception):
    """Base class for all runtime errors raised by the bot core."""


class ValidationError(StoatBotError):
    """Invalid input or a rule violation that the user can fix."""

    def __init__(self, message: str, retry_after: Optional[float] = None):
        super().__init__(message)
        self.retry_after = retry_after


class PermissionDeniedError(StoatBotError):
    """The remote API denied the action."""


class RateLimitError(StoatBotError):
    """The remote API throttled the request."""

    def __init__(self, message: str = "Rate limited", retry_after: Optional[float] = None):
        super().__init__(message)
        self.retry_after = retry_after


class TransientInfraError(StoatBotError):
    """A network or store failure that is expected to clear up."""


class FatalInitError(StoatBotError):
    """Startup cannot continue (store unreachable, command tree unreadable)."""


class CircuitOpenError(StoatBotError):
    """A circuit breaker is open and rejected the call without running it."""

    def __init__(self, name: str, retry_after: float = 0.0):
        super().__init__(f"Circuit '{name}' is open (retry in {retry_after:.1f}s)")
        self.name = name
        self.retry_after = retry_after


__all__ = [
    "StoatBotError",
    "ValidationError",
    "PermissionDeniedError",
    "RateLimitError",
    "TransientInfraError",
    "FatalInitError",
    "CircuitOpenError",
]
