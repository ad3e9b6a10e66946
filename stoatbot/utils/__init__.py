"""
StoatBot - Utils Package
========================

Stateless helpers shared across the bot.

Available Utilities:
    TTLCache: Expiring key/value cache
    CircuitBreaker: Fail-fast wrapper for flaky dependencies
    retry_async: Classified retry with backoff
    safe_send/safe_reply/safe_delete/safe_timeout: Chat calls that never raise
    create_safe_task/gather_with_logging: Background work with logged failures
"""

# =============================================================================
# Utility Imports
# =============================================================================

from .async_utils import create_safe_task, gather_with_logging
from .cache import TTLCache
from .circuit_breaker import CircuitBreaker, CircuitState
from .retry import (
    ErrorKind,
    classify_error,
    retry_async,
    safe_delete,
    safe_reply,
    safe_send,
    safe_timeout,
    with_timeout,
)


__all__ = [
    "TTLCache",
    "CircuitBreaker",
    "CircuitState",
    "ErrorKind",
    "classify_error",
    "retry_async",
    "with_timeout",
    "safe_send",
    "safe_reply",
    "safe_delete",
    "safe_timeout",
    "create_safe_task",
    "gather_with_logging",
]
