"""
StoatBot - Retry Utilities
==========================

Retry logic for chat API and store calls with exponential backoff.

DESIGN:
    Errors are classified before deciding what to do with them:

        RATE_LIMIT    wait exactly the server's retry hint, then retry
        PERMISSION    raise immediately (retrying a 403 never helps)
        NOT_FOUND     raise immediately (the target is gone)
        VALIDATION    raise immediately (the caller's input is wrong)
        CIRCUIT_OPEN  raise immediately (the breaker already said no)
        TRANSIENT     back off min(base * 2^attempt, max) plus jitter

    When a CircuitBreaker is passed, every attempt runs through it, so
    repeated transient failures open the circuit for everyone sharing it.
"""

import asyncio
import random
from datetime import timedelta
from enum import Enum
from typing import TYPE_CHECKING, Any, Callable, Optional, TypeVar

import discord

from stoatbot.core import constants
from stoatbot.core.errors import (
    CircuitOpenError,
    PermissionDeniedError,
    RateLimitError,
    StoatBotError,
    ValidationError,
)
from stoatbot.core.logger import logger

if TYPE_CHECKING:
    from stoatbot.utils.circuit_breaker import CircuitBreaker

T = TypeVar("T")


# =============================================================================
# Error Classification
# =============================================================================

class ErrorKind(str, Enum):
    RATE_LIMIT = "rate_limit"
    PERMISSION = "permission"
    NOT_FOUND = "not_found"
    VALIDATION = "validation"
    CIRCUIT_OPEN = "circuit_open"
    TRANSIENT = "transient"


NON_RETRYABLE = frozenset({
    ErrorKind.PERMISSION,
    ErrorKind.NOT_FOUND,
    ErrorKind.VALIDATION,
    ErrorKind.CIRCUIT_OPEN,
})


def classify_error(error: BaseException) -> ErrorKind:
    """
    Map an exception onto the retry taxonomy.

    Our own error types win; discord.py exceptions and anything carrying an
    HTTP ``status`` attribute are classified by status code. Everything else
    is assumed to be transient.
    """
    if isinstance(error, CircuitOpenError):
        return ErrorKind.CIRCUIT_OPEN
    if isinstance(error, ValidationError):
        return ErrorKind.VALIDATION
    if isinstance(error, (PermissionDeniedError, discord.Forbidden)):
        return ErrorKind.PERMISSION
    if isinstance(error, (RateLimitError, discord.RateLimited)):
        return ErrorKind.RATE_LIMIT
    if isinstance(error, discord.NotFound):
        return ErrorKind.NOT_FOUND

    status = getattr(error, "status", None)
    if status == 429:
        return ErrorKind.RATE_LIMIT
    if status in (401, 403):
        return ErrorKind.PERMISSION
    if status == 404:
        return ErrorKind.NOT_FOUND
    return ErrorKind.TRANSIENT


def get_retry_after(error: BaseException) -> Optional[float]:
    """Read the retry hint from ``retry_after`` or a ``Retry-After`` header."""
    retry_after = getattr(error, "retry_after", None)
    if retry_after is not None:
        try:
            return max(0.0, float(retry_after))
        except (TypeError, ValueError):
            return None

    response = getattr(error, "response", None)
    headers = getattr(response, "headers", None)
    if not headers:
        return None
    try:
        header = headers.get("Retry-After")
    except AttributeError:
        return None
    if header is None:
        return None
    try:
        return max(0.0, float(header))
    except (TypeError, ValueError):
        return None


def backoff_delay(attempt: int, base_delay: float, max_delay: float) -> float:
    """Exponential backoff for a 0-based attempt index, with up to 30% jitter."""
    delay = min(base_delay * (2 ** attempt), max_delay)
    return delay + random.uniform(0, constants.RETRY_JITTER) * delay


# =============================================================================
# Retry
# =============================================================================

async def retry_async(
    func: Callable[..., Any],
    *args,
    max_attempts: int = constants.RETRY_MAX_ATTEMPTS,
    base_delay: float = constants.RETRY_BASE_DELAY,
    max_delay: float = constants.RETRY_MAX_DELAY,
    breaker: Optional["CircuitBreaker"] = None,
    **kwargs,
) -> Any:
    """
    Call an async function, retrying retryable failures with backoff.

    Args:
        func: Async function to call.
        *args: Arguments to pass to the function.
        max_attempts: Total number of attempts, including the first one.
        base_delay: Initial delay between attempts (seconds).
        max_delay: Maximum backoff delay (seconds). Rate-limit hints are
            honoured even when longer.
        breaker: Optional circuit breaker every attempt goes through.
        **kwargs: Keyword arguments to pass to the function.

    Returns:
        Result of the function.

    Raises:
        The first non-retryable error, or the last error once all attempts
        are used up.
    """
    attempts = max(1, max_attempts)
    name = getattr(func, "__qualname__", repr(func))
    last_exception: Optional[Exception] = None

    for attempt in range(attempts):
        try:
            if breaker is not None:
                return await breaker.call(func, *args, **kwargs)
            return await func(*args, **kwargs)
        except Exception as e:
            kind = classify_error(e)

            if kind in NON_RETRYABLE:
                raise

            last_exception = e
            if attempt >= attempts - 1:
                break

            retry_after = get_retry_after(e) if kind == ErrorKind.RATE_LIMIT else None
            if retry_after is not None:
                delay = retry_after
            else:
                delay = backoff_delay(attempt, base_delay, max_delay)

            logger.debug(
                f"Retry {attempt + 1}/{attempts - 1}: {type(e).__name__} - retrying in {delay:.2f}s"
            )
            await asyncio.sleep(delay)

    logger.warning("Retries Exhausted", [
        ("Call", name),
        ("Attempts", str(attempts)),
        ("Error Type", type(last_exception).__name__),
        ("Error", str(last_exception)[:100]),
    ])
    raise last_exception


async def with_timeout(
    coro: Any,
    timeout: float = constants.API_TIMEOUT,
    default: Optional[T] = None,
) -> Optional[T]:
    """
    Run a coroutine with a timeout, returning default on timeout.

    Args:
        coro: Coroutine to run.
        timeout: Timeout in seconds.
        default: Value to return on timeout.

    Returns:
        Result of coroutine or default on timeout.
    """
    try:
        return await asyncio.wait_for(coro, timeout=timeout)
    except asyncio.TimeoutError:
        logger.warning(f"Operation timed out after {timeout}s")
        return default


# =============================================================================
# Safe Chat API Helpers
# =============================================================================

SAFE_ERRORS = (discord.DiscordException, StoatBotError, asyncio.TimeoutError, OSError)
"""Failures the safe_* helpers turn into a falsy return value."""


async def safe_send(
    channel: discord.abc.Messageable,
    content: Optional[str] = None,
    *,
    breaker: Optional["CircuitBreaker"] = None,
    **kwargs,
) -> Optional[discord.Message]:
    """
    Send a message with retry and circuit breaking.

    Returns:
        Sent message or None on failure.
    """
    if not channel:
        return None

    try:
        return await retry_async(channel.send, content, breaker=breaker, **kwargs)
    except SAFE_ERRORS as e:
        logger.warning("Send Failed", [
            ("Channel", str(getattr(channel, "id", "?"))),
            ("Error Type", type(e).__name__),
            ("Error", str(e)[:100]),
        ])
        return None


async def safe_reply(
    message: discord.Message,
    content: Optional[str] = None,
    *,
    breaker: Optional["CircuitBreaker"] = None,
    **kwargs,
) -> Optional[discord.Message]:
    """
    Reply to a message with retry and circuit breaking.

    Returns:
        Sent reply or None on failure.
    """
    if not message:
        return None

    try:
        return await retry_async(message.reply, content, breaker=breaker, **kwargs)
    except SAFE_ERRORS as e:
        logger.warning("Reply Failed", [
            ("Message", str(getattr(message, "id", "?"))),
            ("Error Type", type(e).__name__),
            ("Error", str(e)[:100]),
        ])
        return None


async def safe_delete(
    message: discord.Message,
    *,
    breaker: Optional["CircuitBreaker"] = None,
) -> bool:
    """
    Delete a message with retry and circuit breaking.

    Returns:
        True if deleted, False on failure.
    """
    if not message:
        return False

    try:
        await retry_async(message.delete, breaker=breaker)
        return True
    except SAFE_ERRORS as e:
        logger.warning("Delete Failed", [
            ("Message", str(getattr(message, "id", "?"))),
            ("Error Type", type(e).__name__),
            ("Error", str(e)[:100]),
        ])
        return False


async def safe_timeout(
    member: discord.Member,
    minutes: int,
    reason: Optional[str] = None,
    *,
    breaker: Optional["CircuitBreaker"] = None,
) -> bool:
    """
    Time a member out with retry and circuit breaking.

    Returns:
        True if the timeout was applied, False on failure.
    """
    if not member or minutes <= 0:
        return False

    try:
        await retry_async(
            member.timeout,
            timedelta(minutes=minutes),
            reason=reason,
            breaker=breaker,
        )
        return True
    except SAFE_ERRORS as e:
        logger.warning("Timeout Failed", [
            ("User", str(getattr(member, "id", "?"))),
            ("Minutes", str(minutes)),
            ("Error Type", type(e).__name__),
            ("Error", str(e)[:100]),
        ])
        return False


# =============================================================================
# Module Export
# =============================================================================

__all__ = [
    "ErrorKind",
    "classify_error",
    "get_retry_after",
    "backoff_delay",
    "retry_async",
    "with_timeout",
    "safe_send",
    "safe_reply",
    "safe_delete",
    "safe_timeout",
]
