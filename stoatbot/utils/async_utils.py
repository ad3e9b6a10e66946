"""
StoatBot - Async Utilities
==========================

Helpers for running async work without losing failures.

Usage:
    from stoatbot.utils.async_utils import gather_with_logging, create_safe_task

    await gather_with_logging(
        ("economy", load_category("economy")),
        ("system", load_category("system")),
        context="Command Load",
    )

    create_safe_task(self._sweep_loop(), "Cache Sweep")
"""

import asyncio
from typing import Any, Coroutine, List, Optional, Tuple

from stoatbot.core.logger import logger


async def gather_with_logging(
    *operations: Tuple[str, Coroutine[Any, Any, Any]],
    context: Optional[str] = None,
) -> List[Any]:
    """
    Run multiple async operations concurrently with error logging.

    Unlike asyncio.gather with return_exceptions=True, failures are logged
    so they are not silent. Exceptions are still returned in the result
    list for the caller to inspect.

    Args:
        *operations: Tuples of (operation_name, coroutine).
        context: Optional context string for error logs.

    Returns:
        List of results (exceptions included as values, not raised).
    """
    names = [name for name, _ in operations]
    coros = [coro for _, coro in operations]

    results = await asyncio.gather(*coros, return_exceptions=True)

    for name, result in zip(names, results):
        if isinstance(result, Exception):
            error_details = [
                ("Operation", name),
                ("Error Type", type(result).__name__),
                ("Error", str(result)[:100]),
            ]
            if context:
                error_details.insert(0, ("Context", context))

            logger.warning("Async Operation Failed", error_details)

    return results


# =============================================================================
# Safe Background Tasks
# =============================================================================

def create_safe_task(
    coro: Coroutine[Any, Any, Any],
    name: str = "Background Task",
) -> asyncio.Task:
    """
    Create a background task with automatic error logging.

    Unlike raw asyncio.create_task(), a crash is logged instead of being
    reported only when the task is garbage collected. Cancellation is the
    normal way these tasks stop and is not logged.

    Args:
        coro: The coroutine to run as a background task.
        name: Name for logging purposes.

    Returns:
        The created asyncio.Task.
    """
    async def wrapped():
        try:
            await coro
        except asyncio.CancelledError:
            pass
        except Exception as e:
            logger.error("Background Task Failed", [
                ("Task", name),
                ("Error Type", type(e).__name__),
                ("Error", str(e)[:200]),
            ])

    return asyncio.create_task(wrapped(), name=name)


__all__ = [
    "gather_with_logging",
    "create_safe_task",
]
