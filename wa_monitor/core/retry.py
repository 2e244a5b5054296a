"""Retry helper with exponential backoff."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import TypeVar

T = TypeVar("T")

logger = logging.getLogger(__name__)


async def retry_with_backoff(
    func: Callable[[], Awaitable[T]],
    *,
    attempts: int = 3,
    base_delay: float = 1.0,
    retry_on: tuple[type[BaseException], ...] = (Exception,),
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    description: str = "operation",
) -> T:
    """Await ``func`` until it succeeds or ``attempts`` are exhausted.

    The delay before retry ``n`` (1-based) is ``base_delay * 2 ** (n - 1)``.
    No delay follows the final attempt.

    Args:
        func: Zero-argument coroutine factory, called once per attempt.
        attempts: Maximum number of calls.
        base_delay: Delay in seconds before the first retry.
        retry_on: Exception types that trigger a retry. Anything else
            propagates immediately.
        sleep: Awaitable sleep, injectable for tests.
        description: Label used in log messages.

    Returns:
        The first successful result.

    Raises:
        The last exception once all attempts have failed.
    """
    if attempts < 1:
        raise ValueError("attempts must be at least 1")

    for attempt in range(1, attempts + 1):
        try:
            return await func()
        except retry_on as exc:
            if attempt == attempts:
                logger.warning("%s failed after %d attempts: %s", description, attempts, exc)
                raise
            delay = base_delay * 2 ** (attempt - 1)
            logger.info(
                "Retry %d/%d for %s after %.1fs (%s)",
                attempt, attempts - 1, description, delay, exc,
            )
            await sleep(delay)

    raise AssertionError("unreachable")
