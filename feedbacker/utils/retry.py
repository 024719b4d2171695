"""Backoff policy for transient failures.

Errors opt in to retries through ``FeedbackerError.retryable``; everything
else fails on the first attempt. After attempt ``n`` fails the caller waits
``backoff_factor ** n`` seconds, so a factor of 2 gives 2s, 4s, 8s.
"""

import asyncio
from collections.abc import Awaitable, Callable
from typing import TypeVar

import structlog

from feedbacker.exceptions import FeedbackerError

log = structlog.get_logger(__name__)

T = TypeVar("T")


def is_retryable(error: BaseException) -> bool:
    return isinstance(error, FeedbackerError) and error.retryable


def backoff_delay(backoff_factor: float, attempt: int) -> float:
    """Seconds to wait after the given (1-based) failed attempt."""
    return backoff_factor**attempt


async def retry_async(
    operation: Callable[[], Awaitable[T]],
    *,
    name: str,
    max_attempts: int = 3,
    backoff_factor: float = 2.0,
    retry_if: Callable[[BaseException], bool] = is_retryable,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """Await ``operation()`` until it succeeds or stops being retryable.

    ``operation`` is called afresh for every attempt, so it must be safe to
    repeat. The last error propagates once ``max_attempts`` is reached.
    """
    attempt = 1
    while True:
        try:
            return await operation()
        except Exception as e:
            if not retry_if(e):
                raise
            if attempt >= max_attempts:
                log.error("retry_exhausted", operation=name, attempts=attempt, error=str(e))
                raise
            delay = backoff_delay(backoff_factor, attempt)
            log.warning("retry_scheduled", operation=name, attempt=attempt, delay=delay, error=str(e))
            await sleep(delay)
            attempt += 1
