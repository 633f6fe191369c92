"""Retry logic with exponential backoff for remote writes.

This module provides:
- is_transient_error: classify failures that are worth retrying
- retry_with_backoff: async exponential backoff retry
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any

from lexisync.client.api import APIError

logger = logging.getLogger(__name__)

# Default retry configuration
DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_INITIAL_BACKOFF = 1.0  # seconds
DEFAULT_MAX_BACKOFF = 60.0  # seconds
DEFAULT_BACKOFF_MULTIPLIER = 2.0

# Connection-level exceptions that indicate connectivity issues
NETWORK_EXCEPTIONS: tuple[type[Exception], ...] = (
    ConnectionError,
    TimeoutError,
    OSError,
)


def is_transient_error(error: BaseException) -> bool:
    """Check whether an error is a transient network failure.

    Transient means the request never got an HTTP answer: a connection
    level exception, or an API error with a zero or absent status code.
    Validation, auth and other HTTP errors are permanent.
    """
    if isinstance(error, APIError):
        return not error.status_code
    return isinstance(error, NETWORK_EXCEPTIONS)


async def retry_with_backoff(
    func: Callable[[], Awaitable[Any]],
    max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    initial_backoff: float = DEFAULT_INITIAL_BACKOFF,
    max_backoff: float = DEFAULT_MAX_BACKOFF,
    backoff_multiplier: float = DEFAULT_BACKOFF_MULTIPLIER,
    should_retry: Callable[[BaseException], bool] = is_transient_error,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> Any:
    """Await a coroutine factory with exponential backoff retry.

    The delay after failed attempt n (0-indexed) is
    initial_backoff * backoff_multiplier**n, capped at max_backoff.

    Args:
        func: Zero-argument callable returning an awaitable.
        max_attempts: Total number of attempts, including the first.
        initial_backoff: Delay after the first failure, in seconds.
        max_backoff: Maximum delay in seconds.
        backoff_multiplier: Multiplier for each retry.
        should_retry: Predicate deciding whether an error is retryable.
        sleep: Sleep coroutine (injectable for tests).

    Returns:
        Result of the awaited call.

    Raises:
        The last exception if all attempts fail, or the first
        non-retryable exception.
    """
    backoff = initial_backoff

    for attempt in range(max_attempts):
        try:
            return await func()
        except Exception as e:
            if not should_retry(e):
                raise
            if attempt == max_attempts - 1:
                logger.error(f"All {max_attempts} attempts failed: {e}")
                raise

            logger.warning(
                f"Attempt {attempt + 1}/{max_attempts} failed: {e}. "
                f"Retrying in {backoff:.1f}s..."
            )
            await sleep(backoff)
            backoff = min(backoff * backoff_multiplier, max_backoff)

    raise RuntimeError("Unexpected retry loop exit")
