"""Retry logic with exponential backoff and jitter

Implements smart retry logic that:
1. Only retries transient errors (connection loss, timeouts, version conflicts)
2. Uses exponential backoff with jitter to prevent thundering herd
3. Gives up after max retries to avoid infinite loops
"""

import asyncio
import random
import logging
from typing import Awaitable, Callable, Any, Optional, TypeVar
from functools import wraps

from mindbloom.config import PERSISTENCE_TIMEOUT
from mindbloom.exceptions import TRANSIENT_ERRORS, PersistenceTimeoutError

logger = logging.getLogger(__name__)

T = TypeVar('T')

# Retry configuration
MAX_RETRIES = 3
BASE_DELAY = 0.05  # seconds
MAX_DELAY = 2.0  # seconds
JITTER = 0.1  # 10% random jitter


def is_retryable_error(exc: Exception) -> bool:
    """
    Determine if error is transient and should be retried.

    Retryable errors:
    - Database connection failures
    - Persistence timeouts
    - Optimistic version conflicts (re-reading gives a fresh version)

    Everything else (validation, conflicts, not found, authorization) is
    a final answer and is never retried.
    """
    return isinstance(exc, TRANSIENT_ERRORS)


def calculate_backoff(attempt: int) -> float:
    """
    Calculate exponential backoff delay with jitter.

    Formula: delay = min(BASE_DELAY * (2 ** attempt), MAX_DELAY) + jitter
    Jitter is random value between -10% and +10% of delay

    Example:
        Attempt 0: ~0.05s
        Attempt 1: ~0.1s
        Attempt 2: ~0.2s
    """
    delay = min(BASE_DELAY * (2 ** attempt), MAX_DELAY)

    jitter_amount = random.uniform(-JITTER * delay, JITTER * delay)
    final_delay = delay + jitter_amount

    return max(final_delay, 0.0)


async def retry_with_backoff(
    func: Callable[..., Awaitable[T]],
    *args: Any,
    max_retries: int = MAX_RETRIES,
    **kwargs: Any
) -> T:
    """
    Retry async function with exponential backoff.

    Only retries transient errors. Gives up after max_retries attempts.
    func is called again from scratch on every attempt, so it must re-read
    whatever it mutates.

    Raises:
        Last exception if all retries exhausted or non-retryable error

    Example:
        result = await retry_with_backoff(ledger.add_xp, user_id, 50)
    """
    for attempt in range(max_retries + 1):
        try:
            return await func(*args, **kwargs)

        except Exception as e:
            if not is_retryable_error(e):
                raise

            if attempt == max_retries:
                logger.error(
                    f"[RETRY] All {max_retries} retries exhausted for {func.__name__}"
                )
                raise

            backoff = calculate_backoff(attempt)
            logger.info(
                f"[RETRY] Attempt {attempt + 1}/{max_retries} for {func.__name__} "
                f"after {backoff:.2f}s (error: {type(e).__name__})"
            )

            await asyncio.sleep(backoff)

    raise RuntimeError("Retry logic failed unexpectedly")


def with_retry(max_retries: int = MAX_RETRIES) -> Callable:
    """
    Decorator to add retry logic to async functions.

    Example:
        @with_retry(max_retries=3)
        async def daily_check_in(self, user_id):
            ...
    """
    def decorator(func: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
        @wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> T:
            return await retry_with_backoff(func, *args, max_retries=max_retries, **kwargs)
        return wrapper
    return decorator


async def with_timeout(
    awaitable: Awaitable[T],
    operation: str,
    timeout: Optional[float] = None,
) -> T:
    """
    Bound a persistence call.

    Raises:
        PersistenceTimeoutError: if the call does not finish in time
    """
    seconds = timeout if timeout is not None else PERSISTENCE_TIMEOUT
    try:
        return await asyncio.wait_for(awaitable, timeout=seconds)
    except asyncio.TimeoutError as e:
        raise PersistenceTimeoutError(
            message=f"{operation} did not complete within {seconds}s",
            timeout=seconds,
            operation=operation,
            cause=e,
        ) from e
