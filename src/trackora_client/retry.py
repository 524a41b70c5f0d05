"""
Bounded retry-with-backoff for awaitable operations.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Generic, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class RetryResult(Generic[T]):
    """Last value produced, how many attempts ran, and whether the budget ran out."""

    value: T
    attempts: int
    exhausted: bool


async def retry_with_backoff(
    operation: Callable[[], Awaitable[T]],
    *,
    attempts: int = 3,
    delay: float = 0.5,
    backoff: float = 1.0,
    retry_if: Optional[Callable[[T], bool]] = None,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> RetryResult[T]:
    """
    Run operation until retry_if(value) is false or attempts are used up.

    Exceptions raised by operation propagate immediately; only unsatisfying
    values are retried. Delay before attempt n+1 is delay * backoff**(n-1).

    Args:
        operation: zero-argument coroutine factory
        attempts: total attempts, at least 1
        delay: seconds to wait after the first unsatisfying attempt
        backoff: multiplier applied to the delay after each attempt
        retry_if: predicate on the value; retry while it returns True
        sleep: awaitable sleep, injectable for tests
    """
    if attempts < 1:
        raise ValueError("attempts must be at least 1")

    wait = delay
    value = None
    for attempt in range(1, attempts + 1):
        value = await operation()
        if retry_if is None or not retry_if(value):
            return RetryResult(value=value, attempts=attempt, exhausted=False)

        if attempt < attempts:
            logger.debug(f"Attempt {attempt}/{attempts} unsatisfied, retrying in {wait:.2f}s")
            await sleep(wait)
            wait *= backoff

    return RetryResult(value=value, attempts=attempts, exhausted=True)
