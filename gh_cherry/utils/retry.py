"""Retry utilities for handling transient failures.

Every retry in gh-cherry goes through the same backoff policy: code-host
reads, label updates and discovery queries alike. Git operations are never
retried; a hung or failing git process is treated as fatal for the pull
request being applied.

Key Exports:
    backoff_delay: The backoff policy, as a function of the attempt number.
    RetryPolicy: Bundles the policy parameters and the attempt budget.
    retry_async: Call an async function under a policy.
    async_retry: Decorator form of ``retry_async``.

Example:
    >>> from gh_cherry.utils.retry import RetryPolicy, retry_async
    >>> policy = RetryPolicy(max_attempts=3, base_delay=1.0)
    >>> labels = await retry_async(policy, provider.list_labels, 42)

Backoff Formula:
    delay = min(max_delay, base_delay * factor ** (attempt - 1))
    For base_delay=1.0, factor=2.0: 1s, 2s, 4s, 8s, ...
"""

import asyncio
import functools
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, TypeVar

import structlog

from gh_cherry.exceptions import LabelUpdateError, NetworkTransientError

log = structlog.get_logger(__name__)

T = TypeVar("T")

RETRYABLE_ERRORS: tuple[type[Exception], ...] = (NetworkTransientError, LabelUpdateError)


def backoff_delay(
    attempt: int,
    base_delay: float = 1.0,
    factor: float = 2.0,
    max_delay: float = 30.0,
) -> float:
    """Seconds to wait after the given failed attempt.

    Args:
        attempt: 1-based number of the attempt that just failed.
        base_delay: Delay after the first failure.
        factor: Multiplier applied for each further failure.
        max_delay: Upper bound for any single delay.

    Returns:
        The delay in seconds. Never negative, never above ``max_delay``.

    Raises:
        ValueError: If ``attempt`` is less than 1.
    """
    if attempt < 1:
        raise ValueError(f"attempt must be >= 1, got {attempt}")
    delay = base_delay * factor ** (attempt - 1)
    return max(0.0, min(max_delay, delay))


@dataclass(frozen=True)
class RetryPolicy:
    """Attempt budget plus backoff parameters.

    Attributes:
        max_attempts: Total number of calls, including the first one.
        base_delay: See ``backoff_delay``.
        factor: See ``backoff_delay``.
        max_delay: See ``backoff_delay``.
        retry_on: Exception types that trigger another attempt. Anything else
            propagates immediately.
    """

    max_attempts: int = 3
    base_delay: float = 1.0
    factor: float = 2.0
    max_delay: float = 30.0
    retry_on: tuple[type[Exception], ...] = RETRYABLE_ERRORS

    def delay_for(self, attempt: int) -> float:
        return backoff_delay(attempt, self.base_delay, self.factor, self.max_delay)


async def retry_async(
    policy: RetryPolicy,
    func: Callable[..., Awaitable[T]],
    *args: Any,
    **kwargs: Any,
) -> T:
    """Await ``func(*args, **kwargs)``, retrying under ``policy``.

    Args:
        policy: Attempt budget and backoff parameters.
        func: Coroutine function to call.
        *args: Positional arguments for ``func``.
        **kwargs: Keyword arguments for ``func``.

    Returns:
        Whatever ``func`` returns on its first successful attempt.

    Raises:
        The last retryable exception once the budget is exhausted, or any
        non-retryable exception as soon as it occurs.
    """
    name = getattr(func, "__name__", repr(func))
    attempts = max(1, policy.max_attempts)

    for attempt in range(1, attempts + 1):
        try:
            return await func(*args, **kwargs)
        except policy.retry_on as e:
            if attempt == attempts:
                log.error(
                    "retry_exhausted",
                    function=name,
                    attempts=attempt,
                    error=str(e),
                )
                raise

            delay = policy.delay_for(attempt)
            log.warning(
                "retry_attempt",
                function=name,
                attempt=attempt,
                max_attempts=attempts,
                delay=delay,
                error=str(e),
            )
            await asyncio.sleep(delay)

    # Unreachable: the loop either returns or raises
    raise RuntimeError("Retry logic error")


def async_retry(
    policy: RetryPolicy | None = None,
) -> Callable[[Callable[..., Awaitable[T]]], Callable[..., Awaitable[T]]]:
    """Decorator form of ``retry_async``.

    Args:
        policy: Policy to apply. Defaults to ``RetryPolicy()``.

    Example:
        >>> @async_retry(RetryPolicy(max_attempts=5))
        ... async def fetch_labels(number: int) -> list[str]:
        ...     return await provider.list_labels(number)
    """
    effective = policy or RetryPolicy()

    def decorator(func: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
        @functools.wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> T:
            return await retry_async(effective, func, *args, **kwargs)

        return wrapper

    return decorator
