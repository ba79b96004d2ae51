"""Utility functions and decorators for tmdb_rec."""

import logging
import asyncio
from dataclasses import dataclass
from functools import wraps
from typing import Awaitable, Callable, Generic, Iterable, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar('T')
K = TypeVar('K')


def async_retry_with_backoff(
    max_retries: int = 3,
    initial_delay: float = 1.0,
    backoff_factor: float = 2.0,
    exceptions: tuple = (Exception,)
):
    """
    Wrap a catalog coroutine so transient upstream failures get more attempts.

    The catalog client itself never retries. The ranking fallback wraps
    fetch_trending with this when it is the last source left, so a single
    blip on the trending list does not turn into an empty result.

    Args:
        max_retries: Total attempts, including the first call
        initial_delay: Seconds to wait after the first failure
        backoff_factor: Each later wait is the previous one times this
        exceptions: Failures worth another attempt; anything else propagates at once

    The last failure is re-raised once attempts run out.
    """
    def decorator(func: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
        attempts = max(1, max_retries)

        @wraps(func)
        async def wrapper(*args, **kwargs) -> T:
            delay = initial_delay
            for attempt in range(1, attempts + 1):
                try:
                    return await func(*args, **kwargs)
                except exceptions as exc:
                    if attempt == attempts:
                        logger.error(f"{func.__name__} gave up after {attempts} attempt(s): {exc}")
                        raise
                    logger.warning(
                        f"{func.__name__} attempt {attempt}/{attempts} failed: {exc}; "
                        f"next try in {delay:.1f}s"
                    )
                    await asyncio.sleep(delay)
                    delay *= backoff_factor

        return wrapper
    return decorator


@dataclass
class Outcome(Generic[K, T]):
    """Result of one task in a fan-out: either a value or the error that replaced it."""

    key: K
    value: T | None = None
    error: BaseException | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


async def gather_outcomes(
    items: Iterable[K],
    func: Callable[[K], Awaitable[T]],
) -> list[Outcome[K, T]]:
    """
    Run func over items concurrently, capturing each failure next to its key.

    Cancellation is not captured: it propagates to the caller.
    """
    keys = list(items)
    results = await asyncio.gather(*(func(key) for key in keys), return_exceptions=True)

    outcomes: list[Outcome[K, T]] = []
    for key, result in zip(keys, results):
        if isinstance(result, asyncio.CancelledError):
            raise result
        if isinstance(result, BaseException):
            outcomes.append(Outcome(key=key, error=result))
        else:
            outcomes.append(Outcome(key=key, value=result))
    return outcomes


def chunked(items: list[T], size: int) -> list[list[T]]:
    """Split items into consecutive batches of at most size elements."""
    if size <= 0:
        raise ValueError(f"Batch size must be positive, got {size}")
    return [items[i:i + size] for i in range(0, len(items), size)]
