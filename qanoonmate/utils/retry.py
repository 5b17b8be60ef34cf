"""
Retry helpers for calls to the assistant and the payment gateway.

Transport failures and 429/5xx answers are retried with exponential backoff;
anything else (4xx, bad payloads) fails on the first attempt.
"""
import asyncio
import logging
from functools import wraps
from typing import Awaitable, Callable, Tuple, Type, TypeVar

import httpx

logger = logging.getLogger(__name__)

T = TypeVar("T")

TRANSIENT_STATUS_CODES = frozenset({429, 500, 502, 503, 504})
TRANSIENT_ERRORS: Tuple[Type[Exception], ...] = (httpx.TransportError, httpx.HTTPStatusError)


def is_transient(exc: Exception) -> bool:
    """Whether another attempt can help"""
    if isinstance(exc, httpx.HTTPStatusError):
        return exc.response.status_code in TRANSIENT_STATUS_CODES
    return isinstance(exc, httpx.TransportError)


def backoff_delay(attempt: int, delay: float, backoff: float, max_delay: float) -> float:
    return min(delay * (backoff ** (attempt - 1)), max_delay)


async def retry_async(
    func: Callable[[], Awaitable[T]],
    max_attempts: int = 3,
    delay: float = 0.5,
    backoff: float = 2.0,
    max_delay: float = 5.0,
    exceptions: Tuple[Type[Exception], ...] = TRANSIENT_ERRORS,
) -> T:
    """
    Await func() until it succeeds or the attempts run out.

    Args:
        func: zero-argument coroutine function
        max_attempts: total attempts
        delay: first pause in seconds
        backoff: pause multiplier
        max_delay: upper bound of a single pause
        exceptions: exception types worth another attempt (still filtered by is_transient)

    Raises:
        the last error once attempts are exhausted, or the first non-transient one
    """
    attempt = 1
    while True:
        try:
            return await func()
        except exceptions as e:
            if attempt >= max_attempts or not is_transient(e):
                if attempt > 1:
                    logger.error(f"Giving up after {attempt} attempt(s): {e}")
                raise
            wait_time = backoff_delay(attempt, delay, backoff, max_delay)
            logger.warning(f"Attempt {attempt}/{max_attempts} failed: {e}. Retrying in {wait_time:.2f}s")
            await asyncio.sleep(wait_time)
            attempt += 1


def retry_decorator(max_attempts: int = 3, delay: float = 0.5, exceptions=TRANSIENT_ERRORS):
    """retry_async for methods: @retry_decorator(max_attempts=3)"""
    def decorator(func):
        @wraps(func)
        async def wrapper(*args, **kwargs):
            return await retry_async(
                lambda: func(*args, **kwargs),
                max_attempts=max_attempts,
                delay=delay,
                exceptions=exceptions,
            )
        return wrapper
    return decorator
