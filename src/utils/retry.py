"""Retry helpers for flaky external API calls.

``retry_api_call`` wraps sync or async callables and retries the transient
error types below with exponential backoff. Anything else propagates on the
first failure.
"""

import asyncio
import functools
import inspect
import logging
import random
import time

logger = logging.getLogger(__name__)


class RetryableError(Exception):
    """Base class for errors worth retrying."""


class APIRateLimitError(RetryableError):
    """Provider signalled rate limiting (HTTP 429 or equivalent)."""


class NetworkError(RetryableError):
    """Connection-level failure talking to a provider."""


class TemporaryServiceError(RetryableError):
    """Provider is temporarily unavailable (5xx, cold start)."""


def _backoff_delay(attempt: int, base_delay: float, max_delay: float) -> float:
    delay = min(max_delay, base_delay * (2 ** attempt))
    return delay + random.uniform(0, delay * 0.1)


def retry_api_call(
    max_retries: int = 3,
    base_delay: float = 1.0,
    max_delay: float = 30.0,
    retry_on: tuple[type[BaseException], ...] = (RetryableError,),
):
    """Decorator retrying transient provider failures with exponential backoff.

    Args:
        max_retries: Retries after the first attempt
        base_delay: Delay before the first retry, doubled each time
        max_delay: Cap on a single delay
        retry_on: Exception types that trigger a retry
    """

    def decorator(func):
        if inspect.iscoroutinefunction(func):

            @functools.wraps(func)
            async def async_wrapper(*args, **kwargs):
                for attempt in range(max_retries + 1):
                    try:
                        return await func(*args, **kwargs)
                    except retry_on as e:
                        if attempt >= max_retries:
                            raise
                        delay = _backoff_delay(attempt, base_delay, max_delay)
                        logger.warning(
                            f"{func.__qualname__} failed ({e}); "
                            f"retry {attempt + 1}/{max_retries} in {delay:.1f}s"
                        )
                        await asyncio.sleep(delay)

            return async_wrapper

        @functools.wraps(func)
        def sync_wrapper(*args, **kwargs):
            for attempt in range(max_retries + 1):
                try:
                    return func(*args, **kwargs)
                except retry_on as e:
                    if attempt >= max_retries:
                        raise
                    delay = _backoff_delay(attempt, base_delay, max_delay)
                    logger.warning(
                        f"{func.__qualname__} failed ({e}); "
                        f"retry {attempt + 1}/{max_retries} in {delay:.1f}s"
                    )
                    time.sleep(delay)

        return sync_wrapper

    return decorator
