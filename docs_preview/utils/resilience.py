"""
Resilience utilities for external calls.

External calls (artifact fetch, comment API) go through ``retry_with_backoff``.
The number of retries comes from configuration and defaults to none, so a
failing call surfaces immediately unless an operator opts in.
"""

import asyncio
import logging
from functools import wraps
from typing import Awaitable, Callable, ParamSpec, TypeVar

logger = logging.getLogger(__name__)

P = ParamSpec('P')
T = TypeVar('T')


def retry_with_backoff(
    max_retries: int = 0,
    base_delay: float = 1.0,
    max_delay: float = 60.0,
    exponential_base: float = 2.0,
    exceptions: tuple = (Exception,)
):
    """
    Decorator for retrying coroutine functions with exponential backoff.

    Args:
        max_retries: Retries after the first attempt (default: 0, one attempt)
        base_delay: Initial delay in seconds between retries
        max_delay: Maximum delay in seconds between retries
        exponential_base: Base for exponential backoff calculation
        exceptions: Exception types that trigger a retry; others propagate

    Example:
        @retry_with_backoff(max_retries=2, base_delay=1.0)
        async def fetch_artifact():
            return await store.get(run_id, "pr_number")
    """
    attempts = max(1, max_retries + 1)

    def decorator(func: Callable[P, Awaitable[T]]) -> Callable[P, Awaitable[T]]:
        @wraps(func)
        async def async_wrapper(*args: P.args, **kwargs: P.kwargs) -> T:
            for attempt in range(attempts):
                try:
                    result = await func(*args, **kwargs)

                    if attempt > 0:
                        logger.info(
                            f"{func.__name__} succeeded on attempt {attempt + 1}/{attempts}"
                        )

                    return result

                except exceptions as e:
                    if attempt == attempts - 1:
                        if attempts > 1:
                            logger.error(
                                f"{func.__name__} failed after {attempts} attempts: {e}"
                            )
                        raise

                    delay = min(base_delay * (exponential_base ** attempt), max_delay)

                    logger.warning(
                        f"{func.__name__} failed on attempt {attempt + 1}/{attempts}: {e}. "
                        f"Retrying in {delay:.1f}s..."
                    )

                    await asyncio.sleep(delay)

            raise AssertionError("unreachable")

        return async_wrapper

    return decorator


async def call_with_retries(
    func: Callable[[], Awaitable[T]],
    max_retries: int,
    base_delay: float,
    exceptions: tuple = (Exception,)
) -> T:
    """
    Run a zero-argument coroutine function under ``retry_with_backoff``.

    Used where the retry count is only known at runtime (from settings).
    """
    wrapped = retry_with_backoff(
        max_retries=max_retries,
        base_delay=base_delay,
        exceptions=exceptions
    )(func)
    return await wrapped()
