"""
In-call retry for idempotent reads against external APIs.

Job-level retries are owned by the worker (arq ``Retry``); this decorator only
smooths over short blips such as a single 502 while listing DNS records.
"""

import asyncio
from functools import wraps
from typing import Any, Awaitable, Callable, Optional, Tuple

from loguru import logger

from marketplace_jobs.core.errors import JobError


class RetryConfig:
    """Retry settings for ``with_async_retry``."""

    def __init__(
        self,
        max_retries: int = 2,
        initial_delay: float = 0.5,
        backoff_factor: float = 2.0,
        max_delay: float = 5.0,
        retry_on_exceptions: Optional[Tuple[type, ...]] = None,
    ):
        """
        Args:
            max_retries: retries after the first attempt
            initial_delay: delay before the first retry, in seconds
            backoff_factor: multiplier applied per retry
            max_delay: ceiling for a single delay
            retry_on_exceptions: extra exception types to retry besides retryable JobErrors
        """
        self.max_retries = max_retries
        self.initial_delay = initial_delay
        self.backoff_factor = backoff_factor
        self.max_delay = max_delay
        self.retry_on_exceptions = retry_on_exceptions or ()

    def should_retry(self, exc: BaseException) -> bool:
        if isinstance(exc, JobError):
            return exc.retryable
        return isinstance(exc, self.retry_on_exceptions)

    def delay_for(self, attempt: int) -> float:
        return min(self.initial_delay * (self.backoff_factor ** attempt), self.max_delay)


DEFAULT_RETRY_CONFIG = RetryConfig()

# Cloudflare reads are cheap; give them one more chance than the default.
CLOUDFLARE_READ_RETRY_CONFIG = RetryConfig(max_retries=3, initial_delay=1.0, max_delay=8.0)


def with_async_retry(config: Optional[RetryConfig] = None, *, sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep):
    """
    Retry decorator for coroutine functions.

    Example:
        @with_async_retry(CLOUDFLARE_READ_RETRY_CONFIG)
        async def list_dns_records(self, zone_id): ...
    """
    if config is None:
        config = DEFAULT_RETRY_CONFIG

    def decorator(func: Callable[..., Awaitable[Any]]) -> Callable[..., Awaitable[Any]]:
        @wraps(func)
        async def wrapper(*args, **kwargs) -> Any:
            for attempt in range(config.max_retries + 1):
                try:
                    result = await func(*args, **kwargs)
                    if attempt > 0:
                        logger.info(f"{func.__name__} succeeded on attempt {attempt + 1}")
                    return result
                except Exception as e:
                    if not config.should_retry(e) or attempt == config.max_retries:
                        if attempt > 0:
                            logger.error(f"{func.__name__} failed after {attempt + 1} attempts: {e}")
                        raise
                    delay = config.delay_for(attempt)
                    logger.warning(f"{func.__name__} attempt {attempt + 1} failed: {e}; retrying in {delay:.1f}s")
                    await sleep(delay)

        return wrapper

    return decorator
