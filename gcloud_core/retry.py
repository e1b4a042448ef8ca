"""
Retry policy: jittered exponential backoff and retryable-failure predicates.
"""

import asyncio
import functools
import random
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, ClassVar, Optional, Tuple, Type

from gcloud_core.errors import (
    APIError,
    HTTPStatusError,
    MaxRetriesExceededError,
    NetworkError,
    RequestTimeoutError,
    RETRYABLE_STATUS_CODES,
)
from gcloud_core.logging import get_logger


@dataclass(frozen=True)
class RetryConfig:
    """Configuration for retry behavior.

    ``max_retries`` counts retries after the first attempt, so a request is
    tried at most ``max_retries + 1`` times.
    """

    max_retries: int = 3
    base_delay: float = 1.0
    max_delay: float = 30.0
    jitter_factor: float = 0.2
    retry_on_timeout: bool = True

    DEFAULT: ClassVar["RetryConfig"]
    NONE: ClassVar["RetryConfig"]
    CONSERVATIVE: ClassVar["RetryConfig"]
    AGGRESSIVE: ClassVar["RetryConfig"]
    BATCH: ClassVar["RetryConfig"]

    def __post_init__(self):
        if self.max_retries < 0:
            raise ValueError("max_retries must be >= 0")
        if not 0.0 <= self.jitter_factor <= 1.0:
            raise ValueError("jitter_factor must be between 0.0 and 1.0")

    def base_delay_for(self, attempt: int) -> float:
        """Un-jittered delay for a zero-based attempt number."""
        return max(0.0, min(self.base_delay * (2 ** attempt), self.max_delay))

    def delay(self, attempt: int) -> float:
        """Delay before retrying after ``attempt`` failed, with symmetric jitter."""
        capped = self.base_delay_for(attempt)
        jitter = capped * self.jitter_factor * random.uniform(-1.0, 1.0)
        return max(0.0, capped + jitter)

    def is_retryable_status(self, status_code: int) -> bool:
        return status_code in RETRYABLE_STATUS_CODES

    def is_retryable(self, error: BaseException) -> bool:
        """Whether ``error`` is a transient failure worth another attempt."""
        if isinstance(error, RequestTimeoutError):
            return self.retry_on_timeout
        if isinstance(error, HTTPStatusError):
            return self.is_retryable_status(error.status_code)
        if isinstance(error, NetworkError):
            return True
        return False


RetryConfig.DEFAULT = RetryConfig(max_retries=3, base_delay=1.0, max_delay=30.0, jitter_factor=0.2)
RetryConfig.NONE = RetryConfig(max_retries=0, base_delay=0.0, max_delay=0.0, jitter_factor=0.0)
RetryConfig.CONSERVATIVE = RetryConfig(max_retries=5, base_delay=2.0, max_delay=60.0, jitter_factor=0.3)
RetryConfig.AGGRESSIVE = RetryConfig(max_retries=2, base_delay=0.5, max_delay=10.0, jitter_factor=0.1)
RetryConfig.BATCH = RetryConfig(max_retries=10, base_delay=1.0, max_delay=120.0, jitter_factor=0.25)


def retry_on_exception(exceptions: Tuple[Type[BaseException], ...] = (NetworkError,),
                       config: Optional[RetryConfig] = None) -> Callable:
    """Decorator for retrying coroutines that raise one of ``exceptions``.

    ``APIError`` instances are additionally filtered through
    ``RetryConfig.is_retryable`` so non-transient API failures surface on the
    first attempt.
    """

    if config is None:
        config = RetryConfig.DEFAULT

    def decorator(func: Callable[..., Awaitable[Any]]) -> Callable[..., Awaitable[Any]]:
        @functools.wraps(func)
        async def wrapper(*args, **kwargs) -> Any:
            logger = get_logger(f"retry.{func.__name__}")

            for attempt in range(config.max_retries + 1):
                try:
                    return await func(*args, **kwargs)
                except exceptions as e:
                    if isinstance(e, APIError) and not config.is_retryable(e):
                        raise

                    if attempt >= config.max_retries:
                        logger.error(
                            "All retry attempts exhausted",
                            attempts=attempt + 1,
                            function=func.__name__,
                            error=str(e)
                        )
                        if config.max_retries == 0:
                            raise
                        raise MaxRetriesExceededError(e, attempts=attempt + 1) from e

                    delay = config.delay(attempt)
                    logger.warning(
                        "Retry attempt failed, waiting before next attempt",
                        attempt=attempt + 1,
                        delay=delay,
                        function=func.__name__,
                        error=str(e)
                    )
                    await asyncio.sleep(delay)

        return wrapper

    return decorator
