"""
Generic async retry with capped exponential backoff.

Shared by the feed client and the upsert sink. Only RetryableError
subclasses are retried; anything else propagates on the first attempt.
"""

import asyncio
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, TypeVar

from core.config import settings
from core.exceptions import RateLimitedError, RetryableError
import logging

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 10.0

    @classmethod
    def from_settings(cls) -> "RetryPolicy":
        return cls(
            max_attempts=settings.MAX_RETRIES,
            base_delay=settings.RETRY_BASE_DELAY,
            max_delay=settings.RETRY_MAX_DELAY,
        )

    def delay_for(self, attempt: int, error: Optional[Exception] = None) -> float:
        """Backoff before retry number ``attempt + 1`` (attempt is zero based)."""
        delay = min(self.base_delay * (2 ** attempt), self.max_delay)
        if isinstance(error, RateLimitedError) and error.retry_after:
            delay = max(delay, error.retry_after)
        return delay


async def with_retry(
    operation: Callable[[], Awaitable[T]],
    policy: RetryPolicy,
    description: str = "operation",
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """
    Await ``operation`` until it succeeds or the policy is exhausted.

    Args:
        operation: Zero-argument coroutine factory, called once per attempt
        policy: Attempt count and backoff bounds
        description: Label used in log lines
        sleep: Injected for tests

    Returns:
        The operation's result

    Raises:
        The last RetryableError once attempts are exhausted, or any
        non-retryable exception immediately
    """
    for attempt in range(policy.max_attempts):
        try:
            return await operation()
        except RetryableError as e:
            if attempt >= policy.max_attempts - 1:
                logger.error(f"{description} failed after {policy.max_attempts} attempts: {e.message}")
                raise
            delay = policy.delay_for(attempt, e)
            logger.warning(
                f"{description} failed ({type(e).__name__}). "
                f"Retrying in {delay:.2f} seconds (attempt {attempt + 1}/{policy.max_attempts})"
            )
            await sleep(delay)

    raise ValueError("RetryPolicy.max_attempts must be at least 1")
