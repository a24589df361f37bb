"""
Outbound request pacing for the feed client.

Two cooperating pieces:
- SlidingWindowRateLimiter enforces hard per-minute and per-hour caps.
- AdaptiveDelay adds an AIMD delay in front of every request: it shrinks
  after a run of fast successes and grows on slow responses, failures and
  Retry-After hints.
"""

import asyncio
import time
from collections import deque
from typing import Awaitable, Callable, Deque, Dict, Optional

import logging

logger = logging.getLogger(__name__)

MINUTE = 60.0
HOUR = 3600.0


class SlidingWindowRateLimiter:
    """
    Sliding window limiter over a 60 second and a 3600 second window.

    Request timestamps older than a window are pruned on every acquire. When
    either window is full the caller sleeps until its oldest entry expires.
    """

    def __init__(
        self,
        per_minute: int,
        per_hour: int,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self._limits: Dict[float, int] = {MINUTE: per_minute, HOUR: per_hour}
        self._request_times: Dict[float, Deque[float]] = {MINUTE: deque(), HOUR: deque()}
        self._clock = clock
        self._sleep = sleep
        self._lock = asyncio.Lock()

    @property
    def per_minute(self) -> int:
        return self._limits[MINUTE]

    @property
    def per_hour(self) -> int:
        return self._limits[HOUR]

    def _prune(self, now: float) -> None:
        for window, times in self._request_times.items():
            cutoff = now - window
            while times and times[0] <= cutoff:
                times.popleft()

    def _wait_time(self, now: float) -> float:
        wait = 0.0
        for window, times in self._request_times.items():
            if len(times) >= self._limits[window]:
                wait = max(wait, times[0] + window - now)
        return wait

    async def acquire(self) -> float:
        """
        Block until both windows have room, then claim a slot.

        Returns:
            Total seconds spent waiting
        """
        waited = 0.0
        while True:
            async with self._lock:
                now = self._clock()
                self._prune(now)
                wait = self._wait_time(now)
                if wait <= 0:
                    for times in self._request_times.values():
                        times.append(now)
                    return waited

            logger.debug(f"Rate limit window full, waiting {wait:.2f}s")
            await self._sleep(wait)
            waited += wait

    def update_limits(self, per_minute: Optional[int] = None, per_hour: Optional[int] = None) -> None:
        """Tighten limits from server-advertised values. Limits are never raised."""
        if per_minute is not None and 0 < per_minute < self._limits[MINUTE]:
            logger.info(f"Feed advertises {per_minute} requests/minute, tightening limit")
            self._limits[MINUTE] = per_minute
        if per_hour is not None and 0 < per_hour < self._limits[HOUR]:
            logger.info(f"Feed advertises {per_hour} requests/hour, tightening limit")
            self._limits[HOUR] = per_hour


class AdaptiveDelay:
    """
    Additive-increase / multiplicative-decrease style pacing delay.

    Attributes:
        current: Delay in seconds applied before the next request
    """

    def __init__(
        self,
        initial: float = 0.1,
        min_delay: float = 0.05,
        max_delay: float = 5.0,
        increase_factor: float = 2.0,
        decrease_factor: float = 0.9,
        success_threshold: int = 10,
        slow_response_seconds: float = 2.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.current = initial
        self.min_delay = min_delay
        self.max_delay = max_delay
        self.increase_factor = increase_factor
        self.decrease_factor = decrease_factor
        self.success_threshold = success_threshold
        self.slow_response_seconds = slow_response_seconds
        self._sleep = sleep
        self._consecutive_successes = 0

    def _increase(self) -> None:
        self._consecutive_successes = 0
        self.current = min(self.max_delay, max(self.current, self.min_delay) * self.increase_factor)

    def record_success(self, elapsed: float) -> None:
        if elapsed > self.slow_response_seconds:
            logger.debug(f"Slow response ({elapsed:.2f}s), increasing delay")
            self._increase()
            return

        self._consecutive_successes += 1
        if self._consecutive_successes >= self.success_threshold:
            self.current = max(self.min_delay, self.current * self.decrease_factor)
            self._consecutive_successes = 0

    def record_failure(self) -> None:
        self._increase()

    def apply_retry_after(self, retry_after: float) -> None:
        """Raise the delay to at least the server's Retry-After, capped at max_delay."""
        self._consecutive_successes = 0
        self.current = min(self.max_delay, max(self.current, retry_after))

    async def wait(self) -> None:
        if self.current > 0:
            await self._sleep(self.current)
