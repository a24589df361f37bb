"""
Unit tests for the sliding window limiter and adaptive delay
"""

import pytest
from ingestion.resilience.rate_limiter import AdaptiveDelay, SlidingWindowRateLimiter, MINUTE, HOUR


class TestSlidingWindowRateLimiter:

    @pytest.mark.asyncio
    async def test_requests_within_limit_do_not_wait(self, fake_clock):
        limiter = SlidingWindowRateLimiter(per_minute=5, per_hour=100, clock=fake_clock, sleep=fake_clock.sleep)

        for _ in range(5):
            assert await limiter.acquire() == 0

        assert fake_clock.sleeps == []

    @pytest.mark.asyncio
    async def test_minute_window_blocks_until_oldest_expires(self, fake_clock):
        limiter = SlidingWindowRateLimiter(per_minute=2, per_hour=100, clock=fake_clock, sleep=fake_clock.sleep)
        start = fake_clock.now

        await limiter.acquire()
        fake_clock.advance(10)
        await limiter.acquire()
        waited = await limiter.acquire()

        assert waited == pytest.approx(50)
        assert fake_clock.now == pytest.approx(start + 60)

    @pytest.mark.asyncio
    async def test_no_sixty_second_window_exceeds_limit(self, fake_clock):
        limiter = SlidingWindowRateLimiter(per_minute=3, per_hour=1000, clock=fake_clock, sleep=fake_clock.sleep)
        times = []
        for _ in range(10):
            await limiter.acquire()
            times.append(fake_clock.now)
            fake_clock.advance(1)

        for t in times:
            in_window = [x for x in times if t <= x < t + MINUTE]
            assert len(in_window) <= 3

    @pytest.mark.asyncio
    async def test_hour_window_enforced(self, fake_clock):
        limiter = SlidingWindowRateLimiter(per_minute=100, per_hour=3, clock=fake_clock, sleep=fake_clock.sleep)
        start = fake_clock.now
        for _ in range(3):
            await limiter.acquire()

        await limiter.acquire()
        assert fake_clock.now == pytest.approx(start + HOUR)

    def test_update_limits_only_tightens(self, fake_clock):
        limiter = SlidingWindowRateLimiter(per_minute=120, per_hour=5000, clock=fake_clock)

        limiter.update_limits(per_minute=60, per_hour=9000)

        assert limiter.per_minute == 60
        assert limiter.per_hour == 5000


class TestAdaptiveDelay:

    def test_decreases_after_success_streak(self):
        delay = AdaptiveDelay(initial=1.0, min_delay=0.1, decrease_factor=0.5, success_threshold=3)
        for _ in range(3):
            delay.record_success(0.1)
        assert delay.current == pytest.approx(0.5)

    def test_never_below_min(self):
        delay = AdaptiveDelay(initial=0.2, min_delay=0.15, decrease_factor=0.5, success_threshold=1)
        delay.record_success(0.1)
        delay.record_success(0.1)
        assert delay.current == pytest.approx(0.15)

    def test_slow_response_increases(self):
        delay = AdaptiveDelay(initial=0.5, increase_factor=2.0, slow_response_seconds=1.0)
        delay.record_success(3.0)
        assert delay.current == pytest.approx(1.0)

    def test_failure_increases_up_to_max(self):
        delay = AdaptiveDelay(initial=1.0, max_delay=3.0, increase_factor=2.0)
        delay.record_failure()
        delay.record_failure()
        assert delay.current == pytest.approx(3.0)

    def test_retry_after_raises_floor(self):
        delay = AdaptiveDelay(initial=0.1, max_delay=10.0)
        delay.apply_retry_after(4)
        assert delay.current == pytest.approx(4.0)

    @pytest.mark.asyncio
    async def test_wait_sleeps_current_delay(self, fake_clock):
        delay = AdaptiveDelay(initial=0.25, sleep=fake_clock.sleep)
        await delay.wait()
        assert fake_clock.sleeps == [0.25]
