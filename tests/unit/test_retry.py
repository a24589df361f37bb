"""
Unit tests for with_retry
"""

import pytest
from core.exceptions import AuthError, RateLimitedError, TransientNetworkError
from ingestion.resilience.retry import RetryPolicy, with_retry


class Flaky:
    def __init__(self, failures):
        self.failures = list(failures)
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        if self.failures:
            raise self.failures.pop(0)
        return "done"


@pytest.mark.asyncio
async def test_retries_transient_errors_with_capped_backoff(fake_clock):
    op = Flaky([TransientNetworkError("1"), TransientNetworkError("2"), TransientNetworkError("3")])
    policy = RetryPolicy(max_attempts=4, base_delay=1.0, max_delay=3.0)

    assert await with_retry(op, policy, sleep=fake_clock.sleep) == "done"
    assert op.calls == 4
    assert fake_clock.sleeps == [1.0, 2.0, 3.0]


@pytest.mark.asyncio
async def test_gives_up_after_max_attempts(fake_clock):
    op = Flaky([TransientNetworkError(str(i)) for i in range(5)])

    with pytest.raises(TransientNetworkError):
        await with_retry(op, RetryPolicy(max_attempts=3), sleep=fake_clock.sleep)
    assert op.calls == 3


@pytest.mark.asyncio
async def test_non_retryable_errors_propagate_immediately(fake_clock):
    op = Flaky([AuthError("401")])

    with pytest.raises(AuthError):
        await with_retry(op, RetryPolicy(max_attempts=3), sleep=fake_clock.sleep)
    assert op.calls == 1
    assert fake_clock.sleeps == []


@pytest.mark.asyncio
async def test_retry_after_is_honoured(fake_clock):
    op = Flaky([RateLimitedError("429", retry_after=7)])

    await with_retry(op, RetryPolicy(max_attempts=2, base_delay=1.0, max_delay=3.0), sleep=fake_clock.sleep)
    assert fake_clock.sleeps == [7]
