"""
Unit tests for the feed client
"""

import httpx
import pytest
from core.exceptions import AuthError, BadRequestError, CircuitOpenError, RateLimitedError, TransientNetworkError
from ingestion.extractors.feed_client import FeedClient
from ingestion.resilience.circuit_breaker import CircuitBreaker, CircuitState
from ingestion.resilience.rate_limiter import AdaptiveDelay, SlidingWindowRateLimiter
from ingestion.resilience.retry import RetryPolicy
from models.base import FeedScope


def make_client(handler, clock, tokens=None, max_attempts=3, breaker=None):
    return FeedClient(
        base_url="https://feed.example.com",
        tokens=tokens or {FeedScope.IDX: "idx-token", FeedScope.VOW: "vow-token"},
        rate_limiter=SlidingWindowRateLimiter(per_minute=1000, per_hour=10000, clock=clock, sleep=clock.sleep),
        adaptive_delay=AdaptiveDelay(initial=0.0, min_delay=0.0, sleep=clock.sleep),
        circuit_breaker=breaker or CircuitBreaker("feed", failure_threshold=5, clock=clock),
        retry_policy=RetryPolicy(max_attempts=max_attempts, base_delay=1.0, max_delay=10.0),
        transport=httpx.MockTransport(handler),
        clock=clock,
        sleep=clock.sleep,
    )


class TestFeedClient:

    @pytest.mark.asyncio
    async def test_fetch_page_builds_odata_query(self, fake_clock):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, json={"value": [{"ListingKey": "A"}]})

        async with make_client(handler, fake_clock) as client:
            records = await client.fetch_page(
                "Property",
                "ModificationTimestamp gt 2024-01-01T00:00:00Z",
                "ModificationTimestamp asc,ListingKey asc",
                100,
                FeedScope.IDX,
            )

        assert records == [{"ListingKey": "A"}]
        request = seen[0]
        assert request.url.path == "/odata/Property"
        assert request.url.params["$filter"] == "ModificationTimestamp gt 2024-01-01T00:00:00Z"
        assert request.url.params["$orderby"] == "ModificationTimestamp asc,ListingKey asc"
        assert request.url.params["$top"] == "100"
        assert "%20" in str(request.url)
        assert "+" not in request.url.query.decode()
        assert request.headers["Authorization"] == "Bearer idx-token"

    @pytest.mark.asyncio
    async def test_scope_selects_token(self, fake_clock):
        seen = []

        def handler(request):
            seen.append(request.headers["Authorization"])
            return httpx.Response(200, json={"value": []})

        async with make_client(handler, fake_clock) as client:
            await client.fetch_page("Property", None, None, 10, FeedScope.VOW)

        assert seen == ["Bearer vow-token"]

    @pytest.mark.asyncio
    async def test_missing_token_raises_auth_error_without_request(self, fake_clock):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(200, json={"value": []})

        async with make_client(handler, fake_clock, tokens={FeedScope.IDX: "t", FeedScope.VOW: None}) as client:
            with pytest.raises(AuthError):
                await client.fetch_page("Property", None, None, 10, FeedScope.VOW)

        assert calls == []

    @pytest.mark.asyncio
    async def test_count_reads_odata_count(self, fake_clock):
        def handler(request):
            assert request.url.params["$top"] == "0"
            assert request.url.params["$count"] == "true"
            return httpx.Response(200, json={"@odata.count": 4321, "value": []})

        async with make_client(handler, fake_clock) as client:
            assert await client.count("Property", "ContractStatus eq 'Available'", FeedScope.IDX) == 4321

    @pytest.mark.asyncio
    async def test_server_errors_are_retried(self, fake_clock):
        responses = [httpx.Response(503), httpx.Response(502), httpx.Response(200, json={"value": [{"k": 1}]})]

        def handler(request):
            return responses.pop(0)

        async with make_client(handler, fake_clock) as client:
            records = await client.fetch_page("Property", None, None, 10, FeedScope.IDX)

        assert records == [{"k": 1}]
        assert client.request_count == 3
        assert client.circuit_breaker.failure_count == 0

    @pytest.mark.asyncio
    async def test_rate_limited_honours_retry_after(self, fake_clock):
        responses = [
            httpx.Response(429, headers={"Retry-After": "5"}),
            httpx.Response(200, json={"value": []}),
        ]

        def handler(request):
            return responses.pop(0)

        async with make_client(handler, fake_clock) as client:
            await client.fetch_page("Property", None, None, 10, FeedScope.IDX)

        assert 5 in fake_clock.sleeps

    @pytest.mark.asyncio
    async def test_403_is_treated_as_rate_limit(self, fake_clock):
        def handler(request):
            return httpx.Response(403, text="slow down")

        async with make_client(handler, fake_clock, max_attempts=2) as client:
            with pytest.raises(RateLimitedError) as exc_info:
                await client.fetch_page("Property", None, None, 10, FeedScope.IDX)

        assert client.request_count == 2
        assert exc_info.value.status_code == 403
        assert exc_info.value.context["response_body"] == "slow down"

    @pytest.mark.asyncio
    async def test_401_is_not_retried(self, fake_clock):
        def handler(request):
            return httpx.Response(401)

        async with make_client(handler, fake_clock) as client:
            with pytest.raises(AuthError):
                await client.fetch_page("Property", None, None, 10, FeedScope.IDX)

        assert client.request_count == 1

    @pytest.mark.asyncio
    async def test_bad_request_not_retried_and_not_counted_by_breaker(self, fake_clock):
        def handler(request):
            return httpx.Response(400, text="bad filter")

        async with make_client(handler, fake_clock) as client:
            with pytest.raises(BadRequestError):
                await client.fetch_page("Property", "bogus", None, 10, FeedScope.IDX)

        assert client.request_count == 1
        assert client.circuit_breaker.failure_count == 0

    @pytest.mark.asyncio
    async def test_network_errors_become_transient(self, fake_clock):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        async with make_client(handler, fake_clock, max_attempts=2) as client:
            with pytest.raises(TransientNetworkError):
                await client.fetch_page("Property", None, None, 10, FeedScope.IDX)

        assert client.request_count == 2

    @pytest.mark.asyncio
    async def test_breaker_opens_after_repeated_failures(self, fake_clock):
        breaker = CircuitBreaker("feed", failure_threshold=2, recovery_timeout=60, clock=fake_clock)

        def handler(request):
            return httpx.Response(500)

        async with make_client(handler, fake_clock, max_attempts=1, breaker=breaker) as client:
            for _ in range(2):
                with pytest.raises(TransientNetworkError):
                    await client.fetch_page("Property", None, None, 10, FeedScope.IDX)

            with pytest.raises(CircuitOpenError):
                await client.fetch_page("Property", None, None, 10, FeedScope.IDX)

        assert breaker.state == CircuitState.OPEN
        assert client.request_count == 2

    @pytest.mark.asyncio
    async def test_rate_limit_headers_tighten_limiter(self, fake_clock):
        def handler(request):
            return httpx.Response(200, json={"value": []}, headers={"X-RateLimit-Limit-Minute": "30"})

        async with make_client(handler, fake_clock) as client:
            await client.fetch_page("Property", None, None, 10, FeedScope.IDX)

        assert client.rate_limiter.per_minute == 30

    @pytest.mark.asyncio
    async def test_request_start_times_respect_window_while_delay_shrinks(self, fake_clock):
        started = []

        def handler(request):
            started.append(fake_clock())
            return httpx.Response(200, json={"value": []})

        client = FeedClient(
            base_url="https://feed.example.com",
            tokens={FeedScope.IDX: "idx-token"},
            rate_limiter=SlidingWindowRateLimiter(per_minute=2, per_hour=1000, clock=fake_clock, sleep=fake_clock.sleep),
            adaptive_delay=AdaptiveDelay(
                initial=10.0, min_delay=0.0, decrease_factor=0.01, success_threshold=1, sleep=fake_clock.sleep
            ),
            circuit_breaker=CircuitBreaker("feed", clock=fake_clock),
            retry_policy=RetryPolicy(max_attempts=1),
            transport=httpx.MockTransport(handler),
            clock=fake_clock,
            sleep=fake_clock.sleep,
        )
        async with client:
            for _ in range(3):
                await client.fetch_page("Property", None, None, 10, FeedScope.IDX)

        assert len(started) == 3
        assert started[1] - started[0] < 60.0
        # Third request waits for the first to leave the 60s window
        assert started[2] - started[0] >= 60.0

    @pytest.mark.asyncio
    async def test_fetch_one_addresses_record_by_key(self, fake_clock):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, json={"ListingKey": "X123", "ModificationTimestamp": "2024-01-01T00:00:00Z"})

        async with make_client(handler, fake_clock) as client:
            record = await client.fetch_one("Property", "X123", FeedScope.IDX)

        assert record["ListingKey"] == "X123"
        assert seen[0].url.path == "/odata/Property('X123')"
        assert seen[0].url.query == b""

    @pytest.mark.asyncio
    async def test_fetch_one_returns_none_on_404(self, fake_clock):
        def handler(request):
            return httpx.Response(404, json={"error": {"message": "not found"}})

        async with make_client(handler, fake_clock) as client:
            assert await client.fetch_one("Property", "GONE", FeedScope.IDX) is None

        assert client.request_count == 1
        assert client.circuit_breaker.failure_count == 0
