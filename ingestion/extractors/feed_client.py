"""
OData feed client with bearer authentication, pacing, retry and a circuit breaker.

Every request goes through, in order:
- the feed's circuit breaker (rejects while open)
- with_retry (capped exponential backoff, Retry-After honoured)
- the adaptive delay, then the sliding-window rate limiter (the slot is
  recorded immediately before the request is sent)
- the HTTP call and status classification
"""

import asyncio
import time
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

import httpx

from core.config import settings
from core.exceptions import (
    AuthError,
    BadRequestError,
    RateLimitedError,
    TransientNetworkError,
)
from ingestion.extractors.odata import encode_query, entity_path
from ingestion.resilience.circuit_breaker import CircuitBreaker
from ingestion.resilience.rate_limiter import AdaptiveDelay, SlidingWindowRateLimiter
from ingestion.resilience.retry import RetryPolicy, with_retry
from models.base import FeedScope
import logging

logger = logging.getLogger(__name__)


def _parse_retry_after(value: Optional[str]) -> Optional[float]:
    if not value:
        return None
    try:
        return max(0.0, float(value))
    except ValueError:
        # HTTP-date form is not used by the feed
        return None


def _parse_int_header(value: Optional[str]) -> Optional[int]:
    if not value:
        return None
    try:
        return int(value)
    except ValueError:
        return None


class FeedClient:
    """
    Authenticated, paced access to the listing feed.

    Use as an async context manager; the underlying ``httpx.AsyncClient`` is
    opened on enter and closed on exit.

    Attributes:
        base_url: Feed root, requests go to ``{base_url}/odata/{resource}``
        rate_limiter: Hard per-minute / per-hour caps
        adaptive_delay: AIMD pacing delay
        circuit_breaker: Breaker guarding the feed
        retry_policy: Attempts and backoff bounds
        request_count: HTTP requests actually sent
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        tokens: Optional[Dict[FeedScope, Optional[str]]] = None,
        timeout: Optional[float] = None,
        rate_limiter: Optional[SlidingWindowRateLimiter] = None,
        adaptive_delay: Optional[AdaptiveDelay] = None,
        circuit_breaker: Optional[CircuitBreaker] = None,
        retry_policy: Optional[RetryPolicy] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.base_url = (base_url or settings.FEED_BASE_URL).rstrip("/")
        self.tokens = tokens if tokens is not None else {
            FeedScope.IDX: settings.IDX_TOKEN or settings.ACCESS_TOKEN,
            FeedScope.VOW: settings.VOW_TOKEN or settings.ACCESS_TOKEN,
        }
        self.timeout = timeout or settings.FEED_TIMEOUT_SECONDS
        self.rate_limiter = rate_limiter or SlidingWindowRateLimiter(
            per_minute=settings.RATE_LIMIT_PER_MINUTE,
            per_hour=settings.RATE_LIMIT_PER_HOUR,
            clock=clock,
            sleep=sleep,
        )
        self.adaptive_delay = adaptive_delay or AdaptiveDelay(
            initial=settings.ADAPTIVE_INITIAL_DELAY,
            min_delay=settings.ADAPTIVE_MIN_DELAY,
            max_delay=settings.ADAPTIVE_MAX_DELAY,
            increase_factor=settings.ADAPTIVE_INCREASE_FACTOR,
            decrease_factor=settings.ADAPTIVE_DECREASE_FACTOR,
            success_threshold=settings.ADAPTIVE_SUCCESS_THRESHOLD,
            slow_response_seconds=settings.SLOW_RESPONSE_SECONDS,
            sleep=sleep,
        )
        self.circuit_breaker = circuit_breaker or CircuitBreaker(
            "feed",
            failure_threshold=settings.CIRCUIT_FAILURE_THRESHOLD,
            recovery_timeout=settings.CIRCUIT_RECOVERY_TIMEOUT,
            half_open_max_calls=settings.CIRCUIT_HALF_OPEN_MAX_CALLS,
            clock=clock,
        )
        self.retry_policy = retry_policy or RetryPolicy.from_settings()
        self._transport = transport
        self._clock = clock
        self._sleep = sleep
        self._client: Optional[httpx.AsyncClient] = None
        self.request_count = 0

    async def __aenter__(self) -> "FeedClient":
        self._client = httpx.AsyncClient(timeout=self.timeout, transport=self._transport)
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def fetch_page(
        self,
        resource: str,
        filter_expr: Optional[str],
        order_by: Optional[str],
        limit: int,
        feed_scope: FeedScope,
    ) -> List[Dict[str, Any]]:
        """
        Fetch one page of records.

        Args:
            resource: Feed endpoint (Property, Media, ...)
            filter_expr: OData ``$filter`` expression
            order_by: OData ``$orderby`` expression
            limit: Page size (``$top``)
            feed_scope: Selects the bearer token

        Returns:
            Records in feed order

        Raises:
            AuthError: Missing token or HTTP 401
            BadRequestError: Other 4xx responses
            RateLimitedError / TransientNetworkError: After retries are exhausted
            CircuitOpenError: While the feed breaker is open
        """
        params: List[Tuple[str, str]] = []
        if filter_expr:
            params.append(("$filter", filter_expr))
        if order_by:
            params.append(("$orderby", order_by))
        params.append(("$top", str(limit)))

        data = await self._get(resource, params, feed_scope)
        records = data.get("value")
        if not isinstance(records, list):
            raise TransientNetworkError(
                f"Feed response for {resource} has no 'value' array",
                context={"resource": resource, "keys": sorted(data.keys())[:20]}
            )

        logger.debug(f"Fetched {len(records)} {resource} records ({feed_scope.value})")
        return records

    async def count(self, resource: str, filter_expr: Optional[str], feed_scope: FeedScope) -> int:
        """Total records matching ``filter_expr`` (``$count=true`` with ``$top=0``)."""
        params: List[Tuple[str, str]] = []
        if filter_expr:
            params.append(("$filter", filter_expr))
        params.append(("$top", "0"))
        params.append(("$count", "true"))

        data = await self._get(resource, params, feed_scope)
        return int(data.get("@odata.count", 0))

    async def fetch_one(self, resource: str, key: str, feed_scope: FeedScope) -> Optional[Dict[str, Any]]:
        """
        Fetch a single record by key (``{resource}('KEY')``).

        Returns:
            The record, or None when the feed answers 404
        """
        try:
            return await self._get(resource, [], feed_scope, path=entity_path(resource, key))
        except BadRequestError as e:
            if e.status_code == 404:
                logger.info(f"{resource} {key} not found in {feed_scope.value} feed")
                return None
            raise

    # ------------------------------------------------------------------
    # Request pipeline
    # ------------------------------------------------------------------

    def _token(self, feed_scope: FeedScope) -> str:
        token = self.tokens.get(feed_scope)
        if not token:
            raise AuthError(
                f"No access token configured for feed scope '{feed_scope.value}'",
                context={"feed_scope": feed_scope.value}
            )
        return token

    def _url(self, path: str, params: List[Tuple[str, str]]) -> str:
        url = f"{self.base_url}/odata/{path}"
        return f"{url}?{encode_query(params)}" if params else url

    async def _get(
        self,
        resource: str,
        params: List[Tuple[str, str]],
        feed_scope: FeedScope,
        path: Optional[str] = None,
    ) -> Dict[str, Any]:
        if self._client is None:
            raise RuntimeError("FeedClient must be used as an async context manager")

        headers = {
            "Authorization": f"Bearer {self._token(feed_scope)}",
            "Accept": "application/json",
        }
        url = self._url(path or resource, params)

        async def attempt() -> Dict[str, Any]:
            return await self._request_once(url, headers, resource)

        async def retried() -> Dict[str, Any]:
            return await with_retry(
                attempt,
                self.retry_policy,
                description=f"GET {resource}",
                sleep=self._sleep,
            )

        return await self.circuit_breaker.call(retried, ignore=(BadRequestError,))

    async def _request_once(self, url: str, headers: Dict[str, str], resource: str) -> Dict[str, Any]:
        await self.adaptive_delay.wait()
        await self.rate_limiter.acquire()

        started = self._clock()
        try:
            self.request_count += 1
            response = await self._client.get(url, headers=headers)
        except httpx.TimeoutException as e:
            self.adaptive_delay.record_failure()
            raise TransientNetworkError(
                f"Request timeout for {resource}",
                context={"url": url, "resource": resource, "timeout": self.timeout},
                original_exception=e
            )
        except httpx.TransportError as e:
            self.adaptive_delay.record_failure()
            raise TransientNetworkError(
                f"Network error for {resource}",
                context={"url": url, "resource": resource},
                original_exception=e
            )
        elapsed = self._clock() - started

        self.rate_limiter.update_limits(
            per_minute=_parse_int_header(response.headers.get("X-RateLimit-Limit-Minute")),
            per_hour=_parse_int_header(response.headers.get("X-RateLimit-Limit-Hour")),
        )

        self._raise_for_status(response, url, resource)

        try:
            data = response.json()
        except ValueError as e:
            self.adaptive_delay.record_failure()
            raise TransientNetworkError(
                f"Malformed JSON from feed for {resource}",
                context={"url": url, "resource": resource, "response_body": response.text[:500]},
                original_exception=e
            )

        self.adaptive_delay.record_success(elapsed)
        return data

    def _raise_for_status(self, response: httpx.Response, url: str, resource: str) -> None:
        status = response.status_code
        if status < 400:
            return

        context = {
            "url": url,
            "resource": resource,
            "status_code": status,
            "response_body": response.text[:500],  # Truncate
        }

        if status in (429, 403):
            retry_after = _parse_retry_after(response.headers.get("Retry-After"))
            if retry_after is not None:
                self.adaptive_delay.apply_retry_after(retry_after)
            else:
                self.adaptive_delay.record_failure()
            logger.warning(f"Feed throttled {resource} request (HTTP {status}), retry_after={retry_after}")
            raise RateLimitedError(
                f"Rate limited by feed for {resource}",
                context=context,
                retry_after=retry_after
            )

        if status == 401:
            raise AuthError(f"Authentication failed for {resource}", context=context)

        if status < 500:
            raise BadRequestError(f"Feed rejected {resource} query (HTTP {status})", context=context)

        self.adaptive_delay.record_failure()
        raise TransientNetworkError(f"Feed server error {status} for {resource}", context=context)
