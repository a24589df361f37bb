"""
Pytest configuration and fixtures
"""

import re
from typing import Any, AsyncGenerator, Dict, List, Optional

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, AsyncEngine, create_async_engine, async_sessionmaker
from sqlalchemy.pool import NullPool

from ingestion.loaders.postgres_loader import PostgresLoader
from ingestion.resilience.circuit_breaker import CircuitBreaker
from ingestion.resilience.retry import RetryPolicy
from ingestion.resources import RESOURCES
from ingestion.sync_log import SyncStateLog
from models import Base


class FakeClock:
    """Monotonic clock whose sleep advances time instantly."""

    def __init__(self, start: float = 1000.0):
        self.now = start
        self.sleeps: List[float] = []

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


class FakeFeed:
    """
    In-memory stand-in for FeedClient.

    Understands the filters the sync engine generates: the timestamp/key
    cursor filter for top-level pages and parent key filters with keyset
    pagination for child fetches.
    """

    def __init__(self, records: Optional[Dict[str, List[Dict[str, Any]]]] = None):
        self.records: Dict[str, List[Dict[str, Any]]] = records or {}
        self.calls: List[Dict[str, Any]] = []
        self.errors: Dict[Any, Exception] = {}

    def fail(self, resource: str, error: Exception, feed_scope=None) -> None:
        """Raise ``error`` for every fetch of ``resource`` (optionally in one scope only)."""
        self.errors[(resource, feed_scope)] = error

    def calls_for(self, resource: str) -> List[Dict[str, Any]]:
        return [c for c in self.calls if c["resource"] == resource]

    async def fetch_page(self, resource, filter_expr, order_by, limit, feed_scope):
        self.calls.append({
            "resource": resource,
            "filter": filter_expr,
            "order_by": order_by,
            "limit": limit,
            "feed_scope": feed_scope,
        })
        for key in ((resource, feed_scope), (resource, None)):
            if key in self.errors:
                raise self.errors[key]

        spec = RESOURCES[resource]
        records = self.records.get(resource, [])
        filter_expr = filter_expr or ""

        parent_keys = self._parent_keys(spec, filter_expr)
        if parent_keys is not None:
            after = self._quoted_after(spec.key_field, filter_expr)
            matched = sorted(
                (r for r in records if r.get(spec.parent_field) in parent_keys
                 and (after is None or r[spec.key_field] > after)),
                key=lambda r: r[spec.key_field],
            )
            return matched[:limit]

        ts_match = re.search(rf"{spec.timestamp_field} gt ([^\s)]+)", filter_expr)
        last_ts = ts_match.group(1) if ts_match else ""
        last_key = self._quoted_after(spec.key_field, filter_expr)

        def after_cursor(r):
            ts = r[spec.timestamp_field]
            if ts > last_ts:
                return True
            return last_key is not None and ts == last_ts and r[spec.key_field] > last_key

        matched = sorted(
            (r for r in records if after_cursor(r)),
            key=lambda r: (r[spec.timestamp_field], r[spec.key_field]),
        )
        return matched[:limit]

    async def fetch_one(self, resource, key, feed_scope):
        self.calls.append({"resource": resource, "key": key, "feed_scope": feed_scope})
        for error_key in ((resource, feed_scope), (resource, None)):
            if error_key in self.errors:
                raise self.errors[error_key]

        key_field = RESOURCES[resource].key_field
        for record in self.records.get(resource, []):
            if record.get(key_field) == key:
                return record
        return None

    @staticmethod
    def _quoted_after(field: str, filter_expr: str) -> Optional[str]:
        match = re.search(rf"{field} gt '([^']*)'", filter_expr)
        return match.group(1) if match else None

    @staticmethod
    def _parent_keys(spec, filter_expr: str):
        if not spec.is_child:
            return None
        in_match = re.search(rf"{spec.parent_field} in \(([^)]*)\)", filter_expr)
        if in_match:
            return set(re.findall(r"'([^']*)'", in_match.group(1)))
        eq_keys = re.findall(rf"{spec.parent_field} eq '([^']*)'", filter_expr)
        if eq_keys:
            return set(eq_keys)
        return None


def make_property(n: int, ts: str = "2024-03-01T00:00:00Z", **extra) -> Dict[str, Any]:
    record = {
        "ListingKey": f"L{n:05d}",
        "ModificationTimestamp": ts,
        "ContractStatus": "Available",
        "City": "Toronto",
        "ListPrice": 500000 + n,
        "BedroomsTotal": 3,
    }
    record.update(extra)
    return record


def make_media(n: int, listing_key: str, ts: str = "2024-03-01T00:00:00Z") -> Dict[str, Any]:
    return {
        "MediaKey": f"M{n:06d}",
        "ResourceRecordKey": listing_key,
        "MediaURL": f"https://cdn.example.com/{n}.jpg",
        "MediaCategory": "Photo",
        "Order": n % 10,
        "MediaModificationTimestamp": ts,
    }


@pytest.fixture
def fake_clock():
    return FakeClock()


@pytest.fixture
def fake_feed():
    return FakeFeed()


@pytest.fixture
def property_factory():
    return make_property


@pytest.fixture
def media_factory():
    return make_media


@pytest_asyncio.fixture(scope="function")
async def test_engine(tmp_path) -> AsyncGenerator[AsyncEngine, None]:
    """SQLite test database with every table created"""
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'sync_test.db'}",
        echo=False,
        poolclass=NullPool,
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_maker(test_engine) -> async_sessionmaker:
    return async_sessionmaker(
        test_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


@pytest_asyncio.fixture(scope="function")
async def db_session(session_maker) -> AsyncGenerator[AsyncSession, None]:
    """Create database session for tests"""
    async with session_maker() as session:
        yield session
        await session.rollback()


@pytest.fixture
def loader(session_maker, fake_clock) -> PostgresLoader:
    return PostgresLoader(
        session_maker,
        circuit_breaker=CircuitBreaker("sink", failure_threshold=5, recovery_timeout=30, clock=fake_clock),
        retry_policy=RetryPolicy(max_attempts=1),
        sleep=fake_clock.sleep,
    )


@pytest.fixture
def state_log(session_maker) -> SyncStateLog:
    return SyncStateLog(session_maker)
