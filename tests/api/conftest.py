"""
API test fixtures: a SQLite database prepared outside the TestClient's
event loop and a client wired to it through dependency overrides.
"""

import asyncio
import pytest
from fastapi.testclient import TestClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool
from api.main import app
from api.dependencies import get_db, get_state_log
from ingestion.loaders.postgres_loader import PostgresLoader
from ingestion.sync_log import SyncStateLog
from ingestion.transformers.mapper import map_batch
from models import Base


@pytest.fixture
def api_session_maker(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'api_test.db'}", poolclass=NullPool)

    async def create():
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    asyncio.run(create())
    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    asyncio.run(engine.dispose())


@pytest.fixture
def seed_log(api_session_maker):
    state_log = SyncStateLog(api_session_maker)

    def seed(*entries):
        async def append_all():
            for entry in entries:
                await state_log.append(entry)
        asyncio.run(append_all())

    return seed


@pytest.fixture
def seed_records(api_session_maker):
    """Map raw feed records and upsert them: seed_records(spec, records, feed_scope)"""
    loader = PostgresLoader(api_session_maker)

    def seed(spec, records, feed_scope):
        rows = map_batch(spec, records, feed_scope).rows
        asyncio.run(loader.upsert(spec.model, rows, spec.conflict_column))

    return seed


@pytest.fixture
def client(api_session_maker):
    """Create test client with database override"""

    async def override_get_db():
        async with api_session_maker() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_state_log] = lambda: SyncStateLog(api_session_maker)

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()
