"""
Database session management with SQLAlchemy async
"""

from typing import AsyncIterator

from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.pool import NullPool
from core.config import settings
import logging

logger = logging.getLogger(__name__)

# Engine is created lazily by SQLAlchemy on first connect
engine = create_async_engine(
    settings.DATABASE_URL,
    echo=False,
    poolclass=NullPool,
)

async_session_maker = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False
)


async def get_session() -> AsyncIterator[AsyncSession]:
    """Get database session (FastAPI dependency style)"""
    async with async_session_maker() as session:
        yield session


async def create_tables() -> None:
    """Create every table registered on the declarative base."""
    from models.base import Base
    import models  # noqa: F401  (registers tables on Base.metadata)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database tables created")
