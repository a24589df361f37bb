"""
FastAPI dependencies
"""

from typing import Any, AsyncIterator, Awaitable, Callable, Dict

from sqlalchemy.ext.asyncio import AsyncSession

from core.database import async_session_maker, get_session
from ingestion.runner import sync_listing
from ingestion.scheduler import SyncLauncher
from ingestion.sync_log import SyncStateLog
from models.base import FeedScope

# Shared by the API trigger routes and the interval scheduler
sync_launcher = SyncLauncher()

ListingSyncer = Callable[[str, FeedScope], Awaitable[Dict[str, Any]]]


async def get_db() -> AsyncIterator[AsyncSession]:
    async for session in get_session():
        yield session


def get_state_log() -> SyncStateLog:
    return SyncStateLog(async_session_maker)


def get_sync_launcher() -> SyncLauncher:
    return sync_launcher


def get_listing_syncer() -> ListingSyncer:
    return sync_listing
