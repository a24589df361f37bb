"""
Append-only sync state log.

The newest entry by timestamp carries the resume cursors for the next
run. Entries are only ever inserted.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker

from core.exceptions import CheckpointError
from models.base import SyncStatus
from models.sync_log import SyncLog
import logging

logger = logging.getLogger(__name__)


@dataclass
class SyncLogEntry:
    timestamp: datetime
    status: SyncStatus
    cursors: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    total_processed: int = 0
    total_successful: int = 0
    total_failed: int = 0
    total_skipped: int = 0
    error_count: int = 0
    last_error_message: Optional[str] = None
    duration_seconds: Optional[float] = None
    pipeline: Optional[str] = None

    @classmethod
    def from_row(cls, row: SyncLog) -> "SyncLogEntry":
        return cls(
            timestamp=row.timestamp,
            status=row.status,
            cursors=dict(row.cursors or {}),
            total_processed=row.total_processed or 0,
            total_successful=row.total_successful or 0,
            total_failed=row.total_failed or 0,
            total_skipped=row.total_skipped or 0,
            error_count=row.error_count or 0,
            last_error_message=row.last_error_message,
            duration_seconds=row.duration_seconds,
            pipeline=row.pipeline,
        )

    def to_row(self) -> SyncLog:
        return SyncLog(
            timestamp=self.timestamp,
            status=self.status,
            cursors=self.cursors,
            total_processed=self.total_processed,
            total_successful=self.total_successful,
            total_failed=self.total_failed,
            total_skipped=self.total_skipped,
            error_count=self.error_count,
            last_error_message=self.last_error_message,
            duration_seconds=self.duration_seconds,
            pipeline=self.pipeline,
        )


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class SyncStateLog:
    """Durable store for SyncLogEntry rows."""

    def __init__(self, session_maker: async_sessionmaker):
        self.session_maker = session_maker

    async def load_latest(self) -> Optional[SyncLogEntry]:
        """Newest entry by timestamp, or None when the log is empty."""
        entries = await self.recent(limit=1)
        return entries[0] if entries else None

    async def recent(self, limit: int = 20) -> List[SyncLogEntry]:
        stmt = select(SyncLog).order_by(SyncLog.timestamp.desc(), SyncLog.id.desc()).limit(limit)
        try:
            async with self.session_maker() as session:
                result = await session.execute(stmt)
                return [SyncLogEntry.from_row(row) for row in result.scalars().all()]
        except (OSError, SQLAlchemyError) as e:
            raise CheckpointError(
                "Failed to read sync log",
                context={"operation": "load"},
                original_exception=e
            )

    async def append(self, entry: SyncLogEntry) -> None:
        try:
            async with self.session_maker() as session:
                session.add(entry.to_row())
                await session.commit()
        except (OSError, SQLAlchemyError) as e:
            raise CheckpointError(
                "Failed to append sync log entry",
                context={"operation": "append", "status": entry.status.value},
                original_exception=e
            )
        logger.debug(f"Sync log entry appended ({entry.status.value}, pipeline={entry.pipeline})")
