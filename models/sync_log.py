from sqlalchemy import Column, String, Integer, Enum, DateTime, Float, Text, Index
from models.base import Base, SyncStatus, AutoIncrementId, JSONPayload


class SyncLog(Base):
    """
    Append-only record of sync progress.

    A row is written after every committed batch and once when a run
    finishes. The newest row (by ``timestamp``) is authoritative for resume
    cursors; rows are never updated.
    """
    __tablename__ = "sync_log"

    id = Column(AutoIncrementId, primary_key=True, autoincrement=True)
    timestamp = Column(DateTime(timezone=True), nullable=False, index=True)
    status = Column(Enum(SyncStatus), nullable=False, index=True)

    # {"Property:idx": {"last_timestamp": "...", "last_key": "..."}, ...}
    cursors = Column(JSONPayload, nullable=False, default=dict)

    # Counters
    total_processed = Column(Integer, nullable=False, default=0)
    total_successful = Column(Integer, nullable=False, default=0)
    total_failed = Column(Integer, nullable=False, default=0)
    total_skipped = Column(Integer, nullable=False, default=0)

    # Error tracking
    error_count = Column(Integer, nullable=False, default=0)
    last_error_message = Column(Text, nullable=True)

    duration_seconds = Column(Float, nullable=True)
    pipeline = Column(String(100), nullable=True)  # pipeline that wrote the entry

    __table_args__ = (
        Index("idx_sync_log_status_timestamp", "status", "timestamp"),
    )
