"""
Health check endpoint with database and sync status
"""

from fastapi import APIRouter, Depends
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import text
from api.dependencies import get_db, get_state_log
from core.exceptions import CheckpointError
from ingestion.sync_log import SyncStateLog
from schemas.api import HealthCheckResponse
import logging

logger = logging.getLogger(__name__)
router = APIRouter(tags=["Health"])


@router.get("/health", response_model=HealthCheckResponse)
async def health_check(
    db: AsyncSession = Depends(get_db),
    state_log: SyncStateLog = Depends(get_state_log),
):
    """
    Health check endpoint.

    Returns:
    - Database connectivity status
    - Status of the newest sync log entry
    """
    db_connected = False
    try:
        await db.execute(text("SELECT 1"))
        db_connected = True
    except (SQLAlchemyError, OSError) as e:
        logger.error(f"Database connection failed: {str(e)}")

    latest = None
    if db_connected:
        try:
            latest = await state_log.load_latest()
        except CheckpointError as e:
            logger.error(f"Failed to read sync log: {e}")

    return HealthCheckResponse(
        database_connected=db_connected,
        last_sync_status=latest.status.value if latest else None,
        last_sync_at=latest.timestamp if latest else None,
        last_error_message=latest.last_error_message if latest else None,
    )
