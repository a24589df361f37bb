"""
Sync endpoints: status and history from the sync log, effective config,
and triggers that start a sync in the background.
"""

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query, Request
from typing import Optional
import time
import uuid
import logging

from api.dependencies import get_state_log, get_sync_launcher
from core.config import settings
from ingestion.runner import SyncOptions
from ingestion.scheduler import SyncLauncher
from ingestion.sync_log import SyncStateLog, utc_now
from models.base import SyncStatus
from schemas.api import (
    APIResponse,
    ResourceSyncRequest,
    SyncConfigResponse,
    SyncHistoryResponse,
    SyncLogEntryResponse,
    SyncStatusResponse,
    SyncTriggerRequest,
    SyncTriggerResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/sync", tags=["Sync"])


def _request_id(request: Request) -> str:
    return getattr(request.state, "request_id", "")


@router.get("/status", response_model=APIResponse[SyncStatusResponse])
async def sync_status(
    request: Request,
    state_log: SyncStateLog = Depends(get_state_log),
    launcher: SyncLauncher = Depends(get_sync_launcher),
):
    """Newest sync log entry and the cursors the next run will resume from."""
    start = time.perf_counter()
    latest = await state_log.load_latest()

    data = SyncStatusResponse(
        latest=SyncLogEntryResponse.model_validate(latest) if latest else None,
        cursors=latest.cursors if latest else {},
        running=launcher.running or bool(latest and latest.status == SyncStatus.IN_PROGRESS),
    )
    return APIResponse[SyncStatusResponse](
        request_id=_request_id(request),
        api_latency_ms=int((time.perf_counter() - start) * 1000),
        data=data,
    )


@router.get("/history", response_model=APIResponse[SyncHistoryResponse])
async def sync_history(
    request: Request,
    limit: int = Query(20, ge=1, le=200),
    state_log: SyncStateLog = Depends(get_state_log),
):
    start = time.perf_counter()
    entries = await state_log.recent(limit=limit)
    data = SyncHistoryResponse(
        entries=[SyncLogEntryResponse.model_validate(e) for e in entries],
        count=len(entries),
    )
    return APIResponse[SyncHistoryResponse](
        request_id=_request_id(request),
        api_latency_ms=int((time.perf_counter() - start) * 1000),
        data=data,
    )


@router.get("/config", response_model=SyncConfigResponse)
async def sync_config():
    """Effective sync settings; tokens are reported as configured or not, never echoed."""
    return SyncConfigResponse(
        feed_base_url=settings.FEED_BASE_URL,
        idx_token_configured=bool(settings.IDX_TOKEN or settings.ACCESS_TOKEN),
        vow_token_configured=bool(settings.VOW_TOKEN or settings.ACCESS_TOKEN),
        sync_start_date=settings.SYNC_START_DATE,
        sync_interval_minutes=settings.SYNC_INTERVAL_MINUTES,
        batch_size_property=settings.BATCH_SIZE_PROPERTY,
        child_page_size=settings.CHILD_PAGE_SIZE,
        child_key_chunk_size=settings.CHILD_KEY_CHUNK_SIZE,
        db_chunk_size=settings.DB_CHUNK_SIZE,
        rate_limit_per_minute=settings.RATE_LIMIT_PER_MINUTE,
        rate_limit_per_hour=settings.RATE_LIMIT_PER_HOUR,
        max_retries=settings.MAX_RETRIES,
        circuit_failure_threshold=settings.CIRCUIT_FAILURE_THRESHOLD,
        circuit_recovery_timeout=settings.CIRCUIT_RECOVERY_TIMEOUT,
    )


# ----------------------------------------------------------------------
# Triggers
# ----------------------------------------------------------------------

def _start_sync(
    kind: str,
    options: SyncOptions,
    request: Request,
    background_tasks: BackgroundTasks,
    launcher: SyncLauncher,
) -> SyncTriggerResponse:
    """Claim the launcher and run ``options`` after the response is sent."""
    sync_id = f"{kind}-{uuid.uuid4().hex[:12]}"
    if not launcher.claim(sync_id):
        raise HTTPException(status_code=409, detail=f"Sync {launcher.current_sync_id} is already running")

    logger.info(f"[{_request_id(request)}] {kind} sync {sync_id} triggered via API")
    background_tasks.add_task(launcher.run, sync_id, options)
    return SyncTriggerResponse(
        sync_id=sync_id,
        message=f"{kind.capitalize()} sync started",
        started_at=utc_now(),
        feed_scopes=[scope.value for scope in options.feed_scopes],
        parents=options.parents,
        include_children=options.include_children,
        standalone_children=list(options.standalone_children),
        force=options.force,
        max_records=options.max_records,
    )


def _combined_options(body: SyncTriggerRequest, force: bool) -> SyncOptions:
    if not (body.sync_properties or body.sync_media):
        raise HTTPException(status_code=400, detail="Nothing to sync: sync_properties and sync_media are both false")
    return SyncOptions(
        feed_scopes=tuple(body.feed_scopes),
        parents=body.sync_properties,
        include_children=body.sync_media,
        # Media on its own cursor when properties are not being walked
        standalone_children=() if body.sync_properties else ("Media",),
        force=force,
        max_records=body.max_records,
    )


@router.post("/full", status_code=202, response_model=SyncTriggerResponse)
async def trigger_full_sync(
    request: Request,
    background_tasks: BackgroundTasks,
    body: Optional[SyncTriggerRequest] = None,
    launcher: SyncLauncher = Depends(get_sync_launcher),
):
    """Resync the selected resources from SYNC_START_DATE."""
    options = _combined_options(body or SyncTriggerRequest(), force=True)
    return _start_sync("full", options, request, background_tasks, launcher)


@router.post("/incremental", status_code=202, response_model=SyncTriggerResponse)
async def trigger_incremental_sync(
    request: Request,
    background_tasks: BackgroundTasks,
    body: Optional[SyncTriggerRequest] = None,
    launcher: SyncLauncher = Depends(get_sync_launcher),
):
    """Resume the selected resources from their cursors."""
    options = _combined_options(body or SyncTriggerRequest(), force=False)
    return _start_sync("incremental", options, request, background_tasks, launcher)


@router.post("/properties", status_code=202, response_model=SyncTriggerResponse)
async def trigger_property_sync(
    request: Request,
    background_tasks: BackgroundTasks,
    body: Optional[ResourceSyncRequest] = None,
    launcher: SyncLauncher = Depends(get_sync_launcher),
):
    """Properties only, without the child fan-out."""
    body = body or ResourceSyncRequest()
    options = SyncOptions(
        feed_scopes=tuple(body.feed_scopes),
        parents=True,
        include_children=False,
        force=not body.incremental,
        max_records=body.max_records,
    )
    return _start_sync("properties", options, request, background_tasks, launcher)


@router.post("/media", status_code=202, response_model=SyncTriggerResponse)
async def trigger_media_sync(
    request: Request,
    background_tasks: BackgroundTasks,
    body: Optional[ResourceSyncRequest] = None,
    launcher: SyncLauncher = Depends(get_sync_launcher),
):
    """Standalone Media sync, gated by the listings already replicated."""
    body = body or ResourceSyncRequest()
    options = SyncOptions(
        feed_scopes=tuple(body.feed_scopes),
        parents=False,
        standalone_children=("Media",),
        force=not body.incremental,
        max_records=body.max_records,
    )
    return _start_sync("media", options, request, background_tasks, launcher)
