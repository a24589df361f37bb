import logging
from typing import Any, Awaitable, Callable, Dict, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from core.config import settings
from core.exceptions import SyncException
from ingestion.runner import SyncOptions, run_sync

logger = logging.getLogger(__name__)

SyncFn = Callable[[Optional[SyncOptions]], Awaitable[Dict[str, Any]]]


class SyncLauncher:
    """
    Runs syncs one at a time for the scheduler and the API.

    ``claim`` and ``run`` are split so a caller can refuse a second sync
    synchronously and then run the claimed one in the background.
    """

    def __init__(self, sync_fn: SyncFn = run_sync):
        self.sync_fn = sync_fn
        self.current_sync_id: Optional[str] = None
        self.last_result: Optional[Dict[str, Any]] = None
        self.last_error: Optional[str] = None

    @property
    def running(self) -> bool:
        return self.current_sync_id is not None

    def claim(self, sync_id: str) -> bool:
        """Reserve the launcher for ``sync_id``; False while another sync holds it."""
        if self.running:
            logger.info(f"[{sync_id}] Sync {self.current_sync_id} still running, not starting another")
            return False
        self.current_sync_id = sync_id
        return True

    async def run(self, sync_id: str, options: Optional[SyncOptions] = None) -> None:
        """Run a claimed sync. Sync failures are logged (the run already recorded them)."""
        logger.info(f"[{sync_id}] Starting sync")
        try:
            self.last_result = await self.sync_fn(options)
            self.last_error = None
            logger.info(f"[{sync_id}] Sync finished with status={self.last_result['status']}")
        except SyncException as e:
            self.last_error = e.message
            logger.error(f"[{sync_id}] Sync failed - {e}", extra={"error_context": e.to_dict()})
        finally:
            self.current_sync_id = None


class SyncScheduler:
    """Runs the full sync every SYNC_INTERVAL_MINUTES inside the event loop."""

    def __init__(
        self,
        interval_minutes: Optional[int] = None,
        options: Optional[SyncOptions] = None,
        sync_fn: SyncFn = run_sync,
        launcher: Optional[SyncLauncher] = None,
    ):
        self.scheduler = AsyncIOScheduler()
        self.interval_minutes = interval_minutes or settings.SYNC_INTERVAL_MINUTES
        self.options = options or SyncOptions()
        self.launcher = launcher or SyncLauncher(sync_fn)

    @property
    def last_result(self) -> Optional[Dict[str, Any]]:
        return self.launcher.last_result

    async def run_sync_job(self):
        """Job to run one sync; skipped while an API-triggered sync is running"""
        if not self.launcher.claim("scheduled"):
            return
        await self.launcher.run("scheduled", self.options)

    def start(self):
        """Start the scheduler"""
        self.scheduler.add_job(
            self.run_sync_job,
            trigger=IntervalTrigger(minutes=self.interval_minutes),
            id="sync_job",
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        self.scheduler.start()
        logger.info(f"Sync Scheduler started (every {self.interval_minutes} minutes)")

    def stop(self):
        if self.scheduler.running:
            self.scheduler.shutdown()
        logger.info("Sync Scheduler stopped")
