# ============================================================================
# File: ingestion/runner.py
# Description: Batch orchestrator for incremental feed replication
# ============================================================================
"""
Sync Runner - Orchestrates fetch, integrity filtering, upsert and cursor advance.

Each parent pipeline (one per feed scope) walks the Property feed page by
page through the states

    FETCH_PARENTS → FETCH_CHILDREN → JOIN → UPSERT_PARENTS → FILTER_CHILDREN
    → UPSERT_CHILDREN → ADVANCE_CURSOR → THROTTLE → (next page) … DONE | FAILED

Guarantees:
- Parents of a batch are committed before any of its children are written
- Children are only written when their parent key was committed
- The cursor advances only after the batch's parents are committed
- Per-record and per-child failures are counted, never fatal to the batch
"""

import asyncio
import enum
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Tuple

from core.config import settings
from core.exceptions import (
    AuthError,
    CheckpointError,
    ListingNotFoundError,
    PipelineError,
    SyncException,
    UpsertError,
    ValidationError,
)
from ingestion.cursor import CursorManager, cursor_id
from ingestion.extractors.feed_client import FeedClient
from ingestion.extractors.odata import and_filters, quote_literal
from ingestion.loaders.postgres_loader import PostgresLoader
from ingestion.parent_keys import ParentKeyCache
from ingestion.resources import CHILD_RESOURCES, PROPERTY, RESOURCES, ResourceSpec
from ingestion.sync_log import SyncLogEntry, SyncStateLog, utc_now
from ingestion.transformers.mapper import map_batch
from models.base import FeedScope, SyncStatus
import logging

logger = logging.getLogger(__name__)


class PipelineState(str, enum.Enum):
    FETCH_PARENTS = "fetch_parents"
    FETCH_CHILDREN = "fetch_children"
    JOIN = "join"
    UPSERT_PARENTS = "upsert_parents"
    FILTER_CHILDREN = "filter_children"
    UPSERT_CHILDREN = "upsert_children"
    ADVANCE_CURSOR = "advance_cursor"
    THROTTLE = "throttle"
    DONE = "done"
    FAILED = "failed"


@dataclass
class SyncOptions:
    """
    What a run should do.

    Attributes:
        feed_scopes: Scopes to replicate, each gets its own pipelines
        parents: Run the Property pipeline (with child fan-out)
        include_children: Fetch children alongside each parent batch
        standalone_children: Child resources to sync on their own cursors
        force: Restart the selected pipelines from SYNC_START_DATE; cursors of
            pipelines not selected are carried over untouched
        max_records: Stop once this many feed records have been fetched
    """
    feed_scopes: Tuple[FeedScope, ...] = (FeedScope.IDX, FeedScope.VOW)
    parents: bool = True
    include_children: bool = True
    standalone_children: Tuple[str, ...] = ()
    force: bool = False
    max_records: Optional[int] = None

    def cursor_ids(self) -> List[str]:
        """Cursors owned by the pipelines this run selects."""
        resources = ([PROPERTY.name] if self.parents else []) + list(self.standalone_children)
        return [cursor_id(name, scope) for name in resources for scope in self.feed_scopes]


@dataclass
class PipelineStats:
    pipeline: str
    state: PipelineState = PipelineState.FETCH_PARENTS
    batches: int = 0
    processed: int = 0
    successful: int = 0
    failed: int = 0
    skipped: int = 0
    errors: List[Dict[str, Any]] = field(default_factory=list)
    last_error_message: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "pipeline": self.pipeline,
            "state": self.state.value,
            "batches": self.batches,
            "processed": self.processed,
            "successful": self.successful,
            "failed": self.failed,
            "skipped": self.skipped,
            "error_count": len(self.errors),
            "last_error_message": self.last_error_message,
        }


@dataclass
class TaskOutcome:
    """Result of one fan-out task: either a value or the exception it raised."""
    name: str
    value: Any = None
    error: Optional[BaseException] = None

    @property
    def ok(self) -> bool:
        return self.error is None


async def gather_outcomes(tasks: Dict[str, Awaitable[Any]]) -> Dict[str, TaskOutcome]:
    """Run awaitables concurrently; one failure never cancels the others."""
    names = list(tasks.keys())
    results = await asyncio.gather(*tasks.values(), return_exceptions=True)
    outcomes = {}
    for name, result in zip(names, results):
        if isinstance(result, asyncio.CancelledError):
            raise result
        if isinstance(result, BaseException):
            outcomes[name] = TaskOutcome(name=name, error=result)
        else:
            outcomes[name] = TaskOutcome(name=name, value=result)
    return outcomes


class SyncRunner:
    """
    Batch orchestrator.

    Responsibilities:
    - Restore cursors from the sync log, rewinding the selected ones on force
    - Load the parent key cache once per run
    - Drive parent pipelines and standalone child pipelines
    - Append a sync log entry after every batch and at the end of the run
    """

    def __init__(
        self,
        client: FeedClient,
        loader: PostgresLoader,
        state_log: SyncStateLog,
        parent_keys: Optional[ParentKeyCache] = None,
        cursors: Optional[CursorManager] = None,
        batch_size: Optional[int] = None,
        child_page_size: Optional[int] = None,
        child_key_chunk_size: Optional[int] = None,
        db_chunk_size: Optional[int] = None,
        throttle_seconds: Optional[float] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.client = client
        self.loader = loader
        self.state_log = state_log
        self.parent_keys = parent_keys or ParentKeyCache(loader)
        self.cursors = cursors or CursorManager()
        self.batch_size = batch_size or settings.BATCH_SIZE_PROPERTY
        self.child_page_size = child_page_size or settings.CHILD_PAGE_SIZE
        self.child_key_chunk_size = child_key_chunk_size or settings.CHILD_KEY_CHUNK_SIZE
        self.db_chunk_size = db_chunk_size or settings.DB_CHUNK_SIZE
        self.throttle_seconds = settings.BATCH_THROTTLE_SECONDS if throttle_seconds is None else throttle_seconds
        self._sleep = sleep
        self._clock = clock

        self._stop_requested = False
        self._max_records: Optional[int] = None
        self._records_fetched = 0
        self._pipelines: List[PipelineStats] = []
        self._started_at = 0.0

    def request_stop(self) -> None:
        """Ask the run to stop; honoured between batches only."""
        if not self._stop_requested:
            logger.warning("Stop requested, finishing current batch")
        self._stop_requested = True

    # ------------------------------------------------------------------
    # Run
    # ------------------------------------------------------------------

    async def run(self, options: Optional[SyncOptions] = None) -> Dict[str, Any]:
        """
        Run the selected pipelines.

        Returns:
            Dictionary with run statistics:
            - status: "success" or "failed"
            - duration_seconds
            - totals: processed / successful / failed / skipped
            - pipelines: per-pipeline statistics

        Raises:
            AuthError: Credentials rejected; a failed entry is logged first
            CheckpointError: Sync log unreadable or unwritable
        """
        options = options or SyncOptions()
        self._max_records = options.max_records
        self._records_fetched = 0
        self._pipelines = []
        self._started_at = self._clock()

        logger.info(
            f"Starting sync: scopes={[s.value for s in options.feed_scopes]}, parents={options.parents}, "
            f"children={list(options.standalone_children)}, force={options.force}, "
            f"max_records={options.max_records}"
        )

        try:
            # --------------------------------------------------
            # PHASE 1: RESTORE STATE
            # --------------------------------------------------
            latest = await self.state_log.load_latest()
            if latest is not None:
                self.cursors.seed(latest.cursors)
            if options.force:
                rewound = options.cursor_ids()
                logger.info(f"Force sync: rewinding cursors {rewound}")
                self.cursors.reset(rewound)

            await self.parent_keys.load()

            # --------------------------------------------------
            # PHASE 2: PARENT PIPELINES
            # --------------------------------------------------
            if options.parents:
                for feed_scope in options.feed_scopes:
                    if self._should_stop():
                        break
                    await self.run_parent_pipeline(feed_scope, include_children=options.include_children)

            # --------------------------------------------------
            # PHASE 3: STANDALONE CHILD PIPELINES
            # --------------------------------------------------
            for name in options.standalone_children:
                spec = RESOURCES[name]
                for feed_scope in options.feed_scopes:
                    if self._should_stop():
                        break
                    await self.run_child_pipeline(spec, feed_scope)

        except SyncException as e:
            logger.error(f"Sync aborted: {e}", extra={"error_context": e.to_dict()})
            await self._append_final(SyncStatus.FAILED, error_message=e.message)
            raise

        # --------------------------------------------------
        # PHASE 4: FINAL LOG ENTRY
        # --------------------------------------------------
        failed = [p for p in self._pipelines if p.state == PipelineState.FAILED]
        status = SyncStatus.FAILED if failed else SyncStatus.SUCCESS
        last_error = failed[-1].last_error_message if failed else None
        entry = await self._append_final(status, error_message=last_error)

        summary = {
            "status": status.value,
            "duration_seconds": entry.duration_seconds,
            "totals": {
                "processed": entry.total_processed,
                "successful": entry.total_successful,
                "failed": entry.total_failed,
                "skipped": entry.total_skipped,
            },
            "cursors": entry.cursors,
            "pipelines": [p.to_dict() for p in self._pipelines],
        }
        logger.info(
            f"Sync finished with status={status.value}: {entry.total_successful} written, "
            f"{entry.total_failed} failed, {entry.total_skipped} skipped in {entry.duration_seconds:.1f}s"
        )
        return summary

    # ------------------------------------------------------------------
    # Parent pipeline
    # ------------------------------------------------------------------

    async def run_parent_pipeline(self, feed_scope: FeedScope, include_children: bool = True) -> PipelineStats:
        spec = PROPERTY
        stats = PipelineStats(pipeline=f"{spec.name}:{feed_scope.value}")
        self._pipelines.append(stats)
        logger.info(f"Starting {stats.pipeline} pipeline")

        while not self._should_stop():
            try:
                # FETCH_PARENTS
                stats.state = PipelineState.FETCH_PARENTS
                page = await self.client.fetch_page(
                    spec.name,
                    self.cursors.next_filter(spec, feed_scope),
                    self.cursors.order_by(spec),
                    self.batch_size,
                    feed_scope,
                )
                if not page:
                    break

                last_page = self.cursors.is_last_page(len(page), self.batch_size)
                page = self._apply_ceiling(page)
                stats.batches += 1
                logger.info(f"{stats.pipeline} batch {stats.batches}: {len(page)} records")

                # FETCH_CHILDREN
                children: Dict[str, List[Dict[str, Any]]] = {}
                if include_children:
                    stats.state = PipelineState.FETCH_CHILDREN
                    page_keys = [str(r[spec.key_field]) for r in page if r.get(spec.key_field) is not None]
                    children = await self._fetch_children(page_keys, feed_scope, stats)

                # JOIN
                stats.state = PipelineState.JOIN
                mapped = map_batch(spec, page, feed_scope)
                stats.processed += len(page)
                stats.failed += mapped.failed
                stats.errors.extend(mapped.errors)

                # UPSERT_PARENTS
                stats.state = PipelineState.UPSERT_PARENTS
                result = await self.loader.upsert(spec.model, mapped.rows, spec.conflict_column, self.db_chunk_size)
                stats.successful += result.successful
                stats.failed += result.failed
                if not result.ok:
                    raise UpsertError(
                        f"{result.failed} {spec.name} records were not written",
                        context={
                            "table_name": result.table,
                            "failed": result.failed,
                            "failed_chunks": result.failed_chunks,
                            "feed_scope": feed_scope.value,
                        }
                    )
                self.parent_keys.add(result.committed_keys)

                # FILTER_CHILDREN / UPSERT_CHILDREN
                if children:
                    await self._upsert_children(children, result.committed_keys, feed_scope, stats)

                # ADVANCE_CURSOR
                stats.state = PipelineState.ADVANCE_CURSOR
                self.cursors.advance(spec, feed_scope, page[-1])
                await self._append_progress(stats)

                if last_page or self._ceiling_reached():
                    break

                # THROTTLE
                stats.state = PipelineState.THROTTLE
                await self._sleep(self.throttle_seconds)

            except AuthError:
                stats.state = PipelineState.FAILED
                raise
            except SyncException as e:
                return self._fail(stats, e)
            except Exception as e:
                return self._fail(stats, PipelineError(
                    f"Unexpected error in {stats.pipeline} pipeline",
                    context={"pipeline": stats.pipeline, "state": stats.state.value},
                    original_exception=e
                ))

        stats.state = PipelineState.DONE
        logger.info(f"{stats.pipeline} pipeline done: {stats.to_dict()}")
        return stats

    async def _fetch_children(
        self,
        parent_keys: List[str],
        feed_scope: FeedScope,
        stats: PipelineStats,
    ) -> Dict[str, List[Dict[str, Any]]]:
        """Fetch every child resource for ``parent_keys`` concurrently. Failed fetches yield no records."""
        if not parent_keys:
            return {}

        outcomes = await gather_outcomes({
            spec.name: self._fetch_children_for(spec, parent_keys, feed_scope)
            for spec in CHILD_RESOURCES
        })

        children: Dict[str, List[Dict[str, Any]]] = {}
        for name, outcome in outcomes.items():
            if outcome.ok:
                children[name] = outcome.value
                continue

            error = outcome.error
            error_detail = error.to_dict() if isinstance(error, SyncException) else {
                "error_type": type(error).__name__,
                "message": str(error),
            }
            error_detail["resource"] = name
            stats.errors.append(error_detail)
            stats.last_error_message = f"{name} fetch failed: {error_detail['message']}"
            logger.error(
                f"Fetching {name} for {len(parent_keys)} parents failed, continuing without them",
                extra={"error_context": error_detail}
            )
            children[name] = []
        return children

    async def _fetch_children_for(
        self,
        spec: ResourceSpec,
        parent_keys: List[str],
        feed_scope: FeedScope,
    ) -> List[Dict[str, Any]]:
        """Page through ``spec`` for parent keys in chunks, keyset-paginated by child key."""
        records: List[Dict[str, Any]] = []
        for start in range(0, len(parent_keys), self.child_key_chunk_size):
            chunk = parent_keys[start:start + self.child_key_chunk_size]
            last_key: Optional[str] = None
            while True:
                keyset = f"{spec.key_field} gt {quote_literal(last_key)}" if last_key else None
                page = await self.client.fetch_page(
                    spec.name,
                    and_filters(spec.parent_filter(chunk), spec.filter_for(feed_scope), keyset),
                    f"{spec.key_field} asc",
                    self.child_page_size,
                    feed_scope,
                )
                records.extend(page)
                if len(page) < self.child_page_size:
                    break
                last_key = str(page[-1][spec.key_field])
        return records

    async def _upsert_children(
        self,
        children: Dict[str, List[Dict[str, Any]]],
        committed_keys: Iterable[str],
        feed_scope: FeedScope,
        stats: PipelineStats,
    ) -> None:
        stats.state = PipelineState.FILTER_CHILDREN
        committed = set(committed_keys)
        writes: Dict[str, Awaitable[Any]] = {}

        for spec in CHILD_RESOURCES:
            records = children.get(spec.name) or []
            if not records:
                continue
            filtered = self.parent_keys.filter_children(records, spec.parent_field, within=committed)
            mapped = map_batch(spec, filtered.kept, feed_scope)
            stats.processed += len(records)
            stats.skipped += filtered.skipped_count
            stats.failed += mapped.failed
            stats.errors.extend(mapped.errors)
            if mapped.rows:
                writes[spec.name] = self.loader.upsert(
                    spec.model, mapped.rows, spec.conflict_column, self.db_chunk_size
                )

        if not writes:
            return

        stats.state = PipelineState.UPSERT_CHILDREN
        outcomes = await gather_outcomes(writes)
        for name, outcome in outcomes.items():
            if outcome.ok:
                result = outcome.value
                stats.successful += result.successful
                stats.failed += result.failed
                if not result.ok:
                    stats.errors.extend(result.errors)
                    stats.last_error_message = f"{result.failed} {name} records were not written"
                continue

            stats.errors.append({"resource": name, "error_type": type(outcome.error).__name__,
                                 "message": str(outcome.error)})
            stats.last_error_message = f"{name} upsert failed: {outcome.error}"
            logger.error(f"Upserting {name} failed: {outcome.error}")

    # ------------------------------------------------------------------
    # Standalone child pipeline
    # ------------------------------------------------------------------

    async def run_child_pipeline(self, spec: ResourceSpec, feed_scope: FeedScope) -> PipelineStats:
        """
        Sync a child resource on its own timestamp cursor.

        Children are gated against every parent key known to the run, and the
        cursor only advances when the whole page was written.
        """
        stats = PipelineStats(pipeline=f"{spec.name}:{feed_scope.value}")
        self._pipelines.append(stats)
        logger.info(f"Starting standalone {stats.pipeline} pipeline ({len(self.parent_keys)} known parents)")

        while not self._should_stop():
            try:
                stats.state = PipelineState.FETCH_CHILDREN
                page = await self.client.fetch_page(
                    spec.name,
                    self.cursors.next_filter(spec, feed_scope),
                    self.cursors.order_by(spec),
                    self.child_page_size,
                    feed_scope,
                )
                if not page:
                    break

                last_page = self.cursors.is_last_page(len(page), self.child_page_size)
                page = self._apply_ceiling(page)
                stats.batches += 1

                stats.state = PipelineState.FILTER_CHILDREN
                filtered = self.parent_keys.filter_children(page, spec.parent_field)
                mapped = map_batch(spec, filtered.kept, feed_scope)
                stats.processed += len(page)
                stats.skipped += filtered.skipped_count
                stats.failed += mapped.failed
                stats.errors.extend(mapped.errors)

                stats.state = PipelineState.UPSERT_CHILDREN
                result = await self.loader.upsert(spec.model, mapped.rows, spec.conflict_column, self.db_chunk_size)
                stats.successful += result.successful
                stats.failed += result.failed
                if not result.ok:
                    raise UpsertError(
                        f"{result.failed} {spec.name} records were not written",
                        context={"table_name": result.table, "failed": result.failed,
                                 "failed_chunks": result.failed_chunks}
                    )

                stats.state = PipelineState.ADVANCE_CURSOR
                self.cursors.advance(spec, feed_scope, page[-1])
                await self._append_progress(stats)

                if last_page or self._ceiling_reached():
                    break

                stats.state = PipelineState.THROTTLE
                await self._sleep(self.throttle_seconds)

            except AuthError:
                stats.state = PipelineState.FAILED
                raise
            except SyncException as e:
                return self._fail(stats, e)
            except Exception as e:
                return self._fail(stats, PipelineError(
                    f"Unexpected error in {stats.pipeline} pipeline",
                    context={"pipeline": stats.pipeline, "state": stats.state.value},
                    original_exception=e
                ))

        stats.state = PipelineState.DONE
        logger.info(f"{stats.pipeline} pipeline done: {stats.to_dict()}")
        return stats

    # ------------------------------------------------------------------
    # Single listing
    # ------------------------------------------------------------------

    async def sync_listing(self, listing_key: str, feed_scope: FeedScope = FeedScope.IDX) -> Dict[str, Any]:
        """
        Fetch one listing by key and write it, then its children.

        Cursors and the sync log are left alone: the listing may sit outside
        the window the cursors cover.

        Raises:
            ListingNotFoundError: The feed has no such listing
            ValidationError: The listing record cannot be mapped
            UpsertError: The listing row was not written
        """
        spec = PROPERTY
        stats = PipelineStats(pipeline=f"{spec.name}:{feed_scope.value}:{listing_key}")
        self._pipelines = [stats]

        record = await self.client.fetch_one(spec.name, listing_key, feed_scope)
        if record is None:
            raise ListingNotFoundError(
                f"Listing {listing_key} not found",
                context={"resource": spec.name, "listing_key": listing_key, "feed_scope": feed_scope.value}
            )
        stats.batches = 1

        stats.state = PipelineState.JOIN
        mapped = map_batch(spec, [record], feed_scope)
        stats.processed += 1
        if not mapped.rows:
            raise ValidationError(
                f"Listing {listing_key} failed validation",
                context={"resource": spec.name, "record_key": listing_key, "field_errors": mapped.errors}
            )

        stats.state = PipelineState.UPSERT_PARENTS
        result = await self.loader.upsert(spec.model, mapped.rows, spec.conflict_column)
        if not result.ok:
            raise UpsertError(
                f"Listing {listing_key} was not written",
                context={"table_name": result.table, "failed": result.failed, "failed_chunks": result.failed_chunks}
            )
        stats.successful += result.successful
        self.parent_keys.add(result.committed_keys)

        stats.state = PipelineState.FETCH_CHILDREN
        children = await self._fetch_children(result.committed_keys, feed_scope, stats)
        await self._upsert_children(children, result.committed_keys, feed_scope, stats)

        stats.state = PipelineState.DONE
        logger.info(f"Listing {listing_key} synced: {stats.to_dict()}")
        summary = stats.to_dict()
        summary["listing_key"] = listing_key
        summary["feed_scope"] = feed_scope.value
        summary["children"] = {name: len(records) for name, records in children.items()}
        return summary

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _fail(self, stats: PipelineStats, error: SyncException) -> PipelineStats:
        failed_in = stats.state
        stats.state = PipelineState.FAILED
        stats.errors.append(error.to_dict())
        stats.last_error_message = error.message
        logger.error(
            f"{stats.pipeline} pipeline failed during {failed_in.value}: {error}",
            extra={"error_context": error.to_dict()}
        )
        return stats

    def _should_stop(self) -> bool:
        return self._stop_requested or self._ceiling_reached()

    def _ceiling_reached(self) -> bool:
        return self._max_records is not None and self._records_fetched >= self._max_records

    def _apply_ceiling(self, page: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        if self._max_records is not None:
            page = page[:max(0, self._max_records - self._records_fetched)]
        self._records_fetched += len(page)
        return page

    def _entry(self, status: SyncStatus, pipeline: Optional[str], error_message: Optional[str]) -> SyncLogEntry:
        return SyncLogEntry(
            timestamp=utc_now(),
            status=status,
            cursors=self.cursors.snapshot(),
            total_processed=sum(p.processed for p in self._pipelines),
            total_successful=sum(p.successful for p in self._pipelines),
            total_failed=sum(p.failed for p in self._pipelines),
            total_skipped=sum(p.skipped for p in self._pipelines),
            error_count=sum(len(p.errors) for p in self._pipelines),
            last_error_message=error_message,
            duration_seconds=self._clock() - self._started_at,
            pipeline=pipeline,
        )

    async def _append_progress(self, stats: PipelineStats) -> None:
        await self.state_log.append(self._entry(SyncStatus.IN_PROGRESS, stats.pipeline, stats.last_error_message))

    async def _append_final(self, status: SyncStatus, error_message: Optional[str] = None) -> SyncLogEntry:
        entry = self._entry(status, None, error_message)
        try:
            await self.state_log.append(entry)
        except CheckpointError as e:
            logger.error(f"Could not record final sync status: {e}", extra={"error_context": e.to_dict()})
            if status != SyncStatus.FAILED:
                raise
        return entry


async def run_sync(options: Optional[SyncOptions] = None, runner_hook: Optional[Callable[[SyncRunner], None]] = None) -> Dict[str, Any]:
    """
    Build a runner from settings and run it once.

    Args:
        options: What to sync
        runner_hook: Called with the runner before it starts (signal wiring)
    """
    from core.database import async_session_maker

    loader = PostgresLoader(async_session_maker)
    state_log = SyncStateLog(async_session_maker)

    async with FeedClient() as client:
        runner = SyncRunner(client=client, loader=loader, state_log=state_log)
        if runner_hook is not None:
            runner_hook(runner)
        return await runner.run(options)


async def sync_listing(listing_key: str, feed_scope: FeedScope = FeedScope.IDX) -> Dict[str, Any]:
    """Build a runner from settings and sync a single listing with its children."""
    from core.database import async_session_maker

    loader = PostgresLoader(async_session_maker)

    async with FeedClient() as client:
        runner = SyncRunner(client=client, loader=loader, state_log=SyncStateLog(async_session_maker))
        return await runner.sync_listing(listing_key, feed_scope)
