"""
Script to run the listing sync once, or on a schedule.

Examples:
    python -m scripts.run_sync                  # IDX + VOW properties with children
    python -m scripts.run_sync --idx --100      # IDX only, stop after 100 records
    python -m scripts.run_sync --media          # standalone Media sync
    python -m scripts.run_sync --force          # resync the selected resources from SYNC_START_DATE
    python -m scripts.run_sync --scheduled      # run every SYNC_INTERVAL_MINUTES
"""

import argparse
import asyncio
import signal
import sys
import os
import logging
from typing import List, Optional

# Add current directory to path to allow imports from core, models, etc.
sys.path.append(os.getcwd())

from core.exceptions import SyncException
from core.logging import setup_logging
from ingestion.runner import SyncOptions, SyncRunner, run_sync
from ingestion.scheduler import SyncScheduler
from models.base import FeedScope

logger = logging.getLogger(__name__)

CHILD_FLAGS = {
    "media": "Media",
    "rooms": "PropertyRooms",
    "openhouse": "OpenHouse",
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Replicate the listing feed into the database")

    scopes = parser.add_argument_group("feed scopes (default: both)")
    scopes.add_argument("--idx", action="store_true", help="Sync the open IDX scope")
    scopes.add_argument("--vow", action="store_true", help="Sync the restricted VOW scope")

    resources = parser.add_argument_group("resources (default: properties with children)")
    resources.add_argument("--properties", action="store_true", help="Sync properties with their children")
    resources.add_argument("--media", action="store_true", help="Standalone Media sync")
    resources.add_argument("--rooms", action="store_true", help="Standalone PropertyRooms sync")
    resources.add_argument("--openhouse", action="store_true", help="Standalone OpenHouse sync")

    parser.add_argument("--force", action="store_true", help="Restart the selected resources from SYNC_START_DATE")
    parser.add_argument("--scheduled", action="store_true", help="Keep running on SYNC_INTERVAL_MINUTES")

    limits = parser.add_mutually_exclusive_group()
    limits.add_argument("--limit", type=int, dest="limit", help="Stop after N feed records")
    for n in (10, 100, 500, 1000):
        limits.add_argument(f"--{n}", action="store_const", const=n, dest="limit", help=f"Test run: stop after {n} records")

    return parser


def options_from_args(args: argparse.Namespace) -> SyncOptions:
    scopes = []
    if args.idx:
        scopes.append(FeedScope.IDX)
    if args.vow:
        scopes.append(FeedScope.VOW)
    if not scopes:
        scopes = [FeedScope.IDX, FeedScope.VOW]

    children = tuple(resource for flag, resource in CHILD_FLAGS.items() if getattr(args, flag))

    return SyncOptions(
        feed_scopes=tuple(scopes),
        parents=args.properties or not children,
        include_children=True,
        standalone_children=children,
        force=args.force,
        max_records=args.limit,
    )


def _install_signal_handlers(runner: SyncRunner) -> None:
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, runner.request_stop)
        except NotImplementedError:
            # Windows event loops do not support signal handlers
            pass


async def run_once(options: SyncOptions) -> int:
    try:
        result = await run_sync(options, runner_hook=_install_signal_handlers)
    except SyncException as e:
        logger.error(f"Sync failed: {e}", extra={"error_context": e.to_dict()})
        return 1

    totals = result["totals"]
    logger.info(
        f"Sync {result['status']}: processed={totals['processed']}, successful={totals['successful']}, "
        f"failed={totals['failed']}, skipped={totals['skipped']}"
    )
    return 0 if result["status"] == "success" else 1


async def run_scheduled(options: SyncOptions) -> int:
    scheduler = SyncScheduler(options=options)
    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except NotImplementedError:
            pass

    await scheduler.run_sync_job()
    scheduler.start()
    try:
        await stop.wait()
    finally:
        scheduler.stop()
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    setup_logging()
    args = build_parser().parse_args(argv)
    options = options_from_args(args)

    if args.scheduled:
        return asyncio.run(run_scheduled(options))
    return asyncio.run(run_once(options))


if __name__ == "__main__":
    sys.exit(main())
