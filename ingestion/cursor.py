"""
Resume cursors for timestamp-ordered pagination.

A cursor is kept per (resource, feed scope) and holds the timestamp and
key of the last record of the last committed page. The next page is
requested with

    TS gt LAST or (TS eq LAST and KEY gt 'LASTKEY')

ordered by ``TS asc,KEY asc``, so records sharing a timestamp across a
page boundary are neither skipped nor repeated. Cursors only move forward.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, Optional

from core.config import settings
from core.exceptions import CheckpointError
from ingestion.extractors.odata import and_filters, quote_literal
from ingestion.resources import ResourceSpec
from models.base import FeedScope
import logging

logger = logging.getLogger(__name__)


def parse_timestamp(value: str) -> datetime:
    """Parse a feed timestamp (ISO 8601, ``Z`` suffix allowed) as an aware datetime."""
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def cursor_id(resource: str, feed_scope: FeedScope) -> str:
    return f"{resource}:{feed_scope.value}"


@dataclass
class SyncCursor:
    resource: str
    feed_scope: FeedScope
    last_timestamp: str
    last_key: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {"last_timestamp": self.last_timestamp, "last_key": self.last_key}


class CursorManager:
    """
    Owns every SyncCursor for a run.

    Cursors start at ``start_timestamp`` unless seeded from the newest sync
    log entry. ``advance`` must only be called once the page's parent
    records are durably committed.
    """

    def __init__(self, start_timestamp: Optional[str] = None):
        self.start_timestamp = start_timestamp or settings.SYNC_START_DATE
        self._cursors: Dict[str, SyncCursor] = {}

    def seed(self, cursors: Optional[Dict[str, Dict[str, Any]]]) -> None:
        """Load cursors persisted by a previous run (``SyncLogEntry.cursors``)."""
        for cid, value in (cursors or {}).items():
            resource, _, scope = cid.partition(":")
            if not value or not value.get("last_timestamp"):
                continue
            try:
                feed_scope = FeedScope(scope)
            except ValueError:
                logger.warning(f"Ignoring persisted cursor with unknown feed scope: {cid}")
                continue
            self._cursors[cid] = SyncCursor(
                resource=resource,
                feed_scope=feed_scope,
                last_timestamp=value["last_timestamp"],
                last_key=value.get("last_key"),
            )
        logger.info(f"Seeded {len(self._cursors)} cursors from sync log")

    def reset(self, cursor_ids: Optional[Iterable[str]] = None) -> None:
        """
        Rewind cursors to the start timestamp.

        Args:
            cursor_ids: ``resource:scope`` ids to rewind; every cursor when None
        """
        if cursor_ids is None:
            self._cursors.clear()
            return
        for cid in cursor_ids:
            self._cursors.pop(cid, None)

    def get(self, resource: str, feed_scope: FeedScope) -> SyncCursor:
        cid = cursor_id(resource, feed_scope)
        if cid not in self._cursors:
            self._cursors[cid] = SyncCursor(resource, feed_scope, self.start_timestamp)
        return self._cursors[cid]

    def next_filter(self, spec: ResourceSpec, feed_scope: FeedScope) -> str:
        """Cursor filter for the next page, AND-ed with the resource's static filter."""
        cursor = self.get(spec.name, feed_scope)
        ts = spec.timestamp_field
        if cursor.last_key:
            cursor_expr = (
                f"{ts} gt {cursor.last_timestamp} or "
                f"({ts} eq {cursor.last_timestamp} and {spec.key_field} gt {quote_literal(cursor.last_key)})"
            )
        else:
            cursor_expr = f"{ts} gt {cursor.last_timestamp}"
        return and_filters(cursor_expr, spec.filter_for(feed_scope))

    @staticmethod
    def order_by(spec: ResourceSpec) -> str:
        return f"{spec.timestamp_field} asc,{spec.key_field} asc"

    @staticmethod
    def is_last_page(page_len: int, page_size: int) -> bool:
        return page_len < page_size

    def advance(self, spec: ResourceSpec, feed_scope: FeedScope, last_record: Dict[str, Any]) -> SyncCursor:
        """
        Move the cursor to ``last_record`` (the final record of a committed page).

        Raises:
            CheckpointError: If the record lacks cursor fields or would move
                the cursor backwards
        """
        cursor = self.get(spec.name, feed_scope)
        new_ts = last_record.get(spec.timestamp_field)
        new_key = last_record.get(spec.key_field)
        if not new_ts or new_key is None:
            raise CheckpointError(
                f"Cannot advance {spec.name} cursor: record lacks {spec.timestamp_field}/{spec.key_field}",
                context={"resource": spec.name, "feed_scope": feed_scope.value, "operation": "advance"}
            )

        try:
            regressed = parse_timestamp(new_ts) < parse_timestamp(cursor.last_timestamp)
        except ValueError as e:
            raise CheckpointError(
                f"Unparseable {spec.timestamp_field} value",
                context={
                    "resource": spec.name,
                    "feed_scope": feed_scope.value,
                    "checkpoint_value": new_ts,
                    "operation": "advance",
                },
                original_exception=e
            )

        if regressed:
            raise CheckpointError(
                f"{spec.name} cursor would move backwards",
                context={
                    "resource": spec.name,
                    "feed_scope": feed_scope.value,
                    "current": cursor.last_timestamp,
                    "checkpoint_value": new_ts,
                    "operation": "advance",
                }
            )

        cursor.last_timestamp = new_ts
        cursor.last_key = str(new_key)
        logger.debug(f"Cursor {cursor_id(spec.name, feed_scope)} advanced to {new_ts} / {new_key}")
        return cursor

    def snapshot(self) -> Dict[str, Dict[str, Any]]:
        return {cid: cursor.to_dict() for cid, cursor in self._cursors.items()}
