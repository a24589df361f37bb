"""
Unit tests for the cursor manager
"""

import pytest
from core.exceptions import CheckpointError
from ingestion.cursor import CursorManager, parse_timestamp
from ingestion.resources import MEDIA, PROPERTY
from models.base import FeedScope


class TestCursorManager:

    def test_fresh_cursor_starts_at_start_date(self):
        cursors = CursorManager(start_timestamp="2024-01-01T00:00:00Z")

        expr = cursors.next_filter(PROPERTY, FeedScope.IDX)

        assert expr == "(ModificationTimestamp gt 2024-01-01T00:00:00Z) and (ContractStatus eq 'Available')"

    def test_filter_uses_key_tie_break_after_advance(self):
        cursors = CursorManager(start_timestamp="2024-01-01T00:00:00Z")
        cursors.advance(PROPERTY, FeedScope.VOW, {"ListingKey": "X9", "ModificationTimestamp": "2024-02-01T10:00:00Z"})

        expr = cursors.next_filter(PROPERTY, FeedScope.VOW)

        assert "ModificationTimestamp gt 2024-02-01T10:00:00Z or " in expr
        assert "(ModificationTimestamp eq 2024-02-01T10:00:00Z and ListingKey gt 'X9')" in expr
        assert "ContractStatus ne 'Available'" in expr

    def test_key_with_quote_is_escaped(self):
        cursors = CursorManager(start_timestamp="2024-01-01T00:00:00Z")
        cursors.advance(MEDIA, FeedScope.IDX, {"MediaKey": "O'Neil", "MediaModificationTimestamp": "2024-02-01T00:00:00Z"})

        assert "MediaKey gt 'O''Neil'" in cursors.next_filter(MEDIA, FeedScope.IDX)

    def test_order_by_timestamp_then_key(self):
        assert CursorManager.order_by(PROPERTY) == "ModificationTimestamp asc,ListingKey asc"

    def test_advance_rejects_regression(self):
        cursors = CursorManager(start_timestamp="2024-01-01T00:00:00Z")
        cursors.advance(PROPERTY, FeedScope.IDX, {"ListingKey": "B", "ModificationTimestamp": "2024-05-01T00:00:00Z"})

        with pytest.raises(CheckpointError):
            cursors.advance(PROPERTY, FeedScope.IDX, {"ListingKey": "A", "ModificationTimestamp": "2024-04-01T00:00:00Z"})

        assert cursors.get("Property", FeedScope.IDX).last_timestamp == "2024-05-01T00:00:00Z"

    def test_advance_compares_timestamps_not_strings(self):
        cursors = CursorManager(start_timestamp="2024-01-01T00:00:00Z")
        cursors.advance(PROPERTY, FeedScope.IDX, {"ListingKey": "A", "ModificationTimestamp": "2024-05-01T00:00:00.500Z"})

        # Same instant with different precision is not a regression
        cursors.advance(PROPERTY, FeedScope.IDX, {"ListingKey": "B", "ModificationTimestamp": "2024-05-01T00:00:00.500000Z"})

    def test_cursors_are_per_resource_and_scope(self):
        cursors = CursorManager(start_timestamp="2024-01-01T00:00:00Z")
        cursors.advance(PROPERTY, FeedScope.IDX, {"ListingKey": "A", "ModificationTimestamp": "2024-05-01T00:00:00Z"})

        assert cursors.get("Property", FeedScope.VOW).last_timestamp == "2024-01-01T00:00:00Z"
        assert cursors.snapshot()["Property:idx"] == {"last_timestamp": "2024-05-01T00:00:00Z", "last_key": "A"}

    def test_seed_and_reset(self):
        cursors = CursorManager(start_timestamp="2024-01-01T00:00:00Z")
        cursors.seed({
            "Property:idx": {"last_timestamp": "2024-06-01T00:00:00Z", "last_key": "K"},
            "Property:bogus": {"last_timestamp": "2024-06-01T00:00:00Z"},
        })

        assert cursors.get("Property", FeedScope.IDX).last_key == "K"
        assert "Property:bogus" not in cursors.snapshot()

        cursors.reset()
        assert cursors.get("Property", FeedScope.IDX).last_timestamp == "2024-01-01T00:00:00Z"

    def test_reset_selected_cursors_only(self):
        cursors = CursorManager(start_timestamp="2024-01-01T00:00:00Z")
        cursors.seed({
            "Property:idx": {"last_timestamp": "2024-06-01T00:00:00Z", "last_key": "P"},
            "Media:idx": {"last_timestamp": "2024-06-02T00:00:00Z", "last_key": "M"},
        })

        cursors.reset(["Media:idx", "Media:vow"])

        snapshot = cursors.snapshot()
        assert snapshot == {"Property:idx": {"last_timestamp": "2024-06-01T00:00:00Z", "last_key": "P"}}
        assert cursors.get("Media", FeedScope.IDX).last_key is None

    def test_is_last_page(self):
        assert CursorManager.is_last_page(400, 1000)
        assert not CursorManager.is_last_page(1000, 1000)


def test_parse_timestamp_accepts_z_suffix():
    assert parse_timestamp("2024-01-01T00:00:00Z").utcoffset().total_seconds() == 0
