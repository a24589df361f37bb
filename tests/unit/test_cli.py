"""
Unit tests for the run_sync command line
"""

import pytest
from scripts.run_sync import build_parser, options_from_args
from models.base import FeedScope


def parse(*argv):
    return options_from_args(build_parser().parse_args(list(argv)))


class TestOptionsFromArgs:

    def test_defaults_sync_both_scopes_with_children(self):
        options = parse()

        assert options.feed_scopes == (FeedScope.IDX, FeedScope.VOW)
        assert options.parents is True
        assert options.include_children is True
        assert options.standalone_children == ()
        assert options.max_records is None
        assert options.force is False

    def test_scope_flags(self):
        assert parse("--idx").feed_scopes == (FeedScope.IDX,)
        assert parse("--vow").feed_scopes == (FeedScope.VOW,)

    def test_test_run_ceiling_flags(self):
        assert parse("--10").max_records == 10
        assert parse("--1000").max_records == 1000
        assert parse("--limit", "42").max_records == 42

    def test_ceiling_flags_are_exclusive(self):
        with pytest.raises(SystemExit):
            parse("--10", "--100")

    def test_standalone_child_flags_skip_parents(self):
        options = parse("--media", "--openhouse")

        assert options.parents is False
        assert options.standalone_children == ("Media", "OpenHouse")

    def test_properties_with_standalone_children(self):
        options = parse("--properties", "--rooms", "--force")

        assert options.parents is True
        assert options.standalone_children == ("PropertyRooms",)
        assert options.force is True
