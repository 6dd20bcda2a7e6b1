"""Tests for goto waypoint parsing and the in-memory waypoint list."""

import pytest

from cavenav.agent.waypoints import (
    GotoWaypoint,
    InMemoryWaypointList,
    WaypointFormatError,
    format_goto,
    goto_waypoints,
    is_goto,
    parse_goto,
    try_parse_goto,
)
from cavenav.api.models import Position


class TestParseGoto:
    """Tests for parse_goto and friends."""

    def test_parse_basic(self):
        """Test goto:10,20,7 parses to (10, 20, 7) with no precision."""
        waypoint = parse_goto("goto:10,20,7")
        assert waypoint.position == Position(10, 20, 7)
        assert waypoint.precision is None

    def test_format_round_trip(self):
        """Test formatting a parsed waypoint gives the original text back."""
        assert format_goto(parse_goto("goto:10,20,7")) == "goto:10,20,7"
        assert str(parse_goto("goto:10,20,7,2")) == "goto:10,20,7,2"

    def test_parse_precision(self):
        """Test the optional fourth field is the precision."""
        assert parse_goto("goto:10,20,7,2").precision == 2

    def test_parse_whitespace_and_case(self):
        """Test spaces around separators and upper-case prefix are accepted."""
        waypoint = parse_goto("  GOTO : 10, 20 ,7 ")
        assert waypoint.position == Position(10, 20, 7)

    @pytest.mark.parametrize("text", ["goto:10,20", "goto:a,b,c", "goto:1,2,3,4,5", "say:hello", ""])
    def test_parse_invalid(self, text):
        """Test malformed waypoints raise WaypointFormatError."""
        with pytest.raises(WaypointFormatError):
            parse_goto(text)

    def test_format_error_is_value_error(self):
        """Test WaypointFormatError can be caught as ValueError."""
        with pytest.raises(ValueError):
            parse_goto("goto:")

    def test_try_parse(self):
        """Test try_parse_goto returns None instead of raising."""
        assert try_parse_goto("say:hello") is None
        assert try_parse_goto("goto:1,2,3") == GotoWaypoint(Position(1, 2, 3))

    def test_is_goto(self):
        """Test is_goto only looks at the prefix."""
        assert is_goto("goto:1,2,3")
        assert is_goto("goto:broken")
        assert not is_goto("say:goto:1,2,3")
        assert not is_goto("goto")


class TestInMemoryWaypointList:
    """Tests for InMemoryWaypointList."""

    def setup_method(self):
        """Set up test fixtures."""
        self.waypoints = InMemoryWaypointList(["goto:1,1,7", "say:hi", "goto:5,5,7", "goto:bad"])

    def test_focus(self):
        """Test focusing a valid index."""
        assert self.waypoints.focused_index() == 0
        self.waypoints.focus(2)
        assert self.waypoints.focused_index() == 2
        assert self.waypoints.text_at(2) == "goto:5,5,7"

    def test_focus_out_of_range(self):
        """Test focusing outside the list raises IndexError."""
        with pytest.raises(IndexError):
            self.waypoints.focus(4)
        with pytest.raises(IndexError):
            self.waypoints.focus(-1)

    def test_goto_waypoints_skips_other_entries(self):
        """Test only parseable gotos are listed, with their indices."""
        found = goto_waypoints(self.waypoints)
        assert [index for index, _ in found] == [0, 2]
        assert found[1][1].position == Position(5, 5, 7)

    def test_empty_list(self):
        """Test an empty list has nothing focused to validate."""
        empty = InMemoryWaypointList([])
        assert empty.count() == 0
        assert len(empty) == 0
        assert list(empty) == []
