"""
Waypoint text handling.

Only `goto:<x>,<y>,<z>[,<precision>]` waypoints are understood here; every
other waypoint is opaque text handed to the action handler.
"""

import re
from dataclasses import dataclass
from typing import Iterator, Optional

from ..api.interfaces import WaypointList
from ..api.models import Position

GOTO_PREFIX = "goto"

_GOTO_RE = re.compile(
    r"^\s*goto\s*:\s*(\d+)\s*,\s*(\d+)\s*,\s*(\d+)\s*(?:,\s*(\d+)\s*)?$",
    re.IGNORECASE,
)


class WaypointFormatError(ValueError):
    """Raised when a goto waypoint cannot be parsed."""


@dataclass(frozen=True)
class GotoWaypoint:
    """A parsed goto waypoint. `precision=None` means the caller decides."""

    position: Position
    precision: Optional[int] = None

    def __str__(self) -> str:
        return format_goto(self)


def is_goto(text: str) -> bool:
    head, sep, _ = text.partition(":")
    return bool(sep) and head.strip().lower() == GOTO_PREFIX


def parse_goto(text: str) -> GotoWaypoint:
    """
    Parse `goto:x,y,z` or `goto:x,y,z,precision`.

    Raises:
        WaypointFormatError: if the text is not a well-formed goto
    """
    match = _GOTO_RE.match(text)
    if not match:
        raise WaypointFormatError(f"Invalid goto waypoint {text!r}, expected goto:x,y,z")
    x, y, z, precision = match.groups()
    return GotoWaypoint(
        position=Position(int(x), int(y), int(z)),
        precision=int(precision) if precision is not None else None,
    )


def try_parse_goto(text: str) -> Optional[GotoWaypoint]:
    """Parse a goto waypoint, returning None for anything else."""
    try:
        return parse_goto(text)
    except WaypointFormatError:
        return None


def format_goto(waypoint: GotoWaypoint) -> str:
    pos = waypoint.position
    text = f"{GOTO_PREFIX}:{pos.x},{pos.y},{pos.z}"
    if waypoint.precision is not None:
        text += f",{waypoint.precision}"
    return text


def goto_waypoints(waypoints: WaypointList) -> list[tuple[int, GotoWaypoint]]:
    """All goto waypoints of a list with their indices, in order."""
    found = []
    for index in range(waypoints.count()):
        parsed = try_parse_goto(waypoints.text_at(index))
        if parsed is not None:
            found.append((index, parsed))
    return found


class InMemoryWaypointList:
    """
    Plain list-backed waypoint list.

    Example usage:
        waypoints = InMemoryWaypointList(["goto:100,100,7", "goto:110,100,7"])
        waypoints.focus(1)
    """

    def __init__(self, texts: list[str], focused: int = 0):
        self._texts = list(texts)
        self._focused = 0
        if self._texts:
            self.focus(focused)

    def count(self) -> int:
        return len(self._texts)

    def text_at(self, index: int) -> str:
        return self._texts[index]

    def focused_index(self) -> int:
        return self._focused

    def focus(self, index: int) -> None:
        if not 0 <= index < len(self._texts):
            raise IndexError(f"Waypoint index {index} out of range (0..{len(self._texts) - 1})")
        self._focused = index

    def __len__(self) -> int:
        return len(self._texts)

    def __iter__(self) -> Iterator[str]:
        return iter(self._texts)
