"""
Data models for the navigation engine.

These dataclasses represent grid cells, tiles and the results handed
between the planner, the executor and the waypoint engine.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional


class Direction(Enum):
    """Compass movement directions."""

    N = "n"
    S = "s"
    E = "e"
    W = "w"
    NE = "ne"
    NW = "nw"
    SE = "se"
    SW = "sw"

    @property
    def delta(self) -> tuple[int, int]:
        """Get (dx, dy) for this direction."""
        return _DELTAS[self]

    @property
    def is_diagonal(self) -> bool:
        dx, dy = self.delta
        return dx != 0 and dy != 0

    @property
    def cost(self) -> float:
        """Movement cost: 1 for cardinal, ~sqrt(2) for diagonal."""
        return DIAGONAL_COST if self.is_diagonal else 1.0

    @classmethod
    def from_delta(cls, dx: int, dy: int) -> Optional["Direction"]:
        """Get the direction for a unit delta, or None for (0, 0)."""
        dx = 0 if dx == 0 else (1 if dx > 0 else -1)
        dy = 0 if dy == 0 else (1 if dy > 0 else -1)
        return _BY_DELTA.get((dx, dy))


DIAGONAL_COST = 1.41

_DELTAS = {
    Direction.N: (0, -1),
    Direction.S: (0, 1),
    Direction.E: (1, 0),
    Direction.W: (-1, 0),
    Direction.NE: (1, -1),
    Direction.NW: (-1, -1),
    Direction.SE: (1, 1),
    Direction.SW: (-1, 1),
}
_BY_DELTA = {delta: direction for direction, delta in _DELTAS.items()}

# Direction constants for iteration (cardinals first so ties prefer straight moves)
CARDINAL_DIRECTIONS = (Direction.E, Direction.W, Direction.S, Direction.N)
DIAGONAL_DIRECTIONS = (Direction.SE, Direction.SW, Direction.NE, Direction.NW)
ALL_DIRECTIONS = CARDINAL_DIRECTIONS + DIAGONAL_DIRECTIONS


@dataclass(frozen=True, order=True)
class Position:
    """A grid cell. `z` is the level (floor) index."""

    x: int
    y: int
    z: int

    def distance_to(self, other: "Position") -> int:
        """Chebyshev distance on the x/y plane (8-directional moves)."""
        return max(abs(self.x - other.x), abs(self.y - other.y))

    def manhattan_to(self, other: "Position") -> int:
        return abs(self.x - other.x) + abs(self.y - other.y)

    def same_level(self, other: "Position") -> bool:
        return self.z == other.z

    def direction_to(self, other: "Position") -> Direction | None:
        """Get the compass direction toward another position on the plane."""
        return Direction.from_delta(other.x - self.x, other.y - self.y)

    def adjacent(self) -> list["Position"]:
        """Get all 8 adjacent positions on the same level."""
        return [self.move(direction) for direction in ALL_DIRECTIONS]

    def move(self, direction: Direction) -> "Position":
        """Get position after moving in a direction."""
        dx, dy = direction.delta
        return Position(self.x + dx, self.y + dy, self.z)

    def walk(self, steps: list[Direction]) -> list["Position"]:
        """Get every cell visited when following `steps` (start excluded)."""
        cells = []
        current = self
        for direction in steps:
            current = current.move(direction)
            cells.append(current)
        return cells

    def __str__(self) -> str:
        return f"({self.x}, {self.y}, {self.z})"


class CoarseSignal(Enum):
    """Pre-coloured level-transition layer value for a cell."""

    NONE = "none"
    TRANSITION = "transition"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class TileInfo:
    """What the map query knows about a single cell."""

    walkable: bool
    ground_id: int | None = None
    occupant_ids: tuple[int, ...] = ()  # item ids stacked on the cell, top first
    has_occupant: bool = False  # a creature stands on the cell
    seen: bool = True  # False for remembered-but-not-visible cells


@dataclass(frozen=True)
class TileClassification:
    """Memoized safety verdict for one cell."""

    walkable: bool
    hazardous: bool
    occupied: bool
    classified_at: float
    field: bool = False
    seen: bool = True


class NavFailure(Enum):
    """Why a navigation request could not be satisfied."""

    NO_PATH_FOUND = "no_path_found"
    DESTINATION_HAZARDOUS = "destination_hazardous"
    FLOOR_MISMATCH = "floor_mismatch"
    SEARCH_BUDGET_EXCEEDED = "search_budget_exceeded"
    MOVE_REJECTED = "move_rejected"
    NO_PROGRESS = "no_progress"
    RECOVERY_EXHAUSTED = "recovery_exhausted"


class WalkStatus(Enum):
    """Outcome of one walk_to call."""

    ARRIVED = "arrived"
    IN_PROGRESS = "in_progress"
    BLOCKED = "blocked"


@dataclass
class WalkResult:
    """Result of a walk_to call."""

    status: WalkStatus
    failure: NavFailure | None = None
    message: str = ""
    steps_issued: int = 0
    destination: Position | None = None

    @classmethod
    def arrived(cls) -> "WalkResult":
        return cls(WalkStatus.ARRIVED)

    @classmethod
    def in_progress(cls, steps: int = 0, destination: Position | None = None) -> "WalkResult":
        return cls(WalkStatus.IN_PROGRESS, steps_issued=steps, destination=destination)

    @classmethod
    def blocked(cls, failure: NavFailure, message: str = "") -> "WalkResult":
        return cls(WalkStatus.BLOCKED, failure=failure, message=message)

    def __bool__(self) -> bool:
        """Allow `if result:` to check the walk is not blocked."""
        return self.status != WalkStatus.BLOCKED


@dataclass(frozen=True)
class MoveOptions:
    """Options forwarded to the host movement primitive."""

    precision: int = 0
    ignore_occupants: bool = False
    allow_floor_change: bool = False


@dataclass
class ActionResult:
    """Outcome of running one waypoint: finished (ok or not) or retry next tick."""

    finished: bool
    success: bool = False
    messages: list[str] = field(default_factory=list)

    @classmethod
    def done(cls, success: bool, message: str = "") -> "ActionResult":
        return cls(finished=True, success=success, messages=[message] if message else [])

    @classmethod
    def retry(cls, message: str = "") -> "ActionResult":
        return cls(finished=False, messages=[message] if message else [])

    @property
    def is_retry(self) -> bool:
        return not self.finished
