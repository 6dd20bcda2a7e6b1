"""
Collaborator interfaces consumed by the navigation engine.

The host client (map, movement, waypoint list) is injected once when the
agent is built. Optional collaborators are passed as None when absent.
"""

from typing import Optional, Protocol

from .models import ActionResult, CoarseSignal, Direction, MoveOptions, Position, TileInfo


class MapQuery(Protocol):
    """Read access to the world map. Must be cheap enough to call every tick."""

    def get_tile(self, pos: Position) -> Optional[TileInfo]:
        """Return the tile at `pos`, or None when the cell is not loaded."""
        ...

    def get_coarse_hazard_signal(self, pos: Position) -> CoarseSignal:
        ...


class MovementPrimitive(Protocol):
    """Fire-and-forget movement commands. Outcomes show up as position changes."""

    def issue_multi_step_move(self, dest: Position, max_distance: int, options: MoveOptions) -> bool:
        ...

    def issue_single_step(self, direction: Direction) -> bool:
        ...

    def is_currently_moving(self) -> bool:
        ...

    def estimate_step_duration(self) -> float:
        """Seconds needed for one cardinal step."""
        ...


class WaypointList(Protocol):
    """Externally owned itinerary. The engine only moves the focus pointer."""

    def count(self) -> int:
        ...

    def text_at(self, index: int) -> str:
        ...

    def focused_index(self) -> int:
        ...

    def focus(self, index: int) -> None:
        ...


class ObstacleHandler(Protocol):
    def try_resolve(self, dest: Position) -> bool:
        """Last-resort attempt to clear whatever blocks the way to `dest`."""
        ...


class ActionHandler(Protocol):
    def run(self, text: str, retries: int) -> ActionResult:
        """Run a non-goto waypoint."""
        ...


class LifecycleSink(Protocol):
    def report_unrecoverable(self) -> None:
        ...
