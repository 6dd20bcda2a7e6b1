"""
Simulated host world.

`GridWorld` stands in for the game client: it answers map queries and
accepts movement commands, then moves the agent when `advance()` is called
(one cell per call, like one step duration elapsing). Levels are numpy
arrays built from ASCII art, so tests and the CLI can drive the whole engine
without a client.

Map characters:
    .  floor            #  wall
    f  fire field       m  monster standing on floor
    ?  floor never seen (remembered only)
    >  stairs down (to z + 1)    <  stairs up (to z - 1)
    O  hole (to z + 1; not shown on the coarse transition layer)
    (space) cell not loaded
"""

import logging
from collections import deque
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

import numpy as np
import yaml

from .models import ALL_DIRECTIONS, CoarseSignal, Direction, MoveOptions, Position, TileInfo

logger = logging.getLogger(__name__)

# Ground ids written for the map characters (taken from the hazard catalog)
GROUND_FLOOR = 4526
GROUND_STAIRS_DOWN = 414
GROUND_STAIRS_UP = 1956
GROUND_HOLE = 294
ITEM_FIRE_FIELD = 1487

# char -> (walkable, ground id, occupied, seen, level delta)
_CELL_TYPES: dict[str, tuple[bool, int, bool, bool, int]] = {
    ".": (True, GROUND_FLOOR, False, True, 0),
    "#": (False, 0, False, True, 0),
    "f": (True, ITEM_FIRE_FIELD, False, True, 0),
    "m": (True, GROUND_FLOOR, True, True, 0),
    "?": (True, GROUND_FLOOR, False, False, 0),
    ">": (True, GROUND_STAIRS_DOWN, False, True, 1),
    "<": (True, GROUND_STAIRS_UP, False, True, -1),
    "O": (True, GROUND_HOLE, False, True, 1),
}

# Link cells the minimap colours (holes are not shown)
_COLOURED_LINKS = frozenset({GROUND_STAIRS_DOWN, GROUND_STAIRS_UP})


@dataclass
class LevelGrid:
    """One level of the world as parallel numpy arrays indexed [row, col]."""

    loaded: np.ndarray
    walkable: np.ndarray
    ground: np.ndarray
    occupied: np.ndarray
    seen: np.ndarray
    link: np.ndarray  # level delta when stepped on, 0 for none

    @classmethod
    def from_ascii(cls, text: str) -> "LevelGrid":
        rows = text.splitlines()
        height = len(rows)
        width = max((len(row) for row in rows), default=0)

        grid = cls(
            loaded=np.zeros((height, width), dtype=bool),
            walkable=np.zeros((height, width), dtype=bool),
            ground=np.zeros((height, width), dtype=np.int32),
            occupied=np.zeros((height, width), dtype=bool),
            seen=np.zeros((height, width), dtype=bool),
            link=np.zeros((height, width), dtype=np.int8),
        )
        for row, line in enumerate(rows):
            for col, char in enumerate(line):
                if char == " ":
                    continue
                if char not in _CELL_TYPES:
                    raise ValueError(f"Unknown map character {char!r} at row {row}, column {col}")
                walkable, ground, occupied, seen, link = _CELL_TYPES[char]
                grid.loaded[row, col] = True
                grid.walkable[row, col] = walkable
                grid.ground[row, col] = ground
                grid.occupied[row, col] = occupied
                grid.seen[row, col] = seen
                grid.link[row, col] = link
        return grid

    @property
    def shape(self) -> tuple[int, int]:
        return self.loaded.shape


@dataclass
class GridWorld:
    """
    In-memory world implementing the MapQuery and MovementPrimitive interfaces.

    World coordinates map to array indices through `origin`:
    column = x - origin[0], row = y - origin[1].
    """

    levels: dict[int, LevelGrid]
    position: Position
    origin: tuple[int, int] = (0, 0)
    step_duration: float = 0.2
    waypoints: list[str] = field(default_factory=list)
    moves_issued: int = 0
    _route: deque = field(default_factory=deque)

    @classmethod
    def from_ascii(
        cls,
        levels: dict[int, str],
        start: Position,
        origin: tuple[int, int] = (0, 0),
        waypoints: Optional[list[str]] = None,
    ) -> "GridWorld":
        return cls(
            levels={int(z): LevelGrid.from_ascii(text) for z, text in levels.items()},
            position=start,
            origin=origin,
            waypoints=list(waypoints or []),
        )

    # --- MapQuery ---

    def get_tile(self, pos: Position) -> Optional[TileInfo]:
        index = self._index(pos)
        if index is None:
            return None
        level = self.levels[pos.z]
        ground = int(level.ground[index])
        return TileInfo(
            walkable=bool(level.walkable[index]),
            ground_id=ground or None,
            has_occupant=bool(level.occupied[index]) and pos != self.position,
            seen=bool(level.seen[index]),
        )

    def get_coarse_hazard_signal(self, pos: Position) -> CoarseSignal:
        index = self._index(pos)
        if index is None:
            return CoarseSignal.UNKNOWN
        if int(self.levels[pos.z].ground[index]) in _COLOURED_LINKS:
            return CoarseSignal.TRANSITION
        return CoarseSignal.NONE

    # --- MovementPrimitive ---

    def issue_multi_step_move(self, dest: Position, max_distance: int, options: MoveOptions) -> bool:
        self.moves_issued += 1
        if dest.z != self.position.z:
            if not options.allow_floor_change:
                return False
            route = self._route_to_level(dest.z, max_distance)
        else:
            if self.position.distance_to(dest) > max_distance:
                return False
            route = self._route_to(dest, max_distance, options)
        if route is None:
            logger.debug(f"world: no route from {self.position} to {dest}")
            return False
        self._route = deque(route)
        return True

    def issue_single_step(self, direction: Direction) -> bool:
        self.moves_issued += 1
        target = self.position.move(direction)
        if not self._enterable(target, ignore_occupants=False):
            return False
        self._route = deque([direction])
        return True

    def is_currently_moving(self) -> bool:
        return bool(self._route)

    def estimate_step_duration(self) -> float:
        return self.step_duration

    # --- Simulation ---

    def advance(self, steps: int = 1) -> Position:
        """Walk up to `steps` cells of the pending route and return the new position."""
        for _ in range(steps):
            if not self._route:
                break
            direction = self._route.popleft()
            target = self.position.move(direction)
            if not self._enterable(target, ignore_occupants=False):
                self._route.clear()
                break
            self.position = target
            delta = int(self.levels[target.z].link[self._index(target)])
            if delta:
                self.position = self._landing(Position(target.x, target.y, target.z + delta))
                self._route.clear()
                logger.debug(f"world: level change {target.z} -> {self.position.z}")
                break
        return self.position

    def teleport(self, pos: Position) -> None:
        self.position = pos
        self._route.clear()

    def set_occupied(self, pos: Position, occupied: bool = True) -> None:
        index = self._index(pos)
        if index is not None:
            self.levels[pos.z].occupied[index] = occupied

    def _index(self, pos: Position) -> Optional[tuple[int, int]]:
        level = self.levels.get(pos.z)
        if level is None:
            return None
        row = pos.y - self.origin[1]
        col = pos.x - self.origin[0]
        height, width = level.shape
        if not (0 <= row < height and 0 <= col < width):
            return None
        if not level.loaded[row, col]:
            return None
        return row, col

    def _enterable(self, pos: Position, ignore_occupants: bool) -> bool:
        index = self._index(pos)
        if index is None:
            return False
        level = self.levels[pos.z]
        if not level.walkable[index]:
            return False
        return ignore_occupants or not level.occupied[index]

    def _is_link(self, pos: Position) -> bool:
        index = self._index(pos)
        return index is not None and int(self.levels[pos.z].link[index]) != 0

    def _landing(self, pos: Position) -> Position:
        if self._enterable(pos, ignore_occupants=False) and not self._is_link(pos):
            return pos
        for neighbor in pos.adjacent():
            if self._enterable(neighbor, ignore_occupants=False) and not self._is_link(neighbor):
                return neighbor
        return pos

    def _bfs(self, goal_test, max_distance: int, ignore_occupants: bool, allow_links) -> Optional[list[Direction]]:
        start = self.position
        queue = deque([start])
        came_from: dict[Position, tuple[Position, Direction]] = {}
        visited = {start}
        while queue:
            current = queue.popleft()
            if current != start and goal_test(current):
                path = []
                while current in came_from:
                    current, direction = came_from[current]
                    path.append(direction)
                path.reverse()
                return path
            if current != start and self._is_link(current):
                continue
            for direction in ALL_DIRECTIONS:
                neighbor = current.move(direction)
                if neighbor in visited or start.distance_to(neighbor) > max_distance:
                    continue
                if not self._enterable(neighbor, ignore_occupants):
                    continue
                if self._is_link(neighbor) and not allow_links(neighbor):
                    continue
                visited.add(neighbor)
                came_from[neighbor] = (current, direction)
                queue.append(neighbor)
        return None

    def _route_to(self, dest: Position, max_distance: int, options: MoveOptions) -> Optional[list[Direction]]:
        if self.position.distance_to(dest) <= options.precision:
            return []

        def reached(pos: Position) -> bool:
            return pos.distance_to(dest) <= options.precision

        # Autowalk never steps on a level link unless asked to
        return self._bfs(
            reached,
            max_distance,
            options.ignore_occupants,
            lambda pos: pos == dest or options.allow_floor_change,
        )

    def _route_to_level(self, z: int, max_distance: int) -> Optional[list[Direction]]:
        wanted = 1 if z > self.position.z else -1

        def is_exit(pos: Position) -> bool:
            index = self._index(pos)
            return index is not None and int(self.levels[pos.z].link[index]) == wanted

        return self._bfs(is_exit, max_distance, False, is_exit)


def load_world(path: str | Path) -> GridWorld:
    """
    Load a world from a YAML map file.

    Expected keys: `levels` (z -> ASCII art), `start` ([x, y, z]), and
    optionally `origin` ([x, y] of the top-left character), `step_duration`
    and `waypoints` (list of waypoint strings).
    """
    with open(path) as f:
        data = yaml.safe_load(f)

    if not data or "levels" not in data or "start" not in data:
        raise ValueError(f"{path}: map needs 'levels' and 'start'")

    world = GridWorld.from_ascii(
        levels=data["levels"],
        start=Position(*data["start"]),
        origin=tuple(data.get("origin", (0, 0))),
        waypoints=data.get("waypoints"),
    )
    if "step_duration" in data:
        world.step_duration = float(data["step_duration"])
    logger.info(f"Loaded world {path}: {len(world.levels)} levels, {len(world.waypoints)} waypoints")
    return world
