"""
Bounded path planning on one level.

Implements a straight-line shortcut for short hops and a budgeted A*
search for everything else. The planner applies exactly one passability
policy per call; callers that want to relax constraints walk
`permissiveness_tiers()` themselves.

The search must fit inside a single tick, so it is capped both by the
number of expanded nodes and by wall-clock time. Hitting either cap is a
normal failure (SEARCH_BUDGET_EXCEEDED), never a stall.
"""

import heapq
import logging
import time
from dataclasses import dataclass, replace
from enum import Enum
from typing import Callable, Optional

from ..config import PlannerConfig
from .classifier import TileSafetyClassifier
from .models import ALL_DIRECTIONS, CARDINAL_DIRECTIONS, Direction, Position

logger = logging.getLogger(__name__)

OCTILE_FACTOR = 0.41

# Expanded nodes between wall-clock checks
_CLOCK_CHECK_EVERY = 32


class PathStopReason(Enum):
    """Reasons why planning stopped or couldn't start."""

    SUCCESS = "success"
    ALREADY_AT_TARGET = "already_at_target"
    LEVEL_MISMATCH = "level_mismatch"
    TOO_FAR = "too_far"
    TARGET_UNWALKABLE = "target_unwalkable"
    NO_PATH_EXISTS = "no_path_exists"
    SEARCH_BUDGET_EXCEEDED = "search_budget_exceeded"


@dataclass
class PathResult:
    """Result of a planning operation."""

    path: list[Direction]
    reason: PathStopReason
    message: str = ""
    used_shortcut: bool = False
    nodes_expanded: int = 0

    @property
    def success(self) -> bool:
        """Whether planning succeeded."""
        return self.reason == PathStopReason.SUCCESS

    def __bool__(self) -> bool:
        """Allow `if result:` to check for success."""
        return self.success and len(self.path) > 0

    def __iter__(self):
        """Allow `for direction in result:` to iterate path."""
        return iter(self.path)

    def __len__(self) -> int:
        return len(self.path)

    def __repr__(self) -> str:
        if self.success:
            via = ", shortcut" if self.used_shortcut else ""
            return f"PathResult(path=[{len(self.path)} steps], reason=SUCCESS{via})"
        return f"PathResult(path=[], reason={self.reason.value}, message='{self.message}')"


@dataclass(frozen=True)
class PathOptions:
    """Passability policy for one planning call."""

    ignore_occupants: bool = False
    ignore_fields: bool = False
    allow_unseen: bool = False
    # The destination cell may be hazardous; every other cell must not be
    allow_hazardous_goal: bool = False
    # Chebyshev distance from the destination that counts as arrived
    precision: int = 0
    node_budget: Optional[int] = None


def permissiveness_tiers(base: PathOptions) -> list[PathOptions]:
    """
    Escalation ladder used when a plan fails.

    base, then ignore occupants, then also ignore fields, then also allow
    unseen cells. Tiers identical to an earlier one are dropped.
    """
    occupants = replace(base, ignore_occupants=True)
    fields = replace(occupants, ignore_fields=True)
    unseen = replace(fields, allow_unseen=True)

    tiers: list[PathOptions] = []
    for tier in (base, occupants, fields, unseen):
        if tier not in tiers:
            tiers.append(tier)
    return tiers


def octile(a: Position, b: Position) -> float:
    dx = abs(a.x - b.x)
    dy = abs(a.y - b.y)
    return max(dx, dy) + OCTILE_FACTOR * min(dx, dy)


def manhattan(a: Position, b: Position) -> float:
    return abs(a.x - b.x) + abs(a.y - b.y)


class PathPlanner:
    """
    Single-policy planner over the classifier's view of the world.

    Example usage:
        planner = PathPlanner(classifier)
        result = planner.find_path(here, there, 20, PathOptions(precision=1))
        if result:
            for direction in result:
                ...
    """

    def __init__(
        self,
        classifier: TileSafetyClassifier,
        config: Optional[PlannerConfig] = None,
        clock: Callable[[], float] = time.perf_counter,
    ):
        self.classifier = classifier
        self.config = config or PlannerConfig()
        self._clock = clock
        self._directions = ALL_DIRECTIONS if self.config.diagonal else CARDINAL_DIRECTIONS
        self._heuristic = octile if self.config.diagonal else manhattan

    def find_path(
        self,
        origin: Position,
        dest: Position,
        max_distance: Optional[int] = None,
        options: PathOptions = PathOptions(),
    ) -> PathResult:
        """
        Find a step sequence from `origin` to within `options.precision` of `dest`.

        Args:
            origin: Start cell
            dest: Destination cell (same level as origin)
            max_distance: Chebyshev bound on both the request and the search area
            options: Passability policy

        Returns:
            PathResult with the steps and the reason for success/failure
        """
        if origin.z != dest.z:
            return PathResult([], PathStopReason.LEVEL_MISMATCH, f"{origin} and {dest} are on different levels")

        if origin.distance_to(dest) <= options.precision:
            return PathResult([], PathStopReason.ALREADY_AT_TARGET, "Already at target position")

        if max_distance is None:
            max_distance = self.config.max_distance
        if origin.distance_to(dest) > max_distance:
            return PathResult([], PathStopReason.TOO_FAR, f"{dest} is more than {max_distance} cells away")

        if options.precision == 0 and not self._passable(dest, options, dest):
            return PathResult([], PathStopReason.TARGET_UNWALKABLE, f"Target {dest} is not passable")

        if origin.manhattan_to(dest) <= self.config.straight_line_threshold:
            shortcut = self._straight_line(origin, dest, options)
            if shortcut is not None:
                logger.debug(f"find_path: shortcut {origin} -> {dest} ({len(shortcut)} steps)")
                return PathResult(shortcut, PathStopReason.SUCCESS, used_shortcut=True)

        return self._astar(origin, dest, max_distance, options)

    def is_passable(self, pos: Position, options: PathOptions = PathOptions()) -> bool:
        return self._passable(pos, options, None)

    def _passable(self, pos: Position, options: PathOptions, goal: Optional[Position]) -> bool:
        tile = self.classifier.classify(pos)
        if not tile.walkable:
            return False
        if not tile.seen and not options.allow_unseen:
            return False
        if tile.occupied and not options.ignore_occupants and pos != goal:
            return False
        if tile.field and not options.ignore_fields:
            return False
        if tile.hazardous and not (options.allow_hazardous_goal and pos == goal):
            return False
        return True

    def _straight_line(self, origin: Position, dest: Position, options: PathOptions) -> Optional[list[Direction]]:
        """Walk the direct line (diagonal first); None if any cell is blocked."""
        steps: list[Direction] = []
        current = origin
        while current.distance_to(dest) > options.precision:
            dx = dest.x - current.x
            dy = dest.y - current.y
            if not self.config.diagonal and dx != 0 and dy != 0:
                dy = 0
            direction = Direction.from_delta(dx, dy)
            current = current.move(direction)
            if not self._passable(current, options, dest):
                return None
            steps.append(direction)
        return steps

    def _astar(self, start: Position, goal: Position, max_distance: int, options: PathOptions) -> PathResult:
        budget = options.node_budget if options.node_budget is not None else self.config.node_budget
        deadline = self._clock() + self.config.time_budget
        precision = options.precision

        def h(pos: Position) -> float:
            return max(0.0, self._heuristic(pos, goal) - precision)

        # Priority queue: (f_score, counter, position)
        counter = 0
        open_set = [(h(start), counter, start)]
        came_from: dict[Position, tuple[Position, Direction]] = {}
        g_score: dict[Position, float] = {start: 0.0}
        closed: set[Position] = set()
        expanded = 0

        while open_set:
            _, _, current = heapq.heappop(open_set)
            if current in closed:
                continue

            if current.distance_to(goal) <= precision:
                path = []
                while current in came_from:
                    current, direction = came_from[current]
                    path.append(direction)
                path.reverse()
                return PathResult(path, PathStopReason.SUCCESS, nodes_expanded=expanded)

            closed.add(current)
            expanded += 1
            if expanded > budget or (expanded % _CLOCK_CHECK_EVERY == 0 and self._clock() > deadline):
                logger.debug(f"find_path: budget exceeded after {expanded} nodes ({start} -> {goal})")
                return PathResult(
                    [],
                    PathStopReason.SEARCH_BUDGET_EXCEEDED,
                    f"Search budget exceeded after {expanded} nodes",
                    nodes_expanded=expanded,
                )

            for direction in self._directions:
                neighbor = current.move(direction)
                if neighbor in closed or start.distance_to(neighbor) > max_distance:
                    continue
                if not self._passable(neighbor, options, goal):
                    continue

                tentative_g = g_score[current] + direction.cost
                if neighbor not in g_score or tentative_g < g_score[neighbor]:
                    came_from[neighbor] = (current, direction)
                    g_score[neighbor] = tentative_g
                    counter += 1
                    heapq.heappush(open_set, (tentative_g + h(neighbor), counter, neighbor))

        return PathResult([], PathStopReason.NO_PATH_EXISTS, f"No path from {start} to {goal}", nodes_expanded=expanded)
