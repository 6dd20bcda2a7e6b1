"""
Chunked path execution.

`NavigationExecutor.walk_to` is called once per tick with the agent's
current position. Each call re-checks arrival, picks or repairs a path,
re-validates the cells just ahead against the classifier and hands a
bounded chunk of it to the host movement primitive. Completion is only
ever detected by a later call (step 1), since movement is fire-and-forget.
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Callable, Optional

from ..config import NavigationConfig
from .classifier import TileSafetyClassifier
from .interfaces import MovementPrimitive, ObstacleHandler
from .models import Direction, MoveOptions, NavFailure, Position, WalkResult
from .path_cache import PathCache
from .pathfinding import PathOptions, PathPlanner, PathResult, PathStopReason, permissiveness_tiers

logger = logging.getLogger(__name__)

# Paths up to this length are issued in one go
SHORT_PATH = 5
MEDIUM_PATH = 15
MEDIUM_CHUNK = 10
MIN_ZIGZAG_CHUNK = 3


@dataclass
class WalkParams:
    """Per-call options for walk_to. `precision=None` uses the configured default."""

    precision: Optional[int] = None
    ignore_occupants: bool = False
    ignore_fields: bool = False
    allow_unseen: bool = False
    allow_floor_change: bool = False


@dataclass
class NavigationCursor:
    """The path currently being walked."""

    steps: list[Direction]
    destination: Position
    origin: Position
    created_at: float
    ttl: float
    options: PathOptions = field(default_factory=PathOptions)
    index: int = 0
    last_chunk_end: Optional[Position] = None

    def expired(self, now: float) -> bool:
        return now - self.created_at > self.ttl

    @property
    def exhausted(self) -> bool:
        return self.index >= len(self.steps)

    @property
    def remaining(self) -> list[Direction]:
        return self.steps[self.index:]

    def locate(self, pos: Position) -> Optional[int]:
        """Index of the step to take next when standing on `pos`, if it lies on the path."""
        if pos == self.origin:
            return 0
        for i, cell in enumerate(self.origin.walk(self.steps), start=1):
            if cell == pos:
                return i
        return None


class NavigationExecutor:
    """
    Walks the agent toward a destination one chunk per tick.

    Example usage:
        executor = NavigationExecutor(classifier, planner, cache, world)
        result = executor.walk_to(here, Position(105, 100, 7))
        if result.status == WalkStatus.ARRIVED:
            ...
    """

    def __init__(
        self,
        classifier: TileSafetyClassifier,
        planner: PathPlanner,
        cache: PathCache,
        movement: MovementPrimitive,
        obstacle_handler: Optional[ObstacleHandler] = None,
        config: Optional[NavigationConfig] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.classifier = classifier
        self.planner = planner
        self.cache = cache
        self.movement = movement
        self.obstacle_handler = obstacle_handler
        self.config = config or NavigationConfig()
        self._clock = clock
        self.cursor: Optional[NavigationCursor] = None

    def walk_to(
        self,
        current: Position,
        dest: Position,
        max_distance: Optional[int] = None,
        params: Optional[WalkParams] = None,
    ) -> WalkResult:
        """
        Make one tick's worth of progress toward `dest`.

        Args:
            current: Where the agent stands now
            dest: Destination cell
            max_distance: Planning bound (defaults to the planner's)
            params: Per-call options

        Returns:
            WalkResult: ARRIVED, IN_PROGRESS, or BLOCKED with a NavFailure
        """
        params = params or WalkParams()
        precision = self.config.default_precision if params.precision is None else params.precision
        now = self._clock()

        if current.z == dest.z and current.distance_to(dest) <= precision:
            self.reset()
            return WalkResult.arrived()

        if current.z != dest.z:
            if not params.allow_floor_change:
                return WalkResult.blocked(
                    NavFailure.FLOOR_MISMATCH,
                    f"{dest} is on level {dest.z}, agent is on level {current.z}",
                )
            return self._issue_cross_level(dest, max_distance, precision)

        base = PathOptions(
            ignore_occupants=params.ignore_occupants,
            ignore_fields=params.ignore_fields,
            allow_unseen=params.allow_unseen,
            allow_hazardous_goal=params.allow_floor_change,
            precision=precision,
        )

        target = dest
        substitute: Optional[PathResult] = None
        if not params.allow_floor_change and self.classifier.is_hazardous(dest):
            # Standing next to a hazardous destination is as close as we go
            if current.distance_to(dest) <= max(1, precision) and self.classifier.is_safe_stand(current):
                self.reset()
                return WalkResult.arrived()
            found = self.find_safe_alternate(current, dest, base, max_distance)
            if found is None:
                self.reset()
                return WalkResult.blocked(NavFailure.DESTINATION_HAZARDOUS, f"{dest} is hazardous, no safe neighbour")
            target, substitute = found
            base = PathOptions(
                ignore_occupants=base.ignore_occupants,
                ignore_fields=base.ignore_fields,
                allow_unseen=base.allow_unseen,
            )
            logger.debug(f"walk_to: {dest} is hazardous, substituting {target}")

        cursor = self._reuse_cursor(current, target, now)
        reused = cursor is not None
        if cursor is None:
            if substitute is not None:
                if not substitute.path:
                    return WalkResult.arrived()
                cursor = self._new_cursor(current, target, substitute.path, base, now)
            else:
                planned = self._plan(current, target, max_distance, base)
                if planned is None:
                    return self._give_up(dest)
                result, tier = planned
                if not result.path:
                    self.reset()
                    return WalkResult.arrived()
                cursor = self._new_cursor(current, target, result.path, tier, now)

        if not self._validate(current, cursor, allow_final_hazard=params.allow_floor_change):
            self.cache.invalidate(target)
            self.reset()
            found = None if target != dest else self.find_safe_alternate(current, dest, base, max_distance)
            if found is None:
                return WalkResult.blocked(NavFailure.DESTINATION_HAZARDOUS, f"path to {dest} crosses a hazard")
            target, substitute = found
            if not substitute.path:
                return WalkResult.arrived()
            cursor = self._new_cursor(current, target, substitute.path, base, now)
            reused = False
            if not self._validate(current, cursor, allow_final_hazard=False):
                self.reset()
                return WalkResult.blocked(NavFailure.DESTINATION_HAZARDOUS, f"no safe route toward {dest}")

        if reused and self.movement.is_currently_moving() and self._on_track(current, cursor):
            return WalkResult.in_progress(0, target)

        return self._issue_chunk(current, cursor, max_distance, now)

    def reset(self) -> None:
        """Drop the active cursor. Caches are kept."""
        self.cursor = None

    def is_path_safe(self, current: Position, dest: Position, max_distance: Optional[int] = None) -> bool:
        """Whether a planned path to `dest` exists that crosses no hazard before reaching it."""
        result = self.planner.find_path(current, dest, max_distance, PathOptions(allow_hazardous_goal=True))
        if result.reason == PathStopReason.ALREADY_AT_TARGET:
            return True
        if not result:
            return False
        cells = current.walk(result.path)
        return not any(self.classifier.is_hazardous(cell) for cell in cells[:-1])

    def find_safe_alternate(
        self,
        current: Position,
        dest: Position,
        base: Optional[PathOptions] = None,
        max_distance: Optional[int] = None,
    ) -> Optional[tuple[Position, PathResult]]:
        """
        Find the closest safe neighbour of `dest` that can be reached by a short path.

        The neighbour is planned to with the caller's `max_distance`. A path
        counts as short when it detours at most `substitute_search_distance`
        steps beyond the straight-line distance to the neighbour.

        Returns:
            (substitute, path result), or None if no neighbour qualifies
        """
        base = base or PathOptions()
        options = PathOptions(
            ignore_occupants=base.ignore_occupants,
            ignore_fields=base.ignore_fields,
            allow_unseen=base.allow_unseen,
        )
        detour = self.config.substitute_search_distance
        candidates = sorted(
            dest.adjacent(),
            key=lambda pos: (current.distance_to(pos), current.manhattan_to(pos)),
        )
        for candidate in candidates:
            if not self.classifier.is_safe_stand(candidate):
                continue
            if candidate == current:
                return candidate, PathResult([], PathStopReason.ALREADY_AT_TARGET)
            result = self.planner.find_path(current, candidate, max_distance, options)
            if result and len(result.path) <= current.distance_to(candidate) + detour:
                return candidate, result
        return None

    def chunk_size(self, steps: list[Direction]) -> int:
        """How many of `steps` to issue this tick."""
        n = len(steps)
        if n == 0:
            return 0
        size = min(self.config.max_chunk, self.config.validate_steps)
        if n <= SHORT_PATH:
            size = min(size, n)
        elif n <= MEDIUM_PATH:
            size = min(size, MEDIUM_CHUNK)

        window = steps[:size]
        changes = sum(1 for a, b in zip(window, window[1:]) if a != b)
        if changes > size * 0.5:
            size = max(MIN_ZIGZAG_CHUNK, int(size * 0.6))
        return min(size, n)

    def _reuse_cursor(self, current: Position, target: Position, now: float) -> Optional[NavigationCursor]:
        cursor = self.cursor
        if cursor is None or cursor.destination != target or cursor.expired(now):
            self.cursor = None
            return None
        index = cursor.locate(current)
        if index is None or index >= len(cursor.steps):
            logger.debug(f"walk_to: {current} is off the cursor path to {target}")
            self.cursor = None
            return None
        cursor.index = index
        return cursor

    def _new_cursor(
        self,
        current: Position,
        target: Position,
        steps: list[Direction],
        options: PathOptions,
        now: float,
    ) -> NavigationCursor:
        self.cursor = NavigationCursor(
            steps=list(steps),
            destination=target,
            origin=current,
            created_at=now,
            ttl=self.config.cursor_ttl,
            options=options,
        )
        return self.cursor

    def _plan(
        self,
        current: Position,
        target: Position,
        max_distance: Optional[int],
        base: PathOptions,
    ) -> Optional[tuple[PathResult, PathOptions]]:
        """Cached path if usable, else the planner through the permissiveness tiers."""
        entry = self.cache.get(current, target)
        if entry is not None:
            # Drifted origin: resume from wherever we stand on the cached path
            cached = NavigationCursor(entry.steps, target, entry.origin, 0.0, 0.0)
            index = cached.locate(current)
            if index is not None and index < len(entry.steps):
                logger.debug(f"walk_to: cache hit for {target}")
                return PathResult(entry.steps[index:], PathStopReason.SUCCESS), entry.options or base

        last: Optional[PathResult] = None
        for tier in permissiveness_tiers(base):
            result = self.planner.find_path(current, target, max_distance, tier)
            if result.reason == PathStopReason.ALREADY_AT_TARGET or result:
                if tier != base:
                    logger.debug(f"walk_to: path to {target} needed a relaxed tier {tier}")
                if result.path:
                    self.cache.put(current, target, result.path, tier)
                return result, tier
            last = result
            if result.reason in (PathStopReason.TOO_FAR, PathStopReason.LEVEL_MISMATCH):
                break

        logger.debug(f"walk_to: no path to {target} ({last.reason.value if last else 'none'})")
        return None

    def _give_up(self, dest: Position) -> WalkResult:
        self.reset()
        if self.obstacle_handler is not None and self.obstacle_handler.try_resolve(dest):
            logger.info(f"walk_to: obstacle handler is clearing the way to {dest}")
            return WalkResult.in_progress(0, dest)
        return WalkResult.blocked(NavFailure.NO_PATH_FOUND, f"no path to {dest}")

    def _validate(self, current: Position, cursor: NavigationCursor, allow_final_hazard: bool) -> bool:
        ahead = cursor.remaining[: self.config.validate_steps]
        cells = current.walk(ahead)
        for cell in cells:
            if not self.classifier.is_hazardous(cell):
                continue
            if allow_final_hazard and cell == cursor.destination:
                continue
            logger.debug(f"walk_to: hazard at {cell} on the path to {cursor.destination}")
            return False
        return True

    def _on_track(self, current: Position, cursor: NavigationCursor) -> bool:
        if cursor.last_chunk_end is None:
            return False
        ahead = len(cursor.remaining)
        return current.manhattan_to(cursor.last_chunk_end) <= min(ahead, self.config.max_chunk) + 2

    def _issue_chunk(
        self,
        current: Position,
        cursor: NavigationCursor,
        max_distance: Optional[int],
        now: float,
    ) -> WalkResult:
        remaining = cursor.remaining
        size = self.chunk_size(remaining)
        chunk = remaining[:size]
        chunk_end = current.walk(chunk)[-1]

        if size >= 2:
            distance = max_distance if max_distance is not None else self.planner.config.max_distance
            options = MoveOptions(precision=0, ignore_occupants=cursor.options.ignore_occupants)
            accepted = self.movement.issue_multi_step_move(chunk_end, distance, options)
        else:
            accepted = self.movement.issue_single_step(chunk[0])

        if not accepted:
            logger.debug(f"walk_to: host refused movement to {chunk_end}")
            self.reset()
            return WalkResult.blocked(NavFailure.MOVE_REJECTED, f"movement to {chunk_end} refused")

        cursor.index += size
        cursor.last_chunk_end = chunk_end
        cursor.created_at = now
        cursor.ttl = max(self.config.cursor_ttl, size * self.movement.estimate_step_duration())
        return WalkResult.in_progress(size, cursor.destination)

    def _issue_cross_level(self, dest: Position, max_distance: Optional[int], precision: int) -> WalkResult:
        self.reset()
        distance = max_distance if max_distance is not None else self.planner.config.max_distance
        options = MoveOptions(precision=precision, allow_floor_change=True)
        if self.movement.issue_multi_step_move(dest, distance, options):
            return WalkResult.in_progress(0, dest)
        return WalkResult.blocked(NavFailure.MOVE_REJECTED, f"host refused cross-level move to {dest}")
