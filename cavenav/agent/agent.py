"""
Per-agent navigation context and tick driver.

One `NavigationAgent` owns every piece of mutable navigation state for one
automated agent: classifier memo, path cache, cursor, floor guard and
engine. The scheduler calls `tick(position)` once per period; nothing in
here blocks or registers global callbacks.
"""

import logging
import time
from dataclasses import dataclass
from typing import Callable, Optional

from ..api.classifier import TileSafetyClassifier
from ..api.environment import GridWorld
from ..api.interfaces import ActionHandler, LifecycleSink, MapQuery, MovementPrimitive, ObstacleHandler, WaypointList
from ..api.models import ActionResult, NavFailure, Position, WalkStatus
from ..api.navigator import NavigationExecutor, WalkParams
from ..api.path_cache import PathCache
from ..api.pathfinding import PathPlanner
from ..config import Config
from ..memory.floor_guard import FloorGuard, FloorGuardState
from .engine import WaypointEngine
from .recovery import WaypointLocator
from .waypoints import GotoWaypoint, InMemoryWaypointList, goto_waypoints, is_goto, try_parse_goto

logger = logging.getLogger(__name__)

# Startup search ranges, as multiples of goto_max_distance
STARTUP_RANGES = (2, 3)


@dataclass
class AgentStats:
    """Running counters for one agent."""

    ticks: int = 0
    skipped_ticks: int = 0
    waypoints_completed: int = 0
    waypoints_failed: int = 0
    intended_transitions: int = 0
    accidental_transitions: int = 0
    snoozes: int = 0


class NavigationAgent:
    """
    Drives an agent along its waypoint list.

    Example usage:
        agent = NavigationAgent(world, world, waypoints, config)
        while not agent.is_stopped:
            agent.tick(world.position)
            world.advance()
    """

    def __init__(
        self,
        map_query: MapQuery,
        movement: MovementPrimitive,
        waypoints: WaypointList,
        config: Optional[Config] = None,
        obstacle_handler: Optional[ObstacleHandler] = None,
        action_handler: Optional[ActionHandler] = None,
        lifecycle: Optional[LifecycleSink] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.config = config or Config()
        self.waypoints = waypoints
        self.movement = movement
        self.action_handler = action_handler
        self._clock = clock

        self.classifier = TileSafetyClassifier(map_query, self.config.classifier, clock)
        self.planner = PathPlanner(self.classifier, self.config.planner)
        self.path_cache = PathCache(self.config.path_cache, clock)
        self.executor = NavigationExecutor(
            self.classifier,
            self.planner,
            self.path_cache,
            movement,
            obstacle_handler=obstacle_handler,
            config=self.config.navigation,
            clock=clock,
        )
        self.floor_guard = FloorGuard(
            self.classifier,
            self.planner,
            movement,
            config=self.config.floor_guard,
            clock=clock,
            on_intended_transition=self._on_intended_transition,
            on_accidental_transition=self._on_accidental_transition,
        )
        self.locator = WaypointLocator(waypoints, self.planner, self.config.engine, self.config.navigation)
        self.engine = WaypointEngine(self.locator, self.config.engine, lifecycle, clock)

        self.stats = AgentStats()
        self.retries = 0
        self._retry_index: Optional[int] = None
        self._last_tick: Optional[float] = None
        self._last_position: Optional[Position] = None
        self._startup_done = not self.config.agent.startup_search
        self._snoozed: dict[int, float] = {}
        self._event_time = 0.0

    @property
    def is_stopped(self) -> bool:
        return self.engine.is_stopped

    # ==================== Tick ====================

    def tick(self, position: Position, now: Optional[float] = None) -> Optional[ActionResult]:
        """
        Run one scheduler tick.

        Returns:
            The focused waypoint's ActionResult, or None when nothing ran
            (tick too soon, engine intervening, step-back under way, empty list).
        """
        now = self._clock() if now is None else now
        if self._last_tick is not None and now - self._last_tick < self.config.agent.min_tick_interval:
            self.stats.skipped_ticks += 1
            return None
        self._last_tick = now
        self.stats.ticks += 1

        if self._last_position is None:
            self.on_position_change(position, position, now)
        elif position != self._last_position:
            self.on_position_change(self._last_position, position, now)
        if not self.engine.is_stopped:
            self.floor_guard.poll(position, now)

        if self.waypoints.count() == 0:
            return None

        self.engine.sample(position, self.waypoints.focused_index(), now)
        if not self._startup_done:
            self.detect_startup_waypoint(position)

        focus_before = self.waypoints.focused_index()
        if self.engine.tick(position, now):
            if self.waypoints.focused_index() != focus_before:
                self._focus_changed()
            return None

        if self.floor_guard.state == FloorGuardState.STEPPING_BACK:
            return None

        index = self.waypoints.focused_index()
        if self._snoozed.get(index, 0.0) > now:
            logger.debug(f"agent: waypoint {index} is snoozed")
            self._advance_focus()
            return None
        self._snoozed.pop(index, None)

        if index != self._retry_index:
            self._retry_index = index
            self.retries = 0

        text = self.waypoints.text_at(index)
        result = self._run_waypoint(index, text, position, now)
        self._handle_result(result)
        return result

    def on_position_change(self, old: Position, new: Position, now: Optional[float] = None) -> None:
        """Feed one observed position change to the floor guard (not while stopped)."""
        now = self._clock() if now is None else now
        self._last_position = new
        self._event_time = now
        if not self.engine.is_stopped:
            self.floor_guard.observe(old, new, now)
        if old.z != new.z:
            self.path_cache.invalidate_floor(old.z)
            self.executor.reset()

    # ==================== Waypoints ====================

    def _run_waypoint(self, index: int, text: str, position: Position, now: float) -> ActionResult:
        if is_goto(text):
            waypoint = try_parse_goto(text)
            if waypoint is None:
                logger.warning(f"agent: invalid goto waypoint {text!r} at {index}")
                return ActionResult.done(False, f"invalid goto waypoint {text!r}")
            return self.run_goto(index, waypoint, position, now)

        if self.action_handler is None:
            return ActionResult.done(True, f"no handler for {text!r}, skipped")
        return self.action_handler.run(text, self.retries)

    def run_goto(self, index: int, waypoint: GotoWaypoint, position: Position, now: float) -> ActionResult:
        """Walk toward a goto waypoint; arriving finishes it."""
        nav = self.config.navigation
        dest = waypoint.position

        if self.retries >= nav.max_retries:
            return ActionResult.done(False, f"goto {dest}: max retries ({nav.max_retries}) reached")
        if dest.z != position.z:
            return ActionResult.done(False, f"goto {dest}: agent is on level {position.z}")
        if position.manhattan_to(dest) > nav.goto_max_distance:
            return ActionResult.done(False, f"goto {dest}: too far ({position.manhattan_to(dest)} cells)")

        level_change = self.classifier.is_hazardous(dest)
        if waypoint.precision is not None:
            precision = waypoint.precision
        else:
            precision = 0 if level_change else nav.default_precision

        # Re-armed on every tick of the approach
        if level_change:
            expected = self._next_level(index, position.z)
            self.floor_guard.mark_intentional_transition(expected, position.z, now)

        result = self.executor.walk_to(
            position,
            dest,
            nav.goto_max_distance,
            WalkParams(precision=precision, allow_floor_change=level_change),
        )
        if result.status == WalkStatus.ARRIVED:
            return ActionResult.done(True)
        if result.status == WalkStatus.IN_PROGRESS:
            return ActionResult.retry()

        if result.failure != NavFailure.MOVE_REJECTED:
            self.engine.record_failure()
        return ActionResult.retry(result.message)

    def _next_level(self, index: int, z: int) -> Optional[int]:
        """Level of the next goto waypoint if it differs from `z`."""
        for i, waypoint in goto_waypoints(self.waypoints):
            if i > index:
                return waypoint.position.z if waypoint.position.z != z else None
        return None

    def _handle_result(self, result: ActionResult) -> None:
        if result.is_retry:
            self.retries += 1
            if self.retries > self.config.navigation.retry_failure_threshold:
                self.engine.record_failure()
            return

        if result.success:
            self.stats.waypoints_completed += 1
            self.engine.record_success()
        else:
            self.stats.waypoints_failed += 1
            self.engine.record_failure()
            for message in result.messages:
                logger.debug(f"agent: {message}")
        self._advance_focus()

    def _advance_focus(self) -> None:
        count = self.waypoints.count()
        if count:
            self.waypoints.focus((self.waypoints.focused_index() + 1) % count)
        self._focus_changed()

    def _focus_changed(self) -> None:
        self.executor.reset()
        self.retries = 0
        self._retry_index = self.waypoints.focused_index()

    def detect_startup_waypoint(self, position: Position) -> None:
        """
        Pick a sensible waypoint to start from.

        Keeps the focused waypoint when it is on this level and within
        goto_max_distance; otherwise focuses the nearest goto on this level
        within twice, then three times, that distance.
        """
        self._startup_done = True
        limit = self.config.navigation.goto_max_distance

        current = try_parse_goto(self.waypoints.text_at(self.waypoints.focused_index()))
        if current is None:
            return
        if current.position.z == position.z and position.distance_to(current.position) <= limit:
            return

        same_level = [
            (position.distance_to(wp.position), i)
            for i, wp in goto_waypoints(self.waypoints)
            if wp.position.z == position.z
        ]
        for factor in STARTUP_RANGES:
            in_range = [item for item in same_level if item[0] <= limit * factor]
            if in_range:
                _, index = min(in_range)
                logger.info(f"agent: startup, focusing nearest waypoint {index}")
                self.waypoints.focus(index)
                self._focus_changed()
                return
        logger.warning(f"agent: startup, no waypoint near {position}")

    # ==================== Floor guard events ====================

    def _on_intended_transition(self, old: Position, new: Position) -> None:
        self.stats.intended_transitions += 1
        if self.engine.is_stopped:
            return
        index = self.waypoints.focused_index()
        waypoint = try_parse_goto(self.waypoints.text_at(index)) if self.waypoints.count() else None
        if waypoint is not None and waypoint.position.z == old.z:
            logger.info(f"agent: level-change waypoint {index} done")
            self.stats.waypoints_completed += 1
            self.engine.record_success()
            self._advance_focus()

    def _on_accidental_transition(self, old: Position, new: Position, looped: bool) -> None:
        self.stats.accidental_transitions += 1
        if not looped or self.waypoints.count() == 0 or self.engine.is_stopped:
            return
        index = self.waypoints.focused_index()
        until = self._event_time + self.config.floor_guard.snooze_duration
        self._snoozed[index] = until
        self.stats.snoozes += 1
        logger.warning(f"agent: floor oscillation {old.z} <-> {new.z}, snoozing waypoint {index}")
        self._advance_focus()
        self.engine.reset()

    # ==================== Reset ====================

    def reset(self) -> None:
        """Routine reset: cursor and engine counters. Caches, intent and step-back counters survive."""
        self.executor.reset()
        self.engine.reset()
        self.floor_guard.reset(full=False)
        self.retries = 0

    def full_reset(self) -> None:
        self.reset()
        self.floor_guard.reset(full=True)
        self._snoozed.clear()
        self._startup_done = not self.config.agent.startup_search
        self._last_position = None
        self._last_tick = None


def create_agent(
    world: GridWorld,
    waypoints: Optional[WaypointList] = None,
    config: Optional[Config] = None,
    **collaborators,
) -> NavigationAgent:
    """Create an agent driving a simulated world, by default along the world's own waypoints."""
    if waypoints is None:
        waypoints = InMemoryWaypointList(world.waypoints)
    return NavigationAgent(world, world, waypoints, config, **collaborators)
