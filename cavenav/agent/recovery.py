"""
Recovery ladder: ways to find a waypoint the agent can actually reach.

Strategies run in order, one per engine tick. Each returns True after moving
the waypoint focus somewhere useful, False to let the engine try the next
one. Reachability is checked with a cheap planner probe (small node budget)
rather than a full search.
"""

import logging
from typing import Callable, Optional

from ..api.interfaces import WaypointList
from ..api.models import Position
from ..api.pathfinding import PathOptions, PathPlanner, PathStopReason
from ..config import EngineConfig, NavigationConfig
from .waypoints import GotoWaypoint, goto_waypoints, try_parse_goto

logger = logging.getLogger(__name__)

MAX_BLOCK_SKIP = 5


class WaypointLocator:
    """
    The six recovery strategies over a waypoint list.

    Example usage:
        locator = WaypointLocator(waypoints, planner)
        for attempt in range(len(locator.strategies)):
            if locator.run(attempt, here):
                break
    """

    def __init__(
        self,
        waypoints: WaypointList,
        planner: PathPlanner,
        engine_config: Optional[EngineConfig] = None,
        navigation_config: Optional[NavigationConfig] = None,
    ):
        self.waypoints = waypoints
        self.planner = planner
        self.engine_config = engine_config or EngineConfig()
        self.navigation_config = navigation_config or NavigationConfig()
        self.strategies: list[tuple[str, Callable[[Position], bool]]] = [
            ("forward", self.nearest_forward),
            ("backward", self.nearest_backward),
            ("nearest on level", self.nearest_on_level),
            ("nearest on adjacent levels", self.nearest_on_adjacent_levels),
            ("skip waypoint", self.skip_current),
            ("skip block", self.skip_block),
        ]

    def run(self, attempt: int, current: Position) -> bool:
        """Run strategy number `attempt` (0-based)."""
        name, strategy = self.strategies[attempt]
        found = strategy(current)
        if found:
            logger.info(f"recovery: '{name}' focused waypoint {self.waypoints.focused_index()}")
        else:
            logger.debug(f"recovery: '{name}' found nothing")
        return found

    # ==================== Searches ====================

    def nearest_forward(self, current: Position) -> bool:
        start = self.waypoints.focused_index()
        candidates = [(i, wp) for i, wp in goto_waypoints(self.waypoints) if i > start]
        return self._focus_first_reachable(current, candidates)

    def nearest_backward(self, current: Position) -> bool:
        start = self.waypoints.focused_index()
        candidates = [(i, wp) for i, wp in reversed(goto_waypoints(self.waypoints)) if i < start]
        return self._focus_first_reachable(current, candidates)

    def nearest_on_level(self, current: Position) -> bool:
        candidates = [
            (i, wp) for i, wp in goto_waypoints(self.waypoints)
            if wp.position.z == current.z
        ]
        candidates.sort(key=lambda item: current.distance_to(item[1].position))
        return self._focus_first_reachable(current, candidates)

    def nearest_on_adjacent_levels(self, current: Position) -> bool:
        """
        Waypoints one level up or down, reached through the waypoint just before them.

        That preceding waypoint has to be on the current level and reachable;
        it is the one that leads to the level change.
        """
        candidates = [
            (i, wp) for i, wp in goto_waypoints(self.waypoints)
            if abs(wp.position.z - current.z) == 1 and i > 0
        ]
        candidates.sort(key=lambda item: current.distance_to(item[1].position))

        probes = 0
        for index, _ in candidates:
            gateway = try_parse_goto(self.waypoints.text_at(index - 1))
            if gateway is None or gateway.position.z != current.z:
                continue
            if probes >= self.engine_config.max_probe_candidates:
                break
            probes += 1
            if self._reachable(current, gateway, allow_hazardous_goal=True):
                self.waypoints.focus(index - 1)
                return True
        return False

    # ==================== Skips ====================

    def skip_current(self, current: Position) -> bool:
        count = self.waypoints.count()
        if count < 2:
            return False
        index = self.waypoints.focused_index()
        self.waypoints.focus((index + 1) % count)
        return True

    def skip_block(self, current: Position) -> bool:
        count = self.waypoints.count()
        skip = min(MAX_BLOCK_SKIP, count // 4)
        if skip < 1 or count <= skip:
            return False
        index = self.waypoints.focused_index()
        self.waypoints.focus((index + skip) % count)
        logger.warning(f"recovery: skipping {skip} waypoints")
        return True

    def _focus_first_reachable(self, current: Position, candidates: list[tuple[int, GotoWaypoint]]) -> bool:
        limit = self.navigation_config.goto_max_distance
        probes = 0
        for index, waypoint in candidates:
            if waypoint.position.z != current.z or current.distance_to(waypoint.position) > limit:
                continue
            if probes >= self.engine_config.max_probe_candidates:
                break
            probes += 1
            if self._reachable(current, waypoint):
                self.waypoints.focus(index)
                return True
        return False

    def _reachable(self, current: Position, waypoint: GotoWaypoint, allow_hazardous_goal: bool = False) -> bool:
        precision = waypoint.precision if waypoint.precision is not None else self.navigation_config.default_precision
        options = PathOptions(
            ignore_occupants=True,
            allow_hazardous_goal=allow_hazardous_goal,
            precision=precision,
            node_budget=self.engine_config.probe_node_budget,
        )
        result = self.planner.find_path(
            current, waypoint.position, self.navigation_config.goto_max_distance, options
        )
        return bool(result) or result.reason == PathStopReason.ALREADY_AT_TARGET
