"""Waypoint engine, recovery ladder and the per-agent tick driver."""

from .agent import AgentStats, NavigationAgent, create_agent
from .engine import ALLOWED_TRANSITIONS, EngineState, EngineStateError, WaypointEngine
from .recovery import WaypointLocator
from .waypoints import (
    GotoWaypoint,
    InMemoryWaypointList,
    WaypointFormatError,
    format_goto,
    goto_waypoints,
    is_goto,
    parse_goto,
    try_parse_goto,
)

__all__ = [
    # Waypoints
    "GotoWaypoint",
    "InMemoryWaypointList",
    "WaypointFormatError",
    "format_goto",
    "goto_waypoints",
    "is_goto",
    "parse_goto",
    "try_parse_goto",
    # Recovery
    "WaypointLocator",
    # Engine
    "ALLOWED_TRANSITIONS",
    "EngineState",
    "EngineStateError",
    "WaypointEngine",
    # Agent
    "AgentStats",
    "NavigationAgent",
    "create_agent",
]
