"""Per-agent navigation memory: floor transition tracking and progress samples."""

from .floor_guard import (
    FloorGuard,
    FloorGuardState,
    FloorIntent,
    FloorTransitionRecord,
    TransitionHistory,
    TransitionVerdict,
)
from .progress import ProgressBuffer, ProgressSample

__all__ = [
    # Floor Guard
    "FloorGuard",
    "FloorGuardState",
    "FloorIntent",
    "FloorTransitionRecord",
    "TransitionHistory",
    "TransitionVerdict",
    # Progress
    "ProgressBuffer",
    "ProgressSample",
]
