"""
Floor transition guard.

Watches every position change and reconciles level changes against the
current floor intent. Intended transitions are accepted and reported so the
level-change waypoint is not triggered again. Accidental ones trigger a
bounded step-back toward the last safe position, unless stepping back would
start an A -> B -> A loop, in which case the new level is accepted.
"""

import logging
import time
from collections import deque
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Iterator, Optional

from ..api.classifier import TileSafetyClassifier
from ..api.interfaces import MovementPrimitive
from ..api.models import MoveOptions, Position
from ..api.pathfinding import PathOptions, PathPlanner
from ..config import FloorGuardConfig

logger = logging.getLogger(__name__)


class FloorGuardState(Enum):
    UNKNOWN = "unknown"
    TRACKING = "tracking"
    STEPPING_BACK = "stepping_back"


class TransitionVerdict(Enum):
    """What observe() made of a position change."""

    SAME_LEVEL = "same_level"
    INTENDED = "intended"
    RECOVERED = "recovered"  # step-back brought us home
    STEPPING_BACK = "stepping_back"
    ACCEPTED = "accepted"  # accidental, new level taken as baseline
    LOOP_ACCEPTED = "loop_accepted"


@dataclass
class FloorIntent:
    """A level change the caller is about to cause on purpose."""

    active: bool = False
    expected_floor: Optional[int] = None  # None: any nearby level
    source_floor: Optional[int] = None
    timestamp: float = 0.0
    timeout: float = 5.0

    def expired(self, now: float) -> bool:
        return now - self.timestamp > self.timeout


@dataclass(frozen=True)
class FloorTransitionRecord:
    from_z: int
    to_z: int
    timestamp: float


class TransitionHistory:
    """Ring-bounded record of recent level changes."""

    def __init__(self, capacity: int = 8):
        self._records: deque[FloorTransitionRecord] = deque(maxlen=capacity)

    def record(self, from_z: int, to_z: int, now: float) -> FloorTransitionRecord:
        entry = FloorTransitionRecord(from_z, to_z, now)
        self._records.append(entry)
        return entry

    def has_recent(self, from_z: int, to_z: int, now: float, window: float) -> bool:
        return any(
            r.from_z == from_z and r.to_z == to_z and now - r.timestamp <= window
            for r in self._records
        )

    def clear(self) -> None:
        self._records.clear()

    def __iter__(self) -> Iterator[FloorTransitionRecord]:
        return iter(self._records)

    def __len__(self) -> int:
        return len(self._records)


class FloorGuard:
    """
    Intent tracking and step-back recovery for level changes.

    Example usage:
        guard = FloorGuard(classifier, planner, world)
        guard.mark_intentional_transition(8, source_level=7)
        verdict = guard.observe(old_pos, new_pos)
    """

    def __init__(
        self,
        classifier: TileSafetyClassifier,
        planner: PathPlanner,
        movement: MovementPrimitive,
        config: Optional[FloorGuardConfig] = None,
        clock: Callable[[], float] = time.monotonic,
        on_intended_transition: Optional[Callable[[Position, Position], None]] = None,
        on_accidental_transition: Optional[Callable[[Position, Position, bool], None]] = None,
    ):
        self.classifier = classifier
        self.planner = planner
        self.movement = movement
        self.config = config or FloorGuardConfig()
        self._clock = clock
        self.on_intended_transition = on_intended_transition
        self.on_accidental_transition = on_accidental_transition

        self.state = FloorGuardState.UNKNOWN
        self.intent = FloorIntent(timeout=self.config.intent_timeout)
        self.history = TransitionHistory(self.config.history_capacity)
        self.last_safe_position: Optional[Position] = None
        self.step_back_attempts = 0
        self._last_step_back: Optional[float] = None
        self._step_back_started = 0.0

    # ==================== Intent ====================

    def mark_intentional_transition(
        self,
        expected_level: Optional[int],
        source_level: Optional[int] = None,
        now: Optional[float] = None,
    ) -> None:
        now = self._clock() if now is None else now
        self.intent = FloorIntent(
            active=True,
            expected_floor=expected_level,
            source_floor=source_level,
            timestamp=now,
            timeout=self.config.intent_timeout,
        )
        logger.debug(f"floor_guard: intent armed {source_level} -> {expected_level}")

    def is_transition_intentional(self, observed_level: int, now: Optional[float] = None) -> bool:
        """
        Whether a change to `observed_level` matches the armed intent.

        Matches exactly, or (when direction matching is enabled) moves the same
        way as intended and lands within `direction_tolerance` levels of the
        expected one. An intent without an expected level accepts any level
        within the tolerance of the source.
        """
        now = self._clock() if now is None else now
        intent = self.intent
        if not intent.active:
            return False
        if intent.expired(now):
            logger.debug("floor_guard: intent expired")
            self.clear_intent()
            return False

        tolerance = self.config.direction_tolerance
        source = intent.source_floor
        expected = intent.expected_floor

        if expected is None:
            return source is None or (observed_level != source and abs(observed_level - source) <= tolerance)
        if observed_level == expected:
            return True
        if not self.config.allow_direction_match or source is None:
            return False
        same_direction = (observed_level - source) * (expected - source) > 0
        return same_direction and abs(observed_level - expected) <= tolerance

    def clear_intent(self) -> None:
        self.intent = FloorIntent(timeout=self.config.intent_timeout)

    # ==================== Observation ====================

    def observe(self, old: Position, new: Position, now: Optional[float] = None) -> TransitionVerdict:
        """Reconcile one position change against intent and history."""
        now = self._clock() if now is None else now

        if old.z == new.z:
            self._observe_same_level(new, now)
            return TransitionVerdict.SAME_LEVEL

        self.classifier.on_floor_change()

        if (
            self.state == FloorGuardState.STEPPING_BACK
            and self.last_safe_position is not None
            and new.z == self.last_safe_position.z
        ):
            self.history.record(old.z, new.z, now)
            self.state = FloorGuardState.TRACKING
            logger.info(f"floor_guard: stepped back to level {new.z}")
            return TransitionVerdict.RECOVERED

        if self.is_transition_intentional(new.z, now):
            self.clear_intent()
            self.history.record(old.z, new.z, now)
            self._accept(new)
            self.step_back_attempts = 0
            logger.info(f"floor_guard: intended level change {old.z} -> {new.z}")
            if self.on_intended_transition is not None:
                self.on_intended_transition(old, new)
            return TransitionVerdict.INTENDED

        looped = self.history.has_recent(new.z, old.z, now, self.config.loop_window)
        self.history.record(old.z, new.z, now)
        logger.warning(f"floor_guard: accidental level change {old.z} -> {new.z} at {new}")
        if self.on_accidental_transition is not None:
            self.on_accidental_transition(old, new, looped)

        if looped:
            logger.warning(f"floor_guard: {old.z} <-> {new.z} loop, staying on level {new.z}")
            self._accept(new)
            return TransitionVerdict.LOOP_ACCEPTED
        if self.last_safe_position is None:
            self._accept(new)
            return TransitionVerdict.ACCEPTED
        if self.step_back_attempts >= self.config.max_step_back_attempts:
            logger.warning(f"floor_guard: {self.step_back_attempts} step-backs already, accepting {new}")
            self._accept(new)
            return TransitionVerdict.ACCEPTED
        if self._last_step_back is not None and now - self._last_step_back < self.config.step_back_cooldown:
            self._accept(new)
            return TransitionVerdict.ACCEPTED

        if self._step_back(new, now):
            return TransitionVerdict.STEPPING_BACK
        self._accept(new)
        return TransitionVerdict.ACCEPTED

    def poll(self, current: Position, now: Optional[float] = None) -> None:
        """Give up on a step-back that is taking too long."""
        now = self._clock() if now is None else now
        if self.state != FloorGuardState.STEPPING_BACK:
            return
        if now - self._step_back_started > self.config.step_back_timeout:
            logger.warning(f"floor_guard: step-back timed out, accepting {current}")
            self._accept(current)

    def reset(self, full: bool = False) -> None:
        """
        Reset tracking state.

        A routine reset only abandons an ongoing step-back. A full reset also
        clears intent, counters, history and the safe position.
        """
        if self.state == FloorGuardState.STEPPING_BACK:
            self.state = FloorGuardState.TRACKING
        if not full:
            return
        self.clear_intent()
        self.history.clear()
        self.last_safe_position = None
        self.step_back_attempts = 0
        self._last_step_back = None
        self.state = FloorGuardState.UNKNOWN

    def _observe_same_level(self, new: Position, now: float) -> None:
        if self.state == FloorGuardState.STEPPING_BACK:
            if new == self.last_safe_position:
                self.state = FloorGuardState.TRACKING
            else:
                self.poll(new, now)
            return

        if not self.classifier.is_near_hazard(new):
            self.last_safe_position = new
            self.step_back_attempts = 0
            if self.state == FloorGuardState.UNKNOWN:
                self.state = FloorGuardState.TRACKING

    def _accept(self, pos: Position) -> None:
        self.last_safe_position = pos
        self.state = FloorGuardState.TRACKING

    def _step_back(self, current: Position, now: float) -> bool:
        target = self.last_safe_position
        limit = self.config.step_back_distance
        if current.distance_to(target) > limit:
            logger.debug(f"floor_guard: {target} is too far to step back to")
            return False

        if current.z == target.z:
            if not self.planner.find_path(current, target, limit, PathOptions(ignore_occupants=True)):
                return False
            options = MoveOptions(precision=0, ignore_occupants=True)
        else:
            # The planner cannot route across levels; the host can
            options = MoveOptions(precision=0, allow_floor_change=True)

        if not self.movement.issue_multi_step_move(target, limit, options):
            return False

        self.step_back_attempts += 1
        self._last_step_back = now
        self._step_back_started = now
        self.state = FloorGuardState.STEPPING_BACK
        logger.warning(f"floor_guard: stepping back to {target} (attempt {self.step_back_attempts})")
        return True
