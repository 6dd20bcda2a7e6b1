"""
Stuck detection and recovery state machine.

    NORMAL -> STUCK -> RECOVERING -> STOPPED
    STUCK -> NORMAL, RECOVERING -> NORMAL

Only the edges in `ALLOWED_TRANSITIONS` may be taken; `reset()` is the one
way back to NORMAL from anywhere. STOPPED is terminal: the lifecycle sink is
told once and the engine stays inert until reset.
"""

import logging
import time
from enum import Enum
from typing import Callable, Optional

from ..api.interfaces import LifecycleSink
from ..api.models import NavFailure, Position
from ..config import EngineConfig
from ..memory.progress import ProgressBuffer
from .recovery import WaypointLocator

logger = logging.getLogger(__name__)


class EngineState(Enum):
    NORMAL = "normal"
    STUCK = "stuck"
    RECOVERING = "recovering"
    STOPPED = "stopped"


ALLOWED_TRANSITIONS: dict[EngineState, frozenset[EngineState]] = {
    EngineState.NORMAL: frozenset({EngineState.STUCK}),
    EngineState.STUCK: frozenset({EngineState.NORMAL, EngineState.RECOVERING}),
    EngineState.RECOVERING: frozenset({EngineState.NORMAL, EngineState.STOPPED}),
    EngineState.STOPPED: frozenset(),
}


class EngineStateError(RuntimeError):
    """Raised on a state change that is not an allowed edge."""


class WaypointEngine:
    """
    Resilience state machine driving the recovery ladder.

    Example usage:
        engine = WaypointEngine(locator, lifecycle=sink)
        engine.record_failure()
        if engine.tick(here):
            return  # engine is handling this tick
    """

    def __init__(
        self,
        locator: WaypointLocator,
        config: Optional[EngineConfig] = None,
        lifecycle: Optional[LifecycleSink] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.locator = locator
        self.config = config or EngineConfig()
        self.lifecycle = lifecycle
        self._clock = clock

        self.progress = ProgressBuffer(self.config.progress_capacity, self.config.sample_interval)
        self.state = EngineState.NORMAL
        self.failure_count = 0
        self.recovery_attempt = 0
        self.stuck_since = 0.0
        self.recovery_started = 0.0
        self.last_failure: Optional[NavFailure] = None
        self._reported = False

    @property
    def is_stopped(self) -> bool:
        return self.state == EngineState.STOPPED

    def record_failure(self) -> None:
        self.failure_count += 1

    def record_success(self) -> None:
        """A waypoint completed: counters clear and any stuck/recovery episode ends."""
        self.failure_count = 0
        if self.state in (EngineState.STUCK, EngineState.RECOVERING):
            self._transition(EngineState.NORMAL, self._clock())

    def sample(self, position: Position, waypoint_id: Optional[int], now: Optional[float] = None) -> None:
        now = self._clock() if now is None else now
        self.progress.sample(position, waypoint_id, now)

    def has_progress(self, now: float) -> bool:
        return self.progress.has_progress(now, self.config.progress_window, self.config.movement_threshold)

    def tick(self, current: Position, now: Optional[float] = None) -> bool:
        """
        Advance the state machine by one tick.

        Returns:
            True if the engine handled this tick (recovering or stopped) and
            the focused waypoint must not run.
        """
        now = self._clock() if now is None else now

        if self.state == EngineState.NORMAL:
            if self.failure_count >= self.config.stuck_threshold:
                self._transition(EngineState.STUCK, now, NavFailure.NO_PROGRESS)
            elif self.failure_count >= self.config.no_progress_failures and not self.has_progress(now):
                self._transition(EngineState.STUCK, now, NavFailure.NO_PROGRESS)
            return False

        if self.state == EngineState.STUCK:
            stuck_for = now - self.stuck_since
            if stuck_for < self.config.stuck_grace:
                return False
            if self.has_progress(now) and self.failure_count < self.config.no_progress_failures:
                self._transition(EngineState.NORMAL, now)
                return False
            if stuck_for >= self.config.stuck_timeout:
                self._transition(EngineState.RECOVERING, now)
            return False

        if self.state == EngineState.RECOVERING:
            if now - self.recovery_started >= self.config.recovery_timeout:
                logger.warning(f"engine: recovery timed out after {now - self.recovery_started:.1f}s")
                self._transition(EngineState.STOPPED, now, NavFailure.RECOVERY_EXHAUSTED)
                return True
            if self.locator.run(self.recovery_attempt, current):
                self._transition(EngineState.NORMAL, now)
                return True
            self.recovery_attempt += 1
            if self.recovery_attempt >= len(self.locator.strategies):
                logger.warning("engine: every recovery strategy failed")
                self._transition(EngineState.STOPPED, now, NavFailure.RECOVERY_EXHAUSTED)
            return True

        return True

    def reset(self) -> None:
        if self.state != EngineState.NORMAL:
            logger.info(f"engine: reset from {self.state.value}")
        self.state = EngineState.NORMAL
        self.failure_count = 0
        self.recovery_attempt = 0
        self.last_failure = None
        self.progress.clear()
        self._reported = False

    def _transition(self, target: EngineState, now: float, failure: Optional[NavFailure] = None) -> None:
        if target not in ALLOWED_TRANSITIONS[self.state]:
            raise EngineStateError(f"Illegal engine transition {self.state.value} -> {target.value}")

        logger.info(f"engine: {self.state.value} -> {target.value} (failures={self.failure_count})")
        self.state = target
        if failure is not None:
            self.last_failure = failure

        if target == EngineState.STUCK:
            self.stuck_since = now
        elif target == EngineState.RECOVERING:
            self.recovery_started = now
            self.recovery_attempt = 0
        elif target == EngineState.NORMAL:
            self.failure_count = 0
            self.recovery_attempt = 0
            self.last_failure = None
            self.progress.clear()
        elif target == EngineState.STOPPED and not self._reported:
            self._reported = True
            logger.warning("engine: unable to recover, stopping")
            if self.lifecycle is not None:
                self.lifecycle.report_unrecoverable()
