"""
Progress sampling for stuck detection.

A fixed-capacity ring of position samples, taken at most once per
`sample_interval`. Progress over a window is judged from the samples alone,
never by replaying full history.
"""

from collections import deque
from dataclasses import dataclass
from typing import Optional

from ..api.models import Position


@dataclass(frozen=True)
class ProgressSample:
    """Where the agent was, and which waypoint it was working on."""

    timestamp: float
    position: Position
    waypoint_id: Optional[int] = None


class ProgressBuffer:
    """
    Circular buffer of progress samples.

    Example usage:
        buffer = ProgressBuffer(capacity=16, sample_interval=1.0)
        buffer.sample(pos, waypoint_id=3, now=now)
        if not buffer.has_progress(now, window=15.0, threshold=3):
            ...
    """

    def __init__(self, capacity: int = 16, sample_interval: float = 1.0):
        self.capacity = capacity
        self.sample_interval = sample_interval
        self._samples: deque[ProgressSample] = deque(maxlen=capacity)

    def sample(self, position: Position, waypoint_id: Optional[int], now: float) -> bool:
        """Record a sample unless the previous one is too recent. Returns True if recorded."""
        if self._samples and now - self._samples[-1].timestamp < self.sample_interval:
            return False
        self._samples.append(ProgressSample(now, position, waypoint_id))
        return True

    def window(self, now: float, window: float) -> list[ProgressSample]:
        return [s for s in self._samples if now - s.timestamp <= window]

    def displacement(self, now: float, window: float) -> Optional[int]:
        """
        Largest distance between the latest sample and any other sample in the window.

        Returns None when there are fewer than two samples, or when the
        samples span several levels (a level change always counts as movement).
        """
        samples = self.window(now, window)
        if len(samples) < 2:
            return None
        latest = samples[-1].position
        if any(s.position.z != latest.z for s in samples):
            return None
        return max(latest.distance_to(s.position) for s in samples)

    def has_progress(self, now: float, window: float, threshold: int) -> bool:
        """False only when the window shows the agent pinned within `threshold` cells."""
        samples = self.window(now, window)
        if len(samples) < 2:
            return True
        moved = self.displacement(now, window)
        return moved is None or moved >= threshold

    @property
    def latest(self) -> Optional[ProgressSample]:
        return self._samples[-1] if self._samples else None

    def clear(self) -> None:
        self._samples.clear()

    def __len__(self) -> int:
        return len(self._samples)
