"""
Short-lived cache of computed paths.

Keyed by destination: the agent moves continuously while the destination of
a walk stays fixed, so origin drift is checked when reading instead of
being part of the key.
"""

import logging
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Callable, Optional

from ..config import PathCacheConfig
from .models import Direction, Position
from .pathfinding import PathOptions

logger = logging.getLogger(__name__)


@dataclass
class PathCacheEntry:
    """A cached path, the origin it was computed from and the tier that found it."""

    destination: Position
    steps: list[Direction]
    origin: Position
    created_at: float
    last_access: float
    options: Optional[PathOptions] = None


class PathCache:
    """TTL and displacement bounded path cache with LRU eviction."""

    def __init__(
        self,
        config: Optional[PathCacheConfig] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.config = config or PathCacheConfig()
        self._clock = clock
        self._entries: OrderedDict[Position, PathCacheEntry] = OrderedDict()
        self.hits = 0
        self.misses = 0

    def get(self, origin: Position, dest: Position) -> Optional[PathCacheEntry]:
        """
        Get the cached entry for `dest` if still usable from `origin`.

        Entries that are too old, or whose recorded origin has drifted too
        far from `origin`, are dropped and reported as a miss.
        """
        entry = self._entries.get(dest)
        if entry is None:
            self.misses += 1
            return None

        now = self._clock()
        if now - entry.created_at > self.config.ttl or not self._origin_matches(entry.origin, origin):
            del self._entries[dest]
            self.misses += 1
            return None

        entry.last_access = now
        self._entries.move_to_end(dest)
        self.hits += 1
        return entry

    def get_steps(self, origin: Position, dest: Position) -> Optional[list[Direction]]:
        entry = self.get(origin, dest)
        return list(entry.steps) if entry else None

    def put(
        self,
        origin: Position,
        dest: Position,
        steps: list[Direction],
        options: Optional[PathOptions] = None,
    ) -> None:
        now = self._clock()
        if dest in self._entries:
            del self._entries[dest]
        while len(self._entries) >= self.config.max_entries:
            evicted, _ = self._entries.popitem(last=False)
            logger.debug(f"path_cache: evicted path to {evicted}")
        self._entries[dest] = PathCacheEntry(
            destination=dest,
            steps=list(steps),
            origin=origin,
            created_at=now,
            last_access=now,
            options=options,
        )

    def invalidate(self, dest: Position) -> bool:
        return self._entries.pop(dest, None) is not None

    def invalidate_floor(self, z: int) -> int:
        """Drop every path that ends on level `z`."""
        stale = [dest for dest in self._entries if dest.z == z]
        for dest in stale:
            del self._entries[dest]
        return len(stale)

    def clear(self) -> None:
        self._entries.clear()

    def stats(self) -> dict[str, float]:
        total = self.hits + self.misses
        return {
            "size": len(self._entries),
            "hits": self.hits,
            "misses": self.misses,
            "hit_rate": self.hits / total if total else 0.0,
        }

    def __len__(self) -> int:
        return len(self._entries)

    def _origin_matches(self, recorded: Position, current: Position) -> bool:
        tolerance = self.config.origin_tolerance
        return (
            recorded.z == current.z
            and abs(recorded.x - current.x) <= tolerance
            and abs(recorded.y - current.y) <= tolerance
        )
