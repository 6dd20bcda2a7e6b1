"""
Tile safety classification.

Decides whether a cell is walkable, occupied, a damaging field, or a
hazard that drops the agent onto another level. The cheap coarse signal
(the transition layer of the minimap) is checked before the tile's ground
and item stack are matched against the hazard catalog. Verdicts are
memoized per cell for a short TTL.

Unresolvable cells (not loaded or never visible) classify as not hazardous
and not walkable: planning refuses to cross them, but they are never
reported as a transition.
"""

import logging
import time
from typing import Callable, Optional

from ..config import ClassifierConfig
from .hazards import is_field_item, is_transition_item
from .interfaces import MapQuery
from .models import CoarseSignal, Position, TileClassification

logger = logging.getLogger(__name__)


def _zigzag(n: int) -> int:
    return 2 * n if n >= 0 else -2 * n - 1


def _pair(a: int, b: int) -> int:
    return (a + b) * (a + b + 1) // 2 + b


def encode_position(pos: Position) -> int:
    """
    Pack a position into one integer key.

    Zigzag maps each coordinate onto the non-negative integers and Cantor
    pairing folds the three of them into one, so every position, negative
    or arbitrarily large, gets its own key.
    """
    return _pair(_pair(_zigzag(pos.x), _zigzag(pos.y)), _zigzag(pos.z))


class TileSafetyClassifier:
    """
    Memoizing tile classifier.

    Example usage:
        classifier = TileSafetyClassifier(world)
        if classifier.is_near_hazard(pos):
            ...
    """

    def __init__(
        self,
        map_query: MapQuery,
        config: Optional[ClassifierConfig] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.map_query = map_query
        self.config = config or ClassifierConfig()
        self._clock = clock
        self._cache: dict[int, TileClassification] = {}
        self._last_cleanup = clock()
        self.hits = 0
        self.misses = 0

    def classify(self, pos: Position) -> TileClassification:
        """Classify a cell, reusing the memoized verdict while it is fresh."""
        now = self._clock()
        self._maybe_cleanup(now)

        key = encode_position(pos)
        cached = self._cache.get(key)
        if cached is not None and now - cached.classified_at < self.config.cache_ttl:
            self.hits += 1
            return cached

        self.misses += 1
        result = self._inspect(pos, now)
        if len(self._cache) >= self.config.max_entries:
            self._prune(now, force=True)
        self._cache[key] = result
        return result

    def is_hazardous(self, pos: Position) -> bool:
        return self.classify(pos).hazardous

    def is_near_hazard(self, pos: Position) -> bool:
        """True if the cell or any of its 8 neighbours is a transition hazard."""
        if self.is_hazardous(pos):
            return True
        return any(self.is_hazardous(neighbor) for neighbor in pos.adjacent())

    def is_safe_stand(self, pos: Position) -> bool:
        """Walkable, unoccupied and not a hazard: somewhere to stop."""
        result = self.classify(pos)
        return result.walkable and not result.hazardous and not result.occupied

    def on_floor_change(self) -> None:
        """Forget every verdict; the world around us has changed."""
        logger.debug(f"classifier: floor change, dropping {len(self._cache)} entries")
        self._cache.clear()

    def clear(self) -> None:
        self._cache.clear()

    def __len__(self) -> int:
        return len(self._cache)

    def _inspect(self, pos: Position, now: float) -> TileClassification:
        hazardous = self.map_query.get_coarse_hazard_signal(pos) == CoarseSignal.TRANSITION
        tile = self.map_query.get_tile(pos)

        if tile is None:
            return TileClassification(
                walkable=False,
                hazardous=hazardous,
                occupied=False,
                classified_at=now,
                seen=False,
            )

        # Slow path: ground and item stack against the catalog
        if not hazardous:
            hazardous = is_transition_item(tile.ground_id) or any(
                is_transition_item(item_id) for item_id in tile.occupant_ids
            )

        field = is_field_item(tile.ground_id) or any(is_field_item(item_id) for item_id in tile.occupant_ids)

        return TileClassification(
            walkable=tile.walkable,
            hazardous=hazardous,
            occupied=tile.has_occupant,
            classified_at=now,
            field=field,
            seen=tile.seen,
        )

    def _maybe_cleanup(self, now: float) -> None:
        if now - self._last_cleanup >= self.config.cleanup_interval:
            self._prune(now)

    def _prune(self, now: float, force: bool = False) -> None:
        ttl = self.config.cache_ttl
        expired = [key for key, entry in self._cache.items() if now - entry.classified_at >= ttl]
        for key in expired:
            del self._cache[key]
        # Still full of fresh entries: drop the oldest half
        if force and len(self._cache) >= self.config.max_entries:
            ordered = sorted(self._cache.items(), key=lambda item: item[1].classified_at)
            for key, _ in ordered[: len(ordered) // 2 or 1]:
                del self._cache[key]
        self._last_cleanup = now
        if expired:
            logger.debug(f"classifier: pruned {len(expired)} expired entries")
