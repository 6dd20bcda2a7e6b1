"""
Hazard catalog for tile classification.

Maps ground and item identifiers to the kind of level transition they
trigger (stairs, ramps, holes...) and to damaging fields. Only module-level
frozensets, built once at import time.
"""

from enum import Enum


class HazardKind(Enum):
    """Kinds of tiles that move the agent to another level."""

    STAIRS = "stairs"
    RAMP = "ramp"
    LADDER = "ladder"
    ROPE_SPOT = "rope_spot"
    HOLE = "hole"
    TRAPDOOR = "trapdoor"
    SEWER_GRATE = "sewer_grate"
    PORTAL = "portal"


# Minimap colours used by the client for stairs, ramps and holes
TRANSITION_COLORS = frozenset({210, 211, 212, 213})

_STAIRS = frozenset({
    414, 415, 416, 417, 428, 429, 430, 431, 432, 433, 434, 435,  # stone
    1949, 1950, 1951, 1952, 1953, 1954, 1955,  # wooden
})
_RAMPS = frozenset({
    1956, 1957, 1958, 1959,
    1385, 1396, 1397, 1398, 1399, 1400, 1401, 1402,  # stone/cave
    4834, 4835, 4836, 4837, 4838, 4839, 4840, 4841,  # terrain
    6915, 6916, 6917, 6918,  # ice
    7545, 7546, 7547, 7548,  # desert/jungle
})
_LADDERS = frozenset({1219, 1386, 3678, 5543})
_ROPE_SPOTS = frozenset({384, 386, 418})
_HOLES = frozenset({294, 369, 370, 383, 392, 408, 409, 410, 469, 470, 482, 484})
_TRAPDOORS = frozenset({423, 424, 425})
_SEWER_GRATES = frozenset({426, 427})
_PORTALS = frozenset({502, 1387, 8709})

_KIND_BY_ID: dict[int, HazardKind] = {}
for _kind, _ids in (
    (HazardKind.STAIRS, _STAIRS),
    (HazardKind.RAMP, _RAMPS),
    (HazardKind.LADDER, _LADDERS),
    (HazardKind.ROPE_SPOT, _ROPE_SPOTS),
    (HazardKind.HOLE, _HOLES),
    (HazardKind.TRAPDOOR, _TRAPDOORS),
    (HazardKind.SEWER_GRATE, _SEWER_GRATES),
    (HazardKind.PORTAL, _PORTALS),
):
    for _item_id in _ids:
        _KIND_BY_ID[_item_id] = _kind

TRANSITION_ITEMS = frozenset(_KIND_BY_ID)

# Damaging fields. Walkable, but only crossed when the caller opts in.
FIELD_ITEMS = frozenset({
    # fire
    1487, 1488, 1489, 1490, 1491, 1492, 1493, 1494, 1495, 1496, 1497,
    1498, 1499, 1500, 1501, 1502, 1503, 1504, 1505, 1506,
    2120, 2121, 2122, 2123, 2124, 2125, 2126, 2127,
    # energy
    7487, 7488, 7489, 7490, 8069, 8070, 8071, 8072,
    # poison
    7465, 7466, 7467, 7468,
    # magic wall
    2128, 2129, 2130, 7491, 7492, 7493, 7494,
    # wild growth
    2131,
})


def hazard_kind(item_id: int | None) -> HazardKind | None:
    """Get the transition kind for a ground/item id, or None if harmless."""
    if item_id is None:
        return None
    return _KIND_BY_ID.get(item_id)


def is_transition_item(item_id: int | None) -> bool:
    return item_id is not None and item_id in TRANSITION_ITEMS


def is_field_item(item_id: int | None) -> bool:
    return item_id is not None and item_id in FIELD_ITEMS


def is_transition_color(color: int) -> bool:
    return color in TRANSITION_COLORS
