"""Shared fixtures."""

import pytest


class FakeClock:
    """Manually advanced clock (seconds)."""

    def __init__(self, start: float = 100.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


def open_level(width=20, height=20, features=None, origin=(95, 95)):
    """
    ASCII art for a walled rectangle of floor.

    `features` maps world (x, y) to a map character, e.g. {(102, 100): "#"}.
    """
    rows = [["."] * width for _ in range(height)]
    for x in range(width):
        rows[0][x] = "#"
        rows[-1][x] = "#"
    for y in range(height):
        rows[y][0] = "#"
        rows[y][-1] = "#"
    for (x, y), char in (features or {}).items():
        rows[y - origin[1]][x - origin[0]] = char
    return "\n".join("".join(row) for row in rows)


@pytest.fixture
def level_art():
    return open_level
