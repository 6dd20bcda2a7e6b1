"""Tests for the bounded path planner."""

from cavenav.api.classifier import TileSafetyClassifier
from cavenav.api.environment import GridWorld
from cavenav.api.models import Direction, Position
from cavenav.api.pathfinding import (
    PathOptions,
    PathPlanner,
    PathStopReason,
    manhattan,
    octile,
    permissiveness_tiers,
)
from cavenav.config import PlannerConfig

START = Position(100, 100, 7)


def make_planner(art, start=START, origin=(95, 95), **config):
    world = GridWorld.from_ascii({7: art}, start, origin=origin)
    classifier = TileSafetyClassifier(world)
    config.setdefault("time_budget", 1.0)
    return world, PathPlanner(classifier, PlannerConfig(**config))


def corridor(middle):
    """Three-cell corridor at (1..3, 1) with `middle` at (2, 1)."""
    return f"#####\n#.{middle}.#\n#####"


class TestHeuristics:
    """Tests for the distance heuristics and tiers."""

    def test_octile(self):
        """Test octile adds 0.41 per diagonal cell."""
        assert octile(Position(0, 0, 7), Position(3, 1, 7)) == 3.41
        assert octile(Position(0, 0, 7), Position(4, 0, 7)) == 4

    def test_manhattan(self):
        """Test manhattan sums both axes."""
        assert manhattan(Position(0, 0, 7), Position(3, 1, 7)) == 4

    def test_permissiveness_tiers(self):
        """Test tiers relax occupants, then fields, then unseen cells."""
        tiers = permissiveness_tiers(PathOptions(precision=1))
        assert len(tiers) == 4
        assert tiers[0] == PathOptions(precision=1)
        assert tiers[1].ignore_occupants and not tiers[1].ignore_fields
        assert tiers[2].ignore_fields and not tiers[2].allow_unseen
        assert tiers[3].allow_unseen
        assert all(t.precision == 1 for t in tiers)

    def test_permissiveness_tiers_deduplicated(self):
        """Test tiers equal to an earlier one are dropped."""
        tiers = permissiveness_tiers(PathOptions(ignore_occupants=True))
        assert len(tiers) == 3


class TestPathPlanner:
    """Tests for PathPlanner.find_path."""

    def test_straight_line_shortcut(self, level_art):
        """Test a short clear hop is five east steps via the shortcut."""
        _, planner = make_planner(level_art())
        result = planner.find_path(START, Position(105, 100, 7))

        assert result.reason == PathStopReason.SUCCESS
        assert result.used_shortcut
        assert result.path == [Direction.E] * 5
        assert result
        assert len(result) == 5

    def test_shortcut_goes_diagonal_first(self, level_art):
        """Test the shortcut closes the minor axis with diagonal steps."""
        _, planner = make_planner(level_art())
        result = planner.find_path(START, Position(103, 102, 7))
        assert result.used_shortcut
        assert result.path == [Direction.SE, Direction.SE, Direction.E]

    def test_detour_around_wall(self, level_art):
        """Test A* takes over when the direct line is blocked."""
        wall = Position(102, 100, 7)
        _, planner = make_planner(level_art(features={(wall.x, wall.y): "#"}))
        dest = Position(105, 100, 7)
        result = planner.find_path(START, dest)

        assert result.success
        assert not result.used_shortcut
        cells = START.walk(result.path)
        assert wall not in cells
        assert cells[-1] == dest
        assert result.nodes_expanded > 0

    def test_avoids_hazards(self, level_art):
        """Test stairs on the direct line are walked around."""
        stairs = Position(102, 100, 7)
        _, planner = make_planner(level_art(features={(stairs.x, stairs.y): ">"}))
        result = planner.find_path(START, Position(105, 100, 7))
        assert result.success
        assert stairs not in START.walk(result.path)

    def test_hazardous_goal_allowed_when_asked(self, level_art):
        """Test allow_hazardous_goal lets the path end on stairs."""
        stairs = Position(105, 100, 7)
        _, planner = make_planner(level_art(features={(stairs.x, stairs.y): ">"}))

        assert planner.find_path(START, stairs).reason == PathStopReason.TARGET_UNWALKABLE
        result = planner.find_path(START, stairs, options=PathOptions(allow_hazardous_goal=True))
        assert result.success
        assert START.walk(result.path)[-1] == stairs

    def test_hazardous_goal_does_not_open_other_hazards(self, level_art):
        """Test a hole on the way to the stairs is still walked around."""
        hole = Position(102, 100, 7)
        stairs = Position(105, 100, 7)
        _, planner = make_planner(level_art(features={(hole.x, hole.y): "O", (stairs.x, stairs.y): ">"}))

        result = planner.find_path(START, stairs, options=PathOptions(allow_hazardous_goal=True))

        assert result.success
        assert not result.used_shortcut
        cells = START.walk(result.path)
        assert hole not in cells
        assert cells[-1] == stairs

    def test_precision(self, level_art):
        """Test the path stops once within precision of the destination."""
        _, planner = make_planner(level_art())
        result = planner.find_path(START, Position(105, 100, 7), options=PathOptions(precision=1))
        assert result.path == [Direction.E] * 4

    def test_level_mismatch(self, level_art):
        """Test positions on different levels are refused."""
        _, planner = make_planner(level_art())
        assert planner.find_path(START, Position(105, 100, 8)).reason == PathStopReason.LEVEL_MISMATCH

    def test_already_at_target(self, level_art):
        """Test being within precision returns an empty successful-looking result."""
        _, planner = make_planner(level_art())
        result = planner.find_path(START, Position(101, 100, 7), options=PathOptions(precision=1))
        assert result.reason == PathStopReason.ALREADY_AT_TARGET
        assert result.path == []
        assert not result

    def test_too_far(self, level_art):
        """Test destinations beyond max_distance are refused."""
        _, planner = make_planner(level_art())
        assert planner.find_path(START, Position(110, 100, 7), max_distance=3).reason == PathStopReason.TOO_FAR

    def test_target_unwalkable(self, level_art):
        """Test a wall destination is refused at precision 0."""
        _, planner = make_planner(level_art(features={(105, 100): "#"}))
        assert planner.find_path(START, Position(105, 100, 7)).reason == PathStopReason.TARGET_UNWALKABLE

    def test_occupied_cell_blocks(self):
        """Test a monster in a one-wide corridor blocks unless occupants are ignored."""
        start = Position(1, 1, 7)
        _, planner = make_planner(corridor("m"), start=start, origin=(0, 0))
        dest = Position(3, 1, 7)

        assert planner.find_path(start, dest).reason == PathStopReason.NO_PATH_EXISTS
        result = planner.find_path(start, dest, options=PathOptions(ignore_occupants=True))
        assert result.path == [Direction.E, Direction.E]

    def test_occupied_goal_is_enterable(self):
        """Test the destination itself may hold a creature."""
        start = Position(1, 1, 7)
        _, planner = make_planner("#####\n#..m#\n#####", start=start, origin=(0, 0))
        assert planner.find_path(start, Position(3, 1, 7)).success

    def test_field_blocks(self):
        """Test a fire field is only crossed with ignore_fields."""
        start = Position(1, 1, 7)
        _, planner = make_planner(corridor("f"), start=start, origin=(0, 0))
        dest = Position(3, 1, 7)
        assert not planner.find_path(start, dest)
        assert planner.find_path(start, dest, options=PathOptions(ignore_fields=True))

    def test_unseen_blocks(self):
        """Test never-seen cells are only crossed with allow_unseen."""
        start = Position(1, 1, 7)
        _, planner = make_planner(corridor("?"), start=start, origin=(0, 0))
        dest = Position(3, 1, 7)
        assert not planner.find_path(start, dest)
        assert planner.find_path(start, dest, options=PathOptions(allow_unseen=True))

    def test_node_budget(self, level_art):
        """Test running out of nodes is reported, not retried."""
        _, planner = make_planner(level_art(features={(102, 100): "#"}))
        result = planner.find_path(START, Position(105, 100, 7), options=PathOptions(node_budget=1))
        assert result.reason == PathStopReason.SEARCH_BUDGET_EXCEEDED
        assert not result

    def test_time_budget(self, level_art):
        """Test a search past its deadline stops with SEARCH_BUDGET_EXCEEDED."""
        wall = {(102, y): "#" for y in range(96, 113)}
        world = GridWorld.from_ascii({7: level_art(features=wall)}, START, origin=(95, 95))
        ticks = iter(range(0, 1000))
        planner = PathPlanner(
            TileSafetyClassifier(world),
            PlannerConfig(time_budget=0.5),
            clock=lambda: float(next(ticks)),
        )
        result = planner.find_path(START, Position(105, 100, 7))
        assert result.reason == PathStopReason.SEARCH_BUDGET_EXCEEDED

    def test_cardinal_only(self, level_art):
        """Test diagonal=False plans with cardinal steps only."""
        _, planner = make_planner(level_art(), diagonal=False)
        result = planner.find_path(START, Position(108, 108, 7))
        assert result.success
        assert not any(step.is_diagonal for step in result.path)
        assert START.walk(result.path)[-1] == Position(108, 108, 7)

    def test_search_bounded_by_max_distance(self, level_art):
        """Test the search never leaves the max_distance box around the start."""
        # Wall across the level except a gap far to the south
        features = {(103, y): "#" for y in range(96, 112)}
        _, planner = make_planner(level_art(features=features))
        dest = Position(105, 100, 7)

        assert planner.find_path(START, dest, max_distance=6).reason == PathStopReason.NO_PATH_EXISTS
        assert planner.find_path(START, dest, max_distance=20).success
