"""Tests for the per-agent tick driver."""

from unittest.mock import MagicMock

import pytest

from cavenav.agent.agent import NavigationAgent, create_agent
from cavenav.agent.engine import EngineState
from cavenav.agent.waypoints import InMemoryWaypointList
from cavenav.api.environment import GridWorld
from cavenav.api.models import ActionResult, Position
from cavenav.config import Config, PlannerConfig
from cavenav.memory.floor_guard import FloorGuardState

START = Position(100, 100, 7)


class TestNavigationAgent:
    """Tests for NavigationAgent."""

    @pytest.fixture(autouse=True)
    def bind_fixtures(self, clock, level_art):
        self.clock = clock
        self.level_art = level_art

    def build(self, waypoints, levels=None, start=START, config=None, **collaborators):
        if levels is None:
            levels = {7: self.level_art()}
        self.world = GridWorld.from_ascii(levels, start, origin=(95, 95), waypoints=waypoints)
        config = config or Config(planner=PlannerConfig(time_budget=1.0))
        self.agent = create_agent(self.world, config=config, clock=self.clock, **collaborators)
        return self.agent

    def run(self, ticks, until=None):
        """Alternate agent ticks and world steps until `until()` holds."""
        for _ in range(ticks):
            self.agent.tick(self.world.position)
            if until is not None and until():
                return True
            self.clock.advance(0.2)
            self.world.advance()
        return until() if until is not None else True

    # ==================== Ticking ====================

    def test_create_agent_uses_world_waypoints(self):
        """Test create_agent wires the world as map and movement."""
        agent = self.build(["goto:105,100,7"])
        assert isinstance(agent, NavigationAgent)
        assert agent.waypoints.count() == 1
        assert agent.movement is self.world

    def test_ticks_too_close_are_skipped(self):
        """Test a tick arriving before min_tick_interval is dropped."""
        agent = self.build(["goto:105,100,7"])
        agent.tick(START)
        self.clock.advance(0.01)
        assert agent.tick(START) is None
        assert agent.stats.skipped_ticks == 1
        assert agent.stats.ticks == 1

    def test_empty_waypoint_list(self):
        """Test an empty list does nothing."""
        agent = self.build([])
        assert agent.tick(START) is None
        assert self.world.moves_issued == 0

    def test_goto_reaches_waypoint(self):
        """Test the agent walks to a goto and moves on to the next waypoint."""
        agent = self.build(["goto:105,100,7", "goto:100,100,7"])

        assert self.run(40, until=lambda: agent.stats.waypoints_completed >= 1)

        assert agent.waypoints.focused_index() == 1
        assert self.world.position.distance_to(Position(105, 100, 7)) <= 1

    def test_laps(self):
        """Test the agent cycles through the list."""
        agent = self.build(["goto:105,100,7", "goto:100,104,7"])
        assert self.run(200, until=lambda: agent.stats.waypoints_completed >= 4)
        assert agent.stats.waypoints_failed == 0

    # ==================== Goto failures ====================

    def test_goto_other_level_fails(self):
        """Test a goto on another level finishes unsuccessfully."""
        config = Config(planner=PlannerConfig(time_budget=1.0))
        config.agent.startup_search = False
        agent = self.build(["goto:105,100,8", "goto:100,100,7"], config=config)
        result = agent.tick(START)
        assert result.finished
        assert not result.success
        assert agent.stats.waypoints_failed == 1
        assert agent.waypoints.focused_index() == 1

    def test_goto_too_far_fails(self):
        """Test a goto beyond goto_max_distance finishes unsuccessfully."""
        config = Config(planner=PlannerConfig(time_budget=1.0))
        config.agent.startup_search = False
        agent = self.build(["goto:190,100,7"], config=config)
        result = agent.tick(START)
        assert result.finished and not result.success

    def test_unreachable_goto_counts_failures(self):
        """Test a blocked goto retries and feeds the engine's failure count."""
        features = {(105 + dx, 100 + dy): "#" for dx in (-2, -1, 0, 1, 2) for dy in (-2, -1, 0, 1, 2)}
        features[(105, 100)] = "."
        agent = self.build(["goto:105,100,7,0"], levels={7: self.level_art(features=features)})

        result = agent.tick(START)

        assert result.is_retry
        assert agent.engine.failure_count == 1
        assert agent.retries == 1

    def test_invalid_goto(self):
        """Test a malformed goto finishes unsuccessfully."""
        agent = self.build(["goto:nowhere", "goto:100,100,7"])
        result = agent.tick(START)
        assert result.finished and not result.success

    # ==================== Actions ====================

    def test_action_without_handler_skipped(self):
        """Test non-goto waypoints are skipped without an action handler."""
        agent = self.build(["say:hello", "goto:100,100,7"])
        result = agent.tick(START)
        assert result.success
        assert agent.waypoints.focused_index() == 1

    def test_action_handler_retries(self):
        """Test repeated retries start counting as failures past the threshold."""
        handler = MagicMock()
        handler.run.return_value = ActionResult.retry()
        config = Config(planner=PlannerConfig(time_budget=1.0))
        config.navigation.retry_failure_threshold = 2
        agent = self.build(["use:lever", "goto:100,100,7"], config=config, action_handler=handler)

        for _ in range(4):
            agent.tick(START)
            self.clock.advance(0.2)

        assert [c.args for c in handler.run.call_args_list] == [("use:lever", n) for n in range(4)]
        assert agent.retries == 4
        assert agent.engine.failure_count == 2

    def test_action_handler_failure(self):
        """Test a failed action records a failure and moves on."""
        handler = MagicMock()
        handler.run.return_value = ActionResult.done(False, "lever is stuck")
        agent = self.build(["use:lever", "goto:100,100,7"], action_handler=handler)

        agent.tick(START)

        assert agent.engine.failure_count == 1
        assert agent.stats.waypoints_failed == 1
        assert agent.waypoints.focused_index() == 1

    # ==================== Startup ====================

    def test_startup_picks_nearest(self):
        """Test a far-away focused waypoint is swapped for the nearest one on this level."""
        agent = self.build(["goto:180,100,7", "goto:101,100,7", "goto:110,100,7"])
        agent.tick(START)
        # Focused 1, which is already within precision and completes at once
        assert agent.stats.waypoints_completed == 1
        assert agent.waypoints.focused_index() == 2

    def test_startup_keeps_close_waypoint(self):
        """Test a focused waypoint within reach is kept."""
        agent = self.build(["goto:110,100,7", "goto:101,100,7"])
        agent.tick(START)
        assert agent.waypoints.focused_index() == 0

    # ==================== Level changes ====================

    def test_level_change_waypoint(self):
        """Test walking onto stairs counts as the intended level change."""
        levels = {7: self.level_art(features={(105, 100): ">"}), 8: self.level_art()}
        agent = self.build(["goto:105,100,7", "goto:108,100,8"], levels=levels)

        assert self.run(40, until=lambda: agent.stats.intended_transitions == 1)

        assert self.world.position.z == 8
        assert agent.floor_guard.last_safe_position.z == 8
        assert agent.stats.accidental_transitions == 0
        assert agent.waypoints.focused_index() == 1

    def test_fall_through_hole_steps_back(self):
        """Test an accidental drop is undone by climbing back up."""
        levels = {7: self.level_art(features={(103, 100): "O"}), 8: self.level_art(features={(106, 100): "<"})}
        agent = self.build([], levels=levels)
        agent.tick(START)
        assert agent.floor_guard.last_safe_position == START

        self.world.teleport(Position(103, 100, 8))
        self.clock.advance(0.2)
        agent.tick(self.world.position)
        assert agent.floor_guard.state == FloorGuardState.STEPPING_BACK
        assert agent.stats.accidental_transitions == 1

        self.world.advance(5)
        assert self.world.position.z == 7
        self.clock.advance(0.2)
        agent.tick(self.world.position)
        assert agent.floor_guard.state == FloorGuardState.TRACKING
        assert agent.stats.accidental_transitions == 1

    def test_floor_oscillation_snoozes_waypoint(self):
        """Test bouncing between two levels snoozes the focused waypoint."""
        agent = self.build(["goto:100,100,7", "goto:101,100,7", "goto:102,100,7"])
        # Waypoint 0 is done on the spot, 1 becomes focused
        agent.tick(START)
        assert agent.waypoints.focused_index() == 1
        below = Position(100, 100, 8)

        self.clock.advance(3.0)
        agent.on_position_change(START, below)
        self.clock.advance(0.5)
        agent.on_position_change(below, START)
        assert agent.stats.snoozes == 0

        self.clock.advance(2.5)
        agent.on_position_change(START, below)

        assert agent.stats.accidental_transitions == 2
        assert agent.stats.snoozes == 1
        assert agent.waypoints.focused_index() == 2
        assert agent.floor_guard.last_safe_position == below

    def test_level_change_invalidates_paths(self):
        """Test leaving a level drops its cached paths and the cursor."""
        agent = self.build(["goto:110,100,7"])
        agent.tick(START)
        assert len(agent.path_cache) == 1

        agent.on_position_change(START, Position(100, 100, 8))
        assert len(agent.path_cache) == 0
        assert agent.executor.cursor is None

    # ==================== Engine ====================

    def test_engine_stops_on_hopeless_route(self):
        """Test the lifecycle sink hears about an agent that cannot recover."""
        lifecycle = MagicMock()
        features = {(105 + dx, 100 + dy): "#" for dx in (-1, 0, 1) for dy in (-1, 0, 1) if dx or dy}
        agent = self.build(["goto:105,100,7,0"], levels={7: self.level_art(features=features)}, lifecycle=lifecycle)

        for _ in range(200):
            agent.tick(self.world.position)
            if agent.is_stopped:
                break
            self.clock.advance(0.5)

        assert agent.engine.state == EngineState.STOPPED
        lifecycle.report_unrecoverable.assert_called_once()

    def test_stopped_agent_ignores_level_changes(self):
        """Test a stopped agent neither steps back nor snoozes its way out of STOPPED."""
        lifecycle = MagicMock()
        features = {(105 + dx, 100 + dy): "#" for dx in (-1, 0, 1) for dy in (-1, 0, 1) if dx or dy}
        agent = self.build(["goto:105,100,7,0"], levels={7: self.level_art(features=features)}, lifecycle=lifecycle)
        for _ in range(200):
            agent.tick(self.world.position)
            if agent.is_stopped:
                break
            self.clock.advance(0.5)
        assert agent.is_stopped

        here = self.world.position
        below = Position(here.x, here.y, 8)
        moves = self.world.moves_issued
        for old, new in ((here, below), (below, here), (here, below)):
            self.clock.advance(0.5)
            agent.on_position_change(old, new)
        self.clock.advance(0.5)
        agent.tick(below)

        assert self.world.moves_issued == moves
        assert agent.engine.state == EngineState.STOPPED
        assert agent.stats.accidental_transitions == 0
        assert agent.stats.snoozes == 0
        lifecycle.report_unrecoverable.assert_called_once()

    def test_reset(self):
        """Test a routine reset keeps intent, a full reset drops it."""
        agent = self.build(["goto:105,100,7"])
        agent.floor_guard.mark_intentional_transition(8, 7)
        agent.reset()
        assert agent.floor_guard.intent.active
        agent.full_reset()
        assert not agent.floor_guard.intent.active
