"""
Command-line interface for the navigation engine.

Usage:
    cavenav simulate maps/example.yaml        Run the agent on a simulated map
    cavenav simulate maps/example.yaml --laps 2 --max-ticks 5000
    cavenav parse "goto:100,100,7"             Check a waypoint string
"""

import argparse
import logging
import sys

from rich.console import Console
from rich.table import Table

from cavenav.agent.agent import create_agent
from cavenav.agent.waypoints import WaypointFormatError, parse_goto
from cavenav.api.environment import load_world
from cavenav.config import load_config, setup_logging

logger = logging.getLogger(__name__)

console = Console()


class SimulatedClock:
    """Deterministic clock advanced by the simulation loop."""

    def __init__(self, start: float = 0.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class ConsoleLifecycle:
    """Prints the stop signal instead of disabling a real bot."""

    def __init__(self):
        self.stopped = False

    def report_unrecoverable(self) -> None:
        self.stopped = True
        console.print("[bold red]Navigation stopped: unable to recover[/bold red]")


def cmd_simulate(args: argparse.Namespace) -> int:
    """Drive the agent through a YAML map until it finishes its laps or stops."""
    config = args.config_obj
    world = load_world(args.map)
    if not world.waypoints:
        console.print(f"[red]{args.map} has no waypoints[/red]")
        return 1

    clock = SimulatedClock()
    lifecycle = ConsoleLifecycle()
    agent = create_agent(world, config=config, lifecycle=lifecycle, clock=clock)

    tick_interval = config.agent.tick_interval
    target = args.laps * len(world.waypoints)
    walked = 0.0
    ticks = 0

    while ticks < args.max_ticks and not agent.is_stopped:
        agent.tick(world.position)
        ticks += 1
        if agent.stats.waypoints_completed >= target:
            break

        clock.advance(tick_interval)
        walked += tick_interval
        while walked >= world.step_duration:
            world.advance()
            walked -= world.step_duration

    _print_summary(agent, world, ticks, clock.now)
    if agent.is_stopped:
        return 2
    return 0 if agent.stats.waypoints_completed >= target else 1


def _print_summary(agent, world, ticks: int, elapsed: float) -> None:
    table = Table(title="Simulation summary")
    table.add_column("Metric", style="cyan")
    table.add_column("Value", justify="right")

    stats = agent.stats
    cache = agent.path_cache.stats()
    rows = [
        ("Ticks", str(ticks)),
        ("Simulated time", f"{elapsed:.1f}s"),
        ("Final position", str(world.position)),
        ("Engine state", agent.engine.state.value),
        ("Waypoints completed", str(stats.waypoints_completed)),
        ("Waypoints failed", str(stats.waypoints_failed)),
        ("Intended level changes", str(stats.intended_transitions)),
        ("Accidental level changes", str(stats.accidental_transitions)),
        ("Snoozed waypoints", str(stats.snoozes)),
        ("Moves issued", str(world.moves_issued)),
        ("Path cache hit rate", f"{cache['hit_rate']:.0%} ({cache['hits']}/{cache['hits'] + cache['misses']})"),
    ]
    for name, value in rows:
        table.add_row(name, value)
    console.print(table)


def cmd_parse(args: argparse.Namespace) -> int:
    """Parse a goto waypoint and echo it back."""
    try:
        waypoint = parse_goto(args.text)
    except WaypointFormatError as e:
        console.print(f"[red]{e}[/red]")
        return 1

    pos = waypoint.position
    precision = "default" if waypoint.precision is None else str(waypoint.precision)
    console.print(f"x={pos.x} y={pos.y} z={pos.z} precision={precision}")
    console.print(str(waypoint))
    return 0


def main() -> int:
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="cavenav - waypoint navigation and recovery engine",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "--config",
        "-c",
        type=str,
        default=None,
        help="Path to configuration file",
    )
    parser.add_argument(
        "--log-level",
        "-l",
        type=str,
        default=None,
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Log level override",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # simulate command
    simulate_parser = subparsers.add_parser("simulate", help="Run the agent on a simulated map")
    simulate_parser.add_argument("map", type=str, help="Path to a YAML map file")
    simulate_parser.add_argument(
        "--laps",
        type=int,
        default=1,
        help="Number of times to walk the full waypoint list",
    )
    simulate_parser.add_argument(
        "--max-ticks",
        type=int,
        default=10000,
        help="Stop after this many ticks",
    )
    simulate_parser.set_defaults(func=cmd_simulate)

    # parse command
    parse_parser = subparsers.add_parser("parse", help="Parse a goto waypoint")
    parse_parser.add_argument("text", type=str, help="Waypoint text, e.g. goto:100,100,7")
    parse_parser.set_defaults(func=cmd_parse)

    args = parser.parse_args()

    # Load config and set up logging
    config = load_config(args.config)
    if args.log_level:
        config.logging.level = args.log_level
    setup_logging(config.logging)
    args.config_obj = config

    if args.command is None:
        parser.print_help()
        return 1

    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
