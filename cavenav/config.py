"""Configuration management for the navigation engine."""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

import yaml

logger = logging.getLogger(__name__)


@dataclass
class ClassifierConfig:
    """Tile safety classifier settings. Times are in seconds."""

    cache_ttl: float = 2.0
    cleanup_interval: float = 5.0
    max_entries: int = 8192


@dataclass
class PathCacheConfig:
    """Path cache settings."""

    ttl: float = 2.0
    max_entries: int = 64
    # Max origin drift (cells, per axis) before a cached path is discarded
    origin_tolerance: int = 2


@dataclass
class PlannerConfig:
    """Path planner settings."""

    node_budget: int = 500
    time_budget: float = 0.005  # 5 ms per search
    straight_line_threshold: int = 5
    diagonal: bool = True
    max_distance: int = 50


@dataclass
class NavigationConfig:
    """walk_to and goto settings."""

    default_precision: int = 1
    max_chunk: int = 10
    # Cells re-checked for hazards ahead of each chunk
    validate_steps: int = 12
    cursor_ttl: float = 0.8
    # Extra steps a substitute path may take beyond the straight line
    substitute_search_distance: int = 10
    goto_max_distance: int = 50
    max_retries: int = 50
    # Retries of one waypoint after which each retry counts as a failure
    retry_failure_threshold: int = 20


@dataclass
class FloorGuardConfig:
    """Floor transition guard settings."""

    intent_timeout: float = 5.0
    # Accept a transition in the expected direction within this many levels
    allow_direction_match: bool = True
    direction_tolerance: int = 1
    history_capacity: int = 8
    loop_window: float = 5.0
    step_back_cooldown: float = 2.0
    max_step_back_attempts: int = 3
    step_back_distance: int = 10
    step_back_timeout: float = 5.0
    snooze_duration: float = 8.0


@dataclass
class EngineConfig:
    """Stuck detection and recovery settings."""

    stuck_threshold: int = 8
    no_progress_failures: int = 3
    stuck_timeout: float = 5.0
    stuck_grace: float = 3.0
    movement_threshold: int = 3
    progress_window: float = 15.0
    progress_capacity: int = 16
    sample_interval: float = 1.0
    recovery_timeout: float = 25.0
    # Candidates probed with the planner per recovery strategy
    max_probe_candidates: int = 10
    probe_node_budget: int = 200


@dataclass
class AgentConfig:
    """Tick driver settings."""

    tick_interval: float = 0.1
    # Ticks closer together than this are dropped (scheduler jitter)
    min_tick_interval: float = 0.05
    startup_search: bool = True


@dataclass
class LoggingConfig:
    """Logging configuration."""

    level: str = "INFO"
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    file: Optional[str] = None


@dataclass
class Config:
    """Main configuration container."""

    classifier: ClassifierConfig = field(default_factory=ClassifierConfig)
    path_cache: PathCacheConfig = field(default_factory=PathCacheConfig)
    planner: PlannerConfig = field(default_factory=PlannerConfig)
    navigation: NavigationConfig = field(default_factory=NavigationConfig)
    floor_guard: FloorGuardConfig = field(default_factory=FloorGuardConfig)
    engine: EngineConfig = field(default_factory=EngineConfig)
    agent: AgentConfig = field(default_factory=AgentConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


_SECTIONS = {
    "classifier": ClassifierConfig,
    "path_cache": PathCacheConfig,
    "planner": PlannerConfig,
    "navigation": NavigationConfig,
    "floor_guard": FloorGuardConfig,
    "engine": EngineConfig,
    "agent": AgentConfig,
    "logging": LoggingConfig,
}


def load_config(config_path: Optional[str] = None) -> Config:
    """
    Load configuration from YAML file with environment variable overrides.

    Args:
        config_path: Path to config file. Defaults to config/default.yaml

    Returns:
        Populated Config dataclass
    """
    if config_path is None:
        # Look for config in standard locations
        candidates = [
            Path("config/default.yaml"),
            Path(__file__).parent.parent / "config" / "default.yaml",
        ]
        for candidate in candidates:
            if candidate.exists():
                config_path = str(candidate)
                break

    config = Config()

    if config_path and Path(config_path).exists():
        with open(config_path) as f:
            data = yaml.safe_load(f)

        if data:
            for name, section_cls in _SECTIONS.items():
                if name in data and data[name]:
                    setattr(config, name, section_cls(**data[name]))

    # Environment variable overrides
    if os.environ.get("CAVENAV_LOG_LEVEL"):
        config.logging.level = os.environ["CAVENAV_LOG_LEVEL"]
    if os.environ.get("CAVENAV_NODE_BUDGET"):
        config.planner.node_budget = int(os.environ["CAVENAV_NODE_BUDGET"])
    if os.environ.get("CAVENAV_TICK_INTERVAL"):
        config.agent.tick_interval = float(os.environ["CAVENAV_TICK_INTERVAL"])
    if os.environ.get("CAVENAV_GOTO_MAX_DISTANCE"):
        config.navigation.goto_max_distance = int(os.environ["CAVENAV_GOTO_MAX_DISTANCE"])

    return config


def setup_logging(config: LoggingConfig) -> None:
    """
    Configure logging based on configuration.

    Args:
        config: Logging configuration
    """
    level = getattr(logging, config.level.upper(), logging.INFO)

    handlers: list[logging.Handler] = [logging.StreamHandler()]

    if config.file:
        # Ensure log directory exists
        log_path = Path(config.file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(config.file))

    logging.basicConfig(
        level=level,
        format=config.format,
        handlers=handlers,
        force=True,
    )

    logger.info(f"Logging configured at level {config.level}")
