"""Training configuration and JSON config loading."""

import json
import logging
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, Optional

from ..domain.types import GridConfig, QLearningConfig, SchedulerConfig

logger = logging.getLogger(__name__)


@dataclass
class OutputConfig:
    """Where and what the trainer writes."""
    log_dir: Optional[str] = None  # transitions.csv; disabled when None
    timing_enabled: bool = False
    timing_report_interval_seconds: float = 10.0
    timing_dir: str = "."
    checkpoint_dir: Optional[str] = None
    checkpoint_every_episodes: int = 200


@dataclass
class TrainingConfig:
    """Complete configuration of one training run."""
    qlearning: QLearningConfig = field(default_factory=QLearningConfig)
    scheduler: SchedulerConfig = field(default_factory=SchedulerConfig)
    environment: GridConfig = field(default_factory=GridConfig)
    output: OutputConfig = field(default_factory=OutputConfig)


_SECTIONS = ("qlearning", "scheduler", "environment", "output")

# Fields stored as (x, z) tuples
_COORD_FIELDS = {"fixed_start", "fixed_goal"}


def update_config(config: Any, **kwargs) -> Any:
    """Update known attributes of a config dataclass; unknown keys are logged and skipped."""
    known = {f.name for f in fields(config)}
    for key, value in kwargs.items():
        if key not in known:
            logger.warning("Ignoring unknown %s option %r", type(config).__name__, key)
            continue
        if key in _COORD_FIELDS and value is not None:
            value = tuple(int(v) for v in value)
        setattr(config, key, value)
    return config


def config_from_dict(data: Dict[str, Any]) -> TrainingConfig:
    """Build a TrainingConfig from a nested dict with optional sections."""
    config = TrainingConfig()
    for section, values in data.items():
        if section not in _SECTIONS:
            logger.warning("Ignoring unknown config section %r", section)
            continue
        if not isinstance(values, dict):
            raise ValueError(f"Config section {section!r} must be an object, got {type(values).__name__}")
        update_config(getattr(config, section), **values)
    return config


def load_config(path: str) -> TrainingConfig:
    """
    Load a JSON config file.

    Raises:
        FileNotFoundError: If the file does not exist
        ValueError: If the file is not a JSON object of sections
    """
    with open(Path(path), "r") as f:
        data = json.load(f)
    if not isinstance(data, dict):
        raise ValueError(f"Config file {path} must contain a JSON object")
    return config_from_dict(data)
