"""Core type definitions for the tick-driven Q-learning trainer."""

import logging
import math
from dataclasses import dataclass, field, replace
from enum import IntEnum
from typing import Optional, Tuple, Literal, Dict, Sequence

logger = logging.getLogger(__name__)

# Coordinate type for arena positions (x, z)
Coord = Tuple[int, int]

# Cell kinds for the arena grid
CellKind = Literal["empty", "wall", "hazard"]

# Number of direction signs leading every observation (dx, dz)
DIRECTION_FEATURES = 2

# Number of obstruction bits (N, S, E, W)
BLOCKED_FEATURES = 4


class MalformedObservationError(ValueError):
    """Raised when an observation is too short for its layout."""


class Action(IntEnum):
    """Actions the agent can take. The value is the Q-table column."""
    MOVE_NORTH = 0
    MOVE_SOUTH = 1
    MOVE_EAST = 2
    MOVE_WEST = 3
    STAY = 4

    @property
    def is_move(self) -> bool:
        return self is not Action.STAY


# Directional actions in fallback priority order
MOVE_ACTIONS: Tuple[Action, ...] = (
    Action.MOVE_NORTH, Action.MOVE_SOUTH, Action.MOVE_EAST, Action.MOVE_WEST
)

ACTION_COUNT = len(Action)

# Index into the blocked bits for each directional action
BLOCKED_INDEX: Dict[Action, int] = {
    Action.MOVE_NORTH: 0,
    Action.MOVE_SOUTH: 1,
    Action.MOVE_EAST: 2,
    Action.MOVE_WEST: 3,
}

ACTION_DELTAS: Dict[Action, Coord] = {
    Action.MOVE_NORTH: (0, -1),
    Action.MOVE_SOUTH: (0, 1),
    Action.MOVE_EAST: (1, 0),
    Action.MOVE_WEST: (-1, 0),
    Action.STAY: (0, 0),
}


@dataclass(frozen=True)
class ObservationLayout:
    """Which optional feature groups an observation carries.

    Layout of the feature vector:
        dx sign, dz sign, [dy sign], normalized distance, [blocked N, S, E, W], ...
    """
    has_vertical: bool = True
    has_blocked: bool = True

    @property
    def distance_index(self) -> int:
        return DIRECTION_FEATURES + (1 if self.has_vertical else 0)

    @property
    def blocked_index(self) -> int:
        return self.distance_index + 1

    @property
    def min_length(self) -> int:
        return self.blocked_index + (BLOCKED_FEATURES if self.has_blocked else 0)

    @classmethod
    def infer(cls, length: int) -> "ObservationLayout":
        """Guess the layout from a feature count.

        Only used for observations built without an explicit layout.
        """
        if length >= 8:
            return cls(has_vertical=True, has_blocked=True)
        if length >= 4:
            return cls(has_vertical=True, has_blocked=False)
        if length == 3:
            return cls(has_vertical=False, has_blocked=False)
        raise MalformedObservationError(
            f"Observation needs at least 3 features (dx, dz, distance), got {length}"
        )


PLANAR_LAYOUT = ObservationLayout(has_vertical=False, has_blocked=False)
FULL_LAYOUT = ObservationLayout(has_vertical=True, has_blocked=True)


@dataclass(frozen=True)
class Observation:
    """Immutable feature vector describing the agent/goal relationship."""
    features: Tuple[float, ...]
    layout: Optional[ObservationLayout] = None

    def __post_init__(self):
        object.__setattr__(self, "features", tuple(float(f) for f in self.features))
        if self.layout is not None and len(self.features) < self.layout.min_length:
            raise MalformedObservationError(
                f"Observation layout {self.layout} needs {self.layout.min_length} "
                f"features, got {len(self.features)}"
            )

    def __len__(self) -> int:
        return len(self.features)

    def resolved_layout(self) -> ObservationLayout:
        """Return the explicit layout, or infer one from the feature count."""
        if self.layout is not None:
            return self.layout
        return ObservationLayout.infer(len(self.features))

    def blocked(self) -> Optional[Tuple[bool, bool, bool, bool]]:
        """Return the N/S/E/W obstruction bits, or None if not carried."""
        layout = self.resolved_layout()
        if not layout.has_blocked:
            return None
        start = layout.blocked_index
        bits = self.features[start:start + BLOCKED_FEATURES]
        return tuple(value >= 0.5 for value in bits)

    @classmethod
    def of(cls, values: Sequence[float], layout: Optional[ObservationLayout] = None) -> "Observation":
        return cls(tuple(values), layout)


@dataclass(frozen=True)
class StepResult:
    """Result of a single environment step."""
    observation: Observation
    reward: float
    done: bool


@dataclass(frozen=True)
class TransitionRecord:
    """One (s, a, r, s', done) transition."""
    state: Observation
    action: Action
    reward: float
    next_state: Observation
    done: bool


@dataclass(frozen=True)
class EpisodeStats:
    """Point-in-time training statistics."""
    episodes_completed: int
    success_count: int
    failure_count: int
    overall_success_rate: float
    recent_success_rate: float
    overall_avg_steps_to_goal: float
    recent_avg_steps_to_goal: float
    best_steps_to_goal: Optional[int]  # None until the first success
    episodes_per_minute: float
    epsilon: Optional[float]  # None if the policy does not expose it
    state_count: Optional[int]  # None if the policy does not expose it
    steps_per_second: float
    moving_average_reward: float = 0.0


def _clamp(value: float, low: float, high: float) -> float:
    if math.isnan(value):
        return low
    return max(low, min(high, value))


@dataclass
class QLearningConfig:
    """Configuration for the tabular Q-learning policy."""
    learning_rate: float = 0.20
    discount_factor: float = 0.95

    # Exploration schedule
    epsilon_start: float = 0.60
    epsilon_end: float = 0.03
    epsilon_decay_episodes: int = 600

    # Time-penalty shaping: penalty = base + slope * step_index
    time_penalty_base: float = 0.0
    time_penalty_slope: float = 0.01

    optimistic_init: float = 1.0
    use_action_masking: bool = True
    q_min: float = -100.0
    q_max: float = 100.0

    # Adaptive epsilon
    target_recent_success: float = 0.90
    boost_strength: float = 0.60
    boost_smoothing: float = 0.15
    max_adaptive_boost: float = 0.60
    epsilon_smoothing: float = 0.15

    distance_bins: int = 8
    random_action_retries: int = 12
    seed: Optional[int] = None

    def sanitized(self) -> "QLearningConfig":
        """Return a copy with every tuning knob clamped into its valid range."""
        epsilon_start = _clamp(self.epsilon_start, 0.0, 1.0)
        epsilon_end = _clamp(self.epsilon_end, 0.0, epsilon_start)
        q_min, q_max = sorted((float(self.q_min), float(self.q_max)))
        clean = replace(
            self,
            learning_rate=_clamp(self.learning_rate, 0.0, 1.0),
            discount_factor=_clamp(self.discount_factor, 0.0, 1.0),
            epsilon_start=epsilon_start,
            epsilon_end=epsilon_end,
            epsilon_decay_episodes=max(1, int(self.epsilon_decay_episodes)),
            time_penalty_base=max(0.0, self.time_penalty_base),
            time_penalty_slope=max(0.0, self.time_penalty_slope),
            q_min=q_min,
            q_max=q_max,
            optimistic_init=_clamp(self.optimistic_init, q_min, q_max),
            target_recent_success=_clamp(self.target_recent_success, 0.0, 1.0),
            boost_strength=max(0.0, self.boost_strength),
            boost_smoothing=_clamp(self.boost_smoothing, 0.0, 1.0),
            max_adaptive_boost=_clamp(self.max_adaptive_boost, 0.0, 1.0),
            epsilon_smoothing=_clamp(self.epsilon_smoothing, 0.0, 1.0),
            distance_bins=max(1, int(self.distance_bins)),
            random_action_retries=max(0, int(self.random_action_retries)),
        )
        if clean != self:
            logger.warning("Q-learning config clamped into valid ranges: %s", clean)
        return clean


@dataclass
class SchedulerConfig:
    """Configuration for the tick-paced episode scheduler."""
    tick_rate_hz: float = 20.0
    steps_per_second: float = 10.0
    min_steps_per_second: float = 0.1
    max_steps_per_second: float = 2000.0
    max_steps_per_tick: int = 200
    reset_delay_ticks: int = 8
    recent_window: int = 50
    reward_window: int = 50
    progress_sample_every: int = 5

    def sanitized(self) -> "SchedulerConfig":
        """Return a copy with every tuning knob clamped into its valid range."""
        min_sps, max_sps = sorted((max(0.0, self.min_steps_per_second),
                                   max(0.0, self.max_steps_per_second)))
        clean = replace(
            self,
            tick_rate_hz=self.tick_rate_hz if self.tick_rate_hz > 0 else 20.0,
            min_steps_per_second=min_sps,
            max_steps_per_second=max_sps,
            steps_per_second=_clamp(self.steps_per_second, min_sps, max_sps),
            max_steps_per_tick=max(1, int(self.max_steps_per_tick)),
            reset_delay_ticks=max(0, int(self.reset_delay_ticks)),
            recent_window=max(1, int(self.recent_window)),
            reward_window=max(1, int(self.reward_window)),
            progress_sample_every=max(1, int(self.progress_sample_every)),
        )
        if clean != self:
            logger.warning("Scheduler config clamped into valid ranges: %s", clean)
        return clean


@dataclass
class GridConfig:
    """Configuration for the grid goal environment."""
    width: int = 12
    height: int = 12
    wall_density: float = 0.10
    hazard_density: float = 0.05
    max_steps_per_episode: int = 200
    include_vertical: bool = True
    include_blocked: bool = True
    fixed_start: Optional[Coord] = None
    fixed_goal: Optional[Coord] = None
    regenerate_each_episode: bool = False
    seed: Optional[int] = None

    # Rewards
    reward_goal: float = 10.0
    reward_hazard: float = -10.0
    reward_step: float = -0.01
    reward_progress: float = 0.20

    @property
    def layout(self) -> ObservationLayout:
        return ObservationLayout(has_vertical=self.include_vertical,
                                 has_blocked=self.include_blocked)


@dataclass
class Arena:
    """Rectangular arena of walls, hazards and free cells."""
    width: int
    height: int
    cells: Dict[Coord, CellKind] = field(default_factory=dict)

    def kind(self, coord: Coord) -> CellKind:
        return self.cells.get(coord, "empty")

    def is_valid_coord(self, coord: Coord) -> bool:
        """Check if coordinate is within arena bounds."""
        x, z = coord
        return 0 <= x < self.width and 0 <= z < self.height

    def is_passable(self, coord: Coord) -> bool:
        return self.is_valid_coord(coord) and self.kind(coord) != "wall"

    def free_cells(self) -> list:
        return [
            (x, z)
            for z in range(self.height)
            for x in range(self.width)
            if self.kind((x, z)) == "empty"
        ]
