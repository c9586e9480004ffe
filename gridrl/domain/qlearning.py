"""Tabular Q-learning policy with adaptive exploration and action masking."""

import logging
import math
import numpy as np
from typing import Optional, Dict, Tuple, Iterable

from .types import (
    Action, Observation, QLearningConfig, MalformedObservationError,
    ACTION_COUNT, MOVE_ACTIONS, BLOCKED_INDEX,
)
from ..utils.rng import SeededRNG

logger = logging.getLogger(__name__)

StateKey = Tuple[int, ...]

_ACTIONS = tuple(Action)


def _clamp01(value: float) -> float:
    return max(0.0, min(1.0, value))


def _sign(value: float) -> int:
    return max(-1, min(1, int(round(value))))


def discretize(observation: Observation, distance_bins: int = 8) -> StateKey:
    """
    Map an observation onto a compact, hashable state key.

    Key layout: (dx, dz, dy, distance_bin, *trailing_bits)

    Direction signs are rounded and clamped to {-1, 0, 1}; dy is 0 when the
    layout has no vertical component. The normalized distance is binned into
    ``distance_bins`` buckets, and every feature after the distance is
    thresholded at 0.5.

    Raises:
        MalformedObservationError: If the observation is too short for its layout
    """
    features = observation.features
    layout = observation.resolved_layout()
    if len(features) < layout.min_length:
        raise MalformedObservationError(
            f"Observation has {len(features)} features, layout needs {layout.min_length}"
        )

    dx = _sign(features[0])
    dz = _sign(features[1])
    dy = _sign(features[2]) if layout.has_vertical else 0

    distance = features[layout.distance_index]
    distance_bin = int(math.floor(_clamp01(distance) * distance_bins))
    if distance_bin >= distance_bins:
        distance_bin = distance_bins - 1

    bits = tuple(1 if value >= 0.5 else 0 for value in features[layout.distance_index + 1:])
    return (dx, dz, dy, distance_bin) + bits


class QLearningPolicy:
    """Epsilon-greedy tabular Q-learning over discretized observations."""

    def __init__(self, config: Optional[QLearningConfig] = None, rng: Optional[SeededRNG] = None):
        self.config = (config or QLearningConfig()).sanitized()
        self._rng = rng or SeededRNG(self.config.seed)
        self._q: Dict[StateKey, np.ndarray] = {}

        self._episodes_seen = 0
        self._step_index = 0

        # Adaptive exploration state
        self._adaptive_epsilon = self.config.epsilon_start
        self._adaptive_boost = 0.0
        self._temp_boost = 0.0
        self._temp_boost_remaining = 0
        self._temp_boost_step = 0.0
        self._last_epsilon: Optional[float] = None

    # Policy capability

    def choose_action(self, observation: Observation) -> Action:
        """Select an action with masked epsilon-greedy exploration."""
        q_values = self._row(self.state_key(observation))

        eps = self.effective_epsilon()
        self._last_epsilon = eps

        if self._rng.random() < eps:
            return self._random_valid_action(observation)
        return self._greedy_action(q_values, observation)

    def observe_transition(self, state: Observation, action: Action, reward: float,
                           next_state: Observation, done: bool) -> None:
        """Apply the one-step Q-learning update with time-penalty shaping."""
        cfg = self.config
        time_penalty = cfg.time_penalty_base + cfg.time_penalty_slope * self._step_index
        shaped_reward = reward - time_penalty

        q_values = self._row(self.state_key(state))
        next_q_values = self._row(self.state_key(next_state))

        max_next = 0.0 if done else self._max_q(next_q_values, next_state)
        target = shaped_reward + cfg.discount_factor * max_next

        a = int(action)
        updated = q_values[a] + cfg.learning_rate * (target - q_values[a])
        q_values[a] = min(cfg.q_max, max(cfg.q_min, updated))

        self._step_index += 1
        if done:
            self._episodes_seen += 1
            self._step_index = 0

    def on_episode_end(self) -> None:
        self._step_index = 0

    # Adaptive exploration

    def update_performance(self, recent_success_rate: float) -> None:
        """
        Feed recent success back into exploration.

        Called once per completed episode. Below-target performance raises the
        adaptive boost; the adaptive epsilon tracks
        ``end + (start - end) * (1 - recent_success_rate)``. Any temporary
        boost decays by one step.
        """
        cfg = self.config
        recent = _clamp01(recent_success_rate)

        error = cfg.target_recent_success - recent
        desired_boost = min(_clamp01(error * cfg.boost_strength), cfg.max_adaptive_boost)
        self._adaptive_boost += cfg.boost_smoothing * (desired_boost - self._adaptive_boost)

        eps_target = cfg.epsilon_end + (cfg.epsilon_start - cfg.epsilon_end) * (1.0 - recent)
        self._adaptive_epsilon += cfg.epsilon_smoothing * (eps_target - self._adaptive_epsilon)
        self._adaptive_epsilon = min(cfg.epsilon_start, max(cfg.epsilon_end, self._adaptive_epsilon))

        if self._temp_boost_remaining > 0:
            self._temp_boost = max(0.0, self._temp_boost - self._temp_boost_step)
            self._temp_boost_remaining -= 1
            if self._temp_boost_remaining == 0:
                self._temp_boost = 0.0
                self._temp_boost_step = 0.0

    def boost_epsilon_to_at_least(self, min_epsilon: float, decay_episodes: int) -> None:
        """Force exploration up to ``min_epsilon``, decaying back over ``decay_episodes``."""
        boost = min_epsilon - self.effective_epsilon()
        if boost <= 0.0:
            return

        episodes = max(1, int(decay_episodes))
        self._temp_boost = max(self._temp_boost, boost)
        self._temp_boost_remaining = max(self._temp_boost_remaining, episodes)
        self._temp_boost_step = self._temp_boost / self._temp_boost_remaining
        logger.info("Exploration boosted to at least %.3f for %d episodes",
                    min_epsilon, self._temp_boost_remaining)

    def scheduled_epsilon(self) -> float:
        """Linear decay from epsilon_start to epsilon_end over the decay horizon."""
        cfg = self.config
        t = min(1.0, self._episodes_seen / cfg.epsilon_decay_episodes)
        return cfg.epsilon_start + t * (cfg.epsilon_end - cfg.epsilon_start)

    def effective_epsilon(self) -> float:
        """Exploration probability used for the next action."""
        cfg = self.config
        base = min(self.scheduled_epsilon(), self._adaptive_epsilon)
        eps = base + self._adaptive_boost + self._temp_boost
        return min(cfg.epsilon_start, max(cfg.epsilon_end, eps))

    # Introspection

    @property
    def epsilon(self) -> float:
        """Last epsilon used for action selection, or the current one."""
        if self._last_epsilon is not None:
            return self._last_epsilon
        return self.effective_epsilon()

    @property
    def state_count(self) -> int:
        return len(self._q)

    @property
    def episodes_seen(self) -> int:
        return self._episodes_seen

    @property
    def step_index(self) -> int:
        return self._step_index

    def state_key(self, observation: Observation) -> StateKey:
        return discretize(observation, self.config.distance_bins)

    def q_values(self, observation: Observation) -> np.ndarray:
        """Copy of the Q-row for an observation (created if unseen)."""
        return self._row(self.state_key(observation)).copy()

    def q_table(self) -> Dict[StateKey, np.ndarray]:
        """Copy of the whole Q-table."""
        return {key: row.copy() for key, row in self._q.items()}

    def load_q_table(self, table: Dict[StateKey, Iterable[float]]) -> None:
        """Replace the Q-table, clamping every value into [q_min, q_max]."""
        cfg = self.config
        loaded: Dict[StateKey, np.ndarray] = {}
        for key, values in table.items():
            row = np.asarray(list(values), dtype=float)
            if row.shape != (ACTION_COUNT,):
                raise ValueError(f"Q-row for {key} has {row.size} values, expected {ACTION_COUNT}")
            loaded[tuple(int(k) for k in key)] = np.clip(row, cfg.q_min, cfg.q_max)
        self._q = loaded

    # Internals

    def _row(self, key: StateKey) -> np.ndarray:
        row = self._q.get(key)
        if row is None:
            row = np.full(ACTION_COUNT, self.config.optimistic_init, dtype=float)
            self._q[key] = row
        return row

    def _blocked(self, observation: Observation) -> Optional[Tuple[bool, ...]]:
        if not self.config.use_action_masking:
            return None
        return observation.blocked()

    @staticmethod
    def _is_masked(action: Action, blocked: Optional[Tuple[bool, ...]]) -> bool:
        if blocked is None or not action.is_move:
            return False
        return blocked[BLOCKED_INDEX[action]]

    def _random_valid_action(self, observation: Observation) -> Action:
        blocked = self._blocked(observation)

        for _ in range(self.config.random_action_retries):
            action = _ACTIONS[self._rng.randrange(ACTION_COUNT)]
            if not self._is_masked(action, blocked):
                return action

        # Fallback: first unblocked move, else stay
        for action in MOVE_ACTIONS:
            if not self._is_masked(action, blocked):
                return action
        return Action.STAY

    def _greedy_action(self, q_values: np.ndarray, observation: Observation) -> Action:
        """Argmax over unmasked actions with reservoir tie-breaking."""
        blocked = self._blocked(observation)

        best: Optional[Action] = None
        best_value = -math.inf
        ties = 0

        for action in _ACTIONS:
            if self._is_masked(action, blocked):
                continue

            value = q_values[int(action)]
            if value > best_value:
                best_value = value
                best = action
                ties = 1
            elif value == best_value and best is not None:
                ties += 1
                if self._rng.randrange(ties) == 0:
                    best = action

        if best is None:
            return Action.STAY
        return best

    def _max_q(self, q_values: np.ndarray, observation: Observation) -> float:
        blocked = self._blocked(observation)
        allowed = [q_values[int(a)] for a in _ACTIONS if not self._is_masked(a, blocked)]
        if not allowed:
            return 0.0
        return float(max(allowed))
