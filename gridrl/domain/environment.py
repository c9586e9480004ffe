"""Environment capability and a grid goal-reaching environment."""

from typing import Optional, Protocol, Tuple, runtime_checkable

from .types import (
    Action, Arena, Coord, GridConfig, Observation, StepResult, ACTION_DELTAS, MOVE_ACTIONS
)
from ..utils.grid_factory import generate_arena, place_start_and_goal
from ..utils.rng import SeededRNG


@runtime_checkable
class Environment(Protocol):
    """Discrete-time environment driven by the episode scheduler."""

    def reset(self) -> Observation:
        """Start a new episode and return its first observation."""
        ...

    def step(self, action: Action) -> StepResult:
        """Advance one unit of simulated time.

        After the episode is done this must return a zero-reward, done result
        without side effects.
        """
        ...

    def is_done(self) -> bool:
        ...

    def get_observation(self) -> Observation:
        """Current observation without advancing state."""
        ...


@runtime_checkable
class PositionedEnvironment(Protocol):
    """Environment that can report the agent's position for visualization."""

    def agent_position(self) -> Tuple[int, int, int]:
        ...


class GridGoalEnvironment:
    """
    Goal-reaching environment on a flat rectangular arena.

    Rewards:
        - ``reward_goal`` on reaching the goal (terminal)
        - ``reward_hazard`` on stepping onto a hazard (terminal)
        - ``reward_step`` otherwise, plus ``reward_progress`` when the Manhattan
          distance shrinks and minus it when the distance grows

    Moves into walls or off the arena leave the agent in place. The episode
    also ends after ``max_steps_per_episode`` steps, with a reward of at most 0.
    """

    def __init__(self, config: Optional[GridConfig] = None, rng: Optional[SeededRNG] = None):
        self.config = config or GridConfig()
        self._rng = rng or SeededRNG(self.config.seed)
        self.arena, self.start, self.goal = generate_arena(self.config, self._rng)

        self.agent_pos: Coord = self.start
        self.steps_taken = 0
        self._done = False
        self._episodes_started = 0

    def reset(self) -> Observation:
        """Reset environment for a new episode."""
        if self._episodes_started > 0:
            if self.config.regenerate_each_episode:
                self.arena, self.start, self.goal = generate_arena(self.config, self._rng)
            else:
                self.start, self.goal = place_start_and_goal(
                    self.arena, self._rng, self.config.fixed_start, self.config.fixed_goal
                )
        self._episodes_started += 1

        self.agent_pos = self.start
        self.steps_taken = 0
        self._done = False
        return self.get_observation()

    def step(self, action: Action) -> StepResult:
        """
        Execute action and return the step result.

        Args:
            action: Action to take

        Returns:
            StepResult with the next observation, reward and done flag
        """
        if self._done:
            return StepResult(self.get_observation(), 0.0, True)

        cfg = self.config
        previous_distance = self._distance(self.agent_pos)

        dx, dz = ACTION_DELTAS[Action(action)]
        candidate = (self.agent_pos[0] + dx, self.agent_pos[1] + dz)
        if self.arena.is_passable(candidate):
            self.agent_pos = candidate

        self.steps_taken += 1
        terminal = False

        if self.agent_pos == self.goal:
            reward = cfg.reward_goal
            terminal = True
        elif self.arena.kind(self.agent_pos) == "hazard":
            reward = cfg.reward_hazard
            terminal = True
        else:
            reward = cfg.reward_step
            distance = self._distance(self.agent_pos)
            if distance < previous_distance:
                reward += cfg.reward_progress
            elif distance > previous_distance:
                reward -= cfg.reward_progress

        if not terminal and self.steps_taken >= cfg.max_steps_per_episode:
            # Timeouts are failures: no positive shaping on the last step
            reward = min(reward, 0.0)
            terminal = True

        self._done = terminal
        return StepResult(self.get_observation(), reward, terminal)

    def is_done(self) -> bool:
        return self._done

    def get_observation(self) -> Observation:
        """
        Observation features:
            dx sign, dz sign, [dy sign, always 0 on a flat arena],
            normalized Manhattan distance, [blocked N, S, E, W]
        """
        x, z = self.agent_pos
        gx, gz = self.goal
        features = [_compare(gx, x), _compare(gz, z)]
        if self.config.include_vertical:
            features.append(0.0)
        features.append(self._distance(self.agent_pos) / float(self.arena.width + self.arena.height))
        if self.config.include_blocked:
            features.extend(1.0 if self._is_blocked(action) else 0.0 for action in MOVE_ACTIONS)
        return Observation(tuple(features), self.config.layout)

    def agent_position(self) -> Tuple[int, int, int]:
        x, z = self.agent_pos
        return x, 0, z

    def _distance(self, coord: Coord) -> int:
        return abs(coord[0] - self.goal[0]) + abs(coord[1] - self.goal[1])

    def _is_blocked(self, action: Action) -> bool:
        dx, dz = ACTION_DELTAS[action]
        return not self.arena.is_passable((self.agent_pos[0] + dx, self.agent_pos[1] + dz))


def _compare(a: int, b: int) -> float:
    return float((a > b) - (a < b))
