"""Shared fixtures and fake collaborators for gridrl tests."""

from typing import List, Optional, Tuple

import pytest

from gridrl.domain.types import Action, Observation, StepResult, FULL_LAYOUT
from gridrl.utils.rng import SeededRNG


OPEN_FEATURES = (1.0, 0.0, 0.0, 0.5, 0.0, 0.0, 0.0, 0.0)
ALL_BLOCKED_FEATURES = (1.0, 0.0, 0.0, 0.5, 1.0, 1.0, 1.0, 1.0)


def make_observation(features=OPEN_FEATURES, layout=FULL_LAYOUT) -> Observation:
    return Observation.of(features, layout)


class ScriptedEnvironment:
    """Environment whose episodes last ``episode_length`` steps and end with ``final_reward``."""

    def __init__(self, episode_length: int = 1, final_reward: float = 10.0,
                 step_reward: float = 0.0, observation: Optional[Observation] = None):
        self.episode_length = episode_length
        self.final_reward = final_reward
        self.step_reward = step_reward
        self.observation = observation or make_observation()
        self.reset_calls = 0
        self.step_calls = 0
        self.steps_in_episode = 0
        self.actions: List[Action] = []
        self._done = False

    def reset(self) -> Observation:
        self.reset_calls += 1
        self.steps_in_episode = 0
        self._done = False
        return self.observation

    def step(self, action: Action) -> StepResult:
        if self._done:
            return StepResult(self.observation, 0.0, True)
        self.step_calls += 1
        self.steps_in_episode += 1
        self.actions.append(action)
        if self.steps_in_episode >= self.episode_length:
            self._done = True
            return StepResult(self.observation, self.final_reward, True)
        return StepResult(self.observation, self.step_reward, False)

    def is_done(self) -> bool:
        return self._done

    def get_observation(self) -> Observation:
        return self.observation

    def agent_position(self) -> Tuple[int, int, int]:
        return self.steps_in_episode, 0, 0


class NeverDoneEnvironment(ScriptedEnvironment):
    """Episodes never terminate."""

    def __init__(self):
        super().__init__(episode_length=10 ** 9, final_reward=0.0, step_reward=-0.01)


class ExplodingEnvironment(ScriptedEnvironment):
    """Raises on every step."""

    def step(self, action: Action) -> StepResult:
        raise RuntimeError("environment exploded")


class FailingTransitionLogger:
    def __init__(self):
        self.attempts = 0
        self.close_calls = 0

    def log_transition(self, state, action, reward, next_state, done) -> None:
        self.attempts += 1
        raise OSError("disk full")

    def close(self) -> None:
        self.close_calls += 1


class RecordingTransitionLogger:
    def __init__(self):
        self.rows = []
        self.close_calls = 0

    def log_transition(self, state, action, reward, next_state, done) -> None:
        self.rows.append((state, action, reward, next_state, done))

    def close(self) -> None:
        self.close_calls += 1


class RecordingVisualizer:
    def __init__(self):
        self.positions: List[Tuple[int, int, int]] = []
        self.goal_hits = 0
        self.destroy_calls = 0

    def update_position(self, x: int, y: int, z: int) -> None:
        self.positions.append((x, y, z))

    def on_goal_hit(self) -> None:
        self.goal_hits += 1

    def destroy(self) -> None:
        self.destroy_calls += 1


class FakeClock:
    def __init__(self, now: float = 0.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def rng() -> SeededRNG:
    return SeededRNG(12345)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(100.0)


@pytest.fixture
def open_observation() -> Observation:
    return make_observation()


@pytest.fixture
def blocked_observation() -> Observation:
    return make_observation(ALL_BLOCKED_FEATURES)
