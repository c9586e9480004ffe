"""Policy capability protocols and the uniformly random policy."""

from typing import Optional, Protocol, runtime_checkable

from .types import Action, Observation
from ..utils.rng import SeededRNG


@runtime_checkable
class Policy(Protocol):
    """Chooses actions and optionally learns from transitions."""

    def choose_action(self, observation: Observation) -> Action:
        ...

    def observe_transition(self, state: Observation, action: Action, reward: float,
                           next_state: Observation, done: bool) -> None:
        """Called after each environment step so the policy can learn."""
        ...

    def on_episode_end(self) -> None:
        ...


@runtime_checkable
class AdaptivePolicy(Protocol):
    """Policy that adjusts exploration from recent performance."""

    def update_performance(self, recent_success_rate: float) -> None:
        ...


@runtime_checkable
class IntrospectablePolicy(Protocol):
    """Policy that exposes exploration rate and table size for statistics."""

    @property
    def epsilon(self) -> float:
        ...

    @property
    def state_count(self) -> int:
        ...


class RandomPolicy:
    """Picks every action uniformly at random and never learns."""

    def __init__(self, rng: Optional[SeededRNG] = None):
        self._rng = rng or SeededRNG()
        self._actions = tuple(Action)

    def choose_action(self, observation: Observation) -> Action:
        return self._rng.choice(self._actions)

    def observe_transition(self, state: Observation, action: Action, reward: float,
                           next_state: Observation, done: bool) -> None:
        pass

    def on_episode_end(self) -> None:
        pass
