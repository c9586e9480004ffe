"""Tick-paced episode scheduler driving the environment/policy loop."""

import logging
import math
import time
import numpy as np
from typing import Callable, List, Optional, Protocol, Tuple, runtime_checkable

from ..domain.environment import Environment, PositionedEnvironment
from ..domain.policy import AdaptivePolicy, IntrospectablePolicy, Policy
from ..domain.types import Action, EpisodeStats, Observation, SchedulerConfig, StepResult
from ..utils.timing import TimingReporter
from .fsm import SchedulerState, SchedulerStateMachine

logger = logging.getLogger(__name__)

# (episode number, moving average reward, epsilon or None)
ProgressSample = Tuple[int, float, Optional[float]]

EpisodeListener = Callable[[EpisodeStats], None]


@runtime_checkable
class TransitionLogger(Protocol):
    """Persists transitions. Fire-and-forget; ``close`` is idempotent."""

    def log_transition(self, state: Observation, action: Action, reward: float,
                       next_state: Observation, done: bool) -> None:
        ...

    def close(self) -> None:
        ...


@runtime_checkable
class Visualizer(Protocol):
    """Optional visual feedback of the agent."""

    def update_position(self, x: int, y: int, z: int) -> None:
        ...

    def on_goal_hit(self) -> None:
        ...

    def destroy(self) -> None:
        ...


class NullTransitionLogger:
    """Transition logger that discards everything."""

    def log_transition(self, state: Observation, action: Action, reward: float,
                       next_state: Observation, done: bool) -> None:
        pass

    def close(self) -> None:
        pass


class EpisodeScheduler:
    """
    Runs the step/learn/log cycle, paced against a fixed external tick.

    The host calls :meth:`tick` once per tick (nominally 20 Hz). A fractional
    accumulator converts the target steps-per-second into whole steps per
    tick, so rates below the tick rate still average out over many ticks.

    States:
        RUNNING -> RESET_COOLDOWN when a step reports done
        RESET_COOLDOWN -> RUNNING after ``reset_delay_ticks`` ticks
        any -> STOPPED on :meth:`shutdown`
    """

    def __init__(self, environment: Environment, policy: Policy,
                 transition_logger: Optional[TransitionLogger] = None,
                 visualizer: Optional[Visualizer] = None,
                 config: Optional[SchedulerConfig] = None,
                 timing: Optional[TimingReporter] = None,
                 clock: Callable[[], float] = time.monotonic):
        self.config = (config or SchedulerConfig()).sanitized()
        self.environment = environment
        self.policy = policy
        self._transition_logger = transition_logger or NullTransitionLogger()
        self._visualizer = visualizer
        self._timing = timing
        self._clock = clock

        self._state_machine = SchedulerStateMachine()
        self._listeners: List[EpisodeListener] = []

        # Pacing
        self._steps_per_second = self.config.steps_per_second
        self._step_accumulator = 0.0
        self._reset_cooldown_ticks = 0

        # Current episode
        self._current_observation: Optional[Observation] = None
        self._episode_reward = 0.0
        self._steps_this_episode = 0

        # Running counters
        self._start_time = clock()
        self._episodes_completed = 0
        self._success_count = 0
        self._failure_count = 0
        self._total_steps_to_goal = 0
        self._best_steps_to_goal = math.inf
        self.log_failures = 0

        # Recent window ring buffers (-1 steps for failures)
        window = self.config.recent_window
        self._recent_success = np.zeros(window, dtype=bool)
        self._recent_steps = np.full(window, -1, dtype=np.int64)
        self._recent_size = 0
        self._recent_index = 0

        # Reward moving average
        self._reward_window = np.zeros(self.config.reward_window, dtype=float)
        self._reward_window_size = 0
        self._reward_window_index = 0
        self._reward_window_sum = 0.0

        self._progress: List[ProgressSample] = []

        self._current_observation = environment.reset()
        self._update_visualizer()

    # Properties

    @property
    def state(self) -> SchedulerState:
        return self._state_machine.current_state

    @property
    def steps_per_second(self) -> float:
        return self._steps_per_second

    @property
    def step_accumulator(self) -> float:
        return self._step_accumulator

    @property
    def current_observation(self) -> Optional[Observation]:
        return self._current_observation

    @property
    def episodes_completed(self) -> int:
        return self._episodes_completed

    @property
    def moving_average_reward(self) -> float:
        return self._reward_window_sum / max(1, self._reward_window_size)

    def progress_samples(self) -> List[ProgressSample]:
        """Sampled (episode, moving average reward, epsilon) points for graphs."""
        return list(self._progress)

    def add_episode_listener(self, listener: EpisodeListener) -> None:
        """Register a callback invoked with fresh stats after every episode."""
        self._listeners.append(listener)

    # Speed control

    def set_steps_per_second(self, steps_per_second: float) -> float:
        """Set the target simulation rate, clamped. Returns the effective value."""
        cfg = self.config
        value = float(steps_per_second)
        if math.isnan(value) or value < cfg.min_steps_per_second:
            value = cfg.min_steps_per_second
        if value > cfg.max_steps_per_second:
            value = cfg.max_steps_per_second
        self._steps_per_second = value
        return value

    # Tick loop

    def tick(self) -> int:
        """
        Advance the simulation by one host tick.

        Returns:
            Number of environment steps executed during this tick
        """
        if self._state_machine.is_stopped():
            return 0

        tick_start = time.perf_counter()
        try:
            return self._run_tick()
        finally:
            if self._timing is not None:
                self._record_timing(tick_start)

    def _run_tick(self) -> int:
        if self._state_machine.is_cooling_down():
            self._reset_cooldown_ticks -= 1
            if self._reset_cooldown_ticks <= 0:
                self._start_next_episode()
            return 0

        if self._current_observation is None:
            self._current_observation = self.environment.get_observation()

        self._step_accumulator += self._steps_per_second / self.config.tick_rate_hz
        steps_to_run = int(math.floor(self._step_accumulator))
        if steps_to_run <= 0:
            self._update_visualizer()
            return 0

        self._step_accumulator -= steps_to_run
        steps_to_run = min(steps_to_run, self.config.max_steps_per_tick)

        executed = 0
        for _ in range(steps_to_run):
            if self._state_machine.is_stopped():
                break

            step_start = time.perf_counter()
            observation = self._current_observation
            action = self.policy.choose_action(observation)
            result = self.environment.step(action)

            self._episode_reward += result.reward
            self._steps_this_episode += 1
            executed += 1

            self._log_transition(observation, action, result)
            self.policy.observe_transition(
                observation, action, result.reward, result.observation, result.done
            )
            self._current_observation = result.observation

            if self._timing is not None:
                self._timing.record_step(time.perf_counter() - step_start)

            if result.done:
                try:
                    self._finish_episode(result)
                finally:
                    self.policy.on_episode_end()
                    self._enter_cooldown()
                break

        self._update_visualizer()
        return executed

    # Episode boundaries

    def _finish_episode(self, last_step: StepResult) -> bool:
        self._episodes_completed += 1
        success = last_step.reward > 0.0
        steps = self._steps_this_episode

        if success:
            self._success_count += 1
            self._total_steps_to_goal += steps
            self._best_steps_to_goal = min(self._best_steps_to_goal, steps)
            if self._visualizer is not None:
                self._call_visualizer("on_goal_hit")
        else:
            self._failure_count += 1

        # Recent outcome ring buffers
        self._recent_success[self._recent_index] = success
        self._recent_steps[self._recent_index] = steps if success else -1
        self._recent_index = (self._recent_index + 1) % self.config.recent_window
        self._recent_size = min(self._recent_size + 1, self.config.recent_window)

        # Reward moving average in O(1)
        reward = self._episode_reward
        oldest = 0.0
        if self._reward_window_size == self.config.reward_window:
            oldest = self._reward_window[self._reward_window_index]
        self._reward_window[self._reward_window_index] = reward
        self._reward_window_sum += reward - oldest
        self._reward_window_index = (self._reward_window_index + 1) % self.config.reward_window
        self._reward_window_size = min(self._reward_window_size + 1, self.config.reward_window)

        if self._episodes_completed % self.config.progress_sample_every == 0:
            epsilon = self.policy.epsilon if isinstance(self.policy, IntrospectablePolicy) else None
            self._progress.append((self._episodes_completed, self.moving_average_reward, epsilon))

        if isinstance(self.policy, AdaptivePolicy):
            self.policy.update_performance(self._recent_success_rate())

        if self._timing is not None:
            self._timing.record_episode()

        if self._listeners:
            self._notify_listeners(self.snapshot_stats())

        return success

    def _enter_cooldown(self) -> None:
        if self.config.reset_delay_ticks <= 0:
            self._reset_episode()
            return
        self._reset_cooldown_ticks = self.config.reset_delay_ticks
        self._state_machine.begin_cooldown()

    def _start_next_episode(self) -> None:
        self._reset_episode()
        self._state_machine.resume()

    def _reset_episode(self) -> None:
        self._current_observation = self.environment.reset()
        self._episode_reward = 0.0
        self._steps_this_episode = 0
        self._reset_cooldown_ticks = 0
        self._update_visualizer()

    # Collaborators

    def _log_transition(self, state: Observation, action: Action, result: StepResult) -> None:
        try:
            self._transition_logger.log_transition(
                state, action, result.reward, result.observation, result.done
            )
        except Exception:
            self.log_failures += 1
            logger.warning("Failed to log transition (%d failures so far)",
                           self.log_failures, exc_info=True)

    def _update_visualizer(self) -> None:
        if self._visualizer is None or not isinstance(self.environment, PositionedEnvironment):
            return
        x, y, z = self.environment.agent_position()
        self._call_visualizer("update_position", x, y, z)

    def _call_visualizer(self, method: str, *args) -> None:
        try:
            getattr(self._visualizer, method)(*args)
        except Exception:
            logger.warning("Visualizer %s failed", method, exc_info=True)

    def _notify_listeners(self, stats: EpisodeStats) -> None:
        for listener in self._listeners:
            try:
                listener(stats)
            except Exception:
                logger.warning("Episode listener %r failed", listener, exc_info=True)

    def _record_timing(self, tick_start: float) -> None:
        try:
            self._timing.record_tick(time.perf_counter() - tick_start)
            self._timing.maybe_report()
        except Exception:
            logger.warning("Timing reporter failed", exc_info=True)

    # Statistics

    def _recent_success_rate(self) -> float:
        if self._recent_size == 0:
            return 0.0
        return float(np.count_nonzero(self._recent_success[:self._recent_size])) / self._recent_size

    def _recent_avg_steps_to_goal(self) -> float:
        steps = self._recent_steps[:self._recent_size]
        successful = steps[steps >= 0]
        if successful.size == 0:
            return 0.0
        return float(successful.mean())

    def snapshot_stats(self) -> EpisodeStats:
        """Compute a statistics snapshot from the running counters."""
        episodes = self._episodes_completed
        overall_success_rate = self._success_count / episodes if episodes else 0.0
        overall_avg_steps = (self._total_steps_to_goal / self._success_count
                             if self._success_count else 0.0)

        elapsed = max(0.001, self._clock() - self._start_time)
        episodes_per_minute = episodes * 60.0 / elapsed

        epsilon = None
        state_count = None
        if isinstance(self.policy, IntrospectablePolicy):
            epsilon = self.policy.epsilon
            state_count = self.policy.state_count

        return EpisodeStats(
            episodes_completed=episodes,
            success_count=self._success_count,
            failure_count=self._failure_count,
            overall_success_rate=overall_success_rate,
            recent_success_rate=self._recent_success_rate(),
            overall_avg_steps_to_goal=overall_avg_steps,
            recent_avg_steps_to_goal=self._recent_avg_steps_to_goal(),
            best_steps_to_goal=None if math.isinf(self._best_steps_to_goal) else int(self._best_steps_to_goal),
            episodes_per_minute=episodes_per_minute,
            epsilon=epsilon,
            state_count=state_count,
            steps_per_second=self._steps_per_second,
            moving_average_reward=self.moving_average_reward,
        )

    # Shutdown

    def release_visualizer(self) -> Optional[Visualizer]:
        """Detach the visualizer so :meth:`shutdown` leaves it alive. Returns it."""
        visualizer, self._visualizer = self._visualizer, None
        return visualizer

    def shutdown(self) -> None:
        """Stop for good and release collaborators. Idempotent."""
        if not self._state_machine.stop():
            return

        try:
            self._transition_logger.close()
        except Exception:
            logger.warning("Failed to close transition logger", exc_info=True)

        if self._timing is not None:
            try:
                self._timing.close()
            except Exception:
                logger.warning("Failed to close timing reporter", exc_info=True)

        if self._visualizer is not None:
            self._call_visualizer("destroy")

        logger.info("Scheduler stopped after %d episodes", self._episodes_completed)
