"""Qt controller hosting the episode scheduler on a fixed-rate timer."""

import logging
from typing import Optional

from PySide6.QtCore import QObject, QTimer, Signal

from ..domain.environment import Environment
from ..domain.policy import Policy
from ..domain.qlearning import QLearningPolicy
from ..domain.types import EpisodeStats
from ..utils.checkpoint_manager import CheckpointManager
from ..utils.config import OutputConfig, TrainingConfig
from ..utils.rng import SeededRNG
from ..utils.timing import TimingReporter
from ..utils.transition_log import CsvTransitionLogger
from .fsm import SchedulerState
from .scheduler import EpisodeScheduler, TransitionLogger, Visualizer

logger = logging.getLogger(__name__)


def make_transition_logger(output: OutputConfig) -> Optional[TransitionLogger]:
    """CSV transition logger for ``output.log_dir``, or None when logging is off."""
    if not output.log_dir:
        return None
    return CsvTransitionLogger(output.log_dir)


def make_timing_reporter(output: OutputConfig) -> Optional[TimingReporter]:
    if not output.timing_enabled:
        return None
    return TimingReporter(output.timing_dir, output.timing_report_interval_seconds)


def make_policy(config: TrainingConfig) -> QLearningPolicy:
    return QLearningPolicy(config.qlearning, SeededRNG(config.qlearning.seed))


class SignalVisualizer(QObject):
    """Visualizer that re-emits agent updates as Qt signals."""

    position_changed = Signal(int, int, int)
    goal_hit = Signal()
    removed = Signal()

    def update_position(self, x: int, y: int, z: int) -> None:
        self.position_changed.emit(x, y, z)

    def on_goal_hit(self) -> None:
        self.goal_hit.emit()

    def destroy(self) -> None:
        self.removed.emit()


class TrainingController(QObject):
    """
    Drives an :class:`EpisodeScheduler` from a ``QTimer``.

    The timer fires every ``1000 / tick_rate_hz`` milliseconds and each
    timeout runs exactly one scheduler tick, so ticks never overlap.

    Signals:
        state_changed: Emitted when the scheduler state changes
        episode_completed: Emitted with fresh EpisodeStats after every episode
        stats_updated: Emitted with EpisodeStats about once per second
        speed_changed: Emitted with the effective steps-per-second
        training_finished: Emitted with final EpisodeStats when max_episodes is reached
        error_occurred: Emitted when a tick raises
    """

    state_changed = Signal(object)
    episode_completed = Signal(object)
    stats_updated = Signal(object)
    speed_changed = Signal(float)
    training_finished = Signal(object)
    error_occurred = Signal(str)

    def __init__(self, environment: Environment, policy: Optional[Policy] = None,
                 config: Optional[TrainingConfig] = None,
                 visualizer: Optional[Visualizer] = None,
                 max_episodes: Optional[int] = None):
        super().__init__()
        self._config = config or TrainingConfig()
        self._policy = policy if policy is not None else make_policy(self._config)
        self._visualizer = visualizer
        self._max_episodes = max_episodes
        self._ticks = 0
        self._finished = False

        self._checkpoints: Optional[CheckpointManager] = None
        if self._config.output.checkpoint_dir and isinstance(self._policy, QLearningPolicy):
            self._checkpoints = CheckpointManager(self._config.output.checkpoint_dir)

        self._scheduler = self._create_scheduler(environment, self._config.scheduler.steps_per_second)
        self._last_state = self._scheduler.state

        self._timer = QTimer(self)
        self._timer.timeout.connect(self._on_timer_tick)
        self._timer_interval = max(1, round(1000.0 / self._scheduler.config.tick_rate_hz))

    # Properties

    @property
    def scheduler(self) -> EpisodeScheduler:
        return self._scheduler

    @property
    def policy(self) -> Policy:
        return self._policy

    @property
    def config(self) -> TrainingConfig:
        return self._config

    @property
    def timer_interval(self) -> int:
        """Milliseconds between ticks."""
        return self._timer_interval

    def is_active(self) -> bool:
        return self._timer.isActive()

    # Control

    def start(self) -> bool:
        """Start ticking. Returns False if the scheduler has been shut down."""
        if self._scheduler.state is SchedulerState.STOPPED:
            return False
        self._timer.start(self._timer_interval)
        self.state_changed.emit(self._scheduler.state)
        return True

    def set_steps_per_second(self, steps_per_second: float) -> float:
        value = self._scheduler.set_steps_per_second(steps_per_second)
        self.speed_changed.emit(value)
        return value

    def switch_environment(self, environment: Environment, min_epsilon: float = 0.5,
                           boost_episodes: int = 25) -> EpisodeScheduler:
        """
        Continue training the same policy on a new environment.

        The current scheduler is shut down and replaced; a Q-learning policy
        gets a temporary exploration boost because its experience no longer
        fully applies.
        """
        was_active = self._timer.isActive()
        self._timer.stop()

        speed = self._scheduler.steps_per_second
        # The visualizer carries over to the new scheduler
        self._scheduler.release_visualizer()
        self._scheduler.shutdown()

        if isinstance(self._policy, QLearningPolicy):
            self._policy.boost_epsilon_to_at_least(min_epsilon, boost_episodes)

        self._scheduler = self._create_scheduler(environment, speed)
        self._finished = False
        self._emit_state_if_changed()
        if was_active:
            self._timer.start(self._timer_interval)
        return self._scheduler

    def tick(self) -> int:
        """Run one tick by hand (what the timer does on every timeout)."""
        return self._on_timer_tick()

    # Internals

    def _create_scheduler(self, environment: Environment, steps_per_second: float) -> EpisodeScheduler:
        output = self._config.output
        scheduler = EpisodeScheduler(
            environment,
            self._policy,
            transition_logger=make_transition_logger(output),
            visualizer=self._visualizer,
            config=self._config.scheduler,
            timing=make_timing_reporter(output),
        )
        scheduler.set_steps_per_second(steps_per_second)
        scheduler.add_episode_listener(self._on_episode_completed)
        return scheduler

    def _on_timer_tick(self) -> int:
        """Called on each timer tick."""
        try:
            steps = self._scheduler.tick()
        except Exception as e:
            logger.exception("Tick failed")
            self._timer.stop()
            self.error_occurred.emit(f"Tick error: {e}")
            return 0

        self._ticks += 1
        self._emit_state_if_changed()
        if self._ticks % max(1, round(self._scheduler.config.tick_rate_hz)) == 0:
            self.stats_updated.emit(self._scheduler.snapshot_stats())
        return steps

    def _emit_state_if_changed(self) -> None:
        state = self._scheduler.state
        if state != self._last_state:
            self._last_state = state
            self.state_changed.emit(state)

    def _on_episode_completed(self, stats: EpisodeStats) -> None:
        self.episode_completed.emit(stats)

        every = self._config.output.checkpoint_every_episodes
        if self._checkpoints is not None and every > 0 and stats.episodes_completed % every == 0:
            self._save_checkpoint(stats)

        if (self._max_episodes is not None and not self._finished
                and stats.episodes_completed >= self._max_episodes):
            self._finished = True
            self._timer.stop()
            self.training_finished.emit(stats)

    def _save_checkpoint(self, stats: Optional[EpisodeStats] = None) -> Optional[str]:
        try:
            return self._checkpoints.save_checkpoint(self._policy, stats=stats)
        except (OSError, TypeError, ValueError) as e:
            logger.warning("Failed to save checkpoint: %s", e)
            self.error_occurred.emit(f"Checkpoint error: {e}")
            return None

    def cleanup(self) -> EpisodeStats:
        """Stop the timer, save a final checkpoint and shut the scheduler down."""
        try:
            self._timer.stop()
        except RuntimeError:
            pass  # Qt object already deleted

        stats = self._scheduler.snapshot_stats()
        if self._checkpoints is not None and self._scheduler.state is not SchedulerState.STOPPED:
            self._save_checkpoint(stats)
        self._scheduler.shutdown()
        self._emit_state_if_changed()
        return stats

