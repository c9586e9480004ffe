"""Command line entry point for headless training."""

import argparse
import logging
import signal
import sys
import time
from typing import List, Optional

from .app.scheduler import EpisodeScheduler
from .domain.environment import GridGoalEnvironment
from .domain.qlearning import QLearningPolicy
from .domain.types import EpisodeStats
from .utils.config import TrainingConfig, load_config
from .utils.checkpoint_manager import CheckpointManager
from .utils.rng import SeededRNG


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Tick-paced Q-learning on a grid arena")
    parser.add_argument("--config", type=str, help="Path to a JSON config file")
    parser.add_argument("--episodes", type=int, default=500, help="Stop after this many episodes")
    parser.add_argument("--seconds", type=float, help="Stop after this much wall-clock time")
    parser.add_argument("--speed", type=float, help="Target environment steps per second")
    parser.add_argument("--tick-rate", type=float, help="Host tick rate in Hz")
    parser.add_argument("--seed", type=int, help="Seed for policy and environment")
    parser.add_argument("--log-dir", type=str, help="Write transitions.csv to this directory")
    parser.add_argument("--timing", action="store_true", help="Enable timing reports")
    parser.add_argument("--checkpoint-dir", type=str, help="Save Q-table checkpoints here")
    parser.add_argument("--resume", type=str, metavar="CHECKPOINT_ID",
                        help="Load this checkpoint from --checkpoint-dir before training")
    parser.add_argument("--fast", action="store_true",
                        help="Tick in a plain loop instead of on a real-time Qt timer")
    parser.add_argument("--report-every", type=int, default=50, help="Episodes between progress lines")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    return parser


def apply_args(config: TrainingConfig, args: argparse.Namespace) -> TrainingConfig:
    """Override config values with command line options that were given."""
    if args.speed is not None:
        config.scheduler.steps_per_second = args.speed
    if args.tick_rate is not None:
        config.scheduler.tick_rate_hz = args.tick_rate
    if args.seed is not None:
        config.qlearning.seed = args.seed
        config.environment.seed = args.seed + 1
    if args.log_dir:
        config.output.log_dir = args.log_dir
    if args.timing:
        config.output.timing_enabled = True
    if args.checkpoint_dir:
        config.output.checkpoint_dir = args.checkpoint_dir
    return config


def format_stats(stats: EpisodeStats) -> str:
    best = stats.best_steps_to_goal if stats.best_steps_to_goal is not None else "-"
    epsilon = f"{stats.epsilon:.3f}" if stats.epsilon is not None else "-"
    return (f"Episode {stats.episodes_completed}: "
            f"Success rate: {stats.recent_success_rate:.1%} (overall {stats.overall_success_rate:.1%}), "
            f"Avg steps: {stats.recent_avg_steps_to_goal:.1f}, Best: {best}, "
            f"Epsilon: {epsilon}, States: {stats.state_count}")


def resume_policy(policy: QLearningPolicy, checkpoint_dir: Optional[str], checkpoint_id: str) -> bool:
    """Load a saved Q-table into `policy`. Returns False if that is not possible."""
    if not checkpoint_dir:
        print("--resume needs --checkpoint-dir")
        return False

    manager = CheckpointManager(checkpoint_dir)
    checkpoint = manager.load_checkpoint(checkpoint_id)
    if checkpoint is None:
        print(f"Checkpoint not found: {checkpoint_id}")
        return False
    if not manager.apply_checkpoint(checkpoint, policy):
        print(f"Checkpoint {checkpoint_id} does not match the current Q-learning settings")
        return False

    print(f"Resumed from {checkpoint_id} ({len(checkpoint.q_table)} states, "
          f"{checkpoint.episodes_seen} episodes)")
    return True


def run_fast(config: TrainingConfig, policy: QLearningPolicy, episodes: int,
             seconds: Optional[float], report_every: int) -> EpisodeStats:
    """Tick as fast as possible without a real-time timer."""
    from .app.controller import make_timing_reporter, make_transition_logger

    environment = GridGoalEnvironment(config.environment, SeededRNG(config.environment.seed))
    scheduler = EpisodeScheduler(
        environment,
        policy,
        transition_logger=make_transition_logger(config.output),
        config=config.scheduler,
        timing=make_timing_reporter(config.output),
    )

    def report(stats: EpisodeStats):
        if stats.episodes_completed % report_every == 0:
            print(format_stats(stats))

    scheduler.add_episode_listener(report)

    deadline = time.monotonic() + seconds if seconds else None
    try:
        while scheduler.episodes_completed < episodes:
            scheduler.tick()
            if deadline is not None and time.monotonic() >= deadline:
                break
    except KeyboardInterrupt:
        print("\nInterrupted, shutting down...")
    finally:
        stats = scheduler.snapshot_stats()
        try:
            if config.output.checkpoint_dir:
                path = CheckpointManager(config.output.checkpoint_dir).save_checkpoint(policy, stats=stats)
                print(f"Checkpoint saved: {path}")
        finally:
            scheduler.shutdown()
    return stats


def run_timer(config: TrainingConfig, policy: QLearningPolicy, episodes: int,
               seconds: Optional[float], report_every: int) -> EpisodeStats:
    """Run on a headless Qt event loop with a real-time tick timer."""
    from PySide6.QtCore import QCoreApplication, QTimer
    from .app.controller import TrainingController

    app = QCoreApplication.instance() or QCoreApplication(sys.argv)
    app.setApplicationName("gridrl")

    environment = GridGoalEnvironment(config.environment, SeededRNG(config.environment.seed))
    controller = TrainingController(environment, policy=policy, config=config,
                                    max_episodes=episodes)

    def on_episode(stats: EpisodeStats):
        if stats.episodes_completed % report_every == 0:
            print(format_stats(stats))

    def on_error(message: str):
        print(f"Error: {message}")
        app.quit()

    controller.episode_completed.connect(on_episode)
    controller.training_finished.connect(lambda stats: app.quit())
    controller.error_occurred.connect(on_error)

    def signal_handler(sig, frame):
        """Handle system signals for graceful shutdown."""
        print(f"\nReceived signal {sig}, shutting down gracefully...")
        app.quit()

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    if seconds:
        QTimer.singleShot(int(seconds * 1000), app.quit)

    controller.start()
    try:
        app.exec()
    finally:
        stats = controller.cleanup()
    return stats


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point for headless training."""
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="[%(levelname)s] %(name)s: %(message)s",
    )

    try:
        config = load_config(args.config) if args.config else TrainingConfig()
    except (OSError, ValueError) as e:
        print(f"Could not load config: {e}")
        return 1
    apply_args(config, args)

    policy = QLearningPolicy(config.qlearning, SeededRNG(config.qlearning.seed))
    if args.resume and not resume_policy(policy, config.output.checkpoint_dir, args.resume):
        return 1

    report_every = max(1, args.report_every)
    runner = run_fast if args.fast else run_timer
    stats = runner(config, policy, args.episodes, args.seconds, report_every)

    print("=" * 50)
    print(format_stats(stats))
    print(f"Episodes/min: {stats.episodes_per_minute:.1f}, "
          f"Moving avg reward: {stats.moving_average_reward:.2f}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
