"""CSV persistence of raw environment transitions."""

import csv
import logging
from pathlib import Path
from typing import List, Optional

from ..domain.types import Action, Observation, TransitionRecord

logger = logging.getLogger(__name__)

TRANSITIONS_FILENAME = "transitions.csv"
HEADER = ["obs", "action", "reward", "next_obs", "done"]


def _format_float(value: float) -> str:
    return f"{value:.6f}"


def _join_features(observation: Observation) -> str:
    return ";".join(_format_float(f) for f in observation.features)


class CsvTransitionLogger:
    """
    Appends one CSV row per transition to ``<log_dir>/transitions.csv``.

    Row format: ``obs,action,reward,next_obs,done`` where observations are
    ``;``-joined features, action is the ordinal and done is 0/1. The header
    is written only when the file is new or empty. Every row is flushed.
    """

    def __init__(self, log_dir: str):
        self.path = Path(log_dir) / TRANSITIONS_FILENAME
        self.path.parent.mkdir(parents=True, exist_ok=True)

        new_file = not self.path.exists() or self.path.stat().st_size == 0
        self._file = open(self.path, "a", newline="")
        self._writer = csv.writer(self._file)
        self._closed = False
        self.rows_written = 0
        self.failed_writes = 0

        if new_file:
            self._writer.writerow(HEADER)
            self._file.flush()

    @property
    def closed(self) -> bool:
        return self._closed

    def log_transition(self, state: Observation, action: Action, reward: float,
                       next_state: Observation, done: bool) -> None:
        if self._closed:
            return

        row = [
            _join_features(state),
            int(action),
            _format_float(reward),
            _join_features(next_state),
            1 if done else 0,
        ]
        try:
            self._writer.writerow(row)
            self._file.flush()
            self.rows_written += 1
        except (OSError, ValueError) as e:
            self.failed_writes += 1
            logger.warning("Failed to write transition to %s: %s", self.path, e)

    def close(self) -> None:
        """Flush and close the file. Safe to call more than once."""
        if self._closed:
            return
        self._closed = True
        try:
            self._file.flush()
        except (OSError, ValueError) as e:
            logger.warning("Failed to flush %s: %s", self.path, e)
        finally:
            self._file.close()


def _parse_features(text: str) -> Observation:
    return Observation.of([float(part) for part in text.split(";")] if text else [])


def read_transitions(log_dir: str) -> Optional[List[TransitionRecord]]:
    """Read logged transitions back, or None if no log exists."""
    path = Path(log_dir) / TRANSITIONS_FILENAME
    if not path.exists():
        return None
    with open(path, newline="") as f:
        rows = list(csv.reader(f))
    return [
        TransitionRecord(
            state=_parse_features(obs),
            action=Action(int(action)),
            reward=float(reward),
            next_state=_parse_features(next_obs),
            done=done == "1",
        )
        for obs, action, reward, next_obs, done in rows[1:]
    ]
