"""Q-table checkpoint management for the Q-learning policy."""

import json
import hashlib
import logging
from dataclasses import asdict, dataclass
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional

from ..domain.qlearning import QLearningPolicy, StateKey
from ..domain.types import Action, EpisodeStats

logger = logging.getLogger(__name__)


@dataclass
class Checkpoint:
    """A saved Q-table with the settings it was learned under."""
    checkpoint_id: str
    timestamp: str
    compatibility_hash: str
    episodes_seen: int
    q_table: Dict[StateKey, List[float]]
    config: Dict
    stats: Optional[Dict] = None


@dataclass
class CheckpointMetadata:
    """Summary of a checkpoint file for listings."""
    checkpoint_id: str
    timestamp: str
    episodes_seen: int
    state_count: int
    file_path: str
    file_size: int


def key_to_str(key: StateKey) -> str:
    return ",".join(str(part) for part in key)


def str_to_key(text: str) -> StateKey:
    return tuple(int(part) for part in text.split(",")) if text else ()


def compatibility_hash(policy: QLearningPolicy) -> str:
    """Hash of the settings that define the meaning of Q-table keys and columns."""
    data = {
        "distance_bins": policy.config.distance_bins,
        "actions": [action.name for action in Action],
    }
    return hashlib.md5(json.dumps(data, sort_keys=True).encode()).hexdigest()


class CheckpointManager:
    """Saves and restores Q-tables as JSON files."""

    def __init__(self, checkpoints_dir: str = "training_checkpoints"):
        self.checkpoints_dir = Path(checkpoints_dir)
        self.checkpoints_dir.mkdir(parents=True, exist_ok=True)

    def _path(self, checkpoint_id: str) -> Path:
        return self.checkpoints_dir / f"{checkpoint_id}.json"

    def save_checkpoint(self, policy: QLearningPolicy, checkpoint_id: Optional[str] = None,
                        stats: Optional[EpisodeStats] = None) -> str:
        """Write the policy's Q-table to disk and return the file path."""
        if not checkpoint_id:
            checkpoint_id = f"qtable_ep{policy.episodes_seen}_{datetime.now().strftime('%Y%m%d_%H%M%S')}"

        checkpoint_dict = {
            "checkpoint_id": checkpoint_id,
            "timestamp": datetime.now().isoformat(),
            "compatibility_hash": compatibility_hash(policy),
            "episodes_seen": policy.episodes_seen,
            "q_table": {
                key_to_str(key): [float(v) for v in row]
                for key, row in policy.q_table().items()
            },
            "config": asdict(policy.config),
            "stats": asdict(stats) if stats is not None else None,
        }

        checkpoint_file = self._path(checkpoint_id)
        with open(checkpoint_file, "w") as f:
            json.dump(checkpoint_dict, f, indent=2)

        logger.info("Saved checkpoint %s (%d states)", checkpoint_id, len(checkpoint_dict["q_table"]))
        return str(checkpoint_file)

    def load_checkpoint(self, checkpoint_id: str) -> Optional[Checkpoint]:
        """Load a checkpoint, or None if it is missing or unreadable."""
        checkpoint_file = self._path(checkpoint_id)
        if not checkpoint_file.exists():
            return None

        try:
            with open(checkpoint_file, "r") as f:
                data = json.load(f)

            return Checkpoint(
                checkpoint_id=data["checkpoint_id"],
                timestamp=data["timestamp"],
                compatibility_hash=data["compatibility_hash"],
                episodes_seen=data.get("episodes_seen", 0),
                q_table={str_to_key(k): list(v) for k, v in data["q_table"].items()},
                config=data.get("config", {}),
                stats=data.get("stats"),
            )
        except (json.JSONDecodeError, KeyError, ValueError) as e:
            logger.warning("Error loading checkpoint %s: %s", checkpoint_id, e)
            return None

    def is_compatible(self, checkpoint: Checkpoint, policy: QLearningPolicy) -> bool:
        return checkpoint.compatibility_hash == compatibility_hash(policy)

    def apply_checkpoint(self, checkpoint: Checkpoint, policy: QLearningPolicy) -> bool:
        """Load the checkpoint's Q-table into ``policy`` if the settings match."""
        if not self.is_compatible(checkpoint, policy):
            logger.warning("Checkpoint %s does not match the policy's discretization",
                           checkpoint.checkpoint_id)
            return False
        policy.load_q_table(checkpoint.q_table)
        return True

    def list_checkpoints(self) -> List[CheckpointMetadata]:
        """All readable checkpoints, oldest episode count first."""
        checkpoints = []
        for checkpoint_file in self.checkpoints_dir.glob("*.json"):
            try:
                with open(checkpoint_file, "r") as f:
                    data = json.load(f)
                checkpoints.append(CheckpointMetadata(
                    checkpoint_id=data["checkpoint_id"],
                    timestamp=data["timestamp"],
                    episodes_seen=data.get("episodes_seen", 0),
                    state_count=len(data.get("q_table", {})),
                    file_path=str(checkpoint_file),
                    file_size=checkpoint_file.stat().st_size,
                ))
            except (json.JSONDecodeError, KeyError):
                continue

        checkpoints.sort(key=lambda x: (x.episodes_seen, x.timestamp))
        return checkpoints

    def cleanup_old_checkpoints(self, keep_count: int = 10) -> int:
        """Delete all but the ``keep_count`` most trained checkpoints. Returns how many went."""
        removed = 0
        checkpoints = self.list_checkpoints()
        for metadata in checkpoints[:max(0, len(checkpoints) - keep_count)]:
            try:
                Path(metadata.file_path).unlink()
                removed += 1
            except OSError as e:
                logger.warning("Could not remove checkpoint %s: %s", metadata.file_path, e)
        return removed
