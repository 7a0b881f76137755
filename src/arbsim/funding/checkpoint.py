"""Persistence for the funding engine checkpoint."""

from pathlib import Path

from arbsim.data.files import read_json, write_json_atomic
from arbsim.exceptions import DataGapError
from arbsim.funding.models import Checkpoint
from arbsim.logging import get_logger

logger = get_logger(__name__)


class CheckpointStore:
    """signals/strategy_checkpoint_<SYMBOL>.json, written atomically."""

    def __init__(self, signals_dir: Path, symbol: str) -> None:
        self.path = Path(signals_dir) / f"strategy_checkpoint_{symbol}.json"

    def load(self) -> Checkpoint:
        """Read the checkpoint; a missing file is a fresh start.

        Raises:
            DataGapError: If the file exists but is not a JSON object.
        """
        if not self.path.exists():
            return Checkpoint()
        data = read_json(self.path)
        if not isinstance(data, dict):
            raise DataGapError(str(self.path), "expected a JSON object")
        return Checkpoint.from_dict(data)

    def save(self, checkpoint: Checkpoint) -> None:
        write_json_atomic(self.path, checkpoint.to_dict())

    def delete(self) -> bool:
        if self.path.exists():
            self.path.unlink()
            logger.info("checkpoint_deleted", path=str(self.path))
            return True
        return False
