"""JSON persistence for the scan checkpoint."""

from __future__ import annotations

import json
import logging
from pathlib import Path

from wa_monitor.core.models import ScanCheckpoint

logger = logging.getLogger(__name__)


class CheckpointStore:
    """Reads and writes the scan checkpoint file.

    Persistence is best effort: read and write failures are logged and the
    scan carries on with the in-memory checkpoint.
    """

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)

    def load(self) -> ScanCheckpoint:
        """Load the checkpoint, or an empty one if missing or unreadable."""
        if not self.path.exists():
            return ScanCheckpoint()

        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
            checkpoint = ScanCheckpoint.from_dict(data)
        except (OSError, json.JSONDecodeError, TypeError, ValueError, AttributeError):
            logger.warning("Corrupted checkpoint %s, starting fresh", self.path)
            return ScanCheckpoint()

        if not checkpoint.is_empty:
            logger.info(
                "Loaded previous scan state (batch index %d, last conversation: %s)",
                checkpoint.last_processed_batch_start_index,
                checkpoint.last_successful_conversation,
            )
        return checkpoint

    def save(self, checkpoint: ScanCheckpoint) -> bool:
        """Write the checkpoint atomically. Returns False on failure."""
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
            tmp_path.write_text(
                json.dumps(checkpoint.to_dict(), indent=2, ensure_ascii=False),
                encoding="utf-8",
            )
            tmp_path.replace(self.path)
        except OSError:
            logger.exception("Error saving scan state to %s", self.path)
            return False
        return True
