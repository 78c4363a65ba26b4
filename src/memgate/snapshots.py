"""Per-session snapshot files — ``sessions/<session_id>/session.json``.

The snapshot survives a server restart and is what the recovery path reads
when in-memory session state has been lost. Writes are whole-document
temp-file + rename; reads never raise.
"""

from __future__ import annotations

import logging
import shutil
from pathlib import Path
from typing import Any

from memgate import paths
from memgate.storage import atomic_write_json, read_json

logger = logging.getLogger(__name__)


class SnapshotStore:
    """Read/write access to per-session snapshot documents."""

    def __init__(self, data_dir: Path) -> None:
        self.data_dir = Path(data_dir)

    def path_for(self, session_id: str) -> Path:
        return paths.snapshot_path(self.data_dir, session_id)

    def read(self, session_id: str) -> dict[str, Any] | None:
        """Return the snapshot dict, or None if missing or unreadable."""
        try:
            path = self.path_for(session_id)
            if not path.exists():
                return None
            data = read_json(path)
        except (OSError, ValueError) as e:
            logger.warning("Snapshot for %s unreadable: %s", session_id[:8], e)
            return None
        if not isinstance(data, dict):
            logger.warning("Snapshot for %s is not a JSON object", session_id[:8])
            return None
        return data

    def write(self, session_id: str, data: dict[str, Any]) -> Path:
        path = self.path_for(session_id)
        atomic_write_json(path, data)
        logger.debug("Snapshot written: %s", path)
        return path

    def update(self, session_id: str, **fields: Any) -> Path:
        """Merge ``fields`` into the existing snapshot (or a fresh one)."""
        data = self.read(session_id) or {"session_id": session_id}
        data.update(fields)
        return self.write(session_id, data)

    def remove(self, session_id: str) -> None:
        target = paths.session_dir(self.data_dir, session_id)
        if target.exists():
            shutil.rmtree(target)
            logger.info("Cleaned up session directory: %s", target)
