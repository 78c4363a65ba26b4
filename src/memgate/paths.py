"""Shared data directory layout.

    <data_dir>/                         default: nearest .memgate/ walking up from cwd, else ~/.memgate
    ├── active-sessions.json            session registry
    ├── active-sessions.lock            advisory lock guarding registry mutations
    ├── scars/*.md                      starter scars (YAML frontmatter)
    └── sessions/<session_id>/
        └── session.json                per-session snapshot
"""

from __future__ import annotations

import logging
import re
from pathlib import Path

logger = logging.getLogger(__name__)

DIR_NAME = ".memgate"
REGISTRY_FILENAME = "active-sessions.json"
REGISTRY_LOCK_FILENAME = "active-sessions.lock"
LEGACY_SESSION_FILENAME = "active-session.json"
SNAPSHOT_FILENAME = "session.json"
SESSIONS_DIRNAME = "sessions"
SCARS_DIRNAME = "scars"

# Checked in order at each level of the walk-up
_SENTINELS = (REGISTRY_FILENAME, "config.json")

_SESSION_ID_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]*$")


def resolve_data_dir(start: Path | None = None) -> Path:
    """Find the data directory for the project containing ``start`` (default cwd).

    Agents ``cd`` into other repositories, so the directory is located by
    walking up to a ``.memgate/`` that already holds a sentinel file.
    """
    current = (start or Path.cwd()).resolve()
    for parent in (current, *current.parents):
        candidate = parent / DIR_NAME
        for sentinel in _SENTINELS:
            if (candidate / sentinel).exists():
                logger.debug("Found data dir via %s: %s", sentinel, candidate)
                return candidate
    return Path.home() / DIR_NAME


def validate_session_id(session_id: str) -> str:
    """Reject ids that could escape the sessions/ directory."""
    if not isinstance(session_id, str) or not _SESSION_ID_RE.match(session_id) or ".." in session_id:
        raise ValueError(f"Invalid session id: {session_id!r}")
    return session_id


def sessions_root(data_dir: Path) -> Path:
    return data_dir / SESSIONS_DIRNAME


def session_dir(data_dir: Path, session_id: str) -> Path:
    return sessions_root(data_dir) / validate_session_id(session_id)


def snapshot_path(data_dir: Path, session_id: str) -> Path:
    return session_dir(data_dir, session_id) / SNAPSHOT_FILENAME
