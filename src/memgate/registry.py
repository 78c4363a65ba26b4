"""Active-sessions registry — which sessions exist, across processes and hosts.

One JSON document, ``<data_dir>/active-sessions.json``::

    {"sessions": [{"session_id": ..., "hostname": ..., "pid": ...,
                   "agent": ..., "started_at": ..., "project": ...}]}

Every mutation re-reads the whole document, edits it in memory and writes it
back with temp-file + rename. A missing, corrupt or schema-invalid document is
an empty registry: this is low-value metadata and must never block a session
from starting. Mutations are bracketed by the advisory lock
``active-sessions.lock`` so concurrent processes do not lose each other's
updates; if that lock cannot be obtained the write goes ahead unlocked.
"""

from __future__ import annotations

import logging
import os
import shutil
import socket
import time
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from datetime import datetime, timedelta
from pathlib import Path
from typing import TypeVar

from memgate import paths
from memgate.locking import (
    DEFAULT_POLL_INTERVAL,
    DEFAULT_TIMEOUT,
    STALE_AFTER,
    LockTimeoutError,
    acquire_lock,
    release_lock,
)
from memgate.models import SessionEntry, utcnow
from memgate.storage import atomic_write_json, read_json

logger = logging.getLogger(__name__)

T = TypeVar("T")

STALE_THRESHOLD = timedelta(hours=24)
ORPHAN_GRACE = timedelta(hours=1)


def is_process_alive(pid: int) -> bool:
    """Zero-effect signal probe. Only meaningful for pids on this host."""
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        # Exists, owned by another user
        return True
    except (OSError, OverflowError, ValueError):
        # Includes pids outside the platform's pid_t range
        return False
    return True


class SessionRegistry:
    """File-backed directory of active sessions."""

    def __init__(
        self,
        data_dir: Path,
        *,
        stale_threshold: timedelta = STALE_THRESHOLD,
        orphan_grace: timedelta = ORPHAN_GRACE,
        use_lock: bool = True,
        lock_timeout: float = DEFAULT_TIMEOUT,
        lock_poll_interval: float = DEFAULT_POLL_INTERVAL,
        lock_stale_after: float = STALE_AFTER,
        hostname: str | None = None,
    ) -> None:
        self.data_dir = Path(data_dir)
        self.stale_threshold = stale_threshold
        self.orphan_grace = orphan_grace
        self.use_lock = use_lock
        self.lock_timeout = lock_timeout
        self.lock_poll_interval = lock_poll_interval
        self.lock_stale_after = lock_stale_after
        self.hostname = hostname or socket.gethostname()

    @property
    def path(self) -> Path:
        return self.data_dir / paths.REGISTRY_FILENAME

    @property
    def lock_path(self) -> Path:
        return self.data_dir / paths.REGISTRY_LOCK_FILENAME

    # ── Document I/O ─────────────────────────────────────────

    def _read(self) -> list[SessionEntry] | None:
        """Read the registry. None means the document exists but is unusable."""
        if not self.path.exists():
            return []
        try:
            data = read_json(self.path)
            if not isinstance(data, dict) or not isinstance(data.get("sessions"), list):
                raise ValueError("expected an object with a 'sessions' list")
            return [SessionEntry.from_dict(item) for item in data["sessions"]]
        except (OSError, ValueError) as e:
            logger.warning("Registry %s unreadable, starting fresh: %s", self.path, e)
            return None

    def _load(self) -> list[SessionEntry]:
        sessions = self._read()
        return sessions if sessions is not None else []

    def _write(self, sessions: list[SessionEntry]) -> None:
        atomic_write_json(self.path, {"sessions": [s.to_dict() for s in sessions]})

    @contextmanager
    def _locked(self) -> Iterator[None]:
        if not self.use_lock:
            yield
            return
        try:
            created = acquire_lock(
                self.lock_path,
                self.lock_timeout,
                self.lock_poll_interval,
                stale_after=self.lock_stale_after,
            )
        except LockTimeoutError as e:
            logger.warning("Proceeding without registry lock: %s", e)
            created = False
        try:
            yield
        finally:
            if created:
                release_lock(self.lock_path)

    def _mutate(self, fn: Callable[[], T]) -> T:
        with self._locked():
            return fn()

    # ── CRUD ─────────────────────────────────────────────────

    def register(self, entry: SessionEntry) -> None:
        """Insert ``entry``, replacing any entry with the same session_id.

        Raises ValueError if ``entry`` would not read back from the document.
        """
        entry = SessionEntry.from_dict(entry.to_dict())

        def _register() -> None:
            sessions = [s for s in self._load() if s.session_id != entry.session_id]
            sessions.append(entry)
            self._write(sessions)

        self._mutate(_register)
        logger.info(
            "Registered session %s (agent: %s, pid: %d)",
            entry.session_id[:8],
            entry.agent,
            entry.pid,
        )

    def unregister(self, session_id: str) -> bool:
        """Remove a session. Returns whether it was present."""

        def _unregister() -> bool:
            sessions = self._load()
            remaining = [s for s in sessions if s.session_id != session_id]
            if len(remaining) == len(sessions):
                return False
            self._write(remaining)
            return True

        removed = self._mutate(_unregister)
        if removed:
            logger.info("Unregistered session %s", session_id[:8])
        else:
            logger.warning("Session %s not found in registry", session_id[:8])
        return removed

    def list_sessions(self) -> list[SessionEntry]:
        """Current snapshot of the registry. Never raises."""
        try:
            return self._load()
        except Exception as e:
            logger.warning("Failed to list sessions: %s", e)
            return []

    def find_by_host_and_pid(self, hostname: str, pid: int) -> SessionEntry | None:
        for entry in self.list_sessions():
            if entry.hostname == hostname and entry.pid == pid:
                return entry
        return None

    def find_by_id(self, session_id: str) -> SessionEntry | None:
        for entry in self.list_sessions():
            if entry.session_id == session_id:
                return entry
        return None

    # ── Pruning ──────────────────────────────────────────────

    def _is_stale(self, entry: SessionEntry, now: datetime) -> bool:
        age = now - entry.started_at
        if age > self.stale_threshold:
            logger.info(
                "Pruning stale session %s (age: %dh)",
                entry.session_id[:8],
                round(age.total_seconds() / 3600),
            )
            return True
        if entry.hostname == self.hostname and not is_process_alive(entry.pid):
            logger.info(
                "Pruning dead session %s (pid %d no longer running)",
                entry.session_id[:8],
                entry.pid,
            )
            return True
        # Other hosts: liveness cannot be probed, age expiry only
        return False

    def prune_stale(self) -> int:
        """Drop expired entries and entries whose local process is gone.

        Also deletes the per-session directories of dropped entries, and of
        directories no entry refers to once they are older than the orphan
        grace period. Returns the number of registry entries dropped.
        """

        def _prune() -> int:
            sessions = self._read()
            now = utcnow()
            kept: list[SessionEntry] = []
            for entry in sessions or []:
                if self._is_stale(entry, now):
                    self._remove_session_dir(entry.session_id)
                else:
                    kept.append(entry)
            pruned = len(sessions or []) - len(kept)
            if pruned:
                self._write(kept)
                logger.info("Pruned %d stale session(s)", pruned)
            if sessions is not None:
                self._sweep_orphan_dirs({e.session_id for e in kept})
            return pruned

        return self._mutate(_prune)

    def _remove_session_dir(self, session_id: str) -> None:
        try:
            target = paths.session_dir(self.data_dir, session_id)
            if target.exists():
                shutil.rmtree(target)
                logger.info("Cleaned up session directory: %s", target)
        except (OSError, ValueError) as e:
            logger.warning("Failed to clean up session directory for %s: %s", session_id[:8], e)

    def _sweep_orphan_dirs(self, live_ids: set[str]) -> None:
        root = paths.sessions_root(self.data_dir)
        if not root.is_dir():
            return
        cutoff = time.time() - self.orphan_grace.total_seconds()
        for child in root.iterdir():
            if not child.is_dir() or child.name in live_ids:
                continue
            try:
                if child.stat().st_mtime < cutoff:
                    shutil.rmtree(child)
                    logger.info("Removed orphaned session directory: %s", child)
            except OSError as e:
                logger.warning("Failed to remove orphaned directory %s: %s", child, e)

    # ── Legacy single-session file ───────────────────────────

    def migrate_from_legacy(self) -> bool:
        """Fold a pre-registry ``active-session.json`` into the registry.

        Runs only when the legacy file names a session and no registry exists
        yet. The legacy file is kept as ``active-session.json.migrated``.
        """
        legacy = self.data_dir / paths.LEGACY_SESSION_FILENAME
        if not legacy.exists() or self.path.exists():
            return False
        try:
            data = read_json(legacy)
        except (OSError, ValueError) as e:
            logger.warning("Legacy session file %s unreadable: %s", legacy, e)
            return False
        if not isinstance(data, dict) or not data.get("session_id"):
            return False

        def _migrate() -> bool:
            if self.path.exists():
                return False
            entry = SessionEntry.from_dict(
                {
                    "session_id": data["session_id"],
                    "hostname": data.get("hostname") or self.hostname,
                    "pid": data.get("pid") or os.getpid(),
                    "agent": data.get("agent") or "unknown",
                    "started_at": data.get("started_at") or utcnow(),
                    "project": data.get("project"),
                }
            )
            atomic_write_json(paths.snapshot_path(self.data_dir, entry.session_id), data)
            self.register(entry)
            legacy.rename(legacy.with_name(legacy.name + ".migrated"))
            return True

        try:
            migrated = self._mutate(_migrate)
        except (OSError, ValueError) as e:
            logger.warning("Legacy session migration failed: %s", e)
            return False
        if migrated:
            logger.info("Migrated legacy session file %s", legacy)
        return migrated
