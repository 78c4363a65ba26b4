"""Advisory file lock shared by unrelated processes.

The lock is a JSON file ``{pid, hostname, acquired_at}``, written to a temp
file and hard-linked into place (O_CREAT | O_EXCL where hard links are not
supported). Kernel locks (flock/fcntl) are not used because they are
unreliable on network and container filesystems. Instead, every participant
follows the same convention:

- the record exists → somebody holds the lock
- the record names our own (pid, hostname) → reentrant, already held
- the record is unreadable, or older than ``stale_after`` → the holder
  crashed; break it and retry
- otherwise poll until ``timeout``
"""

from __future__ import annotations

import json
import logging
import os
import socket
import tempfile
import time
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import TypeVar

from memgate.models import LockRecord

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_TIMEOUT = 5.0
DEFAULT_POLL_INTERVAL = 0.025
STALE_AFTER = 30.0  # critical sections take milliseconds


class LockTimeoutError(TimeoutError):
    """Raised when a lock could not be obtained within the timeout."""

    def __init__(
        self,
        path: Path,
        timeout: float,
        holder: LockRecord | None,
        age: float | None,
    ) -> None:
        self.path = path
        self.timeout = timeout
        self.holder = holder
        self.age = age
        if holder is not None:
            detail = (
                f"Lock held by pid={holder.pid} hostname={holder.hostname} "
                f"(age {age:.1f}s)"
            )
        else:
            detail = "Lock holder unknown (lock file unreadable or released)"
        super().__init__(f"Timeout after {timeout:.3f}s waiting for lock {path}. {detail}")


def current_identity() -> LockRecord:
    """Lock record for this process, stamped now."""
    return LockRecord(pid=os.getpid(), hostname=socket.gethostname())


def _read_record(path: Path) -> LockRecord | None:
    """Return the lock record, or None if it is unreadable / corrupt.

    FileNotFoundError propagates so the caller can retry creation at once.
    """
    try:
        raw = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        raise
    except OSError:
        return None
    try:
        return LockRecord.from_dict(json.loads(raw))
    except ValueError:
        return None


def _write_exclusive(path: Path, record: LockRecord) -> bool:
    try:
        fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o644)
    except FileExistsError:
        return False
    with os.fdopen(fd, "w", encoding="utf-8") as handle:
        json.dump(record.to_dict(), handle)
        handle.flush()
        os.fsync(handle.fileno())
    return True


def _try_create(path: Path, owner: LockRecord) -> bool:
    """Create the lock record if absent. True on success, False if it exists.

    The record is written to a temp file first and hard-linked into place, so
    other participants never observe it half-written.
    """
    if path.exists():
        return False
    record = LockRecord(pid=owner.pid, hostname=owner.hostname)
    fd, temp_path = tempfile.mkstemp(dir=str(path.parent), prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            json.dump(record.to_dict(), handle)
            handle.flush()
            os.fsync(handle.fileno())
        try:
            os.link(temp_path, path)
        except FileExistsError:
            return False
        except OSError as e:
            # Filesystem without hard links
            logger.debug("Hard link unavailable for %s (%s), using O_EXCL create", path, e)
            return _write_exclusive(path, record)
        return True
    finally:
        try:
            os.unlink(temp_path)
        except FileNotFoundError:
            pass


def _break(path: Path) -> None:
    try:
        path.unlink()
    except FileNotFoundError:
        # Another process broke it first
        pass


def acquire_lock(
    path: Path,
    timeout: float = DEFAULT_TIMEOUT,
    poll_interval: float = DEFAULT_POLL_INTERVAL,
    *,
    stale_after: float = STALE_AFTER,
    owner: LockRecord | None = None,
) -> bool:
    """Block until the lock at ``path`` is held by ``owner`` (default: this process).

    Returns True if this call created the lock record, False if ``owner``
    already held it (reentrant acquisition). Raises LockTimeoutError once the
    cumulative wait exceeds ``timeout``.
    """
    path = Path(path)
    owner = owner or current_identity()
    path.parent.mkdir(parents=True, exist_ok=True)
    deadline = time.monotonic() + timeout

    while True:
        if _try_create(path, owner):
            logger.debug("Acquired lock %s (pid=%d)", path, owner.pid)
            return True

        try:
            holder = _read_record(path)
        except FileNotFoundError:
            continue  # released between create and read

        if holder is None:
            logger.warning("Breaking unreadable lock file %s", path)
            _break(path)
            continue

        if holder.same_holder(owner):
            logger.debug("Reentrant acquisition of %s (pid=%d)", path, owner.pid)
            return False

        age = holder.age_seconds()
        if age > stale_after:
            logger.warning(
                "Breaking stale lock %s held by pid=%d on %s (age %.1fs)",
                path,
                holder.pid,
                holder.hostname,
                age,
            )
            _break(path)
            continue

        if time.monotonic() >= deadline:
            raise LockTimeoutError(path, timeout, holder, age)

        time.sleep(poll_interval)


def release_lock(path: Path) -> None:
    """Delete the lock record. A missing record is not an error."""
    try:
        Path(path).unlink()
    except FileNotFoundError:
        pass
    except OSError as e:
        logger.warning("Failed to release lock %s: %s", path, e)


@contextmanager
def file_lock(
    path: Path,
    timeout: float = DEFAULT_TIMEOUT,
    poll_interval: float = DEFAULT_POLL_INTERVAL,
    *,
    stale_after: float = STALE_AFTER,
    owner: LockRecord | None = None,
) -> Iterator[None]:
    """Hold the lock for the duration of the ``with`` block.

    A reentrant entry leaves the record in place on exit; the outermost
    holder releases it.
    """
    created = acquire_lock(
        path, timeout, poll_interval, stale_after=stale_after, owner=owner
    )
    try:
        yield
    finally:
        if created:
            release_lock(path)


def with_lock(
    path: Path,
    fn: Callable[[], T],
    timeout: float = DEFAULT_TIMEOUT,
    poll_interval: float = DEFAULT_POLL_INTERVAL,
    *,
    stale_after: float = STALE_AFTER,
    owner: LockRecord | None = None,
) -> T:
    """Run ``fn`` while holding the lock; release on every exit path."""
    with file_lock(path, timeout, poll_interval, stale_after=stale_after, owner=owner):
        return fn()
