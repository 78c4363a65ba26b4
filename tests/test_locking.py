"""Tests for the advisory file lock."""

from __future__ import annotations

import json
import os
import socket
import time
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from memgate.locking import (
    LockTimeoutError,
    acquire_lock,
    file_lock,
    release_lock,
    with_lock,
)
from memgate.models import LockRecord


@pytest.fixture
def lock_path(tmp_path: Path) -> Path:
    return tmp_path / "resource.lock"


def write_record(path: Path, pid: int, hostname: str, age_seconds: float = 0.0) -> None:
    acquired = datetime.now(timezone.utc) - timedelta(seconds=age_seconds)
    path.write_text(
        json.dumps(
            {
                "pid": pid,
                "hostname": hostname,
                "acquired_at": acquired.isoformat().replace("+00:00", "Z"),
            }
        )
    )


def read_record(path: Path) -> dict:
    return json.loads(path.read_text())


OTHER = LockRecord(pid=424242, hostname="other-host")


class TestAcquireRelease:
    def test_creates_and_removes_record(self, lock_path: Path):
        assert acquire_lock(lock_path) is True
        contents = read_record(lock_path)
        assert contents["pid"] == os.getpid()
        assert contents["hostname"] == socket.gethostname()
        assert "acquired_at" in contents

        release_lock(lock_path)
        assert not lock_path.exists()

    def test_release_is_idempotent(self, lock_path: Path):
        release_lock(lock_path)
        release_lock(lock_path)
        assert not lock_path.exists()

    def test_creates_parent_directory(self, tmp_path: Path):
        nested = tmp_path / "a" / "b" / "x.lock"
        acquire_lock(nested)
        assert nested.exists()
        release_lock(nested)

    def test_independent_paths(self, tmp_path: Path):
        first, second = tmp_path / "one.lock", tmp_path / "two.lock"
        acquire_lock(first, owner=OTHER)
        assert acquire_lock(second, timeout=0.1) is True
        release_lock(first)
        release_lock(second)


class TestRecordPublication:
    def test_record_is_complete_when_it_appears(self, lock_path: Path, monkeypatch):
        real_link = os.link
        published = []

        def checking_link(src, dst):
            published.append(json.loads(Path(src).read_text()))
            real_link(src, dst)

        monkeypatch.setattr("memgate.locking.os.link", checking_link)
        acquire_lock(lock_path)

        assert published and published[0]["pid"] == os.getpid()
        assert read_record(lock_path) == published[0]

    def test_no_temp_files_left_behind(self, lock_path: Path):
        acquire_lock(lock_path)
        acquire_lock(lock_path)
        assert [p.name for p in lock_path.parent.iterdir()] == [lock_path.name]
        release_lock(lock_path)
        assert list(lock_path.parent.iterdir()) == []

    def test_falls_back_without_hard_links(self, lock_path: Path, monkeypatch):
        def no_link(src, dst):
            raise OSError("hard links not supported")

        monkeypatch.setattr("memgate.locking.os.link", no_link)

        assert acquire_lock(lock_path) is True
        assert read_record(lock_path)["pid"] == os.getpid()
        with pytest.raises(LockTimeoutError):
            acquire_lock(lock_path, timeout=0.05, poll_interval=0.01, owner=OTHER)
        assert [p.name for p in lock_path.parent.iterdir()] == [lock_path.name]


class TestMutualExclusion:
    def test_second_holder_times_out(self, lock_path: Path):
        acquire_lock(lock_path, owner=OTHER)

        start = time.monotonic()
        with pytest.raises(LockTimeoutError):
            acquire_lock(lock_path, timeout=0.1, poll_interval=0.01)
        assert time.monotonic() - start >= 0.1
        # The original holder is untouched
        assert read_record(lock_path)["pid"] == OTHER.pid

    def test_succeeds_after_release(self, lock_path: Path):
        acquire_lock(lock_path, owner=OTHER)
        with pytest.raises(LockTimeoutError):
            acquire_lock(lock_path, timeout=0.05, poll_interval=0.01)

        release_lock(lock_path)
        assert acquire_lock(lock_path, timeout=0.05) is True
        assert read_record(lock_path)["pid"] == os.getpid()

    def test_same_pid_other_host_is_a_different_holder(self, lock_path: Path):
        write_record(lock_path, os.getpid(), "some-other-container")
        with pytest.raises(LockTimeoutError):
            acquire_lock(lock_path, timeout=0.05, poll_interval=0.01)

    def test_timeout_carries_holder_diagnostics(self, lock_path: Path):
        write_record(lock_path, 12345, "other-container", age_seconds=2)

        with pytest.raises(LockTimeoutError) as excinfo:
            acquire_lock(lock_path, timeout=0.05, poll_interval=0.01)

        err = excinfo.value
        assert err.holder is not None
        assert err.holder.pid == 12345
        assert err.holder.hostname == "other-container"
        assert err.age is not None and err.age >= 2
        assert "Timeout" in str(err)
        assert "Lock held by" in str(err)
        assert isinstance(err, TimeoutError)


class TestReentrancy:
    def test_same_holder_reenters_without_waiting(self, lock_path: Path):
        write_record(lock_path, os.getpid(), socket.gethostname())

        start = time.monotonic()
        assert acquire_lock(lock_path, timeout=5.0, poll_interval=1.0) is False
        assert time.monotonic() - start < 0.5
        assert lock_path.exists()

    def test_injected_identity_reenters(self, lock_path: Path):
        assert acquire_lock(lock_path, owner=OTHER) is True
        assert acquire_lock(lock_path, owner=OTHER, timeout=0.05) is False

    def test_nested_with_lock_keeps_outer_lock(self, lock_path: Path):
        def inner():
            return with_lock(lock_path, lambda: "inner")

        result = with_lock(lock_path, lambda: (inner(), lock_path.exists()))
        assert result == ("inner", True)
        assert not lock_path.exists()


class TestStaleAndCorrupt:
    def test_breaks_stale_lock(self, lock_path: Path):
        write_record(lock_path, 99999999, "dead-host", age_seconds=60)

        assert acquire_lock(lock_path, timeout=1.0) is True
        contents = read_record(lock_path)
        assert contents["pid"] == os.getpid()
        assert contents["hostname"] == socket.gethostname()

    def test_custom_staleness_threshold(self, lock_path: Path):
        write_record(lock_path, 99999999, "dead-host", age_seconds=5)

        with pytest.raises(LockTimeoutError):
            acquire_lock(lock_path, timeout=0.05, poll_interval=0.01)
        assert acquire_lock(lock_path, timeout=0.05, stale_after=1.0) is True

    @pytest.mark.parametrize("garbage", ["not json at all", "", '{"pid": "x"}', "[]"])
    def test_breaks_corrupt_lock(self, lock_path: Path, garbage: str):
        lock_path.write_text(garbage)

        assert acquire_lock(lock_path, timeout=1.0) is True
        assert read_record(lock_path)["pid"] == os.getpid()


class TestWithLock:
    def test_runs_and_releases(self, lock_path: Path):
        seen = []

        def fn():
            seen.append(lock_path.exists())
            return 42

        assert with_lock(lock_path, fn) == 42
        assert seen == [True]
        assert not lock_path.exists()

    def test_releases_when_fn_raises(self, lock_path: Path):
        def boom():
            raise RuntimeError("boom")

        with pytest.raises(RuntimeError, match="boom"):
            with_lock(lock_path, boom)
        assert not lock_path.exists()

    def test_sequential_calls_on_same_path(self, lock_path: Path):
        assert with_lock(lock_path, lambda: 1) == 1
        assert with_lock(lock_path, lambda: 2) == 2
        assert not lock_path.exists()

    def test_fn_not_run_on_timeout(self, lock_path: Path):
        acquire_lock(lock_path, owner=OTHER)
        called = []

        with pytest.raises(LockTimeoutError):
            with_lock(lock_path, lambda: called.append(1), timeout=0.05, poll_interval=0.01)
        assert called == []
        # Someone else's lock is not released by our failed attempt
        assert read_record(lock_path)["pid"] == OTHER.pid

    def test_context_manager(self, lock_path: Path):
        with file_lock(lock_path):
            assert lock_path.exists()
        assert not lock_path.exists()
