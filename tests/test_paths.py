"""Tests for data directory resolution and per-session paths."""

from __future__ import annotations

import pytest
from pathlib import Path

from memgate import paths


class TestResolveDataDir:
    def test_finds_registry_sentinel(self, tmp_path: Path):
        data_dir = tmp_path / "project" / ".memgate"
        sub = tmp_path / "project" / "sub" / "deep"
        sub.mkdir(parents=True)
        data_dir.mkdir(parents=True)
        (data_dir / "active-sessions.json").write_text("{}")

        assert paths.resolve_data_dir(sub) == data_dir.resolve()

    def test_finds_config_sentinel(self, tmp_path: Path):
        data_dir = tmp_path / "project" / ".memgate"
        data_dir.mkdir(parents=True)
        (data_dir / "config.json").write_text("{}")

        assert paths.resolve_data_dir(tmp_path / "project") == data_dir.resolve()

    def test_legacy_file_is_not_a_sentinel(self, tmp_path: Path, monkeypatch):
        monkeypatch.setenv("HOME", str(tmp_path / "home"))
        data_dir = tmp_path / "project" / ".memgate"
        data_dir.mkdir(parents=True)
        (data_dir / "active-session.json").write_text("{}")

        result = paths.resolve_data_dir(tmp_path / "project")
        assert result == Path.home() / ".memgate"

    def test_nearest_wins(self, tmp_path: Path):
        outer = tmp_path / ".memgate"
        inner = tmp_path / "nested" / ".memgate"
        outer.mkdir()
        inner.mkdir(parents=True)
        (outer / "active-sessions.json").write_text("{}")
        (inner / "config.json").write_text("{}")

        assert paths.resolve_data_dir(tmp_path / "nested") == inner.resolve()


class TestSessionPaths:
    def test_snapshot_path(self, tmp_path: Path):
        result = paths.snapshot_path(tmp_path, "abc-123")
        assert result == tmp_path / "sessions" / "abc-123" / "session.json"

    @pytest.mark.parametrize("bad", ["", "../escape", "a/b", "..", "/abs"])
    def test_rejects_unsafe_ids(self, tmp_path: Path, bad: str):
        with pytest.raises(ValueError):
            paths.session_dir(tmp_path, bad)
