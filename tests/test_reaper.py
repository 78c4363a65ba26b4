"""Tests for opportunistic stale-session pruning."""

from __future__ import annotations

import json
from datetime import timedelta
from pathlib import Path

import memgate.registry as registry_module
from memgate.models import SessionEntry, utcnow
from memgate.reaper import StaleSessionReaper
from memgate.registry import SessionRegistry


def entry(session_id: str, pid: int, hours_ago: float = 0.0) -> SessionEntry:
    return SessionEntry(
        session_id=session_id,
        hostname="host-h",
        pid=pid,
        agent="cli",
        started_at=utcnow() - timedelta(hours=hours_ago),
    )


class TestStaleSessionReaper:
    def test_reap_prunes_dead_sessions(self, tmp_path: Path, monkeypatch):
        monkeypatch.setattr(registry_module, "is_process_alive", lambda pid: pid == 1)
        registry = SessionRegistry(tmp_path, hostname="host-h")
        registry.register(entry("alive", 1))
        registry.register(entry("dead", 2))

        assert StaleSessionReaper(registry).reap() == 1
        assert [s.session_id for s in registry.list_sessions()] == ["alive"]

    def test_reap_is_idempotent(self, tmp_path: Path, monkeypatch):
        monkeypatch.setattr(registry_module, "is_process_alive", lambda pid: False)
        registry = SessionRegistry(tmp_path, hostname="host-h")
        registry.register(entry("dead", 2))
        reaper = StaleSessionReaper(registry)

        assert reaper.reap() == 1
        assert reaper.reap() == 0

    def test_reap_migrates_legacy_file_first(self, tmp_path: Path):
        (tmp_path / "active-session.json").write_text(
            json.dumps({"session_id": "legacy-1", "agent": "cli"})
        )
        registry = SessionRegistry(tmp_path)

        # The migrated entry names this live process, so pruning keeps it
        assert StaleSessionReaper(registry).reap() == 0
        assert registry.find_by_id("legacy-1") is not None

    def test_legacy_migration_can_be_disabled(self, tmp_path: Path):
        (tmp_path / "active-session.json").write_text(json.dumps({"session_id": "legacy-1"}))
        registry = SessionRegistry(tmp_path)

        StaleSessionReaper(registry, migrate_legacy=False).reap()
        assert registry.find_by_id("legacy-1") is None
