"""Tests for per-session workflow state and its snapshot form."""

from __future__ import annotations

import pytest

from memgate.models import Confirmation, SurfacedScar
from memgate.session_state import SessionState


def scar(scar_id: str, source: str = "recall") -> SurfacedScar:
    return SurfacedScar(scar_id=scar_id, title=f"Scar {scar_id}", source=source)


class TestSessionState:
    def test_add_surfaced_scars_dedupes(self):
        state = SessionState("s1", "cli")
        assert len(state.add_surfaced_scars([scar("a"), scar("b")])) == 2
        added = state.add_surfaced_scars([scar("b"), scar("c")])

        assert [s.scar_id for s in added] == ["c"]
        assert [s.scar_id for s in state.surfaced_scars] == ["a", "b", "c"]

    def test_reconfirmation_replaces(self):
        state = SessionState("s1", "cli")
        state.add_confirmations([Confirmation("a", "N_A", "first")])
        state.add_confirmations([Confirmation("a", "APPLYING", "second")])

        assert len(state.confirmations) == 1
        assert state.confirmations[0].decision == "APPLYING"

    def test_outstanding_ignores_starter_scars(self):
        state = SessionState("s1", "cli")
        state.add_surfaced_scars([scar("s", "session_start"), scar("a"), scar("b")])
        state.add_confirmations([Confirmation("a", "N_A", "done")])

        assert [s.scar_id for s in state.outstanding_scars()] == ["b"]


class TestSnapshot:
    def test_round_trip(self):
        state = SessionState("s1", "cli", project="orbit")
        state.mark_recall_called()
        state.add_surfaced_scars([scar("a"), scar("s", "session_start")])
        state.add_confirmations([Confirmation("a", "REFUTED", "accepting the risk here")])

        restored = SessionState.from_snapshot(state.to_snapshot())
        assert restored == state

    def test_recall_flag_inferred_from_recall_scars(self):
        snapshot = SessionState("s1", "cli").to_snapshot()
        snapshot.pop("recall_called")
        snapshot["surfaced_scars"] = [scar("a").to_dict()]

        assert SessionState.from_snapshot(snapshot).recall_called is True

    def test_starter_scars_alone_do_not_imply_recall(self):
        snapshot = SessionState("s1", "cli").to_snapshot()
        snapshot.pop("recall_called")
        snapshot["surfaced_scars"] = [scar("s", "session_start").to_dict()]

        assert SessionState.from_snapshot(snapshot).recall_called is False

    @pytest.mark.parametrize(
        "snapshot",
        [
            {},
            {"session_id": ""},
            {"session_id": "s1", "surfaced_scars": [{"scar_id": "a"}]},
            {"session_id": "s1", "confirmations": [{"scar_id": "a", "decision": "MAYBE"}]},
        ],
    )
    def test_malformed(self, snapshot):
        with pytest.raises(ValueError):
            SessionState.from_snapshot(snapshot)
