"""In-memory state of one session, owned by whoever represents that session."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from memgate.models import Confirmation, SurfacedScar, format_timestamp, parse_timestamp, utcnow

logger = logging.getLogger(__name__)


@dataclass
class SessionState:
    """Workflow state of a session: recall flag, surfaced scars, confirmations."""

    session_id: str
    agent: str
    project: str | None = None
    started_at: datetime = field(default_factory=utcnow)
    recall_called: bool = False
    surfaced_scars: list[SurfacedScar] = field(default_factory=list)
    confirmations: list[Confirmation] = field(default_factory=list)

    # ── Mutations ────────────────────────────────────────────

    def mark_recall_called(self) -> None:
        """Recall ran, whether or not it surfaced anything."""
        self.recall_called = True

    def add_surfaced_scars(self, scars: Iterable[SurfacedScar]) -> list[SurfacedScar]:
        """Append scars not already tracked (by scar_id). Returns the new ones."""
        known = {s.scar_id for s in self.surfaced_scars}
        added = []
        for scar in scars:
            if scar.scar_id in known:
                continue
            self.surfaced_scars.append(scar)
            known.add(scar.scar_id)
            added.append(scar)
        logger.debug("Surfaced scars tracked: %d total", len(self.surfaced_scars))
        return added

    def add_confirmations(self, confirmations: Iterable[Confirmation]) -> None:
        """Record confirmations; a re-confirmation replaces the earlier one."""
        by_id = {c.scar_id: i for i, c in enumerate(self.confirmations)}
        for conf in confirmations:
            if conf.scar_id in by_id:
                self.confirmations[by_id[conf.scar_id]] = conf
            else:
                by_id[conf.scar_id] = len(self.confirmations)
                self.confirmations.append(conf)
        logger.debug("Confirmations tracked: %d total", len(self.confirmations))

    # ── Queries ──────────────────────────────────────────────

    def recall_scars(self) -> list[SurfacedScar]:
        return [s for s in self.surfaced_scars if s.source == "recall"]

    def outstanding_scars(self) -> list[SurfacedScar]:
        """Recall scars with no confirmation for the same scar_id."""
        confirmed = {c.scar_id for c in self.confirmations}
        return [s for s in self.recall_scars() if s.scar_id not in confirmed]

    # ── Snapshot form ────────────────────────────────────────

    def to_snapshot(self) -> dict[str, Any]:
        return {
            "session_id": self.session_id,
            "agent": self.agent,
            "project": self.project,
            "started_at": format_timestamp(self.started_at),
            "recall_called": self.recall_called,
            "surfaced_scars": [s.to_dict() for s in self.surfaced_scars],
            "confirmations": [c.to_dict() for c in self.confirmations],
        }

    @classmethod
    def from_snapshot(cls, data: dict[str, Any]) -> SessionState:
        """Rebuild state from a snapshot. Raises ValueError if malformed."""
        session_id = data.get("session_id")
        if not isinstance(session_id, str) or not session_id:
            raise ValueError("Snapshot has no session_id")
        scars = [SurfacedScar.from_dict(s) for s in data.get("surfaced_scars") or []]
        confirmations = [Confirmation.from_dict(c) for c in data.get("confirmations") or []]
        started_at = data.get("started_at")
        project = data.get("project")
        return cls(
            session_id=session_id,
            agent=str(data.get("agent") or "unknown"),
            project=project if isinstance(project, str) else None,
            started_at=parse_timestamp(started_at) if started_at else utcnow(),
            # Older snapshots lack the flag; recall scars imply it
            recall_called=bool(data.get("recall_called")) or any(s.source == "recall" for s in scars),
            surfaced_scars=scars,
            confirmations=confirmations,
        )
