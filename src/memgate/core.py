"""Memgate orchestrator — session lifecycle on top of the coordination core.

Responsibilities:
1. session_start — prune stale sessions, resume this process's session or
   create a new one, surface starter scars, write the snapshot, register
2. recall — record externally ranked scars, persist them to the snapshot
3. confirm_scars — validate and record the agent's decision on each scar
4. session_close — unregister, delete per-session storage, clear state
5. check — advisory enforcement for the tool-dispatch layer
"""

from __future__ import annotations

import logging
import os
import re
import socket
import uuid
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from datetime import timedelta
from pathlib import Path
from typing import Any

from memgate import paths
from memgate.compliance import ComplianceTracker, EnforcementResult
from memgate.config import MemgateConfig, load_config
from memgate.models import DECISIONS, Confirmation, SessionEntry, SurfacedScar, utcnow
from memgate.reaper import StaleSessionReaper
from memgate.registry import SessionRegistry
from memgate.scars import ScarLibrary
from memgate.session_state import SessionState
from memgate.snapshots import SnapshotStore

logger = logging.getLogger(__name__)

MIN_EVIDENCE_LENGTH = 50

# First-person forward-looking language; APPLYING evidence must be past tense
_FUTURE_PATTERN = re.compile(
    r"\b(I will|I'll|we will|we'll|I'm going to|we're going to|I plan to|I intend to|I shall|I aim to|I expect to)\b",
    re.IGNORECASE,
)
_RISK_PATTERN = re.compile(
    r"\b(risk|despite|overrid|acknowledg|accept|aware|trade.?off|exception)",
    re.IGNORECASE,
)
_SHORT_ID = re.compile(r"^[0-9a-f]{8}$", re.IGNORECASE)

_EVIDENCE_HINT = {
    "APPLYING": "past-tense evidence with artifact",
    "N_A": "scenario comparison",
    "REFUTED": "risk acknowledgment",
}


@dataclass
class ConfirmResult:
    """Outcome of a confirm_scars call. Nothing is recorded unless ``valid``."""

    valid: bool
    errors: list[str] = field(default_factory=list)
    confirmations: list[Confirmation] = field(default_factory=list)
    missing_scars: list[str] = field(default_factory=list)


def _validate_evidence(title: str, decision: str, evidence: str) -> str | None:
    """Return an error message, or None if the evidence is acceptable."""
    if decision not in DECISIONS:
        return f'{title}: Invalid decision "{decision}". Must be APPLYING, N_A, or REFUTED.'
    text = evidence.strip()
    if len(text) < MIN_EVIDENCE_LENGTH:
        return (
            f"{title}: Evidence too short ({len(text)} chars, minimum {MIN_EVIDENCE_LENGTH}). "
            f"Provide substantive {_EVIDENCE_HINT[decision]}."
        )
    if decision == "APPLYING" and _FUTURE_PATTERN.search(text):
        return (
            f"{title}: APPLYING evidence must be past-tense (what you DID, not what you WILL do)."
        )
    if decision == "REFUTED" and not _RISK_PATTERN.search(text):
        return f"{title}: REFUTED evidence must acknowledge the risk of overriding this scar."
    return None


class Memgate:
    """Wires registry, reaper, snapshots and compliance tracking for one process."""

    def __init__(
        self,
        config: MemgateConfig | None = None,
        *,
        data_dir: Path | None = None,
        hostname: str | None = None,
    ) -> None:
        self.config = config or load_config()
        self.data_dir = Path(data_dir or self.config.data_dir or paths.resolve_data_dir())
        self.hostname = hostname or socket.gethostname()

        sessions = self.config.sessions
        lock = self.config.lock
        self.registry = SessionRegistry(
            self.data_dir,
            stale_threshold=timedelta(hours=sessions.max_age_hours),
            orphan_grace=timedelta(hours=sessions.orphan_grace_hours),
            use_lock=sessions.lock_registry,
            lock_timeout=lock.timeout,
            lock_poll_interval=lock.poll_interval,
            lock_stale_after=lock.stale_after,
            hostname=self.hostname,
        )
        self.snapshots = SnapshotStore(self.data_dir)
        self.reaper = StaleSessionReaper(self.registry)
        self.tracker = ComplianceTracker(self.registry, self.snapshots, hostname=self.hostname)
        self.scars = ScarLibrary(self.data_dir / paths.SCARS_DIRNAME)

    @property
    def session(self) -> SessionState | None:
        return self.tracker.session

    # ── Lifecycle ────────────────────────────────────────────

    def session_start(
        self,
        agent: str,
        project: str | None = None,
        *,
        force: bool = False,
    ) -> SessionState:
        """Start (or resume) the session this process represents."""
        self.reaper.reap()

        if not force:
            if self.tracker.session is not None:
                return self.tracker.session
            resumed = self._resume_own_session()
            if resumed is not None:
                return resumed
        else:
            logger.info("force=True, skipping active session guard")

        previous = self.tracker.session
        if previous is not None:
            self.registry.unregister(previous.session_id)
        # In-memory state may be gone while this process is still registered
        own = self.registry.find_by_host_and_pid(self.hostname, os.getpid())
        if own is not None and (previous is None or own.session_id != previous.session_id):
            self.registry.unregister(own.session_id)

        state = self.tracker.start_session(str(uuid.uuid4()), agent, project, force=True)
        self.tracker.record_session_start_scars(self.scars.starter_scars())
        self._persist(state)
        self.registry.register(
            SessionEntry(
                session_id=state.session_id,
                hostname=self.hostname,
                pid=os.getpid(),
                agent=agent,
                started_at=state.started_at,
                project=project,
            )
        )
        return state

    def _resume_own_session(self) -> SessionState | None:
        entry = self.registry.find_by_host_and_pid(self.hostname, os.getpid())
        if entry is None:
            return None
        data = self.snapshots.read(entry.session_id)
        if data is None:
            logger.warning("Registry entry found but snapshot missing for %s", entry.session_id)
            return None
        try:
            state = SessionState.from_snapshot(data)
        except ValueError as e:
            logger.warning("Snapshot for %s unusable, starting fresh: %s", entry.session_id, e)
            return None
        return self.tracker.resume(state)

    def _persist(self, state: SessionState) -> None:
        try:
            self.snapshots.write(state.session_id, state.to_snapshot())
        except OSError as e:
            # Non-fatal: state is still tracked in memory
            logger.warning("Failed to write snapshot for %s: %s", state.session_id, e)

    def session_close(self) -> bool:
        """Close this process's session. Returns False if there was none."""
        state = self.tracker.session
        if state is not None:
            session_id = state.session_id
        else:
            entry = self.registry.find_by_host_and_pid(self.hostname, os.getpid())
            if entry is None:
                logger.warning("session_close called with no active session")
                return False
            session_id = entry.session_id

        self.registry.unregister(session_id)
        try:
            self.snapshots.remove(session_id)
        except (OSError, ValueError) as e:
            logger.warning("Failed to clean up session directory for %s: %s", session_id, e)
        age = self.tracker.session_age_minutes()
        if age is not None:
            logger.info("Closed session %s after %.1f min", session_id, age)
        self.tracker.clear()
        return True

    # ── Recall / confirm ─────────────────────────────────────

    def recall(self, scars: Iterable[SurfacedScar | Mapping[str, Any]]) -> list[SurfacedScar]:
        """Record scars returned by the retrieval layer for the current plan."""
        now = utcnow()
        surfaced = []
        for scar in scars:
            if isinstance(scar, SurfacedScar):
                surfaced.append(
                    SurfacedScar(scar.scar_id, scar.title, "recall", now, scar.severity)
                )
            else:
                surfaced.append(
                    SurfacedScar(
                        scar_id=str(scar.get("scar_id") or scar["id"]),
                        title=str(scar.get("title") or scar.get("scar_title") or ""),
                        source="recall",
                        surfaced_at=now,
                        severity=scar.get("severity"),
                    )
                )

        if self.tracker.session is None:
            logger.warning("recall() without an active session; scars not tracked")
            return []
        self.tracker.record_recall(surfaced)
        self._persist(self.tracker.session)
        return surfaced

    def confirm_scars(self, confirmations: Iterable[Mapping[str, Any]]) -> ConfirmResult:
        """Validate the agent's decisions; record them only if every recall scar is addressed."""
        state = self.tracker.session
        if state is None:
            return ConfirmResult(False, ["No active session. Call session_start first."])

        recall_scars = state.recall_scars()
        if not recall_scars:
            return ConfirmResult(True)

        by_id = {s.scar_id: s for s in recall_scars}
        errors: list[str] = []
        accepted: list[Confirmation] = []
        items = list(confirmations)
        if not items:
            errors.append("No confirmations provided. Each recalled scar must be addressed.")

        for item in items:
            scar_id = str(item.get("scar_id", ""))
            scar = by_id.get(scar_id)
            if scar is None and _SHORT_ID.match(scar_id):
                matches = [s for sid, s in by_id.items() if sid.startswith(scar_id)]
                if len(matches) > 1:
                    errors.append(
                        f'Ambiguous scar_id prefix "{scar_id}" matches multiple scars. Use full id.'
                    )
                    continue
                scar = matches[0] if matches else None
            if scar is None:
                errors.append(f'Unknown scar_id "{scar_id}". Only confirm scars returned by recall().')
                continue

            decision = str(item.get("decision", ""))
            evidence = str(item.get("evidence") or "")
            error = _validate_evidence(scar.title, decision, evidence)
            if error:
                errors.append(error)
                continue
            accepted.append(
                Confirmation(scar_id=scar.scar_id, decision=decision, evidence=evidence.strip())
            )

        addressed = {c.scar_id for c in accepted} | {c.scar_id for c in state.confirmations}
        missing = [s.title for s in recall_scars if s.scar_id not in addressed]

        valid = not errors and not missing
        if valid:
            self.tracker.record_confirmations(accepted)
            self._persist(state)
            logger.info("Recorded %d scar confirmation(s)", len(accepted))
        return ConfirmResult(valid, errors, accepted, missing)

    # ── Enforcement ──────────────────────────────────────────

    def check(self, tool_name: str) -> EnforcementResult:
        return self.tracker.check_enforcement(tool_name)

    def surfaced_scars(self) -> list[SurfacedScar]:
        return self.tracker.get_surfaced_scars()
