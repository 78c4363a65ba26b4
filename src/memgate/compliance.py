"""Recall → confirm → act enforcement.

Before a tool runs, the dispatch layer asks ``check_enforcement(tool_name)``
for an advisory warning. The warning is prepended to the tool response; it
never blocks execution. The checks are pure in-memory lookups against the
session state this tracker holds.

If the server restarted and lost its in-memory session, ``get_surfaced_scars``
falls back to the registry and the per-session snapshot on disk.
"""

from __future__ import annotations

import logging
import socket
from collections.abc import Iterable
from dataclasses import dataclass
from typing import TYPE_CHECKING

from memgate.models import Confirmation, SurfacedScar, utcnow
from memgate.session_state import SessionState
from memgate.tool_names import (
    CONSEQUENTIAL_TOOLS,
    EXEMPT_TOOLS,
    SESSION_REQUIRED_TOOLS,
    resolve_tool_name,
)

if TYPE_CHECKING:
    from memgate.registry import SessionRegistry
    from memgate.snapshots import SnapshotStore

logger = logging.getLogger(__name__)

_HEADER = "--- memgate enforcement ---"
_FOOTER = "---"


@dataclass
class EnforcementResult:
    """Advisory outcome of a pre-dispatch check. ``warning`` None means clean."""

    warning: str | None = None


def _warning(*lines: str) -> EnforcementResult:
    return EnforcementResult(warning="\n".join([_HEADER, *lines, _FOOTER]))


class ComplianceTracker:
    """Holds the session state of this process and judges tool calls against it."""

    def __init__(
        self,
        registry: SessionRegistry,
        snapshots: SnapshotStore,
        *,
        hostname: str | None = None,
        session: SessionState | None = None,
    ) -> None:
        self.registry = registry
        self.snapshots = snapshots
        self.hostname = hostname or socket.gethostname()
        self.session = session

    # ── Session state lifecycle ──────────────────────────────

    def start_session(
        self,
        session_id: str,
        agent: str,
        project: str | None = None,
        *,
        force: bool = False,
    ) -> SessionState:
        """Begin tracking a fresh session.

        Starting the session that is already active is a no-op. Replacing a
        different active session requires ``force``.
        """
        if self.session is not None and not force:
            if self.session.session_id == session_id:
                return self.session
            raise RuntimeError(
                f"Session {self.session.session_id} is already active; pass force=True to replace it"
            )
        self.session = SessionState(session_id=session_id, agent=agent, project=project)
        logger.info("Active session set: %s", session_id)
        return self.session

    def resume(self, state: SessionState) -> SessionState:
        """Adopt previously persisted state (server restart)."""
        self.session = state
        logger.info(
            "Resumed session %s (%d surfaced scars, %d confirmations)",
            state.session_id,
            len(state.surfaced_scars),
            len(state.confirmations),
        )
        return state

    def clear(self) -> None:
        if self.session is not None:
            logger.info("Clearing session: %s", self.session.session_id)
        self.session = None

    # ── State mutations ──────────────────────────────────────

    def record_recall(self, scars: Iterable[SurfacedScar]) -> list[SurfacedScar]:
        """Mark recall as called and track the scars it surfaced."""
        if self.session is None:
            logger.warning("Cannot record recall: no active session")
            return []
        self.session.mark_recall_called()
        return self.session.add_surfaced_scars(scars)

    def record_session_start_scars(self, scars: Iterable[SurfacedScar]) -> list[SurfacedScar]:
        """Track pre-vetted default scars. Does not count as a recall."""
        if self.session is None:
            logger.warning("Cannot add surfaced scars: no active session")
            return []
        return self.session.add_surfaced_scars(scars)

    def record_confirmations(self, confirmations: Iterable[Confirmation]) -> None:
        if self.session is None:
            logger.warning("Cannot add confirmations: no active session")
            return
        self.session.add_confirmations(confirmations)

    # ── Enforcement ──────────────────────────────────────────

    def check_enforcement(self, tool_name: str) -> EnforcementResult:
        """Return an advisory warning for ``tool_name``, or a clean result."""
        tool = resolve_tool_name(tool_name)

        if tool in EXEMPT_TOOLS:
            return EnforcementResult()

        session = self.session
        if session is None:
            if tool in SESSION_REQUIRED_TOOLS:
                return _warning(
                    "No active session. Call session_start() first to initialize memory context.",
                    "Without a session, scars won't be tracked and the closing ceremony can't run.",
                )
            return EnforcementResult()

        if tool not in CONSEQUENTIAL_TOOLS:
            return EnforcementResult()

        if not session.recall_called:
            return _warning(
                "No recall() was run this session before this action.",
                "Institutional memory was not consulted: call recall() first to check for relevant scars.",
                "Past mistakes and patterns may prevent repeating known issues.",
            )

        outstanding = session.outstanding_scars()
        if outstanding:
            return _warning(
                f"Recalled scars: {len(outstanding)} await confirmation.",
                "Call confirm_scars() with APPLYING/N_A/REFUTED for each before proceeding.",
                "Unconfirmed scars may contain warnings relevant to what you're about to do.",
            )

        return EnforcementResult()

    # ── Recovery ─────────────────────────────────────────────

    def get_surfaced_scars(self) -> list[SurfacedScar]:
        """Scars surfaced in the current session, recovering from disk if needed.

        With no in-memory session, the most recently started registry entry on
        this host is taken as "our" session and its snapshot's
        ``surfaced_scars`` are returned. Any failure means nothing to recover.
        """
        if self.session is not None:
            return list(self.session.surfaced_scars)

        try:
            local = [e for e in self.registry.list_sessions() if e.hostname == self.hostname]
            if not local:
                return []
            latest = max(local, key=lambda e: e.started_at)
            data = self.snapshots.read(latest.session_id)
            if not data or not isinstance(data.get("surfaced_scars"), list):
                return []
            scars = [SurfacedScar.from_dict(item) for item in data["surfaced_scars"]]
        except Exception as e:
            logger.warning("Failed to recover surfaced scars: %s", e)
            return []

        logger.info(
            "Recovered %d surfaced scars from session %s", len(scars), latest.session_id[:8]
        )
        return scars

    def session_age_minutes(self) -> float | None:
        if self.session is None:
            return None
        return (utcnow() - self.session.started_at).total_seconds() / 60
