"""Data model shared by the registry, lock and compliance layers.

All records round-trip through plain JSON dicts. Timestamps are timezone-aware
datetimes in memory and ISO-8601 strings (``Z`` suffix for UTC) on disk.
``from_dict`` raises ``ValueError`` on anything that does not match the
expected shape; callers decide whether that is fatal.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Literal

ScarSource = Literal["recall", "session_start"]
Decision = Literal["APPLYING", "N_A", "REFUTED"]

SCAR_SOURCES: tuple[str, ...] = ("recall", "session_start")
DECISIONS: tuple[str, ...] = ("APPLYING", "N_A", "REFUTED")


# ── Timestamps ───────────────────────────────────────────────


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def format_timestamp(value: datetime) -> str:
    """Render an aware datetime as ISO-8601, using ``Z`` for UTC."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    text = value.isoformat()
    if text.endswith("+00:00"):
        text = text[: -len("+00:00")] + "Z"
    return text


def parse_timestamp(value: Any) -> datetime:
    """Parse an ISO-8601 string (``Z`` accepted). Naive values are taken as UTC."""
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str) and value:
        text = value[:-1] + "+00:00" if value.endswith(("Z", "z")) else value
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError as e:
            raise ValueError(f"Invalid timestamp: {value!r}") from e
    else:
        raise ValueError(f"Invalid timestamp: {value!r}")
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _aware(value: datetime) -> datetime:
    return value if value.tzinfo is not None else value.replace(tzinfo=timezone.utc)


def _require_str(data: dict, key: str, *, allow_empty: bool = False) -> str:
    value = data.get(key)
    if not isinstance(value, str) or (not value and not allow_empty):
        kind = "string" if allow_empty else "non-empty string"
        raise ValueError(f"Field '{key}' must be a {kind}, got {value!r}")
    return value


def _require_int(data: dict, key: str) -> int:
    value = data.get(key)
    # bool is an int subclass; reject it explicitly
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise ValueError(f"Field '{key}' must be a non-negative integer, got {value!r}")
    return value


# ── Records ──────────────────────────────────────────────────


@dataclass
class SessionEntry:
    """One active session as recorded in the shared registry."""

    session_id: str
    hostname: str
    pid: int
    agent: str
    started_at: datetime
    project: str | None = None

    def __post_init__(self) -> None:
        self.started_at = _aware(self.started_at)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "session_id": self.session_id,
            "hostname": self.hostname,
            "pid": self.pid,
            "agent": self.agent,
            "started_at": format_timestamp(self.started_at),
        }
        if self.project is not None:
            data["project"] = self.project
        return data

    @classmethod
    def from_dict(cls, data: Any) -> SessionEntry:
        if not isinstance(data, dict):
            raise ValueError(f"Session entry must be an object, got {type(data).__name__}")
        project = data.get("project")
        if project is not None and not isinstance(project, str):
            raise ValueError(f"Field 'project' must be a string, got {project!r}")
        return cls(
            session_id=_require_str(data, "session_id"),
            # Some containers report an empty hostname
            hostname=_require_str(data, "hostname", allow_empty=True),
            pid=_require_int(data, "pid"),
            agent=_require_str(data, "agent"),
            started_at=parse_timestamp(data.get("started_at")),
            project=project,
        )


@dataclass
class LockRecord:
    """Contents of an advisory lock file. Holder identity is (pid, hostname)."""

    pid: int
    hostname: str
    acquired_at: datetime = field(default_factory=utcnow)

    def __post_init__(self) -> None:
        self.acquired_at = _aware(self.acquired_at)

    def same_holder(self, other: LockRecord) -> bool:
        return self.pid == other.pid and self.hostname == other.hostname

    def age_seconds(self, now: datetime | None = None) -> float:
        return ((now or utcnow()) - self.acquired_at).total_seconds()

    def to_dict(self) -> dict[str, Any]:
        return {
            "pid": self.pid,
            "hostname": self.hostname,
            "acquired_at": format_timestamp(self.acquired_at),
        }

    @classmethod
    def from_dict(cls, data: Any) -> LockRecord:
        if not isinstance(data, dict):
            raise ValueError("Lock record must be an object")
        return cls(
            pid=_require_int(data, "pid"),
            hostname=_require_str(data, "hostname"),
            acquired_at=parse_timestamp(data.get("acquired_at")),
        )


@dataclass
class SurfacedScar:
    """A lesson shown to the agent, either by recall or at session start."""

    scar_id: str
    title: str
    source: ScarSource
    surfaced_at: datetime = field(default_factory=utcnow)
    severity: str | None = None

    def __post_init__(self) -> None:
        self.surfaced_at = _aware(self.surfaced_at)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "scar_id": self.scar_id,
            "title": self.title,
            "source": self.source,
            "surfaced_at": format_timestamp(self.surfaced_at),
        }
        if self.severity is not None:
            data["severity"] = self.severity
        return data

    @classmethod
    def from_dict(cls, data: Any) -> SurfacedScar:
        if not isinstance(data, dict):
            raise ValueError("Surfaced scar must be an object")
        source = data.get("source")
        if source not in SCAR_SOURCES:
            raise ValueError(f"Unknown scar source: {source!r}")
        # Older snapshots store the title as ``scar_title``
        title = data.get("title") or data.get("scar_title")
        if not isinstance(title, str):
            raise ValueError(f"Scar title must be a string, got {title!r}")
        severity = data.get("severity")
        return cls(
            scar_id=_require_str(data, "scar_id"),
            title=title,
            source=source,
            surfaced_at=parse_timestamp(data.get("surfaced_at")),
            severity=severity if isinstance(severity, str) else None,
        )


@dataclass
class Confirmation:
    """An agent's decision about a previously surfaced scar."""

    scar_id: str
    decision: Decision
    evidence: str
    confirmed_at: datetime = field(default_factory=utcnow)

    def __post_init__(self) -> None:
        self.confirmed_at = _aware(self.confirmed_at)

    def to_dict(self) -> dict[str, Any]:
        return {
            "scar_id": self.scar_id,
            "decision": self.decision,
            "evidence": self.evidence,
            "confirmed_at": format_timestamp(self.confirmed_at),
        }

    @classmethod
    def from_dict(cls, data: Any) -> Confirmation:
        if not isinstance(data, dict):
            raise ValueError("Confirmation must be an object")
        decision = data.get("decision")
        if decision not in DECISIONS:
            raise ValueError(f"Unknown decision: {decision!r}")
        evidence = data.get("evidence")
        if not isinstance(evidence, str):
            raise ValueError("Field 'evidence' must be a string")
        return cls(
            scar_id=_require_str(data, "scar_id"),
            decision=decision,
            evidence=evidence,
            confirmed_at=parse_timestamp(data.get("confirmed_at")),
        )
