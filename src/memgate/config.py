"""Configuration loading from environment variables and memgate.toml."""

from __future__ import annotations

import os
import sys
from dataclasses import dataclass, field

if sys.version_info >= (3, 11):
    import tomllib
else:
    import tomli as tomllib
from pathlib import Path

_CONFIG_FILENAME = "memgate.toml"


@dataclass
class LockConfig:
    """Advisory lock tuning."""

    timeout: float = 5.0
    poll_interval: float = 0.025
    stale_after: float = 30.0


@dataclass
class SessionConfig:
    """Session registry and pruning policy."""

    max_age_hours: float = 24.0
    orphan_grace_hours: float = 1.0
    lock_registry: bool = True


@dataclass
class MemgateConfig:
    """Top-level memgate configuration."""

    lock: LockConfig = field(default_factory=LockConfig)
    sessions: SessionConfig = field(default_factory=SessionConfig)
    data_dir: Path | None = None  # None → resolved by paths.resolve_data_dir()
    log_level: str = "INFO"


def load_config(config_path: Path | None = None) -> MemgateConfig:
    """Load configuration from environment variables and optional memgate.toml.

    Priority: environment variables > memgate.toml > defaults.
    """
    file_data: dict = {}
    if config_path and config_path.exists():
        file_data = tomllib.loads(config_path.read_text())
    else:
        # Search current dir and ~/.memgate/
        for candidate in [Path.cwd() / _CONFIG_FILENAME, Path.home() / ".memgate" / _CONFIG_FILENAME]:
            if candidate.exists():
                file_data = tomllib.loads(candidate.read_text())
                break

    lock_data = file_data.get("lock", {})
    sessions_data = file_data.get("sessions", {})

    data_dir = os.getenv("MEMGATE_DIR", file_data.get("data_dir"))

    config = MemgateConfig(
        lock=LockConfig(
            timeout=float(os.getenv("MEMGATE_LOCK_TIMEOUT", lock_data.get("timeout", 5.0))),
            poll_interval=float(lock_data.get("poll_interval", 0.025)),
            stale_after=float(lock_data.get("stale_after", 30.0)),
        ),
        sessions=SessionConfig(
            max_age_hours=float(
                os.getenv("MEMGATE_SESSION_MAX_AGE_HOURS", sessions_data.get("max_age_hours", 24.0))
            ),
            orphan_grace_hours=float(sessions_data.get("orphan_grace_hours", 1.0)),
            lock_registry=bool(sessions_data.get("lock_registry", True)),
        ),
        data_dir=Path(data_dir).expanduser() if data_dir else None,
        log_level=os.getenv("MEMGATE_LOG_LEVEL", file_data.get("log_level", "INFO")),
    )
    return config
