"""Entry point: python -m memgate [sessions|prune|check <tool>]

- "sessions": list registered sessions
- "prune":    drop stale sessions now
- "check":    show the enforcement verdict for a tool in a fresh process
"""

from __future__ import annotations

import logging
import sys

from memgate.config import load_config


def _setup_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )


def _build():
    config = load_config()
    _setup_logging(config.log_level)

    from memgate.core import Memgate

    return Memgate(config)


def _run_sessions() -> None:
    gate = _build()
    sessions = gate.registry.list_sessions()
    if not sessions:
        print("(no active sessions)")
        return
    for s in sessions:
        print(
            f"{s.session_id}  {s.agent:<10} {s.hostname}:{s.pid}  "
            f"{s.started_at.isoformat(timespec='seconds')}  {s.project or '-'}"
        )


def _run_prune() -> None:
    gate = _build()
    pruned = gate.reaper.reap()
    print(f"Pruned {pruned} stale session(s)")


def _run_check(tool: str) -> None:
    gate = _build()
    result = gate.check(tool)
    print(result.warning or f"{tool}: ok")


def main() -> None:
    cmd = sys.argv[1] if len(sys.argv) > 1 else "sessions"

    if cmd == "sessions":
        _run_sessions()
    elif cmd == "prune":
        _run_prune()
    elif cmd == "check" and len(sys.argv) > 2:
        _run_check(sys.argv[2])
    else:
        print("Usage: python -m memgate [sessions|prune|check <tool>]")
        print("  sessions  — List registered sessions (default)")
        print("  prune     — Remove stale sessions now")
        print("  check     — Enforcement verdict for a tool name")
        sys.exit(1)


if __name__ == "__main__":
    main()
