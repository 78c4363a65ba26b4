"""Starter scars — pre-vetted lessons surfaced at every session start.

Each scar is a markdown file under ``<data_dir>/scars/`` with YAML frontmatter::

    ---
    id: 6f1c2a9e-...
    title: Done != Deployed
    severity: high
    starter: true
    ---

    Body text describing the lesson.

Only files with ``starter: true`` are surfaced; they are tagged with source
``session_start`` and are exempt from the confirmation gate.
"""

from __future__ import annotations

import logging
from pathlib import Path

import frontmatter

from memgate.models import SurfacedScar, utcnow

logger = logging.getLogger(__name__)


class ScarLibrary:
    """Read-only view over the scar markdown files."""

    def __init__(self, root: Path) -> None:
        self.root = Path(root)

    def _parse_frontmatter(self, path: Path) -> dict:
        """Parse YAML frontmatter from a markdown file."""
        try:
            post = frontmatter.load(str(path))
            return dict(post.metadata)
        except Exception as e:
            logger.warning("Skipping unreadable scar file %s: %s", path, e)
            return {}

    def load(self) -> list[dict]:
        """Frontmatter of every scar file with an id and a title, sorted by file name."""
        if not self.root.is_dir():
            return []
        scars = []
        for md_file in sorted(self.root.glob("*.md")):
            meta = self._parse_frontmatter(md_file)
            if not meta.get("id") or not meta.get("title"):
                continue
            scars.append(meta)
        return scars

    def starter_scars(self) -> list[SurfacedScar]:
        now = utcnow()
        return [
            SurfacedScar(
                scar_id=str(meta["id"]),
                title=str(meta["title"]),
                source="session_start",
                surfaced_at=now,
                severity=str(meta["severity"]) if meta.get("severity") else None,
            )
            for meta in self.load()
            if meta.get("starter") is True
        ]
