"""JSON document helpers for the shared directory tree."""

from __future__ import annotations

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any, Mapping

logger = logging.getLogger(__name__)


def read_json(path: Path) -> Any:
    """Load a JSON document. Raises OSError / ValueError to the caller."""
    with path.open("r", encoding="utf-8") as handle:
        return json.load(handle)


def atomic_write_json(path: Path, payload: Mapping[str, Any], *, fallback: bool = True) -> None:
    """Write JSON to ``path`` via a temp file in the same directory plus rename.

    Readers never see a half-written document. When the rename step fails and
    ``fallback`` is set, the document is written directly instead and a
    warning is logged; a failure of the direct write propagates.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    text = json.dumps(payload, indent=2, ensure_ascii=False) + "\n"

    fd, temp_path = tempfile.mkstemp(
        dir=str(path.parent),
        prefix=f".{path.stem}.",
        suffix=".tmp",
        text=True,
    )
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            handle.write(text)
        os.replace(temp_path, path)
    except OSError as e:
        try:
            os.unlink(temp_path)
        except OSError:
            pass
        if not fallback:
            raise
        logger.warning("Atomic rename failed for %s, falling back to direct write: %s", path, e)
        path.write_text(text, encoding="utf-8")
