"""Opportunistic stale-session pruning.

There is no long-lived daemon to run a timer, so pruning piggybacks on
lifecycle events (every session start). Pruning is idempotent, so calling it
redundantly costs one registry read.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from memgate.registry import SessionRegistry

logger = logging.getLogger(__name__)


class StaleSessionReaper:
    """Decides when to prune; owns no state beyond the registry it prunes."""

    def __init__(self, registry: SessionRegistry, *, migrate_legacy: bool = True) -> None:
        self.registry = registry
        self.migrate_legacy = migrate_legacy

    def reap(self) -> int:
        """Prune now. Returns the number of registry entries removed."""
        if self.migrate_legacy:
            self.registry.migrate_from_legacy()
        pruned = self.registry.prune_stale()
        if pruned:
            logger.info("Reaper removed %d stale session(s)", pruned)
        return pruned
