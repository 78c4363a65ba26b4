"""memgate — session coordination core for an agent memory server.

Layout:
    memgate.locking        advisory file lock (O_EXCL + staleness breaking)
    memgate.registry       shared active-sessions registry
    memgate.reaper         opportunistic stale-session pruning
    memgate.compliance     recall → confirm → act enforcement + recovery
    memgate.core           Memgate orchestrator (session lifecycle)
"""

__version__ = "0.1.0"
