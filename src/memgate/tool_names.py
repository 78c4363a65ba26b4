"""Tool aliases and the enforcement policy sets.

Agents may call any tool by its canonical name or by one of its short
aliases. Names are resolved once, here, before any policy decision; the policy
sets below only contain canonical names.
"""

from __future__ import annotations

_ALIASES: dict[str, tuple[str, ...]] = {
    # session lifecycle
    "session_start": ("memgate-ss", "mg-open"),
    "session_close": ("memgate-sc", "mg-close"),
    "session_refresh": ("memgate-sr", "mg-refresh"),
    # recall → confirm
    "recall": ("memgate-r", "mg-recall"),
    "confirm_scars": ("memgate-cs", "mg-confirm"),
    "reflect_scars": ("memgate-rf", "mg-reflect"),
    "record_scar_usage": ("memgate-rs",),
    "record_scar_usage_batch": ("memgate-rsb",),
    "prepare_context": ("memgate-pc", "mg-pc"),
    "absorb_observations": ("memgate-ao", "mg-absorb"),
    # memory creation
    "create_learning": ("memgate-cl", "mg-scar"),
    "create_decision": ("memgate-cd", "mg-decision"),
    "create_thread": ("memgate-ct", "mg-thread-new"),
    "resolve_thread": ("memgate-rt", "mg-resolve"),
    "save_transcript": ("memgate-st",),
    # read-only / administrative
    "search": ("memgate-search", "mg-search"),
    "log": ("memgate-log", "mg-log"),
    "analyze": ("memgate-analyze", "mg-analyze"),
    "graph_traverse": ("memgate-graph", "mg-graph"),
    "list_threads": ("memgate-lt", "mg-threads"),
    "cleanup_threads": ("memgate-cleanup", "mg-cleanup"),
    "promote_suggestion": ("memgate-ps", "mg-promote"),
    "dismiss_suggestion": ("memgate-ds", "mg-dismiss"),
    "archive_learning": ("memgate-al", "mg-archive"),
    "get_transcript": ("memgate-gt",),
    "search_transcripts": ("memgate-stx", "mg-stx"),
    "help": ("memgate-help", "mg-help"),
    "health": ("memgate-health", "mg-health"),
    "cache_status": ("memgate-cache-status", "mg-cache-s"),
    "cache_health": ("memgate-cache-health", "mg-cache-h"),
    "cache_flush": ("memgate-cache-flush", "mg-cache-f"),
}

TOOL_ALIASES: dict[str, str] = {
    alias: canonical for canonical, aliases in _ALIASES.items() for alias in aliases
}

# Bootstrap, inspection, help and cache tools: never checked
EXEMPT_TOOLS: frozenset[str] = frozenset(
    {
        "session_start",
        "search",
        "log",
        "analyze",
        "graph_traverse",
        "list_threads",
        "cleanup_threads",
        "promote_suggestion",
        "dismiss_suggestion",
        "archive_learning",
        "get_transcript",
        "search_transcripts",
        "help",
        "health",
        "cache_status",
        "cache_health",
        "cache_flush",
    }
)

SESSION_REQUIRED_TOOLS: frozenset[str] = frozenset(
    {
        "recall",
        "confirm_scars",
        "reflect_scars",
        "session_close",
        "session_refresh",
        "create_learning",
        "create_decision",
        "record_scar_usage",
        "record_scar_usage_batch",
        "prepare_context",
        "absorb_observations",
        "create_thread",
        "resolve_thread",
        "save_transcript",
    }
)

# Persist new memory or close the session: gated on recall + confirmation
CONSEQUENTIAL_TOOLS: frozenset[str] = frozenset(
    {
        "create_learning",
        "create_decision",
        "create_thread",
        "session_close",
    }
)


def resolve_tool_name(name: str) -> str:
    """Map an alias to its canonical tool name; unknown names pass through."""
    return TOOL_ALIASES.get(name, name)
