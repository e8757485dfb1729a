from __future__ import annotations

# Process execution, filesystem mutation, database access and network access.
HIGH_RISK_PATTERNS: tuple[str, ...] = (
    "bash",
    "shell",
    "exec",
    "command",
    "run",
    "write",
    "delete",
    "remove",
    "rm",
    "filesystem",
    "file_write",
    "file_delete",
    "query",
    "sql",
    "database",
    "http",
    "fetch",
    "request",
)


def is_high_risk_tool(name: str, description: str | None = "") -> bool:
    """Keyword classifier over `name + description` (case-insensitive substring match).

    Classification only: blocking high-risk tools is left to the caller.
    """

    haystack = f"{name} {description or ''}".lower()
    return any(pattern in haystack for pattern in HIGH_RISK_PATTERNS)
