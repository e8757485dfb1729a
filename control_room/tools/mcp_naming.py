"""Full-name addressing for MCP tools: `mcp__<server>__<tool>`.

The full name is what tool-aware model requests use to select a tool, so it
must be stable for a given (server, tool) pair.
"""

from __future__ import annotations

FULL_NAME_PREFIX = "mcp"
SEPARATOR = "__"


def build_full_name(server_name: str, tool_name: str) -> str:
    if not server_name:
        raise ValueError("server name must be a non-empty string")
    if not tool_name:
        raise ValueError("tool name must be a non-empty string")
    return f"{FULL_NAME_PREFIX}{SEPARATOR}{server_name}{SEPARATOR}{tool_name}"


def is_full_name(name: str) -> bool:
    return name.startswith(FULL_NAME_PREFIX + SEPARATOR)


def parse_full_name(full_name: str) -> tuple[str, str]:
    """Split a full name into (server, tool).

    Server names containing the separator are ambiguous here; callers that
    hold a registry should resolve through it instead.
    """

    if not is_full_name(full_name):
        raise ValueError(f"not an MCP tool name: {full_name!r}")

    rest = full_name[len(FULL_NAME_PREFIX) + len(SEPARATOR) :]
    if SEPARATOR not in rest:
        raise ValueError(f"missing '{SEPARATOR}' between server and tool: {full_name!r}")

    server_name, tool_name = rest.split(SEPARATOR, 1)
    if not server_name or not tool_name:
        raise ValueError(f"invalid MCP tool name: {full_name!r}")
    return server_name, tool_name
