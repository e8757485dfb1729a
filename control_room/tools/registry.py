from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterable

from control_room.observability.logging import get_logger

from .mcp_naming import build_full_name, parse_full_name
from .risk import is_high_risk_tool


@dataclass(frozen=True, slots=True)
class ToolDescriptor:
    server_name: str
    tool_name: str
    full_name: str
    description: str
    input_schema: dict[str, Any] = field(default_factory=dict)
    is_high_risk: bool = False

    @classmethod
    def from_mcp(cls, server_name: str, raw: dict[str, Any]) -> "ToolDescriptor":
        tool_name = str(raw["name"])
        description = raw.get("description") or ""
        schema = raw.get("inputSchema")
        return cls(
            server_name=server_name,
            tool_name=tool_name,
            full_name=build_full_name(server_name, tool_name),
            description=str(description),
            input_schema=dict(schema) if isinstance(schema, dict) else {"type": "object", "properties": {}},
            is_high_risk=is_high_risk_tool(tool_name, str(description)),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "serverName": self.server_name,
            "name": self.tool_name,
            "fullName": self.full_name,
            "description": self.description,
            "inputSchema": self.input_schema,
            "isHighRisk": self.is_high_risk,
        }


class McpToolRegistry:
    """Discovered tools keyed by (workspace_id, server_name).

    Each discovery replaces the server's tool set wholesale; entries from an
    earlier discovery never survive a later one.
    """

    def __init__(self) -> None:
        self._tools: dict[tuple[str, str], tuple[ToolDescriptor, ...]] = {}
        self._log = get_logger("control_room.tools")

    def replace(self, workspace_id: str, server_name: str, raw_tools: Iterable[dict[str, Any]]) -> list[ToolDescriptor]:
        descriptors: dict[str, ToolDescriptor] = {}
        for raw in raw_tools:
            name = raw.get("name") if isinstance(raw, dict) else None
            if not isinstance(name, str) or not name.strip():
                self._log.warning("mcp_tool_skipped", server=server_name, reason="missing tool name")
                continue
            d = ToolDescriptor.from_mcp(server_name, raw)
            descriptors[d.full_name] = d

        self._tools[(workspace_id, server_name)] = tuple(descriptors.values())
        self._log.info(
            "mcp_tools_synced",
            server=server_name,
            count=len(descriptors),
            high_risk=[d.tool_name for d in descriptors.values() if d.is_high_risk],
        )
        return list(descriptors.values())

    def tools(self, workspace_id: str, servers: Iterable[str] | None = None) -> list[ToolDescriptor]:
        wanted = set(servers) if servers is not None else None
        out: list[ToolDescriptor] = []
        for (ws, server_name), descriptors in self._tools.items():
            if ws != workspace_id:
                continue
            if wanted is not None and server_name not in wanted:
                continue
            out.extend(descriptors)
        return out

    def resolve(self, workspace_id: str, full_name: str) -> ToolDescriptor | None:
        for (ws, _), descriptors in self._tools.items():
            if ws != workspace_id:
                continue
            for d in descriptors:
                if d.full_name == full_name:
                    return d
        return None

    def clear(self, workspace_id: str, server_name: str | None = None) -> None:
        if server_name is not None:
            self._tools.pop((workspace_id, server_name), None)
            return
        for key in [k for k in self._tools if k[0] == workspace_id]:
            del self._tools[key]


def resolve_target(
    registry: McpToolRegistry | None,
    workspace_id: str,
    full_name: str,
) -> tuple[str, str]:
    """(server, tool) for a full name: registry first, name parsing as fallback."""

    if registry is not None:
        d = registry.resolve(workspace_id, full_name)
        if d is not None:
            return d.server_name, d.tool_name
    return parse_full_name(full_name)
