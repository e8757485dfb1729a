from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal

from control_room.mcp_client.types import McpServerConfig


@dataclass(frozen=True, slots=True)
class ToolCall:
    """Abstract tool call (stable structure across model backends).

    `error` is set when the model produced arguments that are not a JSON
    object; such a call is answered with an error result, never executed.
    """

    id: str
    name: str
    arguments_json: str
    arguments: dict[str, Any]
    error: str | None = None


@dataclass(frozen=True, slots=True)
class ToolResult:
    tool_call_id: str
    name: str
    ok: bool
    content: str | dict[str, Any]
    error: dict[str, str] | None = None


StreamMessageType = Literal["chunk", "tool_call", "tool_result", "complete", "error", "cancelled"]


@dataclass(frozen=True, slots=True)
class StreamMessage:
    """One event delivered to a run's sink."""

    type: StreamMessageType
    content: str | None = None
    tool_name: str | None = None
    tool_input: dict[str, Any] | None = None
    tool_result: Any = None
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"type": self.type}
        for key in ("content", "tool_name", "tool_input", "tool_result", "error"):
            value = getattr(self, key)
            if value is not None:
                out[key] = value
        return out


@dataclass(frozen=True, slots=True)
class WorkspaceContext:
    """Server configuration visible to one run.

    `enabled_servers=None` selects every enabled server.
    """

    workspace_id: str
    servers: dict[str, McpServerConfig] = field(default_factory=dict)
    enabled_servers: tuple[str, ...] | None = None
    project_root: str | None = None

    def server(self, name: str) -> McpServerConfig | None:
        return self.servers.get(name)

    def active_servers(self) -> list[McpServerConfig]:
        out: list[McpServerConfig] = []
        for name, cfg in self.servers.items():
            if not cfg.enabled:
                continue
            if self.enabled_servers is not None and name not in self.enabled_servers:
                continue
            out.append(cfg)
        return out


RunStatus = Literal["completed", "failed", "cancelled"]


@dataclass(frozen=True, slots=True)
class RunOutcome:
    run_id: str
    status: RunStatus
    text: str = ""
    error: str | None = None
