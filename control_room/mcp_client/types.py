from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal, Mapping

from control_room.core.errors import ConfigError

from .errors import TransportError

McpTransportKind = Literal["stdio", "http", "sse"]

TRANSPORTS: frozenset[str] = frozenset({"stdio", "http", "sse"})
REMOTE_TRANSPORTS: frozenset[str] = frozenset({"http", "sse"})


@dataclass(frozen=True, slots=True)
class McpServerConfig:
    """One configured MCP server.

    Exactly one field group is populated, matching `transport`:
    - stdio: command / args / env
    - http, sse: url / headers
    """

    name: str
    transport: str
    command: str | None = None
    args: list[str] = field(default_factory=list)
    env: dict[str, str] = field(default_factory=dict)
    url: str | None = None
    headers: dict[str, str] = field(default_factory=dict)
    enabled: bool = True

    @property
    def is_remote(self) -> bool:
        return self.transport in REMOTE_TRANSPORTS

    def validate(self) -> None:
        """Raise TransportError when the field groups do not match `transport`."""

        if self.transport == "stdio":
            if self.command and not self.url:
                return
        elif self.transport in REMOTE_TRANSPORTS:
            if self.url and not self.command:
                return
        raise TransportError("Invalid server configuration", details={"server": self.name})

    @classmethod
    def from_dict(cls, name: str, raw: Mapping[str, Any], *, path: str = "") -> "McpServerConfig":
        path = path or f"mcp.servers.{name}"
        if not isinstance(name, str) or not name:
            raise ConfigError("server name must be a non-empty string", path=path)

        transport = str(raw.get("transport", ""))
        if transport not in TRANSPORTS:
            raise ConfigError(f"unsupported transport: {transport!r}", path=f"{path}.transport")

        enabled = bool(raw.get("enabled", True))

        if transport == "stdio":
            command = raw.get("command")
            if not isinstance(command, str) or not command.strip():
                raise ConfigError("stdio transport requires 'command'", path=f"{path}.command")
            if raw.get("url"):
                raise ConfigError("stdio transport must not set 'url'", path=f"{path}.url")
            args = raw.get("args", []) or []
            if not isinstance(args, list) or not all(isinstance(x, str) for x in args):
                raise ConfigError("must be a list of strings", path=f"{path}.args")
            env = raw.get("env", {}) or {}
            if not isinstance(env, dict):
                raise ConfigError("must be a mapping", path=f"{path}.env")
            return cls(
                name=name,
                transport=transport,
                command=command,
                args=list(args),
                env={str(k): str(v) for k, v in env.items()},
                enabled=enabled,
            )

        url = raw.get("url")
        if not isinstance(url, str) or not url.strip():
            raise ConfigError(f"{transport} transport requires 'url'", path=f"{path}.url")
        if raw.get("command"):
            raise ConfigError(f"{transport} transport must not set 'command'", path=f"{path}.command")
        headers = raw.get("headers", {}) or {}
        if not isinstance(headers, dict):
            raise ConfigError("must be a mapping", path=f"{path}.headers")
        return cls(
            name=name,
            transport=transport,
            url=url,
            headers={str(k): str(v) for k, v in headers.items()},
            enabled=enabled,
        )


@dataclass(frozen=True, slots=True)
class ConnectionTestResult:
    success: bool
    error: str | None = None


@dataclass(frozen=True, slots=True)
class ToolCallOutcome:
    success: bool
    result: Any = None
    error: str | None = None


@dataclass(frozen=True, slots=True)
class McpTimeouts:
    """Deadlines (seconds) for the three MCP operation tiers."""

    connect_s: float = 5.0
    discovery_s: float = 10.0
    call_s: float = 30.0
    http_call_s: float = 60.0
