from __future__ import annotations

import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml
from dotenv import load_dotenv

from control_room.mcp_client.types import McpServerConfig, McpTimeouts

from .errors import ConfigError
from .types import WorkspaceContext

# re-export for contract/tests
__all__ = [
    "AppConfig",
    "ConfigError",
    "LoopConfig",
    "McpConfig",
    "McpTimeouts",
    "ModelConfig",
    "WorkspaceConfig",
    "load_config",
    "parse_config",
]

MODEL_BACKENDS = frozenset({"openai", "mock"})

_ENV_PATTERN = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)\}")


def _expand_env_in_str(value: str, *, path: str) -> str:
    def repl(match: re.Match[str]) -> str:
        key = match.group(1)
        if key not in os.environ or os.environ[key] == "":
            raise ConfigError(f"environment variable {key!r} is not set", path=path)
        return os.environ[key]

    return _ENV_PATTERN.sub(repl, value)


def _expand_env(obj: Any, *, path: str) -> Any:
    if isinstance(obj, str):
        return _expand_env_in_str(obj, path=path)
    if isinstance(obj, list):
        return [_expand_env(v, path=path) for v in obj]
    if isinstance(obj, dict):
        return {k: _expand_env(v, path=f"{path}.{k}" if path else str(k)) for k, v in obj.items()}
    return obj


def _section(raw: dict[str, Any], key: str) -> dict[str, Any]:
    value = raw.get(key)
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ConfigError("must be a mapping", path=key)
    return value


@dataclass(frozen=True)
class ModelConfig:
    backend: str = "mock"
    api_key: str | None = None
    base_url: str | None = None
    model: str = "gpt-4o-mini"
    timeout_s: float = 60.0
    max_retries: int = 2
    system_prompt: str | None = None


@dataclass(frozen=True)
class LoopConfig:
    max_iterations: int = 10


@dataclass(frozen=True)
class McpConfig:
    """Client-side MCP configuration: identity, deadlines and servers."""

    protocol_version: str = "2024-11-05"
    client_name: str = "agent-control-room"
    client_version: str = "1.0.0"
    timeouts: McpTimeouts = field(default_factory=McpTimeouts)
    servers: dict[str, McpServerConfig] = field(default_factory=dict)


@dataclass(frozen=True)
class WorkspaceConfig:
    id: str = "default"
    project_root: str | None = None
    # None selects every enabled server.
    enabled_servers: tuple[str, ...] | None = None


@dataclass(frozen=True)
class AppConfig:
    model: ModelConfig = field(default_factory=ModelConfig)
    loop: LoopConfig = field(default_factory=LoopConfig)
    mcp: McpConfig = field(default_factory=McpConfig)
    workspace: WorkspaceConfig = field(default_factory=WorkspaceConfig)
    log_level: str = "INFO"

    def workspace_context(self) -> WorkspaceContext:
        return WorkspaceContext(
            workspace_id=self.workspace.id,
            servers=dict(self.mcp.servers),
            enabled_servers=self.workspace.enabled_servers,
            project_root=self.workspace.project_root,
        )


def _positive_float(raw: dict[str, Any], key: str, default: float, *, path: str) -> float:
    try:
        value = float(raw.get(key, default))
    except (TypeError, ValueError) as e:
        raise ConfigError("must be a number", path=f"{path}.{key}") from e
    if value <= 0:
        raise ConfigError("must be > 0", path=f"{path}.{key}")
    return value


def _parse_model(raw: dict[str, Any]) -> ModelConfig:
    backend = str(raw.get("backend", ModelConfig.backend))
    if backend not in MODEL_BACKENDS:
        raise ConfigError(f"unsupported backend: {backend!r}", path="model.backend")

    # Contract: api_key can default from env.
    api_key = raw.get("api_key")
    if api_key is None or api_key == "":
        api_key = os.getenv("OPENAI_API_KEY")
    if backend == "openai" and (not isinstance(api_key, str) or not api_key.strip()):
        raise ConfigError("must be a non-empty string (or set OPENAI_API_KEY)", path="model.api_key")

    base_url = raw.get("base_url")
    system_prompt = raw.get("system_prompt")
    return ModelConfig(
        backend=backend,
        api_key=api_key or None,
        base_url=str(base_url) if base_url else None,
        model=str(raw.get("model", ModelConfig.model)),
        timeout_s=_positive_float(raw, "timeout_s", ModelConfig.timeout_s, path="model"),
        max_retries=int(raw.get("max_retries", ModelConfig.max_retries)),
        system_prompt=str(system_prompt) if system_prompt else None,
    )


def _parse_mcp(raw: dict[str, Any]) -> McpConfig:
    timeouts_raw = raw.get("timeouts") or {}
    if not isinstance(timeouts_raw, dict):
        raise ConfigError("must be a mapping", path="mcp.timeouts")
    defaults = McpTimeouts()
    timeouts = McpTimeouts(
        connect_s=_positive_float(timeouts_raw, "connect_s", defaults.connect_s, path="mcp.timeouts"),
        discovery_s=_positive_float(timeouts_raw, "discovery_s", defaults.discovery_s, path="mcp.timeouts"),
        call_s=_positive_float(timeouts_raw, "call_s", defaults.call_s, path="mcp.timeouts"),
        http_call_s=_positive_float(timeouts_raw, "http_call_s", defaults.http_call_s, path="mcp.timeouts"),
    )

    servers_raw = raw.get("servers", {})
    if servers_raw is None:
        servers_raw = {}
    if not isinstance(servers_raw, dict):
        raise ConfigError("must be a mapping of server name -> config", path="mcp.servers")

    servers: dict[str, McpServerConfig] = {}
    for name, scfg in servers_raw.items():
        if not isinstance(name, str) or not name:
            raise ConfigError("server name must be a non-empty string", path="mcp.servers")
        if not isinstance(scfg, dict):
            raise ConfigError("server config must be a mapping", path=f"mcp.servers.{name}")
        servers[name] = McpServerConfig.from_dict(name, scfg)

    return McpConfig(
        protocol_version=str(raw.get("protocol_version", McpConfig.protocol_version)),
        client_name=str(raw.get("client_name", McpConfig.client_name)),
        client_version=str(raw.get("client_version", McpConfig.client_version)),
        timeouts=timeouts,
        servers=servers,
    )


def _parse_workspace(raw: dict[str, Any], servers: dict[str, McpServerConfig]) -> WorkspaceConfig:
    enabled = raw.get("enabled_servers")
    enabled_servers: tuple[str, ...] | None = None
    if enabled is not None:
        if not isinstance(enabled, list) or not all(isinstance(x, str) for x in enabled):
            raise ConfigError("must be a list of strings", path="workspace.enabled_servers")
        unknown = [x for x in enabled if x not in servers]
        if unknown:
            raise ConfigError(f"unknown servers: {', '.join(unknown)}", path="workspace.enabled_servers")
        enabled_servers = tuple(enabled)

    project_root = raw.get("project_root")
    return WorkspaceConfig(
        id=str(raw.get("id", WorkspaceConfig.id)),
        project_root=str(project_root) if project_root else None,
        enabled_servers=enabled_servers,
    )


def parse_config(raw: dict[str, Any]) -> AppConfig:
    """Build an AppConfig from an already-loaded mapping (env placeholders expanded here)."""

    if not isinstance(raw, dict):
        raise ConfigError("top level must be a YAML mapping")

    expanded = _expand_env(raw, path="")

    model = _parse_model(_section(expanded, "model"))

    loop_raw = _section(expanded, "loop")
    max_iterations = int(loop_raw.get("max_iterations", LoopConfig.max_iterations))
    if max_iterations < 1:
        raise ConfigError("must be an integer >= 1", path="loop.max_iterations")

    mcp = _parse_mcp(_section(expanded, "mcp"))
    workspace = _parse_workspace(_section(expanded, "workspace"), mcp.servers)

    log_level = str(_section(expanded, "logging").get("level", AppConfig.log_level)).upper()

    return AppConfig(
        model=model,
        loop=LoopConfig(max_iterations=max_iterations),
        mcp=mcp,
        workspace=workspace,
        log_level=log_level,
    )


def load_config(path: str | Path) -> AppConfig:
    """Load YAML config and expand ${ENV_VAR}."""

    # Local dev: allow injecting secrets from .env (do not commit it).
    load_dotenv(override=False)

    config_path = Path(path)
    if not config_path.exists():
        raise ConfigError("config file does not exist", path=str(config_path))

    try:
        raw = yaml.safe_load(config_path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"YAML parse failed: {e}", path=str(config_path)) from e

    if not isinstance(raw, dict):
        raise ConfigError("top level must be a YAML mapping (dict)", path=str(config_path))

    return parse_config(raw)
