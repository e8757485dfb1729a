from __future__ import annotations

import sys
from pathlib import Path

import pytest


def pytest_configure() -> None:
    root = Path(__file__).resolve().parents[1]
    if (root / "control_room").exists() and str(root) not in sys.path:
        sys.path.insert(0, str(root))


FAKE_SERVER = Path(__file__).resolve().parent / "fixtures" / "fake_mcp_server.py"


@pytest.fixture
def fake_server_config():
    """Factory for a stdio server config running the fake MCP server."""

    from control_room.mcp_client import McpServerConfig

    def make(name: str = "fake", *, tools: str = "echo,delete_file", mode: str = "normal", delay: float = 0.0, enabled: bool = True):
        return McpServerConfig(
            name=name,
            transport="stdio",
            command=sys.executable,
            args=[str(FAKE_SERVER)],
            env={"FAKE_MCP_TOOLS": tools, "FAKE_MCP_MODE": mode, "FAKE_MCP_TOOL_DELAY": str(delay)},
            enabled=enabled,
        )

    return make
