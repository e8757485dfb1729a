from __future__ import annotations

import json
import sys
from pathlib import Path

import pytest

from control_room.core.cli import main

FAKE_SERVER = Path(__file__).resolve().parent / "fixtures" / "fake_mcp_server.py"


def _config(tmp_path: Path) -> Path:
    p = tmp_path / "app.yaml"
    p.write_text(
        f"""
model:
  backend: mock
mcp:
  servers:
    fake:
      transport: stdio
      command: {json.dumps(sys.executable)}
      args: [{json.dumps(str(FAKE_SERVER))}]
      env:
        FAKE_MCP_TOOLS: echo
""".lstrip(),
        encoding="utf-8",
    )
    return p


def test_servers_lists_config(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    assert main(["--config", str(_config(tmp_path)), "servers"]) == 0

    (server,) = json.loads(capsys.readouterr().out)
    assert server["name"] == "fake"
    assert server["transport"] == "stdio"
    assert server["enabled"] is True


def test_call_prints_outcome(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    code = main(["--config", str(_config(tmp_path)), "call", "fake", "echo", "--args", '{"text": "hi"}'])

    out = json.loads(capsys.readouterr().out)
    assert code == 0
    assert out["success"] is True
    assert out["error"] is None


def test_unknown_server_is_config_error(tmp_path: Path) -> None:
    assert main(["--config", str(_config(tmp_path)), "test", "nope"]) == 2


def test_missing_config_file(tmp_path: Path) -> None:
    assert main(["--config", str(tmp_path / "missing.yaml"), "servers"]) == 2
