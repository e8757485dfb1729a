from __future__ import annotations

import asyncio
import os
import sys
import time

from control_room.mcp_client import McpClient, McpServerConfig, McpTimeouts, StdioTransport, open_transport
from control_room.runtime.runs import CancellationToken


def _recording_client(timeouts: McpTimeouts | None = None) -> tuple[McpClient, list[StdioTransport]]:
    created: list[StdioTransport] = []

    def factory(cfg: McpServerConfig):
        t = open_transport(cfg)
        assert isinstance(t, StdioTransport)
        created.append(t)
        return t

    return McpClient(timeouts=timeouts, transport_factory=factory), created


def _alive(pid: int) -> bool:
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        return True
    return True


def test_echo_server_counts_as_connected() -> None:
    cfg = McpServerConfig(
        name="echo",
        transport="stdio",
        command="echo",
        args=['{"jsonrpc":"2.0","id":1,"result":{}}'],
    )

    result = asyncio.run(McpClient().test_connection(cfg))
    assert result.success is True
    assert result.error is None


def test_clean_exit_without_output_counts_as_connected() -> None:
    cfg = McpServerConfig(name="true", transport="stdio", command=sys.executable, args=["-c", "pass"])

    result = asyncio.run(McpClient().test_connection(cfg))
    assert result.success is True


def test_silent_server_times_out_and_is_killed(fake_server_config) -> None:
    client, created = _recording_client(McpTimeouts(connect_s=0.5))

    t0 = time.monotonic()
    result = asyncio.run(client.test_connection(fake_server_config(mode="silent")))
    elapsed = time.monotonic() - t0

    assert result.success is False
    assert result.error == "Connection timeout (0.5s)"
    assert elapsed < 5

    (transport,) = created
    assert transport.pid is not None
    assert transport.returncode is not None
    assert not _alive(transport.pid)


def test_crash_reports_stderr(fake_server_config) -> None:
    result = asyncio.run(McpClient().test_connection(fake_server_config(mode="crash")))
    assert result.success is False
    assert result.error == "fake-mcp: fatal startup error"


def test_spawn_failure_is_structured() -> None:
    cfg = McpServerConfig(name="nope", transport="stdio", command="/definitely/not/a/binary-xyz")

    result = asyncio.run(McpClient().test_connection(cfg))
    assert result.success is False
    assert result.error and result.error.startswith("Failed to spawn process:")


def test_invalid_config_is_structured() -> None:
    cfg = McpServerConfig(name="bad", transport="stdio")

    result = asyncio.run(McpClient().test_connection(cfg))
    assert result.success is False
    assert result.error == "Invalid server configuration"


def test_cancelled_connection_test(fake_server_config) -> None:
    async def run():
        token = CancellationToken()
        client = McpClient(timeouts=McpTimeouts(connect_s=10))
        task = asyncio.create_task(client.test_connection(fake_server_config(mode="silent"), cancel=token))
        await asyncio.sleep(0.3)
        token.cancel()
        return await task

    result = asyncio.run(run())
    assert result.success is False
    assert result.error == "Connection test cancelled"


def test_discovery_lists_tools(fake_server_config) -> None:
    tools = asyncio.run(McpClient().list_tools(fake_server_config(tools="read_file,write_file")))

    assert [t["name"] for t in tools] == ["read_file", "write_file"]
    assert tools[0]["description"] == "read_file tool"
    assert tools[0]["inputSchema"] == {"type": "object", "properties": {}}


def test_discovery_tolerates_stdout_noise(fake_server_config) -> None:
    tools = asyncio.run(McpClient().list_tools(fake_server_config(tools="echo", mode="noisy")))
    assert [t["name"] for t in tools] == ["echo"]


def test_discovery_failure_returns_empty_list(fake_server_config) -> None:
    client = McpClient(timeouts=McpTimeouts(discovery_s=0.5))

    t0 = time.monotonic()
    assert asyncio.run(client.list_tools(fake_server_config(mode="crash"))) == []
    assert asyncio.run(client.list_tools(fake_server_config(mode="silent"))) == []
    assert time.monotonic() - t0 < 15


def test_discovery_spawn_failure_returns_empty_list() -> None:
    cfg = McpServerConfig(name="nope", transport="stdio", command="/definitely/not/a/binary-xyz")
    assert asyncio.run(McpClient().list_tools(cfg)) == []


def test_call_tool_success(fake_server_config) -> None:
    outcome = asyncio.run(McpClient().call_tool(fake_server_config(), "echo", {"text": "hi"}))

    assert outcome.success is True
    assert outcome.error is None
    assert outcome.result["content"][0]["type"] == "text"
    assert '"text": "hi"' in outcome.result["content"][0]["text"]


def test_call_tool_reply_wins_over_nonzero_exit(fake_server_config) -> None:
    cfg = fake_server_config(tools="echo", mode="exit_after_call")

    for _ in range(3):
        outcome = asyncio.run(McpClient().call_tool(cfg, "echo", {"text": "bye"}))
        assert outcome.success is True
        assert outcome.error is None
        assert '"text": "bye"' in outcome.result["content"][0]["text"]


def test_call_tool_is_error_result(fake_server_config) -> None:
    outcome = asyncio.run(McpClient().call_tool(fake_server_config(tools="fail"), "fail", {}))

    assert outcome.success is False
    assert outcome.error == "tool exploded"


def test_call_tool_protocol_error(fake_server_config) -> None:
    outcome = asyncio.run(McpClient().call_tool(fake_server_config(tools="echo"), "missing", {}))

    assert outcome.success is False
    assert outcome.error == "Unknown tool: missing"


def test_call_tool_spawn_failure_is_structured() -> None:
    cfg = McpServerConfig(name="nope", transport="stdio", command="/definitely/not/a/binary-xyz")

    outcome = asyncio.run(McpClient().call_tool(cfg, "echo", {}))
    assert outcome.success is False
    assert outcome.error and outcome.error.startswith("Failed to spawn process:")


def test_call_tool_timeout(fake_server_config) -> None:
    client = McpClient(timeouts=McpTimeouts(call_s=2))

    t0 = time.monotonic()
    outcome = asyncio.run(client.call_tool(fake_server_config(tools="slow", delay=10), "slow", {}))

    assert outcome.success is False
    assert outcome.error == "MCP tools/call timed out after 2s"
    assert time.monotonic() - t0 < 9
