from __future__ import annotations

import asyncio
import json
from typing import Any

import httpx

from control_room.app import ControlRoom
from control_room.core.types import WorkspaceContext
from control_room.llm.client import MockModelBackend
from control_room.mcp_client import McpClient, McpServerConfig, McpTimeouts

URL = "http://mcp.test/mcp"

INIT_RESULT = {
    "protocolVersion": "2024-11-05",
    "capabilities": {"tools": {}},
    "serverInfo": {"name": "fake-remote", "version": "0.0.1"},
}


def _config(**kw: Any) -> McpServerConfig:
    return McpServerConfig(name="remote", transport="http", url=URL, headers={"Authorization": "Bearer t"}, **kw)


def _result(req: dict[str, Any], value: Any) -> dict[str, Any]:
    return {"jsonrpc": "2.0", "id": req["id"], "result": value}


class FakeHttpServer:
    """Routes JSON-RPC posts; tools/call answers as an event stream.

    Only POSTs are recorded. The standalone GET stream and the DELETE on
    session end are refused with 405.
    """

    def __init__(self, *, session_id: str | None = "sess-1", tools: list[dict[str, Any]] | None = None) -> None:
        self.session_id = session_id
        self.tools = tools or [{"name": "search", "description": "Search the web", "inputSchema": {"type": "object"}}]
        self.requests: list[httpx.Request] = []

    def bodies(self) -> list[dict[str, Any]]:
        return [json.loads(r.content) for r in self.requests]

    def __call__(self, request: httpx.Request) -> httpx.Response:
        if request.method != "POST":
            return httpx.Response(405)
        self.requests.append(request)
        body = json.loads(request.content)
        method = body.get("method")
        headers = {"mcp-session-id": self.session_id} if self.session_id and method == "initialize" else {}

        if method == "initialize":
            return httpx.Response(200, json=_result(body, INIT_RESULT), headers=headers)
        if method == "notifications/initialized":
            return httpx.Response(202)
        if method == "tools/list":
            return httpx.Response(200, json=_result(body, {"tools": self.tools}))
        if method == "tools/call":
            events = [
                'data: {"jsonrpc":"2.0","method":"notifications/message","params":{"level":"info","data":"searching"}}',
                "",
                "data: " + json.dumps(_result(body, {"content": [{"type": "text", "text": "found it"}]})),
                "",
            ]
            return httpx.Response(200, headers={"content-type": "text/event-stream"}, text="\n".join(events) + "\n")
        return httpx.Response(404)


def test_discovery_and_session_header() -> None:
    server = FakeHttpServer()
    client = McpClient(http_transport=httpx.MockTransport(server))

    tools = asyncio.run(client.list_tools(_config()))

    assert [t["name"] for t in tools] == ["search"]
    assert [b["method"] for b in server.bodies()] == ["initialize", "notifications/initialized", "tools/list"]

    first, *rest = server.requests
    assert "application/json" in first.headers["accept"]
    assert "text/event-stream" in first.headers["accept"]
    assert first.headers["content-type"] == "application/json"
    assert first.headers["authorization"] == "Bearer t"
    assert "mcp-session-id" not in first.headers
    assert all(r.headers["mcp-session-id"] == "sess-1" for r in rest)


def test_no_session_header_when_server_sends_none() -> None:
    server = FakeHttpServer(session_id=None)
    client = McpClient(http_transport=httpx.MockTransport(server))

    asyncio.run(client.list_tools(_config()))
    assert all("mcp-session-id" not in r.headers for r in server.requests)


def test_call_tool_reads_event_stream() -> None:
    server = FakeHttpServer()
    client = McpClient(http_transport=httpx.MockTransport(server))

    outcome = asyncio.run(client.call_tool(_config(), "search", {"q": "mcp"}))

    assert outcome.success is True
    assert outcome.error is None
    assert outcome.result["content"] == [{"type": "text", "text": "found it"}]
    assert server.bodies()[-1]["params"]["name"] == "search"
    assert server.bodies()[-1]["params"]["arguments"] == {"q": "mcp"}


def test_unnamed_remote_tool_is_skipped_during_discovery() -> None:
    schema = {"type": "object", "properties": {}}
    server = FakeHttpServer(tools=[{"name": "ok_tool", "inputSchema": schema}, {"name": "", "inputSchema": schema}])
    remote = _config()
    room = ControlRoom(
        mcp=McpClient(http_transport=httpx.MockTransport(server)),
        backend=MockModelBackend(word_delay_s=0),
        workspace=WorkspaceContext(workspace_id="ws", servers={remote.name: remote}),
    )

    tools = asyncio.run(room.discover_tools(remote))

    assert [d.tool_name for d in tools] == ["ok_tool"]
    assert [d.full_name for d in room.tools.tools("ws")] == ["mcp__remote__ok_tool"]


def test_non_2xx_maps_to_failure() -> None:
    timeouts = McpTimeouts(discovery_s=1, http_call_s=1)
    client = McpClient(timeouts=timeouts, http_transport=httpx.MockTransport(lambda request: httpx.Response(404)))

    result = asyncio.run(client.test_connection(_config()))
    assert result.success is False
    assert result.error == "HTTP 404: Not Found"

    outcome = asyncio.run(client.call_tool(_config(), "search", {}))
    assert outcome.success is False
    assert outcome.error

    assert asyncio.run(client.list_tools(_config())) == []


def test_connection_test_accepts_any_2xx() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        return httpx.Response(200, json={"jsonrpc": "2.0", "id": body["id"], "error": {"message": "unsupported"}})

    client = McpClient(http_transport=httpx.MockTransport(handler))
    assert asyncio.run(client.test_connection(_config())).success is True


def test_json_rpc_error_fails_tool_call() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        if request.method != "POST":
            return httpx.Response(405)
        body = json.loads(request.content)
        if body["method"] == "initialize":
            return httpx.Response(200, json=_result(body, INIT_RESULT))
        if body["method"] == "tools/list":
            return httpx.Response(200, json=_result(body, {"tools": []}))
        if body["method"] == "tools/call":
            return httpx.Response(200, json={"jsonrpc": "2.0", "id": body["id"], "error": {"code": -32602, "message": "bad args"}})
        return httpx.Response(202)

    client = McpClient(http_transport=httpx.MockTransport(handler))
    outcome = asyncio.run(client.call_tool(_config(), "search", {}))

    assert outcome.success is False
    assert outcome.error == "bad args"


def test_connect_error_is_structured() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    client = McpClient(http_transport=httpx.MockTransport(handler))
    result = asyncio.run(client.test_connection(_config()))

    assert result.success is False
    assert result.error and "connection refused" in result.error


def test_slow_server_times_out() -> None:
    async def handler(request: httpx.Request) -> httpx.Response:
        await asyncio.sleep(5)
        return httpx.Response(200)

    client = McpClient(timeouts=McpTimeouts(connect_s=0.2), http_transport=httpx.MockTransport(handler))
    result = asyncio.run(client.test_connection(_config()))

    assert result.success is False
    assert result.error == "Connection timeout (0.2s)"


def test_slow_tool_call_times_out() -> None:
    server = FakeHttpServer()

    async def handler(request: httpx.Request) -> httpx.Response:
        if request.method == "POST" and json.loads(request.content).get("method") == "tools/call":
            await asyncio.sleep(5)
        return server(request)

    client = McpClient(timeouts=McpTimeouts(http_call_s=1), http_transport=httpx.MockTransport(handler))
    outcome = asyncio.run(client.call_tool(_config(), "search", {}))

    assert outcome.success is False
    assert outcome.error == "MCP tools/call timed out after 1s"
