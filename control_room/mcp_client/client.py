from __future__ import annotations

import asyncio
import os
from contextlib import AsyncExitStack, asynccontextmanager, suppress
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any, AsyncIterator, Callable

import httpx
from mcp import ClientSession, StdioServerParameters
from mcp.client.stdio import stdio_client
from mcp.client.streamable_http import streamable_http_client
from mcp.shared.exceptions import McpError
from mcp.types import Implementation

from control_room.observability.logging import get_logger

from .errors import McpClientError, McpTimeoutError, ProtocolError, TransportError
from .jsonrpc import JsonRpcRequest, initialize_request
from .transports import StdioTransport, Transport, open_transport
from .types import ConnectionTestResult, McpServerConfig, McpTimeouts, ToolCallOutcome

if TYPE_CHECKING:
    from control_room.runtime.runs import CancellationToken

DEFAULT_PROTOCOL_VERSION = "2024-11-05"
DEFAULT_CLIENT_NAME = "agent-control-room"
DEFAULT_CLIENT_VERSION = "1.0.0"

TransportFactory = Callable[[McpServerConfig], Transport]


class ConnectionState(str, Enum):
    UNCONNECTED = "unconnected"
    INITIALIZING = "initializing"
    READY = "ready"
    CLOSED = "closed"


@dataclass(frozen=True, slots=True)
class ClientIdentity:
    protocol_version: str = DEFAULT_PROTOCOL_VERSION
    name: str = DEFAULT_CLIENT_NAME
    version: str = DEFAULT_CLIENT_VERSION


def content_text(result: Any) -> str:
    """Join the text blocks of an MCP `tools/call` result."""

    if not isinstance(result, dict):
        return ""
    content = result.get("content")
    if not isinstance(content, list):
        return ""
    texts: list[str] = []
    for block in content:
        if isinstance(block, dict) and block.get("type", "text") == "text":
            text = block.get("text")
            if isinstance(text, str) and text:
                texts.append(text)
    return "\n".join(texts)


def _dump(payload: Any) -> Any:
    # SDK results are pydantic models; callers work with plain JSON values.
    dump = getattr(payload, "model_dump", None)
    if callable(dump):
        return dump(mode="json", by_alias=True, exclude_none=True)
    return payload


def _normalize_tool(tool: Any) -> dict[str, Any] | None:
    name = getattr(tool, "name", None)
    if not isinstance(name, str) or not name.strip():
        return None
    schema = getattr(tool, "inputSchema", None)
    description = getattr(tool, "description", None)
    return {
        "name": name,
        "description": description if isinstance(description, str) else "",
        "inputSchema": dict(schema) if isinstance(schema, dict) else {"type": "object", "properties": {}},
    }


def _client_error(exc: BaseException) -> McpClientError | None:
    """Map an exception leaving an SDK session to a client error, if it is one.

    The SDK runs its readers in anyio task groups, which wrap failures in
    exception groups; single-leaf groups are unwrapped first.
    """

    while isinstance(exc, BaseExceptionGroup) and len(exc.exceptions) == 1:
        exc = exc.exceptions[0]
    if isinstance(exc, McpClientError):
        return exc
    if isinstance(exc, McpError):
        return ProtocolError(exc.error.message, code=exc.error.code)
    return None


class McpSession:
    """One logical MCP connection on top of the SDK's ClientSession.

    Tracks the handshake state: UNCONNECTED -> INITIALIZING -> READY, and
    CLOSED once the owning context exits. JSON-RPC error replies surface as
    ProtocolError.
    """

    def __init__(self, session: ClientSession, *, server: str) -> None:
        self._session = session
        self._server = server
        self.state = ConnectionState.UNCONNECTED
        self.server_info: dict[str, Any] = {}

    async def initialize(self) -> dict[str, Any]:
        if self.state is not ConnectionState.UNCONNECTED:
            raise ProtocolError(f"initialize not allowed in state {self.state.value}")
        self.state = ConnectionState.INITIALIZING
        result = await self._rpc("initialize", self._session.initialize())
        self.server_info = _dump(result) or {}
        self.state = ConnectionState.READY
        return self.server_info

    async def list_tools(self) -> list[dict[str, Any]]:
        result = await self._rpc("tools/list", self._session.list_tools())
        tools: list[dict[str, Any]] = []
        for raw in getattr(result, "tools", None) or []:
            tool = _normalize_tool(raw)
            if tool is None:
                get_logger("control_room.mcp").warning("mcp_tool_skipped", server=self._server, tool=repr(raw)[:200])
                continue
            tools.append(tool)
        return tools

    async def call_tool(self, name: str, arguments: dict[str, Any]) -> dict[str, Any]:
        result = await self._rpc("tools/call", self._session.call_tool(name, arguments=arguments))
        return _dump(result)

    async def _rpc(self, method: str, pending: Any) -> Any:
        if self.state is ConnectionState.CLOSED:
            pending.close()
            raise TransportError("Connection closed")
        if method != "initialize" and self.state is not ConnectionState.READY:
            pending.close()
            raise ProtocolError(f"{method} sent before initialize completed")
        try:
            return await pending
        except McpError as e:
            raise ProtocolError(e.error.message, code=e.error.code) from e


class McpClient:
    """Short-lived MCP connections for connectivity tests, discovery and tool calls.

    Discovery and tool calls run through the MCP SDK (stdio subprocess or
    streamable HTTP), one session per operation, bounded by one deadline.
    Connectivity tests are a lenient check over the raw transports instead.
    Failures never escape as exceptions: tests and tool calls return
    structured results, discovery returns an empty list.
    """

    def __init__(
        self,
        *,
        timeouts: McpTimeouts | None = None,
        identity: ClientIdentity | None = None,
        transport_factory: TransportFactory | None = None,
        http_transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._timeouts = timeouts or McpTimeouts()
        self._identity = identity or ClientIdentity()
        self._http_transport = http_transport
        self._transport_factory = transport_factory or (
            lambda cfg: open_transport(cfg, http_transport=http_transport)
        )
        self._log = get_logger("control_room.mcp")

    @property
    def timeouts(self) -> McpTimeouts:
        return self._timeouts

    @asynccontextmanager
    async def session(self, config: McpServerConfig, *, timeout_s: float) -> AsyncIterator[McpSession]:
        """Open an SDK session for `config`; the handshake is left to the caller."""

        config.validate()
        async with AsyncExitStack() as stack:
            if config.transport == "stdio":
                params = StdioServerParameters(
                    command=str(config.command),
                    args=list(config.args),
                    env={**os.environ, **config.env},
                )
                try:
                    read, write = await stack.enter_async_context(stdio_client(params))
                except OSError as e:
                    raise TransportError(f"Failed to spawn process: {e}", details={"exc": type(e).__name__}) from e
                self._log.info("mcp_spawn", server=config.name, command=config.command, argv=list(config.args))
            else:
                http_client = await stack.enter_async_context(
                    httpx.AsyncClient(
                        headers=dict(config.headers),
                        transport=self._http_transport,
                        timeout=httpx.Timeout(timeout_s),
                        follow_redirects=True,
                    )
                )
                read, write, _get_session_id = await stack.enter_async_context(
                    streamable_http_client(str(config.url), http_client=http_client)
                )

            client_session = await stack.enter_async_context(
                ClientSession(
                    read,
                    write,
                    client_info=Implementation(name=self._identity.name, version=self._identity.version),
                )
            )
            session = McpSession(client_session, server=config.name)
            try:
                yield session
            finally:
                session.state = ConnectionState.CLOSED

    async def test_connection(
        self,
        config: McpServerConfig,
        *,
        cancel: CancellationToken | None = None,
    ) -> ConnectionTestResult:
        """Lenient liveness check.

        Any JSON-RPC shaped output (stdio), a clean process exit (stdio) or any
        2xx reply (http/sse) counts as success. The handshake result itself is
        not validated, which the SDK session cannot express, so this path
        speaks to the raw transports.
        """

        timeout_s = self._timeouts.connect_s
        try:
            config.validate()
            transport = self._transport_factory(config)
        except TransportError as e:
            return ConnectionTestResult(success=False, error=e.message)

        check = asyncio.create_task(self._check(transport, timeout_s))
        waiters: set[asyncio.Task[Any]] = {check}
        cancel_task: asyncio.Task[None] | None = None
        if cancel is not None:
            cancel_task = asyncio.create_task(cancel.wait())
            waiters.add(cancel_task)

        try:
            done, _ = await asyncio.wait(waiters, timeout=timeout_s, return_when=asyncio.FIRST_COMPLETED)
            if check in done:
                result = check.result()
            elif cancel_task is not None and cancel_task in done:
                result = ConnectionTestResult(success=False, error="Connection test cancelled")
            else:
                result = ConnectionTestResult(success=False, error=f"Connection timeout ({timeout_s:g}s)")
        finally:
            for t in waiters:
                if not t.done():
                    t.cancel()
            await asyncio.gather(*waiters, return_exceptions=True)
            await transport.close()

        self._log.info(
            "mcp_connection_test",
            server=config.name,
            transport=config.transport,
            success=result.success,
            error=result.error,
        )
        return result

    async def _check(self, transport: Transport, timeout_s: float) -> ConnectionTestResult:
        try:
            await transport.open()
        except TransportError as e:
            return ConnectionTestResult(success=False, error=e.message)

        req = initialize_request(
            1,
            protocol_version=self._identity.protocol_version,
            client_name=self._identity.name,
            client_version=self._identity.version,
        )

        if isinstance(transport, StdioTransport):
            return await self._check_stdio(transport, req)

        try:
            await transport.send(req, timeout=timeout_s)
        except McpTimeoutError:
            return ConnectionTestResult(success=False, error=f"Connection timeout ({timeout_s:g}s)")
        except McpClientError as e:
            return ConnectionTestResult(success=False, error=e.message)
        return ConnectionTestResult(success=True)

    async def _check_stdio(self, transport: StdioTransport, req: JsonRpcRequest) -> ConnectionTestResult:
        # A server that already printed its reply and exited may have closed
        # stdin; the outcome is decided by what it wrote and its exit code.
        with suppress(TransportError):
            await transport.send(req)

        seen = asyncio.create_task(transport.message_seen.wait())
        exited = asyncio.create_task(transport.wait_exit())
        try:
            await asyncio.wait({seen, exited}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for t in (seen, exited):
                t.cancel()
            await asyncio.gather(seen, exited, return_exceptions=True)

        # The exit watcher drains stdout first, so a parsed message is
        # already recorded when the exit is observed.
        if transport.message_seen.is_set() or transport.returncode == 0:
            return ConnectionTestResult(success=True)
        return ConnectionTestResult(success=False, error=transport.exit_message())

    async def list_tools(self, config: McpServerConfig) -> list[dict[str, Any]]:
        """Discover `{name, description, inputSchema}` tools; [] on any failure."""

        timeout_s = self._timeouts.discovery_s

        async def discover() -> list[dict[str, Any]]:
            async with self.session(config, timeout_s=timeout_s) as session:
                await session.initialize()
                return await session.list_tools()

        try:
            tools = await asyncio.wait_for(discover(), timeout=timeout_s)
        except asyncio.TimeoutError:
            err: McpClientError | None = McpTimeoutError(timeout_s=timeout_s, what="MCP tools/list")
        except Exception as e:  # noqa: BLE001
            err = _client_error(e)
            if err is None:
                self._log.exception("mcp_discovery_failed", server=config.name, error=str(e))
                return []
        else:
            self._log.info("mcp_tools_listed", server=config.name, count=len(tools))
            return tools

        self._log.warning(
            "mcp_discovery_failed",
            server=config.name,
            error_type=err.error_type,
            error=err.message,
        )
        return []

    async def call_tool(self, config: McpServerConfig, tool_name: str, arguments: dict[str, Any]) -> ToolCallOutcome:
        timeout_s = self._timeouts.http_call_s if config.is_remote else self._timeouts.call_s
        self._log.info("mcp_tool_call", server=config.name, tool=tool_name)

        async def invoke() -> dict[str, Any]:
            async with self.session(config, timeout_s=timeout_s) as session:
                await session.initialize()
                # The SDK lists tools on an output-schema cache miss after the
                # call; listing first keeps the call's reply the last message
                # the server has to send.
                await session.list_tools()
                return await session.call_tool(tool_name, arguments)

        try:
            result = await asyncio.wait_for(invoke(), timeout=timeout_s)
        except asyncio.TimeoutError:
            err: McpClientError | None = McpTimeoutError(timeout_s=timeout_s, what="MCP tools/call")
        except Exception as e:  # noqa: BLE001
            err = _client_error(e)
            if err is None:
                self._log.exception("mcp_tool_call_failed", server=config.name, tool=tool_name)
                return ToolCallOutcome(success=False, error=str(e) or type(e).__name__)
        else:
            if isinstance(result, dict) and result.get("isError"):
                return ToolCallOutcome(
                    success=False,
                    result=result,
                    error=content_text(result) or f'Tool "{tool_name}" reported an error',
                )
            return ToolCallOutcome(success=True, result=result)

        self._log.warning(
            "mcp_tool_call_failed",
            server=config.name,
            tool=tool_name,
            error_type=err.error_type,
            error=err.message,
        )
        return ToolCallOutcome(success=False, error=err.message)
