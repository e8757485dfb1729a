"""Raw transports for the lenient MCP connectivity check.

Implements:
  - StdioTransport: line-delimited JSON-RPC over the pipes of a subprocess (local)
  - HttpTransport: one JSON-RPC envelope per HTTP POST (remote)

Discovery and tool calls go through the MCP SDK instead; these transports
only need to deliver an `initialize` envelope and report what the server
did with it.
"""

from __future__ import annotations

import asyncio
import json
import os
from abc import ABC, abstractmethod
from contextlib import suppress
from typing import Any

import httpx

from control_room.observability.logging import get_logger

from .errors import HttpStatusError, McpTimeoutError, TransportError
from .jsonrpc import JsonRpcError, JsonRpcRequest, parse_response
from .types import McpServerConfig

ACCEPT_HEADER = "application/json, text/event-stream"

_READ_CHUNK = 65536
_MAX_LINE_BYTES = 4 * 1024 * 1024
_STDERR_TAIL_BYTES = 4096
_KILL_WAIT_S = 2.0


class Transport(ABC):
    """Abstract transport layer for the connectivity check."""

    @abstractmethod
    async def open(self) -> None:
        """Start the transport (e.g., launch subprocess)."""
        ...

    @abstractmethod
    async def send(self, request: JsonRpcRequest, *, timeout: float | None = None) -> None:
        """Deliver one request envelope."""
        ...

    @abstractmethod
    async def close(self) -> None:
        """Stop the transport. Idempotent."""
        ...


class StdioTransport(Transport):
    """
    JSON-RPC over stdin/stdout pipes to a subprocess.

    The tool server runs as a child process. We write one JSON document per
    line to its stdin and read newline-delimited documents from its stdout.
    Lines that do not parse as JSON are discarded. stderr is drained on its
    own and only its tail is kept for error messages.
    """

    def __init__(self, config: McpServerConfig) -> None:
        self._config = config
        self._proc: asyncio.subprocess.Process | None = None
        self._line = bytearray()
        self._overflow = False
        self._stderr_tail = bytearray()
        self._stdout_task: asyncio.Task[None] | None = None
        self._stderr_task: asyncio.Task[None] | None = None
        self._exit_task: asyncio.Task[None] | None = None
        self._exited = asyncio.Event()
        self._closed = False
        self._log = get_logger("control_room.mcp.stdio")

        # Set on the first JSON object carrying a `jsonrpc` marker.
        self.message_seen = asyncio.Event()

    @property
    def pid(self) -> int | None:
        return self._proc.pid if self._proc is not None else None

    @property
    def returncode(self) -> int | None:
        return self._proc.returncode if self._proc is not None else None

    @property
    def stderr_text(self) -> str:
        return bytes(self._stderr_tail).decode("utf-8", errors="replace").strip()

    def exit_message(self) -> str:
        return self.stderr_text or f"Process exited with code {self.returncode}"

    async def open(self) -> None:
        if self._closed:
            raise TransportError("Transport closed")
        if self._proc is not None:
            return

        command = self._config.command
        if not command:
            raise TransportError("Invalid server configuration", details={"server": self._config.name})

        env = {**os.environ, **self._config.env}
        try:
            self._proc = await asyncio.create_subprocess_exec(
                command,
                *self._config.args,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=env,
            )
        except (OSError, ValueError) as e:
            raise TransportError(f"Failed to spawn process: {e}", details={"exc": type(e).__name__}) from e

        self._log.info(
            "mcp_spawn",
            server=self._config.name,
            command=command,
            argv=list(self._config.args),
            pid=self._proc.pid,
        )

        self._stdout_task = asyncio.create_task(self._read_stdout())
        self._stderr_task = asyncio.create_task(self._read_stderr())
        self._exit_task = asyncio.create_task(self._watch_exit())

    async def wait_exit(self) -> int | None:
        await self._exited.wait()
        return self.returncode

    async def send(self, request: JsonRpcRequest, *, timeout: float | None = None) -> None:
        try:
            await asyncio.wait_for(self._write(request.to_line()), timeout=timeout)
        except asyncio.TimeoutError as e:
            await self.close()
            raise McpTimeoutError(timeout_s=timeout or 0.0, what=f"MCP {request.method}") from e

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True

        proc = self._proc
        if proc is not None:
            if proc.returncode is None:
                self._log.info("mcp_terminate", server=self._config.name, pid=proc.pid)
                with suppress(ProcessLookupError):
                    proc.kill()
            with suppress(asyncio.TimeoutError):
                await asyncio.wait_for(proc.wait(), timeout=_KILL_WAIT_S)
            if proc.stdin is not None:
                with suppress(OSError, RuntimeError):
                    proc.stdin.close()

        tasks = [t for t in (self._stdout_task, self._stderr_task, self._exit_task) if t is not None]
        for t in tasks:
            t.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

    async def _write(self, data: bytes) -> None:
        proc = self._proc
        if proc is None or proc.stdin is None:
            raise TransportError("Transport not open")
        if self._closed:
            raise TransportError("Transport closed")
        if self._exited.is_set():
            raise TransportError(self.exit_message())

        try:
            proc.stdin.write(data)
            await proc.stdin.drain()
        except OSError as e:
            raise TransportError(f"Failed to write to process stdin: {e}", details={"exc": type(e).__name__}) from e

    def feed(self, chunk: bytes) -> None:
        """Split stdout bytes into lines; only the new chunk is scanned."""

        start = 0
        while True:
            end = chunk.find(b"\n", start)
            if end < 0:
                break
            self._append(chunk[start:end])
            self._finish_line()
            start = end + 1
        self._append(chunk[start:])

    def _append(self, piece: bytes) -> None:
        if self._overflow or not piece:
            return
        if len(self._line) + len(piece) > _MAX_LINE_BYTES:
            # Oversized lines cannot be JSON-RPC we care about; drop until newline.
            self._overflow = True
            self._line.clear()
            return
        self._line += piece

    def _finish_line(self) -> None:
        if self._overflow:
            self._log.debug("mcp_stdio_line_dropped", server=self._config.name, limit=_MAX_LINE_BYTES)
        else:
            self._handle_line(bytes(self._line))
        self._line.clear()
        self._overflow = False

    async def _read_stdout(self) -> None:
        assert self._proc is not None and self._proc.stdout is not None
        stream = self._proc.stdout

        while True:
            chunk = await stream.read(_READ_CHUNK)
            if not chunk:
                break
            self.feed(chunk)

        # EOF completes a trailing unterminated line.
        if self._line.strip() or self._overflow:
            self._finish_line()

    async def _read_stderr(self) -> None:
        assert self._proc is not None and self._proc.stderr is not None
        stream = self._proc.stderr

        while True:
            chunk = await stream.read(_READ_CHUNK)
            if not chunk:
                break
            self._stderr_tail += chunk
            if len(self._stderr_tail) > _STDERR_TAIL_BYTES:
                del self._stderr_tail[: len(self._stderr_tail) - _STDERR_TAIL_BYTES]

    async def _watch_exit(self) -> None:
        assert self._proc is not None

        # Drain both pipes first: output parsed from stdout must win over the
        # exit signal.
        readers = {t for t in (self._stdout_task, self._stderr_task) if t is not None}
        if readers:
            await asyncio.wait(readers)

        code = await self._proc.wait()
        self._exited.set()
        self._log.info("mcp_process_exit", server=self._config.name, returncode=code)

    def _handle_line(self, line: bytes) -> None:
        text = line.strip()
        if not text:
            return

        try:
            obj: Any = json.loads(text)
        except ValueError:
            self._log.debug(
                "mcp_stdio_noise",
                server=self._config.name,
                line=text[:200].decode("utf-8", errors="replace"),
            )
            return

        if not (isinstance(obj, dict) and "jsonrpc" in obj):
            return
        self.message_seen.set()

        reply = parse_response(obj)
        if isinstance(reply, JsonRpcError):
            # Still counts as alive; the error is only reported here.
            self._log.info(
                "mcp_check_error_reply",
                server=self._config.name,
                code=reply.code,
                error=reply.message,
            )


class HttpTransport(Transport):
    """
    JSON-RPC over HTTP POST.

    Any 2xx status answers the check; the body is not read, so event-stream
    replies that stay open do not hold the check up.
    """

    def __init__(
        self,
        config: McpServerConfig,
        *,
        http_transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._config = config
        self._http_transport = http_transport
        self._client: httpx.AsyncClient | None = None
        self._closed = False
        self._log = get_logger("control_room.mcp.http")

    async def open(self) -> None:
        if self._closed:
            raise TransportError("Transport closed")
        if not self._config.url:
            raise TransportError("Invalid server configuration", details={"server": self._config.name})
        if self._client is None:
            self._client = httpx.AsyncClient(
                headers=dict(self._config.headers),
                transport=self._http_transport,
                follow_redirects=True,
            )

    async def send(self, request: JsonRpcRequest, *, timeout: float | None = None) -> None:
        client = self._client
        if client is None:
            raise TransportError("Transport not open")

        headers = {"Content-Type": "application/json", "Accept": ACCEPT_HEADER}
        self._log.debug("mcp_http_request", server=self._config.name, method=request.method)
        try:
            async with client.stream(
                "POST",
                str(self._config.url),
                json=request.to_dict(),
                headers=headers,
                timeout=timeout,
            ) as resp:
                if not resp.is_success:
                    raise HttpStatusError(status=resp.status_code, reason=resp.reason_phrase)
        except httpx.TimeoutException as e:
            raise McpTimeoutError(timeout_s=timeout or 0.0, what=f"MCP {request.method}") from e
        except httpx.HTTPError as e:
            raise TransportError(f"HTTP request failed: {e}", details={"exc": type(e).__name__}) from e

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self._client is not None:
            await self._client.aclose()
            self._client = None


def open_transport(
    config: McpServerConfig,
    *,
    http_transport: httpx.AsyncBaseTransport | None = None,
) -> Transport:
    """Build (but do not open) the transport matching `config.transport`."""

    config.validate()
    if config.transport == "stdio":
        return StdioTransport(config)
    return HttpTransport(config, http_transport=http_transport)
