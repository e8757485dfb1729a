"""Application assembly.

`ControlRoom` wires configuration, the MCP client, the tool registry, the
model backend and the run registry together and exposes the core-facing
operations: connectivity test, tool discovery, tool execution and the
streaming tool-call loop.
"""

from __future__ import annotations

import asyncio
from typing import Any, Sequence

import httpx

from control_room.core.config import AppConfig
from control_room.core.errors import LoopAbortedError, ModelEndpointError
from control_room.core.types import RunOutcome, StreamMessage, WorkspaceContext
from control_room.llm.client import ModelBackend, build_model_backend
from control_room.mcp_client import (
    ClientIdentity,
    ConnectionTestResult,
    McpClient,
    McpServerConfig,
    ToolCallOutcome,
    TransportError,
)
from control_room.observability import bind_context, get_logger, set_server
from control_room.orchestrator.tool_loop import Sink, ToolLoop, emit
from control_room.runtime.runs import CancellationToken, RunRegistry
from control_room.tools.registry import McpToolRegistry, ToolDescriptor, resolve_target


class ControlRoom:
    def __init__(
        self,
        *,
        mcp: McpClient,
        backend: ModelBackend,
        workspace: WorkspaceContext | None = None,
        max_iterations: int = 10,
        system_prompt: str | None = None,
        tools: McpToolRegistry | None = None,
        runs: RunRegistry | None = None,
    ) -> None:
        self.mcp = mcp
        self.backend = backend
        self.workspace = workspace or WorkspaceContext(workspace_id="default")
        self.max_iterations = max_iterations
        self.system_prompt = system_prompt
        self.tools = tools or McpToolRegistry()
        self.runs = runs or RunRegistry()
        self._log = get_logger("control_room.app")

    @classmethod
    def from_config(
        cls,
        cfg: AppConfig,
        *,
        backend: ModelBackend | None = None,
        http_transport: httpx.AsyncBaseTransport | None = None,
    ) -> "ControlRoom":
        mcp = McpClient(
            timeouts=cfg.mcp.timeouts,
            identity=ClientIdentity(
                protocol_version=cfg.mcp.protocol_version,
                name=cfg.mcp.client_name,
                version=cfg.mcp.client_version,
            ),
            http_transport=http_transport,
        )
        return cls(
            mcp=mcp,
            backend=backend or build_model_backend(cfg.model),
            workspace=cfg.workspace_context(),
            max_iterations=cfg.loop.max_iterations,
            system_prompt=cfg.model.system_prompt,
        )

    # --- MCP operations -------------------------------------------------

    async def test_connection(self, config: McpServerConfig, *, run_id: str | None = None) -> ConnectionTestResult:
        """Check a server; with `run_id` the check is cancellable via cancel_run()."""

        if run_id is None:
            return await self.mcp.test_connection(config)
        with self.runs.track(run_id) as handle:
            return await self.mcp.test_connection(config, cancel=handle.token)

    async def discover_tools(self, config: McpServerConfig, *, workspace_id: str | None = None) -> list[ToolDescriptor]:
        """Discover a server's tools and replace its registry entry. Never raises."""

        raw = await self.mcp.list_tools(config)
        return self.tools.replace(workspace_id or self.workspace.workspace_id, config.name, raw)

    async def discover_workspace(self, workspace: WorkspaceContext | None = None) -> dict[str, list[ToolDescriptor]]:
        """Discover every active server of a workspace concurrently."""

        ws = workspace or self.workspace
        servers = ws.active_servers()
        results = await asyncio.gather(*(self.discover_tools(s, workspace_id=ws.workspace_id) for s in servers))
        return {s.name: tools for s, tools in zip(servers, results)}

    async def call_tool(
        self,
        server_name: str,
        tool_name: str,
        arguments: dict[str, Any],
        workspace: WorkspaceContext | None = None,
    ) -> ToolCallOutcome:
        ws = workspace or self.workspace
        config = ws.server(server_name)
        if config is None:
            return ToolCallOutcome(success=False, error=f'MCP server "{server_name}" not found')
        if not config.enabled:
            return ToolCallOutcome(success=False, error=f'MCP server "{server_name}" is disabled')
        try:
            config.validate()
        except TransportError as e:
            return ToolCallOutcome(success=False, error=e.message)

        set_server(server_name)
        try:
            return await self.mcp.call_tool(config, tool_name, arguments)
        finally:
            set_server(None)

    def enabled_tools(self, workspace: WorkspaceContext | None = None) -> list[ToolDescriptor]:
        """Registry tools of the workspace's enabled and selected servers."""

        ws = workspace or self.workspace
        return self.tools.tools(ws.workspace_id, servers=[s.name for s in ws.active_servers()])

    # --- Agent loop ------------------------------------------------------

    async def run_tool_loop(
        self,
        conversation: Sequence[dict[str, Any]],
        enabled_tools: Sequence[ToolDescriptor],
        sink: Sink | None,
        token: CancellationToken | None = None,
        *,
        workspace: WorkspaceContext | None = None,
    ) -> str:
        ws = workspace or self.workspace

        async def execute(full_name: str, arguments: dict[str, Any]) -> ToolCallOutcome:
            try:
                server_name, tool_name = resolve_target(self.tools, ws.workspace_id, full_name)
            except ValueError as e:
                return ToolCallOutcome(success=False, error=str(e))
            return await self.call_tool(server_name, tool_name, arguments, ws)

        loop = ToolLoop(
            backend=self.backend,
            executor=execute,
            max_iterations=self.max_iterations,
            system_prompt=self.system_prompt,
        )
        return await loop.run(conversation, enabled_tools, sink, token)

    async def run_chat(
        self,
        run_id: str,
        conversation: Sequence[dict[str, Any]],
        sink: Sink | None,
        *,
        workspace: WorkspaceContext | None = None,
        enabled_tools: Sequence[ToolDescriptor] | None = None,
    ) -> RunOutcome:
        """One registered run: streams chunks/tool events, then exactly one of
        `complete`, `error` or `cancelled`.
        """

        ws = workspace or self.workspace
        bind_context(run_id=run_id, workspace_id=ws.workspace_id)
        tools = list(enabled_tools) if enabled_tools is not None else self.enabled_tools(ws)
        streamed: list[str] = []

        async def relay(message: StreamMessage) -> None:
            if message.type == "chunk" and message.content:
                streamed.append(message.content)
            await emit(sink, message)

        with self.runs.track(run_id) as handle:
            self._log.info("run_started", backend=self.backend.name, tools=len(tools))
            try:
                text = await self.run_tool_loop(conversation, tools, relay, handle.token, workspace=ws)
            except LoopAbortedError as e:
                await emit(sink, StreamMessage(type="cancelled", content=e.partial_text or None))
                outcome = RunOutcome(run_id=run_id, status="cancelled", text=e.partial_text, error=str(e))
            except ModelEndpointError as e:
                await emit(sink, StreamMessage(type="error", error=str(e)))
                outcome = RunOutcome(run_id=run_id, status="failed", text="".join(streamed), error=str(e))
            else:
                await emit(sink, StreamMessage(type="complete", content=text))
                outcome = RunOutcome(run_id=run_id, status="completed", text=text)

        self._log.info("run_finished", status=outcome.status, error=outcome.error)
        return outcome

    def cancel_run(self, run_id: str) -> bool:
        return self.runs.cancel(run_id)

    def active_runs(self) -> list[str]:
        return self.runs.active()
