"""MCP (Model Context Protocol) client-side integration.

Discovery and tool calls use the MCP SDK over a spawned subprocess (stdio) or
a streamable HTTP endpoint. Connectivity tests use small raw transports so a
loosely conformant server still counts as reachable.
"""

from __future__ import annotations

from .client import ClientIdentity, ConnectionState, McpClient, McpSession, content_text
from .errors import HttpStatusError, McpClientError, McpTimeoutError, ProtocolError, TransportError
from .transports import HttpTransport, StdioTransport, Transport, open_transport
from .types import ConnectionTestResult, McpServerConfig, McpTimeouts, ToolCallOutcome

__all__ = [
    "ClientIdentity",
    "ConnectionState",
    "ConnectionTestResult",
    "HttpStatusError",
    "HttpTransport",
    "McpClient",
    "McpClientError",
    "McpServerConfig",
    "McpSession",
    "McpTimeoutError",
    "McpTimeouts",
    "ProtocolError",
    "StdioTransport",
    "ToolCallOutcome",
    "Transport",
    "TransportError",
    "content_text",
    "open_transport",
]
