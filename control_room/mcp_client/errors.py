from __future__ import annotations

from control_room.core.errors import ControlRoomError


class McpClientError(ControlRoomError):
    """Base exception for MCP client failures.

    Transport and protocol failures are normalized into a small set of stable
    error types so callers can map them into structured results.
    """

    def __init__(self, error_type: str, message: str, *, details: dict[str, str] | None = None):
        super().__init__(message)
        self.error_type = error_type
        self.message = message
        self.details = details or {}


class TransportError(McpClientError):
    """Spawn failure, connection refused, broken pipe or malformed configuration."""

    def __init__(self, message: str, *, details: dict[str, str] | None = None):
        super().__init__("transport_error", message, details=details)


class HttpStatusError(TransportError):
    def __init__(self, *, status: int, reason: str):
        super().__init__(f"HTTP {status}: {reason}", details={"status": str(status)})
        self.status = status


class McpTimeoutError(McpClientError):
    def __init__(self, *, timeout_s: float, what: str = "MCP request"):
        super().__init__(
            "timeout",
            f"{what} timed out after {timeout_s:g}s",
            details={"timeout_s": str(timeout_s)},
        )
        self.timeout_s = timeout_s


class ProtocolError(McpClientError):
    """Well-formed transport response carrying a JSON-RPC error payload."""

    def __init__(self, message: str, *, code: int | None = None):
        super().__init__(
            "protocol_error",
            message,
            details={"code": str(code)} if code is not None else None,
        )
        self.code = code
