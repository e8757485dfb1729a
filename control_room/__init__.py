"""Agent control room: MCP tool client and agent tool-call loop."""

from __future__ import annotations

__all__ = [
    "__version__",
]

__version__ = "0.1.0"
