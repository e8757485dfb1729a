from __future__ import annotations

from .mcp_naming import build_full_name, parse_full_name
from .registry import McpToolRegistry, ToolDescriptor, resolve_target
from .risk import HIGH_RISK_PATTERNS, is_high_risk_tool

__all__ = [
    "HIGH_RISK_PATTERNS",
    "McpToolRegistry",
    "ToolDescriptor",
    "build_full_name",
    "is_high_risk_tool",
    "parse_full_name",
    "resolve_target",
]
