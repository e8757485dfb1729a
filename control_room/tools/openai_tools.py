from __future__ import annotations

from typing import Any, Iterable

from .registry import ToolDescriptor


def get_openai_tool_specs(tools: Iterable[ToolDescriptor]) -> list[dict[str, Any]]:
    """Return OpenAI-compatible tool specs for discovered MCP tools.

    Note: OpenAI-compatible format:
    {
      "type": "function",
      "function": {
        "name": "mcp__server__tool",
        "description": "...",
        "parameters": { ...JSON Schema... }
      }
    }
    """

    out: list[dict[str, Any]] = []
    for d in tools:
        out.append(
            {
                "type": "function",
                "function": {
                    "name": d.full_name,
                    "description": d.description or d.tool_name,
                    "parameters": d.input_schema or {"type": "object", "properties": {}},
                },
            }
        )
    return out
