from __future__ import annotations

from typing import Any, Sequence

from control_room.core.types import ToolCall, ToolResult

from .tool_result_codec import dumps_payload


def assistant_message(text: str, tool_calls: Sequence[ToolCall]) -> dict[str, Any]:
    """Assistant turn as it is replayed to the model on the next iteration."""

    msg: dict[str, Any] = {"role": "assistant", "content": text or None}
    if tool_calls:
        msg["tool_calls"] = [
            {
                "id": tc.id,
                "type": "function",
                "function": {"name": tc.name, "arguments": tc.arguments_json},
            }
            for tc in tool_calls
        ]
    return msg


def tool_message_from_result(r: ToolResult) -> dict[str, Any]:
    """Build an OpenAI-compatible tool message from a ToolResult.

    Note:
    - OpenAI tool message content should be a JSON string.
    - We keep `name` for compatibility with OpenAI-compatible servers that expect it.
    """

    content = r.content if isinstance(r.content, dict) else {"text": r.content}
    return {
        "role": "tool",
        "tool_call_id": r.tool_call_id,
        "name": r.name,
        "content": dumps_payload(content),
    }
