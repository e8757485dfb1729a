from __future__ import annotations

import operator
from typing import Any, Annotated
from typing_extensions import TypedDict

from control_room.core.types import ToolCall, ToolResult


class LoopState(TypedDict, total=False):
    # Conversation replayed to the model (OpenAI message dicts)
    messages: Annotated[list[dict[str, Any]], operator.add]

    # Model turn outputs
    iteration: int
    finish_reason: str | None
    pending_tool_calls: list[ToolCall]

    # Accumulated tool artifacts
    tool_results: Annotated[list[ToolResult], operator.add]
    errors: Annotated[list[str], operator.add]
