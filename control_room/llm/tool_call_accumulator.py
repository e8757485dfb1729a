"""Streaming tool-call argument accumulator.

OpenAI-compatible streaming delivers a tool call's id and name in its first
fragment and the JSON arguments split across later fragments. Fragments are
correlated by `index`; the id is not repeated.

Parsing is best-effort: an invalid tool call becomes a ToolCall carrying
`error`, it never crashes the loop.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any

from control_room.core.types import ToolCall
from control_room.observability.ids import new_tool_call_id
from control_room.observability.logging import get_logger


@dataclass(slots=True)
class _AccumulatedToolCall:
    index: int
    id: str = ""
    name: str = ""
    arguments: str = ""


class ToolCallAccumulator:
    """Accumulate streamed tool-call fragments into ToolCall objects, in index order."""

    def __init__(self) -> None:
        self._calls: dict[int, _AccumulatedToolCall] = {}
        self._log = get_logger("control_room.llm")

    def add_delta(self, delta_tool_calls: list[dict[str, Any]]) -> None:
        """Consume the normalized `tool_calls` list of one stream delta.

        Expected keys (best-effort): index, id, function.name, function.arguments.
        """

        for position, tc in enumerate(delta_tool_calls):
            index = tc.get("index")
            if not isinstance(index, int):
                index = position

            acc = self._calls.setdefault(index, _AccumulatedToolCall(index=index))

            tc_id = tc.get("id")
            if isinstance(tc_id, str) and tc_id and not acc.id:
                acc.id = tc_id

            fn = tc.get("function") or {}
            name = fn.get("name")
            if isinstance(name, str) and name:
                acc.name = name

            args = fn.get("arguments")
            if isinstance(args, str) and args:
                acc.arguments += args

    def __len__(self) -> int:
        return len(self._calls)

    def finalize(self) -> list[ToolCall]:
        out: list[ToolCall] = []

        for index in sorted(self._calls):
            acc = self._calls[index]
            call_id = acc.id or new_tool_call_id()
            raw = acc.arguments or "{}"

            error: str | None = None
            parsed: Any = {}
            if not acc.name:
                error = "missing tool name"
            else:
                try:
                    parsed = json.loads(raw)
                except json.JSONDecodeError as e:
                    error = f"invalid tool arguments: {e.msg} (pos={e.pos})"
                else:
                    if not isinstance(parsed, dict):
                        error = "tool arguments must be a JSON object"

            if error is not None:
                self._log.warning(
                    "tool_call_invalid",
                    tool_call_id=call_id,
                    tool_name=acc.name,
                    arguments_len=len(acc.arguments),
                    error=error,
                )
                parsed = {}

            out.append(
                ToolCall(
                    id=call_id,
                    name=acc.name,
                    arguments_json=raw,
                    arguments=parsed,
                    error=error,
                )
            )

        return out
