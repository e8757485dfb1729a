from __future__ import annotations

from control_room.llm.tool_call_accumulator import ToolCallAccumulator


def test_accumulator_parses_fragmented_json_args() -> None:
    acc = ToolCallAccumulator()

    acc.add_delta([{"index": 0, "id": "call_1", "function": {"name": "mcp__s__echo", "arguments": "{\"text\": \"hi\""}}])
    # Later fragments only repeat the index.
    acc.add_delta([{"index": 0, "function": {"arguments": "}"}}])

    tool_calls = acc.finalize()

    assert len(tool_calls) == 1
    assert tool_calls[0].id == "call_1"
    assert tool_calls[0].name == "mcp__s__echo"
    assert tool_calls[0].arguments == {"text": "hi"}
    assert tool_calls[0].error is None


def test_accumulator_orders_by_index() -> None:
    acc = ToolCallAccumulator()
    acc.add_delta([{"index": 1, "id": "b", "function": {"name": "second", "arguments": "{}"}}])
    acc.add_delta([{"index": 0, "id": "a", "function": {"name": "first", "arguments": "{}"}}])

    assert [tc.name for tc in acc.finalize()] == ["first", "second"]


def test_accumulator_keeps_invalid_json_non_fatal() -> None:
    acc = ToolCallAccumulator()
    acc.add_delta([{"index": 0, "id": "call_1", "function": {"name": "echo", "arguments": "{\"text\":"}}])

    (tc,) = acc.finalize()

    assert tc.id == "call_1"
    assert tc.arguments == {}
    assert tc.arguments_json.startswith("{\"text\":")
    assert tc.error and "invalid tool arguments" in tc.error


def test_empty_arguments_mean_empty_object() -> None:
    acc = ToolCallAccumulator()
    acc.add_delta([{"index": 0, "id": "call_1", "function": {"name": "ping"}}])

    (tc,) = acc.finalize()
    assert tc.arguments == {}
    assert tc.error is None
