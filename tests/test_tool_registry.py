from __future__ import annotations

from control_room.tools.openai_tools import get_openai_tool_specs
from control_room.tools.registry import McpToolRegistry, resolve_target


def _raw(*names: str) -> list[dict]:
    return [{"name": n, "description": f"{n} tool", "inputSchema": {"type": "object"}} for n in names]


def test_discovery_replaces_previous_tool_set() -> None:
    reg = McpToolRegistry()
    reg.replace("ws", "srv", _raw("A", "B"))
    reg.replace("ws", "srv", _raw("B", "C"))

    assert {d.tool_name for d in reg.tools("ws")} == {"B", "C"}
    assert reg.resolve("ws", "mcp__srv__A") is None


def test_replace_is_scoped_to_server_and_workspace() -> None:
    reg = McpToolRegistry()
    reg.replace("ws", "one", _raw("x"))
    reg.replace("ws", "two", _raw("y"))
    reg.replace("other", "one", _raw("z"))

    reg.replace("ws", "one", [])

    assert [d.full_name for d in reg.tools("ws")] == ["mcp__two__y"]
    assert [d.full_name for d in reg.tools("other")] == ["mcp__one__z"]
    assert [d.full_name for d in reg.tools("ws", servers=["one"])] == []


def test_descriptor_fields() -> None:
    reg = McpToolRegistry()
    (d,) = reg.replace("ws", "fs", [{"name": "delete_file"}])

    assert d.full_name == "mcp__fs__delete_file"
    assert d.description == ""
    assert d.input_schema == {"type": "object", "properties": {}}
    assert d.is_high_risk is True


def test_resolve_target_prefers_registry_for_ambiguous_names() -> None:
    reg = McpToolRegistry()
    reg.replace("ws", "my__server", _raw("tool"))

    assert resolve_target(reg, "ws", "mcp__my__server__tool") == ("my__server", "tool")
    # Not registered: fall back to parsing.
    assert resolve_target(reg, "ws", "mcp__plain__tool") == ("plain", "tool")


def test_openai_specs_use_full_names() -> None:
    reg = McpToolRegistry()
    tools = reg.replace("ws", "srv", _raw("echo"))

    (spec,) = get_openai_tool_specs(tools)
    assert spec["type"] == "function"
    assert spec["function"]["name"] == "mcp__srv__echo"
    assert spec["function"]["parameters"] == {"type": "object"}


def test_replace_skips_tools_without_a_name() -> None:
    reg = McpToolRegistry()
    out = reg.replace("ws", "srv", [*_raw("ok_tool"), {"name": ""}, {"name": "   "}, {"description": "anonymous"}])

    assert [d.full_name for d in out] == ["mcp__srv__ok_tool"]
    assert [d.full_name for d in reg.tools("ws")] == ["mcp__srv__ok_tool"]
