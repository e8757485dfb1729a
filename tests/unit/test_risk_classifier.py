from __future__ import annotations

import pytest

from control_room.tools.risk import is_high_risk_tool


@pytest.mark.parametrize(
    ("name", "description"),
    [
        ("delete_file", ""),
        ("Bash", "run a command"),
        ("query", "Run SQL against the warehouse"),
        ("fetch_url", ""),
        ("notes", "Executes arbitrary SHELL snippets"),
    ],
)
def test_high_risk_keywords(name: str, description: str) -> None:
    assert is_high_risk_tool(name, description) is True


def test_list_files_is_not_high_risk() -> None:
    assert is_high_risk_tool("list_files", "list files") is False


def test_missing_description_is_allowed() -> None:
    assert is_high_risk_tool("get_time", None) is False
