from __future__ import annotations

from control_room.mcp_client import McpServerConfig, StdioTransport
from control_room.mcp_client import transports

REPLY = b'{"jsonrpc":"2.0","id":1,"result":{}}'


def _transport() -> StdioTransport:
    return StdioTransport(McpServerConfig(name="t", transport="stdio", command="unused"))


def test_reply_split_across_chunks_is_seen() -> None:
    t = _transport()

    t.feed(REPLY[:10])
    t.feed(REPLY[10:25])
    assert not t.message_seen.is_set()

    t.feed(REPLY[25:] + b"\n")
    assert t.message_seen.is_set()


def test_noise_lines_are_dropped() -> None:
    t = _transport()

    t.feed(b"starting up\n[debug] {not json\n")
    assert not t.message_seen.is_set()

    t.feed(b'{"hello": "world"}\n')
    assert not t.message_seen.is_set()

    t.feed(REPLY + b"\n")
    assert t.message_seen.is_set()


def test_oversized_line_is_dropped_and_framing_recovers(monkeypatch) -> None:
    monkeypatch.setattr(transports, "_MAX_LINE_BYTES", 64)
    t = _transport()

    t.feed(b'{"jsonrpc":"2.0","id":1,"result":{"blob":"')
    t.feed(b"x" * 200)
    t.feed(b'"}}\n')
    assert not t.message_seen.is_set()
    assert len(t._line) == 0

    t.feed(REPLY + b"\n")
    assert t.message_seen.is_set()
