from __future__ import annotations

import argparse
import asyncio
import json
import os
import sys
from typing import Any

from control_room.app import ControlRoom
from control_room.core.types import StreamMessage
from control_room.llm.client import MockModelBackend
from control_room.observability.ids import new_run_id
from control_room.observability.logging import configure_logging, get_logger

from .config import AppConfig, load_config
from .errors import ConfigError


def _build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="control-room", description="Agent control room: MCP servers and tool-call loop")
    p.add_argument("--config", default="configs/app.yaml", help="YAML config path")
    p.add_argument("--log-level", default=None, help="log level (overrides logging.level)")

    sub = p.add_subparsers(dest="command", required=True)

    sub.add_parser("servers", help="list configured MCP servers")

    test = sub.add_parser("test", help="connectivity test for one server")
    test.add_argument("server")

    discover = sub.add_parser("discover", help="list the tools of one server")
    discover.add_argument("server")

    call = sub.add_parser("call", help="call one tool")
    call.add_argument("server")
    call.add_argument("tool")
    call.add_argument("--args", default="{}", help="tool arguments as a JSON object")

    chat = sub.add_parser("chat", help="run the tool-call loop for one prompt")
    chat.add_argument("prompt")
    chat.add_argument("--fake", action="store_true", help="use the offline mock model backend")

    return p


def _print_json(obj: Any) -> None:
    print(json.dumps(obj, ensure_ascii=False, indent=2))


def _require_server(cfg: AppConfig, name: str):
    server = cfg.mcp.servers.get(name)
    if server is None:
        raise ConfigError(f'MCP server "{name}" not found', path="mcp.servers")
    return server


async def _run(args: argparse.Namespace, cfg: AppConfig) -> int:
    log = get_logger("control_room.cli")
    backend = MockModelBackend(model=cfg.model.model, word_delay_s=0.0) if getattr(args, "fake", False) else None
    room = ControlRoom.from_config(cfg, backend=backend)

    if args.command == "servers":
        _print_json(
            [
                {
                    "name": s.name,
                    "transport": s.transport,
                    "enabled": s.enabled,
                    "target": s.url if s.is_remote else " ".join([s.command or "", *s.args]).strip(),
                }
                for s in cfg.mcp.servers.values()
            ]
        )
        return 0

    if args.command == "test":
        result = await room.test_connection(_require_server(cfg, args.server))
        _print_json({"success": result.success, "error": result.error})
        return 0 if result.success else 1

    if args.command == "discover":
        tools = await room.discover_tools(_require_server(cfg, args.server))
        _print_json([t.to_dict() for t in tools])
        return 0

    if args.command == "call":
        try:
            arguments = json.loads(args.args)
        except json.JSONDecodeError as e:
            raise ConfigError(f"invalid JSON: {e.msg}", path="--args") from e
        if not isinstance(arguments, dict):
            raise ConfigError("must be a JSON object", path="--args")
        outcome = await room.call_tool(args.server, args.tool, arguments)
        _print_json({"success": outcome.success, "result": outcome.result, "error": outcome.error})
        return 0 if outcome.success else 1

    if args.command == "chat":
        await room.discover_workspace()

        def sink(msg: StreamMessage) -> None:
            if msg.type == "chunk":
                sys.stdout.write(msg.content or "")
                sys.stdout.flush()
            elif msg.type in ("tool_call", "tool_result"):
                log.info("chat_event", event=msg.to_dict())

        outcome = await room.run_chat(new_run_id(), [{"role": "user", "content": args.prompt}], sink)
        sys.stdout.write("\n")
        _print_json({"run_id": outcome.run_id, "status": outcome.status, "error": outcome.error})
        return 0 if outcome.status == "completed" else 1

    raise AssertionError(f"unhandled command: {args.command}")


def main(argv: list[str] | None = None) -> int:
    args = _build_parser().parse_args(argv)

    # Offline stub: allow running without a real key.
    if getattr(args, "fake", False) and not os.getenv("OPENAI_API_KEY"):
        os.environ["OPENAI_API_KEY"] = "k_fake"

    try:
        cfg = load_config(args.config)
    except ConfigError as e:
        configure_logging(level=args.log_level or "INFO")
        get_logger("control_room.cli").error("config_error", error=str(e))
        return 2

    configure_logging(level=args.log_level or cfg.log_level)

    try:
        return asyncio.run(_run(args, cfg))
    except ConfigError as e:
        get_logger("control_room.cli").error("config_error", error=str(e))
        return 2


if __name__ == "__main__":
    raise SystemExit(main())
