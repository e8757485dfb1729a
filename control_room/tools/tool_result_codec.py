from __future__ import annotations

import json
from typing import Any

from control_room.mcp_client import ToolCallOutcome, content_text

_TEXT_LIMIT = 2000


def _is_json_primitive(obj: Any) -> bool:
    return obj is None or isinstance(obj, (str, int, float, bool))


def _is_json_friendly(obj: Any) -> bool:
    if _is_json_primitive(obj):
        return True
    if isinstance(obj, list):
        return all(_is_json_friendly(v) for v in obj)
    if isinstance(obj, dict):
        return all(isinstance(k, str) and _is_json_friendly(v) for k, v in obj.items())
    return False


def make_payload(*, text: str, data: Any, raw: Any, meta: dict[str, Any]) -> dict[str, Any]:
    """Create the canonical ToolResult.content payload.

    Contract:
    - Always returns a JSON-friendly dict with keys: text/data/raw/meta.
    - `text` should be human/model-readable.
    - `data` should be the main structured output (JSON-friendly).
    - `raw` should preserve the original output as much as possible.
    - `meta` contains diagnostic and routing info.
    """

    payload: dict[str, Any] = {
        "text": str(text or ""),
        "data": data if _is_json_friendly(data) else {"value": repr(data)},
        "raw": raw if _is_json_friendly(raw) else repr(raw),
        "meta": meta if _is_json_friendly(meta) else {"value": repr(meta)},
    }
    return payload


def _short_json(obj: Any) -> str:
    try:
        text = json.dumps(obj, ensure_ascii=False)
    except (TypeError, ValueError):
        text = repr(obj)
    if len(text) > _TEXT_LIMIT:
        text = text[:_TEXT_LIMIT] + "..."
    return text


def payload_from_output(output: Any, *, meta: dict[str, Any]) -> dict[str, Any]:
    if isinstance(output, str):
        return make_payload(text=output, data={"text": output}, raw=output, meta=meta)

    if _is_json_friendly(output):
        # MCP call results: prefer the joined text blocks, structured content as data.
        text = content_text(output)
        data: Any = output
        if isinstance(output, dict) and isinstance(output.get("structuredContent"), dict):
            data = output["structuredContent"]
        return make_payload(text=text or _short_json(output), data=data, raw=output, meta=meta)

    # Unknown/complex object
    return make_payload(text=repr(output), data={"value": repr(output)}, raw=output, meta=meta)


def normalize_error(*, error_type: str, message: str, details: dict[str, Any] | None = None) -> dict[str, Any]:
    err: dict[str, Any] = {
        "type": str(error_type),
        "message": str(message),
        "details": details or {},
    }

    # Flat detail_* fields for log-friendly consumers.
    for k, v in (details or {}).items():
        err[f"detail_{k}"] = str(v)

    return err


def payload_from_outcome(outcome: ToolCallOutcome, *, meta: dict[str, Any]) -> dict[str, Any]:
    """Map a `tools/call` outcome to the payload fed back to the model.

    Failures keep the error text in `text` so the model can react to it.
    """

    if outcome.success:
        return payload_from_output(outcome.result, meta=meta)

    message = outcome.error or "Tool call failed"
    return make_payload(
        text=f"Error: {message}",
        data={"error": message},
        raw=outcome.result,
        meta=meta,
    )


def dumps_payload(payload: dict[str, Any]) -> str:
    """Serialize payload for OpenAI tool message content.

    Content should always be a JSON string, never a Python repr.
    """

    return json.dumps(payload, ensure_ascii=False, separators=(",", ":"))
