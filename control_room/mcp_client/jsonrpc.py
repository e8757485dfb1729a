"""JSON-RPC 2.0 envelopes for the connectivity check.

Responses are a tagged union of `JsonRpcResult` and `JsonRpcError`; everything
else read off a transport (notifications, server-initiated requests, noise) is
not a response and parses to None.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Union

JSONRPC_VERSION = "2.0"

RequestId = Union[int, str]


@dataclass(frozen=True, slots=True)
class JsonRpcRequest:
    id: RequestId
    method: str
    params: dict[str, Any] | None = None

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"jsonrpc": JSONRPC_VERSION, "id": self.id, "method": self.method}
        if self.params is not None:
            out["params"] = self.params
        return out

    def to_line(self) -> bytes:
        return (json.dumps(self.to_dict(), ensure_ascii=False) + "\n").encode("utf-8")


@dataclass(frozen=True, slots=True)
class JsonRpcResult:
    id: RequestId
    result: Any


@dataclass(frozen=True, slots=True)
class JsonRpcError:
    id: RequestId | None
    message: str
    code: int | None = None
    data: Any = None


JsonRpcResponse = Union[JsonRpcResult, JsonRpcError]


def parse_response(obj: Any) -> JsonRpcResponse | None:
    """Classify a decoded JSON value as a response envelope.

    Returns None for anything that is not a response to one of our requests.
    An explicit `"error": null` next to a result is a result.
    """

    if not isinstance(obj, dict) or "method" in obj:
        return None

    err = obj.get("error")
    if err is not None:
        if isinstance(err, dict):
            message = err.get("message")
            code = err.get("code")
            return JsonRpcError(
                id=obj.get("id"),
                message=str(message) if message else "Unknown JSON-RPC error",
                code=code if isinstance(code, int) else None,
                data=err.get("data"),
            )
        return JsonRpcError(id=obj.get("id"), message=str(err) if err else "Unknown JSON-RPC error")

    if "result" in obj and "id" in obj:
        return JsonRpcResult(id=obj["id"], result=obj.get("result"))

    return None


def initialize_request(
    request_id: RequestId,
    *,
    protocol_version: str,
    client_name: str,
    client_version: str,
) -> JsonRpcRequest:
    return JsonRpcRequest(
        id=request_id,
        method="initialize",
        params={
            "protocolVersion": protocol_version,
            "capabilities": {},
            "clientInfo": {"name": client_name, "version": client_version},
        },
    )
