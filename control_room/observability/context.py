from __future__ import annotations

from contextvars import ContextVar


_run_id: ContextVar[str | None] = ContextVar("run_id", default=None)
_workspace_id: ContextVar[str | None] = ContextVar("workspace_id", default=None)
_server: ContextVar[str | None] = ContextVar("server", default=None)
_errors: ContextVar[list[str] | None] = ContextVar("errors", default=None)


def bind_context(*, run_id: str, workspace_id: str | None = None) -> None:
    _run_id.set(run_id)
    _workspace_id.set(workspace_id)
    _errors.set([])


def set_server(server: str | None) -> None:
    _server.set(server)


def add_error(message: str) -> None:
    errs = list(_errors.get() or [])
    errs.append(message)
    _errors.set(errs)


def snapshot() -> dict[str, object]:
    """Return a snapshot of current observability context for logging."""

    out: dict[str, object] = {}
    if (v := _run_id.get()) is not None:
        out["run_id"] = v
    if (v := _workspace_id.get()) is not None:
        out["workspace_id"] = v
    if (v := _server.get()) is not None:
        out["server"] = v
    out["errors"] = list(_errors.get() or [])
    return out
