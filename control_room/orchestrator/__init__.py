from __future__ import annotations

from .tool_loop import Sink, ToolExecutor, ToolLoop, emit

__all__ = ["Sink", "ToolExecutor", "ToolLoop", "emit"]
