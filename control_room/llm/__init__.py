from __future__ import annotations

from .client import MockModelBackend, ModelBackend, ModelTurn, OpenAIChatBackend, build_model_backend
from .tool_call_accumulator import ToolCallAccumulator

__all__ = [
    "MockModelBackend",
    "ModelBackend",
    "ModelTurn",
    "OpenAIChatBackend",
    "ToolCallAccumulator",
    "build_model_backend",
]
