"""Model backends for the tool-call loop.

The backend is a strategy picked once from configuration:
- `openai`: OpenAI-compatible streaming chat completions with tool calls.
- `mock`: offline fallback that streams a canned reply and never calls tools.

Both stream assistant text through `on_text` as it arrives and return the
complete turn (text, tool calls, finish reason) at the end.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Protocol

import openai
from openai import AsyncOpenAI

from control_room.core.config import ModelConfig
from control_room.core.errors import ConfigError, ModelEndpointError
from control_room.core.types import ToolCall
from control_room.observability.logging import get_logger

from .tool_call_accumulator import ToolCallAccumulator

TextCallback = Callable[[str], Awaitable[None]]


@dataclass(frozen=True, slots=True)
class ModelTurn:
    text: str
    tool_calls: list[ToolCall] = field(default_factory=list)
    finish_reason: str | None = None


class ModelBackend(Protocol):
    name: str

    async def stream_turn(
        self,
        messages: list[dict[str, Any]],
        *,
        tools: list[dict[str, Any]] | None,
        on_text: TextCallback,
    ) -> ModelTurn:
        """Run one model turn.

        Implementations raise ModelEndpointError for endpoint-level failures.
        """
        ...


def _normalize_tool_call_delta(tc: Any) -> dict[str, Any]:
    if isinstance(tc, dict):
        fn = tc.get("function") or {}
        return {
            "index": tc.get("index"),
            "id": tc.get("id"),
            "function": {"name": fn.get("name"), "arguments": fn.get("arguments")},
        }

    fn = getattr(tc, "function", None)
    return {
        "index": getattr(tc, "index", None),
        "id": getattr(tc, "id", None),
        "function": {
            "name": getattr(fn, "name", None) if fn is not None else None,
            "arguments": getattr(fn, "arguments", None) if fn is not None else None,
        },
    }


class OpenAIChatBackend:
    """OpenAI-compatible adapter (stream=True, tool_choice=auto)."""

    name = "openai"

    def __init__(self, cfg: ModelConfig, *, client: AsyncOpenAI | None = None) -> None:
        self._cfg = cfg
        self._client = client or AsyncOpenAI(
            api_key=cfg.api_key,
            base_url=cfg.base_url,
            timeout=cfg.timeout_s,
            max_retries=cfg.max_retries,
        )
        self._log = get_logger("control_room.llm")

    async def stream_turn(
        self,
        messages: list[dict[str, Any]],
        *,
        tools: list[dict[str, Any]] | None,
        on_text: TextCallback,
    ) -> ModelTurn:
        kwargs: dict[str, Any] = {"model": self._cfg.model, "messages": messages, "stream": True}
        if tools:
            kwargs["tools"] = tools
            kwargs["tool_choice"] = "auto"

        acc = ToolCallAccumulator()
        text_parts: list[str] = []
        finish_reason: str | None = None

        try:
            stream = await self._client.chat.completions.create(**kwargs)
            async for ev in stream:
                choices = getattr(ev, "choices", None) or []
                if not choices:
                    continue

                choice = choices[0]
                if getattr(choice, "finish_reason", None):
                    finish_reason = choice.finish_reason

                delta = getattr(choice, "delta", None)
                if delta is None:
                    continue

                content = getattr(delta, "content", None)
                if isinstance(content, str) and content:
                    text_parts.append(content)
                    await on_text(content)

                delta_tool_calls = getattr(delta, "tool_calls", None)
                if delta_tool_calls:
                    acc.add_delta([_normalize_tool_call_delta(tc) for tc in delta_tool_calls])
        except openai.OpenAIError as e:
            raise ModelEndpointError(f"Model endpoint failed: {e}") from e

        tool_calls = acc.finalize()
        self._log.info(
            "model_turn_done",
            backend=self.name,
            text_len=sum(len(p) for p in text_parts),
            tool_calls=len(tool_calls),
            finish_reason=finish_reason,
        )
        return ModelTurn(text="".join(text_parts), tool_calls=tool_calls, finish_reason=finish_reason)


class MockModelBackend:
    """Offline fallback: echoes the prompt back word by word, never calls tools."""

    name = "mock"

    def __init__(self, *, model: str = "mock", word_delay_s: float = 0.03) -> None:
        self._model = model
        self._word_delay_s = word_delay_s

    def _reply(self, messages: list[dict[str, Any]], tools: list[dict[str, Any]] | None) -> str:
        prompt = ""
        for msg in reversed(messages):
            if msg.get("role") == "user" and isinstance(msg.get("content"), str):
                prompt = msg["content"]
                break

        tool_names = [t.get("function", {}).get("name", "") for t in tools or []]
        history = sum(1 for m in messages if m.get("role") in ("user", "assistant"))
        return (
            f'I received your message: "{prompt}"\n\n'
            "This is a mock response because no model backend is configured.\n\n"
            "To enable full functionality, set model.backend to 'openai' and provide OPENAI_API_KEY.\n\n"
            f"Model: {self._model}\n"
            f"History messages: {history}\n"
            f"Enabled MCP tools: {', '.join(tool_names) if tool_names else 'none'}"
        )

    async def stream_turn(
        self,
        messages: list[dict[str, Any]],
        *,
        tools: list[dict[str, Any]] | None,
        on_text: TextCallback,
    ) -> ModelTurn:
        reply = self._reply(messages, tools)
        for word in reply.split(" "):
            await on_text(word + " ")
            if self._word_delay_s > 0:
                await asyncio.sleep(self._word_delay_s)
        return ModelTurn(text=reply, tool_calls=[], finish_reason="stop")


def build_model_backend(cfg: ModelConfig) -> ModelBackend:
    """Select the model backend once, from configuration."""

    if cfg.backend == "openai":
        if not cfg.api_key:
            raise ConfigError("must be a non-empty string (or set OPENAI_API_KEY)", path="model.api_key")
        return OpenAIChatBackend(cfg)
    if cfg.backend == "mock":
        return MockModelBackend(model=cfg.model)
    raise ConfigError(f"unsupported backend: {cfg.backend!r}", path="model.backend")
