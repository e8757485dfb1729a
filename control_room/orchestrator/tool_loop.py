from __future__ import annotations

import inspect
import time
from typing import Any, Awaitable, Callable, Sequence, cast

from langgraph.graph import END, START, StateGraph

from control_room.core.types import StreamMessage, ToolCall, ToolResult
from control_room.llm.client import ModelBackend
from control_room.mcp_client import ToolCallOutcome
from control_room.observability import add_error, get_logger
from control_room.runtime.runs import CancellationToken
from control_room.tools.openai_tools import get_openai_tool_specs
from control_room.tools.registry import ToolDescriptor
from control_room.tools.tool_messages import assistant_message, tool_message_from_result
from control_room.tools.tool_result_codec import normalize_error, payload_from_outcome

from .graph_state import LoopState

Sink = Callable[[StreamMessage], Any]
ToolExecutor = Callable[[str, dict[str, Any]], Awaitable[ToolCallOutcome]]


async def emit(sink: Sink | None, message: StreamMessage) -> None:
    """Deliver one message to a sync or async sink."""

    if sink is None:
        return
    out = sink(message)
    if inspect.isawaitable(out):
        await out


class ToolLoop:
    """LangGraph-based MODEL -> TOOLS -> MODEL loop with a hard iteration cap.

    - Text deltas are streamed to the sink as `chunk` messages as they arrive.
    - Requested tools run one at a time, in the order the model asked for them.
    - A failing tool becomes an error tool result; the model sees it next turn.
    - Cancellation is checked before every model call and every tool call.
    - ModelEndpointError propagates and ends the run.
    """

    def __init__(
        self,
        *,
        backend: ModelBackend,
        executor: ToolExecutor,
        max_iterations: int = 10,
        system_prompt: str | None = None,
    ) -> None:
        if max_iterations < 1:
            raise ValueError("max_iterations must be >= 1")
        self._backend = backend
        self._executor = executor
        self._max_iterations = max_iterations
        self._system_prompt = system_prompt
        self._log = get_logger("control_room.loop")

    async def run(
        self,
        conversation: Sequence[dict[str, Any]],
        enabled_tools: Sequence[ToolDescriptor],
        sink: Sink | None,
        token: CancellationToken | None = None,
    ) -> str:
        """Drive the loop to completion and return the full streamed text.

        Raises LoopAbortedError (carrying the text streamed so far) when the
        token is cancelled.
        """

        text_parts: list[str] = []
        graph = self._build_graph(
            tools=get_openai_tool_specs(enabled_tools) or None,
            known_tools={d.full_name for d in enabled_tools},
            sink=sink,
            token=token,
            text_parts=text_parts,
        )

        messages: list[dict[str, Any]] = []
        if self._system_prompt:
            messages.append({"role": "system", "content": self._system_prompt})
        messages.extend(dict(m) for m in conversation)

        t0 = time.perf_counter()
        out_state = cast(
            LoopState,
            await graph.ainvoke(
                {
                    "messages": messages,
                    "iteration": 0,
                    "finish_reason": None,
                    "pending_tool_calls": [],
                    "tool_results": [],
                    "errors": [],
                },
                config={"recursion_limit": 2 * self._max_iterations + 4},
            ),
        )

        self._log.info(
            "tool_loop_done",
            latency_ms=round((time.perf_counter() - t0) * 1000, 2),
            iterations=out_state.get("iteration", 0),
            tool_results=len(out_state.get("tool_results", [])),
            text_len=sum(len(p) for p in text_parts),
        )
        return "".join(text_parts)

    def _build_graph(
        self,
        *,
        tools: list[dict[str, Any]] | None,
        known_tools: set[str],
        sink: Sink | None,
        token: CancellationToken | None,
        text_parts: list[str],
    ):
        max_iterations = self._max_iterations

        def check_cancelled() -> None:
            if token is not None:
                token.raise_if_cancelled(partial_text="".join(text_parts))

        async def on_text(delta: str) -> None:
            text_parts.append(delta)
            await emit(sink, StreamMessage(type="chunk", content=delta))

        async def model_node(state: LoopState) -> dict[str, Any]:
            check_cancelled()
            iteration = int(state.get("iteration", 0) or 0) + 1

            turn = await self._backend.stream_turn(list(state.get("messages", [])), tools=tools, on_text=on_text)
            self._log.info(
                "model_turn",
                iteration=iteration,
                tool_calls=len(turn.tool_calls),
                finish_reason=turn.finish_reason,
            )
            return {
                "messages": [assistant_message(turn.text, turn.tool_calls)],
                "iteration": iteration,
                "finish_reason": turn.finish_reason,
                "pending_tool_calls": list(turn.tool_calls),
            }

        def route(state: LoopState) -> str:
            pending = list(state.get("pending_tool_calls", []))
            if not pending or state.get("finish_reason") == "stop":
                return END
            if int(state.get("iteration", 0) or 0) >= max_iterations:
                self._log.warning("tool_loop_iteration_cap", max_iterations=max_iterations, dropped=len(pending))
                add_error("tool_loop_iteration_cap")
                return END
            return "tools"

        async def tools_node(state: LoopState) -> dict[str, Any]:
            results: list[ToolResult] = []
            tool_messages: list[dict[str, Any]] = []
            errors: list[str] = []

            for tc in list(state.get("pending_tool_calls", [])):
                check_cancelled()
                await emit(sink, StreamMessage(type="tool_call", tool_name=tc.name, tool_input=dict(tc.arguments)))

                r = await self._execute(tc, known_tools)
                results.append(r)
                tool_messages.append(tool_message_from_result(r))
                if not r.ok and r.error is not None:
                    errors.append(f"{tc.name}: {r.error.get('message', '')}")

                await emit(
                    sink,
                    StreamMessage(
                        type="tool_result",
                        tool_name=tc.name,
                        tool_result=r.content,
                        error=r.error.get("message") if r.error else None,
                    ),
                )

            return {
                "messages": tool_messages,
                "tool_results": results,
                "errors": errors,
                "pending_tool_calls": [],
            }

        builder = StateGraph(LoopState)
        builder.add_node("model", model_node)
        builder.add_node("tools", tools_node)

        builder.add_edge(START, "model")
        builder.add_conditional_edges("model", route, ["tools", END])
        builder.add_edge("tools", "model")

        return builder.compile()

    async def _execute(self, tc: ToolCall, known_tools: set[str]) -> ToolResult:
        meta = {"tool_name": tc.name, "tool_call_id": tc.id}

        if tc.error is not None:
            outcome = ToolCallOutcome(success=False, error=tc.error)
        elif tc.name not in known_tools:
            outcome = ToolCallOutcome(success=False, error=f"Tool {tc.name!r} is not enabled for this run")
        else:
            self._log.info("pre_tool_use", tool_name=tc.name, tool_call_id=tc.id)
            t0 = time.perf_counter()
            try:
                outcome = await self._executor(tc.name, dict(tc.arguments))
            except Exception as e:  # noqa: BLE001
                # Tool failures are fed back to the model, never fatal to the run.
                self._log.exception("tool_executor_failed", tool_name=tc.name)
                outcome = ToolCallOutcome(success=False, error=str(e) or type(e).__name__)
            self._log.info(
                "post_tool_use",
                tool_name=tc.name,
                tool_call_id=tc.id,
                ok=outcome.success,
                latency_ms=round((time.perf_counter() - t0) * 1000, 2),
            )

        payload = payload_from_outcome(outcome, meta=meta)
        if outcome.success:
            return ToolResult(tool_call_id=tc.id, name=tc.name, ok=True, content=payload)
        return ToolResult(
            tool_call_id=tc.id,
            name=tc.name,
            ok=False,
            content=payload,
            error=normalize_error(error_type="tool_error", message=outcome.error or "Tool call failed"),
        )
