"""Run registry: run id -> cancellation handle.

The registry is owned by the service instance. Entries are only ever fully
added (run start) or fully removed (run end); looking up a removed id is "no
such run", never an error.
"""

from __future__ import annotations

import asyncio
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Iterator

from control_room.core.errors import LoopAbortedError
from control_room.observability.logging import get_logger


class CancellationToken:
    """Cooperative cancellation flag checked at loop and transport boundaries."""

    def __init__(self) -> None:
        self._event = asyncio.Event()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> None:
        self._event.set()

    async def wait(self) -> None:
        await self._event.wait()

    def raise_if_cancelled(self, *, partial_text: str = "") -> None:
        if self._event.is_set():
            raise LoopAbortedError(partial_text=partial_text)


@dataclass(slots=True)
class RunHandle:
    run_id: str
    token: CancellationToken = field(default_factory=CancellationToken)


class RunRegistry:
    def __init__(self) -> None:
        self._runs: dict[str, RunHandle] = {}
        self._log = get_logger("control_room.runs")

    def register(self, run_id: str) -> RunHandle:
        if not run_id:
            raise ValueError("run_id must be a non-empty string")
        if run_id in self._runs:
            raise ValueError(f"run already active: {run_id}")
        handle = RunHandle(run_id=run_id)
        self._runs[run_id] = handle
        return handle

    def unregister(self, run_id: str) -> None:
        self._runs.pop(run_id, None)

    def get(self, run_id: str) -> RunHandle | None:
        return self._runs.get(run_id)

    def cancel(self, run_id: str) -> bool:
        """Signal cancellation; False when no such run is active."""

        handle = self._runs.get(run_id)
        if handle is None:
            return False
        self._log.info("run_cancel_requested", run=run_id)
        handle.token.cancel()
        return True

    def active(self) -> list[str]:
        return list(self._runs)

    @contextmanager
    def track(self, run_id: str) -> Iterator[RunHandle]:
        handle = self.register(run_id)
        try:
            yield handle
        finally:
            self.unregister(run_id)
