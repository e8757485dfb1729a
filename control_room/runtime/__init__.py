from __future__ import annotations

from .runs import CancellationToken, RunHandle, RunRegistry

__all__ = ["CancellationToken", "RunHandle", "RunRegistry"]
