"""Progress events reported by long-running engines."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class ProgressEvent:
    """One step of a multi-item operation (``index`` is 1-based)."""

    index: int
    total: int
    operation: str
    item: str


ProgressCallback = Callable[[ProgressEvent], None]
