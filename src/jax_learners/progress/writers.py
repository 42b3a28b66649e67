"""Progress sinks for training parameter values.

Learners report hyperparameters (learning rate, momentum) as
``(label, value)`` pairs. Sinks only receive values; nothing is ever read
back, so reporting cannot change the numerics of an update.
"""

from __future__ import annotations

import logging
from typing import Protocol, runtime_checkable

logger = logging.getLogger(__name__)


@runtime_checkable
class ProgressWriter(Protocol):
    """Anything that accepts ``(label, scalar)`` progress records."""

    def write(self, label: str, value: float) -> None: ...


class LoggingProgressWriter:
    """Forwards progress records to a standard-library logger."""

    def __init__(self, name: str | None = None, level: int = logging.INFO):
        self._logger = logging.getLogger(name) if name else logger
        self.level = level

    def write(self, label: str, value: float) -> None:
        self._logger.log(self.level, f"{label}: {value:g}")


class MemoryProgressWriter:
    """Keeps every record in a list; handy for inspection and tests."""

    def __init__(self) -> None:
        self.records: list[tuple[str, float]] = []

    def write(self, label: str, value: float) -> None:
        self.records.append((label, value))
