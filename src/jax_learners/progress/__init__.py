"""Sinks receiving reported training parameter values."""

from jax_learners.progress.writers import (
    LoggingProgressWriter,
    MemoryProgressWriter,
    ProgressWriter,
)

__all__ = [
    "ProgressWriter",
    "LoggingProgressWriter",
    "MemoryProgressWriter",
]
