"""Piecewise-constant training parameter schedules.

A schedule maps an elapsed count (samples or sweeps) to a hyperparameter
value: learning rate, momentum, variance momentum or noise level. Lookups
return the value of the greatest key that is <= the current count, falling
back to the first value before the first key.

Every value is attached to a reference minibatch size. Rates are
normalized per sample by that size, momenta are converted to the actual
minibatch size by exponentiation, so the same schedule behaves the same
for any minibatch size.

Schedules are immutable. Re-anchoring a new schedule at the current point
of training (``ResetLearningRate``) is the pure ``shifted`` transformation.

References:
    - Exponential moving averages and time constants:
      https://en.wikipedia.org/wiki/Exponential_smoothing#Time_constant

"""

from __future__ import annotations

import bisect
import enum
import logging
import math
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

import numpy as np

from jax_learners.core.errors import InvalidArgumentError, LogicError

logger = logging.getLogger(__name__)

SCHEDULE_TYPE_VALUE = "TrainingParameterSchedule"
SCHEDULE_VERSION = 1

# 0 means "the value applies to whatever minibatch size is used".
IGNORED_MINIBATCH_SIZE = 0

# Variance momentum used by FSAdaGrad and Adam when none is given.
DEFAULT_VARIANCE_TIME_CONSTANT = 2 * 3600 * 100


class ScheduleUnit(str, enum.Enum):
    """Unit of the elapsed count a schedule is keyed by."""

    SAMPLE = "sample"
    SWEEP = "sweep"


@dataclass(frozen=True)
class TrainingParameterSchedule:
    """Immutable piecewise-constant curve ``count -> value``.

    Args:
        keys: Sorted start counts of each segment.
        values: Value of each segment, same length as ``keys``.
        epoch_size: Units spanned by one entry when built from a list.
        reference_minibatch_size: Minibatch size the values refer to.
        unit: Whether counts are samples or sweeps.

    Examples:
        >>> s = learning_rate_schedule([0.1, 0.01], epoch_size=100)
        >>> s.value_at(0), s.value_at(99), s.value_at(100), s.value_at(10_000)
        (0.1, 0.1, 0.01, 0.01)

    """

    keys: tuple[int, ...]
    values: tuple[float, ...]
    epoch_size: int = 1
    reference_minibatch_size: int = 1
    unit: ScheduleUnit = ScheduleUnit.SAMPLE

    def __post_init__(self) -> None:
        if len(self.keys) == 0:
            raise InvalidArgumentError("A training parameter schedule must contain at least one value.")
        if len(self.keys) != len(self.values):
            raise InvalidArgumentError(
                f"Schedule has {len(self.keys)} keys but {len(self.values)} values."
            )
        if any(k < 0 for k in self.keys) or list(self.keys) != sorted(set(self.keys)):
            raise InvalidArgumentError(f"Schedule keys must be unique, non-negative and sorted: {self.keys}")
        if self.epoch_size < 0 or self.reference_minibatch_size < 0:
            raise InvalidArgumentError("Schedule epoch size and reference minibatch size must be non-negative.")

    @property
    def is_sweep_based(self) -> bool:
        return self.unit is ScheduleUnit.SWEEP

    def value_at(self, count: int) -> float:
        """Value in effect after ``count`` elapsed units."""
        index = bisect.bisect_right(self.keys, count) - 1
        return self.values[max(index, 0)]

    def lookup(self, sample_count: int, sweep_count: int) -> tuple[float, int]:
        """Current value and its reference minibatch size.

        The schedule's own unit decides which counter is consulted.
        """
        count = sweep_count if self.is_sweep_based else sample_count
        return self.value_at(count), self.reference_minibatch_size

    def shifted(self, offset: int) -> TrainingParameterSchedule:
        """Same curve with every key moved ``offset`` units later."""
        if offset < 0:
            raise InvalidArgumentError(f"Cannot shift a schedule by a negative offset ({offset}).")
        return TrainingParameterSchedule(
            keys=tuple(k + offset for k in self.keys),
            values=self.values,
            epoch_size=self.epoch_size,
            reference_minibatch_size=self.reference_minibatch_size,
            unit=self.unit,
        )

    def serialize(self) -> dict[str, Any]:
        """Versioned record of the schedule."""
        return {
            "version": SCHEDULE_VERSION,
            "type": SCHEDULE_TYPE_VALUE,
            "unit": self.unit.value,
            "epoch_size": self.epoch_size,
            "reference_minibatch_size": self.reference_minibatch_size,
            "keys": np.asarray(self.keys, dtype=np.int64),
            "values": np.asarray(self.values, dtype=np.float64),
        }

    @classmethod
    def deserialize(cls, record: Mapping[str, Any]) -> TrainingParameterSchedule:
        """Rebuild a schedule from ``serialize`` output.

        Raises:
            LogicError: If the record is not a schedule record of a
                supported version.

        """
        required = ("type", "unit", "epoch_size", "reference_minibatch_size", "keys", "values")
        missing = [k for k in required if k not in record]
        if missing:
            raise LogicError(f"Schedule record is missing required keys: {missing}")
        if str(record["type"]) != SCHEDULE_TYPE_VALUE:
            raise LogicError(
                f"Record type '{record['type']}' does not match expected '{SCHEDULE_TYPE_VALUE}'."
            )
        version = int(record.get("version", SCHEDULE_VERSION))
        if version > SCHEDULE_VERSION:
            raise LogicError(
                f"Schedule record version {version} is newer than supported version {SCHEDULE_VERSION}."
            )
        return cls(
            keys=tuple(int(k) for k in np.asarray(record["keys"]).ravel()),
            values=tuple(float(v) for v in np.asarray(record["values"]).ravel()),
            epoch_size=int(record["epoch_size"]),
            reference_minibatch_size=int(record["reference_minibatch_size"]),
            unit=ScheduleUnit(str(record["unit"])),
        )


def _as_entries(values: Any, epoch_size: int) -> tuple[tuple[int, ...], tuple[float, ...]]:
    if isinstance(values, (int, float)):
        return (0,), (float(values),)

    values = list(values)
    if not values:
        raise InvalidArgumentError("A training parameter schedule must contain at least one value.")

    if all(isinstance(v, (tuple, list)) for v in values):
        # (count, value) pairs: each value lasts count * epoch_size units.
        # Only the last count may be 0.
        keys, vals = [], []
        start = 0
        last = len(values) - 1
        for index, (count, value) in enumerate(values):
            if count < 0 or (count == 0 and index != last):
                raise InvalidArgumentError(
                    f"Schedule entry count must be positive (zero is allowed only for the last entry), got {count}."
                )
            keys.append(start)
            vals.append(float(value))
            start += int(count) * epoch_size
        return tuple(keys), tuple(vals)

    if epoch_size <= 0 and len(values) > 1:
        raise InvalidArgumentError("A schedule with more than one value needs a positive epoch size.")
    return tuple(i * epoch_size for i in range(len(values))), tuple(float(v) for v in values)


def learning_rate_schedule(
    values: Any,
    epoch_size: int = 1,
    reference_minibatch_size: int = 1,
    unit: ScheduleUnit | str = ScheduleUnit.SAMPLE,
) -> TrainingParameterSchedule:
    """Build a schedule from a scalar, a list of values or ``(count, value)`` pairs.

    Args:
        values: Constant value, per-epoch values, or ``(count, value)`` pairs
            where each value lasts ``count * epoch_size`` units.
        epoch_size: Units (samples or sweeps) covered by one list entry.
        reference_minibatch_size: Minibatch size the values refer to;
            ``IGNORED_MINIBATCH_SIZE`` applies them to any minibatch as-is.
        unit: ``"sample"`` or ``"sweep"``.

    Returns:
        The schedule.

    Examples:
        >>> s = learning_rate_schedule([(2, 0.5), (1, 0.25)], epoch_size=10)
        >>> s.keys, s.values
        ((0, 20), (0.5, 0.25))

    """
    if isinstance(values, TrainingParameterSchedule):
        return values
    keys, vals = _as_entries(values, epoch_size)
    return TrainingParameterSchedule(
        keys=keys,
        values=vals,
        epoch_size=epoch_size,
        reference_minibatch_size=reference_minibatch_size,
        unit=ScheduleUnit(unit),
    )


def learning_rate_per_sample_schedule(values: Any, epoch_size: int = 1) -> TrainingParameterSchedule:
    """Rates expressed per individual sample."""
    return learning_rate_schedule(values, epoch_size=epoch_size, reference_minibatch_size=1)


def learning_rate_per_minibatch_schedule(values: Any, epoch_size: int = 1) -> TrainingParameterSchedule:
    """Rates expressed per minibatch, whatever its size."""
    return learning_rate_schedule(
        values, epoch_size=epoch_size, reference_minibatch_size=IGNORED_MINIBATCH_SIZE
    )


def momentum_schedule(
    values: Any,
    epoch_size: int = 1,
    reference_minibatch_size: int = 1,
    unit: ScheduleUnit | str = ScheduleUnit.SAMPLE,
) -> TrainingParameterSchedule:
    """Momentum values per ``reference_minibatch_size`` samples."""
    return learning_rate_schedule(values, epoch_size, reference_minibatch_size, unit)


def time_constant_to_momentum(time_constant: float) -> float:
    """Per-sample decay ``exp(-1 / tc)`` for a time constant in samples.

    Examples:
        >>> time_constant_to_momentum(0)
        0.0
        >>> time_constant_to_momentum(float("inf"))
        1.0

    """
    if time_constant < 0:
        raise InvalidArgumentError(f"Momentum time constant must be non-negative, got {time_constant}.")
    if time_constant == 0:
        return 0.0
    if math.isinf(time_constant):
        return 1.0
    return math.exp(-1.0 / time_constant)


def momentum_as_time_constant_schedule(time_constants: Any, epoch_size: int = 1) -> TrainingParameterSchedule:
    """Momentum schedule given as time constants (in samples)."""
    if isinstance(time_constants, (int, float)):
        converted: Any = time_constant_to_momentum(time_constants)
    else:
        converted = [
            (c[0], time_constant_to_momentum(c[1])) if isinstance(c, (tuple, list)) else time_constant_to_momentum(c)
            for c in time_constants
        ]
    return momentum_schedule(converted, epoch_size=epoch_size, reference_minibatch_size=1)


def default_variance_momentum_schedule() -> TrainingParameterSchedule:
    return momentum_as_time_constant_schedule(DEFAULT_VARIANCE_TIME_CONSTANT)


def learning_rate_per_sample(value: float, reference_minibatch_size: int, minibatch_size: int) -> float:
    """Normalize a scheduled rate to a single sample.

    Examples:
        >>> learning_rate_per_sample(0.8, 4, 16)
        0.2
        >>> learning_rate_per_sample(0.8, 0, 16)
        0.05

    """
    reference = reference_minibatch_size or minibatch_size
    if reference == 0:
        return value
    return value / reference


def decay_rate_for_minibatch(value: float, reference_minibatch_size: int, minibatch_size: int) -> float:
    """Convert a per-reference-minibatch decay rate to the actual minibatch size.

    Keeps the effective decay per sample independent of how samples are
    grouped into minibatches.

    Examples:
        >>> decay_rate_for_minibatch(0.5, 1, 3)
        0.125
        >>> decay_rate_for_minibatch(0.9, 0, 64)
        0.9

    """
    if reference_minibatch_size in (IGNORED_MINIBATCH_SIZE, minibatch_size):
        return value
    if value == 0.0:
        return 0.0
    return value ** (minibatch_size / reference_minibatch_size)


def reanchor_schedule(
    new_schedule: TrainingParameterSchedule,
    sample_count: int,
    sweep_count: int,
) -> TrainingParameterSchedule:
    """Re-anchor ``new_schedule`` so that its time zero is "now".

    The offset is the elapsed count in the new schedule's own unit. Two
    consecutive resets therefore both start from the current point in
    training rather than composing with each other.

    Examples:
        >>> s = learning_rate_schedule([0.1, 0.01], epoch_size=10)
        >>> r = reanchor_schedule(s, sample_count=50, sweep_count=0)
        >>> r.keys, r.value_at(55), r.value_at(60)
        ((50, 60), 0.1, 0.01)

    """
    offset = sweep_count if new_schedule.is_sweep_based else sample_count
    logger.debug(f"Re-anchoring {new_schedule.unit.value}-based schedule at offset {offset}")
    return new_schedule.shifted(offset)


def as_schedule(value: Any) -> TrainingParameterSchedule:
    """Accept a schedule or anything ``learning_rate_schedule`` accepts."""
    if isinstance(value, TrainingParameterSchedule):
        return value
    return learning_rate_schedule(value)
