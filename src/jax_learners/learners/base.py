"""Shared update pipeline for first-order learners.

A learner owns one auxiliary ("smoothed gradient") tensor per parameter
and applies, for every parameter of every minibatch:

1. preprocessing of the gradient (clipping, L2 regularization),
2. the algorithm's recurrence (``_update_parameter``),
3. postprocessing of the parameter (noise injection, L1 shrinkage).

Counters (samples, minibatches, sweeps, noise seed) advance once per
successful call, and the whole state round-trips through a versioned
checkpoint record.

Learners are not thread-safe: callers must serialize ``update`` calls on a
learner, and on any parameter shared between learners.

References:
    - Bottou, Curtis & Nocedal (2018), Optimization Methods for Large-Scale
      Machine Learning: https://arxiv.org/abs/1606.04838

"""

from __future__ import annotations

import abc
import enum
import logging
from collections.abc import Iterable, Mapping
from typing import Any, ClassVar

import jax
import jax.numpy as jnp
import numpy as np
from jax import Array

from jax_learners.checkpoint.records import validate_record
from jax_learners.core.errors import InvalidArgumentError, LogicError
from jax_learners.core.parameter import Parameter, element_dtype
from jax_learners.kernels.updates import (
    add_l2_regularization,
    clip_gradient,
    has_nan,
    soft_threshold,
)
from jax_learners.learners.options import AdditionalLearningOptions
from jax_learners.progress.writers import ProgressWriter
from jax_learners.random.prng import gaussian_noise, generate_random_seed
from jax_learners.schedules.schedule import (
    TrainingParameterSchedule,
    as_schedule,
    learning_rate_per_sample,
    reanchor_schedule,
)

logger = logging.getLogger(__name__)

LEARNER_TYPE_VALUE = "Learner"

# Version 1 stored smoothed gradients under each parameter's uid, version 2
# stores them as a list in parameter order.
CHECKPOINT_VERSION = 2

VERSION_KEY = "version"
TYPE_KEY = "type"
LEARNER_KIND_KEY = "learner_kind"
SAMPLE_COUNT_KEY = "sample_count"
MINIBATCH_COUNT_KEY = "minibatch_count"
SWEEP_COUNT_KEY = "sweep_count"
LEARNING_RATE_SCHEDULE_KEY = "learning_rate_schedule"
NOISE_INJECTION_SEED_KEY = "noise_injection_seed"
SMOOTHED_GRADIENTS_KEY = "smoothed_gradients"
SMOOTHED_COUNT_KEY = "smoothed_count"

_REQUIRED_KEYS = (SAMPLE_COUNT_KEY, MINIBATCH_COUNT_KEY, LEARNING_RATE_SCHEDULE_KEY)


class LearnerKind(str, enum.Enum):
    """Closed set of learner algorithms."""

    SGD = "sgd"
    MOMENTUM_SGD = "momentum_sgd"
    NESTEROV = "nesterov"
    ADAGRAD = "adagrad"
    ADADELTA = "adadelta"
    FSADAGRAD = "fsadagrad"
    ADAM = "adam"
    RMSPROP = "rmsprop"
    UNIVERSAL = "universal"


class LearnerBase(abc.ABC):
    """Abstract update engine shared by all learners.

    Subclasses define the auxiliary tensor shape and the numeric
    recurrence; they may also hook into every minibatch and persist extra
    scalars listed in ``extra_checkpoint_keys``.

    Args:
        parameters: Parameters to train, in a fixed order.
        learning_rate_schedule: Learning rate schedule (or constant).
        options: Regularization, clipping and noise options.
        progress_writers: Sinks for reported hyperparameter values.

    Raises:
        InvalidArgumentError: If ``parameters`` is empty or has duplicates.
        LogicError: If a parameter has an unsupported element type.

    """

    kind: ClassVar[LearnerKind]
    extra_checkpoint_keys: ClassVar[tuple[str, ...]] = ()

    def __init__(
        self,
        parameters: Iterable[Parameter],
        learning_rate_schedule: TrainingParameterSchedule | float,
        options: AdditionalLearningOptions | None = None,
        progress_writers: Iterable[ProgressWriter] = (),
    ):
        parameters = tuple(parameters)
        if not parameters:
            raise InvalidArgumentError("The parameters list specified to a Learner must not be empty.")
        if len(set(parameters)) != len(parameters):
            raise InvalidArgumentError("Learner's parameters list must not contain duplicates.")

        self._parameters = parameters
        self._learning_rate_schedule = as_schedule(learning_rate_schedule)
        self.options = options if options is not None else AdditionalLearningOptions()

        self._sample_count = 0
        self._minibatch_count = 0
        self._sweep_count = 0
        seed = self.options.noise_injection_seed
        self._noise_injection_seed = seed if seed is not None else generate_random_seed()

        self._progress_writers: list[ProgressWriter] = list(progress_writers)
        self._reported_values: dict[str, float] = {}

        self._smoothed_gradients: dict[Parameter, Array] = {
            p: self._allocate(p, self._smoothed_gradient_shape(p)) for p in parameters
        }
        logger.info(f"Created {self.learner_type} over {len(parameters)} parameter(s)")

    # ------------------------------------------------------------------
    # Algorithm interface
    # ------------------------------------------------------------------

    @abc.abstractmethod
    def _smoothed_gradient_shape(self, parameter: Parameter) -> tuple[int, ...]:
        """Shape of the auxiliary tensor kept for ``parameter``."""

    @abc.abstractmethod
    def _update_parameter(
        self,
        parameter: Parameter,
        gradient: Array,
        smoothed_gradient: Array,
        minibatch_size: int,
    ) -> tuple[Array, Array]:
        """Apply the recurrence; return (new_value, new_smoothed_gradient)."""

    def _on_minibatch(self, minibatch_size: int) -> None:
        """Per-minibatch bookkeeping run before any parameter is updated."""

    def _extra_checkpoint_fields(self) -> dict[str, Any]:
        return {}

    def _restore_extra_fields(self, checkpoint: Mapping[str, Any]) -> None:
        pass

    def _reset_extra_state(self) -> None:
        pass

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    @property
    def parameters(self) -> tuple[Parameter, ...]:
        return self._parameters

    @property
    def learner_type(self) -> str:
        return type(self).__name__

    @property
    def learning_rate_schedule(self) -> TrainingParameterSchedule:
        return self._learning_rate_schedule

    @property
    def total_number_of_samples_seen(self) -> int:
        return self._sample_count

    @property
    def total_number_of_minibatches_seen(self) -> int:
        return self._minibatch_count

    @property
    def total_number_of_sweeps_seen(self) -> int:
        return self._sweep_count

    @property
    def noise_injection_seed(self) -> int:
        return self._noise_injection_seed

    def smoothed_gradient(self, parameter: Parameter) -> Array:
        try:
            return self._smoothed_gradients[parameter]
        except KeyError:
            raise InvalidArgumentError(f"{parameter!r} is not trained by this learner.") from None

    @property
    def smoothed_gradients(self) -> dict[Parameter, Array]:
        return dict(self._smoothed_gradients)

    def current_value(self, schedule: TrainingParameterSchedule) -> tuple[float, int]:
        """Value of ``schedule`` at the learner's current point in training."""
        return schedule.lookup(self._sample_count, self._sweep_count)

    def learning_rate(self) -> float:
        """Currently scheduled learning rate, as written in the schedule."""
        return self.current_value(self._learning_rate_schedule)[0]

    def learning_rate_per_sample(self, minibatch_size: int) -> float:
        value, reference = self.current_value(self._learning_rate_schedule)
        return learning_rate_per_sample(value, reference, minibatch_size)

    # ------------------------------------------------------------------
    # Mutation
    # ------------------------------------------------------------------

    def add_progress_writers(self, writers: Iterable[ProgressWriter]) -> None:
        self._progress_writers.extend(writers)

    def reset_learning_rate(self, learning_rate_schedule: TrainingParameterSchedule | float) -> None:
        """Replace the learning rate schedule, starting it from now.

        The new schedule's time zero is mapped to the current elapsed
        count, so its first value takes effect immediately.
        """
        self._learning_rate_schedule = reanchor_schedule(
            as_schedule(learning_rate_schedule), self._sample_count, self._sweep_count
        )
        logger.info(
            f"{self.learner_type}: learning rate schedule reset at "
            f"{self._sample_count} samples / {self._sweep_count} sweeps"
        )

    def reset_smoothed_gradients(self) -> None:
        """Zero every auxiliary tensor and algorithm-specific accumulator."""
        for parameter, value in self._smoothed_gradients.items():
            element_dtype(value.dtype)
            self._smoothed_gradients[parameter] = jnp.zeros_like(value)
        self._reset_extra_state()

    def update(
        self,
        gradients: Mapping[Parameter, Array],
        minibatch_size: int,
        is_sweep_end: bool = False,
    ) -> bool:
        """Apply one training step to every parameter.

        Args:
            gradients: Fresh gradient for each parameter of this learner.
            minibatch_size: Number of samples the gradients were computed on.
            is_sweep_end: Whether this minibatch completes a sweep.

        Returns:
            ``False`` when the learning rate is zero (nothing changes),
            ``True`` otherwise.

        Raises:
            InvalidArgumentError: If ``minibatch_size`` is 0, or a gradient is
                missing or has the wrong shape.
            LogicError: On an unsupported element type or, with
                ``check_for_nans``, when NaNs appear.

        """
        self._report_training_parameter_value(self._learning_rate_schedule, "Learning rate")

        if self.learning_rate_per_sample(minibatch_size) == 0.0:
            return False

        if minibatch_size == 0:
            raise InvalidArgumentError("Learner.update() cannot perform an update with an empty minibatch.")

        self._check_gradients(gradients)
        self._on_minibatch(minibatch_size)

        for parameter in self._parameters:
            smoothed = self._smoothed_gradients[parameter]
            dtype = element_dtype(smoothed.dtype)
            gradient = jnp.asarray(gradients[parameter], dtype=dtype)

            if self.options.check_for_nans and has_nan(smoothed):
                raise LogicError(f"{parameter.uid} has NaNs in smoothedGradient.")

            gradient = self.preprocess_gradient(parameter, gradient, minibatch_size)
            new_value, new_smoothed = self._update_parameter(parameter, gradient, smoothed, minibatch_size)
            new_value = self._postprocess(new_value, minibatch_size)

            if self.options.check_for_nans and has_nan(new_value):
                raise LogicError(f"{parameter.uid} has NaNs in parameter values after parameter update.")

            parameter.value = new_value
            self._smoothed_gradients[parameter] = new_smoothed
            parameter.record_value_update()

        self._sample_count += minibatch_size
        self._minibatch_count += 1
        if is_sweep_end:
            self._sweep_count += 1
        return True

    def preprocess_gradient(self, parameter: Parameter, gradient: Array, minibatch_size: int) -> Array:
        """Clip ``gradient`` and add the L2 term, scaled by the minibatch size.

        Rates are per sample, so thresholds and weights are multiplied by
        ``minibatch_size`` to stay invariant to it.
        """
        options = self.options
        if options.clipping_enabled:
            max_per_minibatch = options.gradient_clipping_threshold_per_sample * minibatch_size
            gradient = clip_gradient(
                gradient, max_per_minibatch, truncate=options.gradient_clipping_with_truncation
            )
        if options.l2_regularization_weight > 0:
            weight = options.l2_regularization_weight * minibatch_size
            gradient = add_l2_regularization(gradient, parameter.value, weight)
        return gradient

    def _postprocess(self, value: Array, minibatch_size: int) -> Array:
        options = self.options
        std_dev, _ = self.current_value(options.gaussian_noise_injection_std_dev)
        if std_dev > 0:
            noise = gaussian_noise(self._noise_injection_seed, value.shape, std_dev, dtype=value.dtype)
            self._noise_injection_seed += 1
            value = value + noise

        if options.l1_regularization_weight > 0:
            learning_rate = self.learning_rate_per_sample(minibatch_size)
            weight = learning_rate * options.l1_regularization_weight * minibatch_size
            value = soft_threshold(value, weight)
        return value

    def _check_gradients(self, gradients: Mapping[Parameter, Array]) -> None:
        for parameter in self._parameters:
            if parameter not in gradients:
                raise InvalidArgumentError(f"No gradient supplied for parameter {parameter!r}.")
            shape = tuple(jnp.shape(gradients[parameter]))
            if shape != parameter.shape:
                raise InvalidArgumentError(
                    f"Gradient of shape {shape} does not match parameter {parameter!r}."
                )

    def _report_training_parameter_value(self, schedule: TrainingParameterSchedule, name: str) -> None:
        value, reference = self.current_value(schedule)
        if self._reported_values.get(name) == value:
            return
        self._reported_values[name] = value
        label = f"{name} [reference mbsize = {reference}]"
        logger.debug(f"{self.learner_type}: {label} = {value:g}")
        for writer in self._progress_writers:
            writer.write(label, value)

    @staticmethod
    def _allocate(parameter: Parameter, shape: tuple[int, ...]) -> Array:
        dtype = element_dtype(parameter.dtype)
        device = next(iter(parameter.value.devices()))
        return jax.device_put(jnp.zeros(shape, dtype=dtype), device)

    # ------------------------------------------------------------------
    # Checkpointing
    # ------------------------------------------------------------------

    def create_checkpoint(self) -> dict[str, Any]:
        """Versioned record of the full learner state.

        Smoothed gradients are listed in parameter order and copied to
        host memory.
        """
        checkpoint: dict[str, Any] = {
            VERSION_KEY: CHECKPOINT_VERSION,
            TYPE_KEY: LEARNER_TYPE_VALUE,
            LEARNER_KIND_KEY: self.kind.value,
            SAMPLE_COUNT_KEY: self._sample_count,
            MINIBATCH_COUNT_KEY: self._minibatch_count,
            SWEEP_COUNT_KEY: self._sweep_count,
            LEARNING_RATE_SCHEDULE_KEY: self._learning_rate_schedule.serialize(),
            NOISE_INJECTION_SEED_KEY: self._noise_injection_seed,
            SMOOTHED_GRADIENTS_KEY: [np.asarray(self._smoothed_gradients[p]) for p in self._parameters],
        }
        checkpoint.update(self._extra_checkpoint_fields())
        return checkpoint

    def restore_from_checkpoint(self, checkpoint: Mapping[str, Any]) -> None:
        """Restore the state saved by ``create_checkpoint``.

        The checkpointed learning rate schedule replaces the one given at
        construction. Everything is validated before any state changes.

        Raises:
            LogicError: On a missing key, a type or kind mismatch, a newer
                version, or a smoothed gradient whose dtype or shape differs
                from the live one.

        """
        required = _REQUIRED_KEYS + self.extra_checkpoint_keys
        version = validate_record(checkpoint, required, LEARNER_TYPE_VALUE, CHECKPOINT_VERSION)

        kind = checkpoint.get(LEARNER_KIND_KEY)
        if kind is not None and str(kind) != self.kind.value:
            raise LogicError(
                f"Checkpoint was created by a '{kind}' learner and cannot be restored into '{self.kind.value}'."
            )

        if version >= 2:
            validate_record(checkpoint, (SMOOTHED_GRADIENTS_KEY,), LEARNER_TYPE_VALUE, CHECKPOINT_VERSION)
            values = self._smoothed_gradients_by_position(checkpoint)
        else:
            values = self._smoothed_gradients_by_uid(checkpoint)

        restored = {}
        for parameter, value in zip(self._parameters, values):
            live = self._smoothed_gradients[parameter]
            value = np.asarray(value)
            if value.dtype != np.dtype(live.dtype):
                raise LogicError(
                    f"DataType of the smoothed gradient value restored from checkpoint for the parameter "
                    f"'{parameter.name}' (uid = {parameter.uid}) does not match the expected value."
                )
            if value.shape != tuple(live.shape):
                raise LogicError(
                    f"Shape '{value.shape}' of the smoothed gradient value restored from checkpoint "
                    f"for the parameter '{parameter.name}' (uid = {parameter.uid}) does not match the "
                    f"expected value {tuple(live.shape)}."
                )
            restored[parameter] = jnp.asarray(value, dtype=live.dtype)

        schedule = TrainingParameterSchedule.deserialize(checkpoint[LEARNING_RATE_SCHEDULE_KEY])

        self._sample_count = int(checkpoint[SAMPLE_COUNT_KEY])
        self._minibatch_count = int(checkpoint[MINIBATCH_COUNT_KEY])
        self._sweep_count = int(checkpoint.get(SWEEP_COUNT_KEY, self._sweep_count))
        if NOISE_INJECTION_SEED_KEY in checkpoint:
            self._noise_injection_seed = int(checkpoint[NOISE_INJECTION_SEED_KEY])
        self._learning_rate_schedule = schedule
        self._smoothed_gradients.update(restored)
        self._restore_extra_fields(checkpoint)

        logger.info(
            f"{self.learner_type} restored from version {version} checkpoint at "
            f"{self._sample_count} samples / {self._minibatch_count} minibatches"
        )

    def _smoothed_gradients_by_position(self, checkpoint: Mapping[str, Any]) -> list[Any]:
        values = list(checkpoint[SMOOTHED_GRADIENTS_KEY])
        for index, parameter in enumerate(self._parameters):
            if index >= len(values):
                raise LogicError(
                    f"Checkpoint does not contain smoothed gradient value for parameter "
                    f"'{parameter.name}' (uid={parameter.uid})."
                )
        return values[: len(self._parameters)]

    def _smoothed_gradients_by_uid(self, checkpoint: Mapping[str, Any]) -> list[Any]:
        values = []
        for parameter in self._parameters:
            if parameter.uid not in checkpoint:
                raise LogicError(
                    f"Checkpoint does not contain smoothed gradient value for parameter "
                    f"'{parameter.name}' (uid={parameter.uid})."
                )
            values.append(checkpoint[parameter.uid])
        return values
