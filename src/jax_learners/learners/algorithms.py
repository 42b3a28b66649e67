"""Concrete first-order learners.

Each learner fixes the shape of its auxiliary tensor and delegates the
numeric recurrence to a kernel in ``jax_learners.kernels``. Algorithms
that keep several accumulators store them as column blocks of the
parameter's matrix view; the block count of AdaGrad and RMSProp grows by
one on GPU when the average multiplier is requested, matching the layout
those device kernels expect.
"""

from __future__ import annotations

import math
from collections.abc import Iterable, Mapping
from typing import Any

from jax import Array

from jax_learners.core.errors import LogicError
from jax_learners.core.parameter import Parameter, matrix_shape
from jax_learners.kernels.updates import (
    adadelta_update,
    adagrad_update,
    adam_update,
    fsadagrad_update,
    momentum_sgd_update,
    nesterov_update,
    rmsprop_update,
    sgd_update,
)
from jax_learners.learners.base import SMOOTHED_COUNT_KEY, LearnerBase, LearnerKind
from jax_learners.learners.options import AdditionalLearningOptions
from jax_learners.progress.writers import ProgressWriter
from jax_learners.schedules.schedule import (
    TrainingParameterSchedule,
    as_schedule,
    decay_rate_for_minibatch,
    default_variance_momentum_schedule,
)


def _is_gpu(parameter: Parameter) -> bool:
    return parameter.device_platform == "gpu"


def _column_blocks(parameter: Parameter, count: int) -> tuple[int, int]:
    rows, cols = matrix_shape(parameter.shape)
    return (rows, count * cols)


class SGDLearner(LearnerBase):
    """Plain stochastic gradient descent: ``p -= lr * g``.

    Keeps only a zero-size placeholder per parameter.
    """

    kind = LearnerKind.SGD

    def _smoothed_gradient_shape(self, parameter: Parameter) -> tuple[int, ...]:
        return (0,)

    def _update_parameter(
        self,
        parameter: Parameter,
        gradient: Array,
        smoothed_gradient: Array,
        minibatch_size: int,
    ) -> tuple[Array, Array]:
        learning_rate = self.learning_rate_per_sample(minibatch_size)
        return sgd_update(parameter.value, gradient, learning_rate), smoothed_gradient


class MomentumSGDLearner(LearnerBase):
    """SGD with a momentum accumulator of the parameter's shape.

    Args:
        parameters: Parameters to train.
        learning_rate_schedule: Learning rate schedule.
        momentum_schedule: Momentum per reference minibatch; converted to
            the actual minibatch size on every step.
        unit_gain: Scale the gradient contribution by ``1 - momentum``.
        options: Additional learning options.
        progress_writers: Progress sinks.

    """

    kind = LearnerKind.MOMENTUM_SGD

    def __init__(
        self,
        parameters: Iterable[Parameter],
        learning_rate_schedule: TrainingParameterSchedule | float,
        momentum_schedule: TrainingParameterSchedule | float,
        unit_gain: bool = True,
        options: AdditionalLearningOptions | None = None,
        progress_writers: Iterable[ProgressWriter] = (),
    ):
        self.momentum_schedule = as_schedule(momentum_schedule)
        self.unit_gain = unit_gain
        super().__init__(parameters, learning_rate_schedule, options, progress_writers)

    def momentum_for_minibatch(self, minibatch_size: int) -> float:
        value, reference = self.current_value(self.momentum_schedule)
        return decay_rate_for_minibatch(value, reference, minibatch_size)

    def _smoothed_gradient_shape(self, parameter: Parameter) -> tuple[int, ...]:
        return parameter.shape

    def _on_minibatch(self, minibatch_size: int) -> None:
        self._report_training_parameter_value(self.momentum_schedule, "Momentum")

    def _update_parameter(
        self,
        parameter: Parameter,
        gradient: Array,
        smoothed_gradient: Array,
        minibatch_size: int,
    ) -> tuple[Array, Array]:
        return momentum_sgd_update(
            parameter.value,
            gradient,
            smoothed_gradient,
            self.learning_rate_per_sample(minibatch_size),
            self.momentum_for_minibatch(minibatch_size),
            unit_gain=self.unit_gain,
        )


class NesterovLearner(MomentumSGDLearner):
    """Momentum SGD with Nesterov's look-ahead correction."""

    kind = LearnerKind.NESTEROV

    def _update_parameter(
        self,
        parameter: Parameter,
        gradient: Array,
        smoothed_gradient: Array,
        minibatch_size: int,
    ) -> tuple[Array, Array]:
        return nesterov_update(
            parameter.value,
            gradient,
            smoothed_gradient,
            self.learning_rate_per_sample(minibatch_size),
            self.momentum_for_minibatch(minibatch_size),
            unit_gain=self.unit_gain,
        )


class AdaGradLearner(LearnerBase):
    """AdaGrad: per-element rates from the sum of squared gradients."""

    kind = LearnerKind.ADAGRAD

    def __init__(
        self,
        parameters: Iterable[Parameter],
        learning_rate_schedule: TrainingParameterSchedule | float,
        need_ave_multiplier: bool = True,
        options: AdditionalLearningOptions | None = None,
        progress_writers: Iterable[ProgressWriter] = (),
    ):
        self.need_ave_multiplier = need_ave_multiplier
        super().__init__(parameters, learning_rate_schedule, options, progress_writers)

    def _smoothed_gradient_shape(self, parameter: Parameter) -> tuple[int, ...]:
        factor = 2 if self.need_ave_multiplier and _is_gpu(parameter) else 1
        return _column_blocks(parameter, factor)

    def _update_parameter(
        self,
        parameter: Parameter,
        gradient: Array,
        smoothed_gradient: Array,
        minibatch_size: int,
    ) -> tuple[Array, Array]:
        return adagrad_update(
            parameter.value,
            gradient,
            smoothed_gradient,
            self.learning_rate_per_sample(minibatch_size),
            need_ave_multiplier=self.need_ave_multiplier,
        )


class AdaDeltaLearner(LearnerBase):
    """AdaDelta with decay ``rho`` and stabilizer ``epsilon``."""

    kind = LearnerKind.ADADELTA

    def __init__(
        self,
        parameters: Iterable[Parameter],
        learning_rate_schedule: TrainingParameterSchedule | float,
        rho: float = 0.95,
        epsilon: float = 1e-8,
        options: AdditionalLearningOptions | None = None,
        progress_writers: Iterable[ProgressWriter] = (),
    ):
        self.rho = rho
        self.epsilon = epsilon
        super().__init__(parameters, learning_rate_schedule, options, progress_writers)

    def _smoothed_gradient_shape(self, parameter: Parameter) -> tuple[int, ...]:
        return _column_blocks(parameter, 2)

    def _update_parameter(
        self,
        parameter: Parameter,
        gradient: Array,
        smoothed_gradient: Array,
        minibatch_size: int,
    ) -> tuple[Array, Array]:
        return adadelta_update(
            parameter.value,
            gradient,
            smoothed_gradient,
            self.learning_rate_per_sample(minibatch_size),
            self.rho,
            self.epsilon,
        )


class FSAdaGradLearner(MomentumSGDLearner):
    """FSAdaGrad: momentum over gradients normalized by a smoothed variance.

    The per-minibatch hook tracks how many samples the variance
    accumulator effectively holds (``smoothed_count``) and derives the
    shared normalization ``TARGET_ADAGRAD_AV_DENOM * sqrt(smoothed_count)``.
    """

    kind = LearnerKind.FSADAGRAD
    extra_checkpoint_keys = (SMOOTHED_COUNT_KEY,)

    TARGET_ADAGRAD_AV_DENOM = 1.0

    def __init__(
        self,
        parameters: Iterable[Parameter],
        learning_rate_schedule: TrainingParameterSchedule | float,
        momentum_schedule: TrainingParameterSchedule | float,
        unit_gain: bool = True,
        variance_momentum_schedule: TrainingParameterSchedule | float | None = None,
        options: AdditionalLearningOptions | None = None,
        progress_writers: Iterable[ProgressWriter] = (),
    ):
        if variance_momentum_schedule is None:
            variance_momentum_schedule = default_variance_momentum_schedule()
        self.variance_momentum_schedule = as_schedule(variance_momentum_schedule)
        self.smoothed_count = 0.0
        self._target_denominator = 0.0
        super().__init__(parameters, learning_rate_schedule, momentum_schedule, unit_gain, options, progress_writers)

    def variance_momentum_for_minibatch(self, minibatch_size: int) -> float:
        value, reference = self.current_value(self.variance_momentum_schedule)
        return decay_rate_for_minibatch(value, reference, minibatch_size)

    def _smoothed_gradient_shape(self, parameter: Parameter) -> tuple[int, ...]:
        return _column_blocks(parameter, 2)

    def _on_minibatch(self, minibatch_size: int) -> None:
        super()._on_minibatch(minibatch_size)
        variance_momentum = self.variance_momentum_for_minibatch(minibatch_size)
        self.smoothed_count = variance_momentum * self.smoothed_count + (1.0 - variance_momentum) * minibatch_size
        self._target_denominator = self.TARGET_ADAGRAD_AV_DENOM * math.sqrt(self.smoothed_count)

    def _update_parameter(
        self,
        parameter: Parameter,
        gradient: Array,
        smoothed_gradient: Array,
        minibatch_size: int,
    ) -> tuple[Array, Array]:
        return fsadagrad_update(
            parameter.value,
            gradient,
            smoothed_gradient,
            self.learning_rate_per_sample(minibatch_size),
            self.momentum_for_minibatch(minibatch_size),
            self.variance_momentum_for_minibatch(minibatch_size),
            self._target_denominator,
            unit_gain=self.unit_gain,
        )

    def _extra_checkpoint_fields(self) -> dict[str, Any]:
        return {SMOOTHED_COUNT_KEY: self.smoothed_count}

    def _restore_extra_fields(self, checkpoint: Mapping[str, Any]) -> None:
        self.smoothed_count = float(checkpoint[SMOOTHED_COUNT_KEY])
        self._target_denominator = self.TARGET_ADAGRAD_AV_DENOM * math.sqrt(self.smoothed_count)

    def _reset_extra_state(self) -> None:
        self.smoothed_count = 0.0
        self._target_denominator = 0.0


class AdamLearner(MomentumSGDLearner):
    """Adam, or AdaMax with ``adamax=True``.

    ``smoothed_count`` counts minibatches and drives bias correction.

    Raises:
        LogicError: If ``epsilon`` is negative.

    """

    kind = LearnerKind.ADAM
    extra_checkpoint_keys = (SMOOTHED_COUNT_KEY,)

    def __init__(
        self,
        parameters: Iterable[Parameter],
        learning_rate_schedule: TrainingParameterSchedule | float,
        momentum_schedule: TrainingParameterSchedule | float,
        unit_gain: bool = True,
        variance_momentum_schedule: TrainingParameterSchedule | float | None = None,
        epsilon: float = 1e-8,
        adamax: bool = False,
        options: AdditionalLearningOptions | None = None,
        progress_writers: Iterable[ProgressWriter] = (),
    ):
        if epsilon < 0.0:
            raise LogicError(f"Epsilon should be non-negative. You are trying to set it to {epsilon:g}.")
        if variance_momentum_schedule is None:
            variance_momentum_schedule = default_variance_momentum_schedule()
        self.variance_momentum_schedule = as_schedule(variance_momentum_schedule)
        self.epsilon = epsilon
        self.adamax = adamax
        self.smoothed_count = 0.0
        super().__init__(parameters, learning_rate_schedule, momentum_schedule, unit_gain, options, progress_writers)

    def variance_momentum_for_minibatch(self, minibatch_size: int) -> float:
        value, reference = self.current_value(self.variance_momentum_schedule)
        return decay_rate_for_minibatch(value, reference, minibatch_size)

    def _smoothed_gradient_shape(self, parameter: Parameter) -> tuple[int, ...]:
        return _column_blocks(parameter, 2)

    def _on_minibatch(self, minibatch_size: int) -> None:
        super()._on_minibatch(minibatch_size)
        self.smoothed_count += 1.0

    def _update_parameter(
        self,
        parameter: Parameter,
        gradient: Array,
        smoothed_gradient: Array,
        minibatch_size: int,
    ) -> tuple[Array, Array]:
        return adam_update(
            parameter.value,
            gradient,
            smoothed_gradient,
            self.learning_rate_per_sample(minibatch_size),
            self.momentum_for_minibatch(minibatch_size),
            self.variance_momentum_for_minibatch(minibatch_size),
            self.smoothed_count,
            self.epsilon,
            unit_gain=self.unit_gain,
            adamax=self.adamax,
        )

    def _extra_checkpoint_fields(self) -> dict[str, Any]:
        return {SMOOTHED_COUNT_KEY: self.smoothed_count}

    def _restore_extra_fields(self, checkpoint: Mapping[str, Any]) -> None:
        self.smoothed_count = float(checkpoint[SMOOTHED_COUNT_KEY])

    def _reset_extra_state(self) -> None:
        self.smoothed_count = 0.0


class RMSPropLearner(LearnerBase):
    """RMSProp with sign-adaptive per-element step sizes.

    Args:
        parameters: Parameters to train.
        learning_rate_schedule: Learning rate schedule.
        gamma: Decay of the squared-gradient average, in (0, 1).
        inc: Step growth factor when the gradient sign repeats, > 1.
        dec: Step shrink factor otherwise, in (0, 1).
        max: Upper bound of the step size.
        min: Lower bound of the step size, 0 < min < max.
        need_ave_multiplier: Normalize the step by the mean multiplier.
        options: Additional learning options.
        progress_writers: Progress sinks.

    Raises:
        LogicError: If a hyperparameter is out of range.

    """

    kind = LearnerKind.RMSPROP
    extra_checkpoint_keys = (SMOOTHED_COUNT_KEY,)

    def __init__(
        self,
        parameters: Iterable[Parameter],
        learning_rate_schedule: TrainingParameterSchedule | float,
        gamma: float,
        inc: float,
        dec: float,
        max: float,
        min: float,
        need_ave_multiplier: bool = True,
        options: AdditionalLearningOptions | None = None,
        progress_writers: Iterable[ProgressWriter] = (),
    ):
        if gamma <= 0 or gamma >= 1:
            raise LogicError("RMSProp gamma must be in range (0.0, 1.0)")
        if inc <= 1.0:
            raise LogicError("RMSProp inc must be greater than 1")
        if dec <= 0 or dec >= 1:
            raise LogicError("RMSProp dec must be in range (0.0, 1.0)")
        if max <= 0 or max <= min:
            raise LogicError("RMSProp max must be greater than zero and greater than min")
        if min <= 0:
            raise LogicError("RMSProp min must be greater than zero")

        self.gamma = gamma
        self.inc = inc
        self.dec = dec
        self.max = max
        self.min = min
        self.need_ave_multiplier = need_ave_multiplier
        self.smoothed_count = 0.0
        super().__init__(parameters, learning_rate_schedule, options, progress_writers)

    def _smoothed_gradient_shape(self, parameter: Parameter) -> tuple[int, ...]:
        factor = 4 if self.need_ave_multiplier and _is_gpu(parameter) else 3
        return _column_blocks(parameter, factor)

    def _on_minibatch(self, minibatch_size: int) -> None:
        self.smoothed_count += 1.0

    def _update_parameter(
        self,
        parameter: Parameter,
        gradient: Array,
        smoothed_gradient: Array,
        minibatch_size: int,
    ) -> tuple[Array, Array]:
        return rmsprop_update(
            parameter.value,
            gradient,
            smoothed_gradient,
            self.learning_rate_per_sample(minibatch_size),
            self.gamma,
            self.inc,
            self.dec,
            self.max,
            self.min,
            need_ave_multiplier=self.need_ave_multiplier,
            initialized=self.smoothed_count > 1,
        )

    def _extra_checkpoint_fields(self) -> dict[str, Any]:
        return {SMOOTHED_COUNT_KEY: self.smoothed_count}

    def _restore_extra_fields(self, checkpoint: Mapping[str, Any]) -> None:
        self.smoothed_count = float(checkpoint[SMOOTHED_COUNT_KEY])

    def _reset_extra_state(self) -> None:
        self.smoothed_count = 0.0
