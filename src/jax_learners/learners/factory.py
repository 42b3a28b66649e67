"""Learner construction by kind.

``LEARNER_TYPES`` maps every ``LearnerKind`` to its class, so dispatch on
a kind (for example one read from a checkpoint's ``learner_kind`` tag) is
a single lookup. The lowercase factories mirror the classes' constructors
with keyword defaults.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Sequence
from typing import Any

from jax_learners.core.errors import InvalidArgumentError
from jax_learners.core.parameter import Parameter
from jax_learners.learners.algorithms import (
    AdaDeltaLearner,
    AdaGradLearner,
    AdamLearner,
    FSAdaGradLearner,
    MomentumSGDLearner,
    NesterovLearner,
    RMSPropLearner,
    SGDLearner,
)
from jax_learners.learners.base import LearnerBase, LearnerKind
from jax_learners.learners.options import AdditionalLearningOptions
from jax_learners.learners.universal import GradientPlaceholder, UniversalLearner
from jax_learners.progress.writers import ProgressWriter
from jax_learners.schedules.schedule import TrainingParameterSchedule

Schedule = TrainingParameterSchedule | float

LEARNER_TYPES: dict[LearnerKind, type[LearnerBase]] = {
    LearnerKind.SGD: SGDLearner,
    LearnerKind.MOMENTUM_SGD: MomentumSGDLearner,
    LearnerKind.NESTEROV: NesterovLearner,
    LearnerKind.ADAGRAD: AdaGradLearner,
    LearnerKind.ADADELTA: AdaDeltaLearner,
    LearnerKind.FSADAGRAD: FSAdaGradLearner,
    LearnerKind.ADAM: AdamLearner,
    LearnerKind.RMSPROP: RMSPropLearner,
    LearnerKind.UNIVERSAL: UniversalLearner,
}


def create_learner(kind: LearnerKind | str, *args: Any, **kwargs: Any) -> LearnerBase:
    """Construct the learner registered for ``kind``.

    Args:
        kind: A ``LearnerKind`` or its string value.
        *args: Positional constructor arguments.
        **kwargs: Keyword constructor arguments.

    Raises:
        InvalidArgumentError: If ``kind`` names no learner.

    Examples:
        >>> import jax.numpy as jnp
        >>> from jax_learners.core import Parameter
        >>> learner = create_learner("sgd", [Parameter(jnp.zeros(2))], 0.1)
        >>> learner.learner_type
        'SGDLearner'

    """
    try:
        kind = LearnerKind(kind)
    except ValueError:
        raise InvalidArgumentError(f"Unknown learner kind '{kind}'.") from None
    return LEARNER_TYPES[kind](*args, **kwargs)


def sgd_learner(
    parameters: Iterable[Parameter],
    lr: Schedule,
    options: AdditionalLearningOptions | None = None,
    progress_writers: Iterable[ProgressWriter] = (),
) -> SGDLearner:
    """Create a plain SGD learner.

    Args:
        parameters: Parameters to train.
        lr: Learning rate schedule, or a constant per-sample rate.
        options: Additional learning options.
        progress_writers: Progress sinks.

    Returns:
        An ``SGDLearner``; each ``update`` applies ``p -= lr * g``.

    Examples:
        >>> import jax.numpy as jnp
        >>> from jax_learners.core import Parameter
        >>> w = Parameter(jnp.zeros(2))
        >>> learner = sgd_learner([w], 0.5)
        >>> learner.update({w: jnp.ones(2)}, 1)
        True
        >>> w.value.tolist()
        [-0.5, -0.5]

    """
    return SGDLearner(parameters, lr, options, progress_writers)


def momentum_sgd_learner(
    parameters: Iterable[Parameter],
    lr: Schedule,
    momentum: Schedule,
    unit_gain: bool = True,
    options: AdditionalLearningOptions | None = None,
    progress_writers: Iterable[ProgressWriter] = (),
) -> MomentumSGDLearner:
    """Create a momentum SGD learner.

    ``momentum`` is given per reference minibatch and converted to the
    actual minibatch size on each step.
    """
    return MomentumSGDLearner(parameters, lr, momentum, unit_gain, options, progress_writers)


def nesterov_learner(
    parameters: Iterable[Parameter],
    lr: Schedule,
    momentum: Schedule,
    unit_gain: bool = True,
    options: AdditionalLearningOptions | None = None,
    progress_writers: Iterable[ProgressWriter] = (),
) -> NesterovLearner:
    """Create a Nesterov accelerated momentum learner."""
    return NesterovLearner(parameters, lr, momentum, unit_gain, options, progress_writers)


def adagrad_learner(
    parameters: Iterable[Parameter],
    lr: Schedule,
    need_ave_multiplier: bool = True,
    options: AdditionalLearningOptions | None = None,
    progress_writers: Iterable[ProgressWriter] = (),
) -> AdaGradLearner:
    """Create an AdaGrad learner."""
    return AdaGradLearner(parameters, lr, need_ave_multiplier, options, progress_writers)


def adadelta_learner(
    parameters: Iterable[Parameter],
    lr: Schedule,
    rho: float = 0.95,
    epsilon: float = 1e-8,
    options: AdditionalLearningOptions | None = None,
    progress_writers: Iterable[ProgressWriter] = (),
) -> AdaDeltaLearner:
    """Create an AdaDelta learner with decay ``rho`` and stabilizer ``epsilon``."""
    return AdaDeltaLearner(parameters, lr, rho, epsilon, options, progress_writers)


def fsadagrad_learner(
    parameters: Iterable[Parameter],
    lr: Schedule,
    momentum: Schedule,
    unit_gain: bool = True,
    variance_momentum: Schedule | None = None,
    options: AdditionalLearningOptions | None = None,
    progress_writers: Iterable[ProgressWriter] = (),
) -> FSAdaGradLearner:
    """Create an FSAdaGrad learner.

    Without ``variance_momentum`` the squared-gradient average uses a
    time constant of ``2 * 3600 * 100`` samples.
    """
    return FSAdaGradLearner(parameters, lr, momentum, unit_gain, variance_momentum, options, progress_writers)


def adam_learner(
    parameters: Iterable[Parameter],
    lr: Schedule,
    momentum: Schedule,
    unit_gain: bool = True,
    variance_momentum: Schedule | None = None,
    epsilon: float = 1e-8,
    adamax: bool = False,
    options: AdditionalLearningOptions | None = None,
    progress_writers: Iterable[ProgressWriter] = (),
) -> AdamLearner:
    """Create an Adam learner, or AdaMax with ``adamax=True``.

    Args:
        parameters: Parameters to train.
        lr: Learning rate schedule.
        momentum: First moment decay schedule.
        unit_gain: Scale the gradient term by ``1 - momentum``.
        variance_momentum: Second moment decay schedule.
        epsilon: Denominator stabilizer, non-negative.
        adamax: Use the infinity norm for the second moment.
        options: Additional learning options.
        progress_writers: Progress sinks.

    Returns:
        An ``AdamLearner``.

    """
    return AdamLearner(
        parameters, lr, momentum, unit_gain, variance_momentum, epsilon, adamax, options, progress_writers
    )


def rmsprop_learner(
    parameters: Iterable[Parameter],
    lr: Schedule,
    gamma: float,
    inc: float,
    dec: float,
    max: float,
    min: float,
    need_ave_multiplier: bool = True,
    options: AdditionalLearningOptions | None = None,
    progress_writers: Iterable[ProgressWriter] = (),
) -> RMSPropLearner:
    """Create an RMSProp learner; see ``RMSPropLearner`` for the ranges."""
    return RMSPropLearner(parameters, lr, gamma, inc, dec, max, min, need_ave_multiplier, options, progress_writers)


def universal_learner(
    parameters: Iterable[Parameter],
    update: Callable[..., Any],
    gradients: Sequence[GradientPlaceholder] | None = None,
    progress_writers: Iterable[ProgressWriter] = (),
) -> UniversalLearner:
    """Learner driven by a user update.

    Without ``gradients``, ``update(value, gradient) -> new_value`` is
    applied to each parameter. With ``gradients``, ``update(values,
    gradients) -> new_values`` receives tuples for all parameters.
    """
    if gradients is None:
        return UniversalLearner.from_parameter_update(parameters, update, progress_writers)
    return UniversalLearner(parameters, gradients, update, progress_writers)
