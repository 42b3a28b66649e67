"""Learner builders shared by the test modules."""

from __future__ import annotations

import jax.numpy as jnp

from jax_learners.core import Parameter
from jax_learners.learners import (
    AdaDeltaLearner,
    AdaGradLearner,
    AdamLearner,
    FSAdaGradLearner,
    LearnerKind,
    MomentumSGDLearner,
    NesterovLearner,
    RMSPropLearner,
    SGDLearner,
    UniversalLearner,
)


def make_learner(kind, parameters, lr=0.1, options=None, **kwargs):
    """Build a learner of ``kind`` with reasonable hyperparameters."""
    if kind is LearnerKind.SGD:
        return SGDLearner(parameters, lr, options=options, **kwargs)
    if kind is LearnerKind.MOMENTUM_SGD:
        return MomentumSGDLearner(parameters, lr, 0.9, options=options, **kwargs)
    if kind is LearnerKind.NESTEROV:
        return NesterovLearner(parameters, lr, 0.9, options=options, **kwargs)
    if kind is LearnerKind.ADAGRAD:
        return AdaGradLearner(parameters, lr, options=options, **kwargs)
    if kind is LearnerKind.ADADELTA:
        return AdaDeltaLearner(parameters, lr, options=options, **kwargs)
    if kind is LearnerKind.FSADAGRAD:
        return FSAdaGradLearner(parameters, lr, 0.9, options=options, **kwargs)
    if kind is LearnerKind.ADAM:
        return AdamLearner(parameters, lr, 0.9, options=options, **kwargs)
    if kind is LearnerKind.RMSPROP:
        return RMSPropLearner(parameters, lr, 0.9, 1.2, 0.7, 10.0, 1e-4, options=options, **kwargs)
    if kind is LearnerKind.UNIVERSAL:
        learner = UniversalLearner.from_parameter_update(parameters, lambda p, g: p - 0.1 * g, **kwargs)
        if lr != 0.1:
            learner.reset_learning_rate(lr)
        return learner
    raise AssertionError(kind)


def two_parameters(dtype=jnp.float64):
    return [
        Parameter(jnp.arange(6, dtype=dtype).reshape(2, 3) / 10, name="w"),
        Parameter(jnp.array([0.5, -0.5], dtype=dtype), name="b"),
    ]


def gradients_for(parameters, scale=1.0):
    return {p: jnp.full(p.shape, scale, dtype=p.dtype) for p in parameters}

