"""Pure update kernels shared by all learners.

Gradient preprocessing (clipping, L2), parameter postprocessing (L1
proximal shrinkage) and the per-algorithm recurrences. Every kernel is
jit-compiled and returns new arrays instead of mutating its inputs.
"""

from jax_learners.kernels.updates import (
    ADAGRAD_FLOOR,
    FSADAGRAD_MAX_WEIGHT,
    RMSPROP_FLOOR,
    RMSPROP_INITIAL_STEP,
    adadelta_update,
    adagrad_update,
    adam_update,
    add_l2_regularization,
    clip_gradient,
    frobenius_norm,
    fsadagrad_update,
    has_nan,
    momentum_sgd_update,
    nesterov_update,
    rmsprop_update,
    sgd_update,
    soft_threshold,
)

__all__ = [
    "ADAGRAD_FLOOR",
    "FSADAGRAD_MAX_WEIGHT",
    "RMSPROP_FLOOR",
    "RMSPROP_INITIAL_STEP",
    "clip_gradient",
    "add_l2_regularization",
    "soft_threshold",
    "frobenius_norm",
    "has_nan",
    "sgd_update",
    "momentum_sgd_update",
    "nesterov_update",
    "adagrad_update",
    "adadelta_update",
    "fsadagrad_update",
    "adam_update",
    "rmsprop_update",
]
