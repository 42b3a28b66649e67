"""Fused update kernels for first-order learners.

Each kernel is a pure, jit-compiled function: it takes the parameter, the
gradient and the learner-owned auxiliary tensor and returns their new
values. Hyperparameters are traced scalars cast to the parameter's
precision, so one definition serves float32 and float64.

Auxiliary tensors use a matrix layout: a parameter of shape
``(d0, d1, ..., dk)`` is viewed as ``(d0, d1 * ... * dk)`` and algorithms
that keep several accumulators stack them as column blocks of that width.

References:
    - Sutskever et al. (2013), momentum and Nesterov acceleration:
      https://proceedings.mlr.press/v28/sutskever13.html
    - Duchi et al. (2011), AdaGrad: https://jmlr.org/papers/v12/duchi11a.html
    - Zeiler (2012), AdaDelta: https://arxiv.org/abs/1212.5701
    - Kingma & Ba (2014), Adam and AdaMax: https://arxiv.org/abs/1412.6980
    - Tieleman & Hinton (2012), RMSProp (lecture 6.5)
    - Parikh & Boyd (2014), proximal algorithms: https://web.stanford.edu/~boyd/papers/prox_algs.html

"""

from __future__ import annotations

from functools import partial

import jax
import jax.numpy as jnp
from jax import Array

from jax_learners.core.parameter import matrix_shape

ADAGRAD_FLOOR = 1e-16
RMSPROP_FLOOR = 1e-6
RMSPROP_INITIAL_STEP = 0.02
FSADAGRAD_MAX_WEIGHT = 10.0


def _scalar(value: float | Array, like: Array) -> Array:
    return jnp.asarray(value, dtype=like.dtype)


def _as_matrix(x: Array) -> Array:
    return x.reshape(matrix_shape(x.shape))


def _block(aux: Array, index: int, cols: int) -> Array:
    return aux[:, index * cols : (index + 1) * cols]


def _unit_gain_factor(momentum: Array, unit_gain: bool) -> Array:
    return (1 - momentum) if unit_gain else jnp.ones_like(momentum)


# ---------------------------------------------------------------------------
# Pre- and post-processing
# ---------------------------------------------------------------------------


def frobenius_norm(x: Array) -> Array:
    """Square root of the sum of squared elements.

    Examples:
        >>> import jax.numpy as jnp
        >>> float(frobenius_norm(jnp.array([[3.0, 4.0]])))
        5.0

    """
    return jnp.sqrt(jnp.sum(x * x))


@partial(jax.jit, static_argnames=("truncate",))
def clip_gradient(grad: Array, max_magnitude: float, truncate: bool = True) -> Array:
    """Limit a gradient to ``max_magnitude``.

    With ``truncate`` every element is clamped to
    ``[-max_magnitude, max_magnitude]``; otherwise the whole tensor is
    rescaled so its Frobenius norm does not exceed ``max_magnitude``.

    Examples:
        >>> import jax.numpy as jnp
        >>> clip_gradient(jnp.array([5.0, -5.0, 0.5]), 1.0).tolist()
        [1.0, -1.0, 0.5]

    """
    limit = _scalar(max_magnitude, grad)
    if truncate:
        return jnp.clip(grad, -limit, limit)
    norm = frobenius_norm(grad)
    factor = jnp.where(norm > limit, limit / jnp.where(norm > 0, norm, 1), 1)
    return grad * factor.astype(grad.dtype)


@jax.jit
def add_l2_regularization(grad: Array, param: Array, weight: float) -> Array:
    """``grad + weight * param``."""
    return grad + _scalar(weight, grad) * param


@jax.jit
def soft_threshold(x: Array, threshold: float) -> Array:
    """Proximal operator of the L1 norm.

    Shrinks every element towards zero by ``threshold`` and zeroes the
    elements whose magnitude is below it.

    Examples:
        >>> import jax.numpy as jnp
        >>> soft_threshold(jnp.array([1.0, -0.25, 0.5, -2.0]), 0.5).tolist()
        [0.5, 0.0, 0.0, -1.5]

    """
    t = _scalar(threshold, x)
    return jnp.where(jnp.abs(x) > t, x - jnp.sign(x) * t, jnp.zeros_like(x))


def has_nan(x: Array) -> bool:
    return bool(jnp.any(jnp.isnan(x)))


# ---------------------------------------------------------------------------
# Recurrences
# ---------------------------------------------------------------------------


@jax.jit
def sgd_update(param: Array, grad: Array, learning_rate: float) -> Array:
    """Plain gradient step ``param - learning_rate * grad``.

    Examples:
        >>> import jax.numpy as jnp
        >>> sgd_update(jnp.zeros(2), jnp.ones(2), 0.5).tolist()
        [-0.5, -0.5]

    """
    return param - _scalar(learning_rate, param) * grad


@partial(jax.jit, static_argnames=("unit_gain",))
def momentum_sgd_update(
    param: Array,
    grad: Array,
    smoothed: Array,
    learning_rate: float,
    momentum: float,
    unit_gain: bool = True,
) -> tuple[Array, Array]:
    """Heavy-ball momentum.

    ``smoothed = momentum * smoothed + gain * grad`` where ``gain`` is
    ``1 - momentum`` with unit gain and 1 otherwise, then
    ``param -= learning_rate * smoothed``.

    Returns:
        Tuple of (new_param, new_smoothed).

    """
    lr = _scalar(learning_rate, param)
    m = _scalar(momentum, param)
    new_smoothed = m * smoothed + _unit_gain_factor(m, unit_gain) * grad
    return param - lr * new_smoothed, new_smoothed


@partial(jax.jit, static_argnames=("unit_gain",))
def nesterov_update(
    param: Array,
    grad: Array,
    smoothed: Array,
    learning_rate: float,
    momentum: float,
    unit_gain: bool = True,
) -> tuple[Array, Array]:
    """Nesterov accelerated momentum.

    The accumulator follows the heavy-ball recurrence; the parameter step
    looks ahead along the updated accumulator:
    ``param -= learning_rate * (momentum * smoothed' + gain * grad)``.

    Returns:
        Tuple of (new_param, new_smoothed).

    """
    lr = _scalar(learning_rate, param)
    m = _scalar(momentum, param)
    gain = _unit_gain_factor(m, unit_gain)
    new_smoothed = m * smoothed + gain * grad
    return param - lr * (m * new_smoothed + gain * grad), new_smoothed


@partial(jax.jit, static_argnames=("need_ave_multiplier",))
def adagrad_update(
    param: Array,
    grad: Array,
    aux: Array,
    learning_rate: float,
    need_ave_multiplier: bool = True,
) -> tuple[Array, Array]:
    """AdaGrad with an optional average-multiplier normalization.

    The first column block accumulates squared gradients. The gradient is
    divided elementwise by ``sqrt(acc + floor)``; with
    ``need_ave_multiplier`` the step is rescaled by the mean of those
    per-element factors so the overall step size tracks the learning rate.
    A second block, when present, keeps the per-element factors.

    Returns:
        Tuple of (new_param, new_aux).

    """
    _, cols = matrix_shape(param.shape)
    g = _as_matrix(grad)
    acc = _block(aux, 0, cols) + g * g
    inv = 1 / jnp.sqrt(acc + _scalar(ADAGRAD_FLOOR, param))
    if need_ave_multiplier and inv.size > 0:
        ave_multiplier = jnp.mean(inv)
    else:
        ave_multiplier = jnp.ones((), dtype=param.dtype)

    step = (_scalar(learning_rate, param) / ave_multiplier) * (g * inv)
    new_param = param - step.reshape(param.shape)
    new_aux = jnp.concatenate([acc, inv], axis=1) if aux.shape[1] > cols else acc
    return new_param, new_aux


@jax.jit
def adadelta_update(
    param: Array,
    grad: Array,
    aux: Array,
    learning_rate: float,
    rho: float,
    epsilon: float,
) -> tuple[Array, Array]:
    """AdaDelta.

    Blocks: running average of squared gradients, running average of
    squared updates. The update is ``-RMS(dx) / RMS(g) * g`` scaled by the
    learning rate.

    Returns:
        Tuple of (new_param, new_aux).

    """
    _, cols = matrix_shape(param.shape)
    g = _as_matrix(grad)
    r = _scalar(rho, param)
    eps = _scalar(epsilon, param)

    sq_grad = r * _block(aux, 0, cols) + (1 - r) * g * g
    sq_delta = _block(aux, 1, cols)
    delta = -jnp.sqrt(sq_delta + eps) / jnp.sqrt(sq_grad + eps) * g
    sq_delta = r * sq_delta + (1 - r) * delta * delta

    new_param = param + (_scalar(learning_rate, param) * delta).reshape(param.shape)
    return new_param, jnp.concatenate([sq_grad, sq_delta], axis=1)


@partial(jax.jit, static_argnames=("unit_gain",))
def fsadagrad_update(
    param: Array,
    grad: Array,
    aux: Array,
    learning_rate: float,
    momentum: float,
    variance_momentum: float,
    target_denominator: float,
    unit_gain: bool = True,
) -> tuple[Array, Array]:
    """FSAdaGrad: momentum over a variance-normalized gradient.

    Blocks: smoothed squared gradient, smoothed (momentum) gradient.
    ``target_denominator`` is shared by all parameters of a step and
    turns the squared-gradient sum into an average; the resulting
    per-element weight is capped at ``FSADAGRAD_MAX_WEIGHT``.

    Returns:
        Tuple of (new_param, new_aux).

    """
    _, cols = matrix_shape(param.shape)
    g = _as_matrix(grad)
    m = _scalar(momentum, param)
    vm = _scalar(variance_momentum, param)

    variance = vm * _block(aux, 0, cols) + (1 - vm) * g * g
    nonzero = variance != 0
    weight = _scalar(target_denominator, param) / jnp.sqrt(jnp.where(nonzero, variance, 1))
    weight = jnp.minimum(weight, _scalar(FSADAGRAD_MAX_WEIGHT, param))
    g = jnp.where(nonzero, g * weight, g)

    mean = _block(aux, 1, cols)
    smoothed = m * mean + _unit_gain_factor(m, unit_gain) * g
    mean = jnp.where(m > 0, smoothed, mean)
    g = jnp.where(m > 0, smoothed, g)

    new_param = param - (_scalar(learning_rate, param) * g).reshape(param.shape)
    return new_param, jnp.concatenate([variance, mean], axis=1)


@partial(jax.jit, static_argnames=("unit_gain", "adamax"))
def adam_update(
    param: Array,
    grad: Array,
    aux: Array,
    learning_rate: float,
    momentum: float,
    variance_momentum: float,
    step: float,
    epsilon: float,
    unit_gain: bool = True,
    adamax: bool = False,
) -> tuple[Array, Array]:
    """Bias-corrected Adam, or AdaMax when ``adamax`` is set.

    Blocks: second moment (or infinity norm for AdaMax), first moment.
    ``step`` is the number of minibatches seen including this one and
    drives the bias correction.

    Returns:
        Tuple of (new_param, new_aux).

    """
    _, cols = matrix_shape(param.shape)
    g = _as_matrix(grad)
    m = _scalar(momentum, param)
    vm = _scalar(variance_momentum, param)
    t = _scalar(step, param)

    if adamax:
        variance = jnp.maximum(vm * _block(aux, 0, cols), jnp.abs(g))
        scale = variance
        correction = 1 / (1 - m**t)
    else:
        variance = vm * _block(aux, 0, cols) + (1 - vm) * g * g
        scale = jnp.sqrt(variance)
        correction = jnp.sqrt(1 - vm**t) / (1 - m**t)

    mean = m * _block(aux, 1, cols) + _unit_gain_factor(m, unit_gain) * g
    weight = correction / (scale + _scalar(epsilon, param))

    new_param = param - (_scalar(learning_rate, param) * mean * weight).reshape(param.shape)
    return new_param, jnp.concatenate([variance, mean], axis=1)


@partial(jax.jit, static_argnames=("need_ave_multiplier", "initialized"))
def rmsprop_update(
    param: Array,
    grad: Array,
    aux: Array,
    learning_rate: float,
    gamma: float,
    inc: float,
    dec: float,
    max_step: float,
    min_step: float,
    need_ave_multiplier: bool = True,
    initialized: bool = True,
) -> tuple[Array, Array]:
    """RMSProp with sign-adaptive per-element step sizes.

    Blocks: running average of squared gradients, sign of the previous
    gradient, current step size (and, in the four-block layout, the last
    per-element multiplier). A step grows by ``inc`` while the gradient
    sign repeats and shrinks by ``dec`` otherwise, bounded to
    ``[min_step, max_step]``. Before the learner is warmed up
    (``initialized`` false) the blocks restart from the current gradient.

    Returns:
        Tuple of (new_param, new_aux).

    """
    _, cols = matrix_shape(param.shape)
    g = _as_matrix(grad)
    gm = _scalar(gamma, param)

    if initialized:
        avars = _block(aux, 0, cols)
        signs = _block(aux, 1, cols)
        steps = _block(aux, 2, cols)
    else:
        avars = g * g
        signs = jnp.zeros_like(g)
        steps = jnp.full_like(g, RMSPROP_INITIAL_STEP)

    avars = gm * avars + (1 - gm) * g * g
    grad_sign = jnp.sign(g)
    steps = jnp.where(
        signs * grad_sign > 0,
        jnp.minimum(steps * _scalar(inc, param), _scalar(max_step, param)),
        jnp.maximum(steps * _scalar(dec, param), _scalar(min_step, param)),
    )
    multiplier = steps / jnp.sqrt(avars + _scalar(RMSPROP_FLOOR, param))
    if need_ave_multiplier and multiplier.size > 0:
        ave_multiplier = jnp.mean(multiplier)
    else:
        ave_multiplier = jnp.ones((), dtype=param.dtype)

    step = (_scalar(learning_rate, param) / ave_multiplier) * (g * multiplier)
    new_param = param - step.reshape(param.shape)

    blocks = [avars, grad_sign, steps]
    if aux.shape[1] > 3 * cols:
        blocks.append(multiplier)
    return new_param, jnp.concatenate(blocks, axis=1)
