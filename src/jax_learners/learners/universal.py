"""Learner driven by a user-supplied update computation.

The update is an ordinary JAX-traceable function. At construction it is
traced once with ``jax.make_jaxpr`` to check that it actually reads every
parameter (a hard error otherwise) and every gradient (a warning
otherwise), then compiled with ``jax.jit``.

Each ``update`` call binds the incoming gradients to their placeholders
and evaluates the computation once for all parameters jointly. No
clipping, regularization or noise is applied; the computation owns the
whole step.

References:
    - Jaxprs: https://jax.readthedocs.io/en/latest/jaxpr.html

"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Mapping, Sequence
from typing import Any

import jax
import jax.numpy as jnp
from jax import Array

from jax_learners.core.errors import InvalidArgumentError, LogicError
from jax_learners.core.parameter import Parameter, element_dtype
from jax_learners.learners.base import LearnerBase, LearnerKind
from jax_learners.progress.writers import ProgressWriter
from jax_learners.schedules.schedule import learning_rate_schedule

logger = logging.getLogger(__name__)

ParameterUpdateFunction = Callable[[Array, Array], Array]
UpdateGraph = Callable[[tuple[Array, ...], tuple[Array, ...]], Sequence[Array]]


class GradientPlaceholder:
    """Slot holding the current gradient of one parameter.

    Starts zero-filled with the parameter's shape and dtype; the learner
    overwrites ``value`` before each evaluation of the update computation.
    """

    def __init__(self, shape: tuple[int, ...], dtype: Any, name: str = "gradient"):
        self.name = name
        self.value = jnp.zeros(shape, dtype=element_dtype(dtype))

    @classmethod
    def like(cls, parameter: Parameter) -> GradientPlaceholder:
        return cls(parameter.shape, parameter.dtype, name=f"{parameter.name or parameter.uid}_gradient")

    @property
    def shape(self) -> tuple[int, ...]:
        return tuple(self.value.shape)

    def bind(self, value: Array) -> None:
        value = jnp.asarray(value, dtype=self.value.dtype)
        if value.shape != self.value.shape:
            raise InvalidArgumentError(
                f"Gradient of shape {value.shape} cannot be bound to placeholder '{self.name}' "
                f"of shape {self.value.shape}."
            )
        self.value = value

    def __repr__(self) -> str:
        return f"GradientPlaceholder(name={self.name!r}, shape={self.shape})"


def _referenced_inputs(fn: Callable[..., Any], *args: Any) -> list[bool]:
    """For every flattened input of ``fn(*args)``, whether the computation reads it."""
    jaxpr = jax.make_jaxpr(fn)(*args).jaxpr
    used = {id(v) for eqn in jaxpr.eqns for v in eqn.invars}
    used.update(id(v) for v in jaxpr.outvars)
    return [id(v) in used for v in jaxpr.invars]


class UniversalLearner(LearnerBase):
    """Learner whose whole update step is a user computation.

    Args:
        parameters: Parameters to train.
        gradients: One placeholder per parameter, paired by position.
        update_graph: ``update_graph(values, gradients) -> new_values``,
            taking and returning tuples in parameter order.
        progress_writers: Progress sinks.

    Raises:
        LogicError: If the counts differ, the computation does not read a
            parameter, or its outputs do not match the parameters.

    """

    kind = LearnerKind.UNIVERSAL

    def __init__(
        self,
        parameters: Iterable[Parameter],
        gradients: Sequence[GradientPlaceholder],
        update_graph: UpdateGraph,
        progress_writers: Iterable[ProgressWriter] = (),
    ):
        super().__init__(parameters, learning_rate_schedule(1.0), progress_writers=progress_writers)
        self._gradient_placeholders = dict(self._validate(list(gradients), update_graph))
        self._update_graph = jax.jit(update_graph)

    @classmethod
    def from_parameter_update(
        cls,
        parameters: Iterable[Parameter],
        parameter_update: ParameterUpdateFunction,
        progress_writers: Iterable[ProgressWriter] = (),
    ) -> UniversalLearner:
        """Build the joint update from a per-parameter ``(value, gradient) -> new_value``."""
        parameters = list(parameters)
        gradients = [GradientPlaceholder.like(p) for p in parameters]

        def update_graph(values: tuple[Array, ...], grads: tuple[Array, ...]) -> tuple[Array, ...]:
            return tuple(parameter_update(v, g) for v, g in zip(values, grads))

        return cls(parameters, gradients, update_graph, progress_writers=progress_writers)

    def _validate(
        self,
        gradients: list[GradientPlaceholder],
        update_graph: UpdateGraph,
    ) -> list[tuple[Parameter, GradientPlaceholder]]:
        parameters = self.parameters
        if len(parameters) != len(gradients):
            raise LogicError(
                f"Number of parameters ({len(parameters)}) does not match number of gradients ({len(gradients)})"
            )
        for parameter, placeholder in zip(parameters, gradients):
            if placeholder.shape != parameter.shape:
                raise LogicError(f"Gradient placeholder {placeholder!r} does not match parameter {parameter!r}.")

        values = tuple(p.value for p in parameters)
        grads = tuple(g.value for g in gradients)
        referenced = _referenced_inputs(update_graph, values, grads)
        n = len(parameters)
        for parameter, param_used, grad_used in zip(parameters, referenced[:n], referenced[n:]):
            if not param_used:
                raise LogicError(f"Update function does not contain the parameter {parameter!r} in its computation")
            if not grad_used:
                logger.warning(
                    f"Update function does not contain the gradient for parameter {parameter!r} in its computation"
                )

        outputs = jax.eval_shape(update_graph, values, grads)
        if not isinstance(outputs, (tuple, list)) or len(outputs) != n:
            raise LogicError(f"Update function must return one new value for each of the {n} parameters.")
        for parameter, output in zip(parameters, outputs):
            if tuple(output.shape) != parameter.shape:
                raise LogicError(
                    f"Update function returns shape {tuple(output.shape)} for parameter {parameter!r}."
                )
        return list(zip(parameters, gradients))

    def gradient_placeholder(self, parameter: Parameter) -> GradientPlaceholder:
        return self._gradient_placeholders[parameter]

    def _smoothed_gradient_shape(self, parameter: Parameter) -> tuple[int, ...]:
        return (0,)

    def _update_parameter(
        self,
        parameter: Parameter,
        gradient: Array,
        smoothed_gradient: Array,
        minibatch_size: int,
    ) -> tuple[Array, Array]:
        raise LogicError("Shouldn't trigger single element update in universal learner.")

    def update(
        self,
        gradients: Mapping[Parameter, Array],
        minibatch_size: int,
        is_sweep_end: bool = False,
    ) -> bool:
        """Bind ``gradients`` and evaluate the update computation once.

        A parameter without a gradient keeps its previously bound gradient
        and a warning is logged.
        """
        self._report_training_parameter_value(self.learning_rate_schedule, "Learning rate")

        if self.learning_rate_per_sample(minibatch_size) == 0.0:
            return False

        if minibatch_size == 0:
            raise InvalidArgumentError("Learner.update() cannot perform an update with an empty minibatch.")

        for parameter in self.parameters:
            if parameter not in gradients:
                logger.warning(f"Parameter {parameter!r} not found in the gradients given to the universal learner.")
                continue
            self._gradient_placeholders[parameter].bind(gradients[parameter])

        values = tuple(p.value for p in self.parameters)
        grads = tuple(self._gradient_placeholders[p].value for p in self.parameters)
        new_values = self._update_graph(values, grads)

        for parameter, new_value in zip(self.parameters, new_values):
            parameter.value = new_value
            parameter.record_value_update()

        self._sample_count += minibatch_size
        self._minibatch_count += 1
        if is_sweep_end:
            self._sweep_count += 1
        return True
