"""Parameters, element-type dispatch and the error taxonomy."""

from jax_learners.core.errors import InvalidArgumentError, LearnerError, LogicError
from jax_learners.core.parameter import (
    SUPPORTED_DTYPES,
    Parameter,
    element_dtype,
    matrix_shape,
)

__all__ = [
    "Parameter",
    "SUPPORTED_DTYPES",
    "element_dtype",
    "matrix_shape",
    "LearnerError",
    "InvalidArgumentError",
    "LogicError",
]
