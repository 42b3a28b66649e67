"""Trainable parameters and element-type dispatch.

JAX arrays are immutable, so a ``Parameter`` is the mutable handle a model
shares with its learners: the learner rebinds ``.value`` after every step
and bumps ``.version`` so cached forward computations can tell the value
moved.

References:
    - JAX arrays: https://jax.readthedocs.io/en/latest/key-concepts.html#jax-arrays-jax-array
    - Default dtypes and x64: https://jax.readthedocs.io/en/latest/default_dtypes.html

"""

from __future__ import annotations

import itertools
import math
from collections.abc import Sequence

import jax.numpy as jnp
import numpy as np
from jax import Array

from jax_learners.core.errors import LogicError

SUPPORTED_DTYPES = (np.dtype(np.float32), np.dtype(np.float64))

_uid_counter = itertools.count()


class Parameter:
    """A named, shaped, typed tensor owned by a model and updated by learners.

    Identity (hashing and equality) is the ``uid``, which is assigned once
    and never changes, so a parameter can key dictionaries across updates.

    Examples:
        >>> import jax.numpy as jnp
        >>> p = Parameter(jnp.zeros((2, 2), dtype=jnp.float32), name="w")
        >>> p.shape
        (2, 2)
        >>> p.uid.startswith("Parameter")
        True

    """

    def __init__(self, value: Array, name: str = "", uid: str | None = None):
        self._value = jnp.asarray(value)
        self.name = name
        self.uid = uid if uid is not None else f"Parameter{next(_uid_counter)}"
        self.version = 0

    @property
    def value(self) -> Array:
        return self._value

    @value.setter
    def value(self, new_value: Array) -> None:
        new_value = jnp.asarray(new_value)
        if new_value.shape != self._value.shape:
            raise LogicError(
                f"Cannot assign a value of shape {new_value.shape} to parameter "
                f"'{self.name}' (uid={self.uid}) of shape {self._value.shape}."
            )
        self._value = new_value.astype(self._value.dtype)

    @property
    def shape(self) -> tuple[int, ...]:
        return tuple(self._value.shape)

    @property
    def dtype(self) -> np.dtype:
        return np.dtype(self._value.dtype)

    @property
    def device_platform(self) -> str:
        """Platform name ("cpu", "gpu", "tpu") of the device holding the value."""
        devices = self._value.devices()
        return next(iter(devices)).platform

    def record_value_update(self) -> None:
        """Mark the value as changed so dependent caches are invalidated."""
        self.version += 1

    def __hash__(self) -> int:
        return hash(self.uid)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Parameter):
            return NotImplemented
        return self.uid == other.uid

    def __repr__(self) -> str:
        return f"Parameter(name={self.name!r}, uid={self.uid!r}, shape={self.shape}, dtype={self.dtype})"


def element_dtype(dtype: np.dtype | type) -> np.dtype:
    """Validate that ``dtype`` is a supported floating precision.

    Every numeric routine is written once and instantiated for 32- and
    64-bit floats; anything else is an internal error.

    Args:
        dtype: Element type of a parameter or auxiliary tensor.

    Returns:
        The normalized numpy dtype.

    Raises:
        LogicError: If the dtype is not float32 or float64.

    Examples:
        >>> import numpy as np
        >>> element_dtype(np.float32)
        dtype('float32')

    """
    dtype = np.dtype(dtype)
    if dtype not in SUPPORTED_DTYPES:
        raise LogicError(f"Unsupported DataType {dtype.name}")
    return dtype


def matrix_shape(shape: Sequence[int]) -> tuple[int, int]:
    """Two-dimensional view of a tensor shape.

    The leading axis becomes the rows and the remaining axes are folded
    into the columns. Scalars are ``(1, 1)`` and vectors ``(n, 1)``.

    Examples:
        >>> matrix_shape((4, 3, 2))
        (4, 6)
        >>> matrix_shape((5,))
        (5, 1)
        >>> matrix_shape(())
        (1, 1)

    """
    if len(shape) == 0:
        return (1, 1)
    return (int(shape[0]), int(math.prod(shape[1:])))
