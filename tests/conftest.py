"""Shared fixtures for jax_learners tests."""

from __future__ import annotations

import jax
import jax.numpy as jnp
import pytest

# Learners support float32 and float64 parameters.
jax.config.update("jax_enable_x64", True)

from jax_learners.core import Parameter  # noqa: E402


@pytest.fixture
def zeros_2x2():
    return Parameter(jnp.zeros((2, 2), dtype=jnp.float32), name="w")


@pytest.fixture
def ones_2x2():
    return jnp.ones((2, 2), dtype=jnp.float32)
