"""Reproducible randomness for noise injection.

A learner's noise stream is defined by an integer seed counter that is
consumed once per draw and persisted in checkpoints.
"""

from jax_learners.random.prng import (
    MAX_SEED,
    create_key,
    gaussian_noise,
    generate_random_seed,
)

__all__ = [
    "MAX_SEED",
    "create_key",
    "gaussian_noise",
    "generate_random_seed",
]
