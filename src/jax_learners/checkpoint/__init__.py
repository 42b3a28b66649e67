"""Versioned checkpoint records and their ``.npz`` file form."""

from jax_learners.checkpoint.records import (
    TYPE_KEY,
    VERSION_KEY,
    checkpoint_load,
    checkpoint_save,
    flatten_record,
    unflatten_record,
    validate_record,
)

__all__ = [
    "VERSION_KEY",
    "TYPE_KEY",
    "validate_record",
    "flatten_record",
    "unflatten_record",
    "checkpoint_save",
    "checkpoint_load",
]
