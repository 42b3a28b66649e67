"""Versioned checkpoint records.

A checkpoint is an ordered ``dict`` whose values are scalars, strings,
arrays, nested records or lists of those. Every record carries a
``version`` and a ``type`` tag which are validated before anything is
restored from it.

On disk a record is a flat ``.npz`` archive: nested keys are joined with
``/`` and list items are addressed as ``#<index>``. Arrays keep their
dtype and shape exactly, 0-d scalars included, so restoring reproduces
the saved state bit for bit. Only string leaves come back as ``str``.

References:
    - NumPy npz format: https://numpy.org/doc/stable/reference/generated/numpy.savez.html

"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from pathlib import Path
from typing import Any

import numpy as np

from jax_learners.core.errors import LogicError

logger = logging.getLogger(__name__)

VERSION_KEY = "version"
TYPE_KEY = "type"

_SEP = "/"
_LIST_PREFIX = "#"


def validate_record(
    record: Mapping[str, Any],
    required_keys: Iterable[str],
    type_value: str,
    current_version: int,
) -> int:
    """Check a record's schema and return its version.

    Args:
        record: The record to check.
        required_keys: Keys that must be present.
        type_value: Expected value of the ``type`` key.
        current_version: Newest version this code can read.

    Returns:
        The version stored in the record.

    Raises:
        LogicError: If a key is missing, the type tag differs or the
            version is newer than ``current_version``.

    Examples:
        >>> validate_record({"version": 1, "type": "Learner", "a": 0}, ["a"], "Learner", 2)
        1

    """
    missing = [key for key in (VERSION_KEY, TYPE_KEY, *required_keys) if key not in record]
    if missing:
        raise LogicError(f"Required key(s) {missing} not found in the {type_value} record.")

    recorded_type = str(record[TYPE_KEY])
    if recorded_type != type_value:
        raise LogicError(f"Record type '{recorded_type}' does not match the expected type '{type_value}'.")

    version = int(record[VERSION_KEY])
    if version > current_version:
        raise LogicError(
            f"Unsupported {type_value} record version {version} "
            f"(the most recent supported version is {current_version})."
        )
    return version


def _flatten(value: Any, prefix: str, out: dict[str, np.ndarray]) -> None:
    if isinstance(value, Mapping):
        if not value:
            raise LogicError(f"Cannot store the empty record at '{prefix}'.")
        for key, item in value.items():
            key = str(key)
            if _SEP in key or key.startswith(_LIST_PREFIX):
                raise LogicError(f"Record key '{key}' cannot be stored in a flat archive.")
            _flatten(item, f"{prefix}{_SEP}{key}" if prefix else key, out)
    elif isinstance(value, (list, tuple)):
        if not value:
            raise LogicError(f"Cannot store the empty list at '{prefix}'.")
        for index, item in enumerate(value):
            _flatten(item, f"{prefix}{_SEP}{_LIST_PREFIX}{index}", out)
    else:
        out[prefix] = np.asarray(value)


def flatten_record(record: Mapping[str, Any]) -> dict[str, np.ndarray]:
    """Flatten a nested record into ``path -> array`` entries.

    Examples:
        >>> flat = flatten_record({"a": 1, "b": {"c": [2.0, 3.0]}})
        >>> sorted(flat)
        ['a', 'b/c/#0', 'b/c/#1']

    """
    out: dict[str, np.ndarray] = {}
    _flatten(record, "", out)
    return out


def _leaf(array: np.ndarray) -> Any:
    # Numeric scalars stay 0-d arrays so their dtype survives the round trip.
    if array.ndim == 0 and array.dtype.kind in "US":
        return str(array)
    return array


def _rebuild(node: dict[str, Any]) -> Any:
    if node and all(k.startswith(_LIST_PREFIX) for k in node):
        items = sorted(node.items(), key=lambda kv: int(kv[0][len(_LIST_PREFIX) :]))
        return [_rebuild(v) if isinstance(v, dict) else v for _, v in items]
    return {k: _rebuild(v) if isinstance(v, dict) else v for k, v in node.items()}


def unflatten_record(flat: Mapping[str, np.ndarray]) -> dict[str, Any]:
    """Inverse of ``flatten_record``; insertion order of ``flat`` is kept."""
    root: dict[str, Any] = {}
    for path, array in flat.items():
        node = root
        *parents, leaf = path.split(_SEP)
        for part in parents:
            node = node.setdefault(part, {})
        node[leaf] = _leaf(np.asarray(array))
    return _rebuild(root)


def checkpoint_save(record: Mapping[str, Any], path: str | Path) -> Path:
    """Write a checkpoint record to an ``.npz`` file.

    Args:
        record: Record produced by ``Learner.create_checkpoint``.
        path: Destination file.

    Returns:
        The path written.

    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    flat = flatten_record(record)
    with path.open("wb") as f:
        np.savez(f, **flat)
    logger.info(f"Saved checkpoint record ({len(flat)} entries) to {path}")
    return path


def checkpoint_load(path: str | Path) -> dict[str, Any]:
    """Read a checkpoint record written by ``checkpoint_save``.

    Raises:
        FileNotFoundError: If ``path`` does not exist.

    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Checkpoint not found: {path}")
    with np.load(path, allow_pickle=False) as data:
        flat = {name: data[name] for name in data.files}
    logger.info(f"Loaded checkpoint record ({len(flat)} entries) from {path}")
    return unflatten_record(flat)
