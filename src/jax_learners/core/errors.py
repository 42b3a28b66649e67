"""Error taxonomy for learners.

Two kinds of failure reach callers:

- ``InvalidArgumentError``: the caller passed something unusable (empty or
  duplicated parameter list, an empty minibatch). Fixing the input fixes
  the call.
- ``LogicError``: an internal invariant broke (unsupported element type,
  inconsistent checkpoint, out-of-range hyperparameters). These abort the
  training step and are never retried at this layer.

Both derive from ``LearnerError`` and from the matching builtin, so
``except ValueError`` keeps working for argument errors.
"""

from __future__ import annotations


class LearnerError(Exception):
    """Base class for all learner failures."""


class InvalidArgumentError(LearnerError, ValueError):
    """Recoverable error caused by a bad argument."""


class LogicError(LearnerError, RuntimeError):
    """Fatal internal error."""
