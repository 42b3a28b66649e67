"""Time-indexed hyperparameter schedules.

Learning rates, momenta and noise levels are piecewise-constant curves
keyed by elapsed samples or sweeps, each tied to a reference minibatch
size so that training behaves the same for any minibatch size.
"""

from jax_learners.schedules.schedule import (
    DEFAULT_VARIANCE_TIME_CONSTANT,
    IGNORED_MINIBATCH_SIZE,
    ScheduleUnit,
    TrainingParameterSchedule,
    as_schedule,
    decay_rate_for_minibatch,
    default_variance_momentum_schedule,
    learning_rate_per_minibatch_schedule,
    learning_rate_per_sample,
    learning_rate_per_sample_schedule,
    learning_rate_schedule,
    momentum_as_time_constant_schedule,
    momentum_schedule,
    reanchor_schedule,
    time_constant_to_momentum,
)

__all__ = [
    "TrainingParameterSchedule",
    "ScheduleUnit",
    "IGNORED_MINIBATCH_SIZE",
    "DEFAULT_VARIANCE_TIME_CONSTANT",
    "learning_rate_schedule",
    "learning_rate_per_sample_schedule",
    "learning_rate_per_minibatch_schedule",
    "momentum_schedule",
    "momentum_as_time_constant_schedule",
    "default_variance_momentum_schedule",
    "time_constant_to_momentum",
    "learning_rate_per_sample",
    "decay_rate_for_minibatch",
    "reanchor_schedule",
    "as_schedule",
]
