"""Static per-run learner options."""

from __future__ import annotations

import math
from dataclasses import dataclass, field

from jax_learners.core.errors import InvalidArgumentError
from jax_learners.schedules.schedule import TrainingParameterSchedule, as_schedule, learning_rate_schedule


def _zero_schedule() -> TrainingParameterSchedule:
    return learning_rate_schedule(0.0)


@dataclass
class AdditionalLearningOptions:
    """Regularization, clipping and noise knobs shared by every learner.

    Attributes:
        l1_regularization_weight: Strength of the L1 proximal shrinkage
            applied after each update (per sample).
        l2_regularization_weight: Strength of the L2 term added to the
            gradient before each update (per sample).
        gaussian_noise_injection_std_dev: Schedule (or constant) for the
            standard deviation of noise added to parameters after each
            update.
        gradient_clipping_threshold_per_sample: Per-sample gradient
            magnitude limit; ``inf`` disables clipping.
        gradient_clipping_with_truncation: Clamp elements when true,
            rescale by Frobenius norm otherwise.
        noise_injection_seed: Initial noise seed; random when ``None``.
        check_for_nans: Fail fast when a parameter or auxiliary tensor
            contains NaN. Expensive, meant for debugging.

    """

    l1_regularization_weight: float = 0.0
    l2_regularization_weight: float = 0.0
    gaussian_noise_injection_std_dev: TrainingParameterSchedule | float = field(default_factory=_zero_schedule)
    gradient_clipping_threshold_per_sample: float = math.inf
    gradient_clipping_with_truncation: bool = True
    noise_injection_seed: int | None = None
    check_for_nans: bool = False

    def __post_init__(self) -> None:
        if self.l1_regularization_weight < 0 or self.l2_regularization_weight < 0:
            raise InvalidArgumentError("Regularization weights must be non-negative.")
        threshold = self.gradient_clipping_threshold_per_sample
        if math.isnan(threshold) or threshold < 0:
            raise InvalidArgumentError(f"Gradient clipping threshold must be non-negative, got {threshold}.")
        if self.noise_injection_seed is not None and self.noise_injection_seed < 0:
            raise InvalidArgumentError("Noise injection seed must be non-negative.")
        self.gaussian_noise_injection_std_dev = as_schedule(self.gaussian_noise_injection_std_dev)

    @property
    def clipping_enabled(self) -> bool:
        return not math.isinf(self.gradient_clipping_threshold_per_sample)
