"""First-order learners and their shared update pipeline.

Stateful counterpart of functional optimizers: each learner owns its
parameters' auxiliary state, advances training counters, and can be
checkpointed and restored exactly.
"""

from jax_learners.learners.algorithms import (
    AdaDeltaLearner,
    AdaGradLearner,
    AdamLearner,
    FSAdaGradLearner,
    MomentumSGDLearner,
    NesterovLearner,
    RMSPropLearner,
    SGDLearner,
)
from jax_learners.learners.base import CHECKPOINT_VERSION, LearnerBase, LearnerKind
from jax_learners.learners.factory import (
    LEARNER_TYPES,
    adadelta_learner,
    adagrad_learner,
    adam_learner,
    create_learner,
    fsadagrad_learner,
    momentum_sgd_learner,
    nesterov_learner,
    rmsprop_learner,
    sgd_learner,
    universal_learner,
)
from jax_learners.learners.options import AdditionalLearningOptions
from jax_learners.learners.universal import GradientPlaceholder, UniversalLearner

__all__ = [
    "LearnerBase",
    "LearnerKind",
    "CHECKPOINT_VERSION",
    "AdditionalLearningOptions",
    "SGDLearner",
    "MomentumSGDLearner",
    "NesterovLearner",
    "AdaGradLearner",
    "AdaDeltaLearner",
    "FSAdaGradLearner",
    "AdamLearner",
    "RMSPropLearner",
    "UniversalLearner",
    "GradientPlaceholder",
    "LEARNER_TYPES",
    "create_learner",
    "sgd_learner",
    "momentum_sgd_learner",
    "nesterov_learner",
    "adagrad_learner",
    "adadelta_learner",
    "fsadagrad_learner",
    "adam_learner",
    "rmsprop_learner",
    "universal_learner",
]
