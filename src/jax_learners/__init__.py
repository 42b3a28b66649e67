"""JAX Learners: stateful first-order learners with schedules and checkpoints.

Modules:
    core: Parameters, element types, error taxonomy
    schedules: Learning rate and momentum schedules tied to a reference minibatch size
    kernels: Jitted update recurrences, clipping and regularization
    learners: SGD, momentum, Nesterov, AdaGrad, AdaDelta, FSAdaGrad, Adam, RMSProp, universal
    checkpoint: Versioned learner state records and .npz files
    progress: Progress writers for reported hyperparameter values
    random: Seeded noise for parameter noise injection
"""

__version__ = "0.1.0"
