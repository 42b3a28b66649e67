"""Tests for jax_learners.learners module."""

from __future__ import annotations

import math
import typing

import jax.numpy as jnp
import numpy as np
import pytest

from jax_learners import learners
from jax_learners.core import InvalidArgumentError, LogicError, Parameter
from jax_learners.learners import (
    LEARNER_TYPES,
    AdaDeltaLearner,
    AdaGradLearner,
    AdamLearner,
    AdditionalLearningOptions,
    FSAdaGradLearner,
    LearnerKind,
    MomentumSGDLearner,
    NesterovLearner,
    RMSPropLearner,
    SGDLearner,
    adam_learner,
    create_learner,
    rmsprop_learner,
    sgd_learner,
    universal_learner,
)
from jax_learners.progress import MemoryProgressWriter
from jax_learners.schedules import learning_rate_per_minibatch_schedule, learning_rate_schedule, momentum_schedule

from helpers import gradients_for, make_learner, two_parameters


class TestScenarios:
    """Single-step results of the basic learners."""

    def test_sgd(self, zeros_2x2, ones_2x2):
        learner = SGDLearner([zeros_2x2], learning_rate_schedule(0.1))
        assert learner.update({zeros_2x2: ones_2x2}, 1)
        assert jnp.allclose(zeros_2x2.value, -0.1)
        assert learner.smoothed_gradient(zeros_2x2).shape == (0,)

    def test_adagrad(self, zeros_2x2, ones_2x2):
        learner = AdaGradLearner([zeros_2x2], 0.1)
        learner.update({zeros_2x2: ones_2x2}, 1)
        assert jnp.allclose(learner.smoothed_gradient(zeros_2x2), 1.0)
        assert jnp.allclose(zeros_2x2.value, -0.1)

    def test_truncation_clipping(self, zeros_2x2):
        options = AdditionalLearningOptions(gradient_clipping_threshold_per_sample=0.5)
        learner = SGDLearner([zeros_2x2], 0.1, options=options)
        grad = jnp.array([[5.0, -5.0], [5.0, -5.0]], dtype=jnp.float32)
        clipped = learner.preprocess_gradient(zeros_2x2, grad, 2)
        assert jnp.allclose(jnp.abs(clipped), 1.0)
        learner.update({zeros_2x2: grad}, 2)
        assert jnp.allclose(zeros_2x2.value, jnp.array([[-0.1, 0.1], [-0.1, 0.1]]))

    def test_norm_clipping(self):
        p = Parameter(jnp.zeros(2))
        options = AdditionalLearningOptions(
            gradient_clipping_threshold_per_sample=1.0, gradient_clipping_with_truncation=False
        )
        learner = SGDLearner([p], 1.0, options=options)
        learner.update({p: jnp.array([3.0, 4.0])}, 1)
        assert jnp.allclose(p.value, jnp.array([-0.6, -0.8]))

    def test_momentum(self):
        p = Parameter(jnp.zeros(2))
        learner = MomentumSGDLearner([p], 0.1, 0.9)
        learner.update({p: jnp.ones(2)}, 1)
        assert jnp.allclose(learner.smoothed_gradient(p), 0.1)
        assert jnp.allclose(p.value, -0.01)

    def test_momentum_converted_to_minibatch_size(self):
        p = Parameter(jnp.zeros(1))
        learner = MomentumSGDLearner([p], learning_rate_per_minibatch_schedule(1.0), 0.9, unit_gain=False)
        assert math.isclose(learner.momentum_for_minibatch(2), 0.81)
        learner.update({p: jnp.ones(1)}, 2)
        learner.update({p: jnp.ones(1)}, 2)
        assert jnp.allclose(learner.smoothed_gradient(p), 1.81)

    def test_nesterov(self):
        p = Parameter(jnp.zeros(2))
        learner = NesterovLearner([p], 0.1, 0.9)
        learner.update({p: jnp.ones(2)}, 1)
        assert jnp.allclose(p.value, -0.019)

    def test_fsadagrad(self):
        p = Parameter(jnp.zeros(3))
        learner = FSAdaGradLearner([p], 0.1, 0.9)
        learner.update({p: jnp.ones(3)}, 1)
        assert learner.smoothed_gradient(p).shape == (3, 2)
        assert 0 < learner.smoothed_count < 1e-5
        assert jnp.allclose(p.value, -0.01)

    def test_adam(self):
        p = Parameter(jnp.zeros(2))
        learner = AdamLearner([p], 0.01, 0.9, variance_momentum_schedule=momentum_schedule(0.999))
        learner.update({p: jnp.ones(2)}, 1)
        assert learner.smoothed_count == 1.0
        assert jnp.allclose(p.value, -0.01, atol=1e-6)

    def test_rmsprop(self):
        p = Parameter(jnp.zeros(2))
        learner = RMSPropLearner([p], 0.1, 0.9, 1.2, 0.5, 10.0, 1e-4)
        learner.update({p: jnp.ones(2)}, 1)
        assert learner.smoothed_count == 1.0
        assert learner.smoothed_gradient(p).shape == (2, 3)
        assert jnp.allclose(p.value, -0.1)

    def test_adadelta_moves_against_gradient(self):
        p = Parameter(jnp.zeros(2))
        learner = AdaDeltaLearner([p], 1.0)
        learner.update({p: jnp.ones(2)}, 1)
        assert bool(jnp.all(p.value < 0))

    def test_learning_rate_reference_size(self):
        p = Parameter(jnp.zeros(1))
        learner = SGDLearner([p], learning_rate_schedule(0.8, reference_minibatch_size=4))
        assert math.isclose(learner.learning_rate_per_sample(16), 0.2)
        learner.update({p: jnp.ones(1)}, 16)
        assert jnp.allclose(p.value, -0.2)


class TestAuxiliaryLayout:
    """Tests for auxiliary tensor shapes."""

    @pytest.mark.parametrize(
        ("kind", "shape"),
        [
            (LearnerKind.SGD, (0,)),
            (LearnerKind.MOMENTUM_SGD, (4, 3, 2)),
            (LearnerKind.NESTEROV, (4, 3, 2)),
            (LearnerKind.ADAGRAD, (4, 6)),
            (LearnerKind.ADADELTA, (4, 12)),
            (LearnerKind.FSADAGRAD, (4, 12)),
            (LearnerKind.ADAM, (4, 12)),
            (LearnerKind.RMSPROP, (4, 18)),
        ],
    )
    def test_shapes(self, kind, shape):
        p = Parameter(jnp.zeros((4, 3, 2)))
        learner = make_learner(kind, [p])
        assert learner.smoothed_gradient(p).shape == shape

    def test_scalar_and_vector_parameters(self):
        scalar = Parameter(jnp.array(1.0))
        vector = Parameter(jnp.zeros(5))
        learner = AdamLearner([scalar, vector], 0.1, 0.9)
        assert learner.smoothed_gradient(scalar).shape == (1, 2)
        assert learner.smoothed_gradient(vector).shape == (5, 2)

    def test_dtype_follows_parameter(self):
        p32 = Parameter(jnp.zeros(2, dtype=jnp.float32))
        p64 = Parameter(jnp.zeros(2, dtype=jnp.float64))
        learner = AdamLearner([p32, p64], 0.1, 0.9)
        assert learner.smoothed_gradient(p32).dtype == jnp.float32
        assert learner.smoothed_gradient(p64).dtype == jnp.float64
        learner.update({p32: jnp.ones(2), p64: jnp.ones(2)}, 1)
        assert p32.value.dtype == jnp.float32
        assert p64.value.dtype == jnp.float64

    def test_unknown_parameter_raises(self):
        learner = SGDLearner([Parameter(jnp.zeros(2))], 0.1)
        with pytest.raises(InvalidArgumentError, match="not trained"):
            learner.smoothed_gradient(Parameter(jnp.zeros(2)))


class TestUpdateContract:
    """Tests for the shared update pipeline."""

    @pytest.mark.parametrize("kind", list(LearnerKind))
    def test_zero_learning_rate_is_noop(self, kind):
        parameters = two_parameters()
        learner = make_learner(kind, parameters, lr=0.0)
        values = [np.asarray(p.value) for p in parameters]
        aux = [np.asarray(learner.smoothed_gradient(p)) for p in parameters]

        assert learner.update(gradients_for(parameters), 4) is False

        for p, before, aux_before in zip(parameters, values, aux):
            np.testing.assert_array_equal(np.asarray(p.value), before)
            np.testing.assert_array_equal(np.asarray(learner.smoothed_gradient(p)), aux_before)
            assert p.version == 0
        assert learner.total_number_of_samples_seen == 0
        assert learner.total_number_of_minibatches_seen == 0

    @pytest.mark.parametrize("kind", list(LearnerKind))
    def test_empty_minibatch_raises(self, kind):
        parameters = two_parameters()
        learner = make_learner(kind, parameters)
        values = [np.asarray(p.value) for p in parameters]

        with pytest.raises(InvalidArgumentError, match="empty minibatch"):
            learner.update(gradients_for(parameters), 0)

        for p, before in zip(parameters, values):
            np.testing.assert_array_equal(np.asarray(p.value), before)
        assert learner.total_number_of_minibatches_seen == 0

    @pytest.mark.parametrize("kind", list(LearnerKind))
    def test_counters(self, kind):
        parameters = two_parameters()
        learner = make_learner(kind, parameters)
        assert learner.update(gradients_for(parameters), 3)
        assert learner.update(gradients_for(parameters), 5, is_sweep_end=True)
        assert learner.total_number_of_samples_seen == 8
        assert learner.total_number_of_minibatches_seen == 2
        assert learner.total_number_of_sweeps_seen == 1
        assert all(p.version == 2 for p in parameters)

    def test_missing_gradient_raises(self):
        parameters = two_parameters()
        learner = SGDLearner(parameters, 0.1)
        with pytest.raises(InvalidArgumentError, match="No gradient"):
            learner.update({parameters[0]: jnp.ones((2, 3))}, 1)

    def test_wrong_gradient_shape_raises(self):
        p = Parameter(jnp.zeros(3))
        learner = SGDLearner([p], 0.1)
        with pytest.raises(InvalidArgumentError, match="does not match"):
            learner.update({p: jnp.ones(4)}, 1)

    def test_gradients_not_mutated(self):
        p = Parameter(jnp.zeros(2))
        options = AdditionalLearningOptions(gradient_clipping_threshold_per_sample=0.1)
        learner = SGDLearner([p], 0.1, options=options)
        grad = jnp.array([5.0, -5.0])
        gradients = {p: grad}
        learner.update(gradients, 1)
        assert gradients[p] is grad
        assert jnp.allclose(gradients[p], jnp.array([5.0, -5.0]))

    def test_empty_parameters_raise(self):
        with pytest.raises(InvalidArgumentError, match="must not be empty"):
            SGDLearner([], 0.1)

    def test_duplicate_parameters_raise(self):
        p = Parameter(jnp.zeros(2))
        with pytest.raises(InvalidArgumentError, match="duplicates"):
            SGDLearner([p, p], 0.1)

    def test_unsupported_dtype_raises(self):
        p = Parameter(jnp.zeros(2, dtype=jnp.int32))
        with pytest.raises(LogicError, match="Unsupported DataType"):
            SGDLearner([p], 0.1)

    def test_nan_check(self):
        p = Parameter(jnp.zeros(2))
        learner = SGDLearner([p], 0.1, options=AdditionalLearningOptions(check_for_nans=True))
        with pytest.raises(LogicError, match="NaNs"):
            learner.update({p: jnp.array([jnp.nan, 1.0])}, 1)

    def test_nan_check_disabled_by_default(self):
        p = Parameter(jnp.zeros(2))
        learner = SGDLearner([p], 0.1)
        assert learner.update({p: jnp.array([jnp.nan, 1.0])}, 1)
        assert bool(jnp.isnan(p.value[0]))


class TestRegularizationAndNoise:
    """Tests for L1, L2 and Gaussian noise injection."""

    def test_l2(self):
        p = Parameter(jnp.array([1.0]))
        options = AdditionalLearningOptions(l2_regularization_weight=0.5)
        learner = SGDLearner([p], 0.1, options=options)
        learner.update({p: jnp.zeros(1)}, 2)
        assert jnp.allclose(p.value, 0.9)

    def test_l1(self):
        p = Parameter(jnp.array([1.0, 0.05, -1.0]))
        options = AdditionalLearningOptions(l1_regularization_weight=1.0)
        learner = SGDLearner([p], 0.1, options=options)
        learner.update({p: jnp.zeros(3)}, 1)
        assert jnp.allclose(p.value, jnp.array([0.9, 0.0, -0.9]))

    def test_noise_consumes_seed(self):
        parameters = two_parameters()
        options = AdditionalLearningOptions(gaussian_noise_injection_std_dev=0.1, noise_injection_seed=5)
        learner = SGDLearner(parameters, 0.1, options=options)
        learner.update(gradients_for(parameters, 0.0), 1)
        assert learner.noise_injection_seed == 7
        assert not jnp.allclose(parameters[1].value, jnp.array([0.5, -0.5]))

    def test_noise_is_reproducible(self):
        options = AdditionalLearningOptions(gaussian_noise_injection_std_dev=0.1, noise_injection_seed=11)
        a, b = two_parameters(), two_parameters()
        SGDLearner(a, 0.1, options=options).update(gradients_for(a), 1)
        SGDLearner(b, 0.1, options=options).update(gradients_for(b), 1)
        for pa, pb in zip(a, b):
            np.testing.assert_array_equal(np.asarray(pa.value), np.asarray(pb.value))

    def test_no_noise_keeps_seed(self):
        p = Parameter(jnp.zeros(2))
        learner = SGDLearner([p], 0.1, options=AdditionalLearningOptions(noise_injection_seed=3))
        learner.update({p: jnp.ones(2)}, 1)
        assert learner.noise_injection_seed == 3

    def test_invalid_options(self):
        with pytest.raises(InvalidArgumentError):
            AdditionalLearningOptions(l1_regularization_weight=-1.0)
        with pytest.raises(InvalidArgumentError):
            AdditionalLearningOptions(gradient_clipping_threshold_per_sample=-0.5)


class TestValidation:
    """Tests for construction-time hyperparameter validation."""

    @pytest.mark.parametrize(
        ("gamma", "inc", "dec", "max_step", "min_step", "match"),
        [
            (1.0, 1.2, 0.5, 10.0, 1e-4, "gamma"),
            (0.0, 1.2, 0.5, 10.0, 1e-4, "gamma"),
            (0.9, 1.0, 0.5, 10.0, 1e-4, "inc"),
            (0.9, 1.2, 1.0, 10.0, 1e-4, "dec"),
            (0.9, 1.2, 0.5, 1e-4, 1e-3, "max"),
            (0.9, 1.2, 0.5, 10.0, 0.0, "min"),
        ],
    )
    def test_rmsprop_ranges(self, gamma, inc, dec, max_step, min_step, match):
        p = Parameter(jnp.zeros(2))
        with pytest.raises(LogicError, match=match):
            RMSPropLearner([p], 0.1, gamma, inc, dec, max_step, min_step)

    def test_rmsprop_fails_before_allocation(self, monkeypatch):
        calls = []
        monkeypatch.setattr(RMSPropLearner, "_allocate", staticmethod(lambda *args: calls.append(args)))
        with pytest.raises(LogicError):
            RMSPropLearner([Parameter(jnp.zeros(2))], 0.1, 1.0, 1.2, 0.5, 10.0, 1e-4)
        assert calls == []

    def test_adam_negative_epsilon(self):
        with pytest.raises(LogicError, match="Epsilon"):
            AdamLearner([Parameter(jnp.zeros(2))], 0.1, 0.9, epsilon=-1.0)


class TestScheduleReset:
    """Tests for reset_learning_rate and reset_smoothed_gradients."""

    def test_reset_twice(self):
        p = Parameter(jnp.zeros(1))
        learner = SGDLearner([p], 0.1)
        learner.update({p: jnp.ones(1)}, 10)

        schedule = learning_rate_schedule([0.5, 0.05], epoch_size=5)
        learner.reset_learning_rate(schedule)
        learner.reset_learning_rate(schedule)
        assert learner.learning_rate() == 0.5

        learner.update({p: jnp.ones(1)}, 5)
        assert learner.learning_rate() == 0.05

    def test_reset_to_constant(self):
        p = Parameter(jnp.zeros(1))
        learner = SGDLearner([p], learning_rate_schedule([0.5, 0.05], epoch_size=1))
        learner.update({p: jnp.ones(1)}, 3)
        learner.reset_learning_rate(0.2)
        assert learner.learning_rate() == 0.2

    def test_sweep_schedule(self):
        p = Parameter(jnp.zeros(1))
        learner = SGDLearner([p], learning_rate_schedule([0.5, 0.05], unit="sweep"))
        learner.update({p: jnp.ones(1)}, 100)
        assert learner.learning_rate() == 0.5
        learner.update({p: jnp.ones(1)}, 1, is_sweep_end=True)
        assert learner.learning_rate() == 0.05

    @pytest.mark.parametrize("kind", [LearnerKind.FSADAGRAD, LearnerKind.ADAM, LearnerKind.RMSPROP])
    def test_reset_smoothed_gradients(self, kind):
        parameters = two_parameters()
        learner = make_learner(kind, parameters)
        learner.update(gradients_for(parameters), 2)
        learner.reset_smoothed_gradients()
        for p in parameters:
            assert not bool(jnp.any(learner.smoothed_gradient(p)))
        assert learner.smoothed_count == 0.0
        assert learner.total_number_of_samples_seen == 2


class TestProgressReporting:
    """Tests for reporting hyperparameter values to progress writers."""

    def test_learning_rate_reported_on_change(self):
        p = Parameter(jnp.zeros(1))
        writer = MemoryProgressWriter()
        learner = SGDLearner([p], learning_rate_schedule([0.5, 0.05], epoch_size=2), progress_writers=[writer])
        learner.update({p: jnp.ones(1)}, 1)
        learner.update({p: jnp.ones(1)}, 1)
        learner.update({p: jnp.ones(1)}, 1)
        assert writer.records == [
            ("Learning rate [reference mbsize = 1]", 0.5),
            ("Learning rate [reference mbsize = 1]", 0.05),
        ]

    def test_momentum_reported(self):
        p = Parameter(jnp.zeros(1))
        writer = MemoryProgressWriter()
        learner = MomentumSGDLearner([p], 0.1, momentum_schedule(0.9, reference_minibatch_size=8))
        learner.add_progress_writers([writer])
        learner.update({p: jnp.ones(1)}, 1)
        assert ("Momentum [reference mbsize = 8]", 0.9) in writer.records

    def test_reporting_does_not_change_update(self):
        a, b = Parameter(jnp.zeros(2)), Parameter(jnp.zeros(2))
        AdamLearner([a], 0.1, 0.9, progress_writers=[MemoryProgressWriter()]).update({a: jnp.ones(2)}, 1)
        AdamLearner([b], 0.1, 0.9).update({b: jnp.ones(2)}, 1)
        np.testing.assert_array_equal(np.asarray(a.value), np.asarray(b.value))


class TestFactory:
    """Tests for the learner factory table and functions."""

    def test_table_covers_every_kind(self):
        assert set(LEARNER_TYPES) == set(LearnerKind)
        for kind, cls in LEARNER_TYPES.items():
            assert cls.kind is kind

    def test_create_learner_by_name(self):
        learner = create_learner("momentum_sgd", [Parameter(jnp.zeros(2))], 0.1, 0.9)
        assert isinstance(learner, MomentumSGDLearner)
        assert learner.learner_type == "MomentumSGDLearner"

    def test_unknown_kind(self):
        with pytest.raises(InvalidArgumentError, match="Unknown learner kind"):
            create_learner("lbfgs", [Parameter(jnp.zeros(2))], 0.1)

    def test_factory_functions(self):
        assert isinstance(sgd_learner([Parameter(jnp.zeros(2))], 0.1), SGDLearner)
        adam = adam_learner([Parameter(jnp.zeros(2))], 0.1, 0.9, adamax=True)
        assert adam.adamax
        rms = rmsprop_learner([Parameter(jnp.zeros(2))], 0.1, 0.9, 1.2, 0.5, 10.0, 1e-4, need_ave_multiplier=False)
        assert not rms.need_ave_multiplier
        universal = universal_learner([Parameter(jnp.zeros(2))], lambda p, g: p - g)
        assert universal.kind is LearnerKind.UNIVERSAL

    @pytest.mark.parametrize("kind", list(LearnerKind))
    def test_update_hook_is_annotated(self, kind):
        hints = typing.get_type_hints(LEARNER_TYPES[kind]._update_parameter)
        assert hints["parameter"] is Parameter
        assert hints["minibatch_size"] is int
        assert set(hints) == {"parameter", "gradient", "smoothed_gradient", "minibatch_size", "return"}

    def test_factory_functions_are_documented(self):
        factories = [getattr(learners, name) for name in learners.__all__ if name.endswith("_learner")]
        for factory in factories:
            assert factory.__doc__, factory.__name__
