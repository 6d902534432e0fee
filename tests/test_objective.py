"""Tests for the regularized training objective."""

import math

import pytest
import torch

from torch_chaincrf import (
    ChainCRF,
    EntropyRegularization,
    GaussianPrior,
    InvalidConfiguration,
    L1Prior,
    SumLattice,
    TrainingDiverged,
    TrainingObjective,
    make_regularization,
)


@pytest.fixture
def pos_crf(pos_tagging_data, randomize):
    crf = ChainCRF.from_instances(pos_tagging_data)
    return randomize(crf, seed=3, scale=0.5)


@pytest.fixture
def pos_instances(pos_crf, pos_tagging_data):
    return pos_crf.encode_training(pos_tagging_data)


def _autograd_objective(crf, instances, variance, unlabeled=(), entropy_weight=0.0):
    params = crf.params
    value = 0.0
    for instance in instances:
        gold = SumLattice(crf.graph, params, instance, labels=instance.labels)
        total = SumLattice(crf.graph, params, instance)
        value = value + gold.total_weight - total.total_weight
    for instance in unlabeled:
        value = value - entropy_weight * SumLattice(crf.graph, params, instance).entropy()
    for p in params.trainable_parameters().values():
        value = value - (p * p).sum() / (2.0 * variance)
    names, tensors = zip(*params.trainable_parameters().items())
    return value.item(), dict(zip(names, torch.autograd.grad(value, tensors)))


class TestRegularizationVariants:
    """Closed set of training modes."""

    @pytest.mark.parametrize(
        "name,kind",
        [
            ("l2", GaussianPrior),
            ("L1", L1Prior),
            ("entropy", EntropyRegularization),
            ("CRFTrainerByLabelLikelihood", GaussianPrior),
            ("CRFTrainerByL1LabelLikelihood", L1Prior),
            ("CRFTrainerByEntropyRegularization", EntropyRegularization),
        ],
    )
    def test_make_regularization(self, name, kind):
        """Mode names map to their variant, case-insensitively."""
        assert isinstance(make_regularization(name), kind)

    def test_parameters_are_passed_through(self):
        """Mode-specific parameters land on the variant."""
        reg = make_regularization("l1", variance=4.0, l1_weight=0.25)
        assert reg == L1Prior(weight=0.25, variance=4.0)
        reg = make_regularization("entropy", entropy_weight=2.0)
        assert reg.entropy_weight == 2.0

    def test_unknown_mode(self):
        """Unknown names fail at configuration time."""
        with pytest.raises(InvalidConfiguration, match="Unknown regularization mode: l3"):
            make_regularization("l3")

    @pytest.mark.parametrize("variance", [0.0, -1.0, float("inf"), float("nan")])
    def test_bad_variance(self, variance):
        """Variance must be positive and finite."""
        with pytest.raises(InvalidConfiguration, match="variance"):
            GaussianPrior(variance=variance)

    def test_bad_l1_weight(self):
        """L1 strength must be positive."""
        with pytest.raises(InvalidConfiguration):
            L1Prior(weight=0.0)

    def test_variant_passthrough(self):
        """An existing variant is returned unchanged."""
        reg = EntropyRegularization(entropy_weight=1.0)
        assert make_regularization(reg) is reg


class TestValueAndGradient:
    """Objective value and gradient against autograd."""

    def test_l2_matches_autograd(self, pos_crf, pos_instances):
        """Counts-based gradient equals autograd of the explicit objective."""
        objective = TrainingObjective(pos_crf.graph, pos_crf.params, GaussianPrior(10.0), pos_instances)
        value, gradient = objective.value_and_gradient()
        expected_value, expected_grad = _autograd_objective(pos_crf, pos_instances, 10.0)

        assert value == pytest.approx(expected_value, abs=1e-9)
        for name, grad in expected_grad.items():
            assert torch.allclose(gradient[name], grad, atol=1e-8), name

    def test_entropy_matches_autograd(self, pos_crf, pos_instances, unlabeled_positions):
        """The entropy term and its gradient are included for unlabeled data."""
        unlabeled = [pos_crf.encode(p) for p in unlabeled_positions]
        reg = EntropyRegularization(entropy_weight=0.5, variance=10.0)
        objective = TrainingObjective(pos_crf.graph, pos_crf.params, reg, pos_instances, unlabeled)
        value, gradient = objective.value_and_gradient()
        expected_value, expected_grad = _autograd_objective(
            pos_crf, pos_instances, 10.0, unlabeled, entropy_weight=0.5
        )

        assert value == pytest.approx(expected_value, abs=1e-9)
        for name, grad in expected_grad.items():
            assert torch.allclose(gradient[name], grad, atol=1e-8), name

    def test_l1_penalty_is_separate(self, pos_crf, pos_instances):
        """L1 mode keeps the smooth part and reports the L1 term via penalty()."""
        smooth = TrainingObjective(pos_crf.graph, pos_crf.params, GaussianPrior(10.0), pos_instances)
        l1 = TrainingObjective(
            pos_crf.graph, pos_crf.params, L1Prior(weight=0.5, variance=10.0), pos_instances
        )
        l1_norm = sum(p.abs().sum().item() for p in pos_crf.params.trainable_parameters().values())

        assert l1.uses_l1 and not smooth.uses_l1
        assert l1.value_and_gradient()[0] == pytest.approx(smooth.value_and_gradient()[0])
        assert l1.penalty() == pytest.approx(0.5 * l1_norm)
        assert l1.value() == pytest.approx(smooth.value() - 0.5 * l1_norm)
        assert smooth.penalty() == 0.0

    def test_likelihood_is_log_probability(self, pos_crf, pos_instances):
        """Without much prior the value is a sum of log-probabilities, hence below zero."""
        objective = TrainingObjective(pos_crf.graph, pos_crf.params, GaussianPrior(1e12), pos_instances)
        value, _ = objective.value_and_gradient()
        assert value < 0.0

    @pytest.mark.parametrize("num_workers", [2, 3, 8])
    def test_workers_agree(self, pos_crf, pos_instances, num_workers):
        """Sharded evaluation agrees with serial evaluation up to rounding."""
        serial = TrainingObjective(pos_crf.graph, pos_crf.params, GaussianPrior(), pos_instances)
        parallel = TrainingObjective(
            pos_crf.graph, pos_crf.params, GaussianPrior(), pos_instances, num_workers=num_workers
        )
        value_s, grad_s = serial.value_and_gradient()
        value_p, grad_p = parallel.value_and_gradient()
        assert value_p == pytest.approx(value_s, abs=1e-10)
        for name in grad_s:
            assert torch.allclose(grad_p[name], grad_s[name], atol=1e-10)

    def test_fixed_workers_deterministic(self, pos_crf, pos_instances):
        """Repeated evaluation with the same worker count is bit-identical."""
        objective = TrainingObjective(
            pos_crf.graph, pos_crf.params, GaussianPrior(), pos_instances, num_workers=2
        )
        first_value, first_grad = objective.value_and_gradient()
        second_value, second_grad = objective.value_and_gradient()
        assert first_value == second_value
        for name in first_grad:
            assert torch.equal(first_grad[name], second_grad[name])
        assert objective.evaluations == 2


class TestFailures:
    """Configuration and divergence errors."""

    def test_unlabeled_instance_in_labeled_set(self, pos_crf):
        """Every labeled instance needs labels."""
        instance = pos_crf.encode([["w=the"]])
        with pytest.raises(InvalidConfiguration, match="labeled instance 0 has no labels"):
            TrainingObjective(pos_crf.graph, pos_crf.params, GaussianPrior(), [instance])

    def test_gold_path_outside_graph(self, pos_crf):
        """A gold path the graph cannot produce is a data error."""
        instance = pos_crf.encode([["w=the"], ["w=dog"]], ["VERB", "DET"])
        objective = TrainingObjective(pos_crf.graph, pos_crf.params, GaussianPrior(), [instance])
        with pytest.raises(InvalidConfiguration, match="label path"):
            objective.value_and_gradient()

    def test_nan_feature_diverges(self, pos_crf, pos_instances):
        """A NaN feature value aborts with TrainingDiverged naming the instance."""
        bad = pos_crf.encode([{"w=the": math.nan}, {"w=dog": 1.0}], ["DET", "NOUN"])
        objective = TrainingObjective(
            pos_crf.graph, pos_crf.params, GaussianPrior(), list(pos_instances) + [bad]
        )
        objective.iteration = 7
        with pytest.raises(TrainingDiverged) as info:
            objective.value_and_gradient()
        assert info.value.instance_index == len(pos_instances)
        assert info.value.iteration == 7
        assert "iteration=7" in str(info.value)

    def test_unsupported_regularization(self, pos_crf, pos_instances):
        """Anything outside the closed set is rejected."""
        with pytest.raises(InvalidConfiguration, match="unsupported regularization"):
            TrainingObjective(pos_crf.graph, pos_crf.params, "l2", pos_instances)

    def test_bad_worker_count(self, pos_crf, pos_instances):
        """num_workers must be a positive integer."""
        with pytest.raises(InvalidConfiguration, match="num_workers"):
            TrainingObjective(pos_crf.graph, pos_crf.params, GaussianPrior(), pos_instances, num_workers=0)
