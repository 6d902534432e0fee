"""
Pytest configuration for torch-chaincrf tests.

IMPORTANT: CPU-ONLY TESTING
---------------------------
Everything in torch-chaincrf runs on CPU in float64. All tests should:
1. Use CPU tensors (the default)
2. Seed randomness with torch.manual_seed
3. Build models through the fixtures below rather than sharing mutable state
"""

import itertools
import math

import pytest
import torch

from torch_chaincrf import ChainCRF
from torch_chaincrf.lattice import transition_weights


@pytest.fixture(autouse=True)
def ensure_cpu_default():
    """Verify tensors are created on CPU by default."""
    assert torch.tensor([1.0]).device.type == "cpu", "Default device should be CPU"
    yield


# =============================================================================
# Toy datasets
# =============================================================================


def _pos(*names):
    return {name: 1.0 for name in names}


@pytest.fixture
def ab_pattern_data():
    """Three length-4 sequences over {A, B}; B always follows two consecutive A's.

    A positions carry ``w=a``; a B right after ``A A`` carries ``after_aa``,
    any other B carries ``w=b``.
    """
    return [
        ([_pos("w=a"), _pos("w=a"), _pos("after_aa"), _pos("w=a")], ["A", "A", "B", "A"]),
        ([_pos("w=a"), _pos("w=a"), _pos("after_aa"), _pos("w=b")], ["A", "A", "B", "B"]),
        ([_pos("w=b"), _pos("w=a"), _pos("w=a"), _pos("after_aa")], ["B", "A", "A", "B"]),
    ]


@pytest.fixture
def ab_history_data():
    """Sequences over {A, B} where ``A A`` is always followed by B.

    Every position carries the same ``tok`` feature, so only the label
    history can tell the labels apart. No sequence ends in ``A A``.
    """
    patterns = ["AABAAB", "BAABB", "ABAAB", "BBAABAB", "AABBAAB"]
    return [([_pos("tok") for _ in p], list(p)) for p in patterns]


@pytest.fixture
def pos_tagging_data():
    """Small part-of-speech style dataset with real-valued features."""
    return [
        (
            [{"w=the": 1.0, "len": 0.3}, {"w=dog": 1.0, "len": 0.3}, {"w=runs": 1.0, "len": 0.4}],
            ["DET", "NOUN", "VERB"],
        ),
        (
            [{"w=a": 1.0, "len": 0.1}, {"w=cat": 1.0, "len": 0.3}, {"w=sleeps": 1.0, "len": 0.6}],
            ["DET", "NOUN", "VERB"],
        ),
        (
            [{"w=dogs": 1.0, "len": 0.4}, {"w=run": 1.0, "len": 0.3}],
            ["NOUN", "VERB"],
        ),
        (
            [{"w=the": 1.0, "len": 0.3}, {"w=cat": 1.0, "len": 0.3}, {"w=sleeps": 1.0, "len": 0.6}],
            ["DET", "NOUN", "VERB"],
        ),
    ]


@pytest.fixture
def unlabeled_positions():
    """Unlabeled sequences sharing the vocabulary of ``pos_tagging_data``."""
    return [
        [{"w=a": 1.0, "len": 0.1}, {"w=dog": 1.0, "len": 0.3}, {"w=runs": 1.0, "len": 0.4}],
        [{"w=cats": 1.0, "len": 0.4}, {"w=sleep": 1.0, "len": 0.5}],
    ]


# =============================================================================
# Model helpers
# =============================================================================


def _randomize(crf, seed=0, scale=1.0):
    """Fill every trainable weight of ``crf`` with seeded Gaussian noise."""
    torch.manual_seed(seed)
    with torch.no_grad():
        for p in crf.params.trainable_parameters().values():
            p.copy_(torch.randn_like(p) * scale)
    return crf


def _make_random_crf(labels=("A", "B", "C"), order=1, num_features=4, seed=0):
    """Fully connected model over ``labels`` with random weights."""
    positions = [{f"f{j}": 1.0 for j in range(num_features)}]
    data = [(positions * len(labels), list(labels))]
    crf = ChainCRF.from_instances(data, order=order, fully_connected=True)
    return _randomize(crf, seed)


def _random_instance(crf, length, seed=0, density=0.6):
    """Instance with random feature values over ``crf``'s feature alphabet."""
    generator = torch.Generator().manual_seed(seed)
    names = crf.feature_alphabet.names()
    positions = []
    for _ in range(length):
        keep = torch.rand(len(names), generator=generator) < density
        values = torch.randn(len(names), generator=generator, dtype=torch.float64)
        positions.append({n: v.item() for n, v, k in zip(names, values, keep) if k})
    return crf.encode(positions)


def _path_score(crf, instance, labels):
    """Score of one label path by walking the graph directly; ``-inf`` if absent."""
    weights = transition_weights(crf.graph, crf.params, instance).detach()
    state = crf.graph.start
    score = 0.0
    for t, label in enumerate(labels):
        edge = next((e for e in state.transitions if e.label_index == label), None)
        if edge is None:
            return -math.inf
        score += weights[t, edge.index].item()
        state = crf.graph.states[edge.destination]
    return score + crf.params.final_weights[state.index].item()


def _brute_force_log_partition(crf, instance):
    """log Z by enumerating every label sequence."""
    scores = [
        _path_score(crf, instance, labels)
        for labels in itertools.product(range(len(crf.label_alphabet)), repeat=len(instance))
    ]
    finite = torch.tensor([s for s in scores if s > -math.inf], dtype=torch.float64)
    return torch.logsumexp(finite, dim=0).item()


@pytest.fixture
def random_crf():
    """Order-1 fully connected model over three labels with random weights."""
    return _make_random_crf()


@pytest.fixture
def random_crf_order2():
    """Order-2 fully connected model over two labels with random weights."""
    return _make_random_crf(labels=("A", "B"), order=2, seed=1)


@pytest.fixture
def make_random_crf():
    """Factory for fully connected random models: ``make_random_crf(labels, order, ...)``."""
    return _make_random_crf


@pytest.fixture
def randomize():
    """Fill a model's trainable weights with seeded noise: ``randomize(crf, seed)``."""
    return _randomize


@pytest.fixture
def random_instance():
    """Factory for random inputs: ``random_instance(crf, length, seed)``."""
    return _random_instance


@pytest.fixture
def path_score():
    """Reference path scorer that walks the graph without any lattice code."""
    return _path_score


@pytest.fixture
def brute_force_log_partition():
    """Reference log partition function by exhaustive enumeration."""
    return _brute_force_log_partition
