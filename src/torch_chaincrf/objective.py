r"""Regularized conditional log-likelihood and its gradient.

The objective (maximized) over labeled instances :math:`(x, y)` is

.. math::

    \mathcal{L}(\theta) = \sum_{(x, y)} \big(\log \tilde{Z}(x, y) - \log Z(x)\big)
        - \sum_k \frac{\theta_k^2}{2\sigma^2}

where :math:`\log \tilde{Z}(x, y)` is the constrained lattice weight of the
gold path. Its gradient is empirical counts minus expected counts minus
:math:`\theta / \sigma^2`. The three training modes are a closed set:

- :class:`GaussianPrior` -- the objective above.
- :class:`L1Prior` -- additionally subtracts :math:`\lambda \lVert\theta\rVert_1`.
  That part is not differentiable at zero; it is reported by
  :meth:`TrainingObjective.penalty` and handled by the proximal optimizer
  rather than folded into the gradient.
- :class:`EntropyRegularization` -- additionally subtracts
  :math:`\gamma \sum_u H(y \mid x_u)` over unlabeled instances, favouring
  confident predictions. Its gradient is obtained with autograd through the
  lattice.

Evaluation is split into contiguous shards of instances; each shard runs on a
worker thread and accumulates into private tensors, and the shard results are
summed in shard order. With a fixed ``num_workers`` the result is
deterministic; changing ``num_workers`` changes the floating-point summation
order, so results agree only up to rounding.
"""

import logging
import math
from collections.abc import Sequence
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Union

import torch
from torch import Tensor

from .constants import (
    DEFAULT_ENTROPY_WEIGHT,
    DEFAULT_L1_WEIGHT,
    DEFAULT_VARIANCE,
    is_impossible,
)
from .errors import InvalidConfiguration, TrainingDiverged
from .features import Instance
from .lattice import SumLattice
from .parameters import ParameterStore
from .state_graph import StateGraph
from .validation import validate_positive

__all__ = [
    "GaussianPrior",
    "L1Prior",
    "EntropyRegularization",
    "Regularization",
    "make_regularization",
    "TrainingObjective",
]

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GaussianPrior:
    """L2 regularization: Gaussian prior with the given variance."""

    variance: float = DEFAULT_VARIANCE

    def __post_init__(self):
        validate_positive(self.variance, "variance")


@dataclass(frozen=True)
class L1Prior:
    """L1 penalty of strength ``weight`` on top of a Gaussian prior."""

    weight: float = DEFAULT_L1_WEIGHT
    variance: float = DEFAULT_VARIANCE

    def __post_init__(self):
        validate_positive(self.weight, "l1 weight")
        validate_positive(self.variance, "variance")


@dataclass(frozen=True)
class EntropyRegularization:
    """Gaussian prior plus an entropy penalty on unlabeled instances."""

    entropy_weight: float = DEFAULT_ENTROPY_WEIGHT
    variance: float = DEFAULT_VARIANCE

    def __post_init__(self):
        validate_positive(self.entropy_weight, "entropy weight")
        validate_positive(self.variance, "variance")


Regularization = Union[GaussianPrior, L1Prior, EntropyRegularization]

_MODE_NAMES = {
    "l2": GaussianPrior,
    "gaussian": GaussianPrior,
    "crftrainerbylabellikelihood": GaussianPrior,
    "l1": L1Prior,
    "crftrainerbyl1labellikelihood": L1Prior,
    "entropy": EntropyRegularization,
    "entropy_regularization": EntropyRegularization,
    "crftrainerbyentropyregularization": EntropyRegularization,
}


def make_regularization(
    mode: Union[str, Regularization],
    variance: float = DEFAULT_VARIANCE,
    l1_weight: float = DEFAULT_L1_WEIGHT,
    entropy_weight: float = DEFAULT_ENTROPY_WEIGHT,
) -> Regularization:
    r"""Turn a mode name into a regularization variant.

    Args:
        mode (str or Regularization): ``"l2"``, ``"l1"`` or ``"entropy"``
            (case-insensitive), or an already-built variant (returned as is).
        variance (float, optional): Gaussian prior variance. Default: ``100.0``
        l1_weight (float, optional): L1 strength for ``"l1"``. Default: ``1.0``
        entropy_weight (float, optional): Entropy weight for ``"entropy"``.
            Default: ``0.5``

    Raises:
        InvalidConfiguration: Unknown mode or non-positive parameter.
    """
    if isinstance(mode, (GaussianPrior, L1Prior, EntropyRegularization)):
        return mode
    if not isinstance(mode, str):
        raise InvalidConfiguration(f"regularization mode must be a string, got {mode!r}")
    kind = _MODE_NAMES.get(mode.strip().lower())
    if kind is None:
        raise InvalidConfiguration(
            f"Unknown regularization mode: {mode}. Options: l2, l1, entropy"
        )
    if kind is L1Prior:
        return L1Prior(weight=l1_weight, variance=variance)
    if kind is EntropyRegularization:
        return EntropyRegularization(entropy_weight=entropy_weight, variance=variance)
    return GaussianPrior(variance=variance)


def _shards(items: Sequence, num_shards: int) -> list[range]:
    size = math.ceil(len(items) / num_shards) if items else 0
    return [range(i, min(i + size, len(items))) for i in range(0, len(items), size or 1)]


class TrainingObjective:
    r"""Objective value and gradient for one training run.

    Args:
        graph (StateGraph): State graph of the model.
        params (ParameterStore): Weights being optimized.
        regularization (Regularization): Training mode.
        labeled (Sequence[Instance]): Instances with labels.
        unlabeled (Sequence[Instance], optional): Instances used only by
            :class:`EntropyRegularization`. Default: ``()``
        num_workers (int, optional): Worker threads per evaluation. Default: ``1``

    Attributes:
        iteration (int): Set by the trainer; reported in divergence errors.
        evaluations (int): Number of :meth:`value_and_gradient` calls.
    """

    def __init__(
        self,
        graph: StateGraph,
        params: ParameterStore,
        regularization: Regularization,
        labeled: Sequence[Instance],
        unlabeled: Sequence[Instance] = (),
        num_workers: int = 1,
    ):
        validate_positive(num_workers, "num_workers", integral=True)
        self.graph = graph
        self.params = params
        self.labeled = list(labeled)
        self.unlabeled = list(unlabeled)
        self.num_workers = num_workers
        self.regularization = regularization
        self.iteration = None
        self.evaluations = 0

        for i, instance in enumerate(self.labeled):
            if not instance.is_labeled:
                raise InvalidConfiguration(f"labeled instance {i} has no labels")

        # Mode dispatch happens once, here.
        self.l1_weight = 0.0
        self.entropy_weight = 0.0
        if isinstance(regularization, GaussianPrior):
            pass
        elif isinstance(regularization, L1Prior):
            self.l1_weight = regularization.weight
        elif isinstance(regularization, EntropyRegularization):
            self.entropy_weight = regularization.entropy_weight
            if not self.unlabeled:
                logger.warning("entropy regularization without unlabeled instances")
        else:
            raise InvalidConfiguration(f"unsupported regularization {regularization!r}")
        self.variance = regularization.variance

    @property
    def uses_l1(self) -> bool:
        return self.l1_weight > 0

    def _diverged(self, message: str, instance_index=None) -> TrainingDiverged:
        return TrainingDiverged(message, iteration=self.iteration, instance_index=instance_index)

    def _labeled_shard(self, indices: range) -> tuple[float, dict[str, Tensor]]:
        value = 0.0
        counts = self.params.zeros_like_parameters()
        with torch.no_grad():
            for i in indices:
                instance = self.labeled[i]
                gold = SumLattice(self.graph, self.params, instance, labels=instance.labels)
                lattice = SumLattice(self.graph, self.params, instance)
                gold_weight = gold.total_weight.item()
                total_weight = lattice.total_weight.item()
                if not (math.isfinite(gold_weight) and math.isfinite(total_weight)):
                    raise self._diverged("non-finite lattice weight", i)
                if is_impossible(gold_weight):
                    raise InvalidConfiguration(
                        f"labeled instance {i} follows a label path the state graph does not contain"
                    )
                value += gold_weight - total_weight
                gold.accumulate_counts(counts, 1.0)
                lattice.accumulate_counts(counts, -1.0)
        return value, counts

    def _unlabeled_shard(self, indices: range) -> tuple[float, dict[str, Tensor]]:
        value = 0.0
        counts = self.params.zeros_like_parameters()
        names, tensors = zip(*self.params.trainable_parameters().items())
        with torch.enable_grad():
            for i in indices:
                lattice = SumLattice(self.graph, self.params, self.unlabeled[i])
                term = -self.entropy_weight * lattice.entropy()
                if not torch.isfinite(term):
                    raise self._diverged("non-finite entropy on unlabeled instance", i)
                grads = torch.autograd.grad(term, tensors, allow_unused=True)
                value += term.item()
                for name, grad in zip(names, grads):
                    if grad is not None:
                        counts[name].add_(grad)
        return value, counts

    def _map(self, fn, items: Sequence) -> list:
        shards = _shards(items, self.num_workers)
        if self.num_workers == 1 or len(shards) <= 1:
            return [fn(shard) for shard in shards]
        with ThreadPoolExecutor(max_workers=self.num_workers) as pool:
            futures = [pool.submit(fn, shard) for shard in shards]
            return [f.result() for f in futures]

    def value_and_gradient(self) -> tuple[float, dict[str, Tensor]]:
        r"""Smooth part of the objective at the current parameters.

        Returns:
            Tuple[float, dict[str, Tensor]]: The objective (to maximize) without
            the L1 term, and its gradient keyed by parameter name.

        Raises:
            TrainingDiverged: If any value or gradient is non-finite.
        """
        self.evaluations += 1
        parts = self._map(self._labeled_shard, self.labeled)
        if self.entropy_weight > 0 and self.unlabeled:
            parts += self._map(self._unlabeled_shard, self.unlabeled)

        value = 0.0
        gradient = self.params.zeros_like_parameters()
        for part_value, part_counts in parts:
            value += part_value
            for name, tensor in part_counts.items():
                gradient[name].add_(tensor)

        with torch.no_grad():
            for name, p in self.params.trainable_parameters().items():
                value -= (p * p).sum().item() / (2.0 * self.variance)
                gradient[name].sub_(p / self.variance)

        if not math.isfinite(value):
            raise self._diverged("non-finite objective value")
        for name, tensor in gradient.items():
            if not torch.isfinite(tensor).all():
                raise self._diverged(f"non-finite gradient for {name}")
        return value, gradient

    def penalty(self) -> float:
        """L1 term subtracted from the smooth objective (``0.0`` outside L1 mode)."""
        if not self.uses_l1:
            return 0.0
        with torch.no_grad():
            total = sum(p.abs().sum().item() for p in self.params.trainable_parameters().values())
        return self.l1_weight * total

    def value(self) -> float:
        """Full objective, including the L1 term."""
        smooth, _ = self.value_and_gradient()
        return smooth - self.penalty()
