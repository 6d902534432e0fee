r"""Forward-backward (sum lattice) over an order-N state graph.

Recurrences, for an input of length :math:`T` and transition weights
:math:`w_t(e)` (see :class:`~torch_chaincrf.parameters.ParameterStore`):

.. math::

    \alpha_0(s) = \text{initial}(s)

    \alpha_{t+1}(d) = \log \sum_{e:\, \text{dst}(e) = d}
        \exp(\alpha_t(\text{src}(e)) + w_t(e))

    \log Z = \log \sum_s \exp(\alpha_T(s) + \text{final}(s))

    \beta_T(s) = \text{final}(s)

    \beta_t(s) = \log \sum_{e:\, \text{src}(e) = s}
        \exp(w_t(e) + \beta_{t+1}(\text{dst}(e)))

Edge marginals are :math:`\mu_t(e) = \exp(\alpha_t(\text{src}) + w_t(e)
+ \beta_{t+1}(\text{dst}) - \log Z)`.

When a label sequence is given, every edge whose label differs from the
label at its position is masked to the semiring zero. The total weight is
then the unnormalized log score of that single path, so
``SumLattice(x, labels).total_weight <= SumLattice(x).total_weight`` with
equality only when that path carries all of the probability mass.

All charts are built from differentiable torch ops. Run the lattice under
``torch.no_grad()`` when only values are needed.
"""

from typing import Optional, Union

import torch
from torch import Tensor

from .constants import NEG_INF
from .features import Instance
from .parameters import ParameterStore
from .semirings import LogSemiring
from .state_graph import StateGraph

__all__ = ["SumLattice", "transition_weights"]


def transition_weights(
    graph: StateGraph,
    params: ParameterStore,
    instance: Instance,
    features: Optional[Tensor] = None,
) -> Tensor:
    r"""Weight of every transition at every position.

    Args:
        graph (StateGraph): State graph.
        params (ParameterStore): Model weights.
        instance (Instance): Input sequence.
        features (Tensor, optional): Pre-built sparse :math:`(T, F)` feature
            matrix of ``instance``. Default: ``None``

    Returns:
        Tensor: Shape :math:`(T, E)`.
    """
    if features is None:
        features = instance.feature_matrix(params.num_features)
    # (T, F) sparse @ (F, L) dense: O(active features x labels) per position
    per_label = torch.sparse.mm(features, params.emission.t()) + params.label_bias
    _, _, edge_label = graph.edge_index()
    return per_label[:, edge_label] + params.transition_bias


class SumLattice:
    r"""Forward-backward lattice for one input sequence.

    Args:
        graph (StateGraph): State graph.
        params (ParameterStore): Model weights.
        instance (Instance): Input sequence.
        labels (Tensor or list[int], optional): Label indices to constrain the
            lattice to. Default: ``None`` (sum over all paths)
        backward (bool, optional): Also compute the backward chart.
            Default: ``True``

    Attributes:
        weights (Tensor): Transition weights of shape :math:`(T, E)` (masked
            when constrained).
        alpha (Tensor): Forward chart of shape :math:`(T+1, S)`.
        beta (Tensor): Backward chart of shape :math:`(T+1, S)`, or ``None``.
        total_weight (Tensor): Scalar log partition (or constrained path) weight.

    Examples::

        >>> lattice = SumLattice(graph, params, instance)
        >>> gold = SumLattice(graph, params, instance, labels=instance.labels)
        >>> log_prob = gold.total_weight - lattice.total_weight
    """

    semiring = LogSemiring

    def __init__(
        self,
        graph: StateGraph,
        params: ParameterStore,
        instance: Instance,
        labels: Optional[Union[Tensor, list]] = None,
        backward: bool = True,
    ):
        self.graph = graph
        self.params = params
        self.instance = instance
        self.length = len(instance)
        self.features = instance.feature_matrix(params.num_features)
        self.src, self.dst, self.edge_label = graph.edge_index()

        weights = transition_weights(graph, params, instance, self.features)
        self.labels = None
        if labels is not None:
            self.labels = torch.as_tensor(labels, dtype=torch.long)
            if self.labels.shape[0] != self.length:
                raise ValueError(
                    f"labels have length {self.labels.shape[0]}, input has length {self.length}"
                )
            allowed = self.edge_label.unsqueeze(0) == self.labels.unsqueeze(1)
            weights = torch.where(allowed, weights, torch.full_like(weights, NEG_INF))
        self.weights = weights

        self.alpha = self._forward()
        self.total_weight = self.semiring.sum(
            self.semiring.mul(self.alpha[-1], params.final_weights), dim=-1
        )
        self.beta = self._backward() if backward else None

    def _forward(self) -> Tensor:
        S = self.graph.num_states
        alpha = [self.params.initial_weights]
        for t in range(self.length):
            scores = self.semiring.mul(alpha[-1][self.src], self.weights[t])
            alpha.append(self.semiring.scatter_sum(scores, self.dst, S))
        return torch.stack(alpha)

    def _backward(self) -> Tensor:
        S = self.graph.num_states
        beta = [self.params.final_weights]
        for t in range(self.length - 1, -1, -1):
            scores = self.semiring.mul(self.weights[t], beta[-1][self.dst])
            beta.append(self.semiring.scatter_sum(scores, self.src, S))
        beta.reverse()
        return torch.stack(beta)

    @property
    def constrained(self) -> bool:
        return self.labels is not None

    def _require_backward(self):
        if self.beta is None:
            raise RuntimeError("lattice was built with backward=False")

    def edge_marginals(self) -> Tensor:
        r"""Posterior probability of each transition at each position, :math:`(T, E)`."""
        self._require_backward()
        log_mu = (
            self.alpha[:-1, self.src] + self.weights + self.beta[1:, self.dst] - self.total_weight
        )
        return torch.exp(log_mu)

    def state_marginals(self) -> Tensor:
        r"""Posterior probability of occupying each state, :math:`(T+1, S)`."""
        self._require_backward()
        return torch.exp(self.alpha + self.beta - self.total_weight)

    def label_marginals(self, edge_marginals: Optional[Tensor] = None) -> Tensor:
        r"""Posterior probability of each label at each position, :math:`(T, L)`."""
        if edge_marginals is None:
            edge_marginals = self.edge_marginals()
        out = torch.zeros(
            self.length, self.params.num_labels, dtype=edge_marginals.dtype
        )
        return out.index_add(1, self.edge_label, edge_marginals)

    def initial_marginals(self) -> Tensor:
        self._require_backward()
        return torch.exp(self.params.initial_weights + self.beta[0] - self.total_weight)

    def final_marginals(self) -> Tensor:
        return torch.exp(self.alpha[-1] + self.params.final_weights - self.total_weight)

    def expected_score(self) -> Tensor:
        r"""Posterior expectation of the path score."""
        mu = self.edge_marginals()
        return (
            (mu * self.weights).sum()
            + (self.final_marginals() * self.params.final_weights).sum()
            + (self.initial_marginals() * self.params.initial_weights).sum()
        )

    def entropy(self) -> Tensor:
        r"""Entropy of the posterior path distribution, :math:`\log Z - E[\text{score}]`."""
        return self.total_weight - self.expected_score()

    @torch.no_grad()
    def accumulate_counts(self, counts: dict[str, Tensor], scale: float = 1.0) -> None:
        r"""Add parameter counts under this lattice's distribution.

        For an unconstrained lattice these are expected counts under the
        model; for a constrained one they are the empirical counts of the
        given path.

        Args:
            counts (dict[str, Tensor]): Accumulators from
                :meth:`ParameterStore.zeros_like_parameters`, updated in place.
            scale (float, optional): Multiplier. Default: ``1.0``
        """
        mu = self.edge_marginals()
        per_label = self.label_marginals(mu)
        # (F, T) sparse @ (T, L) dense -> (F, L)
        emission = torch.sparse.mm(self.features.t().coalesce(), per_label).t()
        counts["emission"].add_(emission, alpha=scale)
        counts["label_bias"].add_(per_label.sum(dim=0), alpha=scale)
        counts["transition_bias"].add_(mu.sum(dim=0), alpha=scale)
        counts["final_weights"].add_(self.final_marginals(), alpha=scale)

    def __repr__(self) -> str:
        kind = "constrained" if self.constrained else "unconstrained"
        return f"SumLattice(length={self.length}, {kind}, total_weight={float(self.total_weight):.4f})"
