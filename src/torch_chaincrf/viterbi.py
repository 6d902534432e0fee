r"""Viterbi decoding over an order-N state graph.

Max-semiring analogue of :class:`~torch_chaincrf.lattice.SumLattice`:

.. math::

    \delta_{t+1}(d) = \max_{e:\, \text{dst}(e) = d} \delta_t(\text{src}(e)) + w_t(e)

with a back-pointer to the winning transition. Ties go to the transition that
comes first in the graph's canonical order, and at the final position to the
lowest state index, so repeated decoding of the same input is reproducible.
"""

from typing import NamedTuple

import torch

from .constants import is_impossible
from .errors import NoValidPath
from .features import Instance
from .lattice import transition_weights
from .parameters import ParameterStore
from .semirings import MaxSemiring
from .state_graph import StateGraph
from .validation import validate_finite

__all__ = ["ViterbiPath", "viterbi"]


class ViterbiPath(NamedTuple):
    """Best path: visited states (``T + 1`` of them), label indices and score."""

    states: list
    labels: list
    score: float


@torch.no_grad()
def viterbi(graph: StateGraph, params: ParameterStore, instance: Instance) -> ViterbiPath:
    r"""Highest-scoring label path for ``instance``.

    Args:
        graph (StateGraph): State graph.
        params (ParameterStore): Model weights.
        instance (Instance): Input sequence.

    Returns:
        ViterbiPath: ``score`` equals the constrained
        :class:`~torch_chaincrf.lattice.SumLattice` weight of ``labels``.

    Raises:
        ValueError: If a transition weight is NaN or infinite.
        NoValidPath: If no final state is reachable for this input.
    """
    T = len(instance)
    S = graph.num_states
    src, dst, edge_label = graph.edge_index()
    weights = transition_weights(graph, params, instance)
    validate_finite(weights, "transition weights")

    delta = params.initial_weights
    backpointers = []
    for t in range(T):
        scores = MaxSemiring.mul(delta[src], weights[t])
        delta, best_edge = MaxSemiring.scatter_argmax(scores, dst, S)
        backpointers.append(best_edge)

    final = MaxSemiring.mul(delta, params.final_weights)
    # torch.argmax returns the first maximal index
    state = int(torch.argmax(final))
    score = final[state].item()
    if is_impossible(score):
        raise NoValidPath(T, "every final state is unreachable")

    states = [state]
    labels = []
    for t in range(T - 1, -1, -1):
        edge = int(backpointers[t][state])
        if edge >= src.shape[0]:
            raise NoValidPath(T, f"dead end at position {t}")
        labels.append(int(edge_label[edge]))
        state = int(src[edge])
        states.append(state)
    states.reverse()
    labels.reverse()
    return ViterbiPath(states, labels, score)
