r"""Log and max semirings over a state graph.

Charts are indexed by state; a step of the lattice combines the scores of all
transitions entering (or leaving) each state. :meth:`scatter_sum` performs
that grouped reduction for a flat ``(E,)`` vector of edge scores.

The semiring zero is the finite :data:`~torch_chaincrf.constants.NEG_INF`, so
every chart entry stays finite and autograd never sees ``inf - inf``.
"""

import torch
from torch import Tensor

from .constants import NEG_INF

__all__ = ["LogSemiring", "MaxSemiring"]


class _Semiring:
    zero = NEG_INF
    one = 0.0

    @staticmethod
    def mul(a: Tensor, b: Tensor) -> Tensor:
        return a + b

    @classmethod
    def _group_max(cls, values: Tensor, index: Tensor, size: int) -> Tensor:
        out = torch.full((size,), cls.zero, dtype=values.dtype, device=values.device)
        return out.scatter_reduce(0, index, values, reduce="amax", include_self=True)


class LogSemiring(_Semiring):
    r"""Log-space sum-product semiring: :math:`\oplus = \text{logsumexp}`."""

    @staticmethod
    def sum(x: Tensor, dim: int = -1) -> Tensor:
        return torch.logsumexp(x, dim=dim)

    @classmethod
    def scatter_sum(cls, values: Tensor, index: Tensor, size: int) -> Tensor:
        r"""Stable grouped logsumexp.

        Args:
            values (Tensor): Edge scores of shape :math:`(E,)`.
            index (Tensor): Group (state) of each edge, shape :math:`(E,)`.
            size (int): Number of groups (S).

        Returns:
            Tensor: Shape :math:`(S,)`; groups without edges get :attr:`zero`.
        """
        peak = cls._group_max(values.detach(), index, size)
        shifted = torch.exp(values - peak[index])
        total = torch.zeros(size, dtype=values.dtype, device=values.device)
        total = total.index_add(0, index, shifted)
        # An empty group sums to 0 and keeps its zero peak.
        empty = total <= 0
        return peak + torch.log(torch.where(empty, torch.ones_like(total), total))


class MaxSemiring(_Semiring):
    r"""Viterbi semiring: :math:`\oplus = \max`."""

    @staticmethod
    def sum(x: Tensor, dim: int = -1) -> Tensor:
        return torch.amax(x, dim=dim)

    @classmethod
    def scatter_sum(cls, values: Tensor, index: Tensor, size: int) -> Tensor:
        return cls._group_max(values, index, size)

    @classmethod
    def scatter_argmax(cls, values: Tensor, index: Tensor, size: int) -> tuple[Tensor, Tensor]:
        r"""Grouped max with the winning edge of every group.

        Ties go to the lowest edge index. Groups without edges point at
        ``E`` (one past the last edge).

        Returns:
            Tuple[Tensor, Tensor]: ``(best, argbest)``, both of shape :math:`(S,)`.
        """
        best = cls._group_max(values, index, size)
        num_edges = values.shape[0]
        candidates = torch.where(
            values == best[index],
            torch.arange(num_edges, device=values.device),
            torch.full_like(index, num_edges),
        )
        argbest = torch.full((size,), num_edges, dtype=torch.long, device=values.device)
        argbest = argbest.scatter_reduce(0, index, candidates, reduce="amin", include_self=True)
        return best, argbest
