r"""Weight storage for the linear-chain CRF."""

import torch
import torch.nn as nn
from torch import Tensor

from .constants import IMPOSSIBLE_WEIGHT

__all__ = ["ParameterStore"]


class ParameterStore(nn.Module):
    r"""All weights of one CRF model.

    A transition ``e`` labeled ``l`` scores input vector :math:`x_t` as

    .. math::

        w_t(e) = \text{emission}[l] \cdot x_t + \text{label\_bias}[l]
            + \text{transition\_bias}[e]

    and a path additionally collects the initial weight of its first state
    and the final weight of its last state.

    Args:
        num_labels (int): Size of the output label alphabet (L).
        num_features (int): Size of the input feature alphabet (F).
        num_transitions (int): Number of graph transitions (E).
        num_states (int): Number of graph states (S).
        dtype (torch.dtype, optional): Default: ``torch.float64``

    Attributes:
        emission (Parameter): Feature weights of shape :math:`(L, F)`.
        label_bias (Parameter): Per-label default weight of shape :math:`(L,)`.
        transition_bias (Parameter): Per-transition weight of shape :math:`(E,)`.
        final_weights (Parameter): Per-state final weight of shape :math:`(S,)`.
        initial_weights (Tensor): Fixed per-state initial weight buffer of
            shape :math:`(S,)`; not trained.
    """

    trainable = ("emission", "label_bias", "transition_bias", "final_weights")

    def __init__(
        self,
        num_labels: int,
        num_features: int,
        num_transitions: int,
        num_states: int,
        dtype: torch.dtype = torch.float64,
    ):
        super().__init__()
        self.emission = nn.Parameter(torch.zeros(num_labels, num_features, dtype=dtype))
        self.label_bias = nn.Parameter(torch.zeros(num_labels, dtype=dtype))
        self.transition_bias = nn.Parameter(torch.zeros(num_transitions, dtype=dtype))
        self.final_weights = nn.Parameter(torch.zeros(num_states, dtype=dtype))
        self.register_buffer("initial_weights", torch.zeros(num_states, dtype=dtype))

    @property
    def num_labels(self) -> int:
        return self.emission.shape[0]

    @property
    def num_features(self) -> int:
        return self.emission.shape[1]

    @property
    def num_transitions(self) -> int:
        return self.transition_bias.shape[0]

    @property
    def num_states(self) -> int:
        return self.final_weights.shape[0]

    @torch.no_grad()
    def reset_initial_weights(self, start: int) -> None:
        """Make ``start`` the only state a path may begin in."""
        self.initial_weights.fill_(IMPOSSIBLE_WEIGHT)
        self.initial_weights[start] = 0.0

    def get(self, name: str, *index) -> float:
        """Read one weight, e.g. ``store.get("emission", label, feature)``."""
        return getattr(self, name)[index].item()

    @torch.no_grad()
    def set(self, name: str, value: float, *index) -> None:
        """Overwrite one weight in place."""
        getattr(self, name)[index] = value

    def trainable_parameters(self) -> dict[str, Tensor]:
        return {name: getattr(self, name) for name in self.trainable}

    def zeros_like_parameters(self) -> dict[str, Tensor]:
        """Fresh accumulators shaped like the trainable parameters."""
        return {
            name: torch.zeros_like(p, requires_grad=False)
            for name, p in self.trainable_parameters().items()
        }

    @torch.no_grad()
    def snapshot(self) -> dict[str, Tensor]:
        return {name: p.detach().clone() for name, p in self.trainable_parameters().items()}

    @torch.no_grad()
    def restore(self, snapshot: dict[str, Tensor]) -> None:
        for name, value in snapshot.items():
            getattr(self, name).copy_(value)

    def extra_repr(self) -> str:
        return (
            f"labels={self.num_labels}, features={self.num_features}, "
            f"transitions={self.num_transitions}, states={self.num_states}"
        )
