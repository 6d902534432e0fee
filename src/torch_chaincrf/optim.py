r"""Proximal gradient optimizer for L1-regularized training."""

import torch
from torch.optim import Optimizer

__all__ = ["ProximalGradient", "soft_threshold"]


def soft_threshold(x: torch.Tensor, threshold: float) -> torch.Tensor:
    r"""Proximal operator of :math:`\text{threshold} \cdot \lVert x \rVert_1`."""
    return torch.sign(x) * torch.clamp(x.abs() - threshold, min=0.0)


class ProximalGradient(Optimizer):
    r"""Proximal gradient descent with backtracking line search (ISTA).

    Minimizes :math:`f(\theta) + \lambda \lVert\theta\rVert_1` where the
    closure returns :math:`f` and fills ``.grad`` with :math:`\nabla f`. Each
    :meth:`step` takes

    .. math::

        \theta \leftarrow \text{soft\_threshold}(\theta - \eta \nabla f(\theta), \eta\lambda)

    halving :math:`\eta` until the quadratic upper bound of :math:`f` holds,
    then growing it for the next step. A weight at zero whose gradient is
    smaller than :math:`\lambda` in magnitude stays exactly zero.

    Args:
        params (iterable): Parameters to optimize.
        lr (float, optional): Initial step size. Default: ``1.0``
        l1_weight (float, optional): :math:`\lambda`. Default: ``1.0``
        shrink (float, optional): Backtracking factor. Default: ``0.5``
        grow (float, optional): Step growth after an accepted step. Default: ``1.25``
        max_backtracks (int, optional): Line search budget. Default: ``40``

    Attributes:
        stalled (bool): ``True`` when the last step found no acceptable move.
    """

    def __init__(
        self,
        params,
        lr: float = 1.0,
        l1_weight: float = 1.0,
        shrink: float = 0.5,
        grow: float = 1.25,
        max_backtracks: int = 40,
    ):
        if lr <= 0:
            raise ValueError(f"Invalid learning rate: {lr}")
        if l1_weight < 0:
            raise ValueError(f"Invalid l1_weight: {l1_weight}")
        if not 0 < shrink < 1:
            raise ValueError(f"Invalid shrink factor: {shrink}")
        defaults = dict(
            lr=lr, l1_weight=l1_weight, shrink=shrink, grow=grow, max_backtracks=max_backtracks
        )
        super().__init__(params, defaults)
        self.stalled = False

    @torch.no_grad()
    def step(self, closure):
        """Take one proximal step. ``closure`` is required and may be called repeatedly.

        Returns:
            Tensor: The smooth loss at the starting point.
        """
        closure = torch.enable_grad()(closure)
        loss = float(closure())
        self.stalled = True

        for group in self.param_groups:
            params = [p for p in group["params"] if p.grad is not None]
            start = [p.detach().clone() for p in params]
            grads = [p.grad.detach().clone() for p in params]
            lr = group["lr"]
            for _ in range(group["max_backtracks"]):
                for p, x, g in zip(params, start, grads):
                    p.copy_(soft_threshold(x - lr * g, lr * group["l1_weight"]))
                moved = sum(((p - x) ** 2).sum().item() for p, x in zip(params, start))
                if moved == 0.0:
                    break
                new_loss = float(closure())
                bound = loss + sum(
                    ((p - x) * g).sum().item() for p, x, g in zip(params, start, grads)
                )
                bound += moved / (2.0 * lr)
                if new_loss <= bound + 1e-12 * max(1.0, abs(loss)):
                    self.stalled = False
                    group["lr"] = lr * group["grow"]
                    break
                lr *= group["shrink"]
            else:
                for p, x in zip(params, start):
                    p.copy_(x)
                group["lr"] = lr

        return torch.tensor(loss)
