r"""Training loop for the linear-chain CRF.

One call to :meth:`CRFTrainer.train` runs up to ``iterations`` optimizer
iterations. Each iteration evaluates the objective and gradient over the
full training set (in parallel shards, see
:class:`~torch_chaincrf.objective.TrainingObjective`) and hands them to the
optimizer:

- :class:`torch.optim.LBFGS` with a strong-Wolfe line search for
  :class:`~torch_chaincrf.objective.GaussianPrior` and
  :class:`~torch_chaincrf.objective.EntropyRegularization`;
- :class:`~torch_chaincrf.optim.ProximalGradient` for
  :class:`~torch_chaincrf.objective.L1Prior`.

The loop stops when the objective changes by less than ``tolerance``
(relative), when the gradient falls below ``gradient_tolerance``, when the
budget runs out, or when ``cancel_event`` is set (checked between
iterations). Whatever the exit path, the best parameters evaluated during the
run are restored before returning or raising.

Entropy regularization uses one joint objective: every iteration takes a
single optimizer step on the labeled likelihood and the unlabeled entropy
term together.
"""

import logging
import math
import threading
import time
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Optional

import torch

from .constants import DEFAULT_ITERATIONS
from .errors import InvalidConfiguration
from .features import Instance
from .objective import (
    EntropyRegularization,
    GaussianPrior,
    L1Prior,
    Regularization,
    TrainingObjective,
)
from .optim import ProximalGradient
from .validation import validate_positive

__all__ = ["TrainerConfig", "CRFTrainer"]

logger = logging.getLogger(__name__)


@dataclass
class TrainerConfig:
    r"""Training configuration.

    Attributes:
        regularization (Regularization): Training mode. Default: ``GaussianPrior()``
        iterations (int): Iteration budget. Default: ``500``
        tolerance (float): Relative objective change treated as converged.
            Default: ``1e-4``
        gradient_tolerance (float): Largest absolute gradient entry treated as
            converged. Default: ``1e-3``
        history_size (int): L-BFGS memory. Default: ``5``
        num_workers (int): Worker threads per objective evaluation. Default: ``1``
        learning_rate (float): Initial step of the L1 proximal optimizer.
            Default: ``1.0``
    """

    regularization: Regularization = field(default_factory=GaussianPrior)
    iterations: int = DEFAULT_ITERATIONS
    tolerance: float = 1e-4
    gradient_tolerance: float = 1e-3
    history_size: int = 5
    num_workers: int = 1
    learning_rate: float = 1.0

    def __post_init__(self):
        self.validate()

    def validate(self) -> None:
        """Raise :class:`InvalidConfiguration` for any out-of-range field."""
        if not isinstance(self.regularization, (GaussianPrior, L1Prior, EntropyRegularization)):
            raise InvalidConfiguration(f"unsupported regularization {self.regularization!r}")
        validate_positive(self.iterations, "iteration budget", integral=True)
        validate_positive(self.tolerance, "tolerance")
        validate_positive(self.gradient_tolerance, "gradient_tolerance")
        validate_positive(self.history_size, "history_size", integral=True)
        validate_positive(self.num_workers, "num_workers", integral=True)
        validate_positive(self.learning_rate, "learning_rate")


class CRFTrainer:
    r"""Fits the weights of a :class:`~torch_chaincrf.model.ChainCRF`.

    The trainer is the model's single writer: it holds the model's training
    guard for the whole run, so inference calls on the same instance fail with
    :class:`~torch_chaincrf.errors.ModelInTraining` until it finishes.

    Args:
        crf (ChainCRF): Model to train. Its structure is not changed.
        config (TrainerConfig, optional): Default: ``TrainerConfig()``

    Attributes:
        history (list[float]): Objective value at the start of each iteration.
        iterations_run (int): Iterations completed by the last run.
        converged (bool): Whether the last run converged.
        cancelled (bool): Whether the last run was cancelled.
        best_value (float): Best objective value evaluated in the last run.
    """

    def __init__(self, crf, config: Optional[TrainerConfig] = None):
        self.crf = crf
        self.config = config if config is not None else TrainerConfig()
        self.config.validate()
        self._reset_run_state()

    def _reset_run_state(self):
        self.history = []
        self.iterations_run = 0
        self.converged = False
        self.cancelled = False
        self.best_value = -math.inf
        self._best = None
        self._evaluations = []

    def _make_optimizer(self, objective: TrainingObjective):
        params = list(self.crf.params.trainable_parameters().values())
        if objective.uses_l1:
            return ProximalGradient(
                params, lr=self.config.learning_rate, l1_weight=objective.l1_weight
            )
        return torch.optim.LBFGS(
            params,
            lr=1.0,
            max_iter=1,
            history_size=self.config.history_size,
            tolerance_grad=self.config.gradient_tolerance,
            tolerance_change=1e-12,
            line_search_fn="strong_wolfe",
        )

    def _closure(self, objective: TrainingObjective):
        store = self.crf.params

        def closure():
            value, gradient = objective.value_and_gradient()
            for name, p in store.trainable_parameters().items():
                # the optimizers minimize
                p.grad = -gradient[name]
            full = value - objective.penalty()
            grad_max = max(g.abs().max().item() if g.numel() else 0.0 for g in gradient.values())
            self._evaluations.append((full, grad_max))
            if full > self.best_value:
                self.best_value = full
                self._best = store.snapshot()
            return torch.tensor(-value, dtype=torch.float64)

        return closure

    def _has_converged(self, value: float, grad_max: float, optimizer) -> bool:
        if grad_max <= self.config.gradient_tolerance:
            return True
        if isinstance(optimizer, ProximalGradient) and optimizer.stalled:
            return True
        if len(self.history) < 2:
            return False
        previous = self.history[-2]
        return 2.0 * abs(value - previous) <= self.config.tolerance * (
            abs(value) + abs(previous) + 1e-10
        )

    def train(
        self,
        labeled: Sequence[Instance],
        unlabeled: Sequence[Instance] = (),
        cancel_event: Optional[threading.Event] = None,
    ) -> bool:
        r"""Run the optimization.

        Before the first iteration every state's initial weight is set to the
        impossible sentinel except the start state's, which is set to 0.

        Args:
            labeled (Sequence[Instance]): Labeled training instances.
            unlabeled (Sequence[Instance], optional): Unlabeled instances for
                entropy regularization. Default: ``()``
            cancel_event (threading.Event, optional): Checked between
                iterations; when set, training stops and keeps the best
                parameters so far. Default: ``None``

        Returns:
            bool: ``True`` if training converged within the budget.

        Raises:
            InvalidConfiguration: Bad configuration or training data (raised
                before any optimizer step).
            TrainingDiverged: Non-finite objective or gradient.
        """
        self._reset_run_state()
        if not labeled:
            raise InvalidConfiguration("training requires at least one labeled instance")

        crf = self.crf
        with crf.training_guard():
            crf.params.reset_initial_weights(crf.graph.start.index)
            objective = TrainingObjective(
                crf.graph,
                crf.params,
                self.config.regularization,
                labeled,
                unlabeled,
                num_workers=self.config.num_workers,
            )
            optimizer = self._make_optimizer(objective)
            closure = self._closure(objective)
            logger.info(
                f"Training on {len(labeled)} labeled / {len(objective.unlabeled)} unlabeled "
                f"instances with {type(self.config.regularization).__name__}, "
                f"budget {self.config.iterations} iterations"
            )
            started = time.time()
            try:
                self._run(objective, optimizer, closure, cancel_event)
            finally:
                if self._best is not None:
                    crf.params.restore(self._best)
                for p in crf.params.trainable_parameters().values():
                    p.grad = None
            logger.info(
                f"Finished after {self.iterations_run} iterations in {time.time() - started:.1f}s: "
                f"objective={self.best_value:.4f} converged={self.converged}"
            )
        return self.converged

    def _run(self, objective, optimizer, closure, cancel_event) -> None:
        for iteration in range(1, self.config.iterations + 1):
            if cancel_event is not None and cancel_event.is_set():
                self.cancelled = True
                logger.info(f"Training cancelled before iteration {iteration}")
                return
            objective.iteration = iteration
            first = len(self._evaluations)
            optimizer.step(closure)
            self.iterations_run = iteration
            value, grad_max = self._evaluations[first]
            self.history.append(value)
            logger.debug(f"iteration {iteration}: objective={value:.6f} max|grad|={grad_max:.3e}")
            if self._has_converged(value, grad_max, optimizer):
                self.converged = True
                return
