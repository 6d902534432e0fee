r"""Plain-value facade over model construction, training and inference.

:class:`SequenceTagger` keeps one configured training mode and at most one
model. Everything crossing its boundary is plain Python: positions are
mappings ``feature -> value`` (or iterables of feature names) and labels are
strings.

Examples::

    >>> tagger = SequenceTagger(order=1)
    >>> tagger.configure("l2", variance=10.0, iteration_budget=100)
    >>> tagger.train([([["w=the"], ["w=dog"]], ["DET", "NOUN"])])
    True
    >>> tagger.predict([["w=the"], ["w=cat"]])
    ['DET', 'NOUN']
    >>> tagger.save_model("tagger.pt")
"""

import logging
import threading
from collections.abc import Iterable, Sequence
from typing import Optional, Union

from .constants import (
    DEFAULT_ENTROPY_WEIGHT,
    DEFAULT_ITERATIONS,
    DEFAULT_L1_WEIGHT,
    DEFAULT_LABEL,
    DEFAULT_ORDER,
    DEFAULT_VARIANCE,
)
from .features import Position
from .model import ChainCRF, Example
from .objective import Regularization, make_regularization
from .trainer import CRFTrainer, TrainerConfig
from .validation import validate_order, validate_positive

__all__ = ["SequenceTagger"]

logger = logging.getLogger(__name__)


class SequenceTagger:
    r"""Train, query and persist one linear-chain CRF.

    Args:
        order (int, optional): Markov order of the label history. Default: ``1``
        default_label (str, optional): Padding/start label.
            Default: ``"label_start"``
        fully_connected (bool, optional): Build every history and transition
            over the observed labels. Default: ``False``

    Attributes:
        crf (ChainCRF): Current model, or ``None`` before training/loading.
        config (TrainerConfig): Training configuration used by :meth:`train`.
        trainer (CRFTrainer): Trainer of the last run, or ``None``.
    """

    def __init__(
        self,
        order: int = DEFAULT_ORDER,
        default_label: str = DEFAULT_LABEL,
        fully_connected: bool = False,
    ):
        validate_order(order)
        self.order = order
        self.default_label = default_label
        self.fully_connected = fully_connected
        self.crf: Optional[ChainCRF] = None
        self.trainer: Optional[CRFTrainer] = None
        self.config = TrainerConfig()

    def configure(
        self,
        regularization_mode: Union[str, Regularization] = "l2",
        variance: float = DEFAULT_VARIANCE,
        iteration_budget: int = DEFAULT_ITERATIONS,
        l1_weight: float = DEFAULT_L1_WEIGHT,
        entropy_weight: float = DEFAULT_ENTROPY_WEIGHT,
        num_workers: int = 1,
    ) -> TrainerConfig:
        r"""Select the training mode and its parameters.

        Args:
            regularization_mode: ``"l2"``, ``"l1"``, ``"entropy"`` or a
                regularization object.
            variance (float, optional): Gaussian prior variance
                :math:`\sigma^2`. Default: ``100.0``
            iteration_budget (int, optional): Maximum optimizer iterations.
                Default: ``500``
            l1_weight (float, optional): L1 strength. Default: ``1.0``
            entropy_weight (float, optional): Unlabeled entropy weight.
                Default: ``0.5``
            num_workers (int, optional): Threads per objective evaluation.
                Default: ``1``

        Raises:
            InvalidConfiguration: Unknown mode or non-positive parameter.
        """
        regularization = make_regularization(
            regularization_mode, variance=variance, l1_weight=l1_weight, entropy_weight=entropy_weight
        )
        self.config = TrainerConfig(
            regularization=regularization,
            iterations=iteration_budget,
            num_workers=num_workers,
        )
        return self.config

    def set_training_iterations(self, iterations: int) -> None:
        validate_positive(iterations, "iteration budget", integral=True)
        self.config.iterations = iterations

    @property
    def training_iterations(self) -> int:
        return self.config.iterations

    def build_model(
        self,
        labeled: Iterable[Example],
        unlabeled: Iterable[Sequence[Position]] = (),
    ) -> ChainCRF:
        """Construct a fresh zero-weight model from training data without training it."""
        self.crf = ChainCRF.from_instances(
            labeled,
            unlabeled,
            order=self.order,
            default_label=self.default_label,
            fully_connected=self.fully_connected,
        )
        return self.crf

    def train(
        self,
        labeled: Iterable[Example],
        unlabeled: Optional[Iterable[Sequence[Position]]] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> bool:
        r"""Build a model from ``labeled`` and fit it.

        Any previous model is replaced. ``unlabeled`` sequences contribute
        features to the alphabet and, in entropy mode, the entropy term.

        Args:
            labeled: ``(positions, labels)`` pairs.
            unlabeled: Position sequences without labels. Default: ``None``
            cancel_event (threading.Event, optional): Stops training at the
                next iteration boundary when set. Default: ``None``

        Returns:
            bool: Whether training converged within the iteration budget.
        """
        labeled = [(list(positions), list(labels)) for positions, labels in labeled]
        unlabeled = [list(positions) for positions in unlabeled or ()]
        crf = self.build_model(labeled, unlabeled)
        labeled_instances = crf.encode_training(labeled)
        unlabeled_instances = [
            crf.encode(positions, name=f"unlabeled {i}") for i, positions in enumerate(unlabeled)
        ]
        self.trainer = CRFTrainer(crf, self.config)
        return self.trainer.train(labeled_instances, unlabeled_instances, cancel_event)

    def _model(self) -> ChainCRF:
        if self.crf is None:
            raise RuntimeError("no model: train or load one first")
        return self.crf

    def predict(self, input_features: Sequence[Position]) -> list[str]:
        """Best label sequence; see :meth:`ChainCRF.predict`."""
        return self._model().predict(input_features)

    def log_probability(
        self, candidate_labels: Sequence[str], input_features: Sequence[Position]
    ) -> float:
        """Log-probability of ``candidate_labels``; see :meth:`ChainCRF.log_probability`."""
        return self._model().log_probability(candidate_labels, input_features)

    def feature_names(self, label: Optional[str] = None) -> list[str]:
        return self._model().feature_names(label)

    def feature_weights(self, label: Optional[str] = None) -> list[float]:
        return self._model().feature_weights(label)

    def save_model(self, path) -> None:
        self._model().save(path)
        logger.info(f"Saved model to {path}")

    @classmethod
    def load_model(cls, path, order: Optional[int] = None) -> "SequenceTagger":
        r"""Tagger wrapping a saved model.

        Args:
            path: File path or binary stream.
            order (int, optional): Required Markov order; a model saved with
                a different order raises
                :class:`~torch_chaincrf.errors.IncompatibleModel`.
                Default: ``None`` (accept any)
        """
        crf = ChainCRF.load(path, order=order)
        tagger = cls(order=crf.order, default_label=crf.default_label)
        tagger.crf = crf
        return tagger
