r"""Linear-chain CRF model: alphabets, state graph and weights in one object.

The model owns two frozen alphabets, a :class:`~torch_chaincrf.state_graph.StateGraph`
and a :class:`~torch_chaincrf.parameters.ParameterStore`. Training
(:class:`~torch_chaincrf.trainer.CRFTrainer`) mutates only the parameter
store; the structure is fixed once :meth:`ChainCRF.from_instances` returns.

Examples::

    >>> data = [([["w=the"], ["w=dog"]], ["DET", "NOUN"])]
    >>> crf = ChainCRF.from_instances(data)
    >>> CRFTrainer(crf).train(crf.encode_training(data))
    True
    >>> crf.predict([["w=the"], ["w=cat"]])
    ['DET', 'NOUN']
"""

import logging
import math
import threading
from collections.abc import Iterable, Mapping, Sequence
from contextlib import contextmanager
from typing import Optional

import torch

from .alphabet import Alphabet, FrozenAlphabet
from .constants import DEFAULT_LABEL, DEFAULT_ORDER, is_impossible
from .errors import ModelInTraining, NoValidPath
from .features import Instance, InstanceEncoder, Position
from .lattice import SumLattice
from .parameters import ParameterStore
from .state_graph import StateGraph
from .validation import validate_finite, validate_order
from .viterbi import viterbi

__all__ = ["ChainCRF"]

logger = logging.getLogger(__name__)

# Plain training example: (positions, labels or None)
Example = tuple[Sequence[Position], Optional[Sequence[str]]]


class ChainCRF:
    r"""Order-N linear-chain conditional random field.

    Args:
        feature_alphabet (FrozenAlphabet): Input feature names.
        label_alphabet (FrozenAlphabet): Output label names.
        graph (StateGraph): State graph over ``label_alphabet``.
        params (ParameterStore, optional): Weights. Default: zero weights
            sized for the graph, with only the start state allowed to begin a
            path.

    Attributes:
        order (int): Markov order of the graph.
        default_label (str): Padding label naming the start state.
    """

    def __init__(
        self,
        feature_alphabet: FrozenAlphabet,
        label_alphabet: FrozenAlphabet,
        graph: StateGraph,
        params: Optional[ParameterStore] = None,
    ):
        self.feature_alphabet = feature_alphabet.frozen()
        self.label_alphabet = label_alphabet.frozen()
        self.graph = graph
        if params is None:
            params = ParameterStore(
                len(self.label_alphabet),
                len(self.feature_alphabet),
                graph.num_transitions,
                graph.num_states,
            )
            params.reset_initial_weights(graph.start.index)
        if params.num_labels != len(self.label_alphabet):
            raise ValueError(
                f"parameter store has {params.num_labels} labels, alphabet has "
                f"{len(self.label_alphabet)}"
            )
        if params.num_features != len(self.feature_alphabet):
            raise ValueError(
                f"parameter store has {params.num_features} features, alphabet has "
                f"{len(self.feature_alphabet)}"
            )
        if (params.num_transitions, params.num_states) != (
            graph.num_transitions,
            graph.num_states,
        ):
            raise ValueError("parameter store does not match the state graph")
        self.params = params
        self.encoder = InstanceEncoder(self.feature_alphabet, self.label_alphabet)
        self._training = threading.Lock()

    @property
    def order(self) -> int:
        return self.graph.order

    @property
    def default_label(self) -> str:
        return self.graph.default_label

    @classmethod
    def from_instances(
        cls,
        labeled: Iterable[Example],
        unlabeled: Iterable[Sequence[Position]] = (),
        order: int = DEFAULT_ORDER,
        default_label: str = DEFAULT_LABEL,
        fully_connected: bool = False,
    ) -> "ChainCRF":
        r"""Build a zero-weight model from plain training data.

        Every feature seen in ``labeled`` or ``unlabeled`` and every label
        seen in ``labeled`` gets an index; the graph holds the label
        histories and transitions observed in ``labeled``.

        Args:
            labeled: ``(positions, labels)`` pairs; each position is a mapping
                ``feature -> value`` or an iterable of feature names.
            unlabeled: Position sequences without labels. Default: ``()``
            order (int, optional): Markov order N. Default: ``1``
            default_label (str, optional): Padding/start label.
                Default: ``"label_start"``
            fully_connected (bool, optional): See :meth:`StateGraph.build`.
                Default: ``False``

        Returns:
            ChainCRF: Model with frozen alphabets.
        """
        validate_order(order)
        features = Alphabet(kind="feature alphabet")
        labels = Alphabet(kind="label alphabet")
        label_sequences = []
        for positions, sequence in labeled:
            positions = list(positions)
            for position in positions:
                _register_features(position, features)
            sequence = list(sequence)
            if len(sequence) != len(positions):
                raise ValueError(
                    f"sequence has {len(positions)} positions but {len(sequence)} labels"
                )
            for label in sequence:
                labels.index_of(label)
            label_sequences.append(sequence)
        for positions in unlabeled:
            for position in positions:
                _register_features(position, features)

        graph = StateGraph.build(
            label_sequences,
            labels.frozen(),
            order=order,
            default_label=default_label,
            fully_connected=fully_connected,
        )
        logger.info(
            f"Built order-{order} model: {len(features)} features, {len(labels)} labels, "
            f"{graph.num_states} states, {graph.num_transitions} transitions"
        )
        return cls(features.frozen(), labels.frozen(), graph)

    def encode(
        self,
        positions: Sequence[Position],
        labels: Optional[Sequence[str]] = None,
        name: Optional[str] = None,
    ) -> Instance:
        """Encode one plain sequence against the frozen alphabets."""
        return self.encoder.encode(positions, labels, name=name)

    def encode_training(self, examples: Iterable[Example]) -> list[Instance]:
        """Encode ``(positions, labels)`` pairs; ``labels`` may be ``None``."""
        return [
            self.encode(positions, labels, name=f"instance {i}")
            for i, (positions, labels) in enumerate(examples)
        ]

    @contextmanager
    def training_guard(self):
        """Mark the model as being trained; inference raises meanwhile."""
        if not self._training.acquire(blocking=False):
            raise ModelInTraining("model is already being trained")
        try:
            yield self
        finally:
            self._training.release()

    def _check_not_training(self):
        if self._training.locked():
            raise ModelInTraining("inference is not available while the model is being trained")

    def _encode_for_inference(
        self, positions: Sequence[Position], labels: Optional[Sequence[str]] = None
    ) -> Instance:
        # Non-finite values are rejected only here; training reports TrainingDiverged.
        instance = self.encode(positions, labels)
        for t, vector in enumerate(instance.inputs):
            validate_finite(vector.values, f"feature values at position {t}")
        return instance

    def predict(self, input_features: Sequence[Position]) -> list[str]:
        r"""Most likely label sequence for one input.

        Args:
            input_features: One mapping ``feature -> value`` (or iterable of
                feature names) per position. Unknown features are ignored.

        Returns:
            list[str]: One label per position.

        Raises:
            ValueError: If a feature value is NaN or infinite.
            NoValidPath: If the graph admits no path of this length.
            ModelInTraining: If the model is being trained.
        """
        self._check_not_training()
        instance = self._encode_for_inference(input_features)
        path = viterbi(self.graph, self.params, instance)
        return self.encoder.decode_labels(path.labels)

    def log_probability(
        self, candidate_labels: Sequence[str], input_features: Sequence[Position]
    ) -> float:
        r"""Conditional log-probability :math:`\log p(y \mid x)`.

        Args:
            candidate_labels: One label per position.
            input_features: One mapping (or iterable of names) per position.

        Returns:
            float: At most ``0``; ``-inf`` when the graph does not contain the
            candidate path.

        Raises:
            UnknownSymbol: If a candidate label is not in the label alphabet.
            ValueError: If the two sequences differ in length, or a feature
                value or the resulting score is not finite.
            NoValidPath: If the graph admits no path of this length at all.
        """
        self._check_not_training()
        instance = self._encode_for_inference(input_features, candidate_labels)
        with torch.no_grad():
            total = SumLattice(self.graph, self.params, instance, backward=False)
            if is_impossible(total.total_weight):
                raise NoValidPath(len(instance))
            gold = SumLattice(
                self.graph, self.params, instance, labels=instance.labels, backward=False
            )
            if is_impossible(gold.total_weight):
                return -math.inf
            log_prob = (gold.total_weight - total.total_weight).item()
        if math.isnan(log_prob):
            raise ValueError("log-probability is NaN; the model weights are not finite")
        # Only positive rounding noise is clipped.
        return min(0.0, log_prob)

    def feature_names(self, label: Optional[str] = None) -> list[str]:
        r"""Names paired positionally with :meth:`feature_weights`.

        With ``label`` the names are the feature names; without, they run
        label-major over every label as ``"label/feature"``.
        """
        names = self.feature_alphabet.names()
        if label is not None:
            self.label_alphabet.index_of(label)
            return list(names)
        return [f"{lab}/{name}" for lab in self.label_alphabet.names() for name in names]

    def feature_weights(self, label: Optional[str] = None) -> list[float]:
        """Feature weights of ``label``, or of every label (label-major)."""
        emission = self.params.emission.detach()
        if label is not None:
            return emission[self.label_alphabet.index_of(label)].tolist()
        return emission.reshape(-1).tolist()

    def save(self, stream) -> None:
        """Write the model with :func:`~torch_chaincrf.serialization.save_model`."""
        from .serialization import save_model

        save_model(self, stream)

    @classmethod
    def load(cls, stream, order: Optional[int] = None) -> "ChainCRF":
        """Read a model written by :meth:`save`."""
        from .serialization import load_model

        return load_model(stream, order=order)

    def __repr__(self) -> str:
        return (
            f"ChainCRF(order={self.order}, features={len(self.feature_alphabet)}, "
            f"labels={len(self.label_alphabet)}, states={self.graph.num_states}, "
            f"transitions={self.graph.num_transitions})"
        )


def _register_features(position: Position, alphabet: Alphabet) -> None:
    names = position.keys() if isinstance(position, Mapping) else position
    for name in names:
        alphabet.index_of(name)

