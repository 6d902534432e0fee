r"""Order-N state graph construction.

A state remembers the last ``order`` labels (left-padded with the default
label). The start state has the all-default history. For every history ``h``
seen in training and every label ``l`` observed to follow it, the graph holds
one transition labeled ``l`` from ``State(h)`` to ``State((h + (l,))[-order:])``.

States and transitions are kept in a canonical order so that identical
training data always yields an identical graph:

- the start state first, then states sorted by the label indices of their
  history (padding labels not in the label alphabet sort first);
- transitions sorted by (source state index, label index).

Examples::

    >>> labels = Alphabet(["A", "B"])
    >>> graph = StateGraph.build([["A", "A", "B"]], labels, order=1)
    >>> [s.name for s in graph.states]
    ['label_start', 'A', 'B']
    >>> [t.name for t in graph.transitions]
    ['label_start->A', 'A->A', 'A->B']
"""

import itertools
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field

import torch
from torch import Tensor

from .alphabet import FrozenAlphabet
from .constants import DEFAULT_LABEL
from .errors import IncompatibleModel
from .validation import validate_order

__all__ = ["State", "Transition", "StateGraph"]


@dataclass
class State:
    r"""A node keyed by a label history.

    Attributes:
        index (int): Position in :attr:`StateGraph.states`.
        name (str): History joined by ``","``.
        history (tuple[str, ...]): Last ``order`` labels, oldest first.
        transitions (list[Transition]): Outgoing transitions in canonical order.
    """

    index: int
    name: str
    history: tuple
    transitions: list = field(default_factory=list, repr=False)


@dataclass(frozen=True)
class Transition:
    r"""Edge consuming one output label.

    The transition's weight at position ``t`` is
    ``emission[label_index] . x_t + label_bias[label_index] + transition_bias[index]``:
    ``label_index`` selects the shared per-label weights and ``index`` its own bias.
    """

    index: int
    source: int
    destination: int
    label: str
    label_index: int
    name: str


class StateGraph:
    r"""States and transitions of an order-N linear-chain CRF.

    Args:
        histories (Sequence[tuple]): State histories in canonical order; the
            first one is the start state.
        edges (Iterable[tuple[int, int]]): ``(source, label_index)`` pairs.
        label_alphabet (FrozenAlphabet): Output label alphabet.
        order (int): Markov order.
        default_label (str): Padding label naming the start state.
    """

    def __init__(
        self,
        histories: Sequence[tuple],
        edges: Iterable[tuple],
        label_alphabet: FrozenAlphabet,
        order: int,
        default_label: str = DEFAULT_LABEL,
    ):
        validate_order(order)
        self.order = order
        self.default_label = default_label
        self.label_alphabet = label_alphabet
        self.states = [
            State(i, ",".join(map(str, h)), tuple(h)) for i, h in enumerate(histories)
        ]
        self._by_history = {s.history: s for s in self.states}
        if len(self._by_history) != len(self.states):
            raise ValueError("state histories must be unique")
        for h in self._by_history:
            if len(h) != order:
                raise ValueError(f"history {h!r} does not have length {order}")

        self.transitions = []
        for source, label_index in sorted(edges):
            label = label_alphabet.name_of(label_index)
            src = self.states[source]
            dst = self._by_history.get((src.history + (label,))[-order:])
            if dst is None:
                raise ValueError(f"transition {src.name}->{label} leads to an unknown state")
            transition = Transition(
                index=len(self.transitions),
                source=source,
                destination=dst.index,
                label=label,
                label_index=label_index,
                name=f"{src.name}->{label}",
            )
            self.transitions.append(transition)
            src.transitions.append(transition)
        self._edge_index = None

    @classmethod
    def build(
        cls,
        label_sequences: Iterable[Sequence[str]],
        label_alphabet: FrozenAlphabet,
        order: int = 1,
        default_label: str = DEFAULT_LABEL,
        fully_connected: bool = False,
    ) -> "StateGraph":
        r"""Build the graph from training label sequences.

        Args:
            label_sequences: Label-name sequences of the labeled training data.
            label_alphabet: Alphabet that already contains every label.
            order (int, optional): Markov order N. Default: ``1``
            default_label (str, optional): Padding/start label.
                Default: ``"label_start"``
            fully_connected (bool, optional): Create every padded history
                over the observed labels and every transition between them,
                instead of only the observed ones. Default: ``False``

        Returns:
            StateGraph: The constructed graph; ``graph.start`` is the start state.
        """
        validate_order(order)
        start = (default_label,) * order
        follows = {start: set()}
        for sequence in label_sequences:
            history = start
            for label in sequence:
                follows.setdefault(history, set()).add(label_alphabet.index_of(label))
                history = (history + (label,))[-order:]
                follows.setdefault(history, set())

        if fully_connected:
            observed = sorted({i for labels in follows.values() for i in labels})
            names = [label_alphabet.name_of(i) for i in observed]
            follows = {}
            for pad in range(order, -1, -1):
                for tail in itertools.product(names, repeat=order - pad):
                    follows[(default_label,) * pad + tail] = set(observed)

        def sort_key(history):
            return tuple(label_alphabet.get(label, -1) for label in history)

        histories = [start] + sorted((h for h in follows if h != start), key=sort_key)
        position = {h: i for i, h in enumerate(histories)}
        edges = [(position[h], label) for h, labels in follows.items() for label in labels]
        return cls(histories, edges, label_alphabet, order, default_label)

    @property
    def start(self) -> State:
        return self.states[0]

    @property
    def num_states(self) -> int:
        return len(self.states)

    @property
    def num_transitions(self) -> int:
        return len(self.transitions)

    def state(self, key) -> State:
        """Look up a state by index, name or history tuple."""
        if isinstance(key, int):
            return self.states[key]
        if isinstance(key, tuple):
            return self._by_history[key]
        for state in self.states:
            if state.name == key:
                return state
        raise KeyError(key)

    def edge_index(self) -> tuple[Tensor, Tensor, Tensor]:
        r"""Edge tensors in canonical order.

        Returns:
            Tuple[Tensor, Tensor, Tensor]: ``(source, destination, label)``,
            each a ``LongTensor`` of shape :math:`(E,)`.
        """
        if self._edge_index is None:
            self._edge_index = tuple(
                torch.tensor(column, dtype=torch.long).reshape(-1)
                for column in (
                    [t.source for t in self.transitions],
                    [t.destination for t in self.transitions],
                    [t.label_index for t in self.transitions],
                )
            )
        return self._edge_index

    def topology(self) -> dict:
        """Plain description used by model persistence."""
        return {
            "order": self.order,
            "default_label": self.default_label,
            "states": [list(s.history) for s in self.states],
            "transitions": torch.tensor(
                [[t.source, t.destination, t.label_index] for t in self.transitions],
                dtype=torch.long,
            ).reshape(-1, 3),
        }

    @classmethod
    def from_topology(cls, topology: dict, label_alphabet: FrozenAlphabet) -> "StateGraph":
        """Rebuild a graph saved with :meth:`topology`."""
        try:
            histories = [tuple(h) for h in topology["states"]]
            rows = topology["transitions"].tolist()
            graph = cls(
                histories,
                [(src, label) for src, _, label in rows],
                label_alphabet,
                topology["order"],
                topology["default_label"],
            )
        except (KeyError, ValueError, IndexError) as e:
            raise IncompatibleModel(f"invalid state graph topology: {e}") from e
        stored = [dst for _, dst, _ in rows]
        if stored != [t.destination for t in graph.transitions]:
            raise IncompatibleModel("stored transition destinations do not match the histories")
        return graph

    def __eq__(self, other) -> bool:
        if not isinstance(other, StateGraph):
            return NotImplemented
        mine, theirs = self.topology(), other.topology()
        return (
            mine["order"] == theirs["order"]
            and mine["default_label"] == theirs["default_label"]
            and mine["states"] == theirs["states"]
            and torch.equal(mine["transitions"], theirs["transitions"])
        )

    def __repr__(self) -> str:
        return (
            f"StateGraph(order={self.order}, states={self.num_states}, "
            f"transitions={self.num_transitions})"
        )
