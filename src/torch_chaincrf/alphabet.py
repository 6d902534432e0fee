r"""Bidirectional name <-> index mappings for features and labels.

An :class:`Alphabet` grows while a model is being constructed. Inference code
receives a :class:`FrozenAlphabet`, a read-only view over the same storage, so
it cannot allocate new indices by accident.

Examples::

    >>> labels = Alphabet()
    >>> labels.index_of("B-PER")
    0
    >>> frozen = labels.frozen()
    >>> frozen.index_of("B-PER")
    0
    >>> frozen.index_of("I-PER")
    Traceback (most recent call last):
        ...
    torch_chaincrf.errors.UnknownSymbol: unknown symbol 'I-PER' in frozen alphabet
"""

from collections.abc import Hashable, Iterable, Iterator

from .errors import IndexOutOfRange, UnknownSymbol

__all__ = ["Alphabet", "FrozenAlphabet"]


class _AlphabetStorage:
    """Append-only storage shared by an alphabet and its frozen views."""

    __slots__ = ("names", "indices")

    def __init__(self):
        self.names: list = []
        self.indices: dict = {}


class FrozenAlphabet:
    r"""Read-only alphabet view.

    Args:
        storage: Shared storage, normally obtained through
            :meth:`Alphabet.frozen`.
        kind (str, optional): Name used in error messages. Default: ``"alphabet"``
    """

    growable = False

    def __init__(self, storage: _AlphabetStorage, kind: str = "alphabet"):
        self._storage = storage
        self.kind = kind

    def index_of(self, name: Hashable) -> int:
        """Index of ``name``; raises :class:`UnknownSymbol` if it is absent."""
        try:
            return self._storage.indices[name]
        except KeyError:
            raise UnknownSymbol(name, self.kind) from None

    def get(self, name: Hashable, default=None):
        return self._storage.indices.get(name, default)

    def name_of(self, index: int):
        """Name stored at ``index``; raises :class:`IndexOutOfRange`."""
        names = self._storage.names
        if isinstance(index, bool) or not 0 <= index < len(names):
            raise IndexOutOfRange(index, len(names))
        return names[index]

    def size(self) -> int:
        return len(self._storage.names)

    def names(self) -> list:
        return list(self._storage.names)

    def frozen(self) -> "FrozenAlphabet":
        return FrozenAlphabet(self._storage, self.kind)

    def __len__(self) -> int:
        return len(self._storage.names)

    def __contains__(self, name) -> bool:
        return name in self._storage.indices

    def __iter__(self) -> Iterator:
        return iter(list(self._storage.names))

    def __eq__(self, other) -> bool:
        if not isinstance(other, FrozenAlphabet):
            return NotImplemented
        return self._storage.names == other._storage.names

    def __repr__(self) -> str:
        mode = "growable" if self.growable else "frozen"
        return f"{type(self).__name__}({self.kind}, size={len(self)}, {mode})"


class Alphabet(FrozenAlphabet):
    r"""Growable alphabet. Indices are dense, assigned in first-seen order and
    never reused.

    Args:
        names (Iterable, optional): Initial entries, indexed in order.
        kind (str, optional): Name used in error messages. Default: ``"alphabet"``
    """

    growable = True

    def __init__(self, names: Iterable = (), kind: str = "alphabet"):
        super().__init__(_AlphabetStorage(), kind)
        for name in names:
            self.index_of(name)

    def index_of(self, name: Hashable) -> int:
        """Index of ``name``, allocating the next index if it is new."""
        indices = self._storage.indices
        index = indices.get(name)
        if index is None:
            index = len(self._storage.names)
            indices[name] = index
            self._storage.names.append(name)
        return index

    def frozen(self) -> FrozenAlphabet:
        """Read-only view sharing this alphabet's storage."""
        return FrozenAlphabet(self._storage, self.kind)
