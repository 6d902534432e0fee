r"""Sparse feature vectors and training/inference instances."""

from collections.abc import Iterable, Mapping, Sequence
from typing import Optional, Union

import torch
from torch import Tensor

from .alphabet import FrozenAlphabet
from .validation import validate_feature_vector, validate_labels

__all__ = ["FeatureVector", "Instance", "InstanceEncoder", "Position"]

# One sequence position in plain form: {feature: value} or an iterable of names.
Position = Union[Mapping[str, float], Iterable[str]]


class FeatureVector:
    r"""Sparse vector over a feature alphabet.

    Indices are unique and sorted, so iteration is over active features only.

    Args:
        indices (Tensor): Feature indices of shape :math:`(\text{nnz},)`.
        values (Tensor): Feature values of shape :math:`(\text{nnz},)`.
    """

    __slots__ = ("indices", "values")

    def __init__(self, indices: Tensor, values: Tensor):
        indices = torch.as_tensor(indices, dtype=torch.long)
        values = torch.as_tensor(values, dtype=torch.float64)
        validate_feature_vector(indices, values)
        self.indices = indices
        self.values = values

    @classmethod
    def from_names(
        cls,
        position: Position,
        alphabet: FrozenAlphabet,
        skip_unknown: bool = False,
    ) -> "FeatureVector":
        r"""Build a vector from feature names.

        Args:
            position: Mapping ``name -> value`` or an iterable of names (each
                with value 1.0). Repeated names are summed.
            alphabet: Feature alphabet; a growable one allocates new names.
            skip_unknown (bool, optional): Drop names a frozen alphabet does not
                contain instead of raising. Default: ``False``
        """
        items = position.items() if isinstance(position, Mapping) else ((n, 1.0) for n in position)
        merged: dict[int, float] = {}
        for name, value in items:
            if skip_unknown and not alphabet.growable:
                index = alphabet.get(name)
                if index is None:
                    continue
            else:
                index = alphabet.index_of(name)
            merged[index] = merged.get(index, 0.0) + float(value)
        ordered = sorted(merged)
        return cls(
            torch.tensor(ordered, dtype=torch.long),
            torch.tensor([merged[i] for i in ordered], dtype=torch.float64),
        )

    def __len__(self) -> int:
        return self.indices.numel()

    def __eq__(self, other) -> bool:
        if not isinstance(other, FeatureVector):
            return NotImplemented
        return torch.equal(self.indices, other.indices) and torch.equal(self.values, other.values)

    def __repr__(self) -> str:
        return f"FeatureVector(nnz={len(self)})"


class Instance:
    r"""One sequence: feature vectors plus optional label indices.

    Args:
        inputs (Sequence[FeatureVector]): One vector per position.
        labels (Sequence[int], optional): Label index per position. ``None``
            for unlabeled data. Default: ``None``
        name (str, optional): Identifier used in log and error messages.
    """

    def __init__(
        self,
        inputs: Sequence[FeatureVector],
        labels: Optional[Sequence[int]] = None,
        name: Optional[str] = None,
    ):
        self.inputs = list(inputs)
        self.labels = None
        if labels is not None:
            self.labels = torch.as_tensor(list(labels), dtype=torch.long)
            if self.labels.shape[0] != len(self.inputs):
                raise ValueError(
                    f"instance has {len(self.inputs)} positions but {self.labels.shape[0]} labels"
                )
        self.name = name

    def __len__(self) -> int:
        return len(self.inputs)

    @property
    def is_labeled(self) -> bool:
        return self.labels is not None

    def feature_matrix(self, num_features: int) -> Tensor:
        r"""Sparse COO matrix of shape :math:`(T, F)` holding the inputs.

        Indices at or beyond ``num_features`` are dropped; they have no weights.
        """
        rows, cols, vals = [], [], []
        for t, vector in enumerate(self.inputs):
            keep = vector.indices < num_features
            cols.append(vector.indices[keep])
            vals.append(vector.values[keep])
            rows.append(torch.full((int(keep.sum()),), t, dtype=torch.long))
        if rows:
            index = torch.stack([torch.cat(rows), torch.cat(cols)])
            values = torch.cat(vals)
        else:
            index = torch.zeros((2, 0), dtype=torch.long)
            values = torch.zeros(0, dtype=torch.float64)
        return torch.sparse_coo_tensor(
            index, values, (len(self.inputs), num_features), dtype=torch.float64
        ).coalesce()

    def __repr__(self) -> str:
        kind = "labeled" if self.is_labeled else "unlabeled"
        return f"Instance(length={len(self)}, {kind})"


class InstanceEncoder:
    r"""Converts plain ``(positions, labels)`` pairs into :class:`Instance` objects.

    With growable alphabets this is the construction-time pipe; with frozen
    alphabets unknown features are skipped and unknown labels raise
    :class:`~torch_chaincrf.errors.UnknownSymbol`.

    Args:
        feature_alphabet: Input feature alphabet.
        label_alphabet: Output label alphabet.
    """

    def __init__(self, feature_alphabet: FrozenAlphabet, label_alphabet: FrozenAlphabet):
        self.feature_alphabet = feature_alphabet
        self.label_alphabet = label_alphabet

    def encode_inputs(self, positions: Iterable[Position]) -> list[FeatureVector]:
        return [
            FeatureVector.from_names(p, self.feature_alphabet, skip_unknown=True)
            for p in positions
        ]

    def encode_labels(self, labels: Iterable[str]) -> list[int]:
        return [self.label_alphabet.index_of(label) for label in labels]

    def encode(
        self,
        positions: Iterable[Position],
        labels: Optional[Iterable[str]] = None,
        name: Optional[str] = None,
    ) -> Instance:
        inputs = self.encode_inputs(positions)
        label_indices = None
        if labels is not None:
            label_indices = self.encode_labels(labels)
            validate_labels(
                torch.tensor(label_indices, dtype=torch.long),
                len(self.label_alphabet),
                seq_length=len(inputs),
            )
        return Instance(inputs, label_indices, name=name)

    def decode_labels(self, indices: Iterable[int]) -> list[str]:
        return [self.label_alphabet.name_of(int(i)) for i in indices]
