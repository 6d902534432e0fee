r"""Input validation utilities for the linear-chain CRF."""

import numbers
import warnings
from typing import Optional

import torch
from torch import Tensor

from .errors import InvalidConfiguration

__all__ = [
    "validate_order",
    "validate_positive",
    "validate_feature_vector",
    "validate_labels",
    "validate_finite",
]


def validate_order(order, name: str = "order") -> None:
    r"""Validate a Markov order.

    Args:
        order (int): Number of previous labels a state remembers. Must be a
            positive integer (not ``bool``).
        name (str, optional): Name for error messages. Default: ``"order"``

    Raises:
        InvalidConfiguration: If ``order`` is not a positive integer.
    """
    if isinstance(order, bool) or not isinstance(order, numbers.Integral):
        raise InvalidConfiguration(
            f"{name} must be a positive integer, got {type(order).__name__}({order!r})"
        )
    if order < 1:
        raise InvalidConfiguration(f"{name} must be a positive integer, got {order}")


def validate_positive(value, name: str, integral: bool = False) -> None:
    r"""Validate a strictly positive configuration value.

    Args:
        value: Value to check.
        name (str): Name for error messages.
        integral (bool, optional): Require an integer. Default: ``False``

    Raises:
        InvalidConfiguration: If ``value`` is not a positive (finite) number.
    """
    if isinstance(value, bool) or not isinstance(value, numbers.Real):
        raise InvalidConfiguration(f"{name} must be a number, got {type(value).__name__}")
    if integral and not isinstance(value, numbers.Integral):
        raise InvalidConfiguration(f"{name} must be an integer, got {value!r}")
    if not value > 0 or value == float("inf"):
        raise InvalidConfiguration(f"{name} must be positive and finite, got {value}")


def validate_feature_vector(
    indices: Tensor,
    values: Tensor,
    name: str = "feature vector",
) -> None:
    r"""Validate the index/value tensors of a sparse feature vector.

    Args:
        indices (Tensor): Feature indices of shape :math:`(\text{nnz},)`.
        values (Tensor): Feature values of shape :math:`(\text{nnz},)`.
        name (str, optional): Name for error messages. Default: ``"feature vector"``

    Raises:
        ValueError: If shapes differ, indices are negative, or indices are not
            strictly increasing.
    """
    if indices.ndim != 1 or values.ndim != 1:
        raise ValueError(
            f"{name} indices and values must be 1D, got {indices.ndim}D and {values.ndim}D"
        )
    if indices.shape[0] != values.shape[0]:
        raise ValueError(
            f"{name} has {indices.shape[0]} indices but {values.shape[0]} values"
        )
    if indices.numel() == 0:
        return
    if indices.dtype.is_floating_point:
        raise ValueError(f"{name} indices must be integral, got {indices.dtype}")
    if (indices < 0).any():
        raise ValueError(f"{name} indices must be non-negative, got min={indices.min().item()}")
    if indices.numel() > 1 and not (indices[1:] > indices[:-1]).all():
        raise ValueError(f"{name} indices must be unique and sorted")


def validate_labels(
    labels: Tensor,
    num_labels: int,
    seq_length: Optional[int] = None,
    name: str = "labels",
) -> None:
    r"""Validate a label-index sequence.

    Args:
        labels (Tensor): Label indices of shape :math:`(T,)`.
        num_labels (int): Size of the label alphabet.
        seq_length (int, optional): Expected sequence length. Default: ``None``
        name (str, optional): Name for error messages. Default: ``"labels"``

    Raises:
        ValueError: If not 1D, wrong length, or values outside ``[0, num_labels)``.
    """
    if labels.ndim != 1:
        raise ValueError(f"{name} must be 1D (T,), got {labels.ndim}D")

    if seq_length is not None and labels.shape[0] != seq_length:
        raise ValueError(
            f"{name} sequence length {labels.shape[0]} doesn't match expected {seq_length}"
        )

    if labels.numel() == 0:
        return
    min_val = labels.min().item()
    max_val = labels.max().item()
    if min_val < 0 or max_val >= num_labels:
        raise ValueError(f"{name} must be in [0, {num_labels}), got range [{min_val}, {max_val}]")


def validate_finite(tensor: Tensor, name: str, warn_only: bool = False) -> bool:
    r"""Check that a tensor holds no NaN or Inf values.

    Args:
        tensor (Tensor): Tensor to check.
        name (str): Name for messages.
        warn_only (bool, optional): Emit a ``UserWarning`` instead of raising.
            Default: ``False``

    Returns:
        bool: ``True`` when every value is finite.

    Raises:
        ValueError: If non-finite values are present and ``warn_only`` is ``False``.
    """
    if torch.isfinite(tensor).all():
        return True
    bad = (~torch.isfinite(tensor)).sum().item()
    message = f"{name} contains {bad} non-finite values"
    if warn_only:
        warnings.warn(message, UserWarning, stacklevel=2)
        return False
    raise ValueError(message)
