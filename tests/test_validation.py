"""Tests for input validation utilities."""

import warnings

import pytest
import torch

from torch_chaincrf import InvalidConfiguration
from torch_chaincrf.validation import (
    validate_feature_vector,
    validate_finite,
    validate_labels,
    validate_order,
    validate_positive,
)


class TestValidateOrder:
    """Tests for validate_order."""

    @pytest.mark.parametrize("order", [1, 2, 5])
    def test_valid(self, order):
        validate_order(order)

    @pytest.mark.parametrize("order", [0, -1])
    def test_non_positive(self, order):
        with pytest.raises(InvalidConfiguration, match="positive integer"):
            validate_order(order)

    @pytest.mark.parametrize("order", [1.0, "1", True, None])
    def test_wrong_type(self, order):
        with pytest.raises(InvalidConfiguration, match="order must be a positive integer"):
            validate_order(order)

    def test_custom_name(self):
        with pytest.raises(InvalidConfiguration, match="loader order"):
            validate_order(0, name="loader order")


class TestValidatePositive:
    """Tests for validate_positive."""

    @pytest.mark.parametrize("value", [1, 0.5, 1e-12, 500])
    def test_valid(self, value):
        validate_positive(value, "x")

    @pytest.mark.parametrize("value", [0, -3, -0.1, float("nan"), float("inf")])
    def test_out_of_range(self, value):
        with pytest.raises(InvalidConfiguration, match="x must be positive and finite"):
            validate_positive(value, "x")

    def test_integral(self):
        validate_positive(3, "budget", integral=True)
        with pytest.raises(InvalidConfiguration, match="budget must be an integer"):
            validate_positive(3.0, "budget", integral=True)

    @pytest.mark.parametrize("value", ["1", None, True])
    def test_wrong_type(self, value):
        with pytest.raises(InvalidConfiguration, match="must be a number"):
            validate_positive(value, "x")


class TestValidateFeatureVector:
    """Tests for validate_feature_vector."""

    def test_valid(self):
        validate_feature_vector(torch.tensor([0, 2, 5]), torch.tensor([1.0, -0.5, 2.0]))

    def test_empty(self):
        validate_feature_vector(
            torch.zeros(0, dtype=torch.long), torch.zeros(0, dtype=torch.float64)
        )

    def test_length_mismatch(self):
        with pytest.raises(ValueError, match="3 indices but 2 values"):
            validate_feature_vector(torch.tensor([0, 1, 2]), torch.tensor([1.0, 1.0]))

    def test_not_1d(self):
        with pytest.raises(ValueError, match="must be 1D"):
            validate_feature_vector(torch.zeros(2, 2, dtype=torch.long), torch.zeros(4))

    def test_float_indices(self):
        with pytest.raises(ValueError, match="integral"):
            validate_feature_vector(torch.tensor([0.0, 1.0]), torch.tensor([1.0, 1.0]))

    def test_negative_index(self):
        with pytest.raises(ValueError, match="non-negative"):
            validate_feature_vector(torch.tensor([-1, 2]), torch.tensor([1.0, 1.0]))

    @pytest.mark.parametrize("indices", [[2, 1], [1, 1]])
    def test_unsorted_or_duplicate(self, indices):
        with pytest.raises(ValueError, match="unique and sorted"):
            validate_feature_vector(torch.tensor(indices), torch.tensor([1.0, 1.0]))

    def test_custom_name(self):
        with pytest.raises(ValueError, match="position 3"):
            validate_feature_vector(torch.tensor([1, 0]), torch.ones(2), name="position 3")


class TestValidateLabels:
    """Tests for validate_labels."""

    def test_valid(self):
        validate_labels(torch.tensor([0, 1, 2, 1]), num_labels=3, seq_length=4)

    def test_empty(self):
        validate_labels(torch.zeros(0, dtype=torch.long), num_labels=3, seq_length=0)

    def test_wrong_ndim(self):
        with pytest.raises(ValueError, match="must be 1D"):
            validate_labels(torch.zeros(2, 3, dtype=torch.long), num_labels=3)

    def test_wrong_length(self):
        with pytest.raises(ValueError, match="sequence length 3 doesn't match expected 4"):
            validate_labels(torch.tensor([0, 1, 2]), num_labels=3, seq_length=4)

    def test_out_of_range(self):
        with pytest.raises(ValueError, match=r"must be in \[0, 3\)"):
            validate_labels(torch.tensor([0, 3]), num_labels=3)

    def test_negative(self):
        with pytest.raises(ValueError, match=r"got range \[-1, 1\]"):
            validate_labels(torch.tensor([-1, 1]), num_labels=3)


class TestValidateFinite:
    """Tests for validate_finite."""

    def test_finite(self):
        assert validate_finite(torch.tensor([1.0, -1e9, 0.0]), "weights")

    @pytest.mark.parametrize("bad", [float("nan"), float("inf"), float("-inf")])
    def test_raises(self, bad):
        with pytest.raises(ValueError, match="weights contains 1 non-finite values"):
            validate_finite(torch.tensor([1.0, bad]), "weights")

    def test_warn_only(self):
        tensor = torch.tensor([float("nan"), float("inf"), 0.0])
        with pytest.warns(UserWarning, match="2 non-finite values"):
            assert validate_finite(tensor, "gradient", warn_only=True) is False

    def test_warn_only_silent_when_finite(self):
        with warnings.catch_warnings():
            warnings.simplefilter("error")
            assert validate_finite(torch.ones(3), "gradient", warn_only=True)
