from __future__ import annotations

import numpy as np
import pytest

from voronoidb.errors import DimensionMismatch
from voronoidb.index.vectors import (
    average,
    check_dimensions,
    distance_squared,
    dot_product,
    l2_norm,
    normalize_l2,
    stack,
)


def test_distance_squared_is_not_square_rooted() -> None:
    assert distance_squared([1.0, 2.0], [4.0, 6.0]) == pytest.approx(25.0)


def test_dot_product_and_norm() -> None:
    assert dot_product([1.0, 2.0, 3.0], [4.0, 5.0, 6.0]) == pytest.approx(32.0)
    assert l2_norm([3.0, 4.0]) == pytest.approx(5.0)


def test_normalize_l2_unit_length() -> None:
    normalized = normalize_l2([3.0, 4.0])
    assert normalized.tolist() == pytest.approx([0.6, 0.8])
    assert l2_norm(normalized) == pytest.approx(1.0)


def test_normalize_l2_leaves_zero_vector_unchanged() -> None:
    original = np.zeros(3)
    normalized = normalize_l2(original)
    assert normalized.tolist() == [0.0, 0.0, 0.0]
    assert normalized is not original


def test_average_is_elementwise_mean() -> None:
    assert average([0.0, 0.0], [0.0, 2.0]).tolist() == [0.0, 1.0]


def test_mismatched_lengths_raise_dimension_mismatch() -> None:
    with pytest.raises(DimensionMismatch) as excinfo:
        distance_squared([1.0, 2.0], [1.0, 2.0, 3.0])
    assert isinstance(excinfo.value, ValueError)


def test_configured_dimensionality_is_enforced() -> None:
    with pytest.raises(DimensionMismatch) as excinfo:
        dot_product([1.0, 2.0], [3.0, 4.0], dim=3)
    assert excinfo.value.expected == 3
    assert excinfo.value.actual == 2

    assert check_dimensions([1, 2, 3], 3).dtype == np.float64


def test_stack_empty_keeps_dimensionality() -> None:
    matrix = stack([], 4)
    assert matrix.shape == (0, 4)
    assert matrix.dtype == np.float32


def test_stack_rejects_wrong_row() -> None:
    with pytest.raises(DimensionMismatch):
        stack([[1.0, 2.0], [1.0, 2.0, 3.0]], 2)
