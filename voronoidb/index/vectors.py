"""Vector math primitives over fixed-length float sequences."""

from __future__ import annotations

from collections.abc import Sequence

import numpy as np

from voronoidb.errors import DimensionMismatch

VectorLike = Sequence[float] | np.ndarray


def as_vector(value: VectorLike) -> np.ndarray:
    """Return ``value`` as a 1-D float64 array."""
    array = np.asarray(value, dtype=np.float64)
    if array.ndim != 1:
        raise ValueError(f"Vectors must be 1-D; received shape {array.shape}")
    return array


def check_dimensions(vector: VectorLike, dim: int | None) -> np.ndarray:
    """Convert ``vector`` and ensure it has ``dim`` components when ``dim`` is set."""
    array = as_vector(vector)
    if dim is not None and array.shape[0] != dim:
        raise DimensionMismatch(dim, array.shape[0])
    return array


def _pair(a: VectorLike, b: VectorLike, dim: int | None) -> tuple[np.ndarray, np.ndarray]:
    left = check_dimensions(a, dim)
    right = check_dimensions(b, dim)
    if left.shape[0] != right.shape[0]:
        raise DimensionMismatch(left.shape[0], right.shape[0])
    return left, right


def distance_squared(a: VectorLike, b: VectorLike, *, dim: int | None = None) -> float:
    """Squared Euclidean distance between ``a`` and ``b``."""
    left, right = _pair(a, b, dim)
    diff = left - right
    return float(np.dot(diff, diff))


def dot_product(a: VectorLike, b: VectorLike, *, dim: int | None = None) -> float:
    left, right = _pair(a, b, dim)
    return float(np.dot(left, right))


def l2_norm(v: VectorLike, *, dim: int | None = None) -> float:
    array = check_dimensions(v, dim)
    return float(np.sqrt(np.dot(array, array)))


def normalize_l2(v: VectorLike, *, dim: int | None = None) -> np.ndarray:
    """Scale ``v`` to unit length.

    Zero vectors are returned unchanged, matching ``faiss.normalize_L2``.
    """
    array = check_dimensions(v, dim)
    norm = np.sqrt(np.dot(array, array))
    if norm == 0.0:
        return array.copy()
    return array / norm


def average(a: VectorLike, b: VectorLike, *, dim: int | None = None) -> np.ndarray:
    """Elementwise mean of two vectors."""
    left, right = _pair(a, b, dim)
    return (left + right) * 0.5


def stack(vectors: Sequence[VectorLike], dim: int, *, dtype: type = np.float32) -> np.ndarray:
    """Stack ``vectors`` into an ``(n, dim)`` matrix, validating every row."""
    if not vectors:
        return np.empty((0, dim), dtype=dtype)
    rows = [check_dimensions(vector, dim) for vector in vectors]
    return np.vstack(rows).astype(dtype, copy=False)
