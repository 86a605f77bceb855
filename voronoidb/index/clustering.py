"""Pairwise nearest-neighbour (PNN) clustering.

Each reduction level pairs the first remaining vector with its nearest
remaining neighbour, replaces every pair with its mean and repeats until the
working set is no larger than the target. When a level holds an odd number
of vectors the last one is dropped so pairing is exact; that vector does not
contribute to any centroid.

Every level scans the remaining vectors once per pair, so a level costs
O(n^2) distance evaluations. This is fine for thousands of vectors and is the
scalability ceiling of in-house training.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence

import numpy as np

from voronoidb.index.vectors import VectorLike, check_dimensions

logger = logging.getLogger(__name__)


def _reduce_level(working: np.ndarray) -> np.ndarray:
    """Pair and average one level of ``working`` (an even-length matrix)."""
    remaining = list(range(working.shape[0]))
    means: list[np.ndarray] = []

    while remaining:
        first = remaining.pop(0)
        candidates = working[remaining]
        diff = candidates - working[first]
        distances = np.einsum("ij,ij->i", diff, diff)
        nearest = int(np.argmin(distances))
        partner = remaining.pop(nearest)
        means.append((working[first] + working[partner]) * 0.5)

    return np.vstack(means)


def cluster(vectors: Sequence[VectorLike], target_count: int) -> list[tuple[float, ...]]:
    """Reduce ``vectors`` to at most ``target_count`` centroids.

    Args:
        vectors: Input vectors, all of the same length
        target_count: Upper bound on the number of centroids

    Returns:
        Centroids as float tuples. The input is returned unchanged when it
        already fits within ``target_count``; an empty list when
        ``target_count`` is not positive.
    """
    if target_count <= 0:
        return []

    if not vectors:
        return []

    dim = len(vectors[0])
    rows = [check_dimensions(vector, dim) for vector in vectors]
    if len(rows) <= target_count:
        return [tuple(float(x) for x in row) for row in rows]

    working = np.vstack(rows)
    level = 0
    while working.shape[0] > target_count:
        if working.shape[0] % 2 != 0:
            working = working[:-1]
        working = _reduce_level(working)
        level += 1
        logger.debug("PNN level %d reduced to %d vectors", level, working.shape[0])

    return [tuple(float(x) for x in row) for row in working]
