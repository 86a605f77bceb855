"""ANN backend port interface for cached approximate nearest neighbour search."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Protocol

import numpy as np

from voronoidb.models import Metric


class BackendKind(str, Enum):
    """Available ANN backend implementations."""

    IN_HOUSE_VORONOI = "in_house_voronoi"
    FLAT = "flat"
    INVERTED_FILE = "inverted_file"
    HNSW = "hnsw"


@dataclass(slots=True)
class SearchResult:
    """Labels and distances for a batch of queries.

    ``labels[i][j]`` is the position of the j-th hit for query ``i`` in the
    vector list the index was built from; ``-1`` marks a missing hit.
    """

    labels: np.ndarray
    distances: np.ndarray

    def first_labels(self) -> list[int]:
        if self.labels.shape[0] == 0:
            return []
        return [int(label) for label in self.labels[0]]


class AnnBackendPort(Protocol):
    """Port interface for pluggable ANN index implementations.

    Implementations should provide:
    - Construction for a fixed dimensionality and metric
    - Training (a no-op for indexes that need none) and batch insertion
    - k-NN search returning positional labels
    - Lossless byte serialization for the on-disk index cache

    Side effects: None; persistence is handled by the cache manager.
    """

    kind: BackendKind

    def build(self, dimensions: int, metric: Metric) -> Any:
        """Return a fresh, empty index handle."""
        ...

    def train(self, handle: Any, vectors: np.ndarray) -> None:
        """Train ``handle`` on ``vectors`` (shape ``(n, dim)``)."""
        ...

    def add(self, handle: Any, vectors: np.ndarray) -> None:
        """Append ``vectors``; labels continue from the current count."""
        ...

    def search(self, handle: Any, queries: np.ndarray, k: int) -> SearchResult:
        """Return the ``k`` nearest labels per query.

        Raises:
            IndexNotTrained: If ``handle`` has not been trained
        """
        ...

    def serialize(self, handle: Any) -> bytes: ...

    def deserialize(self, data: bytes) -> Any:
        """Rebuild a handle from :meth:`serialize` output.

        Raises:
            CacheCorrupt: If ``data`` cannot be decoded
        """
        ...

    def parameters(self) -> dict[str, int]:
        """Tuning values baked into built indexes, e.g. ``{"cells": 2}``.

        Query-time knobs that can be reapplied to a loaded index are excluded.
        """
        ...

    def is_trained(self, handle: Any) -> bool: ...

    def count(self, handle: Any) -> int:
        """Number of vectors stored in ``handle``."""
        ...
