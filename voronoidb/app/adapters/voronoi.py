"""In-house Voronoi backend: PNN centroids with single-cell search."""

from __future__ import annotations

import io
import math
import zipfile
from dataclasses import dataclass, field

import numpy as np

from voronoidb.app.ports.vector_store import AnnBackendPort, BackendKind, SearchResult
from voronoidb.errors import CacheCorrupt, IndexNotTrained
from voronoidb.index.cells import nearest_cell
from voronoidb.index.clustering import cluster
from voronoidb.index.ranking import TopKRanker, scorer_for
from voronoidb.models import Cell, Metric


@dataclass(slots=True)
class VoronoiHandle:
    dimensions: int
    metric: Metric
    centroids: np.ndarray | None = None
    vectors: np.ndarray = field(default_factory=lambda: np.empty((0, 0)))
    assignments: np.ndarray = field(default_factory=lambda: np.empty(0, dtype=np.int64))

    def cells(self) -> list[Cell]:
        if self.centroids is None:
            return []
        return [Cell(id=i, centroid=tuple(row)) for i, row in enumerate(self.centroids)]


class VoronoiBackend(AnnBackendPort):
    """Approximate search that scans only the query's nearest PNN cell.

    Training clusters the training vectors into at most ``cells`` centroids;
    each added vector is assigned to its nearest centroid. A query ranks the
    vectors of its own cell with the handle's metric, so neighbours stored in a
    different cell are never returned.
    """

    kind = BackendKind.IN_HOUSE_VORONOI

    def __init__(self, *, cells: int = 2) -> None:
        if cells < 1:
            raise ValueError("cells must be at least 1")
        self.cells = cells

    def _prepare(self, handle: VoronoiHandle, vectors: np.ndarray) -> np.ndarray:
        array = np.asarray(vectors, dtype=np.float64)
        if array.ndim == 1:
            array = array.reshape(1, -1)
        if array.shape[0] and array.shape[1] != handle.dimensions:
            raise ValueError(
                f"Vectors must have shape (n, {handle.dimensions}); received {array.shape}"
            )
        return array.reshape(-1, handle.dimensions)

    def build(self, dimensions: int, metric: Metric) -> VoronoiHandle:
        return VoronoiHandle(
            dimensions=dimensions,
            metric=metric,
            vectors=np.empty((0, dimensions), dtype=np.float64),
        )

    def train(self, handle: VoronoiHandle, vectors: np.ndarray) -> None:
        array = self._prepare(handle, vectors)
        if array.shape[0] == 0:
            raise ValueError("Cannot train a Voronoi index without vectors")
        centroids = cluster(list(array), self.cells)
        handle.centroids = np.asarray(centroids, dtype=np.float64)

    def add(self, handle: VoronoiHandle, vectors: np.ndarray) -> None:
        if handle.centroids is None:
            raise IndexNotTrained("Train the index before adding vectors")
        array = self._prepare(handle, vectors)
        cells = handle.cells()
        labels = np.asarray([nearest_cell(row, cells).id for row in array], dtype=np.int64)
        handle.vectors = np.vstack([handle.vectors, array])
        handle.assignments = np.concatenate([handle.assignments, labels])

    def search(self, handle: VoronoiHandle, queries: np.ndarray, k: int) -> SearchResult:
        if handle.centroids is None:
            raise IndexNotTrained("in_house_voronoi index has not been trained")
        array = self._prepare(handle, queries)
        cells = handle.cells()
        width = max(k, 0)
        labels = np.full((array.shape[0], width), -1, dtype=np.int64)
        distances = np.full((array.shape[0], width), math.inf, dtype=np.float64)

        for row, query in enumerate(array):
            cell = nearest_cell(query, cells)
            score = scorer_for(query, handle.metric)
            ranker: TopKRanker[int] = TopKRanker(width, descending=handle.metric.descending)
            for label in np.flatnonzero(handle.assignments == cell.id):
                value = score(handle.vectors[label])
                if value is not None:
                    ranker.offer(value, int(label))
            for column, (value, label) in enumerate(ranker.entries()):
                labels[row, column] = label
                distances[row, column] = value

        return SearchResult(labels=labels, distances=distances)

    def parameters(self) -> dict[str, int]:
        return {"cells": self.cells}

    def is_trained(self, handle: VoronoiHandle) -> bool:
        return handle.centroids is not None

    def count(self, handle: VoronoiHandle) -> int:
        return int(handle.vectors.shape[0])

    def serialize(self, handle: VoronoiHandle) -> bytes:
        if handle.centroids is None:
            raise IndexNotTrained("Cannot serialize an untrained index")
        buffer = io.BytesIO()
        np.savez(
            buffer,
            metric=np.array(handle.metric.value),
            centroids=handle.centroids,
            vectors=handle.vectors,
            assignments=handle.assignments,
        )
        return buffer.getvalue()

    def deserialize(self, data: bytes) -> VoronoiHandle:
        try:
            with np.load(io.BytesIO(data), allow_pickle=False) as archive:
                metric = Metric(str(archive["metric"]))
                centroids = np.asarray(archive["centroids"], dtype=np.float64)
                vectors = np.asarray(archive["vectors"], dtype=np.float64)
                assignments = np.asarray(archive["assignments"], dtype=np.int64)
        except (
            OSError,
            ValueError,
            KeyError,
            EOFError,
            TypeError,
            AttributeError,
            zipfile.BadZipFile,
        ) as exc:
            raise CacheCorrupt(f"Cannot decode Voronoi index: {exc}") from exc

        if centroids.ndim != 2 or vectors.ndim != 2 or assignments.shape[0] != vectors.shape[0]:
            raise CacheCorrupt("Voronoi index arrays have inconsistent shapes")
        return VoronoiHandle(
            dimensions=int(centroids.shape[1]),
            metric=metric,
            centroids=centroids,
            vectors=vectors,
            assignments=assignments,
        )
