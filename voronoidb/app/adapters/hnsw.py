"""hnswlib-based ANN backend implementing AnnBackendPort."""

from __future__ import annotations

import json
import os
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import numpy as np

from voronoidb.app.ports.vector_store import AnnBackendPort, BackendKind, SearchResult
from voronoidb.errors import BackendUnavailable, CacheCorrupt, IndexNotTrained
from voronoidb.models import Metric

_SPACES = {
    Metric.EUCLIDEAN_DISTANCE: "l2",
    Metric.DOT_PRODUCT: "ip",
    Metric.COSINE_SIMILARITY: "cosine",
}


@dataclass(slots=True)
class HNSWHandle:
    dimensions: int
    metric: Metric
    index: Any
    initialized: bool = False


class HNSWBackend(AnnBackendPort):
    """Graph-based approximate search backed by hnswlib."""

    kind = BackendKind.HNSW

    def __init__(self, *, m: int = 32, ef_construction: int = 200, ef_search: int = 64) -> None:
        self.m = m
        self.ef_construction = ef_construction
        self.ef_search = ef_search

    def _new_index(self, dimensions: int, metric: Metric) -> Any:
        try:
            import hnswlib
        except Exception as exc:  # pragma: no cover - optional dep
            raise BackendUnavailable(
                "hnswlib is required for the hnsw backend. Install 'hnswlib'."
            ) from exc
        return hnswlib.Index(space=_SPACES[metric], dim=dimensions)

    def _prepare(self, handle: HNSWHandle, vectors: np.ndarray) -> np.ndarray:
        array = np.asarray(vectors, dtype=np.float32)
        if array.ndim == 1:
            array = array.reshape(1, -1)
        if array.shape[1] != handle.dimensions:
            raise ValueError(
                f"Vectors must have shape (n, {handle.dimensions}); got {array.shape}"
            )
        return array

    def build(self, dimensions: int, metric: Metric) -> HNSWHandle:
        return HNSWHandle(
            dimensions=int(dimensions), metric=metric, index=self._new_index(dimensions, metric)
        )

    def train(self, handle: HNSWHandle, vectors: np.ndarray) -> None:
        """Allocate the graph; HNSW needs no training beyond sizing."""
        capacity = max(1, int(np.asarray(vectors).shape[0]))
        handle.index.init_index(
            max_elements=capacity, ef_construction=self.ef_construction, M=self.m
        )
        handle.index.set_ef(self.ef_search)
        handle.initialized = True

    def add(self, handle: HNSWHandle, vectors: np.ndarray) -> None:
        if not handle.initialized:
            raise IndexNotTrained("Train the index before adding vectors")
        array = self._prepare(handle, vectors)
        start = self.count(handle)
        needed = start + array.shape[0]
        if needed > handle.index.get_max_elements():
            handle.index.resize_index(needed)
        handle.index.add_items(array, np.arange(start, needed))

    def search(self, handle: HNSWHandle, queries: np.ndarray, k: int) -> SearchResult:
        if not handle.initialized:
            raise IndexNotTrained("hnsw index has not been trained")
        q = self._prepare(handle, queries)
        available = min(k, self.count(handle))
        if available <= 0:
            empty = np.empty((q.shape[0], 0))
            return SearchResult(labels=empty.astype(np.int64), distances=empty)
        handle.index.set_ef(max(self.ef_search, available))
        labels, distances = handle.index.knn_query(q, k=available)
        return SearchResult(
            labels=np.asarray(labels, dtype=np.int64), distances=np.asarray(distances)
        )

    def parameters(self) -> dict[str, int]:
        return {"ef_construction": self.ef_construction, "m": self.m}

    def is_trained(self, handle: HNSWHandle) -> bool:
        return handle.initialized

    def count(self, handle: HNSWHandle) -> int:
        if not handle.initialized:
            return 0
        return int(handle.index.get_current_count())

    def serialize(self, handle: HNSWHandle) -> bytes:
        if not handle.initialized:
            raise IndexNotTrained("Cannot serialize an untrained index")
        header = json.dumps(
            {"dim": handle.dimensions, "metric": handle.metric.value}, sort_keys=True
        ).encode("utf-8")
        fd, name = tempfile.mkstemp(suffix=".hnsw")
        os.close(fd)
        try:
            handle.index.save_index(name)
            payload = Path(name).read_bytes()
        finally:
            Path(name).unlink(missing_ok=True)
        return header + b"\n" + payload

    def deserialize(self, data: bytes) -> HNSWHandle:
        header, separator, payload = data.partition(b"\n")
        if not separator:
            raise CacheCorrupt("Missing hnsw index header")
        try:
            meta = json.loads(header.decode("utf-8"))
            dimensions = int(meta["dim"])
            metric = Metric(meta["metric"])
        except (ValueError, KeyError, TypeError) as exc:
            raise CacheCorrupt(f"Invalid hnsw index header: {exc}") from exc

        handle = self.build(dimensions, metric)
        fd, name = tempfile.mkstemp(suffix=".hnsw")
        os.close(fd)
        try:
            Path(name).write_bytes(payload)
            handle.index.load_index(name)
        except RuntimeError as exc:
            raise CacheCorrupt(f"Cannot load hnsw index: {exc}") from exc
        finally:
            Path(name).unlink(missing_ok=True)
        handle.index.set_ef(self.ef_search)
        handle.initialized = True
        return handle
