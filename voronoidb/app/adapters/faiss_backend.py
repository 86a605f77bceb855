"""faiss-based ANN backends: exact flat search and inverted-file (IVF-Flat) search."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

import numpy as np

from voronoidb.app.ports.vector_store import AnnBackendPort, BackendKind, SearchResult
from voronoidb.errors import BackendUnavailable, CacheCorrupt, IndexNotTrained
from voronoidb.models import Metric

logger = logging.getLogger(__name__)

_HEADER_SEPARATOR = b"\n"


def _faiss() -> Any:
    try:
        import faiss
    except ImportError as exc:  # pragma: no cover - optional dep
        raise BackendUnavailable(
            "faiss is required for the flat and inverted_file backends. Install 'faiss-cpu'."
        ) from exc
    return faiss


def _metric_type(metric: Metric) -> int:
    faiss = _faiss()
    if metric is Metric.EUCLIDEAN_DISTANCE:
        return faiss.METRIC_L2
    return faiss.METRIC_INNER_PRODUCT


@dataclass(slots=True)
class FaissHandle:
    """A faiss index plus the metric it was built for.

    ``index`` stays ``None`` for inverted-file handles until training, since
    the number of lists depends on how many vectors are available.
    """

    dimensions: int
    metric: Metric
    index: Any | None = None


class _FaissBackend(AnnBackendPort):
    kind: BackendKind

    def _prepare(self, handle: FaissHandle, vectors: np.ndarray) -> np.ndarray:
        array = np.ascontiguousarray(vectors, dtype=np.float32)
        if array.ndim == 1:
            array = array.reshape(1, -1)
        if array.shape[1] != handle.dimensions:
            raise ValueError(
                f"Vectors must have shape (n, {handle.dimensions}); received {array.shape}"
            )
        if handle.metric is Metric.COSINE_SIMILARITY:
            array = array.copy()
            _faiss().normalize_L2(array)
        return array

    def add(self, handle: FaissHandle, vectors: np.ndarray) -> None:
        if handle.index is None or not handle.index.is_trained:
            raise IndexNotTrained("Train the index before adding vectors")
        handle.index.add(self._prepare(handle, vectors))

    def search(self, handle: FaissHandle, queries: np.ndarray, k: int) -> SearchResult:
        if not self.is_trained(handle):
            raise IndexNotTrained(f"{self.kind.value} index has not been trained")
        assert handle.index is not None
        distances, labels = handle.index.search(self._prepare(handle, queries), k)
        return SearchResult(labels=np.asarray(labels), distances=np.asarray(distances))

    def parameters(self) -> dict[str, int]:
        return {}

    def is_trained(self, handle: FaissHandle) -> bool:
        return handle.index is not None and bool(handle.index.is_trained)

    def count(self, handle: FaissHandle) -> int:
        return 0 if handle.index is None else int(handle.index.ntotal)

    def serialize(self, handle: FaissHandle) -> bytes:
        if handle.index is None:
            raise IndexNotTrained("Cannot serialize an untrained index")
        payload = _faiss().serialize_index(handle.index)
        return handle.metric.value.encode("ascii") + _HEADER_SEPARATOR + payload.tobytes()

    def deserialize(self, data: bytes) -> FaissHandle:
        header, separator, payload = data.partition(_HEADER_SEPARATOR)
        if not separator or not payload:
            raise CacheCorrupt("Missing faiss index header")
        try:
            metric = Metric(header.decode("ascii"))
            index = _faiss().deserialize_index(np.frombuffer(payload, dtype=np.uint8))
        except BackendUnavailable:
            raise
        except Exception as exc:  # noqa: BLE001 - faiss raises RuntimeError subclasses
            raise CacheCorrupt(f"Cannot decode faiss index: {exc}") from exc
        return FaissHandle(dimensions=int(index.d), metric=metric, index=index)


class FlatBackend(_FaissBackend):
    """Exact search over every stored vector (``IndexFlatL2`` / ``IndexFlatIP``)."""

    kind = BackendKind.FLAT

    def build(self, dimensions: int, metric: Metric) -> FaissHandle:
        faiss = _faiss()
        if metric is Metric.EUCLIDEAN_DISTANCE:
            index = faiss.IndexFlatL2(dimensions)
        else:
            index = faiss.IndexFlatIP(dimensions)
        return FaissHandle(dimensions=dimensions, metric=metric, index=index)

    def train(self, handle: FaissHandle, vectors: np.ndarray) -> None:
        return None


class InvertedFileBackend(_FaissBackend):
    """Inverted-file index: vectors are bucketed into ``nlist`` k-means cells.

    Only ``nprobe`` buckets are scanned per query. ``nlist`` is capped at the
    number of training vectors.
    """

    kind = BackendKind.INVERTED_FILE

    def __init__(self, *, nlist: int = 2, nprobe: int = 1) -> None:
        if nlist < 1:
            raise ValueError("nlist must be at least 1")
        self.nlist = nlist
        self.nprobe = max(1, nprobe)

    def parameters(self) -> dict[str, int]:
        return {"nlist": self.nlist}

    def build(self, dimensions: int, metric: Metric) -> FaissHandle:
        _faiss()
        return FaissHandle(dimensions=dimensions, metric=metric)

    def train(self, handle: FaissHandle, vectors: np.ndarray) -> None:
        faiss = _faiss()
        array = self._prepare(handle, vectors)
        if array.shape[0] == 0:
            raise ValueError("Cannot train an inverted-file index without vectors")
        nlist = min(self.nlist, array.shape[0])
        if handle.metric is Metric.EUCLIDEAN_DISTANCE:
            quantizer = faiss.IndexFlatL2(handle.dimensions)
        else:
            quantizer = faiss.IndexFlatIP(handle.dimensions)
        index = faiss.IndexIVFFlat(quantizer, handle.dimensions, nlist, _metric_type(handle.metric))
        index.train(array)
        index.nprobe = min(self.nprobe, nlist)
        handle.index = index
        logger.debug("Trained IVF index with %d lists on %d vectors", nlist, array.shape[0])

    def deserialize(self, data: bytes) -> FaissHandle:
        handle = super().deserialize(data)
        assert handle.index is not None
        handle.index.nprobe = min(self.nprobe, int(handle.index.nlist))
        return handle
