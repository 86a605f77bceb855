from __future__ import annotations

import sys

import numpy as np
import pytest

from voronoidb.app.adapters.hnsw import HNSWBackend
from voronoidb.errors import CacheCorrupt, IndexNotTrained
from voronoidb.models import Metric


class _FakeHNSWIndex:
    def __init__(self, *, space: str, dim: int) -> None:  # noqa: D401
        self.space = space
        self.dim = dim
        self.max_elements = 0
        self._vecs = np.empty((0, dim), dtype=np.float32)

    # Methods mirroring hnswlib.Index
    def init_index(
        self, *, max_elements: int, ef_construction: int, M: int
    ) -> None:  # noqa: ARG002
        self.max_elements = max_elements

    def set_ef(self, ef_search: int) -> None:  # noqa: ARG002
        return None

    def get_max_elements(self) -> int:
        return self.max_elements

    def resize_index(self, size: int) -> None:
        self.max_elements = size

    def get_current_count(self) -> int:
        return int(self._vecs.shape[0])

    def add_items(self, array: np.ndarray, ids: np.ndarray) -> None:
        assert list(ids) == list(range(self._vecs.shape[0], self._vecs.shape[0] + len(array)))
        self._vecs = np.vstack([self._vecs, np.asarray(array, dtype=np.float32)])

    def save_index(self, path: str) -> None:
        with open(path, "wb") as handle:
            np.save(handle, self._vecs, allow_pickle=False)

    def load_index(self, path: str) -> None:
        try:
            with open(path, "rb") as handle:
                self._vecs = np.load(handle, allow_pickle=False)
        except ValueError as exc:
            raise RuntimeError(f"Cannot open file {path}") from exc
        self.max_elements = self._vecs.shape[0]

    def knn_query(self, q: np.ndarray, k: int):
        if k > self._vecs.shape[0]:
            raise RuntimeError("Cannot return the results in a contiguous 2D array")
        q = np.asarray(q, dtype=np.float32)
        if self.space == "l2":
            diff = q[:, None, :] - self._vecs[None, :, :]
            dists = np.einsum("qnd,qnd->qn", diff, diff)
        elif self.space == "ip":
            dists = 1.0 - q @ self._vecs.T
        else:
            q_norm = np.linalg.norm(q, axis=1, keepdims=True) + 1e-8
            v_norm = np.linalg.norm(self._vecs, axis=1, keepdims=True).T + 1e-8
            dists = 1.0 - (q @ self._vecs.T) / (q_norm * v_norm)
        idxs = np.argsort(dists, axis=1, kind="stable")[:, :k]
        picked = np.take_along_axis(dists, idxs, axis=1)
        return idxs.astype(np.uint64), picked.astype(np.float32)


class _FakeHNSWLibModule:
    def Index(self, *, space: str, dim: int):  # noqa: D401
        return _FakeHNSWIndex(space=space, dim=dim)


@pytest.fixture
def fake_hnswlib(monkeypatch: pytest.MonkeyPatch) -> None:
    # Inject fake hnswlib
    monkeypatch.setitem(sys.modules, "hnswlib", _FakeHNSWLibModule())


VECTORS = np.asarray([[0.0, 0.0], [0.0, 1.0], [10.0, 10.0]], dtype=np.float32)


def _trained(metric: Metric = Metric.EUCLIDEAN_DISTANCE):
    backend = HNSWBackend(m=8, ef_construction=100, ef_search=16)
    handle = backend.build(2, metric)
    backend.train(handle, VECTORS)
    backend.add(handle, VECTORS)
    return backend, handle


def test_hnsw_backend_build_and_query(fake_hnswlib) -> None:
    backend, handle = _trained()
    assert handle.index.space == "l2"
    assert backend.count(handle) == 3

    result = backend.search(handle, np.asarray([[9.0, 9.0]]), 2)
    assert result.first_labels() == [2, 1]


def test_k_is_capped_at_stored_count(fake_hnswlib) -> None:
    backend, handle = _trained()
    result = backend.search(handle, np.asarray([[0.0, 0.0]]), 10)
    assert result.first_labels() == [0, 1, 2]


def test_add_grows_capacity(fake_hnswlib) -> None:
    backend, handle = _trained()
    backend.add(handle, np.asarray([[5.0, 5.0], [6.0, 6.0]], dtype=np.float32))
    assert backend.count(handle) == 5
    assert handle.index.get_max_elements() == 5


def test_untrained_handle_is_rejected(fake_hnswlib) -> None:
    backend = HNSWBackend()
    handle = backend.build(2, Metric.COSINE_SIMILARITY)
    assert handle.index.space == "cosine"
    assert backend.count(handle) == 0
    with pytest.raises(IndexNotTrained):
        backend.search(handle, VECTORS[:1], 1)


def test_serialize_round_trip(fake_hnswlib) -> None:
    backend, handle = _trained(Metric.DOT_PRODUCT)
    restored = backend.deserialize(backend.serialize(handle))

    assert restored.metric is Metric.DOT_PRODUCT
    assert restored.index.space == "ip"
    assert backend.count(restored) == 3
    assert backend.search(restored, np.asarray([[1.0, 1.0]]), 1).first_labels() == [2]


@pytest.mark.parametrize(
    "payload",
    [b"no header at all", b'{"dim": 2}\n', b'{"dim": 2, "metric": "euclidean_distance"}\njunk'],
)
def test_corrupt_payloads_raise_cache_corrupt(fake_hnswlib, payload: bytes) -> None:
    with pytest.raises(CacheCorrupt):
        HNSWBackend().deserialize(payload)


def test_database_index_search_with_hnsw(fake_hnswlib, database_factory) -> None:
    with database_factory(dimensions=2, backend=HNSWBackend()) as db:
        collection = db.create_collection("docs")
        for row in VECTORS:
            db.create_document(collection, f"{row[0]},{row[1]}", row.tolist())
        results = db.index_search([0.0, 0.9], 2)
        assert [doc.content for doc in results] == ["0.0,1.0", "0.0,0.0"]
