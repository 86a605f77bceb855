"""Index cache build, reuse, invalidation and corruption recovery."""

from __future__ import annotations

import logging
from pathlib import Path

import numpy as np
import pytest

from voronoidb.app.adapters.sqlite_storage import SQLiteStorageAdapter
from voronoidb.app.adapters.voronoi import VoronoiBackend
from voronoidb.index.cache import IndexCacheManager
from voronoidb.models import GLOBAL, CollectionIndexScope, Document, Metric


@pytest.fixture
def populated(storage: SQLiteStorageAdapter) -> SQLiteStorageAdapter:
    first = storage.insert_collection("first")
    second = storage.insert_collection("second")
    rows = [
        (1, first.id, (0.0, 0.0)),
        (2, first.id, (0.0, 1.0)),
        (3, second.id, (5.0, 5.0)),
    ]
    for doc_id, collection_id, embedding in rows:
        storage.insert_document(
            Document(
                id=doc_id, content=f"doc-{doc_id}", embedding=embedding, collection_id=collection_id
            )
        )
    return storage


@pytest.fixture
def cache(populated: SQLiteStorageAdapter, temp_dir: Path) -> IndexCacheManager:
    return IndexCacheManager(
        populated, VoronoiBackend(cells=2), dimensions=2, cache_dir=temp_dir / "index_cache"
    )


def test_build_writes_artifact_and_reuses_it(cache: IndexCacheManager) -> None:
    built = cache.get_or_build(GLOBAL)
    assert [doc.id for doc in built.documents] == [1, 2, 3]
    assert cache.is_cached(GLOBAL)

    path = cache.cache_path(GLOBAL)
    assert path is not None
    before = path.stat().st_mtime_ns

    loaded = cache.get_or_build(GLOBAL)
    assert cache.backend.count(loaded.handle) == 3
    assert path.stat().st_mtime_ns == before


def test_collection_scope_only_holds_its_documents(cache: IndexCacheManager) -> None:
    built = cache.get_or_build(CollectionIndexScope(2))
    assert [doc.id for doc in built.documents] == [3]
    assert cache.backend.count(built.handle) == 1


def test_collection_invalidation_drops_global(cache: IndexCacheManager) -> None:
    cache.get_or_build(GLOBAL)
    cache.get_or_build(CollectionIndexScope(1))
    cache.get_or_build(CollectionIndexScope(2))

    cache.invalidate(CollectionIndexScope(1))

    assert not cache.is_cached(CollectionIndexScope(1))
    assert not cache.is_cached(GLOBAL)
    assert cache.is_cached(CollectionIndexScope(2))


def test_global_invalidation_keeps_collection_artifacts(cache: IndexCacheManager) -> None:
    cache.get_or_build(GLOBAL)
    cache.get_or_build(CollectionIndexScope(1))

    cache.invalidate(GLOBAL)

    assert not cache.is_cached(GLOBAL)
    assert cache.is_cached(CollectionIndexScope(1))


def test_invalidate_missing_artifact_is_a_no_op(cache: IndexCacheManager) -> None:
    cache.invalidate(CollectionIndexScope(99))
    assert not cache.is_cached(GLOBAL)


def test_corrupt_artifact_is_rebuilt(
    cache: IndexCacheManager, caplog: pytest.LogCaptureFixture
) -> None:
    path = cache.cache_path(GLOBAL)
    assert path is not None
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(b"definitely not an index")

    with caplog.at_level(logging.WARNING, logger="voronoidb.index.cache"):
        rebuilt = cache.get_or_build(GLOBAL)

    assert cache.backend.count(rebuilt.handle) == 3
    assert any("corrupted" in record.message for record in caplog.records)
    assert path.read_bytes() != b"definitely not an index"


def test_stale_artifact_with_wrong_count_is_rebuilt(
    cache: IndexCacheManager, populated: SQLiteStorageAdapter
) -> None:
    cache.get_or_build(GLOBAL)
    populated.insert_document(
        Document(id=4, content="doc-4", embedding=(9.0, 9.0), collection_id=2)
    )

    rebuilt = cache.get_or_build(GLOBAL)

    assert cache.backend.count(rebuilt.handle) == 4
    assert [doc.id for doc in rebuilt.documents] == [1, 2, 3, 4]


def test_empty_scope_is_not_cached(storage: SQLiteStorageAdapter) -> None:
    manager = IndexCacheManager(storage, VoronoiBackend(), dimensions=2)
    built = manager.get_or_build(GLOBAL)
    assert built.documents == []
    assert not manager.backend.is_trained(built.handle)
    assert not manager.is_cached(GLOBAL)


def test_in_memory_cache_and_invalidate_all(populated: SQLiteStorageAdapter) -> None:
    manager = IndexCacheManager(populated, VoronoiBackend(), dimensions=2)
    manager.get_or_build(GLOBAL)
    manager.get_or_build(CollectionIndexScope(1))
    assert manager.cache_path(GLOBAL) is None
    assert manager.is_cached(GLOBAL)

    assert manager.invalidate_all() == 2
    assert not manager.is_cached(GLOBAL)
    assert not manager.is_cached(CollectionIndexScope(1))


def test_invalidate_all_on_disk(cache: IndexCacheManager) -> None:
    cache.get_or_build(GLOBAL)
    cache.get_or_build(CollectionIndexScope(1))
    cache.get_or_build(CollectionIndexScope(2))

    assert cache.invalidate_all() == 3
    assert cache.invalidate_all() == 0


def test_artifact_from_another_backend_is_rebuilt(
    populated: SQLiteStorageAdapter, temp_dir: Path
) -> None:
    cache_dir = temp_dir / "index_cache"
    path = cache_dir / "global.idx"
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(b"hnsw\0" + b"payload from a different backend")

    manager = IndexCacheManager(populated, VoronoiBackend(), dimensions=2, cache_dir=cache_dir)
    rebuilt = manager.get_or_build(GLOBAL)

    assert manager.backend.count(rebuilt.handle) == 3
    assert path.read_bytes().startswith(b"in_house_voronoi;metric=euclidean_distance;cells=2\0")


def _nearest_label(manager: IndexCacheManager, query: list[float]) -> int:
    built = manager.get_or_build(GLOBAL)
    result = manager.backend.search(built.handle, np.asarray([query]), 1)
    return built.documents[result.first_labels()[0]].id


def test_artifact_built_for_another_metric_is_rebuilt(
    storage: SQLiteStorageAdapter, temp_dir: Path
) -> None:
    collection = storage.insert_collection("docs")
    storage.insert_document(
        Document(id=1, content="near", embedding=(1.0, 0.0), collection_id=collection.id)
    )
    storage.insert_document(
        Document(id=2, content="big", embedding=(10.0, 0.0), collection_id=collection.id)
    )
    cache_dir = temp_dir / "index_cache"

    euclidean = IndexCacheManager(
        storage, VoronoiBackend(cells=1), dimensions=2, cache_dir=cache_dir
    )
    assert _nearest_label(euclidean, [1.0, 0.0]) == 1

    dot = IndexCacheManager(
        storage,
        VoronoiBackend(cells=1),
        dimensions=2,
        metric=Metric.DOT_PRODUCT,
        cache_dir=cache_dir,
    )
    assert _nearest_label(dot, [1.0, 0.0]) == 2
    assert dot.cache_path(GLOBAL).read_bytes().startswith(dot.header() + b"\0")


def test_artifact_built_with_other_tuning_is_rebuilt(
    populated: SQLiteStorageAdapter, temp_dir: Path, caplog: pytest.LogCaptureFixture
) -> None:
    cache_dir = temp_dir / "index_cache"
    IndexCacheManager(
        populated, VoronoiBackend(cells=2), dimensions=2, cache_dir=cache_dir
    ).get_or_build(GLOBAL)

    retuned = IndexCacheManager(
        populated, VoronoiBackend(cells=1), dimensions=2, cache_dir=cache_dir
    )
    with caplog.at_level(logging.WARNING, logger="voronoidb.index.cache"):
        rebuilt = retuned.get_or_build(GLOBAL)

    assert retuned.backend.count(rebuilt.handle) == 3
    assert len(rebuilt.handle.centroids) == 1
    assert any("cells=2" in record.message for record in caplog.records)


def test_header_lists_metric_and_sorted_tuning(storage: SQLiteStorageAdapter) -> None:
    manager = IndexCacheManager(
        storage, VoronoiBackend(cells=4), dimensions=2, metric=Metric.COSINE_SIMILARITY
    )
    assert manager.header() == b"in_house_voronoi;metric=cosine_similarity;cells=4"
