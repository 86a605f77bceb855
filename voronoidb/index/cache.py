"""Per-scope cache of serialized ANN backend indexes.

Each scope (global or one collection) owns at most one artifact. A scope is
either absent from the cache or holds an index built from exactly the scope's
current documents: every mutation invalidates the scopes it touches, and a
collection invalidation always drops the global artifact too, since the global
index aggregates all collections.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

import numpy as np

from voronoidb.app.ports.storage import StoragePort
from voronoidb.app.ports.vector_store import AnnBackendPort
from voronoidb.errors import CacheCorrupt, StorageFailure
from voronoidb.index.vectors import stack
from voronoidb.models import (
    GLOBAL,
    CachedIndex,
    CollectionIndexScope,
    Document,
    IndexScope,
    Metric,
)
from voronoidb.utils.paths import atomic_write_bytes

logger = logging.getLogger(__name__)

CACHE_SUFFIX = ".idx"
_HEADER_SEPARATOR = b"\0"


class IndexCacheManager:
    """Build, load and invalidate cached backend indexes.

    With ``cache_dir`` set, artifacts live at ``<cache_dir>/<scope>.idx``;
    without it (in-memory databases) the serialized bytes are kept in a dict.
    Each artifact starts with :meth:`header` and a NUL byte.
    Index builds are blocking and run on the caller's thread.
    """

    def __init__(
        self,
        storage: StoragePort,
        backend: AnnBackendPort,
        *,
        dimensions: int,
        metric: Metric = Metric.EUCLIDEAN_DISTANCE,
        cache_dir: Path | None = None,
    ) -> None:
        self._storage = storage
        self._backend = backend
        self._dimensions = dimensions
        self._metric = metric
        self._cache_dir = Path(cache_dir) if cache_dir is not None else None
        self._memory: dict[str, bytes] = {}

    @property
    def backend(self) -> AnnBackendPort:
        return self._backend

    @property
    def metric(self) -> Metric:
        return self._metric

    def cache_path(self, scope: IndexScope) -> Path | None:
        if self._cache_dir is None:
            return None
        return self._cache_dir / f"{scope.cache_name}{CACHE_SUFFIX}"

    def is_cached(self, scope: IndexScope) -> bool:
        path = self.cache_path(scope)
        if path is None:
            return scope.cache_name in self._memory
        return path.exists()

    def _read(self, scope: IndexScope) -> bytes | None:
        path = self.cache_path(scope)
        if path is None:
            return self._memory.get(scope.cache_name)
        if not path.exists():
            return None
        try:
            return path.read_bytes()
        except OSError as exc:
            raise StorageFailure(f"Cannot read cached index {path}: {exc}") from exc

    def _write(self, scope: IndexScope, data: bytes) -> None:
        path = self.cache_path(scope)
        if path is None:
            self._memory[scope.cache_name] = data
            return
        try:
            atomic_write_bytes(path, data)
        except OSError as exc:
            raise StorageFailure(f"Cannot write cached index {path}: {exc}") from exc

    def _delete(self, scope: IndexScope) -> bool:
        path = self.cache_path(scope)
        if path is None:
            return self._memory.pop(scope.cache_name, None) is not None
        try:
            existed = path.exists()
            path.unlink(missing_ok=True)
        except OSError as exc:
            raise StorageFailure(f"Cannot delete cached index {path}: {exc}") from exc
        return existed

    def _load_documents(self, scope: IndexScope) -> list[Document]:
        collection_id = scope.collection_id if isinstance(scope, CollectionIndexScope) else None
        return self._storage.select_documents(collection_id)

    def get_or_build(self, scope: IndexScope) -> CachedIndex:
        """Return a ready index for ``scope``, building it when not cached.

        A cached artifact that fails to decode, whose header names another
        backend, metric or tuning, or that holds a different number of vectors
        than the scope's documents is discarded and rebuilt.
        """
        documents = self._load_documents(scope)
        data = self._read(scope)
        if data is not None:
            try:
                handle = self._backend.deserialize(self._unwrap(data))
                stored = self._backend.count(handle)
                if stored != len(documents):
                    raise CacheCorrupt(
                        f"cached index holds {stored} vectors for {len(documents)} documents"
                    )
            except CacheCorrupt as exc:
                logger.warning(
                    "Cached index for %s is corrupted (%s); rebuilding.", scope.cache_name, exc
                )
                self._delete(scope)
            else:
                logger.debug("Loaded cached index for %s", scope.cache_name)
                return CachedIndex(scope=scope, handle=handle, documents=documents)

        vectors = stack([doc.embedding for doc in documents], self._dimensions)
        handle = self._build(vectors)
        if documents:
            payload = self._backend.serialize(handle)
            self._write(scope, self.header() + _HEADER_SEPARATOR + payload)
        logger.info(
            "Built %s index for %s over %d documents",
            self._backend.kind.value,
            scope.cache_name,
            len(documents),
        )
        return CachedIndex(scope=scope, handle=handle, documents=documents)

    def header(self) -> bytes:
        """Describe how artifacts are built: backend kind, metric and tuning.

        Example: ``b"in_house_voronoi;metric=euclidean_distance;cells=2"``.
        """
        fields = [self._backend.kind.value, f"metric={self._metric.value}"]
        fields.extend(
            f"{name}={value}" for name, value in sorted(self._backend.parameters().items())
        )
        return ";".join(fields).encode("ascii")

    def _unwrap(self, data: bytes) -> bytes:
        header, separator, payload = data.partition(_HEADER_SEPARATOR)
        if not separator:
            raise CacheCorrupt("artifact has no backend header")
        expected = self.header()
        if header != expected:
            raise CacheCorrupt(
                f"artifact was built as {header.decode('ascii', 'replace')!r}, "
                f"not {expected.decode('ascii')!r}"
            )
        return payload

    def _build(self, vectors: np.ndarray) -> Any:
        handle = self._backend.build(self._dimensions, self._metric)
        if vectors.shape[0]:
            self._backend.train(handle, vectors)
            self._backend.add(handle, vectors)
        return handle

    def invalidate(self, scope: IndexScope) -> None:
        """Drop the artifact for ``scope``; collection scopes also drop the global one."""
        if self._delete(scope):
            logger.info("Invalidated cached index for %s", scope.cache_name)
        if isinstance(scope, CollectionIndexScope):
            self.invalidate(GLOBAL)

    def invalidate_all(self) -> int:
        """Drop every cached artifact; return how many were removed."""
        if self._cache_dir is None:
            removed = len(self._memory)
            self._memory.clear()
            return removed

        if not self._cache_dir.exists():
            return 0
        removed = 0
        for path in sorted(self._cache_dir.glob(f"*{CACHE_SUFFIX}")):
            try:
                path.unlink()
            except FileNotFoundError:
                continue
            except OSError as exc:
                raise StorageFailure(f"Cannot delete cached index {path}: {exc}") from exc
            removed += 1
        logger.info("Cleared %d cached indexes", removed)
        return removed
