"""Application bootstrap wiring ports, adapters, and services."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from voronoidb.app import VectorDatabase
from voronoidb.app.adapters import (
    FlatBackend,
    HNSWBackend,
    InvertedFileBackend,
    SQLiteStorageAdapter,
    VoronoiBackend,
)
from voronoidb.app.adapters.sqlite_storage import IN_MEMORY
from voronoidb.app.ports import AnnBackendPort, BackendKind, StoragePort
from voronoidb.config import Settings, get_settings
from voronoidb.index.cache import IndexCacheManager

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class ApplicationContainer:
    """Aggregates wired services and adapters for the CLI layer."""

    settings: Settings
    database: VectorDatabase
    storage_port: StoragePort
    backend: AnnBackendPort
    cache: IndexCacheManager

    def close(self) -> None:
        self.database.close()


def create_backend(settings: Settings) -> AnnBackendPort:
    """Instantiate the ANN backend selected by ``settings.index_backend``."""
    kind = BackendKind(settings.index_backend)
    if kind is BackendKind.IN_HOUSE_VORONOI:
        return VoronoiBackend(cells=settings.voronoi_cells)
    if kind is BackendKind.FLAT:
        return FlatBackend()
    if kind is BackendKind.INVERTED_FILE:
        return InvertedFileBackend(nlist=settings.ivf_nlist, nprobe=settings.ivf_nprobe)
    if kind is BackendKind.HNSW:
        return HNSWBackend(
            m=settings.hnsw_m,
            ef_construction=settings.hnsw_ef_construction,
            ef_search=settings.hnsw_ef_search,
        )
    raise ValueError(f"Unsupported index backend: {kind}")


def bootstrap_application(settings: Settings | None = None) -> ApplicationContainer:
    """Instantiate storage, backend, cache and database for CLI consumption."""

    active_settings = settings or get_settings()

    database_path = active_settings.get_database_path()
    storage = SQLiteStorageAdapter(database_path if database_path is not None else IN_MEMORY)
    backend = create_backend(active_settings)
    cache = IndexCacheManager(
        storage,
        backend,
        dimensions=active_settings.dimensions,
        metric=active_settings.index_metric,
        cache_dir=active_settings.get_cache_dir(),
    )
    database = VectorDatabase(storage, cache, dimensions=active_settings.dimensions)
    logger.debug(
        "Opened database at %s with %s backend",
        storage.path,
        backend.kind.value,
    )

    return ApplicationContainer(
        settings=active_settings,
        database=database,
        storage_port=storage,
        backend=backend,
        cache=cache,
    )


def open_database(settings: Settings | None = None) -> VectorDatabase:
    """Shortcut returning only the wired :class:`VectorDatabase`."""
    return bootstrap_application(settings).database
