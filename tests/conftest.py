"""Pytest configuration and fixtures."""

import gc
import shutil
import tempfile
import time
from collections.abc import Generator
from pathlib import Path

import pytest

from voronoidb.app.adapters.sqlite_storage import SQLiteStorageAdapter
from voronoidb.app.adapters.voronoi import VoronoiBackend
from voronoidb.app.database import VectorDatabase
from voronoidb.config import Settings
from voronoidb.index.cache import IndexCacheManager


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for tests."""
    tmpdir = tempfile.mkdtemp()
    try:
        yield Path(tmpdir)
    finally:
        # Force garbage collection to release any SQLite handles
        gc.collect()
        time.sleep(0.05)
        shutil.rmtree(tmpdir, ignore_errors=True)


@pytest.fixture
def override_settings(temp_dir: Path) -> Generator[Settings, None, None]:
    """Provide isolated voronoidb settings scoped to tests."""

    import voronoidb.config as config_module

    original_settings = getattr(config_module, "_settings", None)

    data_dir = temp_dir / "appdata"
    data_dir.mkdir(parents=True, exist_ok=True)

    settings = config_module.Settings(data_dir=data_dir, dimensions=3)

    config_module._settings = settings

    try:
        yield settings
    finally:
        config_module._settings = original_settings


@pytest.fixture
def storage() -> Generator[SQLiteStorageAdapter, None, None]:
    """In-memory SQLite storage with the schema created."""
    adapter = SQLiteStorageAdapter()
    adapter.initialize()
    try:
        yield adapter
    finally:
        adapter.close()


def make_database(
    *,
    dimensions: int = 3,
    cache_dir: Path | None = None,
    backend=None,
    database_path: Path | str = ":memory:",
) -> VectorDatabase:
    storage = SQLiteStorageAdapter(database_path)
    cache = IndexCacheManager(
        storage,
        backend or VoronoiBackend(cells=2),
        dimensions=dimensions,
        cache_dir=cache_dir,
    )
    return VectorDatabase(storage, cache, dimensions=dimensions)


@pytest.fixture
def database() -> Generator[VectorDatabase, None, None]:
    """In-memory three-dimensional database using the Voronoi backend."""
    db = make_database()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture
def disk_database(temp_dir: Path) -> Generator[VectorDatabase, None, None]:
    """File-backed database whose index cache lives under ``temp_dir``."""
    db = make_database(
        cache_dir=temp_dir / "index_cache",
        database_path=temp_dir / "voronoidb.sqlite3",
    )
    try:
        yield db
    finally:
        db.close()


@pytest.fixture
def database_factory():
    """Return a builder for databases with custom paths or backends."""
    return make_database
