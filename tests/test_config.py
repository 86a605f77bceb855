from __future__ import annotations

from pathlib import Path

import pytest
from pydantic import ValidationError

from voronoidb.app.ports.vector_store import BackendKind
from voronoidb.config import Settings, get_settings, set_settings
from voronoidb.models import Metric


def test_defaults() -> None:
    settings = Settings(_env_file=None)
    assert settings.dimensions == 3
    assert settings.index_backend is BackendKind.IN_HOUSE_VORONOI
    assert settings.index_metric is Metric.EUCLIDEAN_DISTANCE
    assert settings.ivf_nlist == 2
    assert settings.voronoi_cells == 2


def test_paths_live_under_data_dir(tmp_path: Path) -> None:
    settings = Settings(data_dir=tmp_path / "data", _env_file=None)
    assert settings.get_database_path() == tmp_path / "data" / "voronoidb.sqlite3"
    cache_dir = settings.get_cache_dir()
    assert cache_dir == tmp_path / "data" / "index_cache"
    assert cache_dir is not None and cache_dir.is_dir()


def test_in_memory_has_no_paths(tmp_path: Path) -> None:
    settings = Settings(data_dir=tmp_path, in_memory=True, _env_file=None)
    assert settings.get_database_path() is None
    assert settings.get_cache_dir() is None


def test_xdg_data_home_default(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("XDG_DATA_HOME", str(tmp_path / "xdg"))
    settings = Settings(_env_file=None)
    assert settings.get_data_dir() == tmp_path / "xdg" / "voronoidb"


def test_environment_overrides(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("VORONOIDB_DIMENSIONS", "8")
    monkeypatch.setenv("VORONOIDB_INDEX_BACKEND", "hnsw")
    monkeypatch.setenv("VORONOIDB_INDEX_METRIC", "cosine_similarity")
    settings = Settings(_env_file=None)
    assert settings.dimensions == 8
    assert settings.index_backend is BackendKind.HNSW
    assert settings.index_metric is Metric.COSINE_SIMILARITY


def test_invalid_values_are_rejected() -> None:
    with pytest.raises(ValidationError):
        Settings(dimensions=0, _env_file=None)
    with pytest.raises(ValidationError):
        Settings(index_backend="annoy", _env_file=None)


def test_global_settings_can_be_replaced(override_settings: Settings) -> None:
    assert get_settings() is override_settings
    replacement = Settings(dimensions=5, _env_file=None)
    set_settings(replacement)
    assert get_settings().dimensions == 5
