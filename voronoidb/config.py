"""Configuration management with Pydantic and XDG base directory support."""

import sys
from pathlib import Path
from typing import Literal

from pydantic import Field, PrivateAttr
from pydantic_settings import BaseSettings, SettingsConfigDict

from voronoidb.app.ports.vector_store import BackendKind
from voronoidb.models import Metric
from voronoidb.utils.paths import get_xdg_data_home

LogLevel = Literal["DEBUG", "INFO", "WARNING", "ERROR"]

DATABASE_FILENAME = "voronoidb.sqlite3"
CACHE_DIRNAME = "index_cache"


class Settings(BaseSettings):
    """voronoidb configuration settings.

    Precedence: CLI flag > environment variable > .env file > defaults.
    """

    model_config = SettingsConfigDict(
        env_prefix="VORONOIDB_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Storage
    data_dir: Path | None = Field(
        default=None,
        description="Override data directory (defaults to XDG_DATA_HOME/voronoidb)",
    )

    in_memory: bool = Field(
        default=False,
        description="Keep the database and index cache in memory instead of on disk",
    )

    # Vectors
    dimensions: int = Field(
        default=3,
        ge=1,
        description="Embedding dimensionality enforced for every stored document",
    )

    # Index settings
    index_backend: BackendKind = Field(
        default=BackendKind.IN_HOUSE_VORONOI,
        description="ANN backend: in_house_voronoi, flat, inverted_file or hnsw",
    )

    index_metric: Metric = Field(
        default=Metric.EUCLIDEAN_DISTANCE,
        description="Metric used by the cached ANN index",
    )

    ivf_nlist: int = Field(
        default=2,
        ge=1,
        description="Number of inverted lists for the inverted_file backend",
    )

    ivf_nprobe: int = Field(
        default=1,
        ge=1,
        description="Inverted lists scanned per query by the inverted_file backend",
    )

    voronoi_cells: int = Field(
        default=2,
        ge=1,
        description="Target PNN cell count for the in_house_voronoi backend",
    )

    hnsw_m: int = Field(default=32, ge=2, description="HNSW graph degree")

    hnsw_ef_construction: int = Field(
        default=200,
        ge=1,
        description="HNSW candidate list size during construction",
    )

    hnsw_ef_search: int = Field(
        default=64,
        ge=1,
        description="HNSW candidate list size during search",
    )

    # Logging
    log_level: LogLevel = Field(
        default="WARNING",
        description="Root log level configured by the CLI",
    )

    _resolved_data_dir: Path | None = PrivateAttr(default=None)
    _data_dir_warning_emitted: bool = PrivateAttr(default=False)

    def get_data_dir(self) -> Path:
        """Get the data directory, creating if necessary."""
        if self._resolved_data_dir is not None:
            return self._resolved_data_dir

        if self.data_dir:
            data_dir = self.data_dir
            data_dir.mkdir(parents=True, exist_ok=True)
            self._resolved_data_dir = data_dir
            return data_dir

        primary_dir = get_xdg_data_home() / "voronoidb"
        try:
            primary_dir.mkdir(parents=True, exist_ok=True)
            self._resolved_data_dir = primary_dir
            return primary_dir
        except PermissionError as exc:
            fallback = Path.cwd() / ".voronoidb-data"
            fallback.mkdir(parents=True, exist_ok=True)
            self._resolved_data_dir = fallback
            if not self._data_dir_warning_emitted:
                print(
                    f"Warning: cannot create data directory at {primary_dir} ({exc}). "
                    f"Using local '{fallback}' instead. Pass --data-dir to override.",
                    file=sys.stderr,
                )
                self._data_dir_warning_emitted = True
            return fallback

    def get_database_path(self) -> Path | None:
        """Path to the SQLite file, or ``None`` in in-memory mode."""
        if self.in_memory:
            return None
        return self.get_data_dir() / DATABASE_FILENAME

    def get_cache_dir(self) -> Path | None:
        """Directory holding cached indexes, or ``None`` in in-memory mode."""
        if self.in_memory:
            return None
        cache_dir = self.get_data_dir() / CACHE_DIRNAME
        cache_dir.mkdir(parents=True, exist_ok=True)
        return cache_dir


# Global settings instance
_settings: Settings | None = None


def get_settings() -> Settings:
    """Get or create the global settings instance."""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def set_settings(settings: Settings) -> None:
    """Set the global settings instance (useful for testing)."""
    global _settings
    _settings = settings
