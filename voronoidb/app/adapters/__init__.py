"""Adapter implementations for voronoidb ports."""

__all__ = [
    "FlatBackend",
    "HNSWBackend",
    "InvertedFileBackend",
    "SQLiteStorageAdapter",
    "VoronoiBackend",
]

from voronoidb.app.adapters.faiss_backend import FlatBackend, InvertedFileBackend
from voronoidb.app.adapters.hnsw import HNSWBackend
from voronoidb.app.adapters.sqlite_storage import SQLiteStorageAdapter
from voronoidb.app.adapters.voronoi import VoronoiBackend
