"""Application layer for voronoidb.

The database service orchestrates the index core without touching SQLite,
faiss or hnswlib directly. All side effects are delegated to adapters via
port interfaces.
"""

__all__ = ["VectorDatabase"]

from voronoidb.app.database import VectorDatabase
