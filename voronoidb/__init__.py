"""voronoidb - embedded vector database with Voronoi partitioned search.

Documents with fixed-dimension embeddings are stored in SQLite, grouped into
collections and searched exactly, by nearest PNN cell, or through a cached
ANN backend index.
"""

__version__ = "0.1.0"
__author__ = "voronoidb Contributors"

from voronoidb.config import Settings, get_settings

__all__ = ["Settings", "get_settings", "__version__"]
