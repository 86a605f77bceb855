"""Port interfaces for the voronoidb application layer.

Domain logic depends on these protocols, never on concrete implementations.
"""

__all__ = [
    "AnnBackendPort",
    "BackendKind",
    "SearchResult",
    "StoragePort",
]

from voronoidb.app.ports.storage import StoragePort
from voronoidb.app.ports.vector_store import AnnBackendPort, BackendKind, SearchResult
