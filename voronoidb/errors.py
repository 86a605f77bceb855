"""Exception taxonomy for voronoidb.

Every error raised by the database derives from :class:`VoronoiDBError` so
callers can catch the whole family at the application boundary.
"""

from __future__ import annotations


class VoronoiDBError(Exception):
    """Base class for all voronoidb errors."""

    pass


class DimensionMismatch(VoronoiDBError, ValueError):
    """Raised when a vector's length differs from the expected dimensionality."""

    def __init__(self, expected: int, actual: int) -> None:
        super().__init__(f"Expected a vector of dimension {expected}; received {actual}")
        self.expected = expected
        self.actual = actual


class CollectionDoesNotExist(VoronoiDBError, LookupError):
    """Raised when a collection lookup by name or id finds no row."""

    def __init__(self, name: str | int) -> None:
        super().__init__(f"Collection does not exist: {name!r}")
        self.name = name


class CollectionExists(VoronoiDBError):
    """Raised when creating a collection whose name is already taken."""

    def __init__(self, name: str) -> None:
        super().__init__(f"Collection already exists: {name!r}")
        self.name = name


class DocumentDoesNotExist(VoronoiDBError, LookupError):
    """Raised when a document id has no stored row."""

    def __init__(self, document_id: int) -> None:
        super().__init__(f"Document does not exist: {document_id}")
        self.document_id = document_id


class DatabaseNotTrained(VoronoiDBError):
    """Raised when a partitioned search is requested before training."""

    pass


class NoCellsFound(VoronoiDBError):
    """Raised when a partition lookup runs against an empty cell set."""

    pass


class IndexNotTrained(VoronoiDBError):
    """Raised when an ANN backend handle is searched before training."""

    pass


class CacheCorrupt(VoronoiDBError):
    """Raised when a cached index artifact cannot be deserialized."""

    pass


class StorageFailure(VoronoiDBError):
    """Raised when the persistence layer fails an I/O operation."""

    pass


class BackendUnavailable(VoronoiDBError, RuntimeError):
    """Raised when an optional ANN backend library is not installed."""

    pass
