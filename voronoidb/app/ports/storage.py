"""Storage port interface for relational persistence of collections, documents and cells."""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from typing import Protocol

from voronoidb.models import Cell, Collection, Document


class StoragePort(Protocol):
    """Port interface for the persistence collaborator.

    Implementations own three tables: ``collections(id, name unique)``,
    ``documents(id, content, embedding, collection_id, cell_id nullable)`` and
    ``cells(id, centroid)``. Each call is a single statement (or a single
    transaction for batch calls); failures raise
    :class:`~voronoidb.errors.StorageFailure`.

    Side effects: Reads/writes the backing database.
    """

    def initialize(self) -> None:
        """Create the schema if it does not exist."""
        ...

    def close(self) -> None: ...

    # Collections
    def insert_collection(self, name: str) -> Collection:
        """Insert a collection row.

        Raises:
            CollectionExists: If ``name`` is already taken
        """
        ...

    def select_collection(self, name: str) -> Collection | None: ...

    def select_collections(self) -> list[Collection]: ...

    def delete_collection(self, collection_id: int) -> int:
        """Delete a collection and its documents; return deleted document count."""
        ...

    # Documents
    def max_document_id(self) -> int:
        """Return the largest document id, or 0 when the table is empty."""
        ...

    def insert_document(self, document: Document) -> None:
        """Insert a row.

        Raises:
            CollectionDoesNotExist: If ``document.collection_id`` has no row
        """
        ...

    def select_document(self, document_id: int) -> Document | None: ...

    def select_documents(self, collection_id: int | None = None) -> list[Document]:
        """Return documents ordered by id, optionally filtered by collection."""
        ...

    def select_documents_in_cell(
        self, cell_id: int, collection_id: int | None = None
    ) -> list[Document]: ...

    def update_document(self, document: Document) -> None: ...

    def delete_document(self, document_id: int) -> bool: ...


    # Cells
    def replace_partitions(
        self,
        centroids: Sequence[Sequence[float]],
        assignments: Iterable[tuple[int, int]],
    ) -> list[Cell]:
        """Atomically swap in a new cell set and document assignments.

        Args:
            centroids: Cell centroids; cell ``i`` receives id ``i``
            assignments: ``(document_id, cell_id)`` pairs

        Returns:
            The stored cells in centroid order
        """
        ...

    def clear_partitions(self) -> None:
        """Atomically delete every cell and clear every document's cell id."""
        ...

    def select_cells(self) -> list[Cell]:
        """Return cells ordered by id."""
        ...
