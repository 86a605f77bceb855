"""Voronoi partition index built from PNN cell centroids."""

from __future__ import annotations

import logging
import math
from collections.abc import Sequence

from voronoidb.app.ports.storage import StoragePort
from voronoidb.errors import DatabaseNotTrained, NoCellsFound
from voronoidb.index.clustering import cluster
from voronoidb.index.ranking import rank
from voronoidb.index.vectors import VectorLike, check_dimensions, distance_squared
from voronoidb.models import (
    ALL,
    Cell,
    CollectionScope,
    Document,
    Metric,
    TrainingState,
)

logger = logging.getLogger(__name__)


def nearest_cell(vector: VectorLike, cells: Sequence[Cell]) -> Cell:
    """Return the cell whose centroid is closest to ``vector``.

    Linear scan; on equal distances the first cell in ``cells`` wins.

    Raises:
        NoCellsFound: If ``cells`` is empty
    """
    best: Cell | None = None
    best_distance = math.inf
    for cell in cells:
        distance = distance_squared(cell.centroid, vector)
        if distance < best_distance:
            best, best_distance = cell, distance
    if best is None:
        raise NoCellsFound("No cells are stored; train the database first")
    return best


class PartitionIndex:
    """Train, assign and search Voronoi cells persisted through a storage port.

    Training state is explicit: it starts from whatever cells are already
    stored and changes only through :meth:`train` and :meth:`reset_training`.
    """

    def __init__(self, storage: StoragePort, *, dimensions: int | None = None) -> None:
        self._storage = storage
        self._dimensions = dimensions
        self._cells: list[Cell] = storage.select_cells()
        self._state = TrainingState.TRAINED if self._cells else TrainingState.UNTRAINED

    @property
    def state(self) -> TrainingState:
        return self._state

    @property
    def is_trained(self) -> bool:
        return self._state is TrainingState.TRAINED

    @property
    def cells(self) -> list[Cell]:
        return list(self._cells)

    def train(self, documents: Sequence[Document], target_cell_count: int) -> list[Cell]:
        """Cluster ``documents`` into cells and assign every document.

        Blocking: PNN clustering is quadratic in the number of documents.

        Raises:
            ValueError: If there are no documents or ``target_cell_count`` < 1
        """
        if target_cell_count < 1:
            raise ValueError("target_cell_count must be at least 1")
        if not documents:
            raise ValueError("Cannot train without documents")

        embeddings = [check_dimensions(doc.embedding, self._dimensions) for doc in documents]
        centroids = cluster(embeddings, target_cell_count)
        provisional = [Cell(id=index, centroid=centroid) for index, centroid in enumerate(centroids)]
        assignments = [
            (doc.id, nearest_cell(embedding, provisional).id)
            for doc, embedding in zip(documents, embeddings, strict=True)
        ]

        self._cells = self._storage.replace_partitions(centroids, assignments)
        self._state = TrainingState.TRAINED
        logger.info(
            "Trained %d cells over %d documents (target %d)",
            len(self._cells),
            len(documents),
            target_cell_count,
        )
        return self.cells

    def reset_training(self) -> None:
        """Drop all cells and assignments; safe to call when untrained."""
        self._storage.clear_partitions()
        self._cells = []
        self._state = TrainingState.UNTRAINED
        logger.info("Training reset")

    def nearest_cell(self, vector: VectorLike, cells: Sequence[Cell] | None = None) -> Cell:
        check_dimensions(vector, self._dimensions)
        return nearest_cell(vector, self._cells if cells is None else cells)

    def assign(self, embedding: VectorLike) -> int | None:
        """Cell id for a new embedding, or ``None`` while untrained."""
        if not self.is_trained:
            return None
        return self.nearest_cell(embedding).id

    def partitioned_search(
        self,
        query: VectorLike,
        scope: CollectionScope = ALL,
        k: int = 5,
    ) -> list[Document]:
        """Rank only the documents in the query's nearest cell.

        This is an approximate search: neighbours that fall in another cell are
        never considered, trading recall for a smaller scan.

        Raises:
            DatabaseNotTrained: If no training pass has completed
        """
        if not self.is_trained:
            raise DatabaseNotTrained("Partitioned search requires a trained database")

        cell = self.nearest_cell(query)
        candidates = self._storage.select_documents_in_cell(cell.id, scope.collection_id)
        logger.debug("Cell %d holds %d candidate documents", cell.id, len(candidates))
        return rank(query, candidates, k, Metric.EUCLIDEAN_DISTANCE)
