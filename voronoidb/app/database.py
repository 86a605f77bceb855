"""Vector database service: collections, documents and search.

``VectorDatabase`` is the public entry point. It validates input, persists rows
through a :class:`~voronoidb.app.ports.storage.StoragePort`, keeps the index
cache consistent with every mutation and dispatches searches to the exact
ranker, the Voronoi partition index or the cached ANN backend.

All operations are synchronous. Training and index rebuilds can take a long
time on large collections and block the caller; a re-entrant lock serializes
mutations, training and cache rebuilds on one instance.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Sequence
from types import TracebackType

import numpy as np

from voronoidb.app.ports.storage import StoragePort
from voronoidb.errors import CollectionDoesNotExist, DocumentDoesNotExist
from voronoidb.index.cache import IndexCacheManager
from voronoidb.index.cells import PartitionIndex
from voronoidb.index.ranking import rank, rank_with_scores
from voronoidb.index.vectors import VectorLike, check_dimensions
from voronoidb.models import (
    ALL,
    Cell,
    Collection,
    CollectionIndexScope,
    CollectionScope,
    Document,
    Metric,
    ScoredDocument,
    SpecificCollection,
    TrainingState,
    index_scope_for,
    scope_of,
)

logger = logging.getLogger(__name__)

ScopeArg = Collection | CollectionScope | None


class VectorDatabase:
    """Embedded vector database over a storage port and an index cache."""

    def __init__(
        self,
        storage: StoragePort,
        cache: IndexCacheManager,
        *,
        dimensions: int,
    ) -> None:
        self._storage = storage
        self._storage.initialize()
        self._cache = cache
        self._dimensions = dimensions
        self._partitions = PartitionIndex(storage, dimensions=dimensions)
        self._lock = threading.RLock()

    # Lifecycle -----------------------------------------------------------

    def close(self) -> None:
        self._storage.close()

    def __enter__(self) -> VectorDatabase:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()

    @property
    def dimensions(self) -> int:
        return self._dimensions

    @property
    def cache(self) -> IndexCacheManager:
        return self._cache

    @property
    def training_state(self) -> TrainingState:
        return self._partitions.state

    @property
    def is_trained(self) -> bool:
        return self._partitions.is_trained

    # Collections ---------------------------------------------------------

    def create_collection(self, name: str) -> Collection:
        """Create a collection.

        Raises:
            CollectionExists: If ``name`` is already taken
            ValueError: If ``name`` is blank
        """
        if not name or not name.strip():
            raise ValueError("Collection name cannot be empty")
        with self._lock:
            collection = self._storage.insert_collection(name)
        logger.info("Created collection %s (id=%d)", name, collection.id)
        return collection

    def get_collection(self, name: str) -> Collection:
        """Look up a collection by name.

        Raises:
            CollectionDoesNotExist: If no collection has ``name``
        """
        collection = self._storage.select_collection(name)
        if collection is None:
            raise CollectionDoesNotExist(name)
        return collection

    def list_collections(self) -> list[Collection]:
        return self._storage.select_collections()

    def delete_collection(self, collection: Collection) -> None:
        """Delete ``collection`` and its documents, dropping affected caches."""
        with self._lock:
            removed = self._storage.delete_collection(collection.id)
            self._cache.invalidate(CollectionIndexScope(collection.id))
        logger.info("Deleted collection %s with %d documents", collection.name, removed)

    # Documents -----------------------------------------------------------

    def _validated(self, embedding: VectorLike) -> tuple[float, ...]:
        array = check_dimensions(embedding, self._dimensions)
        if not np.all(np.isfinite(array)):
            raise ValueError("Embeddings must contain only finite values")
        return tuple(float(x) for x in array)

    def create_document(
        self,
        collection: Collection,
        content: str,
        embedding: VectorLike,
    ) -> Document:
        """Store a document in ``collection``.

        When the database is trained the document joins its nearest cell.

        Raises:
            DimensionMismatch: If ``embedding`` has the wrong length
            CollectionDoesNotExist: If ``collection`` was deleted
        """
        vector = self._validated(embedding)
        with self._lock:
            document = Document(
                id=self._storage.max_document_id() + 1,
                content=content,
                embedding=vector,
                collection_id=collection.id,
                cell_id=self._partitions.assign(vector),
            )
            self._storage.insert_document(document)
            self._cache.invalidate(CollectionIndexScope(collection.id))
        logger.debug("Created document %d in collection %d", document.id, collection.id)
        return document

    def get_document(self, document_id: int) -> Document:
        document = self._storage.select_document(document_id)
        if document is None:
            raise DocumentDoesNotExist(document_id)
        return document

    def update_document(
        self,
        document_id: int,
        *,
        content: str | None = None,
        embedding: VectorLike | None = None,
    ) -> Document:
        """Replace the content and/or embedding of a document.

        The collection is immutable; a new embedding is reassigned to its
        nearest cell when the database is trained.
        """
        with self._lock:
            current = self.get_document(document_id)
            vector = current.embedding if embedding is None else self._validated(embedding)
            cell_id = current.cell_id if embedding is None else self._partitions.assign(vector)
            updated = Document(
                id=current.id,
                content=current.content if content is None else content,
                embedding=vector,
                collection_id=current.collection_id,
                cell_id=cell_id,
            )
            self._storage.update_document(updated)
            self._cache.invalidate(CollectionIndexScope(current.collection_id))
        return updated

    def delete_document(self, document_id: int) -> None:
        with self._lock:
            current = self.get_document(document_id)
            self._storage.delete_document(document_id)
            self._cache.invalidate(CollectionIndexScope(current.collection_id))

    def get_all_documents(self, scope: ScopeArg = ALL) -> list[Document]:
        """Return documents ordered by id, across all collections or within one."""
        return self._storage.select_documents(scope_of(scope).collection_id)

    def get_cells(self) -> list[Cell]:
        return self._partitions.cells

    # Training ------------------------------------------------------------

    def train(self, target_cell_count: int) -> list[Cell]:
        """Cluster all documents into at most ``target_cell_count`` cells.

        Replaces any previous training pass. Blocking; see module docstring.
        """
        with self._lock:
            documents = self._storage.select_documents()
            return self._partitions.train(documents, target_cell_count)

    def reset_training(self) -> None:
        with self._lock:
            self._partitions.reset_training()

    # Search --------------------------------------------------------------

    def _query(self, query: VectorLike) -> np.ndarray:
        return check_dimensions(query, self._dimensions)

    def search(
        self,
        query: VectorLike,
        k: int = 5,
        metric: Metric = Metric.EUCLIDEAN_DISTANCE,
        scope: ScopeArg = ALL,
    ) -> list[Document]:
        """Exact top-``k`` search over every document in ``scope``."""
        vector = self._query(query)
        return rank(vector, self.get_all_documents(scope), k, metric)

    def search_with_scores(
        self,
        query: VectorLike,
        k: int = 5,
        metric: Metric = Metric.EUCLIDEAN_DISTANCE,
        scope: ScopeArg = ALL,
    ) -> list[ScoredDocument]:
        vector = self._query(query)
        return rank_with_scores(vector, self.get_all_documents(scope), k, metric)

    def partitioned_search(
        self,
        query: VectorLike,
        k: int = 5,
        scope: ScopeArg = ALL,
    ) -> list[Document]:
        """Approximate search restricted to the query's nearest cell.

        Raises:
            DatabaseNotTrained: If :meth:`train` has not completed
        """
        vector = self._query(query)
        return self._partitions.partitioned_search(vector, scope_of(scope), k)

    def index_search(
        self,
        query: VectorLike,
        k: int = 5,
        scope: ScopeArg = ALL,
    ) -> list[Document]:
        """Search the cached ANN index for ``scope``, building it if needed.

        Raises:
            IndexNotTrained: If the backend handle is not trained
        """
        vector = self._query(query)
        resolved = scope_of(scope)
        with self._lock:
            cached = self._cache.get_or_build(index_scope_for(resolved))
        if not cached.documents or k <= 0:
            return []

        backend = self._cache.backend
        result = backend.search(cached.handle, vector.reshape(1, -1), k)
        documents = cached.translate(result.first_labels())
        if isinstance(resolved, SpecificCollection):
            documents = [doc for doc in documents if resolved.matches(doc)]
        return documents

    def rank_documents(
        self,
        query: VectorLike,
        documents: Sequence[Document],
        k: int = 5,
        metric: Metric = Metric.EUCLIDEAN_DISTANCE,
    ) -> list[Document]:
        """Rank an explicit document list with the exact ranker."""
        return rank(self._query(query), documents, k, metric)
