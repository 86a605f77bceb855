"""Value types shared by the storage, index and search layers."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class Metric(str, Enum):
    """Scoring function used to rank documents against a query."""

    DOT_PRODUCT = "dot_product"
    COSINE_SIMILARITY = "cosine_similarity"
    EUCLIDEAN_DISTANCE = "euclidean_distance"

    @property
    def descending(self) -> bool:
        """True when larger scores are better."""
        return self is not Metric.EUCLIDEAN_DISTANCE


class TrainingState(str, Enum):
    TRAINED = "trained"
    UNTRAINED = "untrained"


@dataclass(frozen=True, slots=True)
class Collection:
    """A named partition of documents."""

    id: int
    name: str


@dataclass(frozen=True, slots=True)
class Document:
    """A stored document and its embedding.

    ``cell_id`` stays ``None`` until a training pass assigns the document to a
    partition cell.
    """

    id: int
    content: str
    embedding: tuple[float, ...]
    collection_id: int
    cell_id: int | None = None


@dataclass(frozen=True, slots=True)
class Cell:
    """A centroid produced by clustering, anchoring one Voronoi partition."""

    id: int
    centroid: tuple[float, ...]


@dataclass(frozen=True, slots=True)
class ScoredDocument:
    document: Document
    score: float


@dataclass(frozen=True, slots=True)
class AllCollections:
    """Scope covering every collection in the database."""

    def matches(self, document: Document) -> bool:
        return True

    @property
    def collection_id(self) -> None:
        return None


@dataclass(frozen=True, slots=True)
class SpecificCollection:
    """Scope restricted to a single collection."""

    collection: Collection

    def matches(self, document: Document) -> bool:
        return document.collection_id == self.collection.id

    @property
    def collection_id(self) -> int:
        return self.collection.id


CollectionScope = AllCollections | SpecificCollection

ALL = AllCollections()


def scope_of(value: Collection | CollectionScope | None) -> CollectionScope:
    """Coerce ``None``, a collection or an existing scope into a scope."""
    if value is None:
        return ALL
    if isinstance(value, Collection):
        return SpecificCollection(value)
    if isinstance(value, (AllCollections, SpecificCollection)):
        return value
    raise TypeError(f"Unsupported collection scope: {value!r}")


@dataclass(frozen=True, slots=True)
class GlobalScope:
    """Cache key for the index spanning all collections."""

    @property
    def cache_name(self) -> str:
        return "global"


@dataclass(frozen=True, slots=True)
class CollectionIndexScope:
    """Cache key for the index of one collection."""

    collection_id: int

    @property
    def cache_name(self) -> str:
        return f"collection-{self.collection_id}"


IndexScope = GlobalScope | CollectionIndexScope

GLOBAL = GlobalScope()


def index_scope_for(scope: CollectionScope) -> IndexScope:
    """Map a query scope onto the cache key that serves it."""
    if isinstance(scope, SpecificCollection):
        return CollectionIndexScope(scope.collection.id)
    return GLOBAL


@dataclass(slots=True)
class CachedIndex:
    """A backend index handle plus the documents it was built from.

    Position ``i`` in ``documents`` is the document behind backend label ``i``.
    """

    scope: IndexScope
    handle: Any
    documents: list[Document] = field(default_factory=list)

    def translate(self, labels: list[int]) -> list[Document]:
        """Map backend labels to documents, skipping labels out of range."""
        count = len(self.documents)
        return [self.documents[label] for label in labels if 0 <= label < count]
