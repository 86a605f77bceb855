"""Exact top-k ranking of documents against a query vector.

One scan over the candidate documents keeps at most ``k`` entries, sorted by
linear insertion. Linear insertion is O(n * k); a heap would suit large ``k``.
"""

from __future__ import annotations

import math
from collections.abc import Callable, Iterable
from typing import Generic, TypeVar

import numpy as np

from voronoidb.index.vectors import VectorLike, check_dimensions
from voronoidb.models import Document, Metric, ScoredDocument

T = TypeVar("T")

Scorer = Callable[[np.ndarray], float | None]


def scorer_for(query: np.ndarray, metric: Metric) -> Scorer:
    """Return a function scoring an embedding against ``query``.

    A scorer returning ``None`` marks the document as ineligible.
    """
    if metric is Metric.EUCLIDEAN_DISTANCE:

        def euclidean(embedding: np.ndarray) -> float:
            diff = query - embedding
            return float(np.dot(diff, diff))

        return euclidean

    if metric is Metric.DOT_PRODUCT:

        def dot(embedding: np.ndarray) -> float:
            return float(np.dot(query, embedding))

        return dot

    query_norm = float(np.sqrt(np.dot(query, query)))

    def cosine(embedding: np.ndarray) -> float | None:
        doc_norm = float(np.sqrt(np.dot(embedding, embedding)))
        # Zero magnitude on either side has no direction to compare.
        if query_norm == 0.0 or doc_norm == 0.0:
            return None
        return float(np.dot(query, embedding)) / (query_norm * doc_norm)

    return cosine


class TopKRanker(Generic[T]):
    """Maintain the best ``k`` scored items seen during a scan."""

    def __init__(self, k: int, *, descending: bool) -> None:
        self.k = k
        self.descending = descending
        self.bound = -math.inf if descending else math.inf
        self._candidates: list[tuple[float, T]] = []

    def is_better(self, score: float, other: float) -> bool:
        """Strict comparison in the ranking direction."""
        if self.descending:
            return score > other
        return score < other

    def offer(self, score: float, item: T) -> bool:
        """Insert ``item`` if it ranks within the current top ``k``."""
        if self.k <= 0 or math.isnan(score):
            return False
        if not self.is_better(score, self.bound):
            return False

        candidates = self._candidates
        if len(candidates) >= self.k and not self.is_better(score, candidates[-1][0]):
            return False

        position = len(candidates)
        for index, (kept_score, _) in enumerate(candidates):
            # Equal scores stay behind earlier entries.
            if self.is_better(score, kept_score):
                position = index
                break

        candidates.insert(position, (score, item))
        if len(candidates) > self.k:
            candidates.pop()
        return True

    def entries(self) -> list[tuple[float, T]]:
        """Kept ``(score, item)`` pairs, best first."""
        return list(self._candidates)


def rank_with_scores(
    query: VectorLike,
    documents: Iterable[Document],
    k: int,
    metric: Metric,
) -> list[ScoredDocument]:
    """Return up to ``k`` documents with their scores, best match first.

    Euclidean scores are squared distances (ascending); dot product and cosine
    similarity scores are descending. Embeddings whose length differs from the
    query raise :class:`~voronoidb.errors.DimensionMismatch`.
    """
    query_vector = check_dimensions(query, None)
    dim = query_vector.shape[0]
    score = scorer_for(query_vector, metric)
    ranker: TopKRanker[Document] = TopKRanker(k, descending=metric.descending)
    if k <= 0:
        return []

    for document in documents:
        value = score(check_dimensions(document.embedding, dim))
        if value is None:
            continue
        ranker.offer(value, document)
    return [ScoredDocument(document=doc, score=value) for value, doc in ranker.entries()]


def rank(
    query: VectorLike,
    documents: Iterable[Document],
    k: int,
    metric: Metric = Metric.EUCLIDEAN_DISTANCE,
) -> list[Document]:
    """Return up to ``k`` documents ordered best match first."""
    return [hit.document for hit in rank_with_scores(query, documents, k, metric)]
