"""
Query Module

Ranks database records against a query by cosine similarity.

HOW A QUERY RUNS:
1. Embed the query text once
2. Score every record: dot(q, r) / (|q| * |r|), in float64
3. Sort by score, highest first. Equal scores keep database order
4. Return the first k

A zero-length vector on either side scores 0.0 instead of NaN, so the order
is always defined.

This is a brute force scan, O(n * d) for n records of dimension d. Vectors
are read fresh from the database file on every run, so nothing is
normalized or cached ahead of time.
"""

from dataclasses import dataclass
from typing import List, Sequence

import numpy as np
from loguru import logger

from emqu.database import Database, Record
from emqu.embeddings import EmbedFunction
from emqu.exceptions import DimensionMismatch


@dataclass
class QueryResult:
    """A record together with its similarity to the query."""
    record: Record
    score: float

    def __repr__(self):
        text = self.record.text
        preview = text[:50] + "..." if len(text) > 50 else text
        return f"QueryResult(score={self.score:.4f}, text='{preview}')"


def cosine_similarity(vec1: Sequence[float], vec2: Sequence[float]) -> float:
    """
    Cosine similarity between two vectors.

    Returns 0.0 when either vector has zero norm.

    EXAMPLE:
    A = [1, 0], B = [1, 0]  ->  1.0
    A = [1, 0], B = [0, 1]  ->  0.0
    A = [1, 0], B = [1, 1]  ->  0.7071...
    """
    a = np.asarray(vec1, dtype=np.float64)
    b = np.asarray(vec2, dtype=np.float64)

    magnitude_a = np.linalg.norm(a)
    magnitude_b = np.linalg.norm(b)

    if magnitude_a == 0 or magnitude_b == 0:
        return 0.0

    return float(np.dot(a, b) / (magnitude_a * magnitude_b))


def score_records(records: Sequence[Record], query_embedding: Sequence[float]) -> np.ndarray:
    """Cosine similarity of every record to the query, in record order."""
    if not records:
        return np.zeros(0, dtype=np.float64)

    matrix = np.asarray([record.embedding for record in records], dtype=np.float64)
    query = np.asarray(query_embedding, dtype=np.float64)

    dots = matrix @ query
    norms = np.linalg.norm(matrix, axis=1) * np.linalg.norm(query)

    scores = np.zeros(len(records), dtype=np.float64)
    np.divide(dots, norms, out=scores, where=norms != 0)
    return scores


def _check_k(k: int) -> None:
    if isinstance(k, bool) or not isinstance(k, (int, np.integer)) or k < 1:
        raise ValueError(f"k must be a positive integer, got {k!r}")


def rank(database: Database, query_embedding: Sequence[float], k: int) -> List[QueryResult]:
    """
    Return the k records most similar to query_embedding.

    Returns min(k, len(database)) results, best first. Records with exactly
    equal scores stay in database order.

    Raises:
        ValueError: k is not a positive integer
        DimensionMismatch: the query vector length differs from the database's
    """
    _check_k(k)
    if not len(database):
        return []

    if len(query_embedding) != database.dimension:
        raise DimensionMismatch(database.dimension, len(query_embedding))

    scores = score_records(database.records, query_embedding)
    order = np.argsort(-scores, kind="stable")[:k]

    return [
        QueryResult(record=database.records[i], score=float(scores[i]))
        for i in order
    ]


class QueryEngine:
    """
    Answers text queries against a database.

    USAGE:
        engine = QueryEngine(EmbeddingClient(settings.provider))
        for result in engine.query(database, "how are logs rotated?", k=3):
            print(result.score, result.record.source_path)
    """

    def __init__(self, embed_fn: EmbedFunction):
        self.embed_fn = embed_fn

    def query(self, database: Database, query_text: str, k: int) -> List[QueryResult]:
        """
        Embed query_text and rank the database against it.

        An empty database gives an empty result without calling the provider.

        Raises:
            ValueError: k is not a positive integer
            ProviderError: the embedding call failed
            DimensionMismatch: the provider's vector length differs from the database's
        """
        _check_k(k)
        if not len(database):
            logger.info("Database is empty, nothing to rank")
            return []

        query_embedding = self.embed_fn(query_text)
        results = rank(database, query_embedding, k)

        logger.debug(
            f"Ranked {len(database)} records, returning {len(results)} "
            f"(best score {results[0].score:.4f})"
        )
        return results
