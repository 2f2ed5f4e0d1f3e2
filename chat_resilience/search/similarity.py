"""
Cosine similarity and ranking for the semantic index.

Scoring is a brute-force scan, O(documents × dimensions) per query, which
is fine for chat histories of a few thousand messages.

Stored history may span embedding-model versions, so vectors of different
length score 0 instead of raising.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Sequence
from datetime import datetime
from typing import TypeVar

import numpy as np
from numpy.typing import ArrayLike

from ..exceptions import DimensionMismatchError

logger = logging.getLogger(__name__)

T = TypeVar("T")


def check_dimensions(a: ArrayLike, b: ArrayLike) -> None:
    """
    Raise if two vectors have different dimensionality.

    Raises:
        DimensionMismatchError: If lengths differ
    """
    len_a = np.size(a)
    len_b = np.size(b)
    if len_a != len_b:
        raise DimensionMismatchError(len_a, len_b)


def cosine_similarity(a: ArrayLike, b: ArrayLike) -> float:
    """
    Compute cosine similarity between two vectors.

    Args:
        a: First vector
        b: Second vector

    Returns:
        Similarity in [-1, 1]; 0.0 when either vector has zero norm or
        the dimensionalities differ
    """
    vec_a = np.asarray(a, dtype=np.float64)
    vec_b = np.asarray(b, dtype=np.float64)

    try:
        check_dimensions(vec_a, vec_b)
    except DimensionMismatchError as e:
        logger.debug(f"Scoring mismatched vectors as 0: {e.message}")
        return 0.0

    norm_a = np.linalg.norm(vec_a)
    norm_b = np.linalg.norm(vec_b)
    if norm_a == 0 or norm_b == 0:
        return 0.0

    score = float(np.dot(vec_a, vec_b) / (norm_a * norm_b))
    # Floating point error can push identical vectors slightly past 1.
    return max(-1.0, min(1.0, score))


def rank(
    query: Sequence[float],
    candidates: Iterable[T],
    embedding_of: Callable[[T], Sequence[float]],
    timestamp_of: Callable[[T], datetime],
    limit: int,
    threshold: float | None = None,
) -> list[tuple[T, float]]:
    """
    Score candidates against a query and return the best ``limit``.

    Results are ordered by score descending; equal scores put the more
    recent candidate first.

    Args:
        query: Query embedding
        candidates: Items to score
        embedding_of: Extracts an item's embedding
        timestamp_of: Extracts an item's timestamp for tie-breaking
        limit: Maximum number of results
        threshold: Drop items scoring below this value

    Returns:
        List of (item, score) tuples
    """
    if limit <= 0:
        return []

    query_vec = np.asarray(query, dtype=np.float64)
    scored: list[tuple[T, float]] = []
    for item in candidates:
        score = cosine_similarity(query_vec, embedding_of(item))
        if threshold is not None and score < threshold:
            continue
        scored.append((item, score))

    scored.sort(key=lambda pair: (pair[1], timestamp_of(pair[0]).timestamp()), reverse=True)
    return scored[:limit]
