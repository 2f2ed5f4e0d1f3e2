"""
Similarity search utilities.

Provides cosine similarity scoring and ranked brute-force retrieval
for the semantic index.
"""

from .similarity import check_dimensions, cosine_similarity, rank

__all__ = [
    "check_dimensions",
    "cosine_similarity",
    "rank",
]
