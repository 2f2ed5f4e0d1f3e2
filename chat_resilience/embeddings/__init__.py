"""
Embedding provider abstraction and caching.

Provides:
- Abstract EmbeddingProvider interface
- OpenAI implementation (optional dependency)
- Content-keyed EmbeddingCache with recency-biased pruning
"""

from .base import EMBEDDING_DIMENSIONS, EmbeddingProvider
from .cache import EmbeddingCache

__all__ = [
    "EMBEDDING_DIMENSIONS",
    "EmbeddingProvider",
    "EmbeddingCache",
]
