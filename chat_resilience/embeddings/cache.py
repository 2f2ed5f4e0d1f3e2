"""
Content-keyed cache for embedding vectors.

Avoids calling the embedding provider twice for the same text, even across
unrelated conversations. Eviction is recency-of-insertion biased rather than
strict LRU: reads never reorder entries.
"""

from __future__ import annotations

import asyncio
import hashlib
import logging
from collections import OrderedDict
from typing import Any

from ..exceptions import ProviderError
from .base import EmbeddingProvider

logger = logging.getLogger(__name__)


class EmbeddingCache:
    """
    Insertion-ordered cache of text → embedding.

    Features:
    - Content-based keying (hash of the exact text)
    - Concurrent misses for the same text share one provider call
    - Explicit pruning to the newest half once over capacity
    - Snapshot/restore for persistence
    """

    def __init__(self, provider: EmbeddingProvider):
        """
        Initialize embedding cache.

        Args:
            provider: Provider called on cache misses
        """
        self.provider = provider
        self._cache: OrderedDict[str, list[float]] = OrderedDict()
        self._inflight: dict[str, asyncio.Future[list[float]]] = {}

    @staticmethod
    def _make_key(text: str) -> str:
        return hashlib.sha256(text.encode("utf-8")).hexdigest()

    def get(self, text: str) -> list[float] | None:
        """Return the cached embedding for ``text`` without computing it."""
        return self._cache.get(self._make_key(text))

    def put(self, text: str, embedding: list[float]) -> None:
        """Store an embedding; re-putting a text makes it the newest entry."""
        key = self._make_key(text)
        self._cache.pop(key, None)
        self._cache[key] = embedding

    async def get_or_compute(self, text: str) -> list[float]:
        """
        Return the embedding for ``text``, calling the provider on a miss.

        Args:
            text: Exact text to embed

        Returns:
            Embedding vector

        Raises:
            ProviderError: If the provider call fails
        """
        key = self._make_key(text)
        cached = self._cache.get(key)
        if cached is not None:
            return cached

        pending = self._inflight.get(key)
        if pending is not None:
            return await asyncio.shield(pending)

        future: asyncio.Future[list[float]] = asyncio.get_running_loop().create_future()
        self._inflight[key] = future
        try:
            embedding = await self.provider.embed_text(text)
        except ProviderError as e:
            future.set_exception(e)
            raise
        except Exception as e:
            error = ProviderError(self.provider.model_name, "embedding call failed", e)
            future.set_exception(error)
            raise error from e
        else:
            self._cache.pop(key, None)
            self._cache[key] = embedding
            future.set_result(embedding)
            logger.debug(f"Cached embedding for text (len={len(text)})")
            return embedding
        finally:
            self._inflight.pop(key, None)
            if not future.done():
                future.cancel()
            elif not future.cancelled():
                # Nobody else may have awaited it; mark the exception retrieved.
                future.exception()

    def prune(self, capacity: int) -> int:
        """
        Shrink the cache once it exceeds ``capacity``.

        Keeps the most recently inserted ``capacity // 2`` entries.

        Returns:
            Number of evicted entries
        """
        if len(self._cache) <= capacity:
            return 0

        keep = capacity // 2
        evicted = len(self._cache) - keep
        for _ in range(evicted):
            self._cache.popitem(last=False)

        logger.info(f"Pruned embedding cache: evicted={evicted}, kept={keep}")
        return evicted

    def snapshot(self) -> dict[str, list[float]]:
        """Copy of the cache contents in insertion order, keyed by content hash."""
        return dict(self._cache)

    def restore(self, entries: dict[str, list[float]]) -> None:
        """Replace the cache contents with a previously taken snapshot."""
        self._cache = OrderedDict((key, list(value)) for key, value in entries.items())

    def clear(self) -> None:
        """Clear all cached embeddings."""
        self._cache.clear()

    def size(self) -> int:
        """Get current number of cached embeddings."""
        return len(self._cache)

    def stats(self) -> dict[str, Any]:
        return {
            "size": len(self._cache),
            "model": self.provider.model_name,
            "inflight": len(self._inflight),
        }
