"""
Abstract base class for embedding providers.

The resilience layer treats the embedding model as an opaque capability:
- OpenAI (text-embedding-3-small at 256 dimensions)
- Local models (sentence-transformers, etc.)
- Deterministic mocks for tests
"""

from __future__ import annotations

from abc import ABC, abstractmethod

EMBEDDING_DIMENSIONS = 256


class EmbeddingProvider(ABC):
    """Abstract base for embedding generation."""

    @property
    @abstractmethod
    def dimensions(self) -> int:
        """Number of dimensions in the embedding vector."""
        pass

    @property
    @abstractmethod
    def model_name(self) -> str:
        """Name/identifier of the embedding model."""
        pass

    @abstractmethod
    async def embed_text(self, text: str) -> list[float]:
        """
        Generate embedding for a single text.

        Args:
            text: Text to embed

        Returns:
            Embedding vector as list of floats

        Raises:
            ProviderError: On quota, network or model failures
        """
        pass

    async def close(self) -> None:
        """Cleanup resources (close connections, release memory)."""
        return None

    async def __aenter__(self) -> EmbeddingProvider:
        """Async context manager entry."""
        return self

    async def __aexit__(self, exc_type: type, exc_val: Exception, exc_tb: object) -> None:
        """Async context manager exit."""
        await self.close()
