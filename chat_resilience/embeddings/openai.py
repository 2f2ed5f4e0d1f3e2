"""
OpenAI embedding provider implementation.

Uses the official OpenAI Python SDK. The semantic index expects fixed
256-dimensional vectors, which text-embedding-3 models produce natively via
the ``dimensions`` request parameter.
"""

from __future__ import annotations

import logging
import os
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from openai import AsyncOpenAI
else:
    try:
        from openai import AsyncOpenAI
    except ImportError:
        AsyncOpenAI = None  # type: ignore

from ..exceptions import ProviderError
from .base import EMBEDDING_DIMENSIONS, EmbeddingProvider

logger = logging.getLogger(__name__)


class OpenAIEmbeddings(EmbeddingProvider):
    """
    OpenAI embedding provider.

    Caching is left to the vector store's EmbeddingCache so that cached
    vectors are persisted alongside the index.
    """

    def __init__(
        self,
        api_key: str,
        model: str = "text-embedding-3-small",
        dimensions: int = EMBEDDING_DIMENSIONS,
        base_url: str | None = None,
        timeout: float = 30.0,
    ):
        """
        Initialize OpenAI embedding provider.

        Args:
            api_key: OpenAI API key
            model: Model name (default: text-embedding-3-small)
            dimensions: Vector dimensions (default: 256)
            base_url: Optional base URL for compatible endpoints
            timeout: Request timeout in seconds
        """
        self.api_key = api_key
        self.model = model
        self.base_url = base_url
        self.timeout = timeout
        self._dimensions = dimensions
        self._client: Any = None  # AsyncOpenAI (optional dependency)

        logger.info(f"OpenAI embeddings initialized: model={model}, dimensions={dimensions}")

    @classmethod
    def from_env(cls) -> OpenAIEmbeddings:
        """
        Create provider from environment variables.

        Required env vars:
            OPENAI_API_KEY: OpenAI API key

        Optional env vars:
            OPENAI_EMBEDDING_MODEL: Model name (default: text-embedding-3-small)
            OPENAI_EMBEDDING_DIMENSIONS: Vector dimensions (default: 256)
            OPENAI_BASE_URL: Custom base URL
        """
        api_key = os.environ.get("OPENAI_API_KEY")
        model = os.environ.get("OPENAI_EMBEDDING_MODEL", "text-embedding-3-small")
        dimensions_str = os.environ.get("OPENAI_EMBEDDING_DIMENSIONS")
        base_url = os.environ.get("OPENAI_BASE_URL")

        if not api_key:
            raise ValueError("OPENAI_API_KEY environment variable required")

        return cls(
            api_key=api_key,
            model=model,
            dimensions=int(dimensions_str) if dimensions_str else EMBEDDING_DIMENSIONS,
            base_url=base_url,
        )

    @property
    def dimensions(self) -> int:
        return self._dimensions

    @property
    def model_name(self) -> str:
        return self.model

    async def _ensure_client(self) -> Any:
        """Lazy initialize the OpenAI client."""
        if self._client is None:
            if AsyncOpenAI is None:
                raise ProviderError(self.model, "openai package is not installed")
            self._client = AsyncOpenAI(
                api_key=self.api_key,
                base_url=self.base_url,
                timeout=self.timeout,
            )
        return self._client

    async def embed_text(self, text: str) -> list[float]:
        """
        Generate embedding for a single text.

        Raises:
            ProviderError: On any SDK failure (quota, network, bad request)
        """
        client = await self._ensure_client()

        try:
            response = await client.embeddings.create(
                input=text,
                model=self.model,
                dimensions=self._dimensions,
            )
        except Exception as e:
            raise ProviderError(self.model, type(e).__name__, e) from e

        return list(response.data[0].embedding)

    async def close(self) -> None:
        """Close the OpenAI client."""
        if self._client:
            await self._client.close()
            self._client = None
