"""
In-process semantic index over chat history.

Indexes conversation messages as embedded documents and answers semantic
queries by brute-force cosine similarity. Documents and cached embeddings
are snapshotted through a DurableSnapshot after every change.

Embedding calls suspend the caller, so other operations may run while an
index pass is in flight. Every mutation re-checks state after an await:
a conversation removed mid-index is not resurrected, and a document written
by an interleaved index call with the same text is left alone.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from typing import Any

from ..config import VectorStoreConfig
from ..embeddings import EmbeddingCache, EmbeddingProvider
from ..exceptions import ProviderError
from ..models import Conversation, Document, SearchResult, content_hash
from ..persistence.snapshot import DurableSnapshot, encode
from ..search.similarity import rank

logger = logging.getLogger(__name__)


class VectorStore:
    """Semantic index of conversation messages.

    Usage:

        >>> store = VectorStore(provider, DurableSnapshot(kv))
        >>> await store.load()
        >>> await store.index(conversation)
        >>> results = await store.search("weekend hiking plans", limit=5)
    """

    def __init__(
        self,
        provider: EmbeddingProvider,
        snapshot: DurableSnapshot,
        config: VectorStoreConfig | None = None,
    ):
        """
        Initialize the vector store.

        Args:
            provider: Embedding provider used on cache misses and for queries
            snapshot: Persistence for documents and cached embeddings
            config: Index configuration
        """
        self.provider = provider
        self.snapshot = snapshot
        self.config = config or VectorStoreConfig()
        self.cache = EmbeddingCache(provider)

        self._documents: dict[str, Document] = {}
        # Bumped on remove()/clear() so in-flight index passes can detect them.
        self._generations: dict[str, int] = {}
        self._epoch = 0

    async def load(self) -> None:
        """Restore documents and cached embeddings from the snapshot."""
        self._documents = await self.snapshot.load_documents()
        self.cache.restore(await self.snapshot.load_embedding_cache())
        logger.info(
            f"Vector store loaded: documents={len(self._documents)}, "
            f"cached_embeddings={self.cache.size()}"
        )

    async def flush(self) -> None:
        """Persist current documents and cache."""
        self.cache.prune(self.config.cache_capacity)
        await self.snapshot.save_documents(self._documents)
        await self.snapshot.save_embedding_cache(self.cache.snapshot())

    def _is_stale(self, conversation_id: str, generation: int, epoch: int) -> bool:
        return self._epoch != epoch or self._generations.get(conversation_id, 0) != generation

    async def index(self, conversation: Conversation) -> int:
        """
        Index every message of a conversation.

        Messages whose document already holds identical text are skipped
        without touching the provider. A message whose embedding fails is
        skipped; the rest of the conversation is still indexed.

        Args:
            conversation: Conversation to index

        Returns:
            Number of documents inserted or updated
        """
        generation = self._generations.get(conversation.id, 0)
        epoch = self._epoch
        upserted = 0
        skipped = 0

        for message in conversation.messages:
            doc_id = Document.make_id(conversation.id, message.id)
            text_hash = content_hash(message.content)

            existing = self._documents.get(doc_id)
            if existing is not None and existing.content_hash == text_hash:
                continue

            try:
                embedding = await self.cache.get_or_compute(message.content)
            except ProviderError as e:
                skipped += 1
                logger.warning(f"Skipping message {doc_id}, embedding failed: {e.message}")
                continue

            if self._is_stale(conversation.id, generation, epoch):
                logger.info(f"Conversation {conversation.id} removed during indexing, stopping")
                break

            current = self._documents.get(doc_id)
            if current is not None and current.content_hash == text_hash:
                continue

            self._documents[doc_id] = Document(
                id=doc_id,
                conversation_id=conversation.id,
                message_id=message.id,
                text=message.content,
                embedding=list(embedding),
                created_at=message.timestamp,
                role=message.role,
                conversation_title=conversation.title,
            )
            upserted += 1

        if upserted:
            await self.flush()

        logger.debug(
            f"Indexed conversation {conversation.id}: upserted={upserted}, skipped={skipped}"
        )
        return upserted

    async def remove(self, conversation_id: str) -> int:
        """
        Remove all documents of a conversation.

        Returns:
            Number of documents removed
        """
        self._generations[conversation_id] = self._generations.get(conversation_id, 0) + 1

        doomed = [
            doc_id
            for doc_id, doc in self._documents.items()
            if doc.conversation_id == conversation_id
        ]
        for doc_id in doomed:
            del self._documents[doc_id]

        if doomed:
            await self.flush()
        return len(doomed)

    async def _embed_query(self, text: str) -> list[float]:
        # Queries are not cached so ad-hoc searches do not crowd out
        # message embeddings.
        cached = self.cache.get(text)
        if cached is not None:
            return cached
        try:
            return await self.provider.embed_text(text)
        except ProviderError:
            raise
        except Exception as e:
            raise ProviderError(self.provider.model_name, "query embedding failed", e) from e

    async def search(self, query: str, limit: int | None = None) -> list[SearchResult]:
        """
        Rank all documents by semantic similarity to a query.

        Args:
            query: Free text query
            limit: Maximum number of results (default from config)

        Returns:
            Results ordered by descending score, newer first on ties

        Raises:
            ProviderError: If the query cannot be embedded
        """
        if not self._documents:
            return []

        limit = self.config.default_search_limit if limit is None else limit
        query_embedding = await self._embed_query(query)

        ranked = rank(
            query_embedding,
            list(self._documents.values()),
            embedding_of=lambda doc: doc.embedding,
            timestamp_of=lambda doc: doc.created_at,
            limit=limit,
        )
        return [SearchResult.from_document(doc, score) for doc, score in ranked]

    async def find_similar(
        self,
        text: str,
        exclude_conversation_id: str | None = None,
        limit: int | None = None,
        threshold: float | None = None,
    ) -> list[SearchResult]:
        """
        Find messages semantically close to ``text``.

        Documents from ``exclude_conversation_id`` and documents whose text
        equals ``text`` exactly are never returned.

        Args:
            text: Message text to compare against
            exclude_conversation_id: Conversation to leave out
            limit: Maximum number of results (default from config)
            threshold: Minimum score to keep (default from config, 0.7)

        Raises:
            ProviderError: If the text cannot be embedded
        """
        if not self._documents:
            return []

        limit = self.config.similar_limit if limit is None else limit
        threshold = self.config.similar_threshold if threshold is None else threshold
        embedding = await self._embed_query(text)

        candidates = [
            doc
            for doc in self._documents.values()
            if doc.text != text
            and (exclude_conversation_id is None or doc.conversation_id != exclude_conversation_id)
        ]
        ranked = rank(
            embedding,
            candidates,
            embedding_of=lambda doc: doc.embedding,
            timestamp_of=lambda doc: doc.created_at,
            limit=limit,
            threshold=threshold,
        )
        return [SearchResult.from_document(doc, score) for doc, score in ranked]

    def suggestions(self, prefix: str, limit: int = 5) -> list[str]:
        """
        Lexical autocomplete over indexed words.

        Returns lowercase words starting with ``prefix`` (case-insensitive),
        in first-seen order, stopping once ``limit`` are found.
        """
        if not prefix or len(prefix) < self.config.min_suggestion_prefix or limit <= 0:
            return []

        needle = prefix.lower()
        found: dict[str, None] = {}
        for doc in self._documents.values():
            for word in doc.text.lower().split():
                if len(word) >= self.config.min_suggestion_length and word.startswith(needle):
                    found.setdefault(word)
                    if len(found) >= limit:
                        return list(found)
        return list(found)

    def stats(self) -> dict[str, Any]:
        """
        Get index statistics.

        Returns:
            Dict with document_count, cache_size and approx_storage_bytes
        """
        docs_bytes = len(encode([doc.to_dict() for doc in self._documents.values()]))
        cache_bytes = len(encode(list(self.cache.snapshot().values())))
        return {
            "document_count": len(self._documents),
            "cache_size": self.cache.size(),
            "approx_storage_bytes": docs_bytes + cache_bytes,
        }

    def documents(self) -> tuple[Document, ...]:
        """Copies of all stored documents."""
        return tuple(replace(doc, embedding=list(doc.embedding)) for doc in self._documents.values())

    async def clear(self) -> None:
        """Drop all documents and cached embeddings, including their snapshots."""
        self._epoch += 1
        self._documents.clear()
        self.cache.clear()
        await self.snapshot.clear_vector_state()
