"""
Lifecycle owner for the resilience layer.

The host app creates one ResilienceLayer at startup and closes it at exit.
There is no module-level state: everything hangs off the instance.
"""

from __future__ import annotations

from .config import ResilienceConfig
from .embeddings import EmbeddingProvider
from .logging_utils import configure_logging, get_resilience_logger
from .persistence import DurableSnapshot, FileKeyValueStore, KeyValueStore, MemoryKeyValueStore
from .sync import DeliveryProvider, SyncQueue
from .vector import VectorStore

logger = get_resilience_logger("runtime")


class ResilienceLayer:
    """Owns one VectorStore and one SyncQueue sharing a snapshot store."""

    def __init__(
        self,
        vector_store: VectorStore,
        sync_queue: SyncQueue,
        snapshot: DurableSnapshot,
        config: ResilienceConfig,
    ):
        self.vector_store = vector_store
        self.sync_queue = sync_queue
        self.snapshot = snapshot
        self.config = config
        self._closed = False

    @classmethod
    async def create(
        cls,
        embedding_provider: EmbeddingProvider,
        delivery_provider: DeliveryProvider,
        kv_store: KeyValueStore | None = None,
        config: ResilienceConfig | None = None,
        start_timer: bool = True,
    ) -> ResilienceLayer:
        """
        Build, load and start the resilience layer.

        Args:
            embedding_provider: Provider for text embeddings
            delivery_provider: Provider that sends queued messages
            kv_store: Persistence substrate; defaults to a FileKeyValueStore at
                config.storage_path, or an in-memory store if that is unset
            config: Configuration (defaults if None)
            start_timer: Start the periodic sync timer

        Returns:
            Ready-to-use ResilienceLayer
        """
        config = config or ResilienceConfig()
        config.validate()
        if config.log_level is not None:
            configure_logging(config.log_level)

        if kv_store is None:
            if config.storage_path is not None:
                kv_store = FileKeyValueStore(config.storage_path)
            else:
                logger.warning("No storage path configured, state will not survive restarts")
                kv_store = MemoryKeyValueStore()

        snapshot = DurableSnapshot(kv_store)
        vector_store = VectorStore(embedding_provider, snapshot, config.vector)
        sync_queue = SyncQueue(delivery_provider, snapshot, config.sync)

        await vector_store.load()
        await sync_queue.load()
        if start_timer:
            await sync_queue.start()

        layer = cls(vector_store, sync_queue, snapshot, config)
        logger.info(
            "Resilience layer started",
            extra={
                "document_count": vector_store.stats()["document_count"],
                "queued_items": len(sync_queue.items()),
            },
        )
        return layer

    async def close(self) -> None:
        """Stop background work and flush both stores."""
        if self._closed:
            return
        self._closed = True
        await self.sync_queue.close()
        await self.vector_store.flush()
        logger.info("Resilience layer closed")

    async def __aenter__(self) -> ResilienceLayer:
        return self

    async def __aexit__(self, exc_type: type, exc_val: Exception, exc_tb: object) -> None:
        await self.close()
