"""
Chat Resilience

Local resilience layer for a chat client.

Provides:
- Semantic search over chat history (embedding cache + cosine similarity)
- Offline-tolerant outbound message queue with bounded retry
- Durable snapshots of both through a simple key-value store

Usage:

    >>> from chat_resilience import ResilienceLayer, ResilienceConfig
    >>> from chat_resilience.embeddings.openai import OpenAIEmbeddings
    >>> async with await ResilienceLayer.create(
    ...     OpenAIEmbeddings.from_env(),
    ...     my_delivery_provider,
    ...     config=ResilienceConfig.from_env(),
    ... ) as layer:
    ...     await layer.vector_store.index(conversation)
    ...     results = await layer.vector_store.search("trip to lisbon")
    ...
    ...     unsubscribe = layer.sync_queue.subscribe(render_sync_badge)
    ...     await layer.sync_queue.enqueue(conversation.id, message)
    ...     layer.sync_queue.set_network_state(False)
"""

from .config import ResilienceConfig, SyncConfig, VectorStoreConfig
from .embeddings import EmbeddingCache, EmbeddingProvider
from .exceptions import (
    ConfigError,
    DimensionMismatchError,
    ProviderError,
    ResilienceError,
    SerializationError,
    StorageIOError,
)
from .models import (
    Conversation,
    Document,
    Message,
    QueuedItem,
    QueueItemStatus,
    Role,
    SearchResult,
    SyncStatus,
)
from .persistence import DurableSnapshot, FileKeyValueStore, KeyValueStore, MemoryKeyValueStore
from .runtime import ResilienceLayer
from .search import cosine_similarity
from .sync import CallbackDeliveryProvider, DeliveryAck, DeliveryProvider, SyncQueue, SyncResult
from .vector import VectorStore

try:
    from .embeddings.openai import OpenAIEmbeddings  # noqa: F401

    _has_openai = True
except ImportError:
    _has_openai = False


__all__ = [
    # Runtime
    "ResilienceLayer",
    # Configuration
    "ResilienceConfig",
    "SyncConfig",
    "VectorStoreConfig",
    # Components
    "VectorStore",
    "SyncQueue",
    "SyncResult",
    "EmbeddingCache",
    "EmbeddingProvider",
    "DeliveryProvider",
    "DeliveryAck",
    "CallbackDeliveryProvider",
    "cosine_similarity",
    # Persistence
    "KeyValueStore",
    "MemoryKeyValueStore",
    "FileKeyValueStore",
    "DurableSnapshot",
    # Models
    "Conversation",
    "Document",
    "Message",
    "QueuedItem",
    "QueueItemStatus",
    "Role",
    "SearchResult",
    "SyncStatus",
    # Exceptions
    "ResilienceError",
    "ProviderError",
    "SerializationError",
    "DimensionMismatchError",
    "StorageIOError",
    "ConfigError",
]

if _has_openai:
    __all__.extend(["OpenAIEmbeddings"])

__version__ = "0.1.0"
