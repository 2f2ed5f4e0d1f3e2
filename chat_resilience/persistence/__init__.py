"""
Persistence of resilience state to a key-value substrate.
"""

from .kv import FileKeyValueStore, KeyValueStore, MemoryKeyValueStore
from .snapshot import (
    EMBEDDING_CACHE_KEY,
    QUEUE_KEY,
    SYNC_STATUS_KEY,
    VECTOR_DB_KEY,
    DurableSnapshot,
)

__all__ = [
    "KeyValueStore",
    "MemoryKeyValueStore",
    "FileKeyValueStore",
    "DurableSnapshot",
    "VECTOR_DB_KEY",
    "EMBEDDING_CACHE_KEY",
    "QUEUE_KEY",
    "SYNC_STATUS_KEY",
]
