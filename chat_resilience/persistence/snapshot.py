"""
Durable snapshots of the vector store and sync queue.

Each store is serialized as one JSON document under a fixed key. The
in-memory state is always the source of truth: a corrupt snapshot loads as
empty, and a failed write is logged and otherwise ignored.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections import defaultdict
from datetime import datetime
from typing import Any

from ..exceptions import SerializationError
from ..models import Document, QueuedItem
from .kv import KeyValueStore

logger = logging.getLogger(__name__)

VECTOR_DB_KEY = "@vector_db"
EMBEDDING_CACHE_KEY = "@embedding_cache"
QUEUE_KEY = "@offline_queue"
SYNC_STATUS_KEY = "@sync_status"


def encode(value: Any) -> bytes:
    return json.dumps(value, separators=(",", ":")).encode("utf-8")


def decode(key: str, raw: bytes) -> Any:
    """Decode a snapshot payload.

    Raises:
        SerializationError: If the payload is not valid UTF-8 JSON
    """
    try:
        return json.loads(raw.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise SerializationError(key, e) from e


class DurableSnapshot:
    """Loads and saves resilience state through a KeyValueStore.

    Writes and removals of the same key are serialized in call order, so the
    state captured by the most recent save is the one left in the store even
    when the substrate completes overlapping writes out of order.
    """

    def __init__(self, kv: KeyValueStore):
        self.kv = kv
        self._key_locks: defaultdict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

    async def _read(self, key: str) -> Any:
        try:
            raw = await self.kv.get(key)
        except Exception as e:
            logger.warning(f"Failed to read snapshot {key}, starting empty: {e}")
            return None
        if raw is None:
            return None
        try:
            return decode(key, raw)
        except SerializationError as e:
            logger.warning(f"{e.message}, starting empty: {e.details.get('cause')}")
            return None

    async def _write(self, key: str, value: Any) -> bool:
        try:
            payload = encode(value)
            async with self._key_locks[key]:
                await self.kv.set(key, payload)
        except Exception:
            logger.exception(f"Failed to write snapshot {key}", extra={"snapshot_key": key})
            return False
        return True

    async def _remove(self, key: str) -> bool:
        try:
            async with self._key_locks[key]:
                await self.kv.remove(key)
        except Exception:
            logger.exception(f"Failed to remove snapshot {key}", extra={"snapshot_key": key})
            return False
        return True

    async def load_documents(self) -> dict[str, Document]:
        data = await self._read(VECTOR_DB_KEY)
        if not isinstance(data, dict):
            if data is not None:
                logger.warning(f"Snapshot {VECTOR_DB_KEY} has unexpected shape, starting empty")
            return {}

        documents: dict[str, Document] = {}
        for doc_id, raw_doc in data.items():
            try:
                documents[doc_id] = Document.from_dict(raw_doc)
            except (KeyError, TypeError, ValueError) as e:
                logger.warning(f"Skipping corrupt document {doc_id}: {e}")
        return documents

    async def save_documents(self, documents: dict[str, Document]) -> bool:
        return await self._write(
            VECTOR_DB_KEY, {doc_id: doc.to_dict() for doc_id, doc in documents.items()}
        )

    async def load_embedding_cache(self) -> dict[str, list[float]]:
        data = await self._read(EMBEDDING_CACHE_KEY)
        if not isinstance(data, dict):
            return {}
        entries: dict[str, list[float]] = {}
        for key, vector in data.items():
            if isinstance(vector, list):
                entries[key] = [float(x) for x in vector]
        return entries

    async def save_embedding_cache(self, entries: dict[str, list[float]]) -> bool:
        return await self._write(EMBEDDING_CACHE_KEY, entries)

    async def load_queue(self) -> list[QueuedItem]:
        data = await self._read(QUEUE_KEY)
        if not isinstance(data, list):
            if data is not None:
                logger.warning(f"Snapshot {QUEUE_KEY} has unexpected shape, starting empty")
            return []

        items: list[QueuedItem] = []
        for raw_item in data:
            try:
                items.append(QueuedItem.from_dict(raw_item))
            except (KeyError, TypeError, ValueError) as e:
                logger.warning(f"Skipping corrupt queue entry: {e}")
        return items

    async def save_queue(self, items: list[QueuedItem]) -> bool:
        return await self._write(QUEUE_KEY, [item.to_dict() for item in items])

    async def load_sync_meta(self) -> datetime | None:
        data = await self._read(SYNC_STATUS_KEY)
        if not isinstance(data, dict) or not data.get("last_sync_at"):
            return None
        try:
            return datetime.fromisoformat(data["last_sync_at"])
        except (TypeError, ValueError):
            logger.warning(f"Snapshot {SYNC_STATUS_KEY} has invalid timestamp, ignoring")
            return None

    async def save_sync_meta(self, last_sync_at: datetime) -> bool:
        return await self._write(SYNC_STATUS_KEY, {"last_sync_at": last_sync_at.isoformat()})

    async def clear_vector_state(self) -> None:
        await self._remove(VECTOR_DB_KEY)
        await self._remove(EMBEDDING_CACHE_KEY)

    async def clear_queue(self) -> None:
        await self._remove(QUEUE_KEY)
