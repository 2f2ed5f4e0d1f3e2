"""
Data model for the resilience layer.

Messages and conversations arrive from the UI; documents and queued items
are owned by the vector store and sync queue respectively. Search results
and sync status are read-only projections.
"""

from __future__ import annotations

import hashlib
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any


def _utcnow() -> datetime:
    return datetime.now(UTC)


def _parse_datetime(value: Any) -> datetime:
    if isinstance(value, datetime):
        return value
    if isinstance(value, str):
        return datetime.fromisoformat(value)
    if value is None:
        return _utcnow()
    raise ValueError(f"Cannot parse datetime from {value!r}")


def content_hash(text: str) -> str:
    """SHA256 of message text, used to detect unchanged messages on re-index."""
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


class Role(Enum):
    """Author of a chat message."""

    USER = "user"
    ASSISTANT = "assistant"


class QueueItemStatus(Enum):
    """Delivery state of a queued outbound message."""

    PENDING = "pending"
    SYNCING = "syncing"
    FAILED = "failed"


@dataclass
class Message:
    """A single chat message as handed over by the UI."""

    id: str
    role: Role
    content: str
    timestamp: datetime = field(default_factory=_utcnow)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "role": self.role.value,
            "content": self.content,
            "timestamp": self.timestamp.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Message:
        return cls(
            id=data["id"],
            role=Role(data["role"]),
            content=data["content"],
            timestamp=_parse_datetime(data.get("timestamp")),
        )


@dataclass
class Conversation:
    """A titled chat conversation."""

    id: str
    title: str
    messages: list[Message] = field(default_factory=list)
    created_at: datetime = field(default_factory=_utcnow)
    updated_at: datetime = field(default_factory=_utcnow)


@dataclass
class Document:
    """One indexed (message, embedding) pair.

    Attributes:
        id: Composite of conversation id and message id
        conversation_id: Conversation the message belongs to
        message_id: Message identifier within the conversation
        text: Message content at indexing time
        embedding: Embedding vector of ``text``
        created_at: Message timestamp
        role: Message author
        conversation_title: Conversation title at indexing time
    """

    id: str
    conversation_id: str
    message_id: str
    text: str
    embedding: list[float]
    created_at: datetime
    role: Role
    conversation_title: str

    @staticmethod
    def make_id(conversation_id: str, message_id: str) -> str:
        return f"{conversation_id}_{message_id}"

    @property
    def content_hash(self) -> str:
        return content_hash(self.text)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "conversation_id": self.conversation_id,
            "message_id": self.message_id,
            "text": self.text,
            "embedding": self.embedding,
            "created_at": self.created_at.isoformat(),
            "role": self.role.value,
            "conversation_title": self.conversation_title,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Document:
        return cls(
            id=data["id"],
            conversation_id=data["conversation_id"],
            message_id=data["message_id"],
            text=data["text"],
            embedding=[float(x) for x in data["embedding"]],
            created_at=_parse_datetime(data.get("created_at")),
            role=Role(data["role"]),
            conversation_title=data.get("conversation_title", ""),
        )


@dataclass(frozen=True)
class SearchResult:
    """A ranked match returned by the vector store."""

    conversation_id: str
    message_id: str
    text: str
    score: float
    conversation_title: str
    created_at: datetime

    @classmethod
    def from_document(cls, doc: Document, score: float) -> SearchResult:
        return cls(
            conversation_id=doc.conversation_id,
            message_id=doc.message_id,
            text=doc.text,
            score=score,
            conversation_title=doc.conversation_title,
            created_at=doc.created_at,
        )


@dataclass
class QueuedItem:
    """One outbound message awaiting confirmed delivery.

    Attributes:
        id: Unique queue entry identifier
        conversation_id: Conversation the message belongs to
        payload: The message to deliver
        enqueued_at: When the message entered the queue
        retry_count: Number of failed delivery attempts
        status: Current delivery state
        last_error: Error text of the last failed attempt
    """

    id: str
    conversation_id: str
    payload: Message
    enqueued_at: datetime = field(default_factory=_utcnow)
    retry_count: int = 0
    status: QueueItemStatus = QueueItemStatus.PENDING
    last_error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "conversation_id": self.conversation_id,
            "payload": self.payload.to_dict(),
            "enqueued_at": self.enqueued_at.isoformat(),
            "retry_count": self.retry_count,
            "status": self.status.value,
            "last_error": self.last_error,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> QueuedItem:
        return cls(
            id=data["id"],
            conversation_id=data["conversation_id"],
            payload=Message.from_dict(data["payload"]),
            enqueued_at=_parse_datetime(data.get("enqueued_at")),
            retry_count=int(data.get("retry_count", 0)),
            status=QueueItemStatus(data.get("status", QueueItemStatus.PENDING.value)),
            last_error=data.get("last_error"),
        )


@dataclass(frozen=True)
class SyncStatus:
    """Snapshot of the sync queue's state for the UI."""

    last_sync_at: datetime | None
    pending_count: int
    failed_count: int
    is_online: bool
    is_syncing: bool
