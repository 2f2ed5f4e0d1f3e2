"""
Shared test configuration and fixtures.

Provides deterministic fakes for the two external capabilities the
resilience layer consumes: an embedding provider that counts its calls and
a delivery provider whose outcomes can be scripted.
"""

import asyncio
import hashlib
import logging
from datetime import UTC, datetime, timedelta

import pytest

from chat_resilience.config import SyncConfig, VectorStoreConfig
from chat_resilience.embeddings import EmbeddingProvider
from chat_resilience.exceptions import ProviderError
from chat_resilience.models import Conversation, Message, Role
from chat_resilience.persistence import DurableSnapshot, MemoryKeyValueStore
from chat_resilience.sync import DeliveryAck, DeliveryProvider, SyncQueue
from chat_resilience.vector import VectorStore

logger = logging.getLogger(__name__)

BASE_TIME = datetime(2024, 5, 1, 12, 0, tzinfo=UTC)


class MockEmbeddingProvider(EmbeddingProvider):
    """
    Mock embedding provider for testing without API costs.

    Generates deterministic embeddings from a hash of the text. Specific
    texts can be pinned to explicit vectors or made to fail.
    """

    def __init__(self, dimensions: int = 8):
        self._dimensions = dimensions
        self.calls: list[str] = []
        self.vectors: dict[str, list[float]] = {}
        self.failing: set[str] = set()
        self.gate: asyncio.Event | None = None
        self.started = asyncio.Event()

    @property
    def model_name(self) -> str:
        return "mock-embeddings"

    @property
    def dimensions(self) -> int:
        return self._dimensions

    @property
    def call_count(self) -> int:
        return len(self.calls)

    async def embed_text(self, text: str) -> list[float]:
        self.calls.append(text)
        self.started.set()
        if self.gate is not None:
            await self.gate.wait()
        if text in self.failing:
            raise ProviderError(self.model_name, "quota exceeded")
        if text in self.vectors:
            return list(self.vectors[text])

        digest = hashlib.sha256(text.encode("utf-8")).digest()
        return [(digest[i] - 128) / 128.0 for i in range(self._dimensions)]


class ScriptedDeliveryProvider(DeliveryProvider):
    """
    Delivery provider with scripted outcomes.

    Each call pops the next outcome: an exception to raise, or None for
    success. Once the script is exhausted every call succeeds.
    """

    def __init__(self, outcomes: list[Exception | None] | None = None):
        self.outcomes = list(outcomes or [])
        self.calls: list[tuple[str, str]] = []
        self.gate: asyncio.Event | None = None
        self.started = asyncio.Event()
        self.delay: float = 0.0
        self.completed: list[str] = []

    @property
    def call_count(self) -> int:
        return len(self.calls)

    async def deliver(self, conversation_id: str, message: Message) -> DeliveryAck:
        self.calls.append((conversation_id, message.id))
        self.started.set()
        if self.gate is not None:
            await self.gate.wait()
        if self.delay:
            await asyncio.sleep(self.delay)
        outcome = self.outcomes.pop(0) if self.outcomes else None
        if outcome is not None:
            raise outcome
        self.completed.append(message.id)
        return DeliveryAck(message_id=message.id)


def make_message(
    message_id: str,
    content: str,
    role: Role = Role.USER,
    minutes: int = 0,
) -> Message:
    """Create a message stamped relative to BASE_TIME."""
    return Message(
        id=message_id,
        role=role,
        content=content,
        timestamp=BASE_TIME + timedelta(minutes=minutes),
    )


def make_conversation(conversation_id: str, *texts: str, title: str | None = None) -> Conversation:
    """Create a conversation with one message per text, one minute apart."""
    messages = [make_message(f"m{i}", text, minutes=i) for i, text in enumerate(texts)]
    return Conversation(id=conversation_id, title=title or f"Chat {conversation_id}", messages=messages)


@pytest.fixture
def kv_store():
    """In-memory key-value substrate."""
    return MemoryKeyValueStore()


@pytest.fixture
def snapshot(kv_store):
    return DurableSnapshot(kv_store)


@pytest.fixture
def embedding_provider():
    return MockEmbeddingProvider()


@pytest.fixture
def vector_store(embedding_provider, snapshot):
    """Vector store backed by the mock provider and in-memory snapshot."""
    return VectorStore(embedding_provider, snapshot, VectorStoreConfig())


@pytest.fixture
def delivery_provider():
    return ScriptedDeliveryProvider()


@pytest.fixture
async def sync_queue(delivery_provider, snapshot):
    """
    Sync queue that starts offline so tests control when passes run.

    The periodic timer is not started.
    """
    queue = SyncQueue(delivery_provider, snapshot, SyncConfig(start_online=False))
    yield queue
    await queue.close()


async def wait_until(predicate, timeout: float = 2.0) -> None:
    """Poll ``predicate`` until true or fail after ``timeout`` seconds."""

    async def _poll() -> None:
        while not predicate():
            await asyncio.sleep(0.005)

    await asyncio.wait_for(_poll(), timeout)
