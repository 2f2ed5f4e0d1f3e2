"""
Delivery provider abstraction.

A delivery provider sends one outbound message to the remote backend and
either returns an acknowledgement or raises. The exception text is kept on
the queued item as its last error.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime

from ..models import Message


@dataclass(frozen=True)
class DeliveryAck:
    """Confirmation that the backend accepted a message."""

    message_id: str
    delivered_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    remote_id: str | None = None


class DeliveryProvider(ABC):
    """Abstract base for message delivery."""

    @abstractmethod
    async def deliver(self, conversation_id: str, message: Message) -> DeliveryAck:
        """
        Send a message to the backend.

        Args:
            conversation_id: Conversation the message belongs to
            message: Message to send

        Returns:
            Acknowledgement from the backend

        Raises:
            Exception: Any failure; the queue treats all failures as retryable
        """
        pass


class CallbackDeliveryProvider(DeliveryProvider):
    """Adapts an async callable into a DeliveryProvider.

    The callable may return a DeliveryAck or None; None is acknowledged
    with the message id.
    """

    def __init__(self, send: Callable[[str, Message], Awaitable[DeliveryAck | None]]):
        self._send = send

    async def deliver(self, conversation_id: str, message: Message) -> DeliveryAck:
        ack = await self._send(conversation_id, message)
        return ack if ack is not None else DeliveryAck(message_id=message.id)
