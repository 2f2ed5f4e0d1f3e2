"""
Offline-tolerant outbound message delivery.

Provides a persistent queue with bounded retry, network-aware sync
triggers and status broadcast for the UI.
"""

from .delivery import CallbackDeliveryProvider, DeliveryAck, DeliveryProvider
from .queue import SyncQueue, SyncResult

__all__ = [
    "CallbackDeliveryProvider",
    "DeliveryAck",
    "DeliveryProvider",
    "SyncQueue",
    "SyncResult",
]
