"""
Offline-tolerant outbound message queue.

Guarantees at-least-once delivery of chat messages across connectivity
loss:
- Every message is persisted before any delivery attempt
- Delivery is attempted on enqueue, on reconnect and on a periodic timer
- Failed attempts are retried on later passes up to a bound, then the
  item is parked as failed until the user retries it
- Subscribers receive a SyncStatus after every state change

Item lifecycle:

    pending -> syncing -> (removed)  delivered
                       -> pending    failure, retry_count < max_retries
                       -> failed     failure, retry_count >= max_retries
    failed  -> pending               retry_failed(), retry_count reset to 0
"""

from __future__ import annotations

import asyncio
import itertools
import logging
import time
import uuid
from collections.abc import Callable
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime

from ..config import SyncConfig
from ..models import Message, QueuedItem, QueueItemStatus, SyncStatus
from ..persistence.snapshot import DurableSnapshot
from .delivery import DeliveryAck, DeliveryProvider

logger = logging.getLogger(__name__)

StatusListener = Callable[[SyncStatus], None]


@dataclass
class SyncResult:
    """Result of a sync pass."""

    ran: bool
    delivered: int = 0
    retrying: int = 0
    failed: int = 0
    errors: list[str] = field(default_factory=list)
    skipped_reason: str | None = None
    duration_ms: int = 0


class SyncQueue:
    """Persistent queue of outbound messages with bounded retry.

    Handles:
    - Persisting queued messages through a DurableSnapshot
    - One sync pass at a time, from any trigger
    - Retry bookkeeping and failure surfacing
    - Status broadcast to subscribers
    """

    def __init__(
        self,
        delivery: DeliveryProvider,
        snapshot: DurableSnapshot,
        config: SyncConfig | None = None,
    ):
        """Initialize the sync queue.

        Args:
            delivery: Provider that sends messages to the backend
            snapshot: Persistence for the queue and last sync time
            config: Retry and timer configuration
        """
        self.delivery = delivery
        self.snapshot = snapshot
        self.config = config or SyncConfig()

        self._items: list[QueuedItem] = []
        self._is_online = self.config.start_online
        self._syncing = False
        # Set when a pass is refused because another one is running.
        self._rerun_requested = False
        self._last_sync_at: datetime | None = None
        self._listeners: dict[int, StatusListener] = {}
        self._listener_ids = itertools.count()
        self._tasks: set[asyncio.Task[SyncResult]] = set()
        self._timer_task: asyncio.Task[None] | None = None

    @property
    def is_online(self) -> bool:
        """Last known network state."""
        return self._is_online

    @property
    def is_syncing(self) -> bool:
        return self._syncing

    async def load(self) -> None:
        """Restore queued items and last sync time from the snapshot.

        Items persisted mid-pass are restored as pending.
        """
        items = await self.snapshot.load_queue()
        for item in items:
            if item.status == QueueItemStatus.SYNCING:
                item.status = QueueItemStatus.PENDING
        self._items = items
        self._last_sync_at = await self.snapshot.load_sync_meta()
        logger.info(f"Sync queue loaded: items={len(self._items)}")

    async def _persist(self) -> None:
        await self.snapshot.save_queue(self._items)

    def _find(self, item_id: str) -> QueuedItem | None:
        for item in self._items:
            if item.id == item_id:
                return item
        return None

    def _is_live(self, item: QueuedItem) -> bool:
        """True if ``item`` is still the queued instance for its id."""
        return self._find(item.id) is item

    def status(self) -> SyncStatus:
        """Current sync status, computed from the queue and cached network state."""
        return SyncStatus(
            last_sync_at=self._last_sync_at,
            pending_count=sum(1 for i in self._items if i.status == QueueItemStatus.PENDING),
            failed_count=sum(1 for i in self._items if i.status == QueueItemStatus.FAILED),
            is_online=self._is_online,
            is_syncing=self._syncing,
        )

    def subscribe(self, listener: StatusListener) -> Callable[[], None]:
        """
        Register a status listener.

        Args:
            listener: Called with the current SyncStatus after every change

        Returns:
            Callable that unregisters the listener
        """
        token = next(self._listener_ids)
        self._listeners[token] = listener

        def unsubscribe() -> None:
            self._listeners.pop(token, None)

        return unsubscribe

    def _notify(self) -> None:
        status = self.status()
        for listener in list(self._listeners.values()):
            try:
                listener(status)
            except Exception:
                logger.exception("Sync status listener raised")

    def _schedule_sync(self) -> None:
        task = asyncio.create_task(self.sync())
        self._tasks.add(task)
        task.add_done_callback(self._on_sync_task_done)

    def _on_sync_task_done(self, task: asyncio.Task[SyncResult]) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("Background sync pass failed", exc_info=task.exception())

    def _new_item_id(self, conversation_id: str, message_id: str) -> str:
        item_id = f"{conversation_id}_{message_id}_{int(time.time() * 1000)}"
        if self._find(item_id) is not None:
            item_id = f"{item_id}_{uuid.uuid4().hex[:8]}"
        return item_id

    async def enqueue(self, conversation_id: str, message: Message) -> QueuedItem:
        """
        Queue a message for delivery.

        The item is persisted before this returns. If online, a sync pass is
        scheduled in the background.

        Args:
            conversation_id: Conversation the message belongs to
            message: Message to deliver

        Returns:
            Copy of the queued item
        """
        item = QueuedItem(
            id=self._new_item_id(conversation_id, message.id),
            conversation_id=conversation_id,
            payload=replace(message),
        )
        self._items.append(item)
        await self._persist()
        self._notify()

        logger.info(
            "Message queued",
            extra={"item_id": item.id, "conversation_id": conversation_id},
        )

        if self._is_online:
            self._schedule_sync()

        return replace(item, payload=replace(item.payload))

    async def _deliver(self, item: QueuedItem) -> DeliveryAck:
        timeout = self.config.delivery_timeout_seconds
        if timeout is None:
            return await self.delivery.deliver(item.conversation_id, item.payload)

        # A timed out attempt keeps running; it is only counted as failed.
        attempt = asyncio.ensure_future(self.delivery.deliver(item.conversation_id, item.payload))
        attempt.add_done_callback(_consume_late_result)
        try:
            return await asyncio.wait_for(asyncio.shield(attempt), timeout)
        except TimeoutError as e:
            raise TimeoutError(f"Delivery timed out after {timeout}s") from e

    async def sync(self) -> SyncResult:
        """
        Run one sync pass over all pending items.

        No-op when offline or when another pass is already running. A pass
        refused because one is running schedules one follow-up pass, so
        items enqueued meanwhile are not left for the next timer tick.

        Returns:
            Result of the pass
        """
        if not self._is_online:
            return SyncResult(ran=False, skipped_reason="offline")
        if self._syncing:
            self._rerun_requested = True
            return SyncResult(ran=False, skipped_reason="sync already in progress")

        batch = [item for item in self._items if item.status == QueueItemStatus.PENDING]
        if not batch:
            return SyncResult(ran=False, skipped_reason="nothing pending")

        self._syncing = True
        start_time = datetime.now(UTC)
        result = SyncResult(ran=True)

        try:
            for item in batch:
                item.status = QueueItemStatus.SYNCING
            self._notify()

            for item in batch:
                if not self._is_online:
                    logger.info("Network lost during sync pass, deferring remaining items")
                    break
                if not self._is_live(item) or item.status != QueueItemStatus.SYNCING:
                    continue

                try:
                    await self._deliver(item)
                except Exception as e:
                    error = str(e) or type(e).__name__
                    if self._is_live(item):
                        self._record_failure(item, error, result)
                    continue

                if self._is_live(item):
                    self._items = [i for i in self._items if i is not item]
                result.delivered += 1
                logger.info(
                    "Message delivered",
                    extra={"item_id": item.id, "conversation_id": item.conversation_id},
                )

            self._last_sync_at = datetime.now(UTC)
            await self.snapshot.save_sync_meta(self._last_sync_at)
        finally:
            for item in batch:
                if item.status == QueueItemStatus.SYNCING:
                    item.status = QueueItemStatus.PENDING
            await self._persist()
            self._syncing = False
            if self._rerun_requested:
                self._rerun_requested = False
                if self._is_online and self._has_fresh_pending(batch):
                    self._schedule_sync()
            self._notify()

        result.duration_ms = int((datetime.now(UTC) - start_time).total_seconds() * 1000)
        return result

    def _has_fresh_pending(self, batch: list[QueuedItem]) -> bool:
        """True if an item is pending that this pass did not just retry.

        Covers items enqueued mid-pass and failed items reset by
        retry_failed() mid-pass, but not this pass's retryable failures.
        """
        in_batch = {id(item) for item in batch}
        return any(
            item.status == QueueItemStatus.PENDING
            and (id(item) not in in_batch or item.retry_count == 0)
            for item in self._items
        )

    def _record_failure(self, item: QueuedItem, error: str, result: SyncResult) -> None:
        item.retry_count += 1
        item.last_error = error
        context = {
            "item_id": item.id,
            "conversation_id": item.conversation_id,
            "retry_count": item.retry_count,
        }

        if item.retry_count >= self.config.max_retries:
            item.status = QueueItemStatus.FAILED
            result.failed += 1
            result.errors.append(f"Failed to deliver {item.id}: {error}")
            logger.warning(f"Delivery failed permanently: {error}", extra=context)
        else:
            item.status = QueueItemStatus.PENDING
            result.retrying += 1
            logger.info(f"Delivery failed, will retry: {error}", extra=context)

    async def retry_failed(self) -> int:
        """
        Move every failed item back to pending and schedule a sync pass.

        Returns:
            Number of items reset
        """
        reset = 0
        for item in self._items:
            if item.status == QueueItemStatus.FAILED:
                item.status = QueueItemStatus.PENDING
                item.retry_count = 0
                item.last_error = None
                reset += 1

        await self._persist()
        self._notify()

        if self._is_online:
            self._schedule_sync()
        return reset

    def set_network_state(self, online: bool) -> None:
        """
        Record a connectivity change from the network monitor.

        Coming back online schedules an immediate sync pass.
        """
        was_offline = not self._is_online
        self._is_online = online
        logger.info(f"Network state changed: online={online}")
        self._notify()

        if was_offline and online:
            self._schedule_sync()

    async def clear(self) -> None:
        """Drop every queued item, including failed ones."""
        self._items = []
        await self.snapshot.clear_queue()
        self._notify()

    async def remove(self, item_id: str) -> bool:
        """
        Drop a single queued item.

        Returns:
            True if the item was found and removed
        """
        item = self._find(item_id)
        if item is None:
            return False
        self._items.remove(item)
        await self._persist()
        self._notify()
        return True

    def items(self) -> list[QueuedItem]:
        """Copies of all queued items in enqueue order."""
        return [replace(item, payload=replace(item.payload)) for item in self._items]

    def queued_for(self, conversation_id: str) -> list[QueuedItem]:
        """Copies of a conversation's items that are not failed."""
        return [
            item
            for item in self.items()
            if item.conversation_id == conversation_id and item.status != QueueItemStatus.FAILED
        ]

    async def wait_idle(self) -> None:
        """Wait for all scheduled background sync passes to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def start(self) -> None:
        """Start the periodic sync timer."""
        if self._timer_task is not None:
            return

        async def sync_loop() -> None:
            while True:
                try:
                    await asyncio.sleep(self.config.sync_interval_seconds)
                    if self._is_online:
                        await self.sync()
                except asyncio.CancelledError:
                    break
                except Exception:
                    logger.exception("Periodic sync pass failed")

        self._timer_task = asyncio.create_task(sync_loop())

    async def stop(self) -> None:
        """Stop the periodic sync timer."""
        if self._timer_task is not None:
            self._timer_task.cancel()
            try:
                await self._timer_task
            except asyncio.CancelledError:
                pass
            self._timer_task = None

    async def close(self) -> None:
        """Stop the timer, let scheduled passes finish and flush the queue."""
        await self.stop()
        await self.wait_idle()
        await self._persist()


def _consume_late_result(attempt: asyncio.Future[DeliveryAck]) -> None:
    if not attempt.cancelled() and attempt.exception() is not None:
        logger.debug(f"Timed out delivery attempt later failed: {attempt.exception()}")
