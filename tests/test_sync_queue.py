"""Tests for the offline-tolerant outbound message queue."""

import asyncio

import pytest
from conftest import ScriptedDeliveryProvider, make_message, wait_until

from chat_resilience.config import MAX_RETRIES, SyncConfig
from chat_resilience.models import QueueItemStatus
from chat_resilience.persistence import QUEUE_KEY, DurableSnapshot, MemoryKeyValueStore
from chat_resilience.sync import SyncQueue


class SlowEmptyQueueStore(MemoryKeyValueStore):
    """Holds back writes of an empty queue until released."""

    def __init__(self):
        super().__init__()
        self.blocked = asyncio.Event()
        self.release = asyncio.Event()

    async def set(self, key: str, value: bytes) -> None:
        if key == QUEUE_KEY and value == b"[]":
            self.blocked.set()
            await self.release.wait()
        await super().set(key, value)


async def go_online(queue: SyncQueue) -> None:
    queue.set_network_state(True)
    await queue.wait_idle()


class TestEnqueue:
    """Tests for queueing messages."""

    @pytest.mark.asyncio
    async def test_enqueue_offline_stays_pending(self, sync_queue, delivery_provider):
        item = await sync_queue.enqueue("c1", make_message("m1", "hello"))

        status = sync_queue.status()
        assert status.pending_count == 1
        assert status.is_online is False
        assert item.status == QueueItemStatus.PENDING
        assert item.id.startswith("c1_m1_")
        assert delivery_provider.call_count == 0

    @pytest.mark.asyncio
    async def test_coming_online_delivers_once(self, sync_queue, delivery_provider):
        await sync_queue.enqueue("c1", make_message("m1", "hello"))

        await go_online(sync_queue)

        assert delivery_provider.calls == [("c1", "m1")]
        assert sync_queue.status().pending_count == 0
        assert sync_queue.items() == []

    @pytest.mark.asyncio
    async def test_enqueue_online_syncs_in_background(self, delivery_provider, snapshot):
        queue = SyncQueue(delivery_provider, snapshot, SyncConfig(start_online=True))

        await queue.enqueue("c1", make_message("m1", "hello"))
        await queue.wait_idle()

        assert delivery_provider.call_count == 1
        assert queue.status().pending_count == 0
        await queue.close()

    @pytest.mark.asyncio
    async def test_enqueue_persists_before_delivery(self, sync_queue, kv_store):
        await sync_queue.enqueue("c1", make_message("m1", "hello"))

        assert await kv_store.get(QUEUE_KEY) is not None
        restored = await DurableSnapshot(kv_store).load_queue()
        assert [item.payload.content for item in restored] == ["hello"]

    @pytest.mark.asyncio
    async def test_returned_item_is_a_copy(self, sync_queue):
        item = await sync_queue.enqueue("c1", make_message("m1", "hello"))

        item.status = QueueItemStatus.FAILED
        item.payload.content = "tampered"

        (stored,) = sync_queue.items()
        assert stored.status == QueueItemStatus.PENDING
        assert stored.payload.content == "hello"

    @pytest.mark.asyncio
    async def test_item_ids_unique(self, sync_queue):
        first = await sync_queue.enqueue("c1", make_message("m1", "hello"))
        second = await sync_queue.enqueue("c1", make_message("m1", "hello"))

        assert first.id != second.id


class TestRetryPolicy:
    """Tests for bounded retry."""

    @pytest.mark.asyncio
    async def test_fails_after_max_retries(self, sync_queue, delivery_provider):
        delivery_provider.outcomes = [ConnectionError("network down")] * MAX_RETRIES
        await sync_queue.enqueue("c1", make_message("m1", "hello"))
        await go_online(sync_queue)

        for _ in range(MAX_RETRIES - 1):
            assert sync_queue.items()[0].status == QueueItemStatus.PENDING
            await sync_queue.sync()

        (item,) = sync_queue.items()
        assert delivery_provider.call_count == MAX_RETRIES
        assert item.status == QueueItemStatus.FAILED
        assert item.retry_count == MAX_RETRIES
        assert item.last_error == "network down"
        assert sync_queue.status().failed_count == 1
        assert sync_queue.status().pending_count == 0

    @pytest.mark.asyncio
    async def test_succeeds_on_last_allowed_attempt(self, sync_queue, delivery_provider):
        """Failing MAX_RETRIES - 1 times then succeeding never surfaces a failure."""
        observed = []
        sync_queue.subscribe(observed.append)
        delivery_provider.outcomes = [TimeoutError("slow")] * (MAX_RETRIES - 1)
        await sync_queue.enqueue("c1", make_message("m1", "hello"))
        await go_online(sync_queue)

        for _ in range(MAX_RETRIES - 1):
            await sync_queue.sync()

        assert delivery_provider.call_count == MAX_RETRIES
        assert sync_queue.items() == []
        assert all(status.failed_count == 0 for status in observed)

    @pytest.mark.asyncio
    async def test_failed_items_are_not_retried_automatically(self, sync_queue, delivery_provider):
        delivery_provider.outcomes = [RuntimeError("rejected")] * MAX_RETRIES
        await sync_queue.enqueue("c1", make_message("m1", "hello"))
        await go_online(sync_queue)
        for _ in range(MAX_RETRIES - 1):
            await sync_queue.sync()

        result = await sync_queue.sync()

        assert result.ran is False
        assert delivery_provider.call_count == MAX_RETRIES

    @pytest.mark.asyncio
    async def test_custom_retry_bound(self, delivery_provider, snapshot):
        queue = SyncQueue(delivery_provider, snapshot, SyncConfig(max_retries=1, start_online=False))
        delivery_provider.outcomes = [RuntimeError("nope")]
        await queue.enqueue("c1", make_message("m1", "hello"))

        await go_online(queue)

        assert queue.items()[0].status == QueueItemStatus.FAILED
        await queue.close()

    @pytest.mark.asyncio
    async def test_retry_failed_resets_and_delivers(self, sync_queue, delivery_provider):
        delivery_provider.outcomes = [RuntimeError("rejected")] * MAX_RETRIES
        await sync_queue.enqueue("c1", make_message("m1", "hello"))
        await go_online(sync_queue)
        for _ in range(MAX_RETRIES - 1):
            await sync_queue.sync()
        assert sync_queue.status().failed_count == 1

        reset = await sync_queue.retry_failed()
        await sync_queue.wait_idle()

        assert reset == 1
        assert sync_queue.items() == []
        assert delivery_provider.completed == ["m1"]

    @pytest.mark.asyncio
    async def test_retry_failed_offline_only_resets(self, sync_queue, delivery_provider):
        delivery_provider.outcomes = [RuntimeError("rejected")] * MAX_RETRIES
        await sync_queue.enqueue("c1", make_message("m1", "hello"))
        await go_online(sync_queue)
        for _ in range(MAX_RETRIES - 1):
            await sync_queue.sync()
        sync_queue.set_network_state(False)

        await sync_queue.retry_failed()

        (item,) = sync_queue.items()
        assert item.status == QueueItemStatus.PENDING
        assert item.retry_count == 0
        assert item.last_error is None

    @pytest.mark.asyncio
    async def test_one_failure_does_not_abort_pass(self, sync_queue, delivery_provider):
        delivery_provider.outcomes = [None, RuntimeError("bad"), None]
        for i in range(3):
            await sync_queue.enqueue("c1", make_message(f"m{i}", f"message {i}"))

        await go_online(sync_queue)

        assert delivery_provider.completed == ["m0", "m2"]
        (item,) = sync_queue.items()
        assert item.payload.id == "m1"
        assert item.retry_count == 1
        assert item.status == QueueItemStatus.PENDING

    @pytest.mark.asyncio
    async def test_delivery_in_enqueue_order(self, sync_queue, delivery_provider):
        for i in range(4):
            await sync_queue.enqueue(f"c{i % 2}", make_message(f"m{i}", "text"))

        await go_online(sync_queue)

        assert [message_id for _, message_id in delivery_provider.calls] == ["m0", "m1", "m2", "m3"]


class TestSyncPass:
    """Tests for sync pass guards and interleaving."""

    @pytest.mark.asyncio
    async def test_sync_offline_is_noop(self, sync_queue, delivery_provider):
        await sync_queue.enqueue("c1", make_message("m1", "hello"))

        result = await sync_queue.sync()

        assert result.ran is False
        assert result.skipped_reason == "offline"
        assert delivery_provider.call_count == 0

    @pytest.mark.asyncio
    async def test_overlapping_sync_does_not_double_send(self, sync_queue, delivery_provider):
        delivery_provider.gate = asyncio.Event()
        await sync_queue.enqueue("c1", make_message("m1", "hello"))
        sync_queue.set_network_state(True)
        await delivery_provider.started.wait()

        assert sync_queue.status().is_syncing is True
        second = await sync_queue.sync()
        third = await sync_queue.sync()
        delivery_provider.gate.set()
        await sync_queue.wait_idle()

        assert second.ran is False
        assert third.skipped_reason == "sync already in progress"
        assert delivery_provider.call_count == 1
        assert sync_queue.items() == []

    @pytest.mark.asyncio
    async def test_item_enqueued_mid_pass_gets_follow_up_pass(self, sync_queue, delivery_provider):
        delivery_provider.gate = asyncio.Event()
        await sync_queue.enqueue("c1", make_message("m1", "first"))
        sync_queue.set_network_state(True)
        await delivery_provider.started.wait()

        await sync_queue.enqueue("c1", make_message("m2", "second"))
        delivery_provider.gate.set()
        await sync_queue.wait_idle()

        assert delivery_provider.completed == ["m1", "m2"]
        status = sync_queue.status()
        assert status.pending_count == 0
        assert status.is_syncing is False

    @pytest.mark.asyncio
    async def test_retryable_failure_waits_for_next_trigger(self, sync_queue, delivery_provider):
        delivery_provider.gate = asyncio.Event()
        delivery_provider.outcomes = [RuntimeError("flaky")]
        await sync_queue.enqueue("c1", make_message("m1", "first"))
        sync_queue.set_network_state(True)
        await delivery_provider.started.wait()

        await sync_queue.sync()
        delivery_provider.gate.set()
        await sync_queue.wait_idle()

        assert delivery_provider.call_count == 1
        (item,) = sync_queue.items()
        assert item.retry_count == 1
        assert item.status == QueueItemStatus.PENDING

    @pytest.mark.asyncio
    async def test_clear_during_pass_is_not_undone(self, sync_queue, delivery_provider, kv_store):
        delivery_provider.gate = asyncio.Event()
        delivery_provider.outcomes = [RuntimeError("late failure")]
        await sync_queue.enqueue("c1", make_message("m1", "hello"))
        await sync_queue.enqueue("c1", make_message("m2", "world"))
        sync_queue.set_network_state(True)
        await delivery_provider.started.wait()

        await sync_queue.clear()
        delivery_provider.gate.set()
        await sync_queue.wait_idle()

        assert sync_queue.items() == []
        assert delivery_provider.call_count == 1
        assert await DurableSnapshot(kv_store).load_queue() == []

    @pytest.mark.asyncio
    async def test_network_loss_mid_pass_defers_rest(self, sync_queue, delivery_provider):
        delivery_provider.gate = asyncio.Event()
        await sync_queue.enqueue("c1", make_message("m1", "first"))
        await sync_queue.enqueue("c1", make_message("m2", "second"))
        sync_queue.set_network_state(True)
        await delivery_provider.started.wait()

        sync_queue.set_network_state(False)
        delivery_provider.gate.set()
        await sync_queue.wait_idle()

        (remaining,) = sync_queue.items()
        assert remaining.payload.id == "m2"
        assert remaining.status == QueueItemStatus.PENDING
        assert remaining.retry_count == 0

    @pytest.mark.asyncio
    async def test_sync_records_last_sync_time(self, sync_queue, kv_store):
        await sync_queue.enqueue("c1", make_message("m1", "hello"))
        assert sync_queue.status().last_sync_at is None

        await go_online(sync_queue)

        last_sync = sync_queue.status().last_sync_at
        assert last_sync is not None
        assert await DurableSnapshot(kv_store).load_sync_meta() == last_sync

    @pytest.mark.asyncio
    async def test_delivery_timeout_is_retryable_failure(self, delivery_provider, snapshot):
        delivery_provider.delay = 0.2
        queue = SyncQueue(
            delivery_provider,
            snapshot,
            SyncConfig(start_online=False, delivery_timeout_seconds=0.01),
        )
        await queue.enqueue("c1", make_message("m1", "hello"))

        await go_online(queue)

        (item,) = queue.items()
        assert item.status == QueueItemStatus.PENDING
        assert item.retry_count == 1
        assert "timed out" in item.last_error
        # The attempt was not cancelled.
        await wait_until(lambda: delivery_provider.completed == ["m1"])
        await queue.close()


class TestSubscriptions:
    """Tests for status broadcast."""

    @pytest.mark.asyncio
    async def test_listener_receives_updates(self, sync_queue):
        observed = []
        sync_queue.subscribe(observed.append)

        await sync_queue.enqueue("c1", make_message("m1", "hello"))
        await go_online(sync_queue)

        assert observed[0].pending_count == 1
        assert any(status.is_syncing for status in observed)
        assert observed[-1].pending_count == 0
        assert observed[-1].is_online is True
        assert observed[-1].is_syncing is False

    @pytest.mark.asyncio
    async def test_unsubscribe(self, sync_queue):
        observed = []
        unsubscribe = sync_queue.subscribe(observed.append)
        await sync_queue.enqueue("c1", make_message("m1", "hello"))

        unsubscribe()
        await sync_queue.enqueue("c1", make_message("m2", "again"))

        assert len(observed) == 1
        unsubscribe()

    @pytest.mark.asyncio
    async def test_raising_listener_does_not_block_others(self, sync_queue):
        observed = []

        def broken(status):
            raise ValueError("ui crashed")

        sync_queue.subscribe(broken)
        sync_queue.subscribe(observed.append)

        await sync_queue.enqueue("c1", make_message("m1", "hello"))

        assert len(observed) == 1

    @pytest.mark.asyncio
    async def test_clear_and_remove_notify(self, sync_queue):
        observed = []
        sync_queue.subscribe(observed.append)
        first = await sync_queue.enqueue("c1", make_message("m1", "hello"))
        await sync_queue.enqueue("c1", make_message("m2", "world"))

        assert await sync_queue.remove(first.id) is True
        assert observed[-1].pending_count == 1
        await sync_queue.clear()
        assert observed[-1].pending_count == 0


class TestQueueAccessors:
    @pytest.mark.asyncio
    async def test_queued_for_excludes_failed_and_other_conversations(
        self, sync_queue, delivery_provider
    ):
        delivery_provider.outcomes = [RuntimeError("x")] * MAX_RETRIES
        await sync_queue.enqueue("c1", make_message("m1", "doomed"))
        await go_online(sync_queue)
        for _ in range(MAX_RETRIES - 1):
            await sync_queue.sync()
        sync_queue.set_network_state(False)
        await sync_queue.enqueue("c1", make_message("m2", "waiting"))
        await sync_queue.enqueue("c2", make_message("m3", "elsewhere"))

        assert [item.payload.id for item in sync_queue.queued_for("c1")] == ["m2"]

    @pytest.mark.asyncio
    async def test_remove_unknown_item(self, sync_queue):
        assert await sync_queue.remove("missing") is False


class TestLoad:
    @pytest.mark.asyncio
    async def test_state_survives_reload(self, sync_queue, kv_store, delivery_provider):
        await sync_queue.enqueue("c1", make_message("m1", "hello"))

        reloaded = SyncQueue(delivery_provider, DurableSnapshot(kv_store), SyncConfig(start_online=False))
        await reloaded.load()

        (item,) = reloaded.items()
        assert item.payload.content == "hello"
        assert item.status == QueueItemStatus.PENDING

    @pytest.mark.asyncio
    async def test_syncing_items_restored_as_pending(self, kv_store):
        delivery = ScriptedDeliveryProvider()
        queue = SyncQueue(delivery, DurableSnapshot(kv_store), SyncConfig(start_online=False))
        await queue.enqueue("c1", make_message("m1", "hello"))
        # Simulate a crash mid-pass by persisting the syncing state directly.
        queue._items[0].status = QueueItemStatus.SYNCING
        await queue.snapshot.save_queue(queue._items)

        reloaded = SyncQueue(delivery, DurableSnapshot(kv_store), SyncConfig(start_online=False))
        await reloaded.load()

        assert reloaded.items()[0].status == QueueItemStatus.PENDING
        assert reloaded.status().pending_count == 1


    @pytest.mark.asyncio
    async def test_enqueue_during_final_write_is_not_lost(self, delivery_provider):
        """A slow empty-queue write from a finished pass never overwrites a newer enqueue."""
        kv = SlowEmptyQueueStore()
        queue = SyncQueue(delivery_provider, DurableSnapshot(kv), SyncConfig(start_online=True))
        await queue.enqueue("c1", make_message("m1", "first"))
        await asyncio.wait_for(kv.blocked.wait(), 2.0)

        queue.set_network_state(False)
        pending = asyncio.create_task(queue.enqueue("c1", make_message("m2", "second")))
        await asyncio.sleep(0.01)
        kv.release.set()
        await pending
        await queue.wait_idle()

        on_disk = await DurableSnapshot(kv).load_queue()
        await queue.close()
        assert delivery_provider.completed == ["m1"]
        assert [item.payload.id for item in on_disk] == ["m2"]


class TestPeriodicTimer:
    @pytest.mark.asyncio
    async def test_timer_retries_pending_items(self, delivery_provider, snapshot):
        delivery_provider.outcomes = [ConnectionError("flaky")]
        queue = SyncQueue(
            delivery_provider,
            snapshot,
            SyncConfig(start_online=True, sync_interval_seconds=0.01),
        )
        await queue.enqueue("c1", make_message("m1", "hello"))
        await queue.wait_idle()
        assert queue.status().pending_count == 1

        await queue.start()
        await wait_until(lambda: queue.status().pending_count == 0)
        await queue.close()

        assert delivery_provider.completed == ["m1"]

    @pytest.mark.asyncio
    async def test_timer_idle_while_offline(self, delivery_provider, snapshot):
        queue = SyncQueue(
            delivery_provider,
            snapshot,
            SyncConfig(start_online=False, sync_interval_seconds=0.01),
        )
        await queue.enqueue("c1", make_message("m1", "hello"))

        await queue.start()
        await asyncio.sleep(0.05)
        await queue.close()

        assert delivery_provider.call_count == 0

    @pytest.mark.asyncio
    async def test_start_twice_and_stop(self, sync_queue):
        await sync_queue.start()
        await sync_queue.start()
        await sync_queue.stop()
        await sync_queue.stop()
