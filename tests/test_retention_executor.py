"""
Tests for the retention executor: batching, cascades, bookkeeping and isolation.
"""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from conftest import make_policy

from modsentry.database.database import MessageStore
from modsentry.datatypes.event_datatypes import MESSAGE_DELETE_BULK
from modsentry.datatypes.retention_datatypes import AttachmentRecord
from modsentry.errors import StoreError
from modsentry.workers.retention_executor import (
    SECONDS_PER_DAY,
    InvalidPolicyError,
    RetentionExecutor,
)


def _bus() -> MagicMock:
    bus = MagicMock()
    bus.publish = AsyncMock()
    return bus


async def _add_messages(store, clock, prefix, count, *, age_days, channel_id="chan1", guild_id="guild1"):
    ids = []
    for i in range(count):
        message_id = f"{prefix}{i:03d}"
        await store.add_message(message_id, channel_id, guild_id, "user1", "text", clock.now - age_days * SECONDS_PER_DAY - i)
        ids.append(message_id)
    return ids


@pytest.mark.asyncio
async def test_channel_policy_deletes_aged_unpinned_messages(store, clock):
    bus = _bus()
    executor = RetentionExecutor(store, bus, clock=clock)
    await _add_messages(store, clock, "old", 3, age_days=40)
    await _add_messages(store, clock, "new", 2, age_days=1)
    await _add_messages(store, clock, "elsewhere", 1, age_days=40, channel_id="chan2")
    await store.add_message("pinned", "chan1", "guild1", "user1", "keep", clock.now - 90 * SECONDS_PER_DAY)
    await store.pin_message("chan1", "pinned")
    await store.add_retention_policy(make_policy("p1", max_age_days=30))

    [result] = await executor.run_due_policies()

    assert result.succeeded
    assert result.messages_deleted == 3
    assert await store.count_messages() == 4
    assert await store.message_exists("pinned")

    policy = await store.get_retention_policy("p1")
    assert policy.last_run_at == clock.now
    assert policy.next_run_at == clock.now + 24 * 3600
    assert policy.messages_deleted == 3

    [call] = bus.publish.await_args_list
    subject, event = call.args
    assert subject == "modsentry.message.delete_bulk"
    assert event.type == MESSAGE_DELETE_BULK
    payload = event.json()
    assert sorted(payload["ids"]) == ["old000", "old001", "old002"]
    assert payload["channel_id"] == "chan1"
    assert payload["guild_id"] == "guild1"


@pytest.mark.asyncio
async def test_guild_policy_covers_all_channels(store, clock):
    executor = RetentionExecutor(store, clock=clock)
    await _add_messages(store, clock, "a", 2, age_days=40, channel_id="chan1")
    await _add_messages(store, clock, "b", 2, age_days=40, channel_id="chan2")
    await _add_messages(store, clock, "other", 2, age_days=40, channel_id="chan9", guild_id="guild2")
    await store.add_retention_policy(make_policy("p1", channel_id=None, guild_id="guild1", max_age_days=30))

    [result] = await executor.run_due_policies()

    assert result.messages_deleted == 4
    assert await store.count_messages() == 2


@pytest.mark.asyncio
async def test_attachment_cascade_is_best_effort(store, clock):
    storage = MagicMock()
    storage.delete_object = AsyncMock(side_effect=[FileNotFoundError("gone"), None])
    executor = RetentionExecutor(store, object_storage=storage, clock=clock)
    ids = await _add_messages(store, clock, "m", 2, age_days=40)
    for message_id in ids:
        await store.add_attachment(AttachmentRecord(f"att-{message_id}", message_id, "uploads", f"{message_id}.png"))
    await store.add_retention_policy(make_policy("p1", max_age_days=30))

    [result] = await executor.run_due_policies()

    assert result.succeeded
    assert storage.delete_object.await_count == 2
    storage.delete_object.assert_any_await("uploads", "m000.png")
    assert await store.count_attachments() == 0
    assert await store.count_messages() == 0


@pytest.mark.asyncio
async def test_blobs_kept_when_policy_keeps_attachments(store, clock):
    storage = MagicMock()
    storage.delete_object = AsyncMock()
    executor = RetentionExecutor(store, object_storage=storage, clock=clock)
    [message_id] = await _add_messages(store, clock, "m", 1, age_days=40)
    await store.add_attachment(AttachmentRecord("att1", message_id, "uploads", "a.png"))
    await store.add_retention_policy(make_policy("p1", max_age_days=30, delete_attachments=False))

    await executor.run_due_policies()

    storage.delete_object.assert_not_awaited()
    assert await store.count_messages() == 0


@pytest.mark.asyncio
async def test_attachment_step_skipped_without_object_storage(store, clock, monkeypatch):
    executor = RetentionExecutor(store, clock=clock)
    delete_attachments = AsyncMock(wraps=store.delete_attachments)
    monkeypatch.setattr(store, "delete_attachments", delete_attachments)
    [message_id] = await _add_messages(store, clock, "m", 1, age_days=40)
    await store.add_attachment(AttachmentRecord("att1", message_id, "uploads", "a.png"))
    await store.add_retention_policy(make_policy("p1", max_age_days=30))

    [result] = await executor.run_due_policies()

    assert result.succeeded
    assert result.messages_deleted == 1
    delete_attachments.assert_not_awaited()
    assert await store.count_attachments() == 0


@pytest.mark.asyncio
async def test_search_index_failures_are_not_fatal(store, clock):
    search = MagicMock()
    search.delete_message = AsyncMock(side_effect=RuntimeError("index offline"))
    executor = RetentionExecutor(store, search_index=search, clock=clock)
    await _add_messages(store, clock, "m", 2, age_days=40)
    await store.add_retention_policy(make_policy("p1", max_age_days=30))

    [result] = await executor.run_due_policies()

    assert result.succeeded
    assert result.messages_deleted == 2
    assert search.delete_message.await_count == 2


@pytest.mark.asyncio
async def test_second_run_deletes_nothing(store, clock):
    executor = RetentionExecutor(store, clock=clock)
    ids = await _add_messages(store, clock, "m", 3, age_days=40)
    await _add_messages(store, clock, "keep", 2, age_days=1)
    await store.add_attachment(AttachmentRecord("att-keep", "keep000", "uploads", "k.png"))
    await store.add_retention_policy(make_policy("p1", max_age_days=30))

    await executor.run_due_policies()
    messages_after_first = await store.count_messages()
    attachments_after_first = await store.count_attachments()

    # Not due again until tomorrow
    assert await executor.run_due_policies() == []

    policy = await store.get_retention_policy("p1")
    result = await executor.execute_policy(policy)

    assert result.messages_deleted == 0
    assert await store.count_messages() == messages_after_first == 2
    assert await store.count_attachments() == attachments_after_first == 1
    assert (await store.get_retention_policy("p1")).messages_deleted == len(ids)


@pytest.mark.parametrize("count, expected_batches", [(3, 1), (6, 2), (7, 3), (0, 0)])
@pytest.mark.asyncio
async def test_batch_loop_terminates(store, clock, count, expected_batches):
    bus = _bus()
    executor = RetentionExecutor(store, bus, batch_size=3, clock=clock)
    await _add_messages(store, clock, "m", count, age_days=40)
    await store.add_retention_policy(make_policy("p1", max_age_days=30))

    [result] = await asyncio.wait_for(executor.run_due_policies(), timeout=5)

    assert result.messages_deleted == count
    assert result.batches == expected_batches
    assert bus.publish.await_count == expected_batches
    assert await store.count_messages() == 0


class _FailingStore(MessageStore):
    """Fails bulk deletes in one channel."""

    def __init__(self, manager, failing_prefix: str) -> None:
        super().__init__(manager)
        self.failing_prefix = failing_prefix

    async def delete_messages(self, message_ids):
        if any(message_id.startswith(self.failing_prefix) for message_id in message_ids):
            raise StoreError("simulated failure")
        return await super().delete_messages(message_ids)


@pytest.mark.asyncio
async def test_failing_policy_does_not_block_others(store, connection, clock):
    failing = _FailingStore(connection, "a")
    executor = RetentionExecutor(failing, batch_size=2, clock=clock)
    await _add_messages(store, clock, "a", 3, age_days=40, channel_id="chanA")
    await _add_messages(store, clock, "b", 3, age_days=40, channel_id="chanB")
    await store.add_retention_policy(make_policy("A", channel_id="chanA", max_age_days=30, created_at=1.0))
    await store.add_retention_policy(make_policy("B", channel_id="chanB", max_age_days=30, created_at=2.0))

    result_a, result_b = await executor.run_due_policies()

    assert isinstance(result_a.error, StoreError)
    assert result_a.messages_deleted == 0
    assert result_b.succeeded
    assert result_b.messages_deleted == 3

    policy_a = await store.get_retention_policy("A")
    policy_b = await store.get_retention_policy("B")
    assert policy_a.last_run_at == clock.now
    assert policy_a.next_run_at == clock.now + 86400
    assert policy_b.messages_deleted == 3
    assert await store.count_messages() == 3


@pytest.mark.asyncio
async def test_invalid_age_is_rejected_but_rescheduled(store, clock):
    executor = RetentionExecutor(store, clock=clock)
    await _add_messages(store, clock, "m", 2, age_days=40)
    await store.add_retention_policy(make_policy("p1", max_age_days=0))

    [result] = await executor.run_due_policies()

    assert isinstance(result.error, InvalidPolicyError)
    assert await store.count_messages() == 2
    assert (await store.get_retention_policy("p1")).next_run_at == clock.now + 86400


@pytest.mark.asyncio
async def test_minimum_retention_floor(store, clock):
    executor = RetentionExecutor(store, min_retention_days=30, clock=clock)
    await _add_messages(store, clock, "young", 1, age_days=10)
    await _add_messages(store, clock, "old", 1, age_days=40)
    await store.add_retention_policy(make_policy("p1", max_age_days=1))

    [result] = await executor.run_due_policies()

    assert result.messages_deleted == 1
    assert await store.message_exists("young000")


@pytest.mark.asyncio
async def test_unscoped_policy_is_skipped(store, clock):
    executor = RetentionExecutor(store, clock=clock)
    await _add_messages(store, clock, "m", 1, age_days=40)
    await store.add_retention_policy(make_policy("p1", channel_id=None, guild_id=None))

    [result] = await executor.run_due_policies()

    assert result.succeeded
    assert result.messages_deleted == 0
    assert await store.count_messages() == 1


@pytest.mark.asyncio
async def test_cancellation_keeps_progress(store, clock):
    blocked = asyncio.Event()
    search = MagicMock()

    async def delete_message(message_id):
        if message_id.startswith("b"):
            blocked.set()
            await asyncio.sleep(3600)

    search.delete_message = AsyncMock(side_effect=delete_message)
    executor = RetentionExecutor(store, search_index=search, clock=clock)
    await _add_messages(store, clock, "a", 2, age_days=40, channel_id="chanA")
    await _add_messages(store, clock, "b", 2, age_days=40, channel_id="chanB")
    await store.add_retention_policy(make_policy("A", channel_id="chanA", created_at=1.0))
    await store.add_retention_policy(make_policy("B", channel_id="chanB", created_at=2.0))

    task = asyncio.create_task(executor.run_due_policies())
    await asyncio.wait_for(blocked.wait(), timeout=5)
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    assert (await store.get_retention_policy("A")).messages_deleted == 2
    policy_b = await store.get_retention_policy("B")
    assert policy_b.messages_deleted == 2
    assert policy_b.last_run_at == clock.now
    assert await store.count_messages() == 0


def test_batch_size_must_be_positive():
    with pytest.raises(ValueError):
        RetentionExecutor(MagicMock(), batch_size=0)
