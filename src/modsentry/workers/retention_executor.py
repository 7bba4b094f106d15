"""
Retention Executor.

Runs every due retention policy once: deletes messages older than the
policy's age limit in bounded batches, cascades into attachment blobs and
the search index, announces each batch with a bulk-delete event and records
run bookkeeping on the policy.

Policies and batches are processed strictly one after another. A failing
policy is logged and the pass moves on to the next one.
"""

from __future__ import annotations

import asyncio
import time
from typing import Callable, List, Sequence

from modsentry.database.database import MessageStore
from modsentry.datatypes.event_datatypes import MESSAGE_DELETE_BULK, BulkDeletePayload, Event
from modsentry.datatypes.retention_datatypes import PolicyRunResult, RetentionPolicy
from modsentry.events.event_bus import EventBus
from modsentry.storage.object_storage import ObjectStorage
from modsentry.storage.search_index import SearchIndex
from modsentry.util.logger import get_logger

logger = get_logger("retention_executor")

SECONDS_PER_DAY = 86400
DEFAULT_BATCH_SIZE = 1000
DEFAULT_RESCHEDULE_HOURS = 24.0


class InvalidPolicyError(ValueError):
    """The policy's configuration cannot be executed."""


class RetentionExecutor:
    """
    Executes data retention policies against the message store.

    Args:
        store: Message store holding messages, attachments and policies.
        bus: Receives bulk-delete notifications. Optional.
        object_storage: Attachment blob storage. Optional; blobs are kept when absent.
        search_index: Search index to purge. Optional.
        batch_size: Messages deleted per batch.
        reschedule_hours: Delay until a processed policy is due again.
        min_retention_days: Floor applied to every policy's ``max_age_days``.
        bulk_delete_subject: Subject for ``MESSAGE_DELETE_BULK`` events.
        clock: Wall-clock source in unix seconds.
    """

    def __init__(
        self,
        store: MessageStore,
        bus: EventBus | None = None,
        object_storage: ObjectStorage | None = None,
        search_index: SearchIndex | None = None,
        *,
        batch_size: int = DEFAULT_BATCH_SIZE,
        reschedule_hours: float = DEFAULT_RESCHEDULE_HOURS,
        min_retention_days: int = 0,
        bulk_delete_subject: str = "modsentry.message.delete_bulk",
        clock: Callable[[], float] = time.time,
    ) -> None:
        if batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        self.store = store
        self.bus = bus
        self.object_storage = object_storage
        self.search_index = search_index
        self.batch_size = batch_size
        self.reschedule_hours = reschedule_hours
        self.min_retention_days = min_retention_days
        self.bulk_delete_subject = bulk_delete_subject
        self._clock = clock

    async def run_due_policies(self) -> List[PolicyRunResult]:
        """
        Execute every enabled policy that is due.

        Returns:
            One result per policy, in execution order.

        Raises:
            StoreError: If the due policies cannot be listed.
        """
        policies = await self.store.list_due_policies(self._clock())
        if not policies:
            logger.debug("[RETENTION] No policies due")
            return []

        logger.info("[RETENTION] Running %d due policies", len(policies))
        results = []
        for policy in policies:
            # Yield so a pending cancellation lands between policies
            await asyncio.sleep(0)
            results.append(await self.execute_policy(policy))
        return results

    async def execute_policy(self, policy: RetentionPolicy) -> PolicyRunResult:
        """Run one policy to completion and update its bookkeeping.

        Failures are captured on the returned result instead of raised.
        Cancellation still records the progress made so far before propagating.
        """
        result = PolicyRunResult(policy_id=policy.id)
        try:
            await self._delete_expired(policy, result)
        except asyncio.CancelledError:
            logger.info("[RETENTION] Policy %s interrupted after %d messages", policy.id, result.messages_deleted)
            await asyncio.shield(self._record_run(policy, result))
            raise
        except Exception as exc:
            result.error = exc
            logger.error(
                "[RETENTION] Policy %s (%s) failed after %d messages: %s",
                policy.id, policy.describe_scope(), result.messages_deleted, exc,
                exc_info=not isinstance(exc, InvalidPolicyError),
            )

        await self._record_run(policy, result)

        if result.succeeded and result.messages_deleted > 0:
            logger.info(
                "[RETENTION] Policy %s (%s) deleted %d messages in %d batches",
                policy.id, policy.describe_scope(), result.messages_deleted, result.batches,
            )
        return result

    def effective_max_age_days(self, policy: RetentionPolicy) -> int:
        """Return the policy's age limit raised to the instance floor.

        Raises:
            InvalidPolicyError: If ``max_age_days`` is below one day.
        """
        if policy.max_age_days < 1:
            raise InvalidPolicyError(f"max_age_days must be at least 1, got {policy.max_age_days}")
        return max(policy.max_age_days, self.min_retention_days)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _delete_expired(self, policy: RetentionPolicy, result: PolicyRunResult) -> None:
        if not policy.has_scope:
            logger.warning("[RETENTION] Policy %s has no channel or guild scope, skipping", policy.id)
            return

        cutoff = self._clock() - self.effective_max_age_days(policy) * SECONDS_PER_DAY

        while True:
            await asyncio.sleep(0)

            message_ids = await self.store.select_expired_message_ids(policy, cutoff, self.batch_size)
            if not message_ids:
                break

            if policy.delete_attachments:
                await self._purge_attachments(message_ids)

            result.messages_deleted += await self.store.delete_messages(message_ids)
            result.batches += 1

            await self._publish_bulk_delete(policy, message_ids)
            await self._purge_search_index(message_ids)

            if len(message_ids) < self.batch_size:
                break

    async def _purge_attachments(self, message_ids: Sequence[str]) -> None:
        attachments = await self.store.get_attachments(message_ids)
        if not attachments:
            return

        if self.object_storage is None:
            # Rows still go with their messages through the foreign key cascade
            logger.warning(
                "[RETENTION] No object storage configured; %d attachment blobs are kept without records",
                len(attachments),
            )
            return

        for attachment in attachments:
            try:
                await self.object_storage.delete_object(attachment.bucket, attachment.key)
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                logger.warning(
                    "[RETENTION] Failed to delete object %s/%s: %s",
                    attachment.bucket, attachment.key, exc,
                )

        await self.store.delete_attachments([attachment.id for attachment in attachments])

    async def _publish_bulk_delete(self, policy: RetentionPolicy, message_ids: Sequence[str]) -> None:
        if self.bus is None:
            return
        event = Event.from_payload(
            MESSAGE_DELETE_BULK,
            BulkDeletePayload(ids=list(message_ids), channel_id=policy.channel_id, guild_id=policy.guild_id),
            guild_id=policy.guild_id or "",
            channel_id=policy.channel_id or "",
        )
        try:
            await self.bus.publish(self.bulk_delete_subject, event)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.warning("[RETENTION] Failed to publish bulk delete of %d messages: %s", len(message_ids), exc)

    async def _purge_search_index(self, message_ids: Sequence[str]) -> None:
        if self.search_index is None:
            return
        for message_id in message_ids:
            try:
                await self.search_index.delete_message(message_id)
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                logger.warning("[RETENTION] Failed to remove message %s from search index: %s", message_id, exc)

    async def _record_run(self, policy: RetentionPolicy, result: PolicyRunResult) -> None:
        ran_at = self._clock()
        next_run_at = ran_at + self.reschedule_hours * 3600
        try:
            await self.store.record_policy_run(policy.id, ran_at, next_run_at, result.messages_deleted)
        except Exception as exc:
            if result.error is None:
                result.error = exc
            logger.error("[RETENTION] Failed to update bookkeeping for policy %s: %s", policy.id, exc)
