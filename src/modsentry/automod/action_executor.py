"""
Execution of automod actions and the audit trail they leave.

Each action performs its side effect first and then writes one
``automod_actions`` row. The audit row is written even when the side effect
failed, with the failure appended to the recorded reason, so the audit log
stays the authoritative record of what automod attempted.
"""

from __future__ import annotations

import asyncio
import time
from typing import Callable

from modsentry.database.database import MessageStore
from modsentry.datatypes.automod_datatypes import (
    AutomodAction,
    AutomodActionRecord,
    MessageContext,
    Rule,
)
from modsentry.datatypes.event_datatypes import (
    AUTOMOD_ACTION,
    MESSAGE_DELETE,
    Event,
    MessageDeletePayload,
    RuleTriggeredPayload,
)
from modsentry.errors import ActionError, StoreError
from modsentry.events.event_bus import EventBus
from modsentry.util.ids import new_id
from modsentry.util.logger import get_logger

logger = get_logger("action_executor")

DEFAULT_TIMEOUT_SECONDS = 60
DEFAULT_EXCERPT_LENGTH = 200


class ActionExecutor:
    """
    Applies a triggered rule's action to the offending message and its author.

    Args:
        store: Message store receiving deletes, warnings, timeouts and audit rows.
        bus: Event bus for delete and rule-triggered notifications. Optional.
        default_timeout_seconds: Used when a timeout rule has no positive duration.
        excerpt_length: Characters of content copied into the audit row.
        message_delete_subject: Subject for ``MESSAGE_DELETE`` events.
        automod_action_subject: Subject for rule-triggered notifications.
        clock: Wall-clock source in unix seconds.
    """

    def __init__(
        self,
        store: MessageStore,
        bus: EventBus | None = None,
        *,
        default_timeout_seconds: int = DEFAULT_TIMEOUT_SECONDS,
        excerpt_length: int = DEFAULT_EXCERPT_LENGTH,
        message_delete_subject: str = "modsentry.message.delete",
        automod_action_subject: str = "modsentry.automod.action",
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.store = store
        self.bus = bus
        self.default_timeout_seconds = default_timeout_seconds
        self.excerpt_length = excerpt_length
        self.message_delete_subject = message_delete_subject
        self.automod_action_subject = automod_action_subject
        self._clock = clock

    async def execute(self, rule: Rule, message: MessageContext, reason: str) -> AutomodActionRecord:
        """
        Perform ``rule.action`` for ``message`` and write the audit record.

        Returns:
            The audit record that was written.

        Raises:
            ActionError: A warning or timeout could not be applied. The audit
                record has already been written when this is raised.
            StoreError: The audit record itself could not be written.
        """
        failure: str | None = None

        if rule.action is AutomodAction.DELETE:
            failure = await self._delete_message(message)
        elif rule.action is AutomodAction.WARN:
            failure = await self._warn_author(message, reason)
        elif rule.action is AutomodAction.TIMEOUT:
            failure = await self._timeout_author(rule, message)

        recorded_reason = reason if failure is None else f"{reason} ({failure})"
        record = AutomodActionRecord(
            id=new_id(),
            guild_id=message.guild_id,
            rule_id=rule.id,
            channel_id=message.channel_id,
            user_id=message.author_id,
            action=rule.action,
            rule_name=rule.name,
            reason=recorded_reason,
            message_id=message.message_id or None,
            content_excerpt=message.content[: self.excerpt_length],
            created_at=self._clock(),
        )
        await self.store.record_action(record)

        # Only an action that actually took effect is announced
        if failure is None:
            await self._publish_rule_triggered(rule, message, reason)

        if failure is not None and rule.action in (AutomodAction.WARN, AutomodAction.TIMEOUT):
            raise ActionError(f"{rule.action} for rule {rule.id} failed: {failure}")
        return record

    # ------------------------------------------------------------------
    # Actions
    # ------------------------------------------------------------------

    async def _delete_message(self, message: MessageContext) -> str | None:
        """Delete the message; returns a failure note instead of raising."""
        try:
            deleted = await self.store.delete_message(message.message_id)
        except StoreError as exc:
            logger.warning("[AUTOMOD] Failed to delete message %s: %s", message.message_id, exc)
            return f"message delete failed: {exc}"

        if not deleted:
            logger.warning("[AUTOMOD] Message %s was already gone", message.message_id)
            return "message delete failed: message not found"

        logger.info("[AUTOMOD] Deleted message %s in guild %s", message.message_id, message.guild_id)
        await self._publish(
            self.message_delete_subject,
            Event.from_payload(
                MESSAGE_DELETE,
                MessageDeletePayload(id=message.message_id, channel_id=message.channel_id, guild_id=message.guild_id),
                guild_id=message.guild_id,
                channel_id=message.channel_id,
            ),
        )
        return None

    async def _warn_author(self, message: MessageContext, reason: str) -> str | None:
        try:
            await self.store.insert_warning(
                new_id(),
                message.guild_id,
                message.author_id,
                f"AutoMod: {reason}",
                self._clock(),
            )
        except StoreError as exc:
            logger.error("[AUTOMOD] Failed to warn user %s: %s", message.author_id, exc)
            return f"warning failed: {exc}"

        logger.info("[AUTOMOD] Warned user %s in guild %s", message.author_id, message.guild_id)
        return None

    async def _timeout_author(self, rule: Rule, message: MessageContext) -> str | None:
        duration = rule.timeout_duration_seconds
        if duration <= 0:
            duration = self.default_timeout_seconds

        try:
            await self.store.apply_timeout(message.guild_id, message.author_id, self._clock() + duration)
        except StoreError as exc:
            logger.error("[AUTOMOD] Failed to time out user %s: %s", message.author_id, exc)
            return f"timeout failed: {exc}"

        logger.info(
            "[AUTOMOD] Timed out user %s in guild %s for %ds",
            message.author_id, message.guild_id, duration,
        )

        # The offending message goes too; its failure is not the timeout's failure
        await self._delete_message(message)
        return None

    # ------------------------------------------------------------------
    # Notifications
    # ------------------------------------------------------------------

    async def _publish_rule_triggered(self, rule: Rule, message: MessageContext, reason: str) -> None:
        payload = RuleTriggeredPayload(
            rule_id=rule.id,
            rule_name=rule.name,
            action=rule.action.value,
            reason=reason,
            message_id=message.message_id,
            user_id=message.author_id,
            guild_id=message.guild_id,
            channel_id=message.channel_id,
        )
        await self._publish(
            self.automod_action_subject,
            Event.from_payload(AUTOMOD_ACTION, payload, guild_id=message.guild_id, channel_id=message.channel_id),
        )

    async def _publish(self, subject: str, event: Event) -> None:
        """Best-effort publish; delivery problems are logged and dropped."""
        if self.bus is None:
            return
        try:
            await self.bus.publish(subject, event)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.warning("[AUTOMOD] Failed to publish %s event on %s: %s", event.type, subject, exc)
