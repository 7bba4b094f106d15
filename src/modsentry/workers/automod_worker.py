"""
Moderation Worker.

Consumes message-create events from the event bus, runs each message
through the rule evaluator and executes the resulting action. A second
background task prunes the spam tracker on a fixed interval.
"""

from __future__ import annotations

import asyncio
from typing import Set

from modsentry.automod.action_executor import ActionExecutor
from modsentry.automod.rule_evaluator import RuleEvaluator
from modsentry.database.database import MessageStore
from modsentry.datatypes.automod_datatypes import MessageContext
from modsentry.datatypes.event_datatypes import Event, MessageCreatePayload
from modsentry.errors import StoreError
from modsentry.events.event_bus import EventBus, Subscription
from modsentry.util.logger import get_logger

logger = get_logger("automod_worker")


class ModerationWorker:
    """
    Long-lived subscriber feeding new messages to the automod engine.

    Design notes
    ------------
    * One subscription for the lifetime of the worker. Each delivery is
      handled independently; a failure is logged and the next event is
      processed as usual.
    * ``shutdown()`` stops consuming, cancels the cleanup ticker and waits
      for messages already being evaluated to finish.

    Args:
        bus: Source of message-create events.
        store: Used to resolve the author's roles.
        evaluator: Rule evaluator (owns the spam tracker).
        executor: Applies actions for triggered rules.
        subject: Message-create subject to subscribe to.
        cleanup_interval: Seconds between spam tracker cleanups.
        spam_retention: Horizon in seconds kept by each cleanup.
    """

    def __init__(
        self,
        bus: EventBus,
        store: MessageStore,
        evaluator: RuleEvaluator,
        executor: ActionExecutor,
        *,
        subject: str = "modsentry.message.create",
        cleanup_interval: float = 600.0,
        spam_retention: float = 3600.0,
    ) -> None:
        self.bus = bus
        self.store = store
        self.evaluator = evaluator
        self.executor = executor
        self.subject = subject
        self.cleanup_interval = cleanup_interval
        self.spam_retention = spam_retention

        self._subscription: Subscription | None = None
        self._cleanup_task: asyncio.Task | None = None
        self._in_flight: Set[asyncio.Task] = set()
        self._stopping = False

    # ------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------

    @property
    def running(self) -> bool:
        return self._subscription is not None

    def start(self) -> None:
        """Subscribe to message-create events and start the cleanup ticker."""
        if self._subscription is not None:
            logger.warning("[AUTOMOD WORKER] Worker already running")
            return

        self._stopping = False
        self._subscription = self.bus.subscribe(self.subject, self.handle_event)
        self._cleanup_task = asyncio.create_task(self._cleanup_loop(), name="automod-spam-cleanup")
        logger.info(
            "[AUTOMOD WORKER] Started (subject=%s, cleanup every %.0fs)",
            self.subject, self.cleanup_interval,
        )

    async def shutdown(self) -> None:
        """Stop consuming events and let in-flight evaluations complete."""
        self._stopping = True

        if self._subscription is not None:
            self._subscription.unsubscribe()
            self._subscription = None

        if self._cleanup_task and not self._cleanup_task.done():
            self._cleanup_task.cancel()
            try:
                await self._cleanup_task
            except asyncio.CancelledError:
                pass
        self._cleanup_task = None

        if self._in_flight:
            await asyncio.gather(*list(self._in_flight), return_exceptions=True)

        logger.info("[AUTOMOD WORKER] Worker shut down")

    # ------------------------------------------------------
    # Event handling
    # ------------------------------------------------------

    async def handle_event(self, event: Event) -> None:
        """Subscription callback. Never raises except for cancellation."""
        if self._stopping:
            return

        task = asyncio.current_task()
        if task is not None:
            self._in_flight.add(task)
        try:
            await self._process(event)
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("[AUTOMOD WORKER] Failed to process %s event", event.type)
        finally:
            if task is not None:
                self._in_flight.discard(task)

    async def _process(self, event: Event) -> None:
        try:
            payload = MessageCreatePayload.from_event(event)
        except ValueError as exc:
            logger.error("[AUTOMOD WORKER] Dropping malformed message event: %s", exc)
            return

        # Direct messages and empty messages are not moderated
        if not payload.guild_id or not payload.content:
            return

        role_ids = await self._resolve_roles(payload.guild_id, payload.author_id)
        message = MessageContext(
            message_id=payload.id,
            channel_id=payload.channel_id,
            guild_id=payload.guild_id,
            author_id=payload.author_id,
            content=payload.content,
            member_role_ids=role_ids,
        )

        match = await self.evaluator.evaluate(message)
        if match is None:
            return
        await self.executor.execute(match.rule, message, match.reason)

    async def _resolve_roles(self, guild_id: str, user_id: str) -> tuple:
        try:
            return await self.store.get_member_role_ids(guild_id, user_id)
        except StoreError as exc:
            logger.warning("[AUTOMOD WORKER] Role lookup failed for %s in %s, assuming none: %s", user_id, guild_id, exc)
            return ()

    # ------------------------------------------------------
    # Spam tracker maintenance
    # ------------------------------------------------------

    async def _cleanup_loop(self) -> None:
        try:
            while True:
                await asyncio.sleep(self.cleanup_interval)
                try:
                    self.evaluator.spam_tracker.cleanup(self.spam_retention)
                except Exception:
                    logger.exception("[AUTOMOD WORKER] Spam tracker cleanup failed")
        except asyncio.CancelledError:
            logger.debug("[AUTOMOD WORKER] Cleanup ticker cancelled")
            raise
