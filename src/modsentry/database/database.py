"""
Message store facade consumed by the automod engine and the retention executor.

``MessageStore`` coordinates the connection manager and the repositories.
Reads go straight to the shared connection; writes go through
``ConnectionManager.transaction()`` so they are serialised and committed
one unit at a time. Every SQLite failure surfaces as ``StoreError`` so callers
only deal with one infrastructure exception type.

Lifecycle:
    1. ``await db_connection.open(path)``
    2. ``await store.initialize()``
    3. use the store
    4. ``await db_connection.close()``
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator, List, Sequence, Tuple

import aiosqlite

from modsentry.database.db_connection import ConnectionManager, db_connection
from modsentry.database.db_schema import SchemaManager
from modsentry.datatypes.automod_datatypes import AutomodActionRecord, Rule
from modsentry.datatypes.retention_datatypes import AttachmentRecord, RetentionPolicy
from modsentry.errors import StoreError
from modsentry.repositories.automod_action_repo import AutomodActionRepo
from modsentry.repositories.automod_rule_repo import AutomodRuleRepo
from modsentry.repositories.member_repo import MemberRepo
from modsentry.repositories.message_repo import MessageRepo
from modsentry.repositories.retention_policy_repo import RetentionPolicyRepo
from modsentry.util.logger import get_logger

logger = get_logger("database")


class MessageStore:
    """
    Relational store used by the moderation pipeline.

    Args:
        manager: Open connection manager. Defaults to the process-wide one.
    """

    def __init__(self, manager: ConnectionManager = db_connection) -> None:
        self._manager = manager
        self._initialized = False

    @asynccontextmanager
    async def _reading(self, operation: str) -> AsyncIterator[aiosqlite.Connection]:
        try:
            async with self._manager.read() as conn:
                yield conn
        except aiosqlite.Error as exc:
            raise StoreError(f"{operation} failed: {exc}") from exc

    @asynccontextmanager
    async def _writing(self, operation: str) -> AsyncIterator[aiosqlite.Connection]:
        try:
            async with self._manager.transaction() as conn:
                yield conn
        except aiosqlite.Error as exc:
            raise StoreError(f"{operation} failed: {exc}") from exc

    async def initialize(self) -> None:
        """Create the schema. Safe to call more than once."""
        if self._initialized:
            logger.debug("[DATABASE] Already initialized, skipping")
            return
        try:
            await SchemaManager.initialize_schema(self._manager.connection)
        except aiosqlite.Error as exc:
            raise StoreError(f"schema initialization failed: {exc}") from exc
        self._initialized = True
        logger.info("[DATABASE] Message store ready")

    # ------------------------------------------------------------------
    # Automod rules and audit
    # ------------------------------------------------------------------

    async def list_enabled_rules(self, guild_id: str) -> List[Rule]:
        async with self._reading("list rules") as conn:
            return await AutomodRuleRepo.list_enabled_for_guild(conn, guild_id)

    async def add_rule(self, rule: Rule) -> None:
        async with self._writing("insert rule") as conn:
            await AutomodRuleRepo.insert(conn, rule)

    async def record_action(self, record: AutomodActionRecord) -> None:
        async with self._writing("insert audit record") as conn:
            await AutomodActionRepo.insert(conn, record)

    async def list_actions(self, guild_id: str, limit: int = 100) -> List[AutomodActionRecord]:
        async with self._reading("list audit records") as conn:
            return await AutomodActionRepo.list_for_guild(conn, guild_id, limit)

    # ------------------------------------------------------------------
    # Members
    # ------------------------------------------------------------------

    async def get_member_role_ids(self, guild_id: str, user_id: str) -> Tuple[str, ...]:
        async with self._reading("role lookup") as conn:
            return await MemberRepo.get_role_ids(conn, guild_id, user_id)

    async def add_member_role(self, guild_id: str, user_id: str, role_id: str) -> None:
        async with self._writing("insert member role") as conn:
            await MemberRepo.add_role(conn, guild_id, user_id, role_id)

    async def apply_timeout(self, guild_id: str, user_id: str, until: float) -> None:
        async with self._writing("apply timeout") as conn:
            await MemberRepo.apply_timeout(conn, guild_id, user_id, until)

    async def get_timeout(self, guild_id: str, user_id: str) -> float | None:
        async with self._reading("timeout lookup") as conn:
            return await MemberRepo.get_timeout(conn, guild_id, user_id)

    async def insert_warning(
        self,
        warning_id: str,
        guild_id: str,
        user_id: str,
        reason: str,
        created_at: float,
        moderator_id: str | None = None,
    ) -> None:
        async with self._writing("insert warning") as conn:
            await MemberRepo.insert_warning(conn, warning_id, guild_id, user_id, reason, created_at, moderator_id)

    async def count_warnings(self, guild_id: str, user_id: str) -> int:
        async with self._reading("count warnings") as conn:
            return await MemberRepo.count_warnings(conn, guild_id, user_id)

    # ------------------------------------------------------------------
    # Messages, pins and attachments
    # ------------------------------------------------------------------

    async def add_message(
        self,
        message_id: str,
        channel_id: str,
        guild_id: str | None,
        author_id: str,
        content: str,
        created_at: float,
    ) -> None:
        async with self._writing("insert message") as conn:
            await MessageRepo.insert(conn, message_id, channel_id, guild_id, author_id, content, created_at)

    async def pin_message(self, channel_id: str, message_id: str, pinned_at: float | None = None) -> None:
        async with self._writing("pin message") as conn:
            await MessageRepo.pin(conn, channel_id, message_id, pinned_at)

    async def add_attachment(self, attachment: AttachmentRecord) -> None:
        async with self._writing("insert attachment") as conn:
            await MessageRepo.insert_attachment(conn, attachment)

    async def delete_message(self, message_id: str) -> bool:
        """Delete one message; returns False when no row was removed."""
        async with self._writing("delete message") as conn:
            return await MessageRepo.delete(conn, message_id)

    async def delete_messages(self, message_ids: Sequence[str]) -> int:
        async with self._writing("bulk delete messages") as conn:
            return await MessageRepo.delete_many(conn, message_ids)

    async def select_expired_message_ids(self, policy: RetentionPolicy, cutoff: float, limit: int) -> List[str]:
        async with self._reading("select expired messages") as conn:
            return await MessageRepo.select_expired_ids(conn, policy, cutoff, limit)

    async def get_attachments(self, message_ids: Sequence[str]) -> List[AttachmentRecord]:
        async with self._reading("attachment lookup") as conn:
            return await MessageRepo.get_attachments(conn, message_ids)

    async def delete_attachments(self, attachment_ids: Sequence[str]) -> int:
        async with self._writing("delete attachments") as conn:
            return await MessageRepo.delete_attachments(conn, attachment_ids)

    async def message_exists(self, message_id: str) -> bool:
        async with self._reading("message lookup") as conn:
            return await MessageRepo.exists(conn, message_id)

    async def count_messages(self) -> int:
        async with self._reading("count messages") as conn:
            return await MessageRepo.count(conn)

    async def count_attachments(self) -> int:
        async with self._reading("count attachments") as conn:
            return await MessageRepo.count_attachments(conn)

    # ------------------------------------------------------------------
    # Retention policies
    # ------------------------------------------------------------------

    async def add_retention_policy(self, policy: RetentionPolicy) -> None:
        async with self._writing("insert retention policy") as conn:
            await RetentionPolicyRepo.insert(conn, policy)

    async def list_due_policies(self, now: float) -> List[RetentionPolicy]:
        async with self._reading("list due policies") as conn:
            return await RetentionPolicyRepo.list_due(conn, now)

    async def get_retention_policy(self, policy_id: str) -> RetentionPolicy | None:
        async with self._reading("policy lookup") as conn:
            return await RetentionPolicyRepo.get(conn, policy_id)

    async def record_policy_run(self, policy_id: str, ran_at: float, next_run_at: float, deleted: int) -> None:
        async with self._writing("update policy bookkeeping") as conn:
            await RetentionPolicyRepo.record_run(conn, policy_id, ran_at, next_run_at, deleted)
