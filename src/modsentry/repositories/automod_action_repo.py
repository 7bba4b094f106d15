"""Append-only storage for automod audit records."""

from __future__ import annotations

from typing import List

import aiosqlite

from modsentry.datatypes.automod_datatypes import AutomodAction, AutomodActionRecord


class AutomodActionRepo:
    """Writes and reads the ``automod_actions`` audit table. Rows are never updated."""

    @staticmethod
    async def insert(conn: aiosqlite.Connection, record: AutomodActionRecord) -> None:
        await conn.execute(
            """
            INSERT INTO automod_actions
                (id, guild_id, rule_id, channel_id, message_id, user_id,
                 action, rule_name, reason, content_excerpt, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                record.id,
                record.guild_id,
                record.rule_id,
                record.channel_id,
                record.message_id,
                record.user_id,
                record.action.value,
                record.rule_name,
                record.reason,
                record.content_excerpt,
                record.created_at,
            ),
        )

    @staticmethod
    async def list_for_guild(conn: aiosqlite.Connection, guild_id: str, limit: int = 100) -> List[AutomodActionRecord]:
        """Return the guild's most recent audit records, newest first."""
        cursor = await conn.execute(
            "SELECT id, guild_id, rule_id, channel_id, message_id, user_id, action, "
            "rule_name, reason, content_excerpt, created_at "
            "FROM automod_actions WHERE guild_id = ? "
            "ORDER BY created_at DESC, rowid DESC LIMIT ?",
            (guild_id, limit),
        )
        rows = await cursor.fetchall()
        return [
            AutomodActionRecord(
                id=row["id"],
                guild_id=row["guild_id"],
                rule_id=row["rule_id"],
                channel_id=row["channel_id"],
                message_id=row["message_id"],
                user_id=row["user_id"],
                action=AutomodAction(row["action"]),
                rule_name=row["rule_name"],
                reason=row["reason"],
                content_excerpt=row["content_excerpt"],
                created_at=row["created_at"],
            )
            for row in rows
        ]
