"""
Message, pin and attachment storage.

Bulk statements are issued in chunks of ``SQL_CHUNK_SIZE`` ids so a full
retention batch never exceeds SQLite's bound-parameter limit.
"""

from __future__ import annotations

from typing import Iterator, List, Sequence

import aiosqlite

from modsentry.datatypes.retention_datatypes import AttachmentRecord, RetentionPolicy

SQL_CHUNK_SIZE = 500


def _chunks(values: Sequence[str], size: int = SQL_CHUNK_SIZE) -> Iterator[Sequence[str]]:
    for start in range(0, len(values), size):
        yield values[start:start + size]


def _placeholders(count: int) -> str:
    return ", ".join("?" * count)


class MessageRepo:
    """Low-level CRUD for ``messages``, ``pins`` and ``attachments``."""

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    @staticmethod
    async def insert(
        conn: aiosqlite.Connection,
        message_id: str,
        channel_id: str,
        guild_id: str | None,
        author_id: str,
        content: str,
        created_at: float,
    ) -> None:
        await conn.execute(
            "INSERT INTO messages (id, channel_id, guild_id, author_id, content, created_at) "
            "VALUES (?, ?, ?, ?, ?, ?)",
            (message_id, channel_id, guild_id, author_id, content, created_at),
        )

    @staticmethod
    async def pin(conn: aiosqlite.Connection, channel_id: str, message_id: str, pinned_at: float | None = None) -> None:
        await conn.execute(
            "INSERT OR IGNORE INTO pins (channel_id, message_id, pinned_at) VALUES (?, ?, ?)",
            (channel_id, message_id, pinned_at),
        )

    @staticmethod
    async def insert_attachment(conn: aiosqlite.Connection, attachment: AttachmentRecord) -> None:
        await conn.execute(
            "INSERT INTO attachments (id, message_id, bucket, object_key) VALUES (?, ?, ?, ?)",
            (attachment.id, attachment.message_id, attachment.bucket, attachment.key),
        )

    @staticmethod
    async def delete(conn: aiosqlite.Connection, message_id: str) -> bool:
        """Delete one message. Returns False when it was already gone."""
        cursor = await conn.execute("DELETE FROM messages WHERE id = ?", (message_id,))
        return cursor.rowcount > 0

    @staticmethod
    async def delete_many(conn: aiosqlite.Connection, message_ids: Sequence[str]) -> int:
        """Delete the given messages and return the number of rows removed."""
        deleted = 0
        for chunk in _chunks(message_ids):
            cursor = await conn.execute(
                f"DELETE FROM messages WHERE id IN ({_placeholders(len(chunk))})",
                tuple(chunk),
            )
            deleted += max(cursor.rowcount, 0)
        return deleted

    @staticmethod
    async def delete_attachments(conn: aiosqlite.Connection, attachment_ids: Sequence[str]) -> int:
        deleted = 0
        for chunk in _chunks(attachment_ids):
            cursor = await conn.execute(
                f"DELETE FROM attachments WHERE id IN ({_placeholders(len(chunk))})",
                tuple(chunk),
            )
            deleted += max(cursor.rowcount, 0)
        return deleted

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    @staticmethod
    async def select_expired_ids(
        conn: aiosqlite.Connection,
        policy: RetentionPolicy,
        cutoff: float,
        limit: int,
    ) -> List[str]:
        """Return up to ``limit`` ids in the policy's scope created before ``cutoff``.

        Pinned messages are excluded unless the policy deletes pins. Policies
        without any scope select nothing.
        """
        if policy.channel_id is not None:
            query = "SELECT m.id FROM messages m WHERE m.channel_id = ? AND m.created_at < ?"
            args: list = [policy.channel_id, cutoff]
            if not policy.delete_pins:
                query += " AND m.id NOT IN (SELECT p.message_id FROM pins p WHERE p.channel_id = ?)"
                args.append(policy.channel_id)
        elif policy.guild_id is not None:
            query = "SELECT m.id FROM messages m WHERE m.guild_id = ? AND m.created_at < ?"
            args = [policy.guild_id, cutoff]
            if not policy.delete_pins:
                query += " AND m.id NOT IN (SELECT p.message_id FROM pins p)"
        else:
            return []

        query += " ORDER BY m.created_at ASC, m.id ASC LIMIT ?"
        args.append(limit)

        cursor = await conn.execute(query, tuple(args))
        rows = await cursor.fetchall()
        return [row[0] for row in rows]

    @staticmethod
    async def get_attachments(conn: aiosqlite.Connection, message_ids: Sequence[str]) -> List[AttachmentRecord]:
        attachments: List[AttachmentRecord] = []
        for chunk in _chunks(message_ids):
            cursor = await conn.execute(
                "SELECT id, message_id, bucket, object_key FROM attachments "
                f"WHERE message_id IN ({_placeholders(len(chunk))}) ORDER BY id",
                tuple(chunk),
            )
            rows = await cursor.fetchall()
            attachments.extend(
                AttachmentRecord(id=row[0], message_id=row[1], bucket=row[2], key=row[3])
                for row in rows
            )
        return attachments

    @staticmethod
    async def exists(conn: aiosqlite.Connection, message_id: str) -> bool:
        cursor = await conn.execute("SELECT 1 FROM messages WHERE id = ? LIMIT 1", (message_id,))
        return await cursor.fetchone() is not None

    @staticmethod
    async def count(conn: aiosqlite.Connection) -> int:
        cursor = await conn.execute("SELECT COUNT(*) FROM messages")
        row = await cursor.fetchone()
        return int(row[0])

    @staticmethod
    async def count_attachments(conn: aiosqlite.Connection) -> int:
        cursor = await conn.execute("SELECT COUNT(*) FROM attachments")
        row = await cursor.fetchone()
        return int(row[0])
