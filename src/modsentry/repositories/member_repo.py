"""Guild membership state: roles, timeouts and warnings."""

from __future__ import annotations

from typing import Tuple

import aiosqlite


class MemberRepo:
    """Low-level CRUD for ``member_roles``, ``guild_members`` and ``member_warnings``."""

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    @staticmethod
    async def add_role(conn: aiosqlite.Connection, guild_id: str, user_id: str, role_id: str) -> None:
        await conn.execute(
            "INSERT OR IGNORE INTO member_roles (guild_id, user_id, role_id) VALUES (?, ?, ?)",
            (guild_id, user_id, role_id),
        )

    @staticmethod
    async def apply_timeout(conn: aiosqlite.Connection, guild_id: str, user_id: str, until: float) -> None:
        """Set (or extend) the member's timeout to ``until`` unix seconds."""
        await conn.execute(
            """
            INSERT INTO guild_members (guild_id, user_id, timeout_until)
            VALUES (?, ?, ?)
            ON CONFLICT(guild_id, user_id) DO UPDATE SET
                timeout_until = excluded.timeout_until
            """,
            (guild_id, user_id, until),
        )

    @staticmethod
    async def insert_warning(
        conn: aiosqlite.Connection,
        warning_id: str,
        guild_id: str,
        user_id: str,
        reason: str,
        created_at: float,
        moderator_id: str | None = None,
    ) -> None:
        await conn.execute(
            "INSERT INTO member_warnings (id, guild_id, user_id, moderator_id, reason, created_at) "
            "VALUES (?, ?, ?, ?, ?, ?)",
            (warning_id, guild_id, user_id, moderator_id, reason, created_at),
        )

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    @staticmethod
    async def get_role_ids(conn: aiosqlite.Connection, guild_id: str, user_id: str) -> Tuple[str, ...]:
        cursor = await conn.execute(
            "SELECT role_id FROM member_roles WHERE guild_id = ? AND user_id = ? ORDER BY role_id",
            (guild_id, user_id),
        )
        rows = await cursor.fetchall()
        return tuple(row[0] for row in rows)

    @staticmethod
    async def get_timeout(conn: aiosqlite.Connection, guild_id: str, user_id: str) -> float | None:
        cursor = await conn.execute(
            "SELECT timeout_until FROM guild_members WHERE guild_id = ? AND user_id = ?",
            (guild_id, user_id),
        )
        row = await cursor.fetchone()
        return None if row is None else row[0]

    @staticmethod
    async def count_warnings(conn: aiosqlite.Connection, guild_id: str, user_id: str) -> int:
        cursor = await conn.execute(
            "SELECT COUNT(*) FROM member_warnings WHERE guild_id = ? AND user_id = ?",
            (guild_id, user_id),
        )
        row = await cursor.fetchone()
        return int(row[0])
