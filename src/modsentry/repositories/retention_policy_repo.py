"""
Persistent storage for data retention policies.

The retention executor only ever writes run bookkeeping
(``last_run_at``, ``next_run_at``, ``messages_deleted``).
"""

from __future__ import annotations

from typing import Any, List

import aiosqlite

from modsentry.datatypes.retention_datatypes import RetentionPolicy

_POLICY_COLUMNS = (
    "id, channel_id, guild_id, max_age_days, delete_attachments, delete_pins, enabled, "
    "last_run_at, next_run_at, messages_deleted, created_by, created_at"
)


def _row_to_policy(row: Any) -> RetentionPolicy:
    return RetentionPolicy(
        id=row["id"],
        channel_id=row["channel_id"],
        guild_id=row["guild_id"],
        max_age_days=int(row["max_age_days"]),
        delete_attachments=bool(row["delete_attachments"]),
        delete_pins=bool(row["delete_pins"]),
        enabled=bool(row["enabled"]),
        last_run_at=row["last_run_at"],
        next_run_at=row["next_run_at"],
        messages_deleted=int(row["messages_deleted"]),
        created_by=row["created_by"],
        created_at=float(row["created_at"]),
    )


class RetentionPolicyRepo:
    """Low-level access to ``data_retention_policies``."""

    @staticmethod
    async def insert(conn: aiosqlite.Connection, policy: RetentionPolicy) -> None:
        await conn.execute(
            f"INSERT INTO data_retention_policies ({_POLICY_COLUMNS}, updated_at) "
            "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
            (
                policy.id,
                policy.channel_id,
                policy.guild_id,
                policy.max_age_days,
                int(policy.delete_attachments),
                int(policy.delete_pins),
                int(policy.enabled),
                policy.last_run_at,
                policy.next_run_at,
                policy.messages_deleted,
                policy.created_by,
                policy.created_at,
                policy.created_at,
            ),
        )

    @staticmethod
    async def list_due(conn: aiosqlite.Connection, now: float) -> List[RetentionPolicy]:
        """Return enabled policies never scheduled or whose next run has elapsed."""
        cursor = await conn.execute(
            f"SELECT {_POLICY_COLUMNS} FROM data_retention_policies "
            "WHERE enabled = 1 AND (next_run_at IS NULL OR next_run_at <= ?) "
            "ORDER BY created_at ASC, rowid ASC",
            (now,),
        )
        rows = await cursor.fetchall()
        return [_row_to_policy(row) for row in rows]

    @staticmethod
    async def get(conn: aiosqlite.Connection, policy_id: str) -> RetentionPolicy | None:
        cursor = await conn.execute(
            f"SELECT {_POLICY_COLUMNS} FROM data_retention_policies WHERE id = ?",
            (policy_id,),
        )
        row = await cursor.fetchone()
        return None if row is None else _row_to_policy(row)

    @staticmethod
    async def record_run(
        conn: aiosqlite.Connection,
        policy_id: str,
        ran_at: float,
        next_run_at: float,
        deleted: int,
    ) -> None:
        await conn.execute(
            """
            UPDATE data_retention_policies
            SET last_run_at = ?,
                next_run_at = ?,
                messages_deleted = messages_deleted + ?,
                updated_at = ?
            WHERE id = ?
            """,
            (ran_at, next_run_at, deleted, ran_at, policy_id),
        )
