"""
Persistent storage for automod rules.

Rules are returned in creation order (``created_at`` then ``rowid``); the
evaluator relies on that order because the first triggering rule wins.
"""

from __future__ import annotations

import json
from typing import Any, List, Tuple

import aiosqlite

from modsentry.datatypes.automod_datatypes import (
    AutomodAction,
    Rule,
    RuleType,
    config_to_json,
    parse_rule_config,
)
from modsentry.util.logger import get_logger

logger = get_logger("automod_rule_repo")

_RULE_COLUMNS = (
    "id, guild_id, name, enabled, rule_type, config, action, timeout_duration_seconds, "
    "exempt_channel_ids, exempt_role_ids, created_by, created_at, updated_at"
)


def _decode_id_list(raw: str | None) -> Tuple[str, ...]:
    values = json.loads(raw or "[]")
    if not isinstance(values, list):
        raise ValueError(f"expected a JSON list, got {type(values).__name__}")
    return tuple(str(value) for value in values)


def _row_to_rule(row: Any) -> Rule | None:
    """Build a Rule from a row, or return None when the row is unusable."""
    rule_id = row["id"]
    try:
        rule_type = RuleType(row["rule_type"])
        action = AutomodAction(row["action"])
        config = parse_rule_config(rule_type, json.loads(row["config"] or "{}"))
        exempt_channels = _decode_id_list(row["exempt_channel_ids"])
        exempt_roles = _decode_id_list(row["exempt_role_ids"])
        timeout_duration = int(row["timeout_duration_seconds"] or 0)
        created_at = float(row["created_at"])
        updated_at = float(row["updated_at"])
    except (ValueError, TypeError) as exc:
        logger.error("[AUTOMOD RULES] Skipping malformed rule %s: %s", rule_id, exc)
        return None

    return Rule(
        id=rule_id,
        guild_id=row["guild_id"],
        name=row["name"],
        enabled=bool(row["enabled"]),
        rule_type=rule_type,
        config=config,
        action=action,
        timeout_duration_seconds=timeout_duration,
        exempt_channel_ids=exempt_channels,
        exempt_role_ids=exempt_roles,
        created_by=row["created_by"],
        created_at=created_at,
        updated_at=updated_at,
    )


class AutomodRuleRepo:
    """Low-level access to the ``automod_rules`` table."""

    @staticmethod
    async def insert(conn: aiosqlite.Connection, rule: Rule) -> None:
        await conn.execute(
            f"INSERT INTO automod_rules ({_RULE_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
            (
                rule.id,
                rule.guild_id,
                rule.name,
                int(rule.enabled),
                rule.rule_type.value,
                json.dumps(config_to_json(rule.config)),
                rule.action.value,
                rule.timeout_duration_seconds,
                json.dumps(list(rule.exempt_channel_ids)),
                json.dumps(list(rule.exempt_role_ids)),
                rule.created_by,
                rule.created_at,
                rule.updated_at or rule.created_at,
            ),
        )

    @staticmethod
    async def list_enabled_for_guild(conn: aiosqlite.Connection, guild_id: str) -> List[Rule]:
        """Return the guild's enabled rules, oldest first. Malformed rows are skipped."""
        cursor = await conn.execute(
            f"SELECT {_RULE_COLUMNS} FROM automod_rules "
            "WHERE guild_id = ? AND enabled = 1 "
            "ORDER BY created_at ASC, rowid ASC",
            (guild_id,),
        )
        rows = await cursor.fetchall()
        rules = []
        for row in rows:
            rule = _row_to_rule(row)
            if rule is not None:
                rules.append(rule)
        return rules
