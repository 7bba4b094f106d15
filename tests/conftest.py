"""
Pytest configuration and fixtures for ModSentry tests.
"""

import sys
from pathlib import Path

import pytest
import pytest_asyncio

# Add src directory to path so imports work
src_path = Path(__file__).parent.parent / "src"
sys.path.insert(0, str(src_path))

from modsentry.database.database import MessageStore  # noqa: E402
from modsentry.database.db_connection import ConnectionManager  # noqa: E402
from modsentry.datatypes.automod_datatypes import (  # noqa: E402
    AutomodAction,
    MessageContext,
    Rule,
    RuleType,
    parse_rule_config,
)
from modsentry.datatypes.retention_datatypes import RetentionPolicy  # noqa: E402


class FakeClock:
    """Manually advanced time source."""

    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def make_rule(
    rule_id: str,
    rule_type: RuleType,
    config: dict | None = None,
    *,
    guild_id: str = "guild1",
    name: str | None = None,
    action: AutomodAction = AutomodAction.DELETE,
    created_at: float = 1.0,
    exempt_channel_ids: tuple = (),
    exempt_role_ids: tuple = (),
    timeout_duration_seconds: int = 0,
    enabled: bool = True,
) -> Rule:
    return Rule(
        id=rule_id,
        guild_id=guild_id,
        name=name or rule_id,
        rule_type=rule_type,
        config=parse_rule_config(rule_type, config or {}),
        action=action,
        enabled=enabled,
        timeout_duration_seconds=timeout_duration_seconds,
        exempt_channel_ids=exempt_channel_ids,
        exempt_role_ids=exempt_role_ids,
        created_at=created_at,
        updated_at=created_at,
    )


def make_message(
    content: str,
    *,
    message_id: str = "msg1",
    channel_id: str = "chan1",
    guild_id: str = "guild1",
    author_id: str = "user1",
    roles: tuple = (),
) -> MessageContext:
    return MessageContext(
        message_id=message_id,
        channel_id=channel_id,
        guild_id=guild_id,
        author_id=author_id,
        content=content,
        member_role_ids=roles,
    )


def make_policy(policy_id: str, *, channel_id: str | None = "chan1", guild_id: str | None = "guild1", **kwargs) -> RetentionPolicy:
    kwargs.setdefault("max_age_days", 30)
    kwargs.setdefault("created_at", 1.0)
    return RetentionPolicy(id=policy_id, channel_id=channel_id, guild_id=guild_id, **kwargs)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest_asyncio.fixture
async def connection(tmp_path: Path):
    """Open a temporary SQLite database."""
    manager = ConnectionManager()
    await manager.open(tmp_path / "test.db")
    yield manager
    await manager.close()


@pytest_asyncio.fixture
async def store(connection: ConnectionManager) -> MessageStore:
    """Message store with the schema created."""
    message_store = MessageStore(connection)
    await message_store.initialize()
    return message_store
