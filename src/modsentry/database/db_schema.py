"""
Database schema initialization.

Timestamps are REAL unix seconds (UTC). JSON-valued columns (rule config,
exemption lists) are TEXT holding a JSON document.
"""

import aiosqlite
from modsentry.util.logger import get_logger

logger = get_logger("database_schema")

SCHEMA_VERSION = 1


class SchemaManager:
    """Creates the tables and indexes the moderation pipeline reads and writes."""

    @staticmethod
    async def initialize_schema(db: aiosqlite.Connection) -> None:
        """
        Create all tables and indexes if they do not exist yet.

        Args:
            db: Open database connection
        """
        await SchemaManager._create_tables(db)
        await SchemaManager._create_indexes(db)
        await SchemaManager._update_schema_version(db)
        await db.commit()
        logger.info("[SCHEMA] Database schema initialized (version %d)", SCHEMA_VERSION)

    @staticmethod
    async def _create_tables(db: aiosqlite.Connection) -> None:
        """Create all required database tables."""
        # Message store. guild_id is NULL for direct messages.
        await db.execute("""
            CREATE TABLE IF NOT EXISTS messages (
                id TEXT PRIMARY KEY,
                channel_id TEXT NOT NULL,
                guild_id TEXT,
                author_id TEXT NOT NULL,
                content TEXT NOT NULL DEFAULT '',
                created_at REAL NOT NULL
            )
        """)

        await db.execute("""
            CREATE TABLE IF NOT EXISTS pins (
                channel_id TEXT NOT NULL,
                message_id TEXT NOT NULL,
                pinned_at REAL,
                PRIMARY KEY (channel_id, message_id),
                FOREIGN KEY (message_id) REFERENCES messages(id) ON DELETE CASCADE
            )
        """)

        await db.execute("""
            CREATE TABLE IF NOT EXISTS attachments (
                id TEXT PRIMARY KEY,
                message_id TEXT NOT NULL,
                bucket TEXT NOT NULL,
                object_key TEXT NOT NULL,
                FOREIGN KEY (message_id) REFERENCES messages(id) ON DELETE CASCADE
            )
        """)

        # Membership state touched by automod actions
        await db.execute("""
            CREATE TABLE IF NOT EXISTS member_roles (
                guild_id TEXT NOT NULL,
                user_id TEXT NOT NULL,
                role_id TEXT NOT NULL,
                PRIMARY KEY (guild_id, user_id, role_id)
            )
        """)

        await db.execute("""
            CREATE TABLE IF NOT EXISTS guild_members (
                guild_id TEXT NOT NULL,
                user_id TEXT NOT NULL,
                timeout_until REAL,
                PRIMARY KEY (guild_id, user_id)
            )
        """)

        await db.execute("""
            CREATE TABLE IF NOT EXISTS member_warnings (
                id TEXT PRIMARY KEY,
                guild_id TEXT NOT NULL,
                user_id TEXT NOT NULL,
                moderator_id TEXT,
                reason TEXT NOT NULL DEFAULT '',
                created_at REAL NOT NULL
            )
        """)

        # Automod configuration and audit trail
        await db.execute("""
            CREATE TABLE IF NOT EXISTS automod_rules (
                id TEXT PRIMARY KEY,
                guild_id TEXT NOT NULL,
                name TEXT NOT NULL,
                enabled INTEGER NOT NULL DEFAULT 1,
                rule_type TEXT NOT NULL,
                config TEXT NOT NULL DEFAULT '{}',
                action TEXT NOT NULL DEFAULT 'delete',
                timeout_duration_seconds INTEGER NOT NULL DEFAULT 60,
                exempt_channel_ids TEXT NOT NULL DEFAULT '[]',
                exempt_role_ids TEXT NOT NULL DEFAULT '[]',
                created_by TEXT,
                created_at REAL NOT NULL,
                updated_at REAL NOT NULL
            )
        """)

        await db.execute("""
            CREATE TABLE IF NOT EXISTS automod_actions (
                id TEXT PRIMARY KEY,
                guild_id TEXT NOT NULL,
                rule_id TEXT NOT NULL,
                channel_id TEXT NOT NULL,
                message_id TEXT,
                user_id TEXT NOT NULL,
                action TEXT NOT NULL,
                rule_name TEXT NOT NULL,
                reason TEXT NOT NULL DEFAULT '',
                content_excerpt TEXT NOT NULL DEFAULT '',
                created_at REAL NOT NULL
            )
        """)

        await db.execute("""
            CREATE TABLE IF NOT EXISTS data_retention_policies (
                id TEXT PRIMARY KEY,
                channel_id TEXT,
                guild_id TEXT,
                max_age_days INTEGER NOT NULL DEFAULT 365,
                delete_attachments INTEGER NOT NULL DEFAULT 1,
                delete_pins INTEGER NOT NULL DEFAULT 0,
                enabled INTEGER NOT NULL DEFAULT 1,
                last_run_at REAL,
                next_run_at REAL,
                messages_deleted INTEGER NOT NULL DEFAULT 0,
                created_by TEXT,
                created_at REAL NOT NULL,
                updated_at REAL NOT NULL
            )
        """)

        await db.execute("""
            CREATE TABLE IF NOT EXISTS schema_version (
                version INTEGER PRIMARY KEY,
                applied_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
        """)

    @staticmethod
    async def _create_indexes(db: aiosqlite.Connection) -> None:
        """Create indexes backing the hot queries."""
        await db.execute("CREATE INDEX IF NOT EXISTS idx_messages_channel_age ON messages(channel_id, created_at)")
        await db.execute("CREATE INDEX IF NOT EXISTS idx_messages_guild_age ON messages(guild_id, created_at)")
        await db.execute("CREATE INDEX IF NOT EXISTS idx_pins_message ON pins(message_id)")
        await db.execute("CREATE INDEX IF NOT EXISTS idx_attachments_message ON attachments(message_id)")
        await db.execute("CREATE INDEX IF NOT EXISTS idx_automod_rules_guild_enabled ON automod_rules(guild_id, enabled, created_at)")
        await db.execute("CREATE INDEX IF NOT EXISTS idx_automod_actions_guild ON automod_actions(guild_id, created_at DESC)")
        await db.execute("CREATE INDEX IF NOT EXISTS idx_automod_actions_user ON automod_actions(user_id)")
        await db.execute("CREATE INDEX IF NOT EXISTS idx_retention_next_run ON data_retention_policies(next_run_at) WHERE enabled = 1")

    @staticmethod
    async def _update_schema_version(db: aiosqlite.Connection) -> None:
        await db.execute("INSERT OR IGNORE INTO schema_version (version) VALUES (?)", (SCHEMA_VERSION,))
