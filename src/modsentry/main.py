"""
ModSentry
=========

Automated moderation service: evaluates every new message against the
guild's automod rules, applies the configured action and, on a schedule,
enforces data retention policies over the message store.

The ``modsentry`` console script only wires the components together around
an in-process event bus. Nothing in this process publishes to the
message-create subject, and no search index is configured, so retention
skips the search step. A host that ingests messages embeds the service by
calling ``build_runtime`` with its own bus and publishing message-create
events on it; a search index is passed to ``RetentionExecutor`` directly.
"""

import os
import sys
from pathlib import Path


def resolve_base_dir() -> Path:
    """Determine the base directory of the project.

    Resolution order:
    1. MODSENTRY_HOME environment variable, if set.
    2. If running in a frozen/compiled context, use the executable's directory.
    3. Otherwise, assume running from source and use the grandparent of this file's directory.
    """
    if env_home := os.getenv("MODSENTRY_HOME"):
        return Path(env_home).resolve()

    if getattr(sys, "frozen", False) or getattr(sys, "compiled", False):
        return Path(sys.argv[0]).resolve().parent

    return Path(__file__).resolve().parents[2]


BASE_DIR = resolve_base_dir()

import asyncio
import signal
from dataclasses import dataclass

from dotenv import load_dotenv

from modsentry.automod.action_executor import ActionExecutor
from modsentry.automod.regex_cache import RegexCache
from modsentry.automod.rule_evaluator import RuleEvaluator
from modsentry.automod.spam_tracker import SpamTracker
from modsentry.configuration.app_configuration import AppConfig
from modsentry.database.database import MessageStore
from modsentry.database.db_connection import ConnectionManager
from modsentry.events.event_bus import InProcessEventBus
from modsentry.scheduler.retention_scheduler import RetentionScheduler
from modsentry.storage.object_storage import LocalObjectStorage
from modsentry.util.logger import get_logger, handle_exception
from modsentry.workers.automod_worker import ModerationWorker
from modsentry.workers.retention_executor import RetentionExecutor

logger = get_logger("main")


@dataclass
class Runtime:
    """Every long-lived component of a running service."""
    store: MessageStore
    bus: InProcessEventBus
    evaluator: RuleEvaluator
    executor: ActionExecutor
    worker: ModerationWorker
    retention: RetentionExecutor
    scheduler: RetentionScheduler


def load_environment() -> AppConfig:
    """Load ``.env`` from the base directory and read the YAML configuration."""
    load_dotenv(dotenv_path=BASE_DIR / ".env")
    config_path = Path(os.getenv("MODSENTRY_CONFIG", BASE_DIR / "config" / "app_config.yml")).resolve()
    logger.info("Using configuration %s", config_path)
    return AppConfig(config_path)


def build_runtime(config: AppConfig, store: MessageStore, bus: InProcessEventBus) -> Runtime:
    """Wire the automod engine, worker and retention components together."""
    evaluator = RuleEvaluator(
        store,
        spam_tracker=SpamTracker(),
        regex_cache=RegexCache(max_size=config.regex_cache_size, match_timeout=config.regex_timeout),
    )
    executor = ActionExecutor(
        store,
        bus,
        default_timeout_seconds=config.default_timeout_seconds,
        excerpt_length=config.audit_excerpt_length,
        message_delete_subject=config.message_delete_subject,
        automod_action_subject=config.automod_action_subject,
    )
    worker = ModerationWorker(
        bus,
        store,
        evaluator,
        executor,
        subject=config.message_create_subject,
        cleanup_interval=config.spam_cleanup_interval,
        spam_retention=config.spam_retention,
    )

    storage_root = config.storage_root
    object_storage = LocalObjectStorage(storage_root) if storage_root is not None else None
    if object_storage is None:
        logger.info("No storage.local_root configured; attachment blobs will not be deleted")

    retention = RetentionExecutor(
        store,
        bus,
        object_storage,
        search_index=None,
        batch_size=config.retention_batch_size,
        reschedule_hours=config.retention_reschedule_hours,
        min_retention_days=config.min_retention_days,
        bulk_delete_subject=config.message_delete_bulk_subject,
    )
    scheduler = RetentionScheduler(retention, lambda: config.retention_interval)
    return Runtime(store, bus, evaluator, executor, worker, retention, scheduler)


async def shutdown_runtime(runtime: Runtime) -> None:
    """Stop background tasks first, then flush pending deliveries."""
    try:
        await runtime.worker.shutdown()
    except Exception as exc:
        logger.exception("Error during worker shutdown: %s", exc)

    try:
        await runtime.scheduler.shutdown()
    except Exception as exc:
        logger.exception("Error during retention scheduler shutdown: %s", exc)

    await runtime.bus.close()
    logger.info("Shutdown complete.")


async def async_main() -> int:
    """Bootstrap the database and services, run until signalled, return an exit code."""
    config = load_environment()

    connection = ConnectionManager()
    try:
        await connection.open(config.database_path)
        store = MessageStore(connection)
        await store.initialize()
    except Exception as exc:
        logger.critical("Failed to initialize database: %s", exc)
        await connection.close()
        return 1

    runtime = build_runtime(config, store, InProcessEventBus())

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop.set)

    runtime.worker.start()
    runtime.scheduler.start()
    logger.info("ModSentry running; press Ctrl+C to stop")

    try:
        await stop.wait()
        logger.info("Shutdown signal received")
    finally:
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.remove_signal_handler(sig)
        await shutdown_runtime(runtime)
        await connection.close()

    return 0


def main() -> int:
    """Console entry point returning the process exit code."""
    sys.excepthook = handle_exception
    os.chdir(BASE_DIR)
    logger.info("Starting ModSentry from %s…", BASE_DIR)
    try:
        return asyncio.run(async_main())
    except KeyboardInterrupt:
        logger.info("Shutdown requested by user.")
        return 0
    except Exception as exc:
        logger.critical("An unexpected error occurred: %s", exc)
        return 1


if __name__ == "__main__":
    sys.exit(main())
