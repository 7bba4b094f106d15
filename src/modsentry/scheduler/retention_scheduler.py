"""Periodic driver for the retention executor.

Runs one retention pass immediately on start and then every
``interval`` seconds until shut down.
"""

from __future__ import annotations

import asyncio
from typing import Callable

from modsentry.workers.retention_executor import RetentionExecutor
from modsentry.util.logger import get_logger

logger = get_logger("retention_scheduler")


class RetentionScheduler:
    """
    Background task calling ``RetentionExecutor.run_due_policies`` on a fixed interval.

    Args:
        executor: The retention executor to drive.
        get_interval: Callable returning the interval in seconds (called at start).
    """

    def __init__(self, executor: RetentionExecutor, get_interval: Callable[[], float]) -> None:
        self._executor = executor
        self._get_interval = get_interval
        self._task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def run_once(self) -> None:
        """One retention pass; errors are logged, never raised."""
        try:
            results = await self._executor.run_due_policies()
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.error("[RETENTION SCHEDULER] Retention pass failed: %s", exc)
            return

        failed = sum(1 for result in results if not result.succeeded)
        if results:
            logger.info(
                "[RETENTION SCHEDULER] Pass complete: %d policies, %d failed, %d messages deleted",
                len(results), failed, sum(result.messages_deleted for result in results),
            )

    async def _run_loop(self, interval: float) -> None:
        """Infinite loop: run due policies, sleep, repeat."""
        try:
            while True:
                await self.run_once()
                await asyncio.sleep(interval)
        except asyncio.CancelledError:
            logger.info("[RETENTION SCHEDULER] Periodic retention cancelled")
            raise

    def start(self) -> None:
        """Start the background task if not already running."""
        if self.running:
            logger.warning("[RETENTION SCHEDULER] Task already running")
            return
        interval = self._get_interval()
        logger.info("[RETENTION SCHEDULER] Creating retention task with interval %.1fs", interval)
        self._task = asyncio.create_task(self._run_loop(interval), name="retention-scheduler")

    async def shutdown(self) -> None:
        """Cancel the background task and wait for it to unwind."""
        if self._task and not self._task.done():
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        self._task = None
        logger.info("[RETENTION SCHEDULER] Scheduler shutdown complete")
