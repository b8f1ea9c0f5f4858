"""
Retry scheduler for the sync queue.

Owns every background task the engine starts: the periodic fallback pass
and fire-and-forget deliveries. Tasks can be tagged with a session so that
session end can wait a bounded time for just that session's sends.
Waiting never cancels a send; it only stops waiting for it.
"""

import asyncio
import contextlib
from collections.abc import Coroutine
from typing import Any

from attendance_engine.infrastructure.observability.logging import get_logger
from attendance_engine.services.sync.sync_queue import SyncQueue

logger = get_logger(__name__)


class SyncScheduler:
    def __init__(self, queue: SyncQueue, interval_seconds: float = 300.0, grace_seconds: float = 1.5):
        self.queue = queue
        self.interval_seconds = interval_seconds
        self.grace_seconds = grace_seconds
        self._periodic_task: asyncio.Task | None = None
        self._tasks: dict[asyncio.Task, str | None] = {}

    @property
    def is_running(self) -> bool:
        return self._periodic_task is not None and not self._periodic_task.done()

    @property
    def in_flight(self) -> int:
        return len(self._tasks)

    def start(self) -> None:
        if self.is_running:
            return
        self._periodic_task = asyncio.create_task(self._run_periodic())
        logger.info("Sync scheduler started", interval_seconds=self.interval_seconds)

    async def stop(self, timeout: float | None = None) -> None:
        """Stop the periodic pass and give outstanding sends a bounded wait."""
        if self._periodic_task is not None:
            self._periodic_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._periodic_task
            self._periodic_task = None

        if self._tasks:
            await asyncio.wait(
                list(self._tasks),
                timeout=self.grace_seconds if timeout is None else timeout,
            )
        logger.info("Sync scheduler stopped", outstanding=len(self._tasks))

    async def _run_periodic(self) -> None:
        while True:
            await asyncio.sleep(self.interval_seconds)
            try:
                await self.queue.process_queue()
            except Exception as e:
                logger.error("Periodic sync pass failed", error=str(e), exc_info=True)

    def spawn(
        self, coro: Coroutine[Any, Any, Any], session_external_id: str | None = None
    ) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self._tasks[task] = session_external_id
        task.add_done_callback(self._on_task_done)
        return task

    def _on_task_done(self, task: asyncio.Task) -> None:
        session_external_id = self._tasks.pop(task, None)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error(
                "Background sync task failed",
                session_external_id=session_external_id,
                error=str(error),
            )

    def trigger(self, session_external_id: str | None = None) -> asyncio.Task:
        """Schedule a queue pass without waiting for it."""
        return self.spawn(self.queue.process_queue(), session_external_id)

    async def drain(self, session_external_id: str | None = None, grace: float | None = None) -> bool:
        """
        Trigger a pass and wait up to `grace` seconds for the session's sends.

        Returns:
            True if everything waited on finished inside the grace period
        """
        self.trigger(session_external_id)
        tasks = [
            task
            for task, tag in self._tasks.items()
            if session_external_id is None or tag == session_external_id
        ]
        if not tasks:
            return True

        _, pending = await asyncio.wait(
            tasks, timeout=self.grace_seconds if grace is None else grace
        )
        if pending:
            logger.warning(
                "Drain grace period elapsed with sends still in flight",
                session_external_id=session_external_id,
                in_flight=len(pending),
            )
        return not pending
