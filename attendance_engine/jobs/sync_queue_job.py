"""
Sync queue worker job.

Drains the Redis-backed sync queue from a separate process, for deployments
where the API process is not left running between meetings. Uses the same
SyncQueue (backoff, attempt cap, abandoned set) as the engine.
"""

import asyncio
import json

from attendance_engine.config import settings
from attendance_engine.infrastructure.observability.logging import get_logger
from attendance_engine.repositories.sync_queue_repository import SyncQueueRepository
from attendance_engine.services.infrastructure.redis_client import FastRedisClient
from attendance_engine.services.remote.delivery_client import HttpDeliveryClient
from attendance_engine.services.sync.sync_queue import SyncQueue

logger = get_logger(__name__)

# Back off this long after an unexpected error in the loop
ERROR_RETRY_SECONDS = 60


class SyncQueueJob:
    """Owns the Redis connection, delivery client and queue for one worker process."""

    def __init__(self, redis_client: FastRedisClient | None = None, client: HttpDeliveryClient | None = None):
        self.redis = redis_client or FastRedisClient()
        self.client = client
        self.queue: SyncQueue | None = None

    async def setup(self) -> SyncQueue:
        if self.queue is not None:
            return self.queue

        await self.redis.initialize()
        store = self.redis.record_store()
        self.client = self.client or HttpDeliveryClient()
        self.queue = SyncQueue(
            SyncQueueRepository(store), self.client, **settings.get_sync_retry_config()
        )
        return self.queue

    async def run_once(self) -> dict:
        queue = await self.setup()
        result = await queue.process_queue()
        status = await queue.status()
        return {**result, "queue": status.to_dict()}

    async def close(self) -> None:
        if self.client is not None:
            await self.client.close()
        await self.redis.close()


async def start_sync_queue_scheduler(interval_seconds: float | None = None) -> None:
    """Process the queue forever at the configured interval."""
    interval = interval_seconds or settings.get_scheduler_config()["interval_seconds"]
    logger.info("Starting sync queue scheduler", interval_seconds=interval)

    job = SyncQueueJob()
    try:
        while True:
            try:
                metrics = await job.run_once()
                logger.info("Sync queue job cycle completed", **metrics)
                await asyncio.sleep(interval)
            except Exception as e:
                logger.error(
                    "Error in sync queue scheduler", error=str(e), error_type=type(e).__name__
                )
                await asyncio.sleep(ERROR_RETRY_SECONDS)
    finally:
        await job.close()


async def print_queue_status() -> None:
    """Print queue counts as JSON and exit."""
    job = SyncQueueJob()
    try:
        queue = await job.setup()
        status = await queue.status()
        print(json.dumps(status.to_dict(), indent=2))
    finally:
        await job.close()
