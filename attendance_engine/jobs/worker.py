"""
Background worker entrypoint (`attendance-worker`).

The job comes from the first CLI argument, else WORKER_JOB, else the
sync queue drainer. Run it instead of the API's built-in scheduler, never
alongside it against the same Redis store.
"""

import asyncio
import os
import sys
from collections.abc import Awaitable, Callable, Sequence

from attendance_engine.config import settings
from attendance_engine.infrastructure.observability.logging import get_logger, setup_logging
from attendance_engine.jobs.sync_queue_job import print_queue_status, start_sync_queue_scheduler

logger = get_logger(__name__)

DEFAULT_JOB = "sync_queue"

JOB_REGISTRY: dict[str, Callable[[], Awaitable[None]]] = {
    "sync_queue": start_sync_queue_scheduler,
    "queue_status": print_queue_status,
}


def _resolve_job_name(argv: Sequence[str] | None = None) -> str:
    args = list(sys.argv[1:] if argv is None else argv)
    raw = args[0] if args else os.getenv("WORKER_JOB", DEFAULT_JOB)
    return raw.strip().lower().replace("-", "_")


async def run_worker(job_name: str | None = None) -> None:
    """
    Run one registered job to completion.

    Raises:
        ValueError: The name is not in JOB_REGISTRY
    """
    name = job_name or _resolve_job_name()
    job = JOB_REGISTRY.get(name)
    if job is None:
        available = ", ".join(sorted(JOB_REGISTRY))
        raise ValueError(f"Unknown worker job '{name}'. Available jobs: {available}")

    logger.info("Worker starting", job=name, environment=settings.environment)
    await job()
    logger.info("Worker finished", job=name)


def main(argv: Sequence[str] | None = None) -> None:
    setup_logging(settings.LOG_LEVEL)
    try:
        asyncio.run(run_worker(_resolve_job_name(argv)))
    except KeyboardInterrupt:
        logger.info("Worker interrupted")


if __name__ == "__main__":
    main()
