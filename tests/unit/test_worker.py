import pytest

from attendance_engine.db.store import RedisRecordStore
from attendance_engine.jobs import worker
from attendance_engine.jobs.sync_queue_job import SyncQueueJob
from attendance_engine.repositories.sync_queue_repository import SyncQueueRepository
from attendance_engine.services.infrastructure.redis_client import FastRedisClient
from attendance_engine.services.sync.sync_queue import SyncQueue


@pytest.mark.asyncio
async def test_run_worker_runs_job(monkeypatch):
    called = {"ok": False}

    async def dummy_job():
        called["ok"] = True

    monkeypatch.setitem(worker.JOB_REGISTRY, "dummy", dummy_job)

    await worker.run_worker("dummy")

    assert called["ok"] is True


@pytest.mark.asyncio
async def test_run_worker_unknown_job():
    with pytest.raises(ValueError):
        await worker.run_worker("missing")


def test_registry_has_queue_jobs():
    assert {"sync_queue", "queue_status"} <= set(worker.JOB_REGISTRY)


@pytest.mark.asyncio
async def test_sync_queue_job_drains_shared_store(fake_redis, fake_client, clock):
    class PreparedRedis(FastRedisClient):
        async def initialize(self):
            self.client = fake_redis
            self._initialized = True

        async def close(self):
            self._initialized = False

    producer = SyncQueue(SyncQueueRepository(RedisRecordStore(fake_redis)), fake_client, clock=clock)
    await producer.enqueue("join_event", "remote-1", {"participant_name": "Al"}, process=False)

    job = SyncQueueJob(redis_client=PreparedRedis(), client=fake_client)
    result = await job.run_once()
    await job.close()

    assert result["delivered"] == 1
    assert result["queue"]["total"] == 0
    assert fake_client.kinds() == ["join_event"]
    assert fake_client.closed is True


def test_resolve_job_name_prefers_argv(monkeypatch):
    monkeypatch.setenv("WORKER_JOB", "queue_status")

    assert worker._resolve_job_name(["Sync-Queue"]) == "sync_queue"
    assert worker._resolve_job_name([]) == "queue_status"
