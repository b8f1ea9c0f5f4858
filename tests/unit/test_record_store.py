"""
Tests for the local record stores and repositories on top of them.
"""

import pytest
import redis.asyncio as redis

from attendance_engine.db.store import InMemoryRecordStore, RecordStoreError, RedisRecordStore
from attendance_engine.models.domain.attendance_domain import Session
from attendance_engine.models.domain.sync_domain import SyncQueueItem
from attendance_engine.repositories.attendance_repository import AttendanceRepository
from attendance_engine.repositories.sync_queue_repository import SyncQueueRepository


@pytest.mark.asyncio
async def test_redis_store_crud(fake_redis):
    store = RedisRecordStore(fake_redis, prefix="test")

    await store.put("things", "a", {"n": 1})
    await store.put("things", "b", {"n": 2})

    assert await store.get("things", "a") == {"n": 1}
    assert sorted(r["n"] for r in await store.list_records("things")) == [1, 2]
    assert await store.delete("things", "a") is True
    assert await store.delete("things", "a") is False
    assert await store.get("things", "a") is None
    assert "test:c:things" in fake_redis.hashes


@pytest.mark.asyncio
async def test_redis_store_indexes(fake_redis):
    store = RedisRecordStore(fake_redis)

    await store.index_add("idx", "b")
    await store.index_add("idx", "a")
    await store.index_remove("idx", "b")

    assert await store.index_members("idx") == ["a"]


@pytest.mark.asyncio
async def test_redis_errors_are_wrapped(fake_redis):
    class BrokenRedis(type(fake_redis)):
        async def hget(self, key, field):
            raise redis.ConnectionError("connection refused")

    store = RedisRecordStore(BrokenRedis())

    with pytest.raises(RecordStoreError) as exc_info:
        await store.get("things", "a")

    assert exc_info.value.operation == "get"
    assert exc_info.value.recoverable is True


@pytest.mark.asyncio
async def test_in_memory_store_returns_copies():
    store = InMemoryRecordStore()
    await store.put("things", "a", {"items": [1]})

    record = await store.get("things", "a")
    record["items"].append(2)

    assert await store.get("things", "a") == {"items": [1]}


@pytest.mark.asyncio
async def test_sessions_survive_on_redis(fake_redis, clock):
    repository = AttendanceRepository(RedisRecordStore(fake_redis))
    session = Session(id="s-1", subject_id="class-1", started_at=clock(), external_id="remote-1")

    await repository.save_session(session)
    reopened = AttendanceRepository(RedisRecordStore(fake_redis))

    active = await reopened.list_active_sessions()
    assert [s.id for s in active] == ["s-1"]
    assert active[0].started_at == clock()

    session.status = "ended"
    await reopened.save_session(session)
    assert await reopened.list_active_sessions() == []


@pytest.mark.asyncio
async def test_sync_items_round_trip_and_abandon(fake_redis, clock):
    repository = SyncQueueRepository(RedisRecordStore(fake_redis))
    item = SyncQueueItem(
        id="q-1",
        kind="attendance_batch",
        session_external_id="remote-1",
        payload={"attendance": []},
        created_at=clock(),
        attempts=2,
        last_attempt_at=clock(),
        last_error="down",
    )

    await repository.save(item)
    stored = await repository.get("q-1")
    assert stored == item

    stored.abandoned_at = clock()
    stored.abandon_reason = "session ended"
    await repository.abandon(stored)

    assert await repository.get("q-1") is None
    assert (await repository.get_abandoned("q-1")).abandon_reason == "session ended"

    await repository.restore(stored)
    restored = await repository.get("q-1")
    assert restored.abandoned_at is None
    assert await repository.list_abandoned() == []
