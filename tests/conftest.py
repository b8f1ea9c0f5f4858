from datetime import UTC, datetime, timedelta

import pytest

from attendance_engine.db.store import InMemoryRecordStore
from attendance_engine.services.engine import AttendanceEngine
from attendance_engine.services.remote.delivery_client import DeliveryClient, RemoteSession

T0 = datetime(2024, 3, 4, 9, 0, tzinfo=UTC)


class ManualClock:
    """Deterministic datetime clock; advance it explicitly."""

    def __init__(self, start: datetime = T0):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> datetime:
        self.now = self.now + timedelta(seconds=seconds)
        return self.now


class FakeDeliveryClient(DeliveryClient):
    """Records every remote call; failures are queued per call or set permanently."""

    def __init__(self):
        self.created: list[tuple[str, dict]] = []
        self.ended: list[tuple[str, datetime]] = []
        self.submitted: list[tuple[str, str, dict]] = []
        self.failures: list[Exception] = []
        self.fail_always: Exception | None = None
        self.create_error: Exception | None = None
        self.end_error: Exception | None = None
        self.closed = False

    async def create_session(self, subject_id, meeting_context):
        if self.create_error is not None:
            raise self.create_error
        self.created.append((subject_id, meeting_context))
        return RemoteSession(external_id=f"remote-{len(self.created)}", started_at=T0)

    async def end_session(self, external_id, ended_at):
        if self.end_error is not None:
            raise self.end_error
        self.ended.append((external_id, ended_at))
        return {"success": True}

    async def submit_batch(self, kind, external_id, payload):
        self.submitted.append((kind, external_id, payload))
        if self.failures:
            raise self.failures.pop(0)
        if self.fail_always is not None:
            raise self.fail_always
        return {"success": True}

    async def close(self):
        self.closed = True

    def kinds(self) -> list[str]:
        return [kind for kind, _, _ in self.submitted]


class FakeRedis:
    """The subset of redis.asyncio.Redis used by RedisRecordStore."""

    def __init__(self):
        self.hashes: dict[str, dict[str, str]] = {}
        self.sets: dict[str, set[str]] = {}

    async def hset(self, key: str, field: str, value: str) -> int:
        new = field not in self.hashes.setdefault(key, {})
        self.hashes[key][field] = value
        return int(new)

    async def hget(self, key: str, field: str) -> str | None:
        return self.hashes.get(key, {}).get(field)

    async def hdel(self, key: str, field: str) -> int:
        return int(self.hashes.get(key, {}).pop(field, None) is not None)

    async def hvals(self, key: str) -> list[str]:
        return list(self.hashes.get(key, {}).values())

    async def sadd(self, key: str, member: str) -> int:
        new = member not in self.sets.setdefault(key, set())
        self.sets[key].add(member)
        return int(new)

    async def srem(self, key: str, member: str) -> int:
        members = self.sets.get(key, set())
        if member in members:
            members.remove(member)
            return 1
        return 0

    async def smembers(self, key: str) -> set[str]:
        return set(self.sets.get(key, set()))

    async def ping(self) -> bool:
        return True


@pytest.fixture
def clock():
    return ManualClock()


@pytest.fixture
def fake_client():
    return FakeDeliveryClient()


@pytest.fixture
def fake_redis():
    return FakeRedis()


@pytest.fixture
def store():
    return InMemoryRecordStore()


@pytest.fixture
def make_engine(store, fake_client, clock):
    """Build an isolated engine with short timers."""

    def _make(**overrides):
        options = {
            "match_threshold": 0.7,
            "batcher_config": {
                "dedup_window_seconds": 5.0,
                "dedup_max_entries": 200,
                "max_batch_size": 50,
                "batch_delay_seconds": 0.01,
            },
            "sync_config": {
                "max_attempts": 5,
                "initial_delay_seconds": 1.0,
                "backoff_factor": 2.0,
                "max_delay_seconds": 60.0,
                "fast_fail_permanent": False,
            },
            "scheduler_config": {"interval_seconds": 300.0, "grace_seconds": 0.2},
            "clock": clock,
        }
        options.update(overrides)
        return AttendanceEngine(store, fake_client, **options)

    return _make
