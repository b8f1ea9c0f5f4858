# attendance_engine/db/store.py
"""
Local durable record store.

Records are JSON documents grouped by collection and addressed by opaque id.
Secondary indexes are plain member sets, so repositories can look records up
by session or by open/closed status without scanning a whole collection.

Two backends share the same async interface:
    InMemoryRecordStore - process-local, used by tests and single-run hosts
    RedisRecordStore    - one HASH per collection, one SET per index
"""

import json
from typing import Any

import redis.asyncio as redis

from attendance_engine.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)


class RecordStoreError(Exception):
    """Custom exception for record store operations."""

    def __init__(self, message: str, operation: str = "unknown", recoverable: bool = True):
        super().__init__(message)
        self.operation = operation
        self.recoverable = recoverable


class RecordStore:
    """Interface shared by the store backends."""

    async def put(self, collection: str, record_id: str, data: dict[str, Any]) -> None:
        raise NotImplementedError

    async def get(self, collection: str, record_id: str) -> dict[str, Any] | None:
        raise NotImplementedError

    async def delete(self, collection: str, record_id: str) -> bool:
        raise NotImplementedError

    async def list_records(self, collection: str) -> list[dict[str, Any]]:
        raise NotImplementedError

    async def index_add(self, index: str, member: str) -> None:
        raise NotImplementedError

    async def index_remove(self, index: str, member: str) -> None:
        raise NotImplementedError

    async def index_members(self, index: str) -> list[str]:
        raise NotImplementedError

    async def get_many(self, collection: str, record_ids: list[str]) -> list[dict[str, Any]]:
        records = []
        for record_id in record_ids:
            record = await self.get(collection, record_id)
            if record is not None:
                records.append(record)
        return records


class InMemoryRecordStore(RecordStore):
    """Dict-backed store. Values are stored serialized so callers never share references."""

    def __init__(self):
        self._collections: dict[str, dict[str, str]] = {}
        self._indexes: dict[str, dict[str, None]] = {}

    async def put(self, collection: str, record_id: str, data: dict[str, Any]) -> None:
        self._collections.setdefault(collection, {})[record_id] = json.dumps(data)

    async def get(self, collection: str, record_id: str) -> dict[str, Any] | None:
        raw = self._collections.get(collection, {}).get(record_id)
        return json.loads(raw) if raw is not None else None

    async def delete(self, collection: str, record_id: str) -> bool:
        return self._collections.get(collection, {}).pop(record_id, None) is not None

    async def list_records(self, collection: str) -> list[dict[str, Any]]:
        return [json.loads(raw) for raw in self._collections.get(collection, {}).values()]

    async def index_add(self, index: str, member: str) -> None:
        self._indexes.setdefault(index, {})[member] = None

    async def index_remove(self, index: str, member: str) -> None:
        self._indexes.get(index, {}).pop(member, None)

    async def index_members(self, index: str) -> list[str]:
        return list(self._indexes.get(index, {}))


class RedisRecordStore(RecordStore):
    """Redis-backed store; `client` is a redis.asyncio.Redis with decode_responses=True."""

    def __init__(self, client: redis.Redis, prefix: str = "attendance"):
        self._client = client
        self._prefix = prefix

    def _key(self, kind: str, name: str) -> str:
        return f"{self._prefix}:{kind}:{name}"

    async def put(self, collection: str, record_id: str, data: dict[str, Any]) -> None:
        try:
            await self._client.hset(self._key("c", collection), record_id, json.dumps(data))
        except redis.RedisError as e:
            logger.error("Record store put failed", collection=collection, error=str(e))
            raise RecordStoreError(f"Put failed: {e}", operation="put") from e

    async def get(self, collection: str, record_id: str) -> dict[str, Any] | None:
        try:
            raw = await self._client.hget(self._key("c", collection), record_id)
        except redis.RedisError as e:
            logger.error("Record store get failed", collection=collection, error=str(e))
            raise RecordStoreError(f"Get failed: {e}", operation="get") from e
        return json.loads(raw) if raw else None

    async def delete(self, collection: str, record_id: str) -> bool:
        try:
            removed = await self._client.hdel(self._key("c", collection), record_id)
        except redis.RedisError as e:
            logger.error("Record store delete failed", collection=collection, error=str(e))
            raise RecordStoreError(f"Delete failed: {e}", operation="delete") from e
        return removed > 0

    async def list_records(self, collection: str) -> list[dict[str, Any]]:
        try:
            values = await self._client.hvals(self._key("c", collection))
        except redis.RedisError as e:
            logger.error("Record store list failed", collection=collection, error=str(e))
            raise RecordStoreError(f"List failed: {e}", operation="list") from e
        return [json.loads(raw) for raw in values]

    async def index_add(self, index: str, member: str) -> None:
        try:
            await self._client.sadd(self._key("i", index), member)
        except redis.RedisError as e:
            raise RecordStoreError(f"Index add failed: {e}", operation="index_add") from e

    async def index_remove(self, index: str, member: str) -> None:
        try:
            await self._client.srem(self._key("i", index), member)
        except redis.RedisError as e:
            raise RecordStoreError(f"Index remove failed: {e}", operation="index_remove") from e

    async def index_members(self, index: str) -> list[str]:
        try:
            members = await self._client.smembers(self._key("i", index))
        except redis.RedisError as e:
            raise RecordStoreError(f"Index read failed: {e}", operation="index_members") from e
        return sorted(members)
