"""
Local persistence for outbound sync queue items.

Active items live in `sync_queue`. Items set aside when their session ends
move to `sync_queue_abandoned`; they are never deleted implicitly.
"""

from attendance_engine.db.store import RecordStore
from attendance_engine.infrastructure.observability.logging import get_logger
from attendance_engine.models.domain.sync_domain import SyncQueueItem

logger = get_logger(__name__)

SYNC_QUEUE = "sync_queue"
SYNC_QUEUE_ABANDONED = "sync_queue_abandoned"


class SyncQueueRepository:
    def __init__(self, store: RecordStore):
        self._store = store

    async def save(self, item: SyncQueueItem) -> None:
        await self._store.put(SYNC_QUEUE, item.id, item.to_record())

    async def get(self, item_id: str) -> SyncQueueItem | None:
        record = await self._store.get(SYNC_QUEUE, item_id)
        return SyncQueueItem.from_record(record) if record else None

    async def remove(self, item_id: str) -> bool:
        return await self._store.delete(SYNC_QUEUE, item_id)

    async def list_items(self) -> list[SyncQueueItem]:
        """Active items in store iteration order."""
        records = await self._store.list_records(SYNC_QUEUE)
        return [SyncQueueItem.from_record(record) for record in records]

    async def abandon(self, item: SyncQueueItem) -> None:
        await self._store.put(SYNC_QUEUE_ABANDONED, item.id, item.to_record())
        await self._store.delete(SYNC_QUEUE, item.id)
        logger.warning(
            "Sync item abandoned",
            item_id=item.id,
            kind=item.kind,
            session_external_id=item.session_external_id,
            reason=item.abandon_reason,
        )

    async def get_abandoned(self, item_id: str) -> SyncQueueItem | None:
        record = await self._store.get(SYNC_QUEUE_ABANDONED, item_id)
        return SyncQueueItem.from_record(record) if record else None

    async def list_abandoned(self) -> list[SyncQueueItem]:
        records = await self._store.list_records(SYNC_QUEUE_ABANDONED)
        return [SyncQueueItem.from_record(record) for record in records]

    async def restore(self, item: SyncQueueItem) -> None:
        """Move an abandoned item back onto the active queue."""
        item.abandoned_at = None
        item.abandon_reason = None
        await self._store.put(SYNC_QUEUE, item.id, item.to_record())
        await self._store.delete(SYNC_QUEUE_ABANDONED, item.id)

    async def remove_abandoned(self, item_id: str) -> bool:
        return await self._store.delete(SYNC_QUEUE_ABANDONED, item_id)
