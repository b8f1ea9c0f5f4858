# attendance_engine/routes/sync.py
"""
Sync queue operator routes.
Stuck items stay visible here until an operator retries or removes them.
"""

from fastapi import APIRouter, Depends, HTTPException, Query, status

from attendance_engine.infrastructure.observability.logging import get_logger
from attendance_engine.models.api.sync_response import (
    QueueStatusResponse,
    RetryItemResponse,
    SyncItemResponse,
    SyncItemsListResponse,
)
from attendance_engine.routes.dependencies import get_engine
from attendance_engine.services.engine import AttendanceEngine
from attendance_engine.services.sync.sync_queue import SyncQueueItemNotFoundError

logger = get_logger(__name__)

router = APIRouter(prefix="/sync", tags=["sync"])


@router.get("/status", response_model=QueueStatusResponse)
async def get_queue_status(engine: AttendanceEngine = Depends(get_engine)):
    queue_status = await engine.queue_status()
    return QueueStatusResponse(**queue_status.to_dict(), is_processing=engine.queue.is_processing)


@router.get("/items", response_model=SyncItemsListResponse)
async def list_queue_items(
    include_abandoned: bool = Query(default=False, description="Include abandoned items"),
    engine: AttendanceEngine = Depends(get_engine),
):
    items = [SyncItemResponse.from_domain(i) for i in await engine.list_queue_items(include_abandoned)]
    return SyncItemsListResponse(items=items, total_count=len(items))


@router.post("/process")
async def process_queue(engine: AttendanceEngine = Depends(get_engine)):
    """Run a queue pass now."""
    return await engine.process_queue()


@router.post("/items/{item_id}/retry", response_model=RetryItemResponse)
async def retry_queue_item(item_id: str, engine: AttendanceEngine = Depends(get_engine)):
    """Reset backoff for an item (restoring it if abandoned) and process the queue."""
    try:
        delivered = await engine.retry_queue_item(item_id)
    except SyncQueueItemNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    return RetryItemResponse(item_id=item_id, delivered=delivered)


@router.delete("/items/{item_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_queue_item(item_id: str, engine: AttendanceEngine = Depends(get_engine)):
    try:
        await engine.remove_queue_item(item_id)
    except SyncQueueItemNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))


@router.delete("/items")
async def clear_failed_items(engine: AttendanceEngine = Depends(get_engine)):
    """Delete every item stuck at the attempt cap."""
    cleared = await engine.clear_failed_queue_items()
    logger.info("Operator cleared failed sync items", count=cleared)
    return {"cleared": cleared}
