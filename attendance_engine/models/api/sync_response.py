# attendance_engine/models/api/sync_response.py
"""
Sync queue API response models.
"""

from datetime import datetime

from pydantic import BaseModel, Field

from attendance_engine.models.domain.sync_domain import SyncQueueItem


class QueueStatusResponse(BaseModel):
    """Queue counts; failed items are stuck at the attempt cap."""

    total: int = Field(..., description="Active items")
    pending: int = Field(..., description="Never attempted")
    retrying: int = Field(..., description="Attempted, below the cap")
    failed: int = Field(..., description="At the attempt cap; need manual retry")
    abandoned: int = Field(..., description="Set aside when their session ended")
    failed_item_ids: list[str] = Field(default_factory=list, description="Ids of failed items")
    is_processing: bool = Field(default=False, description="A queue pass is running")


class SyncItemResponse(BaseModel):
    id: str = Field(..., description="Item id")
    kind: str = Field(..., description="Fact kind")
    session_external_id: str = Field(..., description="Remote session id")
    attempts: int = Field(..., description="Delivery attempts so far")
    created_at: datetime = Field(..., description="When the item was queued")
    last_attempt_at: datetime | None = Field(None, description="Most recent attempt")
    last_error: str | None = Field(None, description="Most recent failure")
    abandoned_at: datetime | None = Field(None, description="When it was abandoned")
    abandon_reason: str | None = Field(None, description="Why it was abandoned")

    @classmethod
    def from_domain(cls, item: SyncQueueItem) -> "SyncItemResponse":
        return cls(
            id=item.id,
            kind=item.kind,
            session_external_id=item.session_external_id,
            attempts=item.attempts,
            created_at=item.created_at,
            last_attempt_at=item.last_attempt_at,
            last_error=item.last_error,
            abandoned_at=item.abandoned_at,
            abandon_reason=item.abandon_reason,
        )


class SyncItemsListResponse(BaseModel):
    items: list[SyncItemResponse] = Field(..., description="Queue items")
    total_count: int = Field(..., description="Number of items returned")


class RetryItemResponse(BaseModel):
    item_id: str = Field(..., description="Retried item")
    delivered: bool = Field(..., description="Delivered during the triggered pass")
