"""
Sync queue domain models.

A SyncQueueItem is one unit of outbound work awaiting delivery to the
remote system of record. The payload is opaque to the queue.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Literal

from attendance_engine.models.domain.records import dump_record, load_record

SyncKind = Literal["attendance_batch", "participation_batch", "join_event", "leave_event"]
KIND_ATTENDANCE_BATCH: SyncKind = "attendance_batch"
KIND_PARTICIPATION_BATCH: SyncKind = "participation_batch"
KIND_JOIN_EVENT: SyncKind = "join_event"
KIND_LEAVE_EVENT: SyncKind = "leave_event"
SYNC_KINDS: tuple[str, ...] = (
    KIND_ATTENDANCE_BATCH,
    KIND_PARTICIPATION_BATCH,
    KIND_JOIN_EVENT,
    KIND_LEAVE_EVENT,
)


@dataclass(slots=True)
class SyncQueueItem:
    id: str
    kind: SyncKind
    session_external_id: str
    payload: dict[str, Any]
    created_at: datetime
    attempts: int = 0
    last_attempt_at: datetime | None = None
    last_error: str | None = None
    abandoned_at: datetime | None = None
    abandon_reason: str | None = None

    def to_record(self) -> dict[str, Any]:
        return dump_record(self)

    @classmethod
    def from_record(cls, data: dict[str, Any]) -> "SyncQueueItem":
        return load_record(cls, data, ("created_at", "last_attempt_at", "abandoned_at"))


@dataclass(slots=True)
class QueueStatus:
    """Counts of queued work; `failed` items are stuck at the attempt cap."""

    total: int = 0
    pending: int = 0
    retrying: int = 0
    failed: int = 0
    abandoned: int = 0
    failed_item_ids: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "total": self.total,
            "pending": self.pending,
            "retrying": self.retrying,
            "failed": self.failed,
            "abandoned": self.abandoned,
            "failed_item_ids": list(self.failed_item_ids),
        }
