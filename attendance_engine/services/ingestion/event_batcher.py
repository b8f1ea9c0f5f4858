"""
Event deduplicator / batcher.

Every raw signal passes through here before reaching the session state
machine. Two delivery modes:

  immediate  -> join/leave; forwarded as soon as they clear dedup
  batched    -> chat, reactions, toggles; queued and flushed when the queue
                reaches `max_batch_size` or `batch_delay_seconds` after the
                first unflushed item, whichever comes first

Both paths share one DedupCache, so within the dedup window the same logical
event is forwarded at most once.
"""

import asyncio
import hashlib
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

from attendance_engine.infrastructure.observability.logging import get_logger
from attendance_engine.models.api.signals import (
    CAMERA_TOGGLE,
    CHAT_MESSAGE,
    HAND_RAISE,
    MIC_STATUS_CHANGED,
    MIC_TOGGLE,
    PRESENCE_SIGNALS,
    REACTION,
)
from attendance_engine.services.ingestion.dedup_cache import DedupCache

logger = get_logger(__name__)

EventSink = Callable[[str, dict[str, Any]], Awaitable[None]]

# Chat dedup only looks at the start of a message
CHAT_HASH_PREFIX = 50


@dataclass(slots=True)
class QueuedEvent:
    event_type: str
    data: dict[str, Any]
    queued_at: float


def _participant_label(data: dict[str, Any]) -> str:
    name = data.get("participant_name") or data.get("name") or data.get("participant_id")
    return (name or "unknown").strip().lower()


def build_event_key(event_type: str, data: dict[str, Any], now: float) -> str:
    """
    Dedup key for an event.

    Presence and hand raises key on the participant only; reactions and
    toggles include their payload. Unknown types embed the clock so they are
    never treated as duplicates.
    """
    name = _participant_label(data)

    if event_type in PRESENCE_SIGNALS or event_type == HAND_RAISE:
        return f"{event_type}:{name}"
    if event_type == CHAT_MESSAGE:
        message = (data.get("message") or "")[:CHAT_HASH_PREFIX]
        digest = hashlib.sha1(message.encode("utf-8")).hexdigest()[:12] if message else ""
        return f"{event_type}:{name}:{digest}"
    if event_type == REACTION:
        return f"{event_type}:{name}:{data.get('reaction')}"
    if event_type in (MIC_TOGGLE, CAMERA_TOGGLE):
        return f"{event_type}:{name}:{data.get('state')}"
    if event_type == MIC_STATUS_CHANGED:
        return f"{event_type}:{name}:{data.get('is_muted')}"
    return f"{event_type}:{name}:{now}"


class EventBatcher:
    """Suppresses duplicate signals and forwards the rest to `sink` in order."""

    def __init__(
        self,
        sink: EventSink,
        *,
        dedup_window_seconds: float = 5.0,
        dedup_max_entries: int = 200,
        max_batch_size: int = 50,
        batch_delay_seconds: float = 0.5,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._sink = sink
        self._clock = clock
        self._dedup = DedupCache(dedup_window_seconds, dedup_max_entries, clock)
        self.max_batch_size = max_batch_size
        self.batch_delay_seconds = batch_delay_seconds
        self._queue: list[QueuedEvent] = []
        self._timer_task: asyncio.Task | None = None
        self.forwarded_count = 0
        self.suppressed_count = 0

    @property
    def pending_count(self) -> int:
        return len(self._queue)

    async def submit(self, event_type: str, data: dict[str, Any]) -> bool:
        """
        Accept one raw event.

        Returns:
            False if it was dropped as a duplicate, True otherwise
        """
        key = build_event_key(event_type, data, self._clock())
        if self._dedup.is_duplicate(key):
            self.suppressed_count += 1
            logger.debug("Duplicate signal suppressed", event_type=event_type, key=key)
            return False

        if event_type in PRESENCE_SIGNALS:
            await self._forward(event_type, data)
            return True

        self._queue.append(QueuedEvent(event_type, data, self._clock()))
        if len(self._queue) >= self.max_batch_size:
            await self.flush()
        elif self._timer_task is None:
            self._timer_task = asyncio.create_task(self._flush_after_delay())
        return True

    async def flush(self) -> int:
        """Forward every queued event in enqueue order. Returns how many were sent."""
        timer = self._timer_task
        self._timer_task = None
        if timer is not None and timer is not asyncio.current_task():
            timer.cancel()

        if not self._queue:
            return 0

        batch, self._queue = self._queue, []
        logger.debug(
            "Flushing batched signals",
            count=len(batch),
            oldest_wait_seconds=round(self._clock() - batch[0].queued_at, 3),
        )
        for event in batch:
            await self._forward(event.event_type, event.data)
        return len(batch)

    async def close(self) -> None:
        """Flush whatever is pending; used on session end and shutdown."""
        await self.flush()

    def clear(self) -> None:
        """Drop pending events and forget seen keys."""
        if self._timer_task is not None:
            self._timer_task.cancel()
            self._timer_task = None
        self._queue.clear()
        self._dedup.clear()

    async def _flush_after_delay(self) -> None:
        await asyncio.sleep(self.batch_delay_seconds)
        await self.flush()

    async def _forward(self, event_type: str, data: dict[str, Any]) -> None:
        try:
            await self._sink(event_type, data)
            self.forwarded_count += 1
        except Exception as e:
            # One bad event must not block the rest of the stream
            logger.error(
                "Failed to forward signal",
                event_type=event_type,
                error=str(e),
                exc_info=True,
            )
