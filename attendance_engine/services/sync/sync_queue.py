"""
Durable outbound sync queue.

Every reconciled fact that could not be delivered immediately lives here
until the remote confirms it. Items are only ever removed on confirmed
success or by an explicit operator action; items stuck at the attempt cap
stay visible in status() for manual retry.

Backoff per item:
    delay = min(initial_delay * backoff_factor ** attempts, max_delay)

process_queue() is single-flight: a call made while a pass is running
returns immediately and asks the running pass to go round once more.
"""

import asyncio
import uuid
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any

from attendance_engine.infrastructure.observability.logging import get_logger, log_delivery
from attendance_engine.models.domain.sync_domain import SYNC_KINDS, QueueStatus, SyncQueueItem
from attendance_engine.repositories.sync_queue_repository import SyncQueueRepository
from attendance_engine.services.remote.delivery_client import DeliveryClient, RemoteDeliveryError

logger = get_logger(__name__)


class SyncQueueItemNotFoundError(Exception):
    """Raised for operator actions on an id that is neither queued nor abandoned."""

    def __init__(self, item_id: str):
        super().__init__(f"Sync queue item {item_id} not found")
        self.item_id = item_id
        self.recoverable = False


def _utcnow() -> datetime:
    return datetime.now(UTC)


class SyncQueue:
    def __init__(
        self,
        repository: SyncQueueRepository,
        client: DeliveryClient,
        *,
        max_attempts: int = 5,
        initial_delay_seconds: float = 1.0,
        backoff_factor: float = 2.0,
        max_delay_seconds: float = 60.0,
        fast_fail_permanent: bool = False,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self._repository = repository
        self._client = client
        self.max_attempts = max_attempts
        self.initial_delay_seconds = initial_delay_seconds
        self.backoff_factor = backoff_factor
        self.max_delay_seconds = max_delay_seconds
        self.fast_fail_permanent = fast_fail_permanent
        self._clock = clock

        self.is_processing = False
        self._rerun_requested = False
        self._idle = asyncio.Event()
        self._idle.set()
        self._closed_sessions: set[str] = set()
        # Abandoned items an operator restored; they run despite their closed session
        self._restored_ids: set[str] = set()
        self.last_run_time: datetime | None = None

    # ------------------------------------------------------------------
    # Backoff
    # ------------------------------------------------------------------

    def compute_backoff_delay(self, attempts: int) -> float:
        delay = self.initial_delay_seconds * (self.backoff_factor ** max(attempts, 0))
        return min(delay, self.max_delay_seconds)

    def is_due(self, item: SyncQueueItem, now: datetime | None = None) -> bool:
        if item.attempts >= self.max_attempts:
            return False
        if item.last_attempt_at is None:
            return True
        elapsed = ((now or self._clock()) - item.last_attempt_at).total_seconds()
        return elapsed >= self.compute_backoff_delay(item.attempts)

    # ------------------------------------------------------------------
    # Producing work
    # ------------------------------------------------------------------

    async def enqueue(
        self,
        kind: str,
        session_external_id: str,
        payload: dict[str, Any],
        process: bool = True,
    ) -> SyncQueueItem:
        """
        Persist a fact for later delivery and kick off a processing pass.

        Raises:
            ValueError: Unknown kind
        """
        if kind not in SYNC_KINDS:
            raise ValueError(f"Unknown sync kind: {kind}")

        item = SyncQueueItem(
            id=str(uuid.uuid4()),
            kind=kind,
            session_external_id=session_external_id,
            payload=payload,
            created_at=self._clock(),
        )
        queued = await self._store(item)
        if queued and process:
            await self.process_queue()
        return item

    async def deliver(self, kind: str, session_external_id: str, payload: dict[str, Any]) -> bool:
        """
        Try to deliver a fact right away; queue it if the attempt fails.

        The direct attempt counts as the item's first attempt, so the queued
        copy waits out its backoff before it is tried again.
        """
        if kind not in SYNC_KINDS:
            raise ValueError(f"Unknown sync kind: {kind}")

        attempted_at = self._clock()
        try:
            await self._client.submit_batch(kind, session_external_id, payload)
        except Exception as e:
            log_delivery(kind, session_external_id, ok=False, error=str(e), attempts=1)
            item = SyncQueueItem(
                id=str(uuid.uuid4()),
                kind=kind,
                session_external_id=session_external_id,
                payload=payload,
                created_at=attempted_at,
                attempts=1,
                last_attempt_at=attempted_at,
                last_error=str(e),
            )
            self._apply_fast_fail(item, e)
            await self._store(item)
            return False

        log_delivery(kind, session_external_id, ok=True)
        return True

    async def _store(self, item: SyncQueueItem) -> bool:
        """Save to the active queue, or straight to abandoned if its session has closed."""
        if self._is_parked(item):
            item.abandoned_at = self._clock()
            item.abandon_reason = "session ended"
            await self._repository.abandon(item)
            return False

        await self._repository.save(item)
        logger.info(
            "Sync item queued",
            item_id=item.id,
            kind=item.kind,
            session_external_id=item.session_external_id,
            attempts=item.attempts,
        )
        return True

    # ------------------------------------------------------------------
    # Processing
    # ------------------------------------------------------------------

    async def process_queue(self) -> dict[str, Any]:
        """
        Attempt every due item once, in store iteration order.

        Returns:
            Counts for the pass, or {"status": "skipped"} when a pass was
            already running
        """
        if self.is_processing:
            self._rerun_requested = True
            logger.debug("Sync queue pass already running; skipping")
            return {"status": "skipped", "reason": "already_running"}

        self.is_processing = True
        self._idle.clear()
        totals = {"attempted": 0, "delivered": 0, "failed": 0, "waiting": 0, "stuck": 0, "skipped": 0}
        try:
            while True:
                self._rerun_requested = False
                pass_counts = await self._process_pass()
                for key, value in pass_counts.items():
                    totals[key] += value
                if not self._rerun_requested:
                    break
        finally:
            self.is_processing = False
            self.last_run_time = self._clock()
            self._idle.set()

        if totals["attempted"]:
            logger.info("Sync queue pass completed", **totals)
        return {"status": "completed", **totals}

    async def _process_pass(self) -> dict[str, int]:
        counts = {"attempted": 0, "delivered": 0, "failed": 0, "waiting": 0, "stuck": 0, "skipped": 0}
        now = self._clock()

        for item in await self._repository.list_items():
            if item.attempts >= self.max_attempts:
                counts["stuck"] += 1
                continue
            if not self.is_due(item, now):
                counts["waiting"] += 1
                continue

            delivered = await self._process_item(item)
            if delivered is None:
                counts["skipped"] += 1
                continue
            counts["attempted"] += 1
            counts["delivered" if delivered else "failed"] += 1
        return counts

    async def _process_item(self, item: SyncQueueItem) -> bool | None:
        """Send one item. Returns None when it left the active queue since the pass began."""
        if self._is_parked(item):
            return None
        current = await self._repository.get(item.id)
        if current is None:
            return None
        item = current

        # Count the attempt before sending so a crash mid-call is not retried early
        item.attempts += 1
        item.last_attempt_at = self._clock()
        await self._repository.save(item)
        if self._is_parked(item):
            # Abandoned while the save was in flight; keep it parked only
            await self._repository.remove(item.id)
            return None

        try:
            await self._client.submit_batch(item.kind, item.session_external_id, item.payload)
        except Exception as e:
            item.last_error = str(e)
            self._apply_fast_fail(item, e)

            # The session may have ended while this attempt was in flight
            if await self._repository.get(item.id) is not None:
                await self._repository.save(item)

            if item.attempts >= self.max_attempts:
                logger.error(
                    "Sync item reached attempt cap; manual retry required",
                    item_id=item.id,
                    kind=item.kind,
                    session_external_id=item.session_external_id,
                    attempts=item.attempts,
                    error=item.last_error,
                )
            else:
                logger.warning(
                    "Sync item delivery failed",
                    item_id=item.id,
                    kind=item.kind,
                    attempts=item.attempts,
                    next_delay_seconds=self.compute_backoff_delay(item.attempts),
                    error=item.last_error,
                )
            return False

        await self._repository.remove(item.id)
        await self._repository.remove_abandoned(item.id)
        self._restored_ids.discard(item.id)
        logger.info(
            "Sync item delivered",
            item_id=item.id,
            kind=item.kind,
            session_external_id=item.session_external_id,
            attempts=item.attempts,
        )
        return True

    def _is_parked(self, item: SyncQueueItem) -> bool:
        return (
            item.session_external_id in self._closed_sessions
            and item.id not in self._restored_ids
        )

    def _apply_fast_fail(self, item: SyncQueueItem, error: Exception) -> None:
        if (
            self.fast_fail_permanent
            and isinstance(error, RemoteDeliveryError)
            and not error.recoverable
        ):
            item.attempts = max(item.attempts, self.max_attempts)

    # ------------------------------------------------------------------
    # Operator actions
    # ------------------------------------------------------------------

    async def retry_item(self, item_id: str) -> bool:
        """
        Reset an item's backoff (restoring it if abandoned) and process now.

        Returns:
            True if the item was delivered. When another pass is already
            running this waits for that pass, which picks the item up on
            its rerun.

        Raises:
            SyncQueueItemNotFoundError: Unknown id
        """
        item = await self._repository.get(item_id)
        if item is None:
            item = await self._repository.get_abandoned(item_id)
            if item is None:
                raise SyncQueueItemNotFoundError(item_id)
            await self._repository.restore(item)
            self._restored_ids.add(item_id)
            logger.info("Abandoned sync item restored", item_id=item_id)

        item.attempts = 0
        item.last_attempt_at = None
        await self._repository.save(item)
        logger.info("Sync item retry requested", item_id=item_id, kind=item.kind)

        result = await self.process_queue()
        if result["status"] == "skipped":
            await self._idle.wait()
        return await self._repository.get(item_id) is None

    async def status(self) -> QueueStatus:
        items = await self._repository.list_items()
        abandoned = await self._repository.list_abandoned()

        result = QueueStatus(total=len(items), abandoned=len(abandoned))
        for item in items:
            if item.attempts == 0:
                result.pending += 1
            elif item.attempts < self.max_attempts:
                result.retrying += 1
            else:
                result.failed += 1
                result.failed_item_ids.append(item.id)
        return result

    async def list_items(self, include_abandoned: bool = False) -> list[SyncQueueItem]:
        items = await self._repository.list_items()
        if include_abandoned:
            items.extend(await self._repository.list_abandoned())
        return items

    async def remove_item(self, item_id: str) -> None:
        """Explicit operator deletion from either the active or abandoned set."""
        removed = await self._repository.remove(item_id)
        removed = await self._repository.remove_abandoned(item_id) or removed
        self._restored_ids.discard(item_id)
        if not removed:
            raise SyncQueueItemNotFoundError(item_id)
        logger.info("Sync item removed by operator", item_id=item_id)

    async def clear_failed_items(self) -> int:
        cleared = 0
        for item in await self._repository.list_items():
            if item.attempts >= self.max_attempts:
                await self._repository.remove(item.id)
                cleared += 1
        if cleared:
            logger.info("Failed sync items cleared", count=cleared)
        return cleared

    async def clear_session_queue(self, session_external_id: str) -> int:
        cleared = 0
        for item in await self._repository.list_items():
            if item.session_external_id == session_external_id:
                await self._repository.remove(item.id)
                cleared += 1
        logger.info(
            "Session sync items cleared",
            session_external_id=session_external_id,
            count=cleared,
        )
        return cleared

    async def abandon_session(
        self, session_external_id: str, reason: str = "session ended"
    ) -> list[SyncQueueItem]:
        """
        Take every queued item of an ended session off the retry path.

        Items are moved to the abandoned set, not deleted; later enqueues for
        the same session go there directly.
        """
        self._closed_sessions.add(session_external_id)
        abandoned = []
        for item in await self._repository.list_items():
            if item.session_external_id != session_external_id:
                continue
            item.abandoned_at = self._clock()
            item.abandon_reason = reason
            await self._repository.abandon(item)
            abandoned.append(item)
        return abandoned
