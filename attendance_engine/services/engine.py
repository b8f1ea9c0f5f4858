"""
AttendanceEngine - coordinator for one engine instance.

Data flow:
    raw signal -> EventBatcher -> SessionManager (uses identity matcher)
               -> reconciled fact -> SyncQueue -> DeliveryClient

The engine owns the EngineState, the batcher and the retry scheduler;
collaborators are injected so tests can build isolated instances.
"""

from collections.abc import Callable, Sequence
from datetime import UTC, datetime
from typing import Any

from attendance_engine.config import settings
from attendance_engine.db.store import RecordStore
from attendance_engine.infrastructure.observability.logging import get_logger
from attendance_engine.models.api.signals import (
    PARTICIPANT_JOINED,
    PARTICIPANT_LEFT,
    PARTICIPATION_SIGNALS,
    PLATFORM_SWITCH,
    RawSignal,
)
from attendance_engine.models.domain.attendance_domain import Participant, Session
from attendance_engine.models.domain.roster_domain import RosterEntry
from attendance_engine.models.domain.sync_domain import (
    KIND_ATTENDANCE_BATCH,
    KIND_JOIN_EVENT,
    KIND_PARTICIPATION_BATCH,
    QueueStatus,
    SyncQueueItem,
)
from attendance_engine.repositories.attendance_repository import AttendanceRepository
from attendance_engine.repositories.sync_queue_repository import SyncQueueRepository
from attendance_engine.services.ingestion.event_batcher import EventBatcher
from attendance_engine.services.remote.delivery_client import DeliveryClient
from attendance_engine.services.session import payloads
from attendance_engine.services.session.engine_state import EngineState
from attendance_engine.services.session.session_manager import (
    PresenceFact,
    SessionManager,
    SessionNotFoundError,
)
from attendance_engine.services.sync.scheduler import SyncScheduler
from attendance_engine.services.sync.sync_queue import SyncQueue

logger = get_logger(__name__)


def _utcnow() -> datetime:
    return datetime.now(UTC)


class AttendanceEngine:
    def __init__(
        self,
        store: RecordStore,
        client: DeliveryClient,
        *,
        match_threshold: float | None = None,
        batcher_config: dict | None = None,
        sync_config: dict | None = None,
        scheduler_config: dict | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.store = store
        self.client = client
        self.state = EngineState(
            match_threshold=(
                match_threshold
                if match_threshold is not None
                else settings.get_matcher_config()["threshold"]
            )
        )
        self.attendance = AttendanceRepository(store)
        self.sessions = SessionManager(self.attendance, client, self.state, clock=clock)
        self.queue = SyncQueue(
            SyncQueueRepository(store),
            client,
            clock=clock,
            **(sync_config or settings.get_sync_retry_config()),
        )
        self.scheduler = SyncScheduler(
            self.queue, **(scheduler_config or settings.get_scheduler_config())
        )
        self.batcher = EventBatcher(
            self.handle_event, **(batcher_config or settings.get_batcher_config())
        )
        self._clock = clock

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        self.scheduler.start()
        logger.info("Attendance engine started")

    async def shutdown(self) -> None:
        await self.batcher.close()
        await self.scheduler.stop()
        await self.client.close()
        logger.info("Attendance engine stopped")

    # ------------------------------------------------------------------
    # Signal ingest
    # ------------------------------------------------------------------

    async def submit_signal(self, signal: RawSignal | dict[str, Any]) -> bool:
        """Feed one raw signal through dedup/batching. False means it was a duplicate."""
        if isinstance(signal, dict):
            signal = RawSignal.model_validate(signal)
        return await self.batcher.submit(signal.type, signal.to_event_data())

    async def handle_event(self, event_type: str, data: dict[str, Any]) -> None:
        """Apply one deduplicated event; failures are logged and never block the stream."""
        try:
            if event_type == PARTICIPANT_JOINED:
                fact = await self.sessions.handle_join(
                    data.get("participant_name"),
                    data.get("timestamp"),
                    data.get("participant_id"),
                )
                self._publish_presence(fact)
            elif event_type == PARTICIPANT_LEFT:
                fact = await self.sessions.handle_leave(
                    data.get("participant_name"),
                    data.get("timestamp"),
                    data.get("participant_id"),
                )
                self._publish_presence(fact)
            elif event_type in PARTICIPATION_SIGNALS or event_type == PLATFORM_SWITCH:
                await self.sessions.record_participation(event_type, data)
            else:
                logger.debug("Unhandled signal type", event_type=event_type)
        except Exception as e:
            logger.error(
                "Failed to apply signal",
                event_type=event_type,
                participant=data.get("participant_name"),
                error=str(e),
                exc_info=True,
            )

    def _publish_presence(self, fact: PresenceFact | None) -> None:
        if fact is None or not fact.session.external_id:
            return

        if fact.kind == KIND_JOIN_EVENT:
            payload = payloads.build_join_payload(fact.participant, fact.interval)
        else:
            payload = payloads.build_leave_payload(fact.participant, fact.interval)
        external_id = fact.session.external_id
        self.scheduler.spawn(self.queue.deliver(fact.kind, external_id, payload), external_id)

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    async def start_session(
        self,
        subject_id: str,
        meeting_id: str | None = None,
        platform: str | None = None,
        roster: Sequence[RosterEntry] | None = None,
        additional_data: dict[str, Any] | None = None,
    ) -> Session:
        session = await self.sessions.start(subject_id, meeting_id, platform, additional_data)
        if roster is not None:
            self.state.roster = list(roster)
        # Dedup memory from a previous meeting must not suppress this one's joins
        self.batcher.clear()
        return session

    async def end_session(self, session_id: str | None = None) -> dict[str, Any]:
        """
        End a session and push its final batches with a bounded drain.

        Anything for the session still queued after the grace period is
        abandoned; it stays in the store and can be restored through retry_item.
        """
        if session_id is None:
            active = await self.sessions.get_active_session()
            if active is None:
                raise SessionNotFoundError("No active session to end")
            session_id = active.id

        await self.batcher.flush()
        result = await self.sessions.end(session_id)
        session = result.session

        summary: dict[str, Any] = {
            "session": session,
            "closed_intervals": len(result.closed_intervals),
            "remote_confirmed": result.remote_confirmed,
            "remote_error": result.remote_error,
            "drained": True,
            "abandoned_item_ids": [],
        }
        external_id = session.external_id
        if not external_id:
            return summary

        participants = await self.attendance.list_participants(session.id)
        intervals = await self.attendance.list_intervals(session.id)
        events = await self.attendance.list_events(session.id)

        attendance_payload = payloads.build_attendance_payload(
            participants, intervals, session.ended_at or self._clock()
        )
        if attendance_payload["attendance"]:
            self.scheduler.spawn(
                self.queue.deliver(KIND_ATTENDANCE_BATCH, external_id, attendance_payload),
                external_id,
            )
        participation_payload = payloads.build_participation_payload(participants, events)
        if participation_payload["logs"]:
            self.scheduler.spawn(
                self.queue.deliver(KIND_PARTICIPATION_BATCH, external_id, participation_payload),
                external_id,
            )

        summary["drained"] = await self.scheduler.drain(external_id)
        abandoned = await self.queue.abandon_session(external_id)
        summary["abandoned_item_ids"] = [item.id for item in abandoned]

        logger.info(
            "Session end completed",
            session_id=session.id,
            external_id=external_id,
            drained=summary["drained"],
            abandoned=len(abandoned),
        )
        return summary

    async def get_status(self) -> dict[str, Any]:
        status = await self.sessions.get_status()
        status["roster_size"] = len(self.state.roster)
        status["roster_loaded"] = self.state.roster_loaded
        status["pending_signals"] = self.batcher.pending_count
        return status

    async def get_session(self, session_id: str) -> Session | None:
        return await self.attendance.get_session(session_id)

    async def get_attendance_summary(self, session_id: str) -> list[dict[str, Any]]:
        session = await self.attendance.get_session(session_id)
        if session is None:
            return []
        participants = await self.attendance.list_participants(session_id)
        intervals = await self.attendance.list_intervals(session_id)
        return payloads.summarize_attendance(
            participants, intervals, session.ended_at or self._clock()
        )

    # ------------------------------------------------------------------
    # Roster & matching
    # ------------------------------------------------------------------

    async def update_roster(self, roster: Sequence[RosterEntry]) -> list[Participant]:
        return await self.sessions.reconcile_roster(roster)

    async def manual_match(self, participant_id: str, identity_id: str) -> Participant:
        return await self.sessions.manual_match(participant_id, identity_id)

    async def list_participants(self, session_id: str) -> list[Participant]:
        return await self.sessions.list_participants(session_id)

    # ------------------------------------------------------------------
    # Sync queue
    # ------------------------------------------------------------------

    async def queue_status(self) -> QueueStatus:
        return await self.queue.status()

    async def list_queue_items(self, include_abandoned: bool = False) -> list[SyncQueueItem]:
        return await self.queue.list_items(include_abandoned)

    async def retry_queue_item(self, item_id: str) -> bool:
        return await self.queue.retry_item(item_id)

    async def remove_queue_item(self, item_id: str) -> None:
        await self.queue.remove_item(item_id)

    async def clear_failed_queue_items(self) -> int:
        return await self.queue.clear_failed_items()

    async def process_queue(self) -> dict[str, Any]:
        return await self.queue.process_queue()
