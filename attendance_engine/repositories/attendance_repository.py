"""
Local persistence for sessions, participants, intervals and participation events.

Indexes kept alongside the records:
    sessions:active                 ids of ACTIVE sessions
    session:<id>:participants       participant ids per session
    session:<id>:intervals          interval ids per session
    session:<id>:intervals:open     ids of open intervals per session
    session:<id>:events             participation event ids per session

Key lookups (participant by name key, open interval by name key) are stored as
small pointer records so the state machine can resolve them in one read.
"""

from attendance_engine.db.store import RecordStore
from attendance_engine.infrastructure.observability.logging import get_logger
from attendance_engine.models.domain.attendance_domain import (
    AttendanceInterval,
    Participant,
    ParticipationEvent,
    Session,
)

logger = get_logger(__name__)

SESSIONS = "sessions"
PARTICIPANTS = "participants"
INTERVALS = "intervals"
EVENTS = "participation_events"
PARTICIPANT_KEYS = "participant_keys"
OPEN_INTERVALS = "open_intervals"
ACTIVE_SESSIONS_INDEX = "sessions:active"


def _pointer_id(session_id: str, participant_key: str) -> str:
    return f"{session_id}:{participant_key}"


class AttendanceRepository:
    """Persistence helpers for the session state machine."""

    def __init__(self, store: RecordStore):
        self._store = store

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    async def save_session(self, session: Session) -> None:
        await self._store.put(SESSIONS, session.id, session.to_record())
        if session.is_active:
            await self._store.index_add(ACTIVE_SESSIONS_INDEX, session.id)
        else:
            await self._store.index_remove(ACTIVE_SESSIONS_INDEX, session.id)

    async def get_session(self, session_id: str) -> Session | None:
        record = await self._store.get(SESSIONS, session_id)
        return Session.from_record(record) if record else None

    async def list_active_sessions(self) -> list[Session]:
        ids = await self._store.index_members(ACTIVE_SESSIONS_INDEX)
        records = await self._store.get_many(SESSIONS, ids)
        return [Session.from_record(record) for record in records]

    async def list_sessions(self) -> list[Session]:
        records = await self._store.list_records(SESSIONS)
        sessions = [Session.from_record(record) for record in records]
        return sorted(sessions, key=lambda s: s.started_at)

    # ------------------------------------------------------------------
    # Participants
    # ------------------------------------------------------------------

    async def save_participant(self, participant: Participant) -> None:
        await self._store.put(PARTICIPANTS, participant.id, participant.to_record())
        await self._store.index_add(f"session:{participant.session_id}:participants", participant.id)
        await self._store.put(
            PARTICIPANT_KEYS,
            _pointer_id(participant.session_id, participant.participant_key),
            {"participant_id": participant.id},
        )

    async def get_participant(self, participant_id: str) -> Participant | None:
        record = await self._store.get(PARTICIPANTS, participant_id)
        return Participant.from_record(record) if record else None

    async def find_participant_by_key(
        self, session_id: str, participant_key: str
    ) -> Participant | None:
        pointer = await self._store.get(PARTICIPANT_KEYS, _pointer_id(session_id, participant_key))
        if not pointer:
            return None
        return await self.get_participant(pointer["participant_id"])

    async def find_participant_by_platform_id(
        self, session_id: str, platform_participant_id: str
    ) -> Participant | None:
        for participant in await self.list_participants(session_id):
            if participant.platform_participant_id == platform_participant_id:
                return participant
        return None

    async def list_participants(self, session_id: str) -> list[Participant]:
        """Participants of a session in arrival order."""
        ids = await self._store.index_members(f"session:{session_id}:participants")
        records = await self._store.get_many(PARTICIPANTS, ids)
        participants = [Participant.from_record(record) for record in records]
        return sorted(participants, key=lambda p: p.arrival_index)

    # ------------------------------------------------------------------
    # Attendance intervals
    # ------------------------------------------------------------------

    async def open_interval(self, interval: AttendanceInterval) -> None:
        await self._store.put(INTERVALS, interval.id, interval.to_record())
        await self._store.index_add(f"session:{interval.session_id}:intervals", interval.id)
        await self._store.index_add(f"session:{interval.session_id}:intervals:open", interval.id)
        await self._store.put(
            OPEN_INTERVALS,
            _pointer_id(interval.session_id, interval.participant_key),
            {"interval_id": interval.id},
        )

    async def close_interval(self, interval: AttendanceInterval) -> None:
        await self._store.put(INTERVALS, interval.id, interval.to_record())
        await self._store.index_remove(f"session:{interval.session_id}:intervals:open", interval.id)
        await self._store.delete(
            OPEN_INTERVALS, _pointer_id(interval.session_id, interval.participant_key)
        )

    async def save_interval(self, interval: AttendanceInterval) -> None:
        """Update fields that do not change open/closed status (identity back-fill)."""
        await self._store.put(INTERVALS, interval.id, interval.to_record())

    async def find_open_interval(
        self, session_id: str, participant_key: str
    ) -> AttendanceInterval | None:
        pointer = await self._store.get(OPEN_INTERVALS, _pointer_id(session_id, participant_key))
        if not pointer:
            return None
        record = await self._store.get(INTERVALS, pointer["interval_id"])
        return AttendanceInterval.from_record(record) if record else None

    async def list_intervals(
        self, session_id: str, participant_key: str | None = None
    ) -> list[AttendanceInterval]:
        ids = await self._store.index_members(f"session:{session_id}:intervals")
        records = await self._store.get_many(INTERVALS, ids)
        intervals = [AttendanceInterval.from_record(record) for record in records]
        if participant_key is not None:
            intervals = [i for i in intervals if i.participant_key == participant_key]
        return sorted(intervals, key=lambda i: (i.participant_key, i.opened_at))

    async def list_open_intervals(self, session_id: str) -> list[AttendanceInterval]:
        ids = await self._store.index_members(f"session:{session_id}:intervals:open")
        records = await self._store.get_many(INTERVALS, ids)
        intervals = [AttendanceInterval.from_record(record) for record in records]
        return sorted(intervals, key=lambda i: i.opened_at)

    # ------------------------------------------------------------------
    # Participation events
    # ------------------------------------------------------------------

    async def add_event(self, event: ParticipationEvent) -> None:
        await self._store.put(EVENTS, event.id, event.to_record())
        await self._store.index_add(f"session:{event.session_id}:events", event.id)

    async def list_events(self, session_id: str) -> list[ParticipationEvent]:
        ids = await self._store.index_members(f"session:{session_id}:events")
        records = await self._store.get_many(EVENTS, ids)
        events = [ParticipationEvent.from_record(record) for record in records]
        return sorted(events, key=lambda e: e.timestamp)
