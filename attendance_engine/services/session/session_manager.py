"""
Session & attendance state machine.

Session lifecycle:   IDLE -> ACTIVE -> ENDED (terminal)

Per (session, participant_key) interval transitions:
    none-open --join-->  open        new AttendanceInterval
    open      --join-->  open        duplicate; only last_signal_at moves
    open      --leave--> none-open   interval closed
    none-open --leave--> none-open   duplicate/stale; ignored

All mutations run under EngineState.lock, so at most one interval per key is
ever open. Ending a session closes every open interval at ended_at; the local
session is marked ENDED even when the remote cannot confirm.
"""

import uuid
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, Literal

from attendance_engine.infrastructure.observability.logging import get_logger
from attendance_engine.models.api.signals import (
    CAMERA_TOGGLE,
    CHAT_MESSAGE,
    HAND_RAISE,
    MIC_STATUS_CHANGED,
    MIC_TOGGLE,
    PLATFORM_SWITCH,
    REACTION,
)
from attendance_engine.models.domain.attendance_domain import (
    METHOD_MANUAL,
    METHOD_NONE,
    SESSION_ENDED,
    AttendanceInterval,
    Participant,
    ParticipationEvent,
    Session,
)
from attendance_engine.models.domain.roster_domain import MatchResult, RosterEntry
from attendance_engine.repositories.attendance_repository import AttendanceRepository
from attendance_engine.services.matching import identity_matcher
from attendance_engine.services.remote.delivery_client import DeliveryClient
from attendance_engine.services.session.engine_state import EngineState

logger = get_logger(__name__)

EVENT_TYPE_MAP = {
    CHAT_MESSAGE: "chat",
    REACTION: "reaction",
    HAND_RAISE: "hand_raise",
    MIC_TOGGLE: "mic_on",
    MIC_STATUS_CHANGED: "mic_on",
    CAMERA_TOGGLE: "camera_on",
    PLATFORM_SWITCH: "platform_switch",
}

# Signal envelope fields that are not part of an event's own data
_ENVELOPE_FIELDS = {"participant_id", "participant_name", "timestamp", "session_context_id"}


class SessionError(Exception):
    """Base class for session precondition failures. Nothing is mutated when raised."""

    def __init__(self, message: str, recoverable: bool = False):
        super().__init__(message)
        self.recoverable = recoverable


class SessionAlreadyActiveError(SessionError):
    pass


class SessionNotFoundError(SessionError):
    pass


class SessionAlreadyEndedError(SessionError):
    pass


class SessionStartError(SessionError):
    """The remote could not create the session; no local session exists."""

    def __init__(self, message: str):
        super().__init__(message, recoverable=True)


class ParticipantNotFoundError(SessionError):
    pass


class UnknownIdentityError(SessionError):
    pass


@dataclass(slots=True)
class PresenceFact:
    """A reconciled join/leave produced by an accepted transition."""

    kind: Literal["join_event", "leave_event"]
    session: Session
    participant: Participant
    interval: AttendanceInterval


@dataclass(slots=True)
class SessionEndResult:
    session: Session
    closed_intervals: list[AttendanceInterval] = field(default_factory=list)
    remote_confirmed: bool = False
    remote_error: str | None = None


def participant_key(name: str) -> str:
    """Stable key for a display name; survives reconnects with new transient ids."""
    return " ".join(name.casefold().split())


def _utcnow() -> datetime:
    return datetime.now(UTC)


class SessionManager:
    """Owns sessions, participants and attendance intervals. Single writer."""

    def __init__(
        self,
        repository: AttendanceRepository,
        client: DeliveryClient,
        state: EngineState,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self._repository = repository
        self._client = client
        self._state = state
        self._clock = clock

    @property
    def state(self) -> EngineState:
        return self._state

    def _event_time(self, timestamp: datetime | None) -> datetime:
        if timestamp is None:
            return self._clock()
        if timestamp.tzinfo is None:
            return timestamp.replace(tzinfo=UTC)
        return timestamp

    # ------------------------------------------------------------------
    # Session lifecycle
    # ------------------------------------------------------------------

    async def _ensure_no_active_session(self) -> None:
        if (
            self._state.active_session_id
            or self._state.start_pending
            or await self._repository.list_active_sessions()
        ):
            raise SessionAlreadyActiveError("A session is already active. End it first.")

    async def start(
        self,
        subject_id: str,
        meeting_id: str | None = None,
        platform: str | None = None,
        additional_data: dict[str, Any] | None = None,
    ) -> Session:
        """
        Start tracking a meeting.

        Raises:
            SessionAlreadyActiveError: Another session is still ACTIVE
            SessionStartError: The remote refused or could not be reached
        """
        async with self._state.lock:
            await self._ensure_no_active_session()
            self._state.start_pending = True

        # The remote call runs outside the lock so signals are not held up by it
        try:
            meeting_context = {
                "meeting_id": meeting_id,
                "platform": platform,
                "additional_data": additional_data or {},
            }
            try:
                remote = await self._client.create_session(subject_id, meeting_context)
            except Exception as e:
                logger.error("Could not start session", subject_id=subject_id, error=str(e))
                raise SessionStartError(f"Could not start session: {e}") from e

            async with self._state.lock:
                if self._state.active_session_id or await self._repository.list_active_sessions():
                    logger.warning(
                        "Session became active during remote start; discarding",
                        subject_id=subject_id,
                        external_id=remote.external_id,
                    )
                    raise SessionAlreadyActiveError("A session is already active. End it first.")

                session = Session(
                    id=str(uuid.uuid4()),
                    external_id=remote.external_id,
                    subject_id=subject_id,
                    meeting_id=meeting_id,
                    platform=platform,
                    started_at=remote.started_at,
                )
                await self._repository.save_session(session)
                self._state.active_session_id = session.id
        finally:
            self._state.start_pending = False

        logger.info(
            "Session started",
            session_id=session.id,
            external_id=session.external_id,
            subject_id=subject_id,
        )
        return session

    async def end(self, session_id: str) -> SessionEndResult:
        """
        End a session: close open intervals, mark ENDED, then confirm remotely.

        Remote confirmation is best-effort; a failure is reported on the
        result, never raised, and never rolls back the local end.
        """
        async with self._state.lock:
            session = await self._repository.get_session(session_id)
            if session is None:
                raise SessionNotFoundError(f"Session {session_id} not found")
            if session.status == SESSION_ENDED:
                raise SessionAlreadyEndedError(f"Session {session_id} already ended")

            ended_at = self._clock()
            closed = await self._close_open_intervals(session, ended_at)

            session.ended_at = ended_at
            session.status = SESSION_ENDED
            await self._repository.save_session(session)
            if self._state.active_session_id == session_id:
                self._state.active_session_id = None

        result = SessionEndResult(session=session, closed_intervals=closed)
        logger.info(
            "Session ended locally",
            session_id=session_id,
            closed_intervals=len(closed),
        )

        if session.external_id:
            try:
                await self._client.end_session(session.external_id, ended_at)
                result.remote_confirmed = True
            except Exception as e:
                result.remote_error = str(e)
                logger.warning(
                    "Remote session end failed; local end stands",
                    session_id=session_id,
                    external_id=session.external_id,
                    error=str(e),
                )
        return result

    async def _close_open_intervals(
        self, session: Session, ended_at: datetime
    ) -> list[AttendanceInterval]:
        closed = []
        for interval in await self._repository.list_open_intervals(session.id):
            interval.closed_at = max(ended_at, interval.opened_at)
            await self._repository.close_interval(interval)
            closed.append(interval)

            participant = await self._repository.find_participant_by_key(
                session.id, interval.participant_key
            )
            if participant is not None:
                participant.last_seen_at = interval.closed_at
                await self._repository.save_participant(participant)
        return closed

    async def get_active_session(self) -> Session | None:
        if self._state.active_session_id:
            return await self._repository.get_session(self._state.active_session_id)

        active = await self._repository.list_active_sessions()
        if active:
            # Recover after a restart from the durable store
            self._state.active_session_id = active[0].id
            return active[0]
        return None

    async def get_status(self) -> dict[str, Any]:
        session = await self.get_active_session()
        if session is None:
            return {"status": self._state.status, "session": None}

        participants = await self._repository.list_participants(session.id)
        open_intervals = await self._repository.list_open_intervals(session.id)
        events = await self._repository.list_events(session.id)
        return {
            "status": session.status,
            "session": {
                **session.to_record(),
                "participant_count": len(participants),
                "matched_count": sum(1 for p in participants if p.is_matched),
                "present_count": len(open_intervals),
                "event_count": len(events),
            },
        }

    # ------------------------------------------------------------------
    # Presence transitions
    # ------------------------------------------------------------------

    async def handle_join(
        self,
        observed_name: str | None,
        timestamp: datetime | None = None,
        platform_participant_id: str | None = None,
    ) -> PresenceFact | None:
        """Apply a join signal. Returns a fact only when a new interval opened."""
        name = (observed_name or "").strip()
        if not name:
            logger.debug("Join without a participant name ignored")
            return None

        async with self._state.lock:
            session = await self.get_active_session()
            if session is None:
                logger.debug("Join with no active session ignored", participant=name)
                return None

            key = participant_key(name)
            at = self._event_time(timestamp)

            participant = await self._repository.find_participant_by_key(session.id, key)
            if participant is None:
                participant = await self._create_participant(session, name, key, at)
            if platform_participant_id:
                participant.platform_participant_id = platform_participant_id
            participant.last_signal_at = at

            if await self._repository.find_open_interval(session.id, key) is not None:
                await self._repository.save_participant(participant)
                return None

            # A late-arriving rejoin must not start before the previous leave
            opened_at = at
            if participant.last_seen_at and opened_at < participant.last_seen_at:
                opened_at = participant.last_seen_at

            interval = AttendanceInterval(
                id=str(uuid.uuid4()),
                session_id=session.id,
                participant_key=key,
                opened_at=opened_at,
                matched_identity_id=participant.matched_identity_id,
            )
            await self._repository.open_interval(interval)
            participant.last_seen_at = None
            await self._repository.save_participant(participant)

        logger.info(
            "Participant joined",
            session_id=session.id,
            participant=name,
            matched=participant.is_matched,
        )
        return PresenceFact("join_event", session, participant, interval)

    async def handle_leave(
        self,
        observed_name: str | None,
        timestamp: datetime | None = None,
        platform_participant_id: str | None = None,
    ) -> PresenceFact | None:
        """Apply a leave signal. Returns a fact only when an open interval closed."""
        async with self._state.lock:
            session = await self.get_active_session()
            if session is None:
                return None

            participant = await self._resolve_participant(
                session.id, observed_name, platform_participant_id
            )
            if participant is None:
                logger.debug("Leave for unknown participant ignored", participant=observed_name)
                return None

            at = self._event_time(timestamp)
            interval = await self._repository.find_open_interval(
                session.id, participant.participant_key
            )
            participant.last_signal_at = at
            if interval is None:
                await self._repository.save_participant(participant)
                return None

            interval.closed_at = max(at, interval.opened_at)
            await self._repository.close_interval(interval)
            participant.last_seen_at = interval.closed_at
            await self._repository.save_participant(participant)

        logger.info(
            "Participant left",
            session_id=session.id,
            participant=participant.observed_name,
            duration_seconds=interval.duration_seconds(),
        )
        return PresenceFact("leave_event", session, participant, interval)

    async def _resolve_participant(
        self, session_id: str, observed_name: str | None, platform_participant_id: str | None
    ) -> Participant | None:
        name = (observed_name or "").strip()
        if name:
            return await self._repository.find_participant_by_key(session_id, participant_key(name))
        if platform_participant_id:
            return await self._repository.find_participant_by_platform_id(
                session_id, platform_participant_id
            )
        return None

    async def _create_participant(
        self, session: Session, name: str, key: str, seen_at: datetime
    ) -> Participant:
        existing = await self._repository.list_participants(session.id)
        participant = Participant(
            id=str(uuid.uuid4()),
            session_id=session.id,
            participant_key=key,
            observed_name=name,
            first_seen_at=seen_at,
            arrival_index=len(existing),
        )
        if self._state.roster:
            result = identity_matcher.match(name, self._state.roster, self._state.match_threshold)
            if result is not None:
                self._apply_match(participant, result)
        return participant

    @staticmethod
    def _apply_match(participant: Participant, result: MatchResult) -> None:
        participant.matched_identity_id = result.identity.identity_id
        participant.matched_identity_name = result.identity.display_name
        participant.match_confidence = result.score
        participant.match_method = result.method

    # ------------------------------------------------------------------
    # Participation events
    # ------------------------------------------------------------------

    async def record_participation(
        self, signal_type: str, data: dict[str, Any]
    ) -> ParticipationEvent | None:
        """Store a chat/reaction/toggle event against its participant; unknown ones are dropped."""
        async with self._state.lock:
            session = await self.get_active_session()
            if session is None:
                return None

            participant_id = None
            if signal_type != PLATFORM_SWITCH:
                participant = await self._resolve_participant(
                    session.id, data.get("participant_name"), data.get("participant_id")
                )
                if participant is None:
                    logger.debug("Participation event for unknown participant", type=signal_type)
                    return None
                participant_id = participant.id

            event = ParticipationEvent(
                id=str(uuid.uuid4()),
                session_id=session.id,
                participant_id=participant_id,
                event_type=EVENT_TYPE_MAP.get(signal_type, "other"),
                event_data={k: v for k, v in data.items() if k not in _ENVELOPE_FIELDS},
                timestamp=self._event_time(data.get("timestamp")),
            )
            await self._repository.add_event(event)
        return event

    # ------------------------------------------------------------------
    # Identity matching
    # ------------------------------------------------------------------

    async def reconcile_roster(self, roster: Sequence[RosterEntry]) -> list[Participant]:
        """
        Install a new roster and match every still-unmatched participant of the
        active session against it, in arrival order.

        Existing automatic and manual matches are never overwritten, so running
        this twice with the same roster changes nothing the second time.
        """
        async with self._state.lock:
            self._state.roster = list(roster)
            session = await self.get_active_session()
            if session is None or not self._state.roster:
                return []

            matched = []
            for participant in await self._repository.list_participants(session.id):
                if participant.match_method != METHOD_NONE or participant.is_matched:
                    continue
                result = identity_matcher.match(
                    participant.observed_name, self._state.roster, self._state.match_threshold
                )
                if result is None:
                    continue
                self._apply_match(participant, result)
                await self._repository.save_participant(participant)
                await self._backfill_intervals(participant, overwrite=False)
                matched.append(participant)

        logger.info(
            "Roster reconciled",
            roster_size=len(self._state.roster),
            newly_matched=len(matched),
        )
        return matched

    async def manual_match(self, participant_id: str, identity_id: str) -> Participant:
        """
        Pin a participant to a roster identity (score 1.0, method manual).

        Raises:
            ParticipantNotFoundError: No such participant
            UnknownIdentityError: identity_id is not on the current roster
        """
        async with self._state.lock:
            participant = await self._repository.get_participant(participant_id)
            if participant is None:
                raise ParticipantNotFoundError(f"Participant {participant_id} not found")
            identity = self._state.find_identity(identity_id)
            if identity is None:
                raise UnknownIdentityError(f"Identity {identity_id} is not on the roster")

            self._apply_match(
                participant, MatchResult(identity=identity, score=1.0, method=METHOD_MANUAL)
            )
            await self._repository.save_participant(participant)
            await self._backfill_intervals(participant, overwrite=True)

        logger.info("Manual match", participant_id=participant_id, identity_id=identity_id)
        return participant

    async def _backfill_intervals(self, participant: Participant, overwrite: bool) -> None:
        intervals = await self._repository.list_intervals(
            participant.session_id, participant.participant_key
        )
        for interval in intervals:
            if interval.matched_identity_id and not overwrite:
                continue
            interval.matched_identity_id = participant.matched_identity_id
            await self._repository.save_interval(interval)

    async def list_participants(self, session_id: str) -> list[Participant]:
        return await self._repository.list_participants(session_id)

    async def list_intervals(self, session_id: str) -> list[AttendanceInterval]:
        return await self._repository.list_intervals(session_id)

    async def list_events(self, session_id: str) -> list[ParticipationEvent]:
        return await self._repository.list_events(session_id)
