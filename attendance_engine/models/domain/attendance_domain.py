"""
Domain models for sessions, participants and attendance intervals.

These dataclasses are the records owned by the session state machine. They
carry no behaviour beyond small derived properties so repositories, services
and the HTTP layer can share them.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Literal

from attendance_engine.models.domain.records import dump_record, load_record

SessionStatus = Literal["active", "ended"]
SESSION_ACTIVE: SessionStatus = "active"
SESSION_ENDED: SessionStatus = "ended"

MatchMethod = Literal["exact_name", "fuzzy_match", "high_confidence", "manual", "none"]
METHOD_EXACT_NAME: MatchMethod = "exact_name"
METHOD_FUZZY_MATCH: MatchMethod = "fuzzy_match"
METHOD_HIGH_CONFIDENCE: MatchMethod = "high_confidence"
METHOD_MANUAL: MatchMethod = "manual"
METHOD_NONE: MatchMethod = "none"


@dataclass(slots=True)
class Session:
    """One tracked meeting occurrence."""

    id: str
    subject_id: str
    started_at: datetime
    external_id: str | None = None
    meeting_id: str | None = None
    platform: str | None = None
    ended_at: datetime | None = None
    status: SessionStatus = SESSION_ACTIVE

    @property
    def is_active(self) -> bool:
        return self.status == SESSION_ACTIVE

    def to_record(self) -> dict[str, Any]:
        return dump_record(self)

    @classmethod
    def from_record(cls, data: dict[str, Any]) -> "Session":
        return load_record(cls, data, ("started_at", "ended_at"))


@dataclass(slots=True)
class Participant:
    """One observed attendee of a session, keyed by a stable name key."""

    id: str
    session_id: str
    participant_key: str
    observed_name: str
    first_seen_at: datetime
    arrival_index: int
    platform_participant_id: str | None = None
    matched_identity_id: str | None = None
    matched_identity_name: str | None = None
    match_confidence: float = 0.0
    match_method: MatchMethod = METHOD_NONE
    last_seen_at: datetime | None = None  # None while present
    last_signal_at: datetime | None = None

    @property
    def is_matched(self) -> bool:
        return self.matched_identity_id is not None

    @property
    def is_present(self) -> bool:
        return self.last_seen_at is None

    def to_record(self) -> dict[str, Any]:
        return dump_record(self)

    @classmethod
    def from_record(cls, data: dict[str, Any]) -> "Participant":
        return load_record(cls, data, ("first_seen_at", "last_seen_at", "last_signal_at"))


@dataclass(slots=True)
class AttendanceInterval:
    """One contiguous presence span; closed_at is None while open."""

    id: str
    session_id: str
    participant_key: str
    opened_at: datetime
    matched_identity_id: str | None = None
    closed_at: datetime | None = None

    @property
    def is_open(self) -> bool:
        return self.closed_at is None

    def duration_seconds(self, until: datetime | None = None) -> float:
        """Length of the span; open intervals are measured up to `until`."""
        end = self.closed_at or until
        if end is None:
            return 0.0
        return max((end - self.opened_at).total_seconds(), 0.0)

    def to_record(self) -> dict[str, Any]:
        return dump_record(self)

    @classmethod
    def from_record(cls, data: dict[str, Any]) -> "AttendanceInterval":
        return load_record(cls, data, ("opened_at", "closed_at"))


@dataclass(slots=True)
class ParticipationEvent:
    """A non-presence interaction (chat, reaction, toggles) attributed to a participant."""

    id: str
    session_id: str
    event_type: str
    timestamp: datetime
    participant_id: str | None = None  # None for session-level events
    event_data: dict[str, Any] = field(default_factory=dict)

    def to_record(self) -> dict[str, Any]:
        return dump_record(self)

    @classmethod
    def from_record(cls, data: dict[str, Any]) -> "ParticipationEvent":
        return load_record(cls, data, ("timestamp",))
