# attendance_engine/models/api/session_response.py
"""
Session API response models.
Used by routes for output formatting.
"""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from attendance_engine.models.domain.attendance_domain import Participant, Session


class SessionResponse(BaseModel):
    """Response model for a session."""

    id: str = Field(..., description="Local session id")
    external_id: str | None = Field(None, description="Remote system's session id")
    subject_id: str = Field(..., description="Tracked class/entity")
    meeting_id: str | None = Field(None, description="Meeting link or code")
    platform: str | None = Field(None, description="Meeting platform")
    started_at: datetime = Field(..., description="When the session started")
    ended_at: datetime | None = Field(None, description="When the session ended")
    status: str = Field(..., description="active or ended")

    @classmethod
    def from_domain(cls, session: Session) -> "SessionResponse":
        return cls(
            id=session.id,
            external_id=session.external_id,
            subject_id=session.subject_id,
            meeting_id=session.meeting_id,
            platform=session.platform,
            started_at=session.started_at,
            ended_at=session.ended_at,
            status=session.status,
        )


class ParticipantResponse(BaseModel):
    """Response model for an observed participant."""

    id: str = Field(..., description="Participant id")
    observed_name: str = Field(..., description="Name as shown in the meeting")
    matched_identity_id: str | None = Field(None, description="Matched roster identity")
    matched_identity_name: str | None = Field(None, description="Matched roster name")
    match_confidence: float = Field(..., description="Match score 0.0-1.0")
    match_method: str = Field(..., description="How the match was made")
    first_seen_at: datetime = Field(..., description="First join observed")
    last_seen_at: datetime | None = Field(None, description="Last leave; null while present")
    is_present: bool = Field(..., description="Has an open attendance interval")

    @classmethod
    def from_domain(cls, participant: Participant) -> "ParticipantResponse":
        return cls(
            id=participant.id,
            observed_name=participant.observed_name,
            matched_identity_id=participant.matched_identity_id,
            matched_identity_name=participant.matched_identity_name,
            match_confidence=participant.match_confidence,
            match_method=participant.match_method,
            first_seen_at=participant.first_seen_at,
            last_seen_at=participant.last_seen_at,
            is_present=participant.is_present,
        )


class ParticipantsListResponse(BaseModel):
    participants: list[ParticipantResponse] = Field(..., description="Participants in arrival order")
    total_count: int = Field(..., description="Number of participants")
    matched_count: int = Field(..., description="Participants matched to the roster")


class SessionEndResponse(BaseModel):
    """Response for ending a session."""

    session: SessionResponse = Field(..., description="The ended session")
    closed_intervals: int = Field(..., description="Intervals force-closed at end")
    remote_confirmed: bool = Field(..., description="Remote acknowledged the end")
    remote_error: str | None = Field(None, description="Why the remote did not confirm")
    drained: bool = Field(..., description="Final sends finished inside the grace period")
    abandoned_item_ids: list[str] = Field(
        default_factory=list, description="Queue items taken off the retry path"
    )


class SessionStatusResponse(BaseModel):
    status: str = Field(..., description="idle, starting or active")
    session: dict[str, Any] | None = Field(None, description="Active session snapshot")
    roster_size: int = Field(..., description="Identities on the current roster")
    roster_loaded: bool = Field(..., description="Whether any roster has been provided")
    pending_signals: int = Field(..., description="Signals waiting in the batcher")


class RosterUpdateResponse(BaseModel):
    roster_size: int = Field(..., description="Identities on the new roster")
    newly_matched: list[ParticipantResponse] = Field(
        ..., description="Participants matched by this update"
    )


class AttendanceSummaryResponse(BaseModel):
    session_id: str = Field(..., description="Local session id")
    attendance: list[dict[str, Any]] = Field(..., description="Per-participant totals")
