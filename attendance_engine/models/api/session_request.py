# attendance_engine/models/api/session_request.py
"""
Session API request models.
Used by routes for input validation.
"""

from typing import Any

from pydantic import BaseModel, Field

from attendance_engine.models.domain.roster_domain import RosterEntry


class RosterEntryModel(BaseModel):
    """One roster identity as supplied by the roster provider."""

    identity_id: str = Field(..., min_length=1, description="Roster identity id (student id)")
    display_name: str = Field(..., min_length=1, max_length=200, description="Name on the roster")

    def to_domain(self) -> RosterEntry:
        return RosterEntry(identity_id=self.identity_id, display_name=self.display_name)


class StartSessionRequest(BaseModel):
    """Request for starting a tracked session."""

    subject_id: str = Field(..., min_length=1, description="Class/entity being tracked")
    meeting_id: str | None = Field(default=None, description="Meeting link or code")
    platform: str | None = Field(default=None, description="Meeting platform, e.g. google_meet")
    roster: list[RosterEntryModel] | None = Field(
        default=None, description="Roster to match participants against"
    )
    additional_data: dict[str, Any] = Field(default_factory=dict, description="Opaque context")


class RosterUpdateRequest(BaseModel):
    """Replace the roster; unmatched participants are re-matched."""

    roster: list[RosterEntryModel] = Field(..., description="Full roster")

    def to_domain(self) -> list[RosterEntry]:
        return [entry.to_domain() for entry in self.roster]


class ManualMatchRequest(BaseModel):
    """Pin a participant to a roster identity."""

    identity_id: str = Field(..., min_length=1, description="Roster identity id")
