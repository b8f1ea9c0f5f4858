"""
Roster domain models.

The roster is supplied wholesale by a collaborator and is read-only here.
"""

from dataclasses import dataclass

from attendance_engine.models.domain.attendance_domain import MatchMethod


@dataclass(slots=True, frozen=True)
class RosterEntry:
    identity_id: str
    display_name: str


@dataclass(slots=True, frozen=True)
class MatchResult:
    identity: RosterEntry
    score: float
    method: MatchMethod
