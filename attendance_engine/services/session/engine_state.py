"""
EngineState - the coordinator-owned state of one engine instance.

Holds what used to live on a process-wide session manager: which session is
active and the current roster. Each AttendanceEngine owns exactly one, so
tests build isolated engines without touching module globals.
"""

import asyncio
from dataclasses import dataclass, field
from typing import Literal

from attendance_engine.models.domain.roster_domain import RosterEntry

EngineStatus = Literal["idle", "starting", "active"]


@dataclass
class EngineState:
    active_session_id: str | None = None
    roster: list[RosterEntry] = field(default_factory=list)
    match_threshold: float = 0.7
    # Set while the remote create call for a new session is outstanding
    start_pending: bool = False
    # Serializes every session/participant/interval mutation (single writer)
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)

    @property
    def status(self) -> EngineStatus:
        if self.active_session_id:
            return "active"
        return "starting" if self.start_pending else "idle"

    @property
    def roster_loaded(self) -> bool:
        return bool(self.roster)

    def find_identity(self, identity_id: str) -> RosterEntry | None:
        return next((entry for entry in self.roster if entry.identity_id == identity_id), None)
