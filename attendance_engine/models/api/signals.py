# attendance_engine/models/api/signals.py
"""
Raw presence signal models.
Shape emitted by the meeting UI scraper; validated at the ingest boundary only.
"""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

PARTICIPANT_JOINED = "PARTICIPANT_JOINED"
PARTICIPANT_LEFT = "PARTICIPANT_LEFT"
CHAT_MESSAGE = "CHAT_MESSAGE"
REACTION = "REACTION"
HAND_RAISE = "HAND_RAISE"
MIC_TOGGLE = "MIC_TOGGLE"
CAMERA_TOGGLE = "CAMERA_TOGGLE"
MIC_STATUS_CHANGED = "MIC_STATUS_CHANGED"
PLATFORM_SWITCH = "PLATFORM_SWITCH"

PRESENCE_SIGNALS = frozenset({PARTICIPANT_JOINED, PARTICIPANT_LEFT})
PARTICIPATION_SIGNALS = frozenset(
    {CHAT_MESSAGE, REACTION, HAND_RAISE, MIC_TOGGLE, CAMERA_TOGGLE, MIC_STATUS_CHANGED}
)


class RawSignal(BaseModel):
    """One typed event from the signal source. Unknown fields are kept as event data."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    type: str = Field(..., min_length=1, description="Signal type, e.g. PARTICIPANT_JOINED")
    participant_name: str | None = Field(
        default=None, alias="participantName", description="Display name as shown in the UI"
    )
    participant_id: str | None = Field(
        default=None, alias="participantId", description="Transient platform participant id"
    )
    timestamp: datetime | None = Field(default=None, description="When the UI observed it")
    session_context_id: str | None = Field(
        default=None, alias="sessionContextId", description="Meeting context the scraper saw"
    )

    def to_event_data(self) -> dict[str, Any]:
        """Flatten to the dict handed through the deduplicator."""
        return self.model_dump(exclude={"type"})


class SignalBatchRequest(BaseModel):
    signals: list[RawSignal] = Field(..., min_length=1, max_length=500)
