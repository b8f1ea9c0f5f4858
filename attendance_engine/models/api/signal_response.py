# attendance_engine/models/api/signal_response.py
from pydantic import BaseModel, Field


class SignalIngestResponse(BaseModel):
    """Outcome of an ingest call; duplicates are absorbed, not rejected."""

    accepted: int = Field(..., description="Signals forwarded or queued")
    duplicates: int = Field(..., description="Signals suppressed as duplicates")
