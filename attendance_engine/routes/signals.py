# attendance_engine/routes/signals.py
"""
Signal ingest routes.
The meeting UI scraper posts raw presence/participation signals here.
"""

from fastapi import APIRouter, Depends

from attendance_engine.infrastructure.observability.logging import get_logger
from attendance_engine.models.api.signal_response import SignalIngestResponse
from attendance_engine.models.api.signals import RawSignal, SignalBatchRequest
from attendance_engine.routes.dependencies import get_engine
from attendance_engine.services.engine import AttendanceEngine

logger = get_logger(__name__)

router = APIRouter(prefix="/signals", tags=["signals"])


@router.post("", response_model=SignalIngestResponse)
async def ingest_signal(signal: RawSignal, engine: AttendanceEngine = Depends(get_engine)):
    """Submit one raw signal."""
    accepted = await engine.submit_signal(signal)
    return SignalIngestResponse(accepted=int(accepted), duplicates=int(not accepted))


@router.post("/batch", response_model=SignalIngestResponse)
async def ingest_signals(
    request: SignalBatchRequest, engine: AttendanceEngine = Depends(get_engine)
):
    """Submit signals in the order the scraper observed them."""
    accepted = 0
    for signal in request.signals:
        if await engine.submit_signal(signal):
            accepted += 1

    duplicates = len(request.signals) - accepted
    if duplicates:
        logger.debug("Duplicate signals in batch", count=duplicates)
    return SignalIngestResponse(accepted=accepted, duplicates=duplicates)
