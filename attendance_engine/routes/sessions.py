# attendance_engine/routes/sessions.py
"""
Session API Routes
Start/end tracked sessions, roster updates and manual identity matches.
"""

from fastapi import APIRouter, Depends, HTTPException, status

from attendance_engine.infrastructure.observability.logging import get_logger
from attendance_engine.models.api.session_request import (
    ManualMatchRequest,
    RosterUpdateRequest,
    StartSessionRequest,
)
from attendance_engine.models.api.session_response import (
    AttendanceSummaryResponse,
    ParticipantResponse,
    ParticipantsListResponse,
    RosterUpdateResponse,
    SessionEndResponse,
    SessionResponse,
    SessionStatusResponse,
)
from attendance_engine.routes.dependencies import get_engine
from attendance_engine.services.engine import AttendanceEngine
from attendance_engine.services.session.session_manager import (
    ParticipantNotFoundError,
    SessionAlreadyActiveError,
    SessionAlreadyEndedError,
    SessionError,
    SessionNotFoundError,
    SessionStartError,
    UnknownIdentityError,
)

logger = get_logger(__name__)

router = APIRouter(prefix="/sessions", tags=["sessions"])


def _session_http_error(error: SessionError) -> HTTPException:
    if isinstance(error, (SessionNotFoundError, ParticipantNotFoundError)):
        code = status.HTTP_404_NOT_FOUND
    elif isinstance(error, (SessionAlreadyActiveError, SessionAlreadyEndedError)):
        code = status.HTTP_409_CONFLICT
    elif isinstance(error, UnknownIdentityError):
        code = status.HTTP_422_UNPROCESSABLE_ENTITY
    elif isinstance(error, SessionStartError):
        code = status.HTTP_502_BAD_GATEWAY
    else:
        code = status.HTTP_400_BAD_REQUEST
    return HTTPException(status_code=code, detail=str(error))


@router.post("", response_model=SessionResponse, status_code=status.HTTP_201_CREATED)
async def start_session(request: StartSessionRequest, engine: AttendanceEngine = Depends(get_engine)):
    """Start tracking a meeting for a subject."""
    roster = [entry.to_domain() for entry in request.roster] if request.roster is not None else None
    try:
        session = await engine.start_session(
            request.subject_id,
            meeting_id=request.meeting_id,
            platform=request.platform,
            roster=roster,
            additional_data=request.additional_data,
        )
    except SessionError as e:
        logger.warning("Session start rejected", subject_id=request.subject_id, error=str(e))
        raise _session_http_error(e)
    return SessionResponse.from_domain(session)


@router.get("/status", response_model=SessionStatusResponse)
async def get_session_status(engine: AttendanceEngine = Depends(get_engine)):
    """Snapshot of the active session, if any."""
    return SessionStatusResponse(**await engine.get_status())


@router.put("/roster", response_model=RosterUpdateResponse)
async def update_roster(request: RosterUpdateRequest, engine: AttendanceEngine = Depends(get_engine)):
    """Replace the roster and re-match unmatched participants."""
    matched = await engine.update_roster(request.to_domain())
    return RosterUpdateResponse(
        roster_size=len(request.roster),
        newly_matched=[ParticipantResponse.from_domain(p) for p in matched],
    )


@router.post("/{session_id}/end", response_model=SessionEndResponse)
async def end_session(session_id: str, engine: AttendanceEngine = Depends(get_engine)):
    """End a session; local end stands even if the remote cannot confirm."""
    try:
        result = await engine.end_session(session_id)
    except SessionError as e:
        raise _session_http_error(e)

    return SessionEndResponse(
        session=SessionResponse.from_domain(result["session"]),
        closed_intervals=result["closed_intervals"],
        remote_confirmed=result["remote_confirmed"],
        remote_error=result["remote_error"],
        drained=result["drained"],
        abandoned_item_ids=result["abandoned_item_ids"],
    )


@router.get("/{session_id}", response_model=SessionResponse)
async def get_session(session_id: str, engine: AttendanceEngine = Depends(get_engine)):
    session = await engine.get_session(session_id)
    if session is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Session not found")
    return SessionResponse.from_domain(session)


@router.get("/{session_id}/participants", response_model=ParticipantsListResponse)
async def list_participants(session_id: str, engine: AttendanceEngine = Depends(get_engine)):
    participants = [
        ParticipantResponse.from_domain(p) for p in await engine.list_participants(session_id)
    ]
    return ParticipantsListResponse(
        participants=participants,
        total_count=len(participants),
        matched_count=sum(1 for p in participants if p.matched_identity_id),
    )


@router.get("/{session_id}/attendance", response_model=AttendanceSummaryResponse)
async def get_attendance(session_id: str, engine: AttendanceEngine = Depends(get_engine)):
    if await engine.get_session(session_id) is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Session not found")
    return AttendanceSummaryResponse(
        session_id=session_id, attendance=await engine.get_attendance_summary(session_id)
    )


@router.post("/participants/{participant_id}/match", response_model=ParticipantResponse)
async def manual_match(
    participant_id: str,
    request: ManualMatchRequest,
    engine: AttendanceEngine = Depends(get_engine),
):
    """Pin a participant to a roster identity; never overwritten by automatic matching."""
    try:
        participant = await engine.manual_match(participant_id, request.identity_id)
    except SessionError as e:
        raise _session_http_error(e)
    return ParticipantResponse.from_domain(participant)
