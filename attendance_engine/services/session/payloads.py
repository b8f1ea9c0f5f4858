"""
Builders for reconciled facts sent to the remote system of record.

Only matched participants are reported in batches; the remote keys
attendance by roster identity (`student_id`).
"""

from collections import defaultdict
from datetime import datetime
from typing import Any

from attendance_engine.models.domain.attendance_domain import (
    AttendanceInterval,
    Participant,
    ParticipationEvent,
)
from attendance_engine.models.domain.records import dt_to_str

ATTENDANCE_PRESENT = "present"


def build_join_payload(participant: Participant, interval: AttendanceInterval) -> dict[str, Any]:
    return {
        "participant_name": participant.observed_name,
        "joined_at": dt_to_str(interval.opened_at),
        "student_id": participant.matched_identity_id,
    }


def build_leave_payload(participant: Participant, interval: AttendanceInterval) -> dict[str, Any]:
    return {
        "participant_name": participant.observed_name,
        "left_at": dt_to_str(interval.closed_at),
        "student_id": participant.matched_identity_id,
    }


def summarize_attendance(
    participants: list[Participant],
    intervals: list[AttendanceInterval],
    until: datetime,
) -> list[dict[str, Any]]:
    """
    Per-participant totals across all of their intervals.

    Open intervals count up to `until`.
    """
    by_key: dict[str, list[AttendanceInterval]] = defaultdict(list)
    for interval in intervals:
        by_key[interval.participant_key].append(interval)

    summaries = []
    for participant in participants:
        spans = sorted(by_key.get(participant.participant_key, []), key=lambda i: i.opened_at)
        total = sum(span.duration_seconds(until) for span in spans)
        last_left = None
        if spans:
            last_left = max((span.closed_at or until) for span in spans)
        summaries.append(
            {
                "participant_id": participant.id,
                "participant_name": participant.observed_name,
                "student_id": participant.matched_identity_id,
                "match_method": participant.match_method,
                "match_confidence": participant.match_confidence,
                "interval_count": len(spans),
                "total_duration_seconds": round(total, 3),
                "first_joined_at": dt_to_str(spans[0].opened_at) if spans else None,
                "last_left_at": dt_to_str(last_left),
                "intervals": [
                    {
                        "joined_at": dt_to_str(span.opened_at),
                        "left_at": dt_to_str(span.closed_at),
                        "duration_seconds": round(span.duration_seconds(until), 3),
                    }
                    for span in spans
                ],
            }
        )
    return summaries


def build_attendance_payload(
    participants: list[Participant],
    intervals: list[AttendanceInterval],
    until: datetime,
) -> dict[str, Any]:
    attendance = []
    for summary in summarize_attendance(participants, intervals, until):
        if not summary["student_id"]:
            continue
        attendance.append(
            {
                "student_id": summary["student_id"],
                "participant_name": summary["participant_name"],
                "status": ATTENDANCE_PRESENT,
                "joined_at": summary["first_joined_at"],
                "left_at": summary["last_left_at"],
                "duration_seconds": summary["total_duration_seconds"],
                "intervals": summary["intervals"],
            }
        )
    return {"attendance": attendance}


def build_participation_payload(
    participants: list[Participant], events: list[ParticipationEvent]
) -> dict[str, Any]:
    by_id = {participant.id: participant for participant in participants}
    logs = []
    for event in events:
        participant = by_id.get(event.participant_id) if event.participant_id else None
        if participant is None or not participant.matched_identity_id:
            continue
        logs.append(
            {
                "student_id": participant.matched_identity_id,
                "interaction_type": event.event_type,
                "timestamp": dt_to_str(event.timestamp),
                "metadata": event.event_data,
            }
        )
    return {"logs": logs}
