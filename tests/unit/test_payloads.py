from datetime import UTC, datetime, timedelta

from attendance_engine.models.domain.attendance_domain import (
    AttendanceInterval,
    Participant,
    ParticipationEvent,
)
from attendance_engine.services.session import payloads

T0 = datetime(2026, 3, 2, 9, 0, tzinfo=UTC)


def _participant(pid, name, identity=None):
    return Participant(
        id=pid,
        session_id="s1",
        participant_key=name.lower(),
        observed_name=name,
        first_seen_at=T0,
        arrival_index=0,
        matched_identity_id=identity,
    )


def _interval(key, start_min, end_min=None):
    return AttendanceInterval(
        id=f"{key}-{start_min}",
        session_id="s1",
        participant_key=key,
        opened_at=T0 + timedelta(minutes=start_min),
        closed_at=None if end_min is None else T0 + timedelta(minutes=end_min),
    )


def test_summary_totals_closed_and_open_intervals():
    alice = _participant("p1", "Alice Smith", "stu-1")
    intervals = [
        _interval("alice smith", 20),
        _interval("alice smith", 0, 10),
    ]

    [summary] = payloads.summarize_attendance([alice], intervals, T0 + timedelta(minutes=30))

    assert summary["interval_count"] == 2
    assert summary["total_duration_seconds"] == 1200
    assert summary["first_joined_at"] == T0.isoformat()
    assert summary["last_left_at"] == (T0 + timedelta(minutes=30)).isoformat()
    assert summary["intervals"][0]["left_at"] == (T0 + timedelta(minutes=10)).isoformat()
    assert summary["intervals"][1]["left_at"] is None


def test_summary_for_participant_without_intervals():
    [summary] = payloads.summarize_attendance([_participant("p1", "Bob Lee")], [], T0)

    assert summary["interval_count"] == 0
    assert summary["total_duration_seconds"] == 0
    assert summary["first_joined_at"] is None
    assert summary["last_left_at"] is None


def test_attendance_payload_only_reports_matched_participants():
    alice = _participant("p1", "Alice Smith", "stu-1")
    guest = _participant("p2", "Guest")
    intervals = [_interval("alice smith", 0, 5), _interval("guest", 0, 5)]

    payload = payloads.build_attendance_payload([alice, guest], intervals, T0)

    assert [row["student_id"] for row in payload["attendance"]] == ["stu-1"]
    row = payload["attendance"][0]
    assert row["status"] == "present"
    assert row["duration_seconds"] == 300


def test_participation_payload_skips_unmatched_and_session_level_events():
    alice = _participant("p1", "Alice Smith", "stu-1")
    guest = _participant("p2", "Guest")
    events = [
        ParticipationEvent("e1", "s1", "chat", T0, "p1", {"message": "hi"}),
        ParticipationEvent("e2", "s1", "reaction", T0, "p2"),
        ParticipationEvent("e3", "s1", "platform_switch", T0, None),
    ]

    payload = payloads.build_participation_payload([alice, guest], events)

    assert payload == {
        "logs": [
            {
                "student_id": "stu-1",
                "interaction_type": "chat",
                "timestamp": T0.isoformat(),
                "metadata": {"message": "hi"},
            }
        ]
    }


def test_join_and_leave_payloads():
    alice = _participant("p1", "Alice Smith", "stu-1")
    interval = _interval("alice smith", 0, 5)

    assert payloads.build_join_payload(alice, interval) == {
        "participant_name": "Alice Smith",
        "joined_at": T0.isoformat(),
        "student_id": "stu-1",
    }
    assert payloads.build_leave_payload(alice, interval)["left_at"] == (
        T0 + timedelta(minutes=5)
    ).isoformat()
