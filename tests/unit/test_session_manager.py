"""
Tests for the session & attendance state machine.
"""

import asyncio
from datetime import timedelta

import pytest

from attendance_engine.models.domain.roster_domain import RosterEntry
from attendance_engine.repositories.attendance_repository import AttendanceRepository
from attendance_engine.services.remote.delivery_client import RemoteDeliveryError
from attendance_engine.services.session.engine_state import EngineState
from attendance_engine.services.session.session_manager import (
    ParticipantNotFoundError,
    SessionAlreadyActiveError,
    SessionAlreadyEndedError,
    SessionManager,
    SessionNotFoundError,
    SessionStartError,
    UnknownIdentityError,
    participant_key,
)


@pytest.fixture
def repository(store):
    return AttendanceRepository(store)


@pytest.fixture
def manager(repository, fake_client, clock):
    return SessionManager(repository, fake_client, EngineState(), clock=clock)


def at(clock, seconds):
    return clock.now + timedelta(seconds=seconds)


def assert_no_overlaps(intervals):
    by_key = {}
    for interval in intervals:
        by_key.setdefault(interval.participant_key, []).append(interval)
    for spans in by_key.values():
        spans.sort(key=lambda i: i.opened_at)
        assert sum(1 for span in spans if span.is_open) <= 1
        for earlier, later in zip(spans, spans[1:]):
            assert earlier.closed_at is not None
            assert earlier.closed_at <= later.opened_at


def test_participant_key_is_stable():
    assert participant_key("  Alice   Smith ") == participant_key("alice smith")


@pytest.mark.asyncio
async def test_start_creates_active_session(manager, fake_client):
    session = await manager.start("class-1", meeting_id="abc-defg-hij", platform="google_meet")

    assert session.is_active
    assert session.external_id == "remote-1"
    assert manager.state.active_session_id == session.id
    assert fake_client.created[0][0] == "class-1"
    assert fake_client.created[0][1]["meeting_id"] == "abc-defg-hij"


@pytest.mark.asyncio
async def test_start_while_active_fails(manager, repository):
    await manager.start("class-1")

    with pytest.raises(SessionAlreadyActiveError):
        await manager.start("class-2")

    assert len(await repository.list_sessions()) == 1


@pytest.mark.asyncio
async def test_remote_start_failure_creates_nothing(manager, repository, fake_client):
    fake_client.create_error = RemoteDeliveryError("down", status_code=503)

    with pytest.raises(SessionStartError):
        await manager.start("class-1")

    assert await repository.list_sessions() == []
    assert manager.state.status == "idle"


@pytest.mark.asyncio
async def test_remote_start_runs_outside_the_state_lock(manager, fake_client, clock):
    called, release = asyncio.Event(), asyncio.Event()
    original = fake_client.create_session

    async def slow_create(subject_id, meeting_context):
        called.set()
        await release.wait()
        return await original(subject_id, meeting_context)

    fake_client.create_session = slow_create
    starting = asyncio.create_task(manager.start("class-1"))
    await called.wait()

    assert not manager.state.lock.locked()
    assert manager.state.status == "starting"
    assert await manager.handle_join("Alice Smith", at(clock, 0)) is None
    with pytest.raises(SessionAlreadyActiveError):
        await manager.start("class-2")

    release.set()
    session = await starting

    assert manager.state.status == "active"
    assert manager.state.active_session_id == session.id
    assert len(fake_client.created) == 1


@pytest.mark.asyncio
async def test_join_leave_rejoin_scenario(manager, repository, clock):
    manager.state.roster = [RosterEntry("s-alice", "Alice Smith")]
    session = await manager.start("class-1")

    joined = await manager.handle_join("Alice Smith", at(clock, 0), "p-1")

    assert joined.kind == "join_event"
    assert joined.participant.match_confidence == 1.0
    assert joined.participant.match_method == "exact_name"
    assert joined.interval.matched_identity_id == "s-alice"
    assert len(await repository.list_open_intervals(session.id)) == 1

    left = await manager.handle_leave("Alice Smith", at(clock, 5), "p-1")

    assert left.kind == "leave_event"
    assert left.interval.duration_seconds() == 5.0

    rejoined = await manager.handle_join("Alice Smith", at(clock, 10), "p-2")

    assert rejoined.interval.id != joined.interval.id
    intervals = await repository.list_intervals(session.id)
    assert len(intervals) == 2
    assert intervals[0].closed_at == at(clock, 5)
    assert intervals[1].is_open
    participants = await repository.list_participants(session.id)
    assert len(participants) == 1
    assert participants[0].platform_participant_id == "p-2"
    assert_no_overlaps(intervals)


@pytest.mark.asyncio
async def test_duplicate_join_keeps_one_open_interval(manager, repository, clock):
    session = await manager.start("class-1")

    first = await manager.handle_join("Bob Lee", at(clock, 0))
    second = await manager.handle_join("bob  lee", at(clock, 1))

    assert first is not None
    assert second is None
    assert len(await repository.list_open_intervals(session.id)) == 1
    participant = await repository.get_participant(first.participant.id)
    assert participant.last_signal_at == at(clock, 1)


@pytest.mark.asyncio
async def test_leave_without_open_interval_is_noop(manager, repository, clock):
    session = await manager.start("class-1")
    await manager.handle_join("Bob Lee", at(clock, 0))
    await manager.handle_leave("Bob Lee", at(clock, 3))

    assert await manager.handle_leave("Bob Lee", at(clock, 4)) is None
    assert await manager.handle_leave("Unknown Person", at(clock, 4)) is None

    intervals = await repository.list_intervals(session.id)
    assert len(intervals) == 1
    assert intervals[0].closed_at == at(clock, 3)


@pytest.mark.asyncio
async def test_signals_without_session_or_name_are_ignored(manager, clock):
    assert await manager.handle_join("Alice", at(clock, 0)) is None

    await manager.start("class-1")

    assert await manager.handle_join(None, at(clock, 0)) is None
    assert await manager.handle_join("   ", at(clock, 0)) is None


@pytest.mark.asyncio
async def test_late_rejoin_never_overlaps_previous_interval(manager, repository, clock):
    session = await manager.start("class-1")
    await manager.handle_join("Alice", at(clock, 0))
    await manager.handle_leave("Alice", at(clock, 10))

    fact = await manager.handle_join("Alice", at(clock, 8))

    assert fact.interval.opened_at == at(clock, 10)
    assert_no_overlaps(await repository.list_intervals(session.id))


@pytest.mark.asyncio
async def test_leave_resolved_by_platform_id(manager, clock):
    await manager.start("class-1")
    await manager.handle_join("Alice", at(clock, 0), "p-9")

    fact = await manager.handle_leave(None, at(clock, 2), "p-9")

    assert fact is not None
    assert fact.participant.observed_name == "Alice"


@pytest.mark.asyncio
async def test_end_closes_open_intervals(manager, repository, fake_client, clock):
    session = await manager.start("class-1")
    await manager.handle_join("Alice", at(clock, 0))
    await manager.handle_join("Bob", at(clock, 1))
    clock.advance(30)

    result = await manager.end(session.id)

    assert result.session.status == "ended"
    assert result.session.ended_at == clock.now
    assert len(result.closed_intervals) == 2
    assert await repository.list_open_intervals(session.id) == []
    assert all(i.closed_at == clock.now for i in await repository.list_intervals(session.id))
    assert result.remote_confirmed is True
    assert fake_client.ended == [("remote-1", clock.now)]
    assert manager.state.status == "idle"


@pytest.mark.asyncio
async def test_end_twice_and_unknown(manager):
    session = await manager.start("class-1")
    await manager.end(session.id)

    with pytest.raises(SessionAlreadyEndedError):
        await manager.end(session.id)
    with pytest.raises(SessionNotFoundError):
        await manager.end("missing")


@pytest.mark.asyncio
async def test_end_stands_when_remote_fails(manager, repository, fake_client):
    session = await manager.start("class-1")
    fake_client.end_error = RemoteDeliveryError("timeout", status_code=504)

    result = await manager.end(session.id)

    assert result.remote_confirmed is False
    assert "timeout" in result.remote_error
    stored = await repository.get_session(session.id)
    assert stored.status == "ended"
    # A new session can start right away
    await manager.start("class-2")


@pytest.mark.asyncio
async def test_roster_arrival_rematches_without_duplicates(manager, repository, clock):
    session = await manager.start("class-1")
    fact = await manager.handle_join("Bob Lee", at(clock, 0))

    assert fact.participant.match_method == "none"

    matched = await manager.reconcile_roster([RosterEntry("s-bob", "Bob Lee")])

    assert [p.id for p in matched] == [fact.participant.id]
    participants = await repository.list_participants(session.id)
    assert len(participants) == 1
    assert participants[0].matched_identity_id == "s-bob"
    intervals = await repository.list_intervals(session.id)
    assert intervals[0].matched_identity_id == "s-bob"

    # Second pass is a no-op
    assert await manager.reconcile_roster([RosterEntry("s-bob", "Bob Lee")]) == []


@pytest.mark.asyncio
async def test_rematch_runs_in_arrival_order(manager, clock):
    await manager.start("class-1")
    await manager.handle_join("Jon Doe", at(clock, 0))
    await manager.handle_join("Alice Smith", at(clock, 1))

    matched = await manager.reconcile_roster(
        [RosterEntry("s-alice", "Alice Smith"), RosterEntry("s-john", "John Doe")]
    )

    assert [p.observed_name for p in matched] == ["Jon Doe", "Alice Smith"]
    assert matched[0].match_method == "fuzzy_match"


@pytest.mark.asyncio
async def test_manual_match_wins_and_is_never_overwritten(manager, repository, clock):
    manager.state.roster = [RosterEntry("s-1", "Jon Doe"), RosterEntry("s-2", "John Doe")]
    session = await manager.start("class-1")
    fact = await manager.handle_join("Jon Doe", at(clock, 0))
    assert fact.participant.matched_identity_id == "s-1"

    participant = await manager.manual_match(fact.participant.id, "s-2")

    assert participant.match_method == "manual"
    assert participant.match_confidence == 1.0
    assert participant.matched_identity_id == "s-2"
    intervals = await repository.list_intervals(session.id)
    assert intervals[0].matched_identity_id == "s-2"

    await manager.reconcile_roster([RosterEntry("s-1", "Jon Doe")])

    stored = await repository.get_participant(fact.participant.id)
    assert stored.matched_identity_id == "s-2"
    assert stored.match_method == "manual"


@pytest.mark.asyncio
async def test_manual_match_errors_do_not_mutate(manager, repository, clock):
    manager.state.roster = [RosterEntry("s-1", "Alice Smith")]
    await manager.start("class-1")
    fact = await manager.handle_join("Somebody", at(clock, 0))

    with pytest.raises(UnknownIdentityError):
        await manager.manual_match(fact.participant.id, "s-404")
    with pytest.raises(ParticipantNotFoundError):
        await manager.manual_match("missing", "s-1")

    stored = await repository.get_participant(fact.participant.id)
    assert stored.match_method == "none"
    assert stored.matched_identity_id is None


@pytest.mark.asyncio
async def test_participation_events(manager, repository, clock):
    session = await manager.start("class-1")
    await manager.handle_join("Alice", at(clock, 0))

    chat = await manager.record_participation(
        "CHAT_MESSAGE",
        {"participant_name": "Alice", "message": "hello", "timestamp": at(clock, 3)},
    )
    dropped = await manager.record_participation("REACTION", {"participant_name": "Ghost"})
    switch = await manager.record_participation("PLATFORM_SWITCH", {"platform": "zoom"})

    assert chat.event_type == "chat"
    assert chat.event_data == {"message": "hello"}
    assert chat.timestamp == at(clock, 3)
    assert dropped is None
    assert switch.event_type == "platform_switch"
    assert switch.participant_id is None
    assert len(await repository.list_events(session.id)) == 2


@pytest.mark.asyncio
async def test_status_snapshot(manager, clock):
    assert (await manager.get_status())["status"] == "idle"

    manager.state.roster = [RosterEntry("s-1", "Alice Smith")]
    await manager.start("class-1")
    await manager.handle_join("Alice Smith", at(clock, 0))
    await manager.handle_join("Stranger", at(clock, 1))

    status = await manager.get_status()

    assert status["status"] == "active"
    assert status["session"]["participant_count"] == 2
    assert status["session"]["matched_count"] == 1
    assert status["session"]["present_count"] == 2


@pytest.mark.asyncio
async def test_active_session_recovered_from_store(repository, fake_client, clock):
    first = SessionManager(repository, fake_client, EngineState(), clock=clock)
    session = await first.start("class-1")

    restarted = SessionManager(repository, fake_client, EngineState(), clock=clock)

    assert (await restarted.get_active_session()).id == session.id
    with pytest.raises(SessionAlreadyActiveError):
        await restarted.start("class-2")
