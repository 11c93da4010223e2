"""Unit tests for election notifications."""

import logging
import threading
import time

import pytest

from ballot.services.engine import ElectionEngine
from ballot.services.errors import AlreadyVotedError, PhaseError
from ballot.services.events import (
    ElectionEvent,
    EventType,
    InMemoryEventLog,
    LoggingEventSink,
)

ADMIN = "admin"


def test_events_follow_acceptance_order(engine, event_log):
    engine.add_candidate(ADMIN, "Alice", "Parks")
    engine.add_voter(ADMIN, "alice")
    engine.add_voter(ADMIN, "bob")
    engine.start_election(ADMIN)
    engine.delegate("bob", "alice")
    engine.vote("alice", 1)
    engine.end_election(ADMIN)
    engine.flush()

    events = event_log.list_events()
    assert [e.event_type for e in events] == [
        EventType.CANDIDATE_ADDED,
        EventType.VOTER_ADDED,
        EventType.VOTER_ADDED,
        EventType.ELECTION_STARTED,
        EventType.VOTE_DELEGATED,
        EventType.VOTE_CAST,
        EventType.ELECTION_ENDED,
    ]
    assert [e.sequence for e in events] == list(range(1, 8))
    assert events[0].payload == {"candidate_id": 1}
    assert events[1].payload == {"identity": "alice"}
    assert events[4].payload == {"identity": "bob", "target": "alice"}
    assert events[5].payload == {"identity": "alice", "candidate_id": 1}


def test_rejected_operations_emit_nothing(voting_engine, event_log):
    voting_engine.flush()
    before = len(event_log)
    voting_engine.vote("alice", 1)

    with pytest.raises(AlreadyVotedError):
        voting_engine.vote("alice", 2)
    with pytest.raises(PhaseError):
        voting_engine.add_voter(ADMIN, "erin")
    voting_engine.flush()

    assert len(event_log) == before + 1


def test_list_events_filters(voting_engine, event_log):
    voting_engine.vote("alice", 1)
    voting_engine.vote("bob", 2)
    voting_engine.flush()

    votes = event_log.list_events(event_type=EventType.VOTE_CAST)
    assert [e.payload["identity"] for e in votes] == ["alice", "bob"]

    latest = event_log.list_events(since=votes[0].sequence)
    assert [e.sequence for e in latest] == [votes[1].sequence]


def test_event_log_drops_redelivered_events():
    log = InMemoryEventLog()
    event = ElectionEvent(sequence=1, event_type=EventType.ELECTION_STARTED)

    log(event)
    log(event)

    assert len(log) == 1


def test_failing_sink_does_not_undo_operation(caplog):
    def broken_sink(event):
        raise RuntimeError("sink unavailable")

    log = InMemoryEventLog()
    engine = ElectionEngine(ADMIN, sinks=[broken_sink, log])

    with caplog.at_level(logging.ERROR):
        candidate = engine.add_candidate(ADMIN, "Alice", "Parks")
        engine.flush()

    assert candidate.id == 1
    assert engine.get_election().candidate_count == 1
    assert len(log) == 1
    assert "failed on event #1" in caplog.text


def test_subscribe_receives_later_events(engine):
    late = InMemoryEventLog()
    engine.add_voter(ADMIN, "alice")
    engine.subscribe(late)

    engine.start_election(ADMIN)
    engine.flush()

    assert [e.event_type for e in late.list_events()] == [EventType.ELECTION_STARTED]


def test_logging_sink_writes_structured_record(caplog):
    sink = LoggingEventSink()
    event = ElectionEvent(
        sequence=3,
        event_type=EventType.VOTE_CAST,
        payload={"identity": "alice", "candidate_id": 2},
    )

    with caplog.at_level(logging.INFO, logger="election.events"):
        sink(event)

    record = caplog.records[-1]
    assert record.extra_fields["event_type"] == "vote_cast"
    assert record.extra_fields["candidate_id"] == 2
    assert "vote_cast" in record.getMessage()


# ============================================
# DELIVERY
# ============================================


def test_slow_sink_does_not_block_reads(voting_engine):
    """A sink stuck on an event must not hold the engine lock."""
    release = threading.Event()
    delivered = []

    def slow_sink(event):
        release.wait(timeout=5)
        delivered.append(event.event_type)

    voting_engine.subscribe(slow_sink)
    voter = threading.Thread(target=voting_engine.vote, args=("alice", 1))
    voter.start()
    voter.join(timeout=1)
    assert not voter.is_alive()

    started = time.monotonic()
    assert voting_engine.get_candidate(1).vote_count == 1
    assert time.monotonic() - started < 0.2
    assert delivered == []

    release.set()
    voting_engine.flush()
    assert delivered == [EventType.VOTE_CAST]


def test_close_delivers_pending_events():
    log = InMemoryEventLog()
    engine = ElectionEngine(ADMIN, sinks=[log])
    engine.add_candidate(ADMIN, "Alice", "Parks")
    engine.add_voter(ADMIN, "alice")

    engine.close()

    assert [e.sequence for e in log.list_events()] == [1, 2]
