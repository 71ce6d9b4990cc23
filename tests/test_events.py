"""
Tests for the event log.

Run with: pytest tests/test_events.py -v
"""

import pytest

from vanguard.utils.events import EventLog, EventType


@pytest.fixture
def log():
    return EventLog(max_history=5)


class TestEventLog:

    def test_emit_records_history(self, log):
        event = log.emit(EventType.PLAN_STARTED, unit_id="alpha", plan_id="plan-1")
        assert event.sequence == 1
        assert event.data == {"unit_id": "alpha", "plan_id": "plan-1"}
        assert log.history() == [event]

    def test_sequence_increases(self, log):
        first = log.emit(EventType.PROCESSING_STARTED)
        second = log.emit(EventType.PROCESSING_FINISHED)
        assert second.sequence == first.sequence + 1
        assert log.last_sequence == 2

    def test_filter_by_type(self, log):
        log.emit(EventType.STEP_EXECUTED, unit_id="alpha")
        log.emit(EventType.STEP_FAILED, unit_id="alpha")
        log.emit(EventType.STEP_EXECUTED, unit_id="bravo")
        executed = log.history(EventType.STEP_EXECUTED)
        assert [e.data["unit_id"] for e in executed] == ["alpha", "bravo"]
        assert log.count(EventType.STEP_FAILED) == 1

    def test_since(self, log):
        log.emit(EventType.PLAN_STARTED)
        marker = log.last_sequence
        later = log.emit(EventType.PLAN_COMPLETED)
        assert log.since(marker) == [later]

    def test_history_is_bounded(self, log):
        for _ in range(8):
            log.emit(EventType.TRIGGER_EVALUATED)
        history = log.history()
        assert len(history) == 5
        assert history[0].sequence == 4
        # Sequence keeps counting past the retained window
        assert log.last_sequence == 8

    def test_clear_keeps_sequence(self, log):
        log.emit(EventType.PLAN_STARTED)
        log.clear()
        assert log.history() == []
        assert log.emit(EventType.PLAN_STARTED).sequence == 2

    def test_to_dict(self, log):
        event = log.emit(EventType.PLAN_INTERRUPTED, unit_id="echo", reason="player")
        assert event.to_dict() == {
            "event_type": "plan_interrupted",
            "sequence": 1,
            "data": {"unit_id": "echo", "reason": "player"},
        }


class TestSubscribers:

    def test_typed_listener(self, log):
        seen = []
        log.subscribe(seen.append, EventType.PLAN_COMPLETED)
        log.emit(EventType.PLAN_STARTED)
        log.emit(EventType.PLAN_COMPLETED, success=True)
        assert [e.event_type for e in seen] == [EventType.PLAN_COMPLETED]

    def test_wildcard_listener(self, log):
        seen = []
        log.subscribe(seen.append)
        log.emit(EventType.PLAN_STARTED)
        log.emit(EventType.PLAN_COMPLETED)
        assert len(seen) == 2

    def test_unsubscribe(self, log):
        seen = []
        log.subscribe(seen.append, EventType.PLAN_STARTED)
        log.unsubscribe(seen.append, EventType.PLAN_STARTED)
        log.emit(EventType.PLAN_STARTED)
        assert seen == []

    def test_failing_listener_does_not_break_emit(self, log):
        seen = []

        def broken(event):
            raise RuntimeError("ui crashed")

        log.subscribe(broken)
        log.subscribe(seen.append)
        event = log.emit(EventType.STEP_EXECUTED)
        assert seen == [event]
        assert log.history() == [event]
