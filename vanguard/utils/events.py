"""
Event log for Project Vanguard.

Components never talk to the UI or telemetry directly. They receive an
EventLog in their constructor and emit() into it; external collaborators
subscribe() to the log or read its history.

Event payloads (data keys):
    processing_started     request_id, text, units
    processing_finished    request_id
    command_processed      commands, message
    plan_processed         plans, message
    command_failed         error (+ command_id / request_id when known)
    command_executed       command_id, result
    plan_started           unit_id, plan_id, steps
    step_executed          unit_id, plan_id, step
    step_failed            unit_id, plan_id, step, error
    trigger_evaluated      unit_id, expr, result
    plan_completed         unit_id, plan_id, success
    plan_interrupted       unit_id, plan_id, reason
"""

from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional


class EventType(Enum):
    """Events observed by external collaborators."""
    # Orchestrator
    PROCESSING_STARTED = "processing_started"
    PROCESSING_FINISHED = "processing_finished"
    COMMAND_PROCESSED = "command_processed"
    PLAN_PROCESSED = "plan_processed"
    COMMAND_FAILED = "command_failed"

    # Translator
    COMMAND_EXECUTED = "command_executed"

    # Execution engine
    PLAN_STARTED = "plan_started"
    STEP_EXECUTED = "step_executed"
    STEP_FAILED = "step_failed"
    TRIGGER_EVALUATED = "trigger_evaluated"
    PLAN_COMPLETED = "plan_completed"
    PLAN_INTERRUPTED = "plan_interrupted"


@dataclass
class Event:
    """One emitted event. `sequence` is unique and increasing per log."""
    event_type: EventType
    sequence: int
    data: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "event_type": self.event_type.value,
            "sequence": self.sequence,
            "data": self.data,
        }


Listener = Callable[[Event], None]


class EventLog:
    """
    Synchronous event sink with bounded history.

    Listeners run inline inside emit(), on the tick that produced the
    event. A listener that raises is reported and skipped so one bad
    subscriber cannot break plan execution.
    """

    def __init__(self, max_history: int = 1000):
        self._history: deque = deque(maxlen=max_history)
        self._listeners: Dict[Optional[EventType], List[Listener]] = {}
        self._sequence = 0

    def subscribe(self, listener: Listener, event_type: Optional[EventType] = None) -> None:
        """Register a listener for one event type, or all events if None."""
        self._listeners.setdefault(event_type, []).append(listener)

    def unsubscribe(self, listener: Listener, event_type: Optional[EventType] = None) -> None:
        listeners = self._listeners.get(event_type, [])
        if listener in listeners:
            listeners.remove(listener)

    def emit(self, event_type: EventType, **data) -> Event:
        self._sequence += 1
        event = Event(event_type=event_type, sequence=self._sequence, data=data)
        self._history.append(event)

        for listener in self._listeners.get(event_type, []) + self._listeners.get(None, []):
            try:
                listener(event)
            except Exception as e:
                print(f"EventLog: listener {getattr(listener, '__name__', listener)} "
                      f"failed on {event_type.value}: {type(e).__name__}: {e}")
        return event

    def history(self, event_type: Optional[EventType] = None) -> List[Event]:
        """All retained events, optionally filtered by type (oldest first)."""
        if event_type is None:
            return list(self._history)
        return [e for e in self._history if e.event_type == event_type]

    def since(self, sequence: int) -> List[Event]:
        """Events emitted after the given sequence number."""
        return [e for e in self._history if e.sequence > sequence]

    def count(self, event_type: EventType) -> int:
        return sum(1 for e in self._history if e.event_type == event_type)

    def clear(self) -> None:
        self._history.clear()

    @property
    def last_sequence(self) -> int:
        return self._sequence
