"""
Plan Model for Project Vanguard
Data structures for multi-step, trigger-gated unit plans.

A Plan belongs to exactly one unit and is an ordered list of PlanSteps.
Each step wraps a validated ActionDescriptor plus its compiled trigger.

PLAN LIFECYCLE:
    PENDING -> ACTIVE <-> WAITING_ON_TRIGGER -> COMPLETED
                 |               |
                 +-------+-------+
                         v
               FAILED / INTERRUPTED

Plans are built from validated data only, mutated only by the
PlanExecutionEngine, and dropped from the active set once terminal.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from vanguard.commands.triggers import TriggerAST, ALWAYS_TRUE
from vanguard.models.unit import ActionKind


class PlanState(Enum):
    PENDING = "pending"
    ACTIVE = "active"
    WAITING_ON_TRIGGER = "waiting_on_trigger"
    COMPLETED = "completed"
    FAILED = "failed"
    INTERRUPTED = "interrupted"


TERMINAL_STATES = {PlanState.COMPLETED, PlanState.FAILED, PlanState.INTERRUPTED}


class StepStatus(Enum):
    PENDING = "pending"      # trigger not yet true
    RUNNING = "running"      # capability call issued
    DONE = "done"
    FAILED = "failed"


@dataclass(frozen=True)
class ActionDescriptor:
    """
    One atomic, schema-validated unit of work.

    Attributes:
        kind: The action to perform
        params: Action parameters (target, x, y, ability, stance, waypoints)
        trigger: Trigger text as received ("" = unconditional)
        speech: Line the unit says when the action starts
        duration_ms: How long the step stays running (0 = one tick)
        unit_id: Addressed unit (None until routed to a unit)
    """
    kind: ActionKind
    params: Dict[str, Any] = field(default_factory=dict)
    trigger: str = ""
    speech: str = ""
    duration_ms: int = 0
    unit_id: Optional[str] = None

    def for_unit(self, unit_id: str) -> "ActionDescriptor":
        return ActionDescriptor(
            kind=self.kind,
            params=dict(self.params),
            trigger=self.trigger,
            speech=self.speech,
            duration_ms=self.duration_ms,
            unit_id=unit_id,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "unit_id": self.unit_id,
            "action": self.kind.value,
            "params": dict(self.params),
            "trigger": self.trigger,
            "speech": self.speech,
            "duration_ms": int(self.duration_ms),
        }


@dataclass(frozen=True)
class CompiledAction:
    """A validated descriptor with its trigger compiled. Immutable, shareable."""
    descriptor: ActionDescriptor
    trigger: TriggerAST = ALWAYS_TRUE


@dataclass
class PlanStep:
    """Runtime state of one step inside one plan."""
    descriptor: ActionDescriptor
    trigger: TriggerAST = ALWAYS_TRUE
    status: StepStatus = StepStatus.PENDING
    started_ms: Optional[int] = None
    error: Optional[str] = None
    result: Optional[Dict[str, Any]] = None

    @classmethod
    def from_compiled(cls, compiled: CompiledAction) -> "PlanStep":
        return cls(descriptor=compiled.descriptor, trigger=compiled.trigger)

    def to_dict(self) -> Dict[str, Any]:
        data = self.descriptor.to_dict()
        data["status"] = self.status.value
        data["started_ms"] = self.started_ms
        if self.error:
            data["error"] = self.error
        return data


@dataclass
class Plan:
    """
    A unit's multi-step plan.

    Attributes:
        plan_id: Unique id assigned by the engine
        unit_id: Owning unit
        generation: Orchestrator generation the plan was issued under
        steps: Ordered steps
        current_step_index: Index of the step being evaluated/run
        state: Lifecycle state
        created_ms: World time the plan was accepted
        finished_ms: World time the plan went terminal
        end_reason: Interruption/failure reason, if any
    """
    plan_id: str
    unit_id: str
    steps: List[PlanStep]
    generation: int = 0
    current_step_index: int = 0
    state: PlanState = PlanState.PENDING
    created_ms: int = 0
    finished_ms: Optional[int] = None
    end_reason: Optional[str] = None
    failed_steps: int = 0

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES

    @property
    def current_step(self) -> Optional[PlanStep]:
        if 0 <= self.current_step_index < len(self.steps):
            return self.steps[self.current_step_index]
        return None

    @property
    def duration_ms(self) -> Optional[int]:
        if self.finished_ms is None:
            return None
        return self.finished_ms - self.created_ms

    def to_dict(self) -> Dict[str, Any]:
        return {
            "plan_id": self.plan_id,
            "unit_id": self.unit_id,
            "generation": self.generation,
            "state": self.state.value,
            "current_step_index": self.current_step_index,
            "steps": [s.to_dict() for s in self.steps],
            "created_ms": self.created_ms,
            "finished_ms": self.finished_ms,
            "end_reason": self.end_reason,
            "failed_steps": self.failed_steps,
        }
