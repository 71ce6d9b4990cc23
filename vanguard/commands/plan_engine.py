"""
Plan Execution Engine for Project Vanguard

Owns every unit's active plan and advances them once per world tick.

STATE MACHINE (per plan):
    PENDING -> ACTIVE <-> WAITING_ON_TRIGGER -> COMPLETED
    any non-terminal state -> FAILED | INTERRUPTED

TICK (per active plan, in submission order):
    1. Unit destroyed or missing -> FAILED
    2. Current step RUNNING: done once duration_ms has elapsed since it
       started (zero duration = done on the next tick). Done -> advance.
    3. Current step PENDING: evaluate its compiled trigger against a fresh
       context. False -> WAITING_ON_TRIGGER, nothing else this tick.
       True -> one capability call through the translator, step RUNNING.
    4. After advancing, the next step is evaluated in the same tick.
       Past the last step -> COMPLETED.

FAILURE POLICY (fixed per engine):
    abort - a failed capability call fails the whole plan
    skip  - the step is marked failed and the plan moves on; the plan
            still reports success=False when it completes

Every terminal outcome emits exactly one event (plan_completed or
plan_interrupted) and the plan leaves the active set.
"""

from collections import deque
from typing import Any, Dict, List, Optional, Union

from vanguard.ai.validation import ActionValidator, ValidationResult
from vanguard.commands.executor import CommandTranslator
from vanguard.commands.triggers import evaluate
from vanguard.config import DEFAULT_STEP_FAILURE_POLICY, STEP_FAILURE_SKIP, VALID_FAILURE_POLICIES
from vanguard.errors import ActionExecutionError
from vanguard.models.plan import Plan, PlanState, PlanStep, StepStatus
from vanguard.models.world_state import WorldState
from vanguard.utils.events import EventLog, EventType

# Terminal plans kept for inspection (GET /plans, tests)
DEFAULT_PLAN_HISTORY = 100


class PlanExecutionEngine:
    """
    Runs multi-step plans against the world.

    Usage:
        engine = PlanExecutionEngine(world, translator, events)
        engine.execute_plan("alpha", validation_result)
        engine.tick(world.time_ms)      # once per world tick
    """

    def __init__(self, world: WorldState, translator: CommandTranslator, events: EventLog,
                 validator: Optional[ActionValidator] = None,
                 failure_policy: str = DEFAULT_STEP_FAILURE_POLICY,
                 history_size: int = DEFAULT_PLAN_HISTORY):
        if failure_policy not in VALID_FAILURE_POLICIES:
            raise ValueError(f"Unknown step failure policy: {failure_policy}")

        self.world = world
        self.translator = translator
        self.events = events
        self.validator = validator or ActionValidator()
        self.failure_policy = failure_policy

        # unit_id -> plan. Dict order is submission order.
        self._plans: Dict[str, Plan] = {}
        self._plan_counter = 0
        self.plan_history: deque = deque(maxlen=history_size)
        self.last_error: Optional[str] = None

        self._stats = {
            "plans_started": 0,
            "plans_completed": 0,
            "plans_failed": 0,
            "plans_interrupted": 0,
            "steps_executed": 0,
            "steps_failed": 0,
        }
        self._finished_plans = 0
        self._average_duration_ms = 0.0

    # ══════════════════════════════════════════════════════════════════════════
    # PLAN SUBMISSION
    # ══════════════════════════════════════════════════════════════════════════

    def execute_plan(self, unit_id: str, plan_data: Union[ValidationResult, Any],
                     generation: int = 0) -> bool:
        """
        Start a plan for a unit, superseding any plan it already has.

        Args:
            unit_id: Unit that will run the plan
            plan_data: A valid ValidationResult, or raw step data which is
                validated here against the unit's archetype
            generation: Orchestrator generation the plan was issued under

        Returns:
            True if the plan started. On False, last_error says why and no
            existing plan was touched.
        """
        self.last_error = None
        unit = self.world.get_unit(unit_id)
        if unit is None:
            self.last_error = f"unknown unit: {unit_id}"
            return False

        if isinstance(plan_data, ValidationResult):
            result = plan_data
        else:
            result = self.validator.validate_plan(plan_data, unit.archetype)
        if not result.valid:
            self.last_error = result.error or "invalid plan"
            return False
        if not result.steps:
            self.last_error = "plan has no steps"
            return False

        if unit_id in self._plans:
            self.interrupt_plan(unit_id, "superseded")

        self._plan_counter += 1
        plan = Plan(
            plan_id=f"plan-{self._plan_counter}",
            unit_id=unit_id,
            steps=[PlanStep.from_compiled(c) for c in result.steps],
            generation=generation,
            created_ms=self.world.time_ms,
        )
        plan.state = PlanState.ACTIVE
        self._plans[unit_id] = plan
        self._stats["plans_started"] += 1

        self.events.emit(
            EventType.PLAN_STARTED,
            unit_id=unit_id,
            plan_id=plan.plan_id,
            generation=generation,
            steps=[step.descriptor.to_dict() for step in plan.steps],
        )
        return True

    # ══════════════════════════════════════════════════════════════════════════
    # TICK
    # ══════════════════════════════════════════════════════════════════════════

    def tick(self, now_ms: Optional[int] = None) -> None:
        """Advance every active plan once, in submission order."""
        if now_ms is None:
            now_ms = self.world.time_ms
        for unit_id in list(self._plans):
            plan = self._plans.get(unit_id)
            # A listener may have ended or replaced it earlier this tick
            if plan is None or plan.is_terminal:
                continue
            self._advance(plan, now_ms)

    def _advance(self, plan: Plan, now_ms: int) -> None:
        unit = self.world.get_unit(plan.unit_id)
        if unit is None:
            self._finish(plan, PlanState.FAILED, now_ms, reason="unit missing")
            return
        if unit.is_dead():
            self._finish(plan, PlanState.FAILED, now_ms, reason="unit destroyed")
            return

        context = self.world.build_execution_context(plan.unit_id, plan.created_ms)

        while not plan.is_terminal:
            step = plan.current_step
            if step is None:
                self._finish(plan, PlanState.COMPLETED, now_ms)
                return

            if step.status == StepStatus.RUNNING:
                if now_ms - step.started_ms < step.descriptor.duration_ms:
                    return
                step.status = StepStatus.DONE
                plan.current_step_index += 1
                continue

            if not step.trigger.always_true:
                fired = evaluate(step.trigger, context)
                self.events.emit(
                    EventType.TRIGGER_EVALUATED,
                    unit_id=plan.unit_id,
                    plan_id=plan.plan_id,
                    step_index=plan.current_step_index,
                    expr=step.descriptor.trigger,
                    result=fired,
                )
                if not fired:
                    plan.state = PlanState.WAITING_ON_TRIGGER
                    return

            plan.state = PlanState.ACTIVE
            if self._start_step(plan, step, unit, now_ms):
                # Started steps finish on a later tick
                return

            if self.failure_policy != STEP_FAILURE_SKIP:
                self._finish(plan, PlanState.FAILED, now_ms, reason=step.error)
                return
            plan.current_step_index += 1

    def _start_step(self, plan: Plan, step: PlanStep, unit, now_ms: int) -> bool:
        """Issue the step's capability call. False if it failed."""
        try:
            result = self.translator.dispatch(unit, step.descriptor)
        except ActionExecutionError as e:
            step.status = StepStatus.FAILED
            step.error = e.message
            plan.failed_steps += 1
            self._stats["steps_failed"] += 1
            self.events.emit(
                EventType.STEP_FAILED,
                unit_id=plan.unit_id,
                plan_id=plan.plan_id,
                step_index=plan.current_step_index,
                step=step.descriptor.to_dict(),
                error=e.message,
            )
            return False

        step.status = StepStatus.RUNNING
        step.started_ms = now_ms
        step.result = result
        self._stats["steps_executed"] += 1
        self.events.emit(
            EventType.STEP_EXECUTED,
            unit_id=plan.unit_id,
            plan_id=plan.plan_id,
            step_index=plan.current_step_index,
            step=step.descriptor.to_dict(),
            result=result,
        )
        return True

    def _finish(self, plan: Plan, state: PlanState, now_ms: int, reason: Optional[str] = None) -> None:
        """Move a plan to a terminal state, report it once, drop it."""
        plan.state = state
        plan.finished_ms = now_ms
        plan.end_reason = reason

        if state == PlanState.COMPLETED:
            self._stats["plans_completed"] += 1
        elif state == PlanState.FAILED:
            self._stats["plans_failed"] += 1
        else:
            self._stats["plans_interrupted"] += 1

        self._finished_plans += 1
        duration = max(0, now_ms - plan.created_ms)
        self._average_duration_ms += (duration - self._average_duration_ms) / self._finished_plans
        self.plan_history.append(plan)

        if state == PlanState.INTERRUPTED:
            self.events.emit(EventType.PLAN_INTERRUPTED, unit_id=plan.unit_id,
                             plan_id=plan.plan_id, reason=reason)
        else:
            success = state == PlanState.COMPLETED and plan.failed_steps == 0
            data = {"unit_id": plan.unit_id, "plan_id": plan.plan_id, "success": success}
            if reason:
                data["reason"] = reason
            self.events.emit(EventType.PLAN_COMPLETED, **data)

        # A listener may already have started a replacement plan
        if self._plans.get(plan.unit_id) is plan:
            del self._plans[plan.unit_id]

    # ══════════════════════════════════════════════════════════════════════════
    # INTERRUPTION
    # ══════════════════════════════════════════════════════════════════════════

    def interrupt_plan(self, unit_id: str, reason: str = "interrupted") -> bool:
        """
        Interrupt a unit's active plan. Idempotent.

        Returns:
            True if a plan was interrupted, False if there was none
        """
        plan = self._plans.get(unit_id)
        if plan is None or plan.is_terminal:
            return False
        self._finish(plan, PlanState.INTERRUPTED, self.world.time_ms, reason=reason)
        return True

    def interrupt_all(self, reason: str = "interrupted") -> int:
        """Interrupt every active plan. Returns how many were interrupted."""
        return sum(1 for unit_id in list(self._plans) if self.interrupt_plan(unit_id, reason))

    # ══════════════════════════════════════════════════════════════════════════
    # QUERIES
    # ══════════════════════════════════════════════════════════════════════════

    def get_plan(self, unit_id: str) -> Optional[Plan]:
        return self._plans.get(unit_id)

    def has_active_plan(self, unit_id: str) -> bool:
        return unit_id in self._plans

    def active_unit_ids(self) -> List[str]:
        return list(self._plans)

    def get_statistics(self) -> Dict[str, Any]:
        stats = dict(self._stats)
        stats["active_plans"] = len(self._plans)
        stats["average_plan_duration_ms"] = round(self._average_duration_ms, 1)
        return stats
