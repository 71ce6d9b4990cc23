"""
Tests for the plan execution engine.

Tests cover:
1. Conditional retreat-then-heal plan running to completion
2. Trigger gating (WAITING_ON_TRIGGER until the condition holds)
3. Step durations
4. Failure policies (abort vs skip)
5. Destroyed/missing units, interruption, supersession
6. Exactly one terminal event per plan, statistics

Run with: pytest tests/test_plan_engine.py -v
"""

import pytest

from vanguard.ai.validation import ActionValidator
from vanguard.commands.executor import CommandTranslator
from vanguard.commands.plan_engine import PlanExecutionEngine
from vanguard.config import STEP_FAILURE_ABORT, STEP_FAILURE_SKIP
from vanguard.models.plan import PlanState, StepStatus
from vanguard.models.unit import Unit
from vanguard.models.world_state import WorldState
from vanguard.utils.events import EventLog, EventType


def step(action, trigger="", duration_ms=0, speech="", **params):
    full_params = {"target": None, "x": None, "y": None, "ability": None,
                   "stance": None, "waypoints": None}
    full_params.update(params)
    return {"action": action, "params": full_params, "trigger": trigger,
            "speech": speech, "duration_ms": duration_ms}


def make_engine(world, events, policy=STEP_FAILURE_ABORT):
    translator = CommandTranslator(world, events)
    return PlanExecutionEngine(world, translator, events, ActionValidator(max_steps_per_plan=10),
                               failure_policy=policy)


def run_tick(world, engine, delta_ms=100):
    world.advance(delta_ms)
    engine.tick(world.time_ms)


def terminal_events(events, unit_id=None):
    found = events.history(EventType.PLAN_COMPLETED) + events.history(EventType.PLAN_INTERRUPTED)
    return [e for e in found if unit_id is None or e.data["unit_id"] == unit_id]


@pytest.fixture
def world():
    world = WorldState(player_team="blue")
    world.add_unit(Unit("alpha", "soldier", "blue", position=(0, 0)))
    world.add_unit(Unit("doc", "medic", "blue", position=(2, 0)))
    world.add_unit(Unit("raider_1", "soldier", "red", position=(200, 200)))
    world.set_rally_point("blue", (-50, -50))
    return world


@pytest.fixture
def events():
    return EventLog()


@pytest.fixture
def engine(world, events):
    return make_engine(world, events)


# ════════════════════════════════════════════════════════════════════════════════
# CONDITIONAL RETREAT
# ════════════════════════════════════════════════════════════════════════════════

class TestConditionalRetreat:
    """Medic at 15% health with 'retreat if health below 20%, then heal'."""

    def test_plan_runs_to_completion(self, world, events, engine):
        doc = world.get_unit("doc")
        doc.health = doc.max_health * 0.15

        assert engine.execute_plan("doc", [step("retreat", trigger="health_pct < 20"), step("heal")])
        started = events.history(EventType.PLAN_STARTED)
        assert len(started) == 1
        assert started[0].data["plan_id"] == "plan-1"
        assert [s["action"] for s in started[0].data["steps"]] == ["retreat", "heal"]

        # Tick 1: trigger true, retreat issued
        run_tick(world, engine)
        evaluated = events.history(EventType.TRIGGER_EVALUATED)
        assert len(evaluated) == 1
        assert evaluated[0].data["expr"] == "health_pct < 20"
        assert evaluated[0].data["result"] is True
        assert doc.retreating
        assert doc.destination == (-50.0, -50.0)

        # Tick 2: retreat done, heal issued
        run_tick(world, engine)
        executed = events.history(EventType.STEP_EXECUTED)
        assert [e.data["step"]["action"] for e in executed] == ["retreat", "heal"]
        assert doc.get_health_percentage() > 15

        # Tick 3: heal done, plan complete
        run_tick(world, engine)
        completed = events.history(EventType.PLAN_COMPLETED)
        assert len(completed) == 1
        assert completed[0].data == {"unit_id": "doc", "plan_id": "plan-1", "success": True}
        assert not engine.has_active_plan("doc")
        assert engine.plan_history[-1].state == PlanState.COMPLETED

    def test_waits_until_trigger_holds(self, world, events, engine):
        doc = world.get_unit("doc")
        engine.execute_plan("doc", [step("retreat", trigger="health_pct < 20"), step("heal")])

        for _ in range(3):
            run_tick(world, engine)
        plan = engine.get_plan("doc")
        assert plan.state == PlanState.WAITING_ON_TRIGGER
        assert plan.current_step.status == StepStatus.PENDING
        assert events.count(EventType.STEP_EXECUTED) == 0
        results = [e.data["result"] for e in events.history(EventType.TRIGGER_EVALUATED)]
        assert results == [False, False, False]

        doc.take_damage(doc.max_health * 0.9)
        run_tick(world, engine)
        assert plan.state == PlanState.ACTIVE
        assert events.count(EventType.STEP_EXECUTED) == 1

    def test_unconditional_step_skips_evaluation(self, world, events, engine):
        engine.execute_plan("alpha", [step("hold")])
        run_tick(world, engine)
        assert events.count(EventType.TRIGGER_EVALUATED) == 0
        assert events.count(EventType.STEP_EXECUTED) == 1

    def test_time_trigger_counts_from_plan_start(self, world, events, engine):
        world.advance(5000)
        engine.execute_plan("alpha", [step("hold", trigger="time >= 1")])
        run_tick(world, engine, 500)
        assert events.count(EventType.STEP_EXECUTED) == 0
        run_tick(world, engine, 500)
        assert events.count(EventType.STEP_EXECUTED) == 1


# ════════════════════════════════════════════════════════════════════════════════
# DURATIONS
# ════════════════════════════════════════════════════════════════════════════════

class TestDurations:

    def test_step_runs_for_its_duration(self, world, events, engine):
        engine.execute_plan("alpha", [step("wait", duration_ms=1000), step("hold")])
        run_tick(world, engine)            # t=100: wait starts
        run_tick(world, engine, 500)       # t=600: still waiting
        assert engine.get_plan("alpha").current_step_index == 0
        run_tick(world, engine, 500)       # t=1100: wait done, hold starts
        plan = engine.get_plan("alpha")
        assert plan.current_step_index == 1
        assert plan.steps[0].status == StepStatus.DONE
        assert plan.steps[1].status == StepStatus.RUNNING

    def test_zero_duration_finishes_next_tick(self, world, events, engine):
        engine.execute_plan("alpha", [step("hold")])
        run_tick(world, engine)
        assert engine.has_active_plan("alpha")
        run_tick(world, engine)
        assert not engine.has_active_plan("alpha")


# ════════════════════════════════════════════════════════════════════════════════
# FAILURE POLICIES
# ════════════════════════════════════════════════════════════════════════════════

class TestFailurePolicy:

    def test_abort_fails_plan(self, world, events, engine):
        engine.execute_plan("alpha", [step("attack", target="zzzzqq"), step("hold")])
        run_tick(world, engine)

        failed = events.history(EventType.STEP_FAILED)
        assert len(failed) == 1
        assert failed[0].data["step_index"] == 0
        assert "not found" in failed[0].data["error"]

        completed = events.history(EventType.PLAN_COMPLETED)
        assert len(completed) == 1
        assert completed[0].data["success"] is False
        assert "not found" in completed[0].data["reason"]
        assert not engine.has_active_plan("alpha")
        assert world.get_unit("alpha").stance == "neutral"

    def test_skip_moves_on(self, world, events):
        engine = make_engine(world, events, policy=STEP_FAILURE_SKIP)
        engine.execute_plan("alpha", [step("attack", target="zzzzqq"), step("hold")])
        run_tick(world, engine)

        assert events.count(EventType.STEP_FAILED) == 1
        # The next step starts in the same tick
        assert world.get_unit("alpha").stance == "hold"
        plan = engine.get_plan("alpha")
        assert plan.steps[0].status == StepStatus.FAILED
        assert plan.failed_steps == 1

        run_tick(world, engine)
        completed = events.history(EventType.PLAN_COMPLETED)
        assert completed[0].data["success"] is False
        assert engine.plan_history[-1].state == PlanState.COMPLETED

    def test_skip_all_steps_failed(self, world, events):
        engine = make_engine(world, events, policy=STEP_FAILURE_SKIP)
        engine.execute_plan("alpha", [step("attack", target="zzzzqq")])
        run_tick(world, engine)
        assert not engine.has_active_plan("alpha")
        assert events.history(EventType.PLAN_COMPLETED)[0].data["success"] is False

    def test_unknown_policy(self, world, events):
        with pytest.raises(ValueError):
            make_engine(world, events, policy="shrug")

    def test_failure_is_contained_per_unit(self, world, events, engine):
        engine.execute_plan("alpha", [step("attack", target="zzzzqq")])
        engine.execute_plan("doc", [step("hold"), step("heal")])
        run_tick(world, engine)
        run_tick(world, engine)
        run_tick(world, engine)
        outcomes = {e.data["unit_id"]: e.data["success"] for e in events.history(EventType.PLAN_COMPLETED)}
        assert outcomes == {"alpha": False, "doc": True}


# ════════════════════════════════════════════════════════════════════════════════
# UNIT LOSS
# ════════════════════════════════════════════════════════════════════════════════

class TestUnitLoss:

    def test_destroyed_unit_fails_plan(self, world, events, engine):
        engine.execute_plan("alpha", [step("wait", duration_ms=5000)])
        run_tick(world, engine)
        world.get_unit("alpha").take_damage(1000)
        run_tick(world, engine)
        completed = events.history(EventType.PLAN_COMPLETED)
        assert completed[0].data == {"unit_id": "alpha", "plan_id": "plan-1",
                                     "success": False, "reason": "unit destroyed"}
        assert engine.plan_history[-1].state == PlanState.FAILED

    def test_missing_unit_fails_plan(self, world, events, engine):
        engine.execute_plan("alpha", [step("hold", trigger="health_pct < 1")])
        world.remove_unit("alpha")
        run_tick(world, engine)
        assert events.history(EventType.PLAN_COMPLETED)[0].data["reason"] == "unit missing"
        assert engine.active_unit_ids() == []


# ════════════════════════════════════════════════════════════════════════════════
# SUBMISSION, INTERRUPTION, SUPERSESSION
# ════════════════════════════════════════════════════════════════════════════════

class TestPlanLifecycle:

    def test_unknown_unit(self, engine):
        assert engine.execute_plan("ghost", [step("hold")]) is False
        assert engine.last_error == "unknown unit: ghost"

    def test_invalid_plan_leaves_existing_plan(self, world, events, engine):
        engine.execute_plan("alpha", [step("wait", duration_ms=5000)])
        assert engine.execute_plan("alpha", [step("fly_away")]) is False
        assert engine.last_error == "unknown action: fly_away"
        assert engine.get_plan("alpha").plan_id == "plan-1"
        assert events.count(EventType.PLAN_INTERRUPTED) == 0

    def test_archetype_checked_on_raw_plan(self, engine):
        assert engine.execute_plan("alpha", [step("heal")]) is False
        assert engine.last_error == "action 'heal' not allowed for soldier"

    def test_accepts_validation_result(self, engine):
        result = ActionValidator().validate_plan([step("hold")], "soldier")
        assert engine.execute_plan("alpha", result, generation=4)
        assert engine.get_plan("alpha").generation == 4

    def test_interrupt_is_idempotent(self, world, events, engine):
        engine.execute_plan("alpha", [step("wait", duration_ms=5000)])
        assert engine.interrupt_plan("alpha", "player") is True
        assert engine.interrupt_plan("alpha", "player") is False
        interrupted = events.history(EventType.PLAN_INTERRUPTED)
        assert len(interrupted) == 1
        assert interrupted[0].data == {"unit_id": "alpha", "plan_id": "plan-1", "reason": "player"}
        assert not engine.has_active_plan("alpha")

    def test_interrupt_without_plan(self, engine):
        assert engine.interrupt_plan("alpha") is False

    def test_new_plan_supersedes_old(self, world, events, engine):
        engine.execute_plan("alpha", [step("wait", duration_ms=5000)])
        engine.execute_plan("alpha", [step("hold")])

        interrupted = events.history(EventType.PLAN_INTERRUPTED)
        assert len(interrupted) == 1
        assert interrupted[0].data["plan_id"] == "plan-1"
        assert interrupted[0].data["reason"] == "superseded"
        assert engine.get_plan("alpha").plan_id == "plan-2"

        run_tick(world, engine)
        run_tick(world, engine)
        assert len(terminal_events(events, "alpha")) == 2

    def test_interrupt_all(self, world, events, engine):
        engine.execute_plan("alpha", [step("wait", duration_ms=5000)])
        engine.execute_plan("doc", [step("wait", duration_ms=5000)])
        assert engine.interrupt_all("ceasefire") == 2
        assert engine.active_unit_ids() == []
        assert {e.data["reason"] for e in events.history(EventType.PLAN_INTERRUPTED)} == {"ceasefire"}

    def test_listener_may_start_replacement_plan(self, world, events, engine):
        def chain(event):
            if event.data["unit_id"] == "alpha" and event.data["plan_id"] == "plan-1":
                engine.execute_plan("alpha", [step("wait", duration_ms=5000)])

        events.subscribe(chain, EventType.PLAN_COMPLETED)
        engine.execute_plan("alpha", [step("hold")])
        run_tick(world, engine)
        run_tick(world, engine)
        assert engine.get_plan("alpha").plan_id == "plan-2"

    def test_one_terminal_event_per_plan(self, world, events, engine):
        engine.execute_plan("alpha", [step("hold")])
        for _ in range(5):
            run_tick(world, engine)
        engine.interrupt_plan("alpha")
        assert len(terminal_events(events, "alpha")) == 1


class TestStatistics:

    def test_counters(self, world, events, engine):
        engine.execute_plan("alpha", [step("hold")])
        engine.execute_plan("doc", [step("attack", target="raider_1")])
        run_tick(world, engine)
        run_tick(world, engine)
        engine.execute_plan("alpha", [step("wait", duration_ms=5000)])
        engine.interrupt_plan("alpha")

        stats = engine.get_statistics()
        assert stats["plans_started"] == 2
        assert stats["plans_completed"] == 1
        assert stats["plans_interrupted"] == 1
        assert stats["plans_failed"] == 0
        assert stats["steps_executed"] == 1
        assert stats["active_plans"] == 0
        assert stats["average_plan_duration_ms"] >= 0

    def test_plan_to_dict(self, world, engine):
        engine.execute_plan("alpha", [step("hold", speech="Holding.")])
        data = engine.get_plan("alpha").to_dict()
        assert data["state"] == "active"
        assert data["steps"][0]["action"] == "hold"
        assert data["steps"][0]["status"] == "pending"
