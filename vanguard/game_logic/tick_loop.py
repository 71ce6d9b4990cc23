"""
Tick Loop for Project Vanguard
Drives the world and the command pipeline in lockstep.

Tick order (fixed):
1. world.advance(delta_ms)      - movement, combat, clock
2. orchestrator.update()        - generator responses -> commands / plans
3. engine.tick(world.time_ms)   - trigger checks, capability calls

build_sandbox() is the composition root: it wires one instance of every
component together. Nothing in the pipeline reaches for a global.
"""

import time
from typing import Callable, Dict, Optional

from vanguard.ai.llm_client import LLMClient
from vanguard.ai.orchestrator import CommandOrchestrator
from vanguard.ai.validation import ActionValidator
from vanguard.commands.executor import CommandTranslator
from vanguard.commands.plan_engine import PlanExecutionEngine
from vanguard.config import CommandConfig
from vanguard.models.world_state import WorldState, create_default_world
from vanguard.utils.events import EventLog

DEFAULT_TICK_MS = 100

# Worker threads per allowed concurrent request. Timed-out calls hold their
# worker until the HTTP timeout fires, so new dispatches need spare threads.
WORKER_HEADROOM = 2


class TickLoop:
    """
    Fixed-step simulation loop.

    The loop never waits on the generator: orchestrator.update() only
    polls futures.
    """

    def __init__(self, world: WorldState, orchestrator: CommandOrchestrator,
                 engine: PlanExecutionEngine, tick_ms: int = DEFAULT_TICK_MS):
        """Initialize tick loop with the world and pipeline."""
        self.world = world
        self.orchestrator = orchestrator
        self.engine = engine
        self.tick_ms = tick_ms

    def step(self, delta_ms: Optional[int] = None) -> Dict:
        """
        Run one tick.

        Returns:
            Tick summary (time, active plans, pending requests)
        """
        delta = self.tick_ms if delta_ms is None else int(delta_ms)
        if delta < 0:
            raise ValueError("delta_ms must not be negative")

        self.world.advance(delta)
        self.orchestrator.update()
        self.engine.tick(self.world.time_ms)

        return {
            "tick": self.world.tick_count,
            "time_ms": self.world.time_ms,
            "active_plans": self.engine.active_unit_ids(),
            "pending_requests": self.orchestrator.pending_count,
        }

    def run(self, ticks: int, delta_ms: Optional[int] = None) -> Dict:
        """Run several ticks back to back. Returns the last summary."""
        summary = {}
        for _ in range(ticks):
            summary = self.step(delta_ms)
        return summary

    def run_until_idle(self, max_ticks: int = 1000, delta_ms: Optional[int] = None,
                       sleep: Callable[[float], None] = time.sleep) -> Dict:
        """
        Tick until no requests are pending and no plans are active.

        Sleeps one tick length of wall time between ticks so live generator
        calls get a chance to finish.
        """
        summary = {}
        for _ in range(max_ticks):
            summary = self.step(delta_ms)
            if not self.orchestrator.pending_count and not self.engine.active_unit_ids():
                break
            sleep((self.tick_ms if delta_ms is None else delta_ms) / 1000.0)
        return summary


class Sandbox:
    """Every pipeline component for one world, wired together."""

    def __init__(self, world: WorldState, events: EventLog, config: CommandConfig,
                 client: LLMClient, validator: ActionValidator, translator: CommandTranslator,
                 engine: PlanExecutionEngine, orchestrator: CommandOrchestrator, loop: TickLoop):
        self.world = world
        self.events = events
        self.config = config
        self.client = client
        self.validator = validator
        self.translator = translator
        self.engine = engine
        self.orchestrator = orchestrator
        self.loop = loop

    def shutdown(self) -> None:
        self.orchestrator.shutdown()
        self.client.shutdown()


def build_sandbox(world: Optional[WorldState] = None, config: Optional[CommandConfig] = None,
                  client: Optional[LLMClient] = None, clock: Callable[[], float] = time.monotonic,
                  tick_ms: int = DEFAULT_TICK_MS) -> Sandbox:
    """
    Build a ready-to-run pipeline.

    Args:
        world: World to command (default: the blue squad vs red raiders)
        config: Pipeline config (default: from environment)
        client: Generator client (default: LLMClient.create())
        clock: Wall clock for timeouts, backoff and the rate window
        tick_ms: Default tick length
    """
    world = world or create_default_world()
    config = config or CommandConfig.from_env()
    client = client or LLMClient.create(max_workers=config.max_concurrent_requests * WORKER_HEADROOM,
                                        request_timeout=config.request_timeout_seconds)
    events = EventLog()
    validator = ActionValidator(max_steps_per_plan=config.max_steps_per_plan)
    translator = CommandTranslator(world, events)
    engine = PlanExecutionEngine(world, translator, events, validator,
                                 failure_policy=config.step_failure_policy)
    orchestrator = CommandOrchestrator(world, client, validator, translator, engine, events,
                                       config=config, clock=clock)
    loop = TickLoop(world, orchestrator, engine, tick_ms=tick_ms)
    return Sandbox(world, events, config, client, validator, translator, engine, orchestrator, loop)
