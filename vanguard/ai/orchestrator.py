"""
Command Orchestrator for Project Vanguard

Entry point for natural-language orders. Owns the request lifecycle:

    process_command()                        update() (every tick)
          |                                        |
          v                                        v
    bump unit generations            poll in-flight futures, timeouts
    build GeneratorRequest           retries whose backoff has elapsed
    queue PendingRequest             dispatch queued requests (FIFO) while
          |                          under the concurrency and per-minute caps
          +---------------> dispatch ---> LLMClient.submit() -> Future
                                                   |
                                       on completion (next update):
                                       stale?  -> drop silently
                                       error?  -> retry with backoff / fail
                                       parse -> validate (all-or-nothing)
                                       direct -> translator
                                       plan   -> execution engine

Nothing here blocks. Waiting for the generator, backing off and sitting
in the queue are all data states of a PendingRequest.

GENERATIONS:
Every submission bumps the generation of each addressed unit. A response
only acts on units whose generation still matches the value captured at
submission. If no addressed unit matches, the response is stale and is
dropped without any event.
"""

import time
from collections import deque
from concurrent.futures import Future
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from vanguard.ai.llm_client import LLMClient
from vanguard.ai.prompt_builder import build_generator_request
from vanguard.ai.providers import parse_llm_json_response
from vanguard.ai.schemas import (
    DirectCommandSet, GeneratorRequest, MultiStepPlanSet, ResponseError,
    parse_structured_response,
)
from vanguard.ai.validation import ActionValidator, ValidationResult
from vanguard.commands.executor import CommandTranslator
from vanguard.commands.plan_engine import PlanExecutionEngine
from vanguard.config import CommandConfig
from vanguard.errors import ExternalServiceError, SchemaValidationError
from vanguard.models.world_state import WorldState
from vanguard.utils.events import EventLog, EventType

# Rolling window for the per-minute cap
RATE_WINDOW_SECONDS = 60.0

QUEUED = "queued"
IN_FLIGHT = "in_flight"
BACKOFF = "backoff"
DONE = "done"


@dataclass
class PendingRequest:
    """
    One order waiting on the generator.

    Attributes:
        request_id: Id reported in every event for this order
        text: The player's order
        units: Addressed unit_id -> archetype (captured at submission)
        generations: Addressed unit_id -> generation at submission
        generator_request: Prompts and schema sent on every attempt
        future: Current attempt's future (None while queued/backing off)
        attempt: Dispatches so far
        state: queued | in_flight | backoff | done
        submitted_at: Clock time of process_command()
        dispatched_at: Clock time of the current attempt's dispatch
        retry_at: Clock time the next attempt may be queued
        last_error: Most recent failure reason
    """
    request_id: str
    text: str
    units: Dict[str, str]
    generations: Dict[str, int]
    generator_request: GeneratorRequest
    future: Optional[Future] = None
    attempt: int = 0
    state: str = QUEUED
    submitted_at: float = 0.0
    dispatched_at: Optional[float] = None
    retry_at: Optional[float] = None
    last_error: Optional[str] = None

    @property
    def unit_ids(self) -> List[str]:
        return list(self.units)


@dataclass
class _ValidatedUnit:
    unit_id: str
    result: ValidationResult
    generation: int = 0


class CommandOrchestrator:
    """
    Turns orders into generator requests and generator responses into
    translator commands or engine plans.
    """

    def __init__(self, world: WorldState, client: LLMClient, validator: ActionValidator,
                 translator: CommandTranslator, engine: PlanExecutionEngine, events: EventLog,
                 config: Optional[CommandConfig] = None,
                 clock: Callable[[], float] = time.monotonic):
        self.world = world
        self.client = client
        self.validator = validator
        self.translator = translator
        self.engine = engine
        self.events = events
        self.config = config or CommandConfig()
        self.clock = clock

        self._generations: Dict[str, int] = {}
        self._request_counter = 0
        self._queue: deque = deque()
        self._in_flight: Dict[str, PendingRequest] = {}
        self._backoff: List[PendingRequest] = []
        self._dispatch_times: deque = deque()
        self.last_rejection: Optional[str] = None

        self._stats = {
            "requests_submitted": 0,
            "requests_succeeded": 0,
            "requests_failed": 0,
            "stale_dropped": 0,
            "retries": 0,
            "timeouts": 0,
        }

    # ══════════════════════════════════════════════════════════════════════════
    # SUBMISSION
    # ══════════════════════════════════════════════════════════════════════════

    def process_command(self, text: str, selected_units: List[str],
                        world_snapshot: Optional[Dict[str, Any]] = None) -> Optional[str]:
        """
        Submit an order for a set of units.

        Args:
            text: Natural-language order
            selected_units: Unit ids the order addresses
            world_snapshot: Snapshot to prompt with; taken now if omitted

        Returns:
            Request id, or None if the order was rejected outright (empty
            text, no units, unknown or destroyed unit). Rejections emit
            command_failed.
        """
        text = (text or "").strip()
        unit_ids = list(dict.fromkeys(selected_units or []))

        error = None
        if not text:
            error = "empty command"
        elif not unit_ids:
            error = "no units selected"
        else:
            for unit_id in unit_ids:
                unit = self.world.get_unit(unit_id)
                if unit is None:
                    error = f"unknown unit: {unit_id}"
                    break
                if unit.is_dead():
                    error = f"{unit_id} is destroyed"
                    break
        self.last_rejection = error
        if error:
            self.events.emit(EventType.COMMAND_FAILED, request_id=None, units=unit_ids, error=error)
            return None

        self._request_counter += 1
        request_id = f"req-{self._request_counter}"

        units = {unit_id: self.world.get_unit(unit_id).archetype for unit_id in unit_ids}
        generations = {}
        for unit_id in unit_ids:
            self._generations[unit_id] = self._generations.get(unit_id, 0) + 1
            generations[unit_id] = self._generations[unit_id]

        snapshot = world_snapshot if world_snapshot is not None else self.world.snapshot()
        history = self.world.get_command_history_for_prompt()
        self.world.record_command(text, unit_ids)

        pending = PendingRequest(
            request_id=request_id,
            text=text,
            units=units,
            generations=generations,
            generator_request=build_generator_request(
                request_id, text, units, snapshot, history,
                max_steps=self.config.max_steps_per_plan,
            ),
            submitted_at=self.clock(),
        )
        self._queue.append(pending)
        self._stats["requests_submitted"] += 1

        self.events.emit(EventType.PROCESSING_STARTED, request_id=request_id, text=text, units=unit_ids)
        self._dispatch_ready(self.clock())
        return request_id

    # ══════════════════════════════════════════════════════════════════════════
    # UPDATE (called every tick)
    # ══════════════════════════════════════════════════════════════════════════

    def update(self) -> None:
        """Advance every pending request. Never blocks."""
        now = self.clock()

        for request_id in list(self._in_flight):
            pending = self._in_flight[request_id]
            if pending.future.done():
                del self._in_flight[request_id]
                try:
                    self._on_complete(pending, now)
                except Exception as e:
                    # The request is already out of _in_flight; it must still end
                    print(f"CommandOrchestrator: {request_id} crashed while applying: "
                          f"{type(e).__name__}: {e}")
                    self._fail(pending, f"internal error: {type(e).__name__}: {e}")
            elif now - pending.dispatched_at >= self.config.request_timeout_seconds:
                del self._in_flight[request_id]
                pending.future.cancel()
                self._stats["timeouts"] += 1
                print(f"CommandOrchestrator: {request_id} timed out after "
                      f"{self.config.request_timeout_seconds}s (attempt {pending.attempt})")
                if self._fresh_units(pending):
                    self._retry_or_fail(pending, "timeout", now)
                else:
                    self._drop_stale(pending)

        # Retries due go ahead of requests that never left the queue
        due = [p for p in self._backoff if p.retry_at <= now]
        for pending in reversed(due):
            self._backoff.remove(pending)
            pending.state = QUEUED
            self._queue.appendleft(pending)

        self._dispatch_ready(now)

    def _dispatch_ready(self, now: float) -> None:
        """Dispatch queued requests while under both caps."""
        while self._queue:
            if len(self._in_flight) >= self.config.max_concurrent_requests:
                return
            while self._dispatch_times and now - self._dispatch_times[0] >= RATE_WINDOW_SECONDS:
                self._dispatch_times.popleft()
            if len(self._dispatch_times) >= self.config.requests_per_minute:
                return

            pending = self._queue.popleft()
            if not self._fresh_units(pending):
                # Superseded while queued: no point asking
                self._drop_stale(pending)
                continue

            pending.attempt += 1
            pending.state = IN_FLIGHT
            pending.dispatched_at = now
            pending.future = self.client.submit(pending.generator_request)
            self._in_flight[pending.request_id] = pending
            self._dispatch_times.append(now)
            print(f"CommandOrchestrator: dispatched {pending.request_id} "
                  f"(attempt {pending.attempt}, in flight {len(self._in_flight)})")

    # ══════════════════════════════════════════════════════════════════════════
    # COMPLETION
    # ══════════════════════════════════════════════════════════════════════════

    def _fresh_units(self, pending: PendingRequest) -> List[str]:
        return [unit_id for unit_id in pending.unit_ids
                if self._generations.get(unit_id) == pending.generations[unit_id]]

    def _drop_stale(self, pending: PendingRequest) -> None:
        pending.state = DONE
        self._stats["stale_dropped"] += 1
        print(f"CommandOrchestrator: dropping stale {pending.request_id}")

    def _on_complete(self, pending: PendingRequest, now: float) -> None:
        fresh = self._fresh_units(pending)
        if not fresh:
            self._drop_stale(pending)
            return

        if pending.future.cancelled():
            text, error = None, "cancelled"
        else:
            try:
                text, error = pending.future.result()
            except Exception as e:
                text, error = None, f"{type(e).__name__}: {e}"

        if error:
            self._retry_or_fail(pending, error, now)
            return

        response = parse_structured_response(parse_llm_json_response(text), pending.unit_ids)
        if isinstance(response, ResponseError):
            if response.retryable:
                self._retry_or_fail(pending, response.error, now)
            else:
                self._fail(pending, response.error)
            return

        self._apply(pending, response, fresh)

    def _retry_or_fail(self, pending: PendingRequest, reason: str, now: float) -> None:
        pending.last_error = reason
        pending.future = None
        if pending.attempt <= self.config.max_retries:
            delay = self.config.retry_backoff_seconds * (2 ** (pending.attempt - 1))
            pending.state = BACKOFF
            pending.retry_at = now + delay
            self._backoff.append(pending)
            self._stats["retries"] += 1
            print(f"CommandOrchestrator: {pending.request_id} failed ({reason}), "
                  f"retry {pending.attempt}/{self.config.max_retries} in {delay:.1f}s")
        else:
            self._fail(pending, reason)

    def _fail(self, pending: PendingRequest, error: str, unit_id: Optional[str] = None) -> None:
        pending.state = DONE
        pending.last_error = error
        self._stats["requests_failed"] += 1
        print(f"CommandOrchestrator: {pending.request_id} failed: {error}")
        data = {"request_id": pending.request_id, "units": pending.unit_ids, "error": error}
        if unit_id:
            data["unit_id"] = unit_id
        self.events.emit(EventType.COMMAND_FAILED, **data)
        self.events.emit(EventType.PROCESSING_FINISHED, request_id=pending.request_id, success=False)

    # ══════════════════════════════════════════════════════════════════════════
    # ROUTING
    # ══════════════════════════════════════════════════════════════════════════

    def _validate(self, pending: PendingRequest, response, fresh: List[str]):
        """
        Validate every fresh unit's orders. Returns (validated, error, unit_id);
        one bad unit rejects the whole response.
        """
        validated: List[_ValidatedUnit] = []
        is_direct = isinstance(response, DirectCommandSet)
        orders = response.commands if is_direct else response.plans

        for unit_id in fresh:
            if unit_id not in orders:
                continue
            archetype = pending.units[unit_id]
            if is_direct:
                result = self.validator.validate_action(orders[unit_id], archetype)
            else:
                result = self.validator.validate_plan(orders[unit_id], archetype)
            if not result.valid:
                return None, result.error, unit_id
            validated.append(_ValidatedUnit(unit_id, result, pending.generations[unit_id]))
        return validated, None, None

    def _apply(self, pending: PendingRequest, response, fresh: List[str]) -> None:
        validated, error, bad_unit = self._validate(pending, response, fresh)
        if error:
            self._fail(pending, error, unit_id=bad_unit)
            return

        pending.state = DONE
        self._stats["requests_succeeded"] += 1

        if isinstance(response, DirectCommandSet):
            commands = []
            for item in validated:
                self.engine.interrupt_plan(item.unit_id, "superseded")
                descriptor = item.result.steps[0].descriptor.for_unit(item.unit_id)
                command_id = self.translator.execute_command(descriptor)
                commands.append({"command_id": command_id, **descriptor.to_dict()})
            self.events.emit(EventType.COMMAND_PROCESSED, request_id=pending.request_id,
                             commands=commands, message=response.message)
        else:
            plans = {}
            for item in validated:
                if self.engine.execute_plan(item.unit_id, item.result, generation=item.generation):
                    plans[item.unit_id] = self.engine.get_plan(item.unit_id).plan_id
                else:
                    self.events.emit(EventType.COMMAND_FAILED, request_id=pending.request_id,
                                     units=[item.unit_id], unit_id=item.unit_id,
                                     error=self.engine.last_error)
            self.events.emit(EventType.PLAN_PROCESSED, request_id=pending.request_id,
                             plans=plans, message=response.message)

        self.events.emit(EventType.PROCESSING_FINISHED, request_id=pending.request_id, success=True)

    # ══════════════════════════════════════════════════════════════════════════
    # PREVIEW
    # ══════════════════════════════════════════════════════════════════════════

    def preview(self, text: str, selected_units: List[str]) -> Dict[str, Any]:
        """
        Ask the generator what it would do, without executing anything.

        Blocks on the generator. No generations are bumped, nothing is
        queued and no events are emitted.

        Raises:
            SchemaValidationError: Bad input, or the orders fail validation
            ExternalServiceError: Generator failed or returned unusable text
        """
        text = (text or "").strip()
        if not text:
            raise SchemaValidationError("empty command")
        units: Dict[str, str] = {}
        for unit_id in dict.fromkeys(selected_units or []):
            unit = self.world.get_unit(unit_id)
            if unit is None:
                raise SchemaValidationError(f"unknown unit: {unit_id}")
            units[unit_id] = unit.archetype
        if not units:
            raise SchemaValidationError("no units selected")

        request = build_generator_request(
            "preview", text, units, self.world.snapshot(),
            self.world.get_command_history_for_prompt(),
            max_steps=self.config.max_steps_per_plan,
        )
        response_text, error = self.client.generate(request)
        if error:
            raise ExternalServiceError(error)

        response = parse_structured_response(parse_llm_json_response(response_text), list(units))
        if isinstance(response, ResponseError):
            raise ExternalServiceError(response.error, retryable=response.retryable)

        is_direct = isinstance(response, DirectCommandSet)
        orders = response.commands if is_direct else response.plans
        for unit_id, unit_orders in orders.items():
            if is_direct:
                result = self.validator.validate_action(unit_orders, units[unit_id])
            else:
                result = self.validator.validate_plan(unit_orders, units[unit_id])
            result.raise_if_invalid()
        return response.to_dict()

    # ══════════════════════════════════════════════════════════════════════════
    # QUERIES
    # ══════════════════════════════════════════════════════════════════════════

    def generation_of(self, unit_id: str) -> int:
        return self._generations.get(unit_id, 0)

    @property
    def queued_count(self) -> int:
        return len(self._queue)

    @property
    def in_flight_count(self) -> int:
        return len(self._in_flight)

    @property
    def backoff_count(self) -> int:
        return len(self._backoff)

    @property
    def pending_count(self) -> int:
        return self.queued_count + self.in_flight_count + self.backoff_count

    def get_statistics(self) -> Dict[str, Any]:
        stats = dict(self._stats)
        stats.update({
            "queued": self.queued_count,
            "in_flight": self.in_flight_count,
            "backing_off": self.backoff_count,
        })
        return stats

    def shutdown(self) -> None:
        """Cancel everything outstanding. No events are emitted."""
        for pending in self._in_flight.values():
            pending.future.cancel()
        self._in_flight.clear()
        self._queue.clear()
        self._backoff.clear()
