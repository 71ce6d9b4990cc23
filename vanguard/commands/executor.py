"""
Command Translator for Project Vanguard
Turns one validated ActionDescriptor into exactly one unit capability call.

Two entry points:
- execute_command(descriptor): direct commands from the orchestrator.
  Assigns a command id and emits command_executed / command_failed.
- dispatch(unit, descriptor): plan steps from the execution engine.
  No events; raises ActionExecutionError and lets the engine apply its
  failure policy.

Dispatch goes through an ActionKind -> handler table. Adding an
ActionKind without a handler fails at construction, not mid-battle.
"""

from typing import Callable, Dict, Optional

from vanguard.errors import ActionExecutionError
from vanguard.models.plan import ActionDescriptor
from vanguard.models.unit import ActionKind, Position, Unit
from vanguard.models.world_state import WorldState
from vanguard.utils.events import EventLog, EventType
from vanguard.utils.fuzzy_matcher import FuzzyMatcher

# Target names that mean "whichever enemy is closest"
NEAREST_TARGET_ALIASES = {"nearest", "closest", "enemy", "nearest_enemy", "closest_enemy"}

Handler = Callable[[Unit, ActionDescriptor], Dict]


class CommandTranslator:
    """
    Maps validated actions onto the unit capability interface.
    Stateless between calls apart from the command id counter.
    """

    def __init__(self, world: WorldState, events: EventLog,
                 fuzzy_matcher: Optional[FuzzyMatcher] = None):
        self.world = world
        self.events = events
        self.fuzzy_matcher = fuzzy_matcher or FuzzyMatcher()
        self._command_counter = 0

        self._handlers: Dict[ActionKind, Handler] = {
            ActionKind.MOVE: self._execute_move,
            ActionKind.ATTACK: self._execute_attack,
            ActionKind.RETREAT: self._execute_retreat,
            ActionKind.PATROL: self._execute_patrol,
            ActionKind.HOLD: self._execute_hold,
            ActionKind.SET_STANCE: self._execute_set_stance,
            ActionKind.USE_ABILITY: self._execute_use_ability,
            ActionKind.HEAL: self._execute_heal,
            ActionKind.STEALTH: self._execute_stealth,
            ActionKind.WAIT: self._execute_wait,
        }
        missing = [kind.value for kind in ActionKind if kind not in self._handlers]
        if missing:
            raise RuntimeError(f"No translator handler for: {', '.join(missing)}")

    # ══════════════════════════════════════════════════════════════════════════
    # ENTRY POINTS
    # ══════════════════════════════════════════════════════════════════════════

    def execute_command(self, descriptor: ActionDescriptor, unit_id: Optional[str] = None) -> str:
        """
        Execute a direct command.

        Args:
            descriptor: Validated action
            unit_id: Addressed unit; defaults to descriptor.unit_id

        Returns:
            The command id carried by the command_executed/command_failed event
        """
        self._command_counter += 1
        command_id = f"cmd-{self._command_counter}"
        unit_id = unit_id or descriptor.unit_id

        unit = self.world.get_unit(unit_id) if unit_id else None
        if unit is None:
            self.events.emit(EventType.COMMAND_FAILED, command_id=command_id, unit_id=unit_id,
                             action=descriptor.kind.value, error=f"unknown unit: {unit_id}")
            return command_id

        try:
            result = self.dispatch(unit, descriptor)
        except ActionExecutionError as e:
            self.events.emit(EventType.COMMAND_FAILED, command_id=command_id, unit_id=unit_id,
                             action=descriptor.kind.value, error=e.message)
            return command_id

        self.events.emit(EventType.COMMAND_EXECUTED, command_id=command_id, result=result)
        return command_id

    def dispatch(self, unit: Unit, descriptor: ActionDescriptor) -> Dict:
        """
        One capability call for one action.

        Raises:
            ActionExecutionError: Unit destroyed, bad target, unknown ability...
        """
        handler = self._handlers[descriptor.kind]
        result = handler(unit, descriptor)
        result["unit_id"] = unit.unit_id
        result["action"] = descriptor.kind.value
        if descriptor.speech:
            result["speech"] = descriptor.speech
        return result

    # ══════════════════════════════════════════════════════════════════════════
    # TARGET RESOLUTION
    # ══════════════════════════════════════════════════════════════════════════

    def _resolve_unit(self, name: str, unit: Unit) -> Unit:
        """Find a living unit (other than `unit`) by typo-tolerant name."""
        if name.strip().lower() in NEAREST_TARGET_ALIASES:
            enemy = self.world.nearest_enemy(unit)
            if enemy is None:
                raise ActionExecutionError("no enemies in sight", unit.unit_id)
            return enemy

        candidates = [u.unit_id for u in self.world.living_units() if u.unit_id != unit.unit_id]
        match = self.fuzzy_matcher.resolve(name, candidates)
        if not match.accepted:
            raise ActionExecutionError(match.describe("target"), unit.unit_id)
        return self.world.get_unit(match.match)

    def _destination(self, unit: Unit, descriptor: ActionDescriptor) -> Optional[Position]:
        position = descriptor.params.get("position")
        if position is not None:
            return position
        target = descriptor.params.get("target")
        if target:
            return self._resolve_unit(target, unit).position
        return None

    # ══════════════════════════════════════════════════════════════════════════
    # HANDLERS
    # ══════════════════════════════════════════════════════════════════════════

    def _execute_move(self, unit: Unit, descriptor: ActionDescriptor) -> Dict:
        destination = self._destination(unit, descriptor)
        if destination is None:
            raise ActionExecutionError("move needs a position or target", unit.unit_id)
        unit.move_to(destination)
        return {"destination": list(destination)}

    def _execute_attack(self, unit: Unit, descriptor: ActionDescriptor) -> Dict:
        target = self._resolve_unit(descriptor.params.get("target") or "nearest", unit)
        unit.attack_target(target)
        return {"target": target.unit_id}

    def _execute_retreat(self, unit: Unit, descriptor: ActionDescriptor) -> Dict:
        destination = descriptor.params.get("position") or self.world.get_rally_point(unit.team)
        if destination is None:
            raise ActionExecutionError(f"no rally point for team {unit.team}", unit.unit_id)
        unit.retreat(destination)
        return {"destination": list(destination)}

    def _execute_patrol(self, unit: Unit, descriptor: ActionDescriptor) -> Dict:
        waypoints = descriptor.params.get("waypoints") or []
        unit.patrol(waypoints)
        return {"waypoints": [list(p) for p in waypoints]}

    def _execute_hold(self, unit: Unit, descriptor: ActionDescriptor) -> Dict:
        unit.set_stance("hold")
        return {"stance": unit.stance}

    def _execute_set_stance(self, unit: Unit, descriptor: ActionDescriptor) -> Dict:
        unit.set_stance(descriptor.params.get("stance", ""))
        return {"stance": unit.stance}

    def _execute_use_ability(self, unit: Unit, descriptor: ActionDescriptor) -> Dict:
        ability = descriptor.params.get("ability", "")
        unit.use_ability(ability)
        return {"ability": unit.last_ability}

    def _execute_heal(self, unit: Unit, descriptor: ActionDescriptor) -> Dict:
        unit.use_ability("heal")
        return {"ability": "heal", "health_pct": round(unit.get_health_percentage(), 1)}

    def _execute_stealth(self, unit: Unit, descriptor: ActionDescriptor) -> Dict:
        unit.use_ability("stealth")
        return {"ability": "stealth"}

    def _execute_wait(self, unit: Unit, descriptor: ActionDescriptor) -> Dict:
        # Waiting is only a duration; the unit keeps whatever it was doing
        if unit.is_dead():
            raise ActionExecutionError(f"{unit.unit_id} is destroyed", unit.unit_id)
        return {"duration_ms": descriptor.duration_ms}
