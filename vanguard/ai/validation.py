"""
Validation layer for generator responses.
Ensures the generator can't smuggle unknown actions, over-long plans or
broken triggers into execution.

This layer sits between the parsed generator response and execution:
1. Every step carries all required fields (strict schema: none optional)
2. Action kinds are known AND allowed for the unit's archetype
3. Parameters have the right shape for the action
4. Triggers compile (compiled once here, never re-parsed per tick)
5. Plans stay within MAX_STEPS_PER_PLAN

Validation is total and side-effect free. A plan is either entirely
valid (and comes back with its compiled steps) or entirely rejected with
the first error found.
"""

import math
from dataclasses import dataclass, field
from numbers import Real
from typing import Any, Dict, List, Optional

from vanguard.commands.triggers import try_compile
from vanguard.config import DEFAULT_MAX_STEPS_PER_PLAN
from vanguard.errors import SchemaValidationError
from vanguard.models.plan import ActionDescriptor, CompiledAction
from vanguard.models.unit import (
    ActionKind, ARCHETYPE_ACTIONS, VALID_STANCES, allowed_actions,
)


# =============================================================================
# SCHEMA RULES
# =============================================================================

# Every action object must carry all of these (strict structured output)
REQUIRED_FIELDS = ("action", "params", "trigger", "speech", "duration_ms")

# Parameter keys the schema exposes. All nullable.
PARAM_FIELDS = ("target", "x", "y", "ability", "stance", "waypoints")

# Generous ceiling so a hallucinated duration can't park a unit forever
MAX_DURATION_MS = 10 * 60 * 1000


@dataclass
class ValidationResult:
    """
    Result of validating an action or a plan.

    Attributes:
        valid: Whether everything passed
        error: First error found (None when valid)
        steps: Compiled steps, populated only when valid
        step_index: Index of the offending step for plan errors
    """
    valid: bool = True
    error: Optional[str] = None
    steps: List[CompiledAction] = field(default_factory=list)
    step_index: Optional[int] = None

    def add_error(self, message: str, step_index: Optional[int] = None) -> "ValidationResult":
        """Record a failure. The first error wins; compiled steps are dropped."""
        if self.valid:
            self.valid = False
            self.error = message
            self.step_index = step_index
        self.steps = []
        return self

    def raise_if_invalid(self) -> "ValidationResult":
        """Raise SchemaValidationError for callers that want exceptions."""
        if not self.valid:
            raise SchemaValidationError(self.error or "invalid action")
        return self

    def to_dict(self) -> Dict[str, Any]:
        result = {"valid": self.valid, "error": self.error}
        if self.step_index is not None:
            result["step_index"] = self.step_index
        return result


def _is_number(value: Any) -> bool:
    """Finite real number. json.loads accepts NaN and Infinity, so check."""
    return isinstance(value, Real) and not isinstance(value, bool) and math.isfinite(value)


def _parse_point(point: Any) -> Optional[tuple]:
    """Accept [x, y], (x, y) or {"x": .., "y": ..}."""
    if isinstance(point, dict):
        x, y = point.get("x"), point.get("y")
    elif isinstance(point, (list, tuple)) and len(point) == 2:
        x, y = point
    else:
        return None
    if not (_is_number(x) and _is_number(y)):
        return None
    return (float(x), float(y))


class ActionValidator:
    """
    Validates generator output against the action schema.

    Usage:
        validator = ActionValidator(max_steps_per_plan=10)
        result = validator.validate_plan(plan_data, "scout")
        if not result.valid:
            print(result.error)
    """

    def __init__(self, max_steps_per_plan: int = DEFAULT_MAX_STEPS_PER_PLAN):
        self.max_steps_per_plan = max_steps_per_plan

    # ══════════════════════════════════════════════════════════════════════════
    # SINGLE ACTION
    # ══════════════════════════════════════════════════════════════════════════

    def validate_action(self, action_data: Any, unit_archetype: Optional[str] = None) -> ValidationResult:
        """
        Validate one action object.

        Args:
            action_data: Dict with action, params, trigger, speech, duration_ms
            unit_archetype: Archetype of the unit that will run it. None
                checks against every archetype's actions combined.

        Returns:
            ValidationResult; on success steps holds exactly one CompiledAction
        """
        result = ValidationResult()

        if not isinstance(action_data, dict):
            return result.add_error("action must be an object")

        for name in REQUIRED_FIELDS:
            if name not in action_data:
                return result.add_error(f"missing field: {name}")

        # Action kind
        action_name = action_data["action"]
        kind = ActionKind.from_name(action_name)
        if kind is None:
            return result.add_error(f"unknown action: {action_name}")

        if unit_archetype is not None and unit_archetype not in ARCHETYPE_ACTIONS:
            return result.add_error(f"unknown archetype: {unit_archetype}")
        if kind.value not in allowed_actions(unit_archetype):
            return result.add_error(f"action '{kind.value}' not allowed for {unit_archetype}")

        # Field types
        params = action_data["params"]
        if params is None:
            params = {}
        if not isinstance(params, dict):
            return result.add_error("params must be an object")

        trigger = action_data["trigger"]
        if trigger is None:
            trigger = ""
        if not isinstance(trigger, str):
            return result.add_error("trigger must be a string")

        speech = action_data["speech"]
        if speech is None:
            speech = ""
        if not isinstance(speech, str):
            return result.add_error("speech must be a string")

        duration = action_data["duration_ms"]
        if duration is None:
            duration = 0
        if not _is_number(duration) or duration < 0:
            return result.add_error("duration_ms must be a finite non-negative number")
        if duration > MAX_DURATION_MS:
            return result.add_error(f"duration_ms {int(duration)} exceeds {MAX_DURATION_MS}")

        # Parameters for this action
        normalized, error = self._normalize_params(kind, params)
        if error:
            return result.add_error(error)

        # Trigger compiles once, here
        ast, compile_error = try_compile(trigger)
        if compile_error:
            return result.add_error(f"invalid trigger '{trigger}': {compile_error}")

        descriptor = ActionDescriptor(
            kind=kind,
            params=normalized,
            trigger=trigger.strip(),
            speech=speech,
            duration_ms=int(duration),
            unit_id=action_data.get("unit_id"),
        )
        result.steps = [CompiledAction(descriptor=descriptor, trigger=ast)]
        return result

    def _normalize_params(self, kind: ActionKind, params: Dict[str, Any]):
        """
        Check and normalize params for an action kind.

        Returns:
            Tuple of (normalized_params, error_message)
        """
        normalized: Dict[str, Any] = {}

        target = params.get("target")
        if target is not None:
            if not isinstance(target, str):
                return None, "params.target must be a string"
            if target.strip():
                normalized["target"] = target.strip()

        x, y = params.get("x"), params.get("y")
        if "position" in params and params["position"] is not None:
            point = _parse_point(params["position"])
            if point is None:
                return None, "params.position must be [x, y]"
            normalized["position"] = point
        elif x is not None or y is not None:
            if not (_is_number(x) and _is_number(y)):
                return None, "params.x and params.y must both be numbers"
            normalized["position"] = (float(x), float(y))

        ability = params.get("ability")
        if ability is not None:
            if not isinstance(ability, str):
                return None, "params.ability must be a string"
            if ability.strip():
                normalized["ability"] = ability.strip().lower()

        stance = params.get("stance")
        if stance is not None:
            if not isinstance(stance, str):
                return None, "params.stance must be a string"
            if stance.strip():
                normalized["stance"] = stance.strip().lower()

        waypoints = params.get("waypoints")
        if waypoints is not None:
            if not isinstance(waypoints, list):
                return None, "params.waypoints must be a list"
            points = []
            for point in waypoints:
                parsed = _parse_point(point)
                if parsed is None:
                    return None, "params.waypoints entries must be [x, y]"
                points.append(parsed)
            if points:
                normalized["waypoints"] = points

        # Per-action requirements
        if kind == ActionKind.MOVE:
            if "position" not in normalized and "target" not in normalized:
                return None, "move needs params.x/params.y or params.target"
        elif kind == ActionKind.ATTACK:
            if "target" not in normalized:
                return None, "attack needs params.target"
        elif kind == ActionKind.PATROL:
            if "waypoints" not in normalized:
                return None, "patrol needs params.waypoints"
        elif kind == ActionKind.SET_STANCE:
            if normalized.get("stance") not in VALID_STANCES:
                return None, (f"set_stance needs params.stance, one of: "
                              f"{', '.join(sorted(VALID_STANCES))}")
        elif kind == ActionKind.USE_ABILITY:
            if "ability" not in normalized:
                return None, "use_ability needs params.ability"

        return normalized, None

    # ══════════════════════════════════════════════════════════════════════════
    # PLAN
    # ══════════════════════════════════════════════════════════════════════════

    def validate_plan(self, plan_data: Any, unit_archetype: Optional[str] = None) -> ValidationResult:
        """
        Validate a whole plan. All steps pass or the plan is rejected.

        Args:
            plan_data: List of action objects, or a dict with "steps"
            unit_archetype: Archetype of the unit that will run the plan

        Returns:
            ValidationResult with every step compiled, or the first error
        """
        result = ValidationResult()

        steps = plan_data
        if isinstance(plan_data, dict):
            steps = plan_data.get("steps", plan_data.get("actions"))
        if not isinstance(steps, list):
            return result.add_error("plan must contain a list of steps")
        if not steps:
            return result.add_error("plan has no steps")
        if len(steps) > self.max_steps_per_plan:
            return result.add_error(
                f"plan has {len(steps)} steps, maximum is {self.max_steps_per_plan}")

        compiled: List[CompiledAction] = []
        for index, step in enumerate(steps):
            step_result = self.validate_action(step, unit_archetype)
            if not step_result.valid:
                return result.add_error(step_result.error, step_index=index)
            compiled.extend(step_result.steps)

        result.steps = compiled
        return result
