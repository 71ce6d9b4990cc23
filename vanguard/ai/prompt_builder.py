"""
Prompt Builder for the unit command generator - Project Vanguard

===============================================================================
PIPELINE POSITION
===============================================================================

Player text + selected units
    |
    v
+---------------------------------------------+
|  build_generator_request() <-- THIS FILE    |
|  - System prompt (rules, trigger grammar)   |
|  - User prompt (roster, enemies, history)   |
|  - Strict JSON schema (individual | group)  |
+---------------------------------------------+
    |
    v
+---------------------------------------------+
|  Provider (mock / OpenAI / Anthropic / Groq)|
|  - Returns JSON matching the schema         |
+---------------------------------------------+
    |
    v
+---------------------------------------------+
|  schemas.parse_structured_response()        |
|  validation.ActionValidator                 |
+---------------------------------------------+

===============================================================================
SCHEMA VARIANTS
===============================================================================

individual: one unit, or several units of the same archetype. The response
    carries a single "actions" list applied to every addressed unit.

group: units of different archetypes. The response carries a "units" list
    with one {unit_id, actions} entry per unit, unit_id constrained to the
    addressed ids.

Both variants are strict: every property required, additionalProperties
false, optional values expressed as nullable types. The action enum is the
union of the addressed archetypes' allow-lists; the validator still checks
each unit against its own list.

===============================================================================
"""

from typing import Any, Dict, List, Optional

from vanguard.ai.schemas import (
    GeneratorRequest, RESPONSE_TYPES, SCHEMA_GROUP, SCHEMA_INDIVIDUAL,
)
from vanguard.commands.triggers import TRIGGER_VARIABLES
from vanguard.config import DEFAULT_MAX_STEPS_PER_PLAN
from vanguard.models.unit import VALID_STANCES, allowed_actions


# =============================================================================
# PROMPT TEMPLATES
# =============================================================================

SYSTEM_CONTEXT = """You are the tactical order interpreter for a squad of units in a real-time skirmish.
Turn the player's order into structured unit actions. Reply with JSON only."""

RULES = """## Response Types
- "direct": one immediate action per unit, empty trigger.
- "plan": an ordered list of steps per unit. Each step waits for its trigger, runs, then the next step starts.

## Triggers
A trigger gates when a step may start. Empty string means "start now".
Grammar: <variable> <op> <number> [AND|OR <variable> <op> <number>]...
Operators: < > <= >= == !=
Variables: {variables}
health_pct is 0-100. time is seconds since the plan started.
AND/OR are applied strictly left to right. No parentheses.

## Fields
Every action needs all of: action, params, trigger, speech, duration_ms.
Unused params are null. duration_ms is how long the step keeps running (0 = instant).
speech is one short in-character line, or "".
Stances: {stances}
Plans have at most {max_steps} steps per unit."""

EXAMPLES = """## Examples
"retreat if health drops below 20%" ->
{"response_type": "plan", "message": "Falling back when hurt.", "actions": [
  {"action": "retreat", "params": {"target": null, "x": null, "y": null, "ability": null, "stance": null, "waypoints": null},
   "trigger": "health_pct < 20", "speech": "Pulling back!", "duration_ms": 0}]}

"attack raider_1" ->
{"response_type": "direct", "message": "Engaging.", "actions": [
  {"action": "attack", "params": {"target": "raider_1", "x": null, "y": null, "ability": null, "stance": null, "waypoints": null},
   "trigger": "", "speech": "Engaging!", "duration_ms": 0}]}"""


def build_system_prompt(max_steps: int = DEFAULT_MAX_STEPS_PER_PLAN) -> str:
    """
    Build system prompt for the generator.

    Returns:
        System prompt string
    """
    rules = RULES.format(
        variables=", ".join(TRIGGER_VARIABLES),
        stances=", ".join(sorted(VALID_STANCES)),
        max_steps=max_steps,
    )
    return f"{SYSTEM_CONTEXT}\n\n{rules}\n\n{EXAMPLES}"


def build_user_prompt(
    command_text: str,
    units: Dict[str, str],
    snapshot: Optional[Dict[str, Any]] = None,
    command_history: Optional[List[Dict[str, Any]]] = None,
) -> str:
    """
    Build the per-request prompt.

    Args:
        command_text: The player's order
        units: Addressed unit_id -> archetype
        snapshot: World snapshot taken at submission (WorldState.snapshot())
        command_history: Recent orders (WorldState.get_command_history_for_prompt())

    Returns:
        Prompt string
    """
    snapshot = snapshot or {}

    prompt = f"""# Squad Orders

## Addressed Units
{_format_addressed(units, snapshot)}

## Other Friendly Units
{_format_roster(snapshot.get("units", {}), exclude=units)}

## Known Enemies
{_format_roster(snapshot.get("enemies", {}))}

## Order
"{command_text}"

Return JSON only."""

    if command_history:
        history_lines = "\n".join(
            f'{i + 1}. [{", ".join(entry.get("units", []))}] "{entry.get("text", "")}"'
            for i, entry in enumerate(command_history)
        )
        prompt += f"""

## Recent Orders
{history_lines}"""

    return prompt


# =============================================================================
# STRICT SCHEMAS
# =============================================================================

def choose_schema_variant(archetypes: List[str]) -> str:
    """Single archetype (one or many units) -> individual, mixed -> group."""
    return SCHEMA_GROUP if len(set(archetypes)) > 1 else SCHEMA_INDIVIDUAL


def _nullable(type_name: str) -> Dict[str, Any]:
    return {"type": [type_name, "null"]}


def build_action_schema(action_names: List[str]) -> Dict[str, Any]:
    """Schema for one action object with the given action enum."""
    point = {
        "type": "object",
        "properties": {"x": {"type": "number"}, "y": {"type": "number"}},
        "required": ["x", "y"],
        "additionalProperties": False,
    }
    params = {
        "type": "object",
        "properties": {
            "target": _nullable("string"),
            "x": _nullable("number"),
            "y": _nullable("number"),
            "ability": _nullable("string"),
            "stance": {"type": ["string", "null"], "enum": sorted(VALID_STANCES) + [None]},
            "waypoints": {"type": ["array", "null"], "items": point},
        },
        "required": ["target", "x", "y", "ability", "stance", "waypoints"],
        "additionalProperties": False,
    }
    return {
        "type": "object",
        "properties": {
            "action": {"type": "string", "enum": list(action_names)},
            "params": params,
            "trigger": {"type": "string"},
            "speech": {"type": "string"},
            "duration_ms": {"type": "integer"},
        },
        "required": ["action", "params", "trigger", "speech", "duration_ms"],
        "additionalProperties": False,
    }


def _union_actions(archetypes: List[str]) -> List[str]:
    names: List[str] = []
    for archetype in archetypes:
        for name in allowed_actions(archetype):
            if name not in names:
                names.append(name)
    return names


def build_response_schema(variant: str, units: Dict[str, str]) -> Dict[str, Any]:
    """
    Build the strict response schema.

    Args:
        variant: "individual" or "group"
        units: Addressed unit_id -> archetype

    Returns:
        JSON schema dict
    """
    action_schema = build_action_schema(_union_actions(list(units.values())))
    actions = {"type": "array", "items": action_schema}
    base = {
        "response_type": {"type": "string", "enum": list(RESPONSE_TYPES)},
        "message": {"type": "string"},
    }

    if variant == SCHEMA_GROUP:
        unit_entry = {
            "type": "object",
            "properties": {
                "unit_id": {"type": "string", "enum": list(units)},
                "actions": actions,
            },
            "required": ["unit_id", "actions"],
            "additionalProperties": False,
        }
        return {
            "type": "object",
            "properties": dict(base, units={"type": "array", "items": unit_entry}),
            "required": ["response_type", "message", "units"],
            "additionalProperties": False,
        }

    if variant != SCHEMA_INDIVIDUAL:
        raise ValueError(f"Unknown schema variant: {variant}")

    return {
        "type": "object",
        "properties": dict(base, actions=actions),
        "required": ["response_type", "message", "actions"],
        "additionalProperties": False,
    }


def build_generator_request(
    request_id: str,
    command_text: str,
    units: Dict[str, str],
    snapshot: Optional[Dict[str, Any]] = None,
    command_history: Optional[List[Dict[str, Any]]] = None,
    max_steps: int = DEFAULT_MAX_STEPS_PER_PLAN,
) -> GeneratorRequest:
    """Assemble everything the provider needs for one call."""
    variant = choose_schema_variant(list(units.values()))
    return GeneratorRequest(
        request_id=request_id,
        system_prompt=build_system_prompt(max_steps),
        user_prompt=build_user_prompt(command_text, units, snapshot, command_history),
        json_schema=build_response_schema(variant, units),
        schema_variant=variant,
        units=dict(units),
        command_text=command_text,
    )


# =============================================================================
# HELPER FUNCTIONS
# =============================================================================

def _format_unit_line(unit_id: str, data: Dict[str, Any]) -> str:
    """
    One line per unit, minimal tokens:
        - alpha (soldier) at (10, 10), 85% health, stance neutral
    """
    position = data.get("position") or [0, 0]
    return (f"- {unit_id} ({data.get('archetype', 'unknown')}) at "
            f"({position[0]:.0f}, {position[1]:.0f}), "
            f"{data.get('health_pct', 0):.0f}% health, stance {data.get('stance', 'neutral')}")


def _format_addressed(units: Dict[str, str], snapshot: Dict[str, Any]) -> str:
    roster = snapshot.get("units", {})
    lines = []
    for unit_id, archetype in units.items():
        data = roster.get(unit_id, {"archetype": archetype})
        line = _format_unit_line(unit_id, data)
        lines.append(f"{line}; actions: {', '.join(allowed_actions(archetype))}")
        abilities = data.get("abilities")
        if abilities:
            lines.append(f"  abilities: {', '.join(abilities)}")
    return "\n".join(lines) if lines else "- None"


def _format_roster(roster: Dict[str, Dict[str, Any]], exclude: Optional[Dict[str, str]] = None) -> str:
    lines = [_format_unit_line(unit_id, data) for unit_id, data in roster.items()
             if not exclude or unit_id not in exclude]
    return "\n".join(lines) if lines else "- None"
