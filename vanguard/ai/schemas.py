"""
Schemas for generator requests and responses in Project Vanguard.

A generator response is a tagged union:
    DirectCommandSet   - one immediate action per unit (translator)
    MultiStepPlanSet   - one plan per unit (execution engine)
    ResponseError      - the response could not be used

parse_structured_response() turns the schema-shaped JSON the generator
returns into one of the three. It checks structure only (response_type,
the actions/units lists, addressed unit ids). Field-level checks belong to
the validator.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union

RESPONSE_DIRECT = "direct"
RESPONSE_PLAN = "plan"
RESPONSE_TYPES = (RESPONSE_DIRECT, RESPONSE_PLAN)

SCHEMA_INDIVIDUAL = "individual"
SCHEMA_GROUP = "group"


@dataclass
class GeneratorRequest:
    """
    One outbound call to the external generator.

    Attributes:
        request_id: Orchestrator request this call belongs to
        system_prompt: Role and rules for the generator
        user_prompt: Command text plus world context
        json_schema: Strict response schema (individual or group variant)
        schema_variant: "individual" or "group"
        units: Addressed unit_id -> archetype
        command_text: The player's original order
    """
    request_id: str
    system_prompt: str
    user_prompt: str
    json_schema: Dict[str, Any]
    schema_variant: str = SCHEMA_INDIVIDUAL
    units: Dict[str, str] = field(default_factory=dict)
    command_text: str = ""

    @property
    def unit_ids(self) -> List[str]:
        return list(self.units)

    @property
    def schema_name(self) -> str:
        return f"unit_orders_{self.schema_variant}"


@dataclass
class DirectCommandSet:
    """Immediate commands: unit_id -> the single action it should perform."""
    commands: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    message: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {"type": RESPONSE_DIRECT, "commands": self.commands, "message": self.message}


@dataclass
class MultiStepPlanSet:
    """Plans: unit_id -> ordered list of step dicts."""
    plans: Dict[str, List[Dict[str, Any]]] = field(default_factory=dict)
    message: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {"type": RESPONSE_PLAN, "plans": self.plans, "message": self.message}


@dataclass
class ResponseError:
    """
    The generator's answer was unusable.

    retryable=True for transport-level problems (not JSON, empty body),
    False when the JSON arrived but has the wrong shape.
    """
    error: str
    retryable: bool = False
    raw_text: Optional[str] = None


StructuredResponse = Union[DirectCommandSet, MultiStepPlanSet, ResponseError]


@dataclass
class ProviderConfig:
    """
    Configuration for a generator provider.
    """
    name: str
    api_key_env: str  # Environment variable name for API key
    model: str  # Default model to use
    endpoint: Optional[str] = None
    max_tokens: int = 1500  # Plans of up to 10 steps need room
    temperature: float = 0.2  # Low temperature for consistent structure


def _unit_actions(json_data: Dict[str, Any], unit_ids: List[str]):
    """
    Pull unit_id -> actions out of either schema variant.

    Returns:
        Tuple of (mapping, error_message)
    """
    if "units" in json_data:
        entries = json_data["units"]
        if not isinstance(entries, list):
            return None, "'units' must be a list"
        mapping: Dict[str, List[Any]] = {}
        for entry in entries:
            if not isinstance(entry, dict):
                return None, "each 'units' entry must be an object"
            unit_id = entry.get("unit_id")
            if unit_id not in unit_ids:
                return None, f"response addressed unknown unit: {unit_id}"
            actions = entry.get("actions")
            if not isinstance(actions, list):
                return None, f"actions for {unit_id} must be a list"
            mapping.setdefault(unit_id, []).extend(actions)
        return mapping, None

    actions = json_data.get("actions")
    if not isinstance(actions, list):
        return None, "response has no 'actions' list"
    # Individual variant: every addressed unit gets the same orders
    return {unit_id: list(actions) for unit_id in unit_ids}, None


def parse_structured_response(json_data: Any, unit_ids: List[str]) -> StructuredResponse:
    """
    Classify a parsed generator response.

    Args:
        json_data: Parsed JSON (None if the text was not JSON)
        unit_ids: Units the request addressed

    Returns:
        DirectCommandSet, MultiStepPlanSet or ResponseError

    A "direct" response that carries more than one action for a unit, or a
    trigger on its action, is treated as a plan: the steps are kept and the
    engine sequences them.
    """
    if json_data is None:
        return ResponseError("generator response was not valid JSON", retryable=True)
    if not isinstance(json_data, dict):
        return ResponseError("generator response must be a JSON object")

    response_type = json_data.get("response_type")
    if response_type not in RESPONSE_TYPES:
        return ResponseError(f"unknown response_type: {response_type}")

    message = json_data.get("message") or ""
    if not isinstance(message, str):
        message = str(message)

    mapping, error = _unit_actions(json_data, unit_ids)
    if error:
        return ResponseError(error)

    # Units the generator chose not to order are left alone
    mapping = {unit_id: actions for unit_id, actions in mapping.items() if actions}

    if response_type == RESPONSE_DIRECT:
        is_plan = any(
            len(actions) > 1
            or (isinstance(actions[0], dict) and str(actions[0].get("trigger") or "").strip())
            for actions in mapping.values()
        )
        if not is_plan:
            return DirectCommandSet(
                commands={unit_id: actions[0] for unit_id, actions in mapping.items()},
                message=message,
            )

    return MultiStepPlanSet(plans=mapping, message=message)
