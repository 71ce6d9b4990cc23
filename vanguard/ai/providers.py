"""
Generator provider abstraction for Project Vanguard.
Supports mock, OpenAI, Anthropic and Groq.

===============================================================================
PROVIDER ARCHITECTURE
===============================================================================

    LLMClient (llm_client.py)
         |
         | submits provider.generate(request) to a worker thread
         v
    BaseProvider (abstract)
         |
         +-- MockProvider: Keyword generator (free, instant, offline)
         |                 Emits schema-shaped JSON for common orders
         |
         +-- OpenAIProvider: Chat Completions, response_format json_schema
         |                   (strict structured output)
         |
         +-- GroqProvider: OpenAI-compatible endpoint, same request shape
         |
         +-- AnthropicProvider: Messages API via raw HTTP, schema embedded
                                in the system prompt

===============================================================================
ERROR CONTRACT
===============================================================================

generate() returns a tuple (response_text, error):

1. On SUCCESS: (text, None). Text is expected to be JSON but is not parsed
   here; the orchestrator parses and validates it.
2. On FAILURE: (None, reason). Timeouts report "timeout"; HTTP failures
   report a short readable reason.

Providers NEVER raise exceptions to callers. All errors are caught,
printed and returned as the error half of the tuple. The orchestrator
decides whether to retry.

===============================================================================
ADDING NEW PROVIDERS
===============================================================================

1. Create a class inheriting from BaseProvider (or OpenAICompatibleProvider)
2. Implement __init__ with ProviderConfig
3. Implement generate() following the error contract
4. Add to PROVIDERS dict at bottom of file
5. Test with LLM_MODE=<provider_name> in .env

===============================================================================
"""

import json
import os
import re
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Tuple

import httpx

from vanguard.ai.schemas import (
    GeneratorRequest, ProviderConfig, RESPONSE_DIRECT, RESPONSE_PLAN, SCHEMA_GROUP,
)
from vanguard.config import DEFAULT_REQUEST_TIMEOUT_SECONDS
from vanguard.models.unit import ARCHETYPE_ABILITIES, allowed_actions


# =============================================================================
# API CONFIGURATION
# =============================================================================

OPENAI_API_ENDPOINT = "https://api.openai.com/v1/chat/completions"
GROQ_API_ENDPOINT = "https://api.groq.com/openai/v1/chat/completions"
ANTHROPIC_API_ENDPOINT = "https://api.anthropic.com/v1/messages"

# API version header required by Anthropic
ANTHROPIC_API_VERSION = "2023-06-01"


# =============================================================================
# JSON PARSING HELPER
# =============================================================================

def parse_llm_json_response(response_text: Optional[str]) -> Optional[Dict]:
    """
    Parse JSON from generator response text.

    Models sometimes wrap JSON in markdown code blocks or add explanatory
    text before/after, even in structured-output mode. This function
    handles all those cases.

    Args:
        response_text: Raw text response

    Returns:
        Parsed dict if valid JSON found, None otherwise
    """
    if not response_text:
        return None

    # Try 1: Direct JSON parse (model followed instructions perfectly)
    try:
        data = json.loads(response_text.strip())
        if isinstance(data, dict):
            return data
    except json.JSONDecodeError:
        pass

    # Try 2: Extract JSON from markdown code block (```json ... ```)
    json_block_match = re.search(r'```(?:json)?\s*(\{.*\})\s*```', response_text, re.DOTALL)
    if json_block_match:
        try:
            return json.loads(json_block_match.group(1))
        except json.JSONDecodeError:
            pass

    # Try 3: Find first { and last } (JSON buried in text)
    first_brace = response_text.find('{')
    last_brace = response_text.rfind('}')
    if first_brace != -1 and last_brace != -1 and last_brace > first_brace:
        try:
            return json.loads(response_text[first_brace:last_brace + 1])
        except json.JSONDecodeError:
            pass

    # All attempts failed
    print(f"Failed to parse JSON from generator response: {response_text[:200]}...")
    return None


class BaseProvider(ABC):
    """
    Abstract base class for generator providers.
    All providers must implement the generate() method.
    """

    def __init__(self, config: Optional[ProviderConfig] = None):
        self.config = config
        self._api_key: Optional[str] = None

    @property
    def name(self) -> str:
        """Provider name for logging."""
        return self.config.name if self.config else "unknown"

    @property
    def requires_key(self) -> bool:
        return bool(self.config and self.config.api_key_env)

    @abstractmethod
    def generate(self, request: GeneratorRequest,
                 timeout: float = DEFAULT_REQUEST_TIMEOUT_SECONDS) -> Tuple[Optional[str], Optional[str]]:
        """
        Ask the generator for a structured response.

        Args:
            request: Prompts, schema and addressed units
            timeout: HTTP timeout in seconds

        Returns:
            Tuple of (response_text, error_message)
        """

    def validate_config(self) -> bool:
        """Providers that need an API key check for it here."""
        if not self.requires_key:
            return True
        if not self.get_api_key():
            print(f"Warning: {self.config.api_key_env} not found in environment")
            return False
        return True

    def get_api_key(self) -> Optional[str]:
        """Get API key from environment if configured."""
        if self._api_key:
            return self._api_key
        if self.config and self.config.api_key_env:
            self._api_key = os.getenv(self.config.api_key_env)
        return self._api_key

    def _post(self, url: str, headers: Dict[str, str], body: Dict[str, Any],
              timeout: float) -> Tuple[Optional[Dict], Optional[str]]:
        """
        POST a JSON body and return the decoded JSON response.

        Never raises. HTTP failures are mapped to short readable reasons.
        """
        tag = type(self).__name__
        print(f"{tag}: POST {url}")

        try:
            with httpx.Client(timeout=timeout) as client:
                response = client.post(url, headers=headers, json=body)

            print(f"{tag}: Response status={response.status_code}")

            if response.status_code == 401:
                print(f"{tag}: ERROR 401 - Invalid API key")
                return None, "Invalid API key"

            if response.status_code == 429:
                print(f"{tag}: ERROR 429 - Rate limited")
                return None, "Rate limited - too many requests"

            if response.status_code >= 500:
                print(f"{tag}: ERROR {response.status_code} - Server error")
                return None, f"Server error ({response.status_code})"

            if response.status_code != 200:
                print(f"{tag}: ERROR {response.status_code} - {response.text[:200]}")
                return None, f"HTTP {response.status_code}"

            try:
                return response.json(), None
            except json.JSONDecodeError as e:
                print(f"{tag}: Failed to parse response JSON: {e}")
                return None, "Invalid JSON in response"

        except httpx.TimeoutException:
            print(f"{tag}: ERROR - Request timed out after {timeout}s")
            return None, "timeout"

        except httpx.ConnectError as e:
            print(f"{tag}: ERROR - Connection failed: {e}")
            return None, "Connection failed - check internet"

        except httpx.HTTPError as e:
            print(f"{tag}: ERROR - Transport: {type(e).__name__}: {e}")
            return None, f"Transport error: {type(e).__name__}"


# =============================================================================
# MOCK PROVIDER (keyword generator)
# =============================================================================

_COORDS = re.compile(r"\(?\s*(-?\d+(?:\.\d+)?)\s*,\s*(-?\d+(?:\.\d+)?)\s*\)?")
_SECONDS = r"(\d+(?:\.\d+)?)\s*(?:s\b|secs?\b|seconds?\b)"

# (pattern, trigger template). First match wins.
_CONDITIONS = [
    (re.compile(r"\b(?:if|when|once)\s+(?:my\s+|your\s+|its\s+|their\s+)?health\s+"
                r"(?:drops\s+|falls\s+|goes\s+|is\s+|gets\s+)?(?:below|under|less than)\s+"
                r"(\d+(?:\.\d+)?)\s*%?"),
     "health_pct < {0}"),
    (re.compile(r"\b(?:if|when|once)\s+(?:an?\s+|the\s+|any\s+)?enem(?:y|ies)\s+"
                r"(?:is\s+|are\s+|gets?\s+|comes?\s+)?(?:within|closer than|inside)\s+"
                r"(\d+(?:\.\d+)?)"),
     "enemy_dist < {0}"),
    (re.compile(r"\b(?:if|when|once)\s+(?:there are\s+)?more than\s+(\d+)\s+enem"),
     "enemy_count > {0}"),
    (re.compile(r"\bafter\s+" + _SECONDS), "time >= {0}"),
]

_ATTACK_WORDS = ("attack", "engage", "fire on", "shoot", "charge")
_RETREAT_WORDS = ("retreat", "fall back", "withdraw", "pull back")
_STEALTH_WORDS = ("stealth", "cloak", "go dark", "hide")
_MOVE_WORDS = ("move", "go to", "advance", "head to", "run to")
_HOLD_WORDS = ("hold", "stay", "stand fast", "dig in")
_GENERIC_TARGETS = {"nearest", "closest", "enemy", "enemies", "them", "the", "it"}

_SPEECH = {
    "move": "Moving.",
    "attack": "Engaging!",
    "retreat": "Pulling back!",
    "patrol": "Starting patrol.",
    "hold": "Holding here.",
    "set_stance": "Understood.",
    "use_ability": "On it.",
    "heal": "Patching up.",
    "stealth": "Going dark.",
    "wait": "Standing by.",
}


def _empty_params() -> Dict[str, Any]:
    return {"target": None, "x": None, "y": None, "ability": None, "stance": None, "waypoints": None}


def _number(text: str):
    value = float(text)
    return int(value) if value.is_integer() else value


def _mock_action(clause: str, archetype: str) -> Optional[Dict[str, Any]]:
    """Keyword-match one clause into one action, or None if nothing fits."""
    lower = clause.lower()
    allowed = allowed_actions(archetype)
    params = _empty_params()
    coords = _COORDS.findall(lower)
    kind = None

    if any(word in lower for word in _RETREAT_WORDS):
        kind = "retreat"
        if coords:
            params["x"], params["y"] = _number(coords[0][0]), _number(coords[0][1])
    elif "heal" in lower or "patch up" in lower:
        kind = "heal"
    elif any(word in lower for word in _STEALTH_WORDS):
        kind = "stealth"
    elif "patrol" in lower:
        if coords:
            kind = "patrol"
            params["waypoints"] = [{"x": _number(x), "y": _number(y)} for x, y in coords]
    elif any(word in lower for word in _ATTACK_WORDS):
        kind = "attack"
        match = re.search(r"(?:attack|engage|fire on|shoot|charge)\s+(?:the\s+)?([a-z0-9_]+)", lower)
        target = match.group(1) if match else None
        params["target"] = target if target and target not in _GENERIC_TARGETS else "nearest"
    elif re.search(r"\b(aggressive|defensive|neutral)\b", lower):
        kind = "set_stance"
        params["stance"] = re.search(r"\b(aggressive|defensive|neutral)\b", lower).group(1)
    else:
        for ability in ARCHETYPE_ABILITIES.get(archetype, []):
            if re.search(rf"\b{ability}\b", lower):
                kind = "use_ability"
                params["ability"] = ability
                break

    if kind is None:
        if any(word in lower for word in _MOVE_WORDS):
            if coords:
                kind = "move"
                params["x"], params["y"] = _number(coords[0][0]), _number(coords[0][1])
            else:
                match = re.search(r"\bto\s+([a-z0-9_]+)", lower)
                if match:
                    kind = "move"
                    params["target"] = match.group(1)
        elif any(word in lower for word in _HOLD_WORDS):
            kind = "hold"
        elif "wait" in lower:
            kind = "wait"

    if kind is None or kind not in allowed:
        return None

    trigger = ""
    for pattern, template in _CONDITIONS:
        match = pattern.search(lower)
        if match:
            trigger = template.format(match.group(1))
            break

    duration = 0
    match = re.search(r"\bfor\s+" + _SECONDS, lower)
    if match:
        duration = int(float(match.group(1)) * 1000)

    return {
        "action": kind,
        "params": params,
        "trigger": trigger,
        "speech": _SPEECH[kind],
        "duration_ms": duration,
    }


def build_mock_actions(command_text: str, archetype: str) -> List[Dict[str, Any]]:
    """
    Turn an order into a list of actions for one archetype.

    Clauses are split on "then" and ";". A conditional retreat is followed
    by a heal step when the unit can heal.
    """
    clauses = [c for c in re.split(r"\s*(?:;|,?\s*\b(?:and\s+)?then\b)\s*", command_text) if c.strip()]
    actions = []
    for clause in clauses:
        action = _mock_action(clause, archetype)
        if action:
            actions.append(action)

    has_heal = any(a["action"] == "heal" for a in actions)
    conditional_retreat = any(a["action"] == "retreat" and a["trigger"] for a in actions)
    if conditional_retreat and not has_heal and "heal" in allowed_actions(archetype):
        actions.append({
            "action": "heal",
            "params": _empty_params(),
            "trigger": "",
            "speech": _SPEECH["heal"],
            "duration_ms": 0,
        })
    return actions


def _response_type(actions: List[Dict[str, Any]]) -> str:
    if len(actions) == 1 and not actions[0]["trigger"]:
        return RESPONSE_DIRECT
    return RESPONSE_PLAN


def build_mock_response(request: GeneratorRequest) -> Dict[str, Any]:
    """Schema-shaped response for a request, in the request's schema variant."""
    text = request.command_text

    if request.schema_variant == SCHEMA_GROUP:
        entries = []
        response_type = RESPONSE_DIRECT
        for unit_id, archetype in request.units.items():
            actions = build_mock_actions(text, archetype)
            if actions:
                entries.append({"unit_id": unit_id, "actions": actions})
                if _response_type(actions) == RESPONSE_PLAN:
                    response_type = RESPONSE_PLAN
        count = sum(len(e["actions"]) for e in entries)
        message = f"{count} order(s) for {len(entries)} unit(s)" if entries else f"Could not understand order: {text}"
        return {"response_type": response_type, "message": message, "units": entries}

    archetype = next(iter(request.units.values()), None)
    actions = build_mock_actions(text, archetype) if archetype else []
    if not actions:
        return {"response_type": RESPONSE_DIRECT,
                "message": f"Could not understand order: {text}", "actions": []}
    return {
        "response_type": _response_type(actions),
        "message": f"{len(actions)} order(s) understood",
        "actions": actions,
    }


class MockProvider(BaseProvider):
    """
    Mock provider using keyword matching.
    Fast, free, deterministic - perfect for development and testing.
    """

    def __init__(self):
        super().__init__(ProviderConfig(
            name="mock",
            api_key_env="",
            model="mock-v1",
        ))

    def generate(self, request: GeneratorRequest,
                 timeout: float = DEFAULT_REQUEST_TIMEOUT_SECONDS) -> Tuple[Optional[str], Optional[str]]:
        return json.dumps(build_mock_response(request)), None


# =============================================================================
# LIVE PROVIDERS
# =============================================================================

class OpenAICompatibleProvider(BaseProvider):
    """
    Chat Completions with strict structured output.

    The schema goes in response_format so the model can only emit
    schema-shaped JSON.
    """

    def generate(self, request: GeneratorRequest,
                 timeout: float = DEFAULT_REQUEST_TIMEOUT_SECONDS) -> Tuple[Optional[str], Optional[str]]:
        if not self.validate_config():
            return None, "API key not configured"

        headers = {
            "Authorization": f"Bearer {self.get_api_key()}",
            "content-type": "application/json",
        }
        body = {
            "model": self.config.model,
            "max_tokens": self.config.max_tokens,
            "temperature": self.config.temperature,
            "messages": [
                {"role": "system", "content": request.system_prompt},
                {"role": "user", "content": request.user_prompt},
            ],
            "response_format": {
                "type": "json_schema",
                "json_schema": {
                    "name": request.schema_name,
                    "strict": True,
                    "schema": request.json_schema,
                },
            },
        }

        # Log request (without API key!)
        print(f"{type(self).__name__}: model={self.config.model}, "
              f"variant={request.schema_variant}, prompt_len={len(request.user_prompt)}")

        response_json, error = self._post(self.config.endpoint, headers, body, timeout)
        if error:
            return None, error

        # Response format: {"choices": [{"message": {"content": "..."}}], ...}
        choices = response_json.get("choices") or []
        if not choices:
            return None, "No choices in response"
        message = choices[0].get("message") or {}
        if message.get("refusal"):
            return None, f"Refused: {message['refusal'][:100]}"
        content = message.get("content")
        if not content:
            return None, "Empty text in response"

        usage = response_json.get("usage", {})
        if usage:
            print(f"{type(self).__name__}: Tokens used - "
                  f"input={usage.get('prompt_tokens', 0)}, output={usage.get('completion_tokens', 0)}")
        return content, None


class OpenAIProvider(OpenAICompatibleProvider):
    """OpenAI API provider."""

    def __init__(self):
        super().__init__(ProviderConfig(
            name="openai",
            api_key_env="OPENAI_API_KEY",
            model="gpt-4o-mini",
            endpoint=OPENAI_API_ENDPOINT,
        ))


class GroqProvider(OpenAICompatibleProvider):
    """Groq API provider (OpenAI-compatible endpoint)."""

    def __init__(self):
        super().__init__(ProviderConfig(
            name="groq",
            api_key_env="GROQ_API_KEY",
            model="llama-3.3-70b-versatile",
            endpoint=GROQ_API_ENDPOINT,
        ))


class AnthropicProvider(BaseProvider):
    """
    Anthropic Messages API provider.

    The Messages API has no response_format, so the schema is appended to
    the system prompt and the reply goes through parse_llm_json_response
    on the orchestrator side like any other.
    """

    def __init__(self):
        super().__init__(ProviderConfig(
            name="anthropic",
            api_key_env="ANTHROPIC_API_KEY",
            model="claude-3-5-haiku-latest",
            endpoint=ANTHROPIC_API_ENDPOINT,
        ))

    def generate(self, request: GeneratorRequest,
                 timeout: float = DEFAULT_REQUEST_TIMEOUT_SECONDS) -> Tuple[Optional[str], Optional[str]]:
        if not self.validate_config():
            return None, "API key not configured"

        headers = {
            "x-api-key": self.get_api_key(),
            "content-type": "application/json",
            "anthropic-version": ANTHROPIC_API_VERSION,
        }
        system_prompt = (
            f"{request.system_prompt}\n\n## Response Schema\n"
            f"Return ONLY JSON matching this schema:\n"
            f"```json\n{json.dumps(request.json_schema, indent=1)}\n```"
        )
        body = {
            "model": self.config.model,
            "max_tokens": self.config.max_tokens,
            "temperature": self.config.temperature,
            "system": system_prompt,
            "messages": [
                {"role": "user", "content": request.user_prompt}
            ],
        }

        print(f"AnthropicProvider: model={self.config.model}, "
              f"variant={request.schema_variant}, prompt_len={len(request.user_prompt)}")

        response_json, error = self._post(self.config.endpoint, headers, body, timeout)
        if error:
            return None, error

        # Response format: {"content": [{"type": "text", "text": "..."}], ...}
        content = response_json.get("content", [])
        if not content or not isinstance(content, list):
            print("AnthropicProvider: No content in response")
            return None, "No content in response"

        text_content = content[0].get("text", "")
        if not text_content:
            print("AnthropicProvider: Empty text in response")
            return None, "Empty text in response"

        usage = response_json.get("usage", {})
        if usage:
            print(f"AnthropicProvider: Tokens used - "
                  f"input={usage.get('input_tokens', 0)}, output={usage.get('output_tokens', 0)}")
        return text_content, None


# Provider registry for easy lookup
PROVIDERS: Dict[str, type] = {
    "mock": MockProvider,
    "openai": OpenAIProvider,
    "anthropic": AnthropicProvider,
    "groq": GroqProvider,
}


def get_provider(provider_name: str) -> BaseProvider:
    """
    Get a provider instance by name.

    Args:
        provider_name: One of "mock", "openai", "anthropic", "groq"

    Returns:
        Provider instance

    Raises:
        ValueError: If provider name is unknown
    """
    provider_class = PROVIDERS.get(provider_name.lower())
    if not provider_class:
        raise ValueError(
            f"Unknown provider: {provider_name}. "
            f"Available: {list(PROVIDERS.keys())}"
        )
    return provider_class()
