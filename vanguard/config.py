"""
Configuration for Project Vanguard.

Everything tunable about the command pipeline lives here. Values come from
environment variables (a .env file is loaded first), with the defaults
below when a variable is missing or unusable.

Usage:
    from vanguard.config import CommandConfig

    config = CommandConfig.from_env()
    engine = PlanExecutionEngine(world, translator, validator, events,
                                 failure_policy=config.step_failure_policy)
"""

import os
from dataclasses import dataclass, asdict
from typing import Dict, Any

from dotenv import load_dotenv

# Load environment variables
load_dotenv()

# =============================================================================
# DEFAULTS
# =============================================================================

# Longest plan the generator may hand us. Anything longer is rejected
# wholesale; we never execute a truncated plan.
DEFAULT_MAX_STEPS_PER_PLAN = 10

# Generator requests allowed in flight at once. Matches the worker pool size
# of the LLM client.
DEFAULT_MAX_CONCURRENT_REQUESTS = 2

# Rolling 60s window cap. Requests over the cap wait in a FIFO queue.
DEFAULT_REQUESTS_PER_MINUTE = 20

# Wall-clock limit per request. Structured-output calls with a plan schema
# are much slower than the old single-action parse (~5s), hence 30s.
DEFAULT_REQUEST_TIMEOUT_SECONDS = 30.0

# Retries after the first attempt. 0 = fail on first error.
DEFAULT_MAX_RETRIES = 2

# First retry waits this long, then doubles (1s, 2s, 4s, ...)
DEFAULT_RETRY_BACKOFF_SECONDS = 1.0

# What a failed capability call does to the rest of the plan
STEP_FAILURE_ABORT = "abort"
STEP_FAILURE_SKIP = "skip"
VALID_FAILURE_POLICIES = {STEP_FAILURE_ABORT, STEP_FAILURE_SKIP}
DEFAULT_STEP_FAILURE_POLICY = STEP_FAILURE_ABORT


def _env_int(name: str, default: int, minimum: int = 0) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = int(raw)
    except ValueError:
        print(f"Warning: {name}='{raw}' is not an integer, using {default}")
        return default
    if value < minimum:
        print(f"Warning: {name}={value} is below {minimum}, using {default}")
        return default
    return value


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = float(raw)
    except ValueError:
        print(f"Warning: {name}='{raw}' is not a number, using {default}")
        return default
    if value < 0:
        print(f"Warning: {name}={value} is negative, using {default}")
        return default
    return value


@dataclass
class CommandConfig:
    """
    Deployment settings for the orchestrator and execution engine.

    Attributes:
        max_steps_per_plan: Plans longer than this are rejected
        max_concurrent_requests: Outstanding generator requests at once
        requests_per_minute: Rolling per-minute dispatch cap
        request_timeout_seconds: Wall-clock timeout per request
        max_retries: Retries after the first failed attempt
        retry_backoff_seconds: Base delay, doubled per retry
        step_failure_policy: "abort" (plan FAILED) or "skip" (next step)
    """
    max_steps_per_plan: int = DEFAULT_MAX_STEPS_PER_PLAN
    max_concurrent_requests: int = DEFAULT_MAX_CONCURRENT_REQUESTS
    requests_per_minute: int = DEFAULT_REQUESTS_PER_MINUTE
    request_timeout_seconds: float = DEFAULT_REQUEST_TIMEOUT_SECONDS
    max_retries: int = DEFAULT_MAX_RETRIES
    retry_backoff_seconds: float = DEFAULT_RETRY_BACKOFF_SECONDS
    step_failure_policy: str = DEFAULT_STEP_FAILURE_POLICY

    def __post_init__(self):
        if self.step_failure_policy not in VALID_FAILURE_POLICIES:
            raise ValueError(
                f"Unknown step failure policy: {self.step_failure_policy}. "
                f"Use one of: {sorted(VALID_FAILURE_POLICIES)}"
            )
        if self.max_steps_per_plan < 1:
            raise ValueError("max_steps_per_plan must be at least 1")
        if self.max_concurrent_requests < 1:
            raise ValueError("max_concurrent_requests must be at least 1")
        if self.requests_per_minute < 1:
            raise ValueError("requests_per_minute must be at least 1")

    @classmethod
    def from_env(cls) -> "CommandConfig":
        """Build config from VANGUARD_* environment variables."""
        policy = os.getenv("VANGUARD_STEP_FAILURE_POLICY", DEFAULT_STEP_FAILURE_POLICY).lower()
        if policy not in VALID_FAILURE_POLICIES:
            print(f"Warning: Unknown VANGUARD_STEP_FAILURE_POLICY '{policy}', "
                  f"falling back to '{DEFAULT_STEP_FAILURE_POLICY}'")
            policy = DEFAULT_STEP_FAILURE_POLICY

        return cls(
            max_steps_per_plan=_env_int(
                "VANGUARD_MAX_STEPS_PER_PLAN", DEFAULT_MAX_STEPS_PER_PLAN, minimum=1),
            max_concurrent_requests=_env_int(
                "VANGUARD_MAX_CONCURRENT_REQUESTS", DEFAULT_MAX_CONCURRENT_REQUESTS, minimum=1),
            requests_per_minute=_env_int(
                "VANGUARD_REQUESTS_PER_MINUTE", DEFAULT_REQUESTS_PER_MINUTE, minimum=1),
            request_timeout_seconds=_env_float(
                "VANGUARD_REQUEST_TIMEOUT_SECONDS", DEFAULT_REQUEST_TIMEOUT_SECONDS),
            max_retries=_env_int("VANGUARD_MAX_RETRIES", DEFAULT_MAX_RETRIES),
            retry_backoff_seconds=_env_float(
                "VANGUARD_RETRY_BACKOFF_SECONDS", DEFAULT_RETRY_BACKOFF_SECONDS),
            step_failure_policy=policy,
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)
