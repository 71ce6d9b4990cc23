"""
Error taxonomy for Project Vanguard.

Where each error lives in the pipeline:

    Orchestrator ──> [generator] ──> Validator ──> Translator / Engine
         |                |              |                 |
    StaleResponse   ExternalService   SchemaValidation  ActionExecution
    (not an error,  (retried with     (rejected before  (step failed,
     dropped)        backoff)          any execution)    policy decides)

Most of the pipeline does NOT raise these. Validators return
ValidationResult objects, providers return (text, error) tuples and the
orchestrator turns failures into command_failed events. The classes exist
so callers that want exceptions (tests, the HTTP layer, trigger
compilation) have a stable vocabulary.
"""

from typing import Optional


class VanguardError(Exception):
    """Base class for all pipeline errors."""


class CompileError(VanguardError):
    """A trigger expression could not be compiled."""

    def __init__(self, message: str, expression: str = "", position: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.expression = expression
        self.position = position


class SchemaValidationError(VanguardError):
    """An inbound command or plan failed the action schema."""


class ExternalServiceError(VanguardError):
    """The external generator timed out, failed or returned garbage."""

    def __init__(self, reason: str, retryable: bool = True):
        super().__init__(reason)
        self.reason = reason
        self.retryable = retryable


class ActionExecutionError(VanguardError):
    """A capability call on a unit failed."""

    def __init__(self, message: str, unit_id: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.unit_id = unit_id
