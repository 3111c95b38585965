"""
Error Types

Exception hierarchy shared by the orchestration engine. Only
PlanGenerationError is meant to reach the user as a request-level failure;
everything else is caught and folded into step results or the context's
error log.
"""

from typing import Optional


class StepwiseError(Exception):
    """Base class for all stepwise errors."""
    pass


class PlanGenerationError(StepwiseError):
    """Raised when no usable plan could be produced for a request."""
    pass


class SchemaValidationError(StepwiseError):
    """
    Raised when the model output never conformed to the requested schema.

    Attributes:
        text: The last raw model output, kept for debugging.
    """

    def __init__(self, message: str, text: Optional[str] = None):
        super().__init__(message)
        self.text = text


class PlanParseError(StepwiseError):
    """Raised when a raw plan object cannot be turned into a Plan."""
    pass


class RegistryError(StepwiseError):
    """Base class for worker registry failures."""
    pass


class UnknownWorkerRoleError(RegistryError):
    """Raised for a role name outside the five worker roles."""
    pass


class WorkerNotRegisteredError(RegistryError):
    """Raised when a valid role has no worker registered."""
    pass


class ContextDecodeError(StepwiseError):
    """Raised when a serialized execution context cannot be decoded."""
    pass


class ToolError(StepwiseError):
    """Raised by tool handlers for invalid or refused invocations."""
    pass
