"""
Error taxonomy for the Workflow Engine.

Step failures are classified into a small set of failure kinds before they
reach the retry/catch policy engine:

- Timeout: a capability did not answer within its step timeout
- CapabilityError: the external task reported a failure
- InvalidInput: a data-document path or type mismatch
- GraphError: a malformed workflow definition (build time, never retried)

Cancellation is a run status, not an error.
"""

from typing import Any, Dict, Optional
from enum import Enum


class FailureKind(str, Enum):
    """Kinds of failure a step can produce."""
    TIMEOUT = "Timeout"
    CAPABILITY_ERROR = "CapabilityError"
    INVALID_INPUT = "InvalidInput"
    GRAPH_ERROR = "GraphError"
    ALL = "All"  # Wildcard, only meaningful inside retry/catch policies


class CallflowError(Exception):
    """Base exception for the workflow engine."""
    pass


class GraphError(CallflowError):
    """
    Malformed workflow definition.

    Raised by the graph builder; fatal and never retried. At run time it
    only appears when a step has no resolvable next step.
    """

    def __init__(self, message: str, errors: Optional[list] = None):
        self.errors = errors or [message]
        super().__init__(message)


class GraphNotFound(CallflowError):
    """No graph is registered under the requested ID."""

    def __init__(self, graph_id: str):
        self.graph_id = graph_id
        super().__init__(f"Graph '{graph_id}' not found")


class RunNotFound(CallflowError):
    """No run exists with the requested ID."""

    def __init__(self, run_id: str):
        self.run_id = run_id
        super().__init__(f"Run '{run_id}' not found")


class StepFailure(CallflowError):
    """
    A classified failure raised while dispatching a step.

    Attributes:
        kind: The failure kind used for retry/catch matching
        cause: Human-readable description of what went wrong
        details: Optional structured detail recorded in history
    """

    kind: FailureKind = FailureKind.CAPABILITY_ERROR

    def __init__(
        self,
        cause: str,
        kind: Optional[FailureKind] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        if kind is not None:
            self.kind = kind
        self.cause = cause
        self.details = details or {}
        super().__init__(cause)

    def to_error(self, step_name: Optional[str] = None) -> Dict[str, Any]:
        """Error record written by catch handlers and history entries."""
        error: Dict[str, Any] = {
            "error": self.kind.value,
            "cause": self.cause,
        }
        if step_name is not None:
            error["step"] = step_name
        if self.details:
            error["details"] = self.details
        return error

    def __repr__(self) -> str:
        return f"{type(self).__name__}(kind={self.kind.value!r}, cause={self.cause!r})"


class TaskTimeout(StepFailure):
    """A capability did not complete within its timeout."""
    kind = FailureKind.TIMEOUT


class CapabilityError(StepFailure):
    """An external capability reported a failure."""
    kind = FailureKind.CAPABILITY_ERROR


class InvalidInput(StepFailure):
    """A path reference or operand type did not match the data document."""
    kind = FailureKind.INVALID_INPUT
