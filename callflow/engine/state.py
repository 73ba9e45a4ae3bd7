"""
Run State for the Workflow Engine.

RunState is owned exclusively by one run's executor. It is a plain pydantic
model so it can be serialized as an opaque checkpoint at any transition
boundary.
"""

from typing import Any, Dict, Optional
from pydantic import BaseModel, Field
from datetime import datetime
from copy import deepcopy
from enum import Enum


class RunStatus(str, Enum):
    """Lifecycle status of a run."""
    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    TIMED_OUT = "timed_out"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self not in (RunStatus.PENDING, RunStatus.RUNNING)


class RunError(BaseModel):
    """Why a run did not succeed."""
    kind: str
    step: Optional[str] = None
    cause: str = ""


class RunState(BaseModel):
    """
    The mutable state of one run.

    Attributes:
        run_id: Unique run identifier
        graph_id: Graph being executed
        current_step: Step about to be (or being) dispatched
        data: The run's data document
        status: Lifecycle status
        attempt: Retries already made for the current step
        transitions: Step executions so far (including retries)
        started_at: Wall-clock start time
        completed_at: Wall-clock time the run reached a terminal status
        deadline: Overall deadline on the timer's monotonic clock
        timeout_seconds: Overall run timeout the deadline was derived from
        error: Failure detail for failed and timed out runs
    """

    run_id: str
    graph_id: str
    current_step: Optional[str] = None
    data: Dict[str, Any] = Field(default_factory=dict)
    status: RunStatus = RunStatus.PENDING
    attempt: int = 0
    transitions: int = 0
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    deadline: Optional[float] = None
    timeout_seconds: Optional[float] = None
    error: Optional[RunError] = None

    def summary(self) -> "RunSummary":
        return RunSummary(
            run_id=self.run_id,
            graph_id=self.graph_id,
            status=self.status,
            current_step=self.current_step,
            attempt=self.attempt,
            transitions=self.transitions,
            data=deepcopy(self.data),
            started_at=self.started_at,
            completed_at=self.completed_at,
            error=self.error,
        )

    def to_checkpoint(self) -> Dict[str, Any]:
        """Serialize to a JSON-compatible checkpoint."""
        return self.model_dump(mode="json")

    @classmethod
    def from_checkpoint(cls, checkpoint: Dict[str, Any]) -> "RunState":
        """Restore a RunState from a checkpoint."""
        return cls.model_validate(checkpoint)


class RunSummary(BaseModel):
    """Read-only view of a run returned by the control surface."""
    run_id: str
    graph_id: str
    status: RunStatus
    current_step: Optional[str]
    attempt: int
    transitions: int
    data: Dict[str, Any]
    started_at: Optional[datetime]
    completed_at: Optional[datetime]
    error: Optional[RunError] = None

    @property
    def duration_ms(self) -> Optional[float]:
        if self.started_at and self.completed_at:
            return (self.completed_at - self.started_at).total_seconds() * 1000
        return None
