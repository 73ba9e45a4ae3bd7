"""
Retry/Catch Policy Engine.

Given a step failure, decide whether to retry the step after a back-off
delay, route the run to a declared error handler, or fail the run.
Policies are declarative records attached to each step.
"""

from typing import Optional, Sequence, Tuple
from pydantic import BaseModel, Field, field_validator, model_validator
from dataclasses import dataclass
from enum import Enum
import random

from callflow.errors import FailureKind, StepFailure


def _matches(errors: Sequence[FailureKind], kind: FailureKind) -> bool:
    if kind == FailureKind.GRAPH_ERROR:
        return False
    return FailureKind.ALL in errors or kind in errors


class RetryPolicy(BaseModel):
    """
    Retry a failed step with exponential back-off.

    Attributes:
        errors: Failure kinds this policy applies to
        max_attempts: Total attempts including the first one (>= 1)
        interval_seconds: Delay before the first retry
        backoff_rate: Multiplier applied to the delay on each retry (>= 1)
        max_delay_seconds: Optional ceiling for a single delay
        jitter: Randomize each delay between half and the full value
    """

    errors: Tuple[FailureKind, ...] = Field((FailureKind.ALL,), min_length=1)
    max_attempts: int = Field(3, ge=1)
    interval_seconds: float = Field(1.0, ge=0)
    backoff_rate: float = Field(2.0, ge=1)
    max_delay_seconds: Optional[float] = Field(None, gt=0)
    jitter: bool = False

    class Config:
        frozen = True
        json_schema_extra = {
            "example": {
                "errors": ["CapabilityError", "Timeout"],
                "max_attempts": 3,
                "interval_seconds": 2,
                "backoff_rate": 2,
            }
        }

    @field_validator("errors")
    @classmethod
    def _no_graph_errors(cls, errors: Tuple[FailureKind, ...]) -> Tuple[FailureKind, ...]:
        if FailureKind.GRAPH_ERROR in errors:
            raise ValueError("GraphError cannot be retried")
        return errors

    def matches(self, kind: FailureKind) -> bool:
        return _matches(self.errors, kind)

    def delay_for(self, retries_made: int) -> float:
        """
        Delay before the next retry.

        Args:
            retries_made: Retries already performed for this step (0 for the
                first retry)
        """
        delay = self.interval_seconds * (self.backoff_rate ** retries_made)
        if self.max_delay_seconds is not None:
            delay = min(delay, self.max_delay_seconds)
        if self.jitter:
            delay = random.uniform(delay / 2, delay)
        return delay


class CatchPolicy(BaseModel):
    """
    Route a failed step to an error handler step.

    Attributes:
        errors: Failure kinds this handler catches
        next: Name of the handler step
        result_path: Where the error record is written in the data document
            (None discards it)
    """

    errors: Tuple[FailureKind, ...] = Field((FailureKind.ALL,), min_length=1)
    next: str
    result_path: Optional[str] = "$.error"

    class Config:
        frozen = True

    @model_validator(mode="after")
    def _check(self) -> "CatchPolicy":
        if FailureKind.GRAPH_ERROR in self.errors:
            raise ValueError("GraphError cannot be caught")
        return self

    def matches(self, kind: FailureKind) -> bool:
        return _matches(self.errors, kind)


class PolicyAction(str, Enum):
    """What the executor does with a failed step."""
    RETRY = "retry"
    CATCH = "catch"
    FAIL = "fail"


@dataclass(frozen=True)
class PolicyDecision:
    """Outcome of applying a step's policies to a failure."""
    action: PolicyAction
    delay_seconds: float = 0.0
    next_step: Optional[str] = None
    result_path: Optional[str] = None
    attempts: int = 1

    def to_dict(self) -> dict:
        decision: dict = {"action": self.action.value, "attempts": self.attempts}
        if self.action == PolicyAction.RETRY:
            decision["delay_seconds"] = self.delay_seconds
        if self.action == PolicyAction.CATCH:
            decision["next"] = self.next_step
        return decision


def decide(
    retry: Sequence[RetryPolicy],
    catch: Sequence[CatchPolicy],
    failure: StepFailure,
    attempt: int,
) -> PolicyDecision:
    """
    Apply retry and catch policies to a step failure.

    The first retry policy matching the failure kind decides whether another
    attempt is allowed. Once retries are exhausted (or none match), the first
    matching catch policy routes the run; otherwise the run fails.

    Args:
        retry: The step's retry policies, in declared order
        catch: The step's catch policies, in declared order
        failure: The classified failure
        attempt: Retries already made for the current step

    Returns:
        PolicyDecision
    """
    attempts = attempt + 1

    for policy in retry:
        if policy.matches(failure.kind):
            if attempts < policy.max_attempts:
                return PolicyDecision(
                    action=PolicyAction.RETRY,
                    delay_seconds=policy.delay_for(attempt),
                    attempts=attempts,
                )
            break

    for handler in catch:
        if handler.matches(failure.kind):
            return PolicyDecision(
                action=PolicyAction.CATCH,
                next_step=handler.next,
                result_path=handler.result_path,
                attempts=attempts,
            )

    return PolicyDecision(action=PolicyAction.FAIL, attempts=attempts)
