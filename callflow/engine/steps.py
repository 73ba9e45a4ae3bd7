"""
Step Definitions for the Workflow Engine.

Steps are the nodes of a workflow graph. Each step is an immutable record
of one of four kinds:

- task:   invoke a named capability and merge its output
- wait:   suspend the run for a fixed or data-derived duration
- choice: route to the first rule whose condition holds, else the default
- pass:   merge a static or path-derived value into the data document
"""

from typing import Annotated, Any, Iterator, Literal, Optional, Tuple, Union
from pydantic import BaseModel, Field
from enum import Enum

from callflow.engine.expressions import Condition
from callflow.engine.policy import CatchPolicy, RetryPolicy


class StepType(str, Enum):
    """Kinds of step in a workflow graph."""
    TASK = "task"
    WAIT = "wait"
    CHOICE = "choice"
    PASS = "pass"


class EdgeKind(str, Enum):
    """Kinds of outgoing edge a step can declare."""
    DEFAULT = "default"
    CONDITIONAL = "conditional"
    CATCH = "catch"


class StepBase(BaseModel):
    """
    Attributes shared by every step.

    Attributes:
        name: Unique step name within the graph
        comment: Free-form description
        next: Default next step (None for terminal steps and choices)
        end: True if the run succeeds once this step completes
        input_path: Slice of the data document handed to the step
        result_path: Where the step's result is written (None discards it)
        output_path: Slice of the document kept after the result is written
        retry: Retry policies, first match wins
        catch: Catch policies, first match wins
    """

    name: str = Field(..., min_length=1)
    comment: str = ""
    next: Optional[str] = None
    end: bool = False
    input_path: str = "$"
    result_path: Optional[str] = "$"
    output_path: str = "$"
    retry: Tuple[RetryPolicy, ...] = ()
    catch: Tuple[CatchPolicy, ...] = ()

    class Config:
        frozen = True

    @property
    def kind(self) -> StepType:
        return StepType(self.type)

    def edges(self) -> Iterator[Tuple[EdgeKind, str]]:
        """Yield (edge kind, target step) for every outgoing edge."""
        if self.next is not None:
            yield EdgeKind.DEFAULT, self.next
        for handler in self.catch:
            yield EdgeKind.CATCH, handler.next

    def paths(self) -> Iterator[str]:
        """Yield every path expression the step references."""
        yield self.input_path
        yield self.output_path
        if self.result_path is not None:
            yield self.result_path
        for handler in self.catch:
            if handler.result_path is not None:
                yield handler.result_path


class TaskStep(StepBase):
    """
    Invoke a capability from the registry.

    Attributes:
        capability: Registered capability name
        timeout_seconds: Per-invocation timeout (None uses the executor's
            default task timeout)
    """

    type: Literal["task"] = "task"
    capability: str = Field(..., min_length=1)
    timeout_seconds: Optional[float] = Field(None, gt=0)


class WaitStep(StepBase):
    """
    Suspend the run.

    Exactly one of `seconds` or `seconds_path` must be given. The resolved
    duration must be a positive number.
    """

    type: Literal["wait"] = "wait"
    seconds: Optional[float] = None
    seconds_path: Optional[str] = None

    def paths(self) -> Iterator[str]:
        yield from super().paths()
        if self.seconds_path is not None:
            yield self.seconds_path


class ChoiceRule(BaseModel):
    """A condition and the step to route to when it holds."""
    condition: Condition
    next: str

    class Config:
        frozen = True


class ChoiceStep(StepBase):
    """
    Route on the data document.

    Rules are evaluated in declared order and the first match wins; when
    none match the run continues at `default`.
    """

    type: Literal["choice"] = "choice"
    rules: Tuple[ChoiceRule, ...] = ()
    default: str

    def edges(self) -> Iterator[Tuple[EdgeKind, str]]:
        yield EdgeKind.DEFAULT, self.default
        for rule in self.rules:
            yield EdgeKind.CONDITIONAL, rule.next
        yield from super().edges()

    def paths(self) -> Iterator[str]:
        yield from super().paths()
        for rule in self.rules:
            yield from rule.condition.paths()


class PassStep(StepBase):
    """
    Merge a value into the data document.

    `result` is a static value; `result_from_path` copies a value already in
    the document. With neither, the step passes its input through.
    """

    type: Literal["pass"] = "pass"
    result: Any = None
    result_from_path: Optional[str] = None

    def paths(self) -> Iterator[str]:
        yield from super().paths()
        if self.result_from_path is not None:
            yield self.result_from_path


Step = Annotated[
    Union[TaskStep, WaitStep, ChoiceStep, PassStep],
    Field(discriminator="type"),
]
