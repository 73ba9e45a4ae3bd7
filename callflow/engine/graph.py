"""
Graph Definition for the Workflow Engine.

A GraphDefinition is the serializable document describing a workflow. The
builder validates it and produces a StateGraph: an immutable value shared
read-only by every run of the workflow.
"""

from types import MappingProxyType
from typing import Any, Dict, FrozenSet, List, Mapping, Optional, Set, Tuple
from pydantic import BaseModel, Field
from dataclasses import dataclass, field
import uuid

from callflow.errors import GraphError, StepFailure
from callflow.engine.expressions import parse_path
from callflow.engine.steps import (
    ChoiceStep,
    EdgeKind,
    PassStep,
    Step,
    StepType,
    WaitStep,
)


class GraphDefinition(BaseModel):
    """
    Serializable workflow definition.

    Attributes:
        name: Human-readable workflow name
        description: What the workflow does
        start_at: Name of the first step
        steps: Ordered list of step definitions
        timeout_seconds: Default overall deadline for runs (None uses the
            engine default)
        allow_loops: Permit cycles through choice rules and catch handlers
        max_transitions: Upper bound on step executions per run
    """

    name: str = Field(..., min_length=1)
    description: str = ""
    start_at: str
    steps: Tuple[Step, ...]
    timeout_seconds: Optional[float] = Field(None, gt=0)
    allow_loops: bool = False
    max_transitions: int = Field(100, ge=1)

    class Config:
        frozen = True
        json_schema_extra = {
            "example": {
                "name": "route_call",
                "start_at": "Analyze",
                "steps": [
                    {"type": "task", "name": "Analyze", "capability": "analyze_connection", "next": "Route"},
                    {
                        "type": "choice",
                        "name": "Route",
                        "rules": [
                            {
                                "condition": {"variable": "$.connection_type", "operator": "equals", "value": "ivr"},
                                "next": "Navigate",
                            }
                        ],
                        "default": "Done",
                    },
                    {"type": "task", "name": "Navigate", "capability": "navigate_ivr", "next": "Done"},
                    {"type": "pass", "name": "Done", "end": True},
                ],
            }
        }


@dataclass(frozen=True)
class StateGraph:
    """
    An immutable, validated workflow graph.

    Built once by `build()` and shared by every run. Steps are exposed
    through a read-only mapping that preserves definition order.

    Attributes:
        graph_id: Unique identifier for this graph
        name: Human-readable name
        description: What the workflow does
        start: Name of the first step
        steps: Read-only mapping of step name -> step
        timeout_seconds: Default overall deadline for runs
        allow_loops: Whether cycles through rule/catch edges are permitted
        max_transitions: Upper bound on step executions per run
    """

    graph_id: str
    name: str
    start: str
    steps: Mapping[str, Step]
    description: str = ""
    timeout_seconds: Optional[float] = None
    allow_loops: bool = False
    max_transitions: int = 100
    terminal_steps: FrozenSet[str] = field(default=frozenset())

    def get(self, name: str) -> Step:
        """Get a step by name."""
        try:
            return self.steps[name]
        except KeyError:
            raise GraphError(f"Step '{name}' not found in graph '{self.name}'") from None

    def __contains__(self, name: str) -> bool:
        return name in self.steps

    def __len__(self) -> int:
        return len(self.steps)

    def default_next(self, name: str) -> Optional[str]:
        """The step reached when no conditional or catch edge applies."""
        step = self.get(name)
        if isinstance(step, ChoiceStep):
            return step.default
        return step.next

    def to_definition(self) -> GraphDefinition:
        """Rebuild the serializable definition this graph was built from."""
        return GraphDefinition(
            name=self.name,
            description=self.description,
            start_at=self.start,
            steps=tuple(self.steps.values()),
            timeout_seconds=self.timeout_seconds,
            allow_loops=self.allow_loops,
            max_transitions=self.max_transitions,
        )

    def to_dict(self) -> Dict[str, Any]:
        """Serialize the graph definition to a JSON-compatible dictionary."""
        return {
            "graph_id": self.graph_id,
            **self.to_definition().model_dump(mode="json"),
        }

    def to_mermaid(self) -> str:
        """Generate a Mermaid diagram of the graph."""
        lines = ["graph TD"]

        for name, step in self.steps.items():
            node_id = _mermaid_id(name)
            if step.kind == StepType.CHOICE:
                lines.append(f'    {node_id}{{"{name}"}}')
            elif step.end:
                lines.append(f'    {node_id}(["{name}"])')
            else:
                lines.append(f'    {node_id}["{name}"]')

        for name, step in self.steps.items():
            source = _mermaid_id(name)
            if isinstance(step, ChoiceStep):
                for index, rule in enumerate(step.rules, start=1):
                    lines.append(f"    {source} -->|rule {index}| {_mermaid_id(rule.next)}")
                lines.append(f"    {source} -->|default| {_mermaid_id(step.default)}")
            elif step.next is not None:
                lines.append(f"    {source} --> {_mermaid_id(step.next)}")
            for handler in step.catch:
                kinds = ",".join(kind.value for kind in handler.errors)
                lines.append(f"    {source} -.->|{kinds}| {_mermaid_id(handler.next)}")

        return "\n".join(lines)

    def __repr__(self) -> str:
        return (
            f"StateGraph(name='{self.name}', steps={list(self.steps.keys())}, "
            f"start='{self.start}')"
        )


def _mermaid_id(name: str) -> str:
    return "".join(ch if ch.isalnum() or ch == "_" else "_" for ch in name)


# ============================================================
# Builder
# ============================================================

def build(definition: GraphDefinition, graph_id: Optional[str] = None) -> StateGraph:
    """
    Validate a definition and build an immutable StateGraph.

    Args:
        definition: The workflow definition
        graph_id: Optional graph ID (generated if not provided)

    Returns:
        The validated StateGraph

    Raises:
        GraphError: With every problem found, if the definition is invalid
    """
    if isinstance(definition, dict):
        definition = GraphDefinition.model_validate(definition)

    errors = validate(definition)
    if errors:
        raise GraphError(f"Graph validation failed: {'; '.join(errors)}", errors)

    steps = {step.name: step for step in definition.steps}
    terminal = frozenset(name for name, step in steps.items() if step.end)

    return StateGraph(
        graph_id=graph_id or str(uuid.uuid4()),
        name=definition.name,
        description=definition.description,
        start=definition.start_at,
        steps=MappingProxyType(steps),
        timeout_seconds=definition.timeout_seconds,
        allow_loops=definition.allow_loops,
        max_transitions=definition.max_transitions,
        terminal_steps=terminal,
    )


def validate(definition: GraphDefinition) -> List[str]:
    """
    Validate the graph structure.

    Returns:
        List of validation errors (empty if valid)
    """
    errors: List[str] = []

    if not definition.steps:
        errors.append("Graph must have at least one step")
        return errors

    steps: Dict[str, Step] = {}
    for step in definition.steps:
        if step.name in steps:
            errors.append(f"Duplicate step name '{step.name}'")
        steps[step.name] = step

    if definition.start_at not in steps:
        errors.append(f"Start step '{definition.start_at}' not found in steps")

    for step in definition.steps:
        errors.extend(_validate_step(step, steps))

    if errors:
        return errors

    reachable = _reachable(definition.start_at, steps)
    orphans = [name for name in steps if name not in reachable]
    if orphans:
        errors.append(f"Steps not reachable from '{definition.start_at}': {orphans}")

    cycle = _find_cycle(steps, {EdgeKind.DEFAULT})
    if cycle:
        errors.append(f"Cycle through default edges: {' -> '.join(cycle)}")
    elif not definition.allow_loops:
        cycle = _find_cycle(steps, set(EdgeKind))
        if cycle:
            errors.append(
                f"Cycle detected: {' -> '.join(cycle)} (set allow_loops to permit "
                f"bounded re-execution)"
            )

    return errors


def _validate_step(step: Step, steps: Dict[str, Step]) -> List[str]:
    errors: List[str] = []
    label = f"Step '{step.name}'"

    if isinstance(step, ChoiceStep):
        if step.end or step.next is not None:
            errors.append(f"{label}: choice steps route through rules and default, not next/end")
        if not step.rules:
            errors.append(f"{label}: choice needs at least one rule")
    elif step.end and step.next is not None:
        errors.append(f"{label}: cannot declare both next and end")
    elif not step.end and step.next is None:
        errors.append(f"{label}: non-terminal step has no next step")

    for edge_kind, target in step.edges():
        if target not in steps:
            errors.append(f"{label}: {edge_kind.value} target '{target}' not found in steps")

    if isinstance(step, WaitStep):
        if (step.seconds is None) == (step.seconds_path is None):
            errors.append(f"{label}: wait needs exactly one of seconds or seconds_path")

    if isinstance(step, PassStep):
        if step.result is not None and step.result_from_path is not None:
            errors.append(f"{label}: pass cannot declare both result and result_from_path")

    for path in step.paths():
        try:
            parse_path(path)
        except StepFailure as exc:
            errors.append(f"{label}: {exc.cause}")

    return errors


def _reachable(start: str, steps: Dict[str, Step]) -> Set[str]:
    """Get all steps reachable from the start step."""
    reachable: Set[str] = set()
    to_visit = [start]

    while to_visit:
        name = to_visit.pop()
        if name in reachable or name not in steps:
            continue
        reachable.add(name)
        for _, target in steps[name].edges():
            to_visit.append(target)

    return reachable


def _find_cycle(steps: Dict[str, Step], kinds: Set[EdgeKind]) -> Optional[List[str]]:
    """Return one cycle over edges of the given kinds, or None."""
    visiting, done = 1, 2
    marks: Dict[str, int] = {}

    def successors(name: str) -> List[str]:
        return [target for kind, target in steps[name].edges() if kind in kinds]

    for root in steps:
        if root in marks:
            continue
        marks[root] = visiting
        path = [root]
        stack = [iter(successors(root))]
        while stack:
            target = next(stack[-1], None)
            if target is None:
                marks[path.pop()] = done
                stack.pop()
                continue
            state = marks.get(target)
            if state == visiting:
                return path[path.index(target):] + [target]
            if state is None:
                marks[target] = visiting
                path.append(target)
                stack.append(iter(successors(target)))

    return None
