"""
Tests for step definitions and the graph builder.
"""

import pytest
from pydantic import ValidationError

from callflow.engine.graph import GraphDefinition, StateGraph, build, validate
from callflow.engine.steps import ChoiceStep, EdgeKind, PassStep, StepType, TaskStep
from callflow.errors import GraphError
from callflow.workflows.call_handler import create_call_handler_definition


def _definition(steps, start_at=None, **options):
    return {
        "name": "test",
        "start_at": start_at or steps[0]["name"],
        "steps": steps,
        **options,
    }


ROUTE_STEPS = [
    {"type": "task", "name": "Analyze", "capability": "analyze", "next": "Route"},
    {
        "type": "choice",
        "name": "Route",
        "rules": [
            {"condition": {"variable": "$.kind", "operator": "equals", "value": "ivr"}, "next": "Navigate"},
        ],
        "default": "Done",
    },
    {"type": "task", "name": "Navigate", "capability": "navigate", "next": "Done"},
    {"type": "pass", "name": "Done", "end": True},
]


# ============================================================
# Step Tests
# ============================================================

class TestSteps:
    """Tests for step models."""

    def test_discriminated_union(self):
        definition = GraphDefinition.model_validate(_definition(ROUTE_STEPS))
        assert isinstance(definition.steps[0], TaskStep)
        assert isinstance(definition.steps[1], ChoiceStep)
        assert isinstance(definition.steps[3], PassStep)
        assert definition.steps[1].kind == StepType.CHOICE

    def test_unknown_step_type(self):
        with pytest.raises(ValidationError):
            GraphDefinition.model_validate(_definition([{"type": "parallel", "name": "P", "end": True}]))

    def test_steps_are_immutable(self):
        step = TaskStep(name="A", capability="echo", end=True)
        with pytest.raises(ValidationError):
            step.capability = "other"

    def test_choice_edges(self):
        choice = GraphDefinition.model_validate(_definition(ROUTE_STEPS)).steps[1]
        assert list(choice.edges()) == [
            (EdgeKind.DEFAULT, "Done"),
            (EdgeKind.CONDITIONAL, "Navigate"),
        ]


# ============================================================
# Builder Tests
# ============================================================

class TestBuild:
    """Tests for build() and validate()."""

    def test_build_valid_graph(self):
        graph = build(_definition(ROUTE_STEPS), graph_id="g-1")
        assert isinstance(graph, StateGraph)
        assert graph.graph_id == "g-1"
        assert graph.start == "Analyze"
        assert len(graph) == 4
        assert "Navigate" in graph
        assert graph.terminal_steps == frozenset({"Done"})

    def test_every_non_terminal_step_has_default_next(self):
        graph = build(create_call_handler_definition())
        for name, step in graph.steps.items():
            if not step.end:
                assert graph.default_next(name) in graph

    def test_graph_is_immutable(self):
        graph = build(_definition(ROUTE_STEPS))
        with pytest.raises(TypeError):
            graph.steps["Extra"] = graph.steps["Done"]
        with pytest.raises(AttributeError):
            graph.start = "Done"

    def test_missing_next(self):
        steps = [{"type": "pass", "name": "A"}]
        with pytest.raises(GraphError) as exc_info:
            build(_definition(steps))
        assert "non-terminal step has no next step" in str(exc_info.value)

    def test_unknown_target(self):
        steps = [{"type": "pass", "name": "A", "next": "Nowhere"}]
        with pytest.raises(GraphError, match="Nowhere"):
            build(_definition(steps))

    def test_unknown_start(self):
        with pytest.raises(GraphError, match="Start step"):
            build(_definition([{"type": "pass", "name": "A", "end": True}], start_at="B"))

    def test_duplicate_names(self):
        steps = [
            {"type": "pass", "name": "A", "next": "A2"},
            {"type": "pass", "name": "A", "end": True},
        ]
        with pytest.raises(GraphError, match="Duplicate"):
            build(_definition(steps))

    def test_unreachable_step(self):
        steps = [
            {"type": "pass", "name": "A", "end": True},
            {"type": "pass", "name": "Orphan", "end": True},
        ]
        with pytest.raises(GraphError, match="not reachable"):
            build(_definition(steps))

    def test_choice_requires_default(self):
        steps = [{
            "type": "choice",
            "name": "C",
            "rules": [{"condition": {"variable": "$.a", "operator": "is_present"}, "next": "C"}],
        }]
        with pytest.raises(ValidationError):
            GraphDefinition.model_validate(_definition(steps))

    def test_invalid_path(self):
        steps = [{"type": "task", "name": "A", "capability": "echo", "input_path": "a.b", "end": True}]
        with pytest.raises(GraphError, match="must start with"):
            build(_definition(steps))

    def test_wait_needs_one_duration(self):
        steps = [{"type": "wait", "name": "W", "end": True}]
        with pytest.raises(GraphError, match="exactly one of seconds"):
            build(_definition(steps))

    def test_collects_every_error(self):
        steps = [
            {"type": "pass", "name": "A", "next": "Missing"},
            {"type": "wait", "name": "W", "end": True},
        ]
        errors = validate(GraphDefinition.model_validate(_definition(steps)))
        assert len(errors) == 2

    def test_default_edge_cycle_always_rejected(self):
        steps = [
            {"type": "pass", "name": "A", "next": "B"},
            {"type": "pass", "name": "B", "next": "A"},
        ]
        with pytest.raises(GraphError, match="Cycle through default edges"):
            build(_definition(steps, allow_loops=True))

    def test_conditional_cycle_needs_allow_loops(self):
        steps = [
            {"type": "task", "name": "Poll", "capability": "echo", "next": "Check"},
            {
                "type": "choice",
                "name": "Check",
                "rules": [
                    {"condition": {"variable": "$.done", "operator": "equals", "value": False}, "next": "Poll"},
                ],
                "default": "Done",
            },
            {"type": "pass", "name": "Done", "end": True},
        ]
        with pytest.raises(GraphError, match="allow_loops"):
            build(_definition(steps))

        graph = build(_definition(steps, allow_loops=True, max_transitions=10))
        assert graph.allow_loops
        assert graph.max_transitions == 10


# ============================================================
# Serialization Tests
# ============================================================

class TestSerialization:
    """Tests for definition round-trips and rendering."""

    def test_round_trip(self):
        graph = build(create_call_handler_definition(), graph_id="call")
        rebuilt = build(GraphDefinition.model_validate(graph.to_dict()), graph_id="call")

        assert rebuilt.to_dict() == graph.to_dict()
        assert rebuilt.to_definition().model_dump() == graph.to_definition().model_dump()

    def test_to_dict_contains_graph_id(self):
        data = build(_definition(ROUTE_STEPS), graph_id="g-2").to_dict()
        assert data["graph_id"] == "g-2"
        assert data["start_at"] == "Analyze"
        assert [step["name"] for step in data["steps"]] == ["Analyze", "Route", "Navigate", "Done"]

    def test_mermaid(self):
        mermaid = build(_definition(ROUTE_STEPS)).to_mermaid()
        assert mermaid.startswith("graph TD")
        assert "Route -->|rule 1| Navigate" in mermaid
        assert "Route -->|default| Done" in mermaid
