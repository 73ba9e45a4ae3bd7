"""
Tests for the call handler workflow and its built-in capabilities.
"""

import pytest

import callflow.capabilities.builtin  # noqa: F401
from callflow.capabilities.registry import capability_registry
from callflow.engine.state import RunStatus
from callflow.events import event_sink
from callflow.service import WorkflowEngine
from callflow.storage.context import context_store
from callflow.workflows.call_handler import (
    CALL_HANDLER_GRAPH_ID,
    create_call_handler_definition,
    register_call_handler_workflow,
)


@pytest.fixture
def engine(timer) -> WorkflowEngine:
    event_sink.clear()
    return WorkflowEngine(registry=capability_registry, timer=timer)


def _call_input(connection_type="human", call_id=None, **simulation):
    data = {
        "phone_number": "+15550100",
        "folio_requests": [{"folio_id": "F-1001"}, {"folio_id": "F-1002"}],
        "simulation": {"connection_type": connection_type, **simulation},
    }
    if call_id:
        data["call_id"] = call_id
    return data


async def _run(engine, data):
    await register_call_handler_workflow(engine)
    summary = await engine.execute(CALL_HANDLER_GRAPH_ID, data)
    history = await engine.history(summary.run_id)
    steps = [entry.step_name for entry in history if entry.is_step_event]
    return summary, steps


class TestDefinition:
    """Tests for the workflow definition."""

    def test_builtin_capabilities_registered(self):
        for name in (
            "initiate_call",
            "analyze_connection",
            "navigate_ivr",
            "process_folio_requests",
            "end_call",
            "publish_call_ended",
        ):
            assert name in capability_registry

    def test_parameters(self):
        definition = create_call_handler_definition(connection_wait_seconds=5, timeout_seconds=120)
        wait = next(step for step in definition.steps if step.name == "WaitForConnection")
        assert wait.seconds == 5
        assert definition.timeout_seconds == 120

    @pytest.mark.asyncio
    async def test_register(self, engine):
        graph = await register_call_handler_workflow(engine)
        assert graph.graph_id == CALL_HANDLER_GRAPH_ID
        assert graph.start == "InitiateCall"
        assert graph.terminal_steps == frozenset({"PublishCallEnded"})


class TestCallPaths:
    """Drives the workflow through each connection type."""

    @pytest.mark.asyncio
    async def test_human(self, engine, timer):
        summary, steps = await _run(engine, _call_input("human", call_id="call-human"))

        assert summary.status == RunStatus.SUCCEEDED
        assert steps == [
            "InitiateCall",
            "WaitForConnection",
            "AnalyzeConnection",
            "RouteByConnectionType",
            "ProcessFolioRequests",
            "CheckCallDuration",
            "NoOverflow",
            "EndCall",
            "PublishCallEnded",
        ]
        assert timer.sleeps == [10]
        assert summary.data["call"] == {"call_id": "call-human", "call_status": "initiated"}
        assert summary.data["call_duration_seconds"] == 105
        assert [item["folio_id"] for item in summary.data["folio_results"]] == ["F-1001", "F-1002"]
        assert summary.data["call_end"]["call_status"] == "completed"
        assert summary.data["publication"]["outcome"] == "completed"

    @pytest.mark.asyncio
    async def test_ivr(self, engine):
        summary, steps = await _run(engine, _call_input("ivr"))

        assert summary.status == RunStatus.SUCCEEDED
        assert steps[steps.index("AnalyzeConnection"):steps.index("EndCall")] == [
            "AnalyzeConnection",
            "RouteByConnectionType",
            "NavigateIVR",
            "ProcessFolioRequests",
            "CheckCallDuration",
            "NoOverflow",
        ]
        assert summary.data["ivr_result"] == {"status": "navigated", "menu_path": ["1", "0"]}

    @pytest.mark.asyncio
    async def test_ivr_failure_is_caught(self, engine):
        summary, steps = await _run(engine, _call_input("ivr", ivr_fails=True))

        assert summary.status == RunStatus.SUCCEEDED
        assert "IVRNavigationFailed" in steps
        assert "ProcessFolioRequests" not in steps
        assert summary.data["ivr_failure"]["error"] == "CapabilityError"
        assert summary.data["ivr_failure"]["step"] == "NavigateIVR"
        assert summary.data["publication"]["outcome"] == "ivr_navigation_failed"

    @pytest.mark.asyncio
    async def test_voicemail(self, engine):
        summary, steps = await _run(engine, _call_input("voicemail"))

        assert steps[3:6] == ["RouteByConnectionType", "HandleVoicemail", "EndCallAfterVoicemail"]
        assert summary.data["end_reason"] == "voicemail"
        assert summary.data["publication"]["outcome"] == "voicemail"

    @pytest.mark.asyncio
    async def test_unknown_connection(self, engine):
        summary, steps = await _run(engine, _call_input("fax"))

        assert "UnknownConnectionType" in steps
        assert summary.data["connection_type"] == "unknown"
        assert summary.data["publication"]["outcome"] == "unknown_connection"

    @pytest.mark.asyncio
    async def test_overflow(self, engine):
        summary, steps = await _run(engine, _call_input("human", call_duration_seconds=600))

        assert "HandleOverflow" in steps
        assert summary.data["overflow_handled"] is True
        assert summary.data["publication"]["outcome"] == "overflow"

    @pytest.mark.asyncio
    async def test_missing_phone_number_fails(self, engine, timer):
        await register_call_handler_workflow(engine)
        summary = await engine.execute(CALL_HANDLER_GRAPH_ID, {"folio_requests": []})

        assert summary.status == RunStatus.FAILED
        assert summary.error.kind == "InvalidInput"
        assert summary.error.step == "InitiateCall"
        assert timer.sleeps == []


class TestSideEffects:
    """Tests for the context store and published events."""

    @pytest.mark.asyncio
    async def test_call_ended_event(self, engine):
        await _run(engine, _call_input("human", call_id="call-event"))

        published = event_sink.events("CallEnded")
        assert len(published) == 1
        assert published[0].payload == {
            "call_id": "call-event",
            "connection_type": "human",
            "call_duration_seconds": 105,
            "outcome": "completed",
        }

    @pytest.mark.asyncio
    async def test_context_store(self, engine):
        await _run(engine, _call_input("ivr", call_id="call-context"))

        context = await context_store.get("call:call-context")
        assert context["phone_number"] == "+15550100"
        assert context["connection_type"] == "ivr"
        assert context["ivr_menu_path"] == ["1", "0"]
        assert context["status"] == "completed"
        assert len(context["folio_results"]) == 2
