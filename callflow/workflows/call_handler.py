"""
Call Handler Workflow.

The sample workflow: place an outbound call, wait for it to connect, work
out who answered and handle the call accordingly.

```
InitiateCall → WaitForConnection → AnalyzeConnection → RouteByConnectionType

RouteByConnectionType:
    voicemail → HandleVoicemail → EndCallAfterVoicemail → EndCall
    ivr       → NavigateIVR → ProcessFolioRequests
                (on failure → IVRNavigationFailed → EndCall)
    human     → ProcessFolioRequests
    otherwise → UnknownConnectionType → EndCall

ProcessFolioRequests → CheckCallDuration
    > 540s    → HandleOverflow → EndCall
    otherwise → NoOverflow → EndCall

EndCall → PublishCallEnded
```
"""

from typing import Any, Dict, Optional
import logging

from callflow.engine.graph import GraphDefinition, StateGraph
from callflow.errors import FailureKind


logger = logging.getLogger(__name__)


CALL_HANDLER_GRAPH_ID = "call-handler-demo"


def _route(value: str, target: str) -> Dict[str, Any]:
    return {
        "condition": {"variable": "$.connection_type", "operator": "equals", "value": value},
        "next": target,
    }


def create_call_handler_definition(
    connection_wait_seconds: float = 10,
    overflow_threshold_seconds: float = 540,
    timeout_seconds: float = 600,
) -> GraphDefinition:
    """
    Create the call handler workflow definition.

    Args:
        connection_wait_seconds: How long to wait for the call to connect
        overflow_threshold_seconds: Call duration that triggers overflow
            handling
        timeout_seconds: Overall deadline for a run

    Returns:
        The GraphDefinition
    """
    steps = [
        {
            "type": "task",
            "name": "InitiateCall",
            "capability": "initiate_call",
            "result_path": "$.call",
            "timeout_seconds": 30,
            "retry": [
                {
                    "errors": [FailureKind.CAPABILITY_ERROR.value, FailureKind.TIMEOUT.value],
                    "max_attempts": 3,
                    "interval_seconds": 2,
                    "backoff_rate": 2,
                }
            ],
            "next": "WaitForConnection",
        },
        {
            "type": "wait",
            "name": "WaitForConnection",
            "seconds": connection_wait_seconds,
            "next": "AnalyzeConnection",
        },
        {
            "type": "task",
            "name": "AnalyzeConnection",
            "capability": "analyze_connection",
            "input_path": "$.call",
            "next": "RouteByConnectionType",
        },
        {
            "type": "choice",
            "name": "RouteByConnectionType",
            "rules": [
                _route("voicemail", "HandleVoicemail"),
                _route("ivr", "NavigateIVR"),
                _route("human", "ProcessFolioRequests"),
            ],
            "default": "UnknownConnectionType",
        },
        {
            "type": "pass",
            "name": "HandleVoicemail",
            "result": {"status": "voicemail_detected"},
            "result_path": "$.voicemail_result",
            "next": "EndCallAfterVoicemail",
        },
        {
            "type": "pass",
            "name": "EndCallAfterVoicemail",
            "result": "voicemail",
            "result_path": "$.end_reason",
            "next": "EndCall",
        },
        {
            "type": "task",
            "name": "NavigateIVR",
            "capability": "navigate_ivr",
            "input_path": "$.call",
            "result_path": "$.ivr_result",
            "catch": [
                {
                    "errors": [FailureKind.ALL.value],
                    "next": "IVRNavigationFailed",
                    "result_path": "$.ivr_failure",
                }
            ],
            "next": "ProcessFolioRequests",
        },
        {
            "type": "pass",
            "name": "IVRNavigationFailed",
            "result": {"status": "ivr_navigation_failed"},
            "result_path": "$.ivr_result",
            "next": "EndCall",
        },
        {
            "type": "task",
            "name": "ProcessFolioRequests",
            "capability": "process_folio_requests",
            "next": "CheckCallDuration",
        },
        {
            "type": "choice",
            "name": "CheckCallDuration",
            "rules": [
                {
                    "condition": {
                        "variable": "$.call_duration_seconds",
                        "operator": "greater_than",
                        "value": overflow_threshold_seconds,
                    },
                    "next": "HandleOverflow",
                }
            ],
            "default": "NoOverflow",
        },
        {
            "type": "pass",
            "name": "HandleOverflow",
            "result": True,
            "result_path": "$.overflow_handled",
            "next": "EndCall",
        },
        {
            "type": "pass",
            "name": "NoOverflow",
            "next": "EndCall",
        },
        {
            "type": "pass",
            "name": "UnknownConnectionType",
            "result": {"status": "unknown_connection_type"},
            "result_path": "$.unknown_connection",
            "next": "EndCall",
        },
        {
            "type": "task",
            "name": "EndCall",
            "capability": "end_call",
            "input_path": "$.call",
            "result_path": "$.call_end",
            "next": "PublishCallEnded",
        },
        {
            "type": "task",
            "name": "PublishCallEnded",
            "capability": "publish_call_ended",
            "result_path": "$.publication",
            "end": True,
        },
    ]

    return GraphDefinition.model_validate({
        "name": "Call Handler Workflow",
        "description": (
            "Places an outbound call, detects whether a human, an IVR menu or "
            "voicemail answered, processes folio requests and publishes CallEnded."
        ),
        "start_at": "InitiateCall",
        "steps": steps,
        "timeout_seconds": timeout_seconds,
    })


async def register_call_handler_workflow(engine: Optional[Any] = None) -> StateGraph:
    """
    Register the call handler workflow with the engine.

    This makes the workflow available immediately via the API
    without needing to create it first.
    """
    if engine is None:
        from callflow.service import workflow_engine as engine

    graph = await engine.register_graph(
        create_call_handler_definition(),
        graph_id=CALL_HANDLER_GRAPH_ID,
    )

    logger.info(f"Registered Call Handler workflow with ID: {CALL_HANDLER_GRAPH_ID}")
    return graph


# ============================================================
# Example Usage
# ============================================================

async def run_call_handler_demo(connection_type: str = "ivr") -> Any:
    """
    Demo function showing how to run the call handler workflow.

    Usage:
        import asyncio
        from callflow.workflows.call_handler import run_call_handler_demo
        asyncio.run(run_call_handler_demo("human"))
    """
    import callflow.capabilities.builtin  # noqa: F401
    from callflow.service import WorkflowEngine

    engine = WorkflowEngine()
    await register_call_handler_workflow(engine)

    summary = await engine.execute(CALL_HANDLER_GRAPH_ID, {
        "phone_number": "+15550100",
        "folio_requests": [{"folio_id": "F-1001"}, {"folio_id": "F-1002"}],
        "simulation": {"connection_type": connection_type},
    })

    print(f"Run Status: {summary.status.value}")
    for entry in await engine.history(summary.run_id):
        print(f"  {entry.seq:>2}. {entry.event_kind.value:<16} {entry.step_name}")
    return summary


if __name__ == "__main__":
    import asyncio
    asyncio.run(run_call_handler_demo())
