"""
Built-in Capabilities for the Call Handler Workflow.

Simulated telephony operations used by the demo call-handler workflow.
They keep per-call context in the context store under `call:<call_id>`
and publish a CallEnded event when the call is over.

The optional `simulation` object in the run input steers the outcome:
    connection_type: "human" (default), "ivr" or "voicemail"
    ivr_fails: make IVR navigation fail
    call_duration_seconds: reported call duration
"""

from typing import Any, Dict
from datetime import datetime
import uuid
import logging

from callflow.capabilities.registry import register_capability
from callflow.engine.expressions import NOT_FOUND
from callflow.errors import CapabilityError, InvalidInput
from callflow.events import event_sink
from callflow.storage.context import context_store


logger = logging.getLogger(__name__)


CONNECTION_TYPES = ("human", "ivr", "voicemail")


def _context_key(call_id: str) -> str:
    return f"call:{call_id}"


async def _load_call(payload: Any) -> Dict[str, Any]:
    """Load the context of the call referenced by a task input."""
    if not isinstance(payload, dict) or not payload.get("call_id"):
        raise InvalidInput("Task input must contain 'call_id'")
    context = await context_store.get(_context_key(payload["call_id"]))
    if context is NOT_FOUND:
        raise CapabilityError(f"Unknown call '{payload['call_id']}'")
    return context


@register_capability(
    name="initiate_call",
    description="Place an outbound call to the given phone number"
)
async def initiate_call(payload: Dict[str, Any]) -> Dict[str, Any]:
    """
    Start an outbound call.

    Args:
        payload: Run input with 'phone_number' and optional 'call_id' and
            'simulation'

    Returns:
        Dict with the call_id and call_status
    """
    phone_number = payload.get("phone_number") if isinstance(payload, dict) else None
    if not isinstance(phone_number, str) or not phone_number:
        raise InvalidInput("'phone_number' is required to initiate a call")

    call_id = payload.get("call_id") or f"call-{uuid.uuid4().hex[:12]}"
    simulation = payload.get("simulation") or {}

    await context_store.put(_context_key(call_id), {
        "call_id": call_id,
        "phone_number": phone_number,
        "status": "initiated",
        "simulation": simulation,
        "initiated_at": datetime.now().isoformat(),
    })
    logger.info(f"Initiated call {call_id} to {phone_number}")

    return {
        "call_id": call_id,
        "call_status": "initiated",
    }


@register_capability(
    name="analyze_connection",
    description="Classify who or what answered the call"
)
async def analyze_connection(payload: Dict[str, Any]) -> Dict[str, Any]:
    """
    Decide whether a human, an IVR menu or voicemail answered.

    Returns:
        Dict with 'connection_type' and a detection 'confidence'
    """
    context = await _load_call(payload)
    connection_type = context["simulation"].get("connection_type", "human")
    if connection_type not in CONNECTION_TYPES:
        connection_type = "unknown"

    await context_store.update(_context_key(context["call_id"]), {
        "status": "connected",
        "connection_type": connection_type,
    })

    return {
        "connection_type": connection_type,
        "confidence": 0.95 if connection_type != "unknown" else 0.2,
    }


@register_capability(
    name="navigate_ivr",
    description="Navigate an IVR menu to reach an agent"
)
async def navigate_ivr(payload: Dict[str, Any]) -> Dict[str, Any]:
    context = await _load_call(payload)
    simulation = context["simulation"]
    if simulation.get("ivr_fails"):
        raise CapabilityError(
            "IVR menu navigation failed",
            details={"call_id": context["call_id"]},
        )

    menu_path = simulation.get("ivr_menu_path", ["1", "0"])
    await context_store.update(_context_key(context["call_id"]), {"ivr_menu_path": menu_path})
    return {
        "status": "navigated",
        "menu_path": menu_path,
    }


@register_capability(
    name="process_folio_requests",
    description="Work through the folio requests on a connected call"
)
async def process_folio_requests(payload: Dict[str, Any]) -> Dict[str, Any]:
    """
    Process every folio request for the call.

    Args:
        payload: Data document with 'call' (holding call_id) and an optional
            'folio_requests' list

    Returns:
        Dict with per-request results and the call duration so far
    """
    requests = payload.get("folio_requests", [])
    if not isinstance(requests, list):
        raise InvalidInput("'folio_requests' must be a list")

    context = await _load_call(payload.get("call"))
    results = []
    for index, request in enumerate(requests, start=1):
        folio_id = request.get("folio_id") if isinstance(request, dict) else request
        results.append({
            "folio_id": folio_id or f"folio-{index}",
            "status": "processed",
        })

    duration = context["simulation"].get("call_duration_seconds", 45 + 30 * len(requests))
    await context_store.update(_context_key(context["call_id"]), {
        "folio_results": results,
        "call_duration_seconds": duration,
    })

    return {
        "folio_results": results,
        "call_duration_seconds": duration,
    }


@register_capability(
    name="end_call",
    description="Hang up the call"
)
async def end_call(payload: Dict[str, Any]) -> Dict[str, Any]:
    context = await _load_call(payload)
    ended_at = datetime.now().isoformat()
    await context_store.update(_context_key(context["call_id"]), {
        "status": "completed",
        "ended_at": ended_at,
    })
    logger.info(f"Ended call {context['call_id']}")
    return {
        "call_status": "completed",
        "ended_at": ended_at,
    }


def _call_outcome(data: Dict[str, Any]) -> str:
    if "voicemail_result" in data:
        return "voicemail"
    if "ivr_failure" in data:
        return "ivr_navigation_failed"
    if data.get("connection_type") not in CONNECTION_TYPES:
        return "unknown_connection"
    if "overflow_handled" in data:
        return "overflow"
    return "completed"


@register_capability(
    name="publish_call_ended",
    description="Publish a CallEnded event for downstream consumers"
)
async def publish_call_ended(payload: Dict[str, Any]) -> Dict[str, Any]:
    """
    Publish CallEnded with the call's outcome.

    Args:
        payload: The full data document

    Returns:
        Dict describing the published event
    """
    call = payload.get("call") or {}
    outcome = _call_outcome(payload)
    await event_sink.publish("CallEnded", {
        "call_id": call.get("call_id"),
        "connection_type": payload.get("connection_type"),
        "call_duration_seconds": payload.get("call_duration_seconds"),
        "outcome": outcome,
    })
    return {
        "published": True,
        "event_type": "CallEnded",
        "outcome": outcome,
    }
