"""
Pydantic Schemas for API Request/Response Models.

These schemas define the structure of data flowing through the API,
providing automatic validation and documentation. Graph definitions are
accepted as `GraphDefinition` documents directly.
"""

from typing import Any, Dict, List, Optional
from pydantic import BaseModel, Field

from callflow.engine.history import EventKind, HistoryEntry
from callflow.engine.state import RunStatus, RunSummary


# ============================================================
# Graph Schemas
# ============================================================

class GraphCreateResponse(BaseModel):
    """Response after creating a graph."""
    graph_id: str = Field(..., description="Unique identifier for the created graph")
    name: str = Field(..., description="Name of the workflow")
    message: str = Field(default="Graph created successfully")
    step_count: int = Field(..., description="Number of steps in the graph")

    class Config:
        json_schema_extra = {
            "example": {
                "graph_id": "abc123-def456",
                "name": "route_call",
                "message": "Graph created successfully",
                "step_count": 4
            }
        }


class GraphInfoResponse(BaseModel):
    """Response with graph information."""
    graph_id: str
    name: str
    description: Optional[str]
    step_count: int
    steps: List[str]
    start_at: str
    timeout_seconds: Optional[float]
    created_at: str
    definition: Optional[Dict[str, Any]] = Field(None, description="Serializable graph definition")
    mermaid_diagram: Optional[str] = Field(None, description="Mermaid diagram of the graph")


class GraphListResponse(BaseModel):
    """Response listing all graphs."""
    graphs: List[GraphInfoResponse]
    total: int


# ============================================================
# Run Schemas
# ============================================================

class RunStartRequest(BaseModel):
    """Request to start a workflow run."""
    graph_id: str = Field(..., description="ID of the graph to run")
    initial_data: Dict[str, Any] = Field(
        default_factory=dict,
        description="Initial data document for the run"
    )
    timeout_seconds: Optional[float] = Field(
        None,
        gt=0,
        description="Overall run deadline (defaults to the graph's, then the server's)"
    )
    async_execution: bool = Field(
        False,
        description="If true, run in background and return immediately"
    )

    class Config:
        json_schema_extra = {
            "example": {
                "graph_id": "call-handler-demo",
                "initial_data": {
                    "phone_number": "+15550100",
                    "folio_requests": [{"folio_id": "F-1001"}],
                    "simulation": {"connection_type": "ivr"}
                },
                "timeout_seconds": 600,
                "async_execution": True
            }
        }


class RunErrorInfo(BaseModel):
    """Why a run did not succeed."""
    kind: str
    step: Optional[str]
    cause: str


class HistoryEntryResponse(BaseModel):
    """A single entry in a run's history."""
    seq: int
    step_name: Optional[str]
    event_kind: EventKind
    timestamp: str
    payload: Dict[str, Any]
    error: Optional[Dict[str, Any]] = None

    @classmethod
    def from_entry(cls, entry: HistoryEntry) -> "HistoryEntryResponse":
        return cls(
            seq=entry.seq,
            step_name=entry.step_name,
            event_kind=entry.event_kind,
            timestamp=entry.timestamp.isoformat(),
            payload=entry.payload,
            error=entry.error,
        )


class RunResponse(BaseModel):
    """Current state of a run."""
    run_id: str = Field(..., description="Unique identifier for this run")
    graph_id: str
    status: RunStatus
    current_step: Optional[str]
    attempt: int
    transitions: int
    data: Dict[str, Any]
    started_at: Optional[str]
    completed_at: Optional[str]
    duration_ms: Optional[float]
    error: Optional[RunErrorInfo] = None
    history: Optional[List[HistoryEntryResponse]] = None

    @classmethod
    def from_summary(
        cls,
        summary: RunSummary,
        history: Optional[List[HistoryEntry]] = None,
    ) -> "RunResponse":
        return cls(
            run_id=summary.run_id,
            graph_id=summary.graph_id,
            status=summary.status,
            current_step=summary.current_step,
            attempt=summary.attempt,
            transitions=summary.transitions,
            data=summary.data,
            started_at=summary.started_at.isoformat() if summary.started_at else None,
            completed_at=summary.completed_at.isoformat() if summary.completed_at else None,
            duration_ms=summary.duration_ms,
            error=RunErrorInfo(**summary.error.model_dump()) if summary.error else None,
            history=(
                [HistoryEntryResponse.from_entry(entry) for entry in history]
                if history is not None else None
            ),
        )

    class Config:
        json_schema_extra = {
            "example": {
                "run_id": "run-xyz789",
                "graph_id": "call-handler-demo",
                "status": "succeeded",
                "current_step": "PublishCallEnded",
                "attempt": 0,
                "transitions": 9,
                "data": {
                    "phone_number": "+15550100",
                    "call": {"call_id": "call-1a2b3c", "call_status": "initiated"},
                    "connection_type": "human"
                },
                "started_at": "2024-01-01T12:00:00",
                "completed_at": "2024-01-01T12:00:11",
                "duration_ms": 11000.0,
                "error": None,
                "history": None
            }
        }


class RunListResponse(BaseModel):
    """Response listing runs."""
    runs: List[RunResponse]
    total: int


class RunHistoryResponse(BaseModel):
    """A run's history, oldest entry first."""
    run_id: str
    entries: List[HistoryEntryResponse]
    total: int


class RunCancelResponse(BaseModel):
    """Response after requesting cancellation."""
    run_id: str
    cancelled: bool
    message: str


# ============================================================
# Capability Schemas
# ============================================================

class CapabilityInfo(BaseModel):
    """Information about a registered capability."""
    name: str
    description: str
    is_async: bool


class CapabilityListResponse(BaseModel):
    """Response listing all registered capabilities."""
    capabilities: List[CapabilityInfo]
    total: int


# ============================================================
# Error Schemas
# ============================================================

class ErrorResponse(BaseModel):
    """Standard error response."""
    error: str
    detail: Optional[Any] = None
    status_code: int
