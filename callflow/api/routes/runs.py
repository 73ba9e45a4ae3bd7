"""
Run API Routes.

Endpoints for starting, observing and cancelling workflow runs.
"""

from typing import Optional
from fastapi import APIRouter, HTTPException, status
import logging

from callflow.api.schemas import (
    ErrorResponse,
    HistoryEntryResponse,
    RunCancelResponse,
    RunHistoryResponse,
    RunListResponse,
    RunResponse,
    RunStartRequest,
)
from callflow.errors import GraphNotFound, RunNotFound
from callflow.service import workflow_engine


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/runs", tags=["Runs"])


@router.post(
    "/",
    response_model=RunResponse,
    status_code=status.HTTP_201_CREATED,
    responses={
        400: {"model": ErrorResponse, "description": "Invalid run input"},
        404: {"model": ErrorResponse},
    }
)
async def start_run(request: RunStartRequest) -> RunResponse:
    """
    Start a run of a workflow graph.

    If `async_execution` is True, the run continues in the background and
    you can poll it with GET /runs/{run_id}. Otherwise the response is the
    finished run with its history. A failed run is still a 201: its status
    and error describe the failure.
    """
    try:
        run_id = await workflow_engine.start(
            request.graph_id,
            request.initial_data,
            timeout_seconds=request.timeout_seconds,
        )
    except GraphNotFound:
        raise HTTPException(status_code=404, detail=f"Graph '{request.graph_id}' not found")
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    if request.async_execution:
        summary = await workflow_engine.status(run_id)
        return RunResponse.from_summary(summary)

    summary = await workflow_engine.wait(run_id)
    history = await workflow_engine.history(run_id)
    return RunResponse.from_summary(summary, history)


@router.get(
    "/",
    response_model=RunListResponse,
)
async def list_runs(graph_id: Optional[str] = None) -> RunListResponse:
    """List all runs, optionally filtered by graph_id."""
    summaries = await workflow_engine.list_runs(graph_id)
    runs = [RunResponse.from_summary(summary) for summary in summaries]
    return RunListResponse(runs=runs, total=len(runs))


@router.get(
    "/{run_id}",
    response_model=RunResponse,
    responses={404: {"model": ErrorResponse}},
)
async def get_run(run_id: str) -> RunResponse:
    """
    Get the current state of a run.

    Use this to poll the status of async executions.
    """
    try:
        summary = await workflow_engine.status(run_id)
    except RunNotFound:
        raise HTTPException(status_code=404, detail=f"Run '{run_id}' not found")
    return RunResponse.from_summary(summary)


@router.get(
    "/{run_id}/history",
    response_model=RunHistoryResponse,
    responses={404: {"model": ErrorResponse}},
)
async def get_run_history(run_id: str) -> RunHistoryResponse:
    """Get a run's history, oldest entry first."""
    try:
        entries = await workflow_engine.history(run_id)
    except RunNotFound:
        raise HTTPException(status_code=404, detail=f"Run '{run_id}' not found")
    return RunHistoryResponse(
        run_id=run_id,
        entries=[HistoryEntryResponse.from_entry(entry) for entry in entries],
        total=len(entries),
    )


@router.post(
    "/{run_id}/cancel",
    response_model=RunCancelResponse,
    responses={404: {"model": ErrorResponse}},
)
async def cancel_run(run_id: str) -> RunCancelResponse:
    """Request cancellation of a run."""
    try:
        cancelled = await workflow_engine.cancel(run_id)
    except RunNotFound:
        raise HTTPException(status_code=404, detail=f"Run '{run_id}' not found")

    return RunCancelResponse(
        run_id=run_id,
        cancelled=cancelled,
        message="Cancellation requested" if cancelled else "Run has already finished",
    )
