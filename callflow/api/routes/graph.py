"""
Graph API Routes.

Endpoints for creating and managing workflow graphs.
"""

from fastapi import APIRouter, HTTPException, status
import logging

from callflow.api.schemas import (
    ErrorResponse,
    GraphCreateResponse,
    GraphInfoResponse,
    GraphListResponse,
)
from callflow.engine.graph import GraphDefinition
from callflow.errors import GraphError, GraphNotFound
from callflow.service import workflow_engine
from callflow.storage.memory import StoredGraph


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/graph", tags=["Graph"])


def _graph_info(stored: StoredGraph, detailed: bool = False) -> GraphInfoResponse:
    graph = stored.graph
    return GraphInfoResponse(
        graph_id=graph.graph_id,
        name=graph.name,
        description=graph.description,
        step_count=len(graph),
        steps=list(graph.steps.keys()),
        start_at=graph.start,
        timeout_seconds=graph.timeout_seconds,
        created_at=stored.created_at.isoformat(),
        definition=graph.to_dict() if detailed else None,
        mermaid_diagram=graph.to_mermaid() if detailed else None,
    )


# ============================================================
# Graph CRUD Endpoints
# ============================================================

@router.post(
    "/create",
    response_model=GraphCreateResponse,
    status_code=status.HTTP_201_CREATED,
    responses={
        400: {"model": ErrorResponse, "description": "Invalid graph definition"},
    }
)
async def create_graph(definition: GraphDefinition) -> GraphCreateResponse:
    """
    Create a new workflow graph.

    The definition is validated in full: every non-terminal step needs a
    next step, every edge must target an existing step, every step must be
    reachable and every Task step must name a registered capability.
    """
    try:
        graph = await workflow_engine.register_graph(definition)
    except GraphError as e:
        raise HTTPException(
            status_code=400,
            detail={"message": str(e), "errors": e.errors},
        )

    logger.info(f"Created graph: {graph.graph_id} ({graph.name})")

    return GraphCreateResponse(
        graph_id=graph.graph_id,
        name=graph.name,
        message="Graph created successfully",
        step_count=len(graph),
    )


@router.get(
    "/",
    response_model=GraphListResponse,
)
async def list_graphs() -> GraphListResponse:
    """List all available graphs."""
    graphs = await workflow_engine.graphs.list_all()
    graph_infos = [_graph_info(stored) for stored in graphs]
    return GraphListResponse(graphs=graph_infos, total=len(graph_infos))


@router.get(
    "/{graph_id}",
    response_model=GraphInfoResponse,
    responses={404: {"model": ErrorResponse}},
)
async def get_graph(graph_id: str) -> GraphInfoResponse:
    """Get a graph with its definition and a Mermaid diagram."""
    stored = await workflow_engine.graphs.get(graph_id)
    if not stored:
        raise HTTPException(status_code=404, detail=f"Graph '{graph_id}' not found")
    return _graph_info(stored, detailed=True)


@router.delete(
    "/{graph_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    responses={404: {"model": ErrorResponse}},
)
async def delete_graph(graph_id: str):
    """Delete a graph. Runs already started keep executing."""
    try:
        await workflow_engine.delete_graph(graph_id)
    except GraphNotFound:
        raise HTTPException(status_code=404, detail=f"Graph '{graph_id}' not found")
