"""
Capabilities API Routes.

Endpoints for listing registered capabilities.
"""

from fastapi import APIRouter, HTTPException

from callflow.api.schemas import (
    CapabilityInfo,
    CapabilityListResponse,
    ErrorResponse,
)
from callflow.service import workflow_engine


router = APIRouter(prefix="/capabilities", tags=["Capabilities"])


@router.get(
    "/",
    response_model=CapabilityListResponse,
)
async def list_capabilities() -> CapabilityListResponse:
    """
    List all registered capabilities.

    Capabilities are the operations Task steps invoke by name.
    """
    capabilities = [
        CapabilityInfo(**info)
        for info in workflow_engine.registry.list_capabilities()
    ]
    return CapabilityListResponse(capabilities=capabilities, total=len(capabilities))


@router.get(
    "/{name}",
    response_model=CapabilityInfo,
    responses={404: {"model": ErrorResponse}},
)
async def get_capability(name: str) -> CapabilityInfo:
    """Get information about a specific capability."""
    capability = workflow_engine.registry.get(name)
    if not capability:
        raise HTTPException(
            status_code=404,
            detail=f"Capability '{name}' not found"
        )
    return CapabilityInfo(**capability.to_dict())
