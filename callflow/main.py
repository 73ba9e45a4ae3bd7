"""
CallFlow - FastAPI Application Entry Point.

An async workflow orchestration engine for call-handling pipelines.
"""

from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
import logging

from callflow.config import settings
from callflow.api.routes import capabilities, graph, runs, websocket
from callflow.service import workflow_engine
from callflow.workflows.call_handler import CALL_HANDLER_GRAPH_ID, register_call_handler_workflow

# Import builtin capabilities to register them
import callflow.capabilities.builtin  # noqa: F401


# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    # Startup
    logger.info(f"Starting {settings.APP_NAME} v{settings.APP_VERSION}")

    # Register the demo workflow
    await register_call_handler_workflow(workflow_engine)

    yield

    # Shutdown
    logger.info("Shutting down...")
    await workflow_engine.shutdown()


# Create FastAPI application
app = FastAPI(
    title=settings.APP_NAME,
    description="""
## Workflow Engine API

An async workflow engine for long-running call-handling pipelines.

### Features
- **Steps**: Task, Wait, Choice and Pass steps wired into a validated graph
- **Policies**: Per-step retry with exponential back-off and catch routing
- **Deadlines**: Overall run timeouts and per-task timeouts
- **Control**: Start, inspect, cancel and audit runs
- **Real-time Updates**: WebSocket streaming of run history

### Quick Start
1. List available capabilities: `GET /capabilities`
2. Create a graph: `POST /graph/create`
3. Start a run: `POST /runs`
4. Check run state: `GET /runs/{run_id}`

### Demo Workflow
A pre-registered Call Handler workflow is available with ID: `call-handler-demo`
    """,
    version=settings.APP_VERSION,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)


# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Include routers
app.include_router(graph.router)
app.include_router(runs.router)
app.include_router(capabilities.router)
app.include_router(websocket.router)


# ============================================================
# Root Endpoints
# ============================================================

@app.get("/", tags=["Root"])
async def root():
    """API root - returns basic info and links."""
    return {
        "name": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "description": "An async workflow engine for call-handling pipelines",
        "docs": "/docs",
        "redoc": "/redoc",
        "endpoints": {
            "graphs": "/graph",
            "runs": "/runs",
            "capabilities": "/capabilities",
            "websocket_subscribe": "/ws/runs/{run_id}",
        },
        "demo_workflow": CALL_HANDLER_GRAPH_ID,
    }


@app.get("/health", tags=["Root"])
async def health():
    """Health check endpoint."""
    return {
        "status": "healthy",
        "version": settings.APP_VERSION,
        "graphs_count": len(workflow_engine.graphs),
        "runs_count": len(workflow_engine.runs),
        "websocket_connections": len(websocket.manager),
    }


# ============================================================
# Error Handlers
# ============================================================

@app.exception_handler(Exception)
async def global_exception_handler(request, exc):
    """Global exception handler for unhandled errors."""
    logger.exception(f"Unhandled error: {exc}")
    return JSONResponse(
        status_code=500,
        content={
            "error": "Internal Server Error",
            "detail": str(exc) if settings.DEBUG else "An unexpected error occurred",
        },
    )
