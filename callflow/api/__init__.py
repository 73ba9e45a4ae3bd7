"""
API package - FastAPI routes and schemas.
"""

from callflow.api.routes import capabilities, graph, runs, websocket

__all__ = ["capabilities", "graph", "runs", "websocket"]
