"""
Storage package - In-memory storage for graphs, runs and call context.
"""

from callflow.storage.memory import (
    GraphStorage,
    RunStorage,
    graph_storage,
    run_storage,
)
from callflow.storage.context import InMemoryContextStore, context_store

__all__ = [
    "GraphStorage",
    "RunStorage",
    "graph_storage",
    "run_storage",
    "InMemoryContextStore",
    "context_store",
]
