"""
In-Memory Storage for the Workflow Engine.

Provides async-safe storage for built graphs and run checkpoints.
Can be replaced with a database implementation: runs are stored as
JSON-compatible checkpoints plus their history.
"""

from typing import Any, Dict, List, Optional
from datetime import datetime
import asyncio
from dataclasses import dataclass, field

from callflow.engine.graph import StateGraph
from callflow.engine.history import HistoryEntry
from callflow.engine.state import RunState


@dataclass
class StoredGraph:
    """A stored, built graph."""
    graph: StateGraph
    created_at: datetime = field(default_factory=datetime.now)

    @property
    def graph_id(self) -> str:
        return self.graph.graph_id

    @property
    def name(self) -> str:
        return self.graph.name

    def to_dict(self) -> Dict[str, Any]:
        return {
            "graph_id": self.graph_id,
            "name": self.name,
            "definition": self.graph.to_dict(),
            "created_at": self.created_at.isoformat(),
        }


@dataclass
class StoredRun:
    """The latest checkpoint of a run and its history so far."""
    run_id: str
    graph_id: str
    checkpoint: Dict[str, Any]
    history: List[HistoryEntry] = field(default_factory=list)
    updated_at: datetime = field(default_factory=datetime.now)

    @property
    def state(self) -> RunState:
        return RunState.from_checkpoint(self.checkpoint)

    @property
    def status(self) -> str:
        return self.checkpoint.get("status", "pending")


class GraphStorage:
    """
    Async-safe in-memory storage for workflow graphs.

    Graphs are immutable once built, so stored graphs are never updated,
    only replaced or deleted.
    """

    def __init__(self):
        self._graphs: Dict[str, StoredGraph] = {}
        self._lock = asyncio.Lock()

    async def save(self, graph: StateGraph) -> StoredGraph:
        """
        Save a built graph under its graph_id.

        Args:
            graph: The built graph

        Returns:
            The stored graph
        """
        async with self._lock:
            stored = StoredGraph(graph=graph)
            self._graphs[graph.graph_id] = stored
            return stored

    async def get(self, graph_id: str) -> Optional[StoredGraph]:
        """Get a graph by ID."""
        async with self._lock:
            return self._graphs.get(graph_id)

    async def delete(self, graph_id: str) -> bool:
        """Delete a graph."""
        async with self._lock:
            if graph_id in self._graphs:
                del self._graphs[graph_id]
                return True
            return False

    async def list_all(self) -> List[StoredGraph]:
        """List all stored graphs."""
        async with self._lock:
            return list(self._graphs.values())

    async def exists(self, graph_id: str) -> bool:
        """Check if a graph exists."""
        async with self._lock:
            return graph_id in self._graphs

    def __len__(self) -> int:
        return len(self._graphs)


class RunStorage:
    """
    Async-safe in-memory storage for run checkpoints.

    The executor's transition hook writes a checkpoint after every history
    entry, so queries see a consistent view of ongoing runs.
    """

    def __init__(self):
        self._runs: Dict[str, StoredRun] = {}
        self._lock = asyncio.Lock()

    async def create(self, state: RunState) -> StoredRun:
        """
        Store the initial checkpoint of a new run.

        Args:
            state: The initialized run state

        Returns:
            The stored run
        """
        async with self._lock:
            stored = StoredRun(
                run_id=state.run_id,
                graph_id=state.graph_id,
                checkpoint=state.to_checkpoint(),
            )
            self._runs[state.run_id] = stored
            return stored

    async def checkpoint(
        self,
        state: RunState,
        entry: Optional[HistoryEntry] = None,
    ) -> Optional[StoredRun]:
        """Replace a run's checkpoint and append a history entry."""
        async with self._lock:
            stored = self._runs.get(state.run_id)
            if stored is None:
                return None
            stored.checkpoint = state.to_checkpoint()
            if entry is not None:
                stored.history.append(entry)
            stored.updated_at = datetime.now()
            return stored

    async def get(self, run_id: str) -> Optional[StoredRun]:
        """Get a run by ID."""
        async with self._lock:
            return self._runs.get(run_id)

    async def history(self, run_id: str) -> Optional[List[HistoryEntry]]:
        """Snapshot of a run's history, or None for an unknown run."""
        async with self._lock:
            stored = self._runs.get(run_id)
            if stored is None:
                return None
            return list(stored.history)

    async def list_all(self) -> List[StoredRun]:
        """List all runs."""
        async with self._lock:
            return list(self._runs.values())

    async def list_by_graph(self, graph_id: str) -> List[StoredRun]:
        """List all runs for a specific graph."""
        async with self._lock:
            return [r for r in self._runs.values() if r.graph_id == graph_id]

    async def delete(self, run_id: str) -> bool:
        """Delete a run."""
        async with self._lock:
            if run_id in self._runs:
                del self._runs[run_id]
                return True
            return False

    def __len__(self) -> int:
        return len(self._runs)


# Global storage instances
graph_storage = GraphStorage()
run_storage = RunStorage()
