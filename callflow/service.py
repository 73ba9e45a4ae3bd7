"""
Run Control Surface.

WorkflowEngine registers graphs and starts, observes and cancels runs. Each
run executes as its own asyncio task; its executor checkpoints state and
history into run storage after every transition, so status queries never
touch a live executor.
"""

from typing import Any, Dict, List, Optional, Union
import asyncio
import logging

from callflow.capabilities.registry import CapabilityRegistry, capability_registry
from callflow.config import settings
from callflow.engine.executor import RunExecutor
from callflow.engine.graph import GraphDefinition, StateGraph, build
from callflow.engine.history import HistoryEntry
from callflow.engine.invoker import TaskInvoker
from callflow.engine.state import RunSummary
from callflow.engine.steps import TaskStep
from callflow.engine.timer import Timer, default_timer
from callflow.errors import GraphError, GraphNotFound, RunNotFound
from callflow.events import EventSink, create_event_sink, event_sink as default_event_sink
from callflow.storage.memory import GraphStorage, RunStorage, graph_storage, run_storage


logger = logging.getLogger(__name__)


class WorkflowEngine:
    """
    Registers workflow graphs and manages their runs.

    Usage:
        engine = WorkflowEngine(registry)
        graph = await engine.register_graph(definition)
        run_id = await engine.start(graph.graph_id, {"phone_number": "+15550100"})
        summary = await engine.wait(run_id)
    """

    def __init__(
        self,
        registry: Optional[CapabilityRegistry] = None,
        graphs: Optional[GraphStorage] = None,
        runs: Optional[RunStorage] = None,
        timer: Optional[Timer] = None,
        event_sink: Optional[EventSink] = None,
        default_timeout: Optional[float] = None,
        task_timeout: Optional[float] = None,
    ):
        self.registry = registry if registry is not None else capability_registry
        self.graphs = graphs if graphs is not None else GraphStorage()
        self.runs = runs if runs is not None else RunStorage()
        self.timer = timer or default_timer
        self.event_sink = event_sink
        self.default_timeout = default_timeout or settings.DEFAULT_RUN_TIMEOUT
        self.task_timeout = task_timeout or settings.DEFAULT_TASK_TIMEOUT

        self._executors: Dict[str, RunExecutor] = {}
        self._tasks: Dict[str, asyncio.Task] = {}

    # ============================================================
    # Graphs
    # ============================================================

    async def register_graph(
        self,
        definition: Union[GraphDefinition, Dict[str, Any]],
        graph_id: Optional[str] = None,
    ) -> StateGraph:
        """
        Build a graph and make it available for runs.

        Raises:
            GraphError: If the definition is invalid or a Task step references
                a capability that is not registered
        """
        graph = build(definition, graph_id)

        missing = [
            f"Step '{step.name}' references unknown capability '{step.capability}'"
            for step in graph.steps.values()
            if isinstance(step, TaskStep) and not self.registry.has(step.capability)
        ]
        if missing:
            raise GraphError(f"Graph validation failed: {'; '.join(missing)}", missing)

        await self.graphs.save(graph)
        logger.info(f"Registered graph '{graph.name}' ({graph.graph_id}) with {len(graph)} steps")
        return graph

    async def get_graph(self, graph_id: str) -> StateGraph:
        stored = await self.graphs.get(graph_id)
        if stored is None:
            raise GraphNotFound(graph_id)
        return stored.graph

    async def delete_graph(self, graph_id: str) -> None:
        if not await self.graphs.delete(graph_id):
            raise GraphNotFound(graph_id)
        logger.info(f"Deleted graph {graph_id}")

    # ============================================================
    # Runs
    # ============================================================

    async def start(
        self,
        graph_id: str,
        initial_data: Optional[Dict[str, Any]] = None,
        timeout_seconds: Optional[float] = None,
        run_id: Optional[str] = None,
    ) -> str:
        """
        Start a run in the background.

        Returns:
            The new run's ID

        Raises:
            GraphNotFound: If the graph is not registered
            ValueError: If the initial data or timeout is invalid
        """
        graph = await self.get_graph(graph_id)
        executor = RunExecutor(
            graph,
            TaskInvoker(self.registry),
            run_id=run_id,
            timer=self.timer,
            event_sink=self.event_sink,
            on_transition=self.runs.checkpoint,
            default_timeout=self.default_timeout,
            task_timeout=self.task_timeout,
        )
        state = executor.start(initial_data, timeout_seconds)
        await self.runs.create(state)

        self._executors[executor.run_id] = executor
        self._tasks[executor.run_id] = asyncio.create_task(self._run(executor))
        logger.info(f"Started run {executor.run_id} of graph {graph_id}")
        return executor.run_id

    async def _run(self, executor: RunExecutor) -> None:
        try:
            await executor.run()
        finally:
            self._executors.pop(executor.run_id, None)
            self._tasks.pop(executor.run_id, None)

    async def execute(
        self,
        graph_id: str,
        initial_data: Optional[Dict[str, Any]] = None,
        timeout_seconds: Optional[float] = None,
    ) -> RunSummary:
        """Start a run and wait for it to finish."""
        run_id = await self.start(graph_id, initial_data, timeout_seconds)
        return await self.wait(run_id)

    async def wait(self, run_id: str, timeout: Optional[float] = None) -> RunSummary:
        """
        Wait for a run to reach a terminal status.

        Args:
            run_id: The run to wait for
            timeout: Seconds to wait before giving up (raises TimeoutError)
        """
        task = self._tasks.get(run_id)
        if task is not None:
            await asyncio.wait_for(asyncio.shield(task), timeout)
        return await self.status(run_id)

    async def status(self, run_id: str) -> RunSummary:
        stored = await self.runs.get(run_id)
        if stored is None:
            raise RunNotFound(run_id)
        return stored.state.summary()

    async def cancel(self, run_id: str) -> bool:
        """
        Request cancellation of a run.

        Returns:
            False if the run has already finished
        """
        stored = await self.runs.get(run_id)
        if stored is None:
            raise RunNotFound(run_id)
        executor = self._executors.get(run_id)
        if executor is None:
            return False
        return executor.cancel()

    async def history(self, run_id: str) -> List[HistoryEntry]:
        entries = await self.runs.history(run_id)
        if entries is None:
            raise RunNotFound(run_id)
        return entries

    async def list_runs(self, graph_id: Optional[str] = None) -> List[RunSummary]:
        if graph_id:
            stored_runs = await self.runs.list_by_graph(graph_id)
        else:
            stored_runs = await self.runs.list_all()
        return [stored.state.summary() for stored in stored_runs]

    def is_active(self, run_id: str) -> bool:
        return run_id in self._tasks

    async def shutdown(self) -> None:
        """Cancel every active run and wait for them to finish."""
        for executor in list(self._executors.values()):
            executor.cancel()
        tasks = list(self._tasks.values())
        if tasks:
            logger.info(f"Waiting for {len(tasks)} active run(s) to stop")
            await asyncio.gather(*tasks, return_exceptions=True)


# Global engine instance used by the API
workflow_engine = WorkflowEngine(
    registry=capability_registry,
    graphs=graph_storage,
    runs=run_storage,
    event_sink=create_event_sink(default_event_sink, log_events=settings.LOG_EVENTS),
)
