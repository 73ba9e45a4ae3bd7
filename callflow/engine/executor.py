"""
Async Run Executor.

The executor drives one run of a StateGraph from its start step to a
terminal status. It owns the run's state and history, enforces the overall
deadline and per-task timeouts, applies retry/catch policies to step
failures and honours cancellation requests between (and during) steps.
"""

from typing import Any, Awaitable, Callable, Dict, Optional
from dataclasses import dataclass, field
from copy import deepcopy
import asyncio
import uuid
import logging

from callflow.capabilities.registry import CapabilityRegistry
from callflow.errors import FailureKind, InvalidInput, StepFailure, TaskTimeout
from callflow.engine.expressions import assign, evaluate, resolve_required
from callflow.engine.graph import StateGraph
from callflow.engine.history import EventKind, HistoryEntry, RunHistory
from callflow.engine.invoker import TaskInvoker
from callflow.engine.policy import PolicyAction, decide
from callflow.engine.state import RunError, RunState, RunStatus
from callflow.engine.steps import ChoiceStep, PassStep, Step, TaskStep, WaitStep
from callflow.engine.timer import Timer, default_timer


logger = logging.getLogger(__name__)


TransitionCallback = Callable[[RunState, HistoryEntry], Awaitable[None]]

DEFAULT_RUN_TIMEOUT = 600.0
DEFAULT_TASK_TIMEOUT = 60.0

_FINAL_EVENTS = {
    RunStatus.SUCCEEDED: (EventKind.RUN_SUCCEEDED, "RunSucceeded"),
    RunStatus.FAILED: (EventKind.RUN_FAILED, "RunFailed"),
    RunStatus.TIMED_OUT: (EventKind.RUN_TIMED_OUT, "RunTimedOut"),
    RunStatus.CANCELLED: (EventKind.RUN_CANCELLED, "RunCancelled"),
}


class _Interrupted(Exception):
    """The in-flight step was abandoned because the run was cancelled or timed out."""

    def __init__(self, status: RunStatus):
        self.status = status
        super().__init__(status.value)


@dataclass
class StepOutcome:
    """Result of dispatching one step successfully."""
    next_step: Optional[str]
    data: Dict[str, Any]
    payload: Dict[str, Any] = field(default_factory=dict)


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _has_result_source(step: Step, result: Any) -> bool:
    if isinstance(step, PassStep):
        return step.result_from_path is not None or step.result is not None
    return result is not None


class RunExecutor:
    """
    Async executor for a single workflow run.

    Runs one step at a time; a run is never dispatched concurrently with
    itself. Many executors can share one event loop, one StateGraph and one
    capability registry.

    Usage:
        executor = RunExecutor(graph, TaskInvoker(registry))
        executor.start({"phone_number": "+15550100"}, timeout_seconds=600)
        state = await executor.run()
    """

    def __init__(
        self,
        graph: StateGraph,
        invoker: TaskInvoker,
        run_id: Optional[str] = None,
        timer: Optional[Timer] = None,
        event_sink: Optional[Any] = None,
        on_transition: Optional[TransitionCallback] = None,
        default_timeout: float = DEFAULT_RUN_TIMEOUT,
        task_timeout: float = DEFAULT_TASK_TIMEOUT,
    ):
        """
        Initialize the executor.

        Args:
            graph: The workflow graph to execute
            invoker: Task invoker wrapping the capability registry
            run_id: Optional run ID (generated if not provided)
            timer: Timer service (defaults to the real clock)
            event_sink: Optional sink receiving run lifecycle events
            on_transition: Optional async hook awaited after every history
                entry, used for checkpointing and streaming
            default_timeout: Run timeout when neither the caller nor the
                graph specifies one
            task_timeout: Timeout for Task steps that do not set their own
        """
        self.graph = graph
        self.invoker = invoker
        self.run_id = run_id or str(uuid.uuid4())
        self.timer = timer or default_timer
        self.event_sink = event_sink
        self.on_transition = on_transition
        self.default_timeout = default_timeout
        self.task_timeout = task_timeout

        self.history = RunHistory(self.run_id)
        self._state = RunState(
            run_id=self.run_id,
            graph_id=graph.graph_id,
            current_step=graph.start,
        )
        self._cancel_requested = asyncio.Event()
        self._started = False

    @property
    def state(self) -> RunState:
        """A copy of the current run state."""
        return self._state.model_copy(deep=True)

    @property
    def status(self) -> RunStatus:
        return self._state.status

    @property
    def cancel_requested(self) -> bool:
        return self._cancel_requested.is_set()

    def start(
        self,
        initial_data: Optional[Dict[str, Any]] = None,
        timeout_seconds: Optional[float] = None,
    ) -> RunState:
        """
        Initialize the run at the graph's start step.

        Args:
            initial_data: Initial data document
            timeout_seconds: Overall run timeout (falls back to the graph's,
                then the executor default)

        Returns:
            The initialized RunState
        """
        if self._started:
            raise RuntimeError(f"Run '{self.run_id}' has already been started")
        if initial_data is not None and not isinstance(initial_data, dict):
            raise ValueError("Initial data must be a JSON object")

        timeout = timeout_seconds
        if timeout is None:
            timeout = self.graph.timeout_seconds or self.default_timeout
        if timeout <= 0:
            raise ValueError("timeout_seconds must be positive")

        self._state = RunState(
            run_id=self.run_id,
            graph_id=self.graph.graph_id,
            current_step=self.graph.start,
            data=deepcopy(initial_data or {}),
            status=RunStatus.PENDING,
            attempt=0,
            started_at=self.timer.now(),
            deadline=self.timer.monotonic() + timeout,
            timeout_seconds=timeout,
        )
        self._started = True
        return self.state

    def cancel(self) -> bool:
        """
        Request cancellation.

        Observed before the next dispatch, and immediately by an in-flight
        task invocation or wait, which is abandoned.

        Returns:
            False if the run had already finished
        """
        if self._state.status.is_terminal:
            return False
        logger.info(f"Cancellation requested for run {self.run_id}")
        self._cancel_requested.set()
        return True

    async def run(
        self,
        initial_data: Optional[Dict[str, Any]] = None,
        timeout_seconds: Optional[float] = None,
    ) -> RunState:
        """
        Execute the run until it reaches a terminal status.

        Never raises for a failed run; inspect the returned state instead.

        Returns:
            The final RunState
        """
        if not self._started:
            self.start(initial_data, timeout_seconds)
        state = self._state
        if state.status != RunStatus.PENDING:
            raise RuntimeError(f"Run '{self.run_id}' has already been executed")

        state.status = RunStatus.RUNNING
        logger.info(f"Starting run {self.run_id} of graph '{self.graph.name}' at '{state.current_step}'")
        await self._record(
            EventKind.RUN_STARTED,
            state.current_step,
            payload={"input": deepcopy(state.data), "timeout_seconds": state.timeout_seconds},
        )
        await self._publish("RunStarted", {
            "run_id": self.run_id,
            "graph_id": self.graph.graph_id,
            "graph_name": self.graph.name,
        })

        try:
            while not state.status.is_terminal:
                await self._tick()
        except Exception as e:
            logger.exception(f"Run {self.run_id} failed unexpectedly: {e}")
            await self._finish(
                RunStatus.FAILED,
                RunError(kind="InternalError", step=state.current_step, cause=str(e)),
            )

        return self.state

    # ============================================================
    # Loop
    # ============================================================

    async def _tick(self) -> None:
        """Run one iteration of the step-execution loop."""
        state = self._state
        step_name = state.current_step

        if self._cancel_requested.is_set():
            await self._finish(RunStatus.CANCELLED)
            return

        if self._remaining() < 0:
            await self._finish(
                RunStatus.TIMED_OUT,
                RunError(kind=FailureKind.TIMEOUT.value, step=step_name, cause="Run deadline exceeded"),
            )
            return

        if state.transitions >= self.graph.max_transitions:
            await self._finish(
                RunStatus.FAILED,
                RunError(
                    kind=FailureKind.GRAPH_ERROR.value,
                    step=step_name,
                    cause=f"Max transitions ({self.graph.max_transitions}) exceeded",
                ),
            )
            return

        step = self.graph.steps.get(step_name)
        if step is None:
            await self._finish(
                RunStatus.FAILED,
                RunError(
                    kind=FailureKind.GRAPH_ERROR.value,
                    step=step_name,
                    cause=f"Step '{step_name}' not found in graph",
                ),
            )
            return

        state.transitions += 1
        logger.info(
            f"Run {self.run_id}: executing {step.kind.value} step '{step.name}' "
            f"(attempt {state.attempt + 1})"
        )

        try:
            outcome = await self._dispatch(step)
        except _Interrupted as interrupt:
            await self._record(
                EventKind.STEP_ABANDONED,
                step.name,
                payload={"attempt": state.attempt + 1, "reason": interrupt.status.value},
            )
            error = None
            if interrupt.status == RunStatus.TIMED_OUT:
                error = RunError(
                    kind=FailureKind.TIMEOUT.value,
                    step=step.name,
                    cause="Run deadline exceeded while step was in flight",
                )
            await self._finish(interrupt.status, error)
            return
        except StepFailure as failure:
            await self._handle_failure(step, failure)
            return

        await self._advance(step, outcome)

    async def _advance(self, step: Step, outcome: StepOutcome) -> None:
        """Record a successful step and move to its successor."""
        state = self._state
        payload = {"attempt": state.attempt + 1, **outcome.payload}
        payload["next"] = None if step.end else outcome.next_step

        state.data = outcome.data
        await self._record(EventKind.STEP_SUCCEEDED, step.name, payload=payload)

        if step.end:
            await self._finish(RunStatus.SUCCEEDED)
            return

        if outcome.next_step is None or outcome.next_step not in self.graph:
            await self._finish(
                RunStatus.FAILED,
                RunError(
                    kind=FailureKind.GRAPH_ERROR.value,
                    step=step.name,
                    cause=f"Step '{step.name}' has no resolvable next step",
                ),
            )
            return

        state.current_step = outcome.next_step
        state.attempt = 0

    async def _handle_failure(self, step: Step, failure: StepFailure) -> None:
        """Apply the step's retry/catch policies to a failure."""
        state = self._state
        decision = decide(step.retry, step.catch, failure, state.attempt)
        error = failure.to_error(step.name)

        await self._record(
            EventKind.STEP_FAILED,
            step.name,
            payload={"attempt": decision.attempts, "decision": decision.to_dict()},
            error=error,
        )

        if decision.action == PolicyAction.RETRY:
            logger.warning(
                f"Run {self.run_id}: step '{step.name}' failed with {failure.kind.value} "
                f"(attempt {decision.attempts}), retrying in {decision.delay_seconds:.2f}s"
            )
            state.attempt += 1
            try:
                await self._sleep(decision.delay_seconds)
            except _Interrupted as interrupt:
                error = None
                if interrupt.status == RunStatus.TIMED_OUT:
                    error = RunError(
                        kind=FailureKind.TIMEOUT.value,
                        step=step.name,
                        cause="Run deadline exceeded during retry back-off",
                    )
                await self._finish(interrupt.status, error)
            return

        if decision.action == PolicyAction.CATCH:
            logger.warning(
                f"Run {self.run_id}: step '{step.name}' failed with {failure.kind.value}, "
                f"routing to '{decision.next_step}'"
            )
            if decision.result_path is not None:
                try:
                    state.data = assign(state.data, decision.result_path, error)
                except InvalidInput as e:
                    await self._finish(
                        RunStatus.FAILED,
                        RunError(kind=e.kind.value, step=step.name, cause=e.cause),
                    )
                    return
            state.current_step = decision.next_step
            state.attempt = 0
            return

        logger.error(f"Run {self.run_id}: step '{step.name}' failed with {failure.kind.value}: {failure.cause}")
        await self._finish(
            RunStatus.FAILED,
            RunError(kind=failure.kind.value, step=step.name, cause=failure.cause),
        )

    async def _finish(self, status: RunStatus, error: Optional[RunError] = None) -> None:
        """Move the run to a terminal status."""
        state = self._state
        state.status = status
        state.error = error
        state.completed_at = self.timer.now()

        event_kind, event_type = _FINAL_EVENTS[status]
        await self._record(
            event_kind,
            state.current_step,
            payload={"status": status.value, "transitions": state.transitions},
            error=error.model_dump() if error else None,
        )
        await self._publish(event_type, {
            "run_id": self.run_id,
            "graph_id": self.graph.graph_id,
            "status": status.value,
            "step": state.current_step,
            "error": error.model_dump() if error else None,
        })
        logger.info(f"Run {self.run_id} finished with status {status.value}")

    # ============================================================
    # Step dispatch
    # ============================================================

    async def _dispatch(self, step: Step) -> StepOutcome:
        if isinstance(step, TaskStep):
            return await self._run_task(step)
        if isinstance(step, WaitStep):
            return await self._run_wait(step)
        if isinstance(step, ChoiceStep):
            return self._run_choice(step)
        if isinstance(step, PassStep):
            return self._run_pass(step)
        raise InvalidInput(f"Unsupported step type: {type(step).__name__}")

    async def _run_task(self, step: TaskStep) -> StepOutcome:
        data = self._state.data
        payload = deepcopy(resolve_required(data, step.input_path))

        step_timeout = step.timeout_seconds or self.task_timeout
        remaining = max(self._remaining(), 0.0)
        bounded_by_deadline = remaining < step_timeout
        timeout = min(step_timeout, remaining)

        try:
            output = await self._interruptible(
                self.invoker.invoke(step.capability, payload, timeout=timeout)
            )
        except TaskTimeout as failure:
            hit_bound = bounded_by_deadline and "timeout_seconds" in failure.details
            if hit_bound or self._remaining() <= 0:
                raise _Interrupted(RunStatus.TIMED_OUT)
            raise

        return StepOutcome(
            next_step=step.next,
            data=self._apply_result(step, data, output),
            payload={
                "capability": step.capability,
                "input": payload,
                "output": deepcopy(output),
            },
        )

    async def _run_wait(self, step: WaitStep) -> StepOutcome:
        if step.seconds is not None:
            seconds = step.seconds
        else:
            seconds = resolve_required(self._state.data, step.seconds_path)

        if not _is_number(seconds):
            raise InvalidInput(
                f"Wait duration must be a number, got {seconds!r}",
                details={"seconds_path": step.seconds_path},
            )
        if seconds <= 0:
            raise InvalidInput(f"Wait duration must be positive, got {seconds}")

        await self._sleep(seconds)
        return StepOutcome(
            next_step=step.next,
            data=self._state.data,
            payload={"waited_seconds": seconds},
        )

    def _run_choice(self, step: ChoiceStep) -> StepOutcome:
        data = self._state.data
        for index, rule in enumerate(step.rules):
            if evaluate(rule.condition, data):
                return StepOutcome(
                    next_step=rule.next,
                    data=data,
                    payload={"matched_rule": index},
                )
        return StepOutcome(
            next_step=step.default,
            data=data,
            payload={"matched_rule": None},
        )

    def _run_pass(self, step: PassStep) -> StepOutcome:
        data = self._state.data
        if step.result_from_path is not None:
            value = resolve_required(data, step.result_from_path)
        else:
            value = step.result
        return StepOutcome(
            next_step=step.next,
            data=self._apply_result(step, data, value),
        )

    def _apply_result(self, step: Step, data: Dict[str, Any], result: Any) -> Dict[str, Any]:
        """
        Write a step result into the data document.

        A step whose result_path is None leaves the document unchanged, as
        does a None result with no result_from_path behind it. A value
        copied from the document is written even when it is null.
        output_path then narrows the document, which must remain an object.
        """
        if step.result_path is None or not _has_result_source(step, result):
            new_data = deepcopy(data)
        else:
            new_data = assign(data, step.result_path, result)

        if step.output_path != "$":
            narrowed = resolve_required(new_data, step.output_path)
            if not isinstance(narrowed, dict):
                raise InvalidInput(
                    f"output_path '{step.output_path}' must select an object, "
                    f"got {type(narrowed).__name__}"
                )
            new_data = deepcopy(narrowed)

        return new_data

    # ============================================================
    # Suspension
    # ============================================================

    def _remaining(self) -> float:
        return self._state.deadline - self.timer.monotonic()

    async def _interruptible(self, awaitable: Awaitable) -> Any:
        """
        Await work, abandoning it if cancellation is requested first.

        Cancellation wins even if the work completes in the same loop
        iteration.
        """
        work = asyncio.ensure_future(awaitable)
        cancel_wait = asyncio.ensure_future(self._cancel_requested.wait())
        try:
            await asyncio.wait({work, cancel_wait}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            work.cancel()
            raise
        finally:
            cancel_wait.cancel()

        if self._cancel_requested.is_set():
            if not work.done():
                work.cancel()
            elif not work.cancelled():
                work.exception()
            raise _Interrupted(RunStatus.CANCELLED)

        return work.result()

    async def _sleep(self, seconds: float) -> None:
        """Sleep on the timer, ending the run at its deadline if that comes first."""
        remaining = self._remaining()
        if seconds > remaining:
            await self._interruptible(self.timer.sleep(max(remaining, 0.0)))
            raise _Interrupted(RunStatus.TIMED_OUT)
        await self._interruptible(self.timer.sleep(seconds))

    # ============================================================
    # Recording
    # ============================================================

    async def _record(
        self,
        event_kind: EventKind,
        step_name: Optional[str],
        payload: Optional[Dict[str, Any]] = None,
        error: Optional[Dict[str, Any]] = None,
    ) -> HistoryEntry:
        entry = self.history.append(
            event_kind,
            step_name,
            payload=payload,
            error=error,
            timestamp=self.timer.now(),
        )
        if self.on_transition is not None:
            try:
                await self.on_transition(self.state, entry)
            except Exception as e:
                logger.warning(f"Transition callback failed for run {self.run_id}: {e}")
        return entry

    async def _publish(self, event_type: str, payload: Dict[str, Any]) -> None:
        if self.event_sink is None:
            return
        try:
            await self.event_sink.publish(event_type, payload)
        except Exception as e:
            logger.warning(f"Event sink failed to publish {event_type} for run {self.run_id}: {e}")

    def get_execution_summary(self) -> Dict[str, Any]:
        """Get a summary of the current execution."""
        state = self._state
        return {
            "run_id": self.run_id,
            "graph_id": self.graph.graph_id,
            "status": state.status.value,
            "current_step": state.current_step,
            "attempt": state.attempt,
            "transitions": state.transitions,
            "history_length": len(self.history),
        }


async def execute_graph(
    graph: StateGraph,
    registry: CapabilityRegistry,
    initial_data: Optional[Dict[str, Any]] = None,
    timeout_seconds: Optional[float] = None,
    timer: Optional[Timer] = None,
    event_sink: Optional[Any] = None,
    run_id: Optional[str] = None,
) -> RunExecutor:
    """
    Convenience function to execute a graph to completion.

    Args:
        graph: The workflow graph
        registry: Capabilities available to Task steps
        initial_data: Initial data document
        timeout_seconds: Overall run timeout
        timer: Optional timer service
        event_sink: Optional lifecycle event sink
        run_id: Optional run ID

    Returns:
        The finished RunExecutor (see `.state` and `.history`)
    """
    executor = RunExecutor(
        graph,
        TaskInvoker(registry),
        run_id=run_id,
        timer=timer,
        event_sink=event_sink,
    )
    await executor.run(initial_data, timeout_seconds)
    return executor
