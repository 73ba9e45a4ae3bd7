"""
Shared fixtures for the Workflow Engine tests.
"""

from datetime import datetime, timedelta
from typing import Any, Dict, List
import asyncio

import pytest

from callflow.capabilities.registry import CapabilityRegistry
from callflow.engine.graph import build
from callflow.engine.invoker import TaskInvoker
from callflow.engine.timer import Timer
from callflow.errors import CapabilityError
from callflow.events import InMemoryEventSink


class FakeTimer(Timer):
    """Virtual clock: sleeping advances time instantly and records the duration."""

    def __init__(self, start: float = 1000.0):
        self.current = start
        self.sleeps: List[float] = []

    def monotonic(self) -> float:
        return self.current

    def now(self) -> datetime:
        return datetime(2024, 1, 1) + timedelta(seconds=self.current)

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.current += max(seconds, 0)
        await asyncio.sleep(0)

    def advance(self, seconds: float) -> None:
        self.current += seconds


class Flaky:
    """Capability that fails a fixed number of times before succeeding."""

    def __init__(self, failures: int, result: Any = None):
        self.failures = failures
        self.result = result if result is not None else {"ok": True}
        self.calls = 0

    async def __call__(self, payload: Any) -> Any:
        self.calls += 1
        if self.calls <= self.failures:
            raise CapabilityError(f"failure {self.calls}")
        return self.result


@pytest.fixture
def timer() -> FakeTimer:
    return FakeTimer()


@pytest.fixture
def sink() -> InMemoryEventSink:
    return InMemoryEventSink()


@pytest.fixture
def registry() -> CapabilityRegistry:
    """A registry with a few simple capabilities."""
    registry = CapabilityRegistry()

    @registry.register("echo")
    def echo(payload: Dict[str, Any]) -> Dict[str, Any]:
        return {"echo": payload}

    @registry.register("analyze")
    async def analyze(payload: Dict[str, Any]) -> Dict[str, Any]:
        return {"analyzed": True}

    @registry.register("navigate")
    async def navigate(payload: Dict[str, Any]) -> Dict[str, Any]:
        return {"navigated": True}

    @registry.register("noop")
    async def noop(payload: Any) -> None:
        return None

    @registry.register("boom")
    async def boom(payload: Any) -> None:
        raise RuntimeError("exploded")

    return registry


@pytest.fixture
def invoker(registry: CapabilityRegistry) -> TaskInvoker:
    return TaskInvoker(registry)


def linear_graph(*steps: Dict[str, Any], **options: Any):
    """Build a graph from step dicts, chaining any step without next/end to the following one."""
    chained = []
    for index, step in enumerate(steps):
        step = dict(step)
        if step.get("type") != "choice" and "next" not in step and not step.get("end"):
            if index + 1 < len(steps):
                step["next"] = steps[index + 1]["name"]
            else:
                step["end"] = True
        chained.append(step)
    return build({
        "name": options.pop("name", "test"),
        "start_at": chained[0]["name"],
        "steps": chained,
        **options,
    })
