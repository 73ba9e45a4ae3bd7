"""
Tests for the capability registry and the task invoker.
"""

import asyncio

import pytest
from pydantic import ValidationError

from callflow.capabilities.registry import Capability, CapabilityRegistry, PollingCapability
from callflow.engine.history import EventKind, RunHistory
from callflow.engine.invoker import TaskInvoker
from callflow.errors import CapabilityError, FailureKind, InvalidInput, TaskTimeout


class TestCapabilityRegistry:
    """Tests for CapabilityRegistry."""

    def test_register_decorator(self, registry):
        assert "echo" in registry
        assert registry.get("echo").name == "echo"
        assert registry.get("missing") is None

    def test_add_uses_function_name_and_docstring(self):
        registry = CapabilityRegistry()

        def place_call(payload):
            """Dial the number."""
            return {}

        capability = registry.add(place_call)
        assert capability.name == "place_call"
        assert capability.description == "Dial the number."
        assert capability.is_async is False

    def test_list_and_remove(self, registry):
        names = [info["name"] for info in registry.list_capabilities()]
        assert names == registry.names()
        assert registry.remove("echo") is True
        assert registry.remove("echo") is False
        assert "echo" not in registry

    def test_capability_requires_name(self):
        with pytest.raises(ValueError):
            Capability(name="", func=lambda payload: payload)

    @pytest.mark.asyncio
    async def test_sync_capability_invocation(self, registry):
        result = await registry.get("echo").invoke({"a": 1})
        assert result == {"echo": {"a": 1}}


class TestPollingCapability:
    """Tests for submit-then-poll capabilities."""

    @pytest.mark.asyncio
    async def test_polls_until_done(self):
        checks = []

        async def submit(payload):
            return f"job-{payload['n']}"

        def check(handle):
            checks.append(handle)
            done = len(checks) >= 3
            return done, ({"handle": handle} if done else None)

        capability = PollingCapability(submit, check, interval_seconds=0.01)

        assert await capability({"n": 7}) == {"handle": "job-7"}
        assert checks == ["job-7"] * 3

    @pytest.mark.asyncio
    async def test_bounded_by_invoker_timeout(self):
        registry = CapabilityRegistry()
        registry.add(
            PollingCapability(lambda payload: "job", lambda handle: (False, None), interval_seconds=0.01),
            name="never_done",
        )

        with pytest.raises(TaskTimeout):
            await TaskInvoker(registry).invoke("never_done", {}, timeout=0.05)

    def test_interval_must_be_positive(self):
        with pytest.raises(ValueError):
            PollingCapability(lambda payload: None, lambda handle: (True, None), interval_seconds=0)


class TestTaskInvoker:
    """Tests for failure classification."""

    @pytest.mark.asyncio
    async def test_unknown_capability(self, invoker):
        with pytest.raises(CapabilityError) as exc_info:
            await invoker.invoke("missing", {})
        assert exc_info.value.details == {"capability": "missing"}

    @pytest.mark.asyncio
    async def test_generic_exception_becomes_capability_error(self, invoker):
        with pytest.raises(CapabilityError) as exc_info:
            await invoker.invoke("boom", {})
        assert exc_info.value.kind == FailureKind.CAPABILITY_ERROR
        assert exc_info.value.details["exception"] == "RuntimeError"

    @pytest.mark.asyncio
    async def test_step_failures_keep_their_kind(self, registry, invoker):
        async def picky(payload):
            raise InvalidInput("bad phone number")

        registry.add(picky, name="picky")
        with pytest.raises(InvalidInput):
            await invoker.invoke("picky", {})

    @pytest.mark.asyncio
    async def test_timeout(self, registry, invoker):
        async def slow(payload):
            await asyncio.sleep(5)

        registry.add(slow, name="slow")
        with pytest.raises(TaskTimeout) as exc_info:
            await invoker.invoke("slow", {}, timeout=0.05)
        assert exc_info.value.kind == FailureKind.TIMEOUT
        assert exc_info.value.details["timeout_seconds"] == 0.05

    @pytest.mark.asyncio
    async def test_capability_timeout_has_no_bound(self, registry, invoker):
        async def carrier(payload):
            raise TimeoutError("no answer")

        registry.add(carrier, name="carrier")
        with pytest.raises(TaskTimeout) as exc_info:
            await invoker.invoke("carrier", {}, timeout=30)
        assert exc_info.value.details == {"capability": "carrier"}
        assert "no answer" in exc_info.value.cause


class TestRunHistory:
    """Tests for the append-only history."""

    def test_append_and_snapshot(self):
        history = RunHistory("run-1")
        history.append(EventKind.RUN_STARTED, "A")
        history.append(EventKind.STEP_SUCCEEDED, "A", payload={"next": "B"})

        snapshot = history.entries
        history.append(EventKind.RUN_SUCCEEDED, "B")

        assert len(snapshot) == 2
        assert len(history) == 3
        assert [entry.seq for entry in history] == [1, 2, 3]
        assert [entry.step_name for entry in history.transitions()] == ["A"]
        assert history.to_list()[1]["event_kind"] == "step_succeeded"

    def test_entries_are_frozen(self):
        entry = RunHistory("run-1").append(EventKind.RUN_STARTED, "A")
        with pytest.raises(ValidationError):
            entry.step_name = "B"
