"""
Capability Registry for the Workflow Engine.

Capabilities are the external operations that Task steps invoke by name:
placing a call, analyzing audio, publishing an event. The engine treats
them as opaque: a capability receives the task input and returns its
output, synchronously or asynchronously.
"""

from typing import Any, Callable, Dict, Iterator, List, Optional, Tuple
from dataclasses import dataclass
import asyncio
import functools
import logging


logger = logging.getLogger(__name__)


async def call_maybe_async(func: Callable, *args: Any) -> Any:
    """
    Call a sync or async function without blocking the event loop.

    Sync functions run in the default thread pool executor.
    """
    if asyncio.iscoroutinefunction(func) or asyncio.iscoroutinefunction(
        getattr(func, "__call__", None)
    ):
        return await func(*args)
    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(None, functools.partial(func, *args))


@dataclass
class Capability:
    """
    A registered capability.

    Attributes:
        name: Unique identifier used by Task steps
        func: The callable (sync or async) taking the task input
        description: Human-readable description
    """
    name: str
    func: Callable[[Any], Any]
    description: str = ""

    def __post_init__(self):
        if not self.name:
            raise ValueError("Capability name cannot be empty")
        if not callable(self.func):
            raise ValueError(f"Capability '{self.name}' must be callable")

    @property
    def is_async(self) -> bool:
        return asyncio.iscoroutinefunction(self.func) or asyncio.iscoroutinefunction(
            getattr(self.func, "__call__", None)
        )

    async def invoke(self, payload: Any) -> Any:
        """Invoke the capability with the task input."""
        return await call_maybe_async(self.func, payload)

    def to_dict(self) -> Dict[str, Any]:
        """Serialize capability metadata."""
        return {
            "name": self.name,
            "description": self.description,
            "is_async": self.is_async,
        }


class PollingCapability:
    """
    Adapter for external operations that complete asynchronously.

    `submit(payload)` starts the operation and returns a handle;
    `check(handle)` returns `(done, output)`. The adapter polls until the
    operation reports completion. Both callables may be sync or async.
    The executor's step timeout bounds the whole poll loop.

    Usage:
        registry.add(
            PollingCapability(start_transcription, transcription_status, interval_seconds=2),
            name="transcribe",
        )
    """

    def __init__(
        self,
        submit: Callable[[Any], Any],
        check: Callable[[Any], Tuple[bool, Any]],
        interval_seconds: float = 1.0,
    ):
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")
        self.submit = submit
        self.check = check
        self.interval_seconds = interval_seconds
        self.__name__ = getattr(submit, "__name__", "polling_capability")
        self.__doc__ = submit.__doc__

    async def __call__(self, payload: Any) -> Any:
        handle = await call_maybe_async(self.submit, payload)
        polls = 0
        while True:
            polls += 1
            done, output = await call_maybe_async(self.check, handle)
            if done:
                logger.debug(f"Polling capability '{self.__name__}' done after {polls} checks")
                return output
            await asyncio.sleep(self.interval_seconds)


class CapabilityRegistry:
    """
    Registry mapping capability names to callables.

    Supplied to the engine at construction and treated as read-only while
    runs are executing.

    Usage:
        registry = CapabilityRegistry()

        @registry.register("initiate_call")
        async def initiate_call(payload: dict) -> dict:
            return {"call_sid": "CA123"}

        capability = registry.get("initiate_call")
        result = await capability.invoke({"phone_number": "+15550100"})
    """

    def __init__(self):
        self._capabilities: Dict[str, Capability] = {}

    def register(
        self,
        name: Optional[str] = None,
        description: str = "",
    ) -> Callable:
        """
        Decorator to register a function as a capability.

        Args:
            name: Capability name (defaults to function name)
            description: Description (defaults to docstring)

        Returns:
            Decorator function
        """
        def decorator(func: Callable) -> Callable:
            self.add(func, name=name, description=description)
            return func

        return decorator

    def add(
        self,
        func: Callable,
        name: Optional[str] = None,
        description: str = "",
    ) -> Capability:
        """
        Directly add a callable as a capability (non-decorator version).

        Args:
            func: The callable to register
            name: Capability name (defaults to the callable's __name__)
            description: Capability description

        Returns:
            The registered Capability
        """
        capability_name = name or getattr(func, "__name__", "")
        capability = Capability(
            name=capability_name,
            func=func,
            description=(description or func.__doc__ or "").strip(),
        )
        if capability_name in self._capabilities:
            logger.warning(f"Replacing capability: {capability_name}")
        self._capabilities[capability_name] = capability
        logger.debug(f"Registered capability: {capability_name}")
        return capability

    def get(self, name: str) -> Optional[Capability]:
        """Get a capability by name."""
        return self._capabilities.get(name)

    def remove(self, name: str) -> bool:
        """Remove a capability from the registry."""
        if name in self._capabilities:
            del self._capabilities[name]
            return True
        return False

    def list_capabilities(self) -> List[Dict[str, Any]]:
        """List all registered capabilities with their metadata."""
        return [capability.to_dict() for capability in self._capabilities.values()]

    def names(self) -> List[str]:
        return list(self._capabilities)

    def has(self, name: str) -> bool:
        """Check if a capability is registered."""
        return name in self._capabilities

    def __contains__(self, name: str) -> bool:
        return self.has(name)

    def __len__(self) -> int:
        return len(self._capabilities)

    def __iter__(self) -> Iterator[Capability]:
        return iter(self._capabilities.values())


# Global capability registry instance
capability_registry = CapabilityRegistry()


def register_capability(name: Optional[str] = None, description: str = "") -> Callable:
    """
    Convenience decorator to register a capability in the global registry.

    Usage:
        @register_capability("end_call", description="Terminate the call")
        def end_call(payload: dict) -> dict:
            return {"call_status": "completed"}
    """
    return capability_registry.register(name, description)


def get_capability(name: str) -> Optional[Capability]:
    """Get a capability from the global registry."""
    return capability_registry.get(name)
