"""
Task Invoker.

Performs a single capability invocation and returns its output or a typed
failure. Stateless per invocation; the executor owns timeouts and
cancellation policy.
"""

from typing import Any, Optional
import asyncio
import logging

from callflow.capabilities.registry import CapabilityRegistry
from callflow.errors import CapabilityError, StepFailure, TaskTimeout


logger = logging.getLogger(__name__)


class TaskInvoker:
    """
    Adapter between Task steps and the capability registry.

    Any exception a capability raises is classified: StepFailure subclasses
    keep their kind, timeouts become Timeout, everything else becomes
    CapabilityError.
    """

    def __init__(self, registry: CapabilityRegistry):
        self.registry = registry

    def has(self, name: str) -> bool:
        return self.registry.has(name)

    async def invoke(self, name: str, payload: Any, timeout: Optional[float] = None) -> Any:
        """
        Invoke a capability by name.

        Args:
            name: Registered capability name
            payload: Task input
            timeout: Seconds to wait before abandoning the invocation

        Returns:
            The capability's output

        Raises:
            StepFailure: Classified failure (Timeout, CapabilityError, InvalidInput)
        """
        capability = self.registry.get(name)
        if capability is None:
            raise CapabilityError(
                f"Capability '{name}' not found in registry",
                details={"capability": name},
            )

        try:
            if timeout is None:
                return await _call(capability, name, payload)
            return await asyncio.wait_for(_call(capability, name, payload), timeout=timeout)
        except StepFailure:
            raise
        except (asyncio.TimeoutError, TimeoutError):
            raise TaskTimeout(
                f"Capability '{name}' did not complete within {timeout}s",
                details={"capability": name, "timeout_seconds": timeout},
            ) from None
        except Exception as e:
            logger.debug(f"Capability '{name}' raised {type(e).__name__}: {e}")
            raise CapabilityError(
                f"Capability '{name}' failed: {e}",
                details={"capability": name, "exception": type(e).__name__},
            ) from e


async def _call(capability, name: str, payload: Any) -> Any:
    # A capability's own timeout carries no timeout_seconds detail, unlike
    # the invoker's bound.
    try:
        return await capability.invoke(payload)
    except (asyncio.TimeoutError, TimeoutError) as e:
        raise TaskTimeout(
            f"Capability '{name}' timed out: {e}" if str(e) else f"Capability '{name}' timed out",
            details={"capability": name},
        ) from e
