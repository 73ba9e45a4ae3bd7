"""
Capabilities package - Capability registry and built-in capabilities.
"""

from callflow.capabilities.registry import (
    Capability,
    CapabilityRegistry,
    PollingCapability,
    capability_registry,
    register_capability,
    get_capability,
)

__all__ = [
    "Capability",
    "CapabilityRegistry",
    "PollingCapability",
    "capability_registry",
    "register_capability",
    "get_capability",
]
