"""
Context Store.

Key/value store for per-call context shared between capabilities (call
identifiers, connection details, results). The engine never reads it; only
capabilities do.
"""

from typing import Any, Dict, List
from copy import deepcopy
import asyncio

from callflow.engine.expressions import NOT_FOUND


class InMemoryContextStore:
    """
    In-memory context store guarded by an asyncio lock.

    Values are copied on the way in and out so callers never share
    mutable state through the store.
    """

    def __init__(self):
        self._items: Dict[str, Any] = {}
        self._lock = asyncio.Lock()

    async def get(self, key: str) -> Any:
        """Get a value, or NOT_FOUND if the key is absent."""
        async with self._lock:
            if key not in self._items:
                return NOT_FOUND
            return deepcopy(self._items[key])

    async def put(self, key: str, value: Any) -> None:
        async with self._lock:
            self._items[key] = deepcopy(value)

    async def update(self, key: str, values: Dict[str, Any]) -> Dict[str, Any]:
        """Merge values into a dict entry, creating it if absent."""
        async with self._lock:
            current = self._items.get(key)
            merged = dict(current) if isinstance(current, dict) else {}
            merged.update(deepcopy(values))
            self._items[key] = merged
            return deepcopy(merged)

    async def delete(self, key: str) -> bool:
        async with self._lock:
            if key in self._items:
                del self._items[key]
                return True
            return False

    async def keys(self) -> List[str]:
        async with self._lock:
            return list(self._items)

    def __len__(self) -> int:
        return len(self._items)


# Global context store used by the built-in capabilities
context_store = InMemoryContextStore()
