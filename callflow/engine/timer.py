"""
Timer Service.

Suspends workflow progress without blocking the event loop and provides the
monotonic clock that run deadlines are measured against.
"""

from datetime import datetime
import asyncio
import time


class Timer:
    """
    Default timer backed by `time.monotonic` and `asyncio.sleep`.

    Sleeping yields the event loop, so a waiting run never blocks other runs
    sharing the executor. Replace it with a virtual clock in tests.
    """

    def monotonic(self) -> float:
        """Seconds on a monotonic clock; only differences are meaningful."""
        return time.monotonic()

    def now(self) -> datetime:
        """Wall-clock time used for timestamps."""
        return datetime.now()

    async def sleep(self, seconds: float) -> None:
        """Suspend the calling run for the given number of seconds."""
        await asyncio.sleep(max(seconds, 0))


default_timer = Timer()
