import asyncio
import inspect
import time
from typing import Awaitable, TypeVar

from loguru import logger

from tradeflow.backend.core.errors import StepTimeoutError

"""
Deadline helper for pipeline steps.

Each suspension point (resolver call, broker validate/execute, journal write)
runs under its own Deadline. When the deadline fires, the in-flight call is
cancelled and a StepTimeoutError carrying the step name is raised, so a
timeout reads as an ordinary error in results but stays identifiable in logs.
"""

T = TypeVar("T")


class Deadline:
    """A per-step time budget measured on the monotonic clock."""

    def __init__(self, step: str, timeout_ms: float):
        self.step = step
        self.timeout_ms = float(timeout_ms)
        self._started = time.monotonic()

    def remaining_ms(self) -> float:
        elapsed = (time.monotonic() - self._started) * 1000.0
        return max(0.0, self.timeout_ms - elapsed)

    @property
    def expired(self) -> bool:
        return self.remaining_ms() <= 0.0

    async def run(self, awaitable: Awaitable[T]) -> T:
        """Await `awaitable`, cancelling it if the budget runs out."""
        remaining = self.remaining_ms()
        if remaining <= 0.0:
            if inspect.iscoroutine(awaitable):
                awaitable.close()
            logger.warning(f"Deadline for '{self.step}' already expired before the call started")
            raise StepTimeoutError(self.step, self.timeout_ms)

        try:
            return await asyncio.wait_for(awaitable, timeout=remaining / 1000.0)
        except asyncio.TimeoutError:
            logger.warning(f"Step '{self.step}' timed out after {self.timeout_ms:.0f}ms; stale call cancelled")
            raise StepTimeoutError(self.step, self.timeout_ms) from None


async def run_with_timeout(step: str, awaitable: Awaitable[T], timeout_ms: float) -> T:
    """Shorthand for a fresh Deadline around a single call."""
    return await Deadline(step, timeout_ms).run(awaitable)
