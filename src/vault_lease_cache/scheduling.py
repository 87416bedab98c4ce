"""Timer and clock abstraction used for renewals and backoff sleeps.

Everything time-related in the session manager and watch engine goes through
a ``Scheduler`` so that lease arithmetic and timer firing can be driven by a
simulated clock in tests.  ``LoopScheduler`` is the production
implementation on top of the running asyncio loop.
"""

from __future__ import annotations

import asyncio
import time
from typing import Any, Callable, Protocol


class TimerHandle(Protocol):
    def cancel(self) -> None: ...

    def cancelled(self) -> bool: ...


class Scheduler(Protocol):
    """What the renewal engine needs from a clock."""

    def time(self) -> float:
        """Monotonic seconds."""
        ...

    def call_later(self, delay: float, callback: Callable[..., Any], *args: Any) -> TimerHandle:
        ...

    async def sleep(self, delay: float) -> None:
        ...


class LoopScheduler:
    """Scheduler backed by the running asyncio event loop."""

    def time(self) -> float:
        return time.monotonic()

    def call_later(self, delay: float, callback: Callable[..., Any], *args: Any) -> TimerHandle:
        return asyncio.get_running_loop().call_later(max(delay, 0.0), callback, *args)

    async def sleep(self, delay: float) -> None:
        await asyncio.sleep(delay)
