"""Shared fixtures for tests.

``ManualScheduler`` replaces the event-loop clock: timers only fire when a
test calls ``advance()``, which makes lease arithmetic deterministic.
``FakeTransport`` stands in for Vault with scripted responses per route.
"""

from __future__ import annotations

import asyncio
import copy
import itertools
from typing import Any, Callable

import pytest

from vault_lease_cache.backoff import RetryConfig
from vault_lease_cache.client import VaultClient
from vault_lease_cache.events import EventBus


class ManualTimer:
    def __init__(self, when: float, seq: int, callback: Callable[..., Any], args: tuple[Any, ...]) -> None:
        self.when = when
        self.seq = seq
        self.callback = callback
        self.args = args
        self._cancelled = False

    def cancel(self) -> None:
        self._cancelled = True

    def cancelled(self) -> bool:
        return self._cancelled


async def settle(rounds: int = 20) -> None:
    """Let ready tasks run until they block on something other than the loop."""
    for _ in range(rounds):
        await asyncio.sleep(0)


class ManualScheduler:
    """Simulated clock; ``advance()`` fires due timers in order."""

    def __init__(self) -> None:
        self.now = 0.0
        self._timers: list[ManualTimer] = []
        self._seq = itertools.count()

    def time(self) -> float:
        return self.now

    def call_later(self, delay: float, callback: Callable[..., Any], *args: Any) -> ManualTimer:
        timer = ManualTimer(self.now + delay, next(self._seq), callback, args)
        self._timers.append(timer)
        return timer

    async def sleep(self, delay: float) -> None:
        future = asyncio.get_running_loop().create_future()

        def wake() -> None:
            if not future.done():
                future.set_result(None)

        self.call_later(delay, wake)
        await future

    @property
    def pending(self) -> list[ManualTimer]:
        return [t for t in self._timers if not t.cancelled()]

    async def advance(self, seconds: float) -> None:
        target = self.now + seconds
        while True:
            await settle()
            due = [t for t in self.pending if t.when <= target]
            if not due:
                break
            timer = min(due, key=lambda t: (t.when, t.seq))
            self._timers.remove(timer)
            self.now = max(self.now, timer.when)
            timer.callback(*timer.args)
        self._timers = self.pending
        self.now = target


class FakeTransport:
    """Scripted Vault stand-in.

    Each route holds a list of outcomes consumed in order; the last one
    repeats.  An outcome is a response dict or an exception to raise.
    """

    def __init__(self) -> None:
        self.token: str | None = None
        self.calls: list[tuple[str, str, Any, str | None]] = []
        self.gates: dict[str, asyncio.Event] = {}
        self._routes: dict[tuple[str, str], list[Any]] = {}

    def add(self, method: str, path: str, *outcomes: Any) -> None:
        self._routes[(method, path)] = list(outcomes)

    def count(self, method: str, path: str) -> int:
        return sum(1 for m, p, _, _ in self.calls if (m, p) == (method, path))

    async def request(self, method: str, path: str, body: Any = None) -> dict[str, Any]:
        self.calls.append((method, path, body, self.token))
        gate = self.gates.get(path)
        if gate is not None:
            await gate.wait()
        outcomes = self._routes.get((method, path))
        if not outcomes:
            raise AssertionError(f"Unexpected request: {method} {path}")
        outcome = outcomes.pop(0) if len(outcomes) > 1 else outcomes[0]
        if isinstance(outcome, BaseException):
            raise outcome
        return copy.deepcopy(outcome)


def login_response(
    token: str = "s.token-1",
    lease_duration: int = 3600,
    renewable: bool = True,
) -> dict[str, Any]:
    return {
        "auth": {
            "client_token": token,
            "accessor": f"acc-{token}",
            "policies": ["default", "app"],
            "lease_duration": lease_duration,
            "renewable": renewable,
        }
    }


def secret_response(data: Any, lease_duration: int = 0, renewable: bool = False) -> dict[str, Any]:
    return {"data": data, "lease_duration": lease_duration, "renewable": renewable}


APPROLE_OPTIONS = {"role_id": "role-123", "secret_id": "secret-456"}
APPROLE_LOGIN = ("POST", "auth/approle/login")


@pytest.fixture
def scheduler() -> ManualScheduler:
    return ManualScheduler()


@pytest.fixture
def transport() -> FakeTransport:
    fake = FakeTransport()
    fake.add(*APPROLE_LOGIN, login_response())
    return fake


@pytest.fixture
def events() -> EventBus:
    return EventBus()


@pytest.fixture
def retry() -> RetryConfig:
    return RetryConfig(max_attempts=3, initial_delay=1.0, multiplier=2.0, max_delay=10.0)


@pytest.fixture
def client(transport: FakeTransport, scheduler: ManualScheduler, retry: RetryConfig) -> VaultClient:
    return VaultClient(transport=transport, scheduler=scheduler, retry=retry)


@pytest.fixture
def recorder() -> Callable[..., list[Any]]:
    """Subscribe a list-appending handler to *topic* on *bus* and return the list."""

    def subscribe(bus: EventBus, topic: str) -> list[Any]:
        received: list[Any] = []
        bus.subscribe(topic, received.append)
        return received

    return subscribe
