"""Lease-aware secret cache.

Pattern: Per-Address Single Flight
------------------------------------
Each watched address owns a ``WatchEntry`` holding its renewal timer and the
task for the fetch currently in flight, if any.  That task *is* the
serialization point: a second ``watch()`` for the same address awaits it
instead of issuing another request, and a renewal timer that fires while it
is running does nothing.  There is no global lock; different addresses make
progress independently.

Lifecycle of one address::

    watch() -> fetch -> store + emit secret:<address> -> timer(lease * ratio)
    timer   -> fetch -> store + emit ...               -> timer ...

A fetch that fails with a transient error sleeps for the backoff delay and
tries again inside the same task.  When retries run out, ``error`` is
emitted once and the task fails; the cached value from the last success is
left untouched and no further timer is scheduled.
"""

from __future__ import annotations

import asyncio
import dataclasses
import logging
from typing import Any, Iterable, Mapping, Protocol

from vault_lease_cache.backoff import EXHAUSTED, RetryConfig, next_delay
from vault_lease_cache.cache import tree
from vault_lease_cache.errors import (
    FetchError,
    RequestError,
    TransientNetworkError,
    ValidationError,
    VaultClientError,
)
from vault_lease_cache.events import TOPIC_ERROR, EventBus, secret_topic
from vault_lease_cache.scheduling import Scheduler, TimerHandle

logger = logging.getLogger(__name__)


class AuthenticatedRequester(Protocol):
    async def request(
        self, method: str, path: str, body: Mapping[str, Any] | None = None
    ) -> dict[str, Any]: ...


@dataclasses.dataclass(frozen=True)
class SecretSpec:
    """Where to fetch a secret from and where to put it in the cache."""

    address: str
    path: str

    @classmethod
    def coerce(cls, item: SecretSpec | Mapping[str, Any]) -> SecretSpec:
        if isinstance(item, SecretSpec):
            spec = item
        elif isinstance(item, Mapping):
            missing = [key for key in ("address", "path") if key not in item]
            if missing:
                raise ValidationError(f"Watch entry {dict(item)!r} is missing {missing}")
            spec = cls(address=item["address"], path=item["path"])
        else:
            raise ValidationError(
                f"Watch entry must be a mapping with 'address' and 'path', got {item!r}"
            )
        tree.split_address(spec.address)
        if not isinstance(spec.path, str) or not spec.path.strip("/"):
            raise ValidationError(f"Watch entry for '{spec.address}' has an invalid path: {spec.path!r}")
        return spec


def normalize_specs(
    secrets: SecretSpec | Mapping[str, Any] | Iterable[SecretSpec | Mapping[str, Any]],
) -> list[SecretSpec]:
    """Accept one entry or a list of entries and return validated specs."""
    if isinstance(secrets, (SecretSpec, Mapping)):
        items: list[Any] = [secrets]
    elif isinstance(secrets, (str, bytes)) or not isinstance(secrets, Iterable):
        raise ValidationError(f"Expected a watch entry or a list of them, got {secrets!r}")
    else:
        items = list(secrets)

    specs = [SecretSpec.coerce(item) for item in items]
    seen: dict[str, str] = {}
    for spec in specs:
        if seen.setdefault(spec.address, spec.path) != spec.path:
            raise ValidationError(
                f"Address '{spec.address}' is listed with two paths: "
                f"'{seen[spec.address]}' and '{spec.path}'"
            )
    return specs


@dataclasses.dataclass(eq=False)
class WatchEntry:
    """Renewal state for one watched address."""

    address: str
    path: str
    retry: RetryConfig
    lease_duration: int = 0
    renewable: bool = False
    attempts: int = 0
    fetched: bool = False
    active: bool = True
    timer: TimerHandle | None = None
    inflight: asyncio.Task[Any] | None = None

    @property
    def in_flight(self) -> bool:
        return self.inflight is not None and not self.inflight.done()

    def cancel_timer(self) -> None:
        if self.timer is not None:
            self.timer.cancel()
            self.timer = None


def _lapsed(entry: WatchEntry) -> bool:
    """True when a leased entry is live but no renewal is pending or running."""
    return entry.active and entry.lease_duration > 0 and entry.timer is None


def _consume_result(task: asyncio.Task[Any]) -> None:
    # Renewal tasks have no awaiter; failures were already logged and emitted.
    if not task.cancelled():
        task.exception()


class SecretWatcher:
    """Fetches secrets into a nested cache and keeps them fresh."""

    def __init__(
        self,
        session: AuthenticatedRequester,
        events: EventBus,
        scheduler: Scheduler,
        retry: RetryConfig | None = None,
        renew_ratio: float = 0.8,
    ) -> None:
        if not 0 < renew_ratio <= 1:
            raise ValueError(f"renew_ratio must be in (0, 1], got {renew_ratio}")
        self._session = session
        self._events = events
        self._scheduler = scheduler
        self._default_retry = retry or RetryConfig()
        self._renew_ratio = renew_ratio
        self._tree: dict[str, Any] = {}
        self._entries: dict[str, WatchEntry] = {}

    # -- public API -----------------------------------------------------------

    @property
    def entries(self) -> dict[str, WatchEntry]:
        return dict(self._entries)

    async def watch(
        self,
        secrets: SecretSpec | Mapping[str, Any] | Iterable[SecretSpec | Mapping[str, Any]],
        retry: RetryConfig | Mapping[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Start watching *secrets* and wait for their initial fetch.

        Returns ``{address: value}`` for every entry of this call.  If any
        initial fetch failed, the first failure (in argument order) is raised
        once all entries have settled.
        """
        specs = normalize_specs(secrets)
        for spec in specs:
            existing = self._entries.get(spec.address)
            if existing is not None and existing.path != spec.path:
                raise ValidationError(
                    f"Address '{spec.address}' is already watched with path '{existing.path}'"
                )

        retry_config = self._resolve_retry(retry)
        waiters = []
        for spec in specs:
            task = self._initial_fetch(spec, retry_config)
            if task is not None:
                waiters.append(asyncio.shield(task))

        results = await asyncio.gather(*waiters, return_exceptions=True)
        for result in results:
            if isinstance(result, BaseException):
                raise result
        return {spec.address: self.secret(spec.address) for spec in specs}

    def secret(self, address: str | None = None) -> Any:
        """Return a private copy of the cached value at *address* (or everything).

        Raises ``NotFound`` when nothing was ever stored at *address*.
        """
        return tree.snapshot(self._tree, address)

    def unwatch(self, address: str) -> None:
        """Stop renewing *address*.  Its last cached value stays readable."""
        entry = self._entries.pop(address, None)
        if entry is None:
            return
        entry.active = False
        entry.cancel_timer()
        logger.info("Stopped watching '%s'", address)

    def close(self) -> None:
        """Cancel every renewal timer.  Fetches already in flight run to completion."""
        for entry in self._entries.values():
            entry.active = False
            entry.cancel_timer()

    # -- fetch engine ---------------------------------------------------------

    def _resolve_retry(self, retry: RetryConfig | Mapping[str, Any] | None) -> RetryConfig:
        if retry is None:
            return self._default_retry
        if isinstance(retry, RetryConfig):
            return retry
        return self._default_retry.merged(retry)

    def _initial_fetch(self, spec: SecretSpec, retry: RetryConfig) -> asyncio.Task[Any] | None:
        """Return the task the caller should wait on, or ``None`` if already cached."""
        entry = self._entries.get(spec.address)
        if entry is None:
            entry = WatchEntry(address=spec.address, path=spec.path, retry=retry)
            self._entries[spec.address] = entry
            logger.info("Watching '%s' from %s", spec.address, spec.path)
        elif entry.in_flight:
            logger.debug("Fetch for '%s' already in flight; attaching", spec.address)
            return entry.inflight
        elif entry.fetched and not _lapsed(entry):
            return None
        else:
            # Never fetched, or its lease renewal gave up: start over.
            logger.info("Restarting fetch for '%s'", spec.address)
            entry.retry = retry
        return self._start(entry, initial=True)

    def _start(self, entry: WatchEntry, initial: bool) -> asyncio.Task[Any]:
        task = asyncio.ensure_future(self._fetch(entry, initial))
        task.add_done_callback(_consume_result)
        entry.inflight = task
        return task

    def _on_renewal_due(self, entry: WatchEntry) -> None:
        entry.timer = None
        if not entry.active:
            return
        if entry.in_flight:
            logger.debug("Renewal for '%s' skipped: fetch in flight", entry.address)
            return
        logger.debug("Renewing '%s'", entry.address)
        self._start(entry, initial=False)

    async def _fetch(self, entry: WatchEntry, initial: bool) -> Any:
        entry.attempts = 0
        while True:
            try:
                response = await self._session.request("GET", entry.path)
                data = response.get("data")
                if data is None:
                    raise RequestError(f"Response for {entry.path} has no 'data' field")
                if entry.address == tree.ROOT and not isinstance(data, dict):
                    raise RequestError(
                        f"Response for {entry.path} must be a mapping to merge at the root"
                    )
            except VaultClientError as exc:
                entry.attempts += 1
                delay = next_delay(entry.attempts, entry.retry)
                if not isinstance(exc, TransientNetworkError) or delay is EXHAUSTED:
                    raise self._fail(entry, exc, initial) from exc
                logger.warning(
                    "Fetch of '%s' (attempt %d) failed: %s; retrying in %.1fs",
                    entry.address, entry.attempts, exc, delay,
                )
                await self._scheduler.sleep(delay)
                continue
            return self._store(entry, response, data)

    def _store(self, entry: WatchEntry, response: Mapping[str, Any], data: Any) -> Any:
        tree.set_at(self._tree, entry.address, data)
        entry.lease_duration = int(response.get("lease_duration") or 0)
        entry.renewable = bool(response.get("renewable", False))
        entry.attempts = 0
        entry.fetched = True

        entry.cancel_timer()
        if entry.active and entry.lease_duration > 0:
            delay = entry.lease_duration * self._renew_ratio
            entry.timer = self._scheduler.call_later(delay, self._on_renewal_due, entry)
            logger.info(
                "Fetched '%s' (lease %ds); renewal in %.1fs",
                entry.address, entry.lease_duration, delay,
            )
        else:
            logger.info("Fetched '%s' (no lease, not renewed)", entry.address)

        value = self.secret(entry.address)
        self._events.emit(secret_topic(entry.address), value)
        return value

    def _fail(self, entry: WatchEntry, exc: VaultClientError, initial: bool) -> FetchError:
        attempts = entry.attempts
        entry.attempts = 0
        error = FetchError(
            f"Fetching '{entry.address}' from {entry.path} failed after "
            f"{attempts} attempt(s): {exc}",
            address=entry.address,
            path=entry.path,
            status=exc.status,
        )
        error.__cause__ = exc
        if initial:
            logger.error("%s", error)
        else:
            logger.error("%s; keeping previously cached value", error)
        self._events.emit(TOPIC_ERROR, error)
        return error
