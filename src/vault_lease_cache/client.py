"""Public entry point: one object per Vault connection.

``VaultClient`` wires a transport, an event bus, a session manager and a
secret watcher together and exposes the small surface applications use::

    async with VaultClient("https://vault:8200") as vault:
        await vault.login("approle", {"role_id": ..., "secret_id": ...})
        vault.on("secret:db", reconnect_pool)
        await vault.watch([{"address": "db", "path": "database/creds/app"}])
        password = vault.secret("db.password")

Nothing here is a global: two clients never share sessions, caches or
subscribers.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Iterable, Mapping

from vault_lease_cache.auth.session import Session
from vault_lease_cache.auth.session_manager import (
    DEFAULT_RENEW_RATIO,
    SessionManager,
    SessionState,
)
from vault_lease_cache.backoff import RetryConfig
from vault_lease_cache.cache.watcher import SecretSpec, SecretWatcher
from vault_lease_cache.config import Settings
from vault_lease_cache.events import EventBus
from vault_lease_cache.scheduling import LoopScheduler, Scheduler
from vault_lease_cache.vault.transport import VaultTransport

logger = logging.getLogger(__name__)


class VaultClient:
    """Authenticated, self-renewing view of a set of Vault secrets."""

    def __init__(
        self,
        address: str | None = None,
        *,
        transport: Any = None,
        scheduler: Scheduler | None = None,
        retry: RetryConfig | None = None,
        renew_ratio: float = DEFAULT_RENEW_RATIO,
        timeout: float = 30,
        verify: bool | str = True,
        namespace: str | None = None,
    ) -> None:
        if transport is None:
            if not address:
                raise ValueError("Either a Vault address or a transport is required")
            transport = VaultTransport(address, timeout=timeout, verify=verify, namespace=namespace)
        self._transport = transport
        self._scheduler = scheduler or LoopScheduler()
        self.events = EventBus()
        self._session = SessionManager(
            transport, self.events, self._scheduler, retry=retry, renew_ratio=renew_ratio
        )
        self._watcher = SecretWatcher(
            self._session, self.events, self._scheduler, retry=retry, renew_ratio=renew_ratio
        )

    @classmethod
    def from_settings(cls, settings: Settings, **kwargs: Any) -> VaultClient:
        return cls(
            settings.vault_address,
            retry=settings.retry,
            renew_ratio=settings.renew_ratio,
            timeout=settings.timeout,
            verify=settings.verify,
            namespace=settings.namespace,
            **kwargs,
        )

    # -- session --------------------------------------------------------------

    async def login(
        self,
        backend: str,
        options: Mapping[str, Any],
        retry: RetryConfig | Mapping[str, Any] | None = None,
    ) -> Session:
        return await self._session.login(backend, options, retry=retry)

    def is_authenticated(self) -> bool:
        return self._session.is_authenticated()

    @property
    def session(self) -> Session | None:
        return self._session.session

    @property
    def session_state(self) -> SessionState:
        return self._session.state

    # -- secrets --------------------------------------------------------------

    async def watch(
        self,
        secrets: SecretSpec | Mapping[str, Any] | Iterable[SecretSpec | Mapping[str, Any]],
        retry: RetryConfig | Mapping[str, Any] | None = None,
    ) -> dict[str, Any]:
        return await self._watcher.watch(secrets, retry=retry)

    def secret(self, address: str | None = None) -> Any:
        return self._watcher.secret(address)

    def unwatch(self, address: str) -> None:
        self._watcher.unwatch(address)

    # -- events ---------------------------------------------------------------

    def on(self, topic: str, handler: Callable[[Any], None]) -> Callable[[], None]:
        """Subscribe to ``error``, ``error:login`` or ``secret:<address>``."""
        return self.events.subscribe(topic, handler)

    def off(self, topic: str, handler: Callable[[Any], None]) -> None:
        self.events.unsubscribe(topic, handler)

    # -- lifecycle ------------------------------------------------------------

    def close(self) -> None:
        """Stop scheduling renewals.  In-flight requests finish on their own."""
        self._watcher.close()
        self._session.close()
        logger.debug("Vault client closed")

    async def __aenter__(self) -> VaultClient:
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        self.close()
