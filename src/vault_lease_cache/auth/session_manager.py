"""Owns the Vault session and keeps it valid.

Pattern: Proactive Renewal
---------------------------
After every successful login the manager schedules a single renewal timer at
a fraction of the token lease (``renew_ratio``, 0.8 by default), so the
session is replaced before it expires and authenticated calls never race an
expired token.  Renewal re-runs the original login with the stored backend
and credentials; it is not a ``renew-self`` call.

The manager is the only writer of the session token.  At most one renewal
timer exists per manager: any existing handle is cancelled before a new one
is scheduled.  When renewal exhausts its retries the session is dropped and
every authenticated request fails fast with ``AuthError`` until the caller
logs in again.

State machine::

    UNAUTHENTICATED -> AUTHENTICATING -> AUTHENTICATED
    AUTHENTICATED   -> RENEWING -> AUTHENTICATED | UNAUTHENTICATED
"""

from __future__ import annotations

import asyncio
import enum
import logging
from typing import Any, Mapping

from vault_lease_cache.auth.backends import Transport, get_backend
from vault_lease_cache.auth.session import Session
from vault_lease_cache.backoff import EXHAUSTED, RetryConfig, next_delay
from vault_lease_cache.errors import (
    AuthError,
    TransientNetworkError,
    ValidationError,
    VaultClientError,
)
from vault_lease_cache.events import TOPIC_LOGIN_ERROR, EventBus
from vault_lease_cache.scheduling import Scheduler, TimerHandle

logger = logging.getLogger(__name__)

DEFAULT_RENEW_RATIO = 0.8


class SessionState(enum.Enum):
    UNAUTHENTICATED = "unauthenticated"
    AUTHENTICATING = "authenticating"
    AUTHENTICATED = "authenticated"
    RENEWING = "renewing"


class SessionManager:
    """Logs in through an auth backend and renews the session on a timer."""

    def __init__(
        self,
        transport: Transport,
        events: EventBus,
        scheduler: Scheduler,
        retry: RetryConfig | None = None,
        renew_ratio: float = DEFAULT_RENEW_RATIO,
    ) -> None:
        if not 0 < renew_ratio < 1:
            raise ValueError(f"renew_ratio must be between 0 and 1, got {renew_ratio}")
        self._transport = transport
        self._events = events
        self._scheduler = scheduler
        self._default_retry = retry or RetryConfig()
        self._renew_ratio = renew_ratio

        self._session: Session | None = None
        self._state = SessionState.UNAUTHENTICATED
        self._renewal_timer: TimerHandle | None = None
        self._renewal_task: asyncio.Task[Any] | None = None
        self._closed = False

        # Remembered for timer-driven renewal.
        self._backend: Any = None
        self._credentials: Any = None
        self._retry = self._default_retry

    # -- public API -----------------------------------------------------------

    @property
    def session(self) -> Session | None:
        return self._session

    @property
    def state(self) -> SessionState:
        return self._state

    def is_authenticated(self) -> bool:
        session = self._session
        return session is not None and not session.is_expired(self._scheduler.time())

    async def login(
        self,
        backend: str,
        options: Mapping[str, Any],
        retry: RetryConfig | Mapping[str, Any] | None = None,
    ) -> Session:
        """Authenticate with *backend* and return the new session.

        Raises ``ValidationError`` for bad options (no network call is made)
        and ``AuthError`` when Vault rejects the credentials or retries run out.
        """
        auth_backend = get_backend(backend)
        if not isinstance(options, Mapping):
            raise ValidationError(f"Login options must be a mapping, got {type(options).__name__}")
        credentials = auth_backend.validate(options)
        retry_config = self._resolve_retry(retry)

        self._closed = False
        self._state = SessionState.AUTHENTICATING
        try:
            session = await self._authenticate(auth_backend, credentials, retry_config)
        except AuthError:
            self._state = (
                SessionState.AUTHENTICATED if self.is_authenticated() else SessionState.UNAUTHENTICATED
            )
            raise

        self._backend = auth_backend
        self._credentials = credentials
        self._retry = retry_config
        self._install(session)
        logger.info("Logged in via %s: %s", auth_backend.name, session)
        return session

    async def request(
        self,
        method: str,
        path: str,
        body: Mapping[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Issue an authenticated request; fail fast without a live session."""
        if not self.is_authenticated():
            raise AuthError(
                f"Not authenticated: cannot {method} {path} (log in first)",
                status=401,
            )
        return await self._transport.request(method, path, body)

    async def renew(self) -> Session | None:
        """Replace the session by logging in again with the stored credentials.

        Returns the new session, or ``None`` when renewal failed and the
        manager dropped to ``UNAUTHENTICATED``.
        """
        if self._backend is None:
            raise AuthError("Cannot renew: no previous login")

        self._state = SessionState.RENEWING
        try:
            session = await self._authenticate(self._backend, self._credentials, self._retry)
        except AuthError as exc:
            logger.error("Session renewal failed, session dropped: %s", exc)
            self._clear()
            return None

        self._install(session)
        logger.info("Session renewed: %s", session)
        return session

    def close(self) -> None:
        """Stop renewing.  An in-flight renewal drains but schedules nothing.

        A later ``login()`` re-enables renewal.
        """
        self._closed = True
        self._cancel_timer()

    # -- private helpers ------------------------------------------------------

    def _resolve_retry(self, retry: RetryConfig | Mapping[str, Any] | None) -> RetryConfig:
        if retry is None:
            return self._default_retry
        if isinstance(retry, RetryConfig):
            return retry
        return self._default_retry.merged(retry)

    async def _authenticate(self, backend: Any, credentials: Any, retry: RetryConfig) -> Session:
        attempt = 0
        while True:
            try:
                auth = await backend.authenticate(self._transport, credentials)
                return Session.from_auth(auth, now=self._scheduler.time())
            except VaultClientError as exc:
                # Token backend may have swapped the transport token.
                self._transport.token = self._session.token if self._session else None
                error = self._classify(exc)
                if not isinstance(error, TransientNetworkError):
                    self._events.emit(TOPIC_LOGIN_ERROR, error)
                    if error is exc:
                        raise
                    raise error from exc

                attempt += 1
                delay = next_delay(attempt, retry)
                if delay is EXHAUSTED:
                    final = AuthError(
                        f"{backend.name} login failed after {attempt} attempt(s): {exc}",
                        status=exc.status,
                    )
                    self._events.emit(TOPIC_LOGIN_ERROR, final)
                    raise final from exc

                logger.warning(
                    "%s login attempt %d failed (%s); retrying in %.1fs",
                    backend.name, attempt, exc, delay,
                )
                await self._scheduler.sleep(delay)

    @staticmethod
    def _classify(exc: VaultClientError) -> VaultClientError:
        """Re-label login failures: a malformed credential pair is an auth failure."""
        if isinstance(exc, (AuthError, TransientNetworkError)):
            return exc
        if exc.status == 400:
            return AuthError(f"Invalid credentials: {exc}", status=401)
        return AuthError(f"Login failed: {exc}", status=exc.status)

    def _install(self, session: Session) -> None:
        self._cancel_timer()
        self._session = session
        self._transport.token = session.token
        self._state = SessionState.AUTHENTICATED

        if self._closed:
            logger.debug("Manager closed; session renewal not scheduled")
        elif session.lease_duration > 0 and session.renewable:
            delay = session.lease_duration * self._renew_ratio
            self._renewal_timer = self._scheduler.call_later(delay, self._on_renewal_due)
            logger.debug(
                "Session renewal scheduled in %.1fs (lease %ds)", delay, session.lease_duration
            )

    def _on_renewal_due(self) -> None:
        self._renewal_timer = None
        if self._closed:
            return
        in_flight = self._renewal_task is not None and not self._renewal_task.done()
        if in_flight or self._state is SessionState.AUTHENTICATING:
            logger.debug("Session renewal already in flight; skipping timer")
            return
        self._renewal_task = asyncio.ensure_future(self.renew())

    def _cancel_timer(self) -> None:
        if self._renewal_timer is not None:
            self._renewal_timer.cancel()
            self._renewal_timer = None

    def _clear(self) -> None:
        self._cancel_timer()
        self._session = None
        self._transport.token = None
        self._state = SessionState.UNAUTHENTICATED
