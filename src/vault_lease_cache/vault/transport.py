"""HTTP transport to the Vault API, built on hvac's JSON adapter.

The transport is deliberately thin: it prefixes ``/v1/``, lets hvac attach
the current token as ``X-Vault-Token``, runs the blocking request in a
worker thread, and translates hvac/requests exceptions into this package's
error taxonomy so callers can decide what is retryable.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Mapping

import hvac
import hvac.exceptions
import requests

from vault_lease_cache.errors import (
    AuthError,
    RequestError,
    TransientNetworkError,
    VaultClientError,
)

logger = logging.getLogger(__name__)

# hvac raises one exception class per status code family.
_STATUS_BY_EXCEPTION: list[tuple[type[hvac.exceptions.VaultError], int]] = [
    (hvac.exceptions.InvalidRequest, 400),
    (hvac.exceptions.Unauthorized, 401),
    (hvac.exceptions.Forbidden, 403),
    (hvac.exceptions.InvalidPath, 404),
    (hvac.exceptions.PreconditionFailed, 412),
    (hvac.exceptions.RateLimitExceeded, 429),
    (hvac.exceptions.InternalServerError, 500),
    (hvac.exceptions.VaultNotInitialized, 501),
    (hvac.exceptions.BadGateway, 502),
    (hvac.exceptions.VaultDown, 503),
]


def status_of(exc: hvac.exceptions.VaultError) -> int | None:
    for exc_type, status in _STATUS_BY_EXCEPTION:
        if isinstance(exc, exc_type):
            return status
    return None


def translate_error(exc: Exception, method: str, path: str) -> VaultClientError:
    """Map an hvac or requests exception onto the package error taxonomy."""
    where = f"{method} {path}"
    if isinstance(exc, hvac.exceptions.VaultError):
        status = status_of(exc)
        message = f"Vault {where} failed ({status or 'unknown status'}): {exc}"
        if status in (401, 403):
            return AuthError(message, status=status)
        if status is not None and (status == 429 or status >= 500):
            return TransientNetworkError(message, status=status)
        return RequestError(message, status=status)
    if isinstance(exc, (requests.exceptions.ConnectionError, requests.exceptions.Timeout)):
        return TransientNetworkError(f"Vault {where} unreachable: {exc}")
    return RequestError(f"Vault {where} failed: {exc}")


class VaultTransport:
    """Issues Vault API requests and carries the current session token."""

    def __init__(
        self,
        address: str,
        timeout: float = 30,
        verify: bool | str = True,
        namespace: str | None = None,
    ) -> None:
        self._address = address
        self._client = hvac.Client(
            url=address,
            timeout=timeout,
            verify=verify,
            namespace=namespace,
        )
        # hvac.Client falls back to VAULT_TOKEN; the session manager owns the token.
        self._client.token = None

    @property
    def address(self) -> str:
        return self._address

    @property
    def token(self) -> str | None:
        return self._client.token

    @token.setter
    def token(self, value: str | None) -> None:
        self._client.token = value

    async def request(
        self,
        method: str,
        path: str,
        body: Mapping[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Issue *method* against ``/v1/<path>`` and return the decoded JSON body.

        Responses without a JSON body (204) come back as ``{}``.
        """
        url = f"/v1/{path.lstrip('/')}"
        kwargs: dict[str, Any] = {}
        if body is not None:
            kwargs["json"] = dict(body)

        logger.debug("Vault request: %s %s", method, url)
        try:
            response = await asyncio.to_thread(
                self._client.adapter.request, method.lower(), url, **kwargs
            )
        except (hvac.exceptions.VaultError, requests.exceptions.RequestException) as exc:
            raise translate_error(exc, method, path) from exc

        if isinstance(response, dict):
            return response
        return {}
