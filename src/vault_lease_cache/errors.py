"""Error taxonomy shared by the session manager, watch engine and transport.

Every failure surfaced by this package is a ``VaultClientError``.  The
subclass tells the caller what to do about it:

  - ``ValidationError``       -- fix the input; retrying will not help.
  - ``AuthError``             -- credentials were rejected or the session is gone.
  - ``TransientNetworkError`` -- the server or network hiccupped; retried internally.
  - ``RequestError``          -- any other HTTP failure (404, 4xx).
  - ``FetchError``            -- a secret fetch failed terminally.
  - ``NotFound``              -- a cache address that was never written.

``status`` carries the HTTP status code when one applies.
"""

from __future__ import annotations


class VaultClientError(Exception):
    """Base class for all errors raised by ``vault_lease_cache``."""

    def __init__(self, message: str, status: int | None = None) -> None:
        super().__init__(message)
        self.status = status


class ValidationError(VaultClientError):
    """Raised for malformed login options, watch entries or configuration."""


class AuthError(VaultClientError):
    """Raised when Vault rejects credentials or no valid session exists."""


class TransientNetworkError(VaultClientError):
    """Raised for connection failures, timeouts, rate limiting and 5xx responses."""


class RequestError(VaultClientError):
    """Raised for non-retryable HTTP failures that are not auth related."""


class FetchError(VaultClientError):
    """Raised when fetching the secret for a watched address fails terminally."""

    def __init__(
        self,
        message: str,
        address: str,
        path: str,
        status: int | None = None,
    ) -> None:
        super().__init__(message, status=status)
        self.address = address
        self.path = path


class NotFound(VaultClientError, KeyError):
    """Raised when a cache address does not exist."""

    def __init__(self, address: str) -> None:
        super().__init__(f"No cached secret at address '{address}'")
        self.address = address

    def __str__(self) -> str:
        # KeyError quotes its message; keep the plain form.
        return self.args[0]
