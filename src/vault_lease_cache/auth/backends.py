"""Vault auth backends: option validation and the login call.

Each backend turns a loosely typed options mapping (straight from YAML or a
caller's dict) into a validated credentials object *before* any network
call, then performs the backend-specific login request and returns the
``auth`` block of Vault's response.  Unknown option keys are ignored so a
shared settings file can carry extra fields.

HTTP status handling (400 -> 401 re-labelling, retries) is the session
manager's job, not the backend's.
"""

from __future__ import annotations

import dataclasses
from typing import Any, Mapping, Protocol

from vault_lease_cache.errors import AuthError, ValidationError


class Transport(Protocol):
    token: str | None

    async def request(
        self, method: str, path: str, body: Mapping[str, Any] | None = None
    ) -> dict[str, Any]: ...


def _require_str(options: Mapping[str, Any], key: str, backend: str) -> str:
    value = options.get(key)
    if value is None:
        raise ValidationError(f"{backend}: '{key}' is required")
    if not isinstance(value, str):
        raise ValidationError(f"{backend}: '{key}' must be a string, got {type(value).__name__}")
    if not value:
        raise ValidationError(f"{backend}: '{key}' must not be empty")
    return value


def _mount_point(options: Mapping[str, Any], default: str, backend: str) -> str:
    if options.get("mount_point") is None:
        return default
    return _require_str(options, "mount_point", backend).strip("/")


def _auth_block(response: Mapping[str, Any], backend: str) -> dict[str, Any]:
    auth = response.get("auth") if isinstance(response, Mapping) else None
    if not auth or "client_token" not in auth:
        raise AuthError(f"{backend} login response did not contain a client token")
    return dict(auth)


@dataclasses.dataclass(frozen=True)
class AppRoleCredentials:
    role_id: str
    secret_id: str
    mount_point: str = "approle"


@dataclasses.dataclass(frozen=True)
class PasswordCredentials:
    username: str
    password: str
    mount_point: str

    def __repr__(self) -> str:
        return f"PasswordCredentials(username={self.username!r}, mount_point={self.mount_point!r})"


@dataclasses.dataclass(frozen=True)
class TokenCredentials:
    token: str

    def __repr__(self) -> str:
        return "TokenCredentials(token=***)"


class AppRoleBackend:
    name = "approle"

    def validate(self, options: Mapping[str, Any]) -> AppRoleCredentials:
        return AppRoleCredentials(
            role_id=_require_str(options, "role_id", self.name),
            secret_id=_require_str(options, "secret_id", self.name),
            mount_point=_mount_point(options, "approle", self.name),
        )

    async def authenticate(self, transport: Transport, creds: AppRoleCredentials) -> dict[str, Any]:
        response = await transport.request(
            "POST",
            f"auth/{creds.mount_point}/login",
            {"role_id": creds.role_id, "secret_id": creds.secret_id},
        )
        return _auth_block(response, self.name)


class _PasswordBackend:
    """Shared shape of the username/password backends (userpass, ldap)."""

    name = ""

    def validate(self, options: Mapping[str, Any]) -> PasswordCredentials:
        return PasswordCredentials(
            username=_require_str(options, "username", self.name),
            password=_require_str(options, "password", self.name),
            mount_point=_mount_point(options, self.name, self.name),
        )

    async def authenticate(self, transport: Transport, creds: PasswordCredentials) -> dict[str, Any]:
        response = await transport.request(
            "POST",
            f"auth/{creds.mount_point}/login/{creds.username}",
            {"password": creds.password},
        )
        return _auth_block(response, self.name)


class UserpassBackend(_PasswordBackend):
    name = "userpass"


class LdapBackend(_PasswordBackend):
    name = "ldap"


class TokenBackend:
    """Adopt an existing token, verified with ``auth/token/lookup-self``."""

    name = "token"

    def validate(self, options: Mapping[str, Any]) -> TokenCredentials:
        return TokenCredentials(token=_require_str(options, "token", self.name))

    async def authenticate(self, transport: Transport, creds: TokenCredentials) -> dict[str, Any]:
        transport.token = creds.token
        response = await transport.request("GET", "auth/token/lookup-self")
        data = response.get("data") or {}
        # lookup-self reports the remaining ttl; present it like a login response.
        return {
            "client_token": creds.token,
            "lease_duration": data.get("ttl", 0),
            "renewable": data.get("renewable", False),
            "policies": data.get("policies") or [],
            "accessor": data.get("accessor", ""),
        }


BACKENDS: dict[str, Any] = {
    backend.name: backend
    for backend in (AppRoleBackend(), UserpassBackend(), LdapBackend(), TokenBackend())
}


def get_backend(name: str) -> Any:
    """Return the backend registered as *name*.

    Raises ``ValidationError`` for unknown backends.
    """
    if not isinstance(name, str) or name not in BACKENDS:
        raise ValidationError(
            f"Unsupported auth backend: {name!r} (expected one of {sorted(BACKENDS)})"
        )
    return BACKENDS[name]
