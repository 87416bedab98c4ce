"""Authenticated Vault session.

A ``Session`` is created after a successful login and never mutated.  Renewal
and re-login produce a new session that replaces the old one wholesale, so a
reader holding a reference always sees a consistent token/lease pair.

Timestamps are scheduler-clock seconds (monotonic), not wall-clock time, so
expiry is unaffected by system clock adjustments.
"""

from __future__ import annotations

import dataclasses
from typing import Any, Mapping


@dataclasses.dataclass(frozen=True)
class Session:
    """Immutable snapshot of an authenticated Vault session.

    Attributes:
        token:            Vault client token sent as ``X-Vault-Token``.
        lease_duration:   Seconds the token is valid for; 0 means it never expires.
        renewable:        Whether the session may be refreshed by re-login on a timer.
        authenticated_at: Scheduler clock reading when the login response arrived.
        policies:         Vault policy names attached to the token.
        accessor:         Token accessor, safe to log.
    """

    token: str
    lease_duration: int
    renewable: bool
    authenticated_at: float
    policies: frozenset[str] = frozenset()
    accessor: str = ""

    @classmethod
    def from_auth(cls, auth: Mapping[str, Any], now: float) -> Session:
        """Build a session from the ``auth`` block of a Vault login response."""
        return cls(
            token=auth["client_token"],
            lease_duration=int(auth.get("lease_duration") or 0),
            renewable=bool(auth.get("renewable", False)),
            authenticated_at=now,
            policies=frozenset(auth.get("policies") or ()),
            accessor=auth.get("accessor") or "",
        )

    @property
    def expires_at(self) -> float | None:
        if self.lease_duration == 0:
            return None
        return self.authenticated_at + self.lease_duration

    def is_expired(self, now: float) -> bool:
        expires_at = self.expires_at
        return expires_at is not None and now >= expires_at

    def __str__(self) -> str:
        return (
            f"Session(accessor={self.accessor or '?'}, lease={self.lease_duration}s, "
            f"renewable={self.renewable})"
        )
