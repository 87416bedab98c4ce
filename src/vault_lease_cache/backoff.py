"""Bounded exponential backoff shared by login and secret-fetch retries.

The policy is a pure function: given how many attempts have already failed
and a ``RetryConfig``, it returns the delay before the next attempt, or the
``EXHAUSTED`` sentinel once the attempt budget is spent.  Callers own the
sleeping and the error reporting.
"""

from __future__ import annotations

import dataclasses
import enum
from typing import Any, Mapping

from vault_lease_cache.errors import ValidationError


class _Exhausted(enum.Enum):
    EXHAUSTED = "exhausted"

    def __repr__(self) -> str:
        return "EXHAUSTED"


EXHAUSTED = _Exhausted.EXHAUSTED


@dataclasses.dataclass(frozen=True)
class RetryConfig:
    """Backoff parameters.

    Attributes:
        max_attempts:  Total attempts allowed, including the first one.
        initial_delay: Delay in seconds after the first failure.
        multiplier:    Growth factor applied per further failure.
        max_delay:     Upper bound on any single delay.
        forever:       Ignore ``max_attempts`` and retry indefinitely.
    """

    max_attempts: int = 5
    initial_delay: float = 1.0
    multiplier: float = 2.0
    max_delay: float = 60.0
    forever: bool = False

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValidationError(f"max_attempts must be >= 1, got {self.max_attempts}")
        if self.initial_delay < 0 or self.max_delay < 0:
            raise ValidationError("Retry delays must not be negative")
        if self.multiplier < 1:
            raise ValidationError(f"multiplier must be >= 1, got {self.multiplier}")

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any] | None) -> RetryConfig:
        """Build a config from a settings block, keeping defaults for omitted keys."""
        if not data:
            return cls()
        known = {f.name for f in dataclasses.fields(cls)}
        unknown = set(data) - known
        if unknown:
            raise ValidationError(f"Unknown retry option(s): {sorted(unknown)}")
        try:
            return cls(**data)
        except TypeError as exc:
            raise ValidationError(f"Invalid retry configuration: {exc}") from exc

    def merged(self, overrides: Mapping[str, Any] | None) -> RetryConfig:
        if not overrides:
            return self
        return RetryConfig.from_mapping({**dataclasses.asdict(self), **overrides})


def next_delay(attempt: int, config: RetryConfig) -> float | _Exhausted:
    """Return the delay before attempt ``attempt + 1``, or ``EXHAUSTED``.

    *attempt* is the number of attempts that have failed so far (>= 1).
    """
    if attempt < 1:
        raise ValueError(f"attempt must be >= 1, got {attempt}")
    if not config.forever and attempt >= config.max_attempts:
        return EXHAUSTED
    try:
        delay = config.initial_delay * config.multiplier ** (attempt - 1)
    except OverflowError:
        # Only reachable with ``forever``; the cap applies.
        return config.max_delay
    return min(delay, config.max_delay)
