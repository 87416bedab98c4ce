"""YAML settings for the CLI and ``VaultClient.from_settings``.

The file layout mirrors the objects it configures::

    vault:   {address, timeout, verify, namespace}
    auth:    {backend, options}
    retry:   {max_attempts, initial_delay, multiplier, max_delay, forever}
    renew_ratio: 0.8
    secrets: [{address, path}, ...]

``VAULT_ADDR`` in the environment overrides ``vault.address``.
"""

from __future__ import annotations

import dataclasses
import os
import pathlib
from typing import Any, Mapping

import yaml

from vault_lease_cache.backoff import RetryConfig
from vault_lease_cache.cache.watcher import SecretSpec, normalize_specs
from vault_lease_cache.errors import ValidationError

DEFAULT_CONFIG_PATH = pathlib.Path(__file__).resolve().parents[2] / "config" / "settings.yaml"
DEFAULT_VAULT_ADDR = "http://127.0.0.1:8200"


class ConfigError(ValidationError):
    """Raised when the settings file is missing or malformed."""


@dataclasses.dataclass(frozen=True)
class Settings:
    vault_address: str = DEFAULT_VAULT_ADDR
    timeout: float = 30
    verify: bool | str = True
    namespace: str | None = None
    auth_backend: str = "approle"
    auth_options: Mapping[str, Any] = dataclasses.field(default_factory=dict)
    retry: RetryConfig = dataclasses.field(default_factory=RetryConfig)
    renew_ratio: float = 0.8
    secrets: tuple[SecretSpec, ...] = ()

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any], env: Mapping[str, str] | None = None) -> Settings:
        env = os.environ if env is None else env
        if not isinstance(data, Mapping):
            raise ConfigError("Settings must be a mapping at the top level")

        vault = _section(data, "vault")
        auth = _section(data, "auth")

        try:
            retry = RetryConfig.from_mapping(_section(data, "retry"))
            secrets = tuple(normalize_specs(data.get("secrets") or []))
        except ValidationError as exc:
            raise ConfigError(str(exc)) from exc

        renew_ratio = data.get("renew_ratio", 0.8)
        if not isinstance(renew_ratio, (int, float)) or not 0 < renew_ratio < 1:
            raise ConfigError(f"renew_ratio must be a number between 0 and 1, got {renew_ratio!r}")

        return cls(
            vault_address=env.get("VAULT_ADDR") or vault.get("address", DEFAULT_VAULT_ADDR),
            timeout=vault.get("timeout", 30),
            verify=vault.get("verify", True),
            namespace=vault.get("namespace"),
            auth_backend=auth.get("backend", "approle"),
            auth_options=dict(auth.get("options") or {}),
            retry=retry,
            renew_ratio=float(renew_ratio),
            secrets=secrets,
        )


def _section(data: Mapping[str, Any], key: str) -> Mapping[str, Any]:
    value = data.get(key) or {}
    if not isinstance(value, Mapping):
        raise ConfigError(f"'{key}' must be a mapping, got {type(value).__name__}")
    return value


def load_settings(
    path: str | pathlib.Path | None = None,
    env: Mapping[str, str] | None = None,
) -> Settings:
    """Read and validate the settings file at *path* (default: config/settings.yaml)."""
    config_path = pathlib.Path(path) if path is not None else DEFAULT_CONFIG_PATH
    if not config_path.exists():
        raise ConfigError(f"Settings file not found: {config_path}")
    with open(config_path) as fh:
        try:
            data = yaml.safe_load(fh)
        except yaml.YAMLError as exc:
            raise ConfigError(f"Cannot parse {config_path}: {exc}") from exc
    return Settings.from_mapping(data or {}, env=env)
