"""Secret vault lookups.

Secrets are acquired for the duration of a ``with`` block and dropped on
exit. A configured secret may be a vault reference of the form
``${vault.<key>}``; plain strings have no vault value and callers fall
back to the raw configured string.
"""

from __future__ import annotations

import os
import re
from collections.abc import Iterator, Mapping
from contextlib import contextmanager

VAULT_REFERENCE = re.compile(r"^\$\{vault\.([A-Za-z0-9_.-]+)\}$")

# Environment variable prefix for vault entries
ENV_VAULT_PREFIX = "FEDBROKER_VAULT_"


class VaultStringSecret:
    """A secret value held only while its scope is open."""

    def __init__(self, value: str | None) -> None:
        self._value = value

    def get(self) -> str | None:
        """Return the secret value, or None if the vault has none."""
        return self._value

    def get_or(self, fallback: str | None) -> str | None:
        return self._value if self._value is not None else fallback

    def close(self) -> None:
        self._value = None


def parse_vault_reference(ref: str | None) -> str | None:
    """Return the vault key named by a ``${vault.key}`` reference."""
    if not ref:
        return None
    match = VAULT_REFERENCE.match(ref.strip())
    return match.group(1) if match else None


class EnvironmentVault:
    """Vault backed by environment variables (``FEDBROKER_VAULT_<KEY>``)."""

    def __init__(self, environ: Mapping[str, str] | None = None) -> None:
        self._environ = environ if environ is not None else os.environ

    def _lookup(self, key: str) -> str | None:
        env_key = ENV_VAULT_PREFIX + re.sub(r"[^A-Za-z0-9]", "_", key).upper()
        return self._environ.get(env_key) or None

    @contextmanager
    def get_string_secret(self, ref: str | None) -> Iterator[VaultStringSecret]:
        """Open a scoped secret for a configured reference."""
        key = parse_vault_reference(ref)
        secret = VaultStringSecret(self._lookup(key) if key else None)
        try:
            yield secret
        finally:
            secret.close()


class StaticVault(EnvironmentVault):
    """Vault over a fixed mapping of vault keys to values."""

    def __init__(self, secrets: Mapping[str, str]) -> None:
        super().__init__({})
        self._secrets = dict(secrets)

    def _lookup(self, key: str) -> str | None:
        return self._secrets.get(key)
