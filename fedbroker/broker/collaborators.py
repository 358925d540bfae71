"""Contracts for the systems the broker consumes but does not own."""

from __future__ import annotations

from collections.abc import Callable
from contextlib import AbstractContextManager
from typing import TYPE_CHECKING, Any, Protocol

if TYPE_CHECKING:
    import httpx

    from fedbroker.broker.models import FederatedIdentity
    from fedbroker.core.logging import ProtocolLog
    from fedbroker.core.vault import VaultStringSecret


class User(Protocol):
    """A local user account."""

    id: str
    username: str
    enabled: bool


class StoredFederatedIdentity(Protocol):
    """Persisted link between a local user and an external identity."""

    provider_alias: str
    external_user_id: str | None
    token: str | None


class UserStore(Protocol):
    """Local user and federated-identity persistence."""

    def find_user_by_external_id(
        self, realm: str, provider_alias: str, external_user_id: str
    ) -> User | None: ...

    def create_user(self, realm: str, username: str) -> User: ...

    def get_federated_identity(
        self, user: User, provider_alias: str, realm: str
    ) -> StoredFederatedIdentity | None: ...

    def update_federated_identity(
        self, realm: str, user: User, identity: StoredFederatedIdentity
    ) -> None: ...


class SessionNotes(Protocol):
    """Key/value notes attached to a local user session."""

    id: str

    def get_note(self, key: str) -> str | None: ...

    def set_note(self, key: str, value: str) -> None: ...

    def remove_note(self, key: str) -> None: ...


class SecretVault(Protocol):
    """Scoped secret lookup."""

    def get_string_secret(self, ref: str | None) -> AbstractContextManager[VaultStringSecret]: ...


class Signer(Protocol):
    """Produces compact JWS strings."""

    def sign(self, payload: dict[str, Any], key: Any, algorithm: str) -> str: ...


class AuthenticationCallback(Protocol):
    """Login-completion collaborator that receives callback outcomes."""

    def authenticated(self, identity: FederatedIdentity) -> Any: ...

    def cancelled(self, state: str | None) -> Any: ...

    def error(self, state: str | None, message: str) -> Any: ...


# Creates the HTTP client for one request; the flow log collects its exchanges
HttpClientFactory = Callable[["ProtocolLog | None"], "httpx.Client"]
