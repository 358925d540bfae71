"""Pytest configuration and fixtures."""

from __future__ import annotations

import uuid
from collections.abc import Callable, Generator
from dataclasses import dataclass, field
from typing import Any

import httpx
import pytest
from cryptography.hazmat.primitives.asymmetric import rsa
from flask import Flask
from flask.testing import FlaskClient

from fedbroker.broker.client_auth import generate_signing_key
from fedbroker.broker.models import ProviderConfig, RealmContext
from fedbroker.broker.provider import OAuth2IdentityProvider
from fedbroker.core.logging import LoggingClient, ProtocolLog, ProtocolLogger
from fedbroker.core.vault import StaticVault

BASE_URL = "https://broker.example.com"
TOKEN_URL = "https://idp.example.com/token"
USERINFO_URL = "https://idp.example.com/userinfo"
PROFILE_URL = "https://idp.example.com/profile"
CLIENT_SECRET = "s3cret-value-for-hmac-signing-0123456789"
APP_SECRET = "app-secret"


@dataclass
class InMemoryUser:
    id: str
    username: str
    enabled: bool = False
    first_name: str | None = None
    last_name: str | None = None
    email: str | None = None


@dataclass
class InMemoryLink:
    user_id: str
    provider_alias: str
    realm: str
    token: str | None = None
    external_user_id: str | None = None


class InMemoryUserStore:
    """User store that records every call."""

    def __init__(self) -> None:
        self.users: dict[str, InMemoryUser] = {}
        self.links: dict[tuple[str, str, str], InMemoryLink] = {}
        self.calls: list[str] = []

    def add_user(self, username: str, external_user_id: str | None = None, alias: str = "idp1") -> InMemoryUser:
        """Add an enabled user, linked to ``external_user_id`` at ``alias`` if given."""
        user = InMemoryUser(id=str(uuid.uuid4()), username=username, enabled=True)
        self.users[username] = user
        if external_user_id is not None:
            self.add_link(user, alias, "master", None).external_user_id = external_user_id
        return user

    def add_link(self, user: InMemoryUser, alias: str, realm: str, token: str | None) -> InMemoryLink:
        link = InMemoryLink(user.id, alias, realm, token)
        self.links[(user.id, alias, realm)] = link
        return link

    def find_user_by_external_id(self, realm: str, provider_alias: str, external_user_id: str) -> InMemoryUser | None:
        self.calls.append("find_user_by_external_id")
        for link in self.links.values():
            if (link.realm, link.provider_alias, link.external_user_id) == (realm, provider_alias, external_user_id):
                return next(u for u in self.users.values() if u.id == link.user_id)
        return None

    def create_user(self, realm: str, username: str) -> InMemoryUser:
        self.calls.append("create_user")
        user = InMemoryUser(id=str(uuid.uuid4()), username=username)
        self.users[username] = user
        return user

    def get_federated_identity(self, user: InMemoryUser, provider_alias: str, realm: str) -> InMemoryLink | None:
        self.calls.append("get_federated_identity")
        return self.links.get((user.id, provider_alias, realm))

    def update_federated_identity(self, realm: str, user: InMemoryUser, identity: InMemoryLink) -> None:
        self.calls.append("update_federated_identity")
        self.links[(user.id, identity.provider_alias, realm)] = identity


@dataclass
class InMemorySession:
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    notes: dict[str, str] = field(default_factory=dict)

    def get_note(self, key: str) -> str | None:
        return self.notes.get(key)

    def set_note(self, key: str, value: str) -> None:
        self.notes[key] = value

    def remove_note(self, key: str) -> None:
        self.notes.pop(key, None)


class RecordingCallback:
    """Login-completion collaborator that records what it was told."""

    def __init__(self) -> None:
        self.authenticated_with: list[Any] = []
        self.cancelled_with: list[str | None] = []
        self.errors: list[tuple[str | None, str]] = []

    def authenticated(self, identity: Any) -> str:
        self.authenticated_with.append(identity)
        return "authenticated"

    def cancelled(self, state: str | None) -> str:
        self.cancelled_with.append(state)
        return "cancelled"

    def error(self, state: str | None, message: str) -> str:
        self.errors.append((state, message))
        return "error"


class MockIdP:
    """Fake provider endpoints served through httpx.MockTransport."""

    def __init__(self) -> None:
        self.routes: dict[tuple[str, str], Callable[[httpx.Request], httpx.Response]] = {}
        self.requests: list[httpx.Request] = []

    def on(self, method: str, url: str, response: httpx.Response | Callable[[httpx.Request], httpx.Response]) -> None:
        handler = response if callable(response) else (lambda request: response)
        self.routes[(method.upper(), url)] = handler

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        url = f"{request.url.scheme}://{request.url.host}{request.url.path}"
        route = self.routes.get((request.method, url))
        if route is None:
            return httpx.Response(404, text="not found")
        return route(request)

    def client_factory(self, log: ProtocolLog | None = None) -> httpx.Client:
        return LoggingClient(
            protocol_logger=ProtocolLogger(),
            protocol_log=log,
            transport=httpx.MockTransport(self.handler),
        )


@pytest.fixture(scope="session")
def realm_key() -> rsa.RSAPrivateKey:
    """Realm RSA key shared by the whole test session."""
    return generate_signing_key()


@pytest.fixture
def realm() -> RealmContext:
    return RealmContext(name="master", base_url=BASE_URL, access_code_lifespan=60)


@pytest.fixture
def vault() -> StaticVault:
    return StaticVault({"c1_secret": CLIENT_SECRET, "app_secret": APP_SECRET})


@pytest.fixture
def user_store() -> InMemoryUserStore:
    return InMemoryUserStore()


@pytest.fixture
def idp() -> MockIdP:
    return MockIdP()


@pytest.fixture
def provider_config() -> Callable[..., ProviderConfig]:
    """Factory for userinfo provider configurations."""

    def make(**overrides: Any) -> ProviderConfig:
        data: dict[str, Any] = {
            "provider_type": "userinfo",
            "client_id": "c1",
            "client_secret": "${vault.c1_secret}",
            "authorization_url": "https://idp.example.com/authorize",
            "token_url": TOKEN_URL,
            "userinfo_url": USERINFO_URL,
            "default_scope": "openid",
        }
        data.update(overrides)
        return ProviderConfig.from_dict(data.pop("alias", "idp1"), data)

    return make


@pytest.fixture
def make_provider(
    provider_config: Callable[..., ProviderConfig],
    realm: RealmContext,
    user_store: InMemoryUserStore,
    vault: StaticVault,
    realm_key: rsa.RSAPrivateKey,
    idp: MockIdP,
) -> Callable[..., OAuth2IdentityProvider]:
    """Factory for providers wired to the in-memory collaborators."""

    def make(**overrides: Any) -> OAuth2IdentityProvider:
        return OAuth2IdentityProvider(
            provider_config(**overrides),
            realm,
            user_store,
            vault=vault,
            realm_key=realm_key,
            http_client_factory=idp.client_factory,
            protocol_logger=ProtocolLogger(),
        )

    return make


@pytest.fixture
def app_settings() -> dict[str, Any]:
    """Broker configuration used by the web tests."""
    return {
        "realm": {"name": "master", "base_url": BASE_URL},
        "database": {"url": "sqlite://"},
        "clients": {"app": {"secret": "${vault.app_secret}"}},
        "providers": {
            "idp1": {
                "provider_type": "userinfo",
                "client_id": "c1",
                "client_secret": "${vault.c1_secret}",
                "authorization_url": "https://idp.example.com/authorize",
                "token_url": TOKEN_URL,
                "userinfo_url": USERINFO_URL,
                "create_user": True,
                "store_token": True,
                "supports_external_exchange": True,
                "forward_parameters": "audience",
            },
        },
    }


@pytest.fixture
def app(
    app_settings: dict[str, Any],
    vault: StaticVault,
    realm_key: rsa.RSAPrivateKey,
    idp: MockIdP,
) -> Generator[Flask, None, None]:
    """Create application for testing with an in-memory database."""
    from fedbroker.app import create_app
    from fedbroker.core.config import AppConfig
    from fedbroker.storage import Database

    database = Database(url="sqlite://")
    database.init_db()
    app = create_app(
        {
            "TESTING": True,
            "SECRET_KEY": "test-secret-key",
            "DATABASE": database,
            "VAULT": vault,
            "REALM_KEY": realm_key,
            "HTTP_CLIENT_FACTORY": idp.client_factory,
        },
        app_config=AppConfig.from_dict(app_settings),
    )
    yield app
    database.close()


@pytest.fixture
def client(app: Flask) -> FlaskClient:
    """Create test client."""
    return app.test_client()
