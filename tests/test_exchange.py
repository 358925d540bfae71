"""Tests for the token exchange router."""

import base64
import hashlib
import json
from urllib.parse import parse_qs, urlsplit

import pytest
from conftest import InMemorySession, InMemoryUser

from fedbroker.broker.errors import ErrorResponseError, LinkageError, UnsupportedRequestError
from fedbroker.broker.exchange import ExchangeStatus, linking_url
from fedbroker.broker.models import (
    ACCESS_TOKEN_TYPE,
    CLEARED_TOKEN,
    EXCHANGE_PROVIDER,
    EXTERNAL_IDENTITY_PROVIDER,
    FEDERATED_ACCESS_TOKEN,
    FEDERATED_ID_TOKEN,
    ID_TOKEN_TYPE,
    IDENTITY_PROVIDER_NOTE,
    REFRESH_TOKEN_TYPE,
    ClientInfo,
    ExchangeContext,
)
from fedbroker.core.events import Errors, EventBuilder


@pytest.fixture
def user(user_store) -> InMemoryUser:
    return user_store.add_user("ada")


def _context(session, user, requested_token_type=None):
    params = {"requested_issuer": "idp1", "subject_token": session.id}
    if requested_token_type:
        params["requested_token_type"] = requested_token_type
    return ExchangeContext.from_params(params, ClientInfo(client_id="app", realm="master"), session, user)


class TestLinkingUrl:
    """Tests for the account-link URL."""

    def test_hash_binds_session_client_and_provider(self):
        url = linking_url("https://broker/realms/master", "idp1", "sess-1", "app", nonce="n-1")

        parts = urlsplit(url)
        assert parts.path == "/realms/master/broker/idp1/link"
        query = parse_qs(parts.query)
        expected = base64.urlsafe_b64encode(hashlib.sha256(b"n-1sess-1appidp1").digest()).decode().rstrip("=")
        assert query == {"nonce": ["n-1"], "hash": [expected], "client_id": ["app"]}

    def test_fresh_nonce(self):
        first = linking_url("https://broker/realms/master", "idp1", "sess-1", "app")
        second = linking_url("https://broker/realms/master", "idp1", "sess-1", "app")
        assert first != second


class TestAlreadyExchanged:
    """Sessions created by an external exchange with this provider."""

    def test_access_token_shortcut_skips_store(self, make_provider, user_store, user):
        session = InMemorySession(notes={EXCHANGE_PROVIDER: "idp1", FEDERATED_ACCESS_TOKEN: "cached-at"})
        user_store.calls.clear()

        outcome = make_provider(store_token=True).exchange_from_token(_context(session, user))

        assert outcome.status == ExchangeStatus.SUCCESS
        assert outcome.token_response.access_token == "cached-at"
        assert outcome.token_response.issued_token_type == ACCESS_TOKEN_TYPE
        assert outcome.token_response.expires_in == 0
        assert user_store.calls == []

    def test_id_token_shortcut(self, make_provider, user):
        session = InMemorySession(notes={EXCHANGE_PROVIDER: "idp1", FEDERATED_ID_TOKEN: "cached-id"})

        outcome = make_provider().exchange_from_token(_context(session, user, ID_TOKEN_TYPE))

        assert outcome.is_success
        assert outcome.token_response.id_token == "cached-id"
        assert outcome.token_response.access_token is None
        assert outcome.token_response.issued_token_type == ID_TOKEN_TYPE

    def test_other_provider_does_not_shortcut(self, make_provider, user):
        session = InMemorySession(notes={EXCHANGE_PROVIDER: "other", FEDERATED_ACCESS_TOKEN: "cached-at"})

        outcome = make_provider().exchange_from_token(_context(session, user))

        assert outcome.status == ExchangeStatus.NOT_LINKED

    def test_id_token_without_cache_is_unsupported(self, make_provider, user):
        session = InMemorySession(notes={EXCHANGE_PROVIDER: "idp1", FEDERATED_ACCESS_TOKEN: "cached-at"})

        outcome = make_provider().exchange_from_token(_context(session, user, ID_TOKEN_TYPE))

        assert outcome.status == ExchangeStatus.UNSUPPORTED_TYPE


class TestRequestValidation:
    """Requests the router refuses before looking at tokens."""

    def test_unsupported_token_type(self, make_provider, user):
        session = InMemorySession(notes={IDENTITY_PROVIDER_NOTE: "idp1", FEDERATED_ACCESS_TOKEN: "at"})
        event = EventBuilder("master")

        outcome = make_provider().exchange_from_token(_context(session, user, REFRESH_TOKEN_TYPE), event)

        assert outcome.status == ExchangeStatus.UNSUPPORTED_TYPE
        assert outcome.http_status == 400
        assert outcome.to_dict() == {
            "error": "invalid_target",
            "error_description": "response_token_type_unsupported",
        }
        assert event.last.error == Errors.INVALID_REQUEST

    def test_missing_session(self, make_provider, user):
        context = ExchangeContext(ClientInfo(client_id="app", realm="master"), None, user)

        outcome = make_provider().exchange_from_token(context)

        assert outcome.status == ExchangeStatus.INVALID_REQUEST
        assert outcome.to_dict() == {"error": "invalid_request"}


class TestSessionToken:
    """Providers that do not store tokens answer from the session."""

    def test_not_linked(self, make_provider, user):
        session = InMemorySession(notes={IDENTITY_PROVIDER_NOTE: "other", FEDERATED_ACCESS_TOKEN: "at"})
        event = EventBuilder("master")

        outcome = make_provider().exchange_from_token(_context(session, user), event)

        assert outcome.status == ExchangeStatus.NOT_LINKED
        body = outcome.to_dict()
        assert body["error"] == "not_linked"
        assert "/broker/idp1/link?" in body["account-link-url"]
        assert event.last.details["reason"] == "requested_issuer has not linked"

    def test_session_without_provider_note(self, make_provider, user):
        outcome = make_provider().exchange_from_token(_context(InMemorySession(), user))

        assert outcome.status == ExchangeStatus.NOT_LINKED

    def test_external_provider_note(self, make_provider, user):
        session = InMemorySession(notes={EXTERNAL_IDENTITY_PROVIDER: "idp1", FEDERATED_ACCESS_TOKEN: "at"})

        outcome = make_provider().exchange_from_token(_context(session, user))

        assert outcome.is_success
        assert outcome.token_response.access_token == "at"

    def test_linked_session(self, make_provider, user, user_store):
        session = InMemorySession(notes={IDENTITY_PROVIDER_NOTE: "idp1", FEDERATED_ACCESS_TOKEN: "session-at"})
        user_store.calls.clear()

        outcome = make_provider().exchange_from_token(_context(session, user))

        assert outcome.is_success
        body = outcome.to_dict()
        assert body["access_token"] == "session-at"
        assert body["issued_token_type"] == ACCESS_TOKEN_TYPE
        assert body["refresh_expires_in"] == 0
        assert "account-link-url" in body
        assert user_store.calls == []

    def test_linked_session_without_token(self, make_provider, user):
        session = InMemorySession(notes={IDENTITY_PROVIDER_NOTE: "idp1"})
        event = EventBuilder("master")

        outcome = make_provider().exchange_from_token(_context(session, user), event)

        assert outcome.status == ExchangeStatus.TOKEN_EXPIRED
        assert outcome.to_dict()["error"] == "token_expired"
        assert event.last.error == Errors.INVALID_TOKEN


class TestStoredToken:
    """Providers that store tokens answer from the federated identity."""

    def test_stored_token(self, make_provider, user, user_store):
        user_store.add_link(user, "idp1", "master", json.dumps({"access_token": "stored-at"}))

        outcome = make_provider(store_token=True).exchange_from_token(_context(InMemorySession(), user))

        assert outcome.is_success
        assert outcome.token_response.access_token == "stored-at"
        assert outcome.token_response.other_claims["account-link-url"]

    def test_stored_form_encoded_token(self, make_provider, user, user_store):
        user_store.add_link(user, "idp1", "master", "access_token=stored-at&expires_in=300")

        outcome = make_provider(store_token=True).exchange_from_token(_context(InMemorySession(), user))

        assert outcome.token_response.access_token == "stored-at"

    def test_no_identity(self, make_provider, user):
        outcome = make_provider(store_token=True).exchange_from_token(_context(InMemorySession(), user))

        assert outcome.status == ExchangeStatus.NOT_LINKED

    def test_identity_without_token(self, make_provider, user, user_store):
        user_store.add_link(user, "idp1", "master", None)

        outcome = make_provider(store_token=True).exchange_from_token(_context(InMemorySession(), user))

        assert outcome.status == ExchangeStatus.NOT_LINKED

    def test_expired_token_is_cleared_and_stays_expired(self, make_provider, user, user_store):
        link = user_store.add_link(user, "idp1", "master", json.dumps({"token_type": "bearer"}))
        provider = make_provider(store_token=True)

        first = provider.exchange_from_token(_context(InMemorySession(), user))

        assert first.status == ExchangeStatus.TOKEN_EXPIRED
        assert link.token == CLEARED_TOKEN
        assert user_store.calls.count("update_federated_identity") == 1

        second = provider.exchange_from_token(_context(InMemorySession(), user))

        assert second.status == ExchangeStatus.TOKEN_EXPIRED
        assert user_store.calls.count("update_federated_identity") == 1

    def test_unreadable_token_is_expired(self, make_provider, user, user_store):
        link = user_store.add_link(user, "idp1", "master", "{not json")

        outcome = make_provider(store_token=True).exchange_from_token(_context(InMemorySession(), user))

        assert outcome.status == ExchangeStatus.TOKEN_EXPIRED
        assert link.token == CLEARED_TOKEN

    def test_retrieve_token(self, make_provider, user, user_store):
        link = user_store.add_link(user, "idp1", "master", "raw")
        assert make_provider().retrieve_token(link) == "raw"


class TestRaiseForStatus:
    """Failure outcomes map onto the broker error taxonomy."""

    def test_success_returns_outcome(self, make_provider, user):
        session = InMemorySession(notes={IDENTITY_PROVIDER_NOTE: "idp1", FEDERATED_ACCESS_TOKEN: "at"})
        outcome = make_provider().exchange_from_token(_context(session, user))

        assert outcome.raise_for_status() is outcome

    def test_not_linked(self, make_provider, user):
        outcome = make_provider().exchange_from_token(_context(InMemorySession(), user))

        with pytest.raises(LinkageError, match="not_linked"):
            outcome.raise_for_status()

    def test_unsupported_type(self, make_provider, user):
        outcome = make_provider().exchange_from_token(_context(InMemorySession(), user, REFRESH_TOKEN_TYPE))

        with pytest.raises(UnsupportedRequestError):
            outcome.raise_for_status()

    def test_invalid_request(self, make_provider, user):
        outcome = make_provider().exchange_from_token(ExchangeContext(ClientInfo("app", "master"), None, user))

        with pytest.raises(ErrorResponseError) as exc_info:
            outcome.raise_for_status()
        assert exc_info.value.status == 400
