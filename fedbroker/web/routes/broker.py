"""Broker routes: login delegation, provider callback and token exchange."""

from __future__ import annotations

import hmac
import logging
import secrets
from typing import TYPE_CHECKING, Any

from flask import Blueprint, abort, current_app, jsonify, redirect, request, session

from fedbroker.broker.client_auth import get_realm_key
from fedbroker.broker.errors import BrokerError, ErrorResponseError, LinkageError, ProviderConfigError
from fedbroker.broker.models import (
    ACCESS_TOKEN_TYPE,
    ACR_VALUES_PARAM,
    ADDITIONAL_REQ_PARAMS_PREFIX,
    EXTERNAL_IDENTITY_PROVIDER,
    FEDERATED_ACCESS_TOKEN_RESPONSE,
    IDENTITY_PROVIDER_NOTE,
    LOGIN_HINT_PARAM,
    PROMPT_PARAM,
    REQUESTED_ISSUER,
    SUBJECT_ISSUER,
    SUBJECT_TOKEN,
    TOKEN_EXCHANGE_GRANT_TYPE,
    UI_LOCALES_PARAM,
    AuthenticationRequest,
    ClientInfo,
    ExchangeContext,
    FederatedIdentity,
    TokenResponse,
)
from fedbroker.broker.provider import OAuth2IdentityProvider
from fedbroker.core.events import EventBuilder, EventType
from fedbroker.core.vault import EnvironmentVault, parse_vault_reference
from fedbroker.storage.stores import SqlSessionStore, SqlUserStore

if TYPE_CHECKING:
    from flask.typing import ResponseReturnValue
    from sqlalchemy.orm import Session

    from fedbroker.core.config import AppConfig
    from fedbroker.storage.database import Database

logger = logging.getLogger(__name__)

broker_bp = Blueprint("broker", __name__, url_prefix="/realms/<realm>")

# Session key for pending broker logins, by provider alias
BROKER_LOGIN_KEY = "broker_logins"

# Query parameters of the login endpoint that are not forwarded
_RESERVED_LOGIN_PARAMS = {LOGIN_HINT_PARAM, PROMPT_PARAM, ACR_VALUES_PARAM, UI_LOCALES_PARAM}


def _app_config() -> AppConfig:
    return current_app.config["APP_CONFIG"]


def _database() -> Database:
    return current_app.config["DATABASE"]


def _check_realm(realm: str) -> None:
    if realm != _app_config().realm.name:
        abort(404)


def _error(error: str, description: str | None = None, status: int = 400) -> ResponseReturnValue:
    body = {"error": error}
    if description:
        body["error_description"] = description
    return jsonify(body), status


def get_provider(alias: str, db_session: Session) -> OAuth2IdentityProvider:
    """Build the provider for one request.

    Raises:
        ProviderConfigError: If the alias is unknown or misconfigured.
    """
    app_config = _app_config()
    return OAuth2IdentityProvider(
        app_config.get_provider_config(alias),
        app_config.realm.to_context(),
        SqlUserStore(db_session),
        vault=current_app.config["VAULT"] or EnvironmentVault(),
        realm_key=current_app.config["REALM_KEY"] or get_realm_key(app_config.realm.signing_key_path),
        http_client_factory=current_app.config["HTTP_CLIENT_FACTORY"],
    )


class WebAuthenticationCallback:
    """Completes a broker login: links the identity and opens a local session."""

    def __init__(self, provider: OAuth2IdentityProvider, db_session: Session) -> None:
        self.provider = provider
        self.db_session = db_session

    def authenticated(self, identity: FederatedIdentity) -> dict[str, Any]:
        realm = self.provider.realm.name
        users = SqlUserStore(self.db_session)
        user = users.get_user(realm, identity.user_id)
        users.link_identity(realm, user, identity)

        user_session = SqlSessionStore(self.db_session).create_session(
            realm, user, {IDENTITY_PROVIDER_NOTE: self.provider.config.alias}
        )
        self.provider.authentication_finished(user_session, identity)

        token_response: TokenResponse = identity.context_data[FEDERATED_ACCESS_TOKEN_RESPONSE]
        return {
            "session_id": user_session.id,
            "user_id": user.id,
            "username": user.username,
            **token_response.to_dict(),
        }

    def cancelled(self, state: str | None) -> dict[str, Any]:
        return {"error": "access_denied", "error_description": "Login was cancelled", "state": state}

    def error(self, state: str | None, message: str) -> dict[str, Any]:
        return {"error": "identity_provider_error", "error_description": message, "state": state}


@broker_bp.route("/broker/<alias>/login")
def login(realm: str, alias: str) -> ResponseReturnValue:
    """Start a broker login and redirect to the provider."""
    _check_realm(realm)
    realm_context = _app_config().realm.to_context()

    client_notes: dict[str, str] = {}
    for name in (LOGIN_HINT_PARAM, PROMPT_PARAM, ACR_VALUES_PARAM):
        value = request.args.get(name)
        if value:
            client_notes[name] = value
    for name, value in request.args.items():
        if name not in _RESERVED_LOGIN_PARAMS and value:
            client_notes[ADDITIONAL_REQ_PARAMS_PREFIX + name] = value

    auth_request = AuthenticationRequest(
        state=secrets.token_urlsafe(24),
        redirect_uri=realm_context.broker_endpoint(alias),
        client_notes=client_notes,
        locale=request.args.get(UI_LOCALES_PARAM),
    )

    db_session = _database().get_session()
    try:
        provider = get_provider(alias, db_session)
        url = provider.perform_login(auth_request)
    except ProviderConfigError as e:
        return _error("invalid_request", str(e), 404)
    except BrokerError as e:
        logger.error(f"Broker login for {alias} failed: {e}")
        return _error("invalid_request", str(e), 500)
    finally:
        db_session.close()

    pending = dict(session.get(BROKER_LOGIN_KEY, {}))
    pending[alias] = auth_request.to_dict()
    session[BROKER_LOGIN_KEY] = pending

    return redirect(url, code=303)


@broker_bp.route("/broker/<alias>/endpoint")
def endpoint(realm: str, alias: str) -> ResponseReturnValue:
    """Handle the provider's redirect back to the broker."""
    _check_realm(realm)

    pending = dict(session.get(BROKER_LOGIN_KEY, {}))
    stored = pending.pop(alias, None)
    session[BROKER_LOGIN_KEY] = pending
    expected_state = AuthenticationRequest.from_dict(stored).state if stored else None

    db_session = _database().get_session()
    try:
        try:
            provider = get_provider(alias, db_session)
        except ProviderConfigError as e:
            return _error("invalid_request", str(e), 404)

        outcome = provider.handle_callback(
            request.args.get("state"),
            request.args.get("code"),
            request.args.get("error"),
            expected_state=expected_state,
            require_state=True,
            callback=WebAuthenticationCallback(provider, db_session),
            event=EventBuilder(realm, EventType.LOGIN),
        )

        if outcome.is_success:
            db_session.commit()
            return jsonify(outcome.response), 200

        db_session.rollback()
        return jsonify(outcome.response), outcome.http_status or 400
    finally:
        db_session.close()


@broker_bp.route("/protocol/token", methods=["POST"])
def token(realm: str) -> ResponseReturnValue:
    """RFC 8693 token exchange.

    With ``requested_issuer`` the subject token is a local session id and
    the provider's token for that session is returned. With
    ``subject_issuer`` the subject token is a provider token that is
    validated and exchanged for a local session.
    """
    _check_realm(realm)
    params = {key: value for key, value in request.form.items()}

    if params.get("grant_type") != TOKEN_EXCHANGE_GRANT_TYPE:
        return _error("unsupported_grant_type")

    client_id = _authenticate_client(params)
    if client_id is None:
        return _error("invalid_client", "Client authentication failed", 401)

    db_session = _database().get_session()
    try:
        if params.get(REQUESTED_ISSUER):
            return _exchange_internal(realm, client_id, params, db_session)
        if params.get(SUBJECT_ISSUER):
            return _exchange_external(realm, params, db_session)
        return _error("invalid_request", "requested_issuer or subject_issuer is required")
    finally:
        db_session.close()


def _authenticate_client(params: dict[str, str]) -> str | None:
    """Authenticate the calling client against the registered clients.

    Credentials come from an HTTP Basic header or the ``client_id`` and
    ``client_secret`` form parameters.

    Returns:
        The client id, or None if authentication failed.
    """
    auth = request.authorization
    if auth is not None and auth.type == "basic":
        client_id, presented = auth.username, auth.password
        if params.get("client_id") not in (None, client_id):
            return None
    else:
        client_id, presented = params.get("client_id"), params.get("client_secret")
    if not client_id or not presented:
        return None

    configured = _app_config().client_secret(client_id)
    if not configured:
        logger.warning(f"Token request from unknown client {client_id}")
        return None

    vault = current_app.config["VAULT"] or EnvironmentVault()
    with vault.get_string_secret(configured) as secret:
        # An unresolved vault reference never matches
        expected = secret.get() if parse_vault_reference(configured) else configured
        if not expected or not hmac.compare_digest(expected.encode(), presented.encode()):
            logger.warning(f"Invalid credentials for client {client_id}")
            return None
    return client_id


def _exchange_internal(realm: str, client_id: str, params: dict[str, str], db_session: Session) -> ResponseReturnValue:
    alias = params[REQUESTED_ISSUER]
    try:
        provider = get_provider(alias, db_session)
    except ProviderConfigError:
        return _error("invalid_request", "Invalid requested_issuer")

    user_session = None
    if params.get(SUBJECT_TOKEN):
        user_session = SqlSessionStore(db_session).get_session(realm, params[SUBJECT_TOKEN])
    if user_session is None:
        return _error("invalid_token", "invalid token")

    context = ExchangeContext.from_params(
        params,
        ClientInfo(client_id=client_id, realm=realm),
        user_session,
        user_session.user,
    )
    outcome = provider.exchange_from_token(context, EventBuilder(realm, EventType.TOKEN_EXCHANGE))
    db_session.commit()
    return jsonify(outcome.to_dict()), outcome.http_status


def _exchange_external(realm: str, params: dict[str, str], db_session: Session) -> ResponseReturnValue:
    event = EventBuilder(realm, EventType.TOKEN_EXCHANGE)

    provider = None
    for alias in _app_config().provider_aliases():
        try:
            candidate = get_provider(alias, db_session)
        except ProviderConfigError as e:
            logger.warning(f"Skipping misconfigured provider {alias}: {e}")
            continue
        if candidate.is_issuer(None, params):
            provider = candidate
            break
    if provider is None:
        return _error("invalid_request", "Invalid subject_issuer")

    try:
        identity = provider.exchange_external(event, params)
    except ErrorResponseError as e:
        return jsonify(e.to_dict()), e.status
    if identity is None:
        return _error("invalid_request", "Invalid subject_issuer")

    users = SqlUserStore(db_session)
    user = users.find_user_by_external_id(realm, provider.config.alias, identity.external_user_id)
    if user is None:
        if not provider.config.create_user:
            return _error("invalid_token", "User not found")
        user = users.create_user(realm, identity.external_user_id)
        user.enabled = True
    try:
        users.link_identity(realm, user, identity)
    except LinkageError as e:
        db_session.rollback()
        logger.error(f"External exchange with {provider.config.alias} refused: {e}")
        return _error("invalid_token", "invalid token")

    user_session = SqlSessionStore(db_session).create_session(
        realm, user, {EXTERNAL_IDENTITY_PROVIDER: provider.config.alias}
    )
    provider.exchange_external_complete(user_session, identity, params)

    try:
        access_token = provider.authenticator.sign(provider.authenticator.generate_token())
    except BrokerError as e:
        db_session.rollback()
        logger.error(f"Could not issue token after external exchange with {provider.config.alias}: {e}")
        return _error("server_error", "Could not issue token", 500)

    db_session.commit()
    event.success()
    response = TokenResponse(
        access_token=access_token,
        expires_in=provider.realm.access_code_lifespan,
        token_type="bearer",
        session_state=user_session.id,
        issued_token_type=ACCESS_TOKEN_TYPE,
    )
    return jsonify(response.to_dict()), 200
