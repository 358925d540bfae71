"""OAuth2 identity provider facade.

One instance per configured provider and realm. It owns the resolved
configuration, the provider variant and the client authenticator, and
exposes the broker operations used by the web layer and the CLI.
"""

from __future__ import annotations

import dataclasses
import logging
from typing import TYPE_CHECKING, Any

from fedbroker.broker.authorization import build_authorization_redirect
from fedbroker.broker.callback import CallbackHandler, CallbackOutcome
from fedbroker.broker.client_auth import ClientAuthenticator, TokenRequest
from fedbroker.broker.errors import BrokerError
from fedbroker.broker.exchange import ExchangeOutcome, TokenExchangeRouter
from fedbroker.broker.external import ExternalTokenValidator, ExternalValidationOutcome
from fedbroker.broker.models import (
    EXCHANGE_PROVIDER,
    FEDERATED_ACCESS_TOKEN,
    FEDERATED_ID_TOKEN,
    OAUTH2_GRANT_TYPE_AUTHORIZATION_CODE,
    OAUTH2_PARAMETER_ACCESS_TOKEN,
    OAUTH2_PARAMETER_CODE,
    OAUTH2_PARAMETER_GRANT_TYPE,
    OAUTH2_PARAMETER_REDIRECT_URI,
    SUBJECT_TOKEN,
    VALIDATED_ID_TOKEN,
    AuthenticationRequest,
    ExchangeContext,
    FederatedIdentity,
    ProviderConfig,
    ProviderMessages,
    RealmContext,
)
from fedbroker.core.events import EventBuilder
from fedbroker.core.logging import LoggingClient, get_protocol_logger
from fedbroker.core.vault import EnvironmentVault

if TYPE_CHECKING:
    import httpx
    from cryptography.hazmat.primitives.asymmetric import rsa

    from fedbroker.broker.collaborators import (
        AuthenticationCallback,
        HttpClientFactory,
        SecretVault,
        SessionNotes,
        Signer,
        StoredFederatedIdentity,
        UserStore,
    )
    from fedbroker.core.logging import ProtocolLog, ProtocolLogger
    from fedbroker.providers.base import IdentityResolver

logger = logging.getLogger(__name__)

DEFAULT_HTTP_TIMEOUT = 30.0


def apply_variant_defaults(config: ProviderConfig, resolver_class: type[IdentityResolver]) -> ProviderConfig:
    """Fill an empty default scope and unset messages from the provider variant."""
    changes: dict[str, Any] = {}
    if not config.default_scope and resolver_class.default_scopes:
        changes["default_scope"] = resolver_class.default_scopes
    if resolver_class.default_messages is not None and config.messages == ProviderMessages():
        changes["messages"] = resolver_class.default_messages
    return dataclasses.replace(config, **changes) if changes else config


class OAuth2IdentityProvider:
    """A configured external OAuth2 provider."""

    access_token_response_parameter = OAUTH2_PARAMETER_ACCESS_TOKEN

    def __init__(
        self,
        config: ProviderConfig,
        realm: RealmContext,
        user_store: UserStore,
        vault: SecretVault | None = None,
        resolver: IdentityResolver | None = None,
        signer: Signer | None = None,
        realm_key: rsa.RSAPrivateKey | None = None,
        http_client_factory: HttpClientFactory | None = None,
        protocol_logger: ProtocolLogger | None = None,
        http_timeout: float = DEFAULT_HTTP_TIMEOUT,
    ) -> None:
        """Initialize the provider.

        Args:
            config: Provider configuration. An empty default scope and
                unset messages take the variant's defaults.
            realm: Realm the provider is configured in.
            user_store: Local user and federated-identity persistence.
            vault: Secret vault for the client secret.
            resolver: Provider variant; created from config.provider_type if omitted.
            signer: JWT signer for client assertions and issued tokens.
            realm_key: Realm RSA key for RS256 signatures.
            http_client_factory: Creates the HTTP client for one flow.
            protocol_logger: Protocol logger for HTTP traffic capture.
            http_timeout: Timeout of outgoing requests, in seconds.

        Raises:
            ProviderConfigError: If the provider type is unknown or its
                required endpoints are missing.
        """
        if resolver is None:
            from fedbroker.providers import get_resolver_class

            resolver_class = get_resolver_class(config.provider_type)
            config = apply_variant_defaults(config, resolver_class)
            resolver = resolver_class(config)
        else:
            config = apply_variant_defaults(config, type(resolver))

        self.config = config
        self.realm = realm
        self.resolver = resolver
        self.user_store = user_store
        self.protocol_logger = protocol_logger or get_protocol_logger()
        self.authenticator = ClientAuthenticator(
            config, realm, vault or EnvironmentVault(), signer=signer, realm_key=realm_key
        )
        self._http_client_factory = http_client_factory
        self._http_timeout = http_timeout
        self._validator = ExternalTokenValidator(self)
        self._router = TokenExchangeRouter(self)

    def http_client(self, log: ProtocolLog | None = None) -> httpx.Client:
        """Create the HTTP client for one flow."""
        if self._http_client_factory is not None:
            return self._http_client_factory(log)
        return LoggingClient(
            protocol_logger=self.protocol_logger,
            protocol_log=log,
            timeout=self._http_timeout,
        )

    # Login

    def perform_login(self, request: AuthenticationRequest) -> str:
        """Build the URL to redirect the user agent to.

        Raises:
            BrokerError: If the authorization URL cannot be built.
        """
        try:
            url = build_authorization_redirect(self.config, request, self.realm.default_locale)
        except BrokerError:
            raise
        except Exception as e:
            raise BrokerError("Could not create authentication request.") from e
        logger.info(f"Redirecting broker login to provider {self.config.alias}")
        return url

    def generate_token_request(self, code: str) -> TokenRequest:
        """Authorization-code token request, with client authentication."""
        request = (
            TokenRequest(self.config.token_url)
            .param(OAUTH2_PARAMETER_CODE, code)
            .param(OAUTH2_PARAMETER_REDIRECT_URI, self.realm.broker_endpoint(self.config.alias))
            .param(OAUTH2_PARAMETER_GRANT_TYPE, OAUTH2_GRANT_TYPE_AUTHORIZATION_CODE)
        )
        return self.authenticator.authenticate_token_request(request)

    def callback(
        self,
        callback: AuthenticationCallback | None = None,
        event: EventBuilder | None = None,
    ) -> CallbackHandler:
        """Create the handler for one authorization callback."""
        return CallbackHandler(self, callback, event)

    def handle_callback(
        self,
        state: str | None,
        code: str | None = None,
        error: str | None = None,
        *,
        expected_state: str | None = None,
        require_state: bool = False,
        callback: AuthenticationCallback | None = None,
        event: EventBuilder | None = None,
    ) -> CallbackOutcome:
        return self.callback(callback, event).handle_callback(state, code, error, expected_state, require_state)

    def retrieve_token(self, identity: StoredFederatedIdentity) -> str | None:
        """Stored raw token response of a federated identity."""
        return identity.token

    def authentication_finished(self, session: SessionNotes, identity: FederatedIdentity) -> None:
        """Cache the provider access token on the new user session."""
        token = identity.context_data.get(FEDERATED_ACCESS_TOKEN)
        if token is not None:
            session.set_note(FEDERATED_ACCESS_TOKEN, token)

    # Token exchange

    def exchange_from_token(self, context: ExchangeContext, event: EventBuilder | None = None) -> ExchangeOutcome:
        """Exchange a local session for this provider's token."""
        return self._router.exchange_token(context, event)

    def is_issuer(self, issuer: str | None, params: dict[str, str]) -> bool:
        return self._validator.is_issuer(issuer, params)

    def validate_external_token(
        self,
        subject_token: str | None,
        subject_token_type: str | None = None,
        event: EventBuilder | None = None,
    ) -> ExternalValidationOutcome:
        return self._validator.validate_external_token(subject_token, subject_token_type, event)

    def exchange_external(self, event: EventBuilder, params: dict[str, str]) -> FederatedIdentity | None:
        """Validate an external subject token and return its identity.

        Returns:
            The identity, or None if this provider does not support
            external exchange.

        Raises:
            InvalidTokenError: If the subject token is rejected.
        """
        if not self.resolver.supports_external_exchange:
            return None
        identity = self._validator.validate_params(event, params)
        identity.provider = self
        identity.provider_config = self.config
        identity.provider_alias = self.config.alias
        return identity

    def exchange_external_complete(
        self,
        session: SessionNotes,
        identity: FederatedIdentity,
        params: dict[str, str],
    ) -> None:
        """Mark a session created by an external exchange."""
        subject_token = params.get(SUBJECT_TOKEN)
        if subject_token is not None:
            if FEDERATED_ACCESS_TOKEN in identity.context_data:
                session.set_note(FEDERATED_ACCESS_TOKEN, subject_token)
            if VALIDATED_ID_TOKEN in identity.context_data:
                session.set_note(FEDERATED_ID_TOKEN, subject_token)
        session.set_note(EXCHANGE_PROVIDER, self.config.alias)
