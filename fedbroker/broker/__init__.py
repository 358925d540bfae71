"""OAuth2 federation broker: login delegation, callback and token exchange."""

from fedbroker.broker.callback import CallbackHandler, CallbackOutcome, CallbackStatus
from fedbroker.broker.client_auth import ClientAuthenticator, JWTSigner, TokenRequest
from fedbroker.broker.errors import (
    BrokerError,
    CredentialError,
    ErrorResponseError,
    ExtractionError,
    InvalidTokenError,
    LinkageError,
    ProtocolError,
    ProviderConfigError,
    TransportError,
    UnsupportedRequestError,
)
from fedbroker.broker.exchange import ExchangeOutcome, ExchangeStatus, TokenExchangeRouter
from fedbroker.broker.external import (
    ExternalTokenValidator,
    ExternalValidationOutcome,
    ExternalValidationStatus,
)
from fedbroker.broker.models import (
    AuthenticationRequest,
    ClientAuthMethod,
    ClientInfo,
    ExchangeContext,
    FederatedIdentity,
    ProviderConfig,
    ProviderMessages,
    RealmContext,
    TokenResponse,
)
from fedbroker.broker.provider import OAuth2IdentityProvider
from fedbroker.broker.tokens import ProfileField, ProfileMapping, extract_token

__all__ = [
    # Provider
    "OAuth2IdentityProvider",
    # Callback
    "CallbackHandler",
    "CallbackOutcome",
    "CallbackStatus",
    # Client authentication
    "ClientAuthenticator",
    "JWTSigner",
    "TokenRequest",
    # Exchange
    "ExchangeOutcome",
    "ExchangeStatus",
    "TokenExchangeRouter",
    "ExternalTokenValidator",
    "ExternalValidationOutcome",
    "ExternalValidationStatus",
    # Models
    "AuthenticationRequest",
    "ClientAuthMethod",
    "ClientInfo",
    "ExchangeContext",
    "FederatedIdentity",
    "ProviderConfig",
    "ProviderMessages",
    "RealmContext",
    "TokenResponse",
    # Tokens
    "ProfileField",
    "ProfileMapping",
    "extract_token",
    # Errors
    "BrokerError",
    "CredentialError",
    "ErrorResponseError",
    "ExtractionError",
    "InvalidTokenError",
    "LinkageError",
    "ProtocolError",
    "ProviderConfigError",
    "TransportError",
    "UnsupportedRequestError",
]
