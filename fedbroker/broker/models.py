"""Data model for the federation broker.

Provider configuration, per-login authentication requests, token
responses, federated identities and token-exchange requests.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

# OAuth2 parameter names
OAUTH2_PARAMETER_ACCESS_TOKEN = "access_token"
OAUTH2_PARAMETER_SCOPE = "scope"
OAUTH2_PARAMETER_STATE = "state"
OAUTH2_PARAMETER_RESPONSE_TYPE = "response_type"
OAUTH2_PARAMETER_REDIRECT_URI = "redirect_uri"
OAUTH2_PARAMETER_CODE = "code"
OAUTH2_PARAMETER_CLIENT_ID = "client_id"
OAUTH2_PARAMETER_CLIENT_SECRET = "client_secret"
OAUTH2_PARAMETER_GRANT_TYPE = "grant_type"
OAUTH2_GRANT_TYPE_AUTHORIZATION_CODE = "authorization_code"

LOGIN_HINT_PARAM = "login_hint"
UI_LOCALES_PARAM = "ui_locales"
PROMPT_PARAM = "prompt"
ACR_VALUES_PARAM = "acr_values"

# Client notes holding extra parameters of the original login request
ADDITIONAL_REQ_PARAMS_PREFIX = "client_request_param_"

# RFC 8693 token types and parameters
ACCESS_TOKEN_TYPE = "urn:ietf:params:oauth:token-type:access_token"
ID_TOKEN_TYPE = "urn:ietf:params:oauth:token-type:id_token"
REFRESH_TOKEN_TYPE = "urn:ietf:params:oauth:token-type:refresh_token"
TOKEN_EXCHANGE_GRANT_TYPE = "urn:ietf:params:oauth:grant-type:token-exchange"
REQUESTED_TOKEN_TYPE = "requested_token_type"
REQUESTED_ISSUER = "requested_issuer"
SUBJECT_TOKEN = "subject_token"
SUBJECT_TOKEN_TYPE = "subject_token_type"
SUBJECT_ISSUER = "subject_issuer"
ISSUED_TOKEN_TYPE = "issued_token_type"
ACCOUNT_LINK_URL = "account-link-url"

CLIENT_ASSERTION_TYPE = "client_assertion_type"
CLIENT_ASSERTION = "client_assertion"
CLIENT_ASSERTION_TYPE_JWT = "urn:ietf:params:oauth:client-assertion-type:jwt-bearer"

# User-session notes
FEDERATED_ACCESS_TOKEN = "FEDERATED_ACCESS_TOKEN"
FEDERATED_ID_TOKEN = "FEDERATED_ID_TOKEN"
EXCHANGE_PROVIDER = "EXCHANGE_PROVIDER"
IDENTITY_PROVIDER_NOTE = "identity_provider"
EXTERNAL_IDENTITY_PROVIDER = "EXTERNAL_IDENTITY_PROVIDER"

# Stored token value of a link whose token was cleared after it stopped
# yielding an access token; None means no token was ever stored
CLEARED_TOKEN = ""

# Identity context data keys
FEDERATED_ACCESS_TOKEN_RESPONSE = "FEDERATED_ACCESS_TOKEN_RESPONSE"
VALIDATED_ID_TOKEN = "VALIDATED_ID_TOKEN"


class ClientAuthMethod(StrEnum):
    """How the broker authenticates itself at the token endpoint."""

    CLIENT_SECRET_POST = "client_secret_post"
    CLIENT_SECRET_BASIC = "client_secret_basic"
    CLIENT_SECRET_JWT = "client_secret_jwt"
    PRIVATE_KEY_JWT = "private_key_jwt"


_FORWARD_SPLIT = re.compile(r"\s*,\s*")


def parse_forward_parameters(value: str | list[str] | tuple[str, ...] | None) -> tuple[str, ...]:
    """Parse a comma-separated list of parameter names, keeping order."""
    if not value:
        return ()
    items = _FORWARD_SPLIT.split(value.strip()) if isinstance(value, str) else list(value)
    names: list[str] = []
    for item in items:
        name = item.strip()
        if name and name not in names:
            names.append(name)
    return tuple(names)


@dataclass(frozen=True)
class ProviderMessages:
    """User-facing messages shown when a broker login fails."""

    login_failed: str = "Login with the identity provider failed."
    profile_unavailable: str = "Could not retrieve user data from the identity provider."
    unexpected_error: str = "Unexpected error when authenticating with the identity provider."

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> ProviderMessages:
        if not data:
            return cls()
        defaults = cls()
        return cls(
            login_failed=data.get("login_failed", defaults.login_failed),
            profile_unavailable=data.get("profile_unavailable", defaults.profile_unavailable),
            unexpected_error=data.get("unexpected_error", defaults.unexpected_error),
        )


@dataclass(frozen=True)
class ProviderConfig:
    """Configuration of one external provider instance.

    Immutable for the lifetime of a flow. Secret values here are the
    configured values or vault references; they are resolved through the
    vault on each outgoing request.
    """

    alias: str
    client_id: str
    authorization_url: str = ""
    token_url: str = ""
    provider_type: str = "userinfo"
    client_secret: str | None = None
    default_scope: str = ""
    store_token: bool = False
    jwt_authentication: bool = False
    basic_authentication: bool = False
    client_auth_method: str = ClientAuthMethod.CLIENT_SECRET_POST
    login_hint: bool = False
    ui_locales: bool = False
    prompt: str | None = None
    create_user: bool = False
    forward_parameters: tuple[str, ...] = ()
    tenant_secrets: dict[str, str] = field(default_factory=dict, hash=False, compare=False)
    profile_url: str | None = None
    userinfo_url: str | None = None
    require_name_claims: bool = False
    supports_external_exchange: bool = False
    profile_fields: dict[str, str] = field(default_factory=dict, hash=False, compare=False)
    messages: ProviderMessages = field(default_factory=ProviderMessages)

    def secret_for(self, tenant: str | None) -> str | None:
        """Select the client secret for a tenant, falling back to the default."""
        if tenant and tenant in self.tenant_secrets:
            return self.tenant_secrets[tenant]
        return self.client_secret

    @classmethod
    def from_dict(cls, alias: str, data: dict[str, Any]) -> ProviderConfig:
        """Create ProviderConfig from a dictionary of provider settings."""
        jwt_authentication = bool(data.get("jwt_authentication", False))
        basic_authentication = bool(data.get("basic_authentication", False))

        method = data.get("client_auth_method")
        if not method:
            if jwt_authentication:
                method = ClientAuthMethod.CLIENT_SECRET_JWT
            elif basic_authentication:
                method = ClientAuthMethod.CLIENT_SECRET_BASIC
            else:
                method = ClientAuthMethod.CLIENT_SECRET_POST

        return cls(
            alias=alias,
            client_id=data.get("client_id", ""),
            authorization_url=data.get("authorization_url", ""),
            token_url=data.get("token_url", ""),
            provider_type=data.get("provider_type", "userinfo"),
            client_secret=data.get("client_secret") or None,
            default_scope=data.get("default_scope") or "",
            store_token=bool(data.get("store_token", False)),
            jwt_authentication=jwt_authentication,
            basic_authentication=basic_authentication,
            client_auth_method=str(method),
            login_hint=bool(data.get("login_hint", False)),
            ui_locales=bool(data.get("ui_locales", False)),
            prompt=data.get("prompt") or None,
            create_user=bool(data.get("create_user", False)),
            forward_parameters=parse_forward_parameters(data.get("forward_parameters")),
            tenant_secrets={str(k): str(v) for k, v in (data.get("tenant_secrets") or {}).items()},
            profile_url=data.get("profile_url") or None,
            userinfo_url=data.get("userinfo_url") or None,
            require_name_claims=bool(data.get("require_name_claims", False)),
            supports_external_exchange=bool(data.get("supports_external_exchange", False)),
            profile_fields={str(k): str(v) for k, v in (data.get("profile_fields") or {}).items()},
            messages=ProviderMessages.from_dict(data.get("messages")),
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for display, with secrets masked."""
        return {
            "alias": self.alias,
            "provider_type": self.provider_type,
            "authorization_url": self.authorization_url,
            "token_url": self.token_url,
            "client_id": self.client_id,
            "client_secret": "********" if self.client_secret else None,
            "default_scope": self.default_scope,
            "store_token": self.store_token,
            "jwt_authentication": self.jwt_authentication,
            "basic_authentication": self.basic_authentication,
            "client_auth_method": self.client_auth_method,
            "login_hint": self.login_hint,
            "ui_locales": self.ui_locales,
            "prompt": self.prompt,
            "create_user": self.create_user,
            "forward_parameters": ",".join(self.forward_parameters),
            "tenants": sorted(self.tenant_secrets),
            "profile_url": self.profile_url,
            "userinfo_url": self.userinfo_url,
            "require_name_claims": self.require_name_claims,
            "supports_external_exchange": self.supports_external_exchange,
            "profile_fields": dict(self.profile_fields),
        }


@dataclass(frozen=True)
class RealmContext:
    """The tenant the broker is running in for the current request."""

    name: str
    base_url: str
    access_code_lifespan: int = 60
    default_locale: str = "en"

    @property
    def realm_url(self) -> str:
        return f"{self.base_url.rstrip('/')}/realms/{self.name}"

    def broker_endpoint(self, alias: str) -> str:
        """Redirect URI the external provider sends the user back to."""
        return f"{self.realm_url}/broker/{alias}/endpoint"

    def broker_link_endpoint(self, alias: str) -> str:
        return f"{self.realm_url}/broker/{alias}/link"


@dataclass
class AuthenticationRequest:
    """State of one login that is being delegated to a provider."""

    state: str
    redirect_uri: str
    client_notes: dict[str, str] = field(default_factory=dict)
    locale: str | None = None

    def get_client_note(self, name: str) -> str | None:
        return self.client_notes.get(name)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for session storage."""
        return {
            "state": self.state,
            "redirect_uri": self.redirect_uri,
            "client_notes": dict(self.client_notes),
            "locale": self.locale,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> AuthenticationRequest:
        """Reconstruct from dictionary."""
        return cls(
            state=data["state"],
            redirect_uri=data.get("redirect_uri", ""),
            client_notes=dict(data.get("client_notes") or {}),
            locale=data.get("locale"),
        )


@dataclass
class TokenResponse:
    """An OAuth2 token response, received or synthesized."""

    access_token: str | None = None
    id_token: str | None = None
    refresh_token: str | None = None
    expires_in: int | None = None
    refresh_expires_in: int | None = None
    token_type: str | None = None
    issued_token_type: str | None = None
    session_state: str | None = None
    scope: str | None = None
    other_claims: dict[str, Any] = field(default_factory=dict)

    @property
    def is_success(self) -> bool:
        """A response is only usable if it carries an access or an id token."""
        return bool(self.access_token) or bool(self.id_token)

    def to_dict(self) -> dict[str, Any]:
        """Wire shape; unset optional fields are omitted."""
        data: dict[str, Any] = {
            "access_token": self.access_token,
            "id_token": self.id_token,
            "refresh_token": self.refresh_token,
            "expires_in": self.expires_in,
            "refresh_expires_in": self.refresh_expires_in,
            "token_type": self.token_type,
            "issued_token_type": self.issued_token_type,
            "session_state": self.session_state,
            "scope": self.scope,
        }
        data = {k: v for k, v in data.items() if v is not None}
        data.update(self.other_claims)
        return data

    def to_json(self) -> str:
        return json.dumps(self.to_dict())


@dataclass
class FederatedIdentity:
    """A user as asserted by an external provider.

    Built by the callback after a successful code exchange, or by
    external-token validation.
    """

    external_user_id: str | None
    username: str | None = None
    first_name: str | None = None
    last_name: str | None = None
    email: str | None = None
    provider_alias: str | None = None
    token: str | None = None
    code: str | None = None
    user_id: str | None = None
    provider_config: ProviderConfig | None = None
    provider: Any = None
    context_data: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary, without tokens."""
        return {
            "external_user_id": self.external_user_id,
            "username": self.username,
            "first_name": self.first_name,
            "last_name": self.last_name,
            "email": self.email,
            "provider_alias": self.provider_alias,
            "user_id": self.user_id,
            "has_token": self.token is not None,
        }


@dataclass
class ClientInfo:
    """The local client that asked for a token exchange."""

    client_id: str
    realm: str


@dataclass
class ExchangeContext:
    """An incoming token-exchange request for an already-federated user."""

    requesting_client: ClientInfo
    target_user_session: Any
    target_user: Any
    requested_token_type: str | None = None
    subject_token: str | None = None
    subject_token_type: str | None = None
    params: dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_params(
        cls,
        params: dict[str, str],
        requesting_client: ClientInfo,
        target_user_session: Any,
        target_user: Any,
    ) -> ExchangeContext:
        """Build a context from token-endpoint form parameters."""
        return cls(
            requesting_client=requesting_client,
            target_user_session=target_user_session,
            target_user=target_user,
            requested_token_type=params.get(REQUESTED_TOKEN_TYPE) or None,
            subject_token=params.get(SUBJECT_TOKEN) or None,
            subject_token_type=params.get(SUBJECT_TOKEN_TYPE) or None,
            params=dict(params),
        )
