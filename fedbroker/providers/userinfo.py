"""Generic OAuth2 provider variant backed by a userinfo endpoint."""

from __future__ import annotations

import json
from typing import Any

import httpx

from fedbroker.broker.errors import ProtocolError, ProviderConfigError
from fedbroker.broker.models import FederatedIdentity, ProviderConfig
from fedbroker.broker.tokens import ProfileField, ProfileMapping
from fedbroker.providers.base import IdentityResolver, execute_request

DEFAULT_SCOPE = "openid"


class UserInfoIdentityResolver(IdentityResolver):
    """Reads standard OIDC claims from a userinfo endpoint.

    Also able to validate foreign access tokens by presenting them to the
    same endpoint, when the provider is configured to allow it.
    """

    provider_type = "userinfo"
    default_scopes = DEFAULT_SCOPE
    profile_mapping = ProfileMapping(
        (
            ProfileField("subject", "/sub", required=True),
            ProfileField("username", "/preferred_username"),
            ProfileField("first_name", "/given_name"),
            ProfileField("last_name", "/family_name"),
            ProfileField("email", "/email"),
        )
    )

    def __init__(self, config: ProviderConfig) -> None:
        if not config.userinfo_url:
            raise ProviderConfigError(f"Provider '{config.alias}' requires a userinfo_url")
        super().__init__(config)
        if config.require_name_claims:
            self.mapping = self.mapping.with_required({"first_name", "last_name"})

    @property
    def supports_external_exchange(self) -> bool:
        return self.config.supports_external_exchange

    def fetch_identity(self, client: httpx.Client, access_token: str) -> FederatedIdentity:
        response = execute_request(
            client,
            "GET",
            self.config.userinfo_url,
            headers={"Authorization": f"Bearer {access_token}", "Accept": "application/json"},
        )
        identity = self.identity_from_mapped(self.map_profile(response.text))
        if not identity.external_user_id:
            raise ProtocolError("Userinfo response has no subject")
        return identity

    def profile_endpoint_for_validation(self) -> str | None:
        return self.config.userinfo_url

    def extract_identity_from_profile(self, profile: dict[str, Any]) -> FederatedIdentity:
        # Missing fields are left unset; the caller decides whether the
        # identity is usable.
        mapped = self.mapping.apply(profile)
        identity = self.identity_from_mapped(mapped)
        identity.context_data["profile"] = json.dumps(profile)
        return identity
