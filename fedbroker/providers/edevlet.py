"""e-Devlet (Turkish government gateway) provider variant.

The gateway has no OIDC userinfo endpoint. After the code exchange the
broker POSTs the access token to a profile service, which answers with
the citizen's national identity number and, depending on the granted
scope, first and last name.
"""

from __future__ import annotations

import httpx

from fedbroker.broker.errors import ProtocolError, ProviderConfigError
from fedbroker.broker.models import FederatedIdentity, ProviderConfig, ProviderMessages
from fedbroker.broker.tokens import ProfileField, ProfileMapping
from fedbroker.providers.base import IdentityResolver, execute_request

DEFAULT_SCOPE = "Temel-Bilgileri"

# The gateway exposes a single resource for basic identity data
PROFILE_RESOURCE_ID = "1"

EDEVLET_MESSAGES = ProviderMessages(
    login_failed="e-Devlet girişi başarısız.",
    profile_unavailable="e-Devlet kullanıcı bilgileri alınamadı.",
    unexpected_error="e-Devlet kullanıcı bilgileri alınamadı.",
)


class EDevletIdentityResolver(IdentityResolver):
    """Resolves identities through the e-Devlet profile service."""

    provider_type = "edevlet"
    default_scopes = DEFAULT_SCOPE
    default_messages = EDEVLET_MESSAGES
    profile_mapping = ProfileMapping(
        (
            ProfileField("subject", "/kimlikNo", required=True),
            ProfileField("first_name", "/ad"),
            ProfileField("last_name", "/soyad"),
        )
    )

    def __init__(self, config: ProviderConfig) -> None:
        if not config.profile_url:
            raise ProviderConfigError(f"Provider '{config.alias}' requires a profile_url")
        super().__init__(config)
        if config.require_name_claims:
            self.mapping = self.mapping.with_required({"first_name", "last_name"})

    def fetch_identity(self, client: httpx.Client, access_token: str) -> FederatedIdentity:
        response = execute_request(
            client,
            "POST",
            self.config.profile_url,
            data={
                "accessToken": access_token,
                "clientId": self.config.client_id,
                "resourceId": PROFILE_RESOURCE_ID,
                "kapsam": self.config.default_scope or DEFAULT_SCOPE,
            },
            headers={"Accept": "application/json"},
        )

        mapped = self.map_profile(response.text)
        identity = self.identity_from_mapped(mapped)
        if not identity.external_user_id:
            raise ProtocolError("Profile response has no identity number")
        return identity
