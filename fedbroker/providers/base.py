"""Capability interface implemented by concrete provider variants.

A variant knows how to turn a provider access token into an identity
(profile lookup after the code exchange) and, optionally, how to validate
a token issued by another system through a profile endpoint.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, ClassVar

import httpx

from fedbroker.broker.errors import ProtocolError, TransportError, UnsupportedRequestError
from fedbroker.broker.models import FederatedIdentity, ProviderConfig, ProviderMessages
from fedbroker.broker.tokens import ProfileField, ProfileMapping, parse_json_document

if TYPE_CHECKING:
    from fedbroker.broker.tokens import MappedProfile

logger = logging.getLogger(__name__)


def execute_request(client: httpx.Client, method: str, url: str, **kwargs: Any) -> httpx.Response:
    """Send a request and require a 200 answer.

    Raises:
        TransportError: On network failure or any status other than 200.
    """
    try:
        response = client.request(method, url, **kwargs)
    except httpx.HTTPError as e:
        raise TransportError(f"Failed to invoke url [{url}]: {e}", url=url) from e

    if response.status_code != 200:
        raise TransportError(
            f"Failed to invoke url [{url}]: status {response.status_code}",
            url=url,
            status=response.status_code,
        )
    return response


class IdentityResolver:
    """Base for provider variants.

    Subclasses set ``provider_type``, ``default_scopes`` and
    ``profile_mapping`` and implement ``fetch_identity``. Variants that can
    validate foreign tokens override ``profile_endpoint_for_validation``.
    """

    provider_type: ClassVar[str] = ""
    default_scopes: ClassVar[str] = ""
    default_messages: ClassVar[ProviderMessages | None] = None
    profile_mapping: ClassVar[ProfileMapping] = ProfileMapping(())

    def __init__(self, config: ProviderConfig) -> None:
        self.config = config
        self.mapping = self._build_mapping(config)

    def _build_mapping(self, config: ProviderConfig) -> ProfileMapping:
        overrides = config.profile_fields
        if not overrides:
            return self.profile_mapping
        return ProfileMapping(
            tuple(
                ProfileField(f.name, overrides.get(f.name, f.path), f.required)
                for f in self.profile_mapping.fields
            )
        )

    @property
    def supports_external_exchange(self) -> bool:
        return False

    def fetch_identity(self, client: httpx.Client, access_token: str) -> FederatedIdentity:
        """Look up the identity behind a provider access token.

        Raises:
            TransportError: If the profile endpoint fails.
            ProtocolError: If the profile lacks the subject identifier or a
                required attribute.
        """
        raise NotImplementedError

    def profile_endpoint_for_validation(self) -> str | None:
        """URL used to validate foreign tokens, or None if unsupported."""
        return None

    def extract_identity_from_profile(self, profile: dict[str, Any]) -> FederatedIdentity:
        """Map a profile document onto an identity."""
        raise UnsupportedRequestError(f"Provider type '{self.provider_type}' cannot map external profiles")

    def map_profile(self, body: str) -> MappedProfile:
        """Parse a profile body once and apply the field mapping.

        Raises:
            ProtocolError: If the body is not JSON or required fields are missing.
        """
        mapped = self.mapping.apply(parse_json_document(body))
        if not mapped.complete:
            raise ProtocolError(
                f"Profile from provider '{self.config.alias}' is missing required fields: "
                f"{', '.join(mapped.missing)}"
            )
        return mapped

    def identity_from_mapped(self, mapped: MappedProfile) -> FederatedIdentity:
        subject = mapped.get("subject")
        return FederatedIdentity(
            external_user_id=subject,
            username=mapped.get("username") or subject,
            first_name=mapped.get("first_name"),
            last_name=mapped.get("last_name"),
            email=mapped.get("email"),
            provider_alias=self.config.alias,
        )
