"""Provider variants.

Available variants:
- edevlet: e-Devlet gateway with a POST profile service
- userinfo: generic OAuth2 provider with a userinfo endpoint
"""

from __future__ import annotations

from fedbroker.broker.errors import ProviderConfigError
from fedbroker.broker.models import ProviderConfig
from fedbroker.providers.base import IdentityResolver, execute_request
from fedbroker.providers.edevlet import EDEVLET_MESSAGES, EDevletIdentityResolver
from fedbroker.providers.userinfo import UserInfoIdentityResolver

__all__ = [
    "IdentityResolver",
    "execute_request",
    "EDevletIdentityResolver",
    "UserInfoIdentityResolver",
    "EDEVLET_MESSAGES",
    "PRESETS",
    "get_preset_info",
    "list_presets",
    "get_resolver_class",
    "create_resolver",
]


# Registry of available provider variants
PRESETS = {
    "edevlet": {
        "name": "e-Devlet",
        "description": "Turkish e-Government gateway with profile service lookup",
        "resolver": EDevletIdentityResolver,
        "requires": ["client_id", "authorization_url", "token_url", "profile_url"],
        "default_scope": EDevletIdentityResolver.default_scopes,
        "external_exchange": False,
    },
    "userinfo": {
        "name": "OAuth2 userinfo",
        "description": "Generic OAuth2 provider with an OIDC-style userinfo endpoint",
        "resolver": UserInfoIdentityResolver,
        "requires": ["client_id", "authorization_url", "token_url", "userinfo_url"],
        "default_scope": UserInfoIdentityResolver.default_scopes,
        "external_exchange": True,
    },
}


def get_preset_info(provider_type: str) -> dict | None:
    """Get information about a provider variant.

    Args:
        provider_type: Name of the variant (e.g., 'edevlet').

    Returns:
        Variant information dict or None if not found.
    """
    return PRESETS.get(provider_type.lower())


def list_presets() -> list[dict]:
    """List all available provider variants, without resolver classes."""
    return [
        {"id": k, **{key: value for key, value in v.items() if key != "resolver"}}
        for k, v in PRESETS.items()
    ]


def get_resolver_class(provider_type: str) -> type[IdentityResolver]:
    """Look up the resolver class of a provider variant.

    Raises:
        ProviderConfigError: If the variant is unknown.
    """
    info = get_preset_info(provider_type)
    if info is None:
        raise ProviderConfigError(
            f"Unknown provider type '{provider_type}'. Available: {', '.join(PRESETS)}"
        )
    return info["resolver"]


def create_resolver(config: ProviderConfig) -> IdentityResolver:
    """Instantiate the resolver for a provider configuration."""
    return get_resolver_class(config.provider_type)(config)
