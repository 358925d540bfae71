"""Authorization request construction.

Builds the URL the user agent is redirected to at the external
authorization endpoint.
"""

from __future__ import annotations

from urllib.parse import quote, urlencode, urlsplit, urlunsplit

from fedbroker.broker.errors import BrokerError
from fedbroker.broker.models import (
    ACR_VALUES_PARAM,
    ADDITIONAL_REQ_PARAMS_PREFIX,
    LOGIN_HINT_PARAM,
    OAUTH2_PARAMETER_CLIENT_ID,
    OAUTH2_PARAMETER_REDIRECT_URI,
    OAUTH2_PARAMETER_RESPONSE_TYPE,
    OAUTH2_PARAMETER_SCOPE,
    OAUTH2_PARAMETER_STATE,
    PROMPT_PARAM,
    UI_LOCALES_PARAM,
    AuthenticationRequest,
    ProviderConfig,
)


def build_authorization_params(
    config: ProviderConfig,
    request: AuthenticationRequest,
    default_locale: str = "en",
) -> list[tuple[str, str]]:
    """Collect the query parameters of an authorization request, in order."""
    params: list[tuple[str, str]] = [
        (OAUTH2_PARAMETER_SCOPE, config.default_scope),
        (OAUTH2_PARAMETER_STATE, request.state),
        (OAUTH2_PARAMETER_RESPONSE_TYPE, "code"),
        (OAUTH2_PARAMETER_CLIENT_ID, config.client_id),
        (OAUTH2_PARAMETER_REDIRECT_URI, request.redirect_uri),
    ]

    login_hint = request.get_client_note(LOGIN_HINT_PARAM)
    if config.login_hint and login_hint is not None:
        params.append((LOGIN_HINT_PARAM, login_hint))

    if config.ui_locales:
        params.append((UI_LOCALES_PARAM, request.locale or default_locale))

    prompt = config.prompt or request.get_client_note(PROMPT_PARAM)
    if prompt is not None:
        params.append((PROMPT_PARAM, prompt))

    acr = request.get_client_note(ACR_VALUES_PARAM)
    if acr is not None:
        params.append((ACR_VALUES_PARAM, acr))

    for name in config.forward_parameters:
        value = request.get_client_note(ADDITIONAL_REQ_PARAMS_PREFIX + name)
        if value:
            params.append((name, value))

    return params


def build_authorization_redirect(
    config: ProviderConfig,
    request: AuthenticationRequest,
    default_locale: str = "en",
) -> str:
    """Build the redirect URL for the external authorization endpoint.

    Args:
        config: Provider configuration.
        request: The login being delegated.
        default_locale: Locale used for ui_locales when the request has none.

    Returns:
        Absolute authorization URL.

    Raises:
        BrokerError: If the configured authorization URL is malformed.
    """
    try:
        parts = urlsplit(config.authorization_url)
    except ValueError as e:
        raise BrokerError("Could not create authentication request.") from e

    if parts.scheme not in ("http", "https") or not parts.netloc:
        raise BrokerError(
            f"Could not create authentication request. "
            f"Invalid authorization URL for provider '{config.alias}': {config.authorization_url!r}"
        )

    query = urlencode(build_authorization_params(config, request, default_locale), quote_via=quote)
    if parts.query:
        query = f"{parts.query}&{query}"

    return urlunsplit((parts.scheme, parts.netloc, parts.path, query, parts.fragment))
