"""Provider CLI commands."""

from __future__ import annotations

import secrets
from pathlib import Path

import click

from fedbroker.cli.config import config_option, error_result, json_option, output_result


@click.group()
def providers() -> None:
    """Inspect configured identity providers."""
    pass


@providers.command("list")
@config_option
@click.option(
    "--types",
    "show_types",
    is_flag=True,
    help="List the available provider types instead of configured providers.",
)
@json_option
def providers_list(config_path: Path | None, show_types: bool, output_json: bool) -> None:
    """List configured providers.

    Each provider is resolved with environment overrides applied, so
    configuration errors show up here before the server starts.
    """
    from fedbroker.broker.errors import ProviderConfigError
    from fedbroker.core.config import load_config
    from fedbroker.providers import get_resolver_class, list_presets

    if show_types:
        presets = list_presets()
        if output_json:
            output_result(presets, as_json=True)
            return
        for preset in presets:
            click.echo(f"{preset['id']}: {preset['name']}")
            click.echo(f"  {preset['description']}")
            click.echo(f"  Requires: {', '.join(preset['requires'])}")
            click.echo(f"  Default scope: {preset['default_scope']}")
        return

    app_config = load_config(config_path)
    results = []
    for alias in app_config.provider_aliases():
        try:
            provider_config = app_config.get_provider_config(alias)
            get_resolver_class(provider_config.provider_type)(provider_config)
        except ProviderConfigError as e:
            results.append({"alias": alias, "status": "invalid", "error": str(e)})
            continue
        results.append({"alias": alias, "status": "ok", **provider_config.to_dict()})

    if output_json:
        output_result(results, as_json=True)
        return

    if not results:
        click.echo("No providers configured.")
        return

    for result in results:
        if result["status"] != "ok":
            click.echo(f"{result['alias']}: INVALID - {result['error']}")
            continue
        click.echo(f"{result['alias']} ({result['provider_type']})")
        click.echo(f"  Client ID: {result['client_id']}")
        click.echo(f"  Token URL: {result['token_url']}")
        click.echo(f"  Client auth: {result['client_auth_method']}")
        click.echo(f"  Store token: {result['store_token']}")
        if result["tenants"]:
            click.echo(f"  Tenant secrets: {', '.join(result['tenants'])}")


@providers.command("authorize-url")
@click.argument("alias")
@config_option
@click.option("--state", help="State parameter (random if omitted)")
@click.option("--login-hint", help="Login hint to relay")
@click.option("--prompt", help="Prompt value to relay")
@click.option("--acr-values", help="ACR values to relay")
@click.option(
    "--param",
    "extra_params",
    multiple=True,
    help="Extra login parameter as NAME=VALUE; sent only if NAME is in forward_parameters",
)
@json_option
def providers_authorize_url(
    alias: str,
    config_path: Path | None,
    state: str | None,
    login_hint: str | None,
    prompt: str | None,
    acr_values: str | None,
    extra_params: tuple[str, ...],
    output_json: bool,
) -> None:
    """Print the authorization URL a login with ALIAS would redirect to.

    Examples:

        fedbroker providers authorize-url edevlet --state s1

        fedbroker providers authorize-url example --param audience=api
    """
    from fedbroker.broker.authorization import build_authorization_redirect
    from fedbroker.broker.errors import BrokerError
    from fedbroker.broker.models import (
        ACR_VALUES_PARAM,
        ADDITIONAL_REQ_PARAMS_PREFIX,
        LOGIN_HINT_PARAM,
        PROMPT_PARAM,
        AuthenticationRequest,
    )
    from fedbroker.broker.provider import apply_variant_defaults
    from fedbroker.core.config import load_config
    from fedbroker.providers import get_resolver_class

    app_config = load_config(config_path)
    realm = app_config.realm.to_context()

    notes: dict[str, str] = {}
    for name, value in ((LOGIN_HINT_PARAM, login_hint), (PROMPT_PARAM, prompt), (ACR_VALUES_PARAM, acr_values)):
        if value:
            notes[name] = value
    for item in extra_params:
        name, sep, value = item.partition("=")
        if not sep or not name:
            error_result(f"Invalid --param '{item}', expected NAME=VALUE", output_json)
        notes[ADDITIONAL_REQ_PARAMS_PREFIX + name] = value

    request = AuthenticationRequest(
        state=state or secrets.token_urlsafe(24),
        redirect_uri=realm.broker_endpoint(alias),
        client_notes=notes,
    )

    try:
        provider_config = app_config.get_provider_config(alias)
        provider_config = apply_variant_defaults(
            provider_config, get_resolver_class(provider_config.provider_type)
        )
        url = build_authorization_redirect(provider_config, request, realm.default_locale)
    except BrokerError as e:
        error_result(str(e), output_json)

    if output_json:
        output_result({"alias": alias, "state": request.state, "url": url}, as_json=True)
    else:
        click.echo(url)
