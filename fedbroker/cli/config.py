"""Configuration management CLI commands."""

from __future__ import annotations

import json
import sys
from pathlib import Path
from typing import Any, NoReturn

import click
import yaml

# Common option for JSON output
json_option = click.option(
    "--json",
    "output_json",
    is_flag=True,
    help="Output results as JSON for scripting",
)

config_option = click.option(
    "--config",
    "config_path",
    type=click.Path(path_type=Path),  # type: ignore[type-var]
    help="Path to config.yaml (default: FEDBROKER_CONFIG or ~/.fedbroker/config.yaml)",
)


def output_result(data: dict[str, Any] | list[Any], as_json: bool = False) -> None:
    """Output result as JSON.

    Args:
        data: Data to output
        as_json: If True, output as JSON
    """
    if as_json:
        click.echo(json.dumps(data, indent=2, default=str))


def error_result(message: str, as_json: bool = False) -> NoReturn:
    """Output error message and exit.

    This function never returns - it either raises ClickException or calls sys.exit.
    """
    if as_json:
        click.echo(json.dumps({"error": message}, indent=2), err=True)
        sys.exit(1)
    raise click.ClickException(message)


def _masked_settings(settings: dict[str, Any]) -> dict[str, Any]:
    masked = dict(settings)
    if masked.get("client_secret"):
        masked["client_secret"] = "********"
    if masked.get("tenant_secrets"):
        masked["tenant_secrets"] = {tenant: "********" for tenant in masked["tenant_secrets"]}
    return masked


@click.group()
def config() -> None:
    """Manage fedbroker configuration."""
    pass


@config.command("show")
@config_option
@json_option
def config_show(config_path: Path | None, output_json: bool) -> None:
    """Show the effective configuration.

    Values come from config.yaml with FEDBROKER_* environment overrides
    applied. Client secrets are masked.
    """
    from fedbroker.core.config import load_config

    app_config = load_config(config_path)
    data = app_config.to_dict()
    if data["server"].get("secret_key"):
        data["server"]["secret_key"] = "********"
    data["providers"] = {alias: _masked_settings(settings) for alias, settings in data["providers"].items()}
    data["clients"] = {
        client_id: {**settings, "secret": "********"} if settings.get("secret") else settings
        for client_id, settings in data["clients"].items()
    }

    if output_json:
        output_result(data, as_json=True)
        return

    click.echo(f"# {app_config.config_path}")
    click.echo(yaml.safe_dump(data, default_flow_style=False, allow_unicode=True, sort_keys=False).rstrip())


@config.command("init")
@config_option
@click.option(
    "--force",
    is_flag=True,
    help="Overwrite an existing configuration file.",
)
@json_option
def config_init(config_path: Path | None, force: bool, output_json: bool) -> None:
    """Write a default config.yaml.

    Examples:

        # Write ~/.fedbroker/config.yaml
        fedbroker config init

        # Write to another location
        fedbroker config init --config ./config.yaml
    """
    from fedbroker.core.config import DEFAULT_CONFIG_FILE, get_default_config_yaml

    path = config_path or DEFAULT_CONFIG_FILE

    if path.exists() and not force:
        if output_json:
            output_result({
                "status": "already_initialized",
                "config": str(path),
                "message": "Configuration already exists. Use --force to overwrite.",
            }, as_json=True)
            return
        click.echo(f"Configuration already exists: {path}")
        click.echo("Use --force to overwrite")
        return

    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(get_default_config_yaml(), encoding="utf-8")
    except OSError as e:
        error_result(f"Could not write configuration: {e}", output_json)

    if output_json:
        output_result({"status": "initialized", "config": str(path)}, as_json=True)
    else:
        click.echo(f"Configuration written to: {path}")
