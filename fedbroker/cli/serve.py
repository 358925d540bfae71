"""Server CLI commands."""

from pathlib import Path

import click


@click.command()
@click.option(
    "--host",
    "-h",
    default=None,
    help="Host to bind to (default: from config or 127.0.0.1)",
)
@click.option(
    "--port",
    "-p",
    type=int,
    default=None,
    help="Port to bind to (default: from config or 8080)",
)
@click.option(
    "--config",
    "config_path",
    type=click.Path(exists=True, path_type=Path),  # type: ignore[type-var]
    help="Path to config.yaml",
)
@click.option(
    "--debug",
    is_flag=True,
    help="Enable debug mode",
)
def serve(
    host: str | None,
    port: int | None,
    config_path: Path | None,
    debug: bool,
) -> None:
    """Start the fedbroker web server.

    Examples:

        # Start with configuration from ~/.fedbroker/config.yaml
        fedbroker serve

        # Start on custom port
        fedbroker serve --port 9080

        # Use another configuration file
        fedbroker serve --config /etc/fedbroker/config.yaml
    """
    from fedbroker.app import run_server
    from fedbroker.core.config import load_config

    config = load_config(config_path)

    if debug:
        config.server.debug = True

    if not config.provider_aliases():
        click.echo("Warning: no providers configured", err=True)

    run_server(app_config=config, host=host, port=port)
