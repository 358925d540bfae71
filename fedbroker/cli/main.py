"""CLI entry point for fedbroker."""

import click

from fedbroker import __version__
from fedbroker.cli import config as config_commands
from fedbroker.cli import db as db_commands
from fedbroker.cli import providers as providers_commands
from fedbroker.cli import serve as serve_commands
from fedbroker.cli import token as token_commands


@click.group()
@click.version_option(version=__version__, prog_name="fedbroker")
@click.pass_context
def cli(ctx: click.Context) -> None:
    """fedbroker - OAuth2 federation broker with token exchange."""
    ctx.ensure_object(dict)


@cli.command()
@click.option(
    "--force",
    is_flag=True,
    help="Overwrite existing configuration file and signing key.",
)
def init(force: bool) -> None:
    """Initialize fedbroker configuration, signing key and database.

    Writes a default config.yaml if none exists, generates the realm
    signing key and creates the database schema.
    """
    from fedbroker.broker.client_auth import generate_signing_key, save_signing_key
    from fedbroker.core.config import DEFAULT_CONFIG_DIR, get_default_config_yaml, load_config
    from fedbroker.storage import Database, DatabaseError

    app_config = load_config()
    config_path = app_config.config_path or DEFAULT_CONFIG_DIR / "config.yaml"

    if config_path.exists() and not force:
        click.echo(f"Configuration already exists: {config_path}")
    else:
        config_path.parent.mkdir(parents=True, exist_ok=True)
        config_path.write_text(get_default_config_yaml(), encoding="utf-8")
        click.echo(f"Configuration written to: {config_path}")
        app_config = load_config(config_path)

    key_path = app_config.realm.signing_key_path or DEFAULT_CONFIG_DIR / "realm-key.pem"
    if key_path.exists() and not force:
        click.echo(f"Signing key already exists: {key_path}")
    else:
        click.echo("Generating RSA realm signing key...")
        save_signing_key(generate_signing_key(), key_path)
        click.echo(f"Signing key saved to: {key_path}")
        click.echo("Key file permissions: 0600 (owner read/write only)")

    click.echo(f"Creating database at: {app_config.database.url}")
    try:
        database = Database(url=app_config.database.url)
        database.init_db()
        database.verify_connection()
        database.close()
    except DatabaseError as e:
        raise click.ClickException(str(e)) from None

    click.echo("")
    click.echo("fedbroker initialized successfully!")
    click.echo("")
    click.echo("Next steps:")
    click.echo(f"  1. Set realm.signing_key_path to {key_path} and add providers in {config_path}")
    click.echo("  2. Run 'fedbroker providers list' to check the provider configuration")
    click.echo("  3. Run 'fedbroker serve' to start the broker")


cli.add_command(config_commands.config)
cli.add_command(db_commands.db)
cli.add_command(providers_commands.providers)
cli.add_command(token_commands.token)
cli.add_command(serve_commands.serve)
