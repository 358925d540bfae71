"""Database management CLI commands."""

from __future__ import annotations

import click


@click.group()
def db() -> None:
    """Manage fedbroker database."""
    pass


@db.command("init")
@click.option(
    "--url",
    help="Database URL. Defaults to FEDBROKER_DATABASE_URL or ~/.fedbroker/fedbroker.db",
)
@click.option(
    "--echo",
    is_flag=True,
    help="Echo SQL statements.",
)
def db_init(url: str | None, echo: bool) -> None:
    """Create the database schema.

    Existing tables are left untouched.
    """
    from fedbroker.storage import Database, DatabaseError

    try:
        database = Database(url=url, echo=echo)
        click.echo(f"Creating database at: {database.url}")
        database.init_db()
        database.verify_connection()
        database.close()
    except DatabaseError as e:
        raise click.ClickException(f"Database initialization failed: {e}") from None

    click.echo("Database initialized successfully!")


@db.command("verify")
@click.option(
    "--url",
    help="Database URL.",
)
def db_verify(url: str | None) -> None:
    """Verify the database connection."""
    from fedbroker.storage import Database, DatabaseError

    try:
        database = Database(url=url)
        database.verify_connection()
        click.echo("Database connection verified successfully.")
        database.close()
    except DatabaseError as e:
        raise click.ClickException(f"Database verification failed: {e}") from None
