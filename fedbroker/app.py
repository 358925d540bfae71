"""Flask application factory."""

from __future__ import annotations

import os
import secrets
from typing import TYPE_CHECKING

from flask import Flask

if TYPE_CHECKING:
    from fedbroker.core.config import AppConfig


def create_app(config: dict | None = None, app_config: AppConfig | None = None) -> Flask:
    """Create and configure the Flask application.

    Args:
        config: Optional Flask configuration overrides. Tests use it to
            inject ``DATABASE``, ``VAULT``, ``REALM_KEY`` and
            ``HTTP_CLIENT_FACTORY``.
        app_config: Broker configuration. Loads from file/env if not provided.

    Returns:
        Configured Flask application instance.
    """
    from fedbroker.core.config import load_config
    from fedbroker.storage.database import Database

    if app_config is None:
        app_config = load_config()

    app = Flask(__name__)

    secret_key = app_config.server.secret_key or os.environ.get("FEDBROKER_SECRET_KEY")
    if not secret_key:
        # Login state lives in the signed session cookie; a random key only
        # survives until restart.
        secret_key = secrets.token_hex(32)

    app.config.from_mapping(
        SECRET_KEY=secret_key,
        APP_CONFIG=app_config,
        DATABASE=None,
        VAULT=None,
        REALM_KEY=None,
        HTTP_CLIENT_FACTORY=None,
    )

    if config:
        app.config.from_mapping(config)

    if app.config["DATABASE"] is None:
        app.config["DATABASE"] = Database(url=app_config.database.url, echo=app_config.database.echo)

    from fedbroker.web import routes

    routes.init_app(app)

    return app


def run_server(
    app_config: AppConfig | None = None,
    host: str | None = None,
    port: int | None = None,
) -> None:
    """Run the Flask development server.

    Args:
        app_config: Application configuration. Loads from file/env if not provided.
        host: Override host from config.
        port: Override port from config.
    """
    from fedbroker.core.config import load_config
    from fedbroker.core.logging import configure_logging

    if app_config is None:
        app_config = load_config()

    configure_logging(
        level=app_config.logging.level,
        trace_enabled=app_config.logging.trace,
        log_file=app_config.logging.file,
    )

    server_host = host or app_config.server.host
    server_port = port or app_config.server.port

    app = create_app(app_config=app_config)
    app.debug = app_config.server.debug

    # Ensure tables exist
    app.config["DATABASE"].init_db()

    print("Starting fedbroker server...")
    print(f"  URL: http://{server_host}:{server_port}")
    print(f"  Realm: {app_config.realm.name} ({app_config.realm.base_url})")
    print(f"  Providers: {', '.join(app_config.provider_aliases()) or '(none)'}")
    print("")

    app.run(host=server_host, port=server_port)
