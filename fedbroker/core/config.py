"""Application configuration management.

Loads configuration from config.yaml files and environment variables.
Environment variables take precedence over config file settings.
"""

from __future__ import annotations

import logging
import os
import re
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from fedbroker.broker.errors import ProviderConfigError
from fedbroker.broker.models import ProviderConfig, RealmContext

logger = logging.getLogger(__name__)

# Default config locations
DEFAULT_CONFIG_DIR = Path.home() / ".fedbroker"
DEFAULT_CONFIG_FILE = DEFAULT_CONFIG_DIR / "config.yaml"
DEFAULT_DATABASE_URL = f"sqlite:///{DEFAULT_CONFIG_DIR / 'fedbroker.db'}"

# Environment variable prefix
ENV_PREFIX = "FEDBROKER_"
ENV_PROVIDER_PREFIX = f"{ENV_PREFIX}PROVIDER_"


@dataclass
class ServerSettings:
    """Server configuration settings."""

    host: str = "127.0.0.1"
    port: int = 8080
    debug: bool = False
    secret_key: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ServerSettings:
        """Create ServerSettings from a dictionary."""
        return cls(
            host=data.get("host", "127.0.0.1"),
            port=data.get("port", 8080),
            debug=data.get("debug", False),
            secret_key=data.get("secret_key"),
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "host": self.host,
            "port": self.port,
            "debug": self.debug,
            "secret_key": self.secret_key,
        }


@dataclass
class RealmSettings:
    """The realm the broker serves."""

    name: str = "master"
    base_url: str = "http://127.0.0.1:8080"
    access_code_lifespan: int = 60
    signing_key_path: Path | None = None
    default_locale: str = "en"

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> RealmSettings:
        """Create RealmSettings from a dictionary."""
        return cls(
            name=data.get("name", "master"),
            base_url=data.get("base_url", "http://127.0.0.1:8080"),
            access_code_lifespan=data.get("access_code_lifespan", 60),
            signing_key_path=Path(data["signing_key_path"]).expanduser() if data.get("signing_key_path") else None,
            default_locale=data.get("default_locale", "en"),
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "name": self.name,
            "base_url": self.base_url,
            "access_code_lifespan": self.access_code_lifespan,
            "signing_key_path": str(self.signing_key_path) if self.signing_key_path else None,
            "default_locale": self.default_locale,
        }

    def to_context(self) -> RealmContext:
        return RealmContext(
            name=self.name,
            base_url=self.base_url,
            access_code_lifespan=self.access_code_lifespan,
            default_locale=self.default_locale,
        )


@dataclass
class DatabaseSettings:
    """Database connection settings."""

    url: str = DEFAULT_DATABASE_URL
    echo: bool = False

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> DatabaseSettings:
        return cls(url=data.get("url", DEFAULT_DATABASE_URL), echo=data.get("echo", False))

    def to_dict(self) -> dict[str, Any]:
        return {"url": self.url, "echo": self.echo}


@dataclass
class LoggingSettings:
    """Logging settings."""

    level: str = "INFO"
    trace: bool = False
    file: Path | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> LoggingSettings:
        return cls(
            level=str(data.get("level", "INFO")).upper(),
            trace=data.get("trace", False),
            file=Path(data["file"]).expanduser() if data.get("file") else None,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "level": self.level,
            "trace": self.trace,
            "file": str(self.file) if self.file else None,
        }


@dataclass
class AppConfig:
    """Main application configuration."""

    server: ServerSettings = field(default_factory=ServerSettings)
    realm: RealmSettings = field(default_factory=RealmSettings)
    database: DatabaseSettings = field(default_factory=DatabaseSettings)
    logging: LoggingSettings = field(default_factory=LoggingSettings)
    providers: dict[str, dict[str, Any]] = field(default_factory=dict)
    clients: dict[str, dict[str, Any]] = field(default_factory=dict)
    config_path: Path | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any], config_path: Path | None = None) -> AppConfig:
        """Create AppConfig from a dictionary."""
        providers = data.get("providers") or {}
        if not isinstance(providers, dict):
            raise ProviderConfigError("'providers' must be a mapping of alias to provider settings")
        clients = data.get("clients") or {}
        if not isinstance(clients, dict):
            raise ProviderConfigError("'clients' must be a mapping of client id to client settings")
        return cls(
            server=ServerSettings.from_dict(data.get("server") or {}),
            realm=RealmSettings.from_dict(data.get("realm") or {}),
            database=DatabaseSettings.from_dict(data.get("database") or {}),
            logging=LoggingSettings.from_dict(data.get("logging") or {}),
            providers={str(alias): dict(settings or {}) for alias, settings in providers.items()},
            clients={str(client_id): dict(settings or {}) for client_id, settings in clients.items()},
            config_path=config_path,
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "server": self.server.to_dict(),
            "realm": self.realm.to_dict(),
            "database": self.database.to_dict(),
            "logging": self.logging.to_dict(),
            "providers": {alias: dict(settings) for alias, settings in self.providers.items()},
            "clients": {client_id: dict(settings) for client_id, settings in self.clients.items()},
        }

    def save(self, path: Path | None = None) -> None:
        """Save configuration to a YAML file.

        Args:
            path: Path to save to. Uses config_path or default if not specified.
        """
        save_path = path or self.config_path or DEFAULT_CONFIG_FILE
        save_path.parent.mkdir(parents=True, exist_ok=True)

        with open(save_path, "w") as f:
            yaml.safe_dump(self.to_dict(), f, default_flow_style=False, allow_unicode=True)

    def provider_aliases(self) -> list[str]:
        return sorted(self.providers)

    def get_provider_config(self, alias: str, environ: Mapping[str, str] | None = None) -> ProviderConfig:
        """Resolve one provider's configuration.

        Raises:
            ProviderConfigError: If no provider with that alias is configured.
        """
        if alias not in self.providers:
            raise ProviderConfigError(f"Unknown provider '{alias}'")
        return resolve_provider_config(alias, self.providers[alias], environ)

    def client_secret(self, client_id: str) -> str | None:
        """Configured secret (or vault reference) of a registered client."""
        settings = self.clients.get(client_id)
        if not settings:
            return None
        return settings.get("secret")


def _env_alias(alias: str) -> str:
    return re.sub(r"[^A-Za-z0-9]", "_", alias).upper()


def resolve_provider_config(
    alias: str,
    settings: dict[str, Any],
    environ: Mapping[str, str] | None = None,
) -> ProviderConfig:
    """Build a frozen provider configuration from stored settings.

    Credentials and the profile URL are taken from the first source that
    has them: override environment variables, then stored settings.

    Args:
        alias: Provider alias.
        settings: Stored provider settings.
        environ: Environment to read overrides from. Uses os.environ if not specified.

    Returns:
        ProviderConfig with overrides applied.
    """
    env = os.environ if environ is None else environ
    prefix = f"{ENV_PROVIDER_PREFIX}{_env_alias(alias)}_"
    data = dict(settings)

    secret = env.get(f"{prefix}CLIENT_SECRET")
    if secret:
        data["client_secret"] = secret

    profile_url = env.get(f"{prefix}PROFILE_URL")
    if profile_url:
        data["profile_url"] = profile_url

    tenant_secrets = {str(k): str(v) for k, v in (data.get("tenant_secrets") or {}).items()}
    known_tenants = {tenant.upper(): tenant for tenant in tenant_secrets}
    for key, value in env.items():
        if not (key.startswith(prefix) and key.endswith("_CLIENT_SECRET")) or not value:
            continue
        tenant_key = key[len(prefix) : -len("_CLIENT_SECRET")]
        if not tenant_key:
            continue
        tenant = known_tenants.get(tenant_key, tenant_key.lower())
        tenant_secrets[tenant] = value
    data["tenant_secrets"] = tenant_secrets

    return ProviderConfig.from_dict(alias, data)


def _get_env_bool(key: str, default: bool) -> bool:
    """Get a boolean from environment variable."""
    value = os.environ.get(key)
    if value is None:
        return default
    return value.lower() in ("true", "1", "yes", "on")


def _get_env_int(key: str, default: int) -> int:
    """Get an integer from environment variable."""
    value = os.environ.get(key)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        return default


def load_config(config_path: Path | None = None) -> AppConfig:
    """Load application configuration.

    Configuration is loaded in this order (later values override earlier):
    1. Default values
    2. config.yaml file (if exists)
    3. Environment variables

    Args:
        config_path: Path to config file. Uses default if not specified.

    Returns:
        AppConfig with merged settings.
    """
    config = AppConfig()

    file_path = config_path or Path(os.environ.get(f"{ENV_PREFIX}CONFIG", DEFAULT_CONFIG_FILE))
    if file_path.exists():
        try:
            with open(file_path, encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
            config = AppConfig.from_dict(data, config_path=file_path)
        except (OSError, yaml.YAMLError, ProviderConfigError, AttributeError, TypeError) as e:
            # If config file is invalid, use defaults
            logger.warning(f"Ignoring invalid config file {file_path}: {e}")
    else:
        config.config_path = file_path

    # Server settings
    if os.environ.get(f"{ENV_PREFIX}HOST"):
        config.server.host = os.environ[f"{ENV_PREFIX}HOST"]

    if os.environ.get(f"{ENV_PREFIX}PORT"):
        config.server.port = _get_env_int(f"{ENV_PREFIX}PORT", config.server.port)

    config.server.debug = _get_env_bool(f"{ENV_PREFIX}DEBUG", config.server.debug)

    if os.environ.get(f"{ENV_PREFIX}SECRET_KEY"):
        config.server.secret_key = os.environ[f"{ENV_PREFIX}SECRET_KEY"]

    # Realm settings
    realm = config.realm

    if os.environ.get(f"{ENV_PREFIX}REALM"):
        realm.name = os.environ[f"{ENV_PREFIX}REALM"]

    if os.environ.get(f"{ENV_PREFIX}BASE_URL"):
        realm.base_url = os.environ[f"{ENV_PREFIX}BASE_URL"]

    realm.access_code_lifespan = _get_env_int(f"{ENV_PREFIX}ACCESS_CODE_LIFESPAN", realm.access_code_lifespan)

    if os.environ.get(f"{ENV_PREFIX}SIGNING_KEY"):
        realm.signing_key_path = Path(os.environ[f"{ENV_PREFIX}SIGNING_KEY"]).expanduser()

    # Database settings
    if os.environ.get(f"{ENV_PREFIX}DATABASE_URL"):
        config.database.url = os.environ[f"{ENV_PREFIX}DATABASE_URL"]

    # Logging settings
    if os.environ.get(f"{ENV_PREFIX}LOG_LEVEL"):
        config.logging.level = os.environ[f"{ENV_PREFIX}LOG_LEVEL"].upper()

    config.logging.trace = _get_env_bool(f"{ENV_PREFIX}LOG_TRACE", config.logging.trace)

    if os.environ.get(f"{ENV_PREFIX}LOG_FILE"):
        config.logging.file = Path(os.environ[f"{ENV_PREFIX}LOG_FILE"]).expanduser()

    return config


def get_default_config_yaml() -> str:
    """Get the default config.yaml content as a string.

    Useful for generating example configuration files.
    """
    return """\
# fedbroker Configuration File
# Environment variables override these settings (prefix: FEDBROKER_)

server:
  # Server bind address
  host: "127.0.0.1"

  # Server port
  port: 8080

  # Enable debug mode (not recommended for production)
  debug: false

  # Flask session signing key (random per process if unset)
  # secret_key: change-me

realm:
  # Realm the broker serves
  name: "master"

  # Public base URL; redirect URIs are <base_url>/realms/<name>/broker/<alias>/endpoint
  base_url: "http://127.0.0.1:8080"

  # Lifetime in seconds of tokens issued after a broker login
  access_code_lifespan: 60

  # RSA private key (PEM) for RS256 signatures; generated per process if unset
  # signing_key_path: ~/.fedbroker/realm-key.pem

  default_locale: "en"

database:
  url: "sqlite:///~/.fedbroker/fedbroker.db"

logging:
  # ERROR, INFO, DEBUG or TRACE
  level: "INFO"

  # TRACE logs unredacted protocol traffic; enable explicitly
  trace: false

  # file: ~/.fedbroker/fedbroker.log

# Clients allowed to call the token exchange endpoint; they authenticate
# with HTTP Basic or client_id/client_secret form parameters
clients:
  # my-app:
  #   secret: ${vault.my_app_secret}

providers:
  # e-Devlet gateway
  # Secret override: FEDBROKER_PROVIDER_EDEVLET_CLIENT_SECRET
  # Per-tenant override: FEDBROKER_PROVIDER_EDEVLET_<TENANT>_CLIENT_SECRET
  # edevlet:
  #   provider_type: edevlet
  #   client_id: my-client
  #   client_secret: ${vault.edevlet_secret}
  #   authorization_url: https://giris.turkiye.gov.tr/OAuth2AuthorizationServer/AuthorizationController
  #   token_url: https://giris.turkiye.gov.tr/OAuth2AuthorizationServer/AccessTokenController
  #   profile_url: https://giris.turkiye.gov.tr/OAuth2AuthorizationServer/AccessTokenController
  #   default_scope: Temel-Bilgileri
  #   create_user: true
  #   require_name_claims: false
  #   tenant_secrets:
  #     citizen: ${vault.edevlet_citizen_secret}

  # Generic OAuth2 provider with a userinfo endpoint
  # example:
  #   provider_type: userinfo
  #   client_id: my-client
  #   client_secret: my-secret
  #   authorization_url: https://idp.example.com/oauth2/authorize
  #   token_url: https://idp.example.com/oauth2/token
  #   userinfo_url: https://idp.example.com/oauth2/userinfo
  #   basic_authentication: true
  #   store_token: true
  #   supports_external_exchange: true
  #   forward_parameters: audience,resource
"""
