"""Tests for configuration loading and provider overrides."""

import pytest
import yaml

from fedbroker.broker.errors import ProviderConfigError
from fedbroker.core.config import (
    AppConfig,
    get_default_config_yaml,
    load_config,
    resolve_provider_config,
)

PROVIDER = {
    "provider_type": "edevlet",
    "client_id": "c1",
    "client_secret": "${vault.edevlet_secret}",
    "authorization_url": "https://giris.example.com/authorize",
    "token_url": "https://giris.example.com/token",
    "profile_url": "https://giris.example.com/profile",
}


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Remove fedbroker variables inherited from the environment."""
    import os

    for key in list(os.environ):
        if key.startswith("FEDBROKER_"):
            monkeypatch.delenv(key)


@pytest.fixture
def config_file(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text(
        yaml.safe_dump(
            {
                "server": {"port": 9000},
                "realm": {"name": "citizen", "base_url": "https://broker.example.com"},
                "logging": {"level": "debug"},
                "providers": {"edevlet": PROVIDER},
            }
        )
    )
    return path


class TestLoadConfig:
    """Tests for load_config."""

    def test_defaults_when_missing(self, tmp_path):
        path = tmp_path / "missing.yaml"

        config = load_config(path)

        assert config.server.port == 8080
        assert config.realm.name == "master"
        assert config.providers == {}
        assert config.config_path == path

    def test_file_values(self, config_file):
        config = load_config(config_file)

        assert config.server.port == 9000
        assert config.realm.name == "citizen"
        assert config.realm.to_context().broker_endpoint("edevlet") == (
            "https://broker.example.com/realms/citizen/broker/edevlet/endpoint"
        )
        assert config.logging.level == "DEBUG"
        assert config.provider_aliases() == ["edevlet"]

    def test_environment_overrides_file(self, config_file, monkeypatch):
        monkeypatch.setenv("FEDBROKER_PORT", "9100")
        monkeypatch.setenv("FEDBROKER_REALM", "staff")
        monkeypatch.setenv("FEDBROKER_DATABASE_URL", "sqlite://")
        monkeypatch.setenv("FEDBROKER_LOG_TRACE", "yes")

        config = load_config(config_file)

        assert config.server.port == 9100
        assert config.realm.name == "staff"
        assert config.database.url == "sqlite://"
        assert config.logging.trace is True

    def test_invalid_port_keeps_value(self, config_file, monkeypatch):
        monkeypatch.setenv("FEDBROKER_PORT", "not-a-port")
        assert load_config(config_file).server.port == 9000

    def test_config_path_from_environment(self, config_file, monkeypatch):
        monkeypatch.setenv("FEDBROKER_CONFIG", str(config_file))
        assert load_config().realm.name == "citizen"

    @pytest.mark.parametrize("content", ["server: [unclosed", "providers: [a, b]", "- just\n- a list\n"])
    def test_invalid_file_falls_back_to_defaults(self, tmp_path, content, caplog):
        path = tmp_path / "config.yaml"
        path.write_text(content)

        config = load_config(path)

        assert config.server.port == 8080
        assert config.providers == {}
        assert "Ignoring invalid config file" in caplog.text

    def test_save_round_trip(self, config_file, tmp_path):
        config = load_config(config_file)
        target = tmp_path / "saved" / "config.yaml"

        config.save(target)

        assert load_config(target).to_dict() == config.to_dict()

    def test_default_yaml_loads(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text(get_default_config_yaml())

        config = load_config(path)

        assert config.realm.name == "master"
        assert config.providers == {}


class TestProviderOverrides:
    """Tests for per-provider environment overrides."""

    def test_no_overrides(self):
        config = resolve_provider_config("edevlet", PROVIDER, environ={})

        assert config.client_secret == "${vault.edevlet_secret}"
        assert config.profile_url == "https://giris.example.com/profile"
        assert config.tenant_secrets == {}

    def test_secret_and_profile_url(self):
        environ = {
            "FEDBROKER_PROVIDER_EDEVLET_CLIENT_SECRET": "env-secret",
            "FEDBROKER_PROVIDER_EDEVLET_PROFILE_URL": "https://other.example.com/profile",
        }

        config = resolve_provider_config("edevlet", PROVIDER, environ)

        assert config.client_secret == "env-secret"
        assert config.profile_url == "https://other.example.com/profile"

    def test_empty_override_is_ignored(self):
        environ = {"FEDBROKER_PROVIDER_EDEVLET_CLIENT_SECRET": ""}
        assert resolve_provider_config("edevlet", PROVIDER, environ).client_secret == "${vault.edevlet_secret}"

    def test_tenant_secrets(self):
        settings = {**PROVIDER, "tenant_secrets": {"Citizen": "file-secret"}}
        environ = {
            "FEDBROKER_PROVIDER_EDEVLET_CITIZEN_CLIENT_SECRET": "citizen-secret",
            "FEDBROKER_PROVIDER_EDEVLET_STAFF_CLIENT_SECRET": "staff-secret",
        }

        config = resolve_provider_config("edevlet", settings, environ)

        assert config.tenant_secrets == {"Citizen": "citizen-secret", "staff": "staff-secret"}
        assert config.secret_for("staff") == "staff-secret"
        assert config.secret_for("unknown") == "${vault.edevlet_secret}"

    def test_other_provider_variables_ignored(self):
        environ = {"FEDBROKER_PROVIDER_OTHER_CLIENT_SECRET": "other"}
        assert resolve_provider_config("edevlet", PROVIDER, environ).client_secret == "${vault.edevlet_secret}"

    def test_alias_is_normalized(self):
        environ = {"FEDBROKER_PROVIDER_MY_IDP_CLIENT_SECRET": "env-secret"}
        assert resolve_provider_config("my-idp", PROVIDER, environ).client_secret == "env-secret"

    def test_get_provider_config(self):
        config = AppConfig.from_dict({"providers": {"edevlet": PROVIDER}})

        assert config.get_provider_config("edevlet", environ={}).client_id == "c1"
        with pytest.raises(ProviderConfigError, match="Unknown provider 'missing'"):
            config.get_provider_config("missing")

    def test_providers_must_be_mapping(self):
        with pytest.raises(ProviderConfigError):
            AppConfig.from_dict({"providers": ["edevlet"]})

    def test_registered_clients(self):
        config = AppConfig.from_dict({"clients": {"app": {"secret": "${vault.app_secret}"}, "bare": None}})

        assert config.client_secret("app") == "${vault.app_secret}"
        assert config.client_secret("bare") is None
        assert config.client_secret("missing") is None

    def test_clients_must_be_mapping(self):
        with pytest.raises(ProviderConfigError):
            AppConfig.from_dict({"clients": ["app"]})
