"""
Tests for layered configuration.

Tests cover:
- Defaults and validation
- Global < local < environment layering
- Saving and dotted-key updates
"""
import stat

import pytest
import yaml

from secretsage.exceptions import ConfigError
from secretsage.models import VaultLocation
from secretsage.vault.config import (
    SageConfig,
    config_path,
    load_config,
    read_config_file,
    save_config,
    set_config_value,
)


def write_layer(directory, data):
    path = directory / ".secretsage" / "config.yaml"
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(yaml.safe_dump(data))
    return path


class TestDefaults:
    """Tests for SageConfig defaults and validation."""

    def test_defaults(self):
        config = SageConfig()
        assert config.vault.default_location is VaultLocation.GLOBAL
        assert config.encryption.provider == "x25519"
        assert config.agent.backup_env_on_grant is True
        assert config.source_priority("local") == 1
        assert config.source_enabled("local") is True

    def test_custom_requires_path(self):
        with pytest.raises(ConfigError):
            SageConfig.from_env({"vault": {"defaultLocation": "custom"}})

    def test_unknown_provider(self):
        with pytest.raises(ConfigError):
            SageConfig.from_env({"encryption": {"provider": "rot13"}})

    def test_snake_case_accepted(self):
        config = SageConfig.model_validate({"agent": {"auto_gitignore": False}})
        assert config.agent.auto_gitignore is False


class TestLayering:
    """Tests for load_config."""

    def test_no_files(self, project, home):
        assert load_config(cwd=project, home=home) == SageConfig()

    def test_local_overrides_global(self, project, home):
        write_layer(home, {"agent": {"backupEnvOnGrant": False, "autoGitignore": False}})
        write_layer(project, {"agent": {"autoGitignore": True}})
        config = load_config(cwd=project, home=home)
        assert config.agent.backup_env_on_grant is False
        assert config.agent.auto_gitignore is True

    def test_environment_overrides_files(self, project, home, monkeypatch):
        write_layer(home, {"vault": {"defaultLocation": "local"}, "lockTimeout": 3})
        monkeypatch.setenv("SECRETSAGE_VAULT_PATH", "/srv/vault")
        monkeypatch.setenv("SECRETSAGE_LOCK_TIMEOUT", "1.5")
        config = load_config(cwd=project, home=home)
        assert config.vault.custom_path == "/srv/vault"
        assert config.vault.default_location is VaultLocation.CUSTOM
        assert config.lock_timeout == 1.5

    def test_environment_location(self, project, home, monkeypatch):
        monkeypatch.setenv("SECRETSAGE_VAULT_LOCATION", "LOCAL")
        assert load_config(cwd=project, home=home).vault.default_location is VaultLocation.LOCAL

    def test_environment_location_beats_path_default(self, project, home, monkeypatch):
        monkeypatch.setenv("SECRETSAGE_VAULT_PATH", "/srv/vault")
        monkeypatch.setenv("SECRETSAGE_VAULT_LOCATION", "global")
        config = load_config(cwd=project, home=home)
        assert config.vault.default_location is VaultLocation.GLOBAL

    def test_invalid_yaml(self, project, home):
        path = project / ".secretsage" / "config.yaml"
        path.parent.mkdir()
        path.write_text("vault: [unclosed\n")
        with pytest.raises(ConfigError) as exc:
            load_config(cwd=project, home=home)
        assert exc.value.path == str(path)

    def test_non_mapping_file(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("- a\n- b\n")
        with pytest.raises(ConfigError):
            read_config_file(path)

    def test_empty_file_is_empty_layer(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("")
        assert read_config_file(path) == {}


class TestSaving:
    """Tests for save_config and set_config_value."""

    def test_save_and_reload(self, project, home):
        config = SageConfig.model_validate({"agent": {"requireConfirmation": False}})
        path = save_config(config, local=True, cwd=project, home=home)
        assert path == config_path(True, cwd=project, home=home)
        assert stat.S_IMODE(path.stat().st_mode) == 0o600
        text = path.read_text()
        assert text.startswith("# SecretSage Configuration")
        assert "requireConfirmation: false" in text
        assert load_config(cwd=project, home=home).agent.require_confirmation is False

    def test_set_value_coerces(self):
        config = set_config_value(SageConfig(), "agent.backupEnvOnGrant", "false")
        assert config.agent.backup_env_on_grant is False
        config = set_config_value(config, "lock_timeout", "2.5")
        assert config.lock_timeout == 2.5

    def test_set_value_snake_case_key(self):
        config = set_config_value(SageConfig(), "agent.auto_gitignore", "false")
        assert config.agent.auto_gitignore is False

    @pytest.mark.parametrize("key", ["nope", "agent.nope", "agent.autoGitignore.deeper", ""])
    def test_set_unknown_key(self, key):
        with pytest.raises(ConfigError):
            set_config_value(SageConfig(), key, "true")

    def test_set_invalid_value(self):
        with pytest.raises(ConfigError):
            set_config_value(SageConfig(), "lockTimeout", "-1")
