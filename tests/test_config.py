"""Tests for configuration."""

import pytest

from secret_agent import config
from secret_agent.errors import SecretsError


class TestConfigDir:
    def test_xdg_config_respected(self, tmp_path):
        """XDG_CONFIG_HOME is respected."""
        result = config.get_config_dir({"XDG_CONFIG_HOME": str(tmp_path)})
        assert result == tmp_path / "secret-agent"

    def test_config_file_override(self, tmp_path):
        custom = tmp_path / "custom.yaml"
        result = config.get_config_file({"SECRET_AGENT_CONFIG": str(custom)})
        assert result == custom


class TestLoadSettings:
    def _env(self, tmp_path, **extra):
        env = {"XDG_CONFIG_HOME": str(tmp_path / "xdg")}
        env.update(extra)
        return env

    def test_defaults(self, tmp_path):
        settings = config.load_settings(self._env(tmp_path))
        base = tmp_path / "xdg" / "secret-agent"

        assert settings.vault_path == base / "vault.db"
        assert settings.key_file == base / "master.key"
        assert settings.key_backend == "keychain"
        assert settings.shell == "/bin/sh"
        assert settings.passphrase is None

    def test_vault_dir_override(self, tmp_path):
        settings = config.load_settings(self._env(tmp_path, SECRET_AGENT_VAULT_DIR=str(tmp_path / "v")))
        assert settings.vault_path == tmp_path / "v" / "vault.db"
        assert settings.key_file == tmp_path / "v" / "master.key"

    def test_vault_path_override(self, tmp_path):
        """An explicit vault path moves the key file along with it."""
        path = tmp_path / "elsewhere" / "my.db"
        settings = config.load_settings(self._env(tmp_path, SECRET_AGENT_VAULT_PATH=str(path)))
        assert settings.vault_path == path
        assert settings.key_file == tmp_path / "elsewhere" / "master.key"

    def test_use_file(self, tmp_path):
        settings = config.load_settings(self._env(tmp_path, SECRET_AGENT_USE_FILE="1"))
        assert settings.use_file

    def test_use_file_falsy(self, tmp_path):
        settings = config.load_settings(self._env(tmp_path, SECRET_AGENT_USE_FILE="0"))
        assert not settings.use_file

    def test_passphrase_not_in_repr(self, tmp_path):
        settings = config.load_settings(self._env(tmp_path, SECRET_AGENT_PASSPHRASE="hunter2"))
        assert settings.passphrase == "hunter2"
        assert "hunter2" not in repr(settings)


class TestConfigFile:
    def _write(self, tmp_path, text):
        path = tmp_path / "config.yaml"
        path.write_text(text)
        return {"SECRET_AGENT_CONFIG": str(path), "XDG_CONFIG_HOME": str(tmp_path / "xdg")}

    def test_values_applied(self, tmp_path):
        env = self._write(
            tmp_path,
            f"vault_dir: {tmp_path / 'store'}\nkey_backend: file\nshell: /bin/bash\n",
        )
        settings = config.load_settings(env)

        assert settings.vault_path == tmp_path / "store" / "vault.db"
        assert settings.use_file
        assert settings.shell == "/bin/bash"

    def test_environment_wins(self, tmp_path):
        env = self._write(tmp_path, f"vault_dir: {tmp_path / 'store'}\n")
        env["SECRET_AGENT_VAULT_DIR"] = str(tmp_path / "env")
        settings = config.load_settings(env)
        assert settings.vault_dir == tmp_path / "env"

    def test_missing_file_is_empty(self, tmp_path):
        assert config.load_config_file(tmp_path / "nope.yaml") == {}

    def test_unknown_backend(self, tmp_path):
        env = self._write(tmp_path, "key_backend: tpm\n")
        with pytest.raises(SecretsError, match="key_backend"):
            config.load_settings(env)

    def test_invalid_yaml(self, tmp_path):
        env = self._write(tmp_path, "vault_dir: [unclosed\n")
        with pytest.raises(SecretsError, match="Invalid config file"):
            config.load_settings(env)

    def test_not_a_mapping(self, tmp_path):
        env = self._write(tmp_path, "- just\n- a list\n")
        with pytest.raises(SecretsError, match="expected a mapping"):
            config.load_settings(env)
