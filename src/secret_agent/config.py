"""Configuration for secret-agent."""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Mapping, Optional

import yaml

from .errors import SecretsError

logger = logging.getLogger(__name__)

APP_NAME = "secret-agent"
KEYCHAIN_SERVICE = "secret-agent"
KEYCHAIN_USER = "master-key"

VAULT_FILE_NAME = "vault.db"
KEY_FILE_NAME = "master.key"
CONFIG_FILE_NAME = "config.yaml"

ENV_CONFIG = "SECRET_AGENT_CONFIG"
ENV_VAULT_DIR = "SECRET_AGENT_VAULT_DIR"
ENV_VAULT_PATH = "SECRET_AGENT_VAULT_PATH"
ENV_USE_FILE = "SECRET_AGENT_USE_FILE"
ENV_PASSPHRASE = "SECRET_AGENT_PASSPHRASE"

KEY_BACKENDS = ("keychain", "file")
DEFAULT_SHELL = "/bin/sh"

_TRUTHY = {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class Settings:
    """Resolved configuration for one invocation."""

    vault_dir: Path
    vault_path: Path
    key_file: Path
    key_backend: str = "keychain"
    shell: str = DEFAULT_SHELL
    passphrase: Optional[str] = field(default=None, repr=False)

    @property
    def use_file(self) -> bool:
        return self.key_backend == "file"


def get_config_dir(environ: Optional[Mapping[str, str]] = None) -> Path:
    """Get config directory following XDG spec."""
    environ = os.environ if environ is None else environ
    xdg_config = environ.get("XDG_CONFIG_HOME")
    if xdg_config:
        base = Path(xdg_config)
    else:
        base = Path.home() / ".config"
    return base / APP_NAME


def get_config_file(environ: Optional[Mapping[str, str]] = None) -> Path:
    """Get the optional YAML config file path."""
    environ = os.environ if environ is None else environ
    env_file = environ.get(ENV_CONFIG)
    if env_file:
        return Path(env_file).expanduser()
    return get_config_dir(environ) / CONFIG_FILE_NAME


def load_config_file(path: Path) -> dict:
    """Read config.yaml; a missing file is an empty config."""
    if not path.exists():
        return {}

    try:
        with open(path) as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise SecretsError(f"Invalid config file {path}: {e}") from e

    if not isinstance(data, dict):
        raise SecretsError(f"Invalid config file {path}: expected a mapping")
    return data


def is_truthy(value: Optional[str]) -> bool:
    return bool(value) and value.strip().lower() in _TRUTHY


def load_settings(environ: Optional[Mapping[str, str]] = None) -> Settings:
    """
    Build Settings from config.yaml and the environment.

    Environment variables win over the config file. The environment mapping is
    read once here; nothing below the CLI touches os.environ directly.
    """
    environ = dict(os.environ if environ is None else environ)
    file_config = load_config_file(get_config_file(environ))

    vault_dir_value = environ.get(ENV_VAULT_DIR) or file_config.get("vault_dir")
    if vault_dir_value:
        vault_dir = Path(str(vault_dir_value)).expanduser()
    else:
        vault_dir = get_config_dir(environ)

    vault_path_value = environ.get(ENV_VAULT_PATH)
    if vault_path_value:
        vault_path = Path(vault_path_value).expanduser()
        # Key file follows an overridden vault location
        if not environ.get(ENV_VAULT_DIR):
            vault_dir = vault_path.parent
    else:
        vault_path = vault_dir / VAULT_FILE_NAME

    key_backend = str(file_config.get("key_backend", "keychain")).strip().lower()
    if key_backend not in KEY_BACKENDS:
        raise SecretsError(
            f"Unknown key_backend {key_backend!r} (expected one of: {', '.join(KEY_BACKENDS)})"
        )
    if is_truthy(environ.get(ENV_USE_FILE)):
        key_backend = "file"

    shell = str(file_config.get("shell") or DEFAULT_SHELL)

    settings = Settings(
        vault_dir=vault_dir,
        vault_path=vault_path,
        key_file=vault_dir / KEY_FILE_NAME,
        key_backend=key_backend,
        shell=shell,
        passphrase=environ.get(ENV_PASSPHRASE) or None,
    )
    logger.debug("Vault %s, key backend %s", settings.vault_path, settings.key_backend)
    return settings
