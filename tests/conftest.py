"""Shared fixtures."""

import os

import pytest

from secret_agent.executor import ExecConfig
from secret_agent.keys import KeyResolver, PassphraseProvider
from secret_agent.vault import Vault

TEST_PASSPHRASE = "test-passphrase"


def make_resolver(passphrase: str = TEST_PASSPHRASE) -> KeyResolver:
    return KeyResolver([PassphraseProvider(passphrase)])


@pytest.fixture
def vault_path(tmp_path):
    return tmp_path / "vault" / "vault.db"


@pytest.fixture
def vault(vault_path):
    with Vault(vault_path, make_resolver()) as v:
        yield v


@pytest.fixture
def exec_config(tmp_path):
    """Minimal explicit environment for child processes."""
    return ExecConfig(env={"PATH": os.environ.get("PATH", "/usr/bin:/bin")}, cwd=tmp_path)
