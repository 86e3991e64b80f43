"""
Master key resolution.

Providers are tried in a fixed order and the first one that yields key
material wins:

1. ``SECRET_AGENT_PASSPHRASE`` (unattended / CI use)
2. OS keychain via ``keyring`` (skipped when file storage is selected)
3. ``master.key`` in the vault directory (must be owner-only)
4. Hidden interactive prompt

A provider signals "not available here" by raising KeyStoreError, which moves
the resolver on to the next one. A key file with loose permissions is the
exception: KeyFilePermissionError stops the chain.
"""

import getpass
import logging
import os
import stat
import sys
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Callable, List, Optional, Sequence, TextIO

import keyring
from keyring.errors import KeyringError

from .config import ENV_PASSPHRASE, KEYCHAIN_SERVICE, KEYCHAIN_USER, Settings
from .crypto import wipe
from .errors import KeyFilePermissionError, KeyStoreError
from .generate import generate

logger = logging.getLogger(__name__)

MASTER_KEY_LENGTH = 32


class KeyMaterial:
    """Master key bytes plus the name of the provider that produced them."""

    def __init__(self, data: bytearray, source: str):
        self._data = data
        self.source = source

    @property
    def data(self) -> bytearray:
        return self._data

    def wipe(self) -> None:
        wipe(self._data)

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        self.wipe()

    def __repr__(self) -> str:
        return f"KeyMaterial(source={self.source!r})"


def new_master_key() -> bytearray:
    return bytearray(generate(MASTER_KEY_LENGTH, "alphanumeric").encode("ascii"))


class KeyProvider(ABC):
    """One source of master key material."""

    name = "provider"

    @abstractmethod
    def load(self, create: bool = False) -> KeyMaterial:
        """
        Return key material, creating and persisting it when `create` is set
        and the provider can store keys. Raise KeyStoreError if unavailable.
        """


class PassphraseProvider(KeyProvider):
    """Passphrase handed in through the environment at startup."""

    name = "environment"

    def __init__(self, passphrase: Optional[str]):
        self._passphrase = passphrase

    def load(self, create: bool = False) -> KeyMaterial:
        if not self._passphrase:
            raise KeyStoreError(f"{ENV_PASSPHRASE} is not set")
        return KeyMaterial(bytearray(self._passphrase.encode("utf-8")), self.name)


class KeychainProvider(KeyProvider):
    """OS keychain (macOS Keychain, Secret Service, Windows Credential Locker)."""

    name = "keychain"

    def __init__(self, service: str = KEYCHAIN_SERVICE, username: str = KEYCHAIN_USER, backend=None):
        self.service = service
        self.username = username
        self._keyring = backend if backend is not None else keyring

    def load(self, create: bool = False) -> KeyMaterial:
        try:
            value = self._keyring.get_password(self.service, self.username)
        except KeyringError as e:
            raise KeyStoreError(f"Keychain unavailable: {e}") from e

        if value:
            return KeyMaterial(bytearray(value.encode("utf-8")), self.name)

        if not create:
            raise KeyStoreError("No master key in keychain")

        key = new_master_key()
        try:
            self._keyring.set_password(self.service, self.username, key.decode("ascii"))
            # Another writer may have stored its key in between; the keychain wins
            stored = self._keyring.get_password(self.service, self.username)
        except KeyringError as e:
            raise KeyStoreError(f"Cannot store master key in keychain: {e}") from e
        finally:
            wipe(key)

        if not stored:
            raise KeyStoreError("Master key was not persisted in keychain")

        logger.info("Stored new master key in keychain (service %s)", self.service)
        return KeyMaterial(bytearray(stored.encode("utf-8")), self.name)


class KeyFileProvider(KeyProvider):
    """Key file with owner-only permissions."""

    name = "key file"

    def __init__(self, path: Path):
        self.path = Path(path)

    def check_permissions(self) -> None:
        if os.name != "posix":
            return
        mode = stat.S_IMODE(self.path.stat().st_mode)
        if mode & (stat.S_IRWXG | stat.S_IRWXO):
            raise KeyFilePermissionError(
                f"Key file {self.path} is accessible by other users (mode {mode:o}); "
                f"run: chmod 600 {self.path}"
            )

    def load(self, create: bool = False) -> KeyMaterial:
        if self.path.exists():
            self.check_permissions()
            data = bytearray(self.path.read_bytes().strip())
            if not data:
                raise KeyStoreError(f"Key file is empty: {self.path}")
            return KeyMaterial(data, self.name)

        if not create:
            raise KeyStoreError(f"Key file not found: {self.path}")

        self.path.parent.mkdir(parents=True, exist_ok=True, mode=0o700)
        key = new_master_key()
        try:
            fd = os.open(self.path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o600)
        except FileExistsError:
            # Another invocation created it first
            wipe(key)
            return self.load(create=False)
        except OSError as e:
            wipe(key)
            raise KeyStoreError(f"Cannot create key file {self.path}: {e}") from e

        with os.fdopen(fd, "wb") as f:
            f.write(key)

        logger.info("Created master key file %s", self.path)
        return KeyMaterial(key, self.name)


class PromptProvider(KeyProvider):
    """Hidden interactive passphrase prompt, last resort."""

    name = "prompt"

    def __init__(self, stdin: Optional[TextIO] = None, prompt: Callable[[str], str] = getpass.getpass):
        self._stdin = stdin
        self._prompt = prompt

    def load(self, create: bool = False) -> KeyMaterial:
        stream = self._stdin if self._stdin is not None else sys.stdin
        if stream is None or not stream.isatty():
            raise KeyStoreError("No interactive terminal to prompt for a passphrase")

        passphrase = self._prompt("Vault passphrase (hidden): ")
        if not passphrase:
            raise KeyStoreError("Empty passphrase not allowed")

        if create:
            confirm = self._prompt("Confirm passphrase (hidden): ")
            if passphrase != confirm:
                raise KeyStoreError("Passphrases don't match")

        return KeyMaterial(bytearray(passphrase.encode("utf-8")), self.name)


class KeyResolver:
    """Ordered chain of key providers."""

    def __init__(self, providers: Sequence[KeyProvider]):
        self.providers: List[KeyProvider] = list(providers)

    def resolve(self, create: bool = False) -> KeyMaterial:
        failures = []
        for provider in self.providers:
            try:
                material = provider.load(create)
            except KeyFilePermissionError:
                raise
            except KeyStoreError as e:
                logger.debug("Key provider %s unavailable: %s", provider.name, e)
                failures.append(f"{provider.name}: {e}")
                continue

            logger.debug("Master key from %s", provider.name)
            return material

        detail = "\n  ".join(failures) if failures else "no providers configured"
        raise KeyStoreError(f"No usable master key provider:\n  {detail}")


def build_resolver(settings: Settings, stdin: Optional[TextIO] = None) -> KeyResolver:
    """Provider chain for the given settings."""
    providers: List[KeyProvider] = [PassphraseProvider(settings.passphrase)]
    if not settings.use_file:
        providers.append(KeychainProvider())
    providers.append(KeyFileProvider(settings.key_file))
    providers.append(PromptProvider(stdin))
    return KeyResolver(providers)
