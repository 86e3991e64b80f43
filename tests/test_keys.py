"""Tests for master key resolution."""

import os
import stat

import pytest
from keyring.errors import KeyringError, NoKeyringError

from secret_agent.config import Settings
from secret_agent.errors import KeyFilePermissionError, KeyStoreError
from secret_agent.keys import (
    KeychainProvider,
    KeyFileProvider,
    KeyMaterial,
    KeyProvider,
    KeyResolver,
    PassphraseProvider,
    PromptProvider,
    build_resolver,
)

posix_only = pytest.mark.skipif(os.name != "posix", reason="POSIX permissions")


class FakeKeyring:
    """In-memory stand-in for the keyring module."""

    def __init__(self, fail=False):
        self.store = {}
        self.fail = fail

    def get_password(self, service, username):
        if self.fail:
            raise NoKeyringError("No recommended backend was available")
        return self.store.get((service, username))

    def set_password(self, service, username, password):
        if self.fail:
            raise KeyringError("locked")
        self.store[(service, username)] = password


class RacingKeyring(FakeKeyring):
    """Another writer stores its key right after ours."""

    def set_password(self, service, username, password):
        self.store[(service, username)] = "winner-key"


class FakeTTY:
    def isatty(self):
        return True


class FakePipe:
    def isatty(self):
        return False


class StaticProvider(KeyProvider):
    def __init__(self, name, value=None, error=None):
        self.name = name
        self.value = value
        self.error = error
        self.calls = []

    def load(self, create=False):
        self.calls.append(create)
        if self.error is not None:
            raise self.error
        return KeyMaterial(bytearray(self.value), self.name)


class TestPassphraseProvider:
    def test_returns_passphrase(self):
        material = PassphraseProvider("hunter2").load()
        assert material.data == bytearray(b"hunter2")
        assert material.source == "environment"

    def test_unset_falls_through(self):
        with pytest.raises(KeyStoreError, match="SECRET_AGENT_PASSPHRASE"):
            PassphraseProvider(None).load()


class TestKeychainProvider:
    def test_reads_existing_key(self):
        backend = FakeKeyring()
        backend.store[("secret-agent", "master-key")] = "stored-key"
        material = KeychainProvider(backend=backend).load()
        assert material.data == bytearray(b"stored-key")

    def test_missing_without_create(self):
        with pytest.raises(KeyStoreError, match="No master key"):
            KeychainProvider(backend=FakeKeyring()).load(create=False)

    def test_creates_and_persists(self):
        """First use generates a key and stores it in the keychain."""
        backend = FakeKeyring()
        material = KeychainProvider(backend=backend).load(create=True)

        stored = backend.store[("secret-agent", "master-key")]
        assert len(stored) == 32
        assert material.data == bytearray(stored.encode())

    def test_create_returns_stored_key(self):
        """When two writers race, both use whatever the keychain kept."""
        material = KeychainProvider(backend=RacingKeyring()).load(create=True)
        assert material.data == bytearray(b"winner-key")

    def test_unavailable_keychain(self):
        with pytest.raises(KeyStoreError, match="Keychain unavailable"):
            KeychainProvider(backend=FakeKeyring(fail=True)).load(create=True)


class TestKeyFileProvider:
    @posix_only
    def test_creates_owner_only_file(self, tmp_path):
        path = tmp_path / "dir" / "master.key"
        material = KeyFileProvider(path).load(create=True)

        assert path.read_bytes() == bytes(material.data)
        mode = stat.S_IMODE(path.stat().st_mode)
        assert mode == 0o600

    def test_reuses_existing_file(self, tmp_path):
        path = tmp_path / "master.key"
        first = bytes(KeyFileProvider(path).load(create=True).data)
        second = bytes(KeyFileProvider(path).load(create=True).data)
        assert first == second

    def test_missing_without_create(self, tmp_path):
        with pytest.raises(KeyStoreError, match="not found"):
            KeyFileProvider(tmp_path / "master.key").load(create=False)

    @posix_only
    def test_refuses_group_readable_file(self, tmp_path):
        path = tmp_path / "master.key"
        path.write_text("some-key")
        path.chmod(0o640)

        with pytest.raises(KeyFilePermissionError, match="chmod 600"):
            KeyFileProvider(path).load()

    def test_empty_file(self, tmp_path):
        path = tmp_path / "master.key"
        path.write_text("\n")
        path.chmod(0o600)
        with pytest.raises(KeyStoreError, match="empty"):
            KeyFileProvider(path).load()


class TestPromptProvider:
    def test_no_terminal(self):
        with pytest.raises(KeyStoreError, match="No interactive terminal"):
            PromptProvider(stdin=FakePipe(), prompt=lambda _: "x").load()

    def test_prompts_for_passphrase(self):
        material = PromptProvider(stdin=FakeTTY(), prompt=lambda _: "typed").load()
        assert material.data == bytearray(b"typed")
        assert material.source == "prompt"

    def test_create_requires_confirmation(self):
        answers = iter(["first", "second"])
        provider = PromptProvider(stdin=FakeTTY(), prompt=lambda _: next(answers))
        with pytest.raises(KeyStoreError, match="don't match"):
            provider.load(create=True)

    def test_empty_passphrase(self):
        with pytest.raises(KeyStoreError, match="Empty"):
            PromptProvider(stdin=FakeTTY(), prompt=lambda _: "").load()


class TestKeyResolver:
    def test_first_success_wins(self):
        first = StaticProvider("first", b"one")
        second = StaticProvider("second", b"two")
        material = KeyResolver([first, second]).resolve()

        assert material.source == "first"
        assert second.calls == []

    def test_failures_fall_through(self):
        failing = StaticProvider("failing", error=KeyStoreError("nope"))
        working = StaticProvider("working", b"key")
        material = KeyResolver([failing, working]).resolve(create=True)

        assert material.source == "working"
        assert failing.calls == [True]
        assert working.calls == [True]

    def test_permission_error_stops_chain(self):
        loose = StaticProvider("key file", error=KeyFilePermissionError("too open"))
        prompt = StaticProvider("prompt", b"key")

        with pytest.raises(KeyFilePermissionError):
            KeyResolver([loose, prompt]).resolve()
        assert prompt.calls == []

    def test_all_fail(self):
        resolver = KeyResolver([
            StaticProvider("a", error=KeyStoreError("first reason")),
            StaticProvider("b", error=KeyStoreError("second reason")),
        ])
        with pytest.raises(KeyStoreError) as exc_info:
            resolver.resolve()

        message = str(exc_info.value)
        assert "a: first reason" in message
        assert "b: second reason" in message

    def test_material_wipe(self):
        material = KeyMaterial(bytearray(b"secret"), "test")
        with material:
            pass
        assert material.data == bytearray(6)
        assert "secret" not in repr(material)


class TestBuildResolver:
    def _settings(self, tmp_path, backend):
        return Settings(
            vault_dir=tmp_path,
            vault_path=tmp_path / "vault.db",
            key_file=tmp_path / "master.key",
            key_backend=backend,
        )

    def test_keychain_order(self, tmp_path):
        resolver = build_resolver(self._settings(tmp_path, "keychain"))
        assert [p.name for p in resolver.providers] == ["environment", "keychain", "key file", "prompt"]

    def test_file_backend_skips_keychain(self, tmp_path):
        resolver = build_resolver(self._settings(tmp_path, "file"))
        assert [p.name for p in resolver.providers] == ["environment", "key file", "prompt"]

    def test_file_backend_creates_key_file(self, tmp_path):
        resolver = build_resolver(self._settings(tmp_path, "file"), stdin=FakePipe())
        material = resolver.resolve(create=True)

        assert material.source == "key file"
        assert (tmp_path / "master.key").exists()
