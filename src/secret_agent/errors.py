"""Exceptions raised by secret-agent."""


class SecretsError(Exception):
    """Base exception for secrets errors."""
    pass


class KeyStoreError(SecretsError):
    """No usable master key provider."""
    pass


class KeyFilePermissionError(KeyStoreError):
    """Master key file is readable or writable by other users."""
    pass


class DecryptError(SecretsError):
    """Ciphertext failed authentication (wrong key or corrupted record)."""
    pass


class SecretNotFoundError(SecretsError):
    """Secret name not present in the vault."""

    def __init__(self, name: str):
        super().__init__(f"Secret not found: {name}")
        self.name = name


class SecretExistsError(SecretsError):
    """Secret already exists and overwrite was not requested."""

    def __init__(self, name: str):
        super().__init__(f"Secret already exists: {name} (use --replace/--force to overwrite)")
        self.name = name


class InvalidSecretNameError(SecretsError):
    """Secret name does not follow the naming rules."""
    pass


class UnsupportedValueError(SecretsError):
    """Secret value cannot be delivered the requested way."""
    pass


class InvalidDirectiveError(SecretsError):
    """Malformed exec request (bad injection directive or mixed modes)."""
    pass


class ChildProcessSpawnError(SecretsError):
    """The command could not be started."""
    pass
