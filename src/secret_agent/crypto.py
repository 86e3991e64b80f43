"""
AES-256-GCM envelope encryption for vault records.

Every value is encrypted on its own with a fresh 12-byte nonce, stored in
front of the ciphertext:

    nonce (12 bytes) | ciphertext | tag (16 bytes)

The record name is bound in as associated data, so a blob copied onto another
name fails authentication. The 32-byte data key is derived from the master key
material with scrypt and a per-vault salt.
"""

import secrets
from typing import Union

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.scrypt import Scrypt

from .errors import DecryptError

KEY_LENGTH = 32
NONCE_LENGTH = 12
TAG_LENGTH = 16
SALT_LENGTH = 16

SCRYPT_N = 2**15
SCRYPT_R = 8
SCRYPT_P = 1

Buffer = Union[bytes, bytearray, memoryview]


def wipe(buffer: bytearray) -> None:
    """Zero a mutable buffer in place."""
    buffer[:] = bytes(len(buffer))


def new_salt() -> bytes:
    return secrets.token_bytes(SALT_LENGTH)


def derive_key(material: Buffer, salt: bytes) -> bytearray:
    """Stretch master key material into a 32-byte data key."""
    kdf = Scrypt(salt=salt, length=KEY_LENGTH, n=SCRYPT_N, r=SCRYPT_R, p=SCRYPT_P)
    return bytearray(kdf.derive(bytes(material)))


def encrypt(plaintext: Buffer, key: Buffer, name: str) -> bytes:
    """Encrypt plaintext for the record called `name`. Returns nonce + ciphertext + tag."""
    nonce = secrets.token_bytes(NONCE_LENGTH)
    aesgcm = AESGCM(bytes(key))
    return nonce + aesgcm.encrypt(nonce, bytes(plaintext), name.encode("utf-8"))


def decrypt(data: bytes, key: Buffer, name: str) -> bytearray:
    """
    Decrypt a record blob.

    Any failure (wrong key, truncated or tampered blob, blob belonging to a
    different name) raises DecryptError; no partial plaintext is returned.
    The caller owns the returned buffer and should wipe() it when done.
    """
    if data is None or len(data) < NONCE_LENGTH + TAG_LENGTH:
        raise DecryptError(f"Encrypted value for {name} is truncated")

    nonce = bytes(data[:NONCE_LENGTH])
    ciphertext = bytes(data[NONCE_LENGTH:])
    try:
        plaintext = AESGCM(bytes(key)).decrypt(nonce, ciphertext, name.encode("utf-8"))
    except InvalidTag:
        raise DecryptError(
            f"Cannot decrypt {name}: wrong master key or corrupted record"
        ) from None
    return bytearray(plaintext)
