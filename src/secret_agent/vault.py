"""
Encrypted secret vault backed by a single SQLite file.

Tables:
    secrets(name, encrypted_value, created_at, updated_at)
    metadata(key, value)  -- schema_version, created_at, kdf_salt, key_check

Values are decrypted on every read and handed back as bytearrays the caller
wipes. Writes run inside BEGIN IMMEDIATE transactions, which hold the SQLite
write lock for their duration; the WAL journal lets readers carry on.
"""

import base64
import logging
import os
import re
import sqlite3
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional, TextIO, Tuple, Union

from .config import Settings
from .crypto import decrypt, derive_key, encrypt, new_salt, wipe
from .errors import (
    DecryptError,
    InvalidSecretNameError,
    SecretExistsError,
    SecretNotFoundError,
    SecretsError,
)
from .keys import KeyResolver, build_resolver

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 1
BUSY_TIMEOUT = 10.0

KEY_CHECK_NAME = "__key_check__"
KEY_CHECK_TOKEN = b"secret-agent key check"

_NAME_SEGMENT = re.compile(r"^[A-Za-z_][A-Za-z0-9_-]*$")

_SCHEMA = """
CREATE TABLE IF NOT EXISTS secrets (
    name TEXT PRIMARY KEY,
    encrypted_value BLOB NOT NULL,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);
CREATE TABLE IF NOT EXISTS metadata (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL
);
"""


@dataclass(frozen=True)
class SecretRecord:
    """Metadata of one stored secret. Never carries the value."""

    name: str
    created_at: datetime
    updated_at: datetime

    @property
    def bucket(self) -> Optional[str]:
        return split_bucket(self.name)[0]

    @property
    def short_name(self) -> str:
        return split_bucket(self.name)[1]


def split_bucket(name: str) -> Tuple[Optional[str], str]:
    """'prod/API_KEY' -> ('prod', 'API_KEY'); 'API_KEY' -> (None, 'API_KEY')."""
    if "/" in name:
        bucket, _, short = name.partition("/")
        return bucket, short
    return None, name


def validate_name(name: str) -> None:
    """Names are NAME or bucket/NAME; each part starts with a letter or underscore."""
    if not name:
        raise InvalidSecretNameError("Secret name cannot be empty")

    parts = name.split("/")
    if len(parts) > 2:
        raise InvalidSecretNameError(f"Invalid secret name {name!r}: only one bucket level is allowed")

    for part in parts:
        if not _NAME_SEGMENT.match(part):
            raise InvalidSecretNameError(
                f"Invalid secret name {name!r}: use letters, digits, '_' and '-', "
                "starting with a letter or underscore"
            )


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _parse_time(value: str) -> datetime:
    return datetime.fromisoformat(value)


def _as_bytes(value: Union[str, bytes, bytearray]) -> bytes:
    if isinstance(value, str):
        return value.encode("utf-8")
    return bytes(value)


class Vault:
    """
    Named, encrypted secrets in one SQLite file.

    The database is created lazily by the first put(); list(), delete() and
    metadata reads work without resolving the master key. Use as a context
    manager (or call close()) so the derived data key gets wiped.
    """

    def __init__(self, path: Path, resolver: KeyResolver, busy_timeout: float = BUSY_TIMEOUT):
        self.path = Path(path)
        self.busy_timeout = busy_timeout
        self._resolver = resolver
        self._conn: Optional[sqlite3.Connection] = None
        self._key: Optional[bytearray] = None

    @classmethod
    def open(cls, settings: Settings, stdin: Optional[TextIO] = None) -> "Vault":
        return cls(settings.vault_path, build_resolver(settings, stdin))

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        self.close()

    def close(self) -> None:
        if self._key is not None:
            wipe(self._key)
            self._key = None
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    # -- connection and schema -------------------------------------------

    @property
    def initialized(self) -> bool:
        """True once the database file exists."""
        return self.path.exists()

    def _connect(self, create: bool = False) -> Optional[sqlite3.Connection]:
        if self._conn is not None:
            return self._conn

        if not self.path.exists():
            if not create:
                return None
            self.path.parent.mkdir(parents=True, exist_ok=True, mode=0o700)
            # Create the file owner-only before SQLite opens it
            os.close(os.open(self.path, os.O_RDWR | os.O_CREAT, 0o600))
            logger.info("Creating vault at %s", self.path)

        conn = sqlite3.connect(str(self.path), timeout=self.busy_timeout, isolation_level=None)
        self._conn = conn

        if create:
            conn.execute("PRAGMA journal_mode=WAL")
            self._init_schema(conn)
        elif not self._has_schema(conn):
            # File exists but no writer has finished creating it yet
            conn.close()
            self._conn = None
            return None

        return conn

    @staticmethod
    def _has_schema(conn: sqlite3.Connection) -> bool:
        row = conn.execute(
            "SELECT 1 FROM sqlite_master WHERE type = 'table' AND name = 'secrets'"
        ).fetchone()
        return row is not None

    @contextmanager
    def _transaction(self, conn: sqlite3.Connection):
        conn.execute("BEGIN IMMEDIATE")
        try:
            yield conn
        except BaseException:
            conn.execute("ROLLBACK")
            raise
        else:
            conn.execute("COMMIT")

    def _init_schema(self, conn: sqlite3.Connection) -> None:
        with self._transaction(conn):
            for statement in _SCHEMA.split(";"):
                if statement.strip():
                    conn.execute(statement)

            row = conn.execute(
                "SELECT value FROM metadata WHERE key = 'schema_version'"
            ).fetchone()
            if row is None:
                now = _now()
                conn.executemany(
                    "INSERT INTO metadata (key, value) VALUES (?, ?)",
                    [
                        ("schema_version", str(SCHEMA_VERSION)),
                        ("created_at", now),
                        ("kdf_salt", new_salt().hex()),
                    ],
                )
            elif int(row[0]) > SCHEMA_VERSION:
                raise SecretsError(
                    f"Vault schema version {row[0]} is newer than this secret-agent supports "
                    f"({SCHEMA_VERSION}); upgrade secret-agent"
                )
            elif int(row[0]) < SCHEMA_VERSION:
                conn.execute(
                    "UPDATE metadata SET value = ? WHERE key = 'schema_version'",
                    (str(SCHEMA_VERSION),),
                )

    def metadata(self) -> dict:
        """Schema metadata (schema_version, created_at). Empty before the first write."""
        conn = self._connect()
        if conn is None:
            return {}
        rows = conn.execute(
            "SELECT key, value FROM metadata WHERE key IN ('schema_version', 'created_at')"
        ).fetchall()
        return dict(rows)

    # -- master key ------------------------------------------------------

    def _data_key(self, conn: sqlite3.Connection) -> bytearray:
        if self._key is not None:
            return self._key

        salt = bytes.fromhex(
            conn.execute("SELECT value FROM metadata WHERE key = 'kdf_salt'").fetchone()[0]
        )
        key_check = self._key_check(conn)

        if key_check is None:
            # No key yet. Providers may create one, so hold the write lock
            # until the key check is stored: a second invocation waits here
            # and then resolves the key this one persisted.
            with self._transaction(conn):
                key_check = self._key_check(conn)
                key, source = self._resolve_key(salt, create=key_check is None)
                if key_check is None:
                    key_check = base64.b64encode(
                        encrypt(KEY_CHECK_TOKEN, key, KEY_CHECK_NAME)
                    ).decode("ascii")
                    conn.execute(
                        "INSERT INTO metadata (key, value) VALUES ('key_check', ?)",
                        (key_check,),
                    )
        else:
            key, source = self._resolve_key(salt, create=False)

        try:
            check = decrypt(base64.b64decode(key_check), key, KEY_CHECK_NAME)
        except DecryptError:
            wipe(key)
            raise DecryptError(
                f"Master key from {source} does not match the vault at {self.path}"
            ) from None
        wipe(check)

        self._key = key
        return key

    @staticmethod
    def _key_check(conn: sqlite3.Connection) -> Optional[str]:
        row = conn.execute("SELECT value FROM metadata WHERE key = 'key_check'").fetchone()
        return row[0] if row else None

    def _resolve_key(self, salt: bytes, create: bool) -> Tuple[bytearray, str]:
        material = self._resolver.resolve(create=create)
        try:
            return derive_key(material.data, salt), material.source
        finally:
            material.wipe()

    # -- records ---------------------------------------------------------

    def put(self, name: str, value: Union[str, bytes, bytearray], overwrite: bool = False) -> None:
        """Encrypt and store a secret. Raises SecretExistsError unless overwrite is set."""
        validate_name(name)
        conn = self._connect(create=True)
        key = self._data_key(conn)
        blob = encrypt(_as_bytes(value), key, name)
        now = _now()

        with self._transaction(conn):
            row = conn.execute("SELECT 1 FROM secrets WHERE name = ?", (name,)).fetchone()
            if row is not None and not overwrite:
                raise SecretExistsError(name)

            if row is None:
                conn.execute(
                    "INSERT INTO secrets (name, encrypted_value, created_at, updated_at) "
                    "VALUES (?, ?, ?, ?)",
                    (name, blob, now, now),
                )
            else:
                conn.execute(
                    "UPDATE secrets SET encrypted_value = ?, updated_at = ? WHERE name = ?",
                    (blob, now, name),
                )

        logger.info("%s secret %s", "Updated" if row else "Stored", name)

    def get(self, name: str) -> bytearray:
        """Decrypt a secret. The caller must wipe() the returned buffer."""
        conn = self._connect()
        if conn is None:
            raise SecretNotFoundError(name)

        row = conn.execute(
            "SELECT encrypted_value FROM secrets WHERE name = ?", (name,)
        ).fetchone()
        if row is None:
            raise SecretNotFoundError(name)

        return decrypt(row[0], self._data_key(conn), name)

    def exists(self, name: str) -> bool:
        conn = self._connect()
        if conn is None:
            return False
        row = conn.execute("SELECT 1 FROM secrets WHERE name = ?", (name,)).fetchone()
        return row is not None

    def record(self, name: str) -> SecretRecord:
        """Metadata for one secret."""
        conn = self._connect()
        row = None
        if conn is not None:
            row = conn.execute(
                "SELECT name, created_at, updated_at FROM secrets WHERE name = ?", (name,)
            ).fetchone()
        if row is None:
            raise SecretNotFoundError(name)
        return SecretRecord(row[0], _parse_time(row[1]), _parse_time(row[2]))

    def list(self, bucket: Optional[str] = None) -> List[SecretRecord]:
        """All secrets ordered by name, optionally only those in one bucket."""
        conn = self._connect()
        if conn is None:
            return []

        rows = conn.execute(
            "SELECT name, created_at, updated_at FROM secrets ORDER BY name"
        ).fetchall()
        records = [SecretRecord(r[0], _parse_time(r[1]), _parse_time(r[2])) for r in rows]

        if bucket is not None:
            records = [r for r in records if r.bucket == bucket]
        return records

    def count(self) -> int:
        conn = self._connect()
        if conn is None:
            return 0
        return conn.execute("SELECT COUNT(*) FROM secrets").fetchone()[0]

    def delete(self, name: str) -> None:
        """Delete a secret. Raises SecretNotFoundError if absent."""
        conn = self._connect()
        if conn is None:
            raise SecretNotFoundError(name)

        with self._transaction(conn):
            deleted = conn.execute("DELETE FROM secrets WHERE name = ?", (name,)).rowcount
            if deleted == 0:
                raise SecretNotFoundError(name)

        logger.info("Deleted secret %s", name)
