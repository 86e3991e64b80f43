""".env files: bulk import/export and writing single secrets into files."""

import logging
import os
import re
from pathlib import Path
from typing import Iterable, List, Optional, Tuple

from .crypto import wipe
from .errors import InvalidDirectiveError, SecretsError, UnsupportedValueError
from .vault import Vault, split_bucket

logger = logging.getLogger(__name__)

_ENV_NAME = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")
_NEEDS_QUOTES = (" ", '"', "'", "$", "\n", "#")


def quote_env_value(value: str) -> str:
    """Double-quote a value when a .env parser would otherwise mangle it."""
    if not any(c in value for c in _NEEDS_QUOTES):
        return value
    escaped = (
        value.replace("\\", "\\\\")
        .replace('"', '\\"')
        .replace("$", "\\$")
        .replace("\n", "\\n")
    )
    return f'"{escaped}"'


def unquote_env_value(value: str) -> str:
    value = value.strip()
    if len(value) >= 2 and value[0] == value[-1] and value[0] in ("'", '"'):
        inner = value[1:-1]
        if value[0] == "'":
            return inner
        # Single left-to-right pass so "\\n" stays a backslash + n
        return re.sub(
            r'\\(.)',
            lambda m: "\n" if m.group(1) == "n" else m.group(1),
            inner,
        )
    return value


def parse_env_line(line: str) -> Optional[Tuple[str, str]]:
    """NAME=value or export NAME=value; None for blanks, comments and junk."""
    line = line.strip()
    if not line or line.startswith("#"):
        return None
    if line.startswith("export "):
        line = line[len("export "):]

    name, sep, value = line.partition("=")
    name = name.strip()
    if not sep or not _ENV_NAME.match(name):
        return None
    return name, unquote_env_value(value)


def read_text_secret(vault: Vault, name: str) -> str:
    """Decrypt a secret that has to be written out as text."""
    value = vault.get(name)
    try:
        return value.decode("utf-8")
    except UnicodeDecodeError:
        raise UnsupportedValueError(
            f"{name} is not UTF-8 text and cannot be written to a text file"
        ) from None
    finally:
        wipe(value)


def set_env_line(text: str, env_var: str, value: str, export: bool = False) -> str:
    """
    Replace the NAME= (or export NAME=) line for env_var in .env text, or
    append one. The result always ends with a newline.
    """
    line = f"{'export ' if export else ''}{env_var}={quote_env_value(value)}"
    prefixes = (f"{env_var}=", f"export {env_var}=")

    lines, found = [], False
    for existing in text.splitlines():
        if existing.startswith(prefixes):
            lines.append(line)
            found = True
        else:
            lines.append(existing)
    if not found:
        lines.append(line)
    return "\n".join(lines) + "\n"


def inject_env_format(vault: Vault, name: str, path: Path, export: bool = False) -> None:
    """Write a secret into a .env file as NAME=value (bucket prefix stripped)."""
    path = Path(path)
    text = path.read_text() if path.exists() else ""
    value = read_text_secret(vault, name)
    _write_private(path, set_env_line(text, split_bucket(name)[1], value, export))
    logger.info("Injected %s into %s", name, path)


def inject_placeholder(vault: Vault, name: str, path: Path, placeholder: str) -> None:
    """Replace every occurrence of `placeholder` in a file with the secret."""
    path = Path(path)
    if not placeholder:
        raise InvalidDirectiveError("Placeholder cannot be empty")
    try:
        text = path.read_text()
    except FileNotFoundError:
        raise SecretsError(f"File not found: {path}") from None
    if placeholder not in text:
        raise InvalidDirectiveError(f"Placeholder {placeholder!r} not found in {path}")

    path.write_text(text.replace(placeholder, read_text_secret(vault, name)))
    logger.info("Injected %s into %s", name, path)


def _write_private(path: Path, text: str) -> None:
    fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
    with os.fdopen(fd, "w") as f:
        f.write(text)


def import_env_file(vault: Vault, path: Path) -> Tuple[List[str], List[str]]:
    """
    Store every NAME=value in `path` that the vault doesn't have yet.

    Returns (imported, skipped) names.
    """
    imported, skipped = [], []
    for line in Path(path).read_text().splitlines():
        parsed = parse_env_line(line)
        if parsed is None:
            continue
        name, value = parsed
        if vault.exists(name):
            skipped.append(name)
            continue
        vault.put(name, value)
        imported.append(name)

    logger.info("Imported %d secret(s) from %s, skipped %d", len(imported), path, len(skipped))
    return imported, skipped


def export_env_file(vault: Vault, path: Path, names: Optional[Iterable[str]] = None) -> List[str]:
    """
    Write secrets to a .env file (mode 0600), all of them when `names` is None.

    Bucket prefixes are stripped from the variable names.
    """
    if names is None:
        names = [record.name for record in vault.list()]
    names = list(names)

    variables = {}
    for name in names:
        env_var = split_bucket(name)[1]
        if env_var in variables:
            raise InvalidDirectiveError(
                f"Both {variables[env_var]} and {name} would be exported as {env_var}"
            )
        variables[env_var] = name

    lines = []
    for env_var, name in variables.items():
        lines.append(f"{env_var}={quote_env_value(read_text_secret(vault, name))}\n")

    _write_private(Path(path), "".join(lines))

    logger.info("Exported %d secret(s) to %s", len(lines), path)
    return names
