"""
Turn an exec request into an invocation plan.

Two mutually exclusive modes:

template   "curl -H 'Auth: {{API_KEY}}' https://..." runs through the shell
           with each {{NAME}} replaced literally by the secret value.
injection  ["prod/DB_PASS", "TLS_KEY:SSL_KEY"] plus a program argv; each
           secret becomes an environment variable of the child.

Every referenced name is resolved before anything runs. Any failure wipes the
values already decrypted and propagates, so a half-substituted command never
executes.
"""

import logging
import os
import re
import shlex
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Sequence, Union

from .config import DEFAULT_SHELL
from .crypto import wipe
from .errors import InvalidDirectiveError, UnsupportedValueError
from .vault import Vault, split_bucket, validate_name

logger = logging.getLogger(__name__)

TEMPLATE = "template"
INJECTION = "injection"

_NAME = r"[A-Za-z_][A-Za-z0-9_-]*(?:/[A-Za-z_][A-Za-z0-9_-]*)?"
PLACEHOLDER_RE = re.compile(r"\{\{(" + _NAME + r")\}\}")
_PLACEHOLDER_BYTES_RE = re.compile(PLACEHOLDER_RE.pattern.encode("ascii"))
ENV_VAR_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


@dataclass(frozen=True)
class EnvDirective:
    """Inject vault secret `secret` as environment variable `env_var`."""

    secret: str
    env_var: str

    @classmethod
    def parse(cls, text: str) -> "EnvDirective":
        """
        Parse SECRET or SECRET:VAR.

        Without a rename the variable is the secret name minus its bucket
        (prod/API_KEY -> API_KEY). An explicit rename always wins.
        """
        secret, sep, rename = text.partition(":")
        if sep and not rename:
            raise InvalidDirectiveError(f"Empty variable name in --env {text!r}")

        validate_name(secret)
        env_var = rename if sep else split_bucket(secret)[1]
        if not ENV_VAR_RE.match(env_var):
            raise InvalidDirectiveError(
                f"Invalid environment variable name {env_var!r} in --env {text!r}; "
                f"use SECRET:VAR to rename"
            )
        return cls(secret, env_var)


@dataclass
class InvocationPlan:
    """
    Resolved argv/env for one exec call plus the secrets used.

    `env` only holds the injected variables; the executor layers it over its
    base environment. Use as a context manager so the bindings get wiped.
    """

    mode: str
    argv: List[bytes]
    env: Dict[bytes, bytes] = field(default_factory=dict)
    bindings: Dict[str, bytearray] = field(default_factory=dict)

    def wipe(self) -> None:
        """Zero the bindings. The bytes in argv and env can only be dropped, not zeroed."""
        for value in self.bindings.values():
            wipe(value)
        self.bindings.clear()
        self.env.clear()

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        self.wipe()

    def __repr__(self) -> str:
        return f"InvocationPlan(mode={self.mode!r}, secrets={sorted(self.bindings)!r})"


def parse_placeholders(command: str) -> List[str]:
    """Distinct {{NAME}} references in first-seen order."""
    seen = []
    for match in PLACEHOLDER_RE.finditer(command):
        name = match.group(1)
        if name not in seen:
            seen.append(name)
    return seen


def build_command(args: Sequence[str]) -> str:
    """
    Template string for a command given as CLI words.

    A single word is taken verbatim (the caller did their own quoting);
    several words are shell-quoted and joined.
    """
    if len(args) == 1:
        return args[0]
    return shlex.join(args)


def resolve_secrets(vault: Vault, names: Iterable[str]) -> Dict[str, bytearray]:
    """Decrypt every name or none of them."""
    bindings: Dict[str, bytearray] = {}
    try:
        for name in names:
            if name not in bindings:
                bindings[name] = vault.get(name)
    except BaseException:
        for value in bindings.values():
            wipe(value)
        raise
    return bindings


def _check_no_nul(bindings: Dict[str, bytearray]) -> None:
    for name, value in bindings.items():
        if b"\x00" in value:
            raise UnsupportedValueError(f"Secret {name} contains a NUL byte and cannot be passed to a process")


def template_plan(vault: Vault, command: str, shell: str = DEFAULT_SHELL) -> InvocationPlan:
    """Resolve {{NAME}} placeholders and build `shell -c <command>`."""
    names = parse_placeholders(command)
    bindings = resolve_secrets(vault, names)
    try:
        _check_no_nul(bindings)
        for name, value in bindings.items():
            if b"\n" in value or b"\r" in value:
                raise UnsupportedValueError(
                    f"Secret {name} is multi-line and cannot be used in a {{{{...}}}} template; "
                    f"inject it with --env {name} instead"
                )

        # One pass, so a value that looks like a placeholder is left alone
        rendered = _PLACEHOLDER_BYTES_RE.sub(
            lambda m: bytes(bindings[m.group(1).decode("ascii")]),
            command.encode("utf-8"),
        )
    except BaseException:
        for value in bindings.values():
            wipe(value)
        raise

    logger.debug("Template plan with %d secret(s): %s", len(bindings), ", ".join(bindings))
    return InvocationPlan(TEMPLATE, [os.fsencode(shell), b"-c", rendered], bindings=bindings)


def injection_plan(
    vault: Vault,
    directives: Sequence[Union[str, EnvDirective]],
    argv: Sequence[str],
) -> InvocationPlan:
    """Resolve --env directives into environment variables for `argv`."""
    if not argv:
        raise InvalidDirectiveError("No command specified")

    parsed = [d if isinstance(d, EnvDirective) else EnvDirective.parse(d) for d in directives]

    targets = {}
    for directive in parsed:
        other = targets.setdefault(directive.env_var, directive.secret)
        if other != directive.secret:
            raise InvalidDirectiveError(
                f"Both {other} and {directive.secret} would be injected as {directive.env_var}"
            )

    for arg in argv:
        if PLACEHOLDER_RE.search(arg):
            raise InvalidDirectiveError(
                "{{...}} templates cannot be combined with --env injection; use one or the other"
            )

    bindings = resolve_secrets(vault, (d.secret for d in parsed))
    try:
        _check_no_nul(bindings)
        env = {
            os.fsencode(d.env_var): bytes(bindings[d.secret])
            for d in parsed
        }
    except BaseException:
        for value in bindings.values():
            wipe(value)
        raise

    logger.debug(
        "Injection plan: %s",
        ", ".join(f"{d.secret} -> {d.env_var}" for d in parsed),
    )
    return InvocationPlan(INJECTION, [os.fsencode(a) for a in argv], env=env, bindings=bindings)
