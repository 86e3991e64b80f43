"""Run the child process and capture its output."""

import logging
import os
import signal
import subprocess
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Mapping, Optional, Sequence, Union

from .config import DEFAULT_SHELL, ENV_PASSPHRASE
from .errors import ChildProcessSpawnError

logger = logging.getLogger(__name__)

Arg = Union[str, bytes]


@dataclass(frozen=True)
class ExecConfig:
    """
    Process state handed to the child.

    Nothing is read from the current process implicitly; use from_process()
    to snapshot it.
    """

    env: Mapping[str, str] = field(default_factory=dict)
    cwd: Optional[Path] = None
    shell: str = DEFAULT_SHELL

    @classmethod
    def from_process(cls, shell: str = DEFAULT_SHELL) -> "ExecConfig":
        """Snapshot cwd and environment; the master passphrase is never passed on."""
        env = {k: v for k, v in os.environ.items() if k != ENV_PASSPHRASE}
        return cls(env=env, cwd=Path.cwd(), shell=shell)


@dataclass(frozen=True)
class ExecResult:
    """
    Outcome of a child process.

    exit_code is subprocess's returncode: negative -N when killed by signal N.
    """

    exit_code: int
    stdout: bytes
    stderr: bytes

    @property
    def signal(self) -> Optional[int]:
        return -self.exit_code if self.exit_code < 0 else None

    @property
    def exit_status(self) -> int:
        """Shell-style status: 128+N for a signal, else the exit code."""
        if self.exit_code < 0:
            return 128 - self.exit_code
        return self.exit_code

    def describe(self) -> str:
        if self.signal is not None:
            try:
                return f"killed by {signal.Signals(self.signal).name}"
            except ValueError:
                return f"killed by signal {self.signal}"
        return f"exit code {self.exit_code}"


def run(
    argv: Sequence[Arg],
    env: Optional[Mapping[bytes, bytes]] = None,
    config: Optional[ExecConfig] = None,
) -> ExecResult:
    """
    Run argv with `env` layered over config.env, capturing stdout and stderr.

    Both pipes are drained concurrently (communicate()), so a child filling
    one pipe while we wait on the other cannot deadlock. The arguments are
    never logged; in template mode they contain secret values.
    """
    if not argv:
        raise ChildProcessSpawnError("No command specified")

    config = config or ExecConfig()
    child_env: Dict[bytes, bytes] = {
        os.fsencode(k): os.fsencode(v) for k, v in config.env.items()
    }
    if env:
        child_env.update(env)

    program = os.fsdecode(argv[0])
    logger.debug("Spawning %s", program)

    try:
        proc = subprocess.run(
            list(argv),
            env=child_env,
            cwd=config.cwd,
            stdin=subprocess.DEVNULL,
            capture_output=True,
            shell=False,
        )
    except OSError as e:
        raise ChildProcessSpawnError(f"Failed to run {program}: {e.strerror or e}") from None
    finally:
        child_env.clear()

    result = ExecResult(proc.returncode, proc.stdout, proc.stderr)
    logger.debug("%s finished: %s", program, result.describe())
    return result
