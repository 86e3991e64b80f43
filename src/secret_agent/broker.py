"""Resolve-and-run: the exec pipeline."""

import logging
from typing import Optional, Sequence, Union

from . import executor
from .executor import ExecConfig, ExecResult
from .plan import EnvDirective, InvocationPlan, injection_plan, template_plan
from .sanitize import Sanitizer
from .vault import Vault

logger = logging.getLogger(__name__)


def execute_plan(plan: InvocationPlan, config: ExecConfig) -> ExecResult:
    """Run a plan and redact its secrets from stdout and stderr."""
    raw = executor.run(plan.argv, plan.env, config)
    sanitizer = Sanitizer(plan.bindings)
    return ExecResult(
        exit_code=raw.exit_code,
        stdout=sanitizer.sanitize(raw.stdout),
        stderr=sanitizer.sanitize(raw.stderr),
    )


def exec_template(vault: Vault, command: str, config: Optional[ExecConfig] = None) -> ExecResult:
    """
    Run a {{NAME}} template command through the shell.

    Raises SecretNotFoundError / UnsupportedValueError / DecryptError before
    anything is spawned.
    """
    config = config or ExecConfig.from_process()
    with template_plan(vault, command, shell=config.shell) as plan:
        logger.info("Running template command with %d secret(s)", len(plan.bindings))
        return execute_plan(plan, config)


def exec_injection(
    vault: Vault,
    directives: Sequence[Union[str, EnvDirective]],
    argv: Sequence[str],
    config: Optional[ExecConfig] = None,
) -> ExecResult:
    """Run argv with secrets injected as environment variables."""
    config = config or ExecConfig.from_process()
    with injection_plan(vault, directives, argv) as plan:
        logger.info("Running %s with %d injected secret(s)", argv[0], len(plan.bindings))
        return execute_plan(plan, config)
