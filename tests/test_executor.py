"""Tests for the process executor."""

import os
import sys

import pytest

from secret_agent.errors import ChildProcessSpawnError
from secret_agent.executor import ExecConfig, ExecResult, run

posix_only = pytest.mark.skipif(os.name != "posix", reason="POSIX shell")


@posix_only
class TestRun:
    def test_captures_stdout_and_stderr(self, exec_config):
        result = run([b"/bin/sh", b"-c", b"echo out; echo err >&2"], config=exec_config)
        assert result.exit_code == 0
        assert result.stdout == b"out\n"
        assert result.stderr == b"err\n"

    def test_nonzero_exit_passthrough(self, exec_config):
        result = run(["/bin/sh", "-c", "exit 42"], config=exec_config)
        assert result.exit_code == 42
        assert result.exit_status == 42
        assert result.signal is None

    def test_signal_exit(self, exec_config):
        result = run(["/bin/sh", "-c", "kill -9 $$"], config=exec_config)
        assert result.exit_code == -9
        assert result.signal == 9
        assert result.exit_status == 137
        assert result.describe() == "killed by SIGKILL"

    def test_env_layered_over_base(self, exec_config):
        config = ExecConfig(env={**exec_config.env, "BASE": "base", "OVERRIDE": "old"})
        result = run(
            ["/bin/sh", "-c", 'echo "$BASE $OVERRIDE $INJECTED"'],
            env={b"OVERRIDE": b"new", b"INJECTED": b"yes"},
            config=config,
        )
        assert result.stdout == b"base new yes\n"

    def test_explicit_env_only(self, exec_config, monkeypatch):
        """The child sees the configured environment, not ours."""
        monkeypatch.setenv("LEAKY_PARENT_VAR", "leak")
        result = run(["/bin/sh", "-c", 'echo "[$LEAKY_PARENT_VAR]"'], config=exec_config)
        assert result.stdout == b"[]\n"

    def test_cwd(self, exec_config, tmp_path):
        result = run(["/bin/sh", "-c", "pwd"], config=exec_config)
        assert os.path.realpath(result.stdout.decode().strip()) == os.path.realpath(str(tmp_path))

    def test_stdin_is_closed(self, exec_config):
        result = run(["/bin/sh", "-c", "cat; echo done"], config=exec_config)
        assert result.stdout == b"done\n"

    def test_large_output_on_both_streams(self, exec_config):
        """Filling stderr first must not deadlock while stdout is also pending."""
        script = (
            "import sys\n"
            "sys.stderr.write('e' * 1000000)\n"
            "sys.stderr.flush()\n"
            "sys.stdout.write('o' * 1000000)\n"
        )
        result = run([sys.executable, "-c", script], config=exec_config)
        assert result.exit_code == 0
        assert len(result.stdout) == 1000000
        assert len(result.stderr) == 1000000

    def test_spawn_failure(self, exec_config):
        with pytest.raises(ChildProcessSpawnError, match="no-such-program-xyz"):
            run(["no-such-program-xyz"], config=exec_config)

    def test_empty_argv(self, exec_config):
        with pytest.raises(ChildProcessSpawnError):
            run([], config=exec_config)


class TestExecResult:
    def test_exit_status(self):
        assert ExecResult(0, b"", b"").exit_status == 0
        assert ExecResult(3, b"", b"").describe() == "exit code 3"
        assert ExecResult(-15, b"", b"").exit_status == 143

    def test_from_process_snapshot(self, monkeypatch, tmp_path):
        monkeypatch.setenv("SNAPSHOT_VAR", "1")
        monkeypatch.chdir(tmp_path)
        config = ExecConfig.from_process(shell="/bin/bash")
        assert config.env["SNAPSHOT_VAR"] == "1"
        assert config.cwd.resolve() == tmp_path.resolve()
        assert config.shell == "/bin/bash"

    def test_from_process_drops_passphrase(self, monkeypatch):
        monkeypatch.setenv("SECRET_AGENT_PASSPHRASE", "hunter2")
        assert "SECRET_AGENT_PASSPHRASE" not in ExecConfig.from_process().env
