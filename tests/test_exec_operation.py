from pathlib import Path

import pytest

from stagehand_automation.executors import CommandResult, LocalExecutor
from stagehand_automation.operations.command import CommandOperation, ShellOperation
from stagehand_automation.types import HostConfig


class RecordingExecutor:
    def __init__(self, stdout: str = "", stderr: str = "", returncode: int = 0):
        self.host = HostConfig(name="local")
        self.dry_run = False
        self.commands: list[list[str]] = []
        self.stdout = stdout
        self.stderr = stderr
        self.returncode = returncode
        self.existing: set[str] = set()
        self.last_env = None
        self.last_cwd = None

    def run(self, command, *, check=True, mutable=True, env=None, cwd=None, timeout=None):  # noqa: ARG002
        self.commands.append(list(command))
        self.last_env = env
        self.last_cwd = cwd
        return CommandResult(list(command), self.stdout, self.stderr, self.returncode)

    def exists(self, path: Path) -> bool:
        return str(path) in self.existing


def test_command_always_reports_change() -> None:
    executor = RecordingExecutor(stdout="Config OK\n")
    op = CommandOperation({"cmd": "filebeat test config"})

    first = op.apply(HostConfig("local"), executor)
    second = op.apply(HostConfig("local"), executor)

    assert first.changed and second.changed
    assert executor.commands == [["filebeat", "test", "config"]] * 2
    assert first.output["stdout"] == "Config OK"
    assert first.output["stdout_lines"] == ["Config OK"]
    assert first.output["rc"] == 0


def test_command_creates_skips_when_path_exists() -> None:
    executor = RecordingExecutor()
    executor.existing.add("/opt/venv/bin/activate")
    op = CommandOperation({"cmd": "python3 -m venv /opt/venv", "creates": "/opt/venv/bin/activate"})

    result = op.apply(HostConfig("local"), executor)

    assert result.changed is False
    assert "creates" in result.details
    assert executor.commands == []


def test_command_removes_skips_when_path_missing() -> None:
    executor = RecordingExecutor()
    op = CommandOperation({"cmd": "rm /tmp/lock", "removes": "/tmp/lock"})

    result = op.apply(HostConfig("local"), executor)

    assert result.changed is False
    assert executor.commands == []


def test_command_bad_exit_code_fails_with_output() -> None:
    executor = RecordingExecutor(stderr="E: Could not get lock\n", returncode=100)
    op = CommandOperation({"cmd": "apt-get install -y nginx"})

    result = op.apply(HostConfig("local"), executor)

    assert result.failed is True
    assert result.details == "rc=100: E: Could not get lock"
    assert result.output["rc"] == 100


def test_command_allowed_returns() -> None:
    executor = RecordingExecutor(returncode=3)
    op = CommandOperation({"cmd": "systemctl is-active filebeat", "returns": [0, 3]})
    assert op.apply(HostConfig("local"), executor).failed is False


def test_shell_wraps_string_in_sh() -> None:
    executor = RecordingExecutor()
    op = ShellOperation(
        {"cmd": "echo y | elasticsearch-reset-password -u elastic", "chdir": "/usr/share", "env": ["A=1"]}
    )

    op.apply(HostConfig("local"), executor)

    assert executor.commands == [["sh", "-c", "echo y | elasticsearch-reset-password -u elastic"]]
    assert executor.last_cwd == Path("/usr/share")
    assert executor.last_env == {"A": "1"}


def test_command_requires_cmd() -> None:
    with pytest.raises(ValueError):
        CommandOperation({})


def test_command_runs_locally(tmp_path: Path) -> None:
    executor = LocalExecutor(HostConfig(name="local"))
    op = ShellOperation({"cmd": "printf 'a\\nb\\n' > out.txt && cat out.txt", "chdir": str(tmp_path)})

    result = op.apply(HostConfig("local"), executor)

    assert result.changed is True
    assert result.output["stdout_lines"] == ["a", "b"]
    assert (tmp_path / "out.txt").exists()


def test_command_dry_run_does_not_execute(tmp_path: Path) -> None:
    executor = LocalExecutor(HostConfig(name="local"), dry_run=True)
    marker = tmp_path / "marker"
    op = CommandOperation({"cmd": ["touch", str(marker)]})

    result = op.apply(HostConfig("local"), executor)

    assert result.details == "dry-run"
    assert not marker.exists()
