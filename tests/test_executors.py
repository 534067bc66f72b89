from pathlib import Path
import subprocess

import pytest

from stagehand_automation import executors as executors_mod
from stagehand_automation.executors import LocalExecutor, SSHExecutor, executor_for
from stagehand_automation.types import HostConfig


def test_local_run_captures_output(tmp_path: Path) -> None:
    executor = LocalExecutor(HostConfig(name="local"))
    result = executor.run(["sh", "-c", "echo $GREETING; pwd"], env={"GREETING": "hi"}, cwd=tmp_path)

    assert result.returncode == 0
    assert result.stdout.splitlines() == ["hi", str(tmp_path)]


def test_local_run_check_raises() -> None:
    executor = LocalExecutor(HostConfig(name="local"))
    with pytest.raises(subprocess.CalledProcessError):
        executor.run(["sh", "-c", "exit 4"])
    assert executor.run(["sh", "-c", "exit 4"], check=False).returncode == 4


def test_dry_run_skips_mutable_commands_only() -> None:
    executor = LocalExecutor(HostConfig(name="local"), dry_run=True)

    skipped = executor.run(["sh", "-c", "exit 9"])
    probe = executor.run(["sh", "-c", "echo probe"], mutable=False)

    assert skipped.stderr == "skipped (dry-run)"
    assert probe.stdout.strip() == "probe"


def test_write_file_reports_changes(tmp_path: Path) -> None:
    executor = LocalExecutor(HostConfig(name="local"))
    target = tmp_path / "conf" / "app.ini"

    assert executor.write_file(target, content="a=1\n", mode=0o600) == (True, "content, mode->0600")
    assert executor.write_file(target, content="a=1\n", mode=0o600) == (False, "noop")


def test_executor_for_selects_by_connection() -> None:
    assert isinstance(executor_for(HostConfig(name="local")), LocalExecutor)
    assert isinstance(executor_for(HostConfig(name="web1", connection="ssh")), SSHExecutor)
    with pytest.raises(ValueError):
        executor_for(HostConfig(name="win", connection="winrm"))


class FakeChannel:
    def __init__(self, rc: int):
        self.rc = rc

    def recv_exit_status(self) -> int:
        return self.rc


class FakeStream:
    def __init__(self, data: str, rc: int = 0):
        self.data = data
        self.channel = FakeChannel(rc)

    def read(self) -> bytes:
        return self.data.encode()


class FakeSSHClient:
    def __init__(self, stdout: str = "", stderr: str = "", rc: int = 0):
        self.lines: list[str] = []
        self.stdout = stdout
        self.stderr = stderr
        self.rc = rc
        self.closed = False

    def exec_command(self, line: str, timeout=None):  # noqa: ARG002
        self.lines.append(line)
        return None, FakeStream(self.stdout, self.rc), FakeStream(self.stderr)

    def close(self) -> None:
        self.closed = True


def test_ssh_execute_builds_remote_command_line() -> None:
    client = FakeSSHClient(stdout="ok\n", rc=0)
    host = HostConfig(name="web1", connection="ssh", address="10.44.1.10")
    executor = SSHExecutor(host, client=client)

    result = executor.run(["apt-get", "install", "-y", "nginx"], env={"DEBIAN_FRONTEND": "noninteractive"}, cwd="/tmp")

    assert client.lines == ["cd /tmp && env DEBIAN_FRONTEND=noninteractive apt-get install -y nginx"]
    assert result.stdout == "ok\n"
    assert result.returncode == 0

    executor.close()
    assert client.closed is True


def test_ssh_nonzero_exit_raises_when_checked() -> None:
    client = FakeSSHClient(stderr="denied", rc=1)
    executor = SSHExecutor(HostConfig(name="web1", connection="ssh"), client=client)

    with pytest.raises(subprocess.CalledProcessError):
        executor.run(["iptables", "-P", "INPUT", "DROP"])


def test_ssh_connect_expands_home_in_key_file(monkeypatch) -> None:
    connects = []

    class RecordingClient(FakeSSHClient):
        def set_missing_host_key_policy(self, policy) -> None:  # noqa: ARG002
            pass

        def connect(self, **kwargs) -> None:
            connects.append(kwargs)

    monkeypatch.setenv("HOME", "/home/deploy")
    monkeypatch.setattr(executors_mod.paramiko, "SSHClient", RecordingClient)
    host = HostConfig(
        name="web1", connection="ssh", address="10.44.1.10", user="ubuntu", key_file="~/.ssh/id_ed25519"
    )

    SSHExecutor(host).run(["true"])

    assert connects[0]["key_filename"] == "/home/deploy/.ssh/id_ed25519"
    assert connects[0]["hostname"] == "10.44.1.10"
    assert connects[0]["username"] == "ubuntu"
