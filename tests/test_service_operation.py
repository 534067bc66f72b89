import pytest

from stagehand_automation.errors import OperationError
from stagehand_automation.operations.service import ServiceOperation
from stagehand_automation.types import HostConfig


class FakeSystemCtl:
    executable = "systemctl"

    def __init__(self, enabled: bool = False, active: bool = False, available: bool = True):
        self.enabled = enabled
        self.active = active
        self._available = available
        self.actions: list[str] = []

    def available(self, executor) -> bool:  # noqa: ARG002
        return self._available

    def is_enabled(self, executor, service: str) -> bool:  # noqa: ARG002
        return self.enabled

    def is_active(self, executor, service: str) -> bool:  # noqa: ARG002
        return self.active

    def enable(self, executor, service: str) -> None:  # noqa: ARG002
        self.enabled = True
        self.actions.append("enable")

    def disable(self, executor, service: str) -> None:  # noqa: ARG002
        self.enabled = False
        self.actions.append("disable")

    def start(self, executor, service: str) -> None:  # noqa: ARG002
        self.active = True
        self.actions.append("start")

    def stop(self, executor, service: str) -> None:  # noqa: ARG002
        self.active = False
        self.actions.append("stop")

    def restart(self, executor, service: str) -> None:  # noqa: ARG002
        self.actions.append("restart")

    def reload(self, executor, service: str) -> None:  # noqa: ARG002
        self.actions.append("reload")


class DummyExecutor:
    def __init__(self):
        self.host = HostConfig(name="local")
        self.dry_run = False
        self.commands: list[list[str]] = []

    def run(self, command, **kwargs):  # noqa: ARG002
        self.commands.append(list(command))


def test_service_enable_and_start_then_noop():
    op = ServiceOperation({"name": "filebeat", "enabled": "yes", "state": "started"})
    fake = FakeSystemCtl(enabled=False, active=False)
    op.systemctl = fake

    result = op.apply(HostConfig("local"), DummyExecutor())
    assert result.changed is True
    assert result.details == "enabled, started"
    assert fake.actions == ["enable", "start"]

    again = op.apply(HostConfig("local"), DummyExecutor())
    assert again.changed is False
    assert again.details == "noop"


def test_running_is_an_alias_for_started():
    op = ServiceOperation({"name": "ssh", "state": "running"})
    fake = FakeSystemCtl(active=True)
    op.systemctl = fake
    assert op.apply(HostConfig("local"), DummyExecutor()).changed is False


def test_restarted_always_reports_change():
    op = ServiceOperation({"name": "ntp", "state": "restarted"})
    fake = FakeSystemCtl(enabled=True, active=True)
    op.systemctl = fake

    for _ in range(2):
        result = op.apply(HostConfig("local"), DummyExecutor())
        assert result.changed is True
        assert result.details == "restarted"
    assert fake.actions == ["restart", "restart"]


def test_reloaded_always_reports_change():
    op = ServiceOperation({"name": "nginx", "state": "reloaded"})
    op.systemctl = FakeSystemCtl(active=True)
    assert op.apply(HostConfig("local"), DummyExecutor()).details == "reloaded"


def test_stop_and_disable():
    op = ServiceOperation({"name": "apache2", "enabled": False, "state": "stopped"})
    fake = FakeSystemCtl(enabled=True, active=True)
    op.systemctl = fake

    result = op.apply(HostConfig("local"), DummyExecutor())

    assert result.details == "disabled, stopped"
    assert fake.actions == ["disable", "stop"]


def test_daemon_reload_runs_first():
    executor = DummyExecutor()
    op = ServiceOperation({"name": "kibana", "state": "started", "daemon_reload": True})
    op.systemctl = FakeSystemCtl(active=True)

    op.apply(HostConfig("local"), executor)

    assert executor.commands == [["systemctl", "daemon-reload"]]


def test_missing_systemctl_fails():
    op = ServiceOperation({"name": "ssh", "state": "started"})
    op.systemctl = FakeSystemCtl(available=False)
    with pytest.raises(OperationError):
        op.apply(HostConfig("local"), DummyExecutor())


def test_invalid_state_rejected():
    with pytest.raises(ValueError):
        ServiceOperation({"name": "ssh", "state": "bounced"})
