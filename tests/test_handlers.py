import pytest

from stagehand_automation.handlers import NotificationQueue
from stagehand_automation.types import HandlerSpec, TaskSpec


def _handler(name: str) -> HandlerSpec:
    return HandlerSpec(name=name, task=TaskSpec(name=name, type="service", data={"name": name}))


def test_flush_runs_each_handler_once_in_declaration_order() -> None:
    queue = NotificationQueue([_handler("Restart ssh"), _handler("Restart fail2ban")])

    queue.notify(["Restart fail2ban"])
    queue.notify(["Restart ssh", "Restart fail2ban"])
    queue.notify(["Restart fail2ban"])

    assert [h.name for h in queue.flush()] == ["Restart ssh", "Restart fail2ban"]
    assert not queue
    assert queue.flush() == []


def test_unknown_handler_is_rejected() -> None:
    queue = NotificationQueue([_handler("Restart ssh")])
    with pytest.raises(KeyError):
        queue.notify(["Restart sshd"])
