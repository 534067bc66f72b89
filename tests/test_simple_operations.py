import logging

import pytest

from stagehand_automation.operations import ALIASES, OPERATION_REGISTRY
from stagehand_automation.operations.debug import DebugOperation
from stagehand_automation.operations.pause import PauseOperation
from stagehand_automation.operations.set_fact import SetFactOperation
from stagehand_automation.types import HostConfig


class DummyExecutor:
    def __init__(self, dry_run: bool = False):
        self.host = HostConfig(name="local")
        self.dry_run = dry_run


def test_pause_sleeps_for_minutes_and_seconds(monkeypatch):
    slept: list[float] = []
    monkeypatch.setattr(PauseOperation, "sleep", staticmethod(slept.append))

    result = PauseOperation({"minutes": 1, "seconds": "5"}).apply(HostConfig("local"), DummyExecutor())

    assert slept == [65.0]
    assert result.changed is False
    assert result.details == "paused 65s"


def test_pause_skipped_in_dry_run(monkeypatch):
    slept: list[float] = []
    monkeypatch.setattr(PauseOperation, "sleep", staticmethod(slept.append))

    PauseOperation({"seconds": 30}).apply(HostConfig("local"), DummyExecutor(dry_run=True))

    assert slept == []


def test_pause_rejects_negative():
    with pytest.raises(ValueError):
        PauseOperation({"seconds": -1})


def test_set_fact_returns_facts():
    result = SetFactOperation({"elastic_password": "pw", "_plan_dir": "/x"}).apply(
        HostConfig("local"), DummyExecutor()
    )
    assert result.facts == {"elastic_password": "pw"}
    assert result.changed is False


def test_debug_logs_message(caplog):
    caplog.set_level(logging.INFO, logger="stagehand_automation.operations.debug")
    op = DebugOperation({"msg": ["Elastic user password: pw", "Kibana code: 42"]})

    result = op.apply(HostConfig("elk1"), DummyExecutor())

    assert result.details == "Elastic user password: pw; Kibana code: 42"
    assert result.output == {"msg": ["Elastic user password: pw", "Kibana code: 42"]}
    assert "Kibana code: 42" in caplog.text


def test_debug_requires_msg():
    with pytest.raises(ValueError):
        DebugOperation({})


def test_aliases_point_at_registered_operations():
    assert set(ALIASES.values()) <= set(OPERATION_REGISTRY)
    assert OPERATION_REGISTRY[ALIASES["iptables"]].action == "firewall"
