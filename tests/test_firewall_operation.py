import pytest

from stagehand_automation.executors import CommandResult
from stagehand_automation.operations.firewall import FirewallOperation
from stagehand_automation.types import HostConfig


class FakeIptables:
    """In-memory iptables that understands -C, -A, -D, -S and -P."""

    def __init__(self):
        self.host = HostConfig(name="web1")
        self.dry_run = False
        self.rules: dict[tuple[str, str], list[tuple[str, ...]]] = {}
        self.policies: dict[tuple[str, str], str] = {}
        self.mutations: list[list[str]] = []

    def run(self, command, *, check=True, mutable=True, env=None, cwd=None, timeout=None):  # noqa: ARG002
        command = list(command)
        table = command[2]
        verb, chain, rest = command[3], command[4], tuple(command[5:])
        key = (table, chain)
        chain_rules = self.rules.setdefault(key, [])
        if verb == "-C":
            return CommandResult(command, "", "", 0 if rest in chain_rules else 1)
        if verb == "-S":
            lines = [f"-P {chain} {self.policies.get(key, 'ACCEPT')}"]
            lines += [" ".join(("-A", chain, *rule)) for rule in chain_rules]
            return CommandResult(command, "\n".join(lines) + "\n", "", 0)
        self.mutations.append(command)
        if verb == "-A":
            chain_rules.append(rest)
        elif verb == "-D":
            chain_rules.remove(rest)
        elif verb == "-P":
            self.policies[key] = rest[0]
        return CommandResult(command, "", "", 0)


HOST = HostConfig("web1")

ALLOW_RULES = [
    {"chain": "INPUT", "in_interface": "lo", "jump": "ACCEPT"},
    {"chain": "INPUT", "ctstate": ["ESTABLISHED", "RELATED"], "jump": "ACCEPT"},
    {"chain": "INPUT", "protocol": "tcp", "destination_port": 22, "jump": "ACCEPT"},
    {"chain": "INPUT", "protocol": "tcp", "destination_port": "5601", "source": "10.0.0.0/8", "jump": "ACCEPT"},
]


def test_rule_is_appended_once() -> None:
    executor = FakeIptables()
    op = FirewallOperation({"chain": "INPUT", "protocol": "tcp", "destination_port": 80, "jump": "ACCEPT"})

    first = op.apply(HOST, executor)
    second = op.apply(HOST, executor)

    assert first.changed is True
    assert second.changed is False
    assert executor.rules[("filter", "INPUT")] == [("-p", "tcp", "--dport", "80", "-j", "ACCEPT")]
    assert len(executor.mutations) == 1


def test_allow_rules_precede_drop_policy_and_rerun_is_clean() -> None:
    executor = FakeIptables()
    ops = [FirewallOperation(spec) for spec in ALLOW_RULES]
    ops.append(FirewallOperation({"chain": "INPUT", "policy": "drop"}))

    for op in ops:
        op.apply(HOST, executor)

    verbs = [command[3] for command in executor.mutations]
    assert verbs == ["-A", "-A", "-A", "-A", "-P"]
    assert executor.policies[("filter", "INPUT")] == "DROP"
    assert len(executor.rules[("filter", "INPUT")]) == 4

    executor.mutations.clear()
    results = [op.apply(HOST, executor) for op in ops]
    assert not any(result.changed for result in results)
    assert executor.mutations == []
    assert len(executor.rules[("filter", "INPUT")]) == 4


def test_rule_absent_deletes() -> None:
    executor = FakeIptables()
    spec = {"chain": "INPUT", "protocol": "tcp", "destination_port": 23, "jump": "ACCEPT"}
    FirewallOperation(spec).apply(HOST, executor)

    result = FirewallOperation({**spec, "state": "absent"}).apply(HOST, executor)

    assert result.changed is True
    assert executor.rules[("filter", "INPUT")] == []


def test_criteria_order_is_canonical() -> None:
    op = FirewallOperation(
        {
            "chain": "INPUT",
            "jump": "ACCEPT",
            "comment": "kibana",
            "destination_port": 5601,
            "source": "10.0.0.0/8",
            "protocol": "tcp",
        }
    )
    assert (op.table, op.chain) == ("filter", "INPUT")
    assert op.criteria == [
        "-p", "tcp", "-s", "10.0.0.0/8", "--dport", "5601", "-m", "comment", "--comment", "kibana", "-j", "ACCEPT"
    ]


def test_validation() -> None:
    with pytest.raises(ValueError):
        FirewallOperation({"chain": "INPUT"})
    with pytest.raises(ValueError):
        FirewallOperation({"chain": "INPUT", "destination_port": 22, "jump": "ACCEPT"})
    with pytest.raises(ValueError):
        FirewallOperation({"chain": "INPUT", "policy": "BLOCK"})
