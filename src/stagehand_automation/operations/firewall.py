from __future__ import annotations

from typing import Any, Optional
import logging

from .base import Operation
from ..executors import Executor
from ..probes import FirewallProbe
from ..types import HostConfig, TaskResult

logger = logging.getLogger(__name__)

POLICIES = {"ACCEPT", "DROP", "REJECT", "RETURN"}


class FirewallOperation(Operation):
    """Manage iptables rules and chain policies.

    Rules are identified by their canonical key (table, chain, criteria,
    jump). A rule that is already present is never appended twice, and
    rules are appended in the order tasks declare them.
    """

    action = "firewall"

    def __init__(self, spec: dict[str, Any]):
        super().__init__(spec)
        self.chain = str(spec.get("chain") or "INPUT")
        self.table = str(spec.get("table") or "filter")
        self.state = str(spec.get("state", "present"))
        if self.state not in {"present", "absent"}:
            raise ValueError("firewall state must be 'present' or 'absent'")
        policy = spec.get("policy")
        self.policy: Optional[str] = str(policy).upper() if policy else None
        if self.policy is not None and self.policy not in POLICIES:
            raise ValueError(f"firewall policy must be one of {', '.join(sorted(POLICIES))}")
        self.jump = spec.get("jump")
        if self.policy is None and not self.jump:
            raise ValueError("firewall rule requires a jump target or a policy")
        if spec.get("destination_port") and not spec.get("protocol"):
            raise ValueError("firewall destination_port requires a protocol")
        self.criteria = self._build_criteria(spec)
        self.probe = FirewallProbe(executable=str(spec.get("executable") or "iptables"))

    def apply(self, host: HostConfig, executor: Executor) -> TaskResult:
        if self.policy is not None:
            return self._apply_policy(host, executor)

        present = self.probe.has_rule(executor, self.table, self.chain, self.criteria)
        exe = self.probe.executable
        if self.state == "present":
            if present:
                return self.result(host, False, "noop")
            logger.debug("firewall append chain=%s rule=%s", self.chain, self.criteria)
            executor.run([exe, "-t", self.table, "-A", self.chain, *self.criteria])
            return self.result(host, True, f"appended to {self.chain}")
        if not present:
            return self.result(host, False, "noop")
        executor.run([exe, "-t", self.table, "-D", self.chain, *self.criteria])
        return self.result(host, True, f"deleted from {self.chain}")

    def _apply_policy(self, host: HostConfig, executor: Executor) -> TaskResult:
        current = self.probe.policy(executor, self.table, self.chain)
        if current == self.policy:
            return self.result(host, False, "noop")
        executor.run([self.probe.executable, "-t", self.table, "-P", self.chain, str(self.policy)])
        return self.result(host, True, f"policy {current or '?'}->{self.policy}")

    @staticmethod
    def _build_criteria(spec: dict[str, Any]) -> list[str]:
        args: list[str] = []
        if spec.get("protocol"):
            args += ["-p", str(spec["protocol"])]
        if spec.get("source"):
            args += ["-s", str(spec["source"])]
        if spec.get("destination"):
            args += ["-d", str(spec["destination"])]
        if spec.get("in_interface"):
            args += ["-i", str(spec["in_interface"])]
        if spec.get("out_interface"):
            args += ["-o", str(spec["out_interface"])]
        if spec.get("ctstate"):
            states = spec["ctstate"]
            if isinstance(states, (list, tuple)):
                states = ",".join(str(s) for s in states)
            args += ["-m", "conntrack", "--ctstate", str(states)]
        if spec.get("destination_port"):
            args += ["--dport", str(spec["destination_port"])]
        if spec.get("comment"):
            args += ["-m", "comment", "--comment", str(spec["comment"])]
        if spec.get("jump"):
            args += ["-j", str(spec["jump"])]
        return args
