from __future__ import annotations

from typing import Any

from .base import Operation
from ..executors import Executor
from ..types import HostConfig, TaskResult


class SetFactOperation(Operation):
    """Register key/value pairs as facts on the host.

    The runner also captures them into the run-scoped store so that later
    phases, possibly on other groups, can reference them.
    """

    action = "set_fact"

    def __init__(self, spec: dict[str, Any]):
        super().__init__(spec)
        self.values = {str(k): v for k, v in spec.items() if not str(k).startswith("_")}
        if not self.values:
            raise ValueError("set_fact requires at least one key")

    def apply(self, host: HostConfig, executor: Executor) -> TaskResult:
        result = self.result(host, False, ", ".join(sorted(self.values)))
        result.facts = dict(self.values)
        return result
