from __future__ import annotations

from typing import Any
import time

from .base import Operation
from ..executors import Executor
from ..types import HostConfig, TaskResult


class PauseOperation(Operation):
    action = "pause"
    sleep = staticmethod(time.sleep)

    def __init__(self, spec: dict[str, Any]):
        super().__init__(spec)
        try:
            seconds = float(spec.get("seconds", 0) or 0) + 60 * float(spec.get("minutes", 0) or 0)
        except (TypeError, ValueError) as exc:
            raise ValueError("pause seconds/minutes must be numeric") from exc
        if seconds < 0:
            raise ValueError("pause duration cannot be negative")
        self.seconds = seconds

    def apply(self, host: HostConfig, executor: Executor) -> TaskResult:
        if executor.dry_run:
            return self.result(host, False, f"skipped pause of {self.seconds:g}s (dry-run)")
        type(self).sleep(self.seconds)
        return self.result(host, False, f"paused {self.seconds:g}s")
