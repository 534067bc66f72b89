from __future__ import annotations

from typing import Any
import logging

from .base import Operation
from ..executors import Executor
from ..types import HostConfig, TaskResult

logger = logging.getLogger(__name__)


class DebugOperation(Operation):
    """Print an already rendered message."""

    action = "debug"

    def __init__(self, spec: dict[str, Any]):
        super().__init__(spec)
        if "msg" not in spec:
            raise ValueError("debug requires msg or var")
        self.msg = spec["msg"]

    def apply(self, host: HostConfig, executor: Executor) -> TaskResult:
        if isinstance(self.msg, (list, tuple)):
            text = "; ".join(str(item) for item in self.msg)
        else:
            text = str(self.msg)
        logger.info("debug host=%s %s", host.name, text)
        return self.result(host, False, text, output={"msg": self.msg})
