from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Optional

from ..executors import Executor
from ..types import HostConfig, TaskResult, TaskStatus


class Operation(ABC):
    """Shared surface for runnable resource operations."""

    action = "operation"

    def __init__(self, spec: dict[str, Any]):
        self.spec = spec

    @abstractmethod
    def apply(self, host: HostConfig, executor: Executor) -> TaskResult:
        """Converge the resource on ``host`` using ``executor``."""

    def result(
        self,
        host: HostConfig,
        changed: bool,
        details: str,
        *,
        output: Optional[dict[str, Any]] = None,
        failed: bool = False,
    ) -> TaskResult:
        if failed:
            status = TaskStatus.FAILED
        else:
            status = TaskStatus.CHANGED if changed else TaskStatus.OK
        return TaskResult(
            host=host.name,
            action=self.action,
            status=status,
            details=details,
            output=dict(output or {}),
        )

    @staticmethod
    def _coerce_bool(value: Any) -> Optional[bool]:
        if value is None:
            return None
        if isinstance(value, bool):
            return value
        if isinstance(value, str):
            lowered = value.strip().lower()
            if lowered in {"true", "yes", "on", "1"}:
                return True
            if lowered in {"false", "no", "off", "0"}:
                return False
            raise ValueError(f"Unable to interpret boolean value '{value}'")
        return bool(value)

    @staticmethod
    def _parse_mode(value: Optional[object]) -> Optional[int]:
        if value is None:
            return None
        if isinstance(value, int):
            return value
        text = str(value).strip()
        if not text:
            return None
        base = 8 if text.startswith("0") else 10
        return int(text, base)
