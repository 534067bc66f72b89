from __future__ import annotations

from pathlib import Path
from typing import Any

from .base import Operation
from ..errors import OperationError
from ..executors import Executor
from ..types import HostConfig, TaskResult


class TimezoneOperation(Operation):
    """Point /etc/localtime at a zoneinfo file and optionally keep /etc/timezone in sync."""

    action = "timezone"

    def __init__(self, spec: dict[str, Any]):
        super().__init__(spec)
        zone = spec.get("zone") or spec.get("name")
        if not zone:
            raise ValueError("timezone operation requires a zone")
        self.zone = str(zone)
        self.localtime_path = Path(spec.get("localtime_path", "/etc/localtime"))
        self.zoneinfo_dir = Path(spec.get("zoneinfo_dir", "/usr/share/zoneinfo"))
        self.manage_etc_timezone = bool(self._coerce_bool(spec.get("manage_etc_timezone", True)))
        self.etc_timezone = Path(spec.get("etc_timezone_path", "/etc/timezone"))

    def apply(self, host: HostConfig, executor: Executor) -> TaskResult:
        target_file = self.zoneinfo_dir / self.zone
        if not executor.exists(target_file):
            raise OperationError(f"Zone file {target_file} does not exist")

        changed, detail = executor.ensure_symlink(self.localtime_path, target=str(target_file))
        parts = [f"zone->{self.zone}"] if changed else []

        if self.manage_etc_timezone:
            tz_changed, _ = executor.write_file(
                self.etc_timezone, content=f"{self.zone}\n", mode=None
            )
            if tz_changed:
                changed = True
                parts.append("etc_timezone")

        return self.result(host, changed, ", ".join(parts) if parts else "noop")
