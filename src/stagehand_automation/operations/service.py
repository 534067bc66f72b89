from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from .base import Operation
from ..errors import OperationError
from ..executors import Executor
from ..probes import ServiceProbe
from ..types import HostConfig, TaskResult

logger = logging.getLogger(__name__)


@dataclass
class SystemCtl(ServiceProbe):
    def enable(self, executor: Executor, service: str) -> None:
        executor.run([self.executable, "enable", service])

    def disable(self, executor: Executor, service: str) -> None:
        executor.run([self.executable, "disable", service])

    def start(self, executor: Executor, service: str) -> None:
        executor.run([self.executable, "start", service])

    def stop(self, executor: Executor, service: str) -> None:
        executor.run([self.executable, "stop", service])

    def restart(self, executor: Executor, service: str) -> None:
        executor.run([self.executable, "restart", service])

    def reload(self, executor: Executor, service: str) -> None:
        executor.run([self.executable, "reload", service])


class ServiceOperation(Operation):
    """Manage systemd services.

    ``started`` and ``stopped`` are state assertions. ``restarted`` and
    ``reloaded`` are actions and always report a change.
    """

    action = "service"
    STATES = {None, "started", "stopped", "restarted", "reloaded"}

    def __init__(self, spec: dict[str, Any]):
        super().__init__(spec)
        raw_name = spec.get("name")
        if not raw_name:
            raise ValueError("service operation requires a name")
        self.name = str(raw_name)
        self._enabled = self._coerce_bool(spec.get("enabled"))
        state = spec.get("state")
        if state == "running":
            state = "started"
        self._state = state
        if self._state not in self.STATES:
            raise ValueError("service state must be started, stopped, restarted or reloaded")
        self.daemon_reload = bool(self._coerce_bool(spec.get("daemon_reload", False)))
        self.systemctl = SystemCtl()

    def apply(self, host: HostConfig, executor: Executor) -> TaskResult:
        if not self.systemctl.available(executor):
            raise OperationError("systemctl is not available on this host")

        changes: list[str] = []

        if self.daemon_reload:
            executor.run([self.systemctl.executable, "daemon-reload"])

        if self._enabled is not None:
            enabled = self.systemctl.is_enabled(executor, self.name)
            if self._enabled and not enabled:
                logger.debug("Enabling service %s", self.name)
                self.systemctl.enable(executor, self.name)
                changes.append("enabled")
            elif not self._enabled and enabled:
                logger.debug("Disabling service %s", self.name)
                self.systemctl.disable(executor, self.name)
                changes.append("disabled")

        if self._state in {"started", "stopped"}:
            active = self.systemctl.is_active(executor, self.name)
            if self._state == "started" and not active:
                logger.debug("Starting service %s", self.name)
                self.systemctl.start(executor, self.name)
                changes.append("started")
            elif self._state == "stopped" and active:
                logger.debug("Stopping service %s", self.name)
                self.systemctl.stop(executor, self.name)
                changes.append("stopped")
        elif self._state == "restarted":
            logger.debug("Restarting service %s", self.name)
            self.systemctl.restart(executor, self.name)
            changes.append("restarted")
        elif self._state == "reloaded":
            logger.debug("Reloading service %s", self.name)
            self.systemctl.reload(executor, self.name)
            changes.append("reloaded")

        changed = bool(changes)
        detail = ", ".join(changes) if changes else "noop"
        return self.result(host, changed, detail)
