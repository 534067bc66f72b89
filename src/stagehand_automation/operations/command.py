from __future__ import annotations

from pathlib import Path
from typing import Any, Iterable, Optional, Sequence
import logging
import shlex

from .base import Operation
from ..executors import CommandResult, Executor
from ..types import HostConfig, TaskResult

logger = logging.getLogger(__name__)


class CommandOperation(Operation):
    """Run an arbitrary command.

    Commands are not idempotent, so a command that runs always reports a
    change. ``creates``/``removes`` short-circuit the run when the path
    already tells us the work is done.
    """

    action = "command"
    use_shell = False

    def __init__(self, spec: dict[str, Any]):
        super().__init__(spec)
        raw_command = spec.get("cmd") or spec.get("command") or spec.get("_raw")
        if not raw_command:
            raise ValueError(f"{self.action} operation requires a command")
        self.command = self._normalize_command(raw_command)
        self.creates = Path(str(spec["creates"])) if spec.get("creates") else None
        self.removes = Path(str(spec["removes"])) if spec.get("removes") else None
        chdir = spec.get("chdir") or spec.get("cwd")
        self.cwd = Path(str(chdir)) if chdir else None
        self.env = self._normalize_env(spec.get("env") or spec.get("environment"))
        self.allowed_returns = self._normalize_returns(spec.get("returns", [0]))
        self.timeout = self._normalize_timeout(spec.get("timeout"))

    def apply(self, host: HostConfig, executor: Executor) -> TaskResult:
        if self.creates and executor.exists(self._resolve_path(self.creates)):
            return self.result(host, False, f"skipped (creates {self.creates})")
        if self.removes and not executor.exists(self._resolve_path(self.removes)):
            return self.result(host, False, f"skipped (removes {self.removes})")

        result = executor.run(
            self.command,
            check=False,
            mutable=True,
            env=self.env,
            cwd=self.cwd,
            timeout=self.timeout,
        )
        output = self._output(result)
        if result.returncode not in self.allowed_returns:
            logger.debug(
                "command failed rc=%s cmd=%s", result.returncode, " ".join(self.command)
            )
            return self.result(host, False, self._error_detail(result), output=output, failed=True)

        detail = "dry-run" if executor.dry_run else f"ran (rc={result.returncode})"
        return self.result(host, True, detail, output=output)

    def _normalize_command(self, value: Any) -> list[str]:
        if isinstance(value, str):
            if self.use_shell:
                return ["sh", "-c", value]
            return shlex.split(value)
        if isinstance(value, Sequence):
            return [str(v) for v in value]
        raise ValueError(f"{self.action} command must be a string or list")

    def _resolve_path(self, path: Path) -> Path:
        if path.is_absolute() or self.cwd is None:
            return path
        return self.cwd / path

    @staticmethod
    def _output(result: CommandResult) -> dict[str, Any]:
        return {
            "cmd": result.command,
            "rc": result.returncode,
            "stdout": result.stdout.rstrip("\n"),
            "stderr": result.stderr.rstrip("\n"),
            "stdout_lines": result.stdout.splitlines(),
            "stderr_lines": result.stderr.splitlines(),
        }

    @staticmethod
    def _normalize_env(value: Any) -> Optional[dict[str, str]]:
        if value is None:
            return None
        if isinstance(value, dict):
            return {str(k): str(v) for k, v in value.items()}
        if isinstance(value, Iterable) and not isinstance(value, (str, bytes)):
            env: dict[str, str] = {}
            for item in value:
                key, sep, val = str(item).partition("=")
                if not sep:
                    raise ValueError("env list entries must be KEY=VALUE")
                env[key] = val
            return env
        raise ValueError("command env must be a mapping or list of KEY=VALUE strings")

    @staticmethod
    def _normalize_returns(value: Any) -> list[int]:
        if value is None:
            return [0]
        if isinstance(value, int):
            return [int(value)]
        if isinstance(value, Iterable):
            return [int(v) for v in value]
        raise ValueError("command returns must be an int or list of ints")

    @staticmethod
    def _normalize_timeout(value: Any) -> Optional[float]:
        if value is None:
            return None
        try:
            return float(value)
        except (TypeError, ValueError) as exc:
            raise ValueError("command timeout must be numeric") from exc

    @staticmethod
    def _error_detail(result: CommandResult) -> str:
        prefix = f"rc={result.returncode}"
        for text in (result.stderr, result.stdout):
            stripped = (text or "").strip()
            if not stripped:
                continue
            line = stripped.splitlines()[0]
            line = (line[:157] + "...") if len(line) > 160 else line
            return f"{prefix}: {line}"
        return prefix


class ShellOperation(CommandOperation):
    """Like ``command`` but string commands go through ``sh -c``."""

    action = "shell"
    use_shell = True
