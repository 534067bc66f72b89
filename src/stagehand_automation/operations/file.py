from __future__ import annotations

from pathlib import Path
from typing import Any, Optional

from .base import Operation
from ..errors import OperationError
from ..executors import Executor
from ..types import HostConfig, TaskResult


class FileOperation(Operation):
    """Ensure files, directories and links exist with the requested attributes."""

    action = "file"
    STATES = {"present", "absent", "directory", "link", "attributes"}

    def __init__(self, spec: dict[str, Any]):
        super().__init__(spec)
        raw_path = spec.get("path") or spec.get("dest")
        if not raw_path:
            raise ValueError(f"{self.action} operation requires a path")
        self.path = Path(str(raw_path))
        raw_content = spec.get("content")
        self.content = None if raw_content is None else str(raw_content)
        self.link_target = spec.get("src") if spec.get("state") == "link" else None
        self.state = str(spec.get("state") or self._default_state())
        if self.state not in self.STATES:
            raise ValueError(
                f"{self.action} operation state must be one of {', '.join(sorted(self.STATES))}"
            )
        if self.state == "link" and not self.link_target:
            raise ValueError("link state requires a src")
        self.mode = self._parse_mode(spec.get("mode"))
        self.owner = self._identity(spec.get("owner"))
        self.group = self._identity(spec.get("group"))
        self.recurse = bool(self._coerce_bool(spec.get("recurse", False)))

    def _default_state(self) -> str:
        if self.content is not None:
            return "present"
        return "attributes"

    def apply(self, host: HostConfig, executor: Executor) -> TaskResult:
        if self.state == "link":
            changed, detail = executor.ensure_symlink(self.path, target=str(self.link_target))
            return self.result(host, changed, detail)
        if self.state == "absent":
            removed = executor.remove_path(self.path)
            return self.result(host, removed, "removed" if removed else "noop")
        if self.state == "directory":
            changed, detail = executor.ensure_directory(
                self.path, mode=None if self.recurse else self.mode
            )
        elif self.state == "present":
            changed, detail = executor.write_file(
                self.path, content=self.content or "", mode=self.mode
            )
        else:
            if not executor.exists(self.path) and not executor.dry_run:
                raise OperationError(f"{self.path} does not exist")
            changed, detail = False, "noop"
            if self.mode is not None and not self.recurse:
                changed, detail = self._merge(
                    changed, detail, self._apply_mode(executor)
                )
        if self.recurse:
            changed, detail = self._merge(changed, detail, self._apply_recursive(executor))
        else:
            changed, detail = self._merge(
                changed,
                detail,
                executor.set_ownership(self.path, owner=self.owner, group=self.group),
            )
        return self.result(host, changed, detail)

    def _apply_mode(self, executor: Executor) -> tuple[bool, str]:
        probe = executor.run(["stat", "-c", "%a", str(self.path)], check=False, mutable=False)
        current = probe.stdout.strip()
        if probe.returncode == 0 and current and int(current, 8) == self.mode:
            return False, "noop"
        executor.run(["chmod", f"{self.mode:o}", str(self.path)])
        return True, f"mode->{self.mode:04o}"

    def _apply_recursive(self, executor: Executor) -> tuple[bool, str]:
        """Walk the tree with ``find`` and only chown/chmod when something differs."""

        target = str(self.path)
        reasons: list[str] = []
        if self.owner is not None or self.group is not None:
            criteria: list[str] = []
            if self.owner is not None:
                criteria += ["!", "-user", self.owner]
            if self.group is not None:
                if criteria:
                    criteria.append("-o")
                criteria += ["!", "-group", self.group]
            if self._find_any(executor, criteria):
                spec = f"{self.owner or ''}:{self.group or ''}" if self.group else str(self.owner)
                executor.run(["chown", "-R", spec, target])
                reasons.append(f"owner->{spec}")
        if self.mode is not None:
            if self._find_any(executor, ["!", "-perm", f"{self.mode:04o}"]):
                executor.run(["chmod", "-R", f"{self.mode:o}", target])
                reasons.append(f"mode->{self.mode:04o}")
        return bool(reasons), ", ".join(reasons) if reasons else "noop"

    def _find_any(self, executor: Executor, criteria: list[str]) -> bool:
        result = executor.run(
            ["find", str(self.path), "(", *criteria, ")", "-print", "-quit"],
            check=False,
            mutable=False,
        )
        if result.returncode != 0 and not executor.dry_run:
            raise OperationError(f"find failed on {self.path}: {result.stderr.strip()}")
        return bool(result.stdout.strip())

    @staticmethod
    def _merge(changed: bool, detail: str, extra: tuple[bool, str]) -> tuple[bool, str]:
        extra_changed, extra_detail = extra
        if not extra_changed:
            return changed, detail
        if detail and detail != "noop":
            return True, f"{detail}, {extra_detail}"
        return True, extra_detail

    @staticmethod
    def _identity(value: Optional[object]) -> Optional[str]:
        if value is None:
            return None
        text = str(value).strip()
        return text or None


class CopyOperation(FileOperation):
    """Write inline ``content`` to ``dest``; a file resource that defaults to present."""

    action = "copy"

    def _default_state(self) -> str:
        return "present"
