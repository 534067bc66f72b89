from __future__ import annotations

from pathlib import Path
from typing import Any, Optional
import re

from .base import Operation
from ..errors import OperationError
from ..executors import Executor
from ..types import HostConfig, TaskResult


class LineInFileOperation(Operation):
    """Ensure a single line is present in (or absent from) a text file.

    With ``regexp`` the last matching line is replaced; without one the
    line is matched literally. A missing line is appended at the end of
    the file, or after the last line matching ``insertafter``.
    """

    action = "lineinfile"

    def __init__(self, spec: dict[str, Any]):
        super().__init__(spec)
        raw_path = spec.get("path") or spec.get("dest")
        if not raw_path:
            raise ValueError("lineinfile operation requires a path")
        self.path = Path(str(raw_path))
        self.state = str(spec.get("state", "present"))
        if self.state not in {"present", "absent"}:
            raise ValueError("lineinfile state must be 'present' or 'absent'")
        line = spec.get("line")
        self.line: Optional[str] = None if line is None else str(line)
        if self.state == "present" and self.line is None:
            raise ValueError("lineinfile requires a line when state is present")
        regexp = spec.get("regexp")
        self.regexp = re.compile(str(regexp)) if regexp else None
        if self.state == "absent" and self.line is None and self.regexp is None:
            raise ValueError("lineinfile absent requires a line or regexp")
        insertafter = spec.get("insertafter")
        self.insertafter = (
            re.compile(str(insertafter)) if insertafter and insertafter != "EOF" else None
        )
        self.create = bool(self._coerce_bool(spec.get("create", False)))
        self.mode = self._parse_mode(spec.get("mode"))

    def apply(self, host: HostConfig, executor: Executor) -> TaskResult:
        current = executor.read_file(self.path)
        if current is None:
            if self.state == "absent":
                return self.result(host, False, "noop")
            if not self.create:
                raise OperationError(f"{self.path} does not exist and create is false")
            current = ""

        lines = current.splitlines()
        if self.state == "present":
            updated, detail = self._ensure_present(lines)
        else:
            updated, detail = self._ensure_absent(lines)

        if updated == lines and current != "":
            return self.result(host, False, "noop")
        content = "\n".join(updated) + "\n" if updated else ""
        changed, write_detail = executor.write_file(self.path, content=content, mode=self.mode)
        return self.result(host, changed, detail if changed else write_detail)

    def _ensure_present(self, lines: list[str]) -> tuple[list[str], str]:
        match_index = self._last_match(lines)
        if match_index is not None:
            if lines[match_index] == self.line:
                return lines, "noop"
            updated = list(lines)
            updated[match_index] = self.line
            return updated, "line replaced"
        if self.regexp is not None and self.line in lines:
            return lines, "noop"
        updated = list(lines)
        anchor = self._insert_anchor(lines)
        if anchor is None:
            updated.append(self.line)
        else:
            updated.insert(anchor + 1, self.line)
        return updated, "line added"

    def _ensure_absent(self, lines: list[str]) -> tuple[list[str], str]:
        if self.regexp is not None:
            kept = [line for line in lines if not self.regexp.search(line)]
        else:
            kept = [line for line in lines if line != self.line]
        removed = len(lines) - len(kept)
        if not removed:
            return lines, "noop"
        return kept, f"removed {removed} line(s)"

    def _last_match(self, lines: list[str]) -> Optional[int]:
        for index in range(len(lines) - 1, -1, -1):
            if self.regexp is not None:
                if self.regexp.search(lines[index]):
                    return index
            elif lines[index] == self.line:
                return index
        return None

    def _insert_anchor(self, lines: list[str]) -> Optional[int]:
        if self.insertafter is None:
            return None
        for index in range(len(lines) - 1, -1, -1):
            if self.insertafter.search(lines[index]):
                return index
        return None
