from __future__ import annotations

from pathlib import Path
from typing import Any, Optional
import logging

import yaml

from .errors import PlaybookError
from .facts import FactRef
from .operations import ALIASES, OPERATION_REGISTRY
from .templating import TemplateEngine
from .types import (
    FailureMode,
    FailurePolicy,
    HandlerSpec,
    HostConfig,
    PlaySpec,
    Playbook,
    RetrySpec,
    TaskSpec,
)

logger = logging.getLogger(__name__)

# Keys that shape how a task runs rather than what it does.
TASK_KEYWORDS = {
    "name",
    "type",
    "args",
    "when",
    "register",
    "notify",
    "ignore_errors",
    "retries",
    "delay",
    "until",
    "failed_when",
    "changed_when",
    "loop",
    "with_items",
    "tags",
    "vars",
    "become",
    "become_user",
}
IGNORED_PLAY_KEYS = {"become", "become_user", "collections"}
DEFAULT_RETRIES = 3
DEFAULT_DELAY = 5.0
PACKAGE_MANAGER_ALIASES = {"apt", "dnf", "yum"}

_EXPRESSIONS = TemplateEngine()


class PlaybookLoader:
    """Builds a :class:`Playbook` from a YAML list of plays."""

    def load(self, path: Path, hosts: dict[str, HostConfig]) -> Playbook:
        path = Path(path)
        try:
            data = yaml.safe_load(path.read_text())
        except OSError as exc:
            raise PlaybookError(f"{path}: {exc.strerror or exc}") from None
        except yaml.YAMLError as exc:
            raise PlaybookError(f"{path}: {exc}") from None
        return self.parse(data, hosts)

    def parse(self, data: Any, hosts: dict[str, HostConfig]) -> Playbook:
        if data is None:
            data = []
        if not isinstance(data, list):
            raise PlaybookError("playbook must be a list of plays")
        plays = [self._parse_play(raw, index) for index, raw in enumerate(data, start=1)]
        return Playbook(hosts=hosts, plays=plays)

    # Plays ---------------------------------------------------------------
    def _parse_play(self, raw: Any, index: int) -> PlaySpec:
        if not isinstance(raw, dict):
            raise PlaybookError("play must be a mapping", play=index)
        name = str(raw.get("name") or f"play-{index}")
        hosts = raw.get("hosts")
        if not hosts:
            raise PlaybookError("play has no hosts", play=index)
        if isinstance(hosts, str):
            patterns = [part.strip() for part in hosts.split(",") if part.strip()]
        else:
            patterns = [str(item) for item in hosts]

        play_vars = raw.get("vars") or {}
        if not isinstance(play_vars, dict):
            raise PlaybookError("vars must be a mapping", play=index)

        handlers: list[HandlerSpec] = []
        for pos, item in enumerate(raw.get("handlers") or [], start=1):
            task = self._parse_task(item, index, f"handler {pos}")
            handlers.append(HandlerSpec(name=task.name, task=task))
        handler_names = {handler.name for handler in handlers}

        tasks: list[TaskSpec] = []
        for pos, item in enumerate(raw.get("tasks") or [], start=1):
            task = self._parse_task(item, index, pos)
            unknown = [n for n in task.notify if n not in handler_names]
            if unknown:
                raise PlaybookError(
                    f"notify names unknown handler(s): {', '.join(unknown)}", play=index, task=pos
                )
            tasks.append(task)

        forks = raw.get("forks")
        if forks is not None:
            try:
                forks = int(forks)
            except (TypeError, ValueError):
                raise PlaybookError(f"forks must be an integer, got {forks!r}", play=index) from None
            if forks < 1:
                raise PlaybookError("forks must be at least 1", play=index)

        strict = raw.get("strict")
        for key in raw:
            if key in IGNORED_PLAY_KEYS:
                logger.debug("play=%s ignoring key %s", name, key)
        return PlaySpec(
            name=name,
            hosts=patterns,
            tasks=tasks,
            handlers=handlers,
            vars=dict(play_vars),
            strict=None if strict is None else _coerce_bool(strict),
            forks=forks,
            gather_facts=_coerce_bool(raw.get("gather_facts", False)),
        )

    # Tasks ---------------------------------------------------------------
    def _parse_task(self, raw: Any, play: int, position: Any) -> TaskSpec:
        def fail(message: str) -> PlaybookError:
            return PlaybookError(message, play=play, task=position)

        if not isinstance(raw, dict):
            raise fail("task must be a mapping")
        kinds = [key for key in raw if key not in TASK_KEYWORDS]

        if "type" in raw:
            written = str(raw["type"])
            params: Any = {key: raw[key] for key in kinds}
        else:
            if not kinds:
                raise fail("task has no operation")
            if len(kinds) > 1:
                raise fail(f"task names more than one operation: {', '.join(kinds)}")
            written = kinds[0]
            params = raw[written]

        kind = ALIASES.get(written, written)
        if kind not in OPERATION_REGISTRY:
            raise fail(f"unknown operation '{written}'")

        if params is None:
            params = {}
        elif isinstance(params, str):
            if kind not in {"command", "shell"}:
                raise fail(f"'{written}' takes a mapping of parameters")
            params = {"cmd": params}
        elif not isinstance(params, dict):
            raise fail(f"'{written}' takes a mapping of parameters")
        data = dict(params)

        args = raw.get("args")
        if args is not None:
            if not isinstance(args, dict):
                raise fail("args must be a mapping")
            data.update(args)
        if kind == "package" and written in PACKAGE_MANAGER_ALIASES:
            data.setdefault("manager", written)
        if kind == "debug" and "var" in data and "msg" not in data:
            data["msg"] = "{{ " + str(data.pop("var")) + " }}"
        data = _fact_refs(data)

        name = str(raw.get("name") or f"{written}-{position}")
        try:
            failure = _failure_policy(raw)
        except ValueError as exc:
            raise fail(str(exc)) from None

        notify = raw.get("notify") or ()
        if isinstance(notify, str):
            notify = (notify,)
        tags = raw.get("tags") or ()
        if isinstance(tags, str):
            tags = (tags,)
        task_vars = raw.get("vars") or {}
        if not isinstance(task_vars, dict):
            raise fail("vars must be a mapping")
        loop = raw.get("loop", raw.get("with_items"))
        for keyword in ("when", "until", "failed_when", "changed_when"):
            try:
                _EXPRESSIONS.check_syntax(raw.get(keyword))
            except ValueError as exc:
                raise fail(f"{keyword}: {exc}") from None
        if isinstance(loop, str):
            try:
                _EXPRESSIONS.check_syntax(loop)
            except ValueError as exc:
                raise fail(f"loop: {exc}") from None

        return TaskSpec(
            name=name,
            type=kind,
            data=data,
            when=raw.get("when"),
            failure=failure,
            notify=tuple(str(n) for n in notify),
            register=raw.get("register"),
            failed_when=raw.get("failed_when"),
            changed_when=raw.get("changed_when"),
            loop=loop,
            tags=frozenset(str(t) for t in tags),
            vars=dict(task_vars),
        )


def _failure_policy(raw: dict[str, Any]) -> FailurePolicy:
    ignore = _coerce_bool(raw.get("ignore_errors", False))
    base = FailureMode.IGNORE if ignore else FailureMode.FAIL_FAST
    if "retries" not in raw and "until" not in raw:
        return FailurePolicy(mode=base, base=base)

    retries = raw.get("retries", DEFAULT_RETRIES)
    if isinstance(retries, bool):
        raise ValueError(f"retries must be a positive integer, got {retries!r}")
    try:
        retries = int(retries)
    except (TypeError, ValueError):
        raise ValueError(f"retries must be a positive integer, got {retries!r}") from None
    if retries < 1:
        raise ValueError(f"retries must be a positive integer, got {retries}")
    try:
        delay = float(raw.get("delay", DEFAULT_DELAY))
    except (TypeError, ValueError):
        raise ValueError(f"delay must be a number, got {raw.get('delay')!r}") from None
    if delay < 0:
        raise ValueError("delay must not be negative")
    until = raw.get("until")
    return FailurePolicy(
        mode=FailureMode.RETRY,
        retry=RetrySpec(retries=retries, delay=delay, until=until),
        base=base,
    )


def _fact_refs(value: Any) -> Any:
    """Turn ``{fact: key, group: g}`` mappings into :class:`FactRef` values."""

    if isinstance(value, dict):
        if "fact" in value and set(value) <= {"fact", "group"}:
            group: Optional[str] = value.get("group")
            return FactRef(key=str(value["fact"]), group=None if group is None else str(group))
        return {key: _fact_refs(item) for key, item in value.items()}
    if isinstance(value, list):
        return [_fact_refs(item) for item in value]
    return value


def _coerce_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in {"1", "true", "yes", "on"}
    return bool(value)
