from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional


@dataclass
class HostConfig:
    name: str
    connection: str = "local"
    address: Optional[str] = None
    groups: set[str] = field(default_factory=set)
    variables: dict[str, Any] = field(default_factory=dict)
    port: int = 22
    user: Optional[str] = None
    key_file: Optional[str] = None


class FailureMode(str, Enum):
    FAIL_FAST = "fail-fast"
    IGNORE = "ignore"
    RETRY = "retry"


@dataclass(frozen=True)
class RetrySpec:
    retries: int
    delay: float = 5.0
    until: Any = None


@dataclass(frozen=True)
class FailurePolicy:
    mode: FailureMode = FailureMode.FAIL_FAST
    retry: Optional[RetrySpec] = None
    # Policy applied once retries are exhausted.
    base: FailureMode = FailureMode.FAIL_FAST

    @property
    def ignores_errors(self) -> bool:
        if self.mode is FailureMode.RETRY:
            return self.base is FailureMode.IGNORE
        return self.mode is FailureMode.IGNORE


@dataclass(frozen=True)
class TaskSpec:
    name: str
    type: str
    data: dict[str, Any] = field(default_factory=dict)
    when: Any = None
    failure: FailurePolicy = field(default_factory=FailurePolicy)
    notify: tuple[str, ...] = ()
    register: Optional[str] = None
    failed_when: Any = None
    changed_when: Any = None
    loop: Any = None
    tags: frozenset[str] = frozenset()
    vars: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class HandlerSpec:
    name: str
    task: TaskSpec


@dataclass
class PlaySpec:
    name: str
    hosts: list[str]
    tasks: list[TaskSpec]
    handlers: list[HandlerSpec] = field(default_factory=list)
    vars: dict[str, Any] = field(default_factory=dict)
    strict: Optional[bool] = None
    forks: Optional[int] = None
    gather_facts: bool = False

    @property
    def group(self) -> str:
        return ",".join(self.hosts)


@dataclass
class Playbook:
    hosts: dict[str, HostConfig]
    plays: list[PlaySpec]


class TaskStatus(str, Enum):
    OK = "ok"
    CHANGED = "changed"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass
class TaskResult:
    host: str
    action: str
    status: TaskStatus
    details: str = ""
    task: Optional[str] = None
    resource: Optional[str] = None
    output: dict[str, Any] = field(default_factory=dict)
    facts: dict[str, Any] = field(default_factory=dict)
    attempts: int = 1
    ignored: bool = False
    handler: bool = False

    @property
    def changed(self) -> bool:
        return self.status is TaskStatus.CHANGED

    @property
    def failed(self) -> bool:
        return self.status is TaskStatus.FAILED

    @property
    def skipped(self) -> bool:
        return self.status is TaskStatus.SKIPPED


@dataclass
class HostResult:
    host: str
    results: list[TaskResult] = field(default_factory=list)
    failed_task: Optional[str] = None
    failed_index: Optional[int] = None
    aborted: bool = False

    @property
    def ok(self) -> bool:
        return self.failed_task is None and not self.aborted

    def describe(self) -> str:
        if self.failed_task is not None:
            return f"failed at task {self.failed_index} ({self.failed_task})"
        if self.aborted:
            return "aborted"
        return "success"


@dataclass
class PhaseResult:
    play: str
    hosts: dict[str, HostResult] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return all(result.ok for result in self.hosts.values())


@dataclass
class RunResult:
    phases: list[PhaseResult] = field(default_factory=list)
    aborted: bool = False

    @property
    def success(self) -> bool:
        return not self.aborted and all(phase.ok for phase in self.phases)

    def host_outcomes(self) -> dict[str, str]:
        """Collapse per-phase results into one outcome per host.

        A host that fails in any phase is reported with its first failure.
        """
        outcomes: dict[str, str] = {}
        for phase in self.phases:
            for name, result in phase.hosts.items():
                current = outcomes.get(name)
                if current is not None and current != "success":
                    continue
                outcomes[name] = result.describe()
        return outcomes

    def failed_hosts(self) -> list[HostResult]:
        return [r for phase in self.phases for r in phase.hosts.values() if not r.ok]
