"""Run-scoped fact storage shared between phases."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterator
import logging
import threading

from .errors import FactConflictError, UnresolvedReferenceError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FactRef:
    """Explicit reference to a fact captured by an earlier phase."""

    key: str
    group: str | None = None

    def __str__(self) -> str:
        return f"{self.group}.{self.key}" if self.group else self.key


class HostFacts:
    """Facts registered on a single host during the run."""

    def __init__(self, host: str):
        self.host = host
        self._values: dict[str, Any] = {}

    def set(self, key: str, value: Any) -> None:
        self._values[key] = value

    def get(self, key: str, default: Any = None) -> Any:
        return self._values.get(key, default)

    def as_dict(self) -> dict[str, Any]:
        return dict(self._values)

    def __contains__(self, key: object) -> bool:
        return key in self._values

    def __iter__(self) -> Iterator[str]:
        return iter(self._values)


class FactStore:
    """Write-once-per-phase store keyed by (group, key).

    Values captured during the current phase stay invisible to ``resolve``
    until ``seal_phase`` is called, which is the barrier between phases.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._sealed: list[dict[tuple[str, str], Any]] = []
        self._pending: dict[tuple[str, str], Any] = {}
        self._pending_owner: dict[tuple[str, str], str] = {}
        self._hosts: dict[str, HostFacts] = {}
        self._hostvars: dict[str, dict[str, Any]] = {}

    def host_facts(self, host: str) -> HostFacts:
        with self._lock:
            facts = self._hosts.get(host)
            if facts is None:
                facts = self._hosts[host] = HostFacts(host)
            return facts

    def capture(self, group: str, host: str, key: str, value: Any) -> None:
        slot = (group, key)
        with self._lock:
            if slot in self._pending:
                if self._pending[slot] != value:
                    owner = self._pending_owner[slot]
                    raise FactConflictError(
                        f"fact '{key}' for group '{group}' already captured by {owner} "
                        f"with a different value"
                    )
                return
            self._pending[slot] = value
            self._pending_owner[slot] = host
        logger.debug("capture group=%s host=%s key=%s", group, host, key)

    def seal_phase(self) -> None:
        with self._lock:
            self._sealed.append(self._pending)
            self._pending = {}
            self._pending_owner = {}
            self._hostvars = {name: facts.as_dict() for name, facts in self._hosts.items()}

    def resolve(self, key: str) -> Any:
        for phase in reversed(self._sealed):
            matches = [value for (_, name), value in phase.items() if name == key]
            if matches:
                return matches[-1]
        raise UnresolvedReferenceError(key, "no earlier phase captured it")

    def resolve_ref(self, ref: FactRef) -> Any:
        if ref.group is None:
            return self.resolve(ref.key)
        for phase in reversed(self._sealed):
            if (ref.group, ref.key) in phase:
                return phase[(ref.group, ref.key)]
        raise UnresolvedReferenceError(str(ref), f"group '{ref.group}' never captured it")

    def known(self) -> dict[str, Any]:
        """Flattened view of sealed facts, later phases winning."""

        merged: dict[str, Any] = {}
        for phase in self._sealed:
            for (_, key), value in phase.items():
                merged[key] = value
        return merged

    def by_group(self) -> dict[str, dict[str, Any]]:
        grouped: dict[str, dict[str, Any]] = {}
        for phase in self._sealed:
            for (group, key), value in phase.items():
                grouped.setdefault(group, {})[key] = value
        return grouped

    def hostvars(self) -> dict[str, dict[str, Any]]:
        """Per-host facts as they stood at the last barrier."""

        return {name: dict(values) for name, values in self._hostvars.items()}
