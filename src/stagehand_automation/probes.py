"""Read-only inspection of target hosts.

Probes never mutate the host, so every command they issue is marked
``mutable=False`` and still runs during dry-runs.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional
import logging

from .executors import Executor

logger = logging.getLogger(__name__)


@dataclass
class DpkgQuery:
    executable: str = "dpkg-query"

    def check(self, executor: Executor, package: str) -> bool:
        result = executor.run(
            [self.executable, "-W", "-f", "${Status}", package],
            check=False,
            mutable=False,
        )
        return result.returncode == 0 and "install ok installed" in result.stdout

    def version(self, executor: Executor, package: str) -> Optional[str]:
        result = executor.run(
            [self.executable, "-W", "-f", "${Version}", package],
            check=False,
            mutable=False,
        )
        if result.returncode != 0:
            return None
        return result.stdout.strip() or None


@dataclass
class RpmQuery:
    executable: str = "rpm"

    def check(self, executor: Executor, package: str) -> bool:
        result = executor.run([self.executable, "-q", package], check=False, mutable=False)
        return result.returncode == 0

    def version(self, executor: Executor, package: str) -> Optional[str]:
        result = executor.run(
            [self.executable, "-q", "--qf", "%{VERSION}-%{RELEASE}", package],
            check=False,
            mutable=False,
        )
        return result.stdout.strip() if result.returncode == 0 else None


@dataclass
class ServiceProbe:
    executable: str = "systemctl"

    def available(self, executor: Executor) -> bool:
        result = executor.run(["which", self.executable], check=False, mutable=False)
        return result.returncode == 0

    def is_enabled(self, executor: Executor, service: str) -> bool:
        result = executor.run([self.executable, "is-enabled", service], check=False, mutable=False)
        return result.returncode == 0

    def is_active(self, executor: Executor, service: str) -> bool:
        result = executor.run([self.executable, "is-active", service], check=False, mutable=False)
        return result.returncode == 0


@dataclass
class FirewallProbe:
    executable: str = "iptables"

    def has_rule(self, executor: Executor, table: str, chain: str, criteria: list[str]) -> bool:
        result = executor.run(
            [self.executable, "-t", table, "-C", chain, *criteria],
            check=False,
            mutable=False,
        )
        return result.returncode == 0

    def list_rules(self, executor: Executor, table: str, chain: str) -> list[str]:
        result = executor.run(
            [self.executable, "-t", table, "-S", chain],
            check=False,
            mutable=False,
        )
        if result.returncode != 0:
            return []
        return [line.strip() for line in result.stdout.splitlines() if line.strip()]

    def policy(self, executor: Executor, table: str, chain: str) -> Optional[str]:
        for line in self.list_rules(executor, table, chain):
            parts = line.split()
            if len(parts) >= 3 and parts[0] == "-P" and parts[1] == chain:
                return parts[2]
        return None


def gather_facts(executor: Executor) -> dict[str, Any]:
    """Collect a small set of host facts used by templates and guards."""

    facts: dict[str, Any] = {}
    hostname = executor.run(["hostname"], check=False, mutable=False)
    if hostname.returncode == 0:
        facts["hostname"] = hostname.stdout.strip()
    release = executor.run(["cat", "/etc/os-release"], check=False, mutable=False)
    os_release = release.stdout if release.returncode == 0 else ""
    for line in os_release.splitlines():
        key, sep, value = line.partition("=")
        if not sep:
            continue
        value = value.strip().strip('"')
        if key == "ID":
            facts["distribution"] = value
        elif key == "VERSION_ID":
            facts["distribution_version"] = value
        elif key == "ID_LIKE":
            facts["os_family"] = value.split()[0]
    facts.setdefault("os_family", facts.get("distribution", "unknown"))
    logger.debug("facts host=%s %s", executor.host.name, facts)
    return facts
