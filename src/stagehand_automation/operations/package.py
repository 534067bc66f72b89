from __future__ import annotations

from typing import Iterable, Optional
import logging

from .base import Operation
from ..errors import OperationError
from ..executors import CommandResult, Executor
from ..probes import DpkgQuery, RpmQuery
from ..types import HostConfig, TaskResult

logger = logging.getLogger(__name__)

LOCK_MARKERS = ("could not get lock", "unable to acquire the dpkg frontend lock", "waiting for cache lock")


class PackageOperation(Operation):
    """Install or remove packages using the detected package manager."""

    action = "package"

    def __init__(self, spec: dict[str, object]):
        super().__init__(spec)
        packages = spec.get("name") or spec.get("packages") or spec.get("pkg")
        if isinstance(packages, str):
            self.packages = [packages]
        else:
            self.packages = [str(p) for p in (packages or [])]
        self.update_cache = bool(self._coerce_bool(spec.get("update_cache", False)))
        upgrade = spec.get("upgrade")
        self.upgrade = None if upgrade in (None, False, "no") else str(upgrade)
        if not self.packages and not self.update_cache and not self.upgrade:
            raise ValueError("package operation requires at least one package")
        self.state = str(spec.get("state", "present"))
        if self.state not in {"present", "absent", "latest"}:
            raise ValueError("package operation state must be 'present', 'absent' or 'latest'")
        self.preferred_manager = spec.get("manager")

    def apply(self, host: HostConfig, executor: Executor) -> TaskResult:
        manager = PackageManagerFactory.create(self.preferred_manager, executor)
        logger.debug(
            "package-manager=%s host=%s packages=%s", manager.name, host.name, self.packages
        )
        changed = False
        parts: list[str] = []
        if self.update_cache:
            manager.refresh(executor)
            parts.append("cache-updated")
        if self.upgrade:
            if manager.upgrade(executor, self.upgrade):
                changed = True
                parts.append(f"upgraded={self.upgrade}")
        if self.packages:
            if self.state == "present":
                pkg_changed, details = manager.ensure_present(executor, self.packages)
            elif self.state == "latest":
                pkg_changed, details = manager.ensure_latest(executor, self.packages)
            else:
                pkg_changed, details = manager.ensure_absent(executor, self.packages)
            changed = changed or pkg_changed
            parts.append(details)
        detail_msg = " ".join([f"manager={manager.name}", *parts])
        return self.result(host, changed, detail_msg)


class PackageManagerFactory:
    _MANAGERS = [
        ("apt-get", "apt", lambda: AptPackageManager()),
        ("dnf", "dnf", lambda: DnfPackageManager()),
        ("yum", "yum", lambda: YumPackageManager()),
        ("brew", "brew", lambda: BrewPackageManager()),
        ("pacman", "pacman", lambda: PacmanPackageManager()),
    ]

    @classmethod
    def create(cls, preferred: Optional[object], executor: Executor) -> "PackageManager":
        if isinstance(preferred, str):
            preferred = preferred.lower()
            for _, key, factory in cls._MANAGERS:
                if key == preferred:
                    return factory()
            raise ValueError(f"Unknown package manager '{preferred}'")
        for binary, _, factory in cls._MANAGERS:
            probe = executor.run(["which", binary], check=False, mutable=False)
            if probe.returncode == 0:
                return factory()
        raise OperationError("No supported package manager found on PATH")


class PackageManager:
    name = "generic"

    def ensure_present(self, executor: Executor, packages: Iterable[str]) -> tuple[bool, str]:
        needed = [pkg for pkg in packages if not self.is_installed(executor, pkg)]
        if not needed:
            return False, "already-installed"
        self.install(executor, needed)
        return True, f"installed={','.join(needed)}"

    def ensure_absent(self, executor: Executor, packages: Iterable[str]) -> tuple[bool, str]:
        removable = [pkg for pkg in packages if self.is_installed(executor, pkg)]
        if not removable:
            return False, "already-removed"
        self.remove(executor, removable)
        return True, f"removed={','.join(removable)}"

    def ensure_latest(self, executor: Executor, packages: Iterable[str]) -> tuple[bool, str]:
        packages = list(packages)
        missing = [pkg for pkg in packages if not self.is_installed(executor, pkg)]
        present = [pkg for pkg in packages if pkg not in missing]
        before = {pkg: self.version(executor, pkg) for pkg in present}
        if missing:
            self.install(executor, missing)
        if present:
            self.upgrade_packages(executor, present)
        moved = [pkg for pkg in present if self.version(executor, pkg) != before[pkg]]
        parts = []
        if missing:
            parts.append(f"installed={','.join(missing)}")
        if moved:
            parts.append(f"upgraded={','.join(moved)}")
        if not parts:
            return False, "already-latest"
        return True, " ".join(parts)

    def refresh(self, executor: Executor) -> None:
        """Refresh package metadata; not a state change on its own."""

    def upgrade(self, executor: Executor, mode: str) -> bool:
        raise OperationError(f"{self.name} does not support upgrade={mode}")

    def install(self, executor: Executor, packages: list[str]) -> None:
        raise NotImplementedError

    def remove(self, executor: Executor, packages: list[str]) -> None:
        raise NotImplementedError

    def is_installed(self, executor: Executor, package: str) -> bool:
        raise NotImplementedError

    def version(self, executor: Executor, package: str) -> Optional[str]:
        raise NotImplementedError

    def upgrade_packages(self, executor: Executor, packages: list[str]) -> None:
        raise OperationError(f"{self.name} does not support state=latest")

    @staticmethod
    def _checked(result: CommandResult) -> CommandResult:
        if result.returncode == 0:
            return result
        text = f"{result.stderr}\n{result.stdout}".lower()
        if any(marker in text for marker in LOCK_MARKERS):
            raise OperationError(f"package manager lock is held: {result.stderr.strip()}")
        raise OperationError(
            f"{' '.join(result.command)} failed rc={result.returncode}: {result.stderr.strip()}"
        )


class AptPackageManager(PackageManager):
    name = "apt"
    ENV = {"DEBIAN_FRONTEND": "noninteractive"}

    def __init__(self) -> None:
        self.query = DpkgQuery()

    def refresh(self, executor: Executor) -> None:
        self._checked(executor.run(["apt-get", "update"], check=False, env=self.ENV))

    def upgrade(self, executor: Executor, mode: str) -> bool:
        verb = "dist-upgrade" if mode == "dist" else "upgrade"
        result = self._checked(
            executor.run(["apt-get", verb, "-y"], check=False, env=self.ENV)
        )
        return "0 upgraded, 0 newly installed" not in result.stdout and not executor.dry_run

    def install(self, executor: Executor, packages: list[str]) -> None:
        self._checked(executor.run(["apt-get", "install", "-y", *packages], check=False, env=self.ENV))

    def remove(self, executor: Executor, packages: list[str]) -> None:
        self._checked(executor.run(["apt-get", "remove", "-y", *packages], check=False, env=self.ENV))

    def upgrade_packages(self, executor: Executor, packages: list[str]) -> None:
        self._checked(
            executor.run(
                ["apt-get", "install", "-y", "--only-upgrade", *packages], check=False, env=self.ENV
            )
        )

    def is_installed(self, executor: Executor, package: str) -> bool:
        return self.query.check(executor, package)

    def version(self, executor: Executor, package: str) -> Optional[str]:
        return self.query.version(executor, package)


class DnfPackageManager(PackageManager):
    name = "dnf"

    def __init__(self) -> None:
        self.query = RpmQuery()

    def refresh(self, executor: Executor) -> None:
        result = executor.run([self.name, "makecache"], check=False)
        self._checked(result)

    def install(self, executor: Executor, packages: list[str]) -> None:
        self._checked(executor.run([self.name, "install", "-y", *packages], check=False))

    def remove(self, executor: Executor, packages: list[str]) -> None:
        self._checked(executor.run([self.name, "remove", "-y", *packages], check=False))

    def upgrade_packages(self, executor: Executor, packages: list[str]) -> None:
        self._checked(executor.run([self.name, "upgrade", "-y", *packages], check=False))

    def is_installed(self, executor: Executor, package: str) -> bool:
        return self.query.check(executor, package)

    def version(self, executor: Executor, package: str) -> Optional[str]:
        return self.query.version(executor, package)


class YumPackageManager(DnfPackageManager):
    name = "yum"


class BrewPackageManager(PackageManager):
    name = "brew"

    def install(self, executor: Executor, packages: list[str]) -> None:
        self._checked(executor.run(["brew", "install", *packages], check=False))

    def remove(self, executor: Executor, packages: list[str]) -> None:
        self._checked(executor.run(["brew", "uninstall", *packages], check=False))

    def upgrade_packages(self, executor: Executor, packages: list[str]) -> None:
        self._checked(executor.run(["brew", "upgrade", *packages], check=False))

    def is_installed(self, executor: Executor, package: str) -> bool:
        result = executor.run(["brew", "list", package], check=False, mutable=False)
        return result.returncode == 0

    def version(self, executor: Executor, package: str) -> Optional[str]:
        result = executor.run(["brew", "list", "--versions", package], check=False, mutable=False)
        return result.stdout.strip() if result.returncode == 0 else None


class PacmanPackageManager(PackageManager):
    name = "pacman"

    def refresh(self, executor: Executor) -> None:
        self._checked(executor.run(["pacman", "-Sy"], check=False))

    def install(self, executor: Executor, packages: list[str]) -> None:
        self._checked(executor.run(["pacman", "-S", "--noconfirm", *packages], check=False))

    def remove(self, executor: Executor, packages: list[str]) -> None:
        self._checked(executor.run(["pacman", "-R", "--noconfirm", *packages], check=False))

    def upgrade_packages(self, executor: Executor, packages: list[str]) -> None:
        self._checked(executor.run(["pacman", "-S", "--noconfirm", "--needed", *packages], check=False))

    def is_installed(self, executor: Executor, package: str) -> bool:
        result = executor.run(["pacman", "-Qi", package], check=False, mutable=False)
        return result.returncode == 0

    def version(self, executor: Executor, package: str) -> Optional[str]:
        result = executor.run(["pacman", "-Q", package], check=False, mutable=False)
        return result.stdout.strip() if result.returncode == 0 else None
