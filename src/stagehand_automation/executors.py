from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path, PurePosixPath
from typing import Optional, Sequence, Union
import logging
import os
import shlex
import shutil
import stat
import subprocess

import paramiko

from .types import HostConfig

logger = logging.getLogger(__name__)


@dataclass
class CommandResult:
    command: list[str]
    stdout: str
    stderr: str
    returncode: int


class Executor:
    """Base executor abstraction used by operations."""

    def __init__(self, host: HostConfig, *, dry_run: bool = False):
        self.host = host
        self.dry_run = dry_run

    def run(
        self,
        command: Sequence[str],
        *,
        check: bool = True,
        mutable: bool = True,
        env: Optional[dict[str, str]] = None,
        cwd: Optional[Union[str, Path]] = None,
        timeout: Optional[float] = None,
    ) -> CommandResult:
        """Run ``command`` and optionally skip it during dry-runs."""

        cmd_list = list(command)
        if self.dry_run and mutable:
            return CommandResult(cmd_list, "", "skipped (dry-run)", 0)
        result = self._execute(cmd_list, env=env, cwd=cwd, timeout=timeout)
        if check and result.returncode != 0:
            raise subprocess.CalledProcessError(
                result.returncode,
                cmd_list,
                result.stdout,
                result.stderr,
            )
        return result

    def _execute(
        self,
        command: list[str],
        *,
        env: Optional[dict[str, str]],
        cwd: Optional[Union[str, Path]],
        timeout: Optional[float],
    ) -> CommandResult:
        raise NotImplementedError

    def close(self) -> None:
        """Release any connection held by the executor."""

    # File primitives -----------------------------------------------------
    def read_file(self, path: Path) -> Optional[str]:
        raise NotImplementedError

    def write_file(self, path: Path, *, content: str, mode: Optional[int]) -> tuple[bool, str]:
        raise NotImplementedError

    def ensure_directory(self, path: Path, *, mode: Optional[int]) -> tuple[bool, str]:
        raise NotImplementedError

    def ensure_symlink(self, path: Path, *, target: str) -> tuple[bool, str]:
        raise NotImplementedError

    def remove_path(self, path: Path) -> bool:
        raise NotImplementedError

    def exists(self, path: Path) -> bool:
        raise NotImplementedError

    def set_ownership(
        self, path: Path, *, owner: Optional[str], group: Optional[str]
    ) -> tuple[bool, str]:
        """Apply ``owner``/``group`` by name or numeric id using stat/chown."""

        if owner is None and group is None:
            return False, "noop"
        probe = self.run(
            ["stat", "-c", "%U %G %u %g", str(path)], check=False, mutable=False
        )
        if probe.returncode != 0 and not self.dry_run:
            raise FileNotFoundError(f"cannot stat {path}: {probe.stderr.strip()}")
        fields = probe.stdout.split()
        current_owner = fields[0::2] if len(fields) == 4 else []
        current_group = fields[1::2] if len(fields) == 4 else []
        reasons: list[str] = []
        if owner is not None and str(owner) not in current_owner:
            reasons.append(f"owner->{owner}")
        if group is not None and str(group) not in current_group:
            reasons.append(f"group->{group}")
        if not reasons:
            return False, "noop"
        spec = f"{owner or ''}:{group or ''}" if group is not None else str(owner)
        self.run(["chown", spec, str(path)])
        return True, ", ".join(reasons)


class LocalExecutor(Executor):
    """Executor that acts directly on the local host."""

    def _execute(self, command, *, env, cwd, timeout) -> CommandResult:
        exec_env = None
        if env:
            exec_env = os.environ.copy()
            exec_env.update(env)

        proc = subprocess.run(
            command,
            capture_output=True,
            text=True,
            check=False,
            env=exec_env,
            cwd=str(cwd) if cwd is not None else None,
            timeout=timeout,
        )
        return CommandResult(command, proc.stdout, proc.stderr, proc.returncode)

    def read_file(self, path: Path) -> Optional[str]:
        try:
            return path.read_text()
        except FileNotFoundError:
            return None

    def write_file(self, path: Path, *, content: str, mode: Optional[int]) -> tuple[bool, str]:
        current = self.read_file(path)
        changed = False
        reasons: list[str] = []

        if current != content:
            changed = True
            reasons.append("content")
            if not self.dry_run:
                path.parent.mkdir(parents=True, exist_ok=True)
                path.write_text(content)

        if mode is not None:
            existing_mode = self._file_mode(path)
            if existing_mode != mode:
                changed = True
                reasons.append(f"mode->{mode:04o}")
                if not self.dry_run:
                    # ``chmod`` fails if the file is absent, so guard it.
                    if path.exists():
                        os.chmod(path, mode)
        detail = ", ".join(reasons) if reasons else "noop"
        return changed, detail

    def ensure_directory(self, path: Path, *, mode: Optional[int]) -> tuple[bool, str]:
        changed = False
        reasons: list[str] = []

        if not path.exists():
            changed = True
            reasons.append("created")
            if not self.dry_run:
                path.mkdir(parents=True, exist_ok=True)
        elif not path.is_dir():
            changed = True
            reasons.append("replaced-non-dir")
            if not self.dry_run:
                self.remove_path(path)
                path.mkdir(parents=True, exist_ok=True)

        if mode is not None:
            existing_mode = self._file_mode(path)
            if existing_mode != mode:
                changed = True
                reasons.append(f"mode->{mode:04o}")
                if not self.dry_run and path.exists():
                    os.chmod(path, mode)
        detail = ", ".join(reasons) if reasons else "noop"
        return changed, detail

    def ensure_symlink(self, path: Path, *, target: str) -> tuple[bool, str]:
        current = None
        if path.is_symlink():
            current = os.readlink(path)
        if current == target:
            return False, "noop"
        if not self.dry_run:
            self.remove_path(path)
            path.parent.mkdir(parents=True, exist_ok=True)
            os.symlink(target, path)
        return True, f"link->{target}"

    def remove_path(self, path: Path) -> bool:
        if not path.exists() and not path.is_symlink():
            return False
        if self.dry_run:
            return True
        if path.is_dir() and not path.is_symlink():
            shutil.rmtree(path)
        else:
            path.unlink()
        return True

    def exists(self, path: Path) -> bool:
        return path.exists()

    @staticmethod
    def _file_mode(path: Path) -> Optional[int]:
        try:
            return stat.S_IMODE(path.stat().st_mode)
        except FileNotFoundError:
            return None


class SSHExecutor(Executor):
    """Executor that drives a remote host over SSH, using SFTP for files."""

    def __init__(
        self,
        host: HostConfig,
        *,
        dry_run: bool = False,
        connect_timeout: float = 20.0,
        client: Optional[paramiko.SSHClient] = None,
    ):
        super().__init__(host, dry_run=dry_run)
        self.connect_timeout = connect_timeout
        self._client = client
        self._sftp: Optional[paramiko.SFTPClient] = None

    @property
    def client(self) -> paramiko.SSHClient:
        if self._client is None:
            self._client = self._connect()
        return self._client

    @property
    def sftp(self) -> paramiko.SFTPClient:
        if self._sftp is None:
            self._sftp = self.client.open_sftp()
        return self._sftp

    def _connect(self) -> paramiko.SSHClient:
        client = paramiko.SSHClient()
        key_file = os.path.expanduser(self.host.key_file) if self.host.key_file else None
        client.set_missing_host_key_policy(paramiko.AutoAddPolicy())
        logger.debug("ssh connect host=%s address=%s", self.host.name, self.host.address)
        client.connect(
            hostname=self.host.address or self.host.name,
            port=self.host.port,
            username=self.host.user,
            key_filename=key_file,
            timeout=self.connect_timeout,
            allow_agent=True,
            look_for_keys=True,
        )
        return client

    def close(self) -> None:
        if self._sftp is not None:
            self._sftp.close()
            self._sftp = None
        if self._client is not None:
            self._client.close()
            self._client = None

    def _execute(self, command, *, env, cwd, timeout) -> CommandResult:
        line = shlex.join(command)
        if env:
            exports = " ".join(f"{k}={shlex.quote(v)}" for k, v in env.items())
            line = f"env {exports} {line}"
        if cwd is not None:
            line = f"cd {shlex.quote(str(cwd))} && {line}"
        _, stdout, stderr = self.client.exec_command(line, timeout=timeout)
        out = stdout.read().decode(errors="replace")
        err = stderr.read().decode(errors="replace")
        rc = stdout.channel.recv_exit_status()
        return CommandResult(command, out, err, rc)

    def read_file(self, path: Path) -> Optional[str]:
        try:
            with self.sftp.open(str(path), "r") as handle:
                return handle.read().decode()
        except FileNotFoundError:
            return None

    def write_file(self, path: Path, *, content: str, mode: Optional[int]) -> tuple[bool, str]:
        current = self.read_file(path)
        reasons: list[str] = []
        if current != content:
            reasons.append("content")
            if not self.dry_run:
                self.run(["mkdir", "-p", str(PurePosixPath(str(path)).parent)])
                with self.sftp.open(str(path), "w") as handle:
                    handle.write(content.encode())
        if mode is not None:
            existing_mode = self._file_mode(path)
            if existing_mode != mode:
                reasons.append(f"mode->{mode:04o}")
                if not self.dry_run:
                    self.sftp.chmod(str(path), mode)
        detail = ", ".join(reasons) if reasons else "noop"
        return bool(reasons), detail

    def ensure_directory(self, path: Path, *, mode: Optional[int]) -> tuple[bool, str]:
        reasons: list[str] = []
        try:
            attrs = self.sftp.stat(str(path))
        except FileNotFoundError:
            attrs = None
        if attrs is None:
            reasons.append("created")
            self.run(["mkdir", "-p", str(path)])
        elif not stat.S_ISDIR(attrs.st_mode or 0):
            reasons.append("replaced-non-dir")
            self.run(["rm", "-f", str(path)])
            self.run(["mkdir", "-p", str(path)])
        if mode is not None and self._file_mode(path) != mode:
            reasons.append(f"mode->{mode:04o}")
            if not self.dry_run:
                self.sftp.chmod(str(path), mode)
        detail = ", ".join(reasons) if reasons else "noop"
        return bool(reasons), detail

    def ensure_symlink(self, path: Path, *, target: str) -> tuple[bool, str]:
        try:
            current = self.sftp.readlink(str(path))
        except (FileNotFoundError, OSError):
            current = None
        if current == target:
            return False, "noop"
        self.run(["ln", "-sfn", target, str(path)])
        return True, f"link->{target}"

    def remove_path(self, path: Path) -> bool:
        if not self.exists(path):
            return False
        self.run(["rm", "-rf", str(path)])
        return True

    def exists(self, path: Path) -> bool:
        try:
            self.sftp.lstat(str(path))
        except FileNotFoundError:
            return False
        return True

    def _file_mode(self, path: Path) -> Optional[int]:
        try:
            return stat.S_IMODE(self.sftp.stat(str(path)).st_mode or 0)
        except FileNotFoundError:
            return None


def executor_for(host: HostConfig, *, dry_run: bool = False) -> Executor:
    if host.connection == "local":
        return LocalExecutor(host, dry_run=dry_run)
    if host.connection == "ssh":
        return SSHExecutor(host, dry_run=dry_run)
    raise ValueError(f"Unknown connection type '{host.connection}'")
