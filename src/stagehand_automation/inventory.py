from __future__ import annotations

from pathlib import Path
from typing import Any, Iterable, Optional
import logging
import tomllib

import yaml

from .errors import PlaybookError
from .types import HostConfig

logger = logging.getLogger(__name__)

LOCAL_HOST = "localhost"


class InventoryLoader:
    """Loads host definitions from TOML or YAML inventory files.

    Both formats share one shape::

        [hosts.web1]
        address = "10.44.1.10"
        connection = "ssh"
        groups = ["web"]
    """

    def load(self, path: Optional[Path]) -> dict[str, HostConfig]:
        if path is None:
            return self.default_hosts()
        path = Path(path)
        try:
            text = path.read_text()
        except OSError as exc:
            raise PlaybookError(f"{path}: {exc.strerror or exc}") from None
        suffix = path.suffix.lower()
        try:
            if suffix in {".yml", ".yaml"}:
                data = yaml.safe_load(text) or {}
            else:
                data = tomllib.loads(text)
        except tomllib.TOMLDecodeError as exc:
            raise PlaybookError(f"{path}: {exc}") from None
        except yaml.YAMLError as exc:
            raise PlaybookError(f"{path}: {exc}") from None
        if not isinstance(data, dict):
            raise PlaybookError(f"{path}: inventory must be a mapping")
        return self.parse_hosts(data.get("hosts", {}))

    @staticmethod
    def default_hosts() -> dict[str, HostConfig]:
        return {
            LOCAL_HOST: HostConfig(
                name=LOCAL_HOST, connection="local", groups={"all", "local", LOCAL_HOST}
            )
        }

    @staticmethod
    def parse_hosts(host_data: dict[str, Any]) -> dict[str, HostConfig]:
        if not host_data:
            return InventoryLoader.default_hosts()
        if not isinstance(host_data, dict):
            raise PlaybookError("hosts must be a mapping of host name to settings")
        hosts: dict[str, HostConfig] = {}
        for name, payload in host_data.items():
            payload = payload or {}
            if not isinstance(payload, dict):
                raise PlaybookError(f"host '{name}' settings must be a mapping")
            groups = payload.get("groups", [])
            if isinstance(groups, str):
                groups = [groups]
            variables = payload.get("variables", {}) or {}
            if not isinstance(variables, dict):
                raise PlaybookError(f"host '{name}' variables must be a mapping")
            connection = str(payload.get("connection", "local"))
            if connection not in {"local", "ssh"}:
                raise PlaybookError(f"host '{name}' has unknown connection '{connection}'")
            hosts[name] = HostConfig(
                name=name,
                connection=connection,
                address=payload.get("address"),
                groups={"all", *map(str, groups)},
                variables=dict(variables),
                port=int(payload.get("port", 22)),
                user=payload.get("user"),
                key_file=payload.get("key_file"),
            )
        return hosts


def select_hosts(patterns: Iterable[str], hosts: dict[str, HostConfig]) -> list[HostConfig]:
    """Resolve group/host patterns to hosts in inventory order."""

    wanted: set[str] = set()
    for pattern in patterns:
        matched = [
            host.name
            for host in hosts.values()
            if pattern == "all" or pattern == host.name or pattern in host.groups
        ]
        if not matched:
            logger.warning("host pattern '%s' matched nothing", pattern)
        wanted.update(matched)
    return [host for host in hosts.values() if host.name in wanted]
