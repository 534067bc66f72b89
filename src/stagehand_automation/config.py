from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Optional
import tomllib


DEFAULT_CONFIG = Path("/etc/stagehand/stagehand.toml")
DEFAULT_FORKS = 5
DEFAULT_NOTIFY_TIMEOUT = 10.0


@dataclass
class StagehandConfig:
    inventory: Optional[Path] = None
    playbook: Optional[Path] = None
    forks: int = DEFAULT_FORKS
    strict: bool = False
    notify_url: Optional[str] = None
    notify_timeout: float = DEFAULT_NOTIFY_TIMEOUT
    log_level: str = "WARNING"
    remote_user: Optional[str] = None
    private_key_file: Optional[str] = None


def load_config(path: Path) -> StagehandConfig:
    if not path.exists():
        return StagehandConfig()
    try:
        data = tomllib.loads(path.read_text())
    except tomllib.TOMLDecodeError as exc:
        raise ValueError(f"{path}: {exc}") from None
    defaults = data.get("defaults", {})
    inventory = defaults.get("inventory")
    playbook = defaults.get("playbook")
    notify_url = defaults.get("notify_url")
    remote_user = defaults.get("remote_user")
    private_key_file = defaults.get("private_key_file")
    forks = int(defaults.get("forks", DEFAULT_FORKS))
    if forks < 1:
        raise ValueError(f"{path}: forks must be at least 1")
    return StagehandConfig(
        inventory=Path(inventory) if inventory else None,
        playbook=Path(playbook) if playbook else None,
        forks=forks,
        strict=bool(defaults.get("strict", False)),
        notify_url=str(notify_url) if notify_url else None,
        notify_timeout=float(defaults.get("notify_timeout", DEFAULT_NOTIFY_TIMEOUT)),
        log_level=str(defaults.get("log_level", "WARNING")).upper(),
        remote_user=str(remote_user) if remote_user else None,
        private_key_file=str(private_key_file) if private_key_file else None,
    )
