from __future__ import annotations

import argparse
import logging
import os
import sys
import threading
from pathlib import Path
from typing import Optional, Sequence

from .config import DEFAULT_CONFIG, StagehandConfig, load_config
from .dispatcher import PlaybookRunner
from .errors import PlaybookError
from .inventory import InventoryLoader
from .notify import WebhookNotifier
from .playbook import PlaybookLoader
from .types import HostConfig, RunResult, TaskResult, TaskSpec

EXIT_OK = 0
EXIT_CONFIG_ERROR = 1
EXIT_HOST_FAILURE = 2


class Ansi:
    GREEN = "\033[92m"
    YELLOW = "\033[93m"
    RED = "\033[91m"
    BLUE = "\033[94m"
    CYAN = "\033[96m"
    ORANGE = "\033[38;5;208m"
    RESET = "\033[0m"


def colorize(text: str, color: Optional[str]) -> str:
    if not color:
        return text
    if not sys.stdout.isatty() or os.environ.get("NO_COLOR"):
        return text
    return f"{color}{text}{Ansi.RESET}"


_progress_lock = threading.Lock()
_last_progress_len = 0


def _csv(value: str) -> set[str]:
    return {part.strip() for part in value.split(",") if part.strip()}


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Stagehand playbook runner")
    parser.add_argument(
        "playbook",
        nargs="?",
        default=None,
        type=Path,
        help="Path to a YAML playbook (default from config)",
    )
    parser.add_argument(
        "-i",
        "--inventory",
        type=Path,
        help="TOML or YAML inventory (default: localhost only)",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=DEFAULT_CONFIG,
        help=f"Path to stagehand config file (default: {DEFAULT_CONFIG})",
    )
    parser.add_argument("--forks", type=int, help="Maximum hosts worked on at once")
    parser.add_argument(
        "--strict",
        action="store_true",
        default=None,
        help="Abort every host after the first host failure",
    )
    parser.add_argument("--check", action="store_true", help="Report changes without making them")
    parser.add_argument("--tags", type=_csv, default=set(), help="Only run tasks with these tags")
    parser.add_argument("--skip-tags", type=_csv, default=set(), help="Skip tasks with these tags")
    parser.add_argument("--notify-url", help="Webhook that receives the run summary")
    parser.add_argument("--log-level", default=None, help="Python logging level (default: WARNING)")
    parser.add_argument("--log-file", type=Path, help="Write a full debug log to this file")
    return parser.parse_args(argv)


def configure_logging(level: str, log_file: Optional[Path] = None) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.WARNING),
        format="%(levelname)s %(name)s - %(message)s",
    )
    if log_file is not None:
        handler = logging.FileHandler(log_file)
        handler.setLevel(logging.DEBUG)
        handler.setFormatter(
            logging.Formatter("%(asctime)s %(levelname)s %(threadName)s %(name)s - %(message)s")
        )
        root = logging.getLogger()
        root.addHandler(handler)
        root.setLevel(logging.DEBUG)
        # Console keeps the requested verbosity.
        for existing in root.handlers:
            if existing is not handler:
                existing.setLevel(getattr(logging, level.upper(), logging.WARNING))


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = parse_args(argv)
    try:
        cfg = load_config(args.config)
    except ValueError as exc:
        print(colorize(f"Config invalid: {exc}", Ansi.RED), file=sys.stderr)
        return EXIT_CONFIG_ERROR
    configure_logging(args.log_level or cfg.log_level, args.log_file)

    playbook_path = args.playbook or cfg.playbook
    if playbook_path is None:
        print(colorize("No playbook given", Ansi.RED), file=sys.stderr)
        return EXIT_CONFIG_ERROR
    try:
        hosts = InventoryLoader().load(args.inventory or cfg.inventory)
        _apply_connection_defaults(hosts, cfg)
        playbook = PlaybookLoader().load(playbook_path, hosts)
    except PlaybookError as exc:
        print(colorize(f"Playbook validation failed: {exc}", Ansi.RED), file=sys.stderr)
        return EXIT_CONFIG_ERROR

    forks = args.forks if args.forks is not None else cfg.forks
    if forks < 1:
        print(colorize("--forks must be at least 1", Ansi.RED), file=sys.stderr)
        return EXIT_CONFIG_ERROR
    notify_url = args.notify_url or cfg.notify_url
    notifier = WebhookNotifier(notify_url, timeout=cfg.notify_timeout) if notify_url else None

    runner = PlaybookRunner(
        playbook,
        forks=forks,
        strict=cfg.strict if args.strict is None else args.strict,
        dry_run=args.check,
        tags=args.tags,
        skip_tags=args.skip_tags,
        progress_callback=print_progress,
        notifier=notifier,
    )
    try:
        outcome = runner.run()
    except Exception as exc:  # noqa: BLE001
        _clear_progress()
        if logging.getLogger().isEnabledFor(logging.DEBUG):
            raise
        print(colorize(f"Execution failed: {exc}", Ansi.RED), file=sys.stderr)
        return EXIT_CONFIG_ERROR

    report(outcome)
    return EXIT_OK if outcome.success else EXIT_HOST_FAILURE


def report(outcome: RunResult) -> None:
    effective_level = logging.getLogger().getEffectiveLevel()
    summary = Summary()
    _clear_progress()
    for phase in outcome.phases:
        print(colorize(f"PLAY [{phase.play}]", Ansi.CYAN))
        for host_result in phase.hosts.values():
            for result in host_result.results:
                summary.add(result)
                if should_display_result(result, effective_level):
                    print(format_result(result))
    print(summary.render())
    if outcome.success:
        return
    for name, text in outcome.host_outcomes().items():
        if text != "success":
            print(colorize(f"{name}: {text}", Ansi.RED), file=sys.stderr)


def format_result(result: TaskResult) -> str:
    status = result.status.value
    color: Optional[str]
    if result.failed:
        if "unknown operation" in result.details.lower():
            status = "unknown"
            color = Ansi.ORANGE
        elif result.ignored:
            status = "failed (ignored)"
            color = Ansi.YELLOW
        else:
            color = Ansi.RED
    elif result.changed:
        color = Ansi.GREEN
    elif result.skipped:
        color = Ansi.CYAN
    else:
        color = Ansi.BLUE
    resource = f"[{result.resource}]" if result.resource else ""
    label = f" ({result.task})" if result.task else ""
    attempts = f" after {result.attempts} attempts" if result.attempts > 1 else ""
    line = f"{result.host}::{result.action}{resource}{label} {status}{attempts} - {result.details}"
    return colorize(line, color)


def should_display_result(result: TaskResult, log_level: int) -> bool:
    if result.failed or result.changed:
        return True
    return log_level <= logging.DEBUG


def print_progress(host: HostConfig, task: TaskSpec) -> None:
    global _last_progress_len
    line = f"{host.name}::{task.type} ({task.name}) pending..."
    with _progress_lock:
        if _last_progress_len > len(line):
            line = line.ljust(_last_progress_len)
        _last_progress_len = len(line)
        print(colorize(line, Ansi.YELLOW), end="\r", flush=True)


def _clear_progress() -> None:
    global _last_progress_len
    with _progress_lock:
        if _last_progress_len:
            print(" " * _last_progress_len, end="\r", flush=True)
            _last_progress_len = 0


def _apply_connection_defaults(hosts: dict[str, HostConfig], cfg: StagehandConfig) -> None:
    for host in hosts.values():
        if host.connection != "ssh":
            continue
        if host.user is None:
            host.user = cfg.remote_user
        if host.key_file is None:
            host.key_file = cfg.private_key_file


class Summary:
    def __init__(self) -> None:
        self.ok = 0
        self.changed = 0
        self.skipped = 0
        self.failed = 0
        self.ignored = 0

    def add(self, result: TaskResult) -> None:
        if result.failed:
            if result.ignored:
                self.ignored += 1
            else:
                self.failed += 1
        elif result.changed:
            self.changed += 1
        elif result.skipped:
            self.skipped += 1
        else:
            self.ok += 1

    def render(self) -> str:
        parts = [
            f"Ok: {self.ok}",
            f"Changed: {self.changed}",
            f"Skipped: {self.skipped}",
            f"Ignored: {self.ignored}",
            f"Failures: {self.failed}",
        ]
        text = " | ".join(parts)
        color = Ansi.GREEN if self.failed == 0 else Ansi.RED
        return colorize(text, color)


if __name__ == "__main__":
    raise SystemExit(main())
