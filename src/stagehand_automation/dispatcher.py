from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Callable, Optional
import logging
import threading
import time

from .executors import Executor
from .facts import FactStore
from .inventory import select_hosts
from .runner import ProgressCallback, TaskRunner
from .types import (
    HostConfig,
    HostResult,
    PhaseResult,
    PlaySpec,
    Playbook,
    RunResult,
    TaskResult,
    TaskStatus,
)

logger = logging.getLogger(__name__)

DEFAULT_FORKS = 5


class Dispatcher:
    """Fans a play out over its hosts with at most ``forks`` workers.

    A failing host never stops its siblings unless the dispatch is strict;
    then the shared abort event is set and workers stop picking up tasks
    once their current one completes.
    """

    def __init__(
        self,
        runner: TaskRunner,
        *,
        forks: int = DEFAULT_FORKS,
        strict: bool = False,
        abort_event: Optional[threading.Event] = None,
    ):
        if forks < 1:
            raise ValueError("forks must be at least 1")
        self.runner = runner
        self.forks = forks
        self.strict = strict
        self.abort_event = abort_event or runner.abort_event or threading.Event()
        self.runner.abort_event = self.abort_event

    def dispatch(self, play: PlaySpec, hosts: list[HostConfig]) -> dict[str, HostResult]:
        results: dict[str, HostResult] = {}
        if not hosts:
            return results
        workers = min(self.forks, len(hosts))
        logger.info("play=%s hosts=%s forks=%s", play.name, len(hosts), workers)
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="host") as pool:
            futures = {pool.submit(self._run_host, host, play): host for host in hosts}
            for future in as_completed(futures):
                host = futures[future]
                results[host.name] = future.result()
        return {host.name: results[host.name] for host in hosts}

    def _run_host(self, host: HostConfig, play: PlaySpec) -> HostResult:
        try:
            outcome = self.runner.run(host, play)
        except Exception as exc:  # noqa: BLE001
            logger.error("host=%s crashed: %s", host.name, exc, exc_info=True)
            outcome = HostResult(
                host=host.name,
                results=[
                    TaskResult(
                        host=host.name,
                        action="internal",
                        status=TaskStatus.FAILED,
                        details=str(exc),
                    )
                ],
                failed_task="internal error",
                failed_index=0,
            )
        if self.strict and outcome.failed_task is not None:
            if not self.abort_event.is_set():
                logger.warning("strict run: aborting after failure on %s", host.name)
            self.abort_event.set()
        return outcome


class PlaybookRunner:
    """Runs plays as sequential phases with a barrier between them."""

    def __init__(
        self,
        playbook: Playbook,
        *,
        forks: int = DEFAULT_FORKS,
        strict: bool = False,
        dry_run: bool = False,
        tags: Optional[set[str]] = None,
        skip_tags: Optional[set[str]] = None,
        executor_factory: Optional[Callable[[HostConfig], Executor]] = None,
        progress_callback: Optional[ProgressCallback] = None,
        notifier=None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.playbook = playbook
        self.forks = forks
        self.strict = strict
        self.notifier = notifier
        self.store = FactStore()
        self.abort_event = threading.Event()
        self.task_runner = TaskRunner(
            self.store,
            dry_run=dry_run,
            tags=tags,
            skip_tags=skip_tags,
            abort_event=self.abort_event,
            executor_factory=executor_factory,
            progress_callback=progress_callback,
            sleep=sleep,
        )

    def run(self) -> RunResult:
        run_result = RunResult()
        for number, play in enumerate(self.playbook.plays, start=1):
            if self.abort_event.is_set():
                logger.warning("skipping play %s (%s): run aborted", number, play.name)
                run_result.aborted = True
                break
            hosts = select_hosts(play.hosts, self.playbook.hosts)
            if not hosts:
                logger.warning("play=%s matched no hosts for %s", play.name, play.hosts)
            dispatcher = Dispatcher(
                self.task_runner,
                forks=play.forks or self.forks,
                strict=self.strict if play.strict is None else play.strict,
                abort_event=self.abort_event,
            )
            phase = PhaseResult(play=play.name)
            phase.hosts = dispatcher.dispatch(play, hosts)
            run_result.phases.append(phase)
            # Barrier: every worker of this phase has finished.
            self.store.seal_phase()
            if self.abort_event.is_set():
                run_result.aborted = True
        if self.notifier is not None:
            self.notifier.send(run_result)
        return run_result
