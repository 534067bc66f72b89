from __future__ import annotations

from collections import ChainMap
from typing import Any, Callable, Optional
import logging
import threading
import time

from .errors import FactConflictError, UnresolvedReferenceError
from .executors import Executor, executor_for
from .facts import FactStore, HostFacts
from .handlers import NotificationQueue
from .operations import OPERATION_REGISTRY, Operation
from .probes import gather_facts
from .retry import retry
from .templating import TemplateEngine
from .types import (
    FailureMode,
    HostConfig,
    HostResult,
    PlaySpec,
    TaskResult,
    TaskSpec,
    TaskStatus,
)

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[HostConfig, TaskSpec], None]


class TaskRunner:
    """Runs a play's task list against one host, strictly in order."""

    def __init__(
        self,
        store: Optional[FactStore] = None,
        *,
        dry_run: bool = False,
        tags: Optional[set[str]] = None,
        skip_tags: Optional[set[str]] = None,
        abort_event: Optional[threading.Event] = None,
        executor_factory: Optional[Callable[[HostConfig], Executor]] = None,
        progress_callback: Optional[ProgressCallback] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.store = store or FactStore()
        self.templates = TemplateEngine(self.store)
        self.dry_run = dry_run
        self.tags = set(tags or ())
        self.skip_tags = set(skip_tags or ())
        self.abort_event = abort_event
        self.executor_factory = executor_factory or (
            lambda host: executor_for(host, dry_run=self.dry_run)
        )
        self.progress_callback = progress_callback
        self.sleep = sleep

    def run(self, host: HostConfig, play: PlaySpec) -> HostResult:
        outcome = HostResult(host=host.name)
        facts = self.store.host_facts(host.name)
        queue = NotificationQueue(play.handlers)
        executor = self.executor_factory(host)
        try:
            try:
                if play.gather_facts:
                    facts.set("host_facts", gather_facts(executor))
                play_vars = self._render_play_vars(host, play, facts)
            except Exception as exc:  # noqa: BLE001
                logger.error("host=%s setup failed: %s", host.name, exc, exc_info=True)
                outcome.failed_task = "setup"
                outcome.failed_index = 0
                outcome.results.append(
                    TaskResult(
                        host=host.name,
                        action="setup",
                        status=TaskStatus.FAILED,
                        details=str(exc),
                        task="setup",
                    )
                )
                return outcome
            for index, task in enumerate(play.tasks, start=1):
                if self._aborted():
                    logger.info("host=%s stopping before task %s: run aborted", host.name, index)
                    outcome.aborted = True
                    break
                if not self._selected(task):
                    continue
                results = self._run_task(host, play, task, executor, facts, play_vars, queue)
                outcome.results.extend(results)
                if any(r.failed and not r.ignored for r in results):
                    outcome.failed_task = task.name
                    outcome.failed_index = index
                    logger.warning(
                        "host=%s failed at task %s (%s)", host.name, index, task.name
                    )
                    break
            if queue and not outcome.aborted:
                self._flush_handlers(host, play, executor, facts, play_vars, queue, outcome)
        finally:
            executor.close()
        return outcome

    # Task execution ------------------------------------------------------
    def _run_task(
        self,
        host: HostConfig,
        play: PlaySpec,
        task: TaskSpec,
        executor: Executor,
        facts: HostFacts,
        play_vars: dict[str, Any],
        queue: Optional[NotificationQueue],
    ) -> list[TaskResult]:
        logger.debug("task=%s host=%s", task.name, host.name)
        if self.progress_callback:
            self.progress_callback(host, task)
        context = self._context(host, facts, play_vars, task)

        if task.loop is None:
            result = self._run_once(host, task, executor, context)
            results = [result]
            registered = self._registered_view(result)
        else:
            try:
                items = self.templates.render(task.loop, context)
            except UnresolvedReferenceError as exc:
                items = None
                results = [self._failed(host, task, str(exc))]
            except Exception as exc:  # noqa: BLE001
                logger.error("task=%s host=%s loop failed: %s", task.name, host.name, exc, exc_info=True)
                items = None
                results = [self._failed(host, task, f"loop: {exc}")]
            else:
                if not isinstance(items, list):
                    items = None
                    results = [self._failed(host, task, "loop must render to a list")]
            if items is not None:
                results = [
                    self._run_once(host, task, executor, context.new_child({"item": item}))
                    for item in items
                ]
            registered = {
                "results": [self._registered_view(r) for r in results],
                "changed": any(r.changed for r in results),
                "failed": any(r.failed for r in results),
                "skipped": all(r.skipped for r in results),
            }

        for result in results:
            result.task = task.name
            if result.resource is None:
                result.resource = self._resource_name(task.data)
            if result.facts and not result.failed:
                self._capture(host, play, facts, result)
            if result.failed and task.failure.ignores_errors:
                result.ignored = True

        if task.register:
            facts.set(task.register, registered)
        if queue is not None and task.notify and any(r.changed for r in results):
            queue.notify(task.notify)
        return results

    def _run_once(
        self, host: HostConfig, task: TaskSpec, executor: Executor, context: ChainMap
    ) -> TaskResult:
        try:
            guard = self.templates.condition(task.when, context)
        except UnresolvedReferenceError as exc:
            return self._failed(host, task, f"guard: {exc}")
        except Exception as exc:  # noqa: BLE001
            logger.error("task=%s host=%s guard failed: %s", task.name, host.name, exc, exc_info=True)
            return self._failed(host, task, f"guard: {exc}")
        if not guard:
            return TaskResult(
                host=host.name,
                action=task.type,
                status=TaskStatus.SKIPPED,
                details="skipped (guard false)",
            )

        def attempt() -> TaskResult:
            return self._attempt(host, task, executor, context)

        policy = task.failure
        if policy.mode is not FailureMode.RETRY or policy.retry is None:
            return attempt()

        spec = policy.retry
        until_errors: list[str] = []

        def satisfied(result: TaskResult) -> bool:
            if spec.until is None:
                return not result.failed
            try:
                return self.templates.condition(
                    spec.until, self._with_register(context, task, result)
                )
            except UnresolvedReferenceError as exc:
                until_errors.append(str(exc))
                return False
            except Exception as exc:  # noqa: BLE001
                logger.error(
                    "task=%s host=%s until failed: %s", task.name, host.name, exc, exc_info=True
                )
                until_errors.append(f"until: {exc}")
                return False

        def on_retry(attempt_no: int, result: Optional[TaskResult], error) -> None:
            logger.info(
                "task=%s host=%s attempt %s/%s did not succeed",
                task.name,
                host.name,
                attempt_no,
                spec.retries,
            )

        outcome = retry(
            attempt, spec.retries, spec.delay, satisfied, sleep=self.sleep, on_retry=on_retry
        )
        result = outcome.result or self._failed(host, task, str(outcome.error))
        result.attempts = outcome.attempts
        if not outcome.succeeded:
            reason = result.details
            if until_errors:
                reason = until_errors[-1]
            result.status = TaskStatus.FAILED
            result.details = f"retries exhausted after {outcome.attempts} attempts: {reason}"
        return result

    def _attempt(
        self, host: HostConfig, task: TaskSpec, executor: Executor, context: ChainMap
    ) -> TaskResult:
        operation_cls = OPERATION_REGISTRY.get(task.type)
        if not operation_cls:
            detail = f"unknown operation '{task.type}'"
            logger.warning(detail)
            return self._failed(host, task, detail)
        try:
            data = self.templates.render(task.data, context)
            operation: Operation = operation_cls(data)
            result = operation.apply(host, executor)
        except UnresolvedReferenceError as exc:
            logger.error("task=%s host=%s %s", task.name, host.name, exc)
            return self._failed(host, task, str(exc))
        except Exception as exc:  # noqa: BLE001
            logger.error(
                "action=%s host=%s failed: %s", task.type, host.name, exc, exc_info=True
            )
            return self._failed(host, task, str(exc))

        try:
            self._apply_conditions(task, result, context)
        except UnresolvedReferenceError as exc:
            result.status = TaskStatus.FAILED
            result.details = f"condition: {exc}"
        except Exception as exc:  # noqa: BLE001
            logger.error(
                "task=%s host=%s condition failed: %s", task.name, host.name, exc, exc_info=True
            )
            result.status = TaskStatus.FAILED
            result.details = f"condition: {exc}"
        logger.debug("action=%s host=%s status=%s", task.type, host.name, result.status.value)
        return result

    def _apply_conditions(self, task: TaskSpec, result: TaskResult, context: ChainMap) -> None:
        if task.failed_when is None and task.changed_when is None:
            return
        scope = self._with_register(context, task, result)
        # A result with an exit code means a command actually ran.
        ran = result.changed or (result.failed and "rc" in result.output)
        changed = ran
        if task.changed_when is not None:
            changed = self.templates.condition(task.changed_when, scope)
        if task.failed_when is not None:
            failed = self.templates.condition(task.failed_when, scope)
        else:
            failed = result.failed
        if failed:
            if not result.failed:
                result.details = f"failed_when matched ({result.details})"
            result.status = TaskStatus.FAILED
        else:
            result.status = TaskStatus.CHANGED if changed else TaskStatus.OK

    def _flush_handlers(
        self,
        host: HostConfig,
        play: PlaySpec,
        executor: Executor,
        facts: HostFacts,
        play_vars: dict[str, Any],
        queue: NotificationQueue,
        outcome: HostResult,
    ) -> None:
        for position, handler in enumerate(queue.flush(), start=1):
            logger.debug("handler=%s host=%s", handler.name, host.name)
            results = self._run_task(host, play, handler.task, executor, facts, play_vars, None)
            for result in results:
                result.handler = True
            outcome.results.extend(results)
            if any(r.failed and not r.ignored for r in results) and outcome.failed_task is None:
                outcome.failed_task = f"handler {handler.name}"
                outcome.failed_index = len(play.tasks) + position
                break

    def _capture(self, host: HostConfig, play: PlaySpec, facts: HostFacts, result: TaskResult) -> None:
        for key, value in result.facts.items():
            try:
                self.store.capture(play.group, host.name, key, value)
            except FactConflictError as exc:
                result.status = TaskStatus.FAILED
                result.details = str(exc)
                return
            facts.set(key, value)

    # Helpers -------------------------------------------------------------
    def _aborted(self) -> bool:
        return self.abort_event is not None and self.abort_event.is_set()

    def _selected(self, task: TaskSpec) -> bool:
        if self.skip_tags and task.tags & self.skip_tags:
            return False
        if self.tags and not (task.tags & self.tags or "always" in task.tags):
            return False
        return True

    def _render_play_vars(self, host: HostConfig, play: PlaySpec, facts: HostFacts) -> dict[str, Any]:
        rendered: dict[str, Any] = {}
        for key, value in play.vars.items():
            scope = self._context(host, facts, rendered, None)
            rendered[key] = self.templates.render(value, scope)
        return rendered

    def _context(
        self,
        host: HostConfig,
        facts: HostFacts,
        play_vars: dict[str, Any],
        task: Optional[TaskSpec],
    ) -> ChainMap:
        specials = {
            "inventory_hostname": host.name,
            "group_names": sorted(host.groups),
            "facts": self.store.by_group(),
            "hostvars": self.store.hostvars(),
        }
        return ChainMap(
            dict(task.vars) if task else {},
            facts.as_dict(),
            play_vars,
            host.variables,
            self.store.known(),
            specials,
        )

    def _with_register(self, context: ChainMap, task: TaskSpec, result: TaskResult) -> ChainMap:
        view = self._registered_view(result)
        scope = {"result": view}
        if task.register:
            scope[task.register] = view
        return context.new_child(scope)

    @staticmethod
    def _registered_view(result: TaskResult) -> dict[str, Any]:
        view = dict(result.output)
        view.update(
            {
                "changed": result.changed,
                "failed": result.failed,
                "skipped": result.skipped,
                "msg": result.details,
                "attempts": result.attempts,
            }
        )
        return view

    @staticmethod
    def _failed(host: HostConfig, task: TaskSpec, detail: str) -> TaskResult:
        return TaskResult(
            host=host.name,
            action=task.type,
            status=TaskStatus.FAILED,
            details=detail,
        )

    @staticmethod
    def _resource_name(data: dict[str, Any]) -> Optional[str]:
        for key in ("name", "path", "dest", "chain", "zone"):
            value = data.get(key)
            if isinstance(value, (list, tuple)) and value:
                return ",".join(str(v) for v in value)
            if value:
                return str(value)
        pkgs = data.get("packages")
        if isinstance(pkgs, (list, tuple)) and pkgs:
            return ",".join(str(p) for p in pkgs)
        return None
