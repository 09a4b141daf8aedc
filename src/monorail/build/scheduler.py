"""
monorail — bounded-parallel build scheduler.

File: src/monorail/build/scheduler.py

Purpose
- Run each project's build command in dependency order with a fixed-width worker
  pool and partial-failure semantics.

Functional requirements
- A task starts only after every internal dependency succeeded.
- A failure marks every transitive dependent skipped; independent work continues.
- Fail-fast stops launching new tasks (they end skipped); running tasks finish.
- A per-task timeout fails that task.
- Build mode marks a task succeeded-cached when its input fingerprint matches the
  last successful run; rebuild mode ignores stored fingerprints.
- Ready tasks launch in name order so runs are reproducible.
"""

from __future__ import annotations

import asyncio
import os
from collections.abc import Collection, Iterable, Mapping
from dataclasses import dataclass, field
from enum import StrEnum
from heapq import heappop, heappush
from pathlib import Path
from typing import TYPE_CHECKING

import structlog

from monorail.build.process import CommandExecutor, CommandSpec, LocalSubprocessExecutor
from monorail.build.state import BuildStateStore, compute_input_fingerprint
from monorail.utils.concurrency import CancellationToken

if TYPE_CHECKING:
    from monorail.graph import DependencyGraph

logger = structlog.get_logger(__name__)

_OUTPUT_TAIL_CHARS = 2000


class TaskState(StrEnum):
    PENDING = "pending"
    READY = "ready"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"


_TERMINAL_STATES = frozenset({TaskState.SUCCEEDED, TaskState.FAILED, TaskState.SKIPPED})


@dataclass(slots=True)
class BuildTask:
    project: str
    folder: Path
    command: str | None
    env: Mapping[str, str] = field(default_factory=dict)
    state: TaskState = TaskState.PENDING
    cached: bool = False
    fingerprint: str | None = None
    duration_ms: int = 0
    exit_code: int | None = None
    error: str | None = None
    output_tail: str = ""

    @property
    def is_terminal(self) -> bool:
        return self.state in _TERMINAL_STATES


@dataclass(frozen=True, slots=True)
class SchedulerOptions:
    parallelism: int = 0
    fail_fast: bool = False
    timeout_seconds: float | None = None
    rebuild: bool = False
    ignored_folders: Collection[str] = ()

    @property
    def width(self) -> int:
        return self.parallelism if self.parallelism > 0 else (os.cpu_count() or 1)


@dataclass(frozen=True, slots=True)
class BuildReport:
    tasks: tuple[BuildTask, ...]
    started_order: tuple[str, ...]
    cancelled_reason: str | None = None

    def count(self, state: TaskState) -> int:
        return sum(1 for task in self.tasks if task.state is state)

    @property
    def succeeded(self) -> int:
        return self.count(TaskState.SUCCEEDED)

    @property
    def failed(self) -> int:
        return self.count(TaskState.FAILED)

    @property
    def skipped(self) -> int:
        return self.count(TaskState.SKIPPED)

    @property
    def cached(self) -> int:
        return sum(1 for task in self.tasks if task.cached)

    @property
    def success(self) -> bool:
        return self.failed == 0

    def task(self, project: str) -> BuildTask:
        for task in self.tasks:
            if task.project == project:
                return task
        raise KeyError(f"Unknown project: {project}")


class BuildScheduler:
    """Drives ``BuildTask`` state transitions over the dependency graph."""

    def __init__(
        self,
        graph: DependencyGraph,
        tasks: Iterable[BuildTask],
        *,
        options: SchedulerOptions | None = None,
        executor: CommandExecutor | None = None,
        state_store: BuildStateStore | None = None,
    ) -> None:
        self._graph = graph
        self._tasks: dict[str, BuildTask] = {task.project: task for task in tasks}
        self._options = options or SchedulerOptions()
        self._executor = executor or LocalSubprocessExecutor()
        self._state_store = state_store
        self._token = CancellationToken()
        self._started: list[str] = []

    async def run(self) -> BuildReport:
        order = tuple(name for name in self._graph.topological_order() if name in self._tasks)
        waiting: dict[str, int] = {
            name: sum(1 for dep in self._graph.dependencies_of(name) if dep in self._tasks)
            for name in order
        }
        ready: list[str] = []
        for name in order:
            if waiting[name] == 0:
                self._mark_ready(name, ready)

        width = self._options.width
        running: dict[asyncio.Task[None], str] = {}
        logger.info("build_started", tasks=len(order), parallelism=width, rebuild=self._options.rebuild)

        while ready or running:
            while ready and len(running) < width and not self._token.is_cancelled:
                name = heappop(ready)
                task = self._tasks[name]
                task.state = TaskState.RUNNING
                self._started.append(name)
                running[asyncio.create_task(self._run_task(task), name=f"build:{name}")] = name

            if not running:
                break

            done, _ = await asyncio.wait(running, return_when=asyncio.FIRST_COMPLETED)
            for finished in sorted(done, key=lambda item: running[item]):
                name = running.pop(finished)
                finished.result()
                task = self._tasks[name]
                if task.state is TaskState.SUCCEEDED:
                    for dependent in self._graph.dependents_of(name):
                        if dependent not in waiting:
                            continue
                        waiting[dependent] -= 1
                        if waiting[dependent] == 0 and self._tasks[dependent].state is TaskState.PENDING:
                            self._mark_ready(dependent, ready)
                    continue

                self._skip_dependents(name)
                if self._options.fail_fast and not self._token.is_cancelled:
                    self._token.cancel(f"fail-fast after {name} failed")
                    logger.warning("build_fail_fast", project=name)

        for name in order:
            task = self._tasks[name]
            if not task.is_terminal:
                task.state = TaskState.SKIPPED
                task.error = task.error or self._token.reason or "not started"

        report = BuildReport(
            tasks=tuple(self._tasks[name] for name in order),
            started_order=tuple(self._started),
            cancelled_reason=self._token.reason,
        )
        logger.info(
            "build_finished",
            succeeded=report.succeeded,
            failed=report.failed,
            skipped=report.skipped,
            cached=report.cached,
        )
        return report

    def _mark_ready(self, name: str, ready: list[str]) -> None:
        self._tasks[name].state = TaskState.READY
        heappush(ready, name)

    def _skip_dependents(self, name: str) -> None:
        for dependent in self._graph.dependents_of(name, transitive=True):
            task = self._tasks.get(dependent)
            if task is None or task.is_terminal:
                continue
            task.state = TaskState.SKIPPED
            task.error = f"upstream project {name} failed"
            logger.info("build_task_skipped", project=dependent, upstream=name)

    async def _run_task(self, task: BuildTask) -> None:
        try:
            await self._execute(task)
        except Exception as exc:  # noqa: BLE001
            task.state = TaskState.FAILED
            task.error = f"{type(exc).__name__}: {exc}"
            logger.error("build_task_crashed", project=task.project, error=task.error)

        if task.state is TaskState.FAILED and self._state_store is not None:
            self._state_store.forget(task.project)

    async def _execute(self, task: BuildTask) -> None:
        upstream = {
            dep: self._tasks[dep].fingerprint or ""
            for dep in self._graph.dependencies_of(task.project)
            if dep in self._tasks
        }
        task.fingerprint = await asyncio.to_thread(
            compute_input_fingerprint,
            project=task.project,
            folder=task.folder,
            command=task.command,
            upstream=upstream,
            ignored_folders=self._options.ignored_folders,
        )

        if task.command is None:
            task.state = TaskState.SUCCEEDED
            logger.debug("build_task_no_command", project=task.project)
            return

        if (
            not self._options.rebuild
            and self._state_store is not None
            and self._state_store.last_success(task.project) == task.fingerprint
        ):
            task.state = TaskState.SUCCEEDED
            task.cached = True
            logger.info("build_task_cached", project=task.project)
            return

        logger.info("build_task_started", project=task.project, command=task.command)
        result = await self._executor.run(
            CommandSpec.shell(
                task.command,
                cwd=str(task.folder),
                env=task.env,
                timeout_seconds=self._options.timeout_seconds,
            )
        )
        task.duration_ms = result.duration_ms
        task.exit_code = result.exit_code
        task.output_tail = (result.stdout + result.stderr)[-_OUTPUT_TAIL_CHARS:]

        if not result.is_success:
            task.state = TaskState.FAILED
            task.error = result.describe_failure()
            logger.error(
                "build_task_failed",
                project=task.project,
                error=task.error,
                duration_ms=task.duration_ms,
            )
            return

        task.state = TaskState.SUCCEEDED
        if self._state_store is not None:
            self._state_store.record_success(task.project, task.fingerprint)
        logger.info("build_task_succeeded", project=task.project, duration_ms=task.duration_ms)


__all__ = [
    "BuildReport",
    "BuildScheduler",
    "BuildTask",
    "SchedulerOptions",
    "TaskState",
]
