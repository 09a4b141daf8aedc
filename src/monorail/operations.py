"""
monorail — repository operations facade.

File: src/monorail/operations.py

Purpose
- Expose every repository operation to the command layer as a call returning an
  ``OperationResult`` value.

Functional requirements
- Errors from the ``MonorailError`` taxonomy become failed results carrying the
  error; nothing is dropped.
- The registry and graph are built before any mutation, so structural errors
  leave the repository untouched.
- Install, link, unlink, and generate hold the exclusive repository lock.
"""

from __future__ import annotations

import asyncio
import os
from collections.abc import Callable, Iterable, Mapping
from contextlib import AbstractContextManager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import structlog

from monorail.build import (
    BuildReport,
    BuildScheduler,
    BuildStateStore,
    BuildTask,
    CommandExecutor,
    SchedulerOptions,
)
from monorail.config import load_config
from monorail.constants import BIN_FOLDER_NAME
from monorail.errors import ConfigError, MonorailError
from monorail.governance import apply_approved_packages, find_inconsistent_versions, observe_usage
from monorail.graph import DependencyGraph, build_graph
from monorail.install import (
    CommandRunner,
    InstallMode,
    InstallReconciler,
    PackageManager,
    ResolutionPolicy,
    SynthesizedManifest,
    synthesize_manifest,
    write_synthesized_manifest,
)
from monorail.layout import RepositoryLayout
from monorail.linking import LinkExecutor, LinkReport, ProjectLinkPlan, plan_links
from monorail.observability import correlation_context
from monorail.registry import ProjectRegistry, load_registry
from monorail.utils.locking import repository_lock

logger = structlog.get_logger(__name__)


@dataclass(frozen=True, slots=True)
class OperationResult:
    operation: str
    success: bool
    diagnostics: tuple[str, ...] = ()
    error: MonorailError | None = None
    payload: Mapping[str, object] = field(default_factory=dict)

    def to_dict(self) -> dict[str, object]:
        return {
            "operation": self.operation,
            "success": self.success,
            "diagnostics": list(self.diagnostics),
            "error": self.error.to_dict() if self.error is not None else None,
            "payload": dict(self.payload),
        }


class _Run:
    """Mutable scratchpad for one operation: diagnostics and payload."""

    __slots__ = ("diagnostics", "payload", "success")

    def __init__(self) -> None:
        self.diagnostics: list[str] = []
        self.payload: dict[str, object] = {}
        self.success = True

    def note(self, message: str) -> None:
        self.diagnostics.append(message)

    def fail(self, message: str) -> None:
        self.success = False
        self.diagnostics.append(message)


class RepositoryOperations:
    """Composes registry, graph, governance, install, link, and build for one repository."""

    def __init__(
        self,
        config: Mapping[str, Any],
        *,
        runner: CommandRunner | None = None,
        executor: CommandExecutor | None = None,
        environ: Mapping[str, str] | None = None,
        lock_timeout_seconds: float | None = None,
    ) -> None:
        self._config = config
        self._layout = RepositoryLayout.from_config(config)
        self._runner = runner
        self._executor = executor
        self._environ = dict(os.environ if environ is None else environ)
        self._lock_timeout_seconds = lock_timeout_seconds
        self._registry: ProjectRegistry | None = None

    @classmethod
    def from_path(
        cls,
        config_path: str | Path | None = None,
        *,
        cli_overrides: Mapping[str, object] | None = None,
        environ: Mapping[str, str] | None = None,
        **kwargs: Any,
    ) -> RepositoryOperations:
        config = load_config(config_path, cli_overrides=cli_overrides, environ=environ)
        return cls(config, environ=environ, **kwargs)

    @property
    def config(self) -> Mapping[str, Any]:
        return self._config

    @property
    def layout(self) -> RepositoryLayout:
        return self._layout

    # Graph and governance

    def build_graph(self) -> OperationResult:
        def body(run: _Run) -> None:
            registry, graph = self._load_graph()
            order = graph.topological_order()
            run.payload["order"] = list(order)
            run.payload["graph"] = graph.serialize()
            run.note(
                f"{len(registry)} projects, {len(graph.internal_edges)} internal and "
                f"{len(graph.external_edges)} external dependency edges"
            )
            run.note("build order: " + (", ".join(order) if order else "(empty)"))

        return self._execute("build_graph", body)

    def check_approved_packages(self, *, check_only: bool = False) -> OperationResult:
        def body(run: _Run) -> None:
            registry, graph = self._load_graph()
            self._run_governance(run, registry, graph, check_only=check_only)

        return self._execute("check_approved_packages", body)

    def check_versions(self) -> OperationResult:
        def body(run: _Run) -> None:
            _, graph = self._load_graph()
            inconsistent = find_inconsistent_versions(graph)
            run.payload["inconsistent"] = {
                item.name: {request.project: request.range for request in item.requests}
                for item in inconsistent
            }
            for item in inconsistent:
                declared = ", ".join(f"{r.project} ({r.range})" for r in item.requests)
                run.fail(f"{item.name} is declared with {len(item.ranges)} ranges: {declared}")
            if not inconsistent:
                run.note("every external package is declared with one consistent range")

        return self._execute("check_versions", body)

    # Install

    def synthesize_manifest(self) -> OperationResult:
        def body(run: _Run) -> None:
            _, graph = self._load_graph()
            self._synthesize(run, graph)

        return self._execute("synthesize_manifest", body)

    def reconcile_install(self, mode: InstallMode | str = InstallMode.AUTO) -> OperationResult:
        """Bring the shared install up to date; ``none`` reports a skip and touches nothing."""

        def body(run: _Run) -> None:
            requested = _parse_install_mode(mode)
            _, graph = self._load_graph()
            if requested is InstallMode.NONE:
                run.payload["install_mode"] = str(InstallMode.NONE)
                run.note("install: none (install skipped on request)")
                return
            manifest = synthesize_manifest(graph, self._policy)
            with self._lock():
                self._write_manifest(run, manifest)
                self._reconcile(run, requested, manifest)

        return self._execute("reconcile_install", body)

    def install(self, *, no_link: bool = False) -> OperationResult:
        """Synthesize, bring the install up to date, then link."""

        def body(run: _Run) -> None:
            registry, graph = self._load_graph()
            manifest = synthesize_manifest(graph, self._policy)
            plans = None if no_link else self._plan(registry, graph)
            with self._lock():
                self._write_manifest(run, manifest)
                self._reconcile(run, InstallMode.AUTO, manifest)
                if plans is not None:
                    self._apply_links(run, plans, force=False)
            if no_link:
                run.note('next you should probably run "monorail link"')

        return self._execute("install", body)

    def generate(self, *, lazy: bool = False, no_link: bool = False) -> OperationResult:
        """Rewrite governance, regenerate the lock file from scratch, and relink.

        ``lazy`` deletes both lock files and runs an incremental install without lock
        generation; a normal generate is still owed before committing.
        """

        def body(run: _Run) -> None:
            registry, graph = self._load_graph()
            manifest = synthesize_manifest(graph, self._policy)
            plans = None if no_link else self._plan(registry, graph)
            with self._lock():
                self._run_governance(run, registry, graph, check_only=False)
                self._write_manifest(run, manifest)
                if lazy:
                    self._reconcile(run, InstallMode.INCREMENTAL, manifest, discard_locks=True)
                    run.note(
                        "lazy mode skipped lock generation; run a normal generate before committing"
                    )
                else:
                    self._reconcile(run, InstallMode.FULL, manifest)
                if plans is not None:
                    self._apply_links(run, plans, force=True)
            if no_link:
                run.note('next you should probably run "monorail link"')

        return self._execute("generate", body)

    # Linking

    def link(self, *, force: bool = False) -> OperationResult:
        def body(run: _Run) -> None:
            registry, graph = self._load_graph()
            plans = self._plan(registry, graph)
            with self._lock():
                self._apply_links(run, plans, force=force)

        return self._execute("link", body)

    def unlink(self) -> OperationResult:
        def body(run: _Run) -> None:
            registry = self._load_registry()
            with self._lock():
                report = LinkExecutor().unlink(self._link_folders(registry))
            self._record_link_report(run, report)
            if report.nothing_to_do:
                run.note("nothing to do")
            else:
                run.note(f"removed {report.mutations} link entries")

        return self._execute("unlink", body)

    def link_status(self) -> OperationResult:
        def body(run: _Run) -> None:
            registry = self._load_registry()
            states = LinkExecutor().status(self._link_folders(registry))
            linked = [state.project for state in states if state.linked]
            run.payload["linked"] = linked
            run.payload["unlinked"] = [state.project for state in states if not state.linked]
            run.note(f"{len(linked)} of {len(states)} projects linked")

        return self._execute("link_status", body)

    # Build

    def schedule_build(
        self,
        *,
        parallelism: int | None = None,
        fail_fast: bool | None = None,
        rebuild: bool = False,
        only: Iterable[str] | None = None,
    ) -> OperationResult:
        def body(run: _Run) -> None:
            report = asyncio.run(
                self._build(
                    run,
                    parallelism=parallelism,
                    fail_fast=fail_fast,
                    rebuild=rebuild,
                    only=tuple(only or ()),
                )
            )
            run.payload["report"] = _report_payload(report)
            run.note(
                f"{report.succeeded} succeeded ({report.cached} cached), "
                f"{report.failed} failed, {report.skipped} skipped"
            )
            for task in report.tasks:
                if task.error is not None:
                    run.note(f"{task.project}: {task.state}: {task.error}")
            if not report.success:
                run.success = False

        return self._execute("rebuild" if rebuild else "build", body)

    async def _build(
        self,
        run: _Run,
        *,
        parallelism: int | None,
        fail_fast: bool | None,
        rebuild: bool,
        only: tuple[str, ...],
    ) -> BuildReport:
        registry, graph = self._load_graph()
        unknown = sorted(name for name in only if name not in registry)
        if unknown:
            raise ConfigError(f"unknown project(s): {', '.join(unknown)}")
        selected = graph.subgraph_order(only) if only else graph.topological_order()

        states = LinkExecutor().status(self._link_folders(registry))
        for state in states:
            if state.project in selected and not state.linked:
                run.note(f"warning: {state.project} is not linked; run \"monorail link\" first")

        build_config = self._config["build"]
        timeout = float(build_config["timeout_seconds"]) or None
        options = SchedulerOptions(
            parallelism=build_config["parallelism"] if parallelism is None else parallelism,
            fail_fast=build_config["fail_fast"] if fail_fast is None else fail_fast,
            timeout_seconds=timeout,
            rebuild=rebuild,
            ignored_folders=tuple(build_config["ignored_folders"]),
        )
        tasks = [
            BuildTask(
                project=name,
                folder=registry[name].folder,
                command=registry[name].build_command,
                env={"PATH": self._build_path(registry[name].folder)},
            )
            for name in selected
        ]
        scheduler = BuildScheduler(
            graph,
            tasks,
            options=options,
            executor=self._executor,
            state_store=BuildStateStore(self._layout.build_state_folder),
        )
        return await scheduler.run()

    # Internals

    @property
    def _policy(self) -> ResolutionPolicy:
        return ResolutionPolicy(self._config["resolution"]["policy"])

    def _execute(self, operation: str, body: Callable[[_Run], None]) -> OperationResult:
        run = _Run()
        with correlation_context(operation=operation):
            try:
                body(run)
            except MonorailError as exc:
                logger.error("operation_failed", error_kind=exc.kind, error=str(exc))
                run.diagnostics.append(str(exc))
                return OperationResult(
                    operation=operation,
                    success=False,
                    diagnostics=tuple(run.diagnostics),
                    error=exc,
                    payload=run.payload,
                )
        logger.info("operation_finished", success=run.success)
        return OperationResult(
            operation=operation,
            success=run.success,
            diagnostics=tuple(run.diagnostics),
            payload=run.payload,
        )

    def _lock(self) -> AbstractContextManager[None]:
        return repository_lock(
            self._layout.repository_lock, timeout_seconds=self._lock_timeout_seconds
        )

    def _load_registry(self) -> ProjectRegistry:
        if self._registry is None:
            self._registry = load_registry(self._config)
        return self._registry

    def _load_graph(self) -> tuple[ProjectRegistry, DependencyGraph]:
        registry = self._load_registry()
        return registry, build_graph(registry)

    def _run_governance(
        self,
        run: _Run,
        registry: ProjectRegistry,
        graph: DependencyGraph,
        *,
        check_only: bool,
    ) -> None:
        governance = self._config["governance"]
        if not governance["enabled"]:
            run.note("approved packages governance is disabled")
            return

        observed = observe_usage(registry, graph, ignored_scopes=governance["ignored_scopes"])
        result = apply_approved_packages(
            self._layout.approved_packages_file, observed, check_only=check_only
        )
        run.payload["approved_packages"] = [entry.to_record() for entry in result.entries]
        for change in result.changes:
            verb = "new package" if change.is_new else "new categories"
            run.note(f"{verb}: {change.name} ({', '.join(change.added_categories)})")
        if check_only and not result.up_to_date:
            run.fail(f"{result.path} is out of date; run \"monorail approve\" and commit the result")
        elif result.written:
            run.note(f"updated {result.path}")
        else:
            run.note("approved packages are up to date")

    def _synthesize(self, run: _Run, graph: DependencyGraph) -> SynthesizedManifest:
        manifest = synthesize_manifest(graph, self._policy)
        self._write_manifest(run, manifest)
        return manifest

    def _write_manifest(self, run: _Run, manifest: SynthesizedManifest) -> None:
        written = write_synthesized_manifest(manifest, self._layout.synthesized_manifest)
        run.payload["dependencies"] = manifest.as_mapping()
        run.payload["manifest_written"] = written
        run.note(
            f"{len(manifest.dependencies)} external packages "
            f"({'updated' if written else 'unchanged'}) using the {manifest.policy} policy"
        )

    def _reconcile(
        self,
        run: _Run,
        requested: InstallMode,
        manifest: SynthesizedManifest,
        *,
        discard_locks: bool = False,
    ) -> None:
        package_manager = PackageManager.from_config(
            self._config, self._layout, runner=self._runner, environ=self._environ
        )
        report = InstallReconciler(self._layout, package_manager).reconcile(
            requested, manifest_is_empty=manifest.is_empty, discard_locks=discard_locks
        )
        run.payload["install_mode"] = str(report.mode)
        run.payload["install_steps"] = list(report.steps)
        run.note(f"install: {report.mode} ({report.decision.reason})")
        if report.committed_lock_updated:
            run.note(f"updated {self._layout.committed_lock_file}; commit it")
        if report.committed_lock_deleted:
            run.note(f"deleted {self._layout.committed_lock_file}")
        if report.mode is InstallMode.INCREMENTAL:
            run.note("the committed lock file was not regenerated")

    def _plan(
        self, registry: ProjectRegistry, graph: DependencyGraph
    ) -> tuple[ProjectLinkPlan, ...]:
        return plan_links(
            registry,
            graph,
            self._layout,
            allow_version_mismatch=bool(self._config["link"]["allow_version_mismatch"]),
        )

    def _apply_links(self, run: _Run, plans: Iterable[ProjectLinkPlan], *, force: bool) -> None:
        report = LinkExecutor().apply(plans, force=force)
        self._record_link_report(run, report)
        linked = sum(1 for outcome in report.outcomes if outcome.mutations)
        run.note(f"linked {linked} projects ({report.mutations} filesystem changes)")

    def _record_link_report(self, run: _Run, report: LinkReport) -> None:
        run.payload["link"] = {
            outcome.project: {
                "status": str(outcome.status),
                "created": list(outcome.created),
                "removed": list(outcome.removed),
            }
            for outcome in report.outcomes
        }
        run.payload["mutations"] = report.mutations
        for outcome in report.failed:
            run.fail(f"{outcome.project}: {outcome.error}")

    def _link_folders(self, registry: ProjectRegistry) -> dict[str, Path]:
        return {
            name: project.folder / self._layout.link_folder_name
            for name, project in registry.items()
        }

    def _build_path(self, project_folder: Path) -> str:
        parts = (
            os.fspath(project_folder / self._layout.link_folder_name / BIN_FOLDER_NAME),
            os.fspath(self._layout.shared_bin_folder),
            self._environ.get("PATH", ""),
        )
        return os.pathsep.join(part for part in parts if part)


def _parse_install_mode(mode: InstallMode | str) -> InstallMode:
    try:
        return InstallMode(mode)
    except ValueError as exc:
        choices = ", ".join(str(item) for item in InstallMode)
        raise ConfigError(f"unknown install mode {mode!r}; expected one of: {choices}") from exc


def _report_payload(report: BuildReport) -> dict[str, object]:
    return {
        "started_order": list(report.started_order),
        "tasks": {
            task.project: {
                "state": str(task.state),
                "cached": task.cached,
                "duration_ms": task.duration_ms,
                "exit_code": task.exit_code,
                "error": task.error,
            }
            for task in report.tasks
        },
        "succeeded": report.succeeded,
        "failed": report.failed,
        "skipped": report.skipped,
        "cached": report.cached,
    }


__all__ = ["OperationResult", "RepositoryOperations"]
