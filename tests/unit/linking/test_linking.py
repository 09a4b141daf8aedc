"""
monorail — unit tests for link planning and execution

File: tests/unit/linking/test_linking.py

Purpose
- Validate that link plans map every dependency to a sibling project or the shared
  cache, and that applying them is idempotent and reversible.

What this test file should cover
- Project links win over cache links; scoped packages nest under ``@scope``.
- Version mismatches are refused unless explicitly allowed.
- A second apply performs zero mutations; force relinks; stale links are pruned.
- Unlink reports nothing to do on a clean tree; status reflects markers.
"""

from __future__ import annotations

import os
from pathlib import Path

import pytest

from monorail.errors import VersionConflictError
from monorail.graph import build_graph
from monorail.layout import RepositoryLayout
from monorail.linking import (
    LinkExecutor,
    LinkKind,
    LinkOutcomeStatus,
    plan_links,
)
from monorail.registry import Project, ProjectRegistry


def _layout(root: Path) -> RepositoryLayout:
    return RepositoryLayout(
        repo_root=root,
        common_folder=root / "common",
        committed_lock_file=root / "npm-shrinkwrap.json",
        approved_packages_file=root / "common" / "config" / "approved-packages.yaml",
        lock_filename="npm-shrinkwrap.json",
    )


def _registry(root: Path, *, lib_version: str = "1.2.0") -> ProjectRegistry:
    projects = (
        Project(name="@acme/lib", version=lib_version, folder=root / "lib"),
        Project(
            name="app",
            version="1.0.0",
            folder=root / "app",
            dependencies=(("@acme/lib", "^1.0.0"), ("left-pad", "^1.3.0"), ("@types/node", "^20.0.0")),
        ),
    )
    for project in projects:
        project.folder.mkdir(parents=True, exist_ok=True)
    return ProjectRegistry(repo_root=root, projects=projects)


def _link_folders(registry: ProjectRegistry) -> dict[str, Path]:
    return {name: project.folder / "node_modules" for name, project in registry.items()}


def test_plan_links_projects_and_cache_packages(tmp_path: Path) -> None:
    registry = _registry(tmp_path)
    layout = _layout(tmp_path)

    plans = plan_links(registry, build_graph(registry), layout)

    assert [plan.project for plan in plans] == ["@acme/lib", "app"]
    app = plans[1]
    assert [(e.package, e.kind) for e in app.entries] == [
        ("@acme/lib", LinkKind.PROJECT),
        ("@types/node", LinkKind.EXTERNAL),
        ("left-pad", LinkKind.EXTERNAL),
    ]
    assert app.entries[0].source == tmp_path / "app" / "node_modules" / "@acme" / "lib"
    assert app.entries[0].target == tmp_path / "lib"
    assert app.entries[2].target == layout.shared_cache / "left-pad"
    assert plans[0].entries == ()


def test_version_mismatch_is_refused_unless_allowed(tmp_path: Path) -> None:
    registry = _registry(tmp_path, lib_version="2.0.0")
    graph = build_graph(registry)

    with pytest.raises(VersionConflictError) as excinfo:
        plan_links(registry, graph, _layout(tmp_path))

    assert excinfo.value.package == "@acme/lib"
    assert "app (^1.0.0)" in str(excinfo.value)
    assert plan_links(registry, graph, _layout(tmp_path), allow_version_mismatch=True)


def test_fingerprint_tracks_plan_contents(tmp_path: Path) -> None:
    registry = _registry(tmp_path)
    layout = _layout(tmp_path)
    first = plan_links(registry, build_graph(registry), layout)
    again = plan_links(registry, build_graph(registry), layout)

    assert [p.fingerprint for p in first] == [p.fingerprint for p in again]
    assert first[0].fingerprint != first[1].fingerprint


def test_apply_creates_links_and_second_run_is_a_no_op(tmp_path: Path) -> None:
    registry = _registry(tmp_path)
    plans = plan_links(registry, build_graph(registry), _layout(tmp_path))
    executor = LinkExecutor()

    first = executor.apply(plans)
    second = executor.apply(plans)

    assert first.success
    assert first.mutations > 0
    link = tmp_path / "app" / "node_modules" / "@acme" / "lib"
    assert link.is_symlink()
    assert Path(os.readlink(link)) == tmp_path / "lib"
    assert second.mutations == 0
    assert {o.status for o in second.outcomes} == {LinkOutcomeStatus.UP_TO_DATE}


def test_force_relinks_even_when_marker_matches(tmp_path: Path) -> None:
    registry = _registry(tmp_path)
    plans = plan_links(registry, build_graph(registry), _layout(tmp_path))
    executor = LinkExecutor()
    executor.apply(plans)

    forced = executor.apply(plans, force=True)

    app = next(o for o in forced.outcomes if o.project == "app")
    assert app.status is LinkOutcomeStatus.LINKED
    assert app.created == []
    assert app.marker_written


def test_stale_and_wrong_links_are_replaced(tmp_path: Path) -> None:
    registry = _registry(tmp_path)
    plans = plan_links(registry, build_graph(registry), _layout(tmp_path))
    link_folder = tmp_path / "app" / "node_modules"
    link_folder.mkdir(parents=True)
    os.symlink(tmp_path / "nowhere", link_folder / "stale-package")
    os.symlink(tmp_path / "wrong", link_folder / "left-pad")

    report = LinkExecutor().apply(plans)

    app = next(o for o in report.outcomes if o.project == "app")
    assert sorted(app.removed) == ["left-pad", "stale-package"]
    assert not (link_folder / "stale-package").is_symlink()
    assert Path(os.readlink(link_folder / "left-pad")) == _layout(tmp_path).shared_cache / "left-pad"


def test_real_folder_in_link_slot_fails_only_that_project(tmp_path: Path) -> None:
    registry = _registry(tmp_path)
    plans = plan_links(registry, build_graph(registry), _layout(tmp_path))
    (tmp_path / "app" / "node_modules" / "left-pad").mkdir(parents=True)

    report = LinkExecutor().apply(plans)

    assert not report.success
    assert [o.project for o in report.failed] == ["app"]
    assert report.failed[0].error is not None
    assert next(o for o in report.outcomes if o.project == "@acme/lib").status is LinkOutcomeStatus.LINKED


def test_unlink_removes_everything_then_has_nothing_to_do(tmp_path: Path) -> None:
    registry = _registry(tmp_path)
    plans = plan_links(registry, build_graph(registry), _layout(tmp_path))
    executor = LinkExecutor()
    executor.apply(plans)

    removed = executor.unlink(_link_folders(registry))
    again = executor.unlink(_link_folders(registry))

    assert removed.mutations > 0
    assert not (tmp_path / "app" / "node_modules").exists()
    assert again.nothing_to_do
    assert {o.status for o in again.outcomes} == {LinkOutcomeStatus.NOTHING_TO_DO}


def test_status_follows_markers(tmp_path: Path) -> None:
    registry = _registry(tmp_path)
    plans = plan_links(registry, build_graph(registry), _layout(tmp_path))
    executor = LinkExecutor()

    assert not any(state.linked for state in executor.status(_link_folders(registry)))
    executor.apply(plans)
    states = executor.status(_link_folders(registry))
    assert all(state.linked for state in states)
    assert [s.fingerprint for s in states] == [p.fingerprint for p in plans]

    executor.unlink(_link_folders(registry))
    assert not any(state.linked for state in executor.status(_link_folders(registry)))
