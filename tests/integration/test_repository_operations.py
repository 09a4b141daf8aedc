"""
monorail — end-to-end repository operation contracts

File: tests/integration/test_repository_operations.py

Purpose
- Drive generate, install, link, unlink, governance, and build against a real
  on-disk monorepo and a scripted package manager subprocess.

What this test file should cover
- A full generate leaves marker >= committed lock >= synthesized manifest.
- Re-running install or link after a successful run performs no work.
- Structural errors (cycles, range conflicts) leave the repository untouched.
- Package-manager failures and missing artifacts surface as typed errors.
- Builds run in dependency order, skip dependents of failures, and cache.
"""

from __future__ import annotations

import os
from pathlib import Path

import pytest

from monorail.errors import (
    ConfigError,
    CycleError,
    ExternalToolError,
    FilesystemError,
    MissingArtifactError,
    VersionConflictError,
)
from monorail.operations import RepositoryOperations
from monorail.ui.cli import exit_code_for

pytestmark = pytest.mark.integration


def _environ(tmp_path: Path, **extra: str) -> dict[str, str]:
    env = {"PATH": os.environ.get("PATH", ""), "FAKE_PM_LOG": str(tmp_path / "pm.log")}
    env.update(extra)
    return env


def _backdate(*paths: Path, seconds: int = 10) -> None:
    for path in paths:
        stamp = path.stat().st_mtime_ns - seconds * 1_000_000_000
        os.utime(path, ns=(stamp, stamp))


def _pm_calls(tmp_path: Path) -> list[str]:
    log = tmp_path / "pm.log"
    return log.read_text(encoding="utf-8").splitlines() if log.exists() else []


def _two_projects(make_repo) -> Path:
    return make_repo(
        [
            {
                "name": "lib",
                "dependencies": {"left-pad": "^1.3.0"},
                "build": "mkdir -p dist && echo built > dist/out.txt",
            },
            {
                "name": "app",
                "dependencies": {"lib": "^1.0.0", "left-pad": "^1.3.0"},
                "dev_dependencies": {"@types/node": "^20.1.0"},
                "build": "test -L node_modules/lib && mkdir -p dist && echo linked > dist/out.txt",
            },
        ]
    )


def test_generate_then_install_is_a_no_op(make_repo, tmp_path: Path) -> None:
    config_path = _two_projects(make_repo)
    root = config_path.parent
    ops = RepositoryOperations.from_path(config_path, environ=_environ(tmp_path))

    generated = ops.generate()

    assert generated.success, generated.diagnostics
    assert _pm_calls(tmp_path) == ["cache clean --force", "install --no-audit --no-fund", "shrinkwrap"]
    layout = ops.layout
    assert layout.committed_lock_file == root.resolve() / "npm-shrinkwrap.json"
    marker = layout.install_marker.stat().st_mtime_ns
    lock = layout.committed_lock_file.stat().st_mtime_ns
    manifest = layout.synthesized_manifest.stat().st_mtime_ns
    assert marker >= lock >= manifest
    assert generated.payload["dependencies"] == {"@types/node": "20.1.0", "left-pad": "1.3.0"}
    assert (root / "app" / "node_modules" / "lib").is_symlink()
    assert (root / "app" / "node_modules" / "@types" / "node").is_symlink()
    assert (root / "common" / "config" / "approved-packages.yaml").is_file()

    installed = RepositoryOperations.from_path(config_path, environ=_environ(tmp_path)).install()

    assert installed.success, installed.diagnostics
    assert installed.payload["install_mode"] == "none"
    assert installed.payload["mutations"] == 0
    assert len(_pm_calls(tmp_path)) == 3


def test_install_after_manifest_change_is_incremental(make_repo, tmp_path: Path) -> None:
    config_path = _two_projects(make_repo)
    env = _environ(tmp_path)
    assert RepositoryOperations.from_path(config_path, environ=env).generate().success
    ops = RepositoryOperations.from_path(config_path, environ=env)
    _backdate(
        ops.layout.install_marker,
        ops.layout.committed_lock_file,
        ops.layout.synthesized_manifest,
    )
    committed = (config_path.parent / "npm-shrinkwrap.json").read_bytes()

    manifest = config_path.parent / "lib" / "package.json"
    manifest.write_text(
        manifest.read_text(encoding="utf-8").replace('"^1.3.0"', '"^1.3.5"'), encoding="utf-8"
    )
    result = RepositoryOperations.from_path(config_path, environ=env).install()

    assert result.success, result.diagnostics
    assert result.payload["install_mode"] == "incremental"
    assert _pm_calls(tmp_path)[-1] == "install --no-audit --no-fund"
    assert (config_path.parent / "npm-shrinkwrap.json").read_bytes() == committed
    assert "the committed lock file was not regenerated" in result.diagnostics


def test_lazy_generate_skips_lock_generation_and_deletes_locks(make_repo, tmp_path: Path) -> None:
    config_path = _two_projects(make_repo)
    env = _environ(tmp_path)
    assert RepositoryOperations.from_path(config_path, environ=env).generate().success

    result = RepositoryOperations.from_path(config_path, environ=env).generate(lazy=True)

    assert result.success, result.diagnostics
    assert result.payload["install_mode"] == "incremental"
    assert not (config_path.parent / "npm-shrinkwrap.json").exists()
    assert _pm_calls(tmp_path)[3:] == ["install --no-audit --no-fund"]


def test_lazy_generate_reports_undeletable_lock_as_filesystem_error(
    make_repo, tmp_path: Path
) -> None:
    config_path = _two_projects(make_repo)
    blocked = config_path.parent / "npm-shrinkwrap.json"
    blocked.mkdir()
    (blocked / "stray").write_text("", encoding="utf-8")

    result = RepositoryOperations.from_path(config_path, environ=_environ(tmp_path)).generate(
        lazy=True
    )

    assert not result.success
    assert isinstance(result.error, FilesystemError)
    assert exit_code_for(result) == 1
    assert _pm_calls(tmp_path) == []


def test_reconcile_install_accepts_none_and_rejects_unknown_modes(
    make_repo, tmp_path: Path
) -> None:
    config_path = _two_projects(make_repo)
    ops = RepositoryOperations.from_path(config_path, environ=_environ(tmp_path))

    skipped = ops.reconcile_install("none")
    unknown = ops.reconcile_install("sideways")

    assert skipped.success
    assert skipped.payload["install_mode"] == "none"
    assert not (config_path.parent / "common").exists()
    assert not unknown.success
    assert isinstance(unknown.error, ConfigError)
    assert "unknown install mode 'sideways'" in str(unknown.error)
    assert exit_code_for(unknown) == 2
    assert _pm_calls(tmp_path) == []


def test_generate_without_link_leaves_projects_unlinked(make_repo, tmp_path: Path) -> None:
    config_path = _two_projects(make_repo)
    ops = RepositoryOperations.from_path(config_path, environ=_environ(tmp_path))

    result = ops.generate(no_link=True)

    assert result.success
    assert 'next you should probably run "monorail link"' in result.diagnostics
    assert ops.link_status().payload["linked"] == []


def test_cycle_fails_before_any_side_effect(make_repo, tmp_path: Path) -> None:
    config_path = make_repo(
        [
            {"name": "a", "dependencies": {"b": "^1.0.0"}},
            {"name": "b", "dependencies": {"a": "^1.0.0"}},
        ]
    )
    ops = RepositoryOperations.from_path(config_path, environ=_environ(tmp_path))

    for result in (ops.generate(), ops.install(), ops.link(), ops.build_graph()):
        assert not result.success
        assert isinstance(result.error, CycleError)
        assert result.error.cycles == (("a", "b", "a"),)

    assert not (config_path.parent / "common").exists()
    assert not (config_path.parent / "a" / "node_modules").exists()
    assert _pm_calls(tmp_path) == []


def test_range_conflict_names_every_project_and_writes_nothing(make_repo, tmp_path: Path) -> None:
    config_path = make_repo(
        [
            {"name": "p1", "dependencies": {"foo": "^1.0.0"}},
            {"name": "p2", "dependencies": {"foo": "^1.2.0"}},
            {"name": "p3", "dependencies": {"foo": "^2.0.0"}},
        ]
    )
    ops = RepositoryOperations.from_path(config_path, environ=_environ(tmp_path))

    result = ops.install()

    assert not result.success
    assert isinstance(result.error, VersionConflictError)
    for fragment in ("p1 (^1.0.0)", "p2 (^1.2.0)", "p3 (^2.0.0)"):
        assert fragment in str(result.error)
    assert not (config_path.parent / "common" / "temp" / "package.json").exists()
    assert _pm_calls(tmp_path) == []


def test_lowest_and_intersection_policies(make_repo, tmp_path: Path) -> None:
    config_path = make_repo(
        [
            {"name": "p1", "dependencies": {"foo": "^1.0.0"}},
            {"name": "p2", "dependencies": {"foo": "^1.2.0"}},
        ]
    )
    env = _environ(tmp_path)

    lowest = RepositoryOperations.from_path(config_path, environ=env).synthesize_manifest()
    intersection = RepositoryOperations.from_path(
        config_path, environ=env, cli_overrides={"resolution.policy": "intersection"}
    ).synthesize_manifest()

    assert lowest.payload["dependencies"] == {"foo": "1.2.0"}
    assert intersection.payload["dependencies"] == {"foo": "^1.2.0"}
    assert intersection.payload["manifest_written"] is True


def test_check_versions_reports_differing_ranges(make_repo, tmp_path: Path) -> None:
    config_path = make_repo(
        [
            {"name": "p1", "dependencies": {"foo": "^1.0.0"}},
            {"name": "p2", "dependencies": {"foo": "^1.2.0", "bar": "2.0.0"}},
        ]
    )

    result = RepositoryOperations.from_path(config_path, environ=_environ(tmp_path)).check_versions()

    assert not result.success
    assert result.error is None
    assert result.payload["inconsistent"] == {"foo": {"p1": "^1.0.0", "p2": "^1.2.0"}}


def test_package_manager_failure_is_external_tool_error(make_repo, tmp_path: Path) -> None:
    config_path = _two_projects(make_repo)
    ops = RepositoryOperations.from_path(
        config_path, environ=_environ(tmp_path, FAKE_PM_FAIL="install")
    )

    result = ops.generate()

    assert not result.success
    assert isinstance(result.error, ExternalToolError)
    assert result.error.returncode == 7
    assert "install exploded" in result.error.stderr
    assert not ops.layout.install_marker.exists()
    assert not (config_path.parent / "app" / "node_modules").exists()


def test_missing_lock_after_lock_step_is_missing_artifact(make_repo, tmp_path: Path) -> None:
    config_path = _two_projects(make_repo)
    ops = RepositoryOperations.from_path(
        config_path, environ=_environ(tmp_path, FAKE_PM_SKIP_LOCK="1")
    )

    result = ops.generate()

    assert isinstance(result.error, MissingArtifactError)
    assert result.error.artifact == "lock file"


def test_missing_marker_after_lock_step_is_missing_artifact(make_repo, tmp_path: Path) -> None:
    config_path = _two_projects(make_repo)
    ops = RepositoryOperations.from_path(
        config_path, environ=_environ(tmp_path, FAKE_PM_DROP_MARKER="1")
    )

    result = ops.generate()

    assert isinstance(result.error, MissingArtifactError)
    assert result.error.artifact == "install marker"


def test_link_is_idempotent_and_unlink_reverses_it(make_repo, tmp_path: Path) -> None:
    config_path = _two_projects(make_repo)
    ops = RepositoryOperations.from_path(config_path, environ=_environ(tmp_path))

    first = ops.link()
    second = ops.link()

    assert first.success and first.payload["mutations"] > 0
    assert second.success and second.payload["mutations"] == 0
    assert ops.link_status().payload["linked"] == ["lib", "app"]

    unlinked = ops.unlink()
    again = ops.unlink()

    assert unlinked.success and "nothing to do" not in unlinked.diagnostics
    assert again.success and "nothing to do" in again.diagnostics
    status = ops.link_status()
    assert status.payload["linked"] == []
    assert status.payload["unlinked"] == ["lib", "app"]


def test_link_refuses_local_version_outside_requested_range(make_repo, tmp_path: Path) -> None:
    config_path = make_repo(
        [
            {"name": "lib", "version": "2.0.0"},
            {"name": "app", "dependencies": {"lib": "^1.0.0"}},
        ]
    )

    result = RepositoryOperations.from_path(config_path, environ=_environ(tmp_path)).link()

    assert isinstance(result.error, VersionConflictError)
    assert not (config_path.parent / "app" / "node_modules").exists()


def test_governance_second_run_is_byte_identical(make_repo, tmp_path: Path) -> None:
    config_path = make_repo(
        [
            {"name": "web", "dependencies": {"react": "^18.0.0"}},
            {"name": "tools", "dependencies": {"eslint": "^8.0.0"}, "review_category": "tools"},
        ]
    )
    ops = RepositoryOperations.from_path(config_path, environ=_environ(tmp_path))
    approved = config_path.parent / "common" / "config" / "approved-packages.yaml"

    out_of_date = ops.check_approved_packages(check_only=True)
    first = ops.check_approved_packages()
    content = approved.read_bytes()
    second = ops.check_approved_packages()
    verified = ops.check_approved_packages(check_only=True)

    assert not out_of_date.success
    assert first.success and any(line.startswith("updated ") for line in first.diagnostics)
    assert approved.read_bytes() == content
    assert "approved packages are up to date" in second.diagnostics
    assert verified.success
    assert content.decode("utf-8") == (
        "packages:\n"
        "- name: eslint\n  allowedCategories:\n  - tools\n"
        "- name: react\n  allowedCategories:\n  - production\n"
    )


def test_build_orders_projects_and_caches_results(make_repo, tmp_path: Path) -> None:
    config_path = _two_projects(make_repo)
    env = _environ(tmp_path)
    assert RepositoryOperations.from_path(config_path, environ=env).generate().success

    first = RepositoryOperations.from_path(config_path, environ=env).schedule_build()
    second = RepositoryOperations.from_path(config_path, environ=env).schedule_build()
    rebuilt = RepositoryOperations.from_path(config_path, environ=env).schedule_build(rebuild=True)

    assert first.success, first.diagnostics
    assert first.payload["report"]["started_order"] == ["lib", "app"]
    output = config_path.parent / "app" / "dist" / "out.txt"
    assert output.read_text(encoding="utf-8").strip() == "linked"
    assert second.payload["report"]["cached"] == 2
    assert second.payload["report"]["started_order"] == ["lib", "app"]
    assert rebuilt.operation == "rebuild"
    assert rebuilt.payload["report"]["cached"] == 0


def test_build_failure_skips_dependents_and_reports_failure(make_repo, tmp_path: Path) -> None:
    config_path = make_repo(
        [
            {"name": "c", "build": "true"},
            {"name": "b", "dependencies": {"c": "^1.0.0"}, "build": "exit 3"},
            {"name": "a", "dependencies": {"b": "^1.0.0"}, "build": "true"},
        ]
    )

    result = RepositoryOperations.from_path(config_path, environ=_environ(tmp_path)).schedule_build()

    tasks = result.payload["report"]["tasks"]
    assert not result.success
    assert tasks["c"]["state"] == "succeeded"
    assert tasks["b"]["state"] == "failed"
    assert tasks["b"]["exit_code"] == 3
    assert tasks["a"]["state"] == "skipped"
    assert "a: skipped: upstream project b failed" in result.diagnostics


def test_build_to_selects_dependencies_only(make_repo, tmp_path: Path) -> None:
    config_path = make_repo(
        [
            {"name": "core", "build": "true"},
            {"name": "ui", "dependencies": {"core": "^1.0.0"}, "build": "true"},
            {"name": "docs", "build": "true"},
        ]
    )
    ops = RepositoryOperations.from_path(config_path, environ=_environ(tmp_path))

    selected = ops.schedule_build(only=["ui"])
    unknown = ops.schedule_build(only=["nope"])

    assert selected.payload["report"]["started_order"] == ["core", "ui"]
    assert any("is not linked" in line for line in selected.diagnostics)
    assert not unknown.success
    assert "unknown project(s): nope" in str(unknown.error)
