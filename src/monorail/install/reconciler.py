"""
monorail — install reconciler.

File: src/monorail/install/reconciler.py

Purpose
- Decide between a no-op, incremental, or full install of the shared external
  dependency cache and drive the package manager accordingly.

Functional requirements
- The install marker's mtime is the only signal of install currency: it is
  current when it is at least as new as the synthesized manifest and the
  committed lock file.
- Incremental installs seed the staging lock from the committed lock, never
  touch the committed lock, and refresh the marker.
- Full installs delete both locks, clean the cache, reinstall, regenerate the
  lock, promote it (or delete the committed lock for an empty manifest), and only
  then refresh the marker.
- Any package-manager failure aborts the reconcile with ``ExternalToolError``.

Non-functional requirements
- Callers hold the repository lock; nothing here is safe to run concurrently.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from pathlib import Path
from typing import TYPE_CHECKING

import structlog

from monorail.errors import FilesystemError, MissingArtifactError
from monorail.utils.fs import copy_file_atomic, safe_delete, touch

if TYPE_CHECKING:
    from monorail.install.package_manager import PackageManager
    from monorail.layout import RepositoryLayout

logger = structlog.get_logger(__name__)


class InstallMode(StrEnum):
    AUTO = "auto"
    NONE = "none"
    INCREMENTAL = "incremental"
    FULL = "full"


@dataclass(frozen=True, slots=True)
class InstallDecision:
    requested: InstallMode
    decided: InstallMode
    reason: str


@dataclass(slots=True)
class InstallReport:
    decision: InstallDecision
    steps: list[str] = field(default_factory=list)
    committed_lock_updated: bool = False
    committed_lock_deleted: bool = False

    @property
    def mode(self) -> InstallMode:
        return self.decision.decided


def marker_is_current(layout: RepositoryLayout) -> bool:
    """Return ``True`` when the marker is at least as new as the manifest and committed lock."""

    marker_mtime = _mtime(layout.install_marker)
    if marker_mtime is None:
        return False
    for dependency in (layout.synthesized_manifest, layout.committed_lock_file):
        dependency_mtime = _mtime(dependency)
        if dependency_mtime is not None and dependency_mtime > marker_mtime:
            return False
    return True


class InstallReconciler:
    """Owns every mutation of the shared cache, the lock files, and the install marker."""

    def __init__(self, layout: RepositoryLayout, package_manager: PackageManager) -> None:
        self._layout = layout
        self._package_manager = package_manager

    def decide(self, requested: InstallMode) -> InstallDecision:
        if requested is InstallMode.NONE:
            return InstallDecision(requested, InstallMode.NONE, "install skipped on request")
        if requested is InstallMode.FULL:
            return InstallDecision(requested, InstallMode.FULL, "full install requested")
        if requested is InstallMode.INCREMENTAL:
            return InstallDecision(requested, InstallMode.INCREMENTAL, "incremental install requested")
        if marker_is_current(self._layout):
            return InstallDecision(requested, InstallMode.NONE, "install marker is current")
        if not self._layout.install_marker.exists():
            return InstallDecision(requested, InstallMode.INCREMENTAL, "install marker is missing")
        return InstallDecision(
            requested,
            InstallMode.INCREMENTAL,
            "synthesized manifest or committed lock is newer than the install marker",
        )

    def reconcile(
        self,
        requested: InstallMode,
        *,
        manifest_is_empty: bool,
        discard_locks: bool = False,
    ) -> InstallReport:
        """Run the install ``requested`` implies against the synthesized manifest on disk.

        ``discard_locks`` deletes the committed and staging lock files before an
        incremental install, so nothing stale is seeded or left to commit.
        """

        decision = self.decide(requested)
        report = InstallReport(decision=decision)
        logger.info(
            "install_decided",
            requested=str(decision.requested),
            decided=str(decision.decided),
            reason=decision.reason,
        )
        if decision.decided is InstallMode.NONE:
            return report

        if not self._layout.synthesized_manifest.is_file():
            raise MissingArtifactError(
                "synthesized manifest", path=str(self._layout.synthesized_manifest)
            )

        if decision.decided is InstallMode.FULL:
            self._full(report, manifest_is_empty=manifest_is_empty)
        else:
            self._incremental(report, discard_locks=discard_locks)
        logger.info("install_finished", mode=str(report.mode), steps=report.steps)
        return report

    def _incremental(self, report: InstallReport, *, discard_locks: bool) -> None:
        layout = self._layout
        self._remove_file(layout.install_marker)
        if discard_locks:
            report.committed_lock_deleted = self._remove_file(layout.committed_lock_file)
            self._remove_file(layout.staging_lock_file)
            report.steps.append("delete_locks")
        if layout.committed_lock_file.is_file():
            copy_file_atomic(layout.committed_lock_file, layout.staging_lock_file)
            report.steps.append("seed_staging_lock")

        layout.shared_cache.mkdir(parents=True, exist_ok=True)
        self._package_manager.install(layout.temp_folder)
        report.steps.append("install")
        touch(layout.install_marker)
        report.steps.append("marker")

    def _full(self, report: InstallReport, *, manifest_is_empty: bool) -> None:
        layout = self._layout
        self._remove_file(layout.committed_lock_file)
        self._remove_file(layout.staging_lock_file)
        report.steps.append("delete_locks")

        self._package_manager.clean_cache(layout.temp_folder)
        self._clear_shared_cache()
        report.steps.append("clean_cache")

        layout.shared_cache.mkdir(parents=True, exist_ok=True)
        self._package_manager.install(layout.temp_folder)
        touch(layout.install_marker)
        report.steps.append("install")

        self._package_manager.generate_lock(layout.temp_folder)
        report.steps.append("generate_lock")

        if manifest_is_empty:
            report.committed_lock_deleted = self._remove_file(layout.committed_lock_file)
            report.steps.append("delete_committed_lock")
        else:
            if not layout.staging_lock_file.is_file():
                raise MissingArtifactError("lock file", path=str(layout.staging_lock_file))
            copy_file_atomic(layout.staging_lock_file, layout.committed_lock_file)
            report.committed_lock_updated = True
            report.steps.append("promote_lock")

        if not layout.install_marker.exists():
            raise MissingArtifactError("install marker", path=str(layout.install_marker))
        touch(layout.install_marker)
        report.steps.append("marker")

    def _clear_shared_cache(self) -> None:
        cache = self._layout.shared_cache
        if not cache.exists() and not cache.is_symlink():
            return
        try:
            safe_delete(cache, self._layout.repo_root)
        except (OSError, ValueError) as exc:
            raise FilesystemError(
                f"unable to clear shared cache {cache}: {exc}", path=str(cache)
            ) from exc

    @staticmethod
    def _remove_file(path: Path) -> bool:
        try:
            path.unlink()
        except FileNotFoundError:
            return False
        except OSError as exc:
            raise FilesystemError(f"unable to delete {path}: {exc}", path=str(path)) from exc
        logger.debug("install_file_removed", path=str(path))
        return True


def _mtime(path: Path) -> int | None:
    try:
        return path.stat().st_mtime_ns
    except FileNotFoundError:
        return None


__all__ = [
    "InstallDecision",
    "InstallMode",
    "InstallReconciler",
    "InstallReport",
    "marker_is_current",
]
