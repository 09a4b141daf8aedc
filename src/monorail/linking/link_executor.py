"""
monorail — link plan executor.

File: src/monorail/linking/link_executor.py

Purpose
- Apply ``ProjectLinkPlan`` values to the filesystem, reverse them, and report
  which projects are currently linked.

Functional requirements
- Stale symlinks (present on disk, absent from the plan) are removed before new
  links are created; correct links are left untouched.
- A per-project marker records the fingerprint of the last applied plan; a
  matching marker short-circuits the project unless ``force`` is set.
- Unlinking removes every symlink, the marker, and folders left empty; a project
  with nothing to remove is not mutated.
- A ``FilesystemError`` fails only the project it occurred in.
"""

from __future__ import annotations

import json
from collections.abc import Callable, Iterable, Iterator, Mapping
from dataclasses import dataclass, field
from enum import StrEnum
from pathlib import Path

import structlog

from monorail.constants import LINK_MARKER_FILENAME, LINK_MARKER_SCHEMA_VERSION
from monorail.errors import FilesystemError
from monorail.linking.link_plan import ProjectLinkPlan
from monorail.utils.fs import atomic_write, create_directory_link, link_points_to, remove_link
from monorail.utils.hashing import canonical_json

logger = structlog.get_logger(__name__)


class LinkOutcomeStatus(StrEnum):
    LINKED = "linked"
    UP_TO_DATE = "up_to_date"
    UNLINKED = "unlinked"
    NOTHING_TO_DO = "nothing_to_do"
    FAILED = "failed"


@dataclass(slots=True)
class ProjectLinkOutcome:
    project: str
    status: LinkOutcomeStatus
    created: list[str] = field(default_factory=list)
    removed: list[str] = field(default_factory=list)
    marker_written: bool = False
    error: FilesystemError | None = None

    @property
    def mutations(self) -> int:
        return len(self.created) + len(self.removed) + int(self.marker_written)


@dataclass(frozen=True, slots=True)
class LinkReport:
    outcomes: tuple[ProjectLinkOutcome, ...]

    @property
    def mutations(self) -> int:
        return sum(outcome.mutations for outcome in self.outcomes)

    @property
    def failed(self) -> tuple[ProjectLinkOutcome, ...]:
        return tuple(o for o in self.outcomes if o.status is LinkOutcomeStatus.FAILED)

    @property
    def success(self) -> bool:
        return not self.failed

    @property
    def nothing_to_do(self) -> bool:
        return self.success and self.mutations == 0


@dataclass(frozen=True, slots=True)
class ProjectLinkState:
    project: str
    linked: bool
    fingerprint: str | None


class LinkExecutor:
    """Effectful half of linking; plans come from :func:`plan_links`."""

    def __init__(self, *, marker_filename: str = LINK_MARKER_FILENAME) -> None:
        self._marker_filename = marker_filename

    def apply(self, plans: Iterable[ProjectLinkPlan], *, force: bool = False) -> LinkReport:
        outcomes: list[ProjectLinkOutcome] = []
        for plan in plans:
            outcome = ProjectLinkOutcome(project=plan.project, status=LinkOutcomeStatus.LINKED)
            try:
                self._apply_one(plan, outcome, force=force)
            except FilesystemError as exc:
                outcome.status = LinkOutcomeStatus.FAILED
                outcome.error = exc
                logger.error("project_link_failed", project=plan.project, error=str(exc))
            outcomes.append(outcome)

        report = LinkReport(outcomes=tuple(outcomes))
        logger.info(
            "link_finished",
            projects=len(report.outcomes),
            mutations=report.mutations,
            failed=len(report.failed),
        )
        return report

    def unlink(self, link_folders: Mapping[str, Path]) -> LinkReport:
        """Remove links and markers from every project's dependency folder."""

        outcomes: list[ProjectLinkOutcome] = []
        for project in link_folders:
            outcome = ProjectLinkOutcome(project=project, status=LinkOutcomeStatus.UNLINKED)
            try:
                self._unlink_one(link_folders[project], outcome)
            except FilesystemError as exc:
                outcome.status = LinkOutcomeStatus.FAILED
                outcome.error = exc
                logger.error("project_unlink_failed", project=project, error=str(exc))
            outcomes.append(outcome)

        report = LinkReport(outcomes=tuple(outcomes))
        if report.nothing_to_do:
            logger.info("unlink_nothing_to_do", projects=len(report.outcomes))
        else:
            logger.info("unlink_finished", mutations=report.mutations, failed=len(report.failed))
        return report

    def status(self, link_folders: Mapping[str, Path]) -> tuple[ProjectLinkState, ...]:
        states: list[ProjectLinkState] = []
        for project, link_folder in link_folders.items():
            fingerprint = self._read_marker(link_folder / self._marker_filename)
            states.append(
                ProjectLinkState(
                    project=project, linked=fingerprint is not None, fingerprint=fingerprint
                )
            )
        return tuple(states)

    def _apply_one(self, plan: ProjectLinkPlan, outcome: ProjectLinkOutcome, *, force: bool) -> None:
        marker = plan.link_folder / self._marker_filename
        fingerprint = plan.fingerprint
        if not force and self._read_marker(marker) == fingerprint:
            outcome.status = LinkOutcomeStatus.UP_TO_DATE
            logger.debug("project_link_up_to_date", project=plan.project)
            return

        wanted = {entry.source: entry for entry in plan.entries}
        for existing in _iter_links(plan.link_folder):
            entry = wanted.get(existing)
            if entry is not None and link_points_to(existing, entry.target):
                continue
            _guarded(remove_link, existing)
            outcome.removed.append(existing.relative_to(plan.link_folder).as_posix())
        _prune_empty_scopes(plan.link_folder)

        for entry in plan.entries:
            if entry.source.is_symlink():
                continue
            if entry.source.exists():
                raise FilesystemError(
                    f"{entry.source} exists and is not a link; remove it and link again",
                    path=str(entry.source),
                )
            _guarded(create_directory_link, entry.source, entry.target)
            outcome.created.append(entry.package)

        marker_payload = {
            "schema_version": LINK_MARKER_SCHEMA_VERSION,
            "project": plan.project,
            "fingerprint": fingerprint,
            "links": [entry.to_record() for entry in plan.entries],
        }
        plan.link_folder.mkdir(parents=True, exist_ok=True)
        _guarded(atomic_write, marker, canonical_json(marker_payload) + "\n")
        outcome.marker_written = True
        logger.debug(
            "project_linked",
            project=plan.project,
            created=len(outcome.created),
            removed=len(outcome.removed),
        )

    def _unlink_one(self, link_folder: Path, outcome: ProjectLinkOutcome) -> None:
        if not link_folder.is_dir():
            outcome.status = LinkOutcomeStatus.NOTHING_TO_DO
            return

        for existing in _iter_links(link_folder):
            _guarded(remove_link, existing)
            outcome.removed.append(existing.relative_to(link_folder).as_posix())

        marker = link_folder / self._marker_filename
        if marker.is_file():
            _guarded(marker.unlink)
            outcome.removed.append(self._marker_filename)

        _prune_empty_scopes(link_folder)
        if outcome.removed and not any(link_folder.iterdir()):
            _guarded(link_folder.rmdir)
        if not outcome.removed:
            outcome.status = LinkOutcomeStatus.NOTHING_TO_DO

    @staticmethod
    def _read_marker(marker: Path) -> str | None:
        try:
            payload = json.loads(marker.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return None
        except (OSError, json.JSONDecodeError):
            logger.warning("link_marker_unreadable", path=str(marker))
            return None
        if not isinstance(payload, dict) or payload.get("schema_version") != LINK_MARKER_SCHEMA_VERSION:
            return None
        fingerprint = payload.get("fingerprint")
        return fingerprint if isinstance(fingerprint, str) else None


def _iter_links(link_folder: Path) -> Iterator[Path]:
    """Yield symlinks directly inside ``link_folder`` and inside its ``@scope`` folders."""

    if not link_folder.is_dir():
        return
    for child in sorted(link_folder.iterdir()):
        if child.is_symlink():
            yield child
        elif child.is_dir() and child.name.startswith("@"):
            for scoped in sorted(child.iterdir()):
                if scoped.is_symlink():
                    yield scoped


def _prune_empty_scopes(link_folder: Path) -> None:
    if not link_folder.is_dir():
        return
    for child in sorted(link_folder.iterdir()):
        if child.name.startswith("@") and child.is_dir() and not child.is_symlink():
            if not any(child.iterdir()):
                _guarded(child.rmdir)


def _guarded(operation: Callable[..., object], *args: object) -> None:
    try:
        operation(*args)
    except OSError as exc:
        path = str(args[0]) if args else None
        raise FilesystemError(f"filesystem operation failed on {path}: {exc}", path=path) from exc


__all__ = [
    "LinkExecutor",
    "LinkOutcomeStatus",
    "LinkReport",
    "ProjectLinkOutcome",
    "ProjectLinkState",
]
