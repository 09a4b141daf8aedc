"""Pure link planning: which symlinks each project's dependency folder should hold.

Nothing here touches the filesystem; ``link_executor`` applies the plans.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from pathlib import Path
from typing import TYPE_CHECKING

from monorail.constants import LINK_MARKER_SCHEMA_VERSION
from monorail.errors import RangeRequest, VersionConflictError
from monorail.utils.hashing import sha256_json
from monorail.versioning import Version, VersionRange

if TYPE_CHECKING:
    from monorail.graph import DependencyGraph
    from monorail.layout import RepositoryLayout
    from monorail.registry import ProjectRegistry


class LinkKind(StrEnum):
    PROJECT = "project-link"
    EXTERNAL = "external-link"


@dataclass(frozen=True, slots=True)
class LinkPlanEntry:
    """``source`` is the link created inside the consumer; ``target`` is what it points at."""

    package: str
    source: Path
    target: Path
    kind: LinkKind

    def to_record(self) -> dict[str, str]:
        return {"package": self.package, "kind": str(self.kind), "target": self.target.as_posix()}


@dataclass(frozen=True, slots=True)
class ProjectLinkPlan:
    project: str
    link_folder: Path
    entries: tuple[LinkPlanEntry, ...]

    @property
    def fingerprint(self) -> str:
        return sha256_json(
            {
                "schema_version": LINK_MARKER_SCHEMA_VERSION,
                "project": self.project,
                "links": [entry.to_record() for entry in self.entries],
            }
        )

    @property
    def sources(self) -> frozenset[Path]:
        return frozenset(entry.source for entry in self.entries)


def plan_links(
    registry: ProjectRegistry,
    graph: DependencyGraph,
    layout: RepositoryLayout,
    *,
    allow_version_mismatch: bool = False,
) -> tuple[ProjectLinkPlan, ...]:
    """Compute one plan per project, in topological order.

    Raises ``VersionConflictError`` when a consumer's range rejects the local
    project's version and ``allow_version_mismatch`` is not set.
    """

    project_links: dict[str, list[LinkPlanEntry]] = {name: [] for name in registry}
    for edge in graph.internal_edges:
        dependency = registry[edge.dependency]
        if not allow_version_mismatch and not VersionRange.parse(edge.range).contains(
            Version.parse(dependency.version)
        ):
            raise VersionConflictError(
                edge.dependency,
                (
                    RangeRequest(project=edge.consumer, range=edge.range),
                    RangeRequest(project=edge.dependency, range=dependency.version),
                ),
                reason="Requested range does not accept the local project version",
            )
        link_folder = registry[edge.consumer].folder / layout.link_folder_name
        project_links[edge.consumer].append(
            LinkPlanEntry(
                package=edge.dependency,
                source=package_slot(link_folder, edge.dependency),
                target=dependency.folder,
                kind=LinkKind.PROJECT,
            )
        )

    for edge in graph.external_edges:
        shadowed = {entry.package for entry in project_links[edge.consumer]}
        if edge.dependency in shadowed:
            continue
        link_folder = registry[edge.consumer].folder / layout.link_folder_name
        project_links[edge.consumer].append(
            LinkPlanEntry(
                package=edge.dependency,
                source=package_slot(link_folder, edge.dependency),
                target=layout.cached_package(edge.dependency),
                kind=LinkKind.EXTERNAL,
            )
        )

    return tuple(
        ProjectLinkPlan(
            project=name,
            link_folder=registry[name].folder / layout.link_folder_name,
            entries=tuple(sorted(project_links[name], key=lambda entry: entry.package)),
        )
        for name in graph.topological_order()
    )


def package_slot(link_folder: Path, package_name: str) -> Path:
    """Return where ``package_name`` resolves inside ``link_folder``; scopes nest one level."""

    return link_folder.joinpath(*package_name.split("/"))


__all__ = ["LinkKind", "LinkPlanEntry", "ProjectLinkPlan", "package_slot", "plan_links"]
