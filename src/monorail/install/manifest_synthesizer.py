"""
monorail — synthesized manifest for the shared external dependency install.

File: src/monorail/install/manifest_synthesizer.py

Purpose
- Union every project's external dependency ranges into one flat manifest that the
  package manager installs into the shared cache.

Functional requirements
- Ranges for the same package are intersected; an empty intersection is a
  ``VersionConflictError`` listing every contributing project and range, and no
  manifest is emitted.
- The chosen specifier depends on ``ResolutionPolicy``:
  ``lowest`` pins the lowest version accepted by every range,
  ``intersection`` keeps the canonical intersection range.
- The manifest file is only rewritten when its bytes change; its mtime feeds
  install currency decisions.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from enum import StrEnum
from pathlib import Path
from typing import TYPE_CHECKING

import structlog

from monorail.errors import RangeRequest, VersionConflictError
from monorail.utils.fs import atomic_write
from monorail.versioning import VersionRange

if TYPE_CHECKING:
    from monorail.graph import DependencyGraph

logger = structlog.get_logger(__name__)

SYNTHESIZED_PACKAGE_NAME = "monorail-common-temp"


class ResolutionPolicy(StrEnum):
    LOWEST = "lowest"
    INTERSECTION = "intersection"


@dataclass(frozen=True, slots=True)
class ResolvedDependency:
    name: str
    specifier: str
    requests: tuple[RangeRequest, ...]


@dataclass(frozen=True, slots=True)
class SynthesizedManifest:
    dependencies: tuple[ResolvedDependency, ...]
    policy: ResolutionPolicy

    @property
    def is_empty(self) -> bool:
        return not self.dependencies

    def as_mapping(self) -> dict[str, str]:
        return {item.name: item.specifier for item in self.dependencies}

    def to_package_json(self) -> dict[str, object]:
        return {
            "name": SYNTHESIZED_PACKAGE_NAME,
            "version": "0.0.0",
            "private": True,
            "description": "Generated by monorail; do not edit.",
            "dependencies": self.as_mapping(),
        }

    def render(self) -> str:
        return json.dumps(self.to_package_json(), indent=2, ensure_ascii=False) + "\n"


def synthesize_manifest(
    graph: DependencyGraph,
    policy: ResolutionPolicy = ResolutionPolicy.LOWEST,
) -> SynthesizedManifest:
    """Resolve one specifier per external package, or raise ``VersionConflictError``."""

    requests: dict[str, list[RangeRequest]] = {}
    for edge in graph.external_edges:
        requests.setdefault(edge.dependency, []).append(
            RangeRequest(project=edge.consumer, range=edge.range)
        )

    resolved: list[ResolvedDependency] = []
    for name in sorted(requests):
        declared = tuple(sorted(requests[name], key=lambda item: (item.project, item.range)))
        specifier = resolve_specifier(name, declared, policy)
        resolved.append(ResolvedDependency(name=name, specifier=specifier, requests=declared))

    logger.debug("manifest_synthesized", packages=len(resolved), policy=str(policy))
    return SynthesizedManifest(dependencies=tuple(resolved), policy=policy)


def resolve_specifier(
    name: str,
    requests: tuple[RangeRequest, ...],
    policy: ResolutionPolicy,
) -> str:
    """Intersect every requested range for ``name`` and pick a specifier per ``policy``."""

    combined: VersionRange | None = None
    for request in requests:
        parsed = VersionRange.parse(request.range)
        combined = parsed if combined is None else combined.intersect(parsed)

    if combined is None or combined.is_empty:
        raise VersionConflictError(name, requests, reason="No version satisfies every range")

    if len({request.range for request in requests}) == 1 and policy is ResolutionPolicy.INTERSECTION:
        return requests[0].range

    minimum = combined.minimum_version()
    if minimum is None:
        raise VersionConflictError(
            name, requests, reason="No release version satisfies every range"
        )
    if policy is ResolutionPolicy.LOWEST:
        return str(minimum)
    return combined.canonical()


def write_synthesized_manifest(manifest: SynthesizedManifest, path: Path) -> bool:
    """Persist ``manifest`` at ``path``; return ``True`` when the file changed."""

    rendered = manifest.render()
    try:
        if path.read_text(encoding="utf-8") == rendered:
            return False
    except FileNotFoundError:
        pass

    path.parent.mkdir(parents=True, exist_ok=True)
    atomic_write(path, rendered)
    logger.info("synthesized_manifest_written", path=str(path), packages=len(manifest.dependencies))
    return True


__all__ = [
    "ResolutionPolicy",
    "ResolvedDependency",
    "SYNTHESIZED_PACKAGE_NAME",
    "SynthesizedManifest",
    "resolve_specifier",
    "synthesize_manifest",
    "write_synthesized_manifest",
]
