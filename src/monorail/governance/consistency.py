"""Report external packages declared with different ranges across projects."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from monorail.errors import RangeRequest

if TYPE_CHECKING:
    from monorail.graph import DependencyGraph


@dataclass(frozen=True, slots=True)
class InconsistentPackage:
    name: str
    requests: tuple[RangeRequest, ...]

    @property
    def ranges(self) -> tuple[str, ...]:
        return tuple(sorted({request.range for request in self.requests}))


def find_inconsistent_versions(graph: DependencyGraph) -> tuple[InconsistentPackage, ...]:
    """Return packages whose consumers disagree on the declared range, sorted by name.

    Differing ranges are reported even when they overlap; this is a hygiene check,
    not a conflict check.
    """

    requests: dict[str, list[RangeRequest]] = {}
    for edge in graph.external_edges:
        requests.setdefault(edge.dependency, []).append(
            RangeRequest(project=edge.consumer, range=edge.range)
        )

    inconsistent: list[InconsistentPackage] = []
    for name in sorted(requests):
        declared = requests[name]
        if len({request.range for request in declared}) > 1:
            ordered = tuple(sorted(declared, key=lambda item: (item.project, item.range)))
            inconsistent.append(InconsistentPackage(name=name, requests=ordered))
    return tuple(inconsistent)


__all__ = ["InconsistentPackage", "find_inconsistent_versions"]
