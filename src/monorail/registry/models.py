"""Immutable project records loaded once per run."""

from __future__ import annotations

from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field
from pathlib import Path

from monorail.errors import ConfigError


@dataclass(frozen=True, slots=True)
class Project:
    """One buildable unit: manifest identity plus its folder.

    ``dependencies`` keeps declaration order: ``dependencies`` first, then
    ``devDependencies`` from the project's manifest.
    """

    name: str
    version: str
    folder: Path
    dependencies: tuple[tuple[str, str], ...] = ()
    review_category: str = "production"
    build_command: str | None = None

    def __post_init__(self) -> None:
        seen: set[str] = set()
        for dependency_name, _ in self.dependencies:
            if dependency_name in seen:
                raise ConfigError(
                    f"project {self.name!r} declares dependency {dependency_name!r} more than once"
                )
            seen.add(dependency_name)

    @property
    def dependency_names(self) -> tuple[str, ...]:
        return tuple(name for name, _ in self.dependencies)

    def dependency_range(self, name: str) -> str | None:
        for dependency_name, version_range in self.dependencies:
            if dependency_name == name:
                return version_range
        return None

    def dependency_map(self) -> dict[str, str]:
        return dict(self.dependencies)


@dataclass(frozen=True, slots=True)
class ProjectRegistry(Mapping[str, Project]):
    """Ordered, read-only collection of projects keyed by name."""

    repo_root: Path
    projects: tuple[Project, ...]
    _index: dict[str, Project] = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        index: dict[str, Project] = {}
        for project in self.projects:
            if project.name in index:
                raise ConfigError(f"duplicate project name {project.name!r}")
            index[project.name] = project
        object.__setattr__(self, "_index", index)

    def __getitem__(self, name: str) -> Project:
        return self._index[name]

    def __iter__(self) -> Iterator[str]:
        return iter(self._index)

    def __len__(self) -> int:
        return len(self._index)

    @property
    def names(self) -> tuple[str, ...]:
        return tuple(self._index)

    def is_internal(self, dependency_name: str) -> bool:
        return dependency_name in self._index


__all__ = ["Project", "ProjectRegistry"]
