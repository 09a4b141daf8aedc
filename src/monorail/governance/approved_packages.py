"""
monorail — approved packages governance.

File: src/monorail/governance/approved_packages.py

Purpose
- Track which external packages the repository is allowed to depend on, and for
  which review categories.

What should be included in this file
- A pure reducer ``(existing, observed) -> updated`` that only ever adds.
- Canonical YAML rendering so an unchanged list re-renders byte-for-byte.
- One atomic replace of the persisted file, skipped when nothing changed.

Persisted format::

    packages:
    - name: left-pad
      allowedCategories:
      - production
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, cast

import structlog
import yaml

from monorail.errors import ConfigError
from monorail.utils.fs import atomic_write

if TYPE_CHECKING:
    from monorail.graph import DependencyGraph
    from monorail.registry import ProjectRegistry

logger = structlog.get_logger(__name__)

ObservedUsage = Mapping[str, frozenset[str]]


@dataclass(frozen=True, slots=True)
class ApprovedPackageEntry:
    name: str
    allowed_categories: tuple[str, ...]

    def to_record(self) -> dict[str, object]:
        return {"name": self.name, "allowedCategories": list(self.allowed_categories)}


@dataclass(frozen=True, slots=True)
class GovernanceChange:
    """Entries whose categories were added by one reduction."""

    name: str
    added_categories: tuple[str, ...]
    is_new: bool


@dataclass(frozen=True, slots=True)
class GovernanceResult:
    entries: tuple[ApprovedPackageEntry, ...]
    changes: tuple[GovernanceChange, ...]
    path: Path
    written: bool
    up_to_date: bool

    @property
    def changed(self) -> bool:
        return bool(self.changes)


def observe_usage(
    registry: ProjectRegistry,
    graph: DependencyGraph,
    *,
    ignored_scopes: Iterable[str] = (),
) -> dict[str, frozenset[str]]:
    """Map each external package name to the review categories of its consumers."""

    scopes = tuple(f"{scope.rstrip('/')}/" for scope in ignored_scopes)
    usage: dict[str, set[str]] = {}
    for edge in graph.external_edges:
        if scopes and edge.dependency.startswith(scopes):
            continue
        category = registry[edge.consumer].review_category
        usage.setdefault(edge.dependency, set()).add(category)
    return {name: frozenset(categories) for name, categories in sorted(usage.items())}


def reduce_approved_packages(
    existing: Iterable[ApprovedPackageEntry],
    observed: ObservedUsage,
) -> tuple[tuple[ApprovedPackageEntry, ...], tuple[GovernanceChange, ...]]:
    """Merge observed usage into the list without removing anything.

    Duplicate names in ``existing`` are folded into one entry. The result is sorted
    by name with sorted, unique categories.
    """

    merged: dict[str, set[str]] = {}
    for entry in existing:
        merged.setdefault(entry.name, set()).update(entry.allowed_categories)

    changes: list[GovernanceChange] = []
    for name in sorted(observed):
        known = merged.get(name)
        missing = set(observed[name]) - (known or set())
        if known is not None and not missing:
            continue
        changes.append(
            GovernanceChange(
                name=name,
                added_categories=tuple(sorted(missing)),
                is_new=known is None,
            )
        )
        merged.setdefault(name, set()).update(missing)

    entries = tuple(
        ApprovedPackageEntry(name=name, allowed_categories=tuple(sorted(categories)))
        for name, categories in sorted(merged.items())
    )
    return entries, tuple(changes)


def render_approved_packages(entries: Iterable[ApprovedPackageEntry]) -> str:
    """Render entries as canonical YAML."""

    payload = {"packages": [entry.to_record() for entry in entries]}
    rendered = yaml.safe_dump(
        payload,
        sort_keys=False,
        default_flow_style=False,
        allow_unicode=False,
        width=120,
    )
    if not rendered.endswith("\n"):
        rendered = rendered + "\n"
    return rendered


def load_approved_packages(path: Path) -> tuple[ApprovedPackageEntry, ...]:
    """Load the persisted list; a missing file is an empty list."""

    try:
        with path.open("r", encoding="utf-8") as handle:
            loaded = cast("object", yaml.safe_load(handle))
    except FileNotFoundError:
        return ()
    except yaml.YAMLError as exc:
        raise ConfigError(f"{path}: invalid YAML ({exc})") from exc

    if loaded is None:
        return ()
    if not isinstance(loaded, dict) or not isinstance(loaded.get("packages", []), list):
        raise ConfigError(f"{path}: expected a mapping with a 'packages' sequence")

    entries: list[ApprovedPackageEntry] = []
    for index, record in enumerate(loaded.get("packages") or []):
        if not isinstance(record, dict):
            raise ConfigError(f"{path}: packages[{index}] must be a mapping")
        name = record.get("name")
        categories = record.get("allowedCategories", [])
        if not isinstance(name, str) or not name:
            raise ConfigError(f"{path}: packages[{index}].name must be a non-empty string")
        if not isinstance(categories, list) or not all(isinstance(c, str) for c in categories):
            raise ConfigError(
                f"{path}: packages[{index}].allowedCategories must be a list of strings"
            )
        entries.append(ApprovedPackageEntry(name=name, allowed_categories=tuple(categories)))
    return tuple(entries)


def apply_approved_packages(
    path: Path,
    observed: ObservedUsage,
    *,
    check_only: bool = False,
) -> GovernanceResult:
    """Reduce the persisted list with ``observed`` and rewrite it when it changed.

    The file is left untouched when its current bytes already match the canonical
    rendering. ``check_only`` computes the result without writing.
    """

    existing = load_approved_packages(path)
    entries, changes = reduce_approved_packages(existing, observed)
    rendered = render_approved_packages(entries)

    try:
        current = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        current = None

    written = False
    if current != rendered and not check_only:
        path.parent.mkdir(parents=True, exist_ok=True)
        atomic_write(path, rendered)
        written = True

    for change in changes:
        logger.info(
            "approved_package_updated",
            package=change.name,
            categories=list(change.added_categories),
            new=change.is_new,
            check_only=check_only,
        )
    logger.debug("approved_packages_checked", path=str(path), changes=len(changes), written=written)
    return GovernanceResult(
        entries=entries,
        changes=changes,
        path=path,
        written=written,
        up_to_date=current == rendered,
    )


__all__ = [
    "ApprovedPackageEntry",
    "GovernanceChange",
    "GovernanceResult",
    "ObservedUsage",
    "apply_approved_packages",
    "load_approved_packages",
    "observe_usage",
    "reduce_approved_packages",
    "render_approved_packages",
]
