"""
monorail — project registry loader.

File: src/monorail/registry/loader.py

Purpose
- Build the ``ProjectRegistry`` from the ``[[projects]]`` table of the effective
  config and each project's ``package.json`` manifest.

Functional requirements
- Every malformed manifest surfaces as ``ConfigError`` naming the project and file.
- The manifest ``name`` must match the configured project name.
- Versions and dependency ranges must parse; nothing downstream re-validates them.
- Project order follows the config file; dependency order follows the manifest.
"""

from __future__ import annotations

import json
from collections.abc import Mapping, Sequence
from pathlib import Path
from typing import Any

import structlog

from monorail.constants import DEFAULT_REVIEW_CATEGORY, PROJECT_MANIFEST_FILENAME
from monorail.errors import ConfigError
from monorail.registry.models import Project, ProjectRegistry
from monorail.versioning import Version, VersionRange

logger = structlog.get_logger(__name__)

_DEPENDENCY_SECTIONS = ("dependencies", "devDependencies")


def load_registry(config: Mapping[str, Any]) -> ProjectRegistry:
    """Load every configured project from disk."""

    repo_root = Path(config["paths"]["repo_root"])
    review_categories: Sequence[str] = config["governance"]["review_categories"]

    projects: list[Project] = []
    for entry in config.get("projects", []):
        projects.append(
            load_project(
                repo_root,
                name=entry["name"],
                folder=entry["folder"],
                review_category=entry.get("review_category", DEFAULT_REVIEW_CATEGORY),
                allowed_categories=review_categories,
            )
        )

    registry = ProjectRegistry(repo_root=repo_root, projects=tuple(projects))
    logger.debug("registry_loaded", project_count=len(registry), repo_root=str(repo_root))
    return registry


def load_project(
    repo_root: Path,
    *,
    name: str,
    folder: str,
    review_category: str = DEFAULT_REVIEW_CATEGORY,
    allowed_categories: Sequence[str] = (),
) -> Project:
    """Load one project's manifest and validate it against its registry entry."""

    project_folder = (repo_root / folder).resolve()
    if not project_folder.is_relative_to(repo_root.resolve()):
        raise ConfigError(f"project {name!r}: folder {folder!r} is outside the repository")
    if allowed_categories and review_category not in allowed_categories:
        raise ConfigError(
            f"project {name!r}: review category {review_category!r} is not one of "
            f"{', '.join(allowed_categories)}"
        )

    manifest_path = project_folder / PROJECT_MANIFEST_FILENAME
    manifest = _read_manifest(name, manifest_path)

    manifest_name = manifest.get("name")
    if manifest_name != name:
        raise ConfigError(
            f"project {name!r}: {manifest_path} declares name {manifest_name!r}"
        )

    version = manifest.get("version")
    if not isinstance(version, str):
        raise ConfigError(f"project {name!r}: {manifest_path} is missing a version string")
    try:
        Version.parse(version)
    except ConfigError as exc:
        raise ConfigError(f"project {name!r}: {exc}") from exc

    return Project(
        name=name,
        version=version,
        folder=project_folder,
        dependencies=_collect_dependencies(name, manifest_path, manifest),
        review_category=review_category,
        build_command=_build_command(name, manifest_path, manifest),
    )


def _read_manifest(name: str, path: Path) -> dict[str, Any]:
    try:
        payload = json.loads(path.read_text(encoding="utf-8"))
    except FileNotFoundError as exc:
        raise ConfigError(f"project {name!r}: manifest not found: {path}") from exc
    except json.JSONDecodeError as exc:
        raise ConfigError(f"project {name!r}: invalid JSON in {path}: {exc}") from exc
    except OSError as exc:
        raise ConfigError(f"project {name!r}: unable to read {path}: {exc}") from exc

    if not isinstance(payload, dict):
        raise ConfigError(f"project {name!r}: {path} must contain a JSON object")
    return payload


def _collect_dependencies(
    name: str, path: Path, manifest: Mapping[str, Any]
) -> tuple[tuple[str, str], ...]:
    collected: dict[str, str] = {}
    for section in _DEPENDENCY_SECTIONS:
        declared = manifest.get(section, {})
        if not isinstance(declared, dict):
            raise ConfigError(f"project {name!r}: {path} field {section!r} must be an object")
        for dependency_name, version_range in declared.items():
            if not isinstance(version_range, str):
                raise ConfigError(
                    f"project {name!r}: range for {dependency_name!r} in {section} must be a string"
                )
            try:
                VersionRange.parse(version_range)
            except ConfigError as exc:
                raise ConfigError(
                    f"project {name!r}: dependency {dependency_name!r}: {exc}"
                ) from exc
            existing = collected.get(dependency_name)
            if existing is not None and existing != version_range:
                raise ConfigError(
                    f"project {name!r}: {dependency_name!r} is declared as both "
                    f"{existing!r} and {version_range!r}"
                )
            collected.setdefault(dependency_name, version_range)
    return tuple(collected.items())


def _build_command(name: str, path: Path, manifest: Mapping[str, Any]) -> str | None:
    scripts = manifest.get("scripts", {})
    if not isinstance(scripts, dict):
        raise ConfigError(f"project {name!r}: {path} field 'scripts' must be an object")
    command = scripts.get("build")
    if command is None:
        return None
    if not isinstance(command, str):
        raise ConfigError(f"project {name!r}: scripts.build must be a string")
    return command.strip() or None


__all__ = ["load_project", "load_registry"]
