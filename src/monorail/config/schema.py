"""
monorail — configuration schema and validation.

File: src/monorail/config/schema.py

Purpose
- Define authoritative configuration defaults and strict validation rules for
  ``monorail.toml``.

What should be included in this file
- Schema versioning and migration guidance.
- Validation rules for required fields, types, enums, and numeric constraints.
- Deterministic deep-merge helpers.

Functional requirements
- Validate config payloads and return structured errors (field path + message).
- Unknown keys are rejected so typos surface instead of being ignored.
"""

from __future__ import annotations

import copy
import math
import re
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Any, Final, Literal, NotRequired, TypedDict

from monorail.constants import (
    APPROVED_PACKAGES_FILENAME,
    CONFIG_SCHEMA_VERSION,
    DEFAULT_LOCK_FILENAME,
    DEPENDENCY_FOLDER_NAME,
)
from monorail.errors import ConfigError

ConfigSchemaVersion: Final[int] = CONFIG_SCHEMA_VERSION
RESOLUTION_POLICIES: Final[tuple[str, ...]] = ("lowest", "intersection")
LOG_LEVELS: Final[tuple[str, ...]] = ("DEBUG", "INFO", "WARNING", "ERROR")
LOG_FORMATS: Final[tuple[str, ...]] = ("json", "text")

_PROJECT_NAME_PATTERN = re.compile(r"^(@[a-z0-9][a-z0-9._~-]*/)?[a-z0-9][a-z0-9._~-]*$")

# Config paths that are normalized relative to the config file location.
PATH_FIELDS: Final[tuple[tuple[str, ...], ...]] = (
    ("paths", "common_folder"),
    ("paths", "committed_lock_file"),
    ("paths", "approved_packages_file"),
)


class MetaConfig(TypedDict):
    schema_version: int


class PathsConfig(TypedDict):
    common_folder: str
    committed_lock_file: str
    approved_packages_file: str


class PackageManagerConfig(TypedDict):
    command: str
    install_args: list[str]
    lock_args: list[str]
    clean_args: list[str]
    lock_filename: str
    timeout_seconds: float


class ResolutionConfig(TypedDict):
    policy: Literal["lowest", "intersection"]


class GovernanceConfig(TypedDict):
    enabled: bool
    review_categories: list[str]
    ignored_scopes: list[str]


class LinkConfig(TypedDict):
    folder_name: str
    allow_version_mismatch: bool


class BuildConfig(TypedDict):
    parallelism: int
    fail_fast: bool
    timeout_seconds: float
    ignored_folders: list[str]


class ObservabilityConfig(TypedDict):
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"]
    log_format: Literal["json", "text"]


class ProjectEntry(TypedDict):
    name: str
    folder: str
    review_category: NotRequired[str]


class MonorailConfig(TypedDict):
    meta: MetaConfig
    paths: PathsConfig
    package_manager: PackageManagerConfig
    resolution: ResolutionConfig
    governance: GovernanceConfig
    link: LinkConfig
    build: BuildConfig
    observability: ObservabilityConfig
    projects: list[ProjectEntry]


DEFAULT_CONFIG: Final[MonorailConfig] = {
    "meta": {
        "schema_version": ConfigSchemaVersion,
    },
    "paths": {
        "common_folder": "common",
        "committed_lock_file": DEFAULT_LOCK_FILENAME,
        "approved_packages_file": f"common/config/{APPROVED_PACKAGES_FILENAME}",
    },
    "package_manager": {
        "command": "npm",
        "install_args": ["install", "--no-audit", "--no-fund"],
        "lock_args": ["shrinkwrap"],
        "clean_args": ["cache", "clean", "--force"],
        "lock_filename": DEFAULT_LOCK_FILENAME,
        "timeout_seconds": 1800.0,
    },
    "resolution": {
        "policy": "lowest",
    },
    "governance": {
        "enabled": True,
        "review_categories": [],
        "ignored_scopes": [],
    },
    "link": {
        "folder_name": DEPENDENCY_FOLDER_NAME,
        "allow_version_mismatch": False,
    },
    "build": {
        "parallelism": 0,
        "fail_fast": False,
        "timeout_seconds": 0.0,
        "ignored_folders": [DEPENDENCY_FOLDER_NAME, ".git", "lib", "dist", "temp"],
    },
    "observability": {
        "log_level": "INFO",
        "log_format": "text",
    },
    "projects": [],
}


@dataclass(frozen=True, slots=True)
class ConfigValidationIssue:
    """Single structured validation failure."""

    path: str
    message: str


class ConfigValidationError(ConfigError):
    """Raised when strict config validation fails."""

    def __init__(self, issues: Sequence[ConfigValidationIssue]) -> None:
        self.issues = tuple(issues)
        if not self.issues:
            rendered = "unknown validation failure"
        else:
            rendered = "\n".join(f"- {item.path}: {item.message}" for item in self.issues)
        super().__init__(f"invalid config:\n{rendered}")

    def to_dict(self) -> dict[str, object]:
        payload = super().to_dict()
        payload["issues"] = [{"path": item.path, "message": item.message} for item in self.issues]
        return payload


class _IssueCollector:
    __slots__ = ("_items",)

    def __init__(self) -> None:
        self._items: list[ConfigValidationIssue] = []

    def add(self, path: str, message: str) -> None:
        self._items.append(ConfigValidationIssue(path=path, message=message))

    def items(self) -> tuple[ConfigValidationIssue, ...]:
        return tuple(self._items)

    @property
    def has_issues(self) -> bool:
        return bool(self._items)


def default_config() -> MonorailConfig:
    """Return a deep copy of deterministic built-in defaults."""

    return copy.deepcopy(DEFAULT_CONFIG)


def migration_guidance(found_version: int) -> str:
    """Return deterministic migration guidance for schema version mismatch."""

    if found_version < ConfigSchemaVersion:
        return (
            f"schema version {found_version} is older than supported {ConfigSchemaVersion}; "
            "upgrade monorail.toml to the current schema"
        )
    if found_version > ConfigSchemaVersion:
        return (
            f"schema version {found_version} is newer than supported {ConfigSchemaVersion}; "
            "upgrade the monorail tool"
        )
    return "schema version is current"


def merge_config(base: Mapping[str, object], overlay: Mapping[str, object]) -> dict[str, Any]:
    """Deterministically deep-merge ``overlay`` onto ``base``.

    Mappings merge key by key; lists and scalars in ``overlay`` replace the base value.
    """

    merged = copy.deepcopy(dict(base))
    _merge_into(merged, overlay)
    return merged


def assert_valid_config(config: Mapping[str, object] | object) -> dict[str, Any]:
    """Validate config and raise ``ConfigValidationError`` on failure."""

    issues = _IssueCollector()
    if not isinstance(config, Mapping):
        raise ConfigValidationError((ConfigValidationIssue("<root>", "expected an object"),))

    _reject_unknown_keys(config, set(DEFAULT_CONFIG), "", issues)
    for section in DEFAULT_CONFIG:
        if section not in config:
            issues.add(section, "section is required")

    _validate_meta(config.get("meta"), issues)
    _validate_paths(config.get("paths"), issues)
    _validate_package_manager(config.get("package_manager"), issues)
    _validate_resolution(config.get("resolution"), issues)
    _validate_governance(config.get("governance"), issues)
    _validate_link(config.get("link"), issues)
    _validate_build(config.get("build"), issues)
    _validate_observability(config.get("observability"), issues)
    _validate_projects(config.get("projects"), issues)

    if issues.has_issues:
        raise ConfigValidationError(issues.items())
    return copy.deepcopy(dict(config))


def _validate_meta(section: object, issues: _IssueCollector) -> None:
    meta = _as_section(section, "meta", {"schema_version"}, issues)
    if meta is None:
        return
    version = meta.get("schema_version")
    if not isinstance(version, int) or isinstance(version, bool):
        issues.add("meta.schema_version", "must be an integer")
    elif version != ConfigSchemaVersion:
        issues.add("meta.schema_version", migration_guidance(version))


def _validate_paths(section: object, issues: _IssueCollector) -> None:
    paths = _as_section(section, "paths", set(DEFAULT_CONFIG["paths"]), issues)
    if paths is None:
        return
    for key in sorted(DEFAULT_CONFIG["paths"]):
        _as_non_empty_str(paths.get(key), f"paths.{key}", issues)


def _validate_package_manager(section: object, issues: _IssueCollector) -> None:
    tool = _as_section(section, "package_manager", set(DEFAULT_CONFIG["package_manager"]), issues)
    if tool is None:
        return
    _as_non_empty_str(tool.get("command"), "package_manager.command", issues)
    for key in ("install_args", "lock_args", "clean_args"):
        _as_str_list(tool.get(key), f"package_manager.{key}", issues)
    lock_filename = _as_non_empty_str(
        tool.get("lock_filename"), "package_manager.lock_filename", issues
    )
    if lock_filename is not None and ("/" in lock_filename or "\\" in lock_filename):
        issues.add("package_manager.lock_filename", "must be a bare file name")
    _as_number(
        tool.get("timeout_seconds"), "package_manager.timeout_seconds", issues, minimum=0.0
    )


def _validate_resolution(section: object, issues: _IssueCollector) -> None:
    resolution = _as_section(section, "resolution", {"policy"}, issues)
    if resolution is None:
        return
    _as_enum(resolution.get("policy"), "resolution.policy", RESOLUTION_POLICIES, issues)


def _validate_governance(section: object, issues: _IssueCollector) -> None:
    governance = _as_section(section, "governance", set(DEFAULT_CONFIG["governance"]), issues)
    if governance is None:
        return
    _as_bool(governance.get("enabled"), "governance.enabled", issues)
    _as_str_list(governance.get("review_categories"), "governance.review_categories", issues)
    scopes = _as_str_list(governance.get("ignored_scopes"), "governance.ignored_scopes", issues)
    for index, scope in enumerate(scopes or ()):
        if not scope.startswith("@"):
            issues.add(f"governance.ignored_scopes[{index}]", "scope must start with '@'")


def _validate_link(section: object, issues: _IssueCollector) -> None:
    link = _as_section(section, "link", set(DEFAULT_CONFIG["link"]), issues)
    if link is None:
        return
    folder_name = _as_non_empty_str(link.get("folder_name"), "link.folder_name", issues)
    if folder_name is not None and ("/" in folder_name or folder_name in {".", ".."}):
        issues.add("link.folder_name", "must be a single folder name")
    _as_bool(link.get("allow_version_mismatch"), "link.allow_version_mismatch", issues)


def _validate_build(section: object, issues: _IssueCollector) -> None:
    build = _as_section(section, "build", set(DEFAULT_CONFIG["build"]), issues)
    if build is None:
        return
    parallelism = build.get("parallelism")
    if not isinstance(parallelism, int) or isinstance(parallelism, bool) or parallelism < 0:
        issues.add("build.parallelism", "must be an integer >= 0 (0 uses available CPUs)")
    _as_bool(build.get("fail_fast"), "build.fail_fast", issues)
    _as_number(build.get("timeout_seconds"), "build.timeout_seconds", issues, minimum=0.0)
    _as_str_list(build.get("ignored_folders"), "build.ignored_folders", issues)


def _validate_observability(section: object, issues: _IssueCollector) -> None:
    observability = _as_section(
        section, "observability", set(DEFAULT_CONFIG["observability"]), issues
    )
    if observability is None:
        return
    _as_enum(observability.get("log_level"), "observability.log_level", LOG_LEVELS, issues)
    _as_enum(observability.get("log_format"), "observability.log_format", LOG_FORMATS, issues)


def _validate_projects(section: object, issues: _IssueCollector) -> None:
    if section is None:
        return
    if not isinstance(section, list):
        issues.add("projects", "must be an array of tables")
        return

    seen: dict[str, int] = {}
    for index, entry in enumerate(section):
        path = f"projects[{index}]"
        project = _as_section(entry, path, {"name", "folder", "review_category"}, issues)
        if project is None:
            continue
        name = _as_non_empty_str(project.get("name"), f"{path}.name", issues)
        _as_non_empty_str(project.get("folder"), f"{path}.folder", issues)
        if "review_category" in project:
            _as_non_empty_str(project.get("review_category"), f"{path}.review_category", issues)
        if name is None:
            continue
        if not _PROJECT_NAME_PATTERN.match(name):
            issues.add(f"{path}.name", f"{name!r} is not a valid package name")
        if name in seen:
            issues.add(f"{path}.name", f"duplicate project name (first at projects[{seen[name]}])")
        else:
            seen[name] = index


def _as_section(
    value: object,
    path: str,
    allowed: set[str],
    issues: _IssueCollector,
) -> Mapping[str, object] | None:
    if value is None:
        return None
    if not isinstance(value, Mapping):
        issues.add(path, "must be a table")
        return None
    _reject_unknown_keys(value, allowed, path, issues)
    return value


def _as_non_empty_str(value: object, path: str, issues: _IssueCollector) -> str | None:
    if not isinstance(value, str) or not value.strip():
        issues.add(path, "must be a non-empty string")
        return None
    return value


def _as_str_list(value: object, path: str, issues: _IssueCollector) -> list[str] | None:
    if not isinstance(value, list) or not all(isinstance(item, str) for item in value):
        issues.add(path, "must be an array of strings")
        return None
    return list(value)


def _as_bool(value: object, path: str, issues: _IssueCollector) -> None:
    if not isinstance(value, bool):
        issues.add(path, "must be a boolean")


def _as_number(value: object, path: str, issues: _IssueCollector, *, minimum: float) -> None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        issues.add(path, "must be a number")
        return
    if not math.isfinite(float(value)) or float(value) < minimum:
        issues.add(path, f"must be a finite number >= {minimum}")


def _as_enum(
    value: object, path: str, allowed: tuple[str, ...], issues: _IssueCollector
) -> None:
    if value not in allowed:
        issues.add(path, f"must be one of: {', '.join(allowed)}")


def _reject_unknown_keys(
    payload: Mapping[str, object],
    allowed: set[str],
    path: str,
    issues: _IssueCollector,
) -> None:
    for key in sorted(str(item) for item in payload):
        if key not in allowed:
            issues.add(_join(path, key), "unknown key")


def _join(path: str, key: str) -> str:
    return f"{path}.{key}" if path else key


def _merge_into(target: dict[str, Any], overlay: Mapping[str, object]) -> None:
    for key in sorted(overlay):
        value = overlay[key]
        existing = target.get(key)
        if isinstance(value, Mapping) and isinstance(existing, dict):
            _merge_into(existing, value)
        else:
            target[key] = copy.deepcopy(value)


__all__ = [
    "ConfigSchemaVersion",
    "ConfigValidationError",
    "ConfigValidationIssue",
    "DEFAULT_CONFIG",
    "LOG_FORMATS",
    "LOG_LEVELS",
    "MonorailConfig",
    "PATH_FIELDS",
    "ProjectEntry",
    "RESOLUTION_POLICIES",
    "assert_valid_config",
    "default_config",
    "merge_config",
    "migration_guidance",
]
