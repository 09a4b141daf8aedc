"""Stable constants shared across monorail components."""

from __future__ import annotations

from pathlib import PurePosixPath
from typing import Final

# Schema versions for persisted contracts.
CONFIG_SCHEMA_VERSION: Final[int] = 1
LINK_MARKER_SCHEMA_VERSION: Final[int] = 1
BUILD_STATE_SCHEMA_VERSION: Final[int] = 1

# Repository layout (relative to the repository root unless overridden by config).
CONFIG_FILENAME: Final[str] = "monorail.toml"
COMMON_FOLDER: Final[PurePosixPath] = PurePosixPath("common")
TEMP_FOLDER_NAME: Final[str] = "temp"
CONFIG_FOLDER_NAME: Final[str] = "config"
PROJECT_MANIFEST_FILENAME: Final[str] = "package.json"
APPROVED_PACKAGES_FILENAME: Final[str] = "approved-packages.yaml"
DEFAULT_LOCK_FILENAME: Final[str] = "npm-shrinkwrap.json"

# Shared external dependency cache and its sentinel files.
DEPENDENCY_FOLDER_NAME: Final[str] = "node_modules"
BIN_FOLDER_NAME: Final[str] = ".bin"
INSTALL_MARKER_FILENAME: Final[str] = ".monorail-install"
LINK_MARKER_FILENAME: Final[str] = ".monorail-link.json"
REPOSITORY_LOCK_FILENAME: Final[str] = "monorail.lock"
BUILD_STATE_FOLDER_NAME: Final[str] = "build-state"

# Review categories used when a project does not declare one.
DEFAULT_REVIEW_CATEGORY: Final[str] = "production"

__all__ = [
    "APPROVED_PACKAGES_FILENAME",
    "BIN_FOLDER_NAME",
    "BUILD_STATE_FOLDER_NAME",
    "BUILD_STATE_SCHEMA_VERSION",
    "COMMON_FOLDER",
    "CONFIG_FILENAME",
    "CONFIG_FOLDER_NAME",
    "CONFIG_SCHEMA_VERSION",
    "DEFAULT_LOCK_FILENAME",
    "DEFAULT_REVIEW_CATEGORY",
    "DEPENDENCY_FOLDER_NAME",
    "INSTALL_MARKER_FILENAME",
    "LINK_MARKER_FILENAME",
    "LINK_MARKER_SCHEMA_VERSION",
    "PROJECT_MANIFEST_FILENAME",
    "REPOSITORY_LOCK_FILENAME",
    "TEMP_FOLDER_NAME",
]
