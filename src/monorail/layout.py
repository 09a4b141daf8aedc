"""Resolved repository paths derived from the effective config."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from monorail.constants import (
    BIN_FOLDER_NAME,
    BUILD_STATE_FOLDER_NAME,
    DEPENDENCY_FOLDER_NAME,
    INSTALL_MARKER_FILENAME,
    PROJECT_MANIFEST_FILENAME,
    REPOSITORY_LOCK_FILENAME,
    TEMP_FOLDER_NAME,
)


@dataclass(frozen=True, slots=True)
class RepositoryLayout:
    repo_root: Path
    common_folder: Path
    committed_lock_file: Path
    approved_packages_file: Path
    lock_filename: str
    link_folder_name: str = DEPENDENCY_FOLDER_NAME

    @classmethod
    def from_config(cls, config: Mapping[str, Any]) -> RepositoryLayout:
        paths = config["paths"]
        return cls(
            repo_root=Path(paths["repo_root"]),
            common_folder=Path(paths["common_folder"]),
            committed_lock_file=Path(paths["committed_lock_file"]),
            approved_packages_file=Path(paths["approved_packages_file"]),
            lock_filename=str(config["package_manager"]["lock_filename"]),
            link_folder_name=str(config["link"]["folder_name"]),
        )

    @property
    def temp_folder(self) -> Path:
        return self.common_folder / TEMP_FOLDER_NAME

    @property
    def synthesized_manifest(self) -> Path:
        return self.temp_folder / PROJECT_MANIFEST_FILENAME

    @property
    def staging_lock_file(self) -> Path:
        return self.temp_folder / self.lock_filename

    @property
    def shared_cache(self) -> Path:
        return self.temp_folder / DEPENDENCY_FOLDER_NAME

    @property
    def shared_bin_folder(self) -> Path:
        return self.shared_cache / BIN_FOLDER_NAME

    @property
    def install_marker(self) -> Path:
        return self.shared_cache / INSTALL_MARKER_FILENAME

    @property
    def repository_lock(self) -> Path:
        return self.temp_folder / REPOSITORY_LOCK_FILENAME

    @property
    def build_state_folder(self) -> Path:
        return self.temp_folder / BUILD_STATE_FOLDER_NAME

    def cached_package(self, package_name: str) -> Path:
        return self.shared_cache.joinpath(*package_name.split("/"))


__all__ = ["RepositoryLayout"]
