"""Input fingerprints and the store of last-successful-build fingerprints."""

from __future__ import annotations

import json
from collections.abc import Collection, Mapping
from pathlib import Path

import structlog

from monorail.constants import BUILD_STATE_SCHEMA_VERSION
from monorail.utils.fs import atomic_write
from monorail.utils.hashing import canonical_json, create_manifest, sha256_json

logger = structlog.get_logger(__name__)


def compute_input_fingerprint(
    *,
    project: str,
    folder: Path,
    command: str | None,
    upstream: Mapping[str, str],
    ignored_folders: Collection[str] = (),
) -> str:
    """Hash the project's source files, its build command, and upstream fingerprints."""

    files = create_manifest(folder, excluded_dirs=ignored_folders) if folder.is_dir() else {}
    return sha256_json(
        {
            "schema_version": BUILD_STATE_SCHEMA_VERSION,
            "project": project,
            "command": command,
            "files": files,
            "upstream": dict(sorted(upstream.items())),
        }
    )


class BuildStateStore:
    """One JSON file per project under ``common/temp/build-state``."""

    __slots__ = ("_folder",)

    def __init__(self, folder: Path) -> None:
        self._folder = folder

    @property
    def folder(self) -> Path:
        return self._folder

    def last_success(self, project: str) -> str | None:
        path = self._path_for(project)
        try:
            payload = json.loads(path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return None
        except (OSError, json.JSONDecodeError):
            logger.warning("build_state_unreadable", project=project, path=str(path))
            return None
        if not isinstance(payload, dict) or payload.get("schema_version") != BUILD_STATE_SCHEMA_VERSION:
            return None
        fingerprint = payload.get("fingerprint")
        return fingerprint if isinstance(fingerprint, str) else None

    def record_success(self, project: str, fingerprint: str) -> None:
        self._folder.mkdir(parents=True, exist_ok=True)
        payload = {
            "schema_version": BUILD_STATE_SCHEMA_VERSION,
            "project": project,
            "fingerprint": fingerprint,
        }
        atomic_write(self._path_for(project), canonical_json(payload) + "\n")

    def forget(self, project: str) -> None:
        self._path_for(project).unlink(missing_ok=True)

    def _path_for(self, project: str) -> Path:
        return self._folder / f"{project.replace('/', '__')}.json"


__all__ = ["BuildStateStore", "compute_input_fingerprint"]
