"""
monorail — hashing utilities

File: src/monorail/utils/hashing.py

Purpose
- Provide deterministic SHA-256 helpers for bytes, text, JSON payloads, and files.
- Build directory manifests used as build input fingerprints.

Functional requirements
- Manifest paths are relative POSIX strings with deterministic ordering.
- Canonical JSON uses sorted keys and compact separators so equal payloads hash equal.
"""

from __future__ import annotations

import hashlib
import json
import os
import stat
from pathlib import Path
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Collection

PathLike = str | os.PathLike[str]

_FILE_READ_CHUNK_BYTES = 1024 * 1024

__all__ = [
    "canonical_json",
    "create_manifest",
    "sha256_bytes",
    "sha256_file",
    "sha256_json",
    "sha256_text",
]


def sha256_bytes(data: bytes) -> str:
    """Return SHA-256 hex digest for raw bytes."""

    return hashlib.sha256(data).hexdigest()


def sha256_text(text: str, *, encoding: str = "utf-8") -> str:
    """Return SHA-256 hex digest for text encoded with ``encoding``."""

    return sha256_bytes(text.encode(encoding))


def canonical_json(payload: object) -> str:
    """Serialize ``payload`` with sorted keys and compact separators."""

    return json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def sha256_json(payload: object) -> str:
    """Return SHA-256 hex digest of the canonical JSON form of ``payload``."""

    return sha256_text(canonical_json(payload))


def sha256_file(path: PathLike, *, chunk_size: int = _FILE_READ_CHUNK_BYTES) -> str:
    """Return SHA-256 hex digest for a file read in chunks."""

    if chunk_size <= 0:
        raise ValueError("chunk_size must be > 0")
    digest = hashlib.sha256()
    with Path(path).open("rb") as file_handle:
        while True:
            chunk = file_handle.read(chunk_size)
            if not chunk:
                break
            digest.update(chunk)
    return digest.hexdigest()


def create_manifest(
    directory: PathLike,
    *,
    excluded_dirs: Collection[str] = (),
) -> dict[str, str]:
    """
    Build a deterministic file manifest for ``directory``.

    The returned mapping contains:
    - key: relative POSIX path (``a/b/file.txt``)
    - value: lowercase SHA-256 hex digest

    Directories whose name is in ``excluded_dirs`` are pruned at any depth.
    Symlinks are never followed.
    """

    root = Path(directory).resolve(strict=True)
    if not root.is_dir():
        raise NotADirectoryError(f"{root!s} is not a directory")

    excluded = frozenset(excluded_dirs)
    manifest: dict[str, str] = {}
    for current_dir, dir_names, file_names in os.walk(root, topdown=True, followlinks=False):
        dir_names[:] = sorted(name for name in dir_names if name not in excluded)
        file_names.sort()
        current = Path(current_dir)
        for file_name in file_names:
            file_path = current / file_name
            try:
                mode = file_path.lstat().st_mode
            except FileNotFoundError:
                # If a file disappears during traversal, skip it; callers can rerun for a stable snapshot.
                continue
            if not stat.S_ISREG(mode):
                continue
            rel_path = file_path.relative_to(root).as_posix()
            manifest[rel_path] = sha256_file(file_path)

    return dict(sorted(manifest.items(), key=lambda item: item[0]))
