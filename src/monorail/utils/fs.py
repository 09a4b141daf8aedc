"""
monorail — filesystem utilities

File: src/monorail/utils/fs.py

Purpose
- Provide safe, minimal filesystem helpers for atomic writes, guarded deletion,
  and symlink management used by the linker and install reconciler.

Functional requirements
- Atomic writes use temp files in the destination directory and replace in a single step.
- Deletion refuses paths outside the repository root.
- Symlink helpers never follow the link they operate on.
"""

from __future__ import annotations

import contextlib
import os
import shutil
import tempfile
from pathlib import Path

PathLike = str | os.PathLike[str]

__all__ = [
    "atomic_write",
    "copy_file_atomic",
    "create_directory_link",
    "link_points_to",
    "remove_link",
    "safe_delete",
    "touch",
]


def atomic_write(path: PathLike, data: bytes | str, *, encoding: str = "utf-8") -> None:
    """
    Atomically write ``data`` to ``path``.

    The write strategy is:
    1. create temp file in the same directory,
    2. write + flush + fsync file data,
    3. replace target via ``os.replace``.
    """

    target = Path(path)
    target_parent = target.parent.resolve(strict=True)
    if not target_parent.is_dir():
        raise NotADirectoryError(f"{target_parent!s} is not a directory")

    fd, temp_name = tempfile.mkstemp(
        prefix=f".{target.name}.",
        suffix=".tmp",
        dir=str(target_parent),
    )
    temp_path = Path(temp_name)

    try:
        if isinstance(data, bytes):
            with os.fdopen(fd, "wb") as file_handle:
                file_handle.write(data)
                file_handle.flush()
                os.fsync(file_handle.fileno())
        else:
            with os.fdopen(fd, "w", encoding=encoding, newline="\n") as file_handle:
                file_handle.write(data)
                file_handle.flush()
                os.fsync(file_handle.fileno())

        os.replace(temp_path, target)
        _fsync_directory(target_parent)
    except Exception:
        with contextlib.suppress(OSError):
            temp_path.unlink(missing_ok=True)
        raise


def copy_file_atomic(source: PathLike, destination: PathLike) -> None:
    """Copy ``source`` over ``destination`` through :func:`atomic_write`."""

    atomic_write(destination, Path(source).read_bytes())


def touch(path: PathLike) -> None:
    """Create ``path`` if needed and bump its modification time to now."""

    target = Path(path)
    target.parent.mkdir(parents=True, exist_ok=True)
    target.touch(exist_ok=True)
    os.utime(target, None)


def safe_delete(path: PathLike, root: PathLike) -> None:
    """
    Delete ``path`` only if it is contained within ``root``.

    Symlinks are unlinked without traversing into their targets.
    """

    workspace = Path(root).resolve(strict=True)
    if not workspace.is_dir():
        raise NotADirectoryError(f"{workspace!s} is not a directory")

    target = Path(path)
    parent_resolved = target.parent.resolve(strict=True)
    candidate = parent_resolved / target.name
    if not _is_relative_to(candidate, workspace):
        raise ValueError(f"refusing to delete path outside repository root: {target!s}")

    if target.is_symlink():
        target.unlink()
        return

    resolved_target = target.resolve(strict=True)
    if not _is_relative_to(resolved_target, workspace):
        raise ValueError(f"refusing to delete path outside repository root: {target!s}")

    if target.is_dir():
        shutil.rmtree(target)
        return

    target.unlink()


def create_directory_link(link_path: PathLike, target: PathLike) -> None:
    """Create ``link_path`` as a directory symlink pointing at ``target``."""

    link = Path(link_path)
    link.parent.mkdir(parents=True, exist_ok=True)
    os.symlink(os.fspath(target), link, target_is_directory=True)


def link_points_to(link_path: PathLike, target: PathLike) -> bool:
    """Return ``True`` when ``link_path`` is a symlink whose target is ``target``."""

    link = Path(link_path)
    if not link.is_symlink():
        return False
    raw = Path(os.readlink(link))
    if not raw.is_absolute():
        raw = link.parent / raw
    return os.path.normpath(raw) == os.path.normpath(Path(target).absolute())


def remove_link(link_path: PathLike) -> None:
    """Remove a symlink (or a junction left behind as an empty directory)."""

    link = Path(link_path)
    if link.is_symlink():
        link.unlink()
        return
    if link.is_dir():
        link.rmdir()
        return
    link.unlink()


def _is_relative_to(child: Path, parent: Path) -> bool:
    try:
        child.relative_to(parent)
    except ValueError:
        return False
    return True


def _fsync_directory(path: Path) -> None:
    """
    Best-effort directory fsync for metadata durability after ``os.replace``.

    Some platforms/filesystems do not support fsync on directories.
    """

    if os.name == "nt":
        return

    flags = os.O_RDONLY
    if hasattr(os, "O_DIRECTORY"):
        flags |= os.O_DIRECTORY

    try:
        dir_fd = os.open(path, flags)
    except OSError:
        return

    try:
        os.fsync(dir_fd)
    except OSError:
        return
    finally:
        os.close(dir_fd)
