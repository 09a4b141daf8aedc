"""Exclusive repository lock serializing install and link operations."""

from __future__ import annotations

import fcntl
import os
import time
from contextlib import contextmanager
from pathlib import Path
from typing import TYPE_CHECKING

import structlog

from monorail.errors import FilesystemError

if TYPE_CHECKING:
    from collections.abc import Iterator

logger = structlog.get_logger(__name__)

_POLL_INTERVAL_SECONDS = 0.1


@contextmanager
def repository_lock(lock_path: Path, *, timeout_seconds: float | None = None) -> Iterator[None]:
    """Hold an exclusive ``flock`` on ``lock_path`` for the duration of the context.

    The lock is a sidecar file that is never rewritten, so data files guarded by it
    can still be replaced atomically. ``timeout_seconds=None`` waits indefinitely.
    """

    lock_path.parent.mkdir(parents=True, exist_ok=True)
    with lock_path.open("a+", encoding="utf-8") as lock_handle:
        _acquire(lock_handle.fileno(), lock_path, timeout_seconds)
        logger.debug("repository_lock_acquired", path=str(lock_path), pid=os.getpid())
        try:
            yield
        finally:
            fcntl.flock(lock_handle.fileno(), fcntl.LOCK_UN)
            logger.debug("repository_lock_released", path=str(lock_path))


def _acquire(fd: int, lock_path: Path, timeout_seconds: float | None) -> None:
    if timeout_seconds is None:
        fcntl.flock(fd, fcntl.LOCK_EX)
        return

    deadline = time.monotonic() + max(timeout_seconds, 0.0)
    while True:
        try:
            fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
            return
        except BlockingIOError:
            if time.monotonic() >= deadline:
                raise FilesystemError(
                    f"another monorail process holds the repository lock: {lock_path}",
                    path=str(lock_path),
                ) from None
            time.sleep(_POLL_INTERVAL_SECONDS)


__all__ = ["repository_lock"]
