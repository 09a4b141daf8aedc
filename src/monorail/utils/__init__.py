"""Utility exports for filesystem, hashing, locking, and concurrency helpers."""

from monorail.utils.concurrency import CancellationToken
from monorail.utils.fs import (
    atomic_write,
    copy_file_atomic,
    create_directory_link,
    link_points_to,
    remove_link,
    safe_delete,
    touch,
)
from monorail.utils.hashing import (
    canonical_json,
    create_manifest,
    sha256_bytes,
    sha256_file,
    sha256_json,
    sha256_text,
)
from monorail.utils.locking import repository_lock

__all__ = [
    "CancellationToken",
    "atomic_write",
    "canonical_json",
    "copy_file_atomic",
    "create_directory_link",
    "create_manifest",
    "link_points_to",
    "remove_link",
    "repository_lock",
    "safe_delete",
    "sha256_bytes",
    "sha256_file",
    "sha256_json",
    "sha256_text",
    "touch",
]
