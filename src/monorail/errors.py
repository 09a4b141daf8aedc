"""Error taxonomy shared by every monorail component.

Structural errors (``CycleError`` and synthesis-time ``VersionConflictError``) are
raised before any filesystem or subprocess side effect. ``FilesystemError`` is
scoped to one project during linking. ``ExternalToolError`` and
``MissingArtifactError`` are fatal for the whole install reconcile.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass


class MonorailError(Exception):
    """Base class for all errors that reach the command layer as values."""

    kind = "error"

    def to_dict(self) -> dict[str, object]:
        return {"kind": self.kind, "message": str(self)}


class ConfigError(MonorailError, ValueError):
    """Raised for malformed configuration or project manifests."""

    kind = "config"


class CycleError(MonorailError, ValueError):
    """Raised when internal project dependencies form a cycle."""

    kind = "cycle"
    cycles: tuple[tuple[str, ...], ...]

    def __init__(self, cycles: Iterable[Sequence[str]]) -> None:
        normalized: tuple[tuple[str, ...], ...] = tuple(tuple(path) for path in cycles)
        self.cycles = normalized

        if not normalized:
            message = "Project dependencies contain at least one cycle."
        else:
            preview = ", ".join(" -> ".join(path) for path in normalized[:3])
            suffix = "..." if len(normalized) > 3 else ""
            message = f"Project dependencies contain cycle(s): {preview}{suffix}"
        super().__init__(message)

    def to_dict(self) -> dict[str, object]:
        payload = super().to_dict()
        payload["cycles"] = [list(path) for path in self.cycles]
        return payload


@dataclass(frozen=True, slots=True)
class RangeRequest:
    """One project's declared range for a package."""

    project: str
    range: str


class VersionConflictError(MonorailError):
    """Raised when declared version ranges cannot be reconciled."""

    kind = "version_conflict"

    def __init__(self, package: str, requests: Iterable[RangeRequest], *, reason: str) -> None:
        self.package = package
        self.requests = tuple(sorted(requests, key=lambda item: (item.project, item.range)))
        self.reason = reason
        rendered = ", ".join(f"{item.project} ({item.range})" for item in self.requests)
        super().__init__(f"{reason} for {package!r}: {rendered}")

    def to_dict(self) -> dict[str, object]:
        payload = super().to_dict()
        payload["package"] = self.package
        payload["requests"] = [
            {"project": item.project, "range": item.range} for item in self.requests
        ]
        return payload


class ExternalToolError(MonorailError):
    """Raised when the package-manager subprocess fails."""

    kind = "external_tool"

    def __init__(
        self,
        *,
        command: Sequence[str],
        returncode: int | None,
        stdout: str = "",
        stderr: str = "",
        detail: str | None = None,
    ) -> None:
        self.command = tuple(command)
        self.returncode = returncode
        self.stdout = stdout
        self.stderr = stderr
        if detail is not None:
            message = f"external tool failed: {' '.join(command)}: {detail}"
        else:
            message = f"external tool failed ({returncode}): {' '.join(command)}"
            if stderr.strip():
                message = f"{message}: {stderr.strip()}"
        super().__init__(message)

    def to_dict(self) -> dict[str, object]:
        payload = super().to_dict()
        payload["command"] = list(self.command)
        payload["returncode"] = self.returncode
        return payload


class FilesystemError(MonorailError):
    """Raised when a link or marker cannot be created or removed."""

    kind = "filesystem"

    def __init__(self, message: str, *, path: str | None = None) -> None:
        self.path = path
        super().__init__(message)


class MissingArtifactError(MonorailError):
    """Raised when an artifact is absent after a step reported success."""

    kind = "missing_artifact"

    def __init__(self, artifact: str, *, path: str) -> None:
        self.artifact = artifact
        self.path = path
        super().__init__(f"the {artifact} is missing after a successful step: {path}")


__all__ = [
    "ConfigError",
    "CycleError",
    "ExternalToolError",
    "FilesystemError",
    "MissingArtifactError",
    "MonorailError",
    "RangeRequest",
    "VersionConflictError",
]
