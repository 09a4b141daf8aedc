"""
monorail — external package-manager subprocess boundary.

File: src/monorail/install/package_manager.py

Purpose
- Invoke the configured package manager for bulk install, lock generation, and
  cache clean.

Functional requirements
- Exit code 0 is success; anything else, a timeout, or a failure to start the tool
  is ``ExternalToolError`` carrying argv, exit code, and captured output.
- Output is captured for diagnostics only and never parsed.
- Each invocation receives an explicit environment whose ``PATH`` is prefixed with
  the shared cache's ``.bin`` folder; ``os.environ`` is never mutated.
"""

from __future__ import annotations

import os
import shlex
import subprocess
import time
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Any, Protocol

import structlog

from monorail.errors import ExternalToolError

if TYPE_CHECKING:
    from monorail.layout import RepositoryLayout

logger = structlog.get_logger(__name__)

_OUTPUT_LOG_LIMIT = 4000


@dataclass(frozen=True, slots=True)
class ToolInvocation:
    command: tuple[str, ...]
    cwd: Path
    returncode: int
    stdout: str
    stderr: str
    duration_seconds: float


class CommandRunner(Protocol):
    """Injectable command runner used for deterministic/offline testing."""

    def run(
        self,
        command: Sequence[str],
        *,
        cwd: Path,
        env: Mapping[str, str],
        timeout_seconds: float | None,
    ) -> ToolInvocation: ...


class SubprocessCommandRunner:
    """Default command runner backed by ``subprocess.run``."""

    def run(
        self,
        command: Sequence[str],
        *,
        cwd: Path,
        env: Mapping[str, str],
        timeout_seconds: float | None,
    ) -> ToolInvocation:
        started = time.perf_counter()
        try:
            completed = subprocess.run(
                list(command),
                cwd=cwd,
                check=False,
                capture_output=True,
                text=True,
                timeout=timeout_seconds,
                env=dict(env),
            )
        except subprocess.TimeoutExpired as exc:
            raise ExternalToolError(
                command=command,
                returncode=None,
                stdout=_as_text(exc.stdout),
                stderr=_as_text(exc.stderr),
                detail=f"timed out after {timeout_seconds} seconds",
            ) from exc
        except OSError as exc:
            raise ExternalToolError(
                command=command,
                returncode=None,
                detail=f"unable to start: {exc}",
            ) from exc

        return ToolInvocation(
            command=tuple(command),
            cwd=cwd,
            returncode=completed.returncode,
            stdout=completed.stdout,
            stderr=completed.stderr,
            duration_seconds=time.perf_counter() - started,
        )


class PackageManager:
    """Argument contract for the external tool: install, lock, and cache clean."""

    def __init__(
        self,
        *,
        command: Sequence[str],
        install_args: Sequence[str],
        lock_args: Sequence[str],
        clean_args: Sequence[str],
        bin_folder: Path,
        timeout_seconds: float | None = None,
        runner: CommandRunner | None = None,
        environ: Mapping[str, str] | None = None,
    ) -> None:
        if not command:
            raise ValueError("package manager command must be non-empty")
        self._command = tuple(command)
        self._install_args = tuple(install_args)
        self._lock_args = tuple(lock_args)
        self._clean_args = tuple(clean_args)
        self._bin_folder = bin_folder
        self._timeout_seconds = timeout_seconds or None
        self._runner: CommandRunner = runner or SubprocessCommandRunner()
        self._environ = dict(os.environ if environ is None else environ)

    @classmethod
    def from_config(
        cls,
        config: Mapping[str, Any],
        layout: RepositoryLayout,
        *,
        runner: CommandRunner | None = None,
        environ: Mapping[str, str] | None = None,
    ) -> PackageManager:
        tool = config["package_manager"]
        return cls(
            command=shlex.split(tool["command"]),
            install_args=tool["install_args"],
            lock_args=tool["lock_args"],
            clean_args=tool["clean_args"],
            bin_folder=layout.shared_bin_folder,
            timeout_seconds=float(tool["timeout_seconds"]),
            runner=runner,
            environ=environ,
        )

    def build_env(self) -> dict[str, str]:
        """Inherited environment with the shared ``.bin`` folder first on ``PATH``."""
        env = dict(self._environ)
        existing = env.get("PATH", "")
        env["PATH"] = os.pathsep.join(
            part for part in (os.fspath(self._bin_folder), existing) if part
        )
        return env

    def install(self, cwd: Path) -> ToolInvocation:
        return self._invoke(self._install_args, cwd=cwd, step="install")

    def generate_lock(self, cwd: Path) -> ToolInvocation:
        return self._invoke(self._lock_args, cwd=cwd, step="lock")

    def clean_cache(self, cwd: Path) -> ToolInvocation:
        return self._invoke(self._clean_args, cwd=cwd, step="cache_clean")

    def _invoke(self, args: Sequence[str], *, cwd: Path, step: str) -> ToolInvocation:
        argv = (*self._command, *args)
        logger.info("package_manager_started", step=step, command=list(argv), cwd=str(cwd))
        result = self._runner.run(
            argv, cwd=cwd, env=self.build_env(), timeout_seconds=self._timeout_seconds
        )
        logger.debug(
            "package_manager_output",
            step=step,
            stdout=result.stdout[-_OUTPUT_LOG_LIMIT:],
            stderr=result.stderr[-_OUTPUT_LOG_LIMIT:],
        )
        if result.returncode != 0:
            raise ExternalToolError(
                command=argv,
                returncode=result.returncode,
                stdout=result.stdout,
                stderr=result.stderr,
            )
        logger.info(
            "package_manager_finished",
            step=step,
            duration_seconds=round(result.duration_seconds, 3),
        )
        return result


def _as_text(value: str | bytes | None) -> str:
    if value is None:
        return ""
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return value


__all__ = [
    "CommandRunner",
    "PackageManager",
    "SubprocessCommandRunner",
    "ToolInvocation",
]
