"""Async subprocess execution for project build commands."""

from __future__ import annotations

import asyncio
import os
import signal
import time
from collections.abc import Mapping
from contextlib import suppress
from dataclasses import dataclass, field
from typing import Protocol, runtime_checkable

_DEFAULT_MAX_OUTPUT_CHARS = 200_000


@dataclass(frozen=True, slots=True)
class CommandSpec:
    """One build invocation: argv, working folder, and explicit environment overrides."""

    argv: tuple[str, ...]
    cwd: str | None = None
    env: Mapping[str, str] = field(default_factory=dict)
    timeout_seconds: float | None = None

    @classmethod
    def shell(
        cls,
        command: str,
        *,
        cwd: str | None = None,
        env: Mapping[str, str] | None = None,
        timeout_seconds: float | None = None,
    ) -> CommandSpec:
        """Run ``command`` through ``/bin/sh -c``, the way package scripts are run."""
        return cls(
            argv=("/bin/sh", "-c", command),
            cwd=cwd,
            env=dict(env or {}),
            timeout_seconds=timeout_seconds,
        )

    def build_env(self) -> dict[str, str]:
        env = dict(os.environ)
        env.update(self.env)
        return env


@dataclass(frozen=True, slots=True)
class CommandResult:
    argv: tuple[str, ...]
    exit_code: int | None
    stdout: str
    stderr: str
    duration_ms: int
    timed_out: bool = False
    error: str | None = None

    @property
    def is_success(self) -> bool:
        return not self.timed_out and self.error is None and self.exit_code == 0

    def describe_failure(self) -> str:
        if self.timed_out:
            return self.error or "command timed out"
        if self.error is not None:
            return self.error
        return f"exited with code {self.exit_code}"


@runtime_checkable
class CommandExecutor(Protocol):
    """Pluggable async command execution interface for the build scheduler."""

    async def run(self, spec: CommandSpec) -> CommandResult: ...


class LocalSubprocessExecutor(CommandExecutor):
    """Async local subprocess executor with output capture and per-command timeout."""

    def __init__(self, *, max_output_chars: int | None = _DEFAULT_MAX_OUTPUT_CHARS) -> None:
        self._max_output_chars = max_output_chars

    async def run(self, spec: CommandSpec) -> CommandResult:
        started_ns = time.monotonic_ns()
        try:
            process = await asyncio.create_subprocess_exec(
                *spec.argv,
                cwd=spec.cwd,
                env=spec.build_env(),
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                start_new_session=True,
            )
        except OSError as exc:
            return CommandResult(
                argv=spec.argv,
                exit_code=None,
                stdout="",
                stderr="",
                duration_ms=_elapsed_ms(started_ns),
                error=str(exc),
            )

        try:
            stdout_bytes, stderr_bytes = await _communicate_with_timeout(
                process=process, timeout_seconds=spec.timeout_seconds
            )
            timed_out = False
            error_text: str | None = None
            exit_code = process.returncode
        except _CommandTimeoutError as exc:
            stdout_bytes = exc.stdout
            stderr_bytes = exc.stderr
            timed_out = True
            error_text = f"command timed out after {spec.timeout_seconds or 0.0:.3f}s"
            exit_code = None

        return CommandResult(
            argv=spec.argv,
            exit_code=exit_code,
            stdout=_truncate_text(_normalize_output_text(stdout_bytes), self._max_output_chars),
            stderr=_truncate_text(_normalize_output_text(stderr_bytes), self._max_output_chars),
            duration_ms=_elapsed_ms(started_ns),
            timed_out=timed_out,
            error=error_text,
        )


@dataclass(slots=True)
class _CommandTimeoutError(Exception):
    stdout: bytes
    stderr: bytes


async def _communicate_with_timeout(
    *,
    process: asyncio.subprocess.Process,
    timeout_seconds: float | None,
) -> tuple[bytes, bytes]:
    try:
        if timeout_seconds is None:
            return await process.communicate()
        return await asyncio.wait_for(process.communicate(), timeout=timeout_seconds)
    except TimeoutError as exc:
        _kill_process_group(process)
        stdout_bytes, stderr_bytes = await process.communicate()
        raise _CommandTimeoutError(stdout=stdout_bytes, stderr=stderr_bytes) from exc
    except asyncio.CancelledError:
        _kill_process_group(process)
        await process.communicate()
        raise


def _kill_process_group(process: asyncio.subprocess.Process) -> None:
    # The command runs in its own session, so its pid is also the group id.
    with suppress(ProcessLookupError):
        os.killpg(process.pid, signal.SIGKILL)


def _elapsed_ms(started_ns: int) -> int:
    return max(time.monotonic_ns() - started_ns, 0) // 1_000_000


def _normalize_output_text(raw: bytes) -> str:
    return raw.decode("utf-8", errors="replace").replace("\r\n", "\n").replace("\r", "\n")


def _truncate_text(text: str, max_chars: int | None) -> str:
    if max_chars is None or len(text) <= max_chars:
        return text
    omitted = len(text) - max_chars
    return f"{text[:max_chars]}\n...[truncated {omitted} chars]"


__all__ = ["CommandExecutor", "CommandResult", "CommandSpec", "LocalSubprocessExecutor"]
