"""Build execution: subprocess runner, fingerprints, and the scheduler."""

from monorail.build.process import (
    CommandExecutor,
    CommandResult,
    CommandSpec,
    LocalSubprocessExecutor,
)
from monorail.build.scheduler import (
    BuildReport,
    BuildScheduler,
    BuildTask,
    SchedulerOptions,
    TaskState,
)
from monorail.build.state import BuildStateStore, compute_input_fingerprint

__all__ = [
    "BuildReport",
    "BuildScheduler",
    "BuildStateStore",
    "BuildTask",
    "CommandExecutor",
    "CommandResult",
    "CommandSpec",
    "LocalSubprocessExecutor",
    "SchedulerOptions",
    "TaskState",
    "compute_input_fingerprint",
]
