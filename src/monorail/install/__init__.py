"""Manifest synthesis, package-manager invocation, and install reconciliation."""

from monorail.install.manifest_synthesizer import (
    ResolutionPolicy,
    ResolvedDependency,
    SynthesizedManifest,
    resolve_specifier,
    synthesize_manifest,
    write_synthesized_manifest,
)
from monorail.install.package_manager import (
    CommandRunner,
    PackageManager,
    SubprocessCommandRunner,
    ToolInvocation,
)
from monorail.install.reconciler import (
    InstallDecision,
    InstallMode,
    InstallReconciler,
    InstallReport,
    marker_is_current,
)

__all__ = [
    "CommandRunner",
    "InstallDecision",
    "InstallMode",
    "InstallReconciler",
    "InstallReport",
    "PackageManager",
    "ResolutionPolicy",
    "ResolvedDependency",
    "SubprocessCommandRunner",
    "SynthesizedManifest",
    "ToolInvocation",
    "marker_is_current",
    "resolve_specifier",
    "synthesize_manifest",
    "write_synthesized_manifest",
]
