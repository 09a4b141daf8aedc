"""Approved packages governance and version consistency checks."""

from monorail.governance.approved_packages import (
    ApprovedPackageEntry,
    GovernanceChange,
    GovernanceResult,
    apply_approved_packages,
    load_approved_packages,
    observe_usage,
    reduce_approved_packages,
    render_approved_packages,
)
from monorail.governance.consistency import (
    InconsistentPackage,
    find_inconsistent_versions,
)

__all__ = [
    "ApprovedPackageEntry",
    "GovernanceChange",
    "GovernanceResult",
    "InconsistentPackage",
    "apply_approved_packages",
    "find_inconsistent_versions",
    "load_approved_packages",
    "observe_usage",
    "reduce_approved_packages",
    "render_approved_packages",
]
