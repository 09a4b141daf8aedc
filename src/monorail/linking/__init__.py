"""Project linking: pure plans and the executor that applies them."""

from monorail.linking.link_executor import (
    LinkExecutor,
    LinkOutcomeStatus,
    LinkReport,
    ProjectLinkOutcome,
    ProjectLinkState,
)
from monorail.linking.link_plan import (
    LinkKind,
    LinkPlanEntry,
    ProjectLinkPlan,
    package_slot,
    plan_links,
)

__all__ = [
    "LinkExecutor",
    "LinkKind",
    "LinkOutcomeStatus",
    "LinkPlanEntry",
    "LinkReport",
    "ProjectLinkOutcome",
    "ProjectLinkPlan",
    "ProjectLinkState",
    "package_slot",
    "plan_links",
]
