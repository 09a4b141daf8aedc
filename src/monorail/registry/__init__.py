"""Project registry: immutable project records and their loader."""

from monorail.registry.loader import load_project, load_registry
from monorail.registry.models import Project, ProjectRegistry

__all__ = ["Project", "ProjectRegistry", "load_project", "load_registry"]
