"""Project dependency graph construction and traversal."""

from monorail.graph.dependency_graph import (
    DependencyEdge,
    DependencyGraph,
    EdgeKind,
    build_graph,
)

__all__ = ["DependencyEdge", "DependencyGraph", "EdgeKind", "build_graph"]
