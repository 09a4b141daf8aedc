"""Deterministic, name-keyed project dependency graph.

Edges point from a consumer to the project it depends on. Orders are reported
dependencies-first so a build or link pass can walk them directly.
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator, Mapping, Sequence
from dataclasses import dataclass
from enum import StrEnum
from heapq import heapify, heappop, heappush
from typing import TYPE_CHECKING, cast

import structlog

from monorail.errors import CycleError

if TYPE_CHECKING:
    from monorail.registry import ProjectRegistry

logger = structlog.get_logger(__name__)


class EdgeKind(StrEnum):
    INTERNAL = "internal"
    EXTERNAL = "external"


@dataclass(frozen=True, slots=True)
class DependencyEdge:
    """One declared dependency of a consumer project."""

    consumer: str
    dependency: str
    range: str
    kind: EdgeKind


class DependencyGraph:
    """Adjacency tables keyed by project name, plus every declared edge."""

    __slots__ = ("_nodes", "_dependencies", "_dependents", "_edges")

    def __init__(
        self,
        nodes: Iterable[str] | None = None,
        edges: Iterable[tuple[str, str]] | None = None,
    ) -> None:
        self._nodes: set[str] = set()
        self._dependencies: dict[str, set[str]] = {}
        self._dependents: dict[str, set[str]] = {}
        self._edges: list[DependencyEdge] = []

        for node_id in nodes or ():
            self.add_node(node_id)
        for consumer, dependency in edges or ():
            self.add_edge(consumer, dependency)

    @property
    def nodes(self) -> tuple[str, ...]:
        return tuple(sorted(self._nodes))

    @property
    def edges(self) -> tuple[tuple[str, str], ...]:
        """Internal edges as ``(consumer, dependency)`` pairs in deterministic order."""
        return tuple(
            (consumer, dependency)
            for consumer in sorted(self._nodes)
            for dependency in sorted(self._dependencies[consumer])
        )

    @property
    def internal_edges(self) -> tuple[DependencyEdge, ...]:
        return tuple(edge for edge in self._edges if edge.kind is EdgeKind.INTERNAL)

    @property
    def external_edges(self) -> tuple[DependencyEdge, ...]:
        return tuple(edge for edge in self._edges if edge.kind is EdgeKind.EXTERNAL)

    def add_node(self, node_id: str) -> None:
        if not node_id:
            raise ValueError("Project name must be non-empty.")
        if node_id in self._nodes:
            return
        self._nodes.add(node_id)
        self._dependencies[node_id] = set()
        self._dependents[node_id] = set()

    def add_edge(self, consumer: str, dependency: str) -> None:
        """Add ``consumer -> dependency``; both endpoints become nodes."""
        self.add_node(consumer)
        self.add_node(dependency)
        self._dependencies[consumer].add(dependency)
        self._dependents[dependency].add(consumer)

    def record_edge(self, edge: DependencyEdge) -> None:
        """Remember a declared edge; internal edges also join the adjacency table."""
        if edge.kind is EdgeKind.INTERNAL:
            self.add_edge(edge.consumer, edge.dependency)
        self._edges.append(edge)

    def topological_order(self) -> tuple[str, ...]:
        """Return dependencies before consumers, ties broken by name, or raise ``CycleError``."""
        pending: dict[str, int] = {node: len(self._dependencies[node]) for node in self._nodes}
        ready = [node for node, count in pending.items() if count == 0]
        heapify(ready)

        order: list[str] = []
        while ready:
            node = heappop(ready)
            order.append(node)
            for consumer in self._dependents[node]:
                pending[consumer] -= 1
                if pending[consumer] == 0:
                    heappush(ready, consumer)

        if len(order) != len(self._nodes):
            raise CycleError(self.detect_cycles())
        return tuple(order)

    def detect_cycles(self) -> tuple[tuple[str, ...], ...]:
        """Return every cycle as a closed path in "depends on" direction, e.g. ``(a, b, a)``."""
        state: dict[str, int] = {}
        stack: list[str] = []
        stack_index: dict[str, int] = {}
        cycles: dict[tuple[str, ...], None] = {}

        for start in sorted(self._nodes):
            if state.get(start, 0) != 0:
                continue

            state[start] = 1
            stack_index[start] = len(stack)
            stack.append(start)
            frames: list[tuple[str, Iterator[str]]] = [
                (start, iter(sorted(self._dependencies[start])))
            ]

            while frames:
                node, remaining = frames[-1]
                child = next(remaining, None)
                if child is None:
                    frames.pop()
                    state[node] = 2
                    stack.pop()
                    del stack_index[node]
                    continue

                child_state = state.get(child, 0)
                if child_state == 0:
                    state[child] = 1
                    stack_index[child] = len(stack)
                    stack.append(child)
                    frames.append((child, iter(sorted(self._dependencies[child]))))
                elif child_state == 1:
                    cycle = (*stack[stack_index[child] :], child)
                    cycles[_canonicalize_cycle(cycle)] = None

        return tuple(sorted(cycles))

    def dependencies_of(self, node_id: str, *, transitive: bool = False) -> tuple[str, ...]:
        self._assert_node_exists(node_id)
        if not transitive:
            return tuple(sorted(self._dependencies[node_id]))
        return self._closure(node_id, self._dependencies)

    def dependents_of(self, node_id: str, *, transitive: bool = False) -> tuple[str, ...]:
        self._assert_node_exists(node_id)
        if not transitive:
            return tuple(sorted(self._dependents[node_id]))
        return self._closure(node_id, self._dependents)

    def subgraph_order(self, roots: Iterable[str]) -> tuple[str, ...]:
        """Topological order restricted to ``roots`` and everything they depend on."""
        selected: set[str] = set()
        for root in roots:
            selected.add(root)
            selected.update(self.dependencies_of(root, transitive=True))
        return tuple(node for node in self.topological_order() if node in selected)

    def serialize(self) -> dict[str, object]:
        return {"nodes": list(self.nodes), "edges": [list(edge) for edge in self.edges]}

    @classmethod
    def deserialize(cls, payload: Mapping[str, object]) -> DependencyGraph:
        """Rebuild the adjacency table from :meth:`serialize` output."""
        raw_nodes = payload.get("nodes", ())
        raw_edges = payload.get("edges", ())
        if not isinstance(raw_nodes, Sequence) or isinstance(raw_nodes, str):
            raise TypeError("'nodes' must be a sequence of strings.")
        if not isinstance(raw_edges, Sequence) or isinstance(raw_edges, str):
            raise TypeError("'edges' must be a sequence of [consumer, dependency] pairs.")

        graph = cls()
        for index, raw_node in enumerate(raw_nodes):
            if not isinstance(raw_node, str):
                raise TypeError(f"'nodes[{index}]' must be a string.")
            graph.add_node(raw_node)
        for index, raw_edge in enumerate(raw_edges):
            pair = cast("Sequence[object]", raw_edge)
            if (
                not isinstance(raw_edge, Sequence)
                or len(pair) != 2
                or not all(isinstance(item, str) for item in pair)
            ):
                raise TypeError(f"'edges[{index}]' must be a pair of project names.")
            graph.add_edge(cast(str, pair[0]), cast(str, pair[1]))
        return graph

    @staticmethod
    def _closure(node_id: str, adjacency: Mapping[str, set[str]]) -> tuple[str, ...]:
        visited: set[str] = set()
        pending = list(adjacency[node_id])
        while pending:
            node = pending.pop()
            if node in visited:
                continue
            visited.add(node)
            pending.extend(neighbor for neighbor in adjacency[node] if neighbor not in visited)
        return tuple(sorted(visited))

    def _assert_node_exists(self, node_id: str) -> None:
        if node_id not in self._nodes:
            raise KeyError(f"Unknown project: {node_id}")


def build_graph(registry: ProjectRegistry) -> DependencyGraph:
    """Classify every declared dependency and verify the internal graph is acyclic.

    Raises ``CycleError`` before any caller has had a chance to mutate anything.
    """

    graph = DependencyGraph(nodes=registry.names)
    for project in registry.values():
        for dependency_name, version_range in project.dependencies:
            kind = EdgeKind.INTERNAL if registry.is_internal(dependency_name) else EdgeKind.EXTERNAL
            graph.record_edge(
                DependencyEdge(
                    consumer=project.name,
                    dependency=dependency_name,
                    range=version_range,
                    kind=kind,
                )
            )

    order = graph.topological_order()
    logger.debug(
        "dependency_graph_built",
        projects=len(order),
        internal_edges=len(graph.internal_edges),
        external_edges=len(graph.external_edges),
    )
    return graph


def _canonicalize_cycle(cycle: Sequence[str]) -> tuple[str, ...]:
    core = tuple(cycle[:-1])
    if len(core) == 1:
        return (core[0], core[0])
    best = min(core[offset:] + core[:offset] for offset in range(len(core)))
    return (*best, best[0])


__all__ = ["DependencyEdge", "DependencyGraph", "EdgeKind", "build_graph"]
