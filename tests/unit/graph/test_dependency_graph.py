"""
monorail — unit tests for the project dependency graph

File: tests/unit/graph/test_dependency_graph.py

Purpose
- Validate deterministic topological ordering, cycle reporting, and traversal.

What this test file should cover
- Dependencies-first ordering with name tie-breaks.
- Canonical cycle paths, including self-dependencies.
- Edge classification from a registry and serialization round trips.
- Property: every internal edge is respected by the order.
"""

from __future__ import annotations

from pathlib import Path

import pytest
from hypothesis import given
from hypothesis import strategies as st

from monorail.errors import CycleError
from monorail.graph import DependencyGraph, EdgeKind, build_graph
from monorail.registry import Project, ProjectRegistry


def _registry(*projects: tuple[str, dict[str, str]]) -> ProjectRegistry:
    return ProjectRegistry(
        repo_root=Path("/repo"),
        projects=tuple(
            Project(
                name=name,
                version="1.0.0",
                folder=Path("/repo") / name,
                dependencies=tuple(dependencies.items()),
            )
            for name, dependencies in projects
        ),
    )


def test_chain_orders_dependencies_first() -> None:
    graph = DependencyGraph(nodes=["a", "b", "c"], edges=[("a", "b"), ("b", "c")])

    assert graph.topological_order() == ("c", "b", "a")


def test_independent_nodes_are_ordered_by_name() -> None:
    graph = DependencyGraph(nodes=["zulu", "alpha", "mike"], edges=[("zulu", "alpha")])

    assert graph.topological_order() == ("alpha", "mike", "zulu")


def test_cycle_raises_with_canonical_path() -> None:
    graph = DependencyGraph(edges=[("b", "c"), ("c", "a"), ("a", "b")])

    with pytest.raises(CycleError) as excinfo:
        graph.topological_order()

    assert excinfo.value.cycles == (("a", "b", "c", "a"),)
    assert "a -> b -> c -> a" in str(excinfo.value)


def test_self_dependency_is_reported_as_a_two_element_cycle() -> None:
    graph = DependencyGraph(edges=[("a", "a")])

    assert graph.detect_cycles() == (("a", "a"),)
    with pytest.raises(CycleError):
        graph.topological_order()


def test_acyclic_graph_has_no_cycles() -> None:
    graph = DependencyGraph(edges=[("a", "b"), ("a", "c"), ("b", "c")])
    assert graph.detect_cycles() == ()


def test_transitive_traversal() -> None:
    graph = DependencyGraph(edges=[("app", "ui"), ("ui", "core"), ("cli", "core")])

    assert graph.dependencies_of("app") == ("ui",)
    assert graph.dependencies_of("app", transitive=True) == ("core", "ui")
    assert graph.dependents_of("core", transitive=True) == ("app", "cli", "ui")
    assert graph.subgraph_order(["ui"]) == ("core", "ui")


def test_unknown_node_raises_key_error() -> None:
    with pytest.raises(KeyError):
        DependencyGraph(nodes=["a"]).dependencies_of("missing")


def test_build_graph_classifies_internal_and_external_edges() -> None:
    registry = _registry(
        ("core", {"lodash": "^4.17.0"}),
        ("app", {"core": "^1.0.0", "react": "^18.0.0"}),
    )

    graph = build_graph(registry)

    assert graph.edges == (("app", "core"),)
    assert [(edge.consumer, edge.dependency) for edge in graph.internal_edges] == [("app", "core")]
    assert {edge.dependency for edge in graph.external_edges} == {"lodash", "react"}
    assert all(edge.kind is EdgeKind.EXTERNAL for edge in graph.external_edges)


def test_build_graph_rejects_cycles_between_projects() -> None:
    registry = _registry(("a", {"b": "^1.0.0"}), ("b", {"a": "^1.0.0"}))

    with pytest.raises(CycleError) as excinfo:
        build_graph(registry)

    assert excinfo.value.cycles == (("a", "b", "a"),)


def test_serialize_round_trip_preserves_order() -> None:
    graph = DependencyGraph(edges=[("a", "b"), ("b", "c")])

    restored = DependencyGraph.deserialize(graph.serialize())

    assert restored.nodes == graph.nodes
    assert restored.edges == graph.edges
    assert restored.topological_order() == graph.topological_order()


def test_deserialize_rejects_malformed_edges() -> None:
    with pytest.raises(TypeError):
        DependencyGraph.deserialize({"nodes": ["a"], "edges": [["a"]]})


@st.composite
def _acyclic_graphs(draw: st.DrawFn) -> DependencyGraph:
    count = draw(st.integers(min_value=1, max_value=12))
    names = [f"p{index:02d}" for index in range(count)]
    edges = []
    for consumer_index in range(count):
        for dependency_index in range(consumer_index):
            if draw(st.booleans()):
                edges.append((names[consumer_index], names[dependency_index]))
    return DependencyGraph(nodes=names, edges=edges)


@given(graph=_acyclic_graphs())
def test_order_respects_every_edge(graph: DependencyGraph) -> None:
    order = graph.topological_order()
    position = {name: index for index, name in enumerate(order)}

    assert sorted(order) == list(graph.nodes)
    for consumer, dependency in graph.edges:
        assert position[dependency] < position[consumer]


@given(graph=_acyclic_graphs())
def test_order_is_deterministic(graph: DependencyGraph) -> None:
    rebuilt = DependencyGraph(nodes=reversed(graph.nodes), edges=reversed(graph.edges))
    assert rebuilt.topological_order() == graph.topological_order()
