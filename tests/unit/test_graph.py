from __future__ import annotations

import pytest

from targetflow.errors import CycleError, UnknownReferenceError
from targetflow.graph import DependencyGraph, build_graph, find_cycle
from targetflow.plan import Group, Map, PlanBuilder


def _plan(*targets):
    builder = PlanBuilder()
    for name, command, *rest in targets:
        builder.target(name, command, pattern=rest[0] if rest else None)
    return builder.to_plan()


@pytest.mark.unit
def test_edges_come_from_commands_and_dimensions():
    plan = _plan(
        ("data", "[1, 2, 3]"),
        ("keys", '["a", "a", "b"]'),
        ("offset", "10"),
        ("grouped", "add(sum(data), offset)", Group("data", by="keys")),
    )
    graph = build_graph(plan)
    assert set(graph.edges()) == {("data", "grouped"), ("offset", "grouped"), ("keys", "grouped")}
    assert graph.dependents("data") == ("grouped",)


@pytest.mark.unit
def test_topological_order_breaks_ties_by_declaration():
    plan = _plan(
        ("c", "add(a, b)"),
        ("b", "2"),
        ("a", "1"),
        ("d", "1"),
    )
    assert build_graph(plan).topological_order() == ["b", "a", "c", "d"]


@pytest.mark.unit
def test_two_target_cycle_rejected_with_members():
    plan = _plan(("a", "add(b, 1)"), ("b", "add(a, 1)"))
    with pytest.raises(CycleError) as excinfo:
        build_graph(plan)
    assert set(excinfo.value.members) == {"a", "b"}
    assert excinfo.value.members[0] == excinfo.value.members[-1]


@pytest.mark.unit
def test_cycle_through_dimension_is_detected():
    plan = _plan(
        ("data", "identity(mapped)"),
        ("mapped", "data", Map("data")),
    )
    with pytest.raises(CycleError):
        build_graph(plan)


@pytest.mark.unit
def test_unknown_reference_names_target_and_reference():
    plan = _plan(("a", "add(missing, 1)"))
    with pytest.raises(UnknownReferenceError) as excinfo:
        build_graph(plan)
    assert excinfo.value.target == "a"
    assert excinfo.value.reference == "missing"


@pytest.mark.unit
def test_unknown_dimension_is_an_unknown_reference():
    plan = _plan(("m", "1", Map("nowhere")))
    with pytest.raises(UnknownReferenceError):
        build_graph(plan)


@pytest.mark.unit
def test_upstream_downstream_and_generations():
    plan = _plan(
        ("a", "1"),
        ("b", "add(a, 1)"),
        ("c", "add(a, 2)"),
        ("d", "add(b, c)"),
        ("e", "5"),
    )
    graph = build_graph(plan)
    assert graph.upstream(["d"]) == {"a", "b", "c", "d"}
    assert graph.downstream(["b"]) == {"b", "d"}
    assert graph.generations() == [["a", "e"], ["b", "c"], ["d"]]
    assert graph.generations(subset={"a", "b"}) == [["a"], ["b"]]


@pytest.mark.unit
def test_find_cycle_returns_none_for_dag():
    graph = DependencyGraph(nodes=["a", "b"], dependencies={"b": ("a",)})
    assert find_cycle(graph.nodes, graph.dependencies) is None
