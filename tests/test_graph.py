"""Tests for job graph validation and traversal."""

import pytest

from phasegate.core.errors import (
    ConfigurationError,
    CycleDetectedError,
    DuplicateIdError,
    UnknownDependencyError,
)
from phasegate.dag.graph import Graph
from phasegate.schemas.job import JobSpec


def job(job_id, *deps, **kwargs):
    return JobSpec(id=job_id, depends_on=list(deps), **kwargs)


# ─── Build / validation ───


class TestGraphBuild:
    def test_empty_graph(self):
        graph = Graph.build([])
        assert len(graph) == 0
        assert graph.topological_order() == []

    def test_single_job(self):
        graph = Graph.build([job("a")])
        assert graph.ids == ["a"]
        assert "a" in graph
        assert "b" not in graph

    def test_duplicate_id(self):
        with pytest.raises(DuplicateIdError) as exc:
            Graph.build([job("a"), job("b"), job("a")])
        assert exc.value.job_id == "a"

    def test_unknown_dependency(self):
        with pytest.raises(UnknownDependencyError) as exc:
            Graph.build([job("a"), job("b", "ghost")])
        assert exc.value.job_id == "b"
        assert exc.value.dependency == "ghost"

    def test_self_dependency_is_a_cycle(self):
        with pytest.raises(CycleDetectedError) as exc:
            Graph.build([job("a", "a")])
        assert exc.value.cycle == ["a", "a"]

    def test_two_node_cycle(self):
        with pytest.raises(CycleDetectedError) as exc:
            Graph.build([job("a", "b"), job("b", "a")])
        cycle = exc.value.cycle
        assert cycle[0] == cycle[-1]
        assert set(cycle) == {"a", "b"}

    def test_cycle_reported_in_execution_direction(self):
        # x → y → z → x, plus an unrelated root
        with pytest.raises(CycleDetectedError) as exc:
            Graph.build([job("root"), job("x", "z"), job("y", "x"), job("z", "y")])
        cycle = exc.value.cycle
        assert len(cycle) == 4
        pairs = list(zip(cycle, cycle[1:]))
        for upstream, downstream in pairs:
            assert (upstream, downstream) in {("x", "y"), ("y", "z"), ("z", "x")}

    def test_cycle_message(self):
        with pytest.raises(CycleDetectedError, match="→"):
            Graph.build([job("a", "b"), job("b", "a")])

    def test_errors_are_configuration_errors(self):
        with pytest.raises(ConfigurationError):
            Graph.build([job("a", "missing")])

    def test_duplicate_checked_before_dependencies(self):
        with pytest.raises(DuplicateIdError):
            Graph.build([job("a", "missing"), job("a")])

    def test_graph_is_immutable(self):
        graph = Graph.build([job("a")])
        with pytest.raises(AttributeError):
            graph._jobs = ()


# ─── Ordering and traversal ───


class TestGraphTraversal:
    def test_linear_chain(self):
        graph = Graph.build([job("load", "transform"), job("transform", "extract"), job("extract")])
        assert graph.topological_order() == ["extract", "transform", "load"]

    def test_diamond(self):
        """A → B, A → C, B → D, C → D"""
        graph = Graph.build([job("A"), job("B", "A"), job("C", "A"), job("D", "B", "C")])
        order = graph.topological_order()
        assert order[0] == "A"
        assert order[-1] == "D"
        assert order.index("B") < order.index("D")
        assert order.index("C") < order.index("D")

    def test_order_is_stable_by_declaration(self):
        graph = Graph.build([job("z"), job("y"), job("x")])
        assert graph.topological_order() == ["z", "y", "x"]

    def test_adjacency(self):
        graph = Graph.build([job("A"), job("B", "A"), job("C", "A")])
        a = graph.index_of("A")
        assert [graph.job_at(i).id for i in graph.dependents_of(a)] == ["B", "C"]
        assert graph.dependencies_of(graph.index_of("B")) == (a,)

    def test_upstream_and_downstream(self):
        graph = Graph.build([job("A"), job("B", "A"), job("C", "B"), job("D")])
        assert graph.get_upstream("C") == {"A", "B"}
        assert graph.get_downstream("A") == {"B", "C"}
        assert graph.get_downstream("D") == set()

    def test_downstream_indices_breadth_first(self):
        graph = Graph.build([job("A"), job("B", "A"), job("C", "A"), job("D", "B")])
        ids = [graph.job_at(i).id for i in graph.downstream_indices(graph.index_of("A"))]
        assert ids == ["B", "C", "D"]

    def test_to_dict(self):
        graph = Graph.build([job("A"), job("B", "A")])
        data = graph.to_dict()
        assert data["nodes"] == ["A", "B"]
        assert data["edges"] == [{"upstream": "A", "downstream": "B"}]
